"""Blob storage access, with a Google Cloud Storage implementation."""

from __future__ import annotations

import abc
import gzip
import io
import json
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, BinaryIO
from urllib.parse import quote

import requests

MIB = 1 << 20
DEFAULT_BASE_URL = "https://storage.googleapis.com"

# Resumable upload chunks must be a multiple of this size.
_CHUNK_ALIGNMENT = 256 * 1024
_SMALL_FILE_LIMIT = 16 * MIB
_DEFAULT_CACHE_MAX_AGE = 86400


class StorageError(Exception):
    """Raised when a storage request fails or a URI cannot be parsed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class StorageConfig:
    """Retry settings for the storage client (durations in seconds)."""

    initial_retry_delay: float = 1.0
    max_retry_delay: float = 20.0
    retry_multiplier: float = 2.0
    retry_timeout: float = 60.0


@dataclass
class UploadConfig:
    """Settings used when uploading an object."""

    allow_overwrite: bool = False
    cache_control: str = ""
    cache_max_age_seconds: int = _DEFAULT_CACHE_MAX_AGE
    chunk_size: int = 16 * MIB
    content_type: str = ""
    metadata: dict[str, str] | None = None


def make_upload_config(
    content_length: int,
    *,
    chunk_size: int | None = None,
    cache_max_age_seconds: int | None = None,
    content_type: str = "",
    allow_overwrite: bool = False,
    metadata: Mapping[str, str] | None = None,
) -> UploadConfig:
    """Build the upload settings for content of the given length.

    A ``chunk_size`` of 0 sends the whole object in one request and a
    ``cache_max_age_seconds`` of 0 disables caching.
    """
    if chunk_size is None:
        # Small files fit in a single request.
        if content_length <= _SMALL_FILE_LIMIT:
            chunk_size = content_length + 256
        else:
            chunk_size = _SMALL_FILE_LIMIT
    if cache_max_age_seconds is None:
        cache_max_age_seconds = _DEFAULT_CACHE_MAX_AGE

    if cache_max_age_seconds == 0:
        cache_control = "no-cache, max-age=0"
    else:
        cache_control = f"public, max-age={cache_max_age_seconds}"

    return UploadConfig(
        allow_overwrite=allow_overwrite,
        cache_control=cache_control,
        cache_max_age_seconds=cache_max_age_seconds,
        chunk_size=chunk_size,
        content_type=content_type,
        metadata=dict(metadata) if metadata is not None else None,
    )


def split_object_uri(uri: str) -> tuple[str, str]:
    """Split a ``gs://bucket/object`` URI into its bucket and object name."""
    parts = uri.replace("gs://", "", 1).split("/", 1)
    if len(parts) < 2:
        raise StorageError(f"failed to parse gcs uri: {uri}")
    return parts[0], parts[1]


class Storage(abc.ABC):
    """The operations a blob storage system offers."""

    @abc.abstractmethod
    def upload_object(self, bucket: str, name: str, contents: bytes, **kwargs: Any) -> None:
        """Upload an object; keyword arguments are those of ``make_upload_config``."""

    @abc.abstractmethod
    def download_object(self, bucket: str, name: str) -> BinaryIO:
        """Open an object for reading; the caller must close the stream."""

    @abc.abstractmethod
    def object_metadata(self, bucket: str, name: str) -> dict[str, str]:
        """Return the custom metadata of an object."""

    @abc.abstractmethod
    def delete_object(self, bucket: str, name: str) -> None:
        """Delete an object."""

    @abc.abstractmethod
    def objects_with_name(self, bucket: str, filename: str) -> list[str]:
        """Return the URIs of objects in the bucket whose names end with ``filename``."""


class _ResponseReader(io.RawIOBase):
    """A readable stream over a streamed HTTP response body."""

    def __init__(self, response: requests.Response) -> None:
        super().__init__()
        self._response = response

    def readable(self) -> bool:
        return True

    def readinto(self, buffer: Any) -> int:
        data = self._response.raw.read(len(buffer), decode_content=True)
        size = len(data)
        buffer[:size] = data
        return size

    def close(self) -> None:
        if not self.closed:
            self._response.close()
        super().close()


def _is_retryable(status: int) -> bool:
    return status in (408, 429) or status >= 500


class GoogleCloudStorage(Storage):
    """Storage backed by the Google Cloud Storage JSON API."""

    def __init__(
        self,
        token: str | None = None,
        *,
        session: requests.Session | None = None,
        config: StorageConfig | None = None,
        base_url: str = DEFAULT_BASE_URL,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session = session or requests.Session()
        if token is not None:
            self._session.headers["Authorization"] = f"Bearer {token}"
        self.config = config or StorageConfig()
        self._base_url = base_url.rstrip("/")
        self._sleep = sleep
        self._clock = clock

    def _object_url(self, bucket: str, name: str) -> str:
        return f"{self._base_url}/storage/v1/b/{quote(bucket, safe='')}/o/{quote(name, safe='')}"

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        """Send a request, retrying transient failures until the retry timeout."""
        cfg = self.config
        deadline = self._clock() + cfg.retry_timeout
        delay = cfg.initial_retry_delay
        while True:
            try:
                response = self._session.request(method, url, **kwargs)
            except requests.RequestException as exc:
                failure = StorageError(f"{method} {url} failed: {exc}")
            else:
                if not _is_retryable(response.status_code):
                    return response
                failure = StorageError(
                    f"{method} {url} failed with status {response.status_code}: "
                    f"{response.text[:200]}",
                    response.status_code,
                )
                response.close()
            remaining = deadline - self._clock()
            if remaining <= 0:
                raise failure
            self._sleep(min(delay, remaining))
            delay = min(delay * cfg.retry_multiplier, cfg.max_retry_delay)

    @staticmethod
    def _check(response: requests.Response, action: str, ok: tuple[int, ...] = (200,)) -> None:
        if response.status_code not in ok:
            raise StorageError(
                f"failed to {action}: status {response.status_code}: {response.text[:200]}",
                response.status_code,
            )

    def upload_object(self, bucket: str, name: str, contents: bytes, **kwargs: Any) -> None:
        """Gzip and upload an object.

        Keyword arguments are those of ``make_upload_config``. Unless
        ``allow_overwrite`` is set, the upload fails if the object exists.
        """
        cfg = make_upload_config(len(contents), **kwargs)
        data = gzip.compress(contents, mtime=0)

        resource: dict[str, Any] = {"name": name, "cacheControl": cfg.cache_control}
        # A gzip object is described either by its real type plus a gzip
        # encoding, or by a gzip type and no encoding at all.
        if cfg.content_type:
            resource["contentType"] = cfg.content_type
            resource["contentEncoding"] = "gzip"
        else:
            resource["contentType"] = "application/gzip"
        if cfg.metadata is not None:
            resource["metadata"] = dict(cfg.metadata)

        params = {} if cfg.allow_overwrite else {"ifGenerationMatch": "0"}
        url = f"{self._base_url}/upload/storage/v1/b/{quote(bucket, safe='')}/o"

        if cfg.chunk_size <= 0 or len(data) <= cfg.chunk_size:
            self._upload_multipart(url, params, resource, data)
        else:
            chunk = -(-cfg.chunk_size // _CHUNK_ALIGNMENT) * _CHUNK_ALIGNMENT
            self._upload_resumable(url, params, resource, data, chunk)

    def _upload_multipart(
        self, url: str, params: dict[str, str], resource: dict[str, Any], data: bytes
    ) -> None:
        boundary = uuid.uuid4().hex
        body = b"".join(
            [
                f"--{boundary}\r\nContent-Type: application/json; charset=UTF-8\r\n\r\n".encode(),
                json.dumps(resource).encode(),
                f"\r\n--{boundary}\r\nContent-Type: {resource['contentType']}\r\n\r\n".encode(),
                data,
                f"\r\n--{boundary}--\r\n".encode(),
            ]
        )
        response = self._request(
            "POST",
            url,
            params={"uploadType": "multipart", **params},
            data=body,
            headers={"Content-Type": f"multipart/related; boundary={boundary}"},
        )
        self._check(response, "write data")

    def _upload_resumable(
        self,
        url: str,
        params: dict[str, str],
        resource: dict[str, Any],
        data: bytes,
        chunk_size: int,
    ) -> None:
        response = self._request(
            "POST",
            url,
            params={"uploadType": "resumable", **params},
            json=resource,
            headers={"X-Upload-Content-Type": resource["contentType"]},
        )
        self._check(response, "start upload")
        session_url = response.headers.get("Location")
        if not session_url:
            raise StorageError("failed to start upload: no upload session returned")

        total = len(data)
        for start in range(0, total, chunk_size):
            piece = data[start : start + chunk_size]
            end = start + len(piece) - 1
            response = self._request(
                "PUT",
                session_url,
                data=piece,
                headers={"Content-Range": f"bytes {start}-{end}/{total}"},
            )
            last = end == total - 1
            self._check(response, "write data", (200, 201) if last else (308,))

    def download_object(self, bucket: str, name: str) -> BinaryIO:
        """Open an object for reading; the caller must close the stream."""
        response = self._request(
            "GET", self._object_url(bucket, name), params={"alt": "media"}, stream=True
        )
        if response.status_code != 200:
            try:
                self._check(response, "get google cloud storage reader")
            finally:
                response.close()
        return io.BufferedReader(_ResponseReader(response))  # type: ignore[return-value]

    def object_metadata(self, bucket: str, name: str) -> dict[str, str]:
        """Return the custom metadata of an object."""
        response = self._request("GET", self._object_url(bucket, name))
        self._check(response, "get object metadata")
        return dict(response.json().get("metadata") or {})

    def delete_object(self, bucket: str, name: str) -> None:
        """Delete an object; a missing object is not an error."""
        response = self._request("DELETE", self._object_url(bucket, name))
        if response.status_code == 404:
            return
        self._check(response, "delete object", (200, 204))

    def objects_with_name(self, bucket: str, filename: str) -> list[str]:
        """Return the ``gs://`` URIs of objects whose names end with ``filename``."""
        url = f"{self._base_url}/storage/v1/b/{quote(bucket, safe='')}/o"
        uris: list[str] = []
        page_token: str | None = None
        while True:
            params = {"pageToken": page_token} if page_token else {}
            response = self._request("GET", url, params=params)
            self._check(response, f"list bucket contents of {bucket!r}")
            listing = response.json()
            uris.extend(
                f"gs://{bucket}/{item['name']}"
                for item in listing.get("items", [])
                if item["name"].endswith(filename)
            )
            page_token = listing.get("nextPageToken")
            if not page_token:
                return uris