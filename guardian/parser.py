"""Extract IAM memberships from terraform state files held in cloud storage."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from .iam import AssetIAM, ResourceType
from .storage import GoogleCloudStorage, Storage, StorageError, split_object_uri

logger = logging.getLogger(__name__)

# Used when no match for the asset parent (project, folder, org) is found.
UNKNOWN_PARENT_ID = "UNKNOWN_PARENT_ID"

# Largest amount of a state file that is read.
DEFAULT_STATE_FILE_SIZE_LIMIT = 512 * 1024 * 1024

# Present in a state file that holds no resources.
_NO_RESOURCES_SYNTAX = '"resources": [],'

_STATE_FILE_NAME = "default.tfstate"
_INTEGER = re.compile(r"[+-]?[0-9]+")
_INT64_MIN, _INT64_MAX = -(2**63), 2**63 - 1


class ParserError(Exception):
    """Raised when state files cannot be listed, fetched or decoded."""


@dataclass(frozen=True)
class HierarchyNode:
    """A folder, project or organization in the resource hierarchy."""

    id: str
    name: str
    node_type: str
    parent_id: str = ""
    parent_type: str = ""


def _is_int64(value: str) -> bool:
    return _INTEGER.fullmatch(value) is not None and _INT64_MIN <= int(value) <= _INT64_MAX


def _assets_by_name(assets: Mapping[str, HierarchyNode]) -> dict[str, HierarchyNode]:
    return {node.name: node for node in assets.values()}


def _string(value: Any, what: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ParserError(f"failed to decode terraform state: {what} is not a string")
    return value


def _list(value: Any, what: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ParserError(f"failed to decode terraform state: {what} is not a list")
    return value


def _object(value: Any, what: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ParserError(f"failed to decode terraform state: {what} is not an object")
    return value


@dataclass(frozen=True)
class _Attributes:
    members: tuple[str, ...]
    member: str
    folder: str
    project: str
    role: str


@dataclass(frozen=True)
class _Resource:
    type: str
    instances: tuple[_Attributes, ...]


def _decode_attributes(instance: Any) -> _Attributes:
    attrs = _object(_object(instance, "instance").get("attributes"), "attributes")
    return _Attributes(
        members=tuple(_string(m, "member") for m in _list(attrs.get("members"), "members")),
        member=_string(attrs.get("member"), "member"),
        folder=_string(attrs.get("folder"), "folder"),
        project=_string(attrs.get("project"), "project"),
        role=_string(attrs.get("role"), "role"),
    )


def _decode_state(text: str) -> list[_Resource]:
    try:
        state, _ = json.JSONDecoder().raw_decode(text.lstrip())
    except json.JSONDecodeError as exc:
        raise ParserError(f"failed to decode terraform state: {exc}") from exc
    resources = []
    for raw in _list(_object(state, "state").get("resources"), "resources"):
        resource = _object(raw, "resource")
        resources.append(
            _Resource(
                type=_string(resource.get("type"), "type"),
                instances=tuple(
                    _decode_attributes(i) for i in _list(resource.get("instances"), "instances")
                ),
            )
        )
    return resources


class TerraformParser:
    """Finds terraform state files and reads the IAM memberships they manage."""

    def __init__(self, gcs: Storage | None = None, organization_id: str = "") -> None:
        self.gcs = gcs if gcs is not None else GoogleCloudStorage()
        self.organization_id = organization_id
        self._assets_by_id: dict[str, HierarchyNode] = {}
        self._folders_by_name: dict[str, HierarchyNode] = {}
        self._projects_by_name: dict[str, HierarchyNode] = {}

    def set_assets(
        self, folders: Mapping[str, HierarchyNode], projects: Mapping[str, HierarchyNode]
    ) -> None:
        """Set the known folders and projects, each keyed by ID, used for lookups."""
        self._assets_by_id = {**folders, **projects}
        self._folders_by_name = _assets_by_name(folders)
        self._projects_by_name = _assets_by_name(projects)

    def state_file_uris(self, buckets: Iterable[str]) -> list[str]:
        """Return the URIs of all terraform state files in the given buckets."""
        uris: list[str] = []
        for bucket in buckets:
            try:
                uris.extend(self.gcs.objects_with_name(bucket, _STATE_FILE_NAME))
            except (StorageError, OSError) as exc:
                raise ParserError(
                    f"failed to determine state files in GCS bucket {bucket}: {exc}"
                ) from exc
        return uris

    def _read_state(self, uri: str) -> str:
        try:
            bucket, name = split_object_uri(uri)
        except StorageError as exc:
            raise ParserError(f"failed to parse GCS URI: {exc}") from exc
        try:
            reader = self.gcs.download_object(bucket, name)
        except (StorageError, OSError) as exc:
            raise ParserError(f"failed to download gcs URI for terraform: {exc}") from exc
        try:
            with reader:
                data = reader.read(DEFAULT_STATE_FILE_SIZE_LIMIT)
        except (StorageError, OSError) as exc:
            raise ParserError(f"failed to decode terraform state: {exc}") from exc
        return data.decode("utf-8", errors="replace")

    def state_without_resources(self, uri: str) -> bool:
        """Return whether the state file at ``uri`` holds no resources."""
        return _NO_RESOURCES_SYNTAX in self._read_state(uri)

    def process_states(self, uris: Iterable[str]) -> list[AssetIAM]:
        """Return the IAM memberships, bindings and policies in the given state files."""
        iams: list[AssetIAM] = []
        for uri in uris:
            iams.extend(self._state_iam(_decode_state(self._read_state(uri))))
        return iams

    def _state_iam(self, resources: Iterable[_Resource]) -> list[AssetIAM]:
        iams: list[AssetIAM] = []
        for resource in resources:
            kind = resource.type
            if "google_organization_iam_binding" in kind:
                iams.extend(self._bindings(resource.instances, self._organization))
            elif "google_folder_iam_binding" in kind:
                iams.extend(self._bindings(resource.instances, self._folder))
            elif "google_project_iam_binding" in kind:
                iams.extend(self._bindings(resource.instances, self._project))

            if "google_organization_iam_member" in kind:
                iams.extend(self._members(resource.instances, self._organization))
            elif "google_folder_iam_member" in kind:
                iams.extend(self._members(resource.instances, self._folder))
            elif "google_project_iam_member" in kind:
                iams.extend(self._members(resource.instances, self._project))
        return iams

    @staticmethod
    def _bindings(instances, locate) -> list[AssetIAM]:
        iams = []
        for attrs in instances:
            for member in attrs.members:
                resource_id, resource_type = locate(attrs)
                iams.append(AssetIAM(resource_id, resource_type, attrs.role, member))
        return iams

    @staticmethod
    def _members(instances, locate) -> list[AssetIAM]:
        iams = []
        for attrs in instances:
            resource_id, resource_type = locate(attrs)
            iams.append(AssetIAM(resource_id, resource_type, attrs.role, attrs.member))
        return iams

    def _organization(self, attrs: _Attributes) -> tuple[str, str]:
        return self.organization_id, ResourceType.ORGANIZATION.value

    def _folder(self, attrs: _Attributes) -> tuple[str, str]:
        folder_id = attrs.folder.removeprefix("folders/")
        found = self._resolve(folder_id)
        if found[1] == ResourceType.UNKNOWN.value:
            logger.warning("failed to locate GCP folder - is this folder deleted? folder=%s", folder_id)
        return found

    def _project(self, attrs: _Attributes) -> tuple[str, str]:
        found = self._resolve(attrs.project)
        if found[1] == ResourceType.UNKNOWN.value:
            logger.warning(
                "failed to locate GCP project - is this project deleted? project=%s", attrs.project
            )
        return found

    def _resolve(self, asset_id: str) -> tuple[str, str]:
        asset = self._find(asset_id)
        if asset is None:
            return asset_id, ResourceType.UNKNOWN.value
        return asset.id, asset.node_type

    def _find(self, asset_id: str) -> HierarchyNode | None:
        if _is_int64(asset_id):
            return self._assets_by_id.get(asset_id)
        return self._folders_by_name.get(asset_id) or self._projects_by_name.get(asset_id)