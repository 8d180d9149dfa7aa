"""Read and prune IAM policies on projects, folders and organizations."""

from __future__ import annotations

import dataclasses
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import requests

from .retry import RetryableError, RetryConfig, with_retries

DEFAULT_BASE_URL = "https://cloudresourcemanager.googleapis.com"

# Any operation that affects conditional role bindings must use version 3.
_POLICY_VERSION = 3


class ResourceType(str, Enum):
    """The kind of resource an IAM membership is attached to."""

    ORGANIZATION = "Organization"
    FOLDER = "Folder"
    PROJECT = "Project"
    UNKNOWN = "Unknown"


@dataclass
class IAMCondition:
    """A condition attached to a role binding."""

    expression: str = ""
    title: str = ""
    description: str = ""
    location: str = ""

    def describe(self) -> str:
        """Return the comparable text form used to match conditions."""
        parts = [f"expression={self.expression}"]
        if self.title:
            parts.append(f"title={self.title}")
        if self.description:
            parts.append(f"description={self.description}")
        return ",".join(parts)


@dataclass
class AssetIAM:
    """A single member's role on a resource."""

    resource_id: str
    resource_type: str
    role: str
    member: str
    condition: IAMCondition | None = None


@dataclass
class Binding:
    """A role granted to a list of members, optionally under a condition."""

    role: str
    members: list[str] = field(default_factory=list)
    condition: IAMCondition | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class Policy:
    """An IAM policy; ``extra`` keeps fields this module does not interpret."""

    bindings: list[Binding] = field(default_factory=list)
    etag: str = ""
    version: int = 0
    extra: dict[str, Any] = field(default_factory=dict)


class IAMError(Exception):
    """Raised when an IAM request fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _condition_from_dict(data: Mapping[str, Any]) -> IAMCondition:
    return IAMCondition(
        expression=data.get("expression", ""),
        title=data.get("title", ""),
        description=data.get("description", ""),
        location=data.get("location", ""),
    )


def _condition_to_dict(condition: IAMCondition) -> dict[str, str]:
    out = {"expression": condition.expression}
    for key in ("title", "description", "location"):
        value = getattr(condition, key)
        if value:
            out[key] = value
    return out


def _binding_from_dict(data: Mapping[str, Any]) -> Binding:
    rest = dict(data)
    role = rest.pop("role", "")
    members = list(rest.pop("members", []))
    condition = rest.pop("condition", None)
    return Binding(
        role=role,
        members=members,
        condition=_condition_from_dict(condition) if condition is not None else None,
        extra=rest,
    )


def _binding_to_dict(binding: Binding) -> dict[str, Any]:
    out = dict(binding.extra)
    out["role"] = binding.role
    if binding.members:
        out["members"] = list(binding.members)
    if binding.condition is not None:
        out["condition"] = _condition_to_dict(binding.condition)
    return out


def policy_from_dict(data: Mapping[str, Any]) -> Policy:
    """Build a policy from its JSON representation."""
    rest = dict(data)
    bindings = [_binding_from_dict(b) for b in rest.pop("bindings", [])]
    etag = rest.pop("etag", "")
    version = rest.pop("version", 0)
    return Policy(bindings=bindings, etag=etag, version=version, extra=rest)


def policy_to_dict(policy: Policy) -> dict[str, Any]:
    """Return the JSON representation of a policy."""
    out = dict(policy.extra)
    if policy.bindings:
        out["bindings"] = [_binding_to_dict(b) for b in policy.bindings]
    if policy.etag:
        out["etag"] = policy.etag
    if policy.version:
        out["version"] = policy.version
    return out


def policy_to_asset_iam(resource_id: str, resource_type: str, policy: Policy) -> list[AssetIAM]:
    """Flatten a policy into one entry per member and role."""
    return [
        AssetIAM(
            resource_id=resource_id,
            resource_type=resource_type,
            role=binding.role,
            member=member,
        )
        for binding in policy.bindings
        for member in binding.members
    ]


def _conditions_match(a: IAMCondition | None, b: IAMCondition | None) -> bool:
    if a is None or b is None:
        return a is None and b is None
    return a.describe() == b.describe()


def remove_from_policy(policy: Policy, member: AssetIAM) -> Policy:
    """Return a copy of ``policy`` without the given membership.

    A binding left with no other member is dropped entirely.
    """
    bindings: list[Binding] = []
    for binding in policy.bindings:
        matches = (
            binding.role == member.role
            and member.member in binding.members
            and _conditions_match(member.condition, binding.condition)
        )
        if not matches:
            bindings.append(binding)
        elif len(binding.members) != 1:
            remaining = [m for m in binding.members if m != member.member]
            bindings.append(dataclasses.replace(binding, members=remaining))
    return dataclasses.replace(policy, bindings=bindings)


def _is_retryable(status: int | None) -> bool:
    # 409 signals a concurrent change, 412 a policy still propagating.
    return status is not None and (status in (409, 412) or status >= 500)


class IAMClient:
    """Client for IAM policies through the Cloud Resource Manager API."""

    def __init__(
        self,
        token: str | None = None,
        *,
        session: requests.Session | None = None,
        config: RetryConfig | None = None,
        base_url: str = DEFAULT_BASE_URL,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._session = session or requests.Session()
        if token is not None:
            self._session.headers["Authorization"] = f"Bearer {token}"
        self.config = config or RetryConfig()
        self._base_url = base_url.rstrip("/")
        self._sleep = sleep

    def _call(self, resource: str, action: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._base_url}/v3/{resource}:{action}"
        try:
            response = self._session.post(url, json=payload)
        except requests.RequestException as exc:
            raise IAMError(f"{action} on {resource} failed: {exc}") from exc
        if response.status_code != 200:
            raise IAMError(
                f"{action} on {resource} failed with status {response.status_code}: "
                f"{response.text[:200]}",
                response.status_code,
            )
        return response.json()

    def _get_policy(self, resource: str) -> Policy:
        try:
            data = self._call(
                resource,
                "getIamPolicy",
                {"options": {"requestedPolicyVersion": _POLICY_VERSION}},
            )
        except IAMError as exc:
            raise IAMError(
                f"failed to get iam policy for {resource}: {exc}", exc.status_code
            ) from exc
        return policy_from_dict(data)

    def _set_policy(self, resource: str, policy: Policy) -> None:
        try:
            self._call(resource, "setIamPolicy", {"policy": policy_to_dict(policy)})
        except IAMError as exc:
            raise IAMError(
                f"failed to set iam policy for {resource}: {exc}", exc.status_code
            ) from exc

    def _members(self, prefix: str, resource_id: str, resource_type: ResourceType) -> list[AssetIAM]:
        policy = self._get_policy(f"{prefix}/{resource_id}")
        return policy_to_asset_iam(resource_id, resource_type.value, policy)

    def _remove(self, prefix: str, kind: str, member: AssetIAM) -> None:
        resource = f"{prefix}/{member.resource_id}"

        def attempt() -> None:
            try:
                policy = self._get_policy(resource)
                self._set_policy(resource, remove_from_policy(policy, member))
            except IAMError as exc:
                if _is_retryable(exc.status_code):
                    raise RetryableError(exc) from exc
                raise

        try:
            with_retries(attempt, self.config, self._sleep)
        except IAMError as exc:
            raise IAMError(f"failed to remove {kind} IAM: {exc}", exc.status_code) from exc

    def project_iam(self, project_id: str) -> list[AssetIAM]:
        """Return every membership in the project's IAM policy."""
        return self._members("projects", project_id, ResourceType.PROJECT)

    def folder_iam(self, folder_id: str) -> list[AssetIAM]:
        """Return every membership in the folder's IAM policy."""
        return self._members("folders", folder_id, ResourceType.FOLDER)

    def organization_iam(self, organization_id: str) -> list[AssetIAM]:
        """Return every membership in the organization's IAM policy."""
        return self._members("organizations", organization_id, ResourceType.ORGANIZATION)

    def remove_project_iam(self, member: AssetIAM) -> None:
        """Remove the membership from its project's IAM policy."""
        self._remove("projects", "project", member)

    def remove_folder_iam(self, member: AssetIAM) -> None:
        """Remove the membership from its folder's IAM policy."""
        self._remove("folders", "folder", member)

    def remove_organization_iam(self, member: AssetIAM) -> None:
        """Remove the membership from its organization's IAM policy."""
        self._remove("organizations", "organization", member)