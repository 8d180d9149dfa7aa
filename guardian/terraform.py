"""Inspect terraform configuration: entrypoints, backends and module usage."""

from __future__ import annotations

import logging
import os
import re
import stat
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field

from .hcl import ROOT_SCHEMA, TERRAFORM_SCHEMA, Block, Body, HclParseError, parse
from .util import path_eval_abs

logger = logging.getLogger(__name__)

# Terraform commands that need ``terraform init`` to have run first.
INIT_REQUIRED_COMMANDS = frozenset(
    {
        "validate",
        "plan",
        "apply",
        "destroy",
        "console",
        "graph",
        "import",
        "output",
        "providers",
        "refresh",
        "show",
        "state",
        "taint",
        "untaint",
        "workspace",
        "force-unlock",
    }
)

_TILDE_CHANGED = re.compile(r"^([\t ]*)([~])", re.MULTILINE)
_SWAP_LEADING_WHITESPACE = re.compile(
    r"^([\t ]*)((-(/\+)*)|(\+(/-)*)|(!))", re.MULTILINE
)


class TerraformError(Exception):
    """Raised when terraform configuration cannot be read or resolved."""


@dataclass(frozen=True)
class TerraformEntrypoint:
    """A directory holding a terraform file with a backend block."""

    path: str
    backend_file: str


@dataclass
class TerraformBackendConfig:
    """The GCS settings of a terraform backend block."""

    gcs_bucket: str | None = None
    prefix: str | None = None


@dataclass
class ModuleUsageGraph:
    """Which modules each entrypoint uses, at any depth, and the reverse."""

    entrypoint_to_modules: dict[str, set[str]] = field(default_factory=dict)
    modules_to_entrypoints: dict[str, set[str]] = field(default_factory=dict)


def _walk(root: str, prune: Callable[[str], bool] | None) -> Iterator[str]:
    """Yield file paths under ``root`` in lexical order without following links."""
    mode = os.lstat(root).st_mode
    if not stat.S_ISDIR(mode):
        yield root
        return
    yield from _walk_dir(root, prune)


def _walk_dir(path: str, prune: Callable[[str], bool] | None) -> Iterator[str]:
    if prune is not None and prune(path):
        return
    with os.scandir(path) as it:
        entries = sorted(it, key=lambda entry: entry.name)
    for entry in entries:
        if entry.is_dir(follow_symlinks=False):
            yield from _walk_dir(entry.path, prune)
        else:
            yield entry.path


def _tf_files(root: str, prune: Callable[[str], bool] | None = None) -> list[str]:
    try:
        return [p for p in _walk(root, prune) if os.path.splitext(p)[1] == ".tf"]
    except OSError as exc:
        raise TerraformError(f"failed to walk directory {root}: {exc}") from exc


def _absolute(path: str) -> str:
    try:
        return path_eval_abs(path)
    except OSError as exc:
        raise TerraformError(f"failed to get absolute path for {path}: {exc}") from exc


def _read(path: str) -> bytes:
    try:
        with open(path, "rb") as fh:
            return fh.read()
    except OSError as exc:
        raise TerraformError(f"failed to read file: {exc}") from exc


def _parse(contents: str | bytes, filename: str) -> Body:
    try:
        return parse(contents, filename)
    except HclParseError as exc:
        raise TerraformError(f"failed to parse file {filename}: {exc}") from exc


def _schema_blocks(body: Body, schema: Mapping[str, tuple[str, ...]], kind: str) -> list[Block]:
    return [b for b in body.blocks_of_type(kind) if len(b.labels) == len(schema[kind])]


def _backend_blocks(body: Body) -> list[Block]:
    for tf_block in _schema_blocks(body, ROOT_SCHEMA, "terraform"):
        backends = _schema_blocks(tf_block.body, TERRAFORM_SCHEMA, "backend")
        if backends:
            return backends
    return []


def _string_attribute(body: Body, name: str) -> str | None:
    attr = body.attribute(name)
    if attr is None:
        return None
    try:
        value = attr.value
    except HclParseError:
        return None
    return value if isinstance(value, str) else None


def has_backend_config(path: str) -> bool:
    """Return whether the terraform file at ``path`` has a backend block."""
    try:
        with open(path, "rb") as fh:
            contents = fh.read()
    except OSError as exc:
        raise TerraformError(f"failed to read file: {path}") from exc
    return bool(_backend_blocks(_parse(contents, path)))


def extract_backend_config(path: str) -> TerraformBackendConfig | None:
    """Read the backend configuration from a terraform file."""
    return parse_backend_config(_read(path), path)


def parse_backend_config(contents: str | bytes, filename: str) -> TerraformBackendConfig | None:
    """Return the first backend block's settings, or None without a backend."""
    backends = _backend_blocks(_parse(contents, filename))
    if not backends:
        return None
    body = backends[0].body
    return TerraformBackendConfig(
        gcs_bucket=_string_attribute(body, "bucket"),
        prefix=_string_attribute(body, "prefix"),
    )


def extract_modules(path: str) -> set[str]:
    """Return the module sources used in a terraform file."""
    return parse_modules(_read(path), path)


def parse_modules(contents: str | bytes, filename: str) -> set[str]:
    """Return the ``source`` of every module block in the given contents."""
    sources = set()
    for block in _schema_blocks(_parse(contents, filename), ROOT_SCHEMA, "module"):
        attr = block.body.attribute("source")
        if attr is None:
            raise TerraformError(f"{filename}: module {block.labels[0]!r} has no source")
        try:
            value = attr.value
        except HclParseError as exc:
            raise TerraformError(f"{filename}: invalid module source: {exc}") from exc
        if not isinstance(value, str):
            raise TerraformError(f"{filename}: module source is not a string")
        sources.add(value)
    return sources


def find_modules(root_dir: str, skip_unresolvable_modules: bool = False) -> dict[str, set[str]]:
    """Map each directory holding terraform files to the module directories it uses."""
    matches: dict[str, set[str]] = {}
    for path in _tf_files(root_dir):
        abs_path = _absolute(path)
        directory = os.path.dirname(abs_path)
        module_paths = matches.setdefault(directory, set())
        for source in extract_modules(path):
            relative = os.path.normpath(f"{directory}{os.sep}{source}")
            try:
                resolved = path_eval_abs(relative)
            except OSError as exc:
                if skip_unresolvable_modules:
                    logger.debug(
                        "skipping unresolvable module %s used in %s", relative, abs_path
                    )
                    continue
                raise TerraformError(
                    f"failed to get absolute path for directory {relative}: {exc}"
                ) from exc
            module_paths.add(resolved)
    return matches


def get_entrypoint_directories(
    root_dir: str, max_depth: int | None = None
) -> list[TerraformEntrypoint]:
    """Find directories with a terraform backend block, sorted by path."""
    start = root_dir.count(os.sep)
    prune = None
    if max_depth is not None:
        prune = lambda p: p.count(os.sep) - start > max_depth  # noqa: E731

    matches: dict[str, TerraformEntrypoint] = {}
    for path in _tf_files(root_dir, prune):
        if not has_backend_config(path):
            continue
        abs_path = _absolute(path)
        matches[abs_path] = TerraformEntrypoint(
            path=os.path.dirname(abs_path), backend_file=abs_path
        )
    return sorted(matches.values(), key=lambda e: e.path)


def _collect_modules(start: str, usages: Mapping[str, set[str]], found: set[str]) -> None:
    pending = [start]
    while pending:
        for module in usages.get(pending.pop(), ()):
            if module not in found:
                found.add(module)
                pending.append(module)


def module_usage(
    root_dir: str, max_depth: int | None = None, skip_unresolvable_modules: bool = False
) -> ModuleUsageGraph:
    """Work out which modules every entrypoint uses and which entrypoints use each module."""
    entrypoints = get_entrypoint_directories(root_dir, max_depth)
    usages = find_modules(root_dir, skip_unresolvable_modules)

    graph = ModuleUsageGraph()
    for entrypoint in entrypoints:
        found = graph.entrypoint_to_modules.setdefault(entrypoint.path, set())
        _collect_modules(entrypoint.path, usages, found)

    for entrypoint, modules in graph.entrypoint_to_modules.items():
        for module in modules:
            graph.modules_to_entrypoints.setdefault(module, set()).add(entrypoint)
    return graph


def format_output_for_github_diff(content: str) -> str:
    """Rewrite terraform plan output so GitHub diff highlighting applies."""
    content = _TILDE_CHANGED.sub(r"\1!", content)
    return _SWAP_LEADING_WHITESPACE.sub(r"\2\1", content)