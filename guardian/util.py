"""Small path and collection helpers."""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any, TypeVar

K = TypeVar("K")


def sorted_map_keys(m: Mapping[K, Any]) -> list[K]:
    """Return the keys of a mapping in sorted order."""
    return sorted(m)


def child_path(base: str, target: str) -> str:
    """Return ``target`` relative to ``base``.

    Returns an empty string when both resolve to the same directory and
    raises ``ValueError`` when ``target`` is not inside ``base``.
    """
    abs_base = os.path.abspath(base)
    abs_target = os.path.abspath(target)

    if abs_base.strip() == abs_target.strip():
        return ""

    if not abs_target.startswith(abs_base):
        raise ValueError(f"{abs_target} is not a child of {abs_base}")

    return abs_target[len(abs_base):].removeprefix(os.sep)


def path_eval_abs(path: str) -> str:
    """Return the absolute path after resolving symlinks.

    Raises ``FileNotFoundError`` when the path does not exist.
    """
    return os.path.realpath(path or os.curdir, strict=True)