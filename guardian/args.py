"""Build command-line arguments for terraform subcommands."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ApplyOptions:
    """Options for ``terraform apply``."""

    file: str | None = None
    auto_approve: bool | None = None
    compact_warnings: bool | None = None
    lock: bool | None = None
    lock_timeout: str | None = None
    input: bool | None = None
    no_color: bool | None = None


@dataclass
class FormatOptions:
    """Options for ``terraform fmt``."""

    check: bool | None = None
    diff: bool | None = None
    list: bool | None = None
    no_color: bool | None = None
    recursive: bool | None = None
    write: bool | None = None


@dataclass
class InitOptions:
    """Options for ``terraform init``."""

    backend: bool | None = None
    input: bool | None = None
    no_color: bool | None = None
    lock: bool | None = None
    lock_timeout: str | None = None
    lockfile: str | None = None


@dataclass
class PlanOptions:
    """Options for ``terraform plan``."""

    compact_warnings: bool | None = None
    detailed_exitcode: bool | None = None
    no_color: bool | None = None
    input: bool | None = None
    lock: bool | None = None
    lock_timeout: str | None = None
    out: str | None = None


@dataclass
class ShowOptions:
    """Options for ``terraform show``."""

    file: str | None = None
    no_color: bool | None = None
    json: bool | None = None


@dataclass
class ValidateOptions:
    """Options for ``terraform validate``."""

    no_color: bool | None = None
    json: bool | None = None


def apply_args(opts: ApplyOptions | None) -> list[str]:
    """Return the arguments for ``terraform apply``."""
    if opts is None:
        return []
    args = []
    if opts.auto_approve:
        args.append("-auto-approve")
    if opts.compact_warnings:
        args.append("-compact-warnings")
    if opts.lock is not None:
        args.append(f"-lock={str(opts.lock).lower()}")
    if opts.lock_timeout is not None:
        args.append(f"-lock-timeout={opts.lock_timeout}")
    if opts.input is not None:
        args.append(f"-input={str(opts.input).lower()}")
    if opts.no_color:
        args.append("-no-color")
    if opts.file is not None:
        args.append(opts.file)
    return args


def format_args(opts: FormatOptions | None) -> list[str]:
    """Return the arguments for ``terraform fmt``."""
    if opts is None:
        return []
    args = []
    if opts.check:
        args.append("-check")
    if opts.diff:
        args.append("-diff")
    if opts.list is not None:
        args.append(f"-list={str(opts.list).lower()}")
    if opts.no_color:
        args.append("-no-color")
    if opts.recursive:
        args.append("-recursive")
    if opts.write is not None:
        args.append(f"-write={str(opts.write).lower()}")
    return args


def init_args(opts: InitOptions | None) -> list[str]:
    """Return the arguments for ``terraform init``."""
    if opts is None:
        return []
    args = []
    if opts.backend is not None:
        args.append(f"-backend={str(opts.backend).lower()}")
    if opts.input is not None:
        args.append(f"-input={str(opts.input).lower()}")
    if opts.no_color:
        args.append("-no-color")
    if opts.lock is not None:
        args.append(f"-lock={str(opts.lock).lower()}")
    if opts.lock_timeout is not None:
        args.append(f"-lock-timeout={opts.lock_timeout}")
    if opts.lockfile is not None:
        args.append(f"-lockfile={opts.lockfile}")
    return args


def plan_args(opts: PlanOptions | None) -> list[str]:
    """Return the arguments for ``terraform plan``."""
    if opts is None:
        return []
    args = []
    if opts.compact_warnings:
        args.append("-compact-warnings")
    if opts.detailed_exitcode:
        args.append("-detailed-exitcode")
    if opts.no_color:
        args.append("-no-color")
    if opts.input is not None:
        args.append(f"-input={str(opts.input).lower()}")
    if opts.lock is not None:
        args.append(f"-lock={str(opts.lock).lower()}")
    if opts.lock_timeout is not None:
        args.append(f"-lock-timeout={opts.lock_timeout}")
    if opts.out is not None:
        args.append(f"-out={opts.out}")
    return args


def show_args(opts: ShowOptions | None) -> list[str]:
    """Return the arguments for ``terraform show``."""
    if opts is None:
        return []
    args = []
    if opts.no_color:
        args.append("-no-color")
    if opts.json:
        args.append("-json")
    if opts.file is not None:
        args.append(opts.file)
    return args


def validate_args(opts: ValidateOptions | None) -> list[str]:
    """Return the arguments for ``terraform validate``."""
    if opts is None:
        return []
    args = []
    if opts.no_color:
        args.append("-no-color")
    if opts.json:
        args.append("-json")
    return args