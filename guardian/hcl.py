"""A small reader for the HCL syntax used by terraform configuration files."""

from __future__ import annotations

import re
import textwrap
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

# Block types allowed at the top level of a terraform file and their labels.
ROOT_SCHEMA = MappingProxyType(
    {
        "terraform": (),
        "locals": (),
        "variable": ("name",),
        "output": ("name",),
        "provider": ("name",),
        "resource": ("type", "name"),
        "data": ("type", "name"),
        "module": ("name",),
    }
)

# Block types allowed inside a ``terraform`` block and their labels.
TERRAFORM_SCHEMA = MappingProxyType({"backend": ("type",), "required_providers": ()})

# Attributes read from ``module`` and ``resource`` blocks.
MODULE_ATTRIBUTES = ("source", "version", "providers")
RESOURCE_ATTRIBUTES = ("provider",)


class HclParseError(ValueError):
    """Raised when text is not valid HCL or a value is not a literal."""


class _ScanError(Exception):
    def __init__(self, message: str, index: int) -> None:
        super().__init__(message)
        self.index = index


_IDENT = re.compile(r"[A-Za-z_][A-Za-z0-9_-]*")
_HEREDOC = re.compile(r"<<(-?)([A-Za-z_][A-Za-z0-9_-]*)[ \t]*\r?\n")
_NUMBER = re.compile(r"-?[0-9]+(\.[0-9]+)?([eE][+-]?[0-9]+)?")
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", '"': '"', "\\": "\\"}
_CLOSERS = {"(": ")", "[": "]", "{": "}"}
_HEX = set("0123456789abcdefABCDEF")


def _scan_string(text: str, start: int) -> int:
    """Return the index just past the quoted string starting at ``start``."""
    i = start + 1
    while i < len(text):
        c = text[i]
        if c == "\\":
            i += 2
        elif c == '"':
            return i + 1
        elif c == "\n":
            raise _ScanError("unterminated string", start)
        elif text.startswith(("$${", "%%{"), i):
            i += 3
        elif text.startswith(("${", "%{"), i):
            i = _scan_template(text, i + 2)
        else:
            i += 1
    raise _ScanError("unterminated string", start)


def _scan_template(text: str, start: int) -> int:
    depth = 1
    i = start
    while i < len(text):
        c = text[i]
        if c == '"':
            i = _scan_string(text, i)
            continue
        if c == "{":
            depth += 1
        elif c == "}":
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    raise _ScanError("unterminated template interpolation", start)


def _scan_heredoc(text: str, match: re.Match[str]) -> int:
    """Return the index of the end of the heredoc's closing marker line."""
    marker = match.group(2)
    i = match.end()
    while True:
        nl = text.find("\n", i)
        line = text[i:] if nl == -1 else text[i:nl]
        if line.strip() == marker:
            return len(text) if nl == -1 else nl
        if nl == -1:
            raise _ScanError(f"unterminated heredoc {marker}", match.start())
        i = nl + 1


def _decode_string(raw: str) -> str:
    out = []
    i, end = 1, len(raw) - 1
    while i < end:
        c = raw[i]
        if c == "\\":
            esc = raw[i + 1] if i + 1 < end else ""
            if esc in _ESCAPES:
                out.append(_ESCAPES[esc])
                i += 2
            elif esc and esc in "uU":
                width = 4 if esc == "u" else 8
                digits = raw[i + 2 : i + 2 + width]
                if len(digits) != width or not set(digits) <= _HEX:
                    raise HclParseError("invalid unicode escape sequence")
                out.append(chr(int(digits, 16)))
                i += 2 + width
            else:
                raise HclParseError(f"invalid escape sequence \\{esc}")
        elif raw.startswith(("$${", "%%{"), i):
            out.append(raw[i + 1 : i + 3])
            i += 3
        elif raw.startswith(("${", "%{"), i):
            raise HclParseError("string contains a template expression")
        else:
            out.append(c)
            i += 1
    return "".join(out)


def _heredoc_value(expr: str, match: re.Match[str]) -> str | None:
    lines = expr[match.end() :].split("\n")
    if lines[-1].strip() != match.group(2):
        return None
    content = "".join(line + "\n" for line in lines[:-1])
    if match.group(1):
        content = textwrap.dedent(content)
    stripped = content.replace("$${", "").replace("%%{", "")
    if "${" in stripped or "%{" in stripped:
        raise HclParseError("heredoc contains a template expression")
    return content.replace("$${", "${").replace("%%{", "%{")


def _literal(expr: str) -> Any:
    if expr.startswith('"'):
        try:
            end = _scan_string(expr, 0)
        except _ScanError as exc:
            raise HclParseError(str(exc)) from exc
        if end == len(expr):
            return _decode_string(expr)
    elif (match := _HEREDOC.match(expr)) is not None:
        value = _heredoc_value(expr, match)
        if value is not None:
            return value
    elif _NUMBER.fullmatch(expr):
        if any(ch in expr for ch in ".eE"):
            return float(expr)
        return int(expr)
    elif expr in ("true", "false"):
        return expr == "true"
    elif expr == "null":
        return None
    raise HclParseError(f"not a literal value: {expr}")


@dataclass(frozen=True)
class Attribute:
    """An attribute assignment; ``expression`` holds its source text."""

    name: str
    expression: str
    line: int

    @property
    def value(self) -> Any:
        """The literal value of the expression.

        Raises ``HclParseError`` when the expression is not a literal string,
        number, bool or null.
        """
        return _literal(self.expression)


@dataclass
class Body:
    """The attributes and nested blocks of a file or block."""

    attributes: dict[str, Attribute] = field(default_factory=dict)
    blocks: list[Block] = field(default_factory=list)

    def blocks_of_type(self, block_type: str) -> list[Block]:
        """Return the nested blocks of the given type, in source order."""
        return [block for block in self.blocks if block.type == block_type]

    def attribute(self, name: str) -> Attribute | None:
        """Return the named attribute, or None when it is absent."""
        return self.attributes.get(name)


@dataclass
class Block:
    """A block with its type, labels and body."""

    type: str
    labels: tuple[str, ...]
    body: Body
    line: int


class _Parser:
    def __init__(self, text: str, filename: str) -> None:
        self.text = text
        self.pos = 0
        self.filename = filename

    def line_at(self, index: int) -> int:
        return self.text.count("\n", 0, index) + 1

    def error(self, message: str, index: int | None = None) -> HclParseError:
        where = self.pos if index is None else index
        return HclParseError(f"{self.filename}:{self.line_at(where)}: {message}")

    def peek(self, offset: int = 0) -> str:
        i = self.pos + offset
        return self.text[i] if i < len(self.text) else ""

    def skip_comment(self) -> bool:
        text, pos = self.text, self.pos
        if text.startswith(("#", "//"), pos):
            nl = text.find("\n", pos)
            self.pos = len(text) if nl == -1 else nl
            return True
        if text.startswith("/*", pos):
            end = text.find("*/", pos + 2)
            if end == -1:
                raise self.error("unterminated comment")
            self.pos = end + 2
            return True
        return False

    def skip_space(self, newlines: bool) -> None:
        while self.pos < len(self.text):
            c = self.text[self.pos]
            if c in " \t\r" or (newlines and c == "\n"):
                self.pos += 1
            elif not self.skip_comment():
                break

    def identifier(self) -> str:
        match = _IDENT.match(self.text, self.pos)
        if match is None:
            raise self.error(f"expected attribute or block, found {self.peek()!r}")
        self.pos = match.end()
        return match.group()

    def string_literal(self) -> str:
        try:
            end = _scan_string(self.text, self.pos)
        except _ScanError as exc:
            raise self.error(str(exc), exc.index) from exc
        raw = self.text[self.pos : end]
        self.pos = end
        try:
            return _decode_string(raw)
        except HclParseError as exc:
            raise self.error(str(exc)) from exc

    def expression(self) -> str:
        text = self.text
        start = self.pos
        pieces: list[str] = []
        segment = self.pos
        stack: list[str] = []
        try:
            while self.pos < len(text):
                c = text[self.pos]
                if c == '"':
                    self.pos = _scan_string(text, self.pos)
                elif c == "<" and (match := _HEREDOC.match(text, self.pos)):
                    self.pos = _scan_heredoc(text, match)
                elif text.startswith(("#", "//", "/*"), self.pos):
                    pieces.append(text[segment : self.pos])
                    self.skip_comment()
                    segment = self.pos
                elif c in _CLOSERS:
                    stack.append(_CLOSERS[c])
                    self.pos += 1
                elif c in ")]}":
                    if not stack:
                        if c == "}":
                            break
                        raise self.error(f"unexpected {c!r}")
                    if stack.pop() != c:
                        raise self.error(f"mismatched {c!r}")
                    self.pos += 1
                elif c == "\n" and not stack:
                    break
                else:
                    self.pos += 1
        except _ScanError as exc:
            raise self.error(str(exc), exc.index) from exc
        if stack:
            raise self.error("unclosed bracket in expression", start)
        pieces.append(text[segment : self.pos])
        expr = "".join(pieces).strip()
        if not expr:
            raise self.error("expected expression", start)
        return expr

    def end_of_item(self) -> None:
        self.skip_space(False)
        if self.peek() not in ("\n", "}", ""):
            raise self.error("expected a newline after the item")

    def body(self, nested: bool) -> Body:
        result = Body()
        while True:
            self.skip_space(True)
            if self.pos >= len(self.text):
                if nested:
                    raise self.error("unclosed block")
                return result
            if self.peek() == "}":
                if not nested:
                    raise self.error("unexpected '}'")
                self.pos += 1
                return result

            start = self.pos
            name = self.identifier()
            self.skip_space(False)

            if self.peek() == "=" and self.peek(1) != "=":
                self.pos += 1
                self.skip_space(False)
                expr = self.expression()
                if name in result.attributes:
                    raise self.error(f"duplicate argument {name!r}", start)
                result.attributes[name] = Attribute(name, expr, self.line_at(start))
                self.end_of_item()
                continue

            labels = []
            while self.peek() != "{":
                if self.peek() == '"':
                    labels.append(self.string_literal())
                elif _IDENT.match(self.text, self.pos):
                    labels.append(self.identifier())
                else:
                    raise self.error("expected a block label or '{'")
                self.skip_space(False)
            self.pos += 1
            inner = self.body(True)
            result.blocks.append(Block(name, tuple(labels), inner, self.line_at(start)))
            self.end_of_item()


def parse(text: str | bytes, filename: str = "<input>") -> Body:
    """Parse HCL source into its top-level body."""
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise HclParseError(f"{filename}: not valid UTF-8") from exc
    return _Parser(text.removeprefix("\ufeff"), filename).body(False)