"""Heuristic fallback provider for files no grammar claims.

Recognizes function and class headers with a handful of regexes and finds
the end of each block either by indentation (Python-like) or by brace
matching (C-like). It never fails on syntax; it only requires UTF-8.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from editplane.core.errors import ParseFailureError
from editplane.providers.base import Handle, StructureProvider


class Boundary(Enum):
    INDENTATION = "indentation"
    BRACES = "braces"
    HEADER_LINE = "header_line"


@dataclass(frozen=True)
class HeaderPattern:
    kind: str
    regex: re.Pattern[bytes]
    boundary: Boundary


PATTERNS: tuple[HeaderPattern, ...] = (
    HeaderPattern(
        "function_definition",
        re.compile(rb"^[ \t]*(?:async[ \t]+)?def[ \t]+(?P<name>[A-Za-z_]\w*)[ \t]*\(.*:[ \t]*$"),
        Boundary.INDENTATION,
    ),
    HeaderPattern(
        "class_definition",
        re.compile(rb"^[ \t]*class[ \t]+(?P<name>[A-Za-z_]\w*)[^{]*:[ \t]*$"),
        Boundary.INDENTATION,
    ),
    HeaderPattern(
        "function_definition",
        re.compile(
            rb"^[ \t]*(?:pub(?:\([^)]*\))?[ \t]+)?(?:const[ \t]+)?(?:async[ \t]+)?(?:unsafe[ \t]+)?"
            rb"fn[ \t]+(?P<name>[A-Za-z_]\w*)"
        ),
        Boundary.BRACES,
    ),
    HeaderPattern(
        "function_definition",
        re.compile(rb"^func[ \t]+(?:\([^)]*\)[ \t]*)?(?P<name>[A-Za-z_]\w*)"),
        Boundary.BRACES,
    ),
    HeaderPattern(
        "function_definition",
        re.compile(
            rb"^[ \t]*(?:export[ \t]+)?(?:default[ \t]+)?(?:async[ \t]+)?"
            rb"function\*?[ \t]+(?P<name>[A-Za-z_$][\w$]*)"
        ),
        Boundary.BRACES,
    ),
    HeaderPattern(
        "class_definition",
        re.compile(
            rb"^[ \t]*(?:export[ \t]+)?(?:default[ \t]+)?(?:abstract[ \t]+)?"
            rb"class[ \t]+(?P<name>[A-Za-z_$][\w$]*)[^:]*\{"
        ),
        Boundary.BRACES,
    ),
    HeaderPattern(
        "function_definition",
        re.compile(
            rb"^[ \t]*(?:export[ \t]+)?(?:const|let|var)[ \t]+(?P<name>[A-Za-z_$][\w$]*)"
            rb"[ \t]*=[ \t]*(?:async[ \t]+)?(?:\([^)]*\)|[A-Za-z_$][\w$]*)[ \t]*=>"
        ),
        Boundary.HEADER_LINE,
    ),
)


@dataclass(frozen=True)
class _Line:
    start: int  # byte offset of first content byte
    end: int  # byte offset after last content byte (terminator excluded)
    content: bytes

    @property
    def indent(self) -> int:
        return len(self.content) - len(self.content.lstrip(b" \t"))

    @property
    def is_blank(self) -> bool:
        return not self.content.strip()


def _split_lines(source: bytes) -> list[_Line]:
    lines: list[_Line] = []
    start = 0
    index = 0
    size = len(source)
    while index < size:
        byte = source[index]
        if byte == 0x0A or byte == 0x0D:
            lines.append(_Line(start, index, source[start:index]))
            if byte == 0x0D and index + 1 < size and source[index + 1] == 0x0A:
                index += 1
            index += 1
            start = index
        else:
            index += 1
    if start < size:
        lines.append(_Line(start, size, source[start:]))
    return lines


def _indentation_block_end(lines: list[_Line], header: int) -> int:
    header_indent = lines[header].indent
    end = lines[header].end
    for line in lines[header + 1 :]:
        if line.is_blank:
            continue
        if line.indent <= header_indent:
            break
        end = line.end
    return end


def _closes_on_line(source: bytes, index: int) -> bool:
    # Rust lifetimes ('a) open a single quote that never closes.
    newline = source.find(b"\n", index + 1)
    line_end = len(source) if newline == -1 else newline
    return source.find(b"'", index + 1, line_end) != -1


def _brace_block_end(source: bytes, start: int) -> int | None:
    """Offset just past the brace closing the first block opened at/after ``start``."""
    depth = 0
    index = start
    size = len(source)
    quote: int | None = None
    while index < size:
        byte = source[index]
        if quote is not None:
            if byte == 0x5C:  # backslash
                index += 2
                continue
            if byte == quote:
                quote = None
        elif byte in (0x22, 0x60) or (byte == 0x27 and _closes_on_line(source, index)):
            quote = byte
        elif source.startswith(b"//", index):
            newline = source.find(b"\n", index)
            if newline == -1:
                return None
            index = newline
            continue
        elif source.startswith(b"/*", index):
            close = source.find(b"*/", index + 2)
            if close == -1:
                return None
            index = close + 2
            continue
        elif byte == 0x7B:
            depth += 1
        elif byte == 0x7D:
            depth -= 1
            if depth == 0:
                return index + 1
            if depth < 0:
                return None
        index += 1
    return None


class FallbackProvider(StructureProvider):
    """Regex header scanner; claims every file."""

    name = "fallback"

    def supported_extensions(self) -> tuple[str, ...]:
        return ()

    def can_handle(self, path: Path) -> bool:  # noqa: ARG002
        return True

    def select(self, path: Path, source: bytes) -> list[Handle]:
        try:
            source.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseFailureError.from_provider(
                self.name, "Fallback provider requires UTF-8 text input"
            ) from e

        lines = _split_lines(source)
        handles: list[Handle] = []
        for index, line in enumerate(lines):
            for pattern in PATTERNS:
                match = pattern.regex.match(line.content)
                if match is None:
                    continue
                end = self._block_end(source, lines, index, pattern.boundary)
                if end is None:
                    continue
                start = line.start + line.indent
                handles.append(
                    Handle.from_parts(
                        path,
                        start,
                        end,
                        pattern.kind,
                        match.group("name").decode("utf-8"),
                        source[start:end].decode("utf-8"),
                    )
                )
                break
        return handles

    @staticmethod
    def _block_end(source: bytes, lines: list[_Line], index: int, boundary: Boundary) -> int | None:
        line = lines[index]
        if boundary is Boundary.INDENTATION:
            return _indentation_block_end(lines, index)
        if boundary is Boundary.BRACES:
            return _brace_block_end(source, line.start)
        brace = line.content.find(b"{")
        if brace != -1:
            return _brace_block_end(source, line.start + brace) or line.end
        return line.end
