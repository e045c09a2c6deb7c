"""Line table and ``<line>:<hash>`` anchors.

Lines split on ``\\n``, ``\\r\\n`` and bare ``\\r``. Each line keeps its byte
range (with and without terminator) so callers can splice on bytes and leave
every untouched terminator exactly as it was.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from editplane.config.constants import LINE_HASH_HEX_LEN
from editplane.core.errors import InvalidRequestError, PreconditionFailedError
from editplane.core.hashing import compute_line_hash

_HEX_DIGITS = frozenset("0123456789abcdef")


@dataclass(frozen=True, slots=True)
class LineRef:
    line: int
    hash: str


@dataclass(frozen=True, slots=True)
class SourceLine:
    """One line of a file, 1-indexed."""

    number: int
    start: int
    content_end: int
    end: int  # includes the terminator
    content: str
    hash: str

    @property
    def has_terminator(self) -> bool:
        return self.end > self.content_end


def split_lines(data: bytes) -> list[SourceLine]:
    lines: list[SourceLine] = []
    size = len(data)
    start = 0
    index = 0
    while index < size:
        byte = data[index]
        if byte != 0x0A and byte != 0x0D:
            index += 1
            continue
        terminator_len = 2 if byte == 0x0D and index + 1 < size and data[index + 1] == 0x0A else 1
        lines.append(_make_line(data, len(lines) + 1, start, index, index + terminator_len))
        index += terminator_len
        start = index
    if start < size:
        lines.append(_make_line(data, len(lines) + 1, start, size, size))
    return lines


def _make_line(data: bytes, number: int, start: int, content_end: int, end: int) -> SourceLine:
    content = data[start:content_end].decode("utf-8")
    return SourceLine(number, start, content_end, end, content, compute_line_hash(content))


def format_line_ref(line: int, hash_: str) -> str:
    return f"{line}:{hash_}"


def parse_line_ref(value: str) -> LineRef:
    """Parse an anchor, tolerating a pasted ``|content`` display suffix."""
    raw = value.strip()
    head = raw.split("|", 1)[0].strip()
    line_raw, sep, hash_raw = head.partition(":")
    if not sep:
        raise InvalidRequestError.because(
            f"Invalid hashline anchor '{value}': expected format '<line>:<hex-hash>'"
        )
    line_raw = line_raw.strip()
    if not (line_raw.isascii() and line_raw.isdigit()):
        raise InvalidRequestError.because(
            f"Invalid hashline anchor '{value}': line number must be a positive integer"
        )
    line = int(line_raw)
    if line == 0:
        raise InvalidRequestError.because(
            f"Invalid hashline anchor '{value}': line number must be >= 1"
        )
    normalized = hash_raw.strip().lower()
    if len(normalized) != LINE_HASH_HEX_LEN:
        raise InvalidRequestError.because(
            f"Invalid hashline anchor '{value}': hash must be exactly {LINE_HASH_HEX_LEN} hex chars"
        )
    if not set(normalized) <= _HEX_DIGITS:
        raise InvalidRequestError.because(
            f"Invalid hashline anchor '{value}': hash must contain only hex characters"
        )
    return LineRef(line=line, hash=normalized)


def ensure_line_exists(anchor: str, line: int, line_count: int) -> None:
    if line < 1 or line > line_count:
        raise InvalidRequestError.because(
            f"Invalid hashline anchor '{anchor}': line {line} is out of range "
            f"for current file (1..={line_count})"
        )


def resolve_line(anchor: str, lines: list[SourceLine]) -> SourceLine:
    """Strictly resolve an anchor: the line must exist and still hash the same."""
    parsed = parse_line_ref(anchor)
    ensure_line_exists(anchor, parsed.line, len(lines))
    line = lines[parsed.line - 1]
    if line.hash != parsed.hash:
        raise PreconditionFailedError.hash_mismatch(parsed.hash, line.hash)
    return line


def show_lines(data: bytes) -> list[dict[str, Any]]:
    return [{"line": ln.number, "hash": ln.hash, "content": ln.content} for ln in split_lines(data)]


def format_hashed_lines(data: bytes) -> str:
    return "\n".join(f"{ln.number}:{ln.hash}|{ln.content}" for ln in split_lines(data))
