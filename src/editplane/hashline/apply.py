"""Apply hashline edits to file bytes.

Edits are checked with the same routine as ``hashline check``, resolved to
line ranges, checked for overlaps across the whole batch, and spliced from
the bottom of the file up. Untouched lines keep their exact terminators;
inserted lines use the file's dominant newline style.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from editplane.core.errors import InvalidRequestError
from editplane.hashline.anchors import SourceLine, ensure_line_exists, parse_line_ref, split_lines
from editplane.hashline.check import check_anchors
from editplane.hashline.edits import HashlineEdit, InsertAfter, ReplaceLines, SetLine, edit_anchors
from editplane.hashline.repair import expand_merges, hashline_failure, prepare_repair_edits


class ApplyMode(StrEnum):
    STRICT = "strict"
    REPAIR = "repair"


@dataclass
class ResolvedLineEdit:
    """An edit pinned to 1-indexed line numbers."""

    edit_index: int
    is_replace: bool
    start_line: int
    end_line: int  # equals start_line for inserts
    lines: list[str]

    @property
    def sort_key(self) -> int:
        return self.end_line if self.is_replace else self.start_line

    def conflicts_with(self, other: ResolvedLineEdit) -> bool:
        if self.is_replace and other.is_replace:
            return self.start_line <= other.end_line and other.start_line <= self.end_line
        if not self.is_replace and not other.is_replace:
            return self.start_line == other.start_line
        insert, rewrite = (other, self) if self.is_replace else (self, other)
        return max(rewrite.start_line - 1, 0) <= insert.start_line <= rewrite.end_line


@dataclass(frozen=True)
class HashlineApplyResult:
    content: bytes
    operations_total: int
    operations_applied: int
    mode: ApplyMode

    def changed_from(self, original: bytes) -> bool:
        return self.content != original


def split_text(text: str) -> list[str]:
    return text.replace("\r\n", "\n").split("\n")


def resolve_edits(lines: list[SourceLine], edits: list[HashlineEdit]) -> list[ResolvedLineEdit]:
    resolved: list[ResolvedLineEdit] = []
    count = len(lines)
    for index, edit in enumerate(edits):
        if isinstance(edit, SetLine):
            ref = parse_line_ref(edit.anchor)
            ensure_line_exists(edit.anchor, ref.line, count)
            replacement = split_text(edit.new_text)
            resolved.append(ResolvedLineEdit(index, True, ref.line, ref.line, replacement))
        elif isinstance(edit, ReplaceLines):
            start = parse_line_ref(edit.start_anchor)
            end = parse_line_ref(edit.end_anchor) if edit.end_anchor is not None else start
            ensure_line_exists(edit.start_anchor, start.line, count)
            ensure_line_exists(edit.end_anchor or edit.start_anchor, end.line, count)
            if end.line < start.line:
                raise InvalidRequestError.because(
                    f"Invalid replace_lines edit #{index}: end line {end.line} "
                    f"must be >= start line {start.line}"
                )
            replacement = split_text(edit.new_text) if edit.new_text else []
            resolved.append(ResolvedLineEdit(index, True, start.line, end.line, replacement))
        elif isinstance(edit, InsertAfter):
            ref = parse_line_ref(edit.anchor)
            ensure_line_exists(edit.anchor, ref.line, count)
            if not edit.text:
                raise InvalidRequestError.because(
                    f"Invalid insert_after edit #{index}: text must not be empty"
                )
            inserted = split_text(edit.text)
            resolved.append(ResolvedLineEdit(index, False, ref.line, ref.line, inserted))
        else:
            raise TypeError(f"Unknown hashline edit: {edit!r}")
    return resolved


def ensure_non_overlapping(resolved: list[ResolvedLineEdit]) -> None:
    for i, left in enumerate(resolved):
        for right in resolved[i + 1 :]:
            if left.conflicts_with(right):
                raise InvalidRequestError.because(
                    "Overlapping hashline edits are not allowed between "
                    f"edit #{left.edit_index} and edit #{right.edit_index}"
                )


def detect_newline(data: bytes) -> bytes:
    """Dominant newline: CRLF only when every break is CRLF, CR only when no LF exists."""
    crlf = data.count(b"\r\n")
    lone_lf = data.count(b"\n") - crlf
    lone_cr = data.count(b"\r") - crlf
    if crlf and not lone_lf and not lone_cr:
        return b"\r\n"
    if b"\r" in data and b"\n" not in data:
        return b"\r"
    return b"\n"


def _splice(data: bytes, lines: list[SourceLine], resolved: list[ResolvedLineEdit]) -> bytes:
    newline = detect_newline(data)
    records: list[list[bytes]] = [
        [data[ln.start : ln.content_end], data[ln.content_end : ln.end]] for ln in lines
    ]
    ordered = sorted(resolved, key=lambda e: (e.sort_key, e.edit_index), reverse=True)
    for edit in ordered:
        new_lines = [line.encode("utf-8") for line in edit.lines]
        if edit.is_replace:
            start, end = edit.start_line - 1, edit.end_line
            last_terminator = records[end - 1][1]
            if not new_lines:
                if end == len(records) and start > 0:
                    records[start - 1][1] = last_terminator
                del records[start:end]
                continue
            replacement = [[line, newline] for line in new_lines]
            replacement[-1][1] = last_terminator
            records[start:end] = replacement
        else:
            anchor = records[edit.start_line - 1]
            inserted = [[line, newline] for line in new_lines]
            if not anchor[1]:
                anchor[1] = newline
                inserted[-1][1] = b""
            records[edit.start_line : edit.start_line] = inserted
    return b"".join(content + terminator for content, terminator in records)


def apply_edits(
    data: bytes, edits: list[HashlineEdit], mode: ApplyMode = ApplyMode.STRICT
) -> HashlineApplyResult:
    """Check, resolve and splice ``edits`` into ``data``.

    Raises:
        InvalidRequestError: Malformed anchors, bad ranges or overlapping edits.
        PreconditionFailedError: Stale anchors (strict) or unrepairable anchors (repair).
    """
    lines = split_lines(data)
    prepared = prepare_repair_edits(lines, edits) if mode is ApplyMode.REPAIR else list(edits)
    check = check_anchors(lines, edit_anchors(prepared))
    if not check.ok:
        raise hashline_failure(check, repairing=mode is ApplyMode.REPAIR)

    resolved = resolve_edits(lines, prepared)
    if mode is ApplyMode.REPAIR:
        expand_merges(lines, resolved)
    ensure_non_overlapping(resolved)

    return HashlineApplyResult(
        content=_splice(data, lines, resolved),
        operations_total=len(prepared),
        operations_applied=len(prepared),
        mode=mode,
    )
