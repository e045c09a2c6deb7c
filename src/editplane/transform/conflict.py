"""Conflict detection and byte splicing for one file's resolved edits.

Two passes guard every file. Edits sharing an anchor may not mix rewrites
with inserts, and the effective byte ranges of all edits (including the
landing point of a same-file move) may not overlap or touch a zero-width
insert. Both passes walk edits in a canonical order so that a conflicting
batch reports the same message however its operations were ordered.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from editplane.changeset.models import INSERT_OPS, REWRITE_OPS, SAME_FILE_MOVE_OPS, Span
from editplane.core.errors import InvalidRequestError, PreconditionFailedError
from editplane.core.hashing import hash_bytes, hash_text
from editplane.transform.resolve import MatchedChange


@dataclass(frozen=True)
class IncomingInsert:
    """Text landing in this file from a cross-file move in another file."""

    index: int
    offset: int
    text: str
    anchor_kind: str
    anchor_span: Span
    source_file: str


@dataclass(frozen=True)
class Replacement:
    """One splice: bytes ``[start, end)`` must still read ``old_text``."""

    index: int
    expected_hash: str
    old_text: str
    start: int
    end: int
    new_text: str


def _overlap_error(first: Span, second: Span) -> InvalidRequestError:
    return InvalidRequestError.because(
        f"Overlapping operations are not supported: {first} conflicts with {second}"
    )


def _spans_conflict(first: Span, second: Span) -> bool:
    """``first`` sorts before ``second``; touching counts when either is a point."""
    if first.end > second.start:
        return True
    return first.end == second.start and (first.is_empty or second.is_empty)


# =============================================================================
# Conflict detection
# =============================================================================


def _check_anchor_groups(matched: list[MatchedChange], incoming: list[IncomingInsert]) -> None:
    rewrites: set[tuple[str, int, int]] = set()
    inserts: set[tuple[str, int, int]] = set()
    for change in matched:
        view = change.view
        key = (view.anchor_kind, view.anchor_span.start, view.anchor_span.end)
        if change.op_type in REWRITE_OPS:
            rewrites.add(key)
        elif change.op_type in INSERT_OPS:
            inserts.add(key)
    for insert in incoming:
        inserts.add((insert.anchor_kind, insert.anchor_span.start, insert.anchor_span.end))

    mixed = sorted(rewrites & inserts)
    if mixed:
        kind, start, end = mixed[0]
        raise InvalidRequestError.because(
            "Conflicting operations on the same anchor are not supported: "
            f"anchor '{kind}' [{start}, {end}) mixes rewrite and insert operations"
        )


def validate_change_conflicts(
    matched: list[MatchedChange], incoming: list[IncomingInsert] | None = None
) -> None:
    """Reject anchor-level and byte-level conflicts among one file's edits.

    Raises:
        InvalidRequestError: Mixed rewrite/insert on one anchor, or overlapping
            effective spans.
    """
    incoming = incoming or []
    _check_anchor_groups(matched, incoming)

    effects: list[tuple[int, int, int]] = []
    for change in matched:
        span = change.view.matched_span
        effects.append((span.start, span.end, change.index))
        if change.view.move_insert_at is not None:
            at = change.view.move_insert_at
            effects.append((at, at, change.index))
    for insert in incoming:
        effects.append((insert.offset, insert.offset, insert.index))
    effects.sort()

    for (s1, e1, _), (s2, e2, _) in zip(effects, effects[1:], strict=False):
        first, second = Span(start=s1, end=e1), Span(start=s2, end=e2)
        if _spans_conflict(first, second):
            raise _overlap_error(first, second)


# =============================================================================
# Replacements
# =============================================================================


def matched_changes_to_replacements(
    matched: list[MatchedChange], incoming: list[IncomingInsert] | None = None
) -> list[Replacement]:
    """Lower resolved edits to byte splices; a same-file move yields two."""
    empty_hash = hash_text("")
    replacements: list[Replacement] = []
    for change in matched:
        view = change.view
        replacements.append(
            Replacement(
                index=change.index,
                expected_hash=view.expected_hash,
                old_text=view.old_text,
                start=view.matched_span.start,
                end=view.matched_span.end,
                new_text=change.new_text,
            )
        )
        if change.op_type in SAME_FILE_MOVE_OPS:
            if view.move_insert_at is None:
                raise InvalidRequestError.because(
                    f"Operation {change.index} uses same-file move, "
                    "but destination offset was not resolved"
                )
            replacements.append(
                Replacement(
                    index=change.index,
                    expected_hash=empty_hash,
                    old_text="",
                    start=view.move_insert_at,
                    end=view.move_insert_at,
                    new_text=view.old_text,
                )
            )
    for insert in incoming or []:
        replacements.append(
            Replacement(
                index=insert.index,
                expected_hash=empty_hash,
                old_text="",
                start=insert.offset,
                end=insert.offset,
                new_text=insert.text,
            )
        )
    return replacements


def _sort_key(replacement: Replacement) -> tuple[int, int, int]:
    return (replacement.start, replacement.end, replacement.index)


def ensure_non_overlapping(replacements: list[Replacement]) -> None:
    """``replacements`` must already be sorted by (start, end, index)."""
    for first, second in zip(replacements, replacements[1:], strict=False):
        a = Span(start=first.start, end=first.end)
        b = Span(start=second.start, end=second.end)
        if _spans_conflict(a, b):
            raise _overlap_error(a, b)


def _is_char_boundary(data: bytes, offset: int) -> bool:
    if offset == 0 or offset == len(data):
        return True
    if offset > len(data):
        return False
    return not 0x80 <= data[offset] <= 0xBF


def apply_replacements(path: Path, data: bytes, replacements: list[Replacement]) -> bytes:
    """Splice ``replacements`` into ``data`` from the highest offset down.

    Every span is re-read before it is replaced; text that no longer matches
    raises ``PreconditionFailedError`` instead of being overwritten.
    """
    ordered = sorted(replacements, key=_sort_key)
    ensure_non_overlapping(ordered)

    buffer = bytearray(data)
    for replacement in reversed(ordered):
        start, end = replacement.start, replacement.end
        if not (
            start <= end
            and _is_char_boundary(data, start)
            and _is_char_boundary(data, end)
        ):
            raise InvalidRequestError.because(
                f"Operation {replacement.index} matched span [{start}, {end}) is not a valid "
                f"UTF-8 boundary range for file '{path}'"
            )
        current = bytes(buffer[start:end])
        if current != replacement.old_text.encode("utf-8"):
            raise PreconditionFailedError.hash_mismatch(
                replacement.expected_hash, hash_bytes(current)
            )
        buffer[start:end] = replacement.new_text.encode("utf-8")
    return bytes(buffer)
