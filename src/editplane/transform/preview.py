"""Preview verification.

A preview is the caller's statement of what an edit will do. It is checked
field by field against the independently resolved edit; any divergence is an
``invalid_request`` naming the operation index and the offending field.
"""

from __future__ import annotations

from editplane.changeset.models import NodeTarget, Operation, Span
from editplane.core.errors import InvalidRequestError
from editplane.core.hashing import hash_text
from editplane.transform.resolve import MatchedChange

_SPAN_REWRITE_OPS = frozenset(
    {"replace", "delete", "move_before", "move_after", "move_to_before", "move_to_after"}
)


def _invalid(index: int, detail: str) -> InvalidRequestError:
    return InvalidRequestError.because(f"Operation {index} {detail}", operation_index=index)


def _expected_span_from_hint(operation: Operation) -> Span | None:
    target = operation.target
    if not isinstance(target, NodeTarget) or target.span_hint is None:
        return None
    hint = target.span_hint
    op_type = operation.op.type
    if op_type in _SPAN_REWRITE_OPS:
        return hint
    if op_type == "insert_before":
        return Span(start=hint.start, end=hint.start)
    if op_type == "insert_after":
        return Span(start=hint.end, end=hint.end)
    return None


def _allows_stale_span(operation: Operation) -> bool:
    """A rewrite whose preview echoes its span_hint may trail a resolved drift."""
    if operation.op.type not in _SPAN_REWRITE_OPS:
        return False
    target = operation.target
    if not isinstance(target, NodeTarget) or target.span_hint is None:
        return False
    return operation.preview.matched_span == target.span_hint


def _verify_old_state(change: MatchedChange) -> None:
    preview = change.operation.preview
    index = change.index
    if preview.old_text is not None and preview.has_compact_old_state:
        raise _invalid(
            index,
            "preview cannot include both full old_text and compact old_hash/old_len fields",
        )
    if preview.old_text is not None:
        if preview.old_text != change.view.old_text:
            raise _invalid(index, "preview.old_text does not match resolved target text")
        return
    if preview.old_hash is None or preview.old_len is None:
        raise _invalid(
            index, "preview must include either old_text or compact old_hash/old_len fields"
        )
    if preview.old_hash != hash_text(change.view.old_text):
        raise _invalid(index, "preview.old_hash does not match resolved target text hash")
    if preview.old_len != len(change.view.old_text.encode("utf-8")):
        raise _invalid(index, "preview.old_len does not match resolved target text length")


def verify_preview(change: MatchedChange) -> None:
    """Compare one operation's preview with its resolved edit.

    Checks run in a fixed order: span_hint consistency, old state, matched
    span, move payload, new text.
    """
    operation = change.operation
    preview = operation.preview
    index = change.index

    expected = _expected_span_from_hint(operation)
    if expected is not None and preview.matched_span != expected:
        raise _invalid(index, "preview.matched_span must be consistent with target span_hint")

    _verify_old_state(change)

    if preview.matched_span != change.view.matched_span and not _allows_stale_span(operation):
        raise _invalid(
            index,
            "preview.matched_span does not match resolved target span; span_hint may be stale",
        )
    if preview.move is not None:
        raise _invalid(index, "preview.move is only allowed for move operations")
    if preview.new_text != change.new_text:
        raise _invalid(index, "preview.new_text does not match op payload")


def verify_previews(matched: list[MatchedChange]) -> None:
    for change in matched:
        verify_preview(change)
