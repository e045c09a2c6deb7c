"""Target resolution against a file's current bytes.

Every operation is re-resolved from scratch: stored spans are hints until the
resolved text hashes to the caller's precondition. The result of resolving
one operation is a ``ResolvedView``: the text the edit consumes, the span it
consumes, and the anchor the conflict detector groups it under.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from functools import cached_property
from pathlib import Path

from editplane.changeset.models import (
    CROSS_FILE_MOVE_OPS,
    SAME_FILE_MOVE_OPS,
    FileEndTarget,
    FileStartTarget,
    LineTarget,
    NodeTarget,
    Operation,
    ResolvedTarget,
    Span,
    op_new_text,
)
from editplane.config.constants import UTF8_BOM
from editplane.core.errors import (
    AmbiguousTargetError,
    InvalidRequestError,
    IOFailureError,
    PreconditionFailedError,
    TargetMissingError,
)
from editplane.core.hashing import hash_bytes, hash_text
from editplane.hashline.anchors import SourceLine, resolve_line, split_lines
from editplane.providers.base import Handle

FILE_ANCHOR_KIND = "file"
LINE_ANCHOR_KIND = "line"


@dataclass
class SourceFile:
    """Snapshot of one file's bytes; always valid UTF-8."""

    path: Path
    data: bytes

    @classmethod
    def from_bytes(cls, path: Path, data: bytes) -> SourceFile:
        try:
            data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise IOFailureError.not_utf8(str(path), e) from e
        return cls(path=path, data=data)

    @cached_property
    def lines(self) -> list[SourceLine]:
        return split_lines(self.data)

    @cached_property
    def file_hash(self) -> str:
        return hash_bytes(self.data)

    @property
    def content_start(self) -> int:
        return len(UTF8_BOM) if self.data.startswith(UTF8_BOM) else 0

    def text_at(self, span: Span) -> str:
        return self.data[span.start : span.end].decode("utf-8")

    def verify_file_hash(self, expected: str) -> None:
        if self.file_hash != expected:
            raise PreconditionFailedError.hash_mismatch(expected, self.file_hash)


@dataclass(frozen=True)
class ResolvedView:
    expected_hash: str
    old_text: str
    matched_span: Span
    anchor_kind: str
    anchor_span: Span
    anchor_identity: str | None = None
    move_insert_at: int | None = None


@dataclass(frozen=True)
class MatchedChange:
    """One operation resolved against current bytes."""

    index: int
    operation: Operation
    view: ResolvedView

    @property
    def op_type(self) -> str:
        return self.operation.op.type

    @property
    def new_text(self) -> str:
        return op_new_text(self.operation.op)


class HandleIndex:
    """Lookup tables over a file's handles."""

    def __init__(self, handles: list[Handle]) -> None:
        self.handles = handles
        self._by_identity: dict[str, list[Handle]] = defaultdict(list)
        self._by_kind_span: dict[tuple[str, int, int], list[Handle]] = defaultdict(list)
        for handle in handles:
            self._by_identity[handle.identity].append(handle)
            self._by_kind_span[(handle.kind, handle.span.start, handle.span.end)].append(handle)

    def by_identity(self, identity: str) -> list[Handle]:
        return list(self._by_identity.get(identity, ()))

    def by_kind_and_span(self, kind: str, span: Span) -> list[Handle]:
        return list(self._by_kind_span.get((kind, span.start, span.end), ()))

    def by_kind_and_hash(self, kind: str, expected_hash: str) -> list[Handle]:
        return [h for h in self.handles if h.kind == kind and h.expected_old_hash == expected_hash]


# =============================================================================
# Node targets
# =============================================================================


def _validate_span_hint(hint: Span, identity: str) -> None:
    if hint.start > hint.end:
        raise InvalidRequestError.because(
            f"Invalid span_hint {hint} for target '{identity}': start must be <= end"
        )
    if hint.start == hint.end:
        raise InvalidRequestError.because(
            f"Invalid span_hint {hint} for target '{identity}': zero-length spans are not supported"
        )


def _verify_precondition(handle: Handle, expected_hash: str) -> Handle:
    if handle.expected_old_hash != expected_hash:
        raise PreconditionFailedError.hash_mismatch(expected_hash, handle.expected_old_hash)
    return handle


def _unique_kind_hash_candidate(
    file: str, index: HandleIndex, target: NodeTarget
) -> Handle | None:
    candidates = index.by_kind_and_hash(target.kind, target.expected_old_hash)
    if len(candidates) > 1:
        raise AmbiguousTargetError.for_identity(target.identity, file, len(candidates))
    return candidates[0] if candidates else None


def resolve_node(file: str, index: HandleIndex, target: NodeTarget) -> Handle:
    """Locate a node target among the current handles.

    Identity is tried first, then kind, then the span hint. When identity has
    drifted (the node's text changed but another node of the same kind still
    hashes to the precondition) a unique kind+hash candidate wins.

    Raises:
        InvalidRequestError: Malformed or contradicting span_hint.
        PreconditionFailedError: The located node no longer hashes to expected_old_hash.
        TargetMissingError: Nothing matches.
        AmbiguousTargetError: Several candidates remain.
    """
    identity, hint = target.identity, target.span_hint
    if hint is not None:
        _validate_span_hint(hint, identity)

    by_identity = index.by_identity(identity)
    if not by_identity:
        fallback = _unique_kind_hash_candidate(file, index, target)
        if fallback is not None:
            return fallback
        if hint is not None:
            stale = index.by_kind_and_span(target.kind, hint)
            if len(stale) == 1:
                raise PreconditionFailedError.hash_mismatch(
                    target.expected_old_hash, stale[0].expected_old_hash
                )
            if len(stale) > 1:
                raise AmbiguousTargetError.for_identity(identity, file, len(stale))
        raise TargetMissingError.for_identity(identity, file)

    by_kind = [h for h in by_identity if h.kind == target.kind]
    if not by_kind:
        raise TargetMissingError.for_identity(identity, file)

    if len(by_kind) == 1:
        only = by_kind[0]
        if hint is not None and only.span != hint:
            fallback = _unique_kind_hash_candidate(file, index, target)
            if fallback is not None:
                return fallback
            raise InvalidRequestError.because(
                f"Provided span_hint {hint} does not match resolved target span "
                f"{only.span} for '{identity}'"
            )
        return _verify_precondition(only, target.expected_old_hash)

    narrowed = [h for h in by_kind if h.span == hint] if hint is not None else []
    if len(narrowed) == 1:
        return _verify_precondition(narrowed[0], target.expected_old_hash)

    fallback = _unique_kind_hash_candidate(file, index, target)
    if fallback is not None:
        return fallback
    count = len(by_kind) if not narrowed else len(narrowed)
    raise AmbiguousTargetError.for_identity(identity, file, count)


# =============================================================================
# Edit views
# =============================================================================


def _point(offset: int) -> Span:
    return Span(start=offset, end=offset)


def _resolve_line_range(source: SourceFile, target: LineTarget) -> tuple[SourceLine, SourceLine]:
    start = resolve_line(target.anchor, source.lines)
    end = resolve_line(target.end_anchor, source.lines) if target.end_anchor else start
    if end.number < start.number:
        raise InvalidRequestError.because(
            f"Invalid line target: end line {end.number} must be >= start line {start.number}"
        )
    return start, end


@dataclass(frozen=True)
class DestinationPoint:
    """Where moved text lands, and the anchor the landing is grouped under."""

    offset: int
    anchor_kind: str
    anchor_span: Span


def resolve_destination(
    source: SourceFile, index: HandleIndex, destination: ResolvedTarget, *, before: bool
) -> DestinationPoint:
    """Resolve a move destination to a zero-width landing point in ``source``."""
    if isinstance(destination, NodeTarget):
        handle = resolve_node(str(source.path), index, destination)
        offset = handle.span.start if before else handle.span.end
        return DestinationPoint(offset, handle.kind, handle.span)
    if isinstance(destination, FileStartTarget | FileEndTarget):
        source.verify_file_hash(destination.expected_file_hash)
        offset = source.content_start if isinstance(destination, FileStartTarget) else len(
            source.data
        )
        return DestinationPoint(offset, FILE_ANCHOR_KIND, _point(offset))
    if destination.end_anchor is not None:
        raise InvalidRequestError.because(
            "Line destination target for move does not support end_anchor"
        )
    line = resolve_line(destination.anchor, source.lines)
    return DestinationPoint(
        line.start if before else line.end,
        LINE_ANCHOR_KIND,
        Span(start=line.start, end=line.end),
    )


def _node_view(op_type: str, handle: Handle, expected_hash: str) -> ResolvedView:
    if op_type == "insert_before":
        old_text, matched = "", _point(handle.span.start)
    elif op_type == "insert_after":
        old_text, matched = "", _point(handle.span.end)
    else:
        old_text, matched = handle.text, handle.span
    return ResolvedView(
        expected_hash=expected_hash,
        old_text=old_text,
        matched_span=matched,
        anchor_kind=handle.kind,
        anchor_span=handle.span,
        anchor_identity=handle.identity,
    )


def resolve_operation(
    source: SourceFile, index: HandleIndex, position: int, operation: Operation
) -> ResolvedView:
    """Resolve one operation of ``source`` to the span it consumes."""
    target, op = operation.target, operation.op
    file = str(source.path)

    if isinstance(target, NodeTarget):
        handle = resolve_node(file, index, target)
        if op.type in SAME_FILE_MOVE_OPS:
            destination = op.destination  # type: ignore[union-attr]
            landing = resolve_destination(
                source, index, destination, before=op.type == "move_before"
            )
            return ResolvedView(
                expected_hash=target.expected_old_hash,
                old_text=handle.text,
                matched_span=handle.span,
                anchor_kind=handle.kind,
                anchor_span=handle.span,
                anchor_identity=handle.identity,
                move_insert_at=landing.offset,
            )
        return _node_view(op.type, handle, target.expected_old_hash)

    if isinstance(target, FileStartTarget | FileEndTarget):
        source.verify_file_hash(target.expected_file_hash)
        offset = source.content_start if isinstance(target, FileStartTarget) else len(source.data)
        return ResolvedView(
            expected_hash=target.expected_file_hash,
            old_text="",
            matched_span=_point(offset),
            anchor_kind=FILE_ANCHOR_KIND,
            anchor_span=_point(offset),
        )

    if isinstance(target, LineTarget):
        start, end = _resolve_line_range(source, target)
        anchor_span = Span(start=start.start, end=start.end)
        if op.type == "replace":
            matched = Span(start=start.start, end=end.end)
            old_text = source.text_at(matched)
            return ResolvedView(
                expected_hash=hash_text(old_text),
                old_text=old_text,
                matched_span=matched,
                anchor_kind=LINE_ANCHOR_KIND,
                anchor_span=anchor_span,
            )
        return ResolvedView(
            expected_hash=start.hash,
            old_text="",
            matched_span=_point(start.end),
            anchor_kind=LINE_ANCHOR_KIND,
            anchor_span=anchor_span,
        )

    raise InvalidRequestError.because(
        f"Operation {position} target type '{target.type}' is not resolvable"
    )


def requires_handles(operations: list[Operation]) -> bool:
    """Whether any target (or move destination) needs a structure parse."""
    for operation in operations:
        if operation.op.type == "move":
            continue
        if isinstance(operation.target, NodeTarget):
            return True
        destination = getattr(operation.op, "destination", None)
        if isinstance(destination, NodeTarget) and operation.op.type not in CROSS_FILE_MOVE_OPS:
            return True
    return False


def resolve_file_operations(
    source: SourceFile, index: HandleIndex, operations: list[Operation]
) -> list[MatchedChange]:
    """Resolve every content operation of one file; whole-file moves are skipped."""
    return [
        MatchedChange(position, operation, resolve_operation(source, index, position, operation))
        for position, operation in enumerate(operations)
        if operation.op.type != "move"
    ]
