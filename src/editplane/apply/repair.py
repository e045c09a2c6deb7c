"""``apply --repair``: remap stale line anchors inside a changeset.

Only line anchors are repaired: operation targets of type ``line`` and line
destinations of moves. A file's anchors are remapped only when every stale
anchor in that file has exactly one current line with the same hash. The
previews of remapped line operations are then recomputed from the current
bytes, keeping whichever old-state form (``old_text`` or ``old_hash`` and
``old_len``) the caller used.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from editplane.changeset.models import (
    CROSS_FILE_MOVE_OPS,
    Changeset,
    LineTarget,
    Operation,
    Span,
)
from editplane.core.errors import IOFailureError
from editplane.core.hashing import hash_text
from editplane.core.logging import get_logger
from editplane.hashline.anchors import format_line_ref, resolve_line
from editplane.hashline.check import AnchorRequest, check_anchors
from editplane.hashline.repair import hashline_failure
from editplane.transform.resolve import SourceFile

log = get_logger("apply.repair")


@dataclass
class _AnchorSlot:
    """One anchor field of one operation, and how to overwrite it."""

    operation_index: int
    anchor: str
    assign: Callable[[str], None]

    def remap(self, anchor: str) -> None:
        self.assign(anchor)
        self.anchor = anchor


def _target_slots(position: int, target: LineTarget) -> list[_AnchorSlot]:
    def set_anchor(value: str) -> None:
        target.anchor = value

    def set_end_anchor(value: str) -> None:
        target.end_anchor = value

    slots = [_AnchorSlot(position, target.anchor, set_anchor)]
    if target.end_anchor is not None:
        slots.append(_AnchorSlot(position, target.end_anchor, set_end_anchor))
    return slots


def _collect_slots(changeset: Changeset) -> dict[Path, list[_AnchorSlot]]:
    slots: dict[Path, list[_AnchorSlot]] = defaultdict(list)
    for change in changeset.files:
        for position, operation in enumerate(change.operations):
            if operation.op.type == "move":
                continue
            if isinstance(operation.target, LineTarget):
                slots[Path(change.file)].extend(_target_slots(position, operation.target))
            destination = getattr(operation.op, "destination", None)
            if isinstance(destination, LineTarget):
                owner = (
                    operation.op.destination_file  # type: ignore[union-attr]
                    if operation.op.type in CROSS_FILE_MOVE_OPS
                    else change.file
                )
                slots[Path(owner)].extend(_target_slots(position, destination))
    return slots


def _read_source(path: Path) -> SourceFile:
    try:
        data = path.read_bytes()
    except OSError as e:
        raise IOFailureError.from_os_error(str(path), e) from e
    return SourceFile.from_bytes(path, data)


def _remap_file(source: SourceFile, slots: list[_AnchorSlot]) -> bool:
    """Rewrite stale anchors in place. Returns whether anything changed."""
    requests = [AnchorRequest(slot.operation_index, slot.anchor) for slot in slots]
    check = check_anchors(source.lines, requests)
    if check.ok:
        return False
    if not check.fully_remappable:
        raise hashline_failure(check, repairing=True)

    remaps: dict[tuple[int, str], str] = {}
    for mismatch in check.mismatches:
        target = mismatch.remaps[0]
        remaps[(mismatch.edit_index, mismatch.anchor)] = format_line_ref(target.line, target.hash)
    for slot in slots:
        remapped = remaps.get((slot.operation_index, slot.anchor))
        if remapped is not None:
            slot.remap(remapped)

    recheck = check_anchors(
        source.lines, [AnchorRequest(slot.operation_index, slot.anchor) for slot in slots]
    )
    if not recheck.ok:
        raise hashline_failure(recheck, repairing=True)
    log.debug("hashline_repaired", file=str(source.path), remapped=len(check.mismatches))
    return True


def _refresh_line_preview(source: SourceFile, operation: Operation) -> None:
    target = operation.target
    assert isinstance(target, LineTarget)
    preview = operation.preview
    start = resolve_line(target.anchor, source.lines)
    if operation.op.type != "replace":
        preview.matched_span = Span(start=start.end, end=start.end)
        return

    end = resolve_line(target.end_anchor, source.lines) if target.end_anchor else start
    matched = Span(start=start.start, end=end.end)
    old_text = source.text_at(matched)
    preview.matched_span = matched
    if preview.old_text is not None:
        preview.old_text = old_text
    else:
        preview.old_hash = hash_text(old_text)
        preview.old_len = len(old_text.encode("utf-8"))


def repair_line_anchors(changeset: Changeset) -> Changeset:
    """Return a copy of ``changeset`` with its stale line anchors remapped.

    Raises:
        PreconditionFailedError: Some stale anchor has no candidate line, or
            several. The message carries the full check report.
        IOFailureError: A file holding line anchors cannot be read.
    """
    repaired = changeset.model_copy(deep=True)
    for path, slots in _collect_slots(repaired).items():
        source = _read_source(path)
        if not _remap_file(source, slots):
            continue
        for change in repaired.files:
            if Path(change.file) != path:
                continue
            for operation in change.operations:
                if operation.op.type != "move" and isinstance(operation.target, LineTarget):
                    _refresh_line_preview(source, operation)
    return repaired
