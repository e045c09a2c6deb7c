"""Build changesets whose previews match the files they edit.

``epl edit`` takes targets and ops without previews, resolves every target
against the current bytes exactly as apply will, and writes back a changeset
whose previews, canonical node targets and ``span_hint`` values are taken from
that resolution. The result passes preview verification unchanged as long as
the files are not modified in between.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from editplane.changeset.models import (
    Changeset,
    DeleteOp,
    EditRequest,
    FileChange,
    InsertAfterOp,
    InsertBeforeOp,
    NodeTarget,
    Operation,
    Preview,
    ReplaceOp,
    ResolvedTarget,
    Span,
    canonical_op,
    check_target_op_compatibility,
)
from editplane.core.errors import (
    AmbiguousTargetError,
    InvalidRequestError,
    IOFailureError,
    TargetMissingError,
)
from editplane.core.hashing import hash_text
from editplane.core.logging import get_logger
from editplane.providers.base import Handle, ProviderRegistry
from editplane.transform.conflict import validate_change_conflicts
from editplane.transform.resolve import (
    HandleIndex,
    ResolvedView,
    SourceFile,
    requires_handles,
    resolve_file_operations,
)

log = get_logger("transform.build")

_DRAFT_PREVIEW = Preview(old_text="", new_text="", matched_span=Span(start=0, end=0))

IDENTITY_OPS = {
    "replace": lambda text: ReplaceOp(type="replace", new_text=text),
    "delete": lambda _text: DeleteOp(type="delete"),
    "insert_before": lambda text: InsertBeforeOp(type="insert_before", new_text=text),
    "insert_after": lambda text: InsertAfterOp(type="insert_after", new_text=text),
}


@dataclass(frozen=True)
class EditInstruction:
    """A resolved target and a canonical op, before any preview exists."""

    target: ResolvedTarget
    op: Any


def read_source(path: Path) -> SourceFile:
    try:
        data = path.read_bytes()
    except OSError as e:
        raise IOFailureError.from_os_error(str(path), e) from e
    return SourceFile.from_bytes(path, data)


def build_preview(view: ResolvedView, new_text: str, *, verbose: bool = False) -> Preview:
    """Preview for a resolved edit: full ``old_text`` when verbose, else hash and length."""
    if verbose:
        return Preview(old_text=view.old_text, new_text=new_text, matched_span=view.matched_span)
    return Preview(
        old_hash=hash_text(view.old_text),
        old_len=len(view.old_text.encode("utf-8")),
        new_text=new_text,
        matched_span=view.matched_span,
    )


def _canonical_target(target: ResolvedTarget, view: ResolvedView) -> ResolvedTarget:
    """Node targets are rewritten to the node actually resolved, with its span as hint."""
    if not isinstance(target, NodeTarget):
        return target
    return NodeTarget(
        identity=view.anchor_identity or target.identity,
        kind=view.anchor_kind,
        span_hint=view.anchor_span,
        expected_old_hash=view.expected_hash,
    )


def _draft(position: int, instruction: EditInstruction) -> Operation:
    if instruction.op.type == "move":
        raise InvalidRequestError.because(
            f"Operation {position} uses move, but whole-file moves are not built by edit; "
            "add the move operation to the changeset directly"
        )
    operation = Operation(target=instruction.target, op=instruction.op, preview=_DRAFT_PREVIEW)
    try:
        check_target_op_compatibility(position, operation)
    except ValueError as e:
        raise InvalidRequestError.because(str(e), operation_index=position) from e
    return operation


def build_file_change(
    path: Path,
    instructions: Sequence[EditInstruction],
    registry: ProviderRegistry,
    *,
    verbose: bool = False,
) -> FileChange:
    """Resolve ``instructions`` against ``path`` and emit previewed operations.

    Raises:
        InvalidRequestError: Unsupported target/op pairs, or edits that conflict.
        PreconditionFailedError: A target no longer hashes to its precondition.
        TargetMissingError: A node target is gone.
        AmbiguousTargetError: A node target matches several handles.
        IOFailureError: The file is unreadable or not UTF-8.
    """
    source = read_source(path)
    drafts = [_draft(position, instruction) for position, instruction in enumerate(instructions)]
    handles = registry.select(path, source.data) if requires_handles(drafts) else []
    matched = resolve_file_operations(source, HandleIndex(handles), drafts)
    validate_change_conflicts(matched)

    operations = [
        change.operation.model_copy(
            update={
                "target": _canonical_target(change.operation.target, change.view),
                "preview": build_preview(change.view, change.new_text, verbose=verbose),
            }
        )
        for change in matched
    ]
    log.debug("file_change_built", file=str(path), operations=len(operations))
    return FileChange(file=str(path), operations=operations)


def _unique_handle(path: Path, handles: list[Handle], identity: str) -> Handle:
    matches = [handle for handle in handles if handle.identity == identity]
    if not matches:
        raise TargetMissingError.for_identity(identity, str(path))
    if len(matches) > 1:
        raise AmbiguousTargetError.for_identity(identity, str(path), len(matches))
    return matches[0]


def node_target_for(handle: Handle) -> NodeTarget:
    """The node target that addresses ``handle`` as it currently reads."""
    return NodeTarget(
        identity=handle.identity,
        kind=handle.kind,
        span_hint=handle.span,
        expected_old_hash=handle.expected_old_hash,
    )


def build_identity_edit(
    path: Path,
    identity: str,
    op_type: str,
    registry: ProviderRegistry,
    *,
    new_text: str = "",
    verbose: bool = False,
) -> Changeset:
    """Single-operation changeset for the node of ``path`` whose identity is ``identity``."""
    if op_type not in IDENTITY_OPS:
        raise InvalidRequestError.because(f"Unsupported identity edit '{op_type}'")
    source = read_source(path)
    handle = _unique_handle(path, registry.select(path, source.data), identity)
    instruction = EditInstruction(node_target_for(handle), IDENTITY_OPS[op_type](new_text))
    return Changeset(files=[build_file_change(path, [instruction], registry, verbose=verbose)])


def build_changeset(
    request: EditRequest, registry: ProviderRegistry, *, verbose: bool = False
) -> Changeset:
    """Build one changeset from an edit request.

    Entries naming the same file are merged into one file change, in
    first-seen order. A file listed with no operations is checked for
    readability and emitted with an empty operation list.
    """
    buckets: dict[str, list[EditInstruction]] = {}
    for entry in request.files:
        bucket = buckets.setdefault(entry.file, [])
        for operation in entry.operations:
            bucket.append(EditInstruction(operation.target, canonical_op(operation.op)))

    files: list[FileChange] = []
    for file, instructions in buckets.items():
        path = Path(file)
        if not instructions:
            read_source(path)
            files.append(FileChange(file=file, operations=[]))
            continue
        files.append(build_file_change(path, instructions, registry, verbose=verbose))
    return Changeset(files=files)

