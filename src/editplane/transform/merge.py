"""Merge several changesets into one all-or-nothing changeset.

File changes naming the same path collapse into one entry whose operations
keep input order. The merged operations of each file are re-resolved against
the current bytes and checked for conflicts, so a merge never emits a
changeset that apply would reject for overlap.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from editplane.changeset.models import Changeset, FileChange, Operation
from editplane.core.errors import InvalidRequestError
from editplane.core.logging import get_logger
from editplane.providers.base import ProviderRegistry
from editplane.transform.build import read_source
from editplane.transform.conflict import validate_change_conflicts
from editplane.transform.preview import verify_previews
from editplane.transform.resolve import HandleIndex, requires_handles, resolve_file_operations

log = get_logger("transform.merge")


def _group_by_file(changesets: Sequence[Changeset]) -> dict[str, list[Operation]]:
    grouped: dict[str, list[Operation]] = {}
    for changeset in changesets:
        for change in changeset.files:
            grouped.setdefault(change.file, []).extend(
                operation.model_copy(deep=True) for operation in change.operations
            )
    return grouped


def _check_moves(grouped: dict[str, list[Operation]]) -> None:
    destinations: dict[str, str] = {}
    for file, operations in grouped.items():
        moves = [operation.op for operation in operations if operation.op.type == "move"]
        if not moves:
            continue
        if len(operations) > 1:
            raise InvalidRequestError.because(
                f"File '{file}': a whole-file move cannot be merged with other operations "
                "on the same file"
            )
        to = moves[0].to  # type: ignore[union-attr]
        if to in destinations:
            raise InvalidRequestError.because(
                f"Whole-file moves of '{destinations[to]}' and '{file}' both target '{to}'"
            )
        destinations[to] = file


def _check_file(file: str, operations: list[Operation], registry: ProviderRegistry) -> None:
    path = Path(file)
    source = read_source(path)
    handles = registry.select(path, source.data) if requires_handles(operations) else []
    matched = resolve_file_operations(source, HandleIndex(handles), operations)
    verify_previews(matched)
    try:
        validate_change_conflicts(matched)
    except InvalidRequestError as e:
        raise InvalidRequestError.because(
            f"Merged changeset has conflicting operations in '{file}': {e.message}"
        ) from e


def merge_changesets(changesets: Sequence[Changeset], registry: ProviderRegistry) -> Changeset:
    """Combine ``changesets`` into one, rejecting conflicts between them.

    Raises:
        InvalidRequestError: Overlapping edits, mixed rewrite/insert anchors,
            stale previews, or a whole-file move sharing its file with
            anything else.
        PreconditionFailedError: An input no longer matches the files on disk.
    """
    if not changesets:
        raise InvalidRequestError.because("merge requires at least one changeset")
    grouped = _group_by_file(changesets)
    _check_moves(grouped)
    for file, operations in grouped.items():
        if operations and operations[0].op.type != "move":
            _check_file(file, operations, registry)
    log.debug("changesets_merged", inputs=len(changesets), files=len(grouped))
    return Changeset(
        files=[FileChange(file=file, operations=ops) for file, ops in grouped.items()]
    )
