"""Preflight: lock, read, resolve and splice every edited file before any write.

Files are processed in canonical-path order so that two applies touching the
same files always take their locks in the same order. A cross-file move
(``move_to_before``/``move_to_after``) deletes from its own file and lands as
a zero-width insert in ``destination_file``; destination files are locked and
checked like any other file, and the incoming insert joins that file's
conflict detection. All files are resolved before any file is checked for
conflicts, so every incoming insert is known when its destination is checked.
"""

from __future__ import annotations

import errno
import os
import stat
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path

from editplane.apply.io import FileLock, GuardState, acquire_lock, read_guarded
from editplane.apply.moves import MoveEdge, ensure_not_moved
from editplane.changeset.models import (
    CROSS_FILE_MOVE_OPS,
    FileChange,
    MoveToAfterOp,
    MoveToBeforeOp,
    NodeTarget,
)
from editplane.core.errors import InvalidRequestError, IOFailureError
from editplane.core.logging import get_logger
from editplane.providers.base import ProviderRegistry
from editplane.transform.conflict import (
    IncomingInsert,
    apply_replacements,
    matched_changes_to_replacements,
    validate_change_conflicts,
)
from editplane.transform.preview import verify_previews
from editplane.transform.resolve import (
    HandleIndex,
    MatchedChange,
    SourceFile,
    requires_handles,
    resolve_destination,
    resolve_file_operations,
)

log = get_logger("apply.preflight")


@dataclass
class FilePlan:
    """A fully validated file: original bytes, updated bytes and the lock."""

    path: Path
    operations_total: int
    original: bytes
    updated: bytes
    mode: int
    guard: GuardState
    lock: FileLock

    @property
    def changed(self) -> bool:
        return self.updated != self.original


@dataclass
class _Entry:
    path: Path
    canonical: Path
    key: tuple[int, int]
    change: FileChange | None = None
    needs_handles: bool = False
    source: SourceFile | None = None
    guard: GuardState | None = None
    lock: FileLock | None = None
    mode: int = 0
    matched: list[MatchedChange] = field(default_factory=list)
    incoming: list[IncomingInsert] = field(default_factory=list)
    _index: HandleIndex | None = None

    def handle_index(self, registry: ProviderRegistry) -> HandleIndex:
        if self._index is None:
            assert self.source is not None
            handles = (
                registry.select(self.path, self.source.data) if self.needs_handles else []
            )
            self._index = HandleIndex(handles)
        return self._index


def _canonicalize(path: Path) -> tuple[Path, tuple[int, int]]:
    try:
        canonical = path.resolve(strict=True)
        st = os.stat(canonical)
    except OSError as e:
        raise IOFailureError.from_os_error(str(path), e) from e
    return canonical, (st.st_dev, st.st_ino)


def order_file_changes(files: list[FileChange]) -> list[_Entry]:
    """Sort by canonical path; two entries naming the same inode are rejected."""
    entries = []
    for change in files:
        path = Path(change.file)
        canonical, key = _canonicalize(path)
        entries.append(_Entry(path=path, canonical=canonical, key=key, change=change))
    entries.sort(key=lambda entry: str(entry.canonical))

    seen: dict[tuple[int, int], Path] = {}
    for entry in entries:
        if entry.key in seen:
            raise InvalidRequestError.because(
                "Duplicate file entry in changeset.files is not supported: "
                f"'{seen[entry.key]}' appears more than once"
            )
        seen[entry.key] = entry.canonical
    return entries


def _add_destination_entries(entries: list[_Entry], moves: list[MoveEdge]) -> list[_Entry]:
    moved = {edge.source for edge in moves}
    by_key = {entry.key: entry for entry in entries}
    for entry in list(entries):
        assert entry.change is not None
        if entry.canonical in moved:
            raise InvalidRequestError.because(
                "Duplicate file entry in changeset.files is not supported: "
                f"'{entry.canonical}' appears more than once"
            )
        for operation in entry.change.operations:
            op = operation.op
            if not isinstance(op, MoveToBeforeOp | MoveToAfterOp):
                continue
            path = Path(op.destination_file)
            canonical, key = _canonicalize(path)
            if key == entry.key:
                raise InvalidRequestError.because(
                    f"Cross-file move destination must be a different file; use "
                    f"move_before/move_after within '{entry.change.file}'"
                )
            ensure_not_moved(path, moves)
            destination = by_key.get(key)
            if destination is None:
                destination = _Entry(path=path, canonical=canonical, key=key)
                by_key[key] = destination
            if isinstance(op.destination, NodeTarget):
                destination.needs_handles = True
    return sorted(by_key.values(), key=lambda entry: str(entry.canonical))


def _load(entry: _Entry, locks: ExitStack) -> None:
    lock = acquire_lock(entry.path)
    locks.callback(lock.release)
    guard, data = read_guarded(entry.path)
    try:
        mode = stat.S_IMODE(os.stat(entry.path).st_mode)
    except OSError as e:
        raise IOFailureError.from_os_error(str(entry.path), e) from e
    entry.lock, entry.guard, entry.mode = lock, guard, mode
    entry.source = SourceFile.from_bytes(entry.path, data)


def _resolve(
    entry: _Entry, by_key: dict[tuple[int, int], _Entry], registry: ProviderRegistry
) -> None:
    assert entry.change is not None and entry.source is not None
    operations = entry.change.operations
    index = entry.handle_index(registry)
    entry.matched = resolve_file_operations(entry.source, index, operations)
    for change in entry.matched:
        if change.op_type not in CROSS_FILE_MOVE_OPS:
            continue
        op = change.operation.op
        assert isinstance(op, MoveToBeforeOp | MoveToAfterOp)
        _, key = _canonicalize(Path(op.destination_file))
        destination = by_key[key]
        assert destination.source is not None
        landing = resolve_destination(
            destination.source,
            destination.handle_index(registry),
            op.destination,  # type: ignore[arg-type]
            before=op.type == "move_to_before",
        )
        destination.incoming.append(
            IncomingInsert(
                index=change.index,
                offset=landing.offset,
                text=change.view.old_text,
                anchor_kind=landing.anchor_kind,
                anchor_span=landing.anchor_span,
                source_file=str(entry.path),
            )
        )
    log.debug("targets_resolved", file=str(entry.path), operations=len(entry.matched))


def _plan(entry: _Entry) -> FilePlan:
    assert entry.source is not None and entry.guard is not None and entry.lock is not None
    validate_change_conflicts(entry.matched, entry.incoming)
    verify_previews(entry.matched)
    replacements = matched_changes_to_replacements(entry.matched, entry.incoming)
    updated = apply_replacements(entry.path, entry.source.data, replacements)

    plan = FilePlan(
        path=entry.path,
        operations_total=len(entry.change.operations) if entry.change is not None else 0,
        original=entry.source.data,
        updated=updated,
        mode=entry.mode,
        guard=entry.guard,
        lock=entry.lock,
    )
    if plan.changed and not entry.lock.writable:
        denied = PermissionError(errno.EACCES, os.strerror(errno.EACCES))
        raise IOFailureError.write_failed(str(entry.path), denied)
    return plan


def preflight_files(
    files: list[FileChange],
    registry: ProviderRegistry,
    locks: ExitStack,
    moves: list[MoveEdge] | None = None,
) -> list[FilePlan]:
    """Validate every content edit and compute each file's new bytes.

    Locks are registered on ``locks`` and stay held until the caller closes it.

    Raises:
        EditPlaneError: The first failure anywhere in the batch; nothing has
            been written.
    """
    entries = _add_destination_entries(order_file_changes(files), moves or [])
    for entry in entries:
        _load(entry, locks)
        if entry.change is not None:
            entry.needs_handles = entry.needs_handles or requires_handles(
                entry.change.operations
            )

    by_key = {entry.key: entry for entry in entries}
    for entry in entries:
        if entry.change is not None:
            _resolve(entry, by_key, registry)
    return [_plan(entry) for entry in entries]
