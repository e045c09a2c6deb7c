"""Transactional changeset apply.

Everything that can fail on content is checked before the first write:
preflight resolves, conflict-checks and splices every file while holding
every lock. Commit then writes the changed files one by one (each write is
atomic on its own) and performs whole-file moves last, sink first.

The batch as a whole is not atomic at the OS level. A crash between two
renames leaves some files rewritten; in-process failures are undone by
restoring the in-memory snapshots in reverse order and renaming moves back.
"""

from __future__ import annotations

from contextlib import ExitStack
from dataclasses import dataclass

from editplane.apply.io import (
    DEFAULT_TEMP_ATTEMPTS,
    verify_guard_state,
    write_atomically,
)
from editplane.apply.models import (
    ApplyFileResult,
    ApplyFileStatus,
    ApplyResponse,
    ApplyTransaction,
    TransactionStatus,
)
from editplane.apply.moves import (
    MovePlan,
    commit_moves,
    preflight_moves,
    rollback_moves,
    validate_move_operations,
)
from editplane.apply.preflight import FilePlan, preflight_files
from editplane.apply.repair import repair_line_anchors
from editplane.changeset.models import Changeset
from editplane.core.errors import EditPlaneError, InvalidRequestError, RollbackFailedError
from editplane.core.hashing import hash_bytes
from editplane.core.logging import get_logger
from editplane.providers.base import ProviderRegistry

log = get_logger("apply.executor")


@dataclass(frozen=True)
class ApplyOptions:
    """Per-invocation switches, resolved from CLI flags and config."""

    dry_run: bool = False
    repair: bool = False
    include_content: bool = False
    inject_failure_after_writes: int | None = None
    temp_attempts: int = DEFAULT_TEMP_ATTEMPTS

    def __post_init__(self) -> None:
        if self.inject_failure_after_writes is None:
            return
        if self.inject_failure_after_writes < 1:
            raise InvalidRequestError.because(
                "--inject-failure-after-writes must be greater than zero"
            )
        if self.dry_run:
            raise InvalidRequestError.because(
                "--inject-failure-after-writes cannot be combined with --dry-run"
            )


class _FailureInjector:
    """Blocks the write that would follow ``after`` committed writes."""

    def __init__(self, after: int | None, written: list[FilePlan], moved: list[MovePlan]) -> None:
        self.after = after
        self._written = written
        self._moved = moved

    def __call__(self) -> None:
        if self.after is None:
            return
        committed = len(self._written) + len(self._moved)
        if committed >= self.after:
            raise InvalidRequestError.because(
                f"Injected apply failure for rollback rehearsal after {committed} committed "
                f"writes (blocked write #{committed + 1})"
            )


def _file_result(plan: FilePlan, options: ApplyOptions) -> ApplyFileResult:
    result = ApplyFileResult(
        file=str(plan.path),
        operations_applied=plan.operations_total,
        operations_total=plan.operations_total,
        status=ApplyFileStatus.APPLIED if plan.changed else ApplyFileStatus.UNCHANGED,
    )
    if options.dry_run:
        if options.include_content:
            result.content = plan.updated.decode("utf-8")
        else:
            result.output_hash = hash_bytes(plan.updated)
            result.output_bytes = len(plan.updated)
    return result


def _rollback(
    written: list[FilePlan], moved: list[MovePlan], options: ApplyOptions
) -> Exception | None:
    """Undo moves, then restore rewritten files, newest first."""
    log.debug("rollback_started", files=len(written), moves=len(moved))
    try:
        rollback_moves(moved)
        for plan in reversed(written):
            write_atomically(plan.path, plan.original, temp_attempts=options.temp_attempts)
    except (EditPlaneError, OSError) as e:
        log.warning("rollback_failed", error=str(e))
        return e
    log.debug("rollback_finished", files=len(written), moves=len(moved))
    return None


def _commit(
    plans: list[FilePlan], move_plans: list[MovePlan], options: ApplyOptions
) -> list[ApplyFileResult]:
    written: list[FilePlan] = []
    moved: list[MovePlan] = []
    inject = _FailureInjector(options.inject_failure_after_writes, written, moved)
    results: list[ApplyFileResult] = []
    try:
        for plan in plans:
            if plan.changed:
                verify_guard_state(plan.path, plan.guard)
                inject()
                write_atomically(
                    plan.path,
                    plan.updated,
                    guard=plan.guard,
                    temp_attempts=options.temp_attempts,
                )
                written.append(plan)
                log.debug("file_committed", file=str(plan.path), bytes=len(plan.updated))
            results.append(_file_result(plan, options))
        results.extend(commit_moves(move_plans, moved, inject))
    except (EditPlaneError, OSError) as e:
        rollback_error = _rollback(written, moved, options)
        if rollback_error is not None:
            raise RollbackFailedError.after(_describe(e), _describe(rollback_error)) from e
        raise
    return results


def _describe(error: Exception) -> str:
    return error.message if isinstance(error, EditPlaneError) else str(error)


def apply_changeset(
    changeset: Changeset,
    registry: ProviderRegistry | None = None,
    options: ApplyOptions | None = None,
) -> ApplyResponse:
    """Validate ``changeset`` against the filesystem and commit it (or dry-run it).

    Args:
        changeset: Parsed changeset.
        registry: Structure providers for node targets. Defaults to the
            built-in registry.
        options: Dry-run, repair, content disclosure and rehearsal switches.

    Returns:
        The transaction status and one result per touched file.

    Raises:
        EditPlaneError: Any validation or commit failure. When a commit fails
            midway the changes already made are rolled back first; if that
            fails too, ``RollbackFailedError`` is raised.
    """
    options = options or ApplyOptions()
    registry = registry or ProviderRegistry.default()
    if options.repair:
        changeset = repair_line_anchors(changeset)

    move_order = validate_move_operations(changeset.files)
    content_files = [change for change in changeset.files if not change.moves]

    with ExitStack() as locks:
        plans = preflight_files(content_files, registry, locks, move_order)
        move_plans = preflight_moves(move_order)
        for move_plan in move_plans:
            locks.callback(move_plan.lock.release)

        if options.dry_run:
            results = [_file_result(plan, options) for plan in plans]
            results.extend(plan.dry_run_result() for plan in move_plans)
            return ApplyResponse(ApplyTransaction(TransactionStatus.DRY_RUN), results)

        results = _commit(plans, move_plans, options)
        return ApplyResponse(ApplyTransaction(TransactionStatus.COMMITTED), results)
