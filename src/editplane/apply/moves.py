"""Whole-file moves: validation, graph planning and execution.

Every ``move`` operation is an edge ``source -> destination`` between
canonical paths. The edges must form a set of disjoint acyclic chains; a
destination may already exist only when it is itself vacated by another move
in the same changeset. Chains execute sink-first so that each destination is
free by the time its move runs: with ``A -> B`` and ``B -> C``, ``B`` moves to
``C`` before ``A`` moves to ``B``.

Planning touches the filesystem only to canonicalize paths and to check
which destinations exist.
"""

from __future__ import annotations

import heapq
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from editplane.apply.io import (
    FileLock,
    GuardState,
    acquire_lock,
    path_exists,
    read_guarded,
    sync_parent_directory,
    verify_guard_state,
)
from editplane.apply.models import ApplyFileResult, ApplyFileStatus
from editplane.changeset.models import FileChange, MoveOp, Operation
from editplane.core.errors import InvalidRequestError, IOFailureError
from editplane.core.logging import get_logger

log = get_logger("apply.moves")

AfterVerifyHook = Callable[[], None]


@dataclass(frozen=True)
class MoveEdge:
    source: Path
    destination: Path


# =============================================================================
# Per-file constraints
# =============================================================================


def _check_move_preview(change: FileChange, operation: Operation, destination: str) -> None:
    preview = operation.preview
    move = preview.move
    if move is None or move.from_ != change.file or move.to != destination:
        raise InvalidRequestError.because(
            f"Move preview mismatch for '{change.file}': "
            f"expected move.from='{change.file}' and move.to='{destination}'"
        )
    if (
        preview.old_text
        or preview.has_compact_old_state
        or preview.new_text
        or preview.matched_span.start != 0
        or preview.matched_span.end != 0
    ):
        raise InvalidRequestError.because(
            f"Move operation for '{change.file}' must use canonical placeholder preview fields "
            "(old_text/new_text empty, no compact old_hash/old_len, matched_span [0,0))"
        )


def file_move_edge(change: FileChange) -> MoveEdge | None:
    """The move edge declared by ``change``, if any."""
    moves = [op for op in change.operations if isinstance(op.op, MoveOp)]
    if not moves:
        return None
    if len(moves) > 1:
        raise InvalidRequestError.because(
            f"Only one move operation is allowed per file: '{change.file}'"
        )
    if len(moves) != len(change.operations):
        raise InvalidRequestError.because(
            "Move cannot be combined with content-edit operations for the same file"
        )
    operation = moves[0]
    destination = operation.op.to  # type: ignore[union-attr]
    _check_move_preview(change, operation, destination)
    return MoveEdge(source=Path(change.file), destination=Path(destination))


# =============================================================================
# Graph
# =============================================================================


def _canonical_source(path: Path) -> Path:
    try:
        return path.resolve(strict=True)
    except OSError as e:
        raise IOFailureError.from_os_error(str(path), e) from e


def _canonical_destination(path: Path) -> Path:
    """Resolve when the path exists; otherwise normalize lexically against the cwd."""
    try:
        return path.resolve(strict=True)
    except FileNotFoundError:
        return Path(os.path.abspath(path))
    except OSError as e:
        raise IOFailureError.from_os_error(str(path), e) from e


@dataclass
class MoveGraph:
    """Arena of canonical paths; edges refer to nodes by index."""

    nodes: list[Path] = field(default_factory=list)
    successors: list[list[int]] = field(default_factory=list)
    indegree: list[int] = field(default_factory=list)
    _index: dict[Path, int] = field(default_factory=dict)

    def node(self, path: Path) -> int:
        index = self._index.get(path)
        if index is None:
            index = len(self.nodes)
            self._index[path] = index
            self.nodes.append(path)
            self.successors.append([])
            self.indegree.append(0)
        return index

    def add_edge(self, source: Path, destination: Path) -> None:
        s, d = self.node(source), self.node(destination)
        self.successors[s].append(d)
        self.indegree[d] += 1

    def topological_order(self) -> list[Path]:
        """Kahn's algorithm, always taking the smallest ready path.

        Raises:
            InvalidRequestError: The graph has a cycle.
        """
        indegree = list(self.indegree)
        ready = [(path, i) for i, path in enumerate(self.nodes) if indegree[i] == 0]
        heapq.heapify(ready)
        order: list[Path] = []
        while ready:
            path, index = heapq.heappop(ready)
            order.append(path)
            for successor in sorted(self.successors[index], key=lambda i: self.nodes[i]):
                indegree[successor] -= 1
                if indegree[successor] == 0:
                    heapq.heappush(ready, (self.nodes[successor], successor))
        if len(order) != len(self.nodes):
            raise InvalidRequestError.because(
                "Move graph contains a cycle; move operations must form an acyclic chain"
            )
        return order


def plan_moves(edges: list[MoveEdge]) -> list[MoveEdge]:
    """Validate move edges and return them in execution order.

    Raises:
        InvalidRequestError: Self-moves, duplicate sources or destinations,
            occupied destinations, or cycles.
        IOFailureError: A source path does not exist.
    """
    if not edges:
        return []

    normalized = [
        MoveEdge(
            source=_canonical_source(edge.source),
            destination=_canonical_destination(edge.destination),
        )
        for edge in edges
    ]

    by_source: dict[Path, Path] = {}
    by_destination: dict[Path, Path] = {}
    for edge in sorted(normalized, key=lambda e: (e.source, e.destination)):
        if edge.source == edge.destination:
            raise InvalidRequestError.because(
                f"Move self-move is not supported: '{edge.source}' -> '{edge.destination}'"
            )
        if edge.source in by_source:
            raise InvalidRequestError.because(
                f"Duplicate move source path is not supported: '{edge.source}' maps to both "
                f"'{by_source[edge.source]}' and '{edge.destination}'"
            )
        by_source[edge.source] = edge.destination
        if edge.destination in by_destination:
            raise InvalidRequestError.because(
                f"Duplicate move destination path is not supported: '{edge.destination}' is "
                f"targeted by both '{by_destination[edge.destination]}' and '{edge.source}'"
            )
        by_destination[edge.destination] = edge.source

    for destination in sorted(by_destination):
        if destination not in by_source and path_exists(destination):
            raise InvalidRequestError.because(f"Destination path already exists: '{destination}'")

    graph = MoveGraph()
    for source in sorted(by_source):
        graph.add_edge(source, by_source[source])
    rank = {path: i for i, path in enumerate(graph.topological_order())}

    ordered = sorted(normalized, key=lambda edge: (-rank[edge.source], edge.source))
    log.debug(
        "move_plan_built",
        moves=len(ordered),
        order=[f"{edge.source} -> {edge.destination}" for edge in ordered],
    )
    return ordered


def validate_move_operations(files: list[FileChange]) -> list[MoveEdge]:
    """Per-file move constraints plus the graph plan, in execution order."""
    edges = [edge for change in files if (edge := file_move_edge(change)) is not None]
    return plan_moves(edges)


# =============================================================================
# Execution
# =============================================================================


@dataclass
class MovePlan:
    source: Path
    destination: Path
    guard: GuardState
    lock: FileLock
    operations_total: int = 1

    def result(self, status: ApplyFileStatus = ApplyFileStatus.APPLIED) -> ApplyFileResult:
        return ApplyFileResult(
            file=str(self.source),
            operations_applied=self.operations_total,
            operations_total=self.operations_total,
            status=status,
        )

    def dry_run_result(self) -> ApplyFileResult:
        """Fingerprint of the bytes that would land at ``destination``.

        Moves relocate bytes untouched and need not be UTF-8, so no
        ``content`` is reported even with ``--include-content``.
        """
        result = self.result()
        result.output_hash = self.guard.source_hash
        result.output_bytes = self.guard.fingerprint.size
        return result


def preflight_moves(order: list[MoveEdge]) -> list[MovePlan]:
    """Lock and guard every move source (locks taken in path order).

    Returns plans in execution order. Callers own the returned locks.
    """
    plans: dict[Path, MovePlan] = {}
    try:
        for edge in sorted(order, key=lambda e: e.source):
            lock = acquire_lock(edge.source)
            try:
                guard, _ = read_guarded(edge.source)
            except BaseException:
                lock.release()
                raise
            plans[edge.source] = MovePlan(edge.source, edge.destination, guard, lock)
    except BaseException:
        for plan in plans.values():
            plan.lock.release()
        raise
    return [plans[edge.source] for edge in order]


def _rename(source: Path, destination: Path) -> None:
    os.rename(source, destination)


def commit_move(
    plan: MovePlan,
    after_verify: AfterVerifyHook | None = None,
    rename: Callable[[Path, Path], None] = _rename,
) -> ApplyFileResult:
    verify_guard_state(plan.source, plan.guard)
    if after_verify is not None:
        after_verify()
    if path_exists(plan.destination):
        raise InvalidRequestError.because(
            f"Destination path already exists: '{plan.destination}'"
        )
    try:
        rename(plan.source, plan.destination)
    except OSError as e:
        raise IOFailureError.write_failed(str(plan.source), e) from e
    sync_parent_directory(plan.source)
    sync_parent_directory(plan.destination)
    log.debug("file_committed", file=str(plan.source), moved_to=str(plan.destination))
    return plan.result()


def commit_moves(
    plans: list[MovePlan],
    committed: list[MovePlan],
    after_verify: AfterVerifyHook | None = None,
) -> list[ApplyFileResult]:
    """Run ``plans`` in order, appending each finished plan to ``committed``."""
    results = []
    for plan in plans:
        results.append(commit_move(plan, after_verify))
        committed.append(plan)
    return results


def rollback_moves(committed: list[MovePlan]) -> None:
    """Rename committed moves back, newest first."""
    for plan in reversed(committed):
        try:
            os.rename(plan.destination, plan.source)
        except OSError as e:
            raise IOFailureError.write_failed(str(plan.destination), e) from e
        sync_parent_directory(plan.source)
        sync_parent_directory(plan.destination)


def ensure_not_moved(path: Path, edges: list[MoveEdge]) -> None:
    """Reject cross-file inserts aimed at a file this changeset relocates."""
    canonical = path.resolve()
    if any(edge.source == canonical for edge in edges):
        raise InvalidRequestError.because(
            f"Cross-file move destination '{path}' is moved by this changeset"
        )
