"""Transactional changeset apply: preflight, commit, rollback and moves."""

from editplane.apply.executor import ApplyOptions, apply_changeset
from editplane.apply.models import (
    ApplyFileResult,
    ApplyFileStatus,
    ApplyResponse,
    ApplySummary,
    ApplyTransaction,
    TransactionStatus,
)
from editplane.apply.moves import MoveEdge, plan_moves, validate_move_operations
from editplane.apply.repair import repair_line_anchors

__all__ = [
    "ApplyFileResult",
    "ApplyFileStatus",
    "ApplyOptions",
    "ApplyResponse",
    "ApplySummary",
    "ApplyTransaction",
    "MoveEdge",
    "TransactionStatus",
    "apply_changeset",
    "plan_moves",
    "repair_line_anchors",
    "validate_move_operations",
]
