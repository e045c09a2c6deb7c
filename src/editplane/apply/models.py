"""Apply response types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from editplane.config.constants import TRANSACTION_MODE_ALL_OR_NOTHING


class ApplyFileStatus(StrEnum):
    APPLIED = "applied"
    UNCHANGED = "unchanged"


class TransactionStatus(StrEnum):
    COMMITTED = "committed"
    DRY_RUN = "dry_run"


@dataclass
class ApplyFileResult:
    """Outcome for one file (or one whole-file move, keyed by its source)."""

    file: str
    operations_applied: int
    operations_total: int
    status: ApplyFileStatus

    # Dry-run fingerprint of the would-be content
    output_hash: str | None = None
    output_bytes: int | None = None
    content: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "file": self.file,
            "operations_applied": self.operations_applied,
            "operations_total": self.operations_total,
            "status": self.status.value,
        }
        if self.content is not None:
            data["content"] = self.content
        else:
            if self.output_hash is not None:
                data["output_hash"] = self.output_hash
            if self.output_bytes is not None:
                data["output_bytes"] = self.output_bytes
        return data


@dataclass
class ApplySummary:
    files_modified: int
    operations_applied: int
    operations_failed: int

    @classmethod
    def from_results(cls, results: list[ApplyFileResult]) -> ApplySummary:
        """Only files that were (or would be) rewritten or moved count as modified."""
        applied = sum(r.operations_applied for r in results)
        total = sum(r.operations_total for r in results)
        return cls(
            files_modified=sum(1 for r in results if r.status is ApplyFileStatus.APPLIED),
            operations_applied=applied,
            operations_failed=max(total - applied, 0),
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "files_modified": self.files_modified,
            "operations_applied": self.operations_applied,
            "operations_failed": self.operations_failed,
        }


@dataclass
class ApplyTransaction:
    status: TransactionStatus
    mode: str = TRANSACTION_MODE_ALL_OR_NOTHING

    def to_dict(self) -> dict[str, str]:
        return {"mode": self.mode, "status": self.status.value}


@dataclass
class ApplyResponse:
    """Result of one changeset apply (or dry run)."""

    transaction: ApplyTransaction
    applied: list[ApplyFileResult] = field(default_factory=list)

    @property
    def summary(self) -> ApplySummary:
        return ApplySummary.from_results(self.applied)

    def to_dict(self, *, verbose: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "summary": self.summary.to_dict(),
            "transaction": self.transaction.to_dict(),
        }
        if verbose or self.transaction.status is TransactionStatus.DRY_RUN:
            data["applied"] = [result.to_dict() for result in self.applied]
        return data
