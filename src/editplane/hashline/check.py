"""Anchor checking - the single resolution routine behind check, apply and repair."""

from __future__ import annotations

import json
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from editplane.hashline.anchors import SourceLine, parse_line_ref


class MismatchStatus(StrEnum):
    MISMATCH = "mismatch"
    REMAPPABLE = "remappable"
    AMBIGUOUS = "ambiguous"


_STATUS_RANK = {
    MismatchStatus.MISMATCH: 0,
    MismatchStatus.REMAPPABLE: 1,
    MismatchStatus.AMBIGUOUS: 2,
}


@dataclass(frozen=True)
class AnchorRequest:
    edit_index: int
    anchor: str


@dataclass(frozen=True)
class RemapTarget:
    line: int
    hash: str


@dataclass
class Mismatch:
    edit_index: int
    anchor: str
    line: int
    expected_hash: str
    actual_hash: str | None
    status: MismatchStatus
    remaps: list[RemapTarget] = field(default_factory=list)

    @property
    def is_uniquely_remappable(self) -> bool:
        return self.status is MismatchStatus.REMAPPABLE and len(self.remaps) == 1

    def sort_key(self) -> tuple[int, int, int, str]:
        return (self.edit_index, self.line, _STATUS_RANK[self.status], self.anchor)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "edit_index": self.edit_index,
            "anchor": self.anchor,
            "line": self.line,
            "expected_hash": self.expected_hash,
        }
        if self.actual_hash is not None:
            data["actual_hash"] = self.actual_hash
        data["status"] = str(self.status)
        if self.remaps:
            data["remaps"] = [{"line": r.line, "hash": r.hash} for r in self.remaps]
        return data


@dataclass
class CheckSummary:
    total: int = 0
    matched: int = 0
    mismatched: int = 0
    remappable: int = 0
    ambiguous: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "matched": self.matched,
            "mismatched": self.mismatched,
            "remappable": self.remappable,
            "ambiguous": self.ambiguous,
        }


@dataclass
class CheckResult:
    ok: bool
    summary: CheckSummary
    mismatches: list[Mismatch] = field(default_factory=list)

    @property
    def fully_remappable(self) -> bool:
        """Every mismatch has exactly one remap candidate."""
        return all(m.is_uniquely_remappable for m in self.mismatches)

    @property
    def can_retry_with_repair(self) -> bool:
        s = self.summary
        return s.remappable > 0 and s.ambiguous == 0 and s.mismatched == s.remappable

    def canonical_mismatches(self) -> list[Mismatch]:
        return sorted(self.mismatches, key=Mismatch.sort_key)

    def to_dict(self, *, include_mismatches: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {"ok": self.ok, "summary": self.summary.to_dict()}
        if include_mismatches:
            data["mismatches"] = [m.to_dict() for m in self.canonical_mismatches()]
        return data

    def to_report(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


def check_anchors(lines: list[SourceLine], anchors: Iterable[AnchorRequest]) -> CheckResult:
    """Check each anchor against the current lines and look for remap candidates."""
    lines_by_hash: dict[str, list[int]] = defaultdict(list)
    for line in lines:
        lines_by_hash[line.hash].append(line.number)

    summary = CheckSummary()
    mismatches: list[Mismatch] = []
    for request in anchors:
        summary.total += 1
        parsed = parse_line_ref(request.anchor)
        actual = lines[parsed.line - 1].hash if parsed.line <= len(lines) else None
        if actual == parsed.hash:
            summary.matched += 1
            continue

        summary.mismatched += 1
        candidates = lines_by_hash.get(parsed.hash, [])
        if len(candidates) == 1:
            summary.remappable += 1
            status = MismatchStatus.REMAPPABLE
        elif candidates:
            summary.ambiguous += 1
            status = MismatchStatus.AMBIGUOUS
        else:
            status = MismatchStatus.MISMATCH
        mismatches.append(
            Mismatch(
                edit_index=request.edit_index,
                anchor=request.anchor,
                line=parsed.line,
                expected_hash=parsed.hash,
                actual_hash=actual,
                status=status,
                remaps=[RemapTarget(line=n, hash=parsed.hash) for n in candidates],
            )
        )

    return CheckResult(ok=summary.mismatched == 0, summary=summary, mismatches=mismatches)


def check_refs(lines: list[SourceLine], refs: list[str]) -> CheckResult:
    """Check bare anchors; ``edit_index`` is the position in ``refs``."""
    return check_anchors(lines, (AnchorRequest(i, ref) for i, ref in enumerate(refs)))


def failure_reason(check: CheckResult, *, repairing: bool) -> str:
    """One-line description of the first (canonical) failing anchor."""
    first = check.canonical_mismatches()[0]
    if first.status is MismatchStatus.AMBIGUOUS:
        return f"anchor '{first.anchor}' is ambiguous: {len(first.remaps)} lines match its hash"
    if first.status is MismatchStatus.MISMATCH:
        if repairing:
            return f"anchor '{first.anchor}' has no remap candidate"
        return f"anchor '{first.anchor}' is stale"
    return f"anchor '{first.anchor}' is stale; rerun with repair to remap it"
