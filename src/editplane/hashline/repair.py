"""Repair mode: remap stale anchors and clean up pasted edit text.

An anchor is remapped only when its hash matches exactly one line of the
current file. Remapping happens once; the remapped edits are re-checked but
never remapped again.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

from editplane.config.constants import DISPLAY_HASH_MAX_HEX_LEN, DISPLAY_HASH_MIN_HEX_LEN
from editplane.core.errors import PreconditionFailedError
from editplane.core.hashing import compute_line_hash_full
from editplane.core.logging import get_logger
from editplane.hashline.anchors import SourceLine, format_line_ref
from editplane.hashline.check import CheckResult, check_anchors, failure_reason
from editplane.hashline.edits import HashlineEdit, edit_anchors

if TYPE_CHECKING:
    from editplane.hashline.apply import ResolvedLineEdit

log = get_logger("hashline.repair")

MERGE_CONTINUATION_TOKENS = ("&&", "||", "??", "\\", ",")
"""Line endings that suggest the next line continues the same expression."""

_HEX = frozenset("0123456789abcdefABCDEF")


def hashline_failure(check: CheckResult, *, repairing: bool) -> PreconditionFailedError:
    return PreconditionFailedError.hashline(
        failure_reason(check, repairing=repairing), check.to_report()
    )


def prepare_repair_edits(lines: list[SourceLine], edits: list[HashlineEdit]) -> list[HashlineEdit]:
    """Remap every uniquely-remappable stale anchor and normalize edit text.

    Raises ``PreconditionFailedError`` when any anchor has zero or several
    candidate lines, or when the remapped edits still fail the check.
    """
    check = check_anchors(lines, edit_anchors(edits))
    if check.ok:
        return normalize_edit_texts(edits)
    if not check.fully_remappable:
        raise hashline_failure(check, repairing=True)

    remaps: dict[int, dict[str, str]] = defaultdict(dict)
    for mismatch in check.mismatches:
        target = mismatch.remaps[0]
        remaps[mismatch.edit_index][mismatch.anchor] = format_line_ref(target.line, target.hash)
    remapped = [edit.remapped(remaps.get(index, {})) for index, edit in enumerate(edits)]
    normalized = normalize_edit_texts(remapped)

    recheck = check_anchors(lines, edit_anchors(normalized))
    if not recheck.ok:
        raise hashline_failure(recheck, repairing=True)
    log.debug("hashline_repaired", remapped=len(check.mismatches), edits=len(edits))
    return normalized


def normalize_edit_texts(edits: list[HashlineEdit]) -> list[HashlineEdit]:
    return [edit.with_text(repair_text(edit.text)) for edit in edits]


def repair_text(text: str) -> str:
    """Strip ``+`` diff markers and ``N:hash|`` display prefixes when they dominate."""
    normalized = text.replace("\r\n", "\n")
    lines = normalized.split("\n")
    non_empty = sum(1 for line in lines if line.strip())
    if non_empty == 0:
        return normalized

    hash_prefixed = 0
    plus_prefixed = 0
    for line in lines:
        if not line.strip():
            continue
        candidate = line
        stripped = _strip_plus_prefix(candidate)
        if stripped is not None:
            plus_prefixed += 1
            candidate = stripped
        if _strip_display_prefix(candidate) is not None:
            hash_prefixed += 1

    strip_hash = hash_prefixed >= 2 and hash_prefixed * 2 > non_empty
    strip_plus = plus_prefixed > 0 and plus_prefixed * 2 > non_empty

    repaired: list[str] = []
    for line in lines:
        candidate = line
        if strip_plus:
            candidate = _strip_plus_prefix(candidate) or candidate
        if strip_hash:
            stripped = _strip_display_prefix(candidate)
            if stripped is not None:
                candidate = stripped
        repaired.append(candidate)
    return "\n".join(repaired)


def _strip_plus_prefix(line: str) -> str | None:
    if line.startswith("+") and not line.startswith("++"):
        return line[1:]
    return None


def _strip_display_prefix(line: str) -> str | None:
    """Return the content of an ``N:hash|content`` line whose hash matches it."""
    index = 0
    while index < len(line) and line[index].isascii() and line[index].isdigit():
        index += 1
    if index == 0 or index >= len(line) or line[index] != ":":
        return None
    index += 1
    hash_start = index
    while index < len(line) and line[index] in _HEX:
        index += 1
    hash_len = index - hash_start
    if not DISPLAY_HASH_MIN_HEX_LEN <= hash_len <= DISPLAY_HASH_MAX_HEX_LEN:
        return None
    if index >= len(line) or line[index] != "|":
        return None
    content = line[index + 1 :]
    if not compute_line_hash_full(content).startswith(line[hash_start:index].lower()):
        return None
    return content


# =============================================================================
# Merge expansion
# =============================================================================


def expand_merges(lines: list[SourceLine], resolved: list[ResolvedLineEdit]) -> None:
    """Widen single-line replacements that join a line with its successor."""
    for edit in resolved:
        if not edit.is_replace or edit.start_line != edit.end_line or len(edit.lines) != 1:
            continue
        if edit.start_line >= len(lines):
            continue
        current = lines[edit.start_line - 1].content
        following = lines[edit.start_line].content
        if _is_merge(current, following, edit.lines[0]):
            edit.end_line += 1


def _is_merge(current: str, following: str, replacement: str) -> bool:
    if not _has_continuation_hint(current):
        return False
    return replacement in (
        current + following,
        current.rstrip() + following.lstrip(),
        f"{current.rstrip()} {following.lstrip()}",
    )


def _has_continuation_hint(line: str) -> bool:
    trimmed = line.rstrip()
    for token in MERGE_CONTINUATION_TOKENS:
        if not trimmed.endswith(token):
            continue
        prefix = trimmed[: -len(token)].rstrip()
        if prefix and not prefix.endswith(":"):
            return True
    return False
