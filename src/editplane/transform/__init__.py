"""Resolve changeset operations against current bytes and splice them."""

from editplane.transform.build import EditInstruction, build_changeset, build_identity_edit
from editplane.transform.conflict import (
    IncomingInsert,
    Replacement,
    apply_replacements,
    matched_changes_to_replacements,
    validate_change_conflicts,
)
from editplane.transform.merge import merge_changesets
from editplane.transform.preview import verify_preview, verify_previews
from editplane.transform.resolve import (
    DestinationPoint,
    HandleIndex,
    MatchedChange,
    ResolvedView,
    SourceFile,
    requires_handles,
    resolve_destination,
    resolve_file_operations,
    resolve_node,
    resolve_operation,
)

__all__ = [
    "DestinationPoint",
    "EditInstruction",
    "HandleIndex",
    "IncomingInsert",
    "MatchedChange",
    "Replacement",
    "ResolvedView",
    "SourceFile",
    "apply_replacements",
    "build_changeset",
    "build_identity_edit",
    "matched_changes_to_replacements",
    "merge_changesets",
    "requires_handles",
    "resolve_destination",
    "resolve_file_operations",
    "resolve_node",
    "resolve_operation",
    "validate_change_conflicts",
    "verify_preview",
    "verify_previews",
]
