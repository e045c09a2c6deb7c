"""Changeset model and strict loading."""

from editplane.changeset.models import (
    Changeset,
    EditRequest,
    FileChange,
    FileEndTarget,
    FileStartTarget,
    LineTarget,
    NodeTarget,
    Operation,
    Preview,
    Span,
)
from editplane.changeset.parse import (
    ParseOptions,
    decode_json_strict,
    load_apply_request,
    load_changeset,
    load_edit_request,
)

__all__ = [
    "Changeset",
    "EditRequest",
    "FileChange",
    "FileEndTarget",
    "FileStartTarget",
    "LineTarget",
    "NodeTarget",
    "Operation",
    "ParseOptions",
    "Preview",
    "Span",
    "decode_json_strict",
    "load_apply_request",
    "load_changeset",
    "load_edit_request",
]
