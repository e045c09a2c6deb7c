"""Line-anchor ("hashline") editing: show, check, repair and apply."""

from editplane.hashline.anchors import (
    LineRef,
    SourceLine,
    format_hashed_lines,
    format_line_ref,
    parse_line_ref,
    resolve_line,
    show_lines,
    split_lines,
)
from editplane.hashline.apply import ApplyMode, HashlineApplyResult, apply_edits
from editplane.hashline.check import CheckResult, MismatchStatus, check_anchors, check_refs
from editplane.hashline.edits import (
    HashlineEdit,
    InsertAfter,
    ReplaceLines,
    SetLine,
    edit_anchors,
    parse_edits_request,
)

__all__ = [
    "ApplyMode",
    "CheckResult",
    "HashlineApplyResult",
    "HashlineEdit",
    "InsertAfter",
    "LineRef",
    "MismatchStatus",
    "ReplaceLines",
    "SetLine",
    "SourceLine",
    "apply_edits",
    "check_anchors",
    "check_refs",
    "edit_anchors",
    "format_hashed_lines",
    "format_line_ref",
    "parse_edits_request",
    "parse_line_ref",
    "resolve_line",
    "show_lines",
    "split_lines",
]
