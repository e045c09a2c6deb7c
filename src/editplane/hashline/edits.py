"""Hashline edit model and request parsing.

A request body is either a bare array of edits or the wrapper
``{"command": "hashline", "edits": [...], "anchors"?: {...}}``. Each edit is an
object with exactly one operation key. Anchors are given inline or, through
an ``*_ref`` field, looked up in the wrapper's ``anchors`` table; never both.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from editplane.changeset.parse import decode_json_strict
from editplane.core.errors import InvalidRequestError
from editplane.hashline.check import AnchorRequest

OPERATION_KEYS = ("set_line", "replace_lines", "insert_after")

_WRAPPER_FIELDS = ("command", "edits", "anchors")


@dataclass(frozen=True)
class SetLine:
    anchor: str
    new_text: str

    @property
    def anchors(self) -> list[str]:
        return [self.anchor]

    @property
    def text(self) -> str:
        return self.new_text

    def with_text(self, text: str) -> SetLine:
        return replace(self, new_text=text)

    def remapped(self, mapping: dict[str, str]) -> SetLine:
        return replace(self, anchor=mapping.get(self.anchor, self.anchor))


@dataclass(frozen=True)
class ReplaceLines:
    start_anchor: str
    new_text: str
    end_anchor: str | None = None

    @property
    def anchors(self) -> list[str]:
        if self.end_anchor is None:
            return [self.start_anchor]
        return [self.start_anchor, self.end_anchor]

    @property
    def text(self) -> str:
        return self.new_text

    def with_text(self, text: str) -> ReplaceLines:
        return replace(self, new_text=text)

    def remapped(self, mapping: dict[str, str]) -> ReplaceLines:
        end = self.end_anchor
        return replace(
            self,
            start_anchor=mapping.get(self.start_anchor, self.start_anchor),
            end_anchor=mapping.get(end, end) if end is not None else None,
        )


@dataclass(frozen=True)
class InsertAfter:
    anchor: str
    text: str

    @property
    def anchors(self) -> list[str]:
        return [self.anchor]

    def with_text(self, text: str) -> InsertAfter:
        return replace(self, text=text)

    def remapped(self, mapping: dict[str, str]) -> InsertAfter:
        return replace(self, anchor=mapping.get(self.anchor, self.anchor))


HashlineEdit = SetLine | ReplaceLines | InsertAfter


def edit_anchors(edits: list[HashlineEdit]) -> list[AnchorRequest]:
    """Every anchor of every edit, tagged with the edit's index."""
    return [
        AnchorRequest(edit_index=index, anchor=anchor)
        for index, edit in enumerate(edits)
        for anchor in edit.anchors
    ]


# =============================================================================
# Request parsing
# =============================================================================


def _json_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int | float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    return "object"


class _EditError(ValueError):
    pass


def parse_edits_request(body: str | bytes) -> list[HashlineEdit]:
    """Parse a hashline request body into edits."""
    data = decode_json_strict(body)
    if isinstance(data, list):
        return parse_edit_array(data)
    if isinstance(data, dict):
        return _parse_wrapper(data)
    raise InvalidRequestError.because(
        "Invalid hashline stdin request: expected either an edit array or an object "
        "with 'command' and 'edits' fields"
    )


def _parse_wrapper(data: dict[str, Any]) -> list[HashlineEdit]:
    for key in data:
        if key not in _WRAPPER_FIELDS:
            raise InvalidRequestError.because(
                f"Invalid hashline stdin request: unknown field '{key}', "
                "expected 'command', 'edits', 'anchors'"
            )
    if "command" not in data:
        raise InvalidRequestError.because("Invalid hashline stdin request: missing field 'command'")
    command = data["command"]
    if not isinstance(command, str):
        raise InvalidRequestError.because(
            "Invalid hashline stdin request: field 'command' must be a string, "
            f"got {_json_type(command)}"
        )
    if command != "hashline":
        raise InvalidRequestError.because(
            f"Unsupported command '{command}' for hashline stdin request; expected 'hashline'"
        )
    if "edits" not in data:
        raise InvalidRequestError.because("Invalid hashline stdin request: missing field 'edits'")
    edits = data["edits"]
    if not isinstance(edits, list):
        raise InvalidRequestError.because(
            "Invalid hashline stdin request: field 'edits' must be an array, "
            f"got {_json_type(edits)}"
        )
    return parse_edit_array(edits, _parse_anchor_table(data.get("anchors")))


def _parse_anchor_table(value: Any) -> dict[str, str] | None:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise InvalidRequestError.because(
            "Invalid hashline stdin request: field 'anchors' must be an object, "
            f"got {_json_type(value)}"
        )
    for key, anchor in value.items():
        if not isinstance(anchor, str):
            raise InvalidRequestError.because(
                f"Invalid hashline stdin request: anchors['{key}'] must be a string, "
                f"got {_json_type(anchor)}"
            )
    return dict(value)


def parse_edit_array(items: list[Any], anchors: dict[str, str] | None = None) -> list[HashlineEdit]:
    edits: list[HashlineEdit] = []
    for index, item in enumerate(items):
        try:
            edits.append(_parse_edit(item, anchors))
        except _EditError as e:
            raise InvalidRequestError.because(
                f"Invalid hashline edit at index {index}: {e}", edit_index=index
            ) from e
    return edits


def _parse_edit(item: Any, anchors: dict[str, str] | None) -> HashlineEdit:
    if not isinstance(item, dict):
        raise _EditError(
            f"expected an object with exactly one operation key, got {_json_type(item)}"
        )
    if len(item) != 1:
        raise _EditError(
            "expected exactly one operation key ('set_line', 'replace_lines', 'insert_after'), "
            f"got {len(item)} keys"
        )
    ((operation, payload),) = item.items()
    if operation not in OPERATION_KEYS:
        raise _EditError(
            f"unknown operation key '{operation}', expected one of "
            "'set_line', 'replace_lines', 'insert_after'"
        )
    if not isinstance(payload, dict):
        raise _EditError(f"{operation} payload must be an object, got {_json_type(payload)}")

    if operation == "set_line":
        anchor = _anchor_field(payload, operation, "anchor", "anchor_ref", anchors)
        new_text = _text_field(payload, operation, "new_text")
        _reject_unknown(payload, operation, ("anchor", "anchor_ref", "new_text"))
        return SetLine(anchor=anchor, new_text=new_text)

    if operation == "replace_lines":
        start = _anchor_field(payload, operation, "start_anchor", "start_anchor_ref", anchors)
        end = _anchor_field(
            payload, operation, "end_anchor", "end_anchor_ref", anchors, required=False
        )
        new_text = _text_field(payload, operation, "new_text")
        _reject_unknown(
            payload,
            operation,
            ("start_anchor", "start_anchor_ref", "end_anchor", "end_anchor_ref", "new_text"),
        )
        return ReplaceLines(start_anchor=start, end_anchor=end, new_text=new_text)

    anchor = _anchor_field(payload, operation, "anchor", "anchor_ref", anchors)
    text = _text_field(payload, operation, "text")
    _reject_unknown(payload, operation, ("anchor", "anchor_ref", "text"))
    return InsertAfter(anchor=anchor, text=text)


def _text_field(payload: dict[str, Any], operation: str, name: str) -> str:
    value = payload.get(name)
    if not isinstance(value, str):
        raise _EditError(f"{operation} requires string field '{name}'")
    return value


def _reject_unknown(payload: dict[str, Any], operation: str, allowed: tuple[str, ...]) -> None:
    for key in payload:
        if key not in allowed:
            raise _EditError(f"{operation} unknown field '{key}'")


def _anchor_field(
    payload: dict[str, Any],
    operation: str,
    raw_field: str,
    ref_field: str,
    anchors: dict[str, str] | None,
    *,
    required: bool = True,
) -> Any:
    raw = payload.get(raw_field)
    ref = payload.get(ref_field)
    raw = raw if isinstance(raw, str) else None
    ref = ref if isinstance(ref, str) else None

    if raw is not None and ref is not None:
        raise _EditError(f"{operation} cannot contain both '{raw_field}' and '{ref_field}'")
    if raw is not None:
        return raw
    if ref is not None:
        if anchors is None:
            raise _EditError(f"{operation} field '{ref_field}' requires top-level 'anchors' table")
        if ref not in anchors:
            raise _EditError(f"unknown anchor_ref '{ref}' in field '{ref_field}'")
        return anchors[ref]
    if required:
        raise _EditError(f"{operation} requires one of '{raw_field}' or '{ref_field}'")
    return None
