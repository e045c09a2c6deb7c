"""Strict changeset loading.

JSON is decoded with duplicate-key detection (first duplicate wins the error,
never last-value-wins), then validated against the wire model. Any failure
anywhere in the payload raises ``InvalidRequestError`` before a single file is
read.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from editplane.changeset.models import Changeset, EditRequest
from editplane.core.errors import InvalidRequestError

# Tag names pydantic inserts into error locations for tagged unions.
_UNION_TAGS = frozenset(
    {
        "node",
        "file_start",
        "file_end",
        "line",
        "handle_ref",
        "replace",
        "delete",
        "insert_before",
        "insert_after",
        "insert",
        "move_before",
        "move_after",
        "move_to_before",
        "move_to_after",
        "move",
        "set_line",
        "replace_lines",
        "replace_range",
        "insert_after_line",
        "line_insert_after",
    }
)
_UNION_PARENTS = frozenset({"target", "op", "destination"})


@dataclass(frozen=True)
class ParseOptions:
    """Switches threaded in from configuration."""

    allow_legacy: bool = False


class _DuplicateKeyError(ValueError):
    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"duplicate field `{key}`")


def _reject_duplicate_keys(pairs: list[tuple[str, Any]]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in pairs:
        if key in result:
            raise _DuplicateKeyError(key)
        result[key] = value
    return result


def decode_json_strict(raw: str | bytes) -> Any:
    """Decode JSON, rejecting duplicate object keys at any depth."""
    try:
        return json.loads(raw, object_pairs_hook=_reject_duplicate_keys)
    except _DuplicateKeyError as e:
        raise InvalidRequestError.because(f"Failed to parse JSON request: {e}", field=e.key) from e
    except json.JSONDecodeError as e:
        raise InvalidRequestError.because(f"Failed to parse JSON request: {e}") from e
    except UnicodeDecodeError as e:
        raise InvalidRequestError.because(f"Failed to parse JSON request: {e}") from e


def _format_location(loc: tuple[int | str, ...], root: str) -> str:
    parts: list[str] = [root]
    previous: int | str | None = None
    for item in loc:
        if isinstance(item, int):
            parts[-1] = f"{parts[-1]}[{item}]"
        elif item in _UNION_TAGS and previous in _UNION_PARENTS:
            pass
        elif item == "from_":
            parts.append("from")
        else:
            parts.append(item)
        previous = item
    return ".".join(parts)


def _describe_error(err: Any, root: str = "changeset") -> str:
    loc = tuple(err.get("loc", ()))
    kind = err.get("type")
    ctx = err.get("ctx") or {}
    if kind == "missing":
        detail = f"missing field `{loc[-1]}`"
        loc = loc[:-1]
    elif kind == "extra_forbidden":
        detail = f"unknown field `{loc[-1]}`"
        loc = loc[:-1]
    elif kind == "union_tag_invalid":
        detail = f"unknown variant `{ctx.get('tag')}`, expected one of {ctx.get('expected_tags')}"
    elif kind == "literal_error":
        detail = f"unknown variant `{err.get('input')}`, expected {ctx.get('expected')}"
    elif kind == "value_error" and "error" in ctx:
        detail = str(ctx["error"])
    else:
        detail = err.get("msg", "invalid value")
    return f"{_format_location(loc, root)}: {detail}"


def changeset_from_data(data: Any, options: ParseOptions | None = None) -> Changeset:
    """Validate decoded JSON into a ``Changeset``."""
    options = options or ParseOptions()
    try:
        return Changeset.model_validate(data, context={"allow_legacy": options.allow_legacy})
    except ValidationError as e:
        errors = e.errors()
        message = _describe_error(errors[0]) if errors else str(e)
        raise InvalidRequestError.because(message, error_count=len(errors)) from e


def load_changeset(raw: str | bytes, options: ParseOptions | None = None) -> Changeset:
    """Parse a raw changeset document."""
    return changeset_from_data(decode_json_strict(raw), options)


def load_apply_request(raw: str | bytes, options: ParseOptions | None = None) -> Changeset:
    """Parse the ``{"command": "apply", "changeset": {...}}`` stdin wrapper."""
    data = decode_json_strict(raw)
    if not isinstance(data, dict):
        raise InvalidRequestError.because("Apply request must be a JSON object")
    unknown = sorted(set(data) - {"command", "changeset"})
    if unknown:
        raise InvalidRequestError.because(
            f"unknown field `{unknown[0]}`, expected `command` or `changeset`"
        )
    for name in ("command", "changeset"):
        if name not in data:
            raise InvalidRequestError.because(f"missing field `{name}`")
    command = data["command"]
    if command != "apply":
        raise InvalidRequestError.because(
            f"Unsupported command '{command}' in stdin JSON mode; expected 'apply'"
        )
    return changeset_from_data(data["changeset"], options)


def load_edit_request(raw: str | bytes) -> EditRequest:
    """Parse the ``{"command": "edit", ...}`` body read by ``epl edit --json``."""
    data = decode_json_strict(raw)
    if not isinstance(data, dict):
        raise InvalidRequestError.because("Edit request must be a JSON object")
    if "command" not in data:
        raise InvalidRequestError.because("missing field `command`")
    command = data["command"]
    if command != "edit":
        raise InvalidRequestError.because(
            f"Unsupported command '{command}' in stdin JSON mode; expected 'edit'"
        )
    body = {key: value for key, value in data.items() if key != "command"}
    try:
        return EditRequest.model_validate(body)
    except ValidationError as e:
        errors = e.errors()
        message = _describe_error(errors[0], root="request") if errors else str(e)
        raise InvalidRequestError.because(message, error_count=len(errors)) from e
