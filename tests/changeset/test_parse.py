"""Tests for strict changeset loading."""

from __future__ import annotations

import json
from typing import Any

import pytest

from editplane.changeset.models import (
    FileStartTarget,
    InsertAfterLineOp,
    LineTarget,
    NodeTarget,
    ReplaceLinesOp,
    Span,
)
from editplane.changeset.parse import (
    ParseOptions,
    decode_json_strict,
    load_apply_request,
    load_changeset,
    load_edit_request,
)
from editplane.core.errors import InvalidRequestError

NODE_TARGET = {
    "type": "node",
    "identity": "0123456789abcdef",
    "kind": "function_definition",
    "expected_old_hash": "fedcba9876543210",
}


def replace_op(target: dict[str, Any] | None = None, **extra: Any) -> dict[str, Any]:
    operation: dict[str, Any] = {
        "op": {"type": "replace", "new_text": "x"},
        "preview": {"old_text": "y", "new_text": "x", "matched_span": {"start": 0, "end": 1}},
        **extra,
    }
    if target is not None:
        operation["target"] = target
    return operation


def dump(payload: Any) -> str:
    return json.dumps(payload)


class TestDecodeJsonStrict:
    """Duplicate keys and malformed JSON."""

    def test_duplicate_key_rejected_at_any_depth(self) -> None:
        with pytest.raises(InvalidRequestError, match="duplicate field `start`"):
            decode_json_strict('{"a": {"start": 1, "start": 2}}')

    def test_malformed_json(self) -> None:
        with pytest.raises(InvalidRequestError, match="Failed to parse JSON request"):
            decode_json_strict("{")

    def test_invalid_utf8(self) -> None:
        with pytest.raises(InvalidRequestError):
            decode_json_strict(b'{"a": "\xff"}')


class TestChangesetShape:
    """Batch and single-file shapes."""

    def test_batch_shape(self) -> None:
        changeset = load_changeset(
            dump({"files": [{"file": "a.py", "operations": [replace_op(NODE_TARGET)]}]})
        )
        assert len(changeset.files) == 1
        assert changeset.transaction.mode == "all_or_nothing"
        assert changeset.operation_count == 1

    def test_single_file_sugar(self) -> None:
        changeset = load_changeset(dump({"file": "a.py", "operations": [replace_op(NODE_TARGET)]}))
        assert changeset.files[0].file == "a.py"

    def test_mixed_shapes_rejected(self) -> None:
        payload = {"file": "a.py", "files": [], "operations": []}
        with pytest.raises(InvalidRequestError, match="cannot include both 'file' and 'files'"):
            load_changeset(dump(payload))

    def test_empty_files_rejected(self) -> None:
        with pytest.raises(InvalidRequestError, match="at least one file"):
            load_changeset(dump({"files": []}))

    def test_unknown_field_rejected(self) -> None:
        payload = {"files": [{"file": "a.py", "operations": [], "extra": 1}]}
        with pytest.raises(InvalidRequestError, match="unknown field `extra`"):
            load_changeset(dump(payload))

    def test_unsupported_transaction_mode(self) -> None:
        payload = {
            "files": [{"file": "a.py", "operations": []}],
            "transaction": {"mode": "best_effort"},
        }
        with pytest.raises(InvalidRequestError):
            load_changeset(dump(payload))


class TestTargets:
    """Target union parsing."""

    def test_type_defaults_to_node(self) -> None:
        target = {k: v for k, v in NODE_TARGET.items() if k != "type"}
        changeset = load_changeset(dump({"file": "a.py", "operations": [replace_op(target)]}))
        assert isinstance(changeset.files[0].operations[0].target, NodeTarget)

    def test_span_hint(self) -> None:
        target = {**NODE_TARGET, "span_hint": {"start": 3, "end": 9}}
        changeset = load_changeset(dump({"file": "a.py", "operations": [replace_op(target)]}))
        assert changeset.files[0].operations[0].target.span_hint == Span(start=3, end=9)

    def test_missing_identity_named(self) -> None:
        target = {k: v for k, v in NODE_TARGET.items() if k != "identity"}
        with pytest.raises(InvalidRequestError, match="missing field `identity`"):
            load_changeset(dump({"file": "a.py", "operations": [replace_op(target)]}))

    def test_file_target_rejects_node_fields(self) -> None:
        target = {"type": "file_start", "expected_file_hash": "0" * 16, "identity": "x"}
        operation = {
            "target": target,
            "op": {"type": "insert", "new_text": "x"},
            "preview": {"old_text": "", "new_text": "x", "matched_span": {"start": 0, "end": 0}},
        }
        with pytest.raises(
            InvalidRequestError, match="file-level targets do not accept node-only fields: identity"
        ):
            load_changeset(dump({"file": "a.py", "operations": [operation]}))

    def test_unknown_target_type(self) -> None:
        with pytest.raises(InvalidRequestError, match="unknown variant"):
            load_changeset(
                dump({"file": "a.py", "operations": [replace_op({"type": "symbol", "name": "f"})]})
            )

    def test_file_and_line_targets(self) -> None:
        file_op = {
            "target": {"type": "file_start", "expected_file_hash": "0" * 16},
            "op": {"type": "insert", "new_text": "x"},
            "preview": {"old_text": "", "new_text": "x", "matched_span": {"start": 0, "end": 0}},
        }
        line_op = replace_op({"type": "line", "anchor": "1:0123456789ab"})
        changeset = load_changeset(dump({"file": "a.py", "operations": [file_op, line_op]}))
        targets = [op.target for op in changeset.files[0].operations]
        assert isinstance(targets[0], FileStartTarget)
        assert isinstance(targets[1], LineTarget)


class TestStrictNumbers:
    """Offsets and lengths must be JSON integers."""

    @pytest.mark.parametrize("value", ["2", 2.0, True])
    def test_matched_span_rejects_non_integers(self, value: Any) -> None:
        operation = replace_op(NODE_TARGET)
        operation["preview"]["matched_span"] = {"start": value, "end": 2}
        with pytest.raises(InvalidRequestError, match=r"preview\.matched_span\.start"):
            load_changeset(dump({"file": "a.py", "operations": [operation]}))

    def test_span_hint_rejects_float(self) -> None:
        target = {**NODE_TARGET, "span_hint": {"start": 0, "end": 9.0}}
        with pytest.raises(InvalidRequestError, match=r"span_hint\.end"):
            load_changeset(dump({"file": "a.py", "operations": [replace_op(target)]}))

    def test_old_len_rejects_numeric_string(self) -> None:
        operation = replace_op(NODE_TARGET)
        del operation["preview"]["old_text"]
        operation["preview"].update(old_hash="0123456789abcdef", old_len="1")
        with pytest.raises(InvalidRequestError, match=r"preview\.old_len"):
            load_changeset(dump({"file": "a.py", "operations": [operation]}))


class TestCompatibility:
    """Target/op combinations."""

    @pytest.mark.parametrize(
        ("target", "op"),
        [
            ({"type": "line", "anchor": "1:0123456789ab"}, {"type": "delete"}),
            ({"type": "file_end", "expected_file_hash": "0" * 16}, {"type": "delete"}),
            (NODE_TARGET, {"type": "insert", "new_text": "x"}),
        ],
    )
    def test_unsupported_combination(self, target: dict[str, Any], op: dict[str, Any]) -> None:
        operation = {
            "target": target,
            "op": op,
            "preview": {"old_text": "", "new_text": "", "matched_span": {"start": 0, "end": 0}},
        }
        with pytest.raises(InvalidRequestError, match="unsupported target/op combination"):
            load_changeset(dump({"file": "a.py", "operations": [operation]}))

    def test_end_anchor_only_with_replace(self) -> None:
        target = {"type": "line", "anchor": "1:0123456789ab", "end_anchor": "2:0123456789ab"}
        operation = {
            "target": target,
            "op": {"type": "insert_after", "new_text": "x"},
            "preview": {"old_text": "", "new_text": "x", "matched_span": {"start": 0, "end": 0}},
        }
        with pytest.raises(InvalidRequestError, match="end_anchor is only valid for replace"):
            load_changeset(dump({"file": "a.py", "operations": [operation]}))


class TestHandleRefs:
    """handle_ref indirection through handle_table."""

    def test_ref_resolved(self) -> None:
        payload = {
            "file": "a.py",
            "handle_table": {"h1": NODE_TARGET},
            "operations": [replace_op({"type": "handle_ref", "ref": "h1"})],
        }
        target = load_changeset(dump(payload)).files[0].operations[0].target
        assert isinstance(target, NodeTarget)
        assert target.identity == NODE_TARGET["identity"]

    def test_unknown_ref(self) -> None:
        payload = {
            "file": "a.py",
            "handle_table": {"h1": NODE_TARGET},
            "operations": [replace_op({"type": "handle_ref", "ref": "h2"})],
        }
        with pytest.raises(InvalidRequestError, match="unknown handle_ref 'h2'"):
            load_changeset(dump(payload))

    def test_ref_without_table(self) -> None:
        payload = {"file": "a.py", "operations": [replace_op({"type": "handle_ref", "ref": "h"})]}
        with pytest.raises(InvalidRequestError, match="requires file-scoped 'handle_table'"):
            load_changeset(dump(payload))


class TestLegacyShape:
    """Flat v1 operation fields."""

    def legacy_payload(self) -> dict[str, Any]:
        legacy = {k: v for k, v in NODE_TARGET.items() if k != "type"}
        return {"file": "a.py", "operations": [replace_op(**legacy)]}

    def test_rejected_by_default(self) -> None:
        with pytest.raises(InvalidRequestError, match="legacy v1 operation field `identity`"):
            load_changeset(dump(self.legacy_payload()))

    def test_converted_when_allowed(self) -> None:
        changeset = load_changeset(
            dump(self.legacy_payload()), ParseOptions(allow_legacy=True)
        )
        target = changeset.files[0].operations[0].target
        assert isinstance(target, NodeTarget)
        assert target.kind == "function_definition"

    def test_mixing_target_and_flat_fields_always_rejected(self) -> None:
        payload = {"file": "a.py", "operations": [replace_op(NODE_TARGET, identity="x")]}
        with pytest.raises(InvalidRequestError, match="cannot be combined with legacy"):
            load_changeset(dump(payload), ParseOptions(allow_legacy=True))


class TestApplyRequest:
    """The stdin JSON wrapper."""

    def test_wrapper(self) -> None:
        body = {
            "command": "apply",
            "changeset": {"file": "a.py", "operations": [replace_op(NODE_TARGET)]},
        }
        assert load_apply_request(dump(body)).files[0].file == "a.py"

    def test_wrong_command(self) -> None:
        body = {"command": "select", "changeset": {"files": []}}
        with pytest.raises(InvalidRequestError, match="Unsupported command 'select'"):
            load_apply_request(dump(body))

    def test_missing_changeset(self) -> None:
        with pytest.raises(InvalidRequestError, match="missing field `changeset`"):
            load_apply_request(dump({"command": "apply"}))

    def test_unknown_field(self) -> None:
        with pytest.raises(InvalidRequestError, match="unknown field `extra`"):
            load_apply_request(dump({"command": "apply", "changeset": {}, "extra": 1}))


class TestEditRequest:
    """The ``epl edit --json`` body."""

    def test_single_file_shape(self) -> None:
        body = {
            "command": "edit",
            "file": "a.py",
            "operations": [{"target": NODE_TARGET, "op": {"type": "delete"}}],
        }
        request = load_edit_request(dump(body))
        assert request.files[0].file == "a.py"
        assert isinstance(request.files[0].operations[0].target, NodeTarget)

    def test_line_spellings(self) -> None:
        line = {"type": "line", "anchor": "1:0123456789ab"}
        body = {
            "command": "edit",
            "file": "a.py",
            "operations": [
                {"target": line, "op": {"type": "replace_range", "new_text": "x\n"}},
                {"target": line, "op": {"type": "insert_after_line", "text": "y\n"}},
            ],
        }
        ops = [operation.op for operation in load_edit_request(dump(body)).files[0].operations]
        assert isinstance(ops[0], ReplaceLinesOp)
        assert isinstance(ops[1], InsertAfterLineOp)

    def test_flat_fields_with_target_rejected(self) -> None:
        body = {
            "command": "edit",
            "file": "a.py",
            "operations": [{"target": NODE_TARGET, "identity": "x", "op": {"type": "delete"}}],
        }
        with pytest.raises(InvalidRequestError, match="cannot be combined with legacy"):
            load_edit_request(dump(body))

    def test_missing_command(self) -> None:
        with pytest.raises(InvalidRequestError, match="missing field `command`"):
            load_edit_request(dump({"file": "a.py", "operations": []}))

    def test_no_shape(self) -> None:
        with pytest.raises(InvalidRequestError, match="either single-file"):
            load_edit_request(dump({"command": "edit"}))

    def test_empty_files(self) -> None:
        with pytest.raises(InvalidRequestError, match="at least one file entry"):
            load_edit_request(dump({"command": "edit", "files": []}))

    def test_previews_are_not_accepted(self) -> None:
        body = {"command": "edit", "file": "a.py", "operations": [replace_op(NODE_TARGET)]}
        with pytest.raises(
            InvalidRequestError, match=r"request\.files\[0\]\.operations\[0\]: unknown field"
        ):
            load_edit_request(dump(body))
