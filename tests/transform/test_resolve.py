"""Tests for target resolution."""

from pathlib import Path
from typing import Any

import pytest

from editplane.changeset.models import FileEndTarget, FileStartTarget, LineTarget, NodeTarget, Span
from editplane.core.errors import (
    AmbiguousTargetError,
    InvalidRequestError,
    PreconditionFailedError,
    TargetMissingError,
)
from editplane.core.hashing import hash_bytes, hash_text
from editplane.providers.base import Handle
from editplane.transform.resolve import resolve_destination, resolve_node

DUPLICATES = b"def f():\n    pass\n\n\ndef f():\n    pass\n"


def target_for(handle: Handle, **overrides: Any) -> NodeTarget:
    fields: dict[str, Any] = {
        "identity": handle.identity,
        "kind": handle.kind,
        "expected_old_hash": handle.expected_old_hash,
        "span_hint": handle.span,
    }
    fields.update(overrides)
    return NodeTarget(**fields)


class TestResolveNode:
    """Identity, kind and span_hint resolution."""

    def test_resolves_by_identity(self, module: Path, builder) -> None:
        g = builder.handle(module, "function_definition", "g")
        _, index = builder.load_source(module)
        assert resolve_node(str(module), index, target_for(g)) == g

    def test_given_identity_drift_when_kind_hash_unique_then_fallback_wins(
        self, module: Path, builder
    ) -> None:
        # Given
        g = builder.handle(module, "function_definition", "g")
        _, index = builder.load_source(module)
        target = target_for(g, identity="0" * 16, span_hint=None)

        # When
        resolved = resolve_node(str(module), index, target)

        # Then
        assert resolved.span == g.span

    def test_missing(self, module: Path, builder) -> None:
        _, index = builder.load_source(module)
        target = NodeTarget(identity="0" * 16, kind="function_definition", expected_old_hash="1")
        with pytest.raises(TargetMissingError, match="No target matched identity"):
            resolve_node(str(module), index, target)

    def test_stale_span_hint_is_precondition_failure(self, module: Path, builder) -> None:
        g = builder.handle(module, "function_definition", "g")
        _, index = builder.load_source(module)
        target = target_for(g, identity="0" * 16, expected_old_hash="1" * 16)
        with pytest.raises(PreconditionFailedError, match="has changed since selection"):
            resolve_node(str(module), index, target)

    def test_wrong_hash_for_identity(self, module: Path, builder) -> None:
        g = builder.handle(module, "function_definition", "g")
        _, index = builder.load_source(module)
        with pytest.raises(PreconditionFailedError):
            resolve_node(str(module), index, target_for(g, expected_old_hash="1" * 16))

    def test_span_hint_contradicting_unique_match(self, module: Path, builder) -> None:
        g = builder.handle(module, "function_definition", "g")
        _, index = builder.load_source(module)
        target = target_for(g, expected_old_hash="1" * 16, span_hint=Span(start=1, end=5))
        with pytest.raises(InvalidRequestError, match="does not match resolved target span"):
            resolve_node(str(module), index, target)

    def test_zero_length_span_hint(self, module: Path, builder) -> None:
        g = builder.handle(module, "function_definition", "g")
        _, index = builder.load_source(module)
        with pytest.raises(InvalidRequestError, match="zero-length spans are not supported"):
            resolve_node(str(module), index, target_for(g, span_hint=Span(start=4, end=4)))

    def test_duplicates_need_span_hint(self, tmp_path: Path, builder) -> None:
        path = tmp_path / "dup.py"
        path.write_bytes(DUPLICATES)
        _, index = builder.load_source(path)
        first, second = [h for h in index.handles if h.kind == "function_definition"]

        with pytest.raises(AmbiguousTargetError, match="2 candidates"):
            resolve_node(str(path), index, target_for(second, span_hint=None))
        assert resolve_node(str(path), index, target_for(second)).span == second.span
        assert resolve_node(str(path), index, target_for(first)).span == first.span


class TestResolveOperation:
    """Edit views for every target type."""

    def test_node_replace_view(self, module: Path, builder) -> None:
        f = builder.handle(module, "function_definition", "f")
        operation = builder.node_op(f, {"type": "replace", "new_text": "x"})
        (change,) = builder.resolve(module, [operation])
        assert change.view.old_text == f.text
        assert change.view.matched_span == f.span
        assert change.view.anchor_identity == f.identity

    def test_node_insert_after_is_a_point(self, module: Path, builder) -> None:
        f = builder.handle(module, "function_definition", "f")
        operation = builder.node_op(f, {"type": "insert_after", "new_text": "\n"})
        (change,) = builder.resolve(module, [operation])
        assert change.view.matched_span == Span(start=f.span.end, end=f.span.end)
        assert change.view.old_text == ""

    def test_file_start_skips_bom(self, tmp_path: Path, builder) -> None:
        path = tmp_path / "bom.txt"
        path.write_bytes(b"\xef\xbb\xbfhello\n")
        (change,) = builder.resolve(path, [builder.file_op(path, "file_start", "# ")])
        assert change.view.matched_span == Span(start=3, end=3)

    def test_file_end(self, module: Path, builder) -> None:
        (change,) = builder.resolve(module, [builder.file_op(module, "file_end", "x = 1\n")])
        size = len(module.read_bytes())
        assert change.view.matched_span == Span(start=size, end=size)

    def test_file_hash_mismatch(self, module: Path, builder) -> None:
        operation = builder.file_op(module, "file_end", "x")
        module.write_bytes(module.read_bytes() + b"# changed\n")
        with pytest.raises(PreconditionFailedError):
            builder.resolve(module, [operation])

    def test_line_range_replace(self, module: Path, builder) -> None:
        operation = builder.line_replace(module, 1, "def f(): return 1\n", 2)
        (change,) = builder.resolve(module, [operation])
        assert change.view.old_text == "def f():\n    return 1\n"
        assert change.view.expected_hash == hash_text("def f():\n    return 1\n")

    def test_line_insert_after(self, module: Path, builder) -> None:
        operation = builder.line_insert_after(module, 1, "    # hi\n")
        (change,) = builder.resolve(module, [operation])
        assert change.view.matched_span == Span(start=9, end=9)

    def test_line_range_reversed(self, module: Path, builder) -> None:
        operation = builder.line_replace(module, 1, "x")
        operation["target"] = {
            "type": "line",
            "anchor": builder.line_anchor(module, 2),
            "end_anchor": builder.line_anchor(module, 1),
        }
        with pytest.raises(InvalidRequestError, match="end line 1 must be >= start line 2"):
            builder.resolve(module, [operation])

    def test_whole_file_moves_are_skipped(self, module: Path, tmp_path: Path, builder) -> None:
        assert builder.resolve(module, [builder.file_move(module, tmp_path / "n.py")]) == []


class TestResolveDestination:
    """Landing points for moves."""

    def test_node_destination(self, module: Path, builder) -> None:
        g = builder.handle(module, "function_definition", "g")
        source, index = builder.load_source(module)
        before = resolve_destination(source, index, target_for(g), before=True)
        after = resolve_destination(source, index, target_for(g), before=False)
        assert (before.offset, after.offset) == (g.span.start, g.span.end)
        assert before.anchor_kind == "function_definition"

    def test_line_destination(self, module: Path, builder) -> None:
        source, index = builder.load_source(module)
        target = LineTarget(type="line", anchor=builder.line_anchor(module, 2))
        assert resolve_destination(source, index, target, before=True).offset == 9
        assert resolve_destination(source, index, target, before=False).offset == 22

    def test_line_destination_rejects_end_anchor(self, module: Path, builder) -> None:
        source, index = builder.load_source(module)
        anchor = builder.line_anchor(module, 1)
        target = LineTarget(type="line", anchor=anchor, end_anchor=anchor)
        with pytest.raises(InvalidRequestError, match="does not support end_anchor"):
            resolve_destination(source, index, target, before=True)

    def test_file_destinations(self, module: Path, builder) -> None:
        source, index = builder.load_source(module)
        file_hash = hash_bytes(source.data)
        start = FileStartTarget(type="file_start", expected_file_hash=file_hash)
        end = FileEndTarget(type="file_end", expected_file_hash=file_hash)
        assert resolve_destination(source, index, start, before=True).offset == 0
        assert resolve_destination(source, index, end, before=False).offset == len(source.data)
