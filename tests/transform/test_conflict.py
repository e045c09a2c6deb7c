"""Tests for conflict detection and byte splicing."""

from pathlib import Path
from typing import Any

import pytest

from editplane.changeset.models import Span
from editplane.core.errors import InvalidRequestError, PreconditionFailedError
from editplane.transform.conflict import (
    IncomingInsert,
    Replacement,
    apply_replacements,
    matched_changes_to_replacements,
    validate_change_conflicts,
)


def check(builder, path: Path, operations: list[dict[str, Any]]) -> None:
    validate_change_conflicts(builder.resolve(path, operations))


class TestValidateChangeConflicts:
    """Anchor groups and effective spans."""

    @pytest.mark.parametrize("reverse", [False, True])
    def test_rewrite_and_insert_on_same_anchor(self, module: Path, builder, reverse: bool) -> None:
        f = builder.handle(module, "function_definition", "f")
        operations = [
            builder.node_op(f, {"type": "insert_before", "new_text": "# doc\n"}),
            builder.node_op(f, {"type": "replace", "new_text": "def f(): pass"}),
        ]
        if reverse:
            operations.reverse()
        with pytest.raises(
            InvalidRequestError,
            match=(
                r"anchor 'function_definition' \[0, 21\) mixes rewrite and insert operations"
            ),
        ):
            check(builder, module, operations)

    @pytest.mark.parametrize("reverse", [False, True])
    def test_two_rewrites_of_one_node(self, module: Path, builder, reverse: bool) -> None:
        f = builder.handle(module, "function_definition", "f")
        operations = [
            builder.node_op(f, {"type": "replace", "new_text": "def f(): pass"}),
            builder.node_op(f, {"type": "delete"}),
        ]
        if reverse:
            operations.reverse()
        with pytest.raises(
            InvalidRequestError,
            match=r"Overlapping operations are not supported: \[0, 21\) conflicts with \[0, 21\)",
        ):
            check(builder, module, operations)

    def test_two_inserts_at_one_point(self, module: Path, builder) -> None:
        operations = [
            builder.file_op(module, "file_start", "# a\n"),
            builder.file_op(module, "file_start", "# b\n"),
        ]
        with pytest.raises(InvalidRequestError, match=r"\[0, 0\) conflicts with \[0, 0\)"):
            check(builder, module, operations)

    def test_move_landing_touching_a_rewrite(self, module: Path, builder) -> None:
        f = builder.handle(module, "function_definition", "f")
        g = builder.handle(module, "function_definition", "g")
        operations = [
            builder.node_op(f, {"type": "move_after", "destination": builder.node_target(g)}),
            builder.node_op(g, {"type": "replace", "new_text": "def g(): pass"}),
        ]
        end = g.span.end
        with pytest.raises(
            InvalidRequestError, match=rf"\[{g.span.start}, {end}\) conflicts with \[{end}, {end}\)"
        ):
            check(builder, module, operations)

    def test_independent_edits_pass(self, module: Path, builder) -> None:
        f = builder.handle(module, "function_definition", "f")
        g = builder.handle(module, "function_definition", "g")
        check(
            builder,
            module,
            [
                builder.node_op(f, {"type": "replace", "new_text": "def f(): pass"}),
                builder.node_op(g, {"type": "insert_after", "new_text": "\n"}),
                builder.file_op(module, "file_end", "# trailer\n"),
            ],
        )

    def test_incoming_insert_joins_anchor_groups(self, module: Path, builder) -> None:
        f = builder.handle(module, "function_definition", "f")
        matched = builder.resolve(
            module, [builder.node_op(f, {"type": "replace", "new_text": "def f(): pass"})]
        )
        incoming = IncomingInsert(
            index=0,
            offset=f.span.end,
            text="x",
            anchor_kind="function_definition",
            anchor_span=f.span,
            source_file="other.py",
        )
        with pytest.raises(InvalidRequestError, match="mixes rewrite and insert"):
            validate_change_conflicts(matched, [incoming])


class TestApplyReplacements:
    """Byte splicing."""

    def test_same_file_move_splices_twice(self, module: Path, builder) -> None:
        f = builder.handle(module, "function_definition", "f")
        g = builder.handle(module, "function_definition", "g")
        data = module.read_bytes()
        matched = builder.resolve(
            module,
            [builder.node_op(f, {"type": "move_after", "destination": builder.node_target(g)})],
        )

        result = apply_replacements(module, data, matched_changes_to_replacements(matched))

        expected = data[f.span.end : g.span.end] + f.text.encode() + data[g.span.end :]
        assert result == expected

    def test_adjacent_rewrites_are_allowed(self) -> None:
        replacements = [
            Replacement(0, "", "ab", 0, 2, "AB"),
            Replacement(1, "", "cd", 2, 4, "CD"),
        ]
        assert apply_replacements(Path("x"), b"abcd", replacements) == b"ABCD"

    def test_order_of_replacements_does_not_matter(self) -> None:
        replacements = [
            Replacement(1, "", "", 4, 4, "!"),
            Replacement(0, "", "ab", 0, 2, ""),
        ]
        assert apply_replacements(Path("x"), b"abcd", replacements) == b"cd!"

    def test_non_boundary_span(self) -> None:
        data = "é".encode()
        with pytest.raises(InvalidRequestError, match="not a valid UTF-8 boundary range"):
            apply_replacements(Path("x"), data, [Replacement(0, "", "", 1, 1, "x")])

    def test_span_past_end(self) -> None:
        with pytest.raises(InvalidRequestError, match="not a valid UTF-8 boundary range"):
            apply_replacements(Path("x"), b"ab", [Replacement(0, "", "", 5, 5, "x")])

    def test_old_text_mismatch(self) -> None:
        with pytest.raises(PreconditionFailedError):
            apply_replacements(Path("x"), b"abcd", [Replacement(0, "h", "zz", 0, 2, "x")])

    def test_overlap(self) -> None:
        replacements = [
            Replacement(0, "", "abc", 0, 3, ""),
            Replacement(1, "", "cd", 2, 4, ""),
        ]
        with pytest.raises(InvalidRequestError, match="Overlapping operations"):
            apply_replacements(Path("x"), b"abcd", replacements)

    def test_span_type(self) -> None:
        assert str(Span(start=1, end=2)) == "[1, 2)"
