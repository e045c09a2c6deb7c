"""Tests for merging changesets."""

from __future__ import annotations

from pathlib import Path

import pytest

from editplane.core.errors import InvalidRequestError, PreconditionFailedError
from editplane.providers.base import ProviderRegistry
from editplane.transform.merge import merge_changesets

registry = ProviderRegistry.default()


def replace(builder, path: Path, name: str, new_text: str) -> dict:
    handle = builder.handle(path, "function_definition", name)
    return builder.node_op(handle, {"type": "replace", "new_text": new_text})


class TestMergeChangesets:
    """Grouping, conflicts and whole-file moves."""

    def test_files_keep_first_seen_order(self, module: Path, tmp_path: Path, builder) -> None:
        other = tmp_path / "other.py"
        other.write_bytes(module.read_bytes())
        first = builder.changeset((other, [replace(builder, other, "f", "def f(): pass")]))
        second = builder.changeset((module, [replace(builder, module, "g", "def g(): pass")]))

        merged = merge_changesets([first, second], registry)

        assert [change.file for change in merged.files] == [str(other), str(module)]
        assert merged.transaction.mode == "all_or_nothing"

    def test_same_file_operations_combined(self, module: Path, builder) -> None:
        first = builder.changeset((module, [replace(builder, module, "f", "def f(): pass")]))
        second = builder.changeset((module, [replace(builder, module, "g", "def g(): pass")]))

        merged = merge_changesets([first, second], registry)

        (change,) = merged.files
        assert [op.op.new_text for op in change.operations] == ["def f(): pass", "def g(): pass"]

    def test_overlapping_operations_rejected(self, module: Path, builder) -> None:
        first = builder.changeset((module, [replace(builder, module, "f", "def f(): pass")]))
        second = builder.changeset((module, [replace(builder, module, "f", "def f(): 0")]))
        with pytest.raises(InvalidRequestError, match="conflicting operations in"):
            merge_changesets([first, second], registry)

    def test_move_with_other_operation_rejected(
        self, module: Path, tmp_path: Path, builder
    ) -> None:
        edit = builder.changeset((module, [replace(builder, module, "f", "def f(): pass")]))
        move = builder.changeset((module, [builder.file_move(module, tmp_path / "n.py")]))
        with pytest.raises(InvalidRequestError, match="move cannot be merged"):
            merge_changesets([edit, move], registry)

    def test_two_moves_to_one_destination(self, module: Path, tmp_path: Path, builder) -> None:
        other = tmp_path / "other.py"
        other.write_bytes(b"x = 1\n")
        destination = tmp_path / "n.py"
        first = builder.changeset((module, [builder.file_move(module, destination)]))
        second = builder.changeset((other, [builder.file_move(other, destination)]))
        with pytest.raises(InvalidRequestError, match="both target"):
            merge_changesets([first, second], registry)

    def test_lone_move_passes_through(self, module: Path, tmp_path: Path, builder) -> None:
        move = builder.changeset((module, [builder.file_move(module, tmp_path / "n.py")]))
        merged = merge_changesets([move], registry)
        assert merged.files[0].moves[0].to == str(tmp_path / "n.py")

    def test_stale_input_rejected(self, module: Path, builder) -> None:
        changeset = builder.changeset((module, [replace(builder, module, "f", "def f(): pass")]))
        module.write_bytes(module.read_bytes().replace(b"return 1", b"return 9"))
        with pytest.raises(PreconditionFailedError):
            merge_changesets([changeset], registry)

    def test_empty_input(self) -> None:
        with pytest.raises(InvalidRequestError, match="at least one changeset"):
            merge_changesets([], registry)
