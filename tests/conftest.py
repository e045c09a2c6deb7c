"""Root conftest.py for test configuration.

Ensures local src/ directory takes priority over any installed packages, and
provides builders for changeset payloads.
"""

import json
import os
import sys
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest

# Insert local src directory at the beginning of sys.path
# This ensures that the local editplane package is used, not any installed one
_src_dir = Path(__file__).parent.parent / "src"
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

# Force reimport of editplane modules if already imported
for module_name in list(sys.modules.keys()):
    if module_name.startswith("editplane"):
        del sys.modules[module_name]

from editplane.changeset.models import Changeset  # noqa: E402
from editplane.changeset.parse import load_changeset  # noqa: E402
from editplane.core.hashing import hash_bytes  # noqa: E402
from editplane.hashline.anchors import format_line_ref, split_lines  # noqa: E402
from editplane.providers.base import Handle, ProviderRegistry  # noqa: E402
from editplane.transform.resolve import (  # noqa: E402
    HandleIndex,
    MatchedChange,
    SourceFile,
    requires_handles,
    resolve_file_operations,
)


@pytest.fixture(autouse=True)
def clean_env() -> Generator[None, None, None]:
    """Remove EDITPLANE__* env vars for clean tests."""
    orig = {k: v for k, v in os.environ.items() if k.startswith("EDITPLANE__")}
    for k in orig:
        del os.environ[k]
    yield
    for k in [k for k in os.environ if k.startswith("EDITPLANE__")]:
        del os.environ[k]
    os.environ.update(orig)


class ChangesetBuilder:
    """Builds operation payloads whose previews match the current file."""

    def __init__(self) -> None:
        self.registry = ProviderRegistry.default()

    def handle(self, path: Path, kind: str, name: str | None = None) -> Handle:
        handles = self.registry.select(path, path.read_bytes())
        matches = [h for h in handles if h.kind == kind and (name is None or h.name == name)]
        assert len(matches) == 1, f"expected one {kind} {name!r}, got {len(matches)}"
        return matches[0]

    def load_source(self, path: Path) -> tuple[SourceFile, HandleIndex]:
        source = SourceFile.from_bytes(path, path.read_bytes())
        return source, HandleIndex(self.registry.select(path, source.data))

    def resolve(self, path: Path, operations: list[dict[str, Any]]) -> list[MatchedChange]:
        """Parse ``operations`` for ``path`` and resolve them against its current bytes."""
        changeset = load_changeset(json.dumps({"file": str(path), "operations": operations}))
        parsed = changeset.files[0].operations
        source = SourceFile.from_bytes(path, path.read_bytes())
        handles = self.registry.select(path, source.data) if requires_handles(parsed) else []
        return resolve_file_operations(source, HandleIndex(handles), parsed)

    def changeset(self, *changes: tuple[Path, list[dict[str, Any]]]) -> Changeset:
        files = [{"file": str(path), "operations": ops} for path, ops in changes]
        return load_changeset(json.dumps({"files": files}))

    @staticmethod
    def node_target(handle: Handle, *, span_hint: bool = True) -> dict[str, Any]:
        target: dict[str, Any] = {
            "type": "node",
            "identity": handle.identity,
            "kind": handle.kind,
            "expected_old_hash": handle.expected_old_hash,
        }
        if span_hint:
            target["span_hint"] = {"start": handle.span.start, "end": handle.span.end}
        return target

    def node_op(self, handle: Handle, op: dict[str, Any]) -> dict[str, Any]:
        start, end = handle.span.start, handle.span.end
        if op["type"] == "insert_before":
            old_text, matched = "", (start, start)
        elif op["type"] == "insert_after":
            old_text, matched = "", (end, end)
        else:
            old_text, matched = handle.text, (start, end)
        return {
            "target": self.node_target(handle),
            "op": op,
            "preview": preview(old_text, op.get("new_text", ""), matched),
        }

    @staticmethod
    def file_op(path: Path, where: str, new_text: str) -> dict[str, Any]:
        data = path.read_bytes()
        offset = len(data)
        if where == "file_start":
            offset = 3 if data.startswith(b"\xef\xbb\xbf") else 0
        return {
            "target": {"type": where, "expected_file_hash": hash_bytes(data)},
            "op": {"type": "insert", "new_text": new_text},
            "preview": preview("", new_text, (offset, offset)),
        }

    @staticmethod
    def line_anchor(path: Path, number: int) -> str:
        line = split_lines(path.read_bytes())[number - 1]
        return format_line_ref(line.number, line.hash)

    def line_replace(
        self, path: Path, first: int, new_text: str, last: int | None = None
    ) -> dict[str, Any]:
        data = path.read_bytes()
        lines = split_lines(data)
        start, end = lines[first - 1], lines[(last or first) - 1]
        target: dict[str, Any] = {"type": "line", "anchor": self.line_anchor(path, first)}
        if last is not None:
            target["end_anchor"] = self.line_anchor(path, last)
        old_text = data[start.start : end.end].decode("utf-8")
        return {
            "target": target,
            "op": {"type": "replace", "new_text": new_text},
            "preview": preview(old_text, new_text, (start.start, end.end)),
        }

    def line_insert_after(self, path: Path, number: int, new_text: str) -> dict[str, Any]:
        line = split_lines(path.read_bytes())[number - 1]
        return {
            "target": {"type": "line", "anchor": self.line_anchor(path, number)},
            "op": {"type": "insert_after", "new_text": new_text},
            "preview": preview("", new_text, (line.end, line.end)),
        }

    @staticmethod
    def file_move(source: Path, destination: Path) -> dict[str, Any]:
        return {
            "target": {"type": "file_start", "expected_file_hash": "0" * 16},
            "op": {"type": "move", "to": str(destination)},
            "preview": {
                "old_text": "",
                "new_text": "",
                "matched_span": {"start": 0, "end": 0},
                "move": {"from": str(source), "to": str(destination)},
            },
        }


def preview(old_text: str, new_text: str, matched: tuple[int, int]) -> dict[str, Any]:
    return {
        "old_text": old_text,
        "new_text": new_text,
        "matched_span": {"start": matched[0], "end": matched[1]},
    }


@pytest.fixture
def builder() -> ChangesetBuilder:
    return ChangesetBuilder()
