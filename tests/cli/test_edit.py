"""Tests for epl edit."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from editplane.cli.main import cli
from editplane.core.hashing import hash_text

runner = CliRunner()

SOURCE = b"def f():\n    return 1\n\n\ndef g():\n    return 2\n"


@pytest.fixture
def module(tmp_path: Path) -> Path:
    path = tmp_path / "m.py"
    path.write_bytes(SOURCE)
    return path


def identity_of(builder, path: Path, name: str) -> str:
    return builder.handle(path, "function_definition", name).identity


def edit_args(builder, path: Path, name: str, *flags: str) -> list[str]:
    return ["edit", str(path), "--identity", identity_of(builder, path, name), *flags]


class TestFlagMode:
    """Single-node edits by identity."""

    def test_replace_then_apply(self, module: Path, tmp_path: Path, builder) -> None:
        args = edit_args(builder, module, "g", "--replace", "def g():\n    return 3")
        result = runner.invoke(cli, args)
        assert result.exit_code == 0, result.output
        changeset = json.loads(result.stdout)
        preview = changeset["files"][0]["operations"][0]["preview"]
        assert preview["old_hash"] == hash_text("def g():\n    return 2")
        assert preview["matched_span"] == {"start": 24, "end": 45}

        plan = tmp_path / "plan.json"
        plan.write_text(result.stdout)
        applied = runner.invoke(cli, ["apply", str(plan)])

        assert applied.exit_code == 0, applied.output
        assert module.read_bytes() == SOURCE.replace(b"return 2", b"return 3")

    def test_verbose_preview(self, module: Path, builder) -> None:
        result = runner.invoke(cli, edit_args(builder, module, "f", "--delete", "--verbose"))
        assert result.exit_code == 0, result.output
        preview = json.loads(result.stdout)["files"][0]["operations"][0]["preview"]
        assert preview == {
            "old_text": "def f():\n    return 1",
            "new_text": "",
            "matched_span": {"start": 0, "end": 21},
        }

    def test_insert_before(self, module: Path, builder) -> None:
        result = runner.invoke(cli, edit_args(builder, module, "g", "--insert-before", "# g\n"))
        assert result.exit_code == 0, result.output
        operation = json.loads(result.stdout)["files"][0]["operations"][0]
        assert operation["op"] == {"type": "insert_before", "new_text": "# g\n"}
        assert operation["preview"]["matched_span"] == {"start": 24, "end": 24}

    def test_two_op_flags_rejected(self, module: Path, builder) -> None:
        result = runner.invoke(cli, edit_args(builder, module, "f", "--delete", "--replace", "x"))
        assert result.exit_code == 1
        assert "cannot be used together" in json.loads(result.stdout)["error"]["message"]

    def test_op_flag_required(self, module: Path, builder) -> None:
        result = runner.invoke(cli, edit_args(builder, module, "f"))
        assert result.exit_code == 1
        assert "is required" in json.loads(result.stdout)["error"]["message"]

    def test_identity_required(self, module: Path) -> None:
        result = runner.invoke(cli, ["edit", str(module), "--delete"])
        assert result.exit_code == 1
        assert "--identity is required" in json.loads(result.stdout)["error"]["message"]

    def test_unknown_identity(self, module: Path) -> None:
        result = runner.invoke(cli, ["edit", str(module), "--identity", "0" * 16, "--delete"])
        assert result.exit_code == 1
        assert json.loads(result.stdout)["error"]["type"] == "target_missing"


class TestJsonMode:
    """Edit requests on stdin."""

    def test_batch_request(self, module: Path, tmp_path: Path, builder) -> None:
        other = tmp_path / "other.py"
        other.write_bytes(b"x = 1\n")
        body = {
            "command": "edit",
            "files": [
                {
                    "file": str(module),
                    "operations": [
                        {
                            "target": builder.node_target(
                                builder.handle(module, "function_definition", "f")
                            ),
                            "op": {"type": "delete"},
                        }
                    ],
                },
                {
                    "file": str(other),
                    "operations": [
                        {
                            "target": {"type": "line", "anchor": builder.line_anchor(other, 1)},
                            "op": {"type": "replace_lines", "new_text": "x = 2\n"},
                        }
                    ],
                },
            ],
        }

        result = runner.invoke(cli, ["edit", "--json"], input=json.dumps(body))

        assert result.exit_code == 0, result.output
        files = json.loads(result.stdout)["files"]
        assert [entry["file"] for entry in files] == [str(module), str(other)]
        assert files[1]["operations"][0]["op"] == {"type": "replace", "new_text": "x = 2\n"}

    def test_rejects_file_argument(self, module: Path) -> None:
        result = runner.invoke(cli, ["edit", "--json", str(module)], input="{}")
        assert result.exit_code == 1
        assert "omit FILE" in json.loads(result.stdout)["error"]["message"]

    def test_wrong_command(self) -> None:
        result = runner.invoke(cli, ["edit", "--json"], input='{"command": "apply"}')
        assert result.exit_code == 1
        error = json.loads(result.stdout)["error"]
        assert error["type"] == "invalid_request"
        assert "expected 'edit'" in error["message"]

    def test_unknown_op_variant(self, module: Path) -> None:
        body = {
            "command": "edit",
            "file": str(module),
            "operations": [
                {
                    "target": {"type": "file_end", "expected_file_hash": "0" * 16},
                    "op": {"type": "append"},
                }
            ],
        }
        result = runner.invoke(cli, ["edit", "--json"], input=json.dumps(body))
        assert result.exit_code == 1
        message = json.loads(result.stdout)["error"]["message"]
        assert message.startswith("request.files[0].operations[0].op: unknown variant `append`")
