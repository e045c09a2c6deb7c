"""Fixtures for resolution tests."""

from pathlib import Path

import pytest

TWO_FUNCTIONS = b"def f():\n    return 1\n\n\ndef g():\n    return 2\n"


@pytest.fixture
def module(tmp_path: Path) -> Path:
    path = tmp_path / "m.py"
    path.write_bytes(TWO_FUNCTIONS)
    return path
