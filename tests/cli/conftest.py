"""Fixtures for CLI tests."""

from collections.abc import Generator
from pathlib import Path
from unittest.mock import patch

import pytest


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Run every command from tmp_path with no global config."""
    monkeypatch.chdir(tmp_path)
    with patch("editplane.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml"):
        yield
