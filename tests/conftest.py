"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).parent.parent

# Add src to the Python path (development checkout)
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))


@pytest.fixture
def temp_workspace(tmp_path: Path) -> Path:
    """Create a temporary workspace directory."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch):
    """Isolate tests from TR_* variables of the calling shell."""
    import os

    from tool_runner.config import reload_config

    for name in list(os.environ):
        if name.startswith("TR_"):
            monkeypatch.delenv(name, raising=False)
    reload_config()
    yield
    reload_config()
