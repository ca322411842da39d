"""Pytest configuration for grid bot tests."""

import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
TESTS_DIR = Path(__file__).parent
for path in (PROJECT_ROOT, TESTS_DIR):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

pytest_plugins = ["pytest_asyncio"]


@pytest.fixture(autouse=True)
def isolated_log_dir(tmp_path, monkeypatch):
    """Keep event history and log files out of the working tree."""
    monkeypatch.setenv("GRID_BOT_LOG_DIR", str(tmp_path / "logs"))
    yield tmp_path / "logs"
