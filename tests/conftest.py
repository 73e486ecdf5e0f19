"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Add src to the path for runs without an editable install
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

FIXTURES_DIR = Path(__file__).parent / "fixtures"
FAKE_TOOL_PATH = FIXTURES_DIR / "fake_tool.py"


@pytest.fixture
def fake_tool() -> list[str]:
    """Command prefix for the fake tool: [python, fake_tool.py]."""
    return [sys.executable, str(FAKE_TOOL_PATH)]


@pytest.fixture
def python_exe() -> str:
    return sys.executable


@pytest.fixture(autouse=True)
def _fresh_config(monkeypatch: pytest.MonkeyPatch):
    """Every test starts from the default configuration."""
    for name in (
        "PROCPUMP_LOG_DEBUG",
        "PROCPUMP_READ_CHUNK_SIZE",
        "PROCPUMP_NEW_SESSION",
        "PROCPUMP_SIGINT_MODE",
        "PROCPUMP_SIGINT_DOUBLE_TAP_WINDOW",
    ):
        monkeypatch.delenv(name, raising=False)

    from procpump.config import reload_config

    reload_config()
    yield
    reload_config()
