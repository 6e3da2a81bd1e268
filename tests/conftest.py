"""Shared pytest fixtures for the build-app-with test suite.

Provides reusable fixtures for:
- A reporter that records every message by level
- Mock subprocess helpers
- A clean environment for configuration tests
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest


# ---------------------------------------------------------------------------
# Reporter
# ---------------------------------------------------------------------------


class RecordingReporter:
    """Reporter that keeps ``(level, message)`` pairs for assertions."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def debug(self, message: str) -> None:
        self.messages.append(("debug", message))

    def info(self, message: str) -> None:
        self.messages.append(("info", message))

    def success(self, message: str) -> None:
        self.messages.append(("success", message))

    def warning(self, message: str) -> None:
        self.messages.append(("warning", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))

    def at(self, level: str) -> list[str]:
        return [message for lvl, message in self.messages if lvl == level]

    @property
    def text(self) -> str:
        return "\n".join(message for _, message in self.messages)


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


# ---------------------------------------------------------------------------
# Paths & Directories
# ---------------------------------------------------------------------------


@pytest.fixture
def base_dir(tmp_path: Path) -> Path:
    """Empty parent directory for generated projects (auto-cleanup)."""
    base = tmp_path / "projects"
    base.mkdir()
    return base


# ---------------------------------------------------------------------------
# Subprocess
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_subprocess():
    """Mock asyncio subprocess for testing command execution.

    Returns a factory that creates mock subprocess instances with configurable
    stdout, stderr, and return codes.

    Usage:
        def test_command(mock_subprocess):
            proc = mock_subprocess(stdout="output", returncode=0)
            with patch("asyncio.create_subprocess_exec", return_value=proc):
                ...
    """
    def factory(
        stdout: str = "",
        stderr: str = "",
        returncode: int = 0,
    ) -> AsyncMock:
        mock_proc = AsyncMock()
        mock_proc.communicate = AsyncMock(
            return_value=(stdout.encode("utf-8"), stderr.encode("utf-8"))
        )
        mock_proc.returncode = returncode
        mock_proc.pid = 99999
        mock_proc.kill = MagicMock()
        mock_proc.wait = AsyncMock(return_value=returncode)
        return mock_proc

    return factory


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


_CONFIG_VARS = (
    "BAW_EXEC_TIMEOUT",
    "BAW_NODE_ENV",
    "BAW_ALLOWLIST",
    "BAW_VERBOSE",
    "BAW_MAX_UNIQUE_ATTEMPTS",
    "QUIET",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Remove every build-app-with configuration variable from the environment."""
    for name in _CONFIG_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
