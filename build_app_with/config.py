"""build-app-with configuration.

Typed settings for the secure execution and path-safety layer.  All settings
use Pydantic v2 models so they are validated at construction time and can be
round-tripped through JSON or built from environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

# Variables that let a caller inject code into node/npm child processes.
DEFAULT_STRIPPED_ENV_VARS: list[str] = [
    "NODE_OPTIONS",
    "npm_config_script",
    "npm_config_user_config",
    "npm_config_script_shell",
    "npm_config_node_options",
    "npm_config_globalconfig",
    "npm_config_userconfig",
]


class ExecConfig(BaseModel):
    """Settings applied to every secure subprocess invocation."""

    timeout: int = Field(default=300, ge=1, description="Per-command timeout in seconds")
    node_env: str = Field(default="production", min_length=1)
    stripped_env_vars: list[str] = Field(default_factory=lambda: list(DEFAULT_STRIPPED_ENV_VARS))


class PathConfig(BaseModel):
    """Settings for project-path resolution."""

    max_unique_attempts: int = Field(
        default=1000, ge=1, description="Suffixes tried before unique-path generation gives up"
    )


class Config(BaseModel):
    """Global build-app-with configuration.

    Instances are created once by the CLI entry point and passed to the
    executor and path helpers.
    """

    exec: ExecConfig = Field(default_factory=ExecConfig)
    paths: PathConfig = Field(default_factory=PathConfig)
    allowlist_path: Path | None = Field(
        default=None, description="Optional YAML file extending the command allowlist"
    )
    verbose: bool = False
    quiet: bool = False

    def save(self, path: Path) -> Path:
        """Persist the configuration to a JSON file and return its path."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load a previously-saved configuration from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "Config":
        """Build a ``Config`` from environment variables.

        Recognised variables (all optional):
            BAW_EXEC_TIMEOUT, BAW_NODE_ENV, BAW_ALLOWLIST, BAW_VERBOSE,
            BAW_MAX_UNIQUE_ATTEMPTS, QUIET.
        """
        exec_kwargs: dict[str, Any] = {}
        if os.environ.get("BAW_EXEC_TIMEOUT"):
            exec_kwargs["timeout"] = int(os.environ["BAW_EXEC_TIMEOUT"])
        if os.environ.get("BAW_NODE_ENV"):
            exec_kwargs["node_env"] = os.environ["BAW_NODE_ENV"]

        path_kwargs: dict[str, Any] = {}
        if os.environ.get("BAW_MAX_UNIQUE_ATTEMPTS"):
            path_kwargs["max_unique_attempts"] = int(os.environ["BAW_MAX_UNIQUE_ATTEMPTS"])

        allowlist = os.environ.get("BAW_ALLOWLIST")

        return cls(
            exec=ExecConfig(**exec_kwargs),
            paths=PathConfig(**path_kwargs),
            allowlist_path=Path(allowlist) if allowlist else None,
            verbose=_env_flag("BAW_VERBOSE"),
            quiet=_env_flag("QUIET"),
        )


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in {"1", "true", "yes", "on"}
