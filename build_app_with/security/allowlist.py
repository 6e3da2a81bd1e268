"""Command allowlist for secure subprocess execution.

The allowlist is configuration data: an immutable mapping from command name
to the subcommands and flags it may receive.  The built-in table covers the
package managers and the upstream scaffolders run through ``npx``; a YAML
file can extend it without touching the validation code::

    npm:
      subcommands: [ci]
      flags: [--prefer-offline]
    bun:
      subcommands: [install, add]
      flags: [--dev]
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml


@dataclass(frozen=True)
class CommandSpec:
    """What a single allowlisted command may receive.

    Attributes:
        subcommands: Allowed first positional argument.  For ``npx`` these
            are the runnable package names (version suffix stripped).
        flags: Every flag that may be passed, including value flags.
        value_flags: Flags that consume the following argument as a value.
    """

    subcommands: frozenset[str] = frozenset()
    flags: frozenset[str] = frozenset()
    value_flags: frozenset[str] = frozenset()

    @classmethod
    def build(
        cls,
        subcommands: Iterable[str] = (),
        flags: Iterable[str] = (),
        value_flags: Iterable[str] = (),
    ) -> "CommandSpec":
        value_set = frozenset(value_flags)
        return cls(
            subcommands=frozenset(subcommands),
            flags=frozenset(flags) | value_set,
            value_flags=value_set,
        )

    def merged(self, other: "CommandSpec") -> "CommandSpec":
        """Return a spec allowing everything either spec allows."""
        return CommandSpec(
            subcommands=self.subcommands | other.subcommands,
            flags=self.flags | other.flags,
            value_flags=self.value_flags | other.value_flags,
        )


class Allowlist(Mapping[str, CommandSpec]):
    """Read-only ``{command: CommandSpec}`` mapping."""

    def __init__(self, commands: Mapping[str, CommandSpec]) -> None:
        self._commands = MappingProxyType(dict(commands))

    def __getitem__(self, command: str) -> CommandSpec:
        return self._commands[command]

    def __iter__(self) -> Iterator[str]:
        return iter(self._commands)

    def __len__(self) -> int:
        return len(self._commands)

    def __repr__(self) -> str:
        return f"Allowlist({sorted(self._commands)})"

    def extend(self, extra: Mapping[str, CommandSpec]) -> "Allowlist":
        """Return a new allowlist with *extra* merged in."""
        combined = dict(self._commands)
        for command, spec in extra.items():
            combined[command] = combined[command].merged(spec) if command in combined else spec
        return Allowlist(combined)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Allowlist":
        """Build an allowlist from plain ``{command: {subcommands, flags, value_flags}}`` data."""
        commands: dict[str, CommandSpec] = {}
        for command, entry in data.items():
            if not isinstance(command, str) or not command:
                raise ValueError(f"Allowlist command names must be non-empty strings: {command!r}")
            entry = entry or {}
            if not isinstance(entry, Mapping):
                raise ValueError(f"Allowlist entry for {command!r} must be a mapping")
            unknown = set(entry) - {"subcommands", "flags", "value_flags"}
            if unknown:
                raise ValueError(f"Unknown allowlist keys for {command!r}: {sorted(unknown)}")
            commands[command] = CommandSpec.build(
                subcommands=_string_list(entry.get("subcommands"), command),
                flags=_string_list(entry.get("flags"), command),
                value_flags=_string_list(entry.get("value_flags"), command),
            )
        return cls(commands)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Allowlist":
        """Load allowlist entries from a YAML file."""
        raw = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
        if not isinstance(raw, Mapping):
            raise ValueError(f"Allowlist file must contain a mapping: {path}")
        return cls.from_mapping(raw)


def _string_list(value: Any, command: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) and v for v in value):
        raise ValueError(f"Allowlist values for {command!r} must be lists of strings")
    return value


# Subcommands whose positional arguments are package specs.
INSTALL_SUBCOMMANDS: frozenset[str] = frozenset({"install", "add"})

_DEFAULT_COMMANDS: dict[str, dict[str, list[str]]] = {
    "npm": {
        "subcommands": ["install", "uninstall", "list", "view", "version"],
        "flags": [
            "--save-dev",
            "--global",
            "--save",
            "--no-save",
            "--production",
            "--no-audit",
            "--no-fund",
            "--silent",
            "--quiet",
            "--version",
            "--help",
        ],
    },
    "yarn": {
        "subcommands": ["install", "add", "remove", "info", "list"],
        "flags": [
            "--dev",
            "--global",
            "--save",
            "--production",
            "--silent",
            "--no-lockfile",
            "--version",
            "--help",
        ],
    },
    "pnpm": {
        "subcommands": ["install", "add", "remove", "info", "list"],
        "flags": [
            "--save-dev",
            "--global",
            "--save",
            "--production",
            "--silent",
            "--version",
            "--help",
        ],
    },
    "npx": {
        "subcommands": ["create-next-app", "create-vite", "create-rsbuild"],
        "flags": [
            "--version",
            "--help",
            "--yes",
            "--app",
            "--src-dir",
            "--typescript",
            "--js",
            "--tailwind",
            "--no-tailwind",
            "--eslint",
            "--no-eslint",
            "--use-npm",
            "--use-yarn",
            "--use-pnpm",
            "--skip-install",
        ],
        "value_flags": ["--import-alias", "--template", "--dir", "--tools"],
    },
    "node": {
        "flags": ["--version", "--help"],
    },
}

DEFAULT_ALLOWLIST: Allowlist = Allowlist.from_mapping(_DEFAULT_COMMANDS)
