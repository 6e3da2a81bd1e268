"""Package-manager wrapper for generated projects.

Translates "install these dependencies" into npm/yarn/pnpm invocations and
runs them through :class:`SecureExecutor`.  Package names are checked before
anything is handed to the executor, which validates again.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from build_app_with.errors import CommandRejectedError, DependencyError, ExecutionError
from build_app_with.reporter import Reporter, resolve_reporter
from build_app_with.security.secure_exec import (
    SecureExecutor,
    split_package_spec,
    validate_package_name,
)

ManagerName = Literal["npm", "yarn", "pnpm"]

COMMANDS: dict[str, dict[str, list[str]]] = {
    "npm": {
        "install": ["npm", "install"],
        "add": ["npm", "install"],
        "add_dev": ["npm", "install", "--save-dev"],
        "remove": ["npm", "uninstall"],
        "view": ["npm", "view"],
        "list": ["npm", "list"],
    },
    "yarn": {
        "install": ["yarn", "install"],
        "add": ["yarn", "add"],
        "add_dev": ["yarn", "add", "--dev"],
        "remove": ["yarn", "remove"],
        "view": ["yarn", "info"],
        "list": ["yarn", "list"],
    },
    "pnpm": {
        "install": ["pnpm", "install"],
        "add": ["pnpm", "add"],
        "add_dev": ["pnpm", "add", "--save-dev"],
        "remove": ["pnpm", "remove"],
        "view": ["pnpm", "info"],
        "list": ["pnpm", "list"],
    },
}

_SUBCOMMANDS = frozenset({"install", "uninstall", "add", "remove", "list", "view", "info"})

# Lockfile -> manager, checked in order.
_LOCKFILES: tuple[tuple[str, ManagerName], ...] = (
    ("yarn.lock", "yarn"),
    ("pnpm-lock.yaml", "pnpm"),
)

VERSION_TIMEOUT = 30
INSTALL_TIMEOUT = 300


@dataclass(frozen=True)
class PackageSpec:
    """A dependency to install."""

    name: str
    version: str = "latest"
    dev: bool = False

    def spec(self) -> str:
        return f"{self.name}@{self.version}"


class PackageManager:
    """Runs dependency operations with one of npm, yarn or pnpm."""

    def __init__(
        self,
        manager: ManagerName = "npm",
        executor: SecureExecutor | None = None,
        reporter: Reporter | None = None,
    ) -> None:
        if manager not in COMMANDS:
            raise DependencyError(f"Unsupported package manager: {manager}", manager)
        self.manager = manager
        self.reporter = resolve_reporter(reporter)
        self.executor = executor or SecureExecutor(reporter=self.reporter)
        self.commands = COMMANDS[manager]

    async def get_latest_version(self, package_name: str) -> str:
        """Return the registry's latest version, or ``"latest"`` if unknown."""
        if not validate_package_name(package_name):
            self.reporter.warning(
                f'Invalid package name: {package_name}, using "latest" tag instead.'
            )
            return "latest"

        command = self.commands["view"]
        try:
            result = await self.executor.run(
                command[0],
                [*command[1:], package_name, "version"],
                timeout=VERSION_TIMEOUT,
            )
        except (CommandRejectedError, ExecutionError):
            self.reporter.warning(
                f'Could not fetch version for {package_name}, using "latest" tag instead.'
            )
            return "latest"
        return result.stdout.strip() or "latest"

    async def install_dependencies(
        self,
        project_path: str | Path,
        packages: Sequence[PackageSpec] = (),
    ) -> None:
        """Install *packages* (regular first, then dev) in *project_path*.

        With no packages, runs a plain ``install``.
        """
        if not packages:
            await self.run_command(project_path, self.commands["install"])
            return

        deps = [pkg.spec() for pkg in packages if not pkg.dev]
        dev_deps = [pkg.spec() for pkg in packages if pkg.dev]

        if deps:
            await self.run_command(project_path, [*self.commands["add"], *deps])
        if dev_deps:
            await self.run_command(project_path, [*self.commands["add_dev"], *dev_deps])

    async def run_command(self, project_path: str | Path, command: Sequence[str]) -> None:
        """Run a package-manager command line inside *project_path*.

        Raises:
            DependencyError: If a package name is invalid or the command fails.
        """
        for arg in command[1:]:
            if arg.startswith("-") or arg in _SUBCOMMANDS:
                continue
            name, _ = split_package_spec(arg)
            if not validate_package_name(name):
                raise DependencyError(f"Invalid package name: {name}", name)

        self.reporter.debug(f"Running {command[0]} in {project_path}")
        try:
            await self.executor.run(
                command[0],
                list(command[1:]),
                cwd=project_path,
                timeout=INSTALL_TIMEOUT,
                node_env="production",
            )
        except (CommandRejectedError, ExecutionError) as exc:
            raise DependencyError(f"Failed to run {command[0]}: {exc}", command[0]) from exc

    async def check_if_installed(self, package_name: str) -> bool:
        """Return ``True`` if ``<manager> list <package>`` succeeds."""
        if not validate_package_name(package_name):
            return False
        command = self.commands["list"]
        try:
            await self.executor.run(
                command[0], [*command[1:], package_name], timeout=VERSION_TIMEOUT
            )
        except ExecutionError:
            return False
        return True

    @staticmethod
    async def detect_package_manager(project_path: str | Path) -> ManagerName:
        """Guess the manager from the lockfile present in *project_path*."""
        root = Path(project_path)
        for lockfile, manager in _LOCKFILES:
            if await asyncio.to_thread((root / lockfile).exists):
                return manager
        return "npm"
