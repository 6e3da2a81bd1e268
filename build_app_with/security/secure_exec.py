"""Allowlist-gated subprocess execution.

Every outbound process goes through :meth:`SecureExecutor.run`, which
validates the command and its arguments against the allowlist *before*
anything is spawned, runs the child without a shell in a hardened
environment, and redacts credentials from everything it logs or raises.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import re
import subprocess
import sys
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import NoReturn

from build_app_with.config import Config, ExecConfig
from build_app_with.errors import CommandRejectedError, ExecutionError
from build_app_with.reporter import Reporter, resolve_reporter
from build_app_with.security.allowlist import (
    DEFAULT_ALLOWLIST,
    INSTALL_SUBCOMMANDS,
    Allowlist,
)
from build_app_with.security.secrets import sanitize_sensitive_data

MAX_PACKAGE_NAME_LENGTH = 214

# Rejected anywhere in a command argument.
SHELL_METACHARACTERS = re.compile(r"[;&|`$(){}\[\]<>\\]")

_PACKAGE_NAME = re.compile(r"(@[a-z0-9\-~][a-z0-9\-._~]*/)?[a-z0-9\-~][a-z0-9\-._~]*", re.IGNORECASE)
_PACKAGE_MALICIOUS = (
    re.compile(r"[;&|`$(){}\[\]<>]"),
    re.compile(r"\s"),
    re.compile(r"\.\."),
    re.compile(r"^-"),
    re.compile(r"__proto__|prototype|constructor", re.IGNORECASE),
)
_VERSION_SPEC = re.compile(r"[A-Za-z0-9._~^*+-]+")
_SAFE_POSITIONAL = re.compile(r"[A-Za-z0-9@][A-Za-z0-9@._~/-]*")
_SAFE_FLAG_VALUE = re.compile(r"[A-Za-z0-9@._~/*,+][A-Za-z0-9@._~/*,+-]*")


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CommandInvocation:
    """A command invocation broken into its validated parts.

    Attributes:
        command: Executable name, looked up in the allowlist.
        subcommand: First positional (``install``, or for ``npx`` the
            scaffolder package such as ``create-vite@latest``).
        package_args: Remaining positionals (package specs or project names).
        flags: Boolean flags such as ``--save-dev``.
        options: ``(flag, value)`` pairs for flags that take a value.
    """

    command: str
    subcommand: str | None = None
    package_args: tuple[str, ...] = ()
    flags: tuple[str, ...] = ()
    options: tuple[tuple[str, str], ...] = ()

    def to_args(self) -> list[str]:
        """Return the argument vector (without the command itself)."""
        args: list[str] = []
        if self.subcommand:
            args.append(self.subcommand)
        args.extend(self.package_args)
        args.extend(self.flags)
        for flag, value in self.options:
            args.extend((flag, value))
        return args


@dataclass
class ExecResult:
    """Outcome of a successful secure command execution."""

    command: str
    args: list[str] = field(default_factory=list)
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.exit_code == 0


# ---------------------------------------------------------------------------
# Package names
# ---------------------------------------------------------------------------


def validate_package_name(package_name: object) -> bool:
    """Return ``True`` if *package_name* is a safe registry package name.

    Accepts ``name`` and ``@scope/name``.  Rejects names longer than 214
    characters, shell metacharacters, whitespace, ``..``, a leading ``-`` and
    prototype-pollution keywords.  Never raises.
    """
    if not package_name or not isinstance(package_name, str):
        return False
    if not _PACKAGE_NAME.fullmatch(package_name):
        return False
    if len(package_name) > MAX_PACKAGE_NAME_LENGTH:
        return False
    return not any(pattern.search(package_name) for pattern in _PACKAGE_MALICIOUS)


def split_package_spec(spec: str) -> tuple[str, str | None]:
    """Split ``name@version`` into ``(name, version)``; scoped names keep their ``@``."""
    at = spec.find("@", 1) if spec.startswith("@") else spec.find("@")
    if at == -1:
        return spec, None
    return spec[:at], spec[at + 1:]


def _validate_package_spec(spec: str) -> str | None:
    name, version = split_package_spec(spec)
    if not validate_package_name(name):
        return f"Invalid package name: {spec}"
    if version is not None and not _VERSION_SPEC.fullmatch(version):
        return f"Invalid version specifier: {spec}"
    return None


# ---------------------------------------------------------------------------
# Command validation
# ---------------------------------------------------------------------------


def parse_command_args(
    command: str,
    args: Sequence[str],
    allowlist: Allowlist | None = None,
) -> CommandInvocation:
    """Split a raw argument vector into a :class:`CommandInvocation`.

    Performs the per-argument checks (non-empty string, no shell
    metacharacters, flag in allowlist, value present for value flags).

    Raises:
        CommandRejectedError: On the first failing check.
    """
    allowlist = allowlist if allowlist is not None else DEFAULT_ALLOWLIST
    if not isinstance(command, str) or command not in allowlist:
        raise CommandRejectedError(
            f'Command "{command}" is not in the allowlist', command=str(command)
        )
    if isinstance(args, str) or not isinstance(args, Sequence):
        raise CommandRejectedError("Arguments must be a list of strings", command=command)

    spec = allowlist[command]
    positionals: list[str] = []
    flags: list[str] = []
    options: list[tuple[str, str]] = []

    index = 0
    while index < len(args):
        arg = args[index]
        if not arg or not isinstance(arg, str):
            raise CommandRejectedError("Arguments must be non-empty strings", command=command)
        if SHELL_METACHARACTERS.search(arg):
            raise CommandRejectedError(
                f"Argument contains shell metacharacters: {arg}", command=command
            )

        if arg.startswith("-"):
            if arg not in spec.flags:
                raise CommandRejectedError(f"Flag not in allowlist: {arg}", command=command)
            if arg in spec.value_flags:
                if index + 1 >= len(args):
                    raise CommandRejectedError(f"Flag requires a value: {arg}", command=command)
                value = args[index + 1]
                if not value or not isinstance(value, str):
                    raise CommandRejectedError(f"Flag requires a value: {arg}", command=command)
                if SHELL_METACHARACTERS.search(value):
                    raise CommandRejectedError(
                        f"Argument contains shell metacharacters: {value}", command=command
                    )
                options.append((arg, value))
                index += 2
                continue
            flags.append(arg)
        else:
            positionals.append(arg)
        index += 1

    return CommandInvocation(
        command=command,
        subcommand=positionals[0] if positionals else None,
        package_args=tuple(positionals[1:]),
        flags=tuple(flags),
        options=tuple(options),
    )


def validate_invocation(invocation: CommandInvocation, allowlist: Allowlist | None = None) -> None:
    """Check every field of *invocation* against the allowlist.

    Raises:
        CommandRejectedError: On the first failing field.
    """
    allowlist = allowlist if allowlist is not None else DEFAULT_ALLOWLIST
    command = invocation.command
    if command not in allowlist:
        raise CommandRejectedError(f'Command "{command}" is not in the allowlist', command=command)
    spec = allowlist[command]

    for arg in invocation.to_args():
        if not arg or not isinstance(arg, str):
            raise CommandRejectedError("Arguments must be non-empty strings", command=command)
        if SHELL_METACHARACTERS.search(arg):
            raise CommandRejectedError(
                f"Argument contains shell metacharacters: {arg}", command=command
            )

    subcommand = invocation.subcommand
    if subcommand is not None:
        base, version = split_package_spec(subcommand)
        if base not in spec.subcommands:
            raise CommandRejectedError(
                f'Subcommand "{subcommand}" is not allowed for {command}', command=command
            )
        if version is not None and not _VERSION_SPEC.fullmatch(version):
            raise CommandRejectedError(f"Invalid version specifier: {subcommand}", command=command)
    elif invocation.package_args:
        raise CommandRejectedError(
            f"Positional arguments require an allowed subcommand for {command}", command=command
        )

    for arg in invocation.package_args:
        if subcommand in INSTALL_SUBCOMMANDS:
            reason = _validate_package_spec(arg)
            if reason:
                raise CommandRejectedError(reason, command=command)
        elif not _SAFE_POSITIONAL.fullmatch(arg):
            raise CommandRejectedError(f"Invalid positional argument: {arg}", command=command)

    for flag in invocation.flags:
        if flag not in spec.flags or flag in spec.value_flags:
            raise CommandRejectedError(f"Flag not in allowlist: {flag}", command=command)

    for flag, value in invocation.options:
        if flag not in spec.value_flags:
            raise CommandRejectedError(f"Flag not in allowlist: {flag}", command=command)
        if not _SAFE_FLAG_VALUE.fullmatch(value):
            raise CommandRejectedError(f"Invalid value for {flag}: {value}", command=command)


def _rejection_reason(command: str, args: Sequence[str], allowlist: Allowlist | None) -> str | None:
    try:
        validate_invocation(parse_command_args(command, args, allowlist), allowlist)
    except CommandRejectedError as exc:
        return str(exc)
    return None


def validate_command_args(
    command: str,
    args: Sequence[str],
    allowlist: Allowlist | None = None,
    *,
    reporter: Reporter | None = None,
) -> bool:
    """Return ``True`` only if *command* and every argument pass the allowlist.

    This is the single gate in front of every outbound process invocation.
    The rejection reason, sanitized, is reported at error level.
    """
    reason = _rejection_reason(command, args, allowlist)
    if reason is not None:
        resolve_reporter(reporter).error(sanitize_sensitive_data(reason))
        return False
    return True


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def build_secure_env(
    overrides: Mapping[str, str] | None = None,
    node_env: str = "production",
    stripped_vars: Sequence[str] | None = None,
    base_env: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Build the child-process environment.

    Starts from *base_env* (``os.environ`` by default), drops the stripped
    variables (case-insensitively), sets ``NODE_ENV``, applies *overrides*
    (which cannot re-add stripped variables) and finally forces ``CI=true``.
    """
    if stripped_vars is None:
        stripped_vars = ExecConfig().stripped_env_vars
    blocked = {name.upper() for name in stripped_vars}
    source = os.environ if base_env is None else base_env

    env = {key: value for key, value in source.items() if key.upper() not in blocked}
    env["NODE_ENV"] = node_env
    for key, value in (overrides or {}).items():
        if key.upper() not in blocked:
            env[key] = value
    env["CI"] = "true"
    return env


def format_command_for_log(command: str, args: Sequence[object]) -> str:
    """Render a command line with every non-package argument redacted."""
    rendered = [
        arg if validate_package_name(arg) else str(sanitize_sensitive_data(arg))
        for arg in args
    ]
    return " ".join([str(command), *rendered])


def _sanitized_args(args: Sequence[object]) -> list[str]:
    return [str(sanitize_sensitive_data(arg)) if isinstance(arg, str) else repr(arg) for arg in args]


def _decode(data: bytes | None) -> str:
    return (data or b"").decode("utf-8", errors="replace").strip()


class SecureExecutor:
    """Runs allowlisted commands in a hardened environment.

    Built once per process (usually by the CLI) from a :class:`Config` and
    shared by everything that needs to spawn ``npm``/``npx``/``yarn``.
    Executors hold no mutable state, so concurrent ``run`` calls are
    independent.
    """

    def __init__(
        self,
        config: ExecConfig | None = None,
        allowlist: Allowlist | None = None,
        reporter: Reporter | None = None,
    ) -> None:
        self.config = config or ExecConfig()
        self.allowlist = allowlist if allowlist is not None else DEFAULT_ALLOWLIST
        self.reporter = resolve_reporter(reporter)

    @classmethod
    def from_config(cls, config: Config, reporter: Reporter | None = None) -> "SecureExecutor":
        """Create an executor, extending the default allowlist from ``config.allowlist_path``."""
        allowlist = DEFAULT_ALLOWLIST
        if config.allowlist_path is not None:
            allowlist = allowlist.extend(Allowlist.from_yaml(config.allowlist_path))
        return cls(config.exec, allowlist, reporter)

    def validate(self, command: str, args: Sequence[str]) -> bool:
        return validate_command_args(command, args, self.allowlist, reporter=self.reporter)

    async def run_invocation(
        self,
        invocation: CommandInvocation,
        *,
        cwd: str | Path | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
        node_env: str | None = None,
    ) -> ExecResult:
        """Validate a structured invocation field by field, then run it."""
        try:
            validate_invocation(invocation, self.allowlist)
        except CommandRejectedError as exc:
            self._reject(invocation.command, invocation.to_args(), str(exc))
        return await self.run(
            invocation.command,
            invocation.to_args(),
            cwd=cwd,
            timeout=timeout,
            env=env,
            node_env=node_env,
        )

    async def run(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        cwd: str | Path | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
        node_env: str | None = None,
    ) -> ExecResult:
        """Validate and execute *command* with *args*.

        Args:
            command: Allowlisted executable name.
            args: Argument vector; never passed through a shell.
            cwd: Working directory for the child.
            timeout: Seconds before the child is killed (default from config).
            env: Extra environment variables; stripped variables are ignored.
            node_env: ``NODE_ENV`` for the child (default from config).

        Raises:
            CommandRejectedError: Validation failed; nothing was spawned.
            ExecutionError: The child could not start, timed out, or exited
                non-zero.  Message and captured output are sanitized.
        """
        reason = _rejection_reason(command, args, self.allowlist)
        if reason is not None:
            self._reject(command, args, reason)

        args = list(args)
        timeout = timeout if timeout is not None else self.config.timeout
        child_env = build_secure_env(
            env,
            node_env=node_env or self.config.node_env,
            stripped_vars=self.config.stripped_env_vars,
        )
        display = format_command_for_log(command, args)
        safe_args = _sanitized_args(args)

        self.reporter.debug(f"Executing secure command: {display}")

        extra: dict[str, object] = {}
        if sys.platform == "win32":
            extra["creationflags"] = subprocess.CREATE_NO_WINDOW

        start = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd else None,
                env=child_env,
                **extra,
            )
        except OSError as exc:
            message = sanitize_sensitive_data(f"Failed to start {command}: {exc.strerror or exc}")
            self._report_failure(display, message)
            raise ExecutionError(message, command=command, args=safe_args) from exc

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(), timeout=timeout
            )
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            message = f"Command timed out after {timeout}s: {display}"
            self._report_failure(display, message)
            raise ExecutionError(
                message,
                command=command,
                args=safe_args,
                exit_code=-1,
                timed_out=True,
            ) from None

        elapsed = time.monotonic() - start
        stdout = _decode(stdout_bytes)
        stderr = _decode(stderr_bytes)
        exit_code = process.returncode if process.returncode is not None else -1

        if exit_code != 0:
            safe_stderr = sanitize_sensitive_data(stderr)
            message = f"Command failed with exit code {exit_code}: {display}"
            if safe_stderr:
                message = f"{message}\n{safe_stderr}"
            self._report_failure(display, message)
            raise ExecutionError(
                message,
                command=command,
                args=safe_args,
                exit_code=exit_code,
                stdout=sanitize_sensitive_data(stdout),
                stderr=safe_stderr,
            )

        if stdout:
            self.reporter.debug(f"Command output: {sanitize_sensitive_data(stdout)}")

        return ExecResult(
            command=command,
            args=args,
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
            duration_seconds=elapsed,
        )

    def _reject(self, command: object, args: object, reason: str) -> NoReturn:
        message = sanitize_sensitive_data(f"Invalid or unsafe command: {reason}")
        self.reporter.error(message)
        safe_args = (
            _sanitized_args(list(args))
            if isinstance(args, Sequence) and not isinstance(args, str)
            else []
        )
        raise CommandRejectedError(message, command=str(command), args=safe_args)

    def _report_failure(self, display: str, message: str) -> None:
        self.reporter.error(f"Secure command failed: {display}")
        self.reporter.error(f"Error: {message}")


async def secure_exec(
    command: str,
    args: Sequence[str] = (),
    *,
    cwd: str | Path | None = None,
    timeout: float | None = None,
    env: Mapping[str, str] | None = None,
    node_env: str | None = None,
    allowlist: Allowlist | None = None,
    config: ExecConfig | None = None,
    reporter: Reporter | None = None,
) -> ExecResult:
    """Validate and run a command with a one-off :class:`SecureExecutor`.

    See :meth:`SecureExecutor.run` for arguments and errors.
    """
    executor = SecureExecutor(config, allowlist, reporter)
    return await executor.run(
        command, args, cwd=cwd, timeout=timeout, env=env, node_env=node_env
    )
