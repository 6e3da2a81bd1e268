"""Error hierarchy for the build-app-with security layer.

Every error carries a machine-readable ``code`` and a ``details`` mapping so
that the CLI can print structured context without ever touching raw
subprocess output.  Messages and details are expected to be sanitized by the
raising code before construction.
"""

from __future__ import annotations

from typing import Any


class ProjectGeneratorError(Exception):
    """Base class for every error raised by the generator and its helpers."""

    def __init__(
        self,
        message: str,
        code: str = "GENERATOR_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.details = details or {}
        super().__init__(message)


class ValidationError(ProjectGeneratorError):
    """A project name, path segment, or argument failed a syntactic rule."""

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message, "VALIDATION_ERROR", {"field": field})


class PathSecurityError(ProjectGeneratorError):
    """A resolved path would escape its declared base directory."""

    def __init__(self, message: str, path: str | None = None, base: str | None = None) -> None:
        self.path = path
        self.base = base
        super().__init__(message, "PATH_SECURITY_ERROR", {"path": path, "base": base})


class CommandRejectedError(ProjectGeneratorError):
    """A command failed allowlist validation; no process was started."""

    def __init__(self, message: str, command: str = "", args: list[str] | None = None) -> None:
        self.command = command
        self.argv = list(args or [])
        super().__init__(
            message,
            "COMMAND_REJECTED",
            {"command": command, "args": self.argv},
        )


class ExecutionError(ProjectGeneratorError):
    """An allowed subprocess failed, timed out, or could not be spawned."""

    def __init__(
        self,
        message: str,
        command: str = "",
        args: list[str] | None = None,
        exit_code: int | None = None,
        stdout: str = "",
        stderr: str = "",
        timed_out: bool = False,
    ) -> None:
        self.command = command
        self.argv = list(args or [])
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        self.timed_out = timed_out
        super().__init__(
            message,
            "EXECUTION_ERROR",
            {
                "command": command,
                "args": self.argv,
                "exit_code": exit_code,
                "timed_out": timed_out,
            },
        )


class SecretGenerationError(ProjectGeneratorError):
    """Secure random generation or encoding failed."""

    def __init__(self, message: str = "Failed to generate secure secret") -> None:
        super().__init__(message, "SECRET_GENERATION_ERROR")


class FileSystemError(ProjectGeneratorError):
    """Directory creation or other I/O failed after passing security checks."""

    def __init__(self, message: str, path: str | None = None, code: str = "FILE_SYSTEM_ERROR") -> None:
        self.path = path
        super().__init__(message, code, {"path": path})


class PathExhaustedError(FileSystemError):
    """No free ``name-N`` directory was found within the attempt limit."""

    def __init__(self, message: str, path: str | None = None, attempts: int = 0) -> None:
        self.attempts = attempts
        super().__init__(message, path, code="PATH_EXHAUSTED")
        self.details["attempts"] = attempts


class DependencyError(ProjectGeneratorError):
    """A package-manager operation failed."""

    def __init__(self, message: str, package_name: str | None = None) -> None:
        self.package_name = package_name
        super().__init__(message, "DEPENDENCY_ERROR", {"package_name": package_name})
