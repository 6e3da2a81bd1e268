"""Path safety helpers: project-name validation and traversal-safe joins.

Every path handed back by this module is absolute and is checked, after
normalisation, to be the base directory itself or a descendant of it.
Normalisation is lexical (``os.path.abspath``); symlinks are not followed.
"""

from __future__ import annotations

import asyncio
import os
import re
from dataclasses import dataclass
from pathlib import Path, PureWindowsPath

from build_app_with.errors import (
    FileSystemError,
    PathExhaustedError,
    PathSecurityError,
    ValidationError,
)
from build_app_with.reporter import Reporter, resolve_reporter

RESERVED_NAMES: frozenset[str] = frozenset(
    {"CON", "PRN", "AUX", "NUL"}
    | {f"COM{i}" for i in range(1, 10)}
    | {f"LPT{i}" for i in range(1, 10)}
)

MAX_NAME_LENGTH = 214
DEFAULT_MAX_ATTEMPTS = 1000

_TRAVERSAL_MARKERS = ("..", "./", ".\\")
_INVALID_CHARS = re.compile(r'[<>:"|?*\x00-\x1f\x80-\x9f]')
_VALID_NAME = re.compile(r"[a-zA-Z0-9](?:[a-zA-Z0-9._-]*[a-zA-Z0-9])?")

# Whitespace removed around names. Narrower than str.strip(), which also drops
# the \x1c-\x1f separators and \x85 before the control-character check.
_TRIM_CHARS = (
    " \t\n\v\f\r\u00a0\u1680\u2028\u2029\u202f\u205f\u3000\ufeff"
    + "".join(chr(c) for c in range(0x2000, 0x200B))
)


@dataclass(frozen=True)
class ProjectPath:
    """A resolved, collision-free project location."""

    path: Path
    name: str


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _is_absolute(value: str) -> bool:
    return (
        os.path.isabs(value)
        or PureWindowsPath(value).is_absolute()
        or value.startswith(("/", "\\"))
    )


def validate_project_name(name: object) -> str:
    """Validate a user-supplied project name and return it trimmed.

    Raises:
        ValidationError: On the first failing rule, in this order: empty or
            not a string, traversal pattern, absolute path, reserved device
            name, invalid characters, disallowed character pattern, length,
            leading dot.
    """
    if not name or not isinstance(name, str):
        raise ValidationError("Project name must be a non-empty string", "projectName")

    trimmed = name.strip(_TRIM_CHARS)
    if not trimmed:
        raise ValidationError("Project name cannot be empty or only whitespace", "projectName")

    if any(marker in trimmed for marker in _TRAVERSAL_MARKERS):
        raise ValidationError(
            "Project name cannot contain directory traversal patterns (.. ./ .\\)",
            "projectName",
        )

    if _is_absolute(trimmed):
        raise ValidationError("Project name cannot be an absolute path", "projectName")

    if trimmed.upper() in RESERVED_NAMES:
        raise ValidationError(
            f"Project name cannot be a reserved system name: {trimmed}", "projectName"
        )

    if _INVALID_CHARS.search(trimmed):
        raise ValidationError("Project name contains invalid characters", "projectName")

    if not _VALID_NAME.fullmatch(trimmed):
        raise ValidationError(
            "Project name can only contain letters, numbers, hyphens, underscores, "
            "and dots (not at start/end)",
            "projectName",
        )

    if len(trimmed) > MAX_NAME_LENGTH:
        raise ValidationError(
            f"Project name must be {MAX_NAME_LENGTH} characters or less", "projectName"
        )

    if trimmed.startswith("."):
        raise ValidationError("Project name cannot start with a dot (hidden file)", "projectName")

    return trimmed


def _validate_segment(segment: object) -> str:
    if not segment or not isinstance(segment, str):
        raise ValidationError("All path segments must be non-empty strings", "segment")
    if any(marker in segment for marker in _TRAVERSAL_MARKERS):
        raise ValidationError(f"Path segment contains traversal patterns: {segment}", "segment")
    if _is_absolute(segment):
        raise ValidationError(f"Path segment cannot be absolute: {segment}", "segment")
    if _INVALID_CHARS.search(segment):
        raise ValidationError(f"Path segment contains invalid characters: {segment}", "segment")
    return segment


# ---------------------------------------------------------------------------
# Boundary checks
# ---------------------------------------------------------------------------


def _within(resolved: str, base: str) -> bool:
    prefix = base if base.endswith(os.sep) else base + os.sep
    return resolved == base or resolved.startswith(prefix)


def is_path_within_boundary(target_path: str | Path, base_path: str | Path) -> bool:
    """Return ``True`` if *target_path* resolves inside *base_path*.

    Advisory predicate: malformed input yields ``False`` instead of raising.
    """
    try:
        if not target_path or not base_path:
            return False
        resolved_target = os.path.abspath(os.fspath(target_path))
        resolved_base = os.path.abspath(os.fspath(base_path))
    except (TypeError, ValueError, OSError):
        return False
    return _within(resolved_target, resolved_base)


def safe_resolve_project_path(project_name: str, base_path: str | Path | None = None) -> Path:
    """Resolve *project_name* to an absolute directory under *base_path*.

    Args:
        project_name: Name to validate with :func:`validate_project_name`.
        base_path: Parent directory; defaults to the current working directory.

    Raises:
        ValidationError: If the name or base path is invalid.
        PathSecurityError: If the resolved path escapes the base directory.
    """
    validated = validate_project_name(project_name)

    if base_path is None:
        base_path = os.getcwd()
    if not base_path or not isinstance(base_path, (str, Path)):
        raise ValidationError("Base path must be a non-empty string", "basePath")

    absolute_base = os.path.abspath(os.fspath(base_path))
    project_path = os.path.abspath(os.path.join(absolute_base, validated))

    if not _within(project_path, absolute_base):
        raise PathSecurityError(
            "Project path would escape the base directory",
            path=project_path,
            base=absolute_base,
        )
    return Path(project_path)


def safe_path_join(base_path: str | Path, *segments: str) -> Path:
    """Join *segments* onto an absolute *base_path* without leaving it.

    Segments get the traversal, absolute-path and invalid-character checks of
    :func:`validate_project_name`, but not the reserved-name or length rules.

    Raises:
        ValidationError: If the base is not absolute or a segment is unsafe.
        PathSecurityError: If the joined path escapes the base directory.
    """
    if not base_path or not isinstance(base_path, (str, Path)):
        raise ValidationError("Base path must be a non-empty string", "basePath")

    base = os.fspath(base_path)
    if not os.path.isabs(base):
        raise ValidationError("Base path must be absolute", "basePath")

    for segment in segments:
        _validate_segment(segment)

    normalized_base = os.path.normpath(base)
    resolved = os.path.abspath(os.path.join(normalized_base, *segments))

    if not _within(resolved, normalized_base):
        raise PathSecurityError(
            "Resolved path would escape the base directory",
            path=resolved,
            base=normalized_base,
        )
    return Path(resolved)


# ---------------------------------------------------------------------------
# Filesystem operations
# ---------------------------------------------------------------------------


async def generate_unique_project_path(
    project_name: str,
    base_path: str | Path | None = None,
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    reporter: Reporter | None = None,
) -> ProjectPath:
    """Find a project directory name that does not exist yet.

    Tries ``name``, then ``name-1``, ``name-2`` ... up to ``name-<max_attempts>``.

    The existence check and the later directory creation are not atomic: a
    concurrent process may create the same directory in between.  Use
    :func:`create_unique_project_directory` when that matters.

    Raises:
        ValidationError: If *project_name* is invalid.
        PathExhaustedError: If every candidate is taken.
    """
    reporter = resolve_reporter(reporter)
    validated = validate_project_name(project_name)
    unique_name = validated
    project_path = safe_resolve_project_path(unique_name, base_path)
    counter = 1

    while await asyncio.to_thread(project_path.exists):
        if counter > max_attempts:
            raise PathExhaustedError(
                f"Unable to generate unique project name after {max_attempts} attempts",
                path=str(project_path),
                attempts=max_attempts,
            )
        unique_name = f"{validated}-{counter}"
        counter += 1
        project_path = safe_resolve_project_path(unique_name, base_path)

    if unique_name != validated:
        reporter.warning(f"Directory {validated} already exists. Using {unique_name} instead.")

    return ProjectPath(path=project_path, name=unique_name)


async def create_unique_project_directory(
    project_name: str,
    base_path: str | Path | None = None,
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    reporter: Reporter | None = None,
) -> ProjectPath:
    """Atomically create a fresh project directory.

    Like :func:`generate_unique_project_path`, but each candidate is claimed
    with an exclusive ``mkdir``; a collision moves on to the next suffix.
    The base directory must already exist.
    """
    reporter = resolve_reporter(reporter)
    validated = validate_project_name(project_name)

    for attempt in range(max_attempts + 1):
        candidate = validated if attempt == 0 else f"{validated}-{attempt}"
        project_path = safe_resolve_project_path(candidate, base_path)
        try:
            await asyncio.to_thread(project_path.mkdir)
        except FileExistsError:
            continue
        except OSError as exc:
            raise FileSystemError(
                f"Failed to create directory {project_path}: {exc.strerror or exc}",
                path=str(project_path),
            ) from exc

        if candidate != validated:
            reporter.warning(f"Directory {validated} already exists. Using {candidate} instead.")
        reporter.debug(f"Created project directory: {project_path}")
        return ProjectPath(path=project_path, name=candidate)

    raise PathExhaustedError(
        f"Unable to generate unique project name after {max_attempts} attempts",
        path=str(project_path),
        attempts=max_attempts,
    )


async def safe_create_directory(
    dir_path: str | Path,
    base_path: str | Path | None = None,
    *,
    reporter: Reporter | None = None,
) -> Path:
    """Create *dir_path* (with parents), optionally confined to *base_path*.

    Raises:
        ValidationError: If *dir_path* is empty.
        PathSecurityError: If *base_path* is given and *dir_path* is outside it.
        FileSystemError: If the directory cannot be created.
    """
    reporter = resolve_reporter(reporter)
    if not dir_path or not isinstance(dir_path, (str, Path)):
        raise ValidationError("Directory path must be a non-empty string", "dirPath")

    resolved = Path(os.path.abspath(os.fspath(dir_path)))

    if base_path is not None and not is_path_within_boundary(resolved, base_path):
        raise PathSecurityError(
            "Directory path is outside allowed boundaries",
            path=str(resolved),
            base=os.fspath(base_path),
        )

    try:
        await asyncio.to_thread(resolved.mkdir, parents=True, exist_ok=True)
    except OSError as exc:
        raise FileSystemError(
            f"Failed to create directory {resolved}: {exc.strerror or exc}",
            path=str(resolved),
        ) from exc

    reporter.debug(f"Safely created directory: {resolved}")
    return resolved
