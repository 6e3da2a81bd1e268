"""Argument builders for the upstream scaffolders run through ``npx``.

Each builder sanitizes the project name and emits flags from a fixed option
model only.  Apart from the sanitized name, the only caller-supplied strings
that reach the argument list are validated option values (import alias,
tool names).
"""

from __future__ import annotations

import re
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from build_app_with.errors import ValidationError
from build_app_with.security.paths import validate_project_name

MAX_SANITIZED_LENGTH = 50

_IMPORT_ALIAS = re.compile(r"[A-Za-z0-9@~_-]{1,20}/\*")
_RSBUILD_TOOLS = frozenset({"eslint", "prettier", "biome", "storybook"})

_OptionsT = TypeVar("_OptionsT", bound=BaseModel)


def sanitize_project_name(project_name: object) -> str:
    """Reduce *project_name* to ``[A-Za-z0-9_-]`` and validate the result.

    Leading and trailing ``.``/``-``/``_`` are trimmed and the result is
    capped at 50 characters.

    Raises:
        ValidationError: If nothing usable remains, or the result is a
            reserved name.
    """
    if not project_name or not isinstance(project_name, str):
        raise ValidationError("Project name must be a non-empty string", "projectName")

    sanitized = re.sub(r"[^a-zA-Z0-9_-]", "", project_name)
    sanitized = sanitized[:MAX_SANITIZED_LENGTH].strip("._-")
    if not sanitized:
        raise ValidationError("Project name contains no valid characters", "projectName")

    return validate_project_name(sanitized)


class NextJSOptions(BaseModel):
    """Options understood by ``create-next-app``."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    use_app_router: bool | None = Field(default=None, alias="useAppRouter")
    use_src_dir: bool | None = Field(default=None, alias="useSrcDir")
    typescript: bool | None = None
    tailwind: bool | None = None
    eslint: bool | None = None
    import_alias: str | None = Field(default=None, alias="importAlias")

    @field_validator("import_alias")
    @classmethod
    def _check_alias(cls, value: str | None) -> str | None:
        if value and not _IMPORT_ALIAS.fullmatch(value):
            raise ValueError(f"Invalid import alias: {value!r}")
        return value or None


class ViteOptions(BaseModel):
    """Options understood by ``create-vite`` for the React templates."""

    model_config = ConfigDict(extra="forbid")

    typescript: bool = True
    swc: bool = False


class RsbuildOptions(BaseModel):
    """Options understood by ``create-rsbuild`` for the React templates."""

    model_config = ConfigDict(extra="forbid")

    typescript: bool = True
    tools: list[str] = Field(default_factory=list)

    @field_validator("tools")
    @classmethod
    def _check_tools(cls, value: list[str]) -> list[str]:
        unknown = [tool for tool in value if tool not in _RSBUILD_TOOLS]
        if unknown:
            raise ValueError(f"Unsupported rsbuild tools: {unknown}")
        return value


def _coerce(model: type[_OptionsT], options: _OptionsT | dict[str, Any] | None) -> _OptionsT:
    if options is None:
        return model()
    if isinstance(options, model):
        return options
    try:
        return model.model_validate(options)
    except ValueError as exc:
        raise ValidationError(f"Invalid scaffolder options: {exc}", "options") from exc


def sanitize_nextjs_args(
    project_name: str,
    options: NextJSOptions | dict[str, Any] | None = None,
) -> list[str]:
    """Build the ``npx`` argument list for ``create-next-app``.

    A flag is emitted only when its option is explicitly set; ``False``
    selects the negative form where one exists.
    """
    name = sanitize_project_name(project_name)
    opts = _coerce(NextJSOptions, options)

    args = ["create-next-app@latest", name]
    candidates: list[tuple[str, bool]] = [
        ("--app", opts.use_app_router is True),
        ("--src-dir", opts.use_src_dir is True),
        ("--typescript", opts.typescript is True),
        ("--js", opts.typescript is False),
        ("--tailwind", opts.tailwind is True),
        ("--no-tailwind", opts.tailwind is False),
        ("--eslint", opts.eslint is True),
        ("--no-eslint", opts.eslint is False),
    ]
    args.extend(flag for flag, enabled in candidates if enabled)
    if opts.import_alias:
        args.extend(["--import-alias", opts.import_alias])
    return args


def sanitize_vite_args(
    project_name: str,
    options: ViteOptions | dict[str, Any] | None = None,
) -> list[str]:
    """Build the ``npx`` argument list for ``create-vite``."""
    name = sanitize_project_name(project_name)
    opts = _coerce(ViteOptions, options)

    template = "react-swc" if opts.swc else "react"
    if opts.typescript:
        template += "-ts"
    return ["create-vite@latest", name, "--template", template]


def sanitize_rsbuild_args(
    project_name: str,
    options: RsbuildOptions | dict[str, Any] | None = None,
) -> list[str]:
    """Build the ``npx`` argument list for ``create-rsbuild``."""
    name = sanitize_project_name(project_name)
    opts = _coerce(RsbuildOptions, options)

    template = "react-ts" if opts.typescript else "react"
    args = ["create-rsbuild@latest", "--dir", name, "--template", template]
    if opts.tools:
        args.extend(["--tools", ",".join(opts.tools)])
    return args
