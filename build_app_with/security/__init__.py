"""Secure execution and path-safety layer.

Everything the generators need before touching the filesystem or spawning a
process:

    secrets        - CSPRNG secrets, strength checks, log redaction, .env templates
    paths          - project-name validation and traversal-safe path handling
    allowlist      - immutable command allowlist (extendable from YAML)
    secure_exec    - allowlist-gated subprocess execution
    scaffold_args  - argument builders for create-next-app / create-vite / create-rsbuild

Quick usage::

    from build_app_with.security import generate_unique_project_path, secure_exec

    target = await generate_unique_project_path("my-app")
    await secure_exec("npm", ["install", "react@18.2.0"], cwd=target.path)
"""

from .allowlist import DEFAULT_ALLOWLIST, Allowlist, CommandSpec
from .paths import (
    ProjectPath,
    create_unique_project_directory,
    generate_unique_project_path,
    is_path_within_boundary,
    safe_create_directory,
    safe_path_join,
    safe_resolve_project_path,
    validate_project_name,
)
from .scaffold_args import (
    NextJSOptions,
    RsbuildOptions,
    ViteOptions,
    sanitize_nextjs_args,
    sanitize_project_name,
    sanitize_rsbuild_args,
    sanitize_vite_args,
)
from .secrets import (
    EnvTemplateConfig,
    generate_api_key,
    generate_database_password,
    generate_jwt_secret,
    generate_secure_env_template,
    generate_secure_secret,
    sanitize_sensitive_data,
    validate_secret_strength,
    write_env_file,
)
from .secure_exec import (
    CommandInvocation,
    ExecResult,
    SecureExecutor,
    build_secure_env,
    parse_command_args,
    secure_exec,
    validate_command_args,
    validate_invocation,
    validate_package_name,
)

__all__ = [
    # Allowlist
    "Allowlist",
    "CommandSpec",
    "DEFAULT_ALLOWLIST",
    # Paths
    "ProjectPath",
    "validate_project_name",
    "safe_resolve_project_path",
    "generate_unique_project_path",
    "create_unique_project_directory",
    "safe_path_join",
    "is_path_within_boundary",
    "safe_create_directory",
    # Secrets
    "EnvTemplateConfig",
    "generate_secure_secret",
    "generate_jwt_secret",
    "generate_database_password",
    "generate_api_key",
    "validate_secret_strength",
    "sanitize_sensitive_data",
    "generate_secure_env_template",
    "write_env_file",
    # Execution
    "CommandInvocation",
    "ExecResult",
    "SecureExecutor",
    "build_secure_env",
    "parse_command_args",
    "validate_command_args",
    "validate_invocation",
    "validate_package_name",
    "secure_exec",
    # Scaffolder arguments
    "NextJSOptions",
    "ViteOptions",
    "RsbuildOptions",
    "sanitize_project_name",
    "sanitize_nextjs_args",
    "sanitize_vite_args",
    "sanitize_rsbuild_args",
]
