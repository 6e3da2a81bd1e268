"""Command-line entry point for build-app-with.

Exposes the security layer as small subcommands so the checks can be run
by hand or from scripts::

    build-app-with check-name my-app --unique
    build-app-with secret --kind jwt
    build-app-with env --database --jwt --output ./my-app
    build-app-with exec npm --version
    build-app-with scaffold vite my-app --dry-run
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any

from rich.console import Console

from build_app_with import __version__
from build_app_with.config import Config
from build_app_with.errors import ProjectGeneratorError
from build_app_with.reporter import ConsoleReporter
from build_app_with.security.paths import (
    generate_unique_project_path,
    safe_resolve_project_path,
    validate_project_name,
)
from build_app_with.security.scaffold_args import (
    sanitize_nextjs_args,
    sanitize_project_name,
    sanitize_rsbuild_args,
    sanitize_vite_args,
)
from build_app_with.security.secrets import (
    generate_api_key,
    generate_database_password,
    generate_jwt_secret,
    generate_secure_env_template,
    generate_secure_secret,
    write_env_file,
)
from build_app_with.security.secure_exec import SecureExecutor, format_command_for_log

console = Console()

_SECRET_KINDS = {
    "jwt": generate_jwt_secret,
    "db": generate_database_password,
    "api": generate_api_key,
}

_SCAFFOLDERS = {
    "nextjs": sanitize_nextjs_args,
    "vite": sanitize_vite_args,
    "rsbuild": sanitize_rsbuild_args,
}


def _emit(text: str, end: str = "\n") -> None:
    """Print command output verbatim."""
    console.print(text, markup=False, highlight=False, emoji=False, soft_wrap=True, end=end)


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


async def _cmd_check_name(args: argparse.Namespace, config: Config, reporter: ConsoleReporter) -> None:
    name = validate_project_name(args.name)
    if args.unique:
        target = await generate_unique_project_path(
            name,
            args.base,
            max_attempts=config.paths.max_unique_attempts,
            reporter=reporter,
        )
        path, name = target.path, target.name
    else:
        path = safe_resolve_project_path(name, args.base)
    reporter.success(f"Project name is valid: {name}")
    _emit(str(path))


async def _cmd_secret(args: argparse.Namespace, config: Config, reporter: ConsoleReporter) -> None:
    if args.length is not None:
        secret = generate_secure_secret(args.length, args.encoding)
    else:
        secret = _SECRET_KINDS[args.kind]()
    _emit(secret)


async def _cmd_env(args: argparse.Namespace, config: Config, reporter: ConsoleReporter) -> None:
    env_config: dict[str, Any] = {"node_env": args.node_env, "port": args.port}
    if args.database:
        env_config["database"] = {}
    if args.jwt:
        env_config["jwt"] = {}

    if args.output:
        written = await write_env_file(args.output, env_config)
        reporter.success(f"Wrote {written}")
        return
    _emit(generate_secure_env_template(env_config), end="")


async def _cmd_exec(args: argparse.Namespace, config: Config, reporter: ConsoleReporter) -> None:
    executor = SecureExecutor.from_config(config, reporter)
    result = await executor.run(args.command, args.args, cwd=args.cwd)
    if result.stdout:
        _emit(result.stdout)
    reporter.debug(f"Finished in {result.duration_seconds:.2f}s")


async def _cmd_scaffold(args: argparse.Namespace, config: Config, reporter: ConsoleReporter) -> None:
    target = await generate_unique_project_path(
        sanitize_project_name(args.name),
        args.base,
        max_attempts=config.paths.max_unique_attempts,
        reporter=reporter,
    )

    options: dict[str, Any] = {}
    if args.js:
        options["typescript"] = False
    npx_args = _SCAFFOLDERS[args.framework](target.name, options)
    base = target.path.parent

    if args.dry_run:
        reporter.summary(
            {
                "Framework": args.framework,
                "Project": target.name,
                "Location": str(target.path),
                "Command": format_command_for_log("npx", npx_args),
            },
            title="Scaffold plan",
        )
        return

    executor = SecureExecutor.from_config(config, reporter)
    reporter.info(f"Scaffolding {args.framework} project {target.name}")
    await executor.run("npx", ["--yes", *npx_args], cwd=base, node_env="development")

    if args.env:
        await write_env_file(target.path, {"database": {}, "jwt": {}})
    reporter.success(f"Project created at {target.path}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="build-app-with",
        description="build-app-with -- secure project scaffolding helpers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  build-app-with check-name my-app --unique\n"
            "  build-app-with secret --kind db\n"
            "  build-app-with exec npm --version\n"
            "  build-app-with scaffold nextjs my-app --dry-run\n"
        ),
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")
    parser.add_argument("--quiet", "-q", action="store_true", help="Only print errors and results")

    sub = parser.add_subparsers(dest="subcommand", required=True)

    check = sub.add_parser("check-name", help="Validate a project name")
    check.add_argument("name")
    check.add_argument("--base", default=None, help="Parent directory (default: cwd)")
    check.add_argument("--unique", action="store_true", help="Pick a free name-N if taken")
    check.set_defaults(handler=_cmd_check_name)

    secret = sub.add_parser("secret", help="Generate a secure random secret")
    secret.add_argument("--kind", choices=sorted(_SECRET_KINDS), default="jwt")
    secret.add_argument("--length", type=int, default=None, help="Override the kind's length")
    secret.add_argument("--encoding", choices=["base64url", "hex"], default="base64url")
    secret.set_defaults(handler=_cmd_secret)

    env = sub.add_parser("env", help="Render a .env file with fresh secrets")
    env.add_argument("--database", action="store_true", help="Include database settings")
    env.add_argument("--jwt", action="store_true", help="Include JWT settings")
    env.add_argument("--port", type=int, default=3000)
    env.add_argument("--node-env", default="development")
    env.add_argument("--output", "-o", default=None, help="Write .env into this directory")
    env.set_defaults(handler=_cmd_env)

    exec_ = sub.add_parser("exec", help="Run an allowlisted command")
    exec_.add_argument("--cwd", default=None)
    exec_.add_argument("command")
    exec_.add_argument("args", nargs=argparse.REMAINDER)
    exec_.set_defaults(handler=_cmd_exec)

    scaffold = sub.add_parser("scaffold", help="Create a project with an upstream scaffolder")
    scaffold.add_argument("framework", choices=sorted(_SCAFFOLDERS))
    scaffold.add_argument("name")
    scaffold.add_argument("--base", default=None, help="Parent directory (default: cwd)")
    scaffold.add_argument("--js", action="store_true", help="JavaScript instead of TypeScript")
    scaffold.add_argument("--env", action="store_true", help="Write a .env with fresh secrets")
    scaffold.add_argument("--dry-run", action="store_true", help="Print the plan without running it")
    scaffold.set_defaults(handler=_cmd_scaffold)

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for ``build-app-with``."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = Config.from_env()
    except ValueError as exc:
        console.print(f"[bold red]Error:[/bold red] Invalid configuration: {exc}")
        sys.exit(1)
    if args.verbose:
        config.verbose = True
    if args.quiet:
        config.quiet = True

    reporter = ConsoleReporter(verbose=config.verbose, quiet=config.quiet)

    try:
        asyncio.run(args.handler(args, config, reporter))
    except ProjectGeneratorError as exc:
        reporter.error(f"[{exc.code}] {exc}")
        details = {key: value for key, value in exc.details.items() if value not in (None, [], "")}
        if details:
            reporter.error(f"Details: {details}")
        sys.exit(1)
    except (ValueError, OSError) as exc:
        # Malformed allowlist file or unreadable config path.
        reporter.error(f"Error: {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
