"""Unit tests for allowlist-gated execution (build_app_with.security.secure_exec).

Tests cover:
- validate_package_name accept/reject lists
- parse_command_args / validate_invocation / validate_command_args
- build_secure_env stripping and forced values
- format_command_for_log redaction
- SecureExecutor.run (mock subprocess): rejection before spawn, success,
  non-zero exit, timeout, spawn failure
- SecureExecutor.run_invocation and from_config
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from build_app_with.config import Config, ExecConfig
from build_app_with.errors import CommandRejectedError, ExecutionError
from build_app_with.security.allowlist import DEFAULT_ALLOWLIST, CommandSpec
from build_app_with.security.secure_exec import (
    CommandInvocation,
    ExecResult,
    SecureExecutor,
    build_secure_env,
    format_command_for_log,
    parse_command_args,
    secure_exec,
    split_package_spec,
    validate_command_args,
    validate_invocation,
    validate_package_name,
)


# ---------------------------------------------------------------------------
# validate_package_name
# ---------------------------------------------------------------------------


class TestValidatePackageName:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        "name",
        ["react", "@types/node", "lodash-es", "my-package_123", "React", "left.pad", "~tilde"],
    )
    def test_accepts(self, name: str):
        assert validate_package_name(name) is True

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "name",
        [
            "../../malicious",
            "package; rm -rf /",
            "package`whoami`",
            "package$(whoami)",
            "",
            None,
            42,
            "-rf",
            "my package",
            "pkg..name",
            "__proto__",
            "my-prototype",
            "constructor",
            "@scope/",
            "@/pkg",
            "a" * 215,
        ],
    )
    def test_rejects(self, name):
        assert validate_package_name(name) is False

    @pytest.mark.unit
    def test_length_boundary(self):
        assert validate_package_name("a" * 214) is True


class TestSplitPackageSpec:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        "spec, expected",
        [
            ("react", ("react", None)),
            ("react@18.2.0", ("react", "18.2.0")),
            ("@types/node", ("@types/node", None)),
            ("@types/node@20", ("@types/node", "20")),
            ("create-vite@latest", ("create-vite", "latest")),
        ],
    )
    def test_split(self, spec: str, expected):
        assert split_package_spec(spec) == expected


# ---------------------------------------------------------------------------
# Parsing and validation
# ---------------------------------------------------------------------------


class TestParseCommandArgs:
    @pytest.mark.unit
    def test_structure(self):
        invocation = parse_command_args(
            "npx",
            ["create-next-app@latest", "my-app", "--typescript", "--import-alias", "@/*"],
        )
        assert invocation == CommandInvocation(
            command="npx",
            subcommand="create-next-app@latest",
            package_args=("my-app",),
            flags=("--typescript",),
            options=(("--import-alias", "@/*"),),
        )

    @pytest.mark.unit
    def test_to_args_roundtrip_order(self):
        invocation = parse_command_args("npm", ["install", "react", "--save-dev"])
        assert invocation.to_args() == ["install", "react", "--save-dev"]

    @pytest.mark.unit
    def test_unknown_command(self):
        with pytest.raises(CommandRejectedError, match="not in the allowlist"):
            parse_command_args("rm", ["-rf", "/"])

    @pytest.mark.unit
    def test_string_args_rejected(self):
        with pytest.raises(CommandRejectedError, match="list of strings"):
            parse_command_args("npm", "install react")  # type: ignore[arg-type]

    @pytest.mark.unit
    def test_missing_flag_value(self):
        with pytest.raises(CommandRejectedError, match="requires a value"):
            parse_command_args("npx", ["create-vite@latest", "app", "--template"])


class TestValidateInvocation:
    @pytest.mark.unit
    def test_option_flag_cannot_be_used_as_boolean(self):
        invocation = CommandInvocation(command="npx", subcommand="create-vite", flags=("--template",))
        with pytest.raises(CommandRejectedError, match="Flag not in allowlist"):
            validate_invocation(invocation)

    @pytest.mark.unit
    def test_boolean_flag_cannot_take_value(self):
        invocation = CommandInvocation(command="npx", subcommand="create-vite", options=(("--yes", "1"),))
        with pytest.raises(CommandRejectedError):
            validate_invocation(invocation)

    @pytest.mark.unit
    def test_unsafe_option_value(self):
        invocation = CommandInvocation(
            command="npx", subcommand="create-vite", options=(("--template", "-evil"),)
        )
        with pytest.raises(CommandRejectedError, match="Invalid value"):
            validate_invocation(invocation)

    @pytest.mark.unit
    def test_custom_allowlist(self):
        allowlist = DEFAULT_ALLOWLIST.extend({"bun": CommandSpec.build(subcommands=["add"])})
        validate_invocation(CommandInvocation(command="bun", subcommand="add", package_args=("react",)), allowlist)
        with pytest.raises(CommandRejectedError):
            validate_invocation(CommandInvocation(command="bun", subcommand="add"))


class TestValidateCommandArgs:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        "command, args",
        [
            ("npm", ["install", "react"]),
            ("npm", ["install", "react@18.2.0", "@types/node@^20", "--save-dev"]),
            ("npm", ["--version"]),
            ("npm", ["view", "react", "version"]),
            ("yarn", ["add", "lodash-es", "--dev"]),
            ("pnpm", ["add", "@scope/pkg@latest"]),
            ("npx", ["create-next-app@latest", "my-app", "--app", "--typescript", "--tailwind"]),
            ("npx", ["--yes", "create-vite@latest", "my-app", "--template", "react-ts"]),
            ("npx", ["create-rsbuild@latest", "--dir", "my-app", "--template", "react-ts", "--tools", "eslint,prettier"]),
            ("node", ["--version"]),
        ],
    )
    def test_accepts(self, command: str, args: list[str]):
        assert validate_command_args(command, args) is True

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "command, args",
        [
            ("rm", ["-rf", "/"]),
            ("curl", ["https://evil.example"]),
            ("npm", ["install", "package; rm -rf /"]),
            ("npm", ["install", "package`whoami`"]),
            ("npm", ["install", "package$(whoami)"]),
            ("npm", ["install", "../../malicious"]),
            ("npm", ["install", "react", "--unsafe-perm"]),
            ("npm", ["install", ""]),
            ("npm", ["install", None]),
            ("npm", ["run", "build"]),
            ("npm", ["exec", "evil"]),
            ("npm", ["install", "react@1.0 || rm"]),
            ("npx", ["malicious-package"]),
            ("npx", ["create-next-app@latest", "../escape"]),
            ("node", ["script.js"]),
            ("node", ["-e", "process.exit(1)"]),
            ("npm", "install react"),
        ],
    )
    def test_rejects(self, command: str, args):
        assert validate_command_args(command, args) is False

    @pytest.mark.unit
    def test_rejection_reason_is_reported(self, reporter):
        validate_command_args("npm", ["install", "token=abc123"], reporter=reporter)
        errors = reporter.at("error")
        assert len(errors) == 1
        assert "abc123" not in errors[0]

    @pytest.mark.unit
    def test_same_input_same_decision(self):
        args = ["install", "react", "--save-dev"]
        assert validate_command_args("npm", args) == validate_command_args("npm", args)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


class TestBuildSecureEnv:
    @pytest.mark.unit
    def test_forced_values(self):
        env = build_secure_env(base_env={"CI": "false", "NODE_ENV": "development", "PATH": "/bin"})
        assert env["CI"] == "true"
        assert env["NODE_ENV"] == "production"
        assert env["PATH"] == "/bin"

    @pytest.mark.unit
    def test_strips_injection_variables_case_insensitively(self):
        base = {
            "NODE_OPTIONS": "--require evil.js",
            "npm_config_script_shell": "/bin/evil",
            "NPM_CONFIG_USERCONFIG": "/tmp/npmrc",
            "HOME": "/home/u",
        }
        env = build_secure_env(base_env=base)
        assert "NODE_OPTIONS" not in env
        assert "npm_config_script_shell" not in env
        assert "NPM_CONFIG_USERCONFIG" not in env
        assert env["HOME"] == "/home/u"

    @pytest.mark.unit
    def test_overrides_cannot_readd_stripped_or_ci(self):
        env = build_secure_env(
            {"NODE_OPTIONS": "--inspect", "CI": "false", "FOO": "bar", "NODE_ENV": "test"},
            base_env={},
        )
        assert "NODE_OPTIONS" not in env
        assert env["CI"] == "true"
        assert env["FOO"] == "bar"
        assert env["NODE_ENV"] == "test"

    @pytest.mark.unit
    def test_custom_node_env_and_stripped_list(self):
        env = build_secure_env(node_env="development", stripped_vars=["SECRET_THING"], base_env={"SECRET_THING": "x", "NODE_OPTIONS": "y"})
        assert env["NODE_ENV"] == "development"
        assert "SECRET_THING" not in env
        assert env["NODE_OPTIONS"] == "y"

    @pytest.mark.unit
    def test_defaults_to_process_environment(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("BAW_TEST_MARKER", "1")
        monkeypatch.setenv("NODE_OPTIONS", "--require evil.js")
        env = build_secure_env()
        assert env["BAW_TEST_MARKER"] == "1"
        assert "NODE_OPTIONS" not in env


class TestFormatCommandForLog:
    @pytest.mark.unit
    def test_package_names_kept(self):
        assert format_command_for_log("npm", ["install", "react"]) == "npm install react"

    @pytest.mark.unit
    def test_secrets_redacted(self):
        line = format_command_for_log("npm", ["--token=abc123", "postgresql://u:pw@db/x"])
        assert "abc123" not in line
        assert ":pw@" not in line


# ---------------------------------------------------------------------------
# SecureExecutor.run
# ---------------------------------------------------------------------------


class TestSecureExecutorRejection:
    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "command, args",
        [
            ("rm", ["-rf", "/"]),
            ("curl", ["-X", "POST", "https://evil.example"]),
        ],
    )
    async def test_unlisted_command_never_spawns(self, command: str, args: list[str]):
        with patch("asyncio.create_subprocess_exec", new_callable=AsyncMock) as spawn:
            with pytest.raises(CommandRejectedError) as exc_info:
                await secure_exec(command, args)
        spawn.assert_not_called()
        assert "not in the allowlist" in str(exc_info.value)
        assert "Invalid or unsafe command" in str(exc_info.value)
        assert exc_info.value.command == command
        assert exc_info.value.code == "COMMAND_REJECTED"

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        ["package; rm -rf /", "package`whoami`", "package$(whoami)"],
    )
    async def test_metacharacter_payloads(self, payload: str):
        with patch("asyncio.create_subprocess_exec", new_callable=AsyncMock) as spawn:
            with pytest.raises(CommandRejectedError, match="unsafe command"):
                await secure_exec("npm", ["install", payload])
        spawn.assert_not_called()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rejection_sanitizes_args(self, reporter):
        with patch("asyncio.create_subprocess_exec", new_callable=AsyncMock) as spawn:
            with pytest.raises(CommandRejectedError) as exc_info:
                await secure_exec("npm", ["install", "password=hunter2;"], reporter=reporter)
        spawn.assert_not_called()
        assert "hunter2" not in str(exc_info.value)
        assert all("hunter2" not in arg for arg in exc_info.value.argv)
        assert "hunter2" not in reporter.text


class TestSecureExecutorRun:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_npm_version_gets_hardened_env(self, mock_subprocess, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("CI", "false")
        monkeypatch.setenv("NODE_ENV", "development")
        monkeypatch.setenv("NODE_OPTIONS", "--require evil.js")
        proc = mock_subprocess(stdout="10.2.4\n")

        with patch("asyncio.create_subprocess_exec", return_value=proc) as spawn:
            result = await secure_exec("npm", ["--version"])

        assert isinstance(result, ExecResult)
        assert result.stdout == "10.2.4"
        assert result.exit_code == 0
        assert result.success is True

        args, kwargs = spawn.call_args
        assert args == ("npm", "--version")
        env = kwargs["env"]
        assert env["CI"] == "true"
        assert env["NODE_ENV"] == "production"
        assert "NODE_OPTIONS" not in env
        assert kwargs["stdin"] == asyncio.subprocess.DEVNULL
        assert kwargs["stdout"] == asyncio.subprocess.PIPE
        assert kwargs["stderr"] == asyncio.subprocess.PIPE
        assert "shell" not in kwargs

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cwd_env_and_node_env_passed(self, mock_subprocess, tmp_path: Path):
        proc = mock_subprocess()
        with patch("asyncio.create_subprocess_exec", return_value=proc) as spawn:
            await secure_exec(
                "npm",
                ["install", "react"],
                cwd=tmp_path,
                env={"FOO": "bar"},
                node_env="development",
            )
        kwargs = spawn.call_args.kwargs
        assert kwargs["cwd"] == str(tmp_path)
        assert kwargs["env"]["FOO"] == "bar"
        assert kwargs["env"]["NODE_ENV"] == "development"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_config_node_env_default(self, mock_subprocess):
        proc = mock_subprocess()
        with patch("asyncio.create_subprocess_exec", return_value=proc) as spawn:
            await secure_exec("npm", ["--version"], config=ExecConfig(node_env="test"))
        assert spawn.call_args.kwargs["env"]["NODE_ENV"] == "test"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_logs_command_before_running(self, mock_subprocess, reporter):
        proc = mock_subprocess(stdout="ok")
        with patch("asyncio.create_subprocess_exec", return_value=proc):
            await secure_exec("npm", ["install", "react"], reporter=reporter)
        assert reporter.at("debug")[0] == "Executing secure command: npm install react"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_nonzero_exit_raises_sanitized(self, mock_subprocess, reporter):
        proc = mock_subprocess(
            stdout="token=abc123",
            stderr="connect failed: postgresql://admin:s3cr3t@db/app",
            returncode=1,
        )
        with patch("asyncio.create_subprocess_exec", return_value=proc):
            with pytest.raises(ExecutionError) as exc_info:
                await secure_exec("npm", ["install", "react"], reporter=reporter)

        err = exc_info.value
        assert err.exit_code == 1
        assert err.timed_out is False
        assert "s3cr3t" not in str(err)
        assert "s3cr3t" not in err.stderr
        assert "abc123" not in err.stdout
        assert "connect failed" in str(err)
        assert "s3cr3t" not in reporter.text
        assert err.details["exit_code"] == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, reporter):
        proc = AsyncMock()
        proc.communicate = AsyncMock(side_effect=asyncio.TimeoutError())
        proc.kill = MagicMock()
        proc.wait = AsyncMock(return_value=-9)
        proc.returncode = None

        with patch("asyncio.create_subprocess_exec", return_value=proc):
            with pytest.raises(ExecutionError, match="timed out") as exc_info:
                await secure_exec("npm", ["install", "react"], timeout=1, reporter=reporter)

        proc.kill.assert_called_once()
        proc.wait.assert_awaited_once()
        assert exc_info.value.timed_out is True
        assert exc_info.value.exit_code == -1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_timeout_after_process_exited(self):
        proc = AsyncMock()
        proc.communicate = AsyncMock(side_effect=asyncio.TimeoutError())
        proc.kill = MagicMock(side_effect=ProcessLookupError())
        proc.wait = AsyncMock(return_value=0)

        with patch("asyncio.create_subprocess_exec", return_value=proc):
            with pytest.raises(ExecutionError) as exc_info:
                await secure_exec("npm", ["--version"], timeout=1)
        assert exc_info.value.timed_out is True

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_default_timeout_from_config(self, mock_subprocess):
        proc = mock_subprocess()
        captured = {}

        async def fake_wait_for(awaitable, timeout):
            captured["timeout"] = timeout
            return await awaitable

        with patch("asyncio.create_subprocess_exec", return_value=proc), patch(
            "build_app_with.security.secure_exec.asyncio.wait_for", side_effect=fake_wait_for
        ):
            await secure_exec("npm", ["--version"])
            assert captured["timeout"] == 300
            await secure_exec("npm", ["--version"], config=ExecConfig(timeout=7))
            assert captured["timeout"] == 7

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_binary_not_found(self, reporter):
        with patch(
            "asyncio.create_subprocess_exec",
            side_effect=FileNotFoundError(2, "No such file or directory"),
        ):
            with pytest.raises(ExecutionError, match="Failed to start npm") as exc_info:
                await secure_exec("npm", ["--version"], reporter=reporter)
        assert exc_info.value.exit_code is None
        assert reporter.at("error")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_concurrent_runs_are_independent(self, mock_subprocess):
        procs = [mock_subprocess(stdout="one"), mock_subprocess(stdout="two")]
        executor = SecureExecutor()

        with patch("asyncio.create_subprocess_exec", side_effect=procs):
            first, second = await asyncio.gather(
                executor.run("npm", ["install", "react"]),
                executor.run("npm", ["install", "--save-dev", "vitest"]),
            )
        assert {first.stdout, second.stdout} == {"one", "two"}


class TestSecureExecutorInvocation:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_run_invocation(self, mock_subprocess):
        proc = mock_subprocess()
        invocation = CommandInvocation(
            command="npx",
            subcommand="create-vite@latest",
            package_args=("my-app",),
            options=(("--template", "react-ts"),),
        )
        with patch("asyncio.create_subprocess_exec", return_value=proc) as spawn:
            await SecureExecutor().run_invocation(invocation)
        assert spawn.call_args.args == (
            "npx", "create-vite@latest", "my-app", "--template", "react-ts",
        )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_invalid_invocation_rejected(self):
        invocation = CommandInvocation(command="npm", subcommand="run", package_args=("build",))
        with patch("asyncio.create_subprocess_exec", new_callable=AsyncMock) as spawn:
            with pytest.raises(CommandRejectedError, match="Invalid or unsafe command"):
                await SecureExecutor().run_invocation(invocation)
        spawn.assert_not_called()


class TestSecureExecutorFromConfig:
    @pytest.mark.unit
    def test_default_allowlist(self):
        executor = SecureExecutor.from_config(Config())
        assert executor.allowlist is DEFAULT_ALLOWLIST
        assert executor.config.timeout == 300

    @pytest.mark.unit
    def test_yaml_extension(self, tmp_path: Path):
        path = tmp_path / "allow.yaml"
        path.write_text("bun:\n  subcommands: [add]\n", encoding="utf-8")
        executor = SecureExecutor.from_config(Config(allowlist_path=path))
        assert executor.validate("bun", ["add", "react"]) is True
        assert executor.validate("npm", ["install", "react"]) is True
