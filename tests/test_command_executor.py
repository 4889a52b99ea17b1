"""
Tests for CommandExecutor

End-to-end cases run real echo/grep/cat/sleep with redirection into tmp_path.
Ordering and no-spawn properties use a mocked ExecutionEngine.
"""
import subprocess
import time
from unittest.mock import AsyncMock, Mock

import pytest

from shell_t.command_executor import CommandExecutor, ResolvedCommand
from shell_t.config import Config, InterpreterConfig, ResourceLimits, SecurityConfig
from shell_t.constants import SAFE_PATH
from shell_t.errors import (
    DangerousCharacterError,
    DangerousCommandError,
    FileSystemError,
    PathTraversalError,
    PipelineTooLongError,
    ProcessError,
    ProcessExecutionError,
    ResourceLimitExceeded,
)
from shell_t.execution_engine import MonitoredResult
from shell_t.pipeline_parser import Command, parse_command_line
from shell_t.security_manager import SecurityManager


def make_executor(tmp_path=None, engine=None, limits=None, interpreters=None, **security_options):
    security_options.setdefault('allowed_commands', frozenset())
    if tmp_path is not None:
        security_options.setdefault('allowed_path_prefixes', (str(tmp_path),))
    config = Config(
        security=SecurityConfig(**security_options),
        limits=limits or ResourceLimits(),
        interpreters=interpreters or InterpreterConfig(),
    )
    return CommandExecutor(config, SecurityManager(config), engine=engine)


def mock_engine():
    engine = Mock()
    engine.spawn.return_value = Mock(pid=4242)
    engine.wait.return_value = 0
    return engine


def wait_for_idle(security, timeout=5.0):
    deadline = time.monotonic() + timeout
    while security.active_processes and time.monotonic() < deadline:
        time.sleep(0.05)
    return security.active_processes


# ============================================================================
# END TO END
# ============================================================================

class TestEndToEnd:

    def test_echo_pipe_grep(self, tmp_path):
        out = tmp_path / "out.txt"
        executor = make_executor(tmp_path)

        result = executor.execute(parse_command_line(f"echo hello | grep hello > {out}"))

        assert result.returncode == 0
        assert result.stage_count == 2
        assert len(result.pids) == 2
        assert out.read_text() == "hello\n"

    def test_truncate_then_append(self, tmp_path):
        target = tmp_path / "log.txt"
        executor = make_executor(tmp_path)

        executor.execute(parse_command_line(f"echo first > {target}"))
        executor.execute(parse_command_line(f"echo second >> {target}"))
        assert target.read_text() == "first\nsecond\n"

        executor.execute(parse_command_line(f"echo third > {target}"))
        assert target.read_text() == "third\n"

    def test_input_redirect(self, tmp_path):
        source = tmp_path / "in.txt"
        source.write_text("alpha\nbeta\ngamma\n")
        out = tmp_path / "out.txt"
        executor = make_executor(tmp_path)

        result = executor.execute(parse_command_line(f"cat < {source} | grep beta > {out}"))

        assert result.returncode == 0
        assert out.read_text() == "beta\n"

    def test_nonzero_status_is_not_an_error(self, tmp_path):
        source = tmp_path / "in.txt"
        source.write_text("alpha\n")
        executor = make_executor(tmp_path)

        result = executor.execute(parse_command_line(f"grep zzz < {source}"))

        assert result.returncode == 1

    def test_final_stage_status_wins(self, tmp_path):
        source = tmp_path / "in.txt"
        source.write_text("alpha\n")
        out = tmp_path / "out.txt"
        executor = make_executor(tmp_path)

        result = executor.execute(parse_command_line(f"grep zzz < {source} | cat > {out}"))

        assert result.returncode == 0

    def test_missing_input_file(self, tmp_path):
        executor = make_executor(tmp_path)
        with pytest.raises(FileSystemError, match="Cannot open input file"):
            executor.execute(parse_command_line(f"cat < {tmp_path / 'nope.txt'}"))

    def test_unknown_program(self, tmp_path):
        executor = make_executor(tmp_path)
        with pytest.raises(ProcessExecutionError, match="shell-t-no-such-program"):
            executor.execute([Command("shell-t-no-such-program")])

    def test_spawn_records_statistics(self, tmp_path):
        executor = make_executor(tmp_path)
        executor.execute(parse_command_line(f"echo hi > {tmp_path / 'o'}"))

        stats = executor.security.get_command_stats("echo")
        assert stats.count == 1
        assert stats.total_time >= 0


# ============================================================================
# ADMISSION AND VALIDATION
# ============================================================================

class TestAdmission:

    def test_empty_pipeline(self):
        engine = mock_engine()
        result = make_executor(engine=engine).execute([])
        assert result.returncode == 0
        assert result.stage_count == 0
        engine.spawn.assert_not_called()

    def test_empty_program_stages_are_dropped(self):
        engine = mock_engine()
        result = make_executor(engine=engine).execute([Command(""), Command("ls"), Command("")])
        assert result.stage_count == 1
        assert engine.spawn.call_count == 1

    def test_pipeline_too_long_spawns_nothing(self):
        engine = mock_engine()
        executor = make_executor(engine=engine, limits=ResourceLimits(max_pipeline_length=2))

        with pytest.raises(PipelineTooLongError, match="3 stages"):
            executor.execute(parse_command_line("ls | cat | wc"))

        engine.spawn.assert_not_called()

    def test_blocked_stage_stops_later_stages(self):
        engine = mock_engine()
        executor = make_executor(engine=engine)

        with pytest.raises(DangerousCommandError):
            executor.execute(parse_command_line("ls | rm x | wc"))

        # ls was already running, wc never started
        assert engine.spawn.call_count == 1
        assert engine.spawn.call_args[0][0] == ["ls"]

    def test_dangerous_character_rejected(self):
        engine = mock_engine()
        with pytest.raises(DangerousCharacterError):
            make_executor(engine=engine).execute([Command("echo", ["a;b"])])
        engine.spawn.assert_not_called()

    def test_redirect_outside_allowed_directories(self, tmp_path):
        engine = mock_engine()
        executor = make_executor(tmp_path, engine=engine)

        with pytest.raises(PathTraversalError):
            executor.execute(parse_command_line("echo x > /etc/shell-t-out"))

        engine.spawn.assert_not_called()

    def test_stdio_wiring(self):
        engine = mock_engine()
        first = Mock(pid=1)
        second = Mock(pid=2)
        engine.spawn.side_effect = [first, second]

        make_executor(engine=engine).execute(parse_command_line("ls | wc"))

        first_call, second_call = engine.spawn.call_args_list
        assert first_call.kwargs["stdin"] is None
        assert first_call.kwargs["stdout"] == subprocess.PIPE
        assert second_call.kwargs["stdin"] is first.stdout
        assert second_call.kwargs["stdout"] is None
        # parent's copy of the pipe read end is closed once handed over
        first.stdout.close.assert_called_once()
        assert [c[0][0] for c in engine.wait.call_args_list] == [first, second]

    def test_wait_failure_reaps_remaining_stages(self):
        engine = mock_engine()
        first = Mock(pid=1)
        second = Mock(pid=2)
        engine.spawn.side_effect = [first, second]
        engine.wait.side_effect = ProcessError("wait failed")

        with pytest.raises(ProcessError):
            make_executor(engine=engine).execute(parse_command_line("ls | wc"))

        deadline = time.monotonic() + 5
        while not second.wait.called and time.monotonic() < deadline:
            time.sleep(0.01)
        second.wait.assert_called_once()
        first.wait.assert_not_called()


# ============================================================================
# INTERPRETER DISPATCH
# ============================================================================

class TestResolveCommand:

    @pytest.mark.parametrize("script, interpreter, role", [
        ("script.py", "python3", "python"),
        ("tool.rb", "ruby", "ruby"),
        ("app.js", "node", "node"),
    ])
    def test_suffix_dispatch(self, script, interpreter, role):
        resolved = make_executor().resolve_command(script, ["a", "b"])
        assert resolved == ResolvedCommand(interpreter, [script, "a", "b"], interpreter=role)
        assert resolved.interpreted

    def test_plain_program_unchanged(self):
        resolved = make_executor().resolve_command("ls", ["-la"])
        assert resolved.argv == ["ls", "-la"]
        assert not resolved.interpreted

    def test_configured_interpreter_path(self):
        executor = make_executor(interpreters=InterpreterConfig(python_path="/opt/py/bin/python"))
        assert executor.resolve_command("x.py").argv == ["/opt/py/bin/python", "x.py"]

    def test_scripts_disabled(self):
        executor = make_executor(interpreters=InterpreterConfig(enable_scripts=False))
        assert executor.resolve_command("x.py").argv == ["x.py"]

    def test_resolved_program_is_validated(self):
        executor = make_executor(allowed_commands=frozenset({"x.py"}), engine=mock_engine())
        with pytest.raises(DangerousCommandError, match="python3"):
            executor.execute([Command("x.py")])

    def test_interpreter_stage_skips_character_check(self):
        engine = mock_engine()
        make_executor(engine=engine).execute([Command("run.py", ["a;b"])])
        assert engine.spawn.call_args[0][0] == ["python3", "run.py", "a;b"]


# ============================================================================
# BACKGROUND
# ============================================================================

class TestBackground:

    def test_returns_immediately_and_releases_guard(self):
        executor = make_executor()

        result = executor.execute(parse_command_line("sleep 0.3 &"))

        assert result.returncode is None
        assert result.background
        assert executor.security.active_processes == 1
        assert wait_for_idle(executor.security) == 0

    def test_ceiling_checked_before_spawn(self):
        engine = mock_engine()
        executor = make_executor(engine=engine,
                                 limits=ResourceLimits(max_background_processes=1))
        guard = executor.security.acquire_process_guard()

        with pytest.raises(ResourceLimitExceeded, match="Maximum background processes"):
            executor.execute(parse_command_line("sleep 1 &"))

        engine.spawn.assert_not_called()
        guard.release()

    def test_pipeline_must_fit_under_ceiling(self):
        engine = mock_engine()
        executor = make_executor(engine=engine,
                                 limits=ResourceLimits(max_background_processes=2))

        with pytest.raises(ResourceLimitExceeded, match="Maximum background processes"):
            executor.execute(parse_command_line("sleep 1 | sleep 1 | sleep 1 | sleep 1 &"))

        engine.spawn.assert_not_called()
        assert executor.security.active_processes == 0

        executor.execute(parse_command_line("sleep 1 | sleep 1 &"))
        assert engine.spawn.call_count == 2
        assert executor.security.active_processes <= 2

    def test_one_guard_per_process(self):
        executor = make_executor()

        executor.execute(parse_command_line("sleep 0.3 | sleep 0.3 &"))

        assert executor.security.active_processes == 2
        assert wait_for_idle(executor.security) == 0


# ============================================================================
# ENVIRONMENT
# ============================================================================

class TestChildEnvironment:

    def test_inherited_by_default(self):
        engine = mock_engine()
        make_executor(engine=engine).execute([Command("ls")])
        assert engine.spawn.call_args.kwargs["env"] is None

    def test_sanitized(self, monkeypatch):
        monkeypatch.setenv("BASH_ENV", "/tmp/evil")
        engine = mock_engine()

        make_executor(engine=engine, sanitize_environment=True).execute([Command("ls")])

        env = engine.spawn.call_args.kwargs["env"]
        assert env["PATH"] == SAFE_PATH
        assert "BASH_ENV" not in env


# ============================================================================
# MONITORED EXECUTION
# ============================================================================

class TestMonitored:

    def test_captures_output(self):
        executor = make_executor()

        result = executor.execute_with_monitoring("echo", ["monitored"])

        assert result.returncode == 0
        assert result.stdout == b"monitored\n"
        assert executor.security.get_command_stats("echo").count == 1
        assert executor.security.active_processes == 0

    def test_timeout(self):
        executor = make_executor(limits=ResourceLimits(command_timeout=0.2))

        with pytest.raises(ResourceLimitExceeded, match="timeout"):
            executor.execute_with_monitoring("sleep", ["2"])

        assert executor.security.active_processes == 0

    def test_output_ceiling(self):
        executor = make_executor(limits=ResourceLimits(max_output_bytes=3))
        with pytest.raises(ResourceLimitExceeded, match="Output too large"):
            executor.execute_with_monitoring("echo", ["hello"])

    def test_validated_before_running(self):
        engine = mock_engine()
        with pytest.raises(DangerousCommandError):
            make_executor(engine=engine).execute_with_monitoring("sudo", ["ls"])
        engine.run_monitored.assert_not_called()

    def test_failed_run_is_recorded(self):
        engine = mock_engine()
        engine.run_monitored = AsyncMock(side_effect=ResourceLimitExceeded("timeout"))
        executor = make_executor(engine=engine)

        with pytest.raises(ResourceLimitExceeded):
            executor.execute_with_monitoring("sleep", ["2"])

        assert executor.security.get_command_stats("sleep").count == 1
        assert executor.security.active_processes == 0

    def test_rate_limited_per_program(self):
        engine = mock_engine()
        engine.run_monitored = AsyncMock(
            return_value=MonitoredResult(["ls"], 0, b"", b"", 0.01))
        executor = make_executor(engine=engine)

        for _ in range(10):
            executor.execute_with_monitoring("ls")

        with pytest.raises(ResourceLimitExceeded, match="cmd:ls"):
            executor.execute_with_monitoring("ls")

        executor.execute_with_monitoring("wc")
        assert engine.run_monitored.await_count == 11
