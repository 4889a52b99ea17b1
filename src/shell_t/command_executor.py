"""
Command Executor - pipeline state machine

ARCHITECTURE:
    execute(commands)
        ↓
    admit (drop empty stages, enforce max_pipeline_length)
        ↓
    per stage, left to right:
        resolve (interpreter dispatch) → validate → wire I/O → spawn
        ↓
    foreground: wait all in spawn order → final stage status
    background: guard per process → reaper thread → return immediately

RESPONSIBILITIES:
- Interpreter resolution (.py/.rb/.js -> configured interpreter)
- Calling SecurityManager for every stage, BEFORE that stage is spawned
- Opening redirection files and connecting stages with OS pipes
- Waiting on foreground pipelines, reaping background ones
- Monitored single-command execution (deadline + output ceiling)

NOT RESPONSIBLE FOR:
- Parsing (pipeline_parser)
- Builtins (BuiltinManager, dispatched by ShellSession)
- Subprocess creation itself (ExecutionEngine)
- Printing anything: stdout/stderr belong to the children

FAILURE MODEL:
- Checks are interleaved with spawning. A violation at stage k aborts the
  pipeline; stages 0..k-1 are already running and are NOT killed. They are
  handed to a reaper thread so they do not linger as zombies.
- A non-zero exit status is a result, not an error.
"""
import asyncio
import logging
import os
import subprocess
import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .config import Config
from .constants import INTERPRETER_SUFFIXES
from .environment import build_safe_environment
from .errors import FileSystemError, PipelineTooLongError, ProcessError
from .execution_engine import ExecutionEngine, MonitoredResult
from .pipeline_parser import Command
from .security_manager import ProcessGuard, SecurityManager


@dataclass
class ResolvedCommand:
    """A stage after interpreter dispatch"""
    program: str
    args: List[str] = field(default_factory=list)
    interpreter: Optional[str] = None     # role ('python', 'ruby', 'node') when dispatched

    @property
    def argv(self) -> List[str]:
        return [self.program] + list(self.args)

    @property
    def interpreted(self) -> bool:
        return self.interpreter is not None


@dataclass
class PipelineResult:
    """
    Outcome of execute().

    returncode is None for background pipelines (nobody waited).
    """
    returncode: Optional[int]
    stage_count: int
    background: bool = False
    pids: List[int] = field(default_factory=list)


class CommandExecutor:
    """
    Runs parsed pipelines under the session's security policy.

    Holds the Config snapshot and a reference to the shared SecurityManager;
    all mutable policy state lives in the SecurityManager.
    """

    def __init__(self, config: Optional[Config] = None,
                 security: Optional[SecurityManager] = None,
                 engine: Optional[ExecutionEngine] = None,
                 logger: logging.Logger = None):
        """
        Initialize CommandExecutor.

        Args:
            config: Config snapshot (defaults to security.config, then Config())
            security: Shared SecurityManager (created from config if None)
            engine: ExecutionEngine (tests inject a mock)
            logger: Logger instance
        """
        if config is None:
            config = security.config if security is not None else Config()
        self.config = config
        self.security = security or SecurityManager(config)
        self.engine = engine or ExecutionEngine()
        self.logger = logger or logging.getLogger('CommandExecutor')

    # ========================================================================
    # RESOLUTION / VALIDATION
    # ========================================================================

    def resolve_command(self, program: str, args: Sequence[str] = ()) -> ResolvedCommand:
        """
        Map a script name to its interpreter.

        "script.py a b" -> python3 script.py a b (when scripts are enabled).
        Anything else is returned unchanged.
        """
        interpreters = self.config.interpreters
        if interpreters.enable_scripts:
            suffix = os.path.splitext(program)[1]
            role = INTERPRETER_SUFFIXES.get(suffix)
            if role is not None:
                executable = interpreters.executable_for(role)
                self.logger.debug(f"Dispatching {program} to {executable}")
                return ResolvedCommand(executable, [program] + list(args), interpreter=role)

        return ResolvedCommand(program, list(args))

    def _validate(self, resolved: ResolvedCommand):
        self.security.validate_command(resolved.program)
        self.security.validate_arguments(resolved.args,
                                         check_characters=not resolved.interpreted)

    def _child_env(self):
        if self.config.security.sanitize_environment:
            return build_safe_environment()
        return None

    # ========================================================================
    # REDIRECTION
    # ========================================================================

    def _open_input(self, path: str):
        validated = self.security.validate_path(path)
        try:
            return open(validated, 'rb')
        except OSError as e:
            raise FileSystemError(f"Cannot open input file {path}: {e.strerror or e}") from e

    def _open_output(self, path: str, append: bool):
        validated = self.security.validate_path(path)
        try:
            return open(validated, 'ab' if append else 'wb')
        except OSError as e:
            raise FileSystemError(f"Cannot open output file {path}: {e.strerror or e}") from e

    # ========================================================================
    # PIPELINE EXECUTION
    # ========================================================================

    def execute(self, commands: List[Command]) -> PipelineResult:
        """
        Run a pipeline.

        Args:
            commands: Stages from parse_command_line (or built directly)

        Returns:
            PipelineResult with the final stage's status (None if background)

        Raises:
            PipelineTooLongError: Before anything is spawned
            PolicyViolation: Stage rejected by SecurityManager
            ResourceLimitExceeded: Background ceiling reached
            FileSystemError: Redirection file cannot be opened
            ProcessExecutionError: Spawn failed
            ProcessError: Wait failed
        """
        stages = [c for c in commands if c.program]
        if not stages:
            return PipelineResult(returncode=0, stage_count=0)

        limit = self.config.limits.max_pipeline_length
        if len(stages) > limit:
            raise PipelineTooLongError(f"Pipeline too long: {len(stages)} stages (max {limit})")

        background = stages[-1].background
        if background:
            # every stage of a background pipeline holds its own slot
            self.security.can_start_process(len(stages))

        self.logger.info(f"Executing pipeline: {len(stages)} stage(s){' in background' if background else ''}")

        spawned: List[Tuple[subprocess.Popen, Optional[ProcessGuard]]] = []
        try:
            self._spawn_stages(stages, background, spawned)
        except Exception:
            if spawned:
                self.logger.warning(f"Pipeline aborted, {len(spawned)} stage(s) left running")
                self._start_reaper(spawned)
            raise

        pids = [process.pid for process, _ in spawned]

        if background:
            self._start_reaper(spawned)
            return PipelineResult(returncode=None, stage_count=len(stages),
                                  background=True, pids=pids)

        returncode = 0
        for i, (process, _) in enumerate(spawned):
            try:
                returncode = self.engine.wait(process)
            except ProcessError:
                if spawned[i + 1:]:
                    self._start_reaper(spawned[i + 1:])
                raise

        self.logger.info(f"Pipeline finished with status {returncode}")
        return PipelineResult(returncode=returncode, stage_count=len(stages), pids=pids)

    def _spawn_stages(self, stages: List[Command], background: bool,
                      spawned: List[Tuple[subprocess.Popen, Optional[ProcessGuard]]]):
        """Resolve, validate, wire and spawn each stage, appending to spawned."""
        env = self._child_env()
        last = len(stages) - 1
        previous_stdout = None

        for i, stage in enumerate(stages):
            stdin_file = None
            stdout_file = None
            try:
                resolved = self.resolve_command(stage.program, stage.args)
                self._validate(resolved)

                if i == 0 and stage.input_redirect is not None:
                    stdin_file = self._open_input(stage.input_redirect)
                stdin = stdin_file if stdin_file is not None else previous_stdout

                if i < last:
                    stdout = subprocess.PIPE
                elif stage.output_redirect is not None:
                    stdout_file = self._open_output(stage.output_redirect, stage.append)
                    stdout = stdout_file
                else:
                    stdout = None

                self.logger.debug(f"Stage {i}: {resolved.argv}")

                start = time.monotonic()
                process = self.engine.spawn(resolved.argv, stdin=stdin, stdout=stdout, env=env)
                latency = time.monotonic() - start
            finally:
                # Children hold their own copies of these descriptors
                if stdin_file is not None:
                    stdin_file.close()
                if stdout_file is not None:
                    stdout_file.close()
                if previous_stdout is not None:
                    previous_stdout.close()
                    previous_stdout = None

            guard = self.security.acquire_process_guard() if background else None
            spawned.append((process, guard))
            self.security.record_execution(resolved.program, latency)

            if i < last:
                previous_stdout = process.stdout

    def _start_reaper(self, spawned: List[Tuple[subprocess.Popen, Optional[ProcessGuard]]]):
        """Wait on processes from a daemon thread, releasing each guard after its exit."""
        def reap():
            for process, guard in spawned:
                try:
                    process.wait()
                except OSError as e:
                    self.logger.warning(f"Reaper wait failed for pid {process.pid}: {e}")
                finally:
                    if guard is not None:
                        guard.release()
            self.logger.debug(f"Reaped {len(spawned)} process(es)")

        threading.Thread(target=reap, name='shell-t-reaper', daemon=True).start()

    # ========================================================================
    # MONITORED EXECUTION
    # ========================================================================

    async def run_monitored(self, program: str, args: Sequence[str] = ()) -> MonitoredResult:
        """
        Run one command with a deadline and captured output.

        Order: resolve → validate → rate limit (cmd:<program>) →
        background ceiling → guard held for the run → record duration (always).

        Raises:
            PolicyViolation: Rejected by SecurityManager
            ResourceLimitExceeded: Rate limit, ceiling, timeout or output size
            ProcessExecutionError: Spawn failed
        """
        resolved = self.resolve_command(program, args)
        self._validate(resolved)

        self.security.check_rate_limit(f"cmd:{resolved.program}")
        self.security.can_start_process()

        limits = self.config.limits
        start = time.monotonic()
        try:
            with self.security.acquire_process_guard():
                result = await self.engine.run_monitored(
                    resolved.argv,
                    timeout=limits.command_timeout,
                    max_output_bytes=limits.max_output_bytes,
                    env=self._child_env(),
                )
        finally:
            # timed-out and oversized runs are recorded too
            self.security.record_execution(resolved.program, time.monotonic() - start)

        self.logger.info(f"Monitored {resolved.program} finished with status "
                         f"{result.returncode} in {result.duration:.3f}s")
        return result

    def execute_with_monitoring(self, program: str, args: Sequence[str] = ()) -> MonitoredResult:
        """Synchronous wrapper around run_monitored (must not be called from a running loop)"""
        return asyncio.run(self.run_monitored(program, args))
