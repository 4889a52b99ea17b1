"""
Execution Engine - Single point for all subprocess operations

ARCHITECTURE:
This is the SINGLE SUBPROCESS EXECUTION POINT for Shell-T.
ALL process creation goes through this class (no direct Popen elsewhere).

Position in hierarchy:
    ShellSession
        ↓
    CommandExecutor (pipeline state machine + policy calls)
        ↓
    ExecutionEngine ← THIS CLASS (SINGLE POINT)
        ↓
    subprocess.Popen() / asyncio.create_subprocess_exec()

RESPONSIBILITIES:
1. Spawn one pipeline stage with the stdin/stdout the executor wired up
   (stderr is ALWAYS inherited)
2. Wait on spawned stages, turning OS failures into ProcessError
3. Monitored execution: run one command under a deadline with captured
   output and an output-size ceiling (asyncio)
4. Logging: trace every spawn
5. Statistics: count spawns by kind

NOT RESPONSIBLE FOR:
- Policy checks, rate limiting, process guards (SecurityManager via CommandExecutor)
- Interpreter resolution (CommandExecutor)
- Parsing (pipeline_parser)

ERROR MAPPING:
    OSError at spawn    → ProcessExecutionError (not found, permission denied)
    OSError at wait     → ProcessError
    deadline expired    → ResourceLimitExceeded (process NOT killed)
    stdout over ceiling → ResourceLimitExceeded

USAGE PATTERN:
    engine = ExecutionEngine(working_dir=Path.cwd())
    proc = engine.spawn(["grep", "x"], stdin=subprocess.PIPE)
    status = engine.wait(proc)

    result = asyncio.run(engine.run_monitored(["ls", "-la"], timeout=5.0,
                                              max_output_bytes=1024))
"""
import asyncio
import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .errors import ProcessError, ProcessExecutionError, ResourceLimitExceeded


@dataclass
class MonitoredResult:
    """Outcome of a deadline-bounded run"""
    argv: List[str]
    returncode: int
    stdout: bytes
    stderr: bytes
    duration: float     # seconds, spawn to exit


class ExecutionEngine:
    """
    Sole owner of process creation.

    Holds no policy state. working_dir and env are defaults for every spawn
    (None = inherit from the shell).
    """

    def __init__(self, working_dir: Optional[Path] = None,
                 env: Optional[Dict[str, str]] = None,
                 logger: logging.Logger = None):
        """
        Initialize execution engine.

        Args:
            working_dir: cwd for children (None -> shell's current directory)
            env: Environment for children (None -> inherit)
            logger: Logger instance for execution tracking
        """
        self.working_dir = working_dir
        self.env = env
        self.logger = logger or logging.getLogger('ExecutionEngine')

        self.stats = {
            'spawned': 0,
            'monitored': 0,
            'failed': 0,
        }

    def _cwd(self) -> Optional[str]:
        return str(self.working_dir) if self.working_dir is not None else None

    def spawn(self, argv: Sequence[str], stdin=None, stdout=None,
              env: Optional[Dict[str, str]] = None) -> subprocess.Popen:
        """
        Start one process without waiting for it.

        Args:
            argv: Program followed by its arguments
            stdin: None (inherit), an open file, subprocess.PIPE or a pipe end
            stdout: None (inherit), an open file or subprocess.PIPE
            env: Environment for this child (None -> engine default)

        Returns:
            Running Popen handle

        Raises:
            ProcessExecutionError: Executable missing, not executable, etc.
        """
        argv = list(argv)
        self.logger.debug(f"Spawning: {' '.join(argv)}")

        try:
            process = subprocess.Popen(
                argv,
                stdin=stdin,
                stdout=stdout,
                stderr=None,
                cwd=self._cwd(),
                env=env if env is not None else self.env,
            )
        except OSError as e:
            self.stats['failed'] += 1
            reason = e.strerror or str(e)
            raise ProcessExecutionError(f"Failed to execute {argv[0]}: {reason}") from e

        self.stats['spawned'] += 1
        return process

    def wait(self, process: subprocess.Popen) -> int:
        """
        Block until process exits.

        Returns:
            Exit status (a non-zero status is NOT an error)

        Raises:
            ProcessError: The wait itself failed
        """
        try:
            return process.wait()
        except OSError as e:
            raise ProcessError(f"Process wait error (pid {process.pid}): {e}") from e

    async def run_monitored(self, argv: Sequence[str], timeout: float,
                            max_output_bytes: int,
                            env: Optional[Dict[str, str]] = None) -> MonitoredResult:
        """
        Run one command to completion under a deadline, capturing output.

        The calling coroutine never blocks past the deadline. On expiry the
        child is left alone: it may keep running.

        Args:
            argv: Program followed by its arguments
            timeout: Deadline in seconds
            max_output_bytes: Ceiling on captured stdout
            env: Environment for this child (None -> engine default)

        Returns:
            MonitoredResult

        Raises:
            ProcessExecutionError: Spawn failed
            ResourceLimitExceeded: Deadline expired or stdout over ceiling
        """
        argv = list(argv)
        self.stats['monitored'] += 1
        self.logger.debug(f"Monitored run (timeout={timeout}s): {' '.join(argv)}")

        start = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._cwd(),
                env=env if env is not None else self.env,
            )
        except OSError as e:
            self.stats['failed'] += 1
            reason = e.strerror or str(e)
            raise ProcessExecutionError(f"Failed to execute {argv[0]}: {reason}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            self.logger.warning(
                f"Command timed out after {timeout}s, pid {process.pid} may still be running: {argv[0]}")
            raise ResourceLimitExceeded(f"Command execution timeout after {timeout}s: {argv[0]}")

        duration = time.monotonic() - start

        if len(stdout) > max_output_bytes:
            raise ResourceLimitExceeded(
                f"Output too large: {len(stdout)} bytes (max {max_output_bytes})")

        return MonitoredResult(
            argv=argv,
            returncode=process.returncode,
            stdout=stdout,
            stderr=stderr,
            duration=duration,
        )

    def get_stats(self) -> Dict[str, int]:
        """Get execution statistics"""
        return self.stats.copy()
