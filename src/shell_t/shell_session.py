"""
Shell Session - top-level orchestrator (thin layer)

ARCHITECTURE:
This is the TOP-LEVEL ENTRY POINT for one line of user input.
It is a THIN ORCHESTRATOR that delegates almost all work to specialized components.

Position in hierarchy:
    REPL (__main__)
       ↓
    ShellSession (this class) ← ORCHESTRATOR
       ↓
    ├── SecurityManager ← input sanitization (and policy for the executor)
    ├── parse_command_line ← line → List[Command]
    ├── BuiltinManager ← cd, pwd, exit, export, unset, which, type
    └── CommandExecutor ← pipeline execution

RESPONSIBILITIES:
1. Own the per-session SecurityManager and share it with the executor
2. Run the fixed template: sanitize → parse → builtin dispatch → execute
3. Turn every ShellError into "Error: <message>" on stderr and status 1
4. Track exit requests from the exit builtin

NOT RESPONSIBLE FOR:
- Reading input or prompting (__main__)
- Any policy decision (SecurityManager)

DATA FLOW:
    run_line(line) →
        1. SecurityManager.sanitize_input(line)
        2. parse_command_line(clean)
        3. single stage without redirection → BuiltinManager.execute()
        4. otherwise CommandExecutor.execute(commands) → status

USAGE PATTERN:
    session = ShellSession(load_config())
    status = session.run_line("ls -la | grep py")
    if session.exit_requested:
        ...
"""
import logging
import sys
from typing import List, Optional, TextIO

from .builtins import BuiltinManager, BuiltinResult
from .command_executor import CommandExecutor
from .config import Config
from .errors import ShellError
from .pipeline_parser import Command, parse_command_line
from .security_manager import SecurityManager


class ShellSession:
    """
    One interactive shell.

    Policy state (active processes, rate limits, statistics) lives in the
    SecurityManager owned here and lasts as long as the session.
    """

    def __init__(self, config: Optional[Config] = None,
                 security: Optional[SecurityManager] = None,
                 executor: Optional[CommandExecutor] = None,
                 stdout: TextIO = None, stderr: TextIO = None,
                 logger: logging.Logger = None):
        """
        Initialize ShellSession.

        Args:
            config: Config snapshot (defaults to Config())
            security: SecurityManager (created from config if None)
            executor: CommandExecutor (created from config/security if None)
            stdout: Stream for builtin output (defaults to sys.stdout)
            stderr: Stream for error messages (defaults to sys.stderr)
            logger: Logger instance
        """
        if config is None:
            config = security.config if security is not None else Config()
        self.config = config
        self.security = security or SecurityManager(config)
        self.executor = executor or CommandExecutor(config, self.security)
        self.builtins = BuiltinManager()
        self.stdout = stdout
        self.stderr = stderr
        self.logger = logger or logging.getLogger('ShellSession')

        self.exit_requested = False
        self.last_status = 0

    def _out(self) -> TextIO:
        return self.stdout or sys.stdout

    def _err(self) -> TextIO:
        return self.stderr or sys.stderr

    def run_line(self, line: str) -> int:
        """
        Execute one input line.

        Returns:
            Final stage status, 0 for background pipelines, 1 on any ShellError
        """
        try:
            status = self._run(line)
        except ShellError as e:
            self.logger.debug(f"Line failed: {type(e).__name__}: {e}")
            print(f"Error: {e}", file=self._err())
            status = 1

        self.last_status = status
        return status

    def _run(self, line: str) -> int:
        clean = self.security.sanitize_input(line)
        commands = parse_command_line(clean)

        if self._is_builtin_candidate(commands):
            result = self.builtins.execute(commands[0])
            if result is not None:
                return self._finish_builtin(result)

        result = self.executor.execute(commands)
        if result.returncode is None:
            print(f"[{result.pids[-1]}]" if result.pids else "[background]", file=self._err())
            return 0
        return result.returncode

    def _is_builtin_candidate(self, commands: List[Command]) -> bool:
        if len(commands) != 1:
            return False
        command = commands[0]
        return (command.input_redirect is None
                and command.output_redirect is None
                and self.builtins.is_builtin(command.program))

    def _finish_builtin(self, result: BuiltinResult) -> int:
        if result.output:
            stream = self._out() if result.status == 0 else self._err()
            print(result.output, file=stream)
        if result.exit_requested:
            self.exit_requested = True
        return result.status
