"""
Builtin commands - things a child process cannot do for the shell

Builtins mutate the shell process itself (cwd, environment, lifetime), so
they run in-process instead of going through CommandExecutor. They are NOT
subject to the command allow/block sets.

Supported: cd, pwd, exit, export, unset, which, type
"""
import logging
import os
import re
import shutil
from dataclasses import dataclass
from typing import List, Optional

from .pipeline_parser import Command


IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


@dataclass
class BuiltinResult:
    status: int = 0
    output: str = ''            # stdout on success, message for stderr otherwise
    exit_requested: bool = False


class BuiltinManager:
    """Dispatch table for in-process commands"""

    def __init__(self, logger: logging.Logger = None):
        self.logger = logger or logging.getLogger('BuiltinManager')
        self.handlers = {
            'cd': self._cd,
            'pwd': self._pwd,
            'exit': self._exit,
            'export': self._export,
            'unset': self._unset,
            'which': self._which,
            'type': self._type,
        }

    def is_builtin(self, name: str) -> bool:
        return name in self.handlers

    def execute(self, command: Command) -> Optional[BuiltinResult]:
        """
        Run command if it names a builtin.

        Returns:
            BuiltinResult, or None when command is not a builtin
        """
        handler = self.handlers.get(command.program)
        if handler is None:
            return None

        self.logger.debug(f"Builtin: {command.program} {command.args}")
        return handler(command.args)

    # ========================================================================
    # HANDLERS
    # ========================================================================

    def _cd(self, args: List[str]) -> BuiltinResult:
        if args:
            target = args[0]
        else:
            target = os.environ.get('HOME')
            if not target:
                return BuiltinResult(1, "cd: HOME not set")

        try:
            os.chdir(target)
        except OSError as e:
            return BuiltinResult(1, f"cd: {target}: {e.strerror or e}")

        return BuiltinResult(0)

    def _pwd(self, args: List[str]) -> BuiltinResult:
        return BuiltinResult(0, os.getcwd())

    def _exit(self, args: List[str]) -> BuiltinResult:
        if not args:
            return BuiltinResult(0, exit_requested=True)

        try:
            status = int(args[0])
        except ValueError:
            return BuiltinResult(1, f"exit: {args[0]}: numeric argument required")

        return BuiltinResult(status, exit_requested=True)

    def _export(self, args: List[str]) -> BuiltinResult:
        if not args:
            lines = [f"{key}={value}" for key, value in sorted(os.environ.items())]
            return BuiltinResult(0, '\n'.join(lines))

        status = 0
        errors = []
        for arg in args:
            name, sep, value = arg.partition('=')
            if not IDENTIFIER.match(name):
                errors.append(f"export: `{arg}': not a valid identifier")
                status = 1
                continue
            # "export NAME" without a value keeps an existing variable as-is
            if sep:
                os.environ[name] = value

        return BuiltinResult(status, '\n'.join(errors))

    def _unset(self, args: List[str]) -> BuiltinResult:
        for name in args:
            os.environ.pop(name, None)
        return BuiltinResult(0)

    def _which(self, args: List[str]) -> BuiltinResult:
        if not args:
            return BuiltinResult(1, "which: missing argument")

        found = []
        status = 0
        for name in args:
            path = shutil.which(name)
            if path is None:
                status = 1
            else:
                found.append(path)

        return BuiltinResult(status, '\n'.join(found))

    def _type(self, args: List[str]) -> BuiltinResult:
        if not args:
            return BuiltinResult(1, "type: missing argument")

        lines = []
        status = 0
        for name in args:
            if self.is_builtin(name):
                lines.append(f"{name} is a shell builtin")
                continue
            path = shutil.which(name)
            if path is None:
                lines.append(f"type: {name}: not found")
                status = 1
            else:
                lines.append(f"{name} is {path}")

        return BuiltinResult(status, '\n'.join(lines))
