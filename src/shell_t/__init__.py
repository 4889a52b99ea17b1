"""
Shell-T - restricted command shell with a policy-gated pipeline executor

Main components:
- ShellSession: Main orchestrator (sanitize, parse, builtins, execute)
- CommandExecutor: Pipeline state machine (resolve, validate, wire, spawn, wait)
- ExecutionEngine: Subprocess management (single spawn point)
- SecurityManager: Policy checks, process ceiling, rate limiting, statistics
- BuiltinManager: In-process commands (cd, pwd, exit, export, ...)
- parse_command_line: Line to pipeline stages
"""

from .builtins import BuiltinManager, BuiltinResult
from .command_executor import CommandExecutor, PipelineResult, ResolvedCommand
from .config import Config, InterpreterConfig, ResourceLimits, SecurityConfig, load_config
from .errors import ShellError
from .execution_engine import ExecutionEngine, MonitoredResult
from .pipeline_parser import Command, parse_command_line
from .security_manager import ProcessGuard, SecurityManager
from .shell_session import ShellSession

__all__ = [
    'ShellSession',
    'CommandExecutor',
    'PipelineResult',
    'ResolvedCommand',
    'ExecutionEngine',
    'MonitoredResult',
    'SecurityManager',
    'ProcessGuard',
    'BuiltinManager',
    'BuiltinResult',
    'Command',
    'parse_command_line',
    'Config',
    'SecurityConfig',
    'ResourceLimits',
    'InterpreterConfig',
    'load_config',
    'ShellError',
]
