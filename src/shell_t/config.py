"""
Configuration for Shell-T

ARCHITECTURE:
- Immutable snapshot (frozen dataclasses) handed to CommandExecutor and
  SecurityManager at construction time
- Loaded once per session: defaults -> YAML file -> environment overrides

RESPONSIBILITIES:
- Hold security policy (allow/block sets, length and count limits, toggles)
- Hold resource ceilings (background processes, pipeline length, timeout, output size)
- Hold interpreter executable paths for script dispatch
- Sanity-check the loaded values (Config.validate)

NOT RESPONSIBLE FOR:
- Enforcing anything (done by SecurityManager / CommandExecutor)

FILE FORMAT (shell-t.yaml):
    security:
      allowed_commands: [ls, cat, grep]
      blocked_commands: [rm, sudo]
      max_command_length: 4096
    limits:
      max_pipeline_length: 10
      command_timeout: 300
    interpreters:
      python_path: /usr/bin/python3

ENVIRONMENT OVERRIDES:
    SHELL_T_MAX_COMMAND_LENGTH, SHELL_T_PYTHON_PATH, SHELL_T_RUBY_PATH,
    SHELL_T_NODE_PATH, SHELL_T_SANITIZE_INPUT, SHELL_T_VALIDATE_PATHS
"""
from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

import yaml

from .constants import (
    DEFAULT_ALLOWED_COMMANDS,
    DEFAULT_ALLOWED_PATH_PREFIXES,
    DEFAULT_BLOCKED_COMMANDS,
)
from .errors import ConfigError

logger = logging.getLogger('Config')

DEFAULT_CONFIG_FILE = 'shell-t.yaml'


@dataclass(frozen=True)
class SecurityConfig:
    """Static command/argument/path policy."""
    allowed_commands: FrozenSet[str] = DEFAULT_ALLOWED_COMMANDS
    blocked_commands: FrozenSet[str] = DEFAULT_BLOCKED_COMMANDS
    max_command_length: int = 4096
    max_arg_count: int = 100
    max_arg_length: int = 1024
    validate_paths: bool = True
    sanitize_input: bool = True
    allowed_path_prefixes: Tuple[str, ...] = DEFAULT_ALLOWED_PATH_PREFIXES
    max_path_length: int = 4096
    sanitize_environment: bool = False


@dataclass(frozen=True)
class ResourceLimits:
    max_background_processes: int = 10
    max_pipeline_length: int = 10
    command_timeout: float = 300.0          # 5 minutes
    max_output_bytes: int = 512 * 1024 * 1024


@dataclass(frozen=True)
class InterpreterConfig:
    """Executables behind the fixed .py/.rb/.js dispatch roles."""
    python_path: str = 'python3'
    ruby_path: str = 'ruby'
    node_path: str = 'node'
    enable_scripts: bool = True

    def executable_for(self, role: str) -> str:
        return {
            'python': self.python_path,
            'ruby': self.ruby_path,
            'node': self.node_path,
        }[role]


@dataclass(frozen=True)
class Config:
    security: SecurityConfig = field(default_factory=SecurityConfig)
    limits: ResourceLimits = field(default_factory=ResourceLimits)
    interpreters: InterpreterConfig = field(default_factory=InterpreterConfig)

    def validate(self) -> None:
        """
        Reject configurations the core cannot run with.

        Raises:
            ConfigError: If a mandatory ceiling is zero
        """
        if self.security.max_command_length <= 0:
            raise ConfigError("Max command length must be greater than 0")

        if self.limits.max_background_processes <= 0:
            raise ConfigError("Max background processes must be greater than 0")

        if self.limits.max_pipeline_length <= 0:
            raise ConfigError("Max pipeline length must be greater than 0")

        if shutil.which(self.interpreters.python_path) is None:
            logger.warning(f"Python interpreter not found: {self.interpreters.python_path}")


# ============================================================================
# LOADING
# ============================================================================

def load_config(path: Optional[str] = None,
                environ: Optional[Mapping[str, str]] = None) -> Config:
    """
    Load configuration: defaults, then YAML file, then environment.

    Args:
        path: YAML file. None -> use ./shell-t.yaml if it exists
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated Config snapshot

    Raises:
        ConfigError: Missing explicit file, malformed YAML, unknown keys or bad values
    """
    environ = os.environ if environ is None else environ

    if path is None:
        candidate = Path.cwd() / DEFAULT_CONFIG_FILE
        raw = _read_yaml(candidate) if candidate.exists() else {}
    else:
        candidate = Path(path)
        if not candidate.exists():
            raise ConfigError(f"Config file not found: {path}")
        raw = _read_yaml(candidate)

    config = Config(
        security=_build_section(SecurityConfig, raw.get('security')),
        limits=_build_section(ResourceLimits, raw.get('limits')),
        interpreters=_build_section(InterpreterConfig, raw.get('interpreters')),
    )
    config = _apply_environment(config, environ)
    config.validate()

    logger.info(f"Configuration loaded (file={candidate if raw else 'defaults'})")
    return config


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        raw = yaml.safe_load(path.read_text(encoding='utf-8')) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping")
    return raw


def _build_section(cls, data: Optional[Dict[str, Any]]):
    """Instantiate one config dataclass from its YAML mapping."""
    if not data:
        return cls()
    if not isinstance(data, dict):
        raise ConfigError(f"Section for {cls.__name__} must be a mapping")

    known = {f.name: f for f in fields(cls)}
    kwargs = {}
    for key, value in data.items():
        if key not in known:
            raise ConfigError(f"Unknown {cls.__name__} option: {key}")
        default = getattr(cls(), key)
        # YAML lists -> the frozen container types the dataclass expects
        if isinstance(default, frozenset):
            value = frozenset(value or ())
        elif isinstance(default, tuple):
            value = tuple(value or ())
        kwargs[key] = value

    return cls(**kwargs)


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ('1', 'true', 'yes', 'on'):
        return True
    if lowered in ('0', 'false', 'no', 'off'):
        return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


def _apply_environment(config: Config, environ: Mapping[str, str]) -> Config:
    security = config.security
    interpreters = config.interpreters

    if 'SHELL_T_MAX_COMMAND_LENGTH' in environ:
        try:
            length = int(environ['SHELL_T_MAX_COMMAND_LENGTH'])
        except ValueError as e:
            raise ConfigError("SHELL_T_MAX_COMMAND_LENGTH must be an integer") from e
        security = replace(security, max_command_length=length)

    if 'SHELL_T_SANITIZE_INPUT' in environ:
        security = replace(security, sanitize_input=_parse_bool(
            'SHELL_T_SANITIZE_INPUT', environ['SHELL_T_SANITIZE_INPUT']))

    if 'SHELL_T_VALIDATE_PATHS' in environ:
        security = replace(security, validate_paths=_parse_bool(
            'SHELL_T_VALIDATE_PATHS', environ['SHELL_T_VALIDATE_PATHS']))

    if 'SHELL_T_PYTHON_PATH' in environ:
        interpreters = replace(interpreters, python_path=environ['SHELL_T_PYTHON_PATH'])
    if 'SHELL_T_RUBY_PATH' in environ:
        interpreters = replace(interpreters, ruby_path=environ['SHELL_T_RUBY_PATH'])
    if 'SHELL_T_NODE_PATH' in environ:
        interpreters = replace(interpreters, node_path=environ['SHELL_T_NODE_PATH'])

    return replace(config, security=security, interpreters=interpreters)
