"""
Environment hardening for spawned processes

Builds a cleaned copy of the environment for child processes and reports
suspicious variables. Never mutates os.environ.
"""
import logging
import os
from typing import Dict, Mapping, Optional

from .constants import DANGEROUS_ENV_VARS, SAFE_PATH, SAFE_SHELL
from .errors import DangerousCommandError, InvalidInputError

logger = logging.getLogger('Environment')


def build_safe_environment(base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """
    Copy of base with loader/startup hooks removed and a fixed PATH/SHELL.

    Args:
        base: Source environment (defaults to os.environ)

    Returns:
        New dict suitable for Popen(env=...)
    """
    env = dict(os.environ if base is None else base)

    for name in DANGEROUS_ENV_VARS:
        if env.pop(name, None) is not None:
            logger.debug(f"Removed {name} from child environment")

    env['PATH'] = SAFE_PATH
    env['SHELL'] = SAFE_SHELL
    return env


def check_environment(environ: Optional[Mapping[str, str]] = None):
    """
    Reject environments carrying dynamic-loader overrides or NUL bytes.

    Raises:
        DangerousCommandError: LD_* or DYLD_* variable present
        InvalidInputError: NUL byte in a value
    """
    environ = os.environ if environ is None else environ

    for key, value in environ.items():
        if key.startswith(('LD_', 'DYLD_')):
            raise DangerousCommandError(f"Suspicious environment variable: {key}")
        if '\0' in value:
            raise InvalidInputError(f"Null byte in environment variable: {key}")


def is_elevated() -> bool:
    """True when running with effective UID 0 (always False off POSIX)"""
    geteuid = getattr(os, 'geteuid', None)
    return geteuid is not None and geteuid() == 0
