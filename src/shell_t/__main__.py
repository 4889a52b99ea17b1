"""
Shell-T entry point

    shell-t                   interactive loop (prompt "shell-t> ")
    shell-t -c "ls | wc -l"   run one line, exit with its status
    shell-t --config policy.yaml --log-level DEBUG
"""
import argparse
import logging
import os
import sys
from typing import List, Optional

from .config import load_config
from .environment import check_environment, is_elevated
from .errors import ConfigError, PolicyViolation
from .shell_session import ShellSession

PROMPT = 'shell-t> '

logger = logging.getLogger('ShellT')


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='shell-t', description='Restricted command shell')
    parser.add_argument('--config', help='YAML policy file (default: ./shell-t.yaml if present)')
    parser.add_argument('--log-level', default=None,
                        help='Logging level (default: $SHELL_T_LOG_LEVEL or WARNING)')
    parser.add_argument('-c', dest='command', metavar='COMMAND',
                        help='Run one command line and exit')
    return parser


def _configure_logging(level_name: Optional[str]):
    level_name = (level_name or os.environ.get('SHELL_T_LOG_LEVEL') or 'WARNING').upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format='%(name)s - %(levelname)s - %(message)s',
    )


def _check_startup_environment():
    """Log warnings for an elevated or loader-hooked launch environment"""
    if is_elevated():
        logger.warning("Running with effective UID 0")

    try:
        check_environment()
    except PolicyViolation as e:
        logger.warning(f"Unsafe launch environment: {e}")


def _repl(session: ShellSession) -> int:
    while not session.exit_requested:
        try:
            line = input(PROMPT)
        except EOFError:
            print()
            break
        except KeyboardInterrupt:
            print()
            continue

        if not line.strip():
            continue
        session.run_line(line)

    return session.last_status


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    _configure_logging(args.log_level)
    _check_startup_environment()

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    session = ShellSession(config)

    if args.command is not None:
        return session.run_line(args.command)

    return _repl(session)


if __name__ == '__main__':
    sys.exit(main())
