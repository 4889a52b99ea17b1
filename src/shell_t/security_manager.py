"""
Security manager for Shell-T command execution

ARCHITECTURE:
- Policy layer gating every pipeline stage before it is spawned
- One instance per session, injected into CommandExecutor (never a module global)
- Owns ALL mutable policy state: active-process counter, rate-limiter map,
  per-command statistics. Executors hold a reference and nothing else.

RESPONSIBILITIES:
- Static rules: block/allow command sets, argument count/length limits,
  dangerous characters, path traversal, allowed absolute path prefixes
- Input sanitization (control characters, composite injection patterns, length)
- Dynamic limits: background process ceiling (ProcessGuard), sliding-window
  rate limiting per key
- Observational statistics per command name

NOT RESPONSIBLE FOR:
- Parsing (done by pipeline_parser)
- Spawning or waiting on processes (done by CommandExecutor/ExecutionEngine)
- Deciding WHEN a check applies (the executor calls what it needs)

SECURITY MODEL:
- Block-set always wins; a non-empty allow-set is a strict membership gate
- No shell is ever invoked: argv goes straight to exec. The dangerous
  character check is a content policy on arguments, not an injection guard.
- NOT A SANDBOX: nothing below the OS process boundary is restricted

LOCKING:
- active counter, rate-limiter map and stats map each have their own lock
- locks cover in-memory mutation only, never I/O or process spawn

USAGE PATTERN:
    security = SecurityManager(config)
    security.validate_command("grep")
    security.validate_arguments(["-r", "TODO"])
    security.can_start_process()
    with security.acquire_process_guard():
        ...  # background process lifetime
"""
import logging
import re
import threading
import time
import unicodedata
from collections import deque
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Deque, Dict, Optional, Sequence

from .config import Config
from .constants import (
    DANGEROUS_CHARACTERS,
    RATE_LIMIT_MAX_CALLS,
    RATE_LIMIT_WINDOW_SECONDS,
    SUSPICIOUS_PATTERNS,
    TRAVERSAL_FRAGMENTS,
)
from .errors import (
    ArgumentTooLongError,
    DangerousCharacterError,
    DangerousCommandError,
    InvalidInputError,
    PathTraversalError,
    PolicyViolation,
    ResourceLimitExceeded,
    TooManyArgumentsError,
)


@dataclass
class CommandStats:
    """Aggregate for one command name. Created on first execution, never deleted."""
    count: int = 0
    last_execution: float = 0.0     # epoch seconds
    total_time: float = 0.0         # seconds


class ProcessGuard:
    """
    One slot of the active-process budget.

    Acquired through SecurityManager.acquire_process_guard(). release() runs
    the decrement exactly once; later calls are no-ops. Use as a context
    manager so every exit path releases.
    """

    def __init__(self, release_callback: Callable[[], None]):
        self._release_callback = release_callback
        self._released = False
        self._lock = threading.Lock()

    @property
    def released(self) -> bool:
        return self._released

    def release(self):
        with self._lock:
            if self._released:
                return
            self._released = True
        self._release_callback()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


class RateLimiter:
    """
    Sliding-window rate limiter keyed by policy key (e.g. "cmd:grep").

    After pruning, a key's deque only holds timestamps inside the trailing
    window. A use is rejected (and NOT recorded) when max_calls remain.
    """

    def __init__(self, window: float = RATE_LIMIT_WINDOW_SECONDS,
                 max_calls: int = RATE_LIMIT_MAX_CALLS,
                 clock: Callable[[], float] = time.monotonic):
        self.window = window
        self.max_calls = max_calls
        self.clock = clock
        self._entries: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def check(self, key: str):
        """
        Record one use of key.

        Raises:
            ResourceLimitExceeded: If key already has max_calls uses in the window
        """
        with self._lock:
            now = self.clock()
            entries = self._entries.setdefault(key, deque())

            while entries and now - entries[0] >= self.window:
                entries.popleft()

            if len(entries) >= self.max_calls:
                raise ResourceLimitExceeded(f"Rate limit exceeded for {key}")

            entries.append(now)


class SecurityManager:
    """
    Policy engine shared by every executor of a session.

    Every validate_* method returns normally or raises a PolicyViolation
    subclass. Nothing here mutates its input except sanitize_input.
    """

    def __init__(self, config: Optional[Config] = None,
                 logger: logging.Logger = None,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize security manager.

        Args:
            config: Policy snapshot (defaults to Config())
            logger: Logger instance
            clock: Monotonic clock for rate limiting (tests inject a fake one)
        """
        self.config = config or Config()
        self.logger = logger or logging.getLogger('SecurityManager')

        self._active_processes = 0
        self._active_lock = threading.Lock()

        self.rate_limiter = RateLimiter(clock=clock)

        self._stats: Dict[str, CommandStats] = {}
        self._stats_lock = threading.Lock()

        self._suspicious = [re.compile(p) for p in SUSPICIOUS_PATTERNS]

    @property
    def security(self):
        return self.config.security

    def _reject(self, error: PolicyViolation) -> PolicyViolation:
        self.logger.warning(f"Policy rejection: {error}")
        return error

    # ========================================================================
    # STATIC RULES
    # ========================================================================

    def validate_command(self, name: str):
        """
        Check a (resolved) program name against block/allow sets.

        Raises:
            DangerousCommandError: Blocked, or not in a non-empty allow-set
            InvalidInputError: Name longer than max_command_length
        """
        if len(name) > self.security.max_command_length:
            raise self._reject(InvalidInputError("Command too long"))

        if name in self.security.blocked_commands:
            raise self._reject(DangerousCommandError(f"Dangerous command blocked: {name}"))

        allowed = self.security.allowed_commands
        if allowed and name not in allowed:
            raise self._reject(DangerousCommandError(f"Command not in whitelist: {name}"))

    def validate_arguments(self, args: Sequence[str], check_characters: bool = True):
        """
        Check argument count, lengths and content.

        Args:
            args: Arguments as they will be passed to exec
            check_characters: False for interpreter-dispatched stages, which
                skip the dangerous character check

        Raises:
            TooManyArgumentsError, ArgumentTooLongError,
            DangerousCharacterError, PathTraversalError
        """
        if len(args) > self.security.max_arg_count:
            raise self._reject(TooManyArgumentsError(
                f"Too many arguments: {len(args)} (max {self.security.max_arg_count})"))

        for arg in args:
            if len(arg) > self.security.max_arg_length:
                raise self._reject(ArgumentTooLongError(
                    f"Argument too long: {arg[:40]}... ({len(arg)} chars)"))

            if check_characters:
                bad = sorted(set(arg) & DANGEROUS_CHARACTERS)
                if bad:
                    raise self._reject(DangerousCharacterError(
                        f"Dangerous character {bad[0]!r} in argument: {arg}"))

            if self.security.validate_paths and any(f in arg for f in TRAVERSAL_FRAGMENTS):
                raise self._reject(PathTraversalError(
                    f"Path traversal attempt detected: {arg}"))

    def validate_path(self, path: str) -> Path:
        """
        Validate a file path (redirection target or argument).

        Returns:
            Path object for the validated path

        Raises:
            InvalidInputError: NUL byte or overlong path
            PathTraversalError: '..' segment, or absolute path outside the
                allowed base directories
        """
        if not self.security.validate_paths:
            return Path(path)

        if '\0' in path:
            raise self._reject(InvalidInputError("Null byte detected in path"))

        if len(path) > self.security.max_path_length:
            raise self._reject(InvalidInputError(f"Path too long: {len(path)} chars"))

        if '..' in re.split(r'[\\/]', path):
            raise self._reject(PathTraversalError(f"Path traversal attempt detected: {path}"))

        if path.startswith('/') and not self._is_allowed_absolute(path):
            raise self._reject(PathTraversalError(
                f"Absolute path not in allowed directories: {path}"))

        return Path(path)

    def _is_allowed_absolute(self, path: str) -> bool:
        for prefix in self.security.allowed_path_prefixes:
            base = prefix.rstrip('/')
            if path == base or path.startswith(base + '/'):
                return True
        return False

    def sanitize_input(self, raw: str) -> str:
        """
        Clean a raw input line.

        Steps: strip NUL and control characters (except newline/tab) →
        reject suspicious composite patterns → truncate to max_command_length.
        Passthrough when sanitize_input is disabled.

        Raises:
            DangerousCommandError: Suspicious pattern found (rejected, not fixed)
        """
        if not self.security.sanitize_input:
            return raw

        cleaned = ''.join(
            c for c in raw
            if c in '\n\t' or unicodedata.category(c) != 'Cc'
        )

        for pattern in self._suspicious:
            if pattern.search(cleaned):
                raise self._reject(DangerousCommandError(
                    f"Suspicious pattern detected: {pattern.pattern}"))

        limit = self.security.max_command_length
        if len(cleaned) > limit:
            self.logger.debug(f"Input truncated to {limit} chars")
            cleaned = cleaned[:limit]

        return cleaned

    # ========================================================================
    # DYNAMIC LIMITS
    # ========================================================================

    @property
    def active_processes(self) -> int:
        with self._active_lock:
            return self._active_processes

    def can_start_process(self, count: int = 1):
        """
        Check that count more processes fit under the ceiling. Does NOT increment.

        Raises:
            ResourceLimitExceeded: Ceiling would be exceeded
        """
        limit = self.config.limits.max_background_processes
        if self.active_processes + count > limit:
            self.logger.warning(f"Background process ceiling reached ({limit})")
            raise ResourceLimitExceeded(f"Maximum background processes reached ({limit})")

    def acquire_process_guard(self) -> ProcessGuard:
        """Unconditionally take one slot; the returned guard gives it back once."""
        with self._active_lock:
            self._active_processes += 1
        return ProcessGuard(self._release_process)

    def _release_process(self):
        with self._active_lock:
            self._active_processes -= 1

    def check_rate_limit(self, key: str):
        """
        Sliding-window check (60 s, 10 uses per key).

        Raises:
            ResourceLimitExceeded: Key over its budget
        """
        try:
            self.rate_limiter.check(key)
        except ResourceLimitExceeded:
            self.logger.warning(f"Rate limit exceeded: {key}")
            raise

    # ========================================================================
    # STATISTICS
    # ========================================================================

    def record_execution(self, name: str, duration: float):
        """Update CommandStats for name. Never fails."""
        with self._stats_lock:
            stats = self._stats.setdefault(name, CommandStats())
            stats.count += 1
            stats.last_execution = time.time()
            stats.total_time += duration

    def get_command_stats(self, name: str) -> Optional[CommandStats]:
        with self._stats_lock:
            stats = self._stats.get(name)
            return replace(stats) if stats else None

    def get_stats(self) -> Dict[str, CommandStats]:
        """Snapshot copy of all statistics"""
        with self._stats_lock:
            return {name: replace(stats) for name, stats in self._stats.items()}
