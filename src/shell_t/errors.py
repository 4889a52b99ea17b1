"""
Error hierarchy for Shell-T

ARCHITECTURE:
- Every failure the core can report is a subclass of ShellError
- Components RAISE these errors, only the session layer (ShellSession) catches
  them and turns them into a message + exit status
- The set is closed: the REPL renders str(error) and keeps going

TAXONOMY:
    ShellError
    ├── ParseError              malformed input line
    │   ├── EmptyCommandError
    │   ├── MissingOperandError
    │   └── NoCommandError
    ├── PolicyViolation         rejected by SecurityManager
    │   ├── DangerousCommandError
    │   ├── DangerousCharacterError
    │   ├── TooManyArgumentsError
    │   ├── ArgumentTooLongError
    │   ├── PathTraversalError
    │   └── InvalidInputError
    ├── ResourceLimitExceeded   process count, rate, timeout, output size
    │   └── PipelineTooLongError
    ├── FileSystemError         redirection target cannot be opened
    ├── ProcessExecutionError   spawn failed
    ├── ProcessError            wait failed
    └── ConfigError             invalid configuration
"""


class ShellError(Exception):
    """Base error for all shell failures."""
    pass


# ============================================================================
# PARSING
# ============================================================================

class ParseError(ShellError):
    """Input line cannot be turned into a pipeline."""

    def __str__(self):
        return f"Parse error: {super().__str__()}"


class EmptyCommandError(ParseError):
    def __init__(self, message: str = "Empty command"):
        super().__init__(message)


class MissingOperandError(ParseError):
    """Dangling pipe or redirection operator without its file operand."""

    def __init__(self, message: str, operator: str = "|"):
        super().__init__(message)
        self.operator = operator


class NoCommandError(ParseError):
    def __init__(self, message: str = "No command specified"):
        super().__init__(message)


# ============================================================================
# POLICY
# ============================================================================

class PolicyViolation(ShellError):
    """
    Rejected by the security policy.

    The offending pipeline is not executed at all (stages not yet spawned
    never start).
    """

    def __str__(self):
        return f"Security error: {super().__str__()}"


class DangerousCommandError(PolicyViolation):
    pass


class DangerousCharacterError(PolicyViolation):
    pass


class TooManyArgumentsError(PolicyViolation):
    pass


class ArgumentTooLongError(PolicyViolation):
    pass


class PathTraversalError(PolicyViolation):
    pass


class InvalidInputError(PolicyViolation):
    pass


# ============================================================================
# RESOURCES / EXECUTION
# ============================================================================

class ResourceLimitExceeded(ShellError):
    """Process-count, rate-limit, pipeline-length, timeout or output-size ceiling hit."""

    def __str__(self):
        return f"Resource limit exceeded: {super().__str__()}"


class PipelineTooLongError(ResourceLimitExceeded):
    pass


class FileSystemError(ShellError):
    def __str__(self):
        return f"File system error: {super().__str__()}"


class ProcessExecutionError(ShellError):
    """Spawn failed (executable not found, permission denied)."""

    def __str__(self):
        return f"Command execution failed: {super().__str__()}"


class ProcessError(ShellError):
    """Waiting on a spawned process failed. A non-zero exit is NOT this error."""

    def __str__(self):
        return f"Process error: {super().__str__()}"


class ConfigError(ShellError):
    def __str__(self):
        return f"Configuration error: {super().__str__()}"
