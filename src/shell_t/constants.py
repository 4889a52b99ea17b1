"""
Constants and fixed tables for the Shell-T core
"""

# ============================================================================
# INTERPRETER DISPATCH
# ============================================================================
# Script suffix -> interpreter role. The mapping itself is fixed; the concrete
# executable for each role comes from InterpreterConfig.
# The script name is always prepended as the interpreter's first
# argument: "script.py a" -> python3 script.py a
INTERPRETER_SUFFIXES = {
    '.py': 'python',
    '.rb': 'ruby',
    '.js': 'node',
}


# ============================================================================
# POLICY DEFAULTS
# ============================================================================

DEFAULT_ALLOWED_COMMANDS = frozenset({
    'ls', 'pwd', 'cd', 'cat', 'grep', 'head', 'tail', 'wc', 'sort', 'uniq',
    'echo',
})

DEFAULT_BLOCKED_COMMANDS = frozenset({
    'rm', 'rmdir', 'mv', 'cp', 'chmod', 'chown', 'sudo', 'su',
})

# Shell metacharacters rejected inside arguments.
# No shell is ever invoked (argv goes straight to exec), so this is a content
# policy, not an injection guard.
DANGEROUS_CHARACTERS = frozenset(';&|`$()<>"\'\\')

# Parent-directory fragments rejected inside arguments when path validation is on
TRAVERSAL_FRAGMENTS = ('../', '..\\')

# Absolute paths must live under one of these
DEFAULT_ALLOWED_PATH_PREFIXES = ('/tmp', '/var/tmp', '/home', '/Users')

# Composite patterns rejected by sanitize_input (checked after control-char stripping)
SUSPICIOUS_PATTERNS = (
    r'\$\(.*\)',        # $(command substitution)
    r'`.*`',            # `backtick substitution`
    r'\$\{.*\}',        # ${parameter expansion}
    r';.*;',            # chained ; sequences
    r'&&.*&&',          # chained && lists
    r'\|\|.*\|\|',      # chained || lists
)


# ============================================================================
# RATE LIMITING
# ============================================================================

RATE_LIMIT_WINDOW_SECONDS = 60.0
RATE_LIMIT_MAX_CALLS = 10


# ============================================================================
# ENVIRONMENT
# ============================================================================

# Removed from child environments when sanitize_environment is on
DANGEROUS_ENV_VARS = ('LD_PRELOAD', 'LD_LIBRARY_PATH', 'BASH_ENV', 'ENV')

SAFE_PATH = '/usr/local/bin:/usr/bin:/bin'
SAFE_SHELL = '/bin/sh'
