"""
Pipeline Parser - turns one input line into a list of Command stages

============================================================================
USAGE
============================================================================

    >>> from shell_t.pipeline_parser import parse_command_line
    >>> commands = parse_command_line('cat < in.txt | grep "a b" >> out.txt &')
    >>> commands[0]
    Cmd(cat [<in.txt])
    >>> commands[1]
    Cmd(grep a b [>>out.txt] &)

============================================================================
ARCHITECTURE
============================================================================

    Input line →
        _split_segments (unquoted '|') →
            SegmentLexer (tokens per segment) →
                _build_command (positional field assignment) →
                    List[Command]

============================================================================
GRAMMAR (deliberately small)
============================================================================

    line      → segment ('|' segment)*
    segment   → token*
    token     → WORD | '<' WORD | '>' WORD | '>>' WORD | '&'

    - Operators are standalone, unquoted tokens. "cat >out" is a WORD ">out".
    - A quoted token is always a WORD, even if its text is '>' or '&'.
    - Quotes may sit inside a word: a"b c"d → "ab cd".
    - An unterminated quote runs to the end of the segment; the partial
      token is kept as-is (no error).
    - Empty quotes ("" or '') produce no token.

============================================================================
TOKEN TYPES
============================================================================

    WORD             - program, argument or redirect operand
    REDIRECT_IN      - <
    REDIRECT_OUT     - >
    REDIRECT_APPEND  - >>
    BACKGROUND       - &

============================================================================
LIMITATIONS
============================================================================

- No &&, ||, ;, subshells, variables, globbing, escapes or heredocs
- '&' only takes effect on the last segment of the line
"""
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import List, Optional

from .errors import EmptyCommandError, MissingOperandError, NoCommandError


QUOTE_CHARS = ('"', "'")
WHITESPACE = ' \t\r\n'


# ============================================================================
# TOKEN TYPES
# ============================================================================

class TokenType(Enum):
    """Token types for the segment lexer"""
    WORD = auto()
    REDIRECT_IN = auto()        # <
    REDIRECT_OUT = auto()       # >
    REDIRECT_APPEND = auto()    # >>
    BACKGROUND = auto()         # &


OPERATORS = {
    '<': TokenType.REDIRECT_IN,
    '>': TokenType.REDIRECT_OUT,
    '>>': TokenType.REDIRECT_APPEND,
    '&': TokenType.BACKGROUND,
}


@dataclass
class Token:
    """Token with type, value, and position inside its segment"""
    type: TokenType
    value: str
    pos: int
    quoted: bool = False

    def __repr__(self):
        return f"Token({self.type.name}, {self.value!r}, pos={self.pos})"


# ============================================================================
# PIPELINE STAGE
# ============================================================================

@dataclass
class Command:
    """
    One pipeline stage.

    program == "" is a valid sentinel: the executor drops the stage.
    input_redirect only matters on the first stage, output_redirect/append
    only on the last, background only on the last.
    """
    program: str
    args: List[str] = field(default_factory=list)
    input_redirect: Optional[str] = None
    output_redirect: Optional[str] = None
    append: bool = False
    background: bool = False

    @property
    def argv(self) -> List[str]:
        return [self.program] + list(self.args)

    def __repr__(self):
        parts = [self.program] + list(self.args)
        redirects = []
        if self.input_redirect is not None:
            redirects.append(f"<{self.input_redirect}")
        if self.output_redirect is not None:
            op = '>>' if self.append else '>'
            redirects.append(f"{op}{self.output_redirect}")
        if redirects:
            parts.append(f"[{' '.join(redirects)}]")
        if self.background:
            parts.append('&')
        return f"Cmd({' '.join(parts)})"


# ============================================================================
# LEXER - TOKENIZATION
# ============================================================================

class SegmentLexer:
    """
    Lexer for one pipe segment.

    Handles:
    - Whitespace separation
    - Single and double quoted spans (closed only by the same quote char)
    - Standalone operators (<, >, >>, &)
    """

    def __init__(self, text: str):
        self.text = text
        self.pos = 0
        self.length = len(text)

    def tokenize(self) -> List[Token]:
        """Tokenize segment into list of tokens"""
        tokens = []

        while self.pos < self.length:
            if self.text[self.pos] in WHITESPACE:
                self.pos += 1
                continue

            token = self._read_token()
            if token:
                tokens.append(token)

        return tokens

    def _read_token(self) -> Optional[Token]:
        """
        Read one whitespace-delimited token.

        Returns None for a token that is empty after quote removal ("" or '').
        """
        start = self.pos
        chars = []
        quoted = False
        quote_char = None

        while self.pos < self.length:
            char = self.text[self.pos]

            if quote_char is not None:
                if char == quote_char:
                    quote_char = None
                else:
                    chars.append(char)
                self.pos += 1
                continue

            if char in QUOTE_CHARS:
                quote_char = char
                quoted = True
                self.pos += 1
                continue

            if char in WHITESPACE:
                break

            chars.append(char)
            self.pos += 1

        value = ''.join(chars)
        if not value:
            return None

        if not quoted and value in OPERATORS:
            return Token(OPERATORS[value], value, start)
        return Token(TokenType.WORD, value, start, quoted=quoted)


# ============================================================================
# PARSER - COMMAND CONSTRUCTION
# ============================================================================

def _split_segments(line: str) -> List[str]:
    """
    Split line on '|' outside quotes.

    Quote state follows the lexer: a quote opens only outside quotes and is
    closed only by the same character.
    """
    segments = []
    current = []
    quote_char = None

    for char in line:
        if quote_char is not None:
            if char == quote_char:
                quote_char = None
            current.append(char)
        elif char in QUOTE_CHARS:
            quote_char = char
            current.append(char)
        elif char == '|':
            segments.append(''.join(current))
            current = []
        else:
            current.append(char)

    segments.append(''.join(current))
    return segments


def _operand_error(token: Token) -> MissingOperandError:
    if token.type == TokenType.REDIRECT_IN:
        return MissingOperandError("Missing input file after '<'", operator='<')
    return MissingOperandError(f"Missing output file after '{token.value}'",
                               operator=token.value)


def _build_command(tokens: List[Token], is_last_segment: bool) -> Command:
    """
    Assign tokens to Command fields positionally.

    First WORD -> program, later WORDs -> args, redirect operators consume
    exactly one following token as their operand, '&' sets background.
    """
    command = Command(program='')
    background = False

    i = 0
    while i < len(tokens):
        token = tokens[i]

        if token.type in (TokenType.REDIRECT_IN, TokenType.REDIRECT_OUT,
                          TokenType.REDIRECT_APPEND):
            if i + 1 >= len(tokens):
                raise _operand_error(token)
            operand = tokens[i + 1].value
            if token.type == TokenType.REDIRECT_IN:
                command.input_redirect = operand
            else:
                command.output_redirect = operand
                command.append = token.type == TokenType.REDIRECT_APPEND
            i += 2
            continue

        if token.type == TokenType.BACKGROUND:
            background = True
            i += 1
            continue

        if not command.program:
            command.program = token.value
        else:
            command.args.append(token.value)
        i += 1

    if not command.program:
        raise NoCommandError()

    # '&' on a non-final segment is swallowed without effect
    command.background = background and is_last_segment
    return command


def parse_command_line(line: str) -> List[Command]:
    """
    Parse one input line into pipeline stages.

    Args:
        line: Raw input line

    Returns:
        Ordered list of Command stages (at least one)

    Raises:
        EmptyCommandError: Line is empty or whitespace only
        MissingOperandError: Dangling pipe, or redirect without a file
        NoCommandError: A segment has operators but no program
    """
    line = line.strip()
    if not line:
        raise EmptyCommandError()

    segments = _split_segments(line)

    if len(segments) > 1:
        for segment in segments:
            if not segment.strip():
                raise MissingOperandError("Missing command after pipe", operator='|')

    commands = []
    last_index = len(segments) - 1

    for i, segment in enumerate(segments):
        tokens = SegmentLexer(segment.strip()).tokenize()
        if not tokens:
            continue
        commands.append(_build_command(tokens, is_last_segment=(i == last_index)))

    if not commands:
        raise NoCommandError("No commands to execute")

    return commands
