"""Tokenizer and parser for interactive volume commands."""

from __future__ import annotations

import enum
import sys
from collections.abc import Iterable
from dataclasses import dataclass, field


class TokenType(enum.Enum):
    """Kinds of tokens produced by :func:`tokenize`."""

    EOF = 0
    COMMAND = 1
    STRING = 2
    FLAG = 3


@dataclass
class Token:
    """One lexeme of a command line; flags may carry a ``=value`` part."""

    type: TokenType
    lexeme: str
    flag_value: str = ""


@dataclass
class Command:
    """A parsed command line: its name, positional arguments and flags."""

    name: str = ""
    args: list[str] = field(default_factory=list)
    flags: list[str] = field(default_factory=list)

    def has_flag(self, flag: str) -> bool:
        """Whether ``flag`` was given on the command line."""
        return flag in self.flags


class _State(enum.Enum):
    START = enum.auto()
    COMMAND = enum.auto()
    FLAG_DASH = enum.auto()
    FLAG_VALUE_PREPARE = enum.auto()
    FLAG_VALUE = enum.auto()
    DONE = enum.auto()


def _debug(message: str) -> None:
    print(f"LEX: {message}", file=sys.stderr)


def tokenize(text: str, debug: bool = False) -> list[Token]:
    """Split a command line into tokens.

    Words become COMMAND tokens; words starting with ``-`` become FLAG
    tokens. ``name=value`` produces a FLAG token whose ``flag_value`` is
    ``value``. Spaces and tabs separate tokens; a NUL character ends input.
    """
    tokens: list[Token] = []
    state = _State.START
    lexeme = ""

    if debug:
        _debug(f"input=[{text}] len={len(text)}")

    for c in text + "\0":
        is_space = c in (" ", "\t")
        is_end = c == "\0"
        next_state = _State.DONE if is_end else _State.START

        if debug:
            _debug(
                f"c={'0' if is_end else c} is_space={int(is_space)} is_end={int(is_end)} "
                f"state={state.name} lexeme=[{lexeme}]"
            )

        if state is _State.START:
            if is_end:
                state = _State.DONE
            elif not is_space:
                lexeme = c
                state = _State.FLAG_DASH if c == "-" else _State.COMMAND

        elif state is _State.COMMAND:
            if is_end or is_space:
                tokens.append(Token(TokenType.COMMAND, lexeme))
                if debug:
                    _debug(f"Pushed TOKEN_COMMAND: [{lexeme}]")
                lexeme = ""
                state = next_state
            elif c == "=":
                tokens.append(Token(TokenType.FLAG, lexeme))
                lexeme = ""
                state = _State.FLAG_VALUE_PREPARE
            else:
                lexeme += c

        elif state is _State.FLAG_DASH:
            if c == "-" and len(lexeme) == 1:
                lexeme += c
            elif is_space or is_end:
                tokens.append(Token(TokenType.FLAG, lexeme))
                lexeme = ""
                state = next_state
            elif c == "=":
                tokens.append(Token(TokenType.FLAG, lexeme))
                lexeme = ""
                state = _State.FLAG_VALUE_PREPARE
            else:
                lexeme += c

        elif state is _State.FLAG_VALUE_PREPARE:
            if is_space or is_end:
                if lexeme:
                    tokens[-1].flag_value = lexeme
                    lexeme = ""
                state = next_state
            else:
                lexeme += c
                state = _State.FLAG_VALUE

        elif state is _State.FLAG_VALUE:
            if is_end or is_space:
                tokens[-1].flag_value = lexeme
                lexeme = ""
                state = next_state
            else:
                lexeme += c

        if state is _State.DONE:
            break

    return tokens


def parse(tokens: Iterable[Token]) -> Command:
    """Build a :class:`Command` from tokens.

    The first token must be a COMMAND; otherwise the result has an empty
    name. Parsing stops at a further COMMAND token once two arguments are
    collected.
    """
    command = Command()
    stream = iter(tokens)
    first = next(stream, None)
    if first is None or first.type is not TokenType.COMMAND:
        return command
    command.name = first.lexeme

    for token in stream:
        if token.type is TokenType.COMMAND and len(command.args) >= 2:
            return command
        if token.type is TokenType.FLAG:
            command.flags.append(token.lexeme)
        if token.type in (TokenType.STRING, TokenType.COMMAND):
            command.args.append(token.lexeme)
    return command