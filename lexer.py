from __future__ import annotations
from dataclasses import dataclass
from typing import List


class IndyError(Exception):
    """Base class for interpreter errors."""


class IndyParseError(IndyError):
    """Raised when lexing fails."""


@dataclass
class Token:
    type: str
    value: str
    line: int
    column: int


# Whole-line forms consumed by the control-flow engine.
EXACT_KEYWORDS = {
    "start": "START",
    "end": "END",
    "else": "ELSE",
    "end if": "END_IF",
    "end loop": "END_LOOP",
}

HEADER_PREFIXES = (
    ("if ", "IF"),
    ("loop ", "LOOP"),
)

COMMANDS = {
    "say": "SAY",
    "wait": "WAIT",
    "prompt": "PROMPT",
    "run": "RUN",
}

# Leading words that never reach the unknown-command error.
CONTROL_WORDS = {"start", "end", "if", "else", "loop"}


def split_lines(text: str) -> List[str]:
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def clean_string_value(text: str) -> str:
    """Trim ``text`` and drop one pair of surrounding double quotes."""
    value = text.strip()
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return value


class Lexer:
    def __init__(self, text: str, filename: str) -> None:
        self.text = text
        self.filename = filename

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        tokens_append = tokens.append
        classify = self._classify
        for number, raw in enumerate(split_lines(self.text), start=1):
            stripped = raw.strip()
            column = len(raw) - len(raw.lstrip()) + 1
            tokens_append(Token(classify(stripped), stripped, number, column))
        tokens_append(Token("EOF", "", len(tokens) + 1, 1))
        return tokens

    def _classify(self, stripped: str) -> str:
        if stripped == "":
            return "BLANK"
        if stripped.startswith("#"):
            return "COMMENT"
        if stripped in EXACT_KEYWORDS:
            return EXACT_KEYWORDS[stripped]
        for prefix, token_type in HEADER_PREFIXES:
            if stripped.startswith(prefix):
                return token_type
        word = stripped.split(None, 1)[0]
        if word in COMMANDS:
            return COMMANDS[word]
        if "=" in stripped:
            return "ASSIGN"
        if word in CONTROL_WORDS:
            return "CONTROL"
        return "UNKNOWN"


class CommandLineLexer:
    """Splits a ``run`` command string into a program name and arguments.

    Whitespace separates words. Single quotes group text (whitespace
    included) into one word and are removed; there is no escape character,
    so a quote can never appear inside an argument.
    """

    def __init__(self, text: str, filename: str = "<run>", line: int = 0) -> None:
        self.text = text
        self.filename = filename
        self.line = line
        self.index = 0

    def tokenize(self) -> List[str]:
        words: List[str] = []
        text = self.text
        n = len(text)
        while self.index < n:
            ch = text[self.index]
            if ch.isspace():
                self.index += 1
                continue
            words.append(self._consume_word())
        return words

    def _consume_word(self) -> str:
        chars: List[str] = []
        while not self._eof:
            ch = self._peek()
            if ch.isspace():
                break
            if ch == "'":
                chars.append(self._consume_quoted())
                continue
            chars.append(ch)
            self.index += 1
        return "".join(chars)

    def _consume_quoted(self) -> str:
        start = self.index
        self.index += 1  # opening quote
        closing = self.text.find("'", self.index)
        if closing == -1:
            raise IndyParseError(
                f"Unterminated quote in command at {self.filename}:{self.line}:{start + 1}"
            )
        value = self.text[self.index:closing]
        self.index = closing + 1
        return value

    @property
    def _eof(self) -> bool:
        return self.index >= len(self.text)

    def _peek(self) -> str:
        return self.text[self.index]


def split_command_line(text: str, filename: str = "<run>", line: int = 0) -> List[str]:
    return CommandLineLexer(text, filename, line).tokenize()
