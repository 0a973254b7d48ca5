from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Sequence

from lexer import IndyParseError, Token


@dataclass
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str


@dataclass
class Node:
    location: SourceLocation


@dataclass
class Program(Node):
    statements: List["Statement"]


class Statement(Node):
    pass


@dataclass
class BlankStatement(Statement):
    pass


@dataclass
class CommentStatement(Statement):
    text: str


@dataclass
class StartStatement(Statement):
    pass


@dataclass
class EndStatement(Statement):
    pass


@dataclass
class IfStatement(Statement):
    condition: str
    # Index of the matching 'else' or 'end if' (len(lines) if unterminated).
    skip_target: int


@dataclass
class ElseStatement(Statement):
    end_target: int


@dataclass
class EndIfStatement(Statement):
    pass


@dataclass
class LoopStatement(Statement):
    count: str
    body_start: int
    end_target: int


@dataclass
class EndLoopStatement(Statement):
    pass


@dataclass
class SayStatement(Statement):
    text: str


@dataclass
class WaitStatement(Statement):
    duration: Optional[str]


@dataclass
class PromptStatement(Statement):
    # target/message are None when the line has no '='.
    target: Optional[str]
    message: Optional[str]


@dataclass
class RunStatement(Statement):
    command: str


@dataclass
class Assignment(Statement):
    target: str
    value: str


@dataclass
class IgnoredStatement(Statement):
    keyword: str


@dataclass
class UnknownStatement(Statement):
    text: str


# ---- Boundary scanner ----

def find_matching_end(lines: Sequence[str], start_index: int, keyword: str) -> int:
    """Index of the ``end <keyword>`` closing the block opened at ``start_index``.

    Nested blocks are any line beginning with ``keyword`` that is not the
    end form itself. Returns ``len(lines)`` when the block never closes.
    """
    depth = 1
    end_keyword = f"end {keyword}"
    for i in range(start_index + 1, len(lines)):
        trimmed = lines[i].strip()
        if trimmed.startswith(keyword) and trimmed != end_keyword:
            depth += 1
        elif trimmed == end_keyword:
            depth -= 1
            if depth == 0:
                return i
    return len(lines)


def find_next_if_skip_target(lines: Sequence[str], start_index: int) -> int:
    """Index of the ``else`` or ``end if`` a false ``if`` at ``start_index`` resumes at."""
    depth = 1
    for i in range(start_index + 1, len(lines)):
        trimmed = lines[i].strip()
        if trimmed.startswith("if "):
            depth += 1
        elif trimmed == "else" and depth == 1:
            return i
        elif trimmed == "end if":
            depth -= 1
            if depth == 0:
                return i
    return len(lines)


class Parser:
    def __init__(self, tokens: List[Token], filename: str, source_lines: List[str]):
        self.tokens = tokens
        self.filename = filename
        self.source_lines = source_lines
        self.lines = [token.value for token in tokens if token.type != "EOF"]
        self.index = 0

    def parse(self) -> Program:
        statements: List[Statement] = []
        while self._peek().type != "EOF":
            statements.append(self._parse_statement())
            self.index += 1
        eof_token: Token = self._peek()
        return Program(location=self._location_from_token(eof_token), statements=statements)

    def _parse_statement(self) -> Statement:
        token = self._peek()
        location = self._location_from_token(token)
        kind = token.type
        text = token.value
        if kind == "BLANK":
            return BlankStatement(location=location)
        if kind == "COMMENT":
            return CommentStatement(location=location, text=text[1:].strip())
        if kind == "START":
            return StartStatement(location=location)
        if kind == "END":
            return EndStatement(location=location)
        if kind == "IF":
            return IfStatement(
                location=location,
                condition=text[len("if "):].strip(),
                skip_target=find_next_if_skip_target(self.lines, self.index),
            )
        if kind == "ELSE":
            return ElseStatement(location=location, end_target=find_matching_end(self.lines, self.index, "if"))
        if kind == "END_IF":
            return EndIfStatement(location=location)
        if kind == "LOOP":
            return LoopStatement(
                location=location,
                count=text[len("loop "):].strip(),
                body_start=self.index + 1,
                end_target=find_matching_end(self.lines, self.index, "loop"),
            )
        if kind == "END_LOOP":
            return EndLoopStatement(location=location)
        if kind == "SAY":
            return SayStatement(location=location, text=self._argument_text(text, "say"))
        if kind == "WAIT":
            parts = text.split()
            return WaitStatement(location=location, duration=parts[1] if len(parts) > 1 else None)
        if kind == "PROMPT":
            return self._parse_prompt(location, self._argument_text(text, "prompt"))
        if kind == "RUN":
            return RunStatement(location=location, command=self._argument_text(text, "run"))
        if kind == "ASSIGN":
            name, value = text.split("=", 1)
            return Assignment(location=location, target=name.strip(), value=value)
        if kind == "CONTROL":
            return IgnoredStatement(location=location, keyword=text.split(None, 1)[0])
        if kind == "UNKNOWN":
            return UnknownStatement(location=location, text=text)
        raise IndyParseError(f"Unexpected token {kind} at {self.filename}:{token.line}:{token.column}")

    def _parse_prompt(self, location: SourceLocation, arguments: str) -> PromptStatement:
        if "=" not in arguments:
            return PromptStatement(location=location, target=None, message=None)
        name, message = arguments.split("=", 1)
        return PromptStatement(location=location, target=name.strip(), message=message)

    @staticmethod
    def _argument_text(text: str, command: str) -> str:
        return text[len(command):].strip()

    def _peek(self) -> Token:
        return self.tokens[self.index]

    def _location_from_token(self, token: Token) -> SourceLocation:
        line_index = token.line - 1
        statement = ""
        if 0 <= line_index < len(self.source_lines):
            statement = self.source_lines[line_index].strip()
        return SourceLocation(file=self.filename, line=token.line, column=token.column, statement=statement)
