from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional

from logo_lexer import (
    DuplicateProcedureError,
    InvalidCountError,
    Lexer,
    MissingNameError,
    TokenLine,
)


KEYWORD_TO = "to"
KEYWORD_REPEAT = "repeat"


@dataclass
class SourceLocation:
    file: str
    line: int
    statement: str


class Node:
    pass


@dataclass
class Leaf(Node):
    op: str
    args: List[str]
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass
class Repeat(Node):
    count: int
    body: List[Node]
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass
class ProcedureDef(Node):
    name: str
    params: List[str]
    body: List[Node]
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass
class BlockFrame:
    kind: Optional[str]
    indent: str
    body: List[Node]


def backtrace(stack: List[BlockFrame], kind: str) -> bool:
    """True when any open block on the stack is of the given kind."""
    return any(frame.kind == kind for frame in stack)


def peek(stack: List[BlockFrame]) -> Optional[BlockFrame]:
    if stack:
        return stack[-1]
    return None


class Parser:
    def __init__(self, lines: List[TokenLine], filename: str, source_lines: List[str]) -> None:
        self.lines = lines
        self.filename = filename
        self.source_lines = source_lines
        self.stack: List[BlockFrame] = [BlockFrame(kind=None, indent="", body=[])]

    def parse(self) -> List[Node]:
        for token_line in self.lines:
            op = token_line.tokens[0]
            if op == KEYWORD_TO:
                self._parse_to(token_line)
            elif op == KEYWORD_REPEAT:
                self._parse_repeat(token_line)
            else:
                self._close_block(token_line)
                self._top().body.append(
                    Leaf(op=op, args=token_line.tokens[1:], location=self._location(token_line))
                )
        return self.stack[0].body

    def _close_block(self, token_line: TokenLine) -> None:
        # Only leaf lines close blocks, and at most one level per line.
        # Keyword lines always open inside the current top frame.
        if len(self.stack) > 1 and len(token_line.indent) <= len(self._top().indent):
            self.stack.pop()

    def _parse_to(self, token_line: TokenLine) -> None:
        if backtrace(self.stack, KEYWORD_TO):
            raise DuplicateProcedureError(
                f"Already defining a procedure at {self.filename}:{token_line.line}",
                line=token_line.line,
            )
        rest = token_line.tokens[1:]
        if not rest:
            raise MissingNameError(
                f"Procedure definition has no name at {self.filename}:{token_line.line}",
                line=token_line.line,
            )
        body: List[Node] = []
        self._top().body.append(
            ProcedureDef(name=rest[0], params=rest[1:], body=body, location=self._location(token_line))
        )
        self.stack.append(BlockFrame(kind=KEYWORD_TO, indent=token_line.indent, body=body))

    def _parse_repeat(self, token_line: TokenLine) -> None:
        count = self._parse_count(token_line)
        body: List[Node] = []
        self._top().body.append(Repeat(count=count, body=body, location=self._location(token_line)))
        self.stack.append(BlockFrame(kind=KEYWORD_REPEAT, indent=token_line.indent, body=body))

    def _parse_count(self, token_line: TokenLine) -> int:
        rest = token_line.tokens[1:]
        if not rest:
            raise InvalidCountError(
                f"Repeat expects a number as its first argument at {self.filename}:{token_line.line}",
                line=token_line.line,
            )
        try:
            count = int(rest[0])
        except ValueError:
            raise InvalidCountError(
                f"Repeat expects a number as its first argument but found '{rest[0]}' at {self.filename}:{token_line.line}",
                line=token_line.line,
            )
        if count < 0:
            raise InvalidCountError(
                f"Repeat count must not be negative at {self.filename}:{token_line.line}",
                line=token_line.line,
            )
        return count

    def _top(self) -> BlockFrame:
        frame = peek(self.stack)
        assert frame is not None
        return frame

    def _location(self, token_line: TokenLine) -> SourceLocation:
        line_index = token_line.line - 1
        statement = ""
        if 0 <= line_index < len(self.source_lines):
            statement = self.source_lines[line_index].strip()
        return SourceLocation(file=self.filename, line=token_line.line, statement=statement)


def parse(source: str, filename: str = "<string>") -> List[Node]:
    text = source.lower()
    lexer = Lexer(text, filename)
    parser = Parser(lexer.tokenize(), filename, source.split("\n"))
    return parser.parse()
