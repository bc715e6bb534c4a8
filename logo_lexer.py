from __future__ import annotations
from dataclasses import dataclass
from typing import List


class LogoError(Exception):
    """Base class for interpreter errors."""


class LogoParseError(LogoError):
    """Raised when parsing fails."""

    def __init__(self, message: str, *, line: int = 0) -> None:
        super().__init__(message)
        self.message = message
        self.line = line


class LogoIndentationError(LogoParseError):
    """A single line mixes tabs and spaces in its indentation."""


class DuplicateProcedureError(LogoParseError):
    """A procedure definition was opened inside another open definition."""


class MissingNameError(LogoParseError):
    """A procedure definition has no name."""


class InvalidCountError(LogoParseError):
    """A repeat count is not a non-negative integer."""


@dataclass
class TokenLine:
    indent: str
    tokens: List[str]
    line: int


def leading_whitespace(line: str, line_number: int = 0, filename: str = "<string>") -> str:
    spaces: List[str] = []
    tabs: List[str] = []
    for ch in line:
        if ch == " ":
            spaces.append(ch)
        elif ch == "\t":
            tabs.append(ch)
        else:
            break
    if spaces and tabs:
        raise LogoIndentationError(
            f"Inconsistent indentation: both tabs and spaces found at {filename}:{line_number}",
            line=line_number,
        )
    return "".join(spaces) or "".join(tabs)


class Lexer:
    def __init__(self, text: str, filename: str) -> None:
        self.text = text
        self.filename = filename

    def tokenize(self) -> List[TokenLine]:
        lines: List[TokenLine] = []
        lines_append = lines.append
        filename = self.filename
        for number, raw in enumerate(self.text.split("\n"), start=1):
            indent = leading_whitespace(raw, number, filename)
            tokens = raw.split()
            # Blank lines never open or close blocks.
            if not tokens:
                continue
            lines_append(TokenLine(indent=indent, tokens=tokens, line=number))
        return lines


def tokenise(source: str, filename: str = "<string>") -> List[TokenLine]:
    return Lexer(source, filename).tokenize()
