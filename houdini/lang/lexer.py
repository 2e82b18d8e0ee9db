"""Lexer for the Houdini program language, with line/column tracking."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

from houdini.errors import SourceLocation, syntax_error, ParseError


class TokenType(Enum):
    # Keywords
    CONST = auto()
    VAR = auto()
    AXIOM = auto()
    PROCEDURE = auto()
    IMPLEMENTATION = auto()
    RETURNS = auto()
    REQUIRES = auto()
    ENSURES = auto()
    MODIFIES = auto()
    FREE = auto()
    INVARIANT = auto()
    ASSERT = auto()
    ASSUME = auto()
    HAVOC = auto()
    CALL = auto()
    IF = auto()
    THEN = auto()
    ELSE = auto()
    WHILE = auto()
    TRUE = auto()
    FALSE = auto()
    OLD = auto()
    FORALL = auto()
    EXISTS = auto()

    # Literals
    INT_LIT = auto()
    STRING_LIT = auto()

    # Identifier
    IDENT = auto()

    # Operators
    PLUS = auto()
    MINUS = auto()
    STAR = auto()
    SLASH = auto()
    PERCENT = auto()
    EQ = auto()
    NEQ = auto()
    GTE = auto()
    LTE = auto()
    GT = auto()
    LT = auto()
    IMPLIES = auto()
    IFF = auto()
    AND = auto()
    OR = auto()
    NOT = auto()
    ASSIGN = auto()

    # Delimiters
    LBRACE = auto()
    RBRACE = auto()
    ATTR_OPEN = auto()     # {:
    LPAREN = auto()
    RPAREN = auto()
    COLON = auto()
    DOUBLE_COLON = auto()
    COMMA = auto()
    SEMICOLON = auto()

    # Special
    EOF = auto()


KEYWORDS: dict[str, TokenType] = {
    "const": TokenType.CONST,
    "var": TokenType.VAR,
    "axiom": TokenType.AXIOM,
    "procedure": TokenType.PROCEDURE,
    "implementation": TokenType.IMPLEMENTATION,
    "returns": TokenType.RETURNS,
    "requires": TokenType.REQUIRES,
    "ensures": TokenType.ENSURES,
    "modifies": TokenType.MODIFIES,
    "free": TokenType.FREE,
    "invariant": TokenType.INVARIANT,
    "assert": TokenType.ASSERT,
    "assume": TokenType.ASSUME,
    "havoc": TokenType.HAVOC,
    "call": TokenType.CALL,
    "if": TokenType.IF,
    "then": TokenType.THEN,
    "else": TokenType.ELSE,
    "while": TokenType.WHILE,
    "true": TokenType.TRUE,
    "false": TokenType.FALSE,
    "old": TokenType.OLD,
    "forall": TokenType.FORALL,
    "exists": TokenType.EXISTS,
}

# Longest operators first so "==>" wins over "==" and "<==>" over "<=".
_OPERATORS: list[tuple[str, TokenType]] = [
    ("<==>", TokenType.IFF),
    ("==>", TokenType.IMPLIES),
    ("{:", TokenType.ATTR_OPEN),
    ("::", TokenType.DOUBLE_COLON),
    (":=", TokenType.ASSIGN),
    ("==", TokenType.EQ),
    ("!=", TokenType.NEQ),
    (">=", TokenType.GTE),
    ("<=", TokenType.LTE),
    ("&&", TokenType.AND),
    ("||", TokenType.OR),
    (">", TokenType.GT),
    ("<", TokenType.LT),
    ("!", TokenType.NOT),
    ("+", TokenType.PLUS),
    ("-", TokenType.MINUS),
    ("*", TokenType.STAR),
    ("/", TokenType.SLASH),
    ("%", TokenType.PERCENT),
    ("{", TokenType.LBRACE),
    ("}", TokenType.RBRACE),
    ("(", TokenType.LPAREN),
    (")", TokenType.RPAREN),
    (":", TokenType.COLON),
    (",", TokenType.COMMA),
    (";", TokenType.SEMICOLON),
]


@dataclass
class Token:
    type: TokenType
    value: str
    location: SourceLocation

    def __repr__(self) -> str:
        return f"Token({self.type.name}, {self.value!r}, {self.location})"


class Lexer:
    """Tokenizer for Houdini program text."""

    def __init__(self, source: str, filename: str = "<stdin>"):
        self.source = source
        self.filename = filename
        self.pos = 0
        self.line = 1
        self.column = 1

    def _loc(self) -> SourceLocation:
        return SourceLocation(self.line, self.column, self.filename)

    def _peek(self) -> Optional[str]:
        if self.pos < len(self.source):
            return self.source[self.pos]
        return None

    def _peek_ahead(self, offset: int = 1) -> Optional[str]:
        idx = self.pos + offset
        if idx < len(self.source):
            return self.source[idx]
        return None

    def _advance(self) -> str:
        ch = self.source[self.pos]
        self.pos += 1
        if ch == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        return ch

    def _skip_whitespace_and_comments(self) -> None:
        while self.pos < len(self.source):
            ch = self.source[self.pos]
            if ch in (" ", "\t", "\r", "\n"):
                self._advance()
            elif ch == "/" and self._peek_ahead() == "/":
                while self.pos < len(self.source) and self.source[self.pos] != "\n":
                    self._advance()
            elif ch == "/" and self._peek_ahead() == "*":
                loc = self._loc()
                self._advance()
                self._advance()
                while True:
                    if self.pos >= len(self.source):
                        raise ParseError(syntax_error("Unterminated block comment", loc))
                    if self.source[self.pos] == "*" and self._peek_ahead() == "/":
                        self._advance()
                        self._advance()
                        break
                    self._advance()
            else:
                break

    def _read_string(self) -> Token:
        loc = self._loc()
        self._advance()  # opening quote
        value = ""
        while self.pos < len(self.source):
            ch = self._advance()
            if ch == '"':
                return Token(TokenType.STRING_LIT, value, loc)
            if ch == "\\" and self.pos < len(self.source):
                value += self._advance()
            else:
                value += ch
        raise ParseError(syntax_error("Unterminated string literal", loc))

    def _read_number(self) -> Token:
        loc = self._loc()
        value = ""
        while self.pos < len(self.source) and self.source[self.pos].isdigit():
            value += self._advance()
        return Token(TokenType.INT_LIT, value, loc)

    def _read_identifier(self) -> Token:
        loc = self._loc()
        value = ""
        while self.pos < len(self.source) and (
            self.source[self.pos].isalnum() or self.source[self.pos] in "_$.#'"
        ):
            value += self._advance()
        token_type = KEYWORDS.get(value, TokenType.IDENT)
        return Token(token_type, value, loc)

    def tokenize(self) -> list[Token]:
        tokens: list[Token] = []
        while self.pos < len(self.source):
            self._skip_whitespace_and_comments()
            if self.pos >= len(self.source):
                break

            ch = self._peek()
            loc = self._loc()

            if ch == '"':
                tokens.append(self._read_string())
                continue
            if ch.isdigit():
                tokens.append(self._read_number())
                continue
            if ch.isalpha() or ch == "_":
                tokens.append(self._read_identifier())
                continue

            for text, token_type in _OPERATORS:
                if self.source.startswith(text, self.pos):
                    for _ in text:
                        self._advance()
                    tokens.append(Token(token_type, text, loc))
                    break
            else:
                self._advance()
                raise ParseError(syntax_error(f"Unexpected character '{ch}'", loc))

        tokens.append(Token(TokenType.EOF, "", self._loc()))
        return tokens


def tokenize(source: str, filename: str = "<stdin>") -> list[Token]:
    """Convenience function to tokenize program text."""
    return Lexer(source, filename).tokenize()
