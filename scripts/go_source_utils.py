#!/usr/bin/env python3
"""
go_source_utils.py - Syntax-only scanning of Go source files

Benchmark discovery and regression injection only need the top-level
structure of a Go file: the package clause, the import declarations and the
function declarations with their receivers and body positions. This module
tokenizes Go source (comments, strings, raw strings, runes, identifiers,
numbers, punctuation) and recovers that structure without type information.

Positions are kept as character offsets into the original text so callers
can splice new code in while leaving every other byte untouched.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

IDENT = "ident"
NUMBER = "number"
STRING = "string"
RUNE = "rune"
PUNCT = "punct"

_OPENERS = {"(": ")", "[": "]", "{": "}"}
_CLOSERS = {v: k for k, v in _OPENERS.items()}
_TYPE_LITERAL_KEYWORDS = ("struct", "interface")


class GoSyntaxError(Exception):
    """Raised when a Go file cannot be scanned at all."""

    def __init__(self, message: str, line: int = 0, path: Path | str | None = None):
        self.message = message
        self.line = line
        self.path = path
        location = f"{path}:{line}" if path else f"line {line}"
        super().__init__(f"{location}: {message}")


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    start: int
    end: int
    line: int


@dataclass(frozen=True)
class GoImport:
    """One import spec; name is None for unnamed imports."""

    path: str
    name: str | None
    line: int

    @property
    def local_name(self) -> str:
        """Identifier the imported package is referred to by in this file."""
        return self.name if self.name else self.path.rsplit("/", 1)[-1]


@dataclass(frozen=True)
class GoFunction:
    """A top-level function or method declaration.

    receiver is the normalized receiver type (`T` or `*T`), or None when the
    declaration is a plain function or the receiver form is not supported.
    start is the offset of the `func` keyword.
    body_start/body_end delimit the body braces (`{` .. `}` inclusive) and are
    None for declarations without a body.
    """

    name: str
    is_method: bool
    receiver: str | None
    start_line: int
    end_line: int
    start: int
    body_start: int | None = None
    body_end: int | None = None

    @property
    def has_body(self) -> bool:
        return self.body_start is not None

    def matches(self, name: str, receiver: str = "") -> bool:
        """Name and receiver match; Go has no overloading so nothing else is compared."""
        if self.name != name:
            return False
        if self.is_method:
            return self.receiver is not None and self.receiver == receiver
        return receiver == ""


@dataclass
class GoSourceFile:
    """Top-level structure of a scanned Go file."""

    text: str
    package: str
    package_line: int
    package_end: int
    imports: list[GoImport] = field(default_factory=list)
    functions: list[GoFunction] = field(default_factory=list)

    def find_functions(self, name: str, receiver: str = "") -> list[GoFunction]:
        return [f for f in self.functions if f.matches(name, receiver)]


def _is_ident_start(c: str) -> bool:
    return c == "_" or c.isalpha()


def _is_ident_part(c: str) -> bool:
    return c == "_" or c.isalnum()


def tokenize(text: str) -> list[Token]:
    """
    Split Go source into tokens, dropping whitespace and comments.

    Raises:
        GoSyntaxError: On unterminated comments, strings or runes
    """
    tokens: list[Token] = []
    i = 0
    line = 1
    n = len(text)

    while i < n:
        c = text[i]

        if c == "\n":
            line += 1
            i += 1
            continue
        if c in " \t\r\ufeff":
            i += 1
            continue

        if text.startswith("//", i):
            nl = text.find("\n", i)
            i = n if nl == -1 else nl
            continue

        if text.startswith("/*", i):
            close = text.find("*/", i + 2)
            if close == -1:
                raise GoSyntaxError("comment not terminated", line)
            line += text.count("\n", i, close)
            i = close + 2
            continue

        if c == "`":
            close = text.find("`", i + 1)
            if close == -1:
                raise GoSyntaxError("raw string literal not terminated", line)
            tokens.append(Token(STRING, text[i : close + 1], i, close + 1, line))
            line += text.count("\n", i, close)
            i = close + 1
            continue

        if c in "\"'":
            j = i + 1
            while j < n and text[j] != c:
                if text[j] == "\n":
                    break
                j += 2 if text[j] == "\\" else 1
            if j >= n or text[j] != c:
                kind_name = "string" if c == '"' else "rune"
                raise GoSyntaxError(f"{kind_name} literal not terminated", line)
            tokens.append(Token(STRING if c == '"' else RUNE, text[i : j + 1], i, j + 1, line))
            i = j + 1
            continue

        if _is_ident_start(c):
            j = i + 1
            while j < n and _is_ident_part(text[j]):
                j += 1
            tokens.append(Token(IDENT, text[i:j], i, j, line))
            i = j
            continue

        if c.isdigit() or (c == "." and i + 1 < n and text[i + 1].isdigit()):
            j = i + 1
            while j < n and (_is_ident_part(text[j]) or text[j] == "." or (text[j] in "+-" and text[j - 1] in "eEpP")):
                j += 1
            tokens.append(Token(NUMBER, text[i:j], i, j, line))
            i = j
            continue

        tokens.append(Token(PUNCT, c, i, i + 1, line))
        i += 1

    return tokens


def _match_brackets(tokens: list[Token]) -> dict[int, int]:
    """Map the index of every opening bracket to the index of its closing bracket."""
    matches: dict[int, int] = {}
    stack: list[int] = []
    for idx, tok in enumerate(tokens):
        if tok.kind != PUNCT:
            continue
        if tok.text in _OPENERS:
            stack.append(idx)
        elif tok.text in _CLOSERS:
            if not stack or tokens[stack[-1]].text != _CLOSERS[tok.text]:
                raise GoSyntaxError(f"unexpected '{tok.text}'", tok.line)
            matches[stack.pop()] = idx
    if stack:
        tok = tokens[stack[-1]]
        raise GoSyntaxError(f"'{tok.text}' not closed", tok.line)
    return matches


def _ends_statement(prev: Token, tok: Token) -> bool:
    """Whether a statement boundary (explicit or inserted semicolon) lies between prev and tok."""
    if prev.text == ";":
        return True
    if prev.line == tok.line:
        return False
    return prev.kind in (IDENT, NUMBER, STRING, RUNE) or prev.text in (")", "]", "}")


def _unquote(literal: str) -> str:
    return literal[1:-1]


def normalize_receiver(tokens: list[Token]) -> str | None:
    """
    Normalize the tokens of a receiver list to `T` or `*T`.

    Generic receivers (`*Stack[T]`) drop their type arguments. Any other form
    (qualified or parenthesized types) is not a legal receiver and yields None.
    """
    toks = list(tokens)
    if not toks:
        return None
    if toks[0].kind == IDENT and len(toks) > 1 and toks[1].text not in ("[", "."):
        toks = toks[1:]

    star = toks[0].text == "*"
    if star:
        toks = toks[1:]
    if not toks or toks[0].kind != IDENT:
        return None

    rest = toks[1:]
    if rest and (rest[0].text != "[" or rest[-1].text != "]"):
        return None

    name = toks[0].text
    return f"*{name}" if star else name


class _Scanner:
    def __init__(self, text: str, tokens: list[Token], matches: dict[int, int]):
        self.text = text
        self.tokens = tokens
        self.matches = matches

    def parse(self) -> GoSourceFile:
        tokens = self.tokens
        if len(tokens) < 2 or tokens[0].text != "package" or tokens[1].kind != IDENT:
            line = tokens[0].line if tokens else 1
            raise GoSyntaxError("expected 'package' clause", line)

        source = GoSourceFile(
            text=self.text,
            package=tokens[1].text,
            package_line=tokens[0].line,
            package_end=tokens[1].end,
        )

        i = 2
        while i < len(tokens):
            tok = tokens[i]
            at_decl = _ends_statement(tokens[i - 1], tok)
            if at_decl and tok.kind == IDENT and tok.text == "import":
                i = self._parse_import(i, source)
            elif at_decl and tok.kind == IDENT and tok.text == "func":
                i = self._parse_func(i, source)
            elif tok.kind == PUNCT and tok.text in _OPENERS:
                i = self.matches[i] + 1
            else:
                i += 1
        return source

    def _parse_import(self, i: int, source: GoSourceFile) -> int:
        tokens = self.tokens
        j = i + 1
        if j >= len(tokens):
            return j

        if tokens[j].text == "(":
            close = self.matches[j]
            specs = tokens[j + 1 : close]
            end = close + 1
        else:
            specs = tokens[j : j + 2]
            end = j + 1 if tokens[j].kind == STRING else j + 2

        for k, tok in enumerate(specs):
            if tok.kind != STRING:
                continue
            name = None
            if k > 0:
                prev = specs[k - 1]
                if prev.line == tok.line and (prev.kind == IDENT or prev.text == "."):
                    name = prev.text
            source.imports.append(GoImport(path=_unquote(tok.text), name=name, line=tok.line))
        return end

    def _parse_func(self, i: int, source: GoSourceFile) -> int:
        tokens = self.tokens
        n = len(tokens)
        func_tok = tokens[i]
        j = i + 1

        is_method = False
        receiver = None
        if j < n and tokens[j].text == "(":
            is_method = True
            close = self.matches[j]
            receiver = normalize_receiver(tokens[j + 1 : close])
            j = close + 1

        if j >= n or tokens[j].kind != IDENT:
            # not a declaration we understand; resume after the keyword
            return i + 1
        name_tok = tokens[j]
        j += 1

        if j < n and tokens[j].text == "[":
            j = self.matches[j] + 1
        if j >= n or tokens[j].text != "(":
            logger.debug("Skipping malformed declaration of %s at line %d", name_tok.text, name_tok.line)
            return j

        prev = tokens[self.matches[j]]
        k = self.matches[j] + 1
        body = None
        while k < n:
            tok = tokens[k]
            if tok.line > prev.line:
                break
            if tok.text == "{" and prev.text not in _TYPE_LITERAL_KEYWORDS:
                body = (k, self.matches[k])
                break
            if tok.kind == PUNCT and tok.text in _OPENERS:
                prev = tokens[self.matches[k]]
                k = self.matches[k] + 1
                continue
            prev = tok
            k += 1

        if is_method and receiver is None:
            logger.debug("Unsupported receiver form for method %s at line %d", name_tok.text, name_tok.line)

        if body is None:
            source.functions.append(
                GoFunction(
                    name=name_tok.text,
                    is_method=is_method,
                    receiver=receiver,
                    start_line=func_tok.line,
                    end_line=prev.line,
                    start=func_tok.start,
                )
            )
            return k

        open_tok, close_tok = tokens[body[0]], tokens[body[1]]
        source.functions.append(
            GoFunction(
                name=name_tok.text,
                is_method=is_method,
                receiver=receiver,
                start_line=func_tok.line,
                end_line=close_tok.line,
                start=func_tok.start,
                body_start=open_tok.start,
                body_end=close_tok.end,
            )
        )
        return body[1] + 1


def parse_go_source(text: str) -> GoSourceFile:
    """
    Scan Go source text into its top-level structure.

    Raises:
        GoSyntaxError: If the text cannot be tokenized, has unbalanced
            brackets or lacks a package clause
    """
    tokens = tokenize(text)
    matches = _match_brackets(tokens)
    return _Scanner(text, tokens, matches).parse()


def parse_go_file(path: Path) -> GoSourceFile:
    """
    Read and scan a Go file.

    Raises:
        GoSyntaxError: If the file cannot be scanned (path is attached)
        OSError: If the file cannot be read
    """
    try:
        text = path.read_bytes().decode("utf-8")
    except UnicodeDecodeError as e:
        raise GoSyntaxError(f"invalid UTF-8 encoding: {e.reason}", 0, path) from e
    try:
        return parse_go_source(text)
    except GoSyntaxError as e:
        raise GoSyntaxError(e.message, e.line, path) from e
