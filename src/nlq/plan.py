"""Parse a candidate query into a closed intermediate representation.

A candidate has exactly one shape::

    db.<collection>.<operation>({ ...arguments... })

Arguments may only contain object, array, string, number, boolean and null
literals, `new Date(...)` and references to declared enum members such as
`Role.STUDENT`.
Anything else (function calls, identifiers, template interpolation, spread,
arithmetic) is rejected, so nothing in the candidate is ever evaluated.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from db.schema import ENUMS

SENTINEL = "db"

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+|//[^\n]*|/\*.*?\*/)
  | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*'|`(?:[^`\\$]|\\.)*`)
  | (?P<number>-?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)
  | (?P<ident>[A-Za-z_$][A-Za-z0-9_$]*)
  | (?P<punct>[{}\[\]():,.;])
    """,
    re.VERBOSE | re.DOTALL,
)

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "b": "\b", "f": "\f", "0": "\0"}

_UNDEFINED = object()


class CandidateSyntaxError(ValueError):
    """The candidate does not fit the query grammar."""


@dataclass(frozen=True)
class QueryPlan:
    collection: str
    operation: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class _Token:
    kind: str
    text: str
    pos: int


def _tokenize(source: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    while pos < len(source):
        match = _TOKEN_RE.match(source, pos)
        if match is None:
            raise CandidateSyntaxError(
                f"Unexpected character {source[pos]!r} at position {pos}"
            )
        kind = match.lastgroup or ""
        if kind != "ws":
            tokens.append(_Token(kind, match.group(), pos))
        pos = match.end()
    return tokens


def _unquote(text: str) -> str:
    body = text[1:-1]
    out: list[str] = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\" and i + 1 < len(body):
            nxt = body[i + 1]
            out.append(_ESCAPES.get(nxt, nxt))
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def _parse_number(text: str) -> int | float:
    if re.fullmatch(r"-?\d+", text):
        return int(text)
    return float(text)


def _parse_date(arg: Any) -> datetime:
    if arg is _UNDEFINED:
        return datetime.now(tz=timezone.utc)
    if isinstance(arg, (int, float)) and not isinstance(arg, bool):
        return datetime.fromtimestamp(arg / 1000, tz=timezone.utc)
    if isinstance(arg, str):
        try:
            parsed = datetime.fromisoformat(arg.strip())
        except ValueError:
            raise CandidateSyntaxError(f"Invalid date literal: {arg!r}")
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    raise CandidateSyntaxError("new Date() accepts a single string or number")


class _Parser:
    def __init__(self, source: str) -> None:
        self.tokens = _tokenize(source)
        self.index = 0

    # -- token helpers --

    def _peek(self) -> _Token | None:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def _next(self) -> _Token:
        tok = self._peek()
        if tok is None:
            raise CandidateSyntaxError("Unexpected end of query")
        self.index += 1
        return tok

    def _expect(self, text: str) -> _Token:
        tok = self._next()
        if tok.text != text:
            raise CandidateSyntaxError(
                f"Expected {text!r} but found {tok.text!r} at position {tok.pos}"
            )
        return tok

    def _accept(self, text: str) -> bool:
        tok = self._peek()
        if tok is not None and tok.text == text and tok.kind != "string":
            self.index += 1
            return True
        return False

    def _ident(self) -> str:
        tok = self._next()
        if tok.kind != "ident":
            raise CandidateSyntaxError(
                f"Expected a name but found {tok.text!r} at position {tok.pos}"
            )
        return tok.text

    # -- grammar --

    def parse_plan(self) -> QueryPlan:
        root = self._ident()
        if root != SENTINEL:
            raise CandidateSyntaxError(f"Query must start with '{SENTINEL}.'")
        self._expect(".")
        collection = self._ident()
        self._expect(".")
        operation = self._ident()
        self._expect("(")

        args: Any = {}
        if not self._accept(")"):
            args = self.parse_value()
            self._expect(")")

        self._accept(";")
        trailing = self._peek()
        if trailing is not None:
            raise CandidateSyntaxError(
                f"Unexpected {trailing.text!r} after the query at position {trailing.pos}"
            )
        if args is _UNDEFINED:
            args = {}
        if not isinstance(args, dict):
            raise CandidateSyntaxError("Query arguments must be an object")
        return QueryPlan(collection=collection, operation=operation, args=args)

    def parse_value(self) -> Any:
        tok = self._next()
        if tok.kind == "string":
            return _unquote(tok.text)
        if tok.kind == "number":
            return _parse_number(tok.text)
        if tok.text == "{":
            return self._parse_object()
        if tok.text == "[":
            return self._parse_array()
        if tok.kind == "ident":
            return self._parse_word(tok)
        raise CandidateSyntaxError(f"Unexpected {tok.text!r} at position {tok.pos}")

    def _parse_word(self, tok: _Token) -> Any:
        if tok.text == "true":
            return True
        if tok.text == "false":
            return False
        if tok.text == "null":
            return None
        if tok.text == "undefined":
            return _UNDEFINED
        if tok.text == "new":
            if self._ident() != "Date":
                raise CandidateSyntaxError("Only 'new Date(...)' is allowed")
            self._expect("(")
            arg: Any = _UNDEFINED
            if not self._accept(")"):
                arg = self.parse_value()
                self._expect(")")
            return _parse_date(arg)

        # Enum reference such as Role.STUDENT resolves to its member name.
        if not self._accept("."):
            raise CandidateSyntaxError(
                f"Bare identifier {tok.text!r} at position {tok.pos} is not allowed"
            )
        member = self._ident()
        if tok.text not in ENUMS or member not in ENUMS[tok.text]:
            raise CandidateSyntaxError(
                f"Unknown enum value {tok.text}.{member} at position {tok.pos}"
            )
        return member

    def _parse_object(self) -> dict[str, Any]:
        obj: dict[str, Any] = {}
        while not self._accept("}"):
            key_tok = self._next()
            if key_tok.kind == "string":
                key = _unquote(key_tok.text)
            elif key_tok.kind in ("ident", "number"):
                key = key_tok.text
            else:
                raise CandidateSyntaxError(
                    f"Expected a property name but found {key_tok.text!r} at position {key_tok.pos}"
                )
            self._expect(":")
            value = self.parse_value()
            if value is not _UNDEFINED:
                obj[key] = value
            if not self._accept(","):
                self._expect("}")
                break
        return obj

    def _parse_array(self) -> list[Any]:
        items: list[Any] = []
        while not self._accept("]"):
            value = self.parse_value()
            items.append(None if value is _UNDEFINED else value)
            if not self._accept(","):
                self._expect("]")
                break
        return items


def parse_candidate(candidate: str) -> QueryPlan:
    """Parse a candidate into a QueryPlan, or raise CandidateSyntaxError."""
    return _Parser(candidate.strip()).parse_plan()
