"""
Parsing of ``WWW-Authenticate`` challenge headers.

See https://docs.docker.com/registry/spec/auth/token/
"""
import json
from typing import Dict, NamedTuple

from .exceptions import ParseError

_WORD_CHARS = frozenset(
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_"
)


class _Lexer:
    """
    Walks a header value one character at a time.
    """

    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0

    def done(self) -> bool:
        """
        Returns true once all input has been consumed.
        """
        return self.pos >= len(self.text)

    def peek(self) -> str:
        """
        Returns the next character, or an empty string at the end.
        """
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def error(self) -> ParseError:
        """
        Returns a ParseError pointing at the current position.
        """
        return ParseError(
            "invalid WWW-Authenticate header {} at offset {}".format(
                json.dumps(self.text), self.pos
            )
        )

    def skip_space(self) -> None:
        """
        Consume any whitespace.
        """
        while self.peek().isspace():
            self.pos += 1

    def expect(self, ch: str) -> None:
        """
        Consume ch or fail.
        """
        if self.peek() != ch:
            raise self.error()
        self.pos += 1

    def run(self, chars: frozenset) -> str:
        """
        Consume a non-empty run of characters drawn from chars.
        """
        start = self.pos
        while self.peek() and self.peek() in chars:
            self.pos += 1
        if start == self.pos:
            raise self.error()
        return self.text[start : self.pos]

    def quoted(self) -> str:
        """
        Consume a double-quoted string, honoring backslash escapes, and
        return its unescaped contents.
        """
        start = self.pos
        self.expect('"')
        escaped = False
        while True:
            ch = self.peek()
            if not ch:
                raise self.error()
            self.pos += 1
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                break

        try:
            return json.loads(self.text[start : self.pos])
        except ValueError:
            self.pos = start
            raise self.error() from None


class AuthenticationChallenge(NamedTuple):
    """
    A parsed challenge: the lowercased scheme (e.g. "basic" or "bearer")
    and its parameters.
    """

    type: str
    params: Dict[str, str]

    @classmethod
    def parse(cls, header_value: str) -> "AuthenticationChallenge":
        """
        Parse a header of the form ``<scheme> key=value, key="value"``.

        Raises ParseError if any part of the header does not fit the grammar.
        """
        lexer = _Lexer(header_value)
        scheme = lexer.run(_WORD_CHARS).lower()
        lexer.skip_space()

        params: Dict[str, str] = {}
        while not lexer.done():
            key = lexer.run(_WORD_CHARS)
            lexer.expect("=")
            if lexer.peek() == '"':
                value = lexer.quoted()
            else:
                value = lexer.run(_WORD_CHARS)
            params[key] = value

            if lexer.peek() == ",":
                lexer.pos += 1
            lexer.skip_space()

        return cls(scheme, params)
