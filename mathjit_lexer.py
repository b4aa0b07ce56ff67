#!/usr/bin/env python3
"""
Tokenizer for MathJIT expressions.

    f(x) = x ^ 2 + 1      ->  NAME ( NAME ) = NAME ^ NUMBER + NUMBER <end>

Numbers are digits with at most one decimal point (no exponent, no sign).
Names are letters, digits and underscores, not starting with a digit.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from mathjit_errors import LexError

logger = logging.getLogger(__name__)


class TokenKind(Enum):
    NUMBER = "number"
    NAME = "name"
    OPERATOR = "operator"
    PUNCT = "punctuation"
    END = "end of input"


OPERATORS = "+-*/^"
PUNCTUATION = "(),=&"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str
    position: int
    value: Optional[float] = None

    def describe(self) -> str:
        if self.kind is TokenKind.END:
            return "end of input"
        return repr(self.text)

    def __str__(self) -> str:
        if self.kind is TokenKind.NUMBER:
            return f"Num({self.value!r})"
        if self.kind is TokenKind.NAME:
            return f"Id({self.text})"
        if self.kind is TokenKind.END:
            return "End"
        return self.text


def tokenize(text: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    while pos < len(text):
        c = text[pos]
        if c.isspace():
            pos += 1
            continue

        if c in OPERATORS:
            tokens.append(Token(TokenKind.OPERATOR, c, pos))
            pos += 1
            continue
        if c in PUNCTUATION:
            tokens.append(Token(TokenKind.PUNCT, c, pos))
            pos += 1
            continue

        if c.isdecimal() or c == ".":
            end = pos
            seen_dot = False
            while end < len(text) and (text[end].isdecimal() or (text[end] == "." and not seen_dot)):
                seen_dot = seen_dot or text[end] == "."
                end += 1
            literal = text[pos:end]
            if literal == ".":
                raise LexError(pos, c)
            tokens.append(Token(TokenKind.NUMBER, literal, pos, float(literal)))
            pos = end
            continue

        if c.isalpha() or c == "_":
            end = pos
            while end < len(text) and (text[end].isalnum() or text[end] == "_"):
                end += 1
            tokens.append(Token(TokenKind.NAME, text[pos:end], pos))
            pos = end
            continue

        raise LexError(pos, c)

    tokens.append(Token(TokenKind.END, "", len(text)))
    logger.debug("tokenized %r into %d tokens", text, len(tokens))
    return tokens


if __name__ == "__main__":
    for source in ["1.5 + 2", "f(x) = x ^ 2 + 1", "sum(1, 10, 0.5) & pi()"]:
        print(f"{source:30} => {' '.join(str(t) for t in tokenize(source))}")
