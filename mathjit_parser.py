#!/usr/bin/env python3
"""
MathJIT parser – LALR grammar driven by the hand-written tokenizer

    2 + 3 * 4          -> Expression
    f(x, y) = x ^ y    -> Definition
    f(x) = x & f(2)    -> two items (parse_program only)
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Union

from lark import Lark, Token as LarkToken, Transformer, Tree, v_args
from lark.exceptions import UnexpectedInput, VisitError
from lark.lexer import Lexer

from mathjit_ast import (BinaryOp, BinOp, Call, FunctionDefinition, Node, NumberLiteral,
                         UnaryOp, UnOp, VariableRef)
from mathjit_errors import ParseError
from mathjit_intrinsics import is_intrinsic
from mathjit_lexer import Token, TokenKind, tokenize

logger = logging.getLogger(__name__)

# --------------------- Grammar ---------------------
grammar = r"""
    program: line (_AMP line)*

    line: sum (EQUAL sum)?

    ?sum: sum _PLUS product            -> add
        | sum _MINUS product           -> sub
        | product

    ?product: product _STAR unary      -> mul
            | product _SLASH unary     -> div
            | unary

    ?unary: _MINUS unary               -> neg
          | power

    ?power: primary _CARET unary       -> pow
          | primary

    ?primary: NUMBER                   -> number
            | NUMBER _LPAR sum _RPAR   -> implied_mul
            | NAME                     -> var
            | NAME _LPAR arguments? _RPAR -> call
            | _LPAR sum _RPAR           -> group

    arguments: sum (_COMMA sum)*

    %declare NUMBER NAME EQUAL _PLUS _MINUS _STAR _SLASH _CARET _LPAR _RPAR _COMMA _AMP
"""

TERMINALS = {
    "+": "_PLUS",
    "-": "_MINUS",
    "*": "_STAR",
    "/": "_SLASH",
    "^": "_CARET",
    "(": "_LPAR",
    ")": "_RPAR",
    ",": "_COMMA",
    "=": "EQUAL",
    "&": "_AMP",
}

TERMINAL_NAMES = {
    "NUMBER": "number",
    "NAME": "name",
    "EQUAL": "'='",
    "$END": "end of input",
    **{terminal: repr(text) for text, terminal in TERMINALS.items()},
}


class TokenStream(Lexer):
    """Feeds already tokenized input into Lark."""

    def __init__(self, lexer_conf):
        pass

    def lex(self, tokens: List[Token]):
        for tok in tokens:
            if tok.kind is TokenKind.END:
                break
            if tok.kind is TokenKind.NUMBER:
                kind = "NUMBER"
            elif tok.kind is TokenKind.NAME:
                kind = "NAME"
            else:
                kind = TERMINALS[tok.text]
            yield LarkToken(kind, tok.text, start_pos=tok.position, line=1, column=tok.position + 1)


parser = Lark(grammar, start=["line", "program"], parser="lalr", lexer=TokenStream)


# --------------------- Parse results ---------------------
@dataclass(frozen=True)
class Definition:
    function: FunctionDefinition


@dataclass(frozen=True)
class Expression:
    node: Node


ParseResult = Union[Definition, Expression]


@dataclass(frozen=True)
class _Line:
    lhs: Node
    equals: Optional[LarkToken] = None
    body: Optional[Node] = None


# --------------------- Tree -> AST ---------------------
class AstBuilder(Transformer):
    @v_args(inline=True)
    def number(self, token):
        return NumberLiteral(float(token))

    @v_args(inline=True)
    def var(self, name_token):
        return VariableRef(str(name_token))

    @v_args(inline=True)
    def call(self, name_token, args=()):
        return Call(str(name_token), tuple(args))

    def arguments(self, items):
        return list(items)

    @v_args(inline=True)
    def implied_mul(self, token, right):
        return BinaryOp(BinOp.MUL, NumberLiteral(float(token)), right)

    @v_args(inline=True)
    def add(self, left, right): return BinaryOp(BinOp.ADD, left, right)
    @v_args(inline=True)
    def sub(self, left, right): return BinaryOp(BinOp.SUB, left, right)
    @v_args(inline=True)
    def mul(self, left, right): return BinaryOp(BinOp.MUL, left, right)
    @v_args(inline=True)
    def div(self, left, right): return BinaryOp(BinOp.DIV, left, right)
    @v_args(inline=True)
    def pow(self, left, right): return BinaryOp(BinOp.POW, left, right)

    @v_args(inline=True)
    def neg(self, value):
        return UnaryOp(UnOp.NEG, value)

    @v_args(inline=True)
    def group(self, node):
        return node

    @v_args(inline=True)
    def line(self, lhs, equals=None, body=None):
        return _Line(lhs, equals, body)

    def program(self, lines):
        return list(lines)


def _classify(line: _Line) -> ParseResult:
    if line.equals is None:
        return Expression(line.lhs)

    position = line.equals.start_pos
    head = line.lhs
    if not isinstance(head, Call) or not all(isinstance(a, VariableRef) for a in head.args):
        raise ParseError("function head like f(x, y) before '='", repr(str(head)), position)
    if is_intrinsic(head.name):
        raise ParseError("user function name", f"built-in {head.name!r}", position)

    params = tuple(a.name for a in head.args)
    seen = set()
    for name in params:
        if name in seen:
            raise ParseError("distinct parameter names", f"duplicate {name!r}", position)
        seen.add(name)

    function = FunctionDefinition(head.name, params, line.body)
    logger.debug("parsed definition %s", function)
    return Definition(function)


def _parse(tokens: List[Token], start: str):
    if tokens[0].kind is TokenKind.END:
        raise ParseError("expression", "end of input", tokens[0].position)
    try:
        tree = parser.parse(tokens, start=start)
    except UnexpectedInput as e:
        token = getattr(e, "token", None)
        if token is None or token.type == "$END":
            found, position = "end of input", tokens[-1].position
        else:
            found, position = repr(str(token)), token.start_pos
        expected = sorted(TERMINAL_NAMES.get(t, t) for t in getattr(e, "expected", ()) or ())
        raise ParseError(" or ".join(expected) or "expression", found, position) from None
    _check_heads(tree)
    too_deep = ParseError("less deeply nested expression", "nesting too deep", tokens[0].position)
    try:
        return AstBuilder().transform(tree)
    except RecursionError:
        raise too_deep from None
    except VisitError as e:
        # lark wraps errors raised inside transformer callbacks
        if isinstance(e.orig_exc, RecursionError):
            raise too_deep from None
        raise


def _check_heads(tree: Tree) -> None:
    # parentheses vanish from the AST, so a head like (f(x)) has to be caught on the parse tree
    for line in (tree.children if tree.data == "program" else [tree]):
        if len(line.children) != 3:
            continue
        head, equals = line.children[0], line.children[1]
        if isinstance(head, Tree) and head.data == "group":
            raise ParseError("function head like f(x, y) before '='", "parenthesized head", equals.start_pos)


def parse(tokens: List[Token]) -> ParseResult:
    """Parse a single top-level item into a Definition or an Expression."""
    return _classify(_parse(tokens, "line"))


def parse_items(tokens: List[Token]) -> List[ParseResult]:
    """Parse ``item & item & ...``; definitions and expressions may be mixed."""
    return [_classify(line) for line in _parse(tokens, "program")]


def parse_top_level(text: str) -> ParseResult:
    return parse(tokenize(text))


def parse_program(text: str) -> List[ParseResult]:
    return parse_items(tokenize(text))


# --------------------- Demo ---------------------
if __name__ == "__main__":
    for source in ["2 + 3 * 4", "2 ^ 3 ^ 2", "-2 ^ 2", "f(x) = x + 1", "3(1 + 1)", "f(x) = x * x & sum(1, 3, 1)"]:
        print(f"{source:30} => {parse_program(source)}")
