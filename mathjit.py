#!/usr/bin/env python3
"""
MathJIT – just-in-time mathematical evaluator

    $ python mathjit.py "f(x) = x * x & sum(1, 3, 1)" -m jit
    14

Expressions run either in the tree-walking interpreter or through the LLVM
JIT; both share one function table, so definitions made in a session are
visible to either back end.
"""

import argparse
import logging
import sys
from dataclasses import dataclass
from typing import Iterable, List, Optional

from mathjit_ast import FunctionDefinition, FunctionTable, Node
from mathjit_config import Settings
from mathjit_errors import CodegenError, MathJitError
from mathjit_interp import Interpreter
from mathjit_jit import CompiledArtifact, JitCompiler
from mathjit_lexer import tokenize
from mathjit_parser import Definition, Expression, ParseResult, parse, parse_items, parse_program, parse_top_level
from mathjit_timings import Timings

logger = logging.getLogger(__name__)

INTERPRET = "interpret"
JIT = "jit"

MODE_ALIASES = {
    "interpret": INTERPRET, "i": INTERPRET, "interpreter": INTERPRET, "Interpreter": INTERPRET,
    "jit": JIT, "j": JIT, "JIT": JIT,
}


# --------------------- Core entry points ---------------------
def define(function: FunctionDefinition, table: FunctionTable) -> None:
    table.define(function)


def interpret(expr: Expression, table: FunctionTable, settings: Optional[Settings] = None) -> float:
    return Interpreter(table, settings).evaluate(expr.node)


def jit_compile(expr: Expression, table: FunctionTable, settings: Optional[Settings] = None) -> CompiledArtifact:
    return JitCompiler(table, settings).compile(expr.node)


def jit_compile_and_run(expr: Expression, table: FunctionTable, settings: Optional[Settings] = None) -> float:
    return jit_compile(expr, table, settings)()


# --------------------- Session ---------------------
@dataclass
class RunResult:
    value: Optional[float]
    artifact: Optional[CompiledArtifact] = None
    timings: Optional[Timings] = None
    fell_back: bool = False

    @property
    def is_definition(self) -> bool:
        return self.value is None


class Session:
    """One function table plus both back ends, as driven by the REPL."""

    def __init__(self, settings: Optional[Settings] = None, mode: str = INTERPRET):
        self.settings = settings or Settings()
        self.mode = MODE_ALIASES[mode]
        self.table = FunctionTable()
        self.interpreter = Interpreter(self.table, self.settings)
        self.jit = JitCompiler(self.table, self.settings)

    def run(self, text: str, mode: Optional[str] = None) -> RunResult:
        mode = MODE_ALIASES[mode] if mode else self.mode
        timings = Timings.start()
        tokens = tokenize(text)
        timings.lap("Tokenizer")
        if self.settings.verbose:
            print("--- Tokenized ---")
            print(" ".join(str(t) for t in tokens))
        items = parse_items(tokens)
        timings.lap("Parser")
        if self.settings.verbose:
            print("--- AST ---")
            for item in items:
                print(item)
        return self.run_items(items, mode, timings)

    def run_items(self, items: Iterable[ParseResult], mode: str, timings: Timings) -> RunResult:
        result = RunResult(None, timings=timings)
        for item in items:
            if isinstance(item, Definition):
                define(item.function, self.table)
                timings.lap("Define")
                continue
            result = self._evaluate(item.node, mode, timings)
        return result

    def _evaluate(self, node: Node, mode: str, timings: Timings) -> RunResult:
        if mode == INTERPRET:
            value = self.interpreter.evaluate(node)
            timings.lap("Eval")
            return RunResult(value, timings=timings)

        try:
            artifact = self.jit.compile(node)
        except CodegenError as e:
            logger.warning("%s; falling back to the interpreter", e)
            value = self.interpreter.evaluate(node)
            timings.lap("Eval")
            return RunResult(value, timings=timings, fell_back=True)
        timings.lap("Codegen")
        if self.settings.verbose:
            print("--- LLVM IR ---")
            print(artifact.ir)
            print("--- Assembly ---")
            print(artifact.asm)
        value = artifact()
        timings.lap("Exec")
        return RunResult(value, artifact=artifact, timings=timings)


# --------------------- CLI / REPL ---------------------
def _mode(value: str) -> str:
    try:
        return MODE_ALIASES[value]
    except KeyError:
        raise argparse.ArgumentTypeError("invalid selection, wanted 'jit' or 'interpret'") from None


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="mathjit", description="MathJIT -- Just-In-Time mathematical evaluator")
    p.add_argument("math_expr", nargs="?", help="expression to evaluate; starts a REPL when omitted")
    p.add_argument("-m", "--mode", type=_mode, default=INTERPRET, help="interpret (default) or jit")
    p.add_argument("-v", "--verbose", action="store_true", default=None,
                   help="print tokens, AST, LLVM IR and assembly")
    p.add_argument("-t", "--timings", action="store_true", default=None, help="report time spent per phase")
    p.add_argument("--max-call-depth", type=int, default=None)
    p.add_argument("--max-sum-iterations", type=int, default=None)
    p.add_argument("-O", "--opt-level", type=int, choices=range(4), default=None)
    return p


def run_line(session: Session, line: str, out=None) -> bool:
    out = out or sys.stdout
    try:
        result = session.run(line)
    except MathJitError as e:
        print(f"error: {e.format_with_source(line)}", file=sys.stderr)
        return False
    if session.settings.timings and result.timings:
        print(result.timings.report(), file=out)
    print("Ok" if result.is_definition else f"{result.value!r}", file=out)
    return True


def repl(session: Session) -> None:
    try:
        import readline  # noqa: F401  (line editing and history for input())
    except ImportError:
        pass

    print(f"MathJIT ({'JIT' if session.mode == JIT else 'Interpreter'} mode)")
    while True:
        try:
            line = input("> ")
        except EOFError:
            print()
            return
        if line.strip():
            run_line(session, line.strip())


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    try:
        settings = Settings.from_env().override(
            verbose=args.verbose,
            timings=args.timings,
            max_call_depth=args.max_call_depth,
            max_sum_iterations=args.max_sum_iterations,
            opt_level=args.opt_level,
        )
    except MathJitError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(level=logging.DEBUG if settings.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")

    session = Session(settings, args.mode)
    if args.math_expr is not None:
        return 0 if run_line(session, args.math_expr.strip()) else 1
    repl(session)
    return 0


__all__ = [
    "Definition", "Expression", "FunctionDefinition", "FunctionTable", "RunResult", "Session", "Settings",
    "define", "interpret", "jit_compile", "jit_compile_and_run", "main", "parse", "parse_program",
    "parse_top_level", "tokenize",
]


if __name__ == "__main__":
    sys.exit(main())
