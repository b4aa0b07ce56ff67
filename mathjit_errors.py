"""
Error taxonomy for the MathJIT evaluator.

Every error is a MathJitError. The JIT raises JitError subclasses that are
also instances of the matching EvalError, so callers can catch by cause
(``except UndefinedFunction``) without caring which back end ran.
"""

from typing import Optional, Tuple, Union


class MathJitError(Exception):
    """Base class for every error raised by the evaluator."""

    position: Optional[int] = None

    def format_with_source(self, source: str) -> str:
        """Render the message with a caret under the offending column."""
        if self.position is None:
            return str(self)
        column = max(0, min(self.position, len(source)))
        return f"{self}\n  {source}\n  {' ' * column}^"


class ConfigError(MathJitError):
    pass


# --------------------- Front end ---------------------
class LexError(MathJitError):
    def __init__(self, position: int, char: str):
        self.position = position
        self.char = char
        super().__init__(f"unexpected character {char!r} at position {position}")


class ParseError(MathJitError):
    def __init__(self, expected: str, found: str, position: int):
        self.expected = expected
        self.found = found
        self.position = position
        super().__init__(f"expected {expected}, found {found} at position {position}")


# --------------------- Evaluation ---------------------
class EvalError(MathJitError):
    pass


class UnboundVariable(EvalError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"unbound variable: {name}")


class UndefinedFunction(EvalError):
    def __init__(self, name: Optional[str], arity: int):
        self.name = name
        self.arity = arity
        if name is None:
            msg = f"sum() needs a function of arity {arity} to be defined"
        else:
            msg = f"undefined function: {name}/{arity}"
        super().__init__(msg)


class ArityMismatch(EvalError):
    def __init__(self, name: str, expected: Union[int, Tuple[int, ...]], got: int):
        self.name = name
        self.expected = expected
        self.got = got
        wanted = " or ".join(str(n) for n in expected) if isinstance(expected, tuple) else expected
        super().__init__(
            f"incorrect argument count for '{name}' call, {got} provided, {wanted} expected"
        )


class InvalidRange(EvalError):
    def __init__(self, start: float, stop: float, step: float):
        self.start = start
        self.stop = stop
        self.step = step
        super().__init__(f"invalid sum range: min={start!r} max={stop!r} step={step!r}")


class RecursionLimitExceeded(EvalError):
    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"recursion limit of {limit} calls exceeded")


class IterationLimitExceeded(EvalError):
    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"sum() exceeded {limit} iterations")


# --------------------- JIT ---------------------
class JitError(MathJitError):
    """Raised by the JIT. Concrete subclasses mix in the matching EvalError."""

    @property
    def cause(self) -> str:
        for klass in type(self).__mro__[1:]:
            if issubclass(klass, EvalError) and klass is not EvalError:
                return klass.__name__
        return type(self).__name__


class CodegenError(JitError):
    def __init__(self, message: str):
        super().__init__(f"native code generation failed: {message}")


class JitUnboundVariable(JitError, UnboundVariable):
    pass


class JitUndefinedFunction(JitError, UndefinedFunction):
    pass


class JitArityMismatch(JitError, ArityMismatch):
    pass


class JitInvalidRange(JitError, InvalidRange):
    pass


class JitRecursionLimitExceeded(JitError, RecursionLimitExceeded):
    pass


class JitIterationLimitExceeded(JitError, IterationLimitExceeded):
    pass
