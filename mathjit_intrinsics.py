"""
Built-in functions shared by both back ends.

The interpreter calls the host implementations below; the JIT lowers the
same names to LLVM intrinsics which end up in the same C math library, so
results agree bit for bit.
"""

import math
from typing import Callable, Dict, Tuple

# name -> accepted argument counts
INTRINSICS: Dict[str, Tuple[int, ...]] = {
    "pi": (0,),
    "sqrt": (1,),
    "sin": (1,),
    "cos": (1,),
    "sum": (3, 4),
}

# name -> llvm intrinsic family, declared as <family>.f64
LLVM_INTRINSICS: Dict[str, str] = {
    "sqrt": "llvm.sqrt",
    "sin": "llvm.sin",
    "cos": "llvm.cos",
}


def is_intrinsic(name: str) -> bool:
    return name in INTRINSICS


def _is_odd_integer(y: float) -> bool:
    return math.isfinite(y) and math.fmod(y, 2.0) in (1.0, -1.0)


def ieee_div(x: float, y: float) -> float:
    try:
        return x / y
    except ZeroDivisionError:
        if math.isnan(x) or x == 0.0:
            return math.nan
        return math.copysign(math.inf, x) * math.copysign(1.0, y)


def ieee_pow(x: float, y: float) -> float:
    """C99 ``pow``: overflow and domain errors become inf/nan instead of raising."""
    try:
        return math.pow(x, y)
    except OverflowError:
        if x < 0 and _is_odd_integer(y):
            return -math.inf
        return math.inf
    except ValueError:
        if x == 0.0:
            # pole: zero raised to a negative power
            if _is_odd_integer(y):
                return math.copysign(math.inf, x)
            return math.inf
        return math.nan


def _nan_on_domain_error(fn: Callable[[float], float]) -> Callable[[float], float]:
    def wrapper(x: float) -> float:
        try:
            return fn(x)
        except ValueError:
            return math.nan
    wrapper.__name__ = fn.__name__
    return wrapper


HOST_FUNCTIONS: Dict[str, Callable[[float], float]] = {
    "sqrt": _nan_on_domain_error(math.sqrt),
    "sin": _nan_on_domain_error(math.sin),
    "cos": _nan_on_domain_error(math.cos),
}


def valid_range(start: float, stop: float, step: float) -> bool:
    # NaN anywhere makes the comparison false
    return step != 0.0 and (stop - start) * step >= 0.0


def in_range(x: float, stop: float, step: float) -> bool:
    return x <= stop if step > 0 else x >= stop
