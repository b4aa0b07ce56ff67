"""
AST nodes, function definitions and the process-wide function table.

Call nodes are resolved by (name, arity) when evaluated or compiled, never at
parse time, so a call may be parsed before its target is defined.
"""

import itertools
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, Optional, Tuple, Union

logger = logging.getLogger(__name__)


class UnOp(Enum):
    NEG = "-"


class BinOp(Enum):
    ADD = "+"
    SUB = "-"
    MUL = "*"
    DIV = "/"
    POW = "^"


@dataclass(frozen=True)
class NumberLiteral:
    value: float

    def __str__(self):
        return f"{self.value:g}"


@dataclass(frozen=True)
class VariableRef:
    name: str

    def __str__(self):
        return self.name


@dataclass(frozen=True)
class UnaryOp:
    op: UnOp
    operand: "Node"

    def __str__(self):
        return f"({self.op.value}{self.operand})"


@dataclass(frozen=True)
class BinaryOp:
    op: BinOp
    left: "Node"
    right: "Node"

    def __str__(self):
        return f"({self.left} {self.op.value} {self.right})"


@dataclass(frozen=True)
class Call:
    name: str
    args: Tuple["Node", ...] = ()

    def __str__(self):
        return f"{self.name}({', '.join(str(a) for a in self.args)})"


Node = Union[NumberLiteral, VariableRef, UnaryOp, BinaryOp, Call]


@dataclass(frozen=True)
class FunctionDefinition:
    name: str
    parameters: Tuple[str, ...]
    body: Node

    @property
    def arity(self) -> int:
        return len(self.parameters)

    @property
    def key(self) -> Tuple[str, int]:
        return (self.name, self.arity)

    def __str__(self):
        return f"{self.name}({', '.join(self.parameters)}) = {self.body}"


class FunctionTable:
    """
    Registry of user functions keyed by (name, arity).

    Redefining a key overwrites it. Each define also stamps a sequence number
    so the most recent definition of a given arity can be found (the implicit
    target of a three-argument ``sum``).
    """

    def __init__(self):
        self._functions: Dict[Tuple[str, int], FunctionDefinition] = {}
        self._stamps: Dict[Tuple[str, int], int] = {}
        self._counter = itertools.count()
        self._lock = threading.Lock()

    def define(self, function: FunctionDefinition) -> None:
        with self._lock:
            self._functions[function.key] = function
            self._stamps[function.key] = next(self._counter)
        logger.debug("defined %s", function)

    def lookup(self, name: str, arity: int) -> Optional[FunctionDefinition]:
        with self._lock:
            return self._functions.get((name, arity))

    def latest(self, arity: int) -> Optional[FunctionDefinition]:
        with self._lock:
            keys = [k for k in self._functions if k[1] == arity]
            if not keys:
                return None
            return self._functions[max(keys, key=self._stamps.__getitem__)]

    def __contains__(self, key: Tuple[str, int]) -> bool:
        with self._lock:
            return key in self._functions

    def __len__(self) -> int:
        with self._lock:
            return len(self._functions)

    def __iter__(self) -> Iterator[FunctionDefinition]:
        with self._lock:
            return iter(list(self._functions.values()))
