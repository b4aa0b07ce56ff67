"""
Tree-walking interpreter.

Evaluates an AST against a per-call environment and the shared function
table. User calls get a fresh environment holding only their parameters.
"""

import logging
import math
from typing import Dict, Optional

from mathjit_ast import BinaryOp, BinOp, Call, FunctionDefinition, FunctionTable, Node, NumberLiteral, UnaryOp, VariableRef
from mathjit_config import Settings
from mathjit_errors import (ArityMismatch, IterationLimitExceeded, InvalidRange, RecursionLimitExceeded,
                            UnboundVariable, UndefinedFunction)
from mathjit_intrinsics import HOST_FUNCTIONS, INTRINSICS, ieee_div, ieee_pow, in_range, valid_range

logger = logging.getLogger(__name__)

Environment = Dict[str, float]


class Interpreter:
    def __init__(self, table: FunctionTable, settings: Optional[Settings] = None):
        self.table = table
        self.settings = settings or Settings()
        self._depth = 0

    def evaluate(self, node: Node, env: Optional[Environment] = None) -> float:
        return self._guarded(self._eval, node, env or {})

    def call(self, function: FunctionDefinition, *args: float) -> float:
        if len(args) != function.arity:
            raise ArityMismatch(function.name, function.arity, len(args))
        return self._guarded(self._invoke, function, [float(a) for a in args])

    def _guarded(self, fn, *args) -> float:
        self._depth = 0
        try:
            return fn(*args)
        except RecursionError:
            # a deep AST can exhaust the Python stack before max_call_depth is reached
            raise RecursionLimitExceeded(self.settings.max_call_depth) from None

    def _eval(self, node: Node, env: Environment) -> float:
        if isinstance(node, NumberLiteral):
            return node.value

        if isinstance(node, VariableRef):
            try:
                return env[node.name]
            except KeyError:
                raise UnboundVariable(node.name) from None

        if isinstance(node, UnaryOp):
            return -self._eval(node.operand, env)

        if isinstance(node, BinaryOp):
            left = self._eval(node.left, env)
            right = self._eval(node.right, env)

            if node.op is BinOp.ADD:
                return left + right
            if node.op is BinOp.SUB:
                return left - right
            if node.op is BinOp.MUL:
                return left * right
            if node.op is BinOp.DIV:
                return ieee_div(left, right)
            if node.op is BinOp.POW:
                return ieee_pow(left, right)

        if isinstance(node, Call):
            if node.name in INTRINSICS:
                return self._intrinsic(node, env)
            return self._call_user(node, env)

        raise TypeError(f"Unsupported node: {node.__class__.__name__}")

    def _intrinsic(self, node: Call, env: Environment) -> float:
        arities = INTRINSICS[node.name]
        if len(node.args) not in arities:
            raise ArityMismatch(node.name, arities if len(arities) > 1 else arities[0], len(node.args))

        if node.name == "pi":
            return math.pi
        if node.name == "sum":
            return self._sum(node, env)

        arg = self._eval(node.args[0], env)
        return HOST_FUNCTIONS[node.name](arg)

    def _call_user(self, node: Call, env: Environment) -> float:
        function = self.table.lookup(node.name, len(node.args))
        if function is None:
            raise UndefinedFunction(node.name, len(node.args))
        values = [self._eval(arg, env) for arg in node.args]
        return self._invoke(function, values)

    def _invoke(self, function: FunctionDefinition, values) -> float:
        if self._depth >= self.settings.max_call_depth:
            raise RecursionLimitExceeded(self.settings.max_call_depth)
        self._depth += 1
        try:
            return self._eval(function.body, dict(zip(function.parameters, values)))
        finally:
            self._depth -= 1

    def _sum(self, node: Call, env: Environment) -> float:
        args = node.args
        if len(args) == 4:
            target = args[0]
            if not isinstance(target, VariableRef):
                raise UndefinedFunction(str(target), 1)
            function = self.table.lookup(target.name, 1)
            if function is None:
                raise UndefinedFunction(target.name, 1)
            args = args[1:]
        else:
            function = self.table.latest(arity=1)
            if function is None:
                raise UndefinedFunction(None, 1)

        start, stop, step = (self._eval(arg, env) for arg in args)
        if not valid_range(start, stop, step):
            raise InvalidRange(start, stop, step)
        logger.debug("sum of %s over [%r, %r] step %r", function.name, start, stop, step)

        limit = self.settings.max_sum_iterations
        total = 0.0
        count = 0
        x = start
        while in_range(x, stop, step):
            count += 1
            if count > limit:
                raise IterationLimitExceeded(limit)
            total = total + self._invoke(function, [x])
            x = x + step
        return total
