#!/usr/bin/env python3
"""
MathJIT native back end – AST -> LLVM IR -> MCJIT -> ctypes

Every user function reached from the compiled expression is emitted into the
same module as ``double fn.<name>.<arity>(double, ...)``. ``sum`` becomes an
explicit loop calling the summed function. Runtime guards (call depth, sum
range, iteration count) report through module globals that the Python side
resets before and inspects after each native call.
"""

import ctypes
import logging
import math
from typing import Dict, Optional, Tuple, Union

import llvmlite.binding as llvm
import llvmlite.ir as ir

from mathjit_ast import BinaryOp, BinOp, Call, FunctionDefinition, FunctionTable, Node, NumberLiteral, UnaryOp, VariableRef
from mathjit_config import Settings
from mathjit_errors import (CodegenError, JitArityMismatch, JitError, JitInvalidRange, JitIterationLimitExceeded,
                            JitRecursionLimitExceeded, JitUnboundVariable, JitUndefinedFunction)
from mathjit_intrinsics import INTRINSICS, LLVM_INTRINSICS

logger = logging.getLogger(__name__)

llvm.initialize_native_target()
llvm.initialize_native_asmprinter()

F64 = ir.DoubleType()
I32 = ir.IntType(32)
I64 = ir.IntType(64)

ENTRY_NAME = "mathjit_main"

STATUS_OK = 0
STATUS_RECURSION = 1
STATUS_RANGE = 2
STATUS_ITERATIONS = 3


def _f64(value: float) -> ir.Constant:
    return ir.Constant(F64, float(value))


def function_symbol(name: str, arity: int) -> str:
    return f"fn.{name}.{arity}"


# --------------------- Compiled artifact ---------------------
class CompiledArtifact:
    """A native routine plus the IR and assembly it was built from."""

    def __init__(self, engine, entry_name: str, arity: int, ir_text: str, asm: str, settings: Settings):
        self._engine = engine  # owns the machine code, keep alive
        self.entry_name = entry_name
        self.arity = arity
        self.ir = ir_text
        self.asm = asm
        self.settings = settings

        addr = engine.get_function_address(entry_name)
        self._cfunc = ctypes.CFUNCTYPE(ctypes.c_double, *([ctypes.c_double] * arity))(addr)
        self._status = ctypes.c_int32.from_address(engine.get_global_value_address("mathjit_status"))
        self._depth = ctypes.c_int32.from_address(engine.get_global_value_address("mathjit_depth"))
        self._range = [ctypes.c_double.from_address(engine.get_global_value_address(f"mathjit_range_{part}"))
                       for part in ("min", "max", "step")]

    def __call__(self, *args: float) -> float:
        if len(args) != self.arity:
            raise JitArityMismatch(self.entry_name, self.arity, len(args))
        self._status.value = STATUS_OK
        self._depth.value = 0
        result = self._cfunc(*(float(a) for a in args))

        status = self._status.value
        if status == STATUS_RECURSION:
            raise JitRecursionLimitExceeded(self.settings.max_call_depth)
        if status == STATUS_RANGE:
            raise JitInvalidRange(*(r.value for r in self._range))
        if status == STATUS_ITERATIONS:
            raise JitIterationLimitExceeded(self.settings.max_sum_iterations)
        return result


# --------------------- Code Generator ---------------------
class CodeGen:
    """
    Translates one top-level compile request into an LLVM module.

    User functions are memoized by (name, arity) for the lifetime of this
    object only, so a redefinition between requests is always picked up.
    """

    def __init__(self, table: FunctionTable, settings: Settings):
        self.table = table
        self.settings = settings
        self.module = ir.Module(name="mathjit")
        self.functions: Dict[Tuple[str, int], ir.Function] = {}

        self.status = self._global(I32, "mathjit_status", 0)
        self.depth = self._global(I32, "mathjit_depth", 0)
        self.range_globals = [self._global(F64, f"mathjit_range_{part}", 0.0) for part in ("min", "max", "step")]

    def _global(self, typ, name, init) -> ir.GlobalVariable:
        gv = ir.GlobalVariable(self.module, typ, name=name)
        gv.initializer = ir.Constant(typ, init)
        return gv

    # --- entry points ---
    def build_expression(self, node: Node) -> str:
        func = ir.Function(self.module, ir.FunctionType(F64, []), name=ENTRY_NAME)
        builder = ir.IRBuilder(func.append_basic_block("entry"))
        builder.ret(self._visit(node, builder, {}))
        return ENTRY_NAME

    def build_function(self, function: FunctionDefinition) -> str:
        return self._function(function).name

    # --- functions ---
    def _function(self, function: FunctionDefinition) -> ir.Function:
        if function.key in self.functions:
            return self.functions[function.key]

        func_ty = ir.FunctionType(F64, [F64] * function.arity)
        func = ir.Function(self.module, func_ty, name=function_symbol(*function.key))
        self.functions[function.key] = func  # before the body, so recursion resolves
        for arg, pname in zip(func.args, function.parameters):
            arg.name = pname

        entry = func.append_basic_block("entry")
        check_depth = func.append_basic_block("check_depth")
        overflow = func.append_basic_block("overflow")
        bail = func.append_basic_block("bail")
        body = func.append_basic_block("body")

        builder = ir.IRBuilder(entry)
        status = builder.load(self.status, "status", typ=I32)
        depth = builder.load(self.depth, "depth", typ=I32)
        new_depth = builder.add(depth, ir.Constant(I32, 1), "new_depth")
        ok = builder.icmp_signed("==", status, ir.Constant(I32, STATUS_OK), "ok")
        builder.cbranch(ok, check_depth, bail)

        builder.position_at_end(check_depth)
        too_deep = builder.icmp_signed(">", new_depth, ir.Constant(I32, self.settings.max_call_depth), "too_deep")
        builder.cbranch(too_deep, overflow, body)

        builder.position_at_end(overflow)
        self._set_status(builder, STATUS_RECURSION)
        builder.branch(bail)

        builder.position_at_end(bail)
        builder.ret(_f64(0.0))

        builder.position_at_end(body)
        builder.store(new_depth, self.depth)
        scope = dict(zip(function.parameters, func.args))
        value = self._visit(function.body, builder, scope)
        builder.store(depth, self.depth)
        builder.ret(value)

        logger.debug("compiled %s as %s", function, func.name)
        return func

    def _resolve(self, name: str, arity: int) -> ir.Function:
        # functions already emitted in this request win, so a definition being compiled can call itself
        if (name, arity) in self.functions:
            return self.functions[(name, arity)]
        function = self.table.lookup(name, arity)
        if function is None:
            raise JitUndefinedFunction(name, arity)
        return self._function(function)

    def _set_status(self, builder: ir.IRBuilder, code: int) -> None:
        # first error wins
        current = builder.load(self.status, typ=I32)
        is_ok = builder.icmp_signed("==", current, ir.Constant(I32, STATUS_OK))
        builder.store(builder.select(is_ok, ir.Constant(I32, code), current), self.status)

    # --- expressions ---
    def _visit(self, node: Node, builder: ir.IRBuilder, scope: Dict[str, ir.Value]) -> ir.Value:
        if isinstance(node, NumberLiteral):
            return _f64(node.value)

        if isinstance(node, VariableRef):
            if node.name not in scope:
                raise JitUnboundVariable(node.name)
            return scope[node.name]

        if isinstance(node, UnaryOp):
            return builder.fneg(self._visit(node.operand, builder, scope), "negtmp")

        if isinstance(node, BinaryOp):
            left = self._visit(node.left, builder, scope)
            right = self._visit(node.right, builder, scope)

            if node.op is BinOp.ADD:
                return builder.fadd(left, right, "addtmp")
            if node.op is BinOp.SUB:
                return builder.fsub(left, right, "subtmp")
            if node.op is BinOp.MUL:
                return builder.fmul(left, right, "multmp")
            if node.op is BinOp.DIV:
                return builder.fdiv(left, right, "divtmp")
            if node.op is BinOp.POW:
                pow_fn = self.module.declare_intrinsic("llvm.pow", [F64])
                return builder.call(pow_fn, [left, right], "powtmp")

        if isinstance(node, Call):
            if node.name in INTRINSICS:
                return self._intrinsic(node, builder, scope)
            callee = self._resolve(node.name, len(node.args))
            args = [self._visit(a, builder, scope) for a in node.args]
            return builder.call(callee, args, "calltmp")

        raise TypeError(f"Unsupported node: {node.__class__.__name__}")

    def _intrinsic(self, node: Call, builder: ir.IRBuilder, scope) -> ir.Value:
        arities = INTRINSICS[node.name]
        if len(node.args) not in arities:
            raise JitArityMismatch(node.name, arities if len(arities) > 1 else arities[0], len(node.args))

        if node.name == "pi":
            return _f64(math.pi)
        if node.name == "sum":
            return self._sum(node, builder, scope)

        fn = self.module.declare_intrinsic(LLVM_INTRINSICS[node.name], [F64])
        return builder.call(fn, [self._visit(node.args[0], builder, scope)], f"{node.name}tmp")

    def _sum(self, node: Call, builder: ir.IRBuilder, scope) -> ir.Value:
        args = node.args
        if len(args) == 4:
            target = args[0]
            if not isinstance(target, VariableRef):
                raise JitUndefinedFunction(str(target), 1)
            callee = self._resolve(target.name, 1)
            args = args[1:]
        else:
            function = self.table.latest(arity=1)
            if function is None:
                raise JitUndefinedFunction(None, 1)
            callee = self._function(function)

        start, stop, step = (self._visit(a, builder, scope) for a in args)

        func = builder.function
        acc = builder.alloca(F64, name="sum.acc")
        counter = builder.alloca(F64, name="sum.x")
        iterations = builder.alloca(I64, name="sum.n")
        builder.store(_f64(0.0), acc)
        builder.store(start, counter)
        builder.store(ir.Constant(I64, 0), iterations)

        invalid_bb = func.append_basic_block("sum.invalid")
        cond_bb = func.append_basic_block("sum.cond")
        count_bb = func.append_basic_block("sum.count")
        limit_bb = func.append_basic_block("sum.limit")
        body_bb = func.append_basic_block("sum.body")
        exit_bb = func.append_basic_block("sum.exit")

        # step != 0 and (max - min) * step >= 0, both false on NaN
        nonzero = builder.fcmp_ordered("!=", step, _f64(0.0), "sum.nonzero")
        span = builder.fmul(builder.fsub(stop, start), step, "sum.span")
        same_sign = builder.fcmp_ordered(">=", span, _f64(0.0), "sum.samesign")
        builder.cbranch(builder.and_(nonzero, same_sign), cond_bb, invalid_bb)

        builder.position_at_end(invalid_bb)
        first = builder.icmp_signed("==", builder.load(self.status, typ=I32), ir.Constant(I32, STATUS_OK))
        for gv, value in zip(self.range_globals, (start, stop, step)):
            builder.store(builder.select(first, value, builder.load(gv, typ=F64)), gv)
        self._set_status(builder, STATUS_RANGE)
        builder.branch(exit_bb)

        builder.position_at_end(cond_bb)
        x = builder.load(counter, "x")
        upward = builder.fcmp_ordered(">", step, _f64(0.0))
        in_range = builder.select(upward,
                                  builder.fcmp_ordered("<=", x, stop),
                                  builder.fcmp_ordered(">=", x, stop), "sum.inrange")
        ok = builder.icmp_signed("==", builder.load(self.status, typ=I32), ir.Constant(I32, STATUS_OK))
        builder.cbranch(builder.and_(in_range, ok), count_bb, exit_bb)

        builder.position_at_end(count_bb)
        n = builder.add(builder.load(iterations), ir.Constant(I64, 1), "n")
        builder.store(n, iterations)
        too_many = builder.icmp_unsigned(">", n, ir.Constant(I64, self.settings.max_sum_iterations))
        builder.cbranch(too_many, limit_bb, body_bb)

        builder.position_at_end(limit_bb)
        self._set_status(builder, STATUS_ITERATIONS)
        builder.branch(exit_bb)

        builder.position_at_end(body_bb)
        value = builder.call(callee, [x], "term")
        builder.store(builder.fadd(builder.load(acc), value), acc)
        builder.store(builder.fadd(x, step), counter)
        builder.branch(cond_bb)

        builder.position_at_end(exit_bb)
        return builder.load(acc, "sum")


# --------------------- JIT Engine ---------------------
class JitCompiler:
    def __init__(self, table: FunctionTable, settings: Optional[Settings] = None):
        self.table = table
        self.settings = settings or Settings()
        self.target = llvm.Target.from_default_triple()
        self.target_machine = self._new_target_machine()

    def _new_target_machine(self) -> llvm.TargetMachine:
        return self.target.create_target_machine(opt=self.settings.opt_level)

    def compile(self, target: Union[Node, FunctionDefinition]) -> CompiledArtifact:
        gen = CodeGen(self.table, self.settings)
        gen.module.triple = self.target_machine.triple
        gen.module.data_layout = str(self.target_machine.target_data)

        try:
            if isinstance(target, FunctionDefinition):
                entry, arity = gen.build_function(target), target.arity
            else:
                entry, arity = gen.build_expression(target), 0
        except RecursionError:
            # nesting deeper than the Python stack allows
            raise JitRecursionLimitExceeded(self.settings.max_call_depth) from None

        ir_text = str(gen.module)
        try:
            llvm_mod = llvm.parse_assembly(ir_text)
            llvm_mod.verify()
            # emitting assembly runs codegen passes over the module, so use a separate copy
            asm = self.target_machine.emit_assembly(llvm.parse_assembly(ir_text))
            # the engine takes ownership of its target machine and frees it when collected
            engine = llvm.create_mcjit_compiler(llvm_mod, self._new_target_machine())
            engine.finalize_object()
        except RuntimeError as e:
            raise CodegenError(str(e)) from e

        logger.debug("compiled %s (%d user functions)", entry, len(gen.functions))
        return CompiledArtifact(engine, entry, arity, ir_text, asm, self.settings)

    def run(self, node: Node) -> float:
        return self.compile(node)()


__all__ = ["CompiledArtifact", "CodeGen", "JitCompiler", "JitError", "function_symbol"]


# --------------------- Demo ---------------------
if __name__ == "__main__":
    from mathjit_parser import Definition, parse_program

    table = FunctionTable()
    jit = JitCompiler(table)
    for item in parse_program("f(x) = x * x & sum(1, 3, 1) & sqrt(f(3) + f(4))"):
        if isinstance(item, Definition):
            table.define(item.function)
            continue
        artifact = jit.compile(item.node)
        print(artifact.ir)
        print(f"  => {artifact():.10g}")
