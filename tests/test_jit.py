"""Tests for the LLVM JIT back end."""

import gc
import math

import pytest

pytest.importorskip("llvmlite")

from mathjit_ast import FunctionTable, NumberLiteral, UnaryOp, UnOp
from mathjit_config import Settings
from mathjit_errors import (ArityMismatch, CodegenError, InvalidRange, IterationLimitExceeded, JitError,
                            RecursionLimitExceeded, UnboundVariable, UndefinedFunction)
from mathjit_jit import CodeGen, JitCompiler, function_symbol
from mathjit_parser import Definition, parse_top_level


@pytest.fixture
def table():
    return FunctionTable()


@pytest.fixture
def jit(table):
    return JitCompiler(table)


def define(table, text):
    result = parse_top_level(text)
    assert isinstance(result, Definition)
    table.define(result.function)
    return result.function


def run(jit, text):
    return jit.run(parse_top_level(text).node)


class TestArithmetic:
    @pytest.mark.parametrize("text,expected", [
        ("1.0 + 2.0", 3.0),
        ("5.0 - 3.5", 1.5),
        ("2.5 * 4.0", 10.0),
        ("10 / 4", 2.5),
        ("(2 + 3) * 4", 20.0),
        ("2 + 3 * 4", 14.0),
        ("2 ^ 3 ^ 2", 512.0),
        ("-2 ^ 2", -4.0),
        ("-(2 + 3.5) * 2", -11.0),
        ("3(1 + 1)", 6.0),
    ])
    def test_expressions(self, jit, text, expected):
        assert run(jit, text) == expected

    def test_division_by_zero(self, jit):
        assert run(jit, "1 / 0") == math.inf
        assert run(jit, "-1 / 0") == -math.inf
        assert math.isnan(run(jit, "0 / 0"))

    def test_negative_zero(self, jit):
        assert math.copysign(1.0, run(jit, "-0")) == -1.0

    def test_intrinsics(self, jit):
        assert run(jit, "pi()") == math.pi
        assert run(jit, "sqrt(16)") == 4.0
        assert run(jit, "cos(0)") == 1.0
        assert math.isnan(run(jit, "sqrt(-1)"))


class TestArtifact:
    def test_ir_and_assembly_exposed(self, jit):
        artifact = jit.compile(parse_top_level("1 + 2").node)
        assert 'define double @"mathjit_main"()' in artifact.ir
        assert artifact.asm.strip()
        assert artifact.arity == 0
        assert artifact() == 3.0

    def test_artifact_can_be_called_repeatedly(self, jit):
        artifact = jit.compile(parse_top_level("sqrt(2)").node)
        assert artifact() == artifact() == math.sqrt(2)

    def test_compile_function_definition(self, table, jit):
        f = define(table, "f(x, y) = x * y + 1")
        artifact = jit.compile(f)
        assert artifact.entry_name == function_symbol("f", 2)
        assert artifact.arity == 2
        assert artifact(3, 4) == 13.0
        assert artifact(0.5, 2) == 2.0

    def test_artifact_arity_checked(self, table, jit):
        artifact = jit.compile(define(table, "f(x) = x"))
        with pytest.raises(ArityMismatch):
            artifact(1, 2)

    def test_compile_recursive_definition_not_in_table(self, jit):
        f = parse_top_level("f(x) = f(x)").function
        with pytest.raises(RecursionLimitExceeded):
            jit.compile(f)(1)

    def test_compiled_definition_calls_itself_not_table_version(self, table, jit):
        define(table, "f(x) = x")
        f = parse_top_level("f(x) = f(x) + 1").function
        with pytest.raises(RecursionLimitExceeded):
            jit.compile(f)(1)
        assert run(jit, "f(1)") == 1.0

    def test_user_function_emitted_once(self, table):
        define(table, "sq(x) = x * x")
        gen = CodeGen(table, Settings())
        gen.build_expression(parse_top_level("sq(1) + sq(2) + sq(sq(3))").node)
        assert list(gen.functions) == [("sq", 1)]
        assert str(gen.module).count('define double @"fn.sq.1"') == 1

    def test_many_compiles_through_one_compiler(self, jit):
        for i in range(50):
            assert jit.compile(parse_top_level(f"{i} + 1").node)() == i + 1.0
            gc.collect()

    def test_artifacts_outlive_each_other(self, jit):
        artifacts = [jit.compile(parse_top_level(f"{i} * 2").node) for i in range(5)]
        del artifacts[::2]
        gc.collect()
        assert [a() for a in artifacts] == [2.0, 6.0]
        assert run(jit, "7 - 1") == 6.0

    def test_sum_emits_loop(self, table, jit):
        define(table, "f(x) = x")
        artifact = jit.compile(parse_top_level("sum(1, 3, 1)").node)
        assert "sum.cond" in artifact.ir
        assert "sum.body" in artifact.ir


class TestUserFunctions:
    def test_call(self, table, jit):
        define(table, "f(x) = x + 1")
        assert run(jit, "f(5)") == 6.0

    def test_nested_calls(self, table, jit):
        define(table, "sq(x) = x * x")
        define(table, "hyp(a, b) = sqrt(sq(a) + sq(b))")
        assert run(jit, "hyp(3, 4)") == 5.0

    def test_redefinition_picked_up_by_next_compile(self, table, jit):
        define(table, "f(x) = x")
        assert run(jit, "f(5)") == 5.0
        define(table, "f(x) = x * 2")
        assert run(jit, "f(5)") == 10.0

    def test_undefined_function_at_compile_time(self, jit):
        with pytest.raises(UndefinedFunction) as exc:
            jit.compile(parse_top_level("g(1)").node)
        assert isinstance(exc.value, JitError)
        assert exc.value.cause == "UndefinedFunction"

    def test_unbound_variable_at_compile_time(self, table, jit):
        define(table, "g(y) = x + y")
        with pytest.raises(UnboundVariable) as exc:
            run(jit, "g(1)")
        assert isinstance(exc.value, JitError)

    def test_intrinsic_arity_at_compile_time(self, jit):
        with pytest.raises(ArityMismatch):
            jit.compile(parse_top_level("sqrt(1, 2)").node)


class TestRuntimeGuards:
    def test_recursion_limit(self, table, jit):
        define(table, "f(x) = f(x) + 1")
        with pytest.raises(RecursionLimitExceeded) as exc:
            run(jit, "f(1)")
        assert isinstance(exc.value, JitError)
        assert exc.value.limit == jit.settings.max_call_depth

    def test_branching_recursion_terminates(self, table, jit):
        define(table, "g(x) = g(x) + g(x)")
        with pytest.raises(RecursionLimitExceeded):
            run(jit, "g(1)")

    def test_configured_recursion_limit(self, table):
        define(table, "inc(x) = x + 1")
        define(table, "deep(x) = inc(inc(x))")
        define(table, "deeper(x) = deep(x) + 1")
        jit = JitCompiler(table, Settings(max_call_depth=2))
        with pytest.raises(RecursionLimitExceeded):
            run(jit, "deeper(0)")
        assert JitCompiler(table, Settings(max_call_depth=3)).run(parse_top_level("deeper(0)").node) == 3.0

    def test_artifact_resets_between_calls(self, table, jit):
        define(table, "f(x) = f(x)")
        artifact = jit.compile(parse_top_level("f(1)").node)
        for _ in range(2):
            with pytest.raises(RecursionLimitExceeded):
                artifact()

    def test_sum(self, table, jit):
        define(table, "f(x) = x * x")
        assert run(jit, "sum(1, 3, 1)") == 14.0

    def test_sum_explicit_target(self, table, jit):
        define(table, "f(x) = x * x")
        define(table, "g(x) = 1")
        assert run(jit, "sum(f, 1, 3, 1)") == 14.0
        assert run(jit, "sum(1, 3, 1)") == 3.0

    def test_sum_missing_target(self, jit):
        with pytest.raises(UndefinedFunction):
            jit.compile(parse_top_level("sum(1, 3, 1)").node)

    def test_sum_invalid_range(self, table, jit):
        define(table, "f(x) = x")
        with pytest.raises(InvalidRange) as exc:
            run(jit, "sum(1, 3, -1)")
        assert (exc.value.start, exc.value.stop, exc.value.step) == (1.0, 3.0, -1.0)

    def test_sum_iteration_limit(self, table):
        define(table, "f(x) = x")
        jit = JitCompiler(table, Settings(max_sum_iterations=10))
        assert run(jit, "sum(1, 10, 1)") == 55.0
        with pytest.raises(IterationLimitExceeded):
            run(jit, "sum(1, 11, 1)")

    def test_sum_with_runtime_bounds(self, table, jit):
        define(table, "f(x) = x")
        define(table, "tri(n) = sum(f, 1, n, 1)")
        assert run(jit, "tri(4)") == 10.0
        with pytest.raises(InvalidRange):
            run(jit, "tri(0)")


class TestCodegenFailure:
    def test_codegen_error_is_jit_error(self, jit, monkeypatch):
        import mathjit_jit

        def broken(_text):
            raise RuntimeError("simulated backend failure")

        monkeypatch.setattr(mathjit_jit.llvm, "parse_assembly", broken)
        with pytest.raises(CodegenError) as exc:
            jit.compile(parse_top_level("1 + 1").node)
        assert isinstance(exc.value, JitError)
        assert "simulated" in str(exc.value)


def nested_negation(depth):
    node = NumberLiteral(1.0)
    for _ in range(depth):
        node = UnaryOp(UnOp.NEG, node)
    return node


class TestHostLimits:
    def test_deeply_nested_expression(self, jit):
        node = nested_negation(5000)
        with pytest.raises(RecursionLimitExceeded) as exc:
            jit.compile(node)
        assert isinstance(exc.value, JitError)

    def test_compiler_usable_after_deep_expression(self, jit):
        with pytest.raises(RecursionLimitExceeded):
            jit.compile(nested_negation(5000))
        assert run(jit, "2 + 2") == 4.0

    def test_sum_arity_lists_both_forms(self, jit):
        with pytest.raises(ArityMismatch) as exc:
            jit.compile(parse_top_level("sum(1, 2)").node)
        assert exc.value.expected == (3, 4)
        assert "3 or 4 expected" in str(exc.value)
