# tests/test_values.py
"""
Tests for the constant lattice, CPFact and expression evaluation.
"""

import itertools

import pytest

from irflow.dataflow_analyses import CPFact, Value, evaluate, meet_value
from irflow.ir import (
    ArrayAccess,
    ArrayType,
    CastExp,
    ClassType,
    InstanceFieldAccess,
    IntLiteral,
    LongLiteral,
    NegExp,
    NewExp,
    NullLiteral,
    PrimitiveType,
    StringLiteral,
    Var,
    binary_exp,
    can_hold_int,
)

UNDEF = Value.get_undef()
NAC = Value.get_nac()


def const(n):
    return Value.make_constant(n)


def int_var(name):
    return Var(name, PrimitiveType.INT)


def eval_binary(symbol, left, right):
    """Evaluate ``a <symbol> b`` with a, b bound to the given values."""
    a, b = int_var("a"), int_var("b")
    fact = CPFact()
    fact.update(a, left if isinstance(left, Value) else const(left))
    fact.update(b, right if isinstance(right, Value) else const(right))
    return evaluate(binary_exp(symbol, a, b), fact)


SAMPLES = [UNDEF, NAC, const(0), const(1), const(-7)]


# ── Lattice laws ────────────────────────────────────────────────

class TestMeet:

    @pytest.mark.parametrize("v1, v2", list(itertools.product(SAMPLES, SAMPLES)))
    def test_commutative(self, v1, v2):
        assert meet_value(v1, v2) == meet_value(v2, v1)

    @pytest.mark.parametrize("v", SAMPLES)
    def test_nac_dominates(self, v):
        assert meet_value(NAC, v).is_nac()

    @pytest.mark.parametrize("v", SAMPLES)
    def test_undef_is_identity(self, v):
        assert meet_value(UNDEF, v) == v

    @pytest.mark.parametrize("v", SAMPLES)
    def test_idempotent(self, v):
        assert meet_value(v, v) == v

    @pytest.mark.parametrize("v1, v2", list(itertools.product(SAMPLES, SAMPLES)))
    def test_absorption(self, v1, v2):
        m = meet_value(v1, v2)
        assert meet_value(m, v1) == m

    def test_distinct_constants_meet_to_nac(self):
        assert meet_value(const(1), const(2)).is_nac()

    def test_equal_constants_stay(self):
        assert meet_value(const(3), const(3)) == const(3)


class TestValue:

    def test_singletons(self):
        assert Value.get_nac() is Value.get_nac()
        assert Value.get_undef() is Value.get_undef()

    def test_constants_compare_by_value(self):
        assert const(4) == const(4)
        assert hash(const(4)) == hash(const(4))
        assert const(4) != const(5)

    def test_get_constant_of_nac_raises(self):
        with pytest.raises(ValueError):
            NAC.get_constant()

    def test_repr(self):
        assert repr(NAC) == "NAC"
        assert repr(UNDEF) == "UNDEF"
        assert repr(const(-3)) == "-3"


# ── CPFact ──────────────────────────────────────────────────────

class TestCPFact:

    def test_absent_key_is_undef(self):
        assert CPFact().get(int_var("x")).is_undef()

    def test_storing_undef_removes_key(self):
        x = int_var("x")
        fact = CPFact()
        fact.update(x, const(1))
        assert fact.update(x, UNDEF) is True
        assert x not in fact
        assert len(fact) == 0

    def test_update_reports_change(self):
        x = int_var("x")
        fact = CPFact()
        assert fact.update(x, const(1)) is True
        assert fact.update(x, const(1)) is False
        assert fact.update(x, NAC) is True

    def test_copy_is_independent(self):
        x = int_var("x")
        fact = CPFact({x: const(1)})
        dup = fact.copy()
        dup.update(x, const(2))
        assert fact.get(x) == const(1)

    def test_copy_from(self):
        x, y = int_var("x"), int_var("y")
        target = CPFact({x: const(1)})
        source = CPFact({y: NAC})
        assert target.copy_from(source) is True
        assert target == source
        assert target.copy_from(source) is False

    def test_equality_ignores_undef_bindings(self):
        x = int_var("x")
        assert CPFact({x: UNDEF}) == CPFact()


# ── Evaluation ──────────────────────────────────────────────────

class TestEvaluate:

    def test_int_literal(self):
        assert evaluate(IntLiteral(5), CPFact()) == const(5)

    def test_addition(self):
        assert eval_binary("+", 2, 3) == const(5)

    def test_division_by_zero_is_undef(self):
        assert eval_binary("/", 4, 0).is_undef()

    def test_remainder_by_zero_is_undef(self):
        assert eval_binary("%", 4, 0).is_undef()

    def test_constant_plus_nac_is_nac(self):
        assert eval_binary("+", 2, NAC).is_nac()

    def test_comparison_true(self):
        assert eval_binary("<", 1, 2) == const(1)

    def test_comparison_false(self):
        assert eval_binary(">=", 1, 2) == const(0)

    def test_both_undef_is_undef(self):
        assert eval_binary("+", UNDEF, UNDEF).is_undef()

    def test_one_undef_is_nac(self):
        assert eval_binary("+", UNDEF, 1).is_nac()

    def test_var_lookup(self):
        x = int_var("x")
        assert evaluate(x, CPFact({x: const(9)})) == const(9)
        assert evaluate(x, CPFact()).is_undef()

    def test_non_int_var_is_nac(self):
        f = Var("f", PrimitiveType.FLOAT)
        assert evaluate(f, CPFact()).is_nac()

    def test_non_int_operand_is_nac(self):
        a = int_var("a")
        lng = Var("l", PrimitiveType.LONG)
        fact = CPFact({a: const(1)})
        assert evaluate(binary_exp("+", a, lng), fact).is_nac()

    @pytest.mark.parametrize("exp", [
        NullLiteral(),
        StringLiteral("s"),
        LongLiteral(3),
        NewExp(ClassType("A")),
        CastExp(int_var("c"), PrimitiveType.INT),
        InstanceFieldAccess(Var("o", ClassType("A")), "f"),
        ArrayAccess(Var("arr", ArrayType(PrimitiveType.INT)), int_var("i")),
        NegExp(int_var("n")),
    ])
    def test_other_expressions_are_nac(self, exp):
        assert evaluate(exp, CPFact()).is_nac()

    @pytest.mark.parametrize("symbol, a, b, expected", [
        ("-", 7, 10, -3),
        ("*", 6, 7, 42),
        ("|", 0b1010, 0b0101, 0b1111),
        ("&", 0b1100, 0b1010, 0b1000),
        ("^", 0b1100, 0b1010, 0b0110),
        ("==", 3, 3, 1),
        ("!=", 3, 3, 0),
        ("<=", 3, 3, 1),
        (">", 3, 4, 0),
        ("<<", 1, 4, 16),
        (">>", -16, 2, -4),
    ])
    def test_operators(self, symbol, a, b, expected):
        assert eval_binary(symbol, a, b) == const(expected)


class TestJvmIntSemantics:

    def test_addition_overflow_wraps(self):
        assert eval_binary("+", 2 ** 31 - 1, 1) == const(-2 ** 31)

    def test_multiplication_wraps(self):
        assert eval_binary("*", 65536, 65536) == const(0)

    def test_min_value_div_minus_one_wraps(self):
        assert eval_binary("/", -2 ** 31, -1) == const(-2 ** 31)

    def test_division_truncates_toward_zero(self):
        assert eval_binary("/", -7, 2) == const(-3)
        assert eval_binary("/", 7, -2) == const(-3)

    def test_remainder_takes_sign_of_dividend(self):
        assert eval_binary("%", -7, 2) == const(-1)
        assert eval_binary("%", 7, -2) == const(1)

    def test_shift_distance_uses_low_five_bits(self):
        assert eval_binary("<<", 1, 33) == const(2)

    def test_shl_into_sign_bit(self):
        assert eval_binary("<<", 1, 31) == const(-2 ** 31)

    def test_ushr_of_negative(self):
        assert eval_binary(">>>", -1, 28) == const(15)

    def test_sar_keeps_sign(self):
        assert eval_binary(">>", -1, 28) == const(-1)

    def test_literal_out_of_range_wraps(self):
        assert evaluate(IntLiteral(2 ** 32 + 5), CPFact()) == const(5)


class TestCanHoldInt:

    @pytest.mark.parametrize("t", [
        PrimitiveType.BYTE, PrimitiveType.SHORT, PrimitiveType.INT,
        PrimitiveType.CHAR, PrimitiveType.BOOLEAN,
    ])
    def test_int_like(self, t):
        assert can_hold_int(Var("v", t))

    @pytest.mark.parametrize("t", [
        PrimitiveType.LONG, PrimitiveType.FLOAT, PrimitiveType.DOUBLE,
        ClassType("A"),
    ])
    def test_not_int_like(self, t):
        assert not can_hold_int(Var("v", t))
