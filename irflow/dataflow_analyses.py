"""
irflow/dataflow_analyses.py
═══════════════════════════

Ready-made dataflow analyses built on ``dataflow_engine.py``.

Provided analyses
─────────────────
  1. ConstantPropagation     - forward, must (flat integer lattice)
  2. LiveVariableAnalysis    - backward, may (set of variables)

Constant propagation models the JVM ``int``: only variables of type byte,
short, int, char or boolean take part, and every arithmetic, bitwise and
shift result wraps to 32-bit two's complement.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, Iterator, Optional, Set, Tuple

from .config import AnalysisConfig
from .ctrlflow_graph import CFG
from .dataflow_engine import DataflowAnalysis
from .ir import (
    ArithmeticExp,
    ArithmeticOp,
    AssignStmt,
    BinaryExp,
    BitwiseExp,
    BitwiseOp,
    ConditionExp,
    ConditionOp,
    Exp,
    IntLiteral,
    ShiftExp,
    ShiftOp,
    Stmt,
    Var,
    can_hold_int,
)

__all__ = [
    "Value",
    "meet_value",
    "CPFact",
    "evaluate",
    "ConstantPropagation",
    "SetFact",
    "LiveVariableAnalysis",
]

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════
#  PART 1: THE CONSTANT LATTICE
# ═════════════════════════════════════════════════════════════════════════
#
#            NAC
#      /  /  |  \  \
#   ... -1   0   1 ...
#      \  \  |  /  /
#           UNDEF
#
# ═════════════════════════════════════════════════════════════════════════

_UINT_MASK = (1 << 32) - 1


def _to_int32(n: int) -> int:
    """Wrap *n* to a signed 32-bit value."""
    n &= _UINT_MASK
    return n - (1 << 32) if n & 0x80000000 else n


class Value:
    """An element of the constant lattice: UNDEF, a constant, or NAC.

    Use the factory methods; UNDEF and NAC are singletons and constants
    compare by value.
    """

    __slots__ = ("_kind", "_constant")

    _UNDEF_KIND = 0
    _CONST_KIND = 1
    _NAC_KIND = 2

    _undef: Optional["Value"] = None
    _nac: Optional["Value"] = None

    def __init__(self, kind: int, constant: int = 0) -> None:
        self._kind = kind
        self._constant = constant

    @classmethod
    def get_undef(cls) -> "Value":
        if cls._undef is None:
            cls._undef = cls(cls._UNDEF_KIND)
        return cls._undef

    @classmethod
    def get_nac(cls) -> "Value":
        if cls._nac is None:
            cls._nac = cls(cls._NAC_KIND)
        return cls._nac

    @classmethod
    def make_constant(cls, constant: int) -> "Value":
        return cls(cls._CONST_KIND, constant)

    def is_undef(self) -> bool:
        return self._kind == self._UNDEF_KIND

    def is_constant(self) -> bool:
        return self._kind == self._CONST_KIND

    def is_nac(self) -> bool:
        return self._kind == self._NAC_KIND

    def get_constant(self) -> int:
        if not self.is_constant():
            raise ValueError(f"{self} is not a constant")
        return self._constant

    def __eq__(self, other) -> bool:
        if isinstance(other, Value):
            return self._kind == other._kind and self._constant == other._constant
        return NotImplemented

    def __hash__(self) -> int:
        return hash((self._kind, self._constant))

    def __repr__(self) -> str:
        if self.is_undef():
            return "UNDEF"
        if self.is_nac():
            return "NAC"
        return str(self._constant)


def meet_value(v1: Value, v2: Value) -> Value:
    """Meet of two lattice values."""
    if v1.is_nac() or v2.is_nac():
        return Value.get_nac()
    if v1.is_undef():
        return v2
    if v2.is_undef():
        return v1
    if v1.get_constant() == v2.get_constant():
        return v1
    return Value.get_nac()


class CPFact:
    """Map from variables to lattice values.

    Variables not in the map are UNDEF; storing UNDEF removes the key, so
    two facts are equal iff they bind the same variables to equal values.
    """

    __slots__ = ("_map",)

    def __init__(self, bindings: Optional[Dict[Var, Value]] = None) -> None:
        self._map: Dict[Var, Value] = {}
        for var, value in (bindings or {}).items():
            self.update(var, value)

    def get(self, var: Var) -> Value:
        return self._map.get(var, Value.get_undef())

    def update(self, var: Var, value: Value) -> bool:
        """Bind *var* to *value*; return whether the fact changed."""
        if value.is_undef():
            return self._map.pop(var, None) is not None
        old = self._map.get(var)
        self._map[var] = value
        return old != value

    def remove(self, var: Var) -> bool:
        return self._map.pop(var, None) is not None

    def copy(self) -> "CPFact":
        fact = CPFact()
        fact._map = dict(self._map)
        return fact

    def copy_from(self, other: "CPFact") -> bool:
        """Make this fact equal to *other*; return whether it changed."""
        if self._map == other._map:
            return False
        self._map = dict(other._map)
        return True

    def keys(self) -> Iterator[Var]:
        return iter(list(self._map))

    def items(self) -> Iterator[Tuple[Var, Value]]:
        return iter(list(self._map.items()))

    def __contains__(self, var: object) -> bool:
        return var in self._map

    def __len__(self) -> int:
        return len(self._map)

    def __eq__(self, other) -> bool:
        if isinstance(other, CPFact):
            return self._map == other._map
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        body = ", ".join(f"{k}={v}" for k, v in
                         sorted(self._map.items(), key=lambda kv: kv[0].name))
        return "{" + body + "}"


# ═════════════════════════════════════════════════════════════════════════
#  PART 2: EXPRESSION EVALUATION
# ═════════════════════════════════════════════════════════════════════════

def _java_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a < 0) == (b < 0) else -q


def _java_rem(a: int, b: int) -> int:
    return a - _java_div(a, b) * b


_ARITHMETIC: Dict[ArithmeticOp, Callable[[int, int], int]] = {
    ArithmeticOp.ADD: lambda a, b: a + b,
    ArithmeticOp.SUB: lambda a, b: a - b,
    ArithmeticOp.MUL: lambda a, b: a * b,
    ArithmeticOp.DIV: _java_div,
    ArithmeticOp.REM: _java_rem,
}

_BITWISE: Dict[BitwiseOp, Callable[[int, int], int]] = {
    BitwiseOp.OR: lambda a, b: a | b,
    BitwiseOp.AND: lambda a, b: a & b,
    BitwiseOp.XOR: lambda a, b: a ^ b,
}

_CONDITION: Dict[ConditionOp, Callable[[int, int], bool]] = {
    ConditionOp.EQ: lambda a, b: a == b,
    ConditionOp.NE: lambda a, b: a != b,
    ConditionOp.LT: lambda a, b: a < b,
    ConditionOp.GT: lambda a, b: a > b,
    ConditionOp.LE: lambda a, b: a <= b,
    ConditionOp.GE: lambda a, b: a >= b,
}

# shift distance is the low five bits of the right operand
_SHIFT: Dict[ShiftOp, Callable[[int, int], int]] = {
    ShiftOp.SHL: lambda a, s: a << (s & 0x1F),
    ShiftOp.SHR: lambda a, s: a >> (s & 0x1F),
    ShiftOp.USHR: lambda a, s: (a & _UINT_MASK) >> (s & 0x1F),
}


def _evaluate_binary(exp: BinaryExp, c1: int, c2: int) -> Value:
    op = exp.op
    if isinstance(exp, ArithmeticExp):
        if op in (ArithmeticOp.DIV, ArithmeticOp.REM) and c2 == 0:
            return Value.get_undef()
        return Value.make_constant(_to_int32(_ARITHMETIC[op](c1, c2)))
    if isinstance(exp, BitwiseExp):
        return Value.make_constant(_to_int32(_BITWISE[op](c1, c2)))
    if isinstance(exp, ConditionExp):
        return Value.make_constant(1 if _CONDITION[op](c1, c2) else 0)
    if isinstance(exp, ShiftExp):
        return Value.make_constant(_to_int32(_SHIFT[op](c1, c2)))
    return Value.get_nac()


def evaluate(exp: Exp, in_fact: CPFact) -> Value:
    """Evaluate *exp* under the variable bindings of *in_fact*.

    Literals other than int literals, allocations, casts, field and array
    reads, and invocations are all NAC.
    """
    if isinstance(exp, IntLiteral):
        return Value.make_constant(_to_int32(exp.value))
    if isinstance(exp, Var):
        if not can_hold_int(exp):
            return Value.get_nac()
        return in_fact.get(exp)
    if isinstance(exp, BinaryExp):
        op1, op2 = exp.operand1, exp.operand2
        if not (can_hold_int(op1) and can_hold_int(op2)):
            return Value.get_nac()
        v1, v2 = in_fact.get(op1), in_fact.get(op2)
        if v1.is_undef() and v2.is_undef():
            return Value.get_undef()
        if not (v1.is_constant() and v2.is_constant()):
            return Value.get_nac()
        return _evaluate_binary(exp, v1.get_constant(), v2.get_constant())
    return Value.get_nac()


# ═════════════════════════════════════════════════════════════════════════
#  PART 3: CONSTANT PROPAGATION
# ═════════════════════════════════════════════════════════════════════════
#
#  Direction:   FORWARD
#  Confluence:  MEET (pointwise meet_value)
#  Lattice:     Var → Value
#  Transfer:    out = in[def ↦ evaluate(rhs, in)]
# ═════════════════════════════════════════════════════════════════════════

class ConstantPropagation(DataflowAnalysis[CPFact]):
    """
    Intraprocedural constant propagation.

    Parameters entering the method are unknown: the boundary fact binds
    them to NAC (only the int-like ones under the default
    ``param-seeding:int-only``; every parameter under ``all``).  A call
    that assigns an int-like variable binds it to NAC.
    """

    analysis_id = "constprop"

    def __init__(self, config: Optional[AnalysisConfig] = None) -> None:
        super().__init__(config)
        self._seed_all_params = self.config.get("param-seeding") == "all"

    def is_forward(self) -> bool:
        return True

    def new_boundary_fact(self, cfg: CFG) -> CPFact:
        fact = CPFact()
        for param in cfg.ir.get_params():
            if self._seed_all_params or can_hold_int(param):
                fact.update(param, Value.get_nac())
        return fact

    def new_initial_fact(self) -> CPFact:
        return CPFact()

    def meet_into(self, fact: CPFact, target: CPFact) -> None:
        for var, value in fact.items():
            target.update(var, meet_value(value, target.get(var)))

    def transfer_node(self, node: Stmt, in_fact: CPFact, out_fact: CPFact) -> bool:
        new_out = in_fact.copy()
        lvalue = node.get_def()
        if lvalue is not None and can_hold_int(lvalue):
            if isinstance(node, AssignStmt):
                new_out.update(lvalue, evaluate(node.rvalue, in_fact))
            else:
                new_out.update(lvalue, Value.get_nac())
        return out_fact.copy_from(new_out)


# ═════════════════════════════════════════════════════════════════════════
#  PART 4: LIVE VARIABLE ANALYSIS
# ═════════════════════════════════════════════════════════════════════════
#
#  Direction:   BACKWARD
#  Confluence:  JOIN (union)
#  Lattice:     ℘(Var)
#  Transfer:    in = use ∪ (out − def)
# ═════════════════════════════════════════════════════════════════════════

class SetFact:
    """A mutable set of variables with in-place union."""

    __slots__ = ("_set",)

    def __init__(self, items: Iterable[Var] = ()) -> None:
        self._set: Set[Var] = set(items)

    def add(self, var: Var) -> bool:
        if var in self._set:
            return False
        self._set.add(var)
        return True

    def remove(self, var: Var) -> bool:
        if var not in self._set:
            return False
        self._set.discard(var)
        return True

    def union(self, other: "SetFact") -> bool:
        before = len(self._set)
        self._set |= other._set
        return len(self._set) != before

    def copy(self) -> "SetFact":
        return SetFact(self._set)

    def copy_from(self, other: "SetFact") -> bool:
        if self._set == other._set:
            return False
        self._set = set(other._set)
        return True

    def __contains__(self, var: object) -> bool:
        return var in self._set

    def __iter__(self) -> Iterator[Var]:
        return iter(sorted(self._set, key=lambda v: (v.index, v.name)))

    def __len__(self) -> int:
        return len(self._set)

    def __eq__(self, other) -> bool:
        if isinstance(other, SetFact):
            return self._set == other._set
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return "{" + ", ".join(v.name for v in self) + "}"


class LiveVariableAnalysis(DataflowAnalysis[SetFact]):
    """
    Live variable analysis.

    The result at a statement (its OUT fact) is the set of variables whose
    current value may be read on some path after the statement.
    """

    analysis_id = "livevar"

    def is_forward(self) -> bool:
        return False

    def new_boundary_fact(self, cfg: CFG) -> SetFact:
        return SetFact()

    def new_initial_fact(self) -> SetFact:
        return SetFact()

    def meet_into(self, fact: SetFact, target: SetFact) -> None:
        target.union(fact)

    def transfer_node(self, node: Stmt, in_fact: SetFact, out_fact: SetFact) -> bool:
        new_in = out_fact.copy()
        lvalue = node.get_def()
        if lvalue is not None:
            new_in.remove(lvalue)
        for use in node.get_uses():
            new_in.add(use)
        return in_fact.copy_from(new_in)
