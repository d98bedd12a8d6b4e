"""
irflow.ir
=========

A three-address, statement-level intermediate representation of method
bodies.

The IR is deliberately small: it contains exactly the expression and
statement forms the analyses distinguish.  Every operand of a binary
expression is a :class:`Var`; jumps refer to their target statements
directly.

Types
-----
    PrimitiveType   - byte, short, int, char, boolean, long, float, double
    ClassType       - reference to a named class
    ArrayType       - array of an element type
    VOID            - the ``void`` return type

Expressions
-----------
    Var, IntLiteral, LongLiteral, FloatLiteral, StringLiteral, NullLiteral,
    ArithmeticExp, BitwiseExp, ConditionExp, ShiftExp, NegExp,
    NewExp, CastExp, InstanceFieldAccess, StaticFieldAccess, ArrayAccess,
    InvokeExp

Statements
----------
    Nop, AssignStmt, Invoke, If, Goto, SwitchStmt, Return

Method bodies
-------------
    IR              - parameters, statements, return variables and a
                      per-body store of analysis results
    IRBuilder       - appends statements, binds labels, resolves jumps

Typical usage::

    b = IRBuilder("foo")
    x = b.new_var("x", PrimitiveType.INT)
    y = b.new_var("y", PrimitiveType.INT)
    b.assign(x, IntLiteral(1))
    b.assign(y, IntLiteral(2))
    b.if_(ConditionExp(ConditionOp.LT, x, y), "then")
    b.ret()
    b.label("then")
    b.ret(x)
    ir = b.build()
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    ClassVar,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from .errors import IRBuildError, ResultAccessError

if TYPE_CHECKING:
    from .hierarchy import JMethod, MethodRef

__all__ = [
    "PrimitiveType", "ClassType", "ArrayType", "VOID", "can_hold_int",
    "Exp", "Var", "Literal", "IntLiteral", "LongLiteral", "FloatLiteral",
    "StringLiteral", "NullLiteral",
    "ArithmeticOp", "BitwiseOp", "ConditionOp", "ShiftOp",
    "BinaryExp", "ArithmeticExp", "BitwiseExp", "ConditionExp", "ShiftExp",
    "NegExp", "NewExp", "CastExp", "FieldAccess", "InstanceFieldAccess",
    "StaticFieldAccess", "ArrayAccess", "InvokeKind", "InvokeExp",
    "binary_exp",
    "Stmt", "Nop", "DefinitionStmt", "AssignStmt", "Invoke", "JumpStmt",
    "If", "Goto", "SwitchStmt", "Return",
    "IR", "IRBuilder",
]


# ═══════════════════════════════════════════════════════════════════════════
#  TYPES
# ═══════════════════════════════════════════════════════════════════════════

class PrimitiveType(enum.Enum):
    BYTE = "byte"
    SHORT = "short"
    INT = "int"
    CHAR = "char"
    BOOLEAN = "boolean"
    LONG = "long"
    FLOAT = "float"
    DOUBLE = "double"

    @property
    def is_int_like(self) -> bool:
        """Values of this type fit in a JVM ``int``."""
        return self in _INT_LIKE

    def __str__(self) -> str:
        return self.value


_INT_LIKE = frozenset({
    PrimitiveType.BYTE,
    PrimitiveType.SHORT,
    PrimitiveType.INT,
    PrimitiveType.CHAR,
    PrimitiveType.BOOLEAN,
})


@dataclass(frozen=True)
class ClassType:
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class ArrayType:
    element: "Type"

    def __str__(self) -> str:
        return f"{self.element}[]"


class _VoidType:
    _instance: Optional["_VoidType"] = None

    def __new__(cls) -> "_VoidType":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __str__(self) -> str:
        return "void"

    def __repr__(self) -> str:
        return "VOID"


VOID = _VoidType()

Type = Union[PrimitiveType, ClassType, ArrayType, _VoidType]


def can_hold_int(var: "Var") -> bool:
    """Return ``True`` iff *var* is of a type whose values fit in an int."""
    t = var.type
    return isinstance(t, PrimitiveType) and t.is_int_like


# ═══════════════════════════════════════════════════════════════════════════
#  EXPRESSIONS
# ═══════════════════════════════════════════════════════════════════════════

class Exp:
    """Base class of all expressions."""

    def get_uses(self) -> List["Var"]:
        """Variables read by evaluating this expression."""
        return []


class Var(Exp):
    """A local variable (including parameters, ``this`` and temporaries).

    Variables compare by identity: two ``Var`` objects with the same name
    are different variables.
    """

    __slots__ = ("name", "type", "index")

    def __init__(self, name: str, var_type: Type, index: int = -1) -> None:
        self.name = name
        self.type = var_type
        self.index = index

    def get_uses(self) -> List["Var"]:
        return [self]

    def __repr__(self) -> str:
        return self.name

    __str__ = __repr__


class Literal(Exp):
    """Base class of literal constants."""


@dataclass(frozen=True)
class IntLiteral(Literal):
    value: int

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class LongLiteral(Literal):
    value: int

    def __str__(self) -> str:
        return f"{self.value}L"


@dataclass(frozen=True)
class FloatLiteral(Literal):
    value: float

    def __str__(self) -> str:
        return repr(self.value)


@dataclass(frozen=True)
class StringLiteral(Literal):
    value: str

    def __str__(self) -> str:
        return f'"{self.value}"'


@dataclass(frozen=True)
class NullLiteral(Literal):

    def __str__(self) -> str:
        return "null"


# ---------- binary operators ------------------------------------------------

class ArithmeticOp(enum.Enum):
    ADD = "+"
    SUB = "-"
    MUL = "*"
    DIV = "/"
    REM = "%"


class BitwiseOp(enum.Enum):
    OR = "|"
    AND = "&"
    XOR = "^"


class ConditionOp(enum.Enum):
    EQ = "=="
    NE = "!="
    LT = "<"
    GT = ">"
    LE = "<="
    GE = ">="


class ShiftOp(enum.Enum):
    SHL = "<<"
    SHR = ">>"
    USHR = ">>>"


@dataclass(frozen=True)
class BinaryExp(Exp):
    """``operand1 op operand2`` where both operands are variables."""

    op: enum.Enum
    operand1: Var
    operand2: Var

    _OP_TYPE: ClassVar[Optional[type]] = None

    def __post_init__(self) -> None:
        if self._OP_TYPE is not None and not isinstance(self.op, self._OP_TYPE):
            raise TypeError(
                f"{type(self).__name__} does not accept operator {self.op!r}"
            )

    def get_uses(self) -> List[Var]:
        return [self.operand1, self.operand2]

    def __str__(self) -> str:
        return f"{self.operand1} {self.op.value} {self.operand2}"


@dataclass(frozen=True)
class ArithmeticExp(BinaryExp):
    _OP_TYPE = ArithmeticOp


@dataclass(frozen=True)
class BitwiseExp(BinaryExp):
    _OP_TYPE = BitwiseOp


@dataclass(frozen=True)
class ConditionExp(BinaryExp):
    _OP_TYPE = ConditionOp


@dataclass(frozen=True)
class ShiftExp(BinaryExp):
    _OP_TYPE = ShiftOp


_SYMBOL_TO_BINARY: Dict[str, Tuple[type, enum.Enum]] = {}
for _cls, _ops in (
    (ArithmeticExp, ArithmeticOp),
    (BitwiseExp, BitwiseOp),
    (ConditionExp, ConditionOp),
    (ShiftExp, ShiftOp),
):
    for _op in _ops:
        _SYMBOL_TO_BINARY[_op.value] = (_cls, _op)
del _cls, _ops, _op


def binary_exp(symbol: str, operand1: Var, operand2: Var) -> BinaryExp:
    """Build the binary expression for an operator symbol such as ``"+"``."""
    try:
        cls, op = _SYMBOL_TO_BINARY[symbol]
    except KeyError:
        raise IRBuildError(f"unknown binary operator '{symbol}'") from None
    return cls(op, operand1, operand2)


# ---------- other expressions -----------------------------------------------

@dataclass(frozen=True)
class NegExp(Exp):
    operand: Var

    def get_uses(self) -> List[Var]:
        return [self.operand]

    def __str__(self) -> str:
        return f"-{self.operand}"


@dataclass(frozen=True)
class NewExp(Exp):
    """Object or array allocation."""

    type: Type
    length: Optional[Var] = None

    def get_uses(self) -> List[Var]:
        return [self.length] if self.length is not None else []

    def __str__(self) -> str:
        if self.length is not None:
            return f"new {self.type}[{self.length}]"
        return f"new {self.type}"


@dataclass(frozen=True)
class CastExp(Exp):
    value: Var
    cast_type: Type

    def get_uses(self) -> List[Var]:
        return [self.value]

    def __str__(self) -> str:
        return f"({self.cast_type}) {self.value}"


class FieldAccess(Exp):
    """Base class of field reads."""


@dataclass(frozen=True)
class InstanceFieldAccess(FieldAccess):
    base: Var
    field_name: str
    field_type: Type = PrimitiveType.INT

    def get_uses(self) -> List[Var]:
        return [self.base]

    def __str__(self) -> str:
        return f"{self.base}.{self.field_name}"


@dataclass(frozen=True)
class StaticFieldAccess(FieldAccess):
    class_name: str
    field_name: str
    field_type: Type = PrimitiveType.INT

    def __str__(self) -> str:
        return f"{self.class_name}.{self.field_name}"


@dataclass(frozen=True)
class ArrayAccess(Exp):
    base: Var
    index: Var

    def get_uses(self) -> List[Var]:
        return [self.base, self.index]

    def __str__(self) -> str:
        return f"{self.base}[{self.index}]"


class InvokeKind(enum.Enum):
    """Dispatch kind of a call site."""

    STATIC = "static"
    SPECIAL = "special"
    VIRTUAL = "virtual"
    INTERFACE = "interface"


@dataclass(frozen=True)
class InvokeExp(Exp):
    """A method invocation ``base.ref(args)`` (``base`` is None for static)."""

    kind: InvokeKind
    method_ref: "MethodRef"
    args: Tuple[Var, ...] = ()
    base: Optional[Var] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "args", tuple(self.args))

    def get_uses(self) -> List[Var]:
        uses = [self.base] if self.base is not None else []
        uses.extend(self.args)
        return uses

    def __str__(self) -> str:
        args = ", ".join(str(a) for a in self.args)
        recv = f"{self.base}." if self.base is not None else ""
        return f"invoke{self.kind.value} {recv}{self.method_ref}({args})"


# ═══════════════════════════════════════════════════════════════════════════
#  STATEMENTS
# ═══════════════════════════════════════════════════════════════════════════

class Stmt:
    """Base class of statements.

    Statements are the nodes of the control-flow graphs.  They hash by
    identity; ``index`` gives their position in program order and is the
    sort key for deterministic output.
    """

    def __init__(self) -> None:
        self.index: int = -1
        self.line: int = -1

    def get_def(self) -> Optional[Var]:
        """The variable this statement assigns, if any."""
        return None

    def get_uses(self) -> List[Var]:
        return []

    def can_fall_through(self) -> bool:
        """Whether control may continue with the next statement in order."""
        return True

    def _text(self) -> str:
        return type(self).__name__.lower()

    def __repr__(self) -> str:
        return f"{self.index}@{self._text()}"

    __str__ = __repr__


class Nop(Stmt):
    """No-op; also used for the synthetic entry and exit of a CFG."""

    def __init__(self, tag: str = "nop") -> None:
        super().__init__()
        self.tag = tag

    def _text(self) -> str:
        return self.tag


class DefinitionStmt(Stmt):
    """Statements of the form ``lvalue = rvalue``."""

    lvalue: Optional[Var]
    rvalue: Exp

    def get_def(self) -> Optional[Var]:
        return self.lvalue


class AssignStmt(DefinitionStmt):

    def __init__(self, lvalue: Var, rvalue: Exp) -> None:
        super().__init__()
        self.lvalue = lvalue
        self.rvalue = rvalue

    def get_uses(self) -> List[Var]:
        return self.rvalue.get_uses()

    def _text(self) -> str:
        return f"{self.lvalue} = {self.rvalue}"


class Invoke(DefinitionStmt):
    """A call site, optionally assigning the call's result."""

    def __init__(self, result: Optional[Var], invoke_exp: InvokeExp) -> None:
        super().__init__()
        self.lvalue = result
        self.rvalue = invoke_exp
        self.container: Optional["JMethod"] = None

    @property
    def result(self) -> Optional[Var]:
        return self.lvalue

    @property
    def invoke_exp(self) -> InvokeExp:
        return self.rvalue  # type: ignore[return-value]

    @property
    def method_ref(self) -> "MethodRef":
        return self.invoke_exp.method_ref

    @property
    def kind(self) -> InvokeKind:
        return self.invoke_exp.kind

    def is_static(self) -> bool:
        return self.kind is InvokeKind.STATIC

    def is_special(self) -> bool:
        return self.kind is InvokeKind.SPECIAL

    def is_virtual(self) -> bool:
        return self.kind is InvokeKind.VIRTUAL

    def is_interface(self) -> bool:
        return self.kind is InvokeKind.INTERFACE

    def get_uses(self) -> List[Var]:
        return self.invoke_exp.get_uses()

    def _text(self) -> str:
        if self.lvalue is not None:
            return f"{self.lvalue} = {self.invoke_exp}"
        return str(self.invoke_exp)


class JumpStmt(Stmt):
    """Statements that transfer control to explicit targets."""

    def get_targets(self) -> List[Stmt]:
        raise NotImplementedError


class If(JumpStmt):
    """``if (condition) goto target``; otherwise falls through."""

    def __init__(self, condition: ConditionExp, target: Optional[Stmt] = None) -> None:
        super().__init__()
        self.condition = condition
        self.target = target

    def get_targets(self) -> List[Stmt]:
        return [self.target] if self.target is not None else []

    def get_uses(self) -> List[Var]:
        return self.condition.get_uses()

    def _text(self) -> str:
        dest = self.target.index if self.target is not None else "?"
        return f"if ({self.condition}) goto {dest}"


class Goto(JumpStmt):

    def __init__(self, target: Optional[Stmt] = None) -> None:
        super().__init__()
        self.target = target

    def get_targets(self) -> List[Stmt]:
        return [self.target] if self.target is not None else []

    def can_fall_through(self) -> bool:
        return False

    def _text(self) -> str:
        dest = self.target.index if self.target is not None else "?"
        return f"goto {dest}"


class SwitchStmt(JumpStmt):
    """Multi-way branch on an int variable.

    ``case_values[i]`` jumps to ``case_targets[i]``; anything else jumps to
    ``default_target``.  Case order is declaration order.
    """

    def __init__(
        self,
        var: Var,
        case_values: Sequence[int] = (),
        case_targets: Sequence[Optional[Stmt]] = (),
        default_target: Optional[Stmt] = None,
    ) -> None:
        super().__init__()
        self.var = var
        self.case_values: List[int] = list(case_values)
        self.case_targets: List[Optional[Stmt]] = list(case_targets)
        self.default_target = default_target

    def get_case_target_pairs(self) -> List[Tuple[int, Stmt]]:
        return list(zip(self.case_values, self.case_targets))  # type: ignore[arg-type]

    def get_targets(self) -> List[Stmt]:
        targets = [t for t in self.case_targets if t is not None]
        if self.default_target is not None:
            targets.append(self.default_target)
        return targets

    def get_uses(self) -> List[Var]:
        return [self.var]

    def can_fall_through(self) -> bool:
        return False

    def _text(self) -> str:
        cases = ", ".join(
            f"{v}->{t.index if t is not None else '?'}"
            for v, t in zip(self.case_values, self.case_targets)
        )
        dflt = self.default_target.index if self.default_target is not None else "?"
        return f"switch ({self.var}) {{{cases}, default->{dflt}}}"


class Return(Stmt):

    def __init__(self, value: Optional[Var] = None) -> None:
        super().__init__()
        self.value = value

    def get_uses(self) -> List[Var]:
        return [self.value] if self.value is not None else []

    def can_fall_through(self) -> bool:
        return False

    def _text(self) -> str:
        return f"return {self.value}" if self.value is not None else "return"


# ═══════════════════════════════════════════════════════════════════════════
#  METHOD BODIES
# ═══════════════════════════════════════════════════════════════════════════

class IR:
    """The body of one method.

    Besides the code itself an ``IR`` keeps a small store of analysis
    results keyed by analysis id, so that client analyses can consume
    results computed earlier (e.g. dead-code detection reading the
    constant-propagation and liveness results).
    """

    def __init__(
        self,
        method_name: str,
        params: Sequence[Var],
        stmts: Sequence[Stmt],
        this: Optional[Var] = None,
        variables: Optional[Sequence[Var]] = None,
    ) -> None:
        self.method_name = method_name
        self.method: Optional["JMethod"] = None
        self._params: List[Var] = list(params)
        self._stmts: List[Stmt] = list(stmts)
        self._this = this
        self._vars: List[Var] = list(variables) if variables is not None else []
        self._return_vars: List[Var] = []
        for stmt in self._stmts:
            if isinstance(stmt, Return) and stmt.value is not None:
                if stmt.value not in self._return_vars:
                    self._return_vars.append(stmt.value)
        self._results: Dict[str, Any] = {}

    # ----- code -------------------------------------------------------------

    def get_params(self) -> List[Var]:
        return list(self._params)

    def get_param(self, i: int) -> Var:
        return self._params[i]

    def get_this(self) -> Optional[Var]:
        return self._this

    def get_vars(self) -> List[Var]:
        return list(self._vars)

    def get_return_vars(self) -> List[Var]:
        return list(self._return_vars)

    def get_stmts(self) -> List[Stmt]:
        return list(self._stmts)

    def get_stmt(self, index: int) -> Stmt:
        return self._stmts[index]

    def invokes(self) -> Iterator[Invoke]:
        """All call sites in program order."""
        for stmt in self._stmts:
            if isinstance(stmt, Invoke):
                yield stmt

    def __iter__(self) -> Iterator[Stmt]:
        return iter(self._stmts)

    def __len__(self) -> int:
        return len(self._stmts)

    # ----- result store -----------------------------------------------------

    def store_result(self, analysis_id: str, result: Any) -> None:
        self._results[analysis_id] = result

    def has_result(self, analysis_id: str) -> bool:
        return analysis_id in self._results

    def get_result(self, analysis_id: str) -> Any:
        try:
            return self._results[analysis_id]
        except KeyError:
            raise ResultAccessError(
                f"no '{analysis_id}' result stored for {self.method_name}",
                details={"available": sorted(self._results)},
            ) from None

    def __repr__(self) -> str:
        return (f"IR({self.method_name!r}, params={len(self._params)}, "
                f"stmts={len(self._stmts)})")


class IRBuilder:
    """Incremental construction of an :class:`IR`.

    Labels name the *next* appended statement and may be used as jump
    targets before they are defined; :meth:`build` resolves them and
    assigns statement indices.
    """

    def __init__(self, method_name: str) -> None:
        self.method_name = method_name
        self._stmts: List[Stmt] = []
        self._params: List[Var] = []
        self._vars: List[Var] = []
        self._this: Optional[Var] = None
        self._labels: Dict[str, int] = {}
        self._pending_labels: List[str] = []
        # statement -> unresolved label(s), filled in by build()
        self._fixups: List[Tuple[Stmt, Any]] = []
        self._built = False

    # ----- variables --------------------------------------------------------

    def new_var(self, name: str, var_type: Type = PrimitiveType.INT) -> Var:
        var = Var(name, var_type, index=len(self._vars))
        self._vars.append(var)
        return var

    def new_param(self, name: str, var_type: Type = PrimitiveType.INT) -> Var:
        var = self.new_var(name, var_type)
        self._params.append(var)
        return var

    def new_this(self, var_type: Type) -> Var:
        self._this = self.new_var("this", var_type)
        return self._this

    # ----- statements -------------------------------------------------------

    def label(self, name: str) -> "IRBuilder":
        if name in self._labels or name in self._pending_labels:
            raise IRBuildError(f"duplicate label '{name}'",
                               details={"method": self.method_name})
        self._pending_labels.append(name)
        return self

    def append(self, stmt: Stmt) -> Stmt:
        if self._built:
            raise IRBuildError(f"IR for {self.method_name} already built")
        for name in self._pending_labels:
            self._labels[name] = len(self._stmts)
        self._pending_labels.clear()
        self._stmts.append(stmt)
        return stmt

    def nop(self) -> Nop:
        return self.append(Nop())  # type: ignore[return-value]

    def assign(self, lvalue: Var, rvalue: Exp) -> AssignStmt:
        return self.append(AssignStmt(lvalue, rvalue))  # type: ignore[return-value]

    def const(self, lvalue: Var, value: int) -> AssignStmt:
        return self.assign(lvalue, IntLiteral(value))

    def binary(self, lvalue: Var, symbol: str, op1: Var, op2: Var) -> AssignStmt:
        return self.assign(lvalue, binary_exp(symbol, op1, op2))

    def invoke(
        self,
        result: Optional[Var],
        kind: InvokeKind,
        method_ref: "MethodRef",
        args: Sequence[Var] = (),
        base: Optional[Var] = None,
    ) -> Invoke:
        exp = InvokeExp(kind, method_ref, tuple(args), base)
        return self.append(Invoke(result, exp))  # type: ignore[return-value]

    def if_(self, condition: Union[ConditionExp, Tuple[str, Var, Var]],
            target: str) -> If:
        if isinstance(condition, tuple):
            symbol, op1, op2 = condition
            condition = binary_exp(symbol, op1, op2)  # type: ignore[assignment]
            if not isinstance(condition, ConditionExp):
                raise IRBuildError(f"'{symbol}' is not a condition operator")
        stmt = If(condition)  # type: ignore[arg-type]
        self._fixups.append((stmt, target))
        return self.append(stmt)  # type: ignore[return-value]

    def goto(self, target: str) -> Goto:
        stmt = Goto()
        self._fixups.append((stmt, target))
        return self.append(stmt)  # type: ignore[return-value]

    def switch(self, var: Var, cases: Mapping[int, str], default: str) -> SwitchStmt:
        stmt = SwitchStmt(var, list(cases.keys()), [None] * len(cases))
        self._fixups.append((stmt, (list(cases.values()), default)))
        return self.append(stmt)  # type: ignore[return-value]

    def ret(self, value: Optional[Var] = None) -> Return:
        return self.append(Return(value))  # type: ignore[return-value]

    # ----- finish -----------------------------------------------------------

    def _resolve(self, name: str) -> Stmt:
        if name not in self._labels:
            raise IRBuildError(f"undefined label '{name}'",
                               details={"method": self.method_name})
        return self._stmts[self._labels[name]]

    def build(self) -> IR:
        """Resolve labels, number statements and return the finished IR."""
        if self._pending_labels:
            raise IRBuildError(
                f"label(s) {self._pending_labels} do not precede a statement",
                details={"method": self.method_name},
            )
        if not self._stmts:
            raise IRBuildError(f"method {self.method_name} has an empty body")

        for stmt, ref in self._fixups:
            if isinstance(stmt, SwitchStmt):
                case_labels, default = ref
                stmt.case_targets = [self._resolve(n) for n in case_labels]
                stmt.default_target = self._resolve(default)
            else:
                stmt.target = self._resolve(ref)  # type: ignore[attr-defined]

        for i, stmt in enumerate(self._stmts):
            stmt.index = i

        self._built = True
        return IR(self.method_name, self._params, self._stmts,
                  this=self._this, variables=self._vars)
