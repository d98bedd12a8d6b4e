"""
irflow.dataflow_engine
======================

A generic fixed-point engine for intraprocedural dataflow analysis over
statement-level CFGs.

Theory
------
A dataflow analysis is defined by:

1.  A **fact** type forming a lattice; facts are mutable value objects
    exposing ``copy()``.
2.  A **direction**, forward or backward.
3.  A **boundary fact** for the entry (forward) or exit (backward) node and
    an **initial fact** for every other program point.
4.  A **meet** operator, applied in place: ``meet_into(fact, target)``
    replaces *target* by ``fact ⊓ target`` and never modifies *fact*.
5.  A **transfer function** per node, applied in place:
    ``transfer_node(node, in_fact, out_fact)`` updates OUT (forward) or IN
    (backward) and reports whether it changed.

The solvers iterate until no transfer reports a change.  Termination
follows from a finite-height lattice and monotone transfer functions; the
engine does not detect a non-monotone client, which may simply not
terminate.

Solvers
-------
``IterativeSolver``
    Whole-graph passes in node order (reverse order for backward
    analyses) until a pass changes nothing.
``WorkListSolver``
    A de-duplicated FIFO of pending nodes seeded with every node; a node
    whose transfer changed something re-enqueues its successors
    (predecessors for backward analyses).

Both compute the same fixed point; they differ only in the number of
transfers performed, which :class:`DataflowResult` records.

Public API
----------
    DataflowAnalysis    - abstract contract implemented by client analyses
    DataflowResult      - per-node IN/OUT facts, frozen after solving
    WorkList            - de-duplicated FIFO
    SolverStrategy      - iterative / worklist enum
    Solver              - abstract solver base
    IterativeSolver     - round-robin fixed-point solver
    WorkListSolver      - worklist fixed-point solver
    make_solver         - pick a solver by strategy
    solve               - convenience: make_solver(...).solve(cfg)

Usage example
-------------
::

    from irflow.ctrlflow_graph import build_cfg
    from irflow.dataflow_analyses import ConstantPropagation
    from irflow.dataflow_engine import solve

    cfg = build_cfg(ir)
    result = solve(ConstantPropagation(), cfg, strategy="iterative")
    for node in cfg:
        print(node, result.get_out_fact(node))
"""

from __future__ import annotations

import abc
import enum
import logging
from collections import OrderedDict
from typing import (
    Dict,
    Generic,
    Hashable,
    Iterable,
    Iterator,
    List,
    Optional,
    Tuple,
    TypeVar,
    Union,
)

from .config import AnalysisConfig
from .ctrlflow_graph import CFG
from .errors import ConfigError, ResultAccessError
from .ir import Stmt

__all__ = [
    "DataflowAnalysis",
    "DataflowResult",
    "WorkList",
    "SolverStrategy",
    "Solver",
    "IterativeSolver",
    "WorkListSolver",
    "make_solver",
    "solve",
]

logger = logging.getLogger(__name__)


# ===========================================================================
# TYPE VARIABLES
# ===========================================================================

F = TypeVar("F")          # Fact type
N = TypeVar("N")          # Node type
T = TypeVar("T", bound=Hashable)


# ===========================================================================
# ANALYSIS CONTRACT
# ===========================================================================

class DataflowAnalysis(abc.ABC, Generic[F]):
    """Abstract contract of an intraprocedural dataflow analysis.

    Subclasses set :attr:`analysis_id` to the id under which their options
    are declared in :data:`irflow.config.ANALYSIS_OPTIONS`.  The analysis
    holds no per-solve state, so one instance can be solved over many CFGs.
    """

    analysis_id: str = ""

    def __init__(self, config: Optional[AnalysisConfig] = None) -> None:
        if config is None:
            config = AnalysisConfig(self.analysis_id)
        elif config.analysis_id != self.analysis_id:
            raise ConfigError(
                f"{type(self).__name__} cannot use configuration for "
                f"'{config.analysis_id}'",
                details={"expected": self.analysis_id},
            )
        self.config = config

    @abc.abstractmethod
    def is_forward(self) -> bool:
        """``True`` for forward analyses, ``False`` for backward ones."""

    @abc.abstractmethod
    def new_boundary_fact(self, cfg: CFG) -> F:
        """Fact for the entry (forward) or exit (backward) of *cfg*."""

    @abc.abstractmethod
    def new_initial_fact(self) -> F:
        """Fact for every other program point before solving."""

    @abc.abstractmethod
    def meet_into(self, fact: F, target: F) -> None:
        """Replace *target* by ``fact ⊓ target``; *fact* is left untouched."""

    @abc.abstractmethod
    def transfer_node(self, node: Stmt, in_fact: F, out_fact: F) -> bool:
        """Apply the transfer function of *node*.

        Forward analyses update *out_fact* from *in_fact*; backward analyses
        update *in_fact* from *out_fact*.  Returns ``True`` iff the updated
        fact changed.
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.config})"


# ===========================================================================
# DATAFLOW RESULT
# ===========================================================================

class DataflowResult(Generic[N, F]):
    """IN and OUT facts of every node of a graph.

    A result is writable while a solver fills it in and is frozen when the
    solver returns; after that :meth:`set_in_fact` and :meth:`set_out_fact`
    raise :class:`ResultAccessError`.  The fact objects themselves are the
    solver's own and must be treated as read-only by clients.

    Attributes
    ----------
    analysis_name : str
        Name of the analysis that produced this result.
    solver_name : str
        Name of the solver that produced this result.
    transfer_count : int
        Number of node transfers the solver performed.
    passes : int
        Whole-graph passes (``IterativeSolver`` only; 0 otherwise).
    """

    def __init__(self, analysis_name: str = "", solver_name: str = "") -> None:
        self.analysis_name = analysis_name
        self.solver_name = solver_name
        self.transfer_count = 0
        self.passes = 0
        self._in_facts: Dict[N, F] = OrderedDict()
        self._out_facts: Dict[N, F] = OrderedDict()
        self._frozen = False

    # ----- lifecycle --------------------------------------------------------

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    def _check_writable(self, node: N) -> None:
        if self._frozen:
            raise ResultAccessError(
                f"cannot modify a solved result (node {node!r})",
                details={"analysis": self.analysis_name},
            )

    # ----- access -----------------------------------------------------------

    def get_in_fact(self, node: N) -> F:
        try:
            return self._in_facts[node]
        except KeyError:
            raise ResultAccessError(
                f"no IN fact for {node!r}",
                details={"analysis": self.analysis_name},
            ) from None

    def get_out_fact(self, node: N) -> F:
        try:
            return self._out_facts[node]
        except KeyError:
            raise ResultAccessError(
                f"no OUT fact for {node!r}",
                details={"analysis": self.analysis_name},
            ) from None

    def set_in_fact(self, node: N, fact: F) -> None:
        self._check_writable(node)
        self._in_facts[node] = fact

    def set_out_fact(self, node: N, fact: F) -> None:
        self._check_writable(node)
        self._out_facts[node] = fact

    def get_result(self, node: N) -> F:
        """The analysis result at *node*, i.e. its OUT fact."""
        return self.get_out_fact(node)

    def nodes(self) -> List[N]:
        return list(self._in_facts)

    def items_in(self) -> Iterable[Tuple[N, F]]:
        """Iterate over ``(node, in_fact)`` pairs."""
        return self._in_facts.items()

    def items_out(self) -> Iterable[Tuple[N, F]]:
        """Iterate over ``(node, out_fact)`` pairs."""
        return self._out_facts.items()

    def __contains__(self, node: object) -> bool:
        return node in self._in_facts

    def __len__(self) -> int:
        return len(self._in_facts)

    def __repr__(self) -> str:
        return (f"DataflowResult({self.analysis_name!r}, solver={self.solver_name!r}, "
                f"nodes={len(self)}, transfers={self.transfer_count})")


# ===========================================================================
# WORKLIST
# ===========================================================================

class WorkList(Generic[T]):
    """FIFO queue that holds each item at most once."""

    def __init__(self, items: Iterable[T] = ()) -> None:
        self._queue: "OrderedDict[T, None]" = OrderedDict()
        for item in items:
            self.add(item)

    def add(self, item: T) -> bool:
        """Enqueue *item* unless it is already pending; return whether it was added."""
        if item in self._queue:
            return False
        self._queue[item] = None
        return True

    def pop(self) -> T:
        item, _ = self._queue.popitem(last=False)
        return item

    def __contains__(self, item: object) -> bool:
        return item in self._queue

    def __len__(self) -> int:
        return len(self._queue)

    def __bool__(self) -> bool:
        return bool(self._queue)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._queue))


# ===========================================================================
# SOLVERS
# ===========================================================================

class SolverStrategy(enum.Enum):
    """Fixed-point iteration strategy."""
    ITERATIVE = "iterative"
    WORKLIST = "worklist"

    @classmethod
    def from_name(cls, name: Union[str, "SolverStrategy"]) -> "SolverStrategy":
        if isinstance(name, cls):
            return name
        for member in cls:
            if member.value == name:
                return member
        raise ConfigError(
            f"unknown solver strategy {name!r}",
            details={"choices": [m.value for m in cls]},
        )


class Solver(abc.ABC, Generic[F]):
    """Template for intraprocedural solvers.

    :meth:`solve` validates the CFG, creates a fresh result, seeds it with
    boundary and initial facts, runs the direction-specific fixed-point
    loop and freezes the result.
    """

    strategy: SolverStrategy

    def __init__(self, analysis: DataflowAnalysis[F]) -> None:
        self.analysis = analysis

    @property
    def name(self) -> str:
        return type(self).__name__

    def solve(self, cfg: CFG) -> DataflowResult[Stmt, F]:
        cfg.validate()
        result: DataflowResult[Stmt, F] = DataflowResult(
            type(self.analysis).__name__, self.name)
        self._initialize(cfg, result)
        if self.analysis.is_forward():
            self._do_solve_forward(cfg, result)
        else:
            self._do_solve_backward(cfg, result)
        result.freeze()
        logger.debug(
            "%s/%s on %s: %d transfers, %d passes",
            result.analysis_name, self.name, cfg.ir.method_name,
            result.transfer_count, result.passes,
        )
        return result

    def _initialize(self, cfg: CFG, result: DataflowResult[Stmt, F]) -> None:
        analysis = self.analysis
        for node in cfg:
            result.set_in_fact(node, analysis.new_initial_fact())
            result.set_out_fact(node, analysis.new_initial_fact())
        if analysis.is_forward():
            result.set_out_fact(cfg.entry, analysis.new_boundary_fact(cfg))
        else:
            result.set_in_fact(cfg.exit, analysis.new_boundary_fact(cfg))

    # ----- single-node steps shared by the strategies -----------------------

    def _step_forward(self, cfg: CFG, node: Stmt, result: DataflowResult[Stmt, F]) -> bool:
        in_fact = result.get_in_fact(node)
        for pred in cfg.get_preds_of(node):
            self.analysis.meet_into(result.get_out_fact(pred), in_fact)
        result.transfer_count += 1
        return self.analysis.transfer_node(node, in_fact, result.get_out_fact(node))

    def _step_backward(self, cfg: CFG, node: Stmt, result: DataflowResult[Stmt, F]) -> bool:
        out_fact = result.get_out_fact(node)
        for succ in cfg.get_succs_of(node):
            self.analysis.meet_into(result.get_in_fact(succ), out_fact)
        result.transfer_count += 1
        return self.analysis.transfer_node(node, result.get_in_fact(node), out_fact)

    @abc.abstractmethod
    def _do_solve_forward(self, cfg: CFG, result: DataflowResult[Stmt, F]) -> None:
        ...

    @abc.abstractmethod
    def _do_solve_backward(self, cfg: CFG, result: DataflowResult[Stmt, F]) -> None:
        ...


class IterativeSolver(Solver[F]):
    """Round-robin solver: repeat whole-graph passes until nothing changes."""

    strategy = SolverStrategy.ITERATIVE

    def _do_solve_forward(self, cfg: CFG, result: DataflowResult[Stmt, F]) -> None:
        changed = True
        while changed:
            changed = False
            result.passes += 1
            for node in cfg:
                if cfg.is_entry(node):
                    continue
                if self._step_forward(cfg, node, result):
                    changed = True

    def _do_solve_backward(self, cfg: CFG, result: DataflowResult[Stmt, F]) -> None:
        nodes = list(reversed(cfg.nodes()))
        changed = True
        while changed:
            changed = False
            result.passes += 1
            for node in nodes:
                if cfg.is_exit(node):
                    continue
                if self._step_backward(cfg, node, result):
                    changed = True


class WorkListSolver(Solver[F]):
    """Worklist solver over a de-duplicated FIFO."""

    strategy = SolverStrategy.WORKLIST

    def _do_solve_forward(self, cfg: CFG, result: DataflowResult[Stmt, F]) -> None:
        worklist: WorkList[Stmt] = WorkList(n for n in cfg if not cfg.is_entry(n))
        while worklist:
            node = worklist.pop()
            if self._step_forward(cfg, node, result):
                for succ in cfg.get_succs_of(node):
                    worklist.add(succ)

    def _do_solve_backward(self, cfg: CFG, result: DataflowResult[Stmt, F]) -> None:
        worklist: WorkList[Stmt] = WorkList(
            n for n in reversed(cfg.nodes()) if not cfg.is_exit(n))
        while worklist:
            node = worklist.pop()
            if self._step_backward(cfg, node, result):
                for pred in cfg.get_preds_of(node):
                    worklist.add(pred)


_SOLVERS = {
    SolverStrategy.ITERATIVE: IterativeSolver,
    SolverStrategy.WORKLIST: WorkListSolver,
}


def make_solver(
    analysis: DataflowAnalysis[F],
    strategy: Union[str, SolverStrategy, None] = None,
) -> Solver[F]:
    """Return a solver for *analysis*.

    When *strategy* is omitted the analysis' ``solver`` option decides
    (where it declares one); otherwise the worklist solver is used.
    """
    if strategy is None:
        strategy = analysis.config.resolved().get("solver", SolverStrategy.WORKLIST.value)
    return _SOLVERS[SolverStrategy.from_name(strategy)](analysis)


def solve(
    analysis: DataflowAnalysis[F],
    cfg: CFG,
    strategy: Union[str, SolverStrategy, None] = None,
) -> DataflowResult[Stmt, F]:
    """Solve *analysis* over *cfg* and return the frozen result."""
    return make_solver(analysis, strategy).solve(cfg)
