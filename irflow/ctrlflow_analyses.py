# irflow/ctrlflow_analyses.py
"""
Control-flow analyses for irflow.

This module provides analyses that reason about which statements of a
method can matter at run time, combining the CFG with the results of
dataflow analyses from dataflow_analyses.py.

Principal analyses
------------------
- DeadCodeDetection     ← unreachable statements and dead assignments

A statement is *dead* when it is

1. **unreachable**: no path from the entry reaches it once branches whose
   condition constant propagation decides are pruned (this covers plain
   structural unreachability such as code after a ``goto``); or
2. a **dead assignment**: ``x = e`` where ``x`` is not live afterwards and
   evaluating ``e`` has no side effect.

Usage example
-------------
    from irflow.ctrlflow_analyses import detect_dead_code

    for stmt in detect_dead_code(ir):
        print(f"{ir.method_name}:{stmt.index}: dead code '{stmt}'")
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, List, Optional, Set

from .config import AnalysisConfig
from .ctrlflow_graph import CFG, EdgeKind, build_cfg
from .dataflow_analyses import (
    ConstantPropagation,
    CPFact,
    LiveVariableAnalysis,
    SetFact,
    Value,
    evaluate,
)
from .dataflow_engine import DataflowResult, solve
from .errors import ConfigError
from .ir import (
    IR,
    ArithmeticExp,
    ArithmeticOp,
    ArrayAccess,
    AssignStmt,
    CastExp,
    Exp,
    FieldAccess,
    If,
    NewExp,
    Stmt,
    SwitchStmt,
)

__all__ = [
    "CFG_ID",
    "has_no_side_effect",
    "DeadCodeDetection",
    "detect_dead_code",
]

logger = logging.getLogger(__name__)

# result-store key of the CFG
CFG_ID = "cfg"


def has_no_side_effect(rvalue: Exp) -> bool:
    """Whether evaluating *rvalue* can neither throw nor touch the heap."""
    if isinstance(rvalue, (NewExp, CastExp, FieldAccess, ArrayAccess)):
        return False
    if isinstance(rvalue, ArithmeticExp):
        return rvalue.op not in (ArithmeticOp.DIV, ArithmeticOp.REM)
    return True


class DeadCodeDetection:
    """
    Detect dead code in one method.

    :meth:`analyze` reads the CFG, the constant-propagation result and the
    liveness result from the IR's result store (keys ``"cfg"``,
    ``"constprop"`` and ``"livevar"``); :func:`detect_dead_code` computes
    and stores them first.

    The ``branch-truth`` option decides which constant conditions count as
    true: ``eq-one`` (the default) accepts only 1, ``positive`` any value
    greater than zero.
    """

    analysis_id = "deadcode"

    def __init__(self, config: Optional[AnalysisConfig] = None) -> None:
        if config is None:
            config = AnalysisConfig(self.analysis_id)
        elif config.analysis_id != self.analysis_id:
            raise ConfigError(
                f"DeadCodeDetection cannot use configuration for '{config.analysis_id}'",
            )
        self.config = config
        self._positive_is_true = config.get("branch-truth") == "positive"

    def analyze(self, ir: IR) -> List[Stmt]:
        """Return the dead statements of *ir* sorted by index."""
        cfg: CFG = ir.get_result(CFG_ID)
        constants: DataflowResult = ir.get_result(ConstantPropagation.analysis_id)
        live_vars: DataflowResult = ir.get_result(LiveVariableAnalysis.analysis_id)

        dead: Set[Stmt] = set()
        visited: Set[Stmt] = {cfg.entry}
        queue: Deque[Stmt] = deque([cfg.entry])
        while queue:
            node = queue.popleft()
            if isinstance(node, AssignStmt) and self._is_dead_assignment(node, live_vars):
                dead.add(node)
            for succ in self._live_successors(cfg, node, constants):
                if succ not in visited:
                    visited.add(succ)
                    queue.append(succ)

        for node in cfg:
            if node not in visited and not cfg.is_exit(node):
                dead.add(node)

        result = sorted(dead, key=lambda s: s.index)
        logger.debug("%s: %d dead statement(s)", ir.method_name, len(result))
        return result

    # ----- helpers ----------------------------------------------------------

    def _is_true(self, value: Value) -> bool:
        if self._positive_is_true:
            return value.get_constant() > 0
        return value.get_constant() == 1

    @staticmethod
    def _is_dead_assignment(stmt: AssignStmt, live_vars: DataflowResult) -> bool:
        live_out: SetFact = live_vars.get_out_fact(stmt)
        return stmt.lvalue not in live_out and has_no_side_effect(stmt.rvalue)

    def _live_successors(self, cfg: CFG, node: Stmt, constants: DataflowResult) -> List[Stmt]:
        edges = cfg.get_out_edges_of(node)
        if isinstance(node, If):
            in_fact: CPFact = constants.get_in_fact(node)
            value = evaluate(node.condition, in_fact)
            if value.is_constant():
                wanted = EdgeKind.IF_TRUE if self._is_true(value) else EdgeKind.IF_FALSE
                return [e.target for e in edges if e.kind is wanted]
        elif isinstance(node, SwitchStmt):
            in_fact = constants.get_in_fact(node)
            value = in_fact.get(node.var)
            if value.is_constant():
                return self._switch_targets(value.get_constant(), edges)
        return [e.target for e in edges]

    @staticmethod
    def _switch_targets(selector: int, edges) -> List[Stmt]:
        """Case targets control can reach for a constant *selector*.

        The first matching case is taken; subsequent case targets follow
        as long as the previously reached case target can fall through.
        Without a match only the default target is reached.
        """
        targets: List[Stmt] = []
        matched = False
        falling = False
        default = None
        for edge in edges:
            if edge.kind is EdgeKind.SWITCH_DEFAULT:
                default = edge.target
                continue
            if edge.kind is not EdgeKind.SWITCH_CASE:
                continue
            if (not matched and edge.case_value == selector) or falling:
                matched = True
                targets.append(edge.target)
                falling = edge.target.can_fall_through()
        if not matched and default is not None:
            targets.append(default)
        return targets


def detect_dead_code(ir: IR, config: Optional[AnalysisConfig] = None) -> List[Stmt]:
    """Build the CFG of *ir*, run constant propagation and liveness over it,
    and return the dead statements sorted by index.

    The CFG, both dataflow results and the dead-code list are stored in the
    IR's result store.
    """
    cfg = build_cfg(ir)
    ir.store_result(CFG_ID, cfg)
    ir.store_result(ConstantPropagation.analysis_id, solve(ConstantPropagation(), cfg))
    ir.store_result(LiveVariableAnalysis.analysis_id, solve(LiveVariableAnalysis(), cfg))
    detector = DeadCodeDetection(config)
    dead = detector.analyze(ir)
    ir.store_result(detector.analysis_id, dead)
    return dead
