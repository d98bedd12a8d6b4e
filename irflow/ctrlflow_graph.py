"""
irflow.ctrlflow_graph
=====================

Statement-level intraprocedural Control Flow Graphs.

Every statement of an :class:`~irflow.ir.IR` becomes one node.  Two
synthetic :class:`~irflow.ir.Nop` nodes are added: the entry (index
``-1``) and the exit (index ``len(stmts)``).  Edges carry a kind so that
clients can tell the two arms of an ``if`` or the cases of a ``switch``
apart.

Public API
----------
    EdgeKind        - classification of a CFG edge
    CFGEdge         - a directed, kinded edge between two statements
    CFG             - the control flow graph of one method
    build_cfg       - derive the CFG of an IR
    cfg_summary     - multi-line human-readable dump

Typical usage::

    from irflow.ctrlflow_graph import build_cfg

    cfg = build_cfg(ir)
    for node in cfg:
        print(node, [str(e) for e in cfg.get_out_edges_of(node)])

Edges produced by :func:`build_cfg`
-----------------------------------
* entry → first statement: ``ENTRY``
* ``If``: ``IF_TRUE`` to the target, ``IF_FALSE`` to the next statement
* ``Goto``: ``GOTO`` to the target
* ``SwitchStmt``: one ``SWITCH_CASE`` per case (declaration order), then
  ``SWITCH_DEFAULT``
* ``Return``: ``RETURN`` to the exit
* anything else: ``FALL_THROUGH`` to the next statement (the exit after
  the last statement)
"""

from __future__ import annotations

import enum
import logging
from typing import Dict, Iterator, List, Optional, Set

from .errors import MalformedGraphError
from .ir import IR, Goto, If, Nop, Return, Stmt, SwitchStmt

__all__ = [
    "EdgeKind",
    "CFGEdge",
    "CFG",
    "build_cfg",
    "cfg_summary",
]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Edge kinds
# ---------------------------------------------------------------------------

class EdgeKind(enum.Enum):
    """Classification of a CFG edge."""

    ENTRY = "entry"
    FALL_THROUGH = "fall-through"
    GOTO = "goto"
    IF_TRUE = "if-true"
    IF_FALSE = "if-false"
    SWITCH_CASE = "switch-case"
    SWITCH_DEFAULT = "switch-default"
    RETURN = "return"
    EXCEPTION = "exception"     # reserved; never produced by build_cfg

    @property
    def is_switch(self) -> bool:
        return self in (EdgeKind.SWITCH_CASE, EdgeKind.SWITCH_DEFAULT)


# ---------------------------------------------------------------------------
# CFGEdge
# ---------------------------------------------------------------------------

class CFGEdge:
    """A directed edge in the CFG.

    Attributes
    ----------
    source : Stmt
    target : Stmt
    kind : EdgeKind
    case_value : int or None
        The case constant of a ``SWITCH_CASE`` edge.
    """

    __slots__ = ("source", "target", "kind", "case_value")

    def __init__(
        self,
        source: Stmt,
        target: Stmt,
        kind: EdgeKind = EdgeKind.FALL_THROUGH,
        case_value: Optional[int] = None,
    ) -> None:
        self.source = source
        self.target = target
        self.kind = kind
        self.case_value = case_value

    def __repr__(self) -> str:
        label = self.kind.value
        if self.case_value is not None:
            label = f"{label}({self.case_value})"
        return f"CFGEdge({self.source.index} -> {self.target.index}, {label})"

    def __hash__(self) -> int:
        return hash((id(self.source), id(self.target), self.kind, self.case_value))

    def __eq__(self, other) -> bool:
        if isinstance(other, CFGEdge):
            return (
                self.source is other.source
                and self.target is other.target
                and self.kind == other.kind
                and self.case_value == other.case_value
            )
        return NotImplemented


# ---------------------------------------------------------------------------
# CFG
# ---------------------------------------------------------------------------

class CFG:
    """Intraprocedural control flow graph for a single method.

    Attributes
    ----------
    ir : IR
        The method body this CFG represents.
    entry : Nop
        Synthetic entry node (index ``-1``).
    exit : Nop
        Synthetic exit node (index ``len(ir)``).

    Nodes iterate in index order: entry, statements, exit.
    """

    def __init__(self, ir: IR) -> None:
        self.ir = ir
        self.entry = Nop("entry")
        self.entry.index = -1
        self.exit = Nop("exit")
        self.exit.index = len(ir)
        self._nodes: List[Stmt] = [self.entry] + ir.get_stmts() + [self.exit]
        self._node_set: Set[Stmt] = set(self._nodes)
        self._out_edges: Dict[Stmt, List[CFGEdge]] = {n: [] for n in self._nodes}
        self._in_edges: Dict[Stmt, List[CFGEdge]] = {n: [] for n in self._nodes}

    @property
    def method(self):
        return self.ir.method

    # ----- graph mutation ---------------------------------------------------

    def add_edge(
        self,
        source: Stmt,
        target: Stmt,
        kind: EdgeKind = EdgeKind.FALL_THROUGH,
        case_value: Optional[int] = None,
    ) -> CFGEdge:
        """Create an edge, register it, and wire up predecessor/successor lists."""
        for end in (source, target):
            if end not in self._node_set:
                raise MalformedGraphError(
                    f"edge endpoint {end!r} is not a node of this CFG",
                    details={"method": self.ir.method_name},
                )
        edge = CFGEdge(source, target, kind, case_value)
        self._out_edges[source].append(edge)
        self._in_edges[target].append(edge)
        return edge

    # ----- queries ----------------------------------------------------------

    def is_entry(self, node: Stmt) -> bool:
        return node is self.entry

    def is_exit(self, node: Stmt) -> bool:
        return node is self.exit

    def has_node(self, node: Stmt) -> bool:
        return node in self._node_set

    def get_out_edges_of(self, node: Stmt) -> List[CFGEdge]:
        return list(self._out_edges[node])

    def get_in_edges_of(self, node: Stmt) -> List[CFGEdge]:
        return list(self._in_edges[node])

    def get_succs_of(self, node: Stmt) -> List[Stmt]:
        """Successors in edge order, without duplicates."""
        return _unique(e.target for e in self._out_edges[node])

    def get_preds_of(self, node: Stmt) -> List[Stmt]:
        """Predecessors in edge order, without duplicates."""
        return _unique(e.source for e in self._in_edges[node])

    def edges(self) -> Iterator[CFGEdge]:
        for node in self._nodes:
            yield from self._out_edges[node]

    def nodes(self) -> List[Stmt]:
        return list(self._nodes)

    def __iter__(self) -> Iterator[Stmt]:
        return iter(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node: Stmt) -> bool:
        return node in self._node_set

    # ----- validation -------------------------------------------------------

    def validate(self) -> None:
        """Check the structural preconditions the solvers rely on.

        Raises :class:`MalformedGraphError` if the entry has predecessors,
        the exit has successors, or a statement has no successor.
        """
        if self._in_edges[self.entry]:
            raise MalformedGraphError(
                "CFG entry has predecessors",
                details={"method": self.ir.method_name},
            )
        if self._out_edges[self.exit]:
            raise MalformedGraphError(
                "CFG exit has successors",
                details={"method": self.ir.method_name},
            )
        for node in self._nodes:
            if node is not self.exit and not self._out_edges[node]:
                raise MalformedGraphError(
                    f"node {node!r} has no successors",
                    details={"method": self.ir.method_name},
                )

    def __repr__(self) -> str:
        n_edges = sum(len(v) for v in self._out_edges.values())
        return f"CFG({self.ir.method_name!r}, nodes={len(self._nodes)}, edges={n_edges})"


def _unique(nodes) -> List[Stmt]:
    seen: Set[int] = set()
    out: List[Stmt] = []
    for n in nodes:
        if id(n) not in seen:
            seen.add(id(n))
            out.append(n)
    return out


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

def build_cfg(ir: IR) -> CFG:
    """Build the statement-level :class:`CFG` of *ir*.

    Parameters
    ----------
    ir : IR
        A finished method body (see :class:`~irflow.ir.IRBuilder`).

    Returns
    -------
    CFG
        The control flow graph.  Statements that no path reaches are still
        nodes; they simply have no predecessors.
    """
    cfg = CFG(ir)
    stmts = ir.get_stmts()
    if not stmts:
        cfg.add_edge(cfg.entry, cfg.exit, EdgeKind.ENTRY)
        return cfg

    cfg.add_edge(cfg.entry, stmts[0], EdgeKind.ENTRY)
    for i, stmt in enumerate(stmts):
        following = stmts[i + 1] if i + 1 < len(stmts) else cfg.exit
        if isinstance(stmt, If):
            cfg.add_edge(stmt, _target(cfg, stmt, stmt.target), EdgeKind.IF_TRUE)
            cfg.add_edge(stmt, following, EdgeKind.IF_FALSE)
        elif isinstance(stmt, Goto):
            cfg.add_edge(stmt, _target(cfg, stmt, stmt.target), EdgeKind.GOTO)
        elif isinstance(stmt, SwitchStmt):
            for value, target in stmt.get_case_target_pairs():
                cfg.add_edge(stmt, _target(cfg, stmt, target),
                             EdgeKind.SWITCH_CASE, case_value=value)
            cfg.add_edge(stmt, _target(cfg, stmt, stmt.default_target),
                         EdgeKind.SWITCH_DEFAULT)
        elif isinstance(stmt, Return):
            cfg.add_edge(stmt, cfg.exit, EdgeKind.RETURN)
        else:
            cfg.add_edge(stmt, following, EdgeKind.FALL_THROUGH)

    logger.debug("built %r", cfg)
    return cfg


def _target(cfg: CFG, stmt: Stmt, target: Optional[Stmt]) -> Stmt:
    if target is None or target not in cfg:
        raise MalformedGraphError(
            f"jump {stmt!r} has no target in its method",
            details={"method": cfg.ir.method_name},
        )
    return target


def cfg_summary(cfg: CFG) -> str:
    """Return a multi-line human-readable summary of *cfg*."""
    lines = [repr(cfg)]
    for node in cfg:
        succs = ", ".join(
            f"{e.target.index}({e.kind.value})" for e in cfg.get_out_edges_of(node))
        lines.append(f"  {node!r}  succ=[{succs}]")
    return "\n".join(lines)
