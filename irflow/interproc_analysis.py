"""
irflow/interproc_analysis.py
============================

Whole-program, context-insensitive dataflow analysis over an
interprocedural control-flow graph (ICFG).

The ICFG embeds the CFG of every reachable method that has a body and
wires them together along the call graph:

* a call site's intraprocedural out-edges become **call-to-return** edges
  (caller-local state that flows around the call);
* a **call** edge goes from the call site to the entry of each callee;
* a **return** edge goes from each callee's exit to every return site of
  the call site (the targets of its call-to-return edges).

Every other intraprocedural edge is a **normal** edge.  Each edge kind has
its own fact transform on the analysis, so facts are reshaped as they
cross method boundaries.

Public API (quick reference)
----------------------------
    ICFGEdge                 - base class of ICFG edges
    NormalEdge               - intraprocedural edge
    CallToReturnEdge         - call site → local successor
    CallEdge                 - call site → callee entry
    ReturnEdge               - callee exit → return site
    InterproceduralCFG       - the supergraph
    InterDataflowAnalysis    - contract of interprocedural clients
    InterSolver              - worklist solver over the ICFG
    InterConstantPropagation - constant propagation across calls
    run_inter_constant_propagation - CHA → ICFG → solve

Typical usage
-------------
    >>> from irflow.interproc_analysis import run_inter_constant_propagation
    >>> result = run_inter_constant_propagation(program)
    >>> result.get_out_fact(some_stmt).get(some_var)
    5
"""

from __future__ import annotations

import abc
import logging
from collections import OrderedDict
from typing import Dict, Generic, Iterator, List, Optional, TypeVar

from .callgraph import CallGraph, build_callgraph
from .config import AnalysisConfig
from .ctrlflow_graph import CFG, EdgeKind, build_cfg
from .dataflow_analyses import ConstantPropagation, CPFact, Value
from .dataflow_engine import DataflowResult, WorkList
from .errors import ConfigError, MalformedGraphError
from .hierarchy import JMethod, Program
from .ir import Invoke, Stmt, can_hold_int

__all__ = [
    "ICFGEdge",
    "NormalEdge",
    "CallToReturnEdge",
    "CallEdge",
    "ReturnEdge",
    "InterproceduralCFG",
    "InterDataflowAnalysis",
    "InterSolver",
    "InterConstantPropagation",
    "run_inter_constant_propagation",
]

logger = logging.getLogger(__name__)

F = TypeVar("F")


# ═══════════════════════════════════════════════════════════════════════════
# §1  ICFG EDGES
# ═══════════════════════════════════════════════════════════════════════════

class ICFGEdge:
    """An edge in the interprocedural CFG.

    Attributes
    ----------
    source, target : Stmt
        Endpoints; statements of possibly different methods.
    """

    __slots__ = ("source", "target")

    def __init__(self, source: Stmt, target: Stmt) -> None:
        self.source = source
        self.target = target

    def _tag(self) -> str:
        return "edge"

    def __repr__(self) -> str:
        return f"({self.source!r})--[{self._tag()}]-->({self.target!r})"


class NormalEdge(ICFGEdge):
    """An intraprocedural edge that does not leave a call site."""

    __slots__ = ("kind",)

    def __init__(self, source: Stmt, target: Stmt, kind: EdgeKind) -> None:
        super().__init__(source, target)
        self.kind = kind

    def _tag(self) -> str:
        return self.kind.value


class CallToReturnEdge(ICFGEdge):
    """Call site → its local successor, bypassing the callee.

    ``callees_analysed`` is ``False`` when the call site has no callee, or
    when at least one of its callees has no body in the ICFG and so cannot
    report its return value along a :class:`ReturnEdge`.
    """

    __slots__ = ("callees_analysed",)

    def __init__(self, source: Stmt, target: Stmt, callees_analysed: bool = True) -> None:
        super().__init__(source, target)
        self.callees_analysed = callees_analysed

    @property
    def call_site(self) -> Invoke:
        return self.source  # type: ignore[return-value]

    def _tag(self) -> str:
        return "call-to-return"


class CallEdge(ICFGEdge):
    """Call site → callee entry."""

    __slots__ = ("callee",)

    def __init__(self, source: Invoke, target: Stmt, callee: JMethod) -> None:
        super().__init__(source, target)
        self.callee = callee

    @property
    def call_site(self) -> Invoke:
        return self.source  # type: ignore[return-value]

    def _tag(self) -> str:
        return f"call {self.callee}"


class ReturnEdge(ICFGEdge):
    """Callee exit → a return site of the call site."""

    __slots__ = ("call_site", "callee")

    def __init__(self, source: Stmt, target: Stmt, call_site: Invoke, callee: JMethod) -> None:
        super().__init__(source, target)
        self.call_site = call_site
        self.callee = callee

    def get_return_vars(self):
        return self.callee.ir.get_return_vars() if self.callee.ir is not None else []

    def _tag(self) -> str:
        return f"return {self.callee}"


# ═══════════════════════════════════════════════════════════════════════════
# §2  INTERPROCEDURAL CFG (SUPERGRAPH)
# ═══════════════════════════════════════════════════════════════════════════

class InterproceduralCFG:
    """Interprocedural control-flow graph built from a call graph.

    Parameters
    ----------
    call_graph : CallGraph
        Reachable methods and call edges.
    cfgs : dict, optional
        Pre-built CFGs keyed by method; missing ones are built with
        :func:`~irflow.ctrlflow_graph.build_cfg`.

    Reachable methods without an IR are left out (with a warning); call
    edges to them are not wired.
    """

    def __init__(
        self,
        call_graph: CallGraph,
        cfgs: Optional[Dict[JMethod, CFG]] = None,
    ) -> None:
        self.call_graph = call_graph
        self._cfgs: Dict[JMethod, CFG] = OrderedDict()
        self._nodes: List[Stmt] = []
        self._node_method: Dict[Stmt, JMethod] = {}
        self._out_edges: Dict[Stmt, List[ICFGEdge]] = {}
        self._in_edges: Dict[Stmt, List[ICFGEdge]] = {}
        self._build(cfgs or {})

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def _build(self, cfgs: Dict[JMethod, CFG]) -> None:
        # Phase 1: embed every method body
        for method in self.call_graph.reachable_methods():
            if method.ir is None:
                logger.warning("reachable method %s has no IR; left out of the ICFG", method)
                continue
            cfg = cfgs[method] if method in cfgs else build_cfg(method.ir)
            self._cfgs[method] = cfg
            for node in cfg:
                self._nodes.append(node)
                self._node_method[node] = method
                self._out_edges[node] = []
                self._in_edges[node] = []

        # Phase 2: intraprocedural edges, then call / return wiring
        for method, cfg in self._cfgs.items():
            for node in cfg:
                callees: List[JMethod] = []
                analysed = False
                if isinstance(node, Invoke):
                    callees = self.get_callees_of(node)
                    all_callees = self.call_graph.callees_of(node)
                    analysed = bool(all_callees) and len(callees) == len(all_callees)
                for edge in cfg.get_out_edges_of(node):
                    if isinstance(node, Invoke):
                        self._add(CallToReturnEdge(node, edge.target, callees_analysed=analysed))
                    else:
                        self._add(NormalEdge(node, edge.target, edge.kind))
                for callee in callees:
                    callee_cfg = self._cfgs[callee]
                    self._add(CallEdge(node, callee_cfg.entry, callee))  # type: ignore[arg-type]
                    for ret_site in cfg.get_succs_of(node):
                        self._add(ReturnEdge(callee_cfg.exit, ret_site, node, callee))  # type: ignore[arg-type]

        logger.info(
            "ICFG: %d methods, %d nodes, %d edges",
            len(self._cfgs), len(self._nodes),
            sum(len(v) for v in self._out_edges.values()),
        )

    def _add(self, edge: ICFGEdge) -> None:
        self._out_edges[edge.source].append(edge)
        self._in_edges[edge.target].append(edge)

    # ------------------------------------------------------------------
    # Query API
    # ------------------------------------------------------------------

    def entry_methods(self) -> List[JMethod]:
        return [m for m in self.call_graph.entry_methods() if m in self._cfgs]

    def methods(self) -> List[JMethod]:
        return list(self._cfgs)

    def get_cfg(self, method: JMethod) -> CFG:
        return self._cfgs[method]

    def get_entry_of(self, method: JMethod) -> Stmt:
        return self._cfgs[method].entry

    def get_exit_of(self, method: JMethod) -> Stmt:
        return self._cfgs[method].exit

    def get_containing_method_of(self, node: Stmt) -> JMethod:
        return self._node_method[node]

    def get_in_edges_of(self, node: Stmt) -> List[ICFGEdge]:
        return list(self._in_edges[node])

    def get_out_edges_of(self, node: Stmt) -> List[ICFGEdge]:
        return list(self._out_edges[node])

    def get_preds_of(self, node: Stmt) -> List[Stmt]:
        return _unique(e.source for e in self._in_edges[node])

    def get_succs_of(self, node: Stmt) -> List[Stmt]:
        return _unique(e.target for e in self._out_edges[node])

    def is_call_site(self, node: Stmt) -> bool:
        return isinstance(node, Invoke) and node in self._node_method

    def get_callees_of(self, call_site: Invoke) -> List[JMethod]:
        """Callees of *call_site* that are part of the ICFG."""
        return [m for m in self.call_graph.callees_of(call_site) if m in self._cfgs]

    def get_return_sites_of(self, call_site: Invoke) -> List[Stmt]:
        method = self._node_method[call_site]
        return self._cfgs[method].get_succs_of(call_site)

    def __iter__(self) -> Iterator[Stmt]:
        return iter(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node: object) -> bool:
        return node in self._node_method

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Raise :class:`MalformedGraphError` if the ICFG cannot be solved."""
        entries = self.entry_methods()
        if not entries:
            raise MalformedGraphError(
                "ICFG has no entry method with a body",
                details={"entry_methods": [str(m) for m in self.call_graph.entry_methods()]},
            )
        for node, edges in self._out_edges.items():
            for edge in edges:
                if edge.target not in self._node_method:
                    raise MalformedGraphError(
                        f"ICFG edge {edge!r} leaves the graph",
                        details={"method": str(self._node_method[node])},
                    )

    def __repr__(self) -> str:
        return (
            f"InterproceduralCFG(methods={len(self._cfgs)}, "
            f"nodes={len(self._nodes)}, "
            f"edges={sum(len(v) for v in self._out_edges.values())})"
        )


def _unique(nodes) -> List[Stmt]:
    seen = set()
    out: List[Stmt] = []
    for n in nodes:
        if id(n) not in seen:
            seen.add(id(n))
            out.append(n)
    return out


# ═══════════════════════════════════════════════════════════════════════════
# §3  ANALYSIS CONTRACT
# ═══════════════════════════════════════════════════════════════════════════

class InterDataflowAnalysis(abc.ABC, Generic[F]):
    """Contract of a forward interprocedural dataflow analysis.

    Node transfers behave like :class:`~irflow.dataflow_engine.DataflowAnalysis`
    but are split into call sites and everything else.  Edge transfers map
    the OUT fact of an edge's source to the fact that flows along the edge;
    they return fresh facts and never modify their argument.
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
    def new_boundary_fact(self, cfg: CFG) -> F:
        ...

    @abc.abstractmethod
    def new_initial_fact(self) -> F:
        ...

    @abc.abstractmethod
    def meet_into(self, fact: F, target: F) -> None:
        ...

    @abc.abstractmethod
    def transfer_call_node(self, node: Invoke, in_fact: F, out_fact: F) -> bool:
        ...

    @abc.abstractmethod
    def transfer_non_call_node(self, node: Stmt, in_fact: F, out_fact: F) -> bool:
        ...

    @abc.abstractmethod
    def transfer_normal_edge(self, edge: NormalEdge, out_fact: F) -> F:
        ...

    @abc.abstractmethod
    def transfer_call_to_return_edge(self, edge: CallToReturnEdge, out_fact: F) -> F:
        ...

    @abc.abstractmethod
    def transfer_call_edge(self, edge: CallEdge, call_site_out: F) -> F:
        ...

    @abc.abstractmethod
    def transfer_return_edge(self, edge: ReturnEdge, return_out: F) -> F:
        ...

    def transfer_edge(self, edge: ICFGEdge, out_fact: F) -> F:
        """Dispatch to the transfer of *edge*'s kind."""
        if isinstance(edge, CallToReturnEdge):
            return self.transfer_call_to_return_edge(edge, out_fact)
        if isinstance(edge, CallEdge):
            return self.transfer_call_edge(edge, out_fact)
        if isinstance(edge, ReturnEdge):
            return self.transfer_return_edge(edge, out_fact)
        return self.transfer_normal_edge(edge, out_fact)  # type: ignore[arg-type]


# ═══════════════════════════════════════════════════════════════════════════
# §4  SOLVER
# ═══════════════════════════════════════════════════════════════════════════

class InterSolver(Generic[F]):
    """Worklist solver over an :class:`InterproceduralCFG`.

    The IN fact of a node is recomputed from scratch on every visit as the
    meet of its incoming edge transfers, starting from the boundary fact at
    the entries of entry methods and from the initial fact elsewhere.
    """

    def __init__(self, analysis: InterDataflowAnalysis[F], icfg: InterproceduralCFG) -> None:
        self.analysis = analysis
        self.icfg = icfg

    def solve(self) -> DataflowResult[Stmt, F]:
        icfg, analysis = self.icfg, self.analysis
        icfg.validate()
        result: DataflowResult[Stmt, F] = DataflowResult(
            type(analysis).__name__, type(self).__name__)

        boundary: Dict[Stmt, CFG] = {
            icfg.get_entry_of(m): icfg.get_cfg(m) for m in icfg.entry_methods()
        }
        for node in icfg:
            if node in boundary:
                result.set_in_fact(node, analysis.new_boundary_fact(boundary[node]))
            else:
                result.set_in_fact(node, analysis.new_initial_fact())
            result.set_out_fact(node, analysis.new_initial_fact())

        worklist: WorkList[Stmt] = WorkList(icfg)
        while worklist:
            node = worklist.pop()
            if node in boundary:
                in_fact = analysis.new_boundary_fact(boundary[node])
            else:
                in_fact = analysis.new_initial_fact()
            for edge in icfg.get_in_edges_of(node):
                analysis.meet_into(
                    analysis.transfer_edge(edge, result.get_out_fact(edge.source)), in_fact)
            result.set_in_fact(node, in_fact)

            out_fact = result.get_out_fact(node)
            result.transfer_count += 1
            if icfg.is_call_site(node):
                changed = analysis.transfer_call_node(node, in_fact, out_fact)  # type: ignore[arg-type]
            else:
                changed = analysis.transfer_non_call_node(node, in_fact, out_fact)
            if changed:
                for succ in icfg.get_succs_of(node):
                    worklist.add(succ)

        result.freeze()
        logger.debug(
            "%s/%s: %d nodes, %d transfers",
            result.analysis_name, result.solver_name, len(result), result.transfer_count,
        )
        return result


# ═══════════════════════════════════════════════════════════════════════════
# §5  INTERPROCEDURAL CONSTANT PROPAGATION
# ═══════════════════════════════════════════════════════════════════════════

class InterConstantPropagation(InterDataflowAnalysis[CPFact]):
    """Constant propagation that follows values into and out of callees.

    * call-to-return edges drop the call's result variable (the value
      comes back along the return edges instead), unless some callee is
      not analysed, in which case the result is NAC;
    * call edges bind callee parameters to the argument values;
    * return edges bind the call's result variable to the value shared by
      all of the callee's return variables, or NAC when they disagree.
    """

    analysis_id = "inter-constprop"

    def __init__(self, config: Optional[AnalysisConfig] = None) -> None:
        super().__init__(config)
        self.cp = ConstantPropagation()

    def new_boundary_fact(self, cfg: CFG) -> CPFact:
        return self.cp.new_boundary_fact(cfg)

    def new_initial_fact(self) -> CPFact:
        return self.cp.new_initial_fact()

    def meet_into(self, fact: CPFact, target: CPFact) -> None:
        self.cp.meet_into(fact, target)

    # ----- nodes ------------------------------------------------------------

    def transfer_call_node(self, node: Invoke, in_fact: CPFact, out_fact: CPFact) -> bool:
        return out_fact.copy_from(in_fact)

    def transfer_non_call_node(self, node: Stmt, in_fact: CPFact, out_fact: CPFact) -> bool:
        return self.cp.transfer_node(node, in_fact, out_fact)

    # ----- edges ------------------------------------------------------------

    def transfer_normal_edge(self, edge: NormalEdge, out_fact: CPFact) -> CPFact:
        return out_fact.copy()

    def transfer_call_to_return_edge(self, edge: CallToReturnEdge, out_fact: CPFact) -> CPFact:
        fact = out_fact.copy()
        lvalue = edge.call_site.get_def()
        if lvalue is not None:
            if edge.callees_analysed or not can_hold_int(lvalue):
                fact.remove(lvalue)
            else:
                fact.update(lvalue, Value.get_nac())
        return fact

    def transfer_call_edge(self, edge: CallEdge, call_site_out: CPFact) -> CPFact:
        fact = CPFact()
        args = edge.call_site.invoke_exp.args
        for param, arg in zip(edge.callee.ir.get_params(), args):  # type: ignore[union-attr]
            fact.update(param, call_site_out.get(arg))
        return fact

    def transfer_return_edge(self, edge: ReturnEdge, return_out: CPFact) -> CPFact:
        fact = CPFact()
        lvalue = edge.call_site.get_def()
        return_vars = edge.get_return_vars()
        if lvalue is None or not return_vars or not can_hold_int(lvalue):
            return fact
        values = [return_out.get(var) for var in return_vars]
        value = values[0]
        if any(v != value for v in values[1:]):
            value = Value.get_nac()
        fact.update(lvalue, value)
        return fact


def run_inter_constant_propagation(
    program: Program,
    config: Optional[AnalysisConfig] = None,
) -> DataflowResult[Stmt, CPFact]:
    """Build the CHA call graph and ICFG of *program* and solve constant
    propagation over it.

    The result is also stored in the IR of every analysed method under
    ``"inter-constprop"``.
    """
    call_graph = build_callgraph(program)
    icfg = InterproceduralCFG(call_graph)
    analysis = InterConstantPropagation(config)
    result = InterSolver(analysis, icfg).solve()
    for method in icfg.methods():
        method.ir.store_result(analysis.analysis_id, result)  # type: ignore[union-attr]
    return result
