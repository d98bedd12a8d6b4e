"""
irflow.callgraph
================

Builds the whole-program call graph by Class Hierarchy Analysis (CHA).

The call graph is a directed graph where:
- **Nodes** are :class:`~irflow.hierarchy.JMethod` objects reachable from
  the program's main method.
- **Edges** connect a call site (an :class:`~irflow.ir.Invoke` statement
  inside its caller) to a callee, annotated with the call-site kind.

Resolution
----------
``STATIC``
    The method declared on the referenced class.
``SPECIAL``
    ``dispatch(referenced class, subsignature)``; constructors, private
    methods and ``super`` calls.
``VIRTUAL`` / ``INTERFACE``
    The union of ``dispatch(c, subsignature)`` over the referenced class and
    all its transitive subclasses, implementors and subinterfaces.

``dispatch(c, s)`` is the non-abstract method with subsignature ``s``
declared in ``c`` or, failing that, the nearest superclass of ``c``.

Public API
----------
    CallKind            - dispatch kind of an edge
    CallGraphEdge       - a (kind, call site, callee) edge
    CallGraph           - the whole-program call graph
    CHABuilder          - CHA construction from a Program
    build_callgraph     - convenience entry point

Typical usage::

    from irflow.callgraph import build_callgraph

    cg = build_callgraph(program)
    for method in cg.reachable_methods():
        for site in cg.call_sites_in(method):
            print(site, "->", cg.callees_of(site))
"""

from __future__ import annotations

import enum
import logging
from collections import OrderedDict, deque
from typing import Deque, Dict, Iterator, List, Optional, Set

from .config import AnalysisConfig
from .errors import ConfigError, HierarchyError
from .hierarchy import JClass, JMethod, Program
from .ir import Invoke, InvokeKind

__all__ = [
    "CallKind",
    "CallGraphEdge",
    "CallGraph",
    "CHABuilder",
    "build_callgraph",
]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Call kinds
# ---------------------------------------------------------------------------

class CallKind(enum.Enum):
    """Dispatch kind of a call edge; mirrors the call site's invoke kind."""

    STATIC = "static"
    SPECIAL = "special"
    VIRTUAL = "virtual"
    INTERFACE = "interface"

    @classmethod
    def of(cls, call_site: Invoke) -> "CallKind":
        return _KIND_OF_INVOKE[call_site.kind]


_KIND_OF_INVOKE = {
    InvokeKind.STATIC: CallKind.STATIC,
    InvokeKind.SPECIAL: CallKind.SPECIAL,
    InvokeKind.VIRTUAL: CallKind.VIRTUAL,
    InvokeKind.INTERFACE: CallKind.INTERFACE,
}


# ---------------------------------------------------------------------------
# CallGraphEdge
# ---------------------------------------------------------------------------

class CallGraphEdge:
    """A call edge from a call site to one of its callees.

    Attributes
    ----------
    kind : CallKind
    call_site : Invoke
    callee : JMethod
    """

    __slots__ = ("kind", "call_site", "callee")

    def __init__(self, kind: CallKind, call_site: Invoke, callee: JMethod) -> None:
        self.kind = kind
        self.call_site = call_site
        self.callee = callee

    @property
    def caller(self) -> Optional[JMethod]:
        return self.call_site.container

    def __repr__(self) -> str:
        return f"CallGraphEdge({self.kind.value}, {self.caller}/{self.call_site!r} -> {self.callee})"

    def __hash__(self) -> int:
        return hash((self.kind, id(self.call_site), id(self.callee)))

    def __eq__(self, other) -> bool:
        if isinstance(other, CallGraphEdge):
            return (
                self.kind == other.kind
                and self.call_site is other.call_site
                and self.callee is other.callee
            )
        return NotImplemented


# ---------------------------------------------------------------------------
# CallGraph
# ---------------------------------------------------------------------------

class CallGraph:
    """The whole-program call graph.

    Methods are registered as reachable in discovery order and every query
    answers in that order (edges in insertion order), so iteration is
    deterministic.
    """

    def __init__(self) -> None:
        self._entry_methods: List[JMethod] = []
        self._reachable: Dict[JMethod, None] = OrderedDict()
        self._call_sites: Dict[JMethod, List[Invoke]] = {}
        self._out_edges: Dict[Invoke, List[CallGraphEdge]] = {}
        self._in_edges: Dict[JMethod, List[CallGraphEdge]] = {}
        self._edges: Dict[CallGraphEdge, None] = OrderedDict()

    # ----- mutation ---------------------------------------------------------

    def add_entry_method(self, method: JMethod) -> None:
        if method not in self._entry_methods:
            self._entry_methods.append(method)

    def add_reachable_method(self, method: JMethod) -> bool:
        """Register *method*; return ``False`` if it was already reachable."""
        if method in self._reachable:
            return False
        self._reachable[method] = None
        sites = list(method.ir.invokes()) if method.ir is not None else []
        self._call_sites[method] = sites
        for site in sites:
            self._out_edges.setdefault(site, [])
        self._in_edges.setdefault(method, [])
        return True

    def add_edge(self, edge: CallGraphEdge) -> bool:
        """Add *edge*; return ``False`` if an equal edge already exists."""
        if edge in self._edges:
            return False
        self._edges[edge] = None
        self._out_edges.setdefault(edge.call_site, []).append(edge)
        self._in_edges.setdefault(edge.callee, []).append(edge)
        return True

    # ----- queries ----------------------------------------------------------

    def entry_methods(self) -> List[JMethod]:
        return list(self._entry_methods)

    def reachable_methods(self) -> List[JMethod]:
        return list(self._reachable)

    def contains(self, method: JMethod) -> bool:
        return method in self._reachable

    __contains__ = contains

    def call_sites_in(self, method: JMethod) -> List[Invoke]:
        return list(self._call_sites.get(method, ()))

    def edges_out_of(self, call_site: Invoke) -> List[CallGraphEdge]:
        return list(self._out_edges.get(call_site, ()))

    def edges_into(self, method: JMethod) -> List[CallGraphEdge]:
        return list(self._in_edges.get(method, ()))

    def callees_of(self, call_site: Invoke) -> List[JMethod]:
        return [e.callee for e in self._out_edges.get(call_site, ())]

    def callers_of(self, method: JMethod) -> List[Invoke]:
        """Call sites that may invoke *method*."""
        return [e.call_site for e in self._in_edges.get(method, ())]

    def method_of(self, call_site: Invoke) -> Optional[JMethod]:
        return call_site.container

    def edges(self) -> Iterator[CallGraphEdge]:
        return iter(list(self._edges))

    @property
    def num_edges(self) -> int:
        return len(self._edges)

    def __len__(self) -> int:
        return len(self._reachable)

    def __repr__(self) -> str:
        return f"CallGraph(methods={len(self._reachable)}, edges={len(self._edges)})"


# ---------------------------------------------------------------------------
# CHA construction
# ---------------------------------------------------------------------------

class CHABuilder:
    """Builds a :class:`CallGraph` by class hierarchy analysis.

    Parameters
    ----------
    program : Program
        Hierarchy and main method.
    config : AnalysisConfig, optional
        Configuration for the ``cha`` analysis id (no options).
    """

    analysis_id = "cha"

    def __init__(self, program: Program, config: Optional[AnalysisConfig] = None) -> None:
        if config is not None and config.analysis_id != self.analysis_id:
            raise ConfigError(
                f"CHABuilder cannot use configuration for '{config.analysis_id}'",
            )
        self.program = program
        self.hierarchy = program.hierarchy

    def build(self) -> CallGraph:
        entry = self.program.main_method
        call_graph = CallGraph()
        call_graph.add_entry_method(entry)

        queue: Deque[JMethod] = deque([entry])
        while queue:
            method = queue.popleft()
            if not call_graph.add_reachable_method(method):
                continue
            for site in call_graph.call_sites_in(method):
                kind = CallKind.of(site)
                targets = self.resolve(site)
                if not targets:
                    logger.debug("no CHA target for %r in %s", site, method)
                for target in targets:
                    call_graph.add_edge(CallGraphEdge(kind, site, target))
                    if not call_graph.contains(target):
                        queue.append(target)

        logger.info(
            "CHA call graph from %s: %d reachable methods, %d edges",
            entry, len(call_graph), call_graph.num_edges,
        )
        return call_graph

    def resolve(self, call_site: Invoke) -> List[JMethod]:
        """Resolve the possible callees of *call_site*."""
        ref = call_site.method_ref
        jclass = self._class_named(ref.declaring_class, call_site)
        subsig = ref.subsignature

        if call_site.is_static():
            method = jclass.get_declared_method(subsig)
            return [method] if method is not None else []
        if call_site.is_special():
            method = self.dispatch(jclass, subsig)
            return [method] if method is not None else []

        targets: Dict[JMethod, None] = OrderedDict()
        for candidate in [jclass] + self._all_subtypes_of(jclass):
            method = self.dispatch(candidate, subsig)
            if method is not None:
                targets[method] = None
        return list(targets)

    def dispatch(self, jclass: JClass, subsignature: str) -> Optional[JMethod]:
        """The concrete method *jclass* would run for *subsignature*."""
        current: Optional[JClass] = jclass
        while current is not None:
            method = current.get_declared_method(subsignature)
            if method is not None and not method.is_abstract:
                return method
            current = self.hierarchy.super_class_of(current)
        return None

    def _all_subtypes_of(self, jclass: JClass) -> List[JClass]:
        result: List[JClass] = []
        seen: Set[str] = {jclass.name}
        pending: Deque[JClass] = deque([jclass])
        while pending:
            current = pending.popleft()
            for sub in (self.hierarchy.direct_subclasses_of(current)
                        + self.hierarchy.direct_implementors_of(current)
                        + self.hierarchy.direct_subinterfaces_of(current)):
                if sub.name not in seen:
                    seen.add(sub.name)
                    result.append(sub)
                    pending.append(sub)
        return result

    def _class_named(self, name: str, call_site: Invoke) -> JClass:
        jclass = self.hierarchy.get_class(name)
        if jclass is None:
            raise HierarchyError(
                f"unknown class '{name}'",
                details={"call_site": repr(call_site),
                         "method": str(call_site.container)},
            )
        return jclass


def build_callgraph(program: Program, config: Optional[AnalysisConfig] = None) -> CallGraph:
    """Build the CHA call graph of *program*."""
    return CHABuilder(program, config).build()
