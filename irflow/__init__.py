"""
irflow - Whole-Program Dataflow Analysis for a Three-Address IR
===============================================================

This package provides a generic fixed-point dataflow engine together with
the graphs it runs over and the client analyses built on it.

Core modules
------------
errors
    Exception hierarchy rooted at ``IrflowError``.
config
    Per-analysis option tables and logging setup.
ir
    Types, expressions, statements, method bodies and the ``IRBuilder``.
hierarchy
    Classes, methods, the ``ClassHierarchy`` store and the ``Program``.
ctrlflow_graph
    Statement-level CFGs with kinded edges.
dataflow_engine
    The analysis contract, iterative and worklist solvers, results.
dataflow_analyses
    Constant propagation and live variables.
callgraph
    Class Hierarchy Analysis call-graph construction.
interproc_analysis
    ICFG, interprocedural solver and constant propagation across calls.
ctrlflow_analyses
    Dead-code detection.

Quick start
-----------
>>> from irflow import IRBuilder, IntLiteral, PrimitiveType, detect_dead_code
>>> b = IRBuilder("f")
>>> x = b.new_var("x", PrimitiveType.INT)
>>> _ = b.assign(x, IntLiteral(1))
>>> _ = b.ret()
>>> detect_dead_code(b.build())
[0@x = 1]

Package layout
--------------
::

    irflow/
    ├── __init__.py            ← this file
    ├── errors.py
    ├── config.py
    ├── ir.py
    ├── hierarchy.py
    ├── ctrlflow_graph.py
    ├── dataflow_engine.py
    ├── dataflow_analyses.py
    ├── callgraph.py
    ├── interproc_analysis.py
    └── ctrlflow_analyses.py
"""

from __future__ import annotations

import importlib
import logging
import sys
from typing import List

# ---------------------------------------------------------------------------
# Package metadata
# ---------------------------------------------------------------------------

__version__ = "0.1.0"
__author__ = "irflow contributors"
__license__ = "MIT"
__all__: List[str] = []          # populated incrementally below

_log = logging.getLogger(__name__)
_log.addHandler(logging.NullHandler())

# ---------------------------------------------------------------------------
# Internal registry: (module_name, list_of_names_to_import)
#
# Modules are listed in dependency order; every one is required.
# ---------------------------------------------------------------------------

_CORE_MODULES = {
    "errors": [
        "IrflowError",
        "MalformedGraphError",
        "IRBuildError",
        "HierarchyError",
        "ConfigError",
        "ResultAccessError",
    ],
    "config": [
        "ANALYSIS_OPTIONS",
        "AnalysisConfig",
        "configure_logging",
    ],
    "ir": [
        "PrimitiveType",
        "ClassType",
        "ArrayType",
        "VOID",
        "can_hold_int",
        "Var",
        "IntLiteral",
        "ArithmeticExp",
        "BitwiseExp",
        "ConditionExp",
        "ShiftExp",
        "binary_exp",
        "InvokeKind",
        "InvokeExp",
        "Stmt",
        "Nop",
        "AssignStmt",
        "Invoke",
        "If",
        "Goto",
        "SwitchStmt",
        "Return",
        "IR",
        "IRBuilder",
    ],
    "hierarchy": [
        "MethodRef",
        "JMethod",
        "JClass",
        "ClassHierarchy",
        "Program",
    ],
    "ctrlflow_graph": [
        "EdgeKind",
        "CFGEdge",
        "CFG",
        "build_cfg",
    ],
    "dataflow_engine": [
        "DataflowAnalysis",
        "DataflowResult",
        "WorkList",
        "SolverStrategy",
        "IterativeSolver",
        "WorkListSolver",
        "make_solver",
        "solve",
    ],
    "dataflow_analyses": [
        "Value",
        "CPFact",
        "meet_value",
        "evaluate",
        "ConstantPropagation",
        "SetFact",
        "LiveVariableAnalysis",
    ],
    "callgraph": [
        "CallKind",
        "CallGraphEdge",
        "CallGraph",
        "CHABuilder",
        "build_callgraph",
    ],
    "interproc_analysis": [
        "InterproceduralCFG",
        "InterDataflowAnalysis",
        "InterSolver",
        "InterConstantPropagation",
        "run_inter_constant_propagation",
    ],
    "ctrlflow_analyses": [
        "DeadCodeDetection",
        "detect_dead_code",
    ],
}


def _import_names(module_rel_name: str, names: List[str]) -> None:
    """Import *names* from a submodule and bind them in the package namespace.

    Parameters
    ----------
    module_rel_name:
        Module name relative to this package (e.g. ``"ir"``).
    names:
        Public symbols to re-export.
    """
    fq_name = f"{__name__}.{module_rel_name}"
    try:
        mod = importlib.import_module(fq_name)
    except ImportError as exc:
        raise ImportError(
            f"irflow: required submodule '{module_rel_name}' "
            f"failed to import: {exc}"
        ) from exc

    current_module = sys.modules[__name__]
    for name in names:
        if not hasattr(mod, name):
            raise AttributeError(f"irflow.{module_rel_name} does not export '{name}'")
        setattr(current_module, name, getattr(mod, name))
        __all__.append(name)

    # Also expose the submodule itself so that ``irflow.ir.Var`` works
    setattr(current_module, module_rel_name, mod)
    if module_rel_name not in __all__:
        __all__.append(module_rel_name)


for _mod, _names in _CORE_MODULES.items():
    _import_names(_mod, _names)

del _mod, _names


def list_submodules() -> List[str]:
    """Return the names of all submodules in the package."""
    return sorted(_CORE_MODULES)
