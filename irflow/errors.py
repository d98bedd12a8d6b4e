# irflow/errors.py
"""
irflow.errors
=============

Exception types raised by the analysis engine.

Error Hierarchy:
────────────────
┌──────────────────────────────────────────────────────────────────────┐
│  IrflowError (base)                                                  │
│  ├── MalformedGraphError  - CFG / ICFG precondition failures          │
│  ├── IRBuildError         - unresolved or duplicate labels, bad IR    │
│  ├── HierarchyError       - inconsistent class hierarchy              │
│  ├── ConfigError          - unknown analysis ids / options / values   │
│  └── ResultAccessError    - writes to frozen results, missing results │
└──────────────────────────────────────────────────────────────────────┘

Undecidable transfer inputs are *not* errors: they evaluate to NAC.
Division by a statically-known zero is not an error either: it evaluates
to Undefined.  A lattice whose transfer functions are not monotone is a
caller bug that shows up as non-termination; the engine does not try to
detect it.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

__all__ = [
    "IrflowError",
    "MalformedGraphError",
    "IRBuildError",
    "HierarchyError",
    "ConfigError",
    "ResultAccessError",
]


class IrflowError(Exception):
    """
    Base exception for all irflow errors.

    Carries a human-readable message plus an optional mapping of
    structured details (the offending node, method, option name, ...).
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})
        self.cause = cause

    def __str__(self) -> str:
        if not self.details:
            return self.message
        extra = ", ".join(f"{k}={v!r}" for k, v in sorted(self.details.items()))
        return f"{self.message} ({extra})"


class MalformedGraphError(IrflowError):
    """A CFG or ICFG violates a structural precondition of the solvers."""


class IRBuildError(IrflowError):
    """The IR builder was given an inconsistent method body."""


class HierarchyError(IrflowError):
    """The class hierarchy store was given inconsistent declarations."""


class ConfigError(IrflowError):
    """An analysis configuration names an unknown analysis, option or value."""


class ResultAccessError(IrflowError):
    """A dataflow result was written after solving, or a result is missing."""
