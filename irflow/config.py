"""
irflow.config
=============

Per-analysis configuration and logging setup.

Every analysis is identified by a short id (``"constprop"``,
``"livevar"``, ``"deadcode"``, ...).  An :class:`AnalysisConfig` pairs an
id with a validated option table; options not given explicitly take the
defaults listed in :data:`ANALYSIS_OPTIONS`.

Options can also be given in the compact ``key:value;key:value`` form::

    cfg = AnalysisConfig.parse("constprop", "param-seeding:all;solver:iterative")
    cfg.get("solver")           # 'iterative'

Public API
----------
    ANALYSIS_OPTIONS     - option tables: id -> {option -> (default, choices)}
    AnalysisConfig       - validated (id, options) pair
    configure_logging    - install a stderr handler on the ``irflow`` logger
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import ConfigError

__all__ = [
    "ANALYSIS_OPTIONS",
    "AnalysisConfig",
    "configure_logging",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Option tables
#
#   analysis id -> option name -> (default value, allowed values)
# ---------------------------------------------------------------------------

_SOLVERS = ("worklist", "iterative")

ANALYSIS_OPTIONS: Dict[str, Dict[str, Tuple[str, Tuple[str, ...]]]] = {
    "constprop": {
        "param-seeding": ("int-only", ("int-only", "all")),
        "solver": ("worklist", _SOLVERS),
    },
    "livevar": {
        "solver": ("worklist", _SOLVERS),
    },
    "deadcode": {
        "branch-truth": ("eq-one", ("eq-one", "positive")),
    },
    "inter-constprop": {},
    "cha": {},
}


@dataclass
class AnalysisConfig:
    """Configuration of a single analysis.

    Attributes
    ----------
    analysis_id : str
        One of the keys of :data:`ANALYSIS_OPTIONS`.
    options : dict
        Explicit option values.  Validated on construction.
    """

    analysis_id: str
    options: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        table = ANALYSIS_OPTIONS.get(self.analysis_id)
        if table is None:
            raise ConfigError(
                f"unknown analysis id '{self.analysis_id}'",
                details={"known": sorted(ANALYSIS_OPTIONS)},
            )
        for key, value in self.options.items():
            if key not in table:
                raise ConfigError(
                    f"analysis '{self.analysis_id}' has no option '{key}'",
                    details={"known": sorted(table)},
                )
            _default, choices = table[key]
            if value not in choices:
                raise ConfigError(
                    f"invalid value {value!r} for option '{key}' of "
                    f"analysis '{self.analysis_id}'",
                    details={"choices": list(choices)},
                )

    # ----- construction -----------------------------------------------------

    @classmethod
    def parse(cls, analysis_id: str, text: Optional[str]) -> "AnalysisConfig":
        """Build a config from a ``key:value;key:value`` option string.

        Empty segments are ignored; a segment without ``:`` is an error.
        """
        options: Dict[str, str] = {}
        for segment in (text or "").split(";"):
            segment = segment.strip()
            if not segment:
                continue
            key, sep, value = segment.partition(":")
            if not sep:
                raise ConfigError(
                    f"malformed option '{segment}', expected key:value",
                    details={"analysis": analysis_id},
                )
            options[key.strip()] = value.strip()
        return cls(analysis_id, options)

    @classmethod
    def from_mapping(
        cls, analysis_id: str, mapping: Optional[Mapping[str, Any]] = None,
    ) -> "AnalysisConfig":
        """Build a config from any mapping; values are stringified."""
        return cls(analysis_id, {k: str(v) for k, v in (mapping or {}).items()})

    # ----- queries ----------------------------------------------------------

    def get(self, key: str) -> str:
        """Return the option value, falling back to the table default."""
        table = ANALYSIS_OPTIONS[self.analysis_id]
        if key not in table:
            raise ConfigError(
                f"analysis '{self.analysis_id}' has no option '{key}'",
            )
        return self.options.get(key, table[key][0])

    def resolved(self) -> Dict[str, str]:
        """All options of this analysis with defaults filled in."""
        table = ANALYSIS_OPTIONS[self.analysis_id]
        return {key: self.options.get(key, default)
                for key, (default, _choices) in table.items()}

    def __str__(self) -> str:
        opts = ";".join(f"{k}:{v}" for k, v in sorted(self.resolved().items()))
        return f"{self.analysis_id}[{opts}]"


def configure_logging(verbosity: int = 0) -> logging.Logger:
    """Set up the root ``irflow`` logger.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.

    Calling this more than once replaces the previously installed handler.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    root = logging.getLogger("irflow")
    for handler in list(root.handlers):
        if getattr(handler, "_irflow_handler", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    handler._irflow_handler = True  # type: ignore[attr-defined]
    root.setLevel(level)
    root.addHandler(handler)
    logger.debug("logging configured at %s", logging.getLevelName(level))
    return root
