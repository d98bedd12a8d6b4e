# tests/conftest.py
"""
Shared fixtures for the irflow test-suite.

Every fixture builds a fresh program, so tests may run analyses that store
results in the IR without affecting each other.
"""

import logging

import pytest

from irflow.ctrlflow_graph import build_cfg
from tests import programs


# ── Intraprocedural programs ────────────────────────────────────

@pytest.fixture
def branch_prog():
    return programs.constant_branch()


@pytest.fixture
def goto_prog():
    return programs.code_after_goto()


@pytest.fixture
def loop_prog():
    return programs.counting_loop()


@pytest.fixture
def loop_cfg(loop_prog):
    return build_cfg(loop_prog.ir)


@pytest.fixture
def side_effect_prog():
    return programs.side_effects()


# ── Whole programs ──────────────────────────────────────────────

@pytest.fixture
def abc_prog():
    return programs.abc_hierarchy()


@pytest.fixture
def dispatch_prog():
    return programs.dispatch_kinds()


@pytest.fixture
def calls_prog():
    return programs.constant_calls()


@pytest.fixture
def two_sites_prog():
    return programs.two_call_sites()


# ── Logging ─────────────────────────────────────────────────────

@pytest.fixture
def irflow_caplog(caplog):
    """``caplog`` capturing DEBUG and above from the irflow loggers."""
    caplog.set_level(logging.DEBUG, logger="irflow")
    return caplog
