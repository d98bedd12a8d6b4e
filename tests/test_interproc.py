# tests/test_interproc.py
"""
Tests for the ICFG and interprocedural constant propagation.
"""

import logging

import pytest

from irflow.callgraph import CallGraph, build_callgraph
from irflow.ctrlflow_graph import EdgeKind
from irflow.dataflow_analyses import Value
from irflow.errors import MalformedGraphError
from irflow.hierarchy import JClass
from irflow.interproc_analysis import (
    CallEdge,
    CallToReturnEdge,
    InterConstantPropagation,
    InterproceduralCFG,
    InterSolver,
    NormalEdge,
    ReturnEdge,
    run_inter_constant_propagation,
)
from irflow.ir import Invoke
from tests import programs


def const(n):
    return Value.make_constant(n)


@pytest.fixture
def calls_icfg(calls_prog):
    return InterproceduralCFG(build_callgraph(calls_prog.program))


# ── ICFG shape ──────────────────────────────────────────────────

class TestICFG:

    def test_methods_with_bodies_only(self, calls_icfg, calls_prog):
        assert calls_icfg.methods() == [calls_prog.main, calls_prog.id, calls_prog.ten]
        assert calls_prog.lib not in calls_icfg.methods()

    def test_missing_body_is_warned(self, calls_prog, irflow_caplog):
        InterproceduralCFG(build_callgraph(calls_prog.program))
        warnings = [r for r in irflow_caplog.records if r.levelno == logging.WARNING]
        assert any("has no IR" in r.getMessage() for r in warnings)

    def test_node_count(self, calls_icfg, calls_prog):
        expected = sum(len(m.ir) + 2 for m in (calls_prog.main, calls_prog.id, calls_prog.ten))
        assert len(calls_icfg) == expected

    def test_call_site_edges(self, calls_icfg, calls_prog):
        out = calls_icfg.get_out_edges_of(calls_prog.call_id)
        assert [type(e) for e in out] == [CallToReturnEdge, CallEdge]
        call_edge = out[1]
        assert call_edge.callee is calls_prog.id
        assert call_edge.target is calls_icfg.get_entry_of(calls_prog.id)
        assert out[0].target is calls_prog.call_ten
        assert out[0].callees_analysed

    def test_return_edges(self, calls_icfg, calls_prog):
        exit_of_id = calls_icfg.get_exit_of(calls_prog.id)
        out = calls_icfg.get_out_edges_of(exit_of_id)
        assert len(out) == 1
        edge = out[0]
        assert isinstance(edge, ReturnEdge)
        assert edge.call_site is calls_prog.call_id
        assert edge.target is calls_prog.call_ten
        assert edge.get_return_vars() == [calls_prog.p]

    def test_call_site_without_analysed_callee(self, calls_icfg, calls_prog):
        out = calls_icfg.get_out_edges_of(calls_prog.call_lib)
        assert len(out) == 1
        assert isinstance(out[0], CallToReturnEdge)
        assert not out[0].callees_analysed
        assert calls_icfg.get_callees_of(calls_prog.call_lib) == []

    def test_normal_edges_keep_kind(self, calls_icfg, calls_prog):
        edges = calls_icfg.get_out_edges_of(calls_prog.add)
        assert len(edges) == 1
        assert isinstance(edges[0], NormalEdge)
        assert edges[0].kind is EdgeKind.FALL_THROUGH

    def test_queries(self, calls_icfg, calls_prog):
        assert calls_icfg.entry_methods() == [calls_prog.main]
        assert calls_icfg.is_call_site(calls_prog.call_id)
        assert not calls_icfg.is_call_site(calls_prog.add)
        assert calls_icfg.get_containing_method_of(calls_prog.id.ir.get_stmt(0)) is calls_prog.id
        assert calls_icfg.get_containing_method_of(calls_prog.add) is calls_prog.main
        assert calls_icfg.get_return_sites_of(calls_prog.call_id) == [calls_prog.call_ten]
        entry_of_id = calls_icfg.get_entry_of(calls_prog.id)
        assert calls_icfg.get_preds_of(entry_of_id) == [calls_prog.call_id]
        assert calls_prog.call_ten in calls_icfg.get_succs_of(calls_prog.call_id)

    def test_callee_entry_has_one_pred_per_call_site(self, two_sites_prog):
        icfg = InterproceduralCFG(build_callgraph(two_sites_prog.program))
        entry = icfg.get_entry_of(two_sites_prog.inc)
        assert icfg.get_preds_of(entry) == [two_sites_prog.first, two_sites_prog.second]
        exit_ = icfg.get_exit_of(two_sites_prog.inc)
        assert [e.target for e in icfg.get_out_edges_of(exit_)] == [
            two_sites_prog.main.ir.get_stmt(2),
            two_sites_prog.ret,
        ]

    def test_validate_requires_entry_with_body(self):
        main_cls = JClass("Main")
        main = main_cls.add_method("main", is_static=True)
        cg = CallGraph()
        cg.add_entry_method(main)
        cg.add_reachable_method(main)
        icfg = InterproceduralCFG(cg)
        with pytest.raises(MalformedGraphError, match="no entry method"):
            icfg.validate()

    def test_invoke_nodes_are_call_sites(self, calls_icfg):
        sites = [n for n in calls_icfg if calls_icfg.is_call_site(n)]
        assert sites and all(isinstance(s, Invoke) for s in sites)


# ── Interprocedural constant propagation ────────────────────────

class TestInterConstantPropagation:

    def test_constants_flow_through_calls(self, calls_prog):
        result = run_inter_constant_propagation(calls_prog.program)
        fact = result.get_out_fact(calls_prog.ret)
        assert fact.get(calls_prog.x) == const(5)
        assert fact.get(calls_prog.y) == const(5)
        assert fact.get(calls_prog.z) == const(10)
        assert fact.get(calls_prog.w) == const(15)

    def test_call_without_body_gives_nac(self, calls_prog):
        result = run_inter_constant_propagation(calls_prog.program)
        assert result.get_out_fact(calls_prog.ret).get(calls_prog.u).is_nac()

    def test_params_bound_from_arguments(self, calls_prog):
        result = run_inter_constant_propagation(calls_prog.program)
        entry_fact = result.get_in_fact(calls_prog.id.ir.get_stmt(0))
        assert entry_fact.get(calls_prog.p) == const(5)

    def test_callee_facts_do_not_leak_into_caller(self, calls_prog):
        result = run_inter_constant_propagation(calls_prog.program)
        assert calls_prog.t not in result.get_out_fact(calls_prog.ret)
        assert calls_prog.p not in result.get_out_fact(calls_prog.ret)

    def test_call_result_not_assigned_before_return(self, calls_prog):
        result = run_inter_constant_propagation(calls_prog.program)
        # the call node itself does not define y; the return edge does
        assert calls_prog.y not in result.get_out_fact(calls_prog.call_id)

    def test_context_insensitive_merge(self, two_sites_prog):
        result = run_inter_constant_propagation(two_sites_prog.program)
        at_ret = result.get_out_fact(two_sites_prog.ret)
        assert at_ret.get(two_sites_prog.a) == const(3)
        assert at_ret.get(two_sites_prog.c) == const(4)
        assert at_ret.get(two_sites_prog.b).is_nac()
        assert at_ret.get(two_sites_prog.d).is_nac()
        inc_fact = result.get_out_fact(two_sites_prog.inc_ret)
        assert inc_fact.get(two_sites_prog.p).is_nac()
        assert inc_fact.get(two_sites_prog.one) == const(1)

    def test_result_stored_in_each_body(self, calls_prog):
        result = run_inter_constant_propagation(calls_prog.program)
        for method in (calls_prog.main, calls_prog.id, calls_prog.ten):
            assert method.ir.get_result("inter-constprop") is result
        assert result.frozen

    def test_solver_over_prebuilt_icfg(self, calls_icfg, calls_prog):
        result = InterSolver(InterConstantPropagation(), calls_icfg).solve()
        assert result.get_out_fact(calls_prog.add).get(calls_prog.w) == const(15)
        assert result.solver_name == "InterSolver"
        assert len(result) == len(calls_icfg)


class TestReturnValues:

    def test_agreeing_returns_give_constant(self):
        prog = programs.two_returns(5, 5)
        result = run_inter_constant_propagation(prog.program)
        assert result.get_out_fact(prog.ret).get(prog.y) == const(5)

    def test_disagreeing_returns_give_nac(self):
        prog = programs.two_returns(5, 6)
        result = run_inter_constant_propagation(prog.program)
        assert result.get_out_fact(prog.ret).get(prog.y).is_nac()

    def test_undefined_return_gives_nac(self):
        # s is never assigned, so one return value is UNDEF and one is 5
        prog = programs.two_returns(5)
        result = run_inter_constant_propagation(prog.program)
        exit_fact = result.get_out_fact(prog.f.ir.get_stmt(len(prog.f.ir) - 1))
        assert exit_fact.get(prog.r) == const(5)
        assert result.get_out_fact(prog.ret).get(prog.y).is_nac()

    def test_return_vars_of_callee(self):
        prog = programs.two_returns(5, 5)
        assert set(prog.f.ir.get_return_vars()) == {prog.r, prog.s}


class TestPartlyAnalysedCallees:

    def test_call_to_return_edge_flags_missing_callee(self):
        prog = programs.mixed_callees()
        icfg = InterproceduralCFG(build_callgraph(prog.program))
        out = icfg.get_out_edges_of(prog.call)
        assert [type(e) for e in out] == [CallToReturnEdge, CallEdge]
        assert not out[0].callees_analysed
        assert icfg.get_callees_of(prog.call) == [prog.a_foo]
        assert icfg.call_graph.callees_of(prog.call) == [prog.a_foo, prog.b_foo]

    def test_result_is_nac(self):
        prog = programs.mixed_callees()
        result = run_inter_constant_propagation(prog.program)
        assert result.get_out_fact(prog.ret).get(prog.y).is_nac()

    def test_analysed_callee_still_solved(self):
        prog = programs.mixed_callees()
        result = run_inter_constant_propagation(prog.program)
        callee_ret = prog.a_foo.ir.get_stmt(1)
        assert result.get_out_fact(callee_ret).get(prog.a_foo.ir.get_return_vars()[0]) == const(1)
