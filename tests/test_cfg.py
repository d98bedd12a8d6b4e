# tests/test_cfg.py
"""
Tests for IR construction and statement-level CFGs.
"""

import pytest

from irflow.ctrlflow_graph import CFG, EdgeKind, build_cfg, cfg_summary
from irflow.errors import IRBuildError, MalformedGraphError, ResultAccessError
from irflow.ir import (
    AssignStmt,
    ConditionExp,
    Goto,
    IR,
    If,
    IntLiteral,
    IRBuilder,
    Nop,
    Return,
)
from tests import programs


def out_kinds(cfg, node):
    return [(e.target, e.kind) for e in cfg.get_out_edges_of(node)]


# ── IRBuilder ───────────────────────────────────────────────────

class TestIRBuilder:

    def test_indices_follow_program_order(self, branch_prog):
        stmts = branch_prog.ir.get_stmts()
        assert [s.index for s in stmts] == list(range(len(stmts)))

    def test_jump_targets_resolved(self, branch_prog):
        assert branch_prog.cond.target is branch_prog.then_assign
        assert branch_prog.else_goto.target is branch_prog.ret

    def test_if_accepts_symbol_tuple(self, loop_prog):
        assert isinstance(loop_prog.head.condition, ConditionExp)
        assert loop_prog.head.target is loop_prog.ret

    def test_params_and_return_vars(self, loop_prog):
        ir = loop_prog.ir
        assert ir.get_params() == [loop_prog.n]
        assert ir.get_return_vars() == [loop_prog.s]

    def test_undefined_label(self):
        b = IRBuilder("f")
        b.goto("nowhere")
        with pytest.raises(IRBuildError, match="undefined label"):
            b.build()

    def test_duplicate_label(self):
        b = IRBuilder("f")
        b.label("l")
        b.nop()
        with pytest.raises(IRBuildError, match="duplicate label"):
            b.label("l")

    def test_trailing_label(self):
        b = IRBuilder("f")
        b.ret()
        b.label("dangling")
        with pytest.raises(IRBuildError):
            b.build()

    def test_empty_body(self):
        with pytest.raises(IRBuildError, match="empty body"):
            IRBuilder("f").build()

    def test_non_condition_symbol_in_if(self):
        b = IRBuilder("f")
        x, y = b.new_var("x"), b.new_var("y")
        with pytest.raises(IRBuildError):
            b.if_(("+", x, y), "l")

    def test_unknown_binary_operator(self):
        b = IRBuilder("f")
        x = b.new_var("x")
        with pytest.raises(IRBuildError, match="unknown binary operator"):
            b.binary(x, "**", x, x)

    def test_append_after_build(self):
        b = IRBuilder("f")
        b.ret()
        b.build()
        with pytest.raises(IRBuildError):
            b.nop()

    def test_stmt_repr(self, branch_prog):
        assert repr(branch_prog.else_assign) == "3@y = 2"
        assert repr(branch_prog.cond) == "2@if (a > c) goto 5"


class TestDefsAndUses:

    def test_assign(self, loop_prog):
        assert loop_prog.add.get_def() is loop_prog.s
        assert loop_prog.add.get_uses() == [loop_prog.s, loop_prog.i]

    def test_if_uses_condition_operands(self, loop_prog):
        assert loop_prog.head.get_def() is None
        assert loop_prog.head.get_uses() == [loop_prog.i, loop_prog.n]

    def test_return_uses_value(self, loop_prog):
        assert loop_prog.ret.get_uses() == [loop_prog.s]

    def test_switch_uses_selector(self):
        prog = programs.switch_program()
        assert prog.switch.get_uses() == [prog.k]

    def test_fall_through(self, branch_prog):
        assert branch_prog.cond.can_fall_through()
        assert branch_prog.else_assign.can_fall_through()
        assert not branch_prog.else_goto.can_fall_through()
        assert not branch_prog.ret.can_fall_through()


# ── Result store ────────────────────────────────────────────────

class TestResultStore:

    def test_store_and_get(self, goto_prog):
        ir = goto_prog.ir
        ir.store_result("x", 42)
        assert ir.has_result("x")
        assert ir.get_result("x") == 42

    def test_missing_result(self, goto_prog):
        with pytest.raises(ResultAccessError, match="no 'constprop' result"):
            goto_prog.ir.get_result("constprop")


# ── CFG construction ────────────────────────────────────────────

class TestBuildCFG:

    def test_entry_and_exit(self, loop_cfg, loop_prog):
        assert isinstance(loop_cfg.entry, Nop)
        assert isinstance(loop_cfg.exit, Nop)
        assert loop_cfg.entry.index == -1
        assert loop_cfg.exit.index == len(loop_prog.ir)
        assert len(loop_cfg) == len(loop_prog.ir) + 2

    def test_nodes_in_index_order(self, loop_cfg):
        indices = [n.index for n in loop_cfg]
        assert indices == sorted(indices)

    def test_entry_edge(self, loop_cfg, loop_prog):
        first = loop_prog.ir.get_stmt(0)
        assert out_kinds(loop_cfg, loop_cfg.entry) == [(first, EdgeKind.ENTRY)]

    def test_if_edges(self, loop_cfg, loop_prog):
        assert out_kinds(loop_cfg, loop_prog.head) == [
            (loop_prog.ret, EdgeKind.IF_TRUE),
            (loop_prog.add, EdgeKind.IF_FALSE),
        ]

    def test_goto_edge(self, loop_cfg, loop_prog):
        goto = loop_prog.ir.get_stmt(6)
        assert isinstance(goto, Goto)
        assert out_kinds(loop_cfg, goto) == [(loop_prog.head, EdgeKind.GOTO)]

    def test_return_edge(self, loop_cfg, loop_prog):
        assert out_kinds(loop_cfg, loop_prog.ret) == [(loop_cfg.exit, EdgeKind.RETURN)]

    def test_fall_through_edge(self, loop_cfg, loop_prog):
        assert out_kinds(loop_cfg, loop_prog.add) == [(loop_prog.inc, EdgeKind.FALL_THROUGH)]

    def test_loop_head_predecessors(self, loop_cfg, loop_prog):
        preds = loop_cfg.get_preds_of(loop_prog.head)
        assert loop_prog.ir.get_stmt(2) in preds
        assert loop_prog.ir.get_stmt(6) in preds
        assert len(preds) == 2

    def test_switch_edges(self):
        prog = programs.switch_program()
        cfg = build_cfg(prog.ir)
        edges = cfg.get_out_edges_of(prog.switch)
        assert [(e.target, e.kind, e.case_value) for e in edges] == [
            (prog.c1, EdgeKind.SWITCH_CASE, 1),
            (prog.c2, EdgeKind.SWITCH_CASE, 2),
            (prog.c3, EdgeKind.SWITCH_CASE, 3),
            (prog.default, EdgeKind.SWITCH_DEFAULT, None),
        ]
        assert all(e.kind.is_switch for e in edges)

    def test_unreachable_statement_has_no_preds(self, goto_prog):
        cfg = build_cfg(goto_prog.ir)
        assert cfg.get_preds_of(goto_prog.skipped) == []

    def test_last_statement_falls_into_exit(self):
        b = IRBuilder("f")
        x = b.new_var("x")
        last = b.const(x, 1)
        cfg = build_cfg(b.build())
        assert cfg.get_succs_of(last) == [cfg.exit]

    def test_duplicate_targets_collapse_in_succs(self):
        b = IRBuilder("f")
        x = b.new_var("x")
        b.const(x, 0)
        cond = b.if_(("==", x, x), "next")
        b.label("next")
        b.ret()
        cfg = build_cfg(b.build())
        assert len(cfg.get_out_edges_of(cond)) == 2
        assert len(cfg.get_succs_of(cond)) == 1

    def test_summary_lists_every_node(self, loop_cfg):
        text = cfg_summary(loop_cfg)
        assert text.splitlines()[0] == repr(loop_cfg)
        assert len(text.splitlines()) == len(loop_cfg) + 1


class TestValidate:

    def test_built_cfg_is_valid(self, loop_cfg):
        loop_cfg.validate()

    def test_edge_into_entry(self, loop_cfg, loop_prog):
        loop_cfg.add_edge(loop_prog.add, loop_cfg.entry)
        with pytest.raises(MalformedGraphError, match="entry has predecessors"):
            loop_cfg.validate()

    def test_edge_out_of_exit(self, loop_cfg, loop_prog):
        loop_cfg.add_edge(loop_cfg.exit, loop_prog.ret)
        with pytest.raises(MalformedGraphError, match="exit has successors"):
            loop_cfg.validate()

    def test_node_without_successor(self):
        b = IRBuilder("f")
        x = b.new_var("x")
        b.const(x, 1)
        b.ret()
        cfg = CFG(b.build())
        with pytest.raises(MalformedGraphError, match="no successors"):
            cfg.validate()

    def test_foreign_endpoint(self, loop_cfg):
        stranger = AssignStmt(programs.counting_loop().i, IntLiteral(0))
        with pytest.raises(MalformedGraphError):
            loop_cfg.add_edge(loop_cfg.entry, stranger)

    def test_unresolved_jump_target(self):
        b = IRBuilder("f")
        x = b.new_var("x")
        orphan = Goto()
        ir = IR("f", [], [AssignStmt(x, IntLiteral(1)), orphan, Return()])
        for i, stmt in enumerate(ir):
            stmt.index = i
        with pytest.raises(MalformedGraphError, match="has no target"):
            build_cfg(ir)

    def test_if_target_outside_method(self, loop_prog):
        elsewhere = programs.code_after_goto().skipped
        cond = If(loop_prog.head.condition, elsewhere)
        ir = IR("f", [], [cond, Return()])
        with pytest.raises(MalformedGraphError):
            build_cfg(ir)
