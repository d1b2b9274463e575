"""Tests for gasscope.ingestion.tracer_formats — node trace adapters."""

from __future__ import annotations

import pytest

from conftest import record
from gasscope.core.errors import MalformedTrace
from gasscope.core.types import FrameStatus
from gasscope.ingestion.trace_parser import parse_trace
from gasscope.ingestion.tracer_formats import (
    call_label,
    records_from_call_tracer,
    records_from_node_trace,
    records_from_struct_logs,
)
from gasscope.profiler.call_tree import build_call_tree


def _tree(records):
    return build_call_tree(parse_trace(records))


# ── callTracer ───────────────────────────────────────────────────────────────


class TestCallLabel:
    def test_call_with_selector(self):
        assert call_label({"type": "CALL", "to": "0xtoken", "input": "0xa9059cbb00ff"}) == "0xtoken:0xa9059cbb"

    def test_call_without_selector(self):
        assert call_label({"type": "CALL", "to": "0xtoken", "input": "0x"}) == "0xtoken"

    def test_create(self):
        assert call_label({"type": "create2", "to": "0xnew", "input": "0x6080604052"}) == "CREATE2:0xnew"


class TestCallTracer:
    def test_records_are_sequential(self, call_tracer_trace):
        records = records_from_call_tracer(call_tracer_trace)
        assert [r["sequence"] for r in records] == list(range(len(records)))
        assert records[0]["kind"] == "enter"
        assert records[-1]["kind"] == "exit"

    def test_self_gas_excludes_subcalls(self, call_tracer_trace):
        root = _tree(records_from_call_tracer(call_tracer_trace))
        assert root.label == "0xrouter:0x38ed1739"
        assert root.total_cost == 100
        assert root.self_cost == 35
        token, create = root.children
        assert token.self_cost == 25
        assert token.total_cost == 40
        assert create.label == "CREATE:0xnew"
        assert create.total_cost == 25

    def test_error_maps_to_status(self, call_tracer_trace):
        root = _tree(records_from_call_tracer(call_tracer_trace))
        oracle = root.children[0].children[0]
        assert oracle.label == "0xoracle"
        assert oracle.status is FrameStatus.REVERTED
        assert root.status is FrameStatus.OK

    def test_out_of_gas_status(self):
        records = records_from_call_tracer(
            {"type": "CALL", "to": "0xa", "gasUsed": 10, "error": "out of gas"}
        )
        assert records[-1]["status"] == "out_of_resource"

    def test_subcalls_exceeding_parent_rejected(self):
        trace = {"type": "CALL", "to": "0xa", "gasUsed": 10, "calls": [{"type": "CALL", "to": "0xb", "gasUsed": 11}]}
        with pytest.raises(MalformedTrace, match="more than its 10"):
            records_from_call_tracer(trace)


# ── structLogs ───────────────────────────────────────────────────────────────


class TestStructLogs:
    def test_depth_changes_open_and_close_frames(self, struct_log_trace):
        root = _tree(records_from_struct_logs(struct_log_trace, root_label="0xtx"))
        assert root.label == "0xtx"
        assert root.total_cost == 52
        assert root.self_cost == 29
        assert len(root.children) == 1
        child = root.children[0]
        assert child.label == "CALL@1"
        assert child.self_cost == 23

    def test_function_names_label_frames(self):
        logs = [
            {"op": "CALL", "gasCost": 1, "depth": 1},
            {"op": "SLOAD", "gasCost": 5, "depth": 2, "function": "balanceOf"},
        ]
        root = _tree(records_from_struct_logs(logs))
        assert root.label == "transaction"
        assert root.children[0].label == "balanceOf"

    def test_failed_trace_reverts_root(self, struct_log_trace):
        struct_log_trace["failed"] = True
        records = records_from_struct_logs(struct_log_trace)
        assert records[-1]["status"] == "reverted"

    def test_unwinds_open_frames_at_end(self):
        logs = [
            {"op": "CALL", "gasCost": 1, "depth": 1},
            {"op": "CALL", "gasCost": 1, "depth": 2},
            {"op": "STOP", "gasCost": 0, "depth": 3},
        ]
        root = _tree(records_from_struct_logs(logs))
        assert root.max_depth() == 2
        assert root.total_cost == 2

    def test_depth_above_entry_rejected(self):
        logs = [{"op": "PUSH1", "gasCost": 3, "depth": 2}, {"op": "STOP", "gasCost": 0, "depth": 1}]
        with pytest.raises(MalformedTrace, match="above the entry depth"):
            records_from_struct_logs(logs)

    def test_empty_logs_yield_root_only(self):
        root = _tree(records_from_struct_logs({"structLogs": []}))
        assert root.children == []
        assert root.total_cost == 0


# ── Detection ────────────────────────────────────────────────────────────────


class TestDetection:
    def test_abstract_records_pass_through(self, scenario_records):
        assert records_from_node_trace(scenario_records) == scenario_records

    def test_wrapped_records(self, scenario_records):
        assert records_from_node_trace({"events": scenario_records}) == scenario_records

    def test_call_tracer_detected(self, call_tracer_trace):
        records = records_from_node_trace(call_tracer_trace)
        assert records[0] == record("enter", "0xrouter:0x38ed1739", 0)

    def test_struct_logs_detected(self, struct_log_trace):
        records = records_from_node_trace(struct_log_trace, root_label="0xfeed")
        assert records[0]["label"] == "0xfeed"

    def test_bare_step_array(self):
        records = records_from_node_trace([{"op": "STOP", "gasCost": 0, "depth": 1}])
        assert records[1]["label"] == "STOP"

    def test_unknown_object_rejected(self):
        with pytest.raises(MalformedTrace, match="unrecognized"):
            records_from_node_trace({"hello": "world"})

    def test_scalar_rejected(self):
        with pytest.raises(MalformedTrace, match="object or array"):
            records_from_node_trace("0xdeadbeef")
