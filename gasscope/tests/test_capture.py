"""Tests for gasscope.pipeline.capture — end-to-end profiling."""

from __future__ import annotations

import json
import logging

import httpx
import pytest

from conftest import CAPTURED_AT, record
from gasscope.core.errors import FetchFailure, MalformedTrace, TrailingOpenFrames
from gasscope.ingestion.rpc_client import TraceRpcClient
from gasscope.pipeline.capture import capture, capture_batch, capture_trace
from gasscope.profiler.validator import validate_profile
from gasscope.reports.flamegraph import FlamegraphConfig


class TestCapture:
    def test_scenario(self, scenario_records):
        result = capture(scenario_records, "0xabc", 12, captured_at=CAPTURED_AT)
        assert result.profile.total_cost == 17
        assert result.profile.block_number == 12
        assert result.event_count == 7
        assert result.svg is None
        assert validate_profile(result.profile.to_document()).ok

    def test_idempotent(self, scenario_records):
        first = capture(scenario_records, "0xabc", 12)
        second = capture(scenario_records, "0xabc", 12)
        assert first.profile.canonical_bytes() == second.profile.canonical_bytes()

    def test_with_flamegraph(self, scenario_records):
        result = capture(scenario_records, "0xabc", flamegraph=FlamegraphConfig())
        assert result.svg is not None
        assert result.svg.count('<g class="frame"') == 2

    def test_unbalanced_trace_fails(self):
        with pytest.raises(TrailingOpenFrames):
            capture([record("enter", "A", 0)], "0xabc")

    def test_logs_context(self, scenario_records, caplog):
        with caplog.at_level(logging.INFO, logger="gasscope.pipeline.capture"):
            capture(scenario_records, "0xabc")
        (entry,) = [r for r in caplog.records if r.name == "gasscope.pipeline.capture"]
        assert entry.transaction_id == "0xabc"
        assert entry.total_cost == 17


class TestCaptureTrace:
    def test_call_tracer_output(self, call_tracer_trace):
        result = capture_trace(call_tracer_trace, "0xfeed")
        assert result.profile.total_cost == 100
        assert result.profile.root.label == "0xrouter:0x38ed1739"

    def test_struct_logs_root_named_after_transaction(self, struct_log_trace):
        result = capture_trace(struct_log_trace, "0xfeed", 3)
        assert result.profile.root.label == "0xfeed"
        assert result.profile.total_cost == 52

    def test_unrecognized_shape(self):
        with pytest.raises(MalformedTrace):
            capture_trace({"foo": 1}, "0xfeed")


class TestCaptureBatch:
    @pytest.mark.asyncio
    async def test_failures_isolated(self, call_tracer_trace):
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            tx = body["params"][0]
            reply = {"jsonrpc": "2.0", "id": body["id"]}
            if tx == "0x1":
                reply["result"] = call_tracer_trace
            elif tx == "0x2":
                reply["error"] = {"code": -32000, "message": "transaction not found"}
            else:
                reply["result"] = {"type": "CALL", "to": "0xa", "gasUsed": 1, "calls": [{"type": "CALL", "to": "0xb", "gasUsed": 5}]}
            return httpx.Response(200, json=reply)

        client = TraceRpcClient("http://node.test", transport=httpx.MockTransport(handler))
        async with client:
            items = await capture_batch(client, ["0x1", "0x2", "0x3"], flamegraph=FlamegraphConfig())

        ok, missing, broken = items
        assert ok.ok
        assert ok.result.profile.total_cost == 100
        assert ok.result.svg is not None
        assert isinstance(missing.error, FetchFailure)
        assert isinstance(broken.error, MalformedTrace)
        assert broken.transaction_id == "0x3"

    @pytest.mark.asyncio
    async def test_block_number_per_transaction(self, call_tracer_trace):
        blocks = {"0x1": "0x2a", "0x2": "0x2b"}

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            tx = body["params"][0]
            reply = {"jsonrpc": "2.0", "id": body["id"]}
            if body["method"] == "eth_getTransactionByHash":
                reply["result"] = {"hash": tx, "blockNumber": blocks[tx]}
            else:
                reply["result"] = call_tracer_trace
            return httpx.Response(200, json=reply)

        async with TraceRpcClient("http://node.test", transport=httpx.MockTransport(handler)) as client:
            items = await capture_batch(client, ["0x1", "0x2"])

        assert [item.result.profile.block_number for item in items] == [42, 43]
        assert all(item.result.svg is None for item in items)

    @pytest.mark.asyncio
    async def test_block_lookup_failure_isolated(self, call_tracer_trace):
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            tx = body["params"][0]
            reply = {"jsonrpc": "2.0", "id": body["id"]}
            if body["method"] == "debug_traceTransaction":
                reply["result"] = call_tracer_trace
            elif tx == "0x1":
                reply["result"] = {"hash": tx, "blockNumber": "0x7"}
            else:
                reply["error"] = {"code": -32000, "message": "transaction not found"}
            return httpx.Response(200, json=reply)

        async with TraceRpcClient("http://node.test", transport=httpx.MockTransport(handler)) as client:
            good, bad = await capture_batch(client, ["0x1", "0x2"])

        assert good.ok
        assert good.result.profile.block_number == 7
        assert isinstance(bad.error, FetchFailure)
        assert bad.result is None
