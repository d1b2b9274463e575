"""Shared fixtures for the gasscope test suite."""

from __future__ import annotations

from typing import Any

import pytest

from gasscope.core.config import get_settings
from gasscope.core.types import CallFrame, EventKind, TraceEvent
from gasscope.ingestion.trace_parser import parse_trace
from gasscope.profiler.call_tree import build_call_tree
from gasscope.profiler.profile import Profile

CAPTURED_AT = "2026-01-01T00:00:00+00:00"


def record(kind: str, label: str, sequence: int, cost: int = 0, **extra: Any) -> dict[str, Any]:
    """Build one abstract trace record."""
    return {"kind": kind, "label": label, "costDelta": cost, "sequence": sequence, **extra}


def make_profile(
    b_cost: int = 5,
    a_cost: int = 12,
    transaction_id: str = "0xabc",
) -> Profile:
    """A{self=a_cost} calling B{self=b_cost}."""
    b = CallFrame(label="B", depth=1, self_cost=b_cost, total_cost=b_cost)
    a = CallFrame(label="A", depth=0, self_cost=a_cost, total_cost=a_cost + b_cost, children=[b])
    return Profile.from_tree(a, transaction_id, 100, captured_at=CAPTURED_AT)


# ── Settings ─────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Drop the cached settings so env patches take effect per test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ── Trace fixtures ───────────────────────────────────────────────────────────


@pytest.fixture
def scenario_records() -> list[dict[str, Any]]:
    """A spends 10, calls B (5), spends 2 more."""
    return [
        record("enter", "A", 0),
        record("step", "A", 1, 10),
        record("enter", "B", 2),
        record("step", "B", 3, 5),
        record("exit", "B", 4),
        record("step", "A", 5, 2),
        record("exit", "A", 6),
    ]


@pytest.fixture
def scenario_events(scenario_records) -> list[TraceEvent]:
    return parse_trace(scenario_records)


@pytest.fixture
def scenario_tree(scenario_events) -> CallFrame:
    return build_call_tree(scenario_events)


@pytest.fixture
def scenario_profile(scenario_tree) -> Profile:
    return Profile.from_tree(scenario_tree, "0xabc", 100, captured_at=CAPTURED_AT)


@pytest.fixture
def wide_profile() -> Profile:
    """Root with three children of uneven cost and one grandchild."""
    leaf = CallFrame(label="leaf", depth=2, self_cost=7, total_cost=7)
    c1 = CallFrame(label="c1", depth=1, self_cost=3, total_cost=10, children=[leaf])
    c2 = CallFrame(label="c2", depth=1, self_cost=20, total_cost=20)
    c3 = CallFrame(label="c3", depth=1, self_cost=33, total_cost=33)
    root = CallFrame(label="root", depth=0, self_cost=37, total_cost=100, children=[c1, c2, c3])
    return Profile.from_tree(root, "0xwide", None, captured_at=CAPTURED_AT)


@pytest.fixture
def call_tracer_trace() -> dict[str, Any]:
    """``callTracer`` output: root calls a token, which reverts a nested call."""
    return {
        "type": "CALL",
        "from": "0xsender",
        "to": "0xrouter",
        "input": "0x38ed173900000000",
        "gasUsed": "0x64",  # 100
        "calls": [
            {
                "type": "CALL",
                "to": "0xtoken",
                "input": "0xa9059cbb0000",
                "gasUsed": 40,
                "calls": [
                    {"type": "STATICCALL", "to": "0xoracle", "input": "0x", "gasUsed": 15, "error": "execution reverted"},
                ],
            },
            {"type": "CREATE", "to": "0xnew", "gasUsed": 25},
        ],
    }


@pytest.fixture
def struct_log_trace() -> dict[str, Any]:
    """Opcode logger output with one nested call at depth 2."""
    return {
        "gas": 52,
        "failed": False,
        "structLogs": [
            {"pc": 0, "op": "PUSH1", "gasCost": 3, "depth": 1},
            {"pc": 2, "op": "CALL", "gasCost": 20, "depth": 1},
            {"pc": 0, "op": "PUSH1", "gasCost": 3, "depth": 2},
            {"pc": 2, "op": "SSTORE", "gasCost": "0x14", "depth": 2},
            {"pc": 4, "op": "RETURN", "gasCost": 0, "depth": 2},
            {"pc": 3, "op": "POP", "gasCost": 2, "depth": 1},
            {"pc": 4, "op": "STOP", "gasCost": 4, "depth": 1},
        ],
    }


def event(kind: EventKind, label: str, sequence: int, cost: int = 0, status=None) -> TraceEvent:
    return TraceEvent(kind=kind, label=label, cost_delta=cost, sequence=sequence, status=status)
