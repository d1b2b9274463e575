"""Capture pipeline — trace records in, profile (and flamegraph) out.

    raw trace ─► adapters ─► parse_trace ─► build_call_tree ─► Profile
                                                             ├─► validate (before save)
                                                             └─► render_svg (optional)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from gasscope.core.errors import FetchFailure, TraceError
from gasscope.ingestion.rpc_client import TraceRpcClient
from gasscope.ingestion.trace_parser import parse_trace
from gasscope.ingestion.tracer_formats import records_from_node_trace
from gasscope.profiler.call_tree import build_call_tree
from gasscope.profiler.profile import Profile
from gasscope.profiler.validator import validate_profile
from gasscope.reports.flamegraph import FlamegraphConfig, render_svg

logger = logging.getLogger(__name__)


@dataclass
class CaptureResult:
    """Profile of one transaction plus its optional rendered flamegraph."""

    profile: Profile
    event_count: int
    svg: str | None = None
    duration_ms: float = 0.0


def capture(
    records: Iterable[Any],
    transaction_id: str,
    block_number: int | None = None,
    *,
    captured_at: str | None = None,
    flamegraph: FlamegraphConfig | None = None,
) -> CaptureResult:
    """Run the core pipeline over abstract trace records.

    Raises:
        MalformedTrace, UnbalancedTrace, TrailingOpenFrames: the trace
            cannot be turned into a call tree.
    """
    start = time.monotonic()
    events = parse_trace(records)
    root = build_call_tree(events)
    profile = Profile.from_tree(root, transaction_id, block_number, captured_at)
    validate_profile(profile.to_document()).raise_first()

    svg = render_svg(profile, flamegraph) if flamegraph is not None else None
    duration_ms = (time.monotonic() - start) * 1000

    logger.info(
        "Captured profile for %s: %d gas across %d frames",
        transaction_id,
        profile.total_cost,
        root.frame_count(),
        extra={
            "transaction_id": transaction_id,
            "total_cost": profile.total_cost,
            "event_count": len(events),
            "duration_ms": round(duration_ms, 1),
        },
    )
    return CaptureResult(profile=profile, event_count=len(events), svg=svg, duration_ms=duration_ms)


def capture_trace(
    raw_trace: Any,
    transaction_id: str,
    block_number: int | None = None,
    **kwargs: Any,
) -> CaptureResult:
    """Like :func:`capture`, for raw node output (structLogs, callTracer or records)."""
    records = records_from_node_trace(raw_trace, root_label=transaction_id)
    return capture(records, transaction_id, block_number, **kwargs)


@dataclass
class BatchItem:
    """Per-transaction result of a batch capture."""

    transaction_id: str
    result: CaptureResult | None = None
    error: FetchFailure | TraceError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def capture_batch(
    client: TraceRpcClient,
    tx_hashes: Iterable[str],
    *,
    max_workers: int | None = None,
    timeout: float | None = None,
    flamegraph: FlamegraphConfig | None = None,
) -> list[BatchItem]:
    """Fetch and profile several transactions.

    Fetches run concurrently (bounded); block lookups and profiling run
    sequentially on the fetched traces. One transaction's failure never
    stops the others.
    """
    outcomes = await client.fetch_many(tx_hashes, max_workers=max_workers, timeout=timeout)

    items: list[BatchItem] = []
    for outcome in outcomes:
        if not outcome.ok:
            items.append(BatchItem(outcome.transaction_id, error=outcome.error))
            continue
        try:
            block = await client.get_block_number(outcome.transaction_id)
        except FetchFailure as exc:
            logger.warning(
                "Block lookup failed: %s",
                exc.reason,
                extra={"transaction_id": outcome.transaction_id},
            )
            items.append(BatchItem(outcome.transaction_id, error=exc))
            continue
        try:
            result = capture_trace(outcome.trace, outcome.transaction_id, block, flamegraph=flamegraph)
        except TraceError as exc:
            logger.warning(
                "Could not profile trace: %s",
                exc,
                extra={"transaction_id": outcome.transaction_id},
            )
            items.append(BatchItem(outcome.transaction_id, error=exc))
        else:
            items.append(BatchItem(outcome.transaction_id, result=result))
    return items
