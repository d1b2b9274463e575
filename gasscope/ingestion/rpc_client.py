"""JSON-RPC client for fetching transaction traces from a development node."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import httpx

from gasscope.core.config import get_settings
from gasscope.core.errors import FetchFailure

logger = logging.getLogger(__name__)


def normalize_tx_hash(tx_hash: str) -> str:
    """Ensure the transaction hash carries a ``0x`` prefix."""
    tx_hash = tx_hash.strip()
    if tx_hash.lower().startswith("0x"):
        return "0x" + tx_hash[2:]
    return f"0x{tx_hash}"


def _map_rpc_error(error: Any, tx_hash: str) -> FetchFailure:
    if not isinstance(error, dict):
        return FetchFailure(tx_hash, f"RPC error: {error}")
    code = error.get("code")
    message = str(error.get("message", ""))
    if code == -32000 and "not found" in message.lower():
        return FetchFailure(tx_hash, "transaction not found")
    if code == -32601:
        return FetchFailure(tx_hash, "debug_traceTransaction or tracer not supported by node")
    return FetchFailure(tx_hash, f"RPC error {code}: {message}")


@dataclass
class FetchOutcome:
    """Per-transaction result of a batch fetch: a trace or a failure."""

    transaction_id: str
    trace: Any = None
    error: FetchFailure | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class TraceRpcClient:
    """Async client for ``debug_traceTransaction``.

    Usage::

        async with TraceRpcClient("http://localhost:8547") as client:
            trace = await client.debug_trace_transaction("0xabc…")
            outcomes = await client.fetch_many(["0x1…", "0x2…"], max_workers=4)
    """

    def __init__(
        self,
        rpc_url: str | None = None,
        timeout: float | None = None,
        tracer: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.rpc_url = rpc_url or settings.rpc_url
        self.tracer = settings.rpc_tracer if tracer is None else tracer
        self._timeout = timeout if timeout is not None else settings.rpc_timeout_seconds
        self._ids = itertools.count(1)
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout),
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    # ── Context manager ──────────────────────────────────────────────

    async def __aenter__(self) -> TraceRpcClient:
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    # ── JSON-RPC primitives ──────────────────────────────────────────

    async def _call(self, method: str, params: list[Any], tx_hash: str) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        logger.debug("RPC request %s", method, extra={"transaction_id": tx_hash})
        try:
            response = await self._client.post(self.rpc_url, json=payload)
        except httpx.HTTPError as exc:
            raise FetchFailure(tx_hash, f"request failed: {exc}") from exc

        if not response.is_success:
            raise FetchFailure(
                tx_hash, f"HTTP {response.status_code}: {response.text[:200]}"
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise FetchFailure(tx_hash, "response is not valid JSON") from exc

        if not isinstance(body, dict):
            raise FetchFailure(tx_hash, "response is not a JSON-RPC object")
        if body.get("error") is not None:
            raise _map_rpc_error(body["error"], tx_hash)
        if body.get("result") is None:
            raise FetchFailure(tx_hash, "missing result field")
        return body["result"]

    async def debug_trace_transaction(self, tx_hash: str) -> Any:
        """Fetch the raw trace for one transaction.

        Raises:
            FetchFailure: transport error, HTTP error, JSON-RPC error or
                missing result.
        """
        tx_hash = normalize_tx_hash(tx_hash)
        options: dict[str, Any] = {"tracer": self.tracer} if self.tracer else {}
        logger.info("Fetching trace for transaction %s", tx_hash, extra={"transaction_id": tx_hash})
        return await self._call("debug_traceTransaction", [tx_hash, options], tx_hash)

    async def get_block_number(self, tx_hash: str) -> int | None:
        """Block number the transaction was mined in, or None if pending."""
        tx_hash = normalize_tx_hash(tx_hash)
        tx = await self._call("eth_getTransactionByHash", [tx_hash], tx_hash)
        block = tx.get("blockNumber") if isinstance(tx, dict) else None
        if block is None:
            return None
        try:
            return int(block, 16) if isinstance(block, str) else int(block)
        except ValueError as exc:
            raise FetchFailure(tx_hash, f"invalid block number {block!r}") from exc

    # ── Batch ────────────────────────────────────────────────────────

    async def fetch_many(
        self,
        tx_hashes: Iterable[str],
        max_workers: int | None = None,
        timeout: float | None = None,
    ) -> list[FetchOutcome]:
        """Fetch several traces concurrently.

        At most ``max_workers`` requests are in flight. Each fetch has its
        own ``timeout``. A failure is reported in that transaction's
        outcome and never aborts the rest of the batch. Outcomes are
        returned in input order.
        """
        settings = get_settings()
        workers = max_workers if max_workers is not None else settings.fetch_max_workers
        if workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {workers}")
        per_fetch = timeout if timeout is not None else self._timeout
        semaphore = asyncio.Semaphore(workers)

        async def _one(tx_hash: str) -> FetchOutcome:
            tx_hash = normalize_tx_hash(tx_hash)
            async with semaphore:
                try:
                    trace = await asyncio.wait_for(
                        self.debug_trace_transaction(tx_hash), per_fetch
                    )
                except FetchFailure as exc:
                    error = exc
                except asyncio.TimeoutError:
                    error = FetchFailure(tx_hash, f"timed out after {per_fetch:.1f}s")
                else:
                    return FetchOutcome(tx_hash, trace=trace)
            logger.warning(
                "Trace fetch failed: %s", error.reason, extra={"transaction_id": tx_hash}
            )
            return FetchOutcome(tx_hash, error=error)

        outcomes = await asyncio.gather(*(_one(tx) for tx in tx_hashes))
        failed = sum(1 for o in outcomes if not o.ok)
        logger.info("Fetched %d traces (%d failed)", len(outcomes) - failed, failed)
        return list(outcomes)
