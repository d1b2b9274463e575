"""Adapters from node tracer output to abstract trace records.

``debug_traceTransaction`` returns one of two shapes depending on the
tracer requested:

* the default opcode logger: ``{"gasUsed": …, "structLogs": [{op, gasCost, depth, …}]}``
  where nesting is implied by ``depth`` changes;
* ``callTracer``: a nested ``{type, to, input, gasUsed, calls: […]}`` tree.

Both are flattened into the ``enter`` / ``step`` / ``exit`` record stream
consumed by :func:`gasscope.ingestion.trace_parser.parse_trace`.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from gasscope.core.errors import MalformedTrace
from gasscope.ingestion.trace_parser import parse_quantity

logger = logging.getLogger(__name__)

_STEP_FIELDS = ("structLogs", "struct_logs", "steps", "trace")
_RECORD_FIELDS = ("events", "records")
_KINDS = {"enter", "exit", "step", "call", "return"}


class _RecordWriter:
    """Accumulates records with consecutive sequence indices."""

    def __init__(self) -> None:
        self.records: list[dict[str, Any]] = []

    def emit(self, kind: str, label: str, cost: int = 0, status: str | None = None) -> None:
        record: dict[str, Any] = {
            "kind": kind,
            "label": label,
            "costDelta": cost,
            "sequence": len(self.records),
        }
        if status is not None:
            record["status"] = status
        self.records.append(record)


# ── structLogs (opcode logger) ───────────────────────────────────────────────


def records_from_struct_logs(
    trace: Mapping[str, Any] | Sequence[Any],
    root_label: str = "transaction",
) -> list[dict[str, Any]]:
    """Flatten a depth-annotated opcode log into trace records.

    A synthetic root frame wraps the whole execution. A depth increase opens
    a frame named after the step's ``function`` (when the tracer provides
    debug symbols) or after the call opcode that caused it; a depth
    decrease closes frames. Each opcode becomes a ``step`` carrying its
    ``gasCost``.
    """
    if isinstance(trace, Mapping):
        logs: Any = None
        for name in _STEP_FIELDS:
            if isinstance(trace.get(name), list):
                logs = trace[name]
                break
        if logs is None:
            logger.warning("No execution steps found in trace")
            logs = []
        if trace.get("failed"):
            root_status: str = "reverted"
        else:
            root_status = "ok"
    else:
        logs = list(trace)
        root_status = "ok"

    out = _RecordWriter()
    out.emit("enter", root_label)
    open_labels: list[str] = [root_label]
    base_depth: int | None = None
    last_op = "CALL"

    for position, log in enumerate(logs):
        if not isinstance(log, Mapping):
            raise MalformedTrace("struct log entry must be an object", position)
        depth = parse_quantity(log.get("depth", base_depth or 1), field="depth", sequence=position)
        if base_depth is None:
            base_depth = depth
        if depth < base_depth:
            raise MalformedTrace(
                f"depth {depth} is above the entry depth {base_depth}", position, "depth"
            )
        level = depth - base_depth + 1

        while len(open_labels) > level:
            out.emit("exit", open_labels.pop())
        while len(open_labels) < level:
            label = log.get("function") or f"{last_op}@{len(open_labels)}"
            open_labels.append(str(label))
            out.emit("enter", open_labels[-1])

        op = str(log.get("op") or log.get("function") or "unknown")
        cost = parse_quantity(
            log.get("gasCost", log.get("gas_cost", 0)), field="gasCost", sequence=position
        )
        out.emit("step", op, cost)
        last_op = op

    while len(open_labels) > 1:
        out.emit("exit", open_labels.pop())
    out.emit("exit", root_label, status=root_status)
    return out.records


# ── callTracer ───────────────────────────────────────────────────────────────


def call_label(call: Mapping[str, Any]) -> str:
    """``address:selector`` for calls, ``TYPE:address`` for creations."""
    call_type = str(call.get("type", "CALL")).upper()
    target = str(call.get("to") or "0x")
    if call_type.startswith("CREATE"):
        return f"{call_type}:{target}"
    data = str(call.get("input") or "")
    if len(data) >= 10:
        return f"{target}:{data[:10]}"
    return target


def _call_status(call: Mapping[str, Any]) -> str:
    error = call.get("error")
    if not error:
        return "ok"
    if "out of gas" in str(error).lower():
        return "out_of_resource"
    return "reverted"


def records_from_call_tracer(call: Mapping[str, Any]) -> list[dict[str, Any]]:
    """Flatten a ``callTracer`` frame tree into trace records.

    Each call's own gas (``gasUsed`` minus its sub-calls' ``gasUsed``) is
    emitted as one ``step`` right after its ``enter``.
    """
    out = _RecordWriter()
    # (call, closing): closing entries emit the matching exit
    stack: list[tuple[Mapping[str, Any], bool]] = [(call, False)]
    index = 0

    while stack:
        frame, closing = stack.pop()
        if not isinstance(frame, Mapping):
            raise MalformedTrace("call frame must be an object", index)
        label = call_label(frame)
        if closing:
            out.emit("exit", label, status=_call_status(frame))
            continue

        index += 1
        calls = frame.get("calls") or []
        used = parse_quantity(frame.get("gasUsed", 0), field="gasUsed", sequence=index)
        children_used = sum(
            parse_quantity(c.get("gasUsed", 0), field="gasUsed", sequence=index)
            for c in calls
            if isinstance(c, Mapping)
        )
        if children_used > used:
            raise MalformedTrace(
                f"sub-calls of {label} use {children_used} gas, more than its {used}",
                index,
                "gasUsed",
            )

        out.emit("enter", label)
        out.emit("step", label, used - children_used)
        stack.append((frame, True))
        for child in reversed(calls):
            stack.append((child, False))

    return out.records


# ── Auto-detection ───────────────────────────────────────────────────────────


def _looks_like_records(items: Sequence[Any]) -> bool:
    first = items[0] if items else None
    if not isinstance(first, Mapping):
        return False
    kind = first.get("kind", first.get("type", first.get("event")))
    return isinstance(kind, str) and kind.lower() in _KINDS


def records_from_node_trace(raw: Any, root_label: str = "transaction") -> list[Any]:
    """Detect the trace shape and return abstract trace records.

    Already-abstract record lists are returned unchanged.
    """
    if isinstance(raw, Mapping):
        for name in _RECORD_FIELDS:
            if isinstance(raw.get(name), list):
                return list(raw[name])
        if any(name in raw for name in _STEP_FIELDS):
            return records_from_struct_logs(raw, root_label)
        if "calls" in raw or ("type" in raw and "gasUsed" in raw):
            return records_from_call_tracer(raw)
        raise MalformedTrace("unrecognized trace format")

    if isinstance(raw, Sequence) and not isinstance(raw, (str, bytes)):
        if not raw or _looks_like_records(raw):
            return list(raw)
        logger.warning("Trace is a bare array, treating it as structLogs")
        return records_from_struct_logs(raw, root_label)

    raise MalformedTrace(f"trace must be an object or array, got {type(raw).__name__}")
