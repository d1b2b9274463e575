"""Trace parser — loosely typed trace records in, typed ``TraceEvent``s out.

Purely structural: validates and coerces each record, never builds a
tree. Fails fast with ``MalformedTrace`` on the first bad record.

Accepted record shape (aliases in parentheses)::

    {
        "kind": "enter" | "exit" | "step",     (type, event)
        "label": "0xabc…:0xa9059cbb",          (name, function, op)
        "costDelta": 3 | "3" | "0x3",           (cost_delta, cost, gasCost, gas_cost)
        "sequence": 17,                         (seq, index)
        "status": "reverted",                   optional, exit only
    }
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

import pydantic

from gasscope.core.errors import MalformedTrace
from gasscope.core.types import EventKind, FrameStatus, TraceEvent

logger = logging.getLogger(__name__)


# ── Field aliases ────────────────────────────────────────────────────────────

_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "kind": ("kind", "type", "event"),
    "label": ("label", "name", "function", "op"),
    "cost_delta": ("costDelta", "cost_delta", "cost", "gasCost", "gas_cost"),
    "sequence": ("sequence", "seq", "index"),
    "status": ("status",),
}

_KIND_ALIASES: dict[str, EventKind] = {
    "enter": EventKind.ENTER,
    "call": EventKind.ENTER,
    "exit": EventKind.EXIT,
    "return": EventKind.EXIT,
    "step": EventKind.STEP,
}

_STATUS_ALIASES: dict[str, FrameStatus] = {
    "ok": FrameStatus.OK,
    "success": FrameStatus.OK,
    "reverted": FrameStatus.REVERTED,
    "revert": FrameStatus.REVERTED,
    "out_of_resource": FrameStatus.OUT_OF_RESOURCE,
    "out_of_gas": FrameStatus.OUT_OF_RESOURCE,
    "oog": FrameStatus.OUT_OF_RESOURCE,
}


def _pick(record: Mapping[str, Any], name: str) -> tuple[str, Any] | None:
    for key in _FIELD_ALIASES[name]:
        if key in record:
            return key, record[key]
    return None


def parse_quantity(value: Any, *, field: str, sequence: int | None = None) -> int:
    """Parse a non-negative integer given as int, decimal string or 0x-hex.

    Node RPCs commonly return gas values as hex quantities.
    """
    if isinstance(value, bool):
        raise MalformedTrace("expected an integer, got a boolean", sequence, field)
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        text = value.strip()
        try:
            if text.lower().startswith("0x"):
                result = int(text, 16)
            else:
                result = int(text, 10)
        except ValueError:
            raise MalformedTrace(
                f"invalid integer value {value!r}", sequence, field
            ) from None
    else:
        raise MalformedTrace(
            f"expected an integer, got {type(value).__name__}", sequence, field
        )
    if result < 0:
        raise MalformedTrace(f"negative value {result}", sequence, field)
    return result


def _parse_kind(value: Any, sequence: int, field: str) -> EventKind:
    if not isinstance(value, str) or value.lower() not in _KIND_ALIASES:
        raise MalformedTrace(f"unknown event kind {value!r}", sequence, field)
    return _KIND_ALIASES[value.lower()]


def _parse_status(value: Any, sequence: int) -> FrameStatus | None:
    if value is None:
        return None
    if not isinstance(value, str) or value.lower() not in _STATUS_ALIASES:
        raise MalformedTrace(f"unknown frame status {value!r}", sequence, "status")
    return _STATUS_ALIASES[value.lower()]


def parse_record(record: Any, position: int, *, explicit_sequence: bool = True) -> TraceEvent:
    """Parse a single record. ``position`` is its index in the raw stream."""
    if not isinstance(record, Mapping):
        raise MalformedTrace(
            f"record must be an object, got {type(record).__name__}", position
        )

    fields: dict[str, Any] = {}
    source_keys: dict[str, str] = {}

    if explicit_sequence:
        found = _pick(record, "sequence")
        if found is None:
            raise MalformedTrace("missing required field", position, "sequence")
        source_keys["sequence"] = found[0]
        fields["sequence"] = parse_quantity(found[1], field=found[0], sequence=position)
    else:
        fields["sequence"] = position
    sequence = fields["sequence"]

    for name in ("kind", "label", "cost_delta"):
        found = _pick(record, name)
        if found is None:
            raise MalformedTrace("missing required field", sequence, name)
        source_keys[name], fields[name] = found

    fields["kind"] = _parse_kind(fields["kind"], sequence, source_keys["kind"])
    fields["cost_delta"] = parse_quantity(
        fields["cost_delta"], field=source_keys["cost_delta"], sequence=sequence
    )
    status = _pick(record, "status")
    fields["status"] = _parse_status(status[1] if status else None, sequence)

    try:
        return TraceEvent(**fields)
    except pydantic.ValidationError as exc:
        error = exc.errors()[0]
        name = str(error["loc"][0]) if error["loc"] else None
        raise MalformedTrace(
            error["msg"], sequence, source_keys.get(name or "", name)
        ) from None


def parse_trace(records: Iterable[Any]) -> list[TraceEvent]:
    """Turn a raw ordered record sequence into validated ``TraceEvent``s.

    Raises:
        MalformedTrace: on the first structurally invalid record, on a
            sequence index lower than its predecessor, or on two Enter/Exit
            boundaries sharing one sequence index.
    """
    events: list[TraceEvent] = []
    explicit: bool | None = None
    boundary_sequences: set[int] = set()
    previous = -1

    for position, record in enumerate(records):
        has_sequence = isinstance(record, Mapping) and _pick(record, "sequence") is not None
        if explicit is None:
            explicit = has_sequence
        elif has_sequence != explicit:
            raise MalformedTrace(
                "sequence index must be given on every record or on none",
                position,
                "sequence",
            )

        event = parse_record(record, position, explicit_sequence=explicit)

        if event.sequence < previous:
            raise MalformedTrace(
                f"sequence index {event.sequence} follows {previous}",
                event.sequence,
                "sequence",
            )
        if event.is_boundary:
            if event.sequence in boundary_sequences:
                raise MalformedTrace(
                    "more than one enter/exit at this sequence index",
                    event.sequence,
                    "sequence",
                )
            boundary_sequences.add(event.sequence)

        previous = event.sequence
        events.append(event)

    logger.debug("Parsed %d trace events", len(events), extra={"event_count": len(events)})
    return events
