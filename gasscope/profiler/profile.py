"""Profile model and its versioned, canonical serialized form.

Persisted document (schema version 1)::

    {
      "schemaVersion": 1,
      "transactionId": "0x…",
      "blockNumber": 1234 | null,
      "capturedAt": "2026-01-01T00:00:00+00:00",
      "totalCost": 17,
      "root": {"label": "A", "depth": 0, "selfCost": 12, "totalCost": 17,
               "status": "ok", "children": [ … ]}
    }

The canonical form drops ``capturedAt`` and is compact, key-sorted JSON,
so it is a pure function of the trace and its metadata.
"""

from __future__ import annotations

import enum
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from gasscope.core.types import CallFrame, FrameStatus


class SchemaVersion(enum.IntEnum):
    """Every profile schema version this build understands.

    Adding a version means adding a member here and an explicit checker in
    the validator.
    """

    V1 = 1


SCHEMA_VERSION: int = max(SchemaVersion).value


# ── Frame (de)serialization ──────────────────────────────────────────────────


def _frame_fields(frame: CallFrame) -> dict[str, Any]:
    return {
        "label": frame.label,
        "depth": frame.depth,
        "selfCost": frame.self_cost,
        "totalCost": frame.total_cost,
        "status": frame.status.value,
        "children": [],
    }


def frame_to_dict(root: CallFrame) -> dict[str, Any]:
    """Serialize a call tree without recursion."""
    out = _frame_fields(root)
    stack = [(root, out)]
    while stack:
        frame, node = stack.pop()
        for child in frame.children:
            child_node = _frame_fields(child)
            node["children"].append(child_node)
            stack.append((child, child_node))
    return out


def _frame_from_fields(node: Mapping[str, Any]) -> CallFrame:
    return CallFrame(
        label=node["label"],
        depth=node["depth"],
        self_cost=node["selfCost"],
        total_cost=node["totalCost"],
        status=FrameStatus(node["status"]),
    )


def frame_from_dict(node: Mapping[str, Any]) -> CallFrame:
    """Rebuild a call tree from its serialized form without recursion."""
    root = _frame_from_fields(node)
    stack = [(node, root)]
    while stack:
        data, frame = stack.pop()
        for child_data in data.get("children", []):
            child = _frame_from_fields(child_data)
            frame.children.append(child)
            stack.append((child_data, child))
    return root


# ── Profile ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Profile:
    """A completed analysis of one transaction.

    ``captured_at`` is informational and takes no part in equality or in
    the canonical form.
    """

    schema_version: int
    transaction_id: str
    block_number: int | None
    root: CallFrame
    total_cost: int
    captured_at: str | None = field(default=None, compare=False)

    @classmethod
    def from_tree(
        cls,
        root: CallFrame,
        transaction_id: str,
        block_number: int | None = None,
        captured_at: str | None = None,
    ) -> Profile:
        return cls(
            schema_version=SCHEMA_VERSION,
            transaction_id=transaction_id,
            block_number=block_number,
            root=root,
            total_cost=root.total_cost,
            captured_at=captured_at or datetime.now(timezone.utc).isoformat(),
        )

    # ── Serialization ────────────────────────────────────────────────

    def canonical_document(self) -> dict[str, Any]:
        return {
            "schemaVersion": self.schema_version,
            "transactionId": self.transaction_id,
            "blockNumber": self.block_number,
            "totalCost": self.total_cost,
            "root": frame_to_dict(self.root),
        }

    def to_document(self) -> dict[str, Any]:
        document = self.canonical_document()
        document["capturedAt"] = self.captured_at
        return document

    def canonical_bytes(self) -> bytes:
        """Byte-stable form used for idempotence checks and hashing."""
        return json.dumps(
            self.canonical_document(),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
        ).encode("utf-8")

    def dumps(self, indent: int | None = 2) -> str:
        """Persisted JSON document, including ``capturedAt``."""
        return json.dumps(self.to_document(), indent=indent, sort_keys=True, ensure_ascii=False)

    @classmethod
    def from_document(cls, document: Mapping[str, Any], validate: bool = True) -> Profile:
        """Rebuild a profile from its document.

        Raises:
            ValidationError: the first violation found, when ``validate``.
        """
        if validate:
            from gasscope.profiler.validator import validate_profile

            validate_profile(document).raise_first()

        return cls(
            schema_version=document["schemaVersion"],
            transaction_id=document["transactionId"],
            block_number=document.get("blockNumber"),
            root=frame_from_dict(document["root"]),
            total_cost=document["totalCost"],
            captured_at=document.get("capturedAt"),
        )

    @classmethod
    def loads(cls, text: str | bytes, validate: bool = True) -> Profile:
        return cls.from_document(json.loads(text), validate=validate)


# ── Schema description ───────────────────────────────────────────────────────


def schema_description() -> dict[str, Any]:
    """Describe the current profile schema (used by ``gasscope schema``)."""
    statuses = [s.value for s in FrameStatus]
    return {
        "schemaVersion": SCHEMA_VERSION,
        "supportedVersions": [v.value for v in SchemaVersion],
        "profile": {
            "schemaVersion": {"type": "integer", "description": "Profile schema version"},
            "transactionId": {"type": "string", "description": "Transaction hash or identifier"},
            "blockNumber": {"type": ["integer", "null"], "description": "Block the transaction was mined in"},
            "capturedAt": {"type": ["string", "null"], "description": "ISO 8601 capture time (informational)"},
            "totalCost": {"type": "integer", "description": "Total gas; equals root.totalCost"},
            "root": {"type": "frame", "description": "Outermost call frame"},
        },
        "frame": {
            "label": {"type": "string", "description": "Callee (address:selector) or operation name"},
            "depth": {"type": "integer", "description": "Nesting depth, root = 0"},
            "selfCost": {"type": "integer", "description": "Gas spent in this frame excluding children"},
            "totalCost": {"type": "integer", "description": "selfCost + sum of children totalCost"},
            "status": {"type": "string", "enum": statuses, "description": "How the frame terminated"},
            "children": {"type": "array", "items": "frame", "description": "Sub-calls in call order"},
        },
    }
