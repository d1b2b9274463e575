"""Shared enums and types used across gasscope."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Iterator

from pydantic import BaseModel, ConfigDict, Field


# ── Enums ────────────────────────────────────────────────────────────────────


class EventKind(str, enum.Enum):
    """Kind of a single trace observation."""

    ENTER = "enter"
    EXIT = "exit"
    STEP = "step"


class FrameStatus(str, enum.Enum):
    """How a call frame terminated."""

    OK = "ok"
    REVERTED = "reverted"
    OUT_OF_RESOURCE = "out_of_resource"


# ── Trace events ─────────────────────────────────────────────────────────────


class TraceEvent(BaseModel):
    """One atomic observation from a transaction's execution record."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: EventKind
    label: str
    cost_delta: int = Field(ge=0)
    sequence: int = Field(ge=0)
    status: FrameStatus | None = None

    @property
    def is_boundary(self) -> bool:
        return self.kind is not EventKind.STEP


# ── Call tree ────────────────────────────────────────────────────────────────

PATH_SEPARATOR = ";"


@dataclass
class CallFrame:
    """One node of the reconstructed call tree.

    Owned by its parent; ``total_cost`` is always ``self_cost`` plus the
    children's ``total_cost``.
    """

    label: str
    depth: int = 0
    self_cost: int = 0
    total_cost: int = 0
    status: FrameStatus = FrameStatus.OK
    children: list[CallFrame] = field(default_factory=list)

    def walk(self) -> Iterator[tuple[str, CallFrame]]:
        """Yield ``(call_path, frame)`` depth-first in call order."""
        stack: list[tuple[str, CallFrame]] = [(self.label, self)]
        while stack:
            path, frame = stack.pop()
            yield path, frame
            for child in reversed(frame.children):
                stack.append((f"{path}{PATH_SEPARATOR}{child.label}", child))

    def frame_count(self) -> int:
        return sum(1 for _ in self.walk())

    def max_depth(self) -> int:
        return max(frame.depth for _, frame in self.walk())
