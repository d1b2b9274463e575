"""Call-tree builder — rebuilds nested call frames from a linear event stream.

Uses an explicit stack of open frames rather than recursion, so tree depth
is bounded only by the trace, never by the interpreter's call stack.

    events ─► [Enter] push frame
              [Step ] add cost to the top frame
              [Exit ] pop, finalize total_cost, attach to new top

Boundary rule: a Step that shares its sequence index with an Enter belongs
to the frame being entered; one that shares an index with an Exit belongs
to the frame being closed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from gasscope.core.errors import TrailingOpenFrames, UnbalancedTrace
from gasscope.core.types import CallFrame, EventKind, FrameStatus, TraceEvent

logger = logging.getLogger(__name__)


class CallTreeBuilder:
    """Incrementally consume ``TraceEvent``s and produce one rooted tree.

    Usage::

        builder = CallTreeBuilder()
        for event in events:
            builder.feed(event)
        root = builder.finish()
    """

    def __init__(self) -> None:
        self._stack: list[CallFrame] = []
        self._root: CallFrame | None = None
        # Steps whose sequence index may still turn out to be an Enter's
        self._pending: list[TraceEvent] = []
        self._last_closed: tuple[int, CallFrame] | None = None
        self._events = 0

    @property
    def depth(self) -> int:
        return len(self._stack)

    def feed(self, event: TraceEvent) -> None:
        self._events += 1

        if self._pending and event.sequence != self._pending[0].sequence:
            self._flush_pending()

        if event.kind is EventKind.STEP:
            self._on_step(event)
        elif event.kind is EventKind.ENTER:
            self._on_enter(event)
            self._flush_pending()
        else:
            self._flush_pending()
            self._on_exit(event)

    def finish(self) -> CallFrame:
        """Close the stream and return the root frame.

        Raises:
            UnbalancedTrace: no frame was ever opened, or a Step fell
                outside every frame.
            TrailingOpenFrames: frames are still open.
        """
        self._flush_pending()
        if self._stack:
            raise TrailingOpenFrames([frame.label for frame in self._stack])
        if self._root is None:
            raise UnbalancedTrace("trace contains no call frames")

        logger.debug(
            "Built call tree from %d events: root=%s total=%d",
            self._events,
            self._root.label,
            self._root.total_cost,
            extra={"event_count": self._events, "total_cost": self._root.total_cost},
        )
        return self._root

    # ── Event handlers ───────────────────────────────────────────────

    def _on_step(self, event: TraceEvent) -> None:
        closed = self._last_closed
        if closed is not None and closed[0] == event.sequence:
            frame = closed[1]
            frame.self_cost += event.cost_delta
            frame.total_cost += event.cost_delta
            return
        self._pending.append(event)

    def _on_enter(self, event: TraceEvent) -> None:
        if not self._stack and self._root is not None:
            raise UnbalancedTrace(
                f"second root frame '{event.label}' after '{self._root.label}' closed",
                event.sequence,
                event.label,
            )
        frame = CallFrame(
            label=event.label,
            depth=len(self._stack),
            self_cost=event.cost_delta,
        )
        if self._root is None:
            self._root = frame
        self._stack.append(frame)
        self._last_closed = None

    def _on_exit(self, event: TraceEvent) -> None:
        if not self._stack:
            raise UnbalancedTrace(
                f"exit '{event.label}' without a matching enter",
                event.sequence,
                event.label,
            )
        frame = self._stack[-1]
        if event.label != frame.label:
            raise UnbalancedTrace(
                f"exit '{event.label}' while '{frame.label}' is open",
                event.sequence,
                event.label,
            )

        self._stack.pop()
        frame.self_cost += event.cost_delta
        frame.status = event.status or FrameStatus.OK
        frame.total_cost = frame.self_cost + sum(c.total_cost for c in frame.children)
        if self._stack:
            self._stack[-1].children.append(frame)
        self._last_closed = (event.sequence, frame)

    def _flush_pending(self) -> None:
        if not self._pending:
            return
        if not self._stack:
            step = self._pending[0]
            raise UnbalancedTrace(
                f"step '{step.label}' outside any open frame",
                step.sequence,
                step.label,
            )
        top = self._stack[-1]
        top.self_cost += sum(step.cost_delta for step in self._pending)
        self._pending.clear()


def build_call_tree(events: Iterable[TraceEvent]) -> CallFrame:
    """Build the call tree for a parsed event sequence.

    Raises:
        UnbalancedTrace: an Exit has no matching open Enter.
        TrailingOpenFrames: the stream ends with frames still open.
    """
    builder = CallTreeBuilder()
    for event in events:
        builder.feed(event)
    return builder.finish()
