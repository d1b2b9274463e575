"""Flamegraph layout engine and SVG renderer.

Layout is a depth-first, left-to-right walk over the call tree:

    ┌──────────────────────── root (width = canvas) ───────────────────────┐
    ├──── child 1 ────┬────── child 2 ──────┬─ child 3 ─┐░░ self share ░░░░│

Every frame is ``canvas * total_cost / root.total_cost`` wide. Children are
contiguous from the parent's left edge; the last child absorbs rounding
remainder; the parent's own self cost is the gap left on the right.

Colors come from a hash of the label alone, so a label is painted the same
in every render regardless of position or traversal order.
"""

from __future__ import annotations

import hashlib
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from jinja2 import Environment, FileSystemLoader

from gasscope.core.config import Settings
from gasscope.core.types import PATH_SEPARATOR, CallFrame
from gasscope.profiler.profile import Profile

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"


# ── Palettes ─────────────────────────────────────────────────────────────────

PALETTES: dict[str, tuple[str, ...]] = {
    "hot": (
        "#e6550d", "#fd8d3c", "#f16913", "#d94801", "#fdae6b",
        "#ef3b2c", "#fb6a4a", "#e34a33", "#fc9272", "#f03b20",
    ),
    "mem": (
        "#31a354", "#74c476", "#a1d99b", "#41ab5d", "#238b45",
        "#78c679", "#addd8e", "#5aae61",
    ),
    "io": (
        "#3182bd", "#6baed6", "#9ecae1", "#4292c6", "#2171b5",
        "#74a9cf", "#0570b0", "#8c96c6",
    ),
    "java": (
        "#50b432", "#3ab0a0", "#6ccf8e", "#2f9e8f", "#88d46a",
        "#5fc4b8", "#7dbb42", "#45a78a",
    ),
    "aqua": (
        "#2c9fb0", "#4ec5d4", "#7fd8e3", "#36b3c4", "#1f8a99",
        "#63cbd8", "#94e0ea", "#27a2b3",
    ),
}

DEFAULT_PALETTE = "hot"


def color_for(label: str, palette: str = DEFAULT_PALETTE) -> str:
    """Pick a palette color from a hash of ``label`` alone."""
    colors = PALETTES[palette]
    digest = hashlib.sha256(label.encode("utf-8")).digest()
    return colors[int.from_bytes(digest[:4], "big") % len(colors)]


# ── Layout ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class FlamegraphNode:
    """One rectangle of the flamegraph. Derived, never persisted."""

    frame: CallFrame = field(compare=False, repr=False)
    x_offset: float
    width: float
    depth: int
    path: str
    label: str
    self_cost: int
    total_cost: int
    folded: int = 0


@dataclass
class _ViewFrame:
    """Presentation-only view of a frame after optional recursion folding."""

    frame: CallFrame
    depth: int
    path: str
    self_cost: int
    children: list[CallFrame]
    folded: int = 0


def _view(frame: CallFrame, depth: int, path: str, fold_recursion: bool) -> _ViewFrame:
    if not fold_recursion:
        return _ViewFrame(frame, depth, path, frame.self_cost, list(frame.children))

    self_cost = frame.self_cost
    folded = 0
    children: list[CallFrame] = []
    queue = list(reversed(frame.children))
    while queue:
        child = queue.pop()
        if child.label == frame.label:
            # direct recursion: merge into this node and splice its callees in
            self_cost += child.self_cost
            folded += 1
            queue.extend(reversed(child.children))
        else:
            children.append(child)
    return _ViewFrame(frame, depth, path, self_cost, children, folded)


def _identity(value: float) -> float:
    return value


def layout(
    profile: Profile,
    canvas_width: float,
    *,
    snap: bool = False,
    fold_recursion: bool = False,
) -> list[FlamegraphNode]:
    """Compute one rectangle per frame, depth-first and left-to-right.

    Args:
        profile: Profile to lay out
        canvas_width: Width given to the root frame
        snap: Quantize widths to whole units (integer canvases)
        fold_recursion: Merge directly recursive frames into their caller
    """
    root = profile.root
    root_total = root.total_cost
    quantize: Callable[[float], float] = math.floor if snap else _identity
    scale = canvas_width / root_total if root_total else 0.0
    root_width = (math.floor(canvas_width) if snap else float(canvas_width)) if root_total else 0.0

    nodes: list[FlamegraphNode] = []
    stack = [(_view(root, 0, root.label, fold_recursion), 0.0, root_width)]
    while stack:
        view, x, width = stack.pop()
        frame = view.frame
        nodes.append(
            FlamegraphNode(
                frame=frame,
                x_offset=x,
                width=width,
                depth=view.depth,
                path=view.path,
                label=frame.label,
                self_cost=view.self_cost,
                total_cost=frame.total_cost,
                folded=view.folded,
            )
        )
        if not view.children:
            continue

        span = max(width - quantize(scale * view.self_cost), 0)
        widths = [quantize(scale * child.total_cost) for child in view.children[:-1]]
        widths.append(max(span - sum(widths), 0))

        placed = []
        cursor = x
        for child, child_width in zip(view.children, widths):
            child_view = _view(
                child,
                view.depth + 1,
                f"{view.path}{PATH_SEPARATOR}{child.label}",
                fold_recursion,
            )
            placed.append((child_view, cursor, child_width))
            cursor += child_width
        stack.extend(reversed(placed))

    return nodes


# ── Rendering ────────────────────────────────────────────────────────────────


@dataclass
class FlamegraphConfig:
    """Appearance of a rendered flamegraph."""

    title: str = "Transaction Gas Profile"
    subtitle: str | None = None
    count_name: str = "gas"
    palette: str = DEFAULT_PALETTE
    width: int = 1200
    frame_height: int = 16
    font_size: int = 11
    min_width: float = 0.0
    reverse: bool = False  # True = icicle (root at top)
    fold_recursion: bool = False
    snap: bool = False

    def __post_init__(self) -> None:
        if self.palette not in PALETTES:
            raise ValueError(
                f"Unknown palette {self.palette!r}; choose from {', '.join(sorted(PALETTES))}"
            )
        if self.width <= 2 * _MARGIN:
            raise ValueError(f"Flamegraph width must exceed {2 * _MARGIN}px")

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> FlamegraphConfig:
        values: dict[str, Any] = {
            "title": settings.flamegraph_title,
            "palette": settings.flamegraph_palette,
            "width": settings.flamegraph_width,
            "min_width": settings.flamegraph_min_width,
            "fold_recursion": settings.flamegraph_fold_recursion,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


_MARGIN = 10
_HEADER = 40
_FOOTER = 10
_CHAR_WIDTH = 0.6  # of font size, monospace


def _fit_label(label: str, width: float, font_size: int) -> str:
    chars = int((width - 6) / (font_size * _CHAR_WIDTH))
    if chars < 3:
        return ""
    if len(label) <= chars:
        return label
    return label[: chars - 2] + ".."


def _num(value: float) -> str:
    return f"{value:.2f}"


_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=True,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)
_env.filters["num"] = _num


def render_svg(profile: Profile, config: FlamegraphConfig | None = None) -> str:
    """Render a profile as a self-contained SVG document.

    Output is byte-stable for identical input: rectangles are emitted in
    (depth, x offset) order and every number has fixed precision.
    """
    config = config or FlamegraphConfig()
    canvas = config.width - 2 * _MARGIN
    nodes = layout(
        profile,
        canvas,
        snap=config.snap,
        fold_recursion=config.fold_recursion,
    )
    max_depth = max((n.depth for n in nodes), default=0)
    height = _HEADER + (max_depth + 1) * config.frame_height + _FOOTER
    total = profile.total_cost

    rects: list[dict[str, Any]] = []
    for node in sorted(nodes, key=lambda n: (n.depth, n.x_offset)):
        if node.depth > 0 and node.width < config.min_width:
            continue
        if config.reverse:
            y = _HEADER + node.depth * config.frame_height
        else:
            y = height - _FOOTER - (node.depth + 1) * config.frame_height
        pct = (node.total_cost / total) * 100 if total else 0.0
        rects.append(
            {
                "x": _MARGIN + node.x_offset,
                "y": y,
                "width": node.width,
                "height": config.frame_height - 1,
                "fill": color_for(node.label, config.palette),
                "label": node.label,
                "text": _fit_label(node.label, node.width, config.font_size),
                "path": node.path,
                "depth": node.depth,
                "self_cost": node.self_cost,
                "total_cost": node.total_cost,
                "pct": pct,
                "folded": node.folded,
            }
        )

    template = _env.get_template("flamegraph.svg")
    svg = template.render(
        config=config,
        width=config.width,
        height=height,
        margin=_MARGIN,
        rects=rects,
        profile=profile,
        subtitle=config.subtitle or f"{profile.transaction_id} · {total} {config.count_name}",
    )
    logger.info(
        "Rendered flamegraph with %d frames (%d bytes)",
        len(rects),
        len(svg),
        extra={"transaction_id": profile.transaction_id, "frame_count": len(rects)},
    )
    return svg
