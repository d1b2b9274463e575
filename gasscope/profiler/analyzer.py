"""Summary and regression analysis over profiles.

- ``summarize``: hottest frames by self cost
- ``diff``: call-path matched comparison of two profiles
- ``collapsed_stacks`` / ``hot_paths``: folded-stack views of self cost
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterator

from gasscope.core.types import PATH_SEPARATOR, CallFrame
from gasscope.profiler.profile import Profile

logger = logging.getLogger(__name__)


def _pct(part: int, whole: int) -> float:
    return (part / whole) * 100 if whole else 0.0


# ── Summary ──────────────────────────────────────────────────────────────────


@dataclass
class HotFrame:
    """A frame ranked by the gas it spends itself."""

    label: str
    path: str
    depth: int
    self_cost: int
    total_cost: int
    self_pct: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "path": self.path,
            "depth": self.depth,
            "selfCost": self.self_cost,
            "totalCost": self.total_cost,
            "selfPct": round(self.self_pct, 2),
        }


def summarize(profile: Profile, top_n: int) -> list[HotFrame]:
    """Return the ``top_n`` frames by self cost.

    Ties are broken by shallower depth, then label, then call path.
    """
    if top_n < 1:
        raise ValueError(f"top_n must be at least 1, got {top_n}")

    frames = [
        HotFrame(
            label=frame.label,
            path=path,
            depth=frame.depth,
            self_cost=frame.self_cost,
            total_cost=frame.total_cost,
            self_pct=_pct(frame.self_cost, profile.total_cost),
        )
        for path, frame in profile.root.walk()
    ]
    frames.sort(key=lambda f: (-f.self_cost, f.depth, f.label, f.path))
    return frames[:top_n]


# ── Regression diff ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DiffEntry:
    """Cost of one call path in the baseline and the candidate."""

    label: str
    path: str
    baseline_cost: int
    candidate_cost: int
    delta: int
    delta_pct: float | None
    regression: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "path": self.path,
            "baselineCost": self.baseline_cost,
            "candidateCost": self.candidate_cost,
            "delta": self.delta,
            "deltaPct": None if self.delta_pct is None else round(self.delta_pct, 2),
            "regression": self.regression,
        }


@dataclass(frozen=True)
class RegressionDiff:
    """Ordered diff entries, largest absolute change first."""

    entries: tuple[DiffEntry, ...] = ()
    threshold_pct: float | None = None

    def __iter__(self) -> Iterator[DiffEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def regressions(self) -> list[DiffEntry]:
        return [e for e in self.entries if e.regression]

    def find(self, path: str) -> DiffEntry | None:
        return next((e for e in self.entries if e.path == path), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "thresholdPct": self.threshold_pct,
            "regressionCount": len(self.regressions),
            "entries": [e.to_dict() for e in self.entries],
        }


def path_costs(root: CallFrame) -> dict[str, int]:
    """Flat map of call path to total cost, summed over repeated paths."""
    costs: dict[str, int] = {}
    for path, frame in root.walk():
        costs[path] = costs.get(path, 0) + frame.total_cost
    return costs


def _entry(path: str, base: int, cand: int, both: bool, threshold: float | None) -> DiffEntry:
    delta = cand - base
    delta_pct = (delta / base) * 100 if base else None
    regression = (
        both
        and threshold is not None
        and delta_pct is not None
        and delta_pct > threshold
    )
    return DiffEntry(
        label=path.rsplit(PATH_SEPARATOR, 1)[-1],
        path=path,
        baseline_cost=base,
        candidate_cost=cand,
        delta=delta,
        delta_pct=delta_pct,
        regression=regression,
    )


def diff(
    baseline: Profile,
    candidate: Profile,
    threshold_pct: float | None = None,
) -> RegressionDiff:
    """Compare two profiles path by path.

    Paths missing on one side count as zero there. A path present in both
    whose relative increase exceeds ``threshold_pct`` is flagged as a
    regression; flagging is advisory only.
    """
    base_costs = path_costs(baseline.root)
    cand_costs = path_costs(candidate.root)
    base_keys = sorted(base_costs)
    cand_keys = sorted(cand_costs)

    entries: list[DiffEntry] = []
    i = j = 0
    while i < len(base_keys) or j < len(cand_keys):
        if j >= len(cand_keys) or (i < len(base_keys) and base_keys[i] < cand_keys[j]):
            path = base_keys[i]
            entries.append(_entry(path, base_costs[path], 0, False, threshold_pct))
            i += 1
        elif i >= len(base_keys) or cand_keys[j] < base_keys[i]:
            path = cand_keys[j]
            entries.append(_entry(path, 0, cand_costs[path], False, threshold_pct))
            j += 1
        else:
            path = base_keys[i]
            entries.append(
                _entry(path, base_costs[path], cand_costs[path], True, threshold_pct)
            )
            i += 1
            j += 1

    entries.sort(key=lambda e: (-abs(e.delta), e.path))
    result = RegressionDiff(entries=tuple(entries), threshold_pct=threshold_pct)
    logger.info(
        "Diffed %s against %s: %d paths, %d regressions",
        candidate.transaction_id,
        baseline.transaction_id,
        len(result),
        len(result.regressions),
    )
    return result


# ── Folded stacks ────────────────────────────────────────────────────────────


@dataclass
class CollapsedStack:
    """One folded-stack line: ``root;child;leaf weight``."""

    stack: str
    weight: int

    def to_line(self) -> str:
        return f"{self.stack} {self.weight}"


@dataclass
class HotPath:
    stack: str
    gas: int
    percentage: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"stack": self.stack, "gas": self.gas, "percentage": round(self.percentage, 2)}


def collapsed_stacks(profile: Profile) -> list[CollapsedStack]:
    """Self cost per call path in folded-stack form, heaviest first."""
    weights: dict[str, int] = {}
    for path, frame in profile.root.walk():
        if frame.self_cost > 0:
            weights[path] = weights.get(path, 0) + frame.self_cost
    stacks = [CollapsedStack(stack, weight) for stack, weight in weights.items()]
    stacks.sort(key=lambda s: (-s.weight, s.stack))
    return stacks


def merge_small_stacks(stacks: list[CollapsedStack], threshold: int) -> list[CollapsedStack]:
    """Fold every stack lighter than ``threshold`` into a single ``other``."""
    merged: list[CollapsedStack] = []
    other = 0
    for stack in stacks:
        if stack.weight >= threshold:
            merged.append(stack)
        else:
            other += stack.weight
    if other > 0:
        merged.append(CollapsedStack("other", other))
    return merged


def hot_paths(profile: Profile, top_n: int = 20) -> list[HotPath]:
    return [
        HotPath(stack=s.stack, gas=s.weight, percentage=_pct(s.weight, profile.total_cost))
        for s in collapsed_stacks(profile)[:top_n]
    ]


def text_summary(profile: Profile, top_n: int = 20) -> str:
    """Plain-text ranked report of the heaviest call paths."""
    stacks = collapsed_stacks(profile)
    lines = [
        f"Transaction {profile.transaction_id}: {profile.total_cost} gas",
        "Top Gas Consumers:",
        "-" * 80,
    ]
    for i, stack in enumerate(stacks[:top_n], 1):
        pct = _pct(stack.weight, profile.total_cost)
        lines.append(f"{i:>3}. {stack.weight:>10} gas {pct:6.2f}% | {stack.stack}")
    if len(stacks) > top_n:
        lines.append(f"... and {len(stacks) - top_n} more stacks")
    return "\n".join(lines)
