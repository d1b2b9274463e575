"""Tests for gasscope.profiler.call_tree — reconstruction from event streams."""

from __future__ import annotations

import pytest

from conftest import event
from gasscope.core.errors import TrailingOpenFrames, UnbalancedTrace
from gasscope.core.types import EventKind, FrameStatus
from gasscope.profiler.call_tree import CallTreeBuilder, build_call_tree

ENTER, EXIT, STEP = EventKind.ENTER, EventKind.EXIT, EventKind.STEP


class TestScenario:
    def test_costs(self, scenario_tree):
        assert scenario_tree.label == "A"
        assert scenario_tree.self_cost == 12
        assert scenario_tree.total_cost == 17
        (b,) = scenario_tree.children
        assert b.label == "B"
        assert b.self_cost == 5
        assert b.total_cost == 5

    def test_depths(self, scenario_tree):
        assert scenario_tree.depth == 0
        assert scenario_tree.children[0].depth == 1

    def test_total_equals_sum_of_step_costs(self, scenario_events, scenario_tree):
        assert scenario_tree.total_cost == sum(e.cost_delta for e in scenario_events)

    def test_walk_paths(self, scenario_tree):
        assert [path for path, _ in scenario_tree.walk()] == ["A", "A;B"]


class TestStructure:
    def test_children_in_call_order(self):
        root = build_call_tree([
            event(ENTER, "root", 0),
            event(ENTER, "x", 1),
            event(EXIT, "x", 2),
            event(ENTER, "y", 3),
            event(EXIT, "y", 4),
            event(ENTER, "x", 5),
            event(EXIT, "x", 6),
            event(EXIT, "root", 7),
        ])
        assert [c.label for c in root.children] == ["x", "y", "x"]

    def test_exit_status_recorded(self):
        root = build_call_tree([
            event(ENTER, "A", 0),
            event(ENTER, "B", 1),
            event(EXIT, "B", 2, status=FrameStatus.REVERTED),
            event(EXIT, "A", 3),
        ])
        assert root.status is FrameStatus.OK
        assert root.children[0].status is FrameStatus.REVERTED

    def test_boundary_costs_count_as_self(self):
        root = build_call_tree([event(ENTER, "A", 0, 3), event(EXIT, "A", 1, 4)])
        assert root.self_cost == 7
        assert root.total_cost == 7

    def test_deep_nesting_does_not_recurse(self):
        depth = 5000
        events = [event(ENTER, f"f{i}", i, 1) for i in range(depth)]
        events += [event(EXIT, f"f{i}", 2 * depth - 1 - i) for i in reversed(range(depth))]
        root = build_call_tree(events)
        assert root.total_cost == depth
        assert root.frame_count() == depth
        assert root.max_depth() == depth - 1


class TestTieBreak:
    def test_step_sharing_enter_sequence_goes_to_entered_frame(self):
        root = build_call_tree([
            event(ENTER, "A", 0),
            event(STEP, "B", 1, 9),
            event(ENTER, "B", 1),
            event(EXIT, "B", 2),
            event(EXIT, "A", 3),
        ])
        assert root.self_cost == 0
        assert root.children[0].self_cost == 9

    def test_step_sharing_exit_sequence_goes_to_closing_frame(self):
        root = build_call_tree([
            event(ENTER, "A", 0),
            event(ENTER, "B", 1),
            event(EXIT, "B", 2),
            event(STEP, "B", 2, 6),
            event(EXIT, "A", 3),
        ])
        b = root.children[0]
        assert b.self_cost == 6
        assert b.total_cost == 6
        assert root.total_cost == 6
        assert root.self_cost == 0

    def test_step_before_exit_with_same_sequence(self):
        root = build_call_tree([
            event(ENTER, "A", 0),
            event(ENTER, "B", 1),
            event(STEP, "B", 2, 6),
            event(EXIT, "B", 2),
            event(EXIT, "A", 3),
        ])
        assert root.children[0].self_cost == 6


class TestFailures:
    def test_exit_without_enter(self):
        with pytest.raises(UnbalancedTrace) as exc_info:
            build_call_tree([event(EXIT, "A", 0)])
        assert exc_info.value.sequence == 0
        assert exc_info.value.label == "A"

    def test_exit_label_mismatch(self):
        with pytest.raises(UnbalancedTrace, match="while 'B' is open"):
            build_call_tree([event(ENTER, "A", 0), event(ENTER, "B", 1), event(EXIT, "A", 2)])

    def test_trailing_open_frames(self):
        with pytest.raises(TrailingOpenFrames) as exc_info:
            build_call_tree([event(ENTER, "A", 0), event(ENTER, "B", 1), event(EXIT, "B", 2)])
        assert exc_info.value.open_labels == ["A"]

    def test_empty_stream(self):
        with pytest.raises(UnbalancedTrace, match="no call frames"):
            build_call_tree([])

    def test_step_outside_frames(self):
        with pytest.raises(UnbalancedTrace, match="outside any open frame"):
            build_call_tree([event(STEP, "x", 0, 1), event(ENTER, "A", 1), event(EXIT, "A", 2)])

    def test_second_root(self):
        with pytest.raises(UnbalancedTrace, match="second root"):
            build_call_tree([
                event(ENTER, "A", 0),
                event(EXIT, "A", 1),
                event(ENTER, "B", 2),
                event(EXIT, "B", 3),
            ])


class TestIncremental:
    def test_feed_tracks_depth(self):
        builder = CallTreeBuilder()
        builder.feed(event(ENTER, "A", 0))
        builder.feed(event(ENTER, "B", 1))
        assert builder.depth == 2
        builder.feed(event(EXIT, "B", 2))
        assert builder.depth == 1
        builder.feed(event(EXIT, "A", 3))
        assert builder.finish().frame_count() == 2
