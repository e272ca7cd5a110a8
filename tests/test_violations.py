"""
tests/test_violations.py — ViolationTracker aggregation and ordering.
"""

import sys
from datetime import date
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from preceptor_scheduler.models import Assignment
from preceptor_scheduler.violations import ConstraintViolation, ViolationTracker


def _assignment(student="s1", preceptor="p1", day=1):
    return Assignment(student_id=student, preceptor_id=preceptor, clerkship_id="fm",
                      date=date(2026, 7, day))


@pytest.fixture
def tracker():
    return ViolationTracker()


class TestRecording:

    def test_empty_tracker(self, tracker):
        assert tracker.get_total_violations() == 0
        assert tracker.get_stats_by_constraint() == {}
        assert tracker.get_top_violations() == []

    def test_record_and_export(self, tracker):
        tracker.record_violation("BlackoutDate", _assignment(), "closed", {"date": "2026-07-01"})
        exported = tracker.export_violations()
        assert len(exported) == 1
        v = exported[0]
        assert isinstance(v, ConstraintViolation)
        assert v.constraint_name == "BlackoutDate"
        assert v.reason == "closed"
        assert v.metadata == {"date": "2026-07-01"}

    def test_export_is_a_copy(self, tracker):
        tracker.record_violation("BlackoutDate", _assignment(), "closed")
        exported = tracker.export_violations()
        exported.clear()
        assert tracker.get_total_violations() == 1

    def test_non_scalar_metadata_is_stringified(self, tracker):
        tracker.record_violation("X", _assignment(), "r", {"ids": ["a", "b"], "n": 3, "none": None})
        meta = tracker.export_violations()[0].metadata
        assert meta["ids"] == "['a', 'b']"
        assert meta["n"] == 3
        assert meta["none"] is None

    def test_clear(self, tracker):
        tracker.record_violation("X", _assignment(), "r")
        tracker.clear()
        assert tracker.get_total_violations() == 0

    def test_str_joins_fields(self, tracker):
        tracker.record_violation("NoDoubleBooking", _assignment(), "already assigned")
        text = str(tracker.export_violations()[0])
        assert "NoDoubleBooking" in text
        assert "already assigned" in text


class TestAggregation:

    def test_stats_group_by_constraint(self, tracker):
        tracker.record_violation("A", _assignment("s1", "p1", 1), "r")
        tracker.record_violation("A", _assignment("s2", "p1", 2), "r")
        tracker.record_violation("B", _assignment("s1", "p2", 1), "r")
        stats = tracker.get_stats_by_constraint()
        assert list(stats) == ["A", "B"]
        assert stats["A"].count == 2
        assert stats["A"].affected_students == {"s1", "s2"}
        assert stats["A"].affected_dates == {"2026-07-01", "2026-07-02"}
        assert stats["A"].affected_preceptors == {"p1"}
        assert len(stats["A"].violations) == 2

    def test_counts_sum_to_total(self, tracker):
        for name in ["A", "B", "A", "C", "A", "B"]:
            tracker.record_violation(name, _assignment(), "r")
        stats = tracker.get_stats_by_constraint()
        assert sum(s.count for s in stats.values()) == tracker.get_total_violations() == 6

    def test_top_violations_descending_stable(self, tracker):
        for name in ["B", "A", "A", "C", "C"]:
            tracker.record_violation(name, _assignment(), "r")
        top = tracker.get_top_violations()
        # A and C tie at 2; A was seen first
        assert [s.constraint_name for s in top] == ["A", "C", "B"]

    def test_top_violations_limit(self, tracker):
        for name in ["A", "B", "C", "D"]:
            tracker.record_violation(name, _assignment(), "r")
        assert len(tracker.get_top_violations(limit=2)) == 2

    def test_violations_for_constraint(self, tracker):
        tracker.record_violation("A", _assignment(), "first")
        tracker.record_violation("B", _assignment(), "other")
        tracker.record_violation("A", _assignment(), "second")
        reasons = [v.reason for v in tracker.get_violations_for_constraint("A")]
        assert reasons == ["first", "second"]

    def test_stats_to_dict_sorted_summary(self, tracker):
        tracker.record_violation("A", _assignment("s2", "p1", 2), "r")
        tracker.record_violation("A", _assignment("s1", "p1", 1), "r")
        data = tracker.get_stats_by_constraint()["A"].to_dict()
        assert data["count"] == 2
        assert data["summary"]["affected_students"] == ["s1", "s2"]
