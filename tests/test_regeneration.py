"""
tests/test_regeneration.py — Crediting, affected-assignment detection,
impact analysis and the three regeneration strategies.
"""

import sys
from datetime import date
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from preceptor_scheduler.audit import JsonFileAuditSink
from preceptor_scheduler.context import build_scheduling_context
from preceptor_scheduler.engine import SchedulingEngine
from preceptor_scheduler.factory import build_constraints
from preceptor_scheduler.models import (
    Assignment,
    AvailabilityRecord,
    Clerkship,
    Preceptor,
    Student,
    iter_dates,
)
from preceptor_scheduler.regeneration import (
    RegenerationStrategy,
    analyze_regeneration_impact,
    credit_past_assignments,
    find_replacement_preceptor,
    identify_affected_assignments,
    parse_strategy,
    regenerate_schedule,
    split_by_date,
)
from preceptor_scheduler.violations import ViolationTracker

D1, D2, D3, D4, D5 = (date(2026, 7, d) for d in range(1, 6))


def _availability(preceptor_id, dates):
    return [AvailabilityRecord(preceptor_id, d) for d in dates]


def _context(availability, blackout=()):
    return build_scheduling_context(
        [Student("s1", "Avery")],
        [Preceptor("p1", "Dr. Reyes", max_students=1), Preceptor("p2", "Dr. Nguyen", max_students=1)],
        [Clerkship("fm", "Family Medicine", 4)],
        blackout, availability, D1, D5,
    )


def _existing(preceptor="p1", dates=(D1, D2, D3, D4)):
    return [Assignment("s1", preceptor, "fm", d) for d in dates]


def _engine(context):
    return SchedulingEngine(build_constraints([c.id for c in context.clerkships], context))


@pytest.fixture
def p1_gone():
    """p1 has left; p2 covers every day."""
    return _context(_availability("p2", iter_dates(D1, D5)))


@pytest.fixture
def both_available():
    return _context(_availability("p1", iter_dates(D1, D5)) + _availability("p2", iter_dates(D1, D5)))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestParsing:

    def test_parse_strategy(self):
        assert parse_strategy("minimal-change") is RegenerationStrategy.MINIMAL_CHANGE
        assert parse_strategy(RegenerationStrategy.COMPLETION) is RegenerationStrategy.COMPLETION

    def test_unknown_strategy(self):
        with pytest.raises(ValueError):
            parse_strategy("rewrite-everything")

    def test_split_by_date(self):
        past, future = split_by_date(_existing(), D3)
        assert [a.date for a in past] == [D1, D2]
        assert [a.date for a in future] == [D3, D4]


class TestCrediting:

    def test_credit_decrements(self, both_available):
        result = credit_past_assignments(both_available, _existing(dates=(D1, D2)))
        assert result.credited_days == 2
        assert result.credits_by_student == {"s1": {"fm": 2}}
        assert both_available.student_requirements["s1"]["fm"] == 2

    def test_credit_clamps_at_zero(self, both_available):
        extra = _existing(dates=(D1, D2, D3, D4, D5)) + [Assignment("s1", "p2", "fm", D1)]
        result = credit_past_assignments(both_available, extra)
        assert result.total_past_assignments == 6
        assert result.credited_days == 4
        assert both_available.student_requirements["s1"]["fm"] == 0

    def test_unknown_student_ignored(self, both_available):
        result = credit_past_assignments(both_available, [Assignment("ghost", "p1", "fm", D1)])
        assert result.credited_days == 0


# ---------------------------------------------------------------------------
# Minimal-change classification
# ---------------------------------------------------------------------------

class TestAffectedAssignments:

    def test_globally_unavailable_preceptor(self, p1_gone):
        _past, future = split_by_date(_existing(), D3)
        result = identify_affected_assignments(p1_gone, future)
        assert result.unavailable_preceptor_ids == {"p1"}
        assert result.affected_assignments == future
        assert result.preservable_assignments == []

    def test_date_specific_unavailability(self):
        context = _context(_availability("p1", [D1, D2, D3, D5]) + _availability("p2", [D4]))
        _past, future = split_by_date(_existing(), D3)
        result = identify_affected_assignments(context, future)
        assert [a.date for a in result.preservable_assignments] == [D3]
        assert [a.date for a in result.affected_assignments] == [D4]

    def test_new_blackout(self):
        context = _context(_availability("p1", iter_dates(D1, D5)), blackout=[D4])
        _past, future = split_by_date(_existing(), D3)
        result = identify_affected_assignments(context, future)
        assert [a.date for a in result.affected_assignments] == [D4]

    def test_replacement_requires_capacity(self, p1_gone):
        original = Assignment("s1", "p1", "fm", D3)
        assert find_replacement_preceptor(original, p1_gone, {"p1"}) == "p2"
        p1_gone.add_assignment(Assignment("s9", "p2", "fm", D3), credit=False)
        assert find_replacement_preceptor(original, p1_gone, {"p1"}) is None

    def test_replacement_unknown_clerkship(self, p1_gone):
        assert find_replacement_preceptor(Assignment("s1", "p1", "xx", D3), p1_gone, {"p1"}) is None


# ---------------------------------------------------------------------------
# Impact analysis
# ---------------------------------------------------------------------------

class TestImpactAnalysis:

    def test_full_reoptimize_counts(self, p1_gone):
        impact = analyze_regeneration_impact(p1_gone, _existing(), D3, "full-reoptimize")
        assert impact.past_assignments_count == 2
        assert impact.deleted_count == 2
        assert impact.summary["will_preserve_future"] is False
        assert impact.summary["total_assignments_impacted"] == 2

    def test_minimal_change_counts(self, p1_gone):
        impact = analyze_regeneration_impact(p1_gone, _existing(), D3, "minimal-change")
        assert impact.affected_count == 2
        assert impact.preserved_count == 0
        assert impact.deleted_count == 2
        assert [r.replacement_preceptor_id for r in impact.replaceable_assignments] == ["p2", "p2"]

    def test_one_slot_offered_once(self):
        """Two students lose p1 on D3; p2 has a single slot left"""
        context = build_scheduling_context(
            [Student("s1", "Avery"), Student("s2", "Jordan")],
            [Preceptor("p1", "Dr. Reyes", max_students=2), Preceptor("p2", "Dr. Nguyen", max_students=1)],
            [Clerkship("fm", "Family Medicine", 4)],
            [], _availability("p2", iter_dates(D1, D5)), D1, D5,
        )
        existing = [Assignment("s1", "p1", "fm", D3), Assignment("s2", "p1", "fm", D3)]
        impact = analyze_regeneration_impact(context, existing, D3, "minimal-change")
        assert [r.replacement_preceptor_id for r in impact.replaceable_assignments] == ["p2", None]

    def test_completion_deletes_nothing(self, p1_gone):
        impact = analyze_regeneration_impact(p1_gone, _existing(), D3, "completion")
        assert impact.deleted_count == 0
        assert impact.summary["will_preserve_future"] is True

    def test_student_progress(self, p1_gone):
        impact = analyze_regeneration_impact(p1_gone, _existing(), D3, "full-reoptimize")
        progress = impact.student_progress
        assert len(progress) == 1
        assert (progress[0].completed_days, progress[0].remaining_days) == (2, 2)

    def test_read_only(self, p1_gone):
        analyze_regeneration_impact(p1_gone, _existing(), D3, "minimal-change")
        assert p1_gone.assignments == []
        assert p1_gone.student_requirements["s1"]["fm"] == 4

    def test_to_dict(self, p1_gone):
        data = analyze_regeneration_impact(p1_gone, _existing(), D3, "minimal-change").to_dict()
        assert data["affected_count"] == 2
        assert data["replaceable_assignments"][0]["original"]["date"] == "2026-07-03"


# ---------------------------------------------------------------------------
# Full runs
# ---------------------------------------------------------------------------

class TestRegenerateSchedule:

    def test_minimal_change_commits_replacements(self, p1_gone, tmp_path):
        sink = JsonFileAuditSink(tmp_path / "audit.json")
        result = regenerate_schedule(
            _engine(p1_gone), p1_gone, _existing(), "minimal-change", D3, D5, sinks=[sink])

        assert [(a.preceptor_id, a.date) for a in result.committed_replacements] == [("p2", D3), ("p2", D4)]
        assert result.schedule_result.success
        record = result.audit_record
        assert record.success
        assert record.affected_assignments_count == 2
        assert record.deleted_assignments_count == 2
        assert record.generated_assignments_count == 2
        assert sink.read_all()[0]["strategy"] == "minimal-change"

    def test_rejected_replacements_reported(self):
        """p1 has left and p2 is the wrong specialty: both replacements are refused"""
        context = build_scheduling_context(
            [Student("s1", "Avery")],
            [Preceptor("p1", "Dr. Reyes", specialty="Family Medicine"),
             Preceptor("p2", "Dr. Nguyen", specialty="Surgery")],
            [Clerkship("fm", "Family Medicine", 4, specialty="Family Medicine")],
            [], _availability("p2", iter_dates(D1, D5)), D1, D5,
        )
        result = regenerate_schedule(_engine(context), context, _existing(), "minimal-change", D3, D5)

        assert result.committed_replacements == []
        stats = result.schedule_result.violation_stats
        assert [s.constraint_name for s in stats] == ["SpecialtyMatch"]
        # two refused replacements (D3, D4) plus one refusal per remaining date in the run
        assert stats[0].count == 5
        assert result.schedule_result.summary["total_violations"] == 5

    def test_minimal_change_preserves_valid_future(self, both_available):
        result = regenerate_schedule(
            _engine(both_available), both_available, _existing(), "minimal-change", D3, D5)
        assert result.plan.preserved_assignments == _existing(dates=(D3, D4))
        assert result.committed_replacements == []
        assert result.audit_record.generated_assignments_count == 0
        assert result.schedule_result.success

    def test_full_reoptimize(self, p1_gone):
        result = regenerate_schedule(_engine(p1_gone), p1_gone, _existing(), "full-reoptimize", D3, D5)
        new = result.schedule_result.assignments
        assert [(a.preceptor_id, a.date) for a in new] == [("p2", D3), ("p2", D4)]
        assert result.audit_record.deleted_assignments_count == 2
        assert result.audit_record.past_assignments_count == 2

    def test_completion_keeps_existing(self, both_available):
        existing = _existing(dates=(D1, D2))
        result = regenerate_schedule(_engine(both_available), both_available, existing, "completion", D3, D5)
        assignments = result.schedule_result.assignments
        assert assignments[:2] == existing
        assert [a.date for a in assignments[2:]] == [D3, D4]
        assert result.audit_record.deleted_assignments_count == 0
        assert result.audit_record.generated_assignments_count == 2

    def test_repeatable(self, p1_gone):
        engine = _engine(p1_gone)
        first = regenerate_schedule(engine, p1_gone, _existing(), "full-reoptimize", D3, D5)
        second = regenerate_schedule(engine, p1_gone, _existing(), "full-reoptimize", D3, D5)
        assert first.schedule_result.assignments == second.schedule_result.assignments

    def test_defaults_actor_and_reason(self, p1_gone):
        result = regenerate_schedule(_engine(p1_gone), p1_gone, [], "full-reoptimize", D3, D5)
        assert result.audit_record.user_id == "system"
        assert result.audit_record.reason == "manual_regeneration"

    def test_bad_inputs(self, p1_gone):
        engine = _engine(p1_gone)
        with pytest.raises(ValueError):
            regenerate_schedule(engine, p1_gone, [], "sideways", D3, D5)
        with pytest.raises(ValueError):
            regenerate_schedule(engine, p1_gone, [], "completion", D5, D3)
        with pytest.raises(ValueError):
            regenerate_schedule(engine, p1_gone, [], "completion", "2026-7-3x", D5)

    def test_failure_is_audited(self, p1_gone, tmp_path):
        class BrokenEngine:
            def get_violation_tracker(self):
                return ViolationTracker()

            def validate_assignment(self, assignment, context, bypassed=None):
                return True

            def run(self, context, bypassed=None):
                raise RuntimeError("solver crashed")

        sink = JsonFileAuditSink(tmp_path / "audit.json")
        with pytest.raises(RuntimeError):
            regenerate_schedule(BrokenEngine(), p1_gone, _existing(), "full-reoptimize", D3, D5,
                                user_id="coordinator", sinks=[sink])
        entries = sink.read_all()
        assert len(entries) == 1
        assert entries[0]["success"] is False
        assert entries[0]["error_message"] == "solver crashed"
        assert entries[0]["user_id"] == "coordinator"
