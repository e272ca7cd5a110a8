"""
tests/test_gap_filler.py — Team-tier fallback gap filling.
"""

import json
import sys
from datetime import date
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from preceptor_scheduler.context import build_scheduling_context
from preceptor_scheduler.gap_filler import (
    TIER_CROSS_SYSTEM,
    TIER_SAME_HEALTH_SYSTEM,
    TIER_SAME_TEAM,
    FallbackGapFiller,
    FallbackPreceptorResolver,
    commit_fallback_assignments,
    write_gap_fill_log,
)
from preceptor_scheduler.models import (
    Assignment,
    AvailabilityRecord,
    Clerkship,
    Preceptor,
    ResolvedClerkshipConfig,
    Student,
    Team,
    TeamMember,
    UnmetRequirement,
)

D1 = date(2026, 7, 1)
D2 = date(2026, 7, 2)
D3 = date(2026, 7, 3)


def _preceptors():
    return [
        Preceptor("p1", "Dr. Reyes", max_students=1, health_system_id="hs-n"),
        Preceptor("p2", "Dr. Nguyen", max_students=1, health_system_id="hs-n"),
        Preceptor("p3", "Dr. Okafor", max_students=1, health_system_id="hs-n"),
        Preceptor("p4", "Dr. Lindqvist", max_students=1, health_system_id="hs-s"),
    ]


def _teams():
    return [
        Team("t1", "FM North A", "fm", [TeamMember("p2", 2), TeamMember("p1", 1)]),
        Team("t2", "FM North B", "fm", [TeamMember("p3", 1)]),
        Team("t3", "FM South", "fm", [TeamMember("p4", 1)]),
    ]


def _context(availability, blackout=()):
    return build_scheduling_context(
        [Student("s1", "Avery"), Student("s2", "Jordan")],
        _preceptors(),
        [Clerkship("fm", "Family Medicine", 3)],
        blackout, availability, D1, D3, teams=_teams(),
    )


def _unmet(student="s1", assigned=1, remaining=2):
    return UnmetRequirement(
        student_id=student, student_name=student, clerkship_id="fm",
        clerkship_name="Family Medicine", required_days=assigned + remaining,
        assigned_days=assigned, remaining_days=remaining,
        primary_team_id="t1", primary_health_system_id="hs-n",
    )


def _configs(**overrides):
    return {"fm": ResolvedClerkshipConfig("fm", **overrides)}


# ---------------------------------------------------------------------------
# Tier ordering
# ---------------------------------------------------------------------------

class TestResolver:

    def test_tiers_in_order(self):
        resolver = FallbackPreceptorResolver(_preceptors(), _teams())
        ordered = resolver.get_ordered_fallback_preceptors("fm", "t1", "hs-n", False)
        assert [(p.id, p.tier) for p in ordered] == [
            ("p1", TIER_SAME_TEAM), ("p2", TIER_SAME_TEAM), ("p3", TIER_SAME_HEALTH_SYSTEM)]

    def test_cross_system_only_when_allowed(self):
        resolver = FallbackPreceptorResolver(_preceptors(), _teams())
        ordered = resolver.get_ordered_fallback_preceptors("fm", "t1", "hs-n", True)
        assert ordered[-1].id == "p4"
        assert ordered[-1].tier == TIER_CROSS_SYSTEM
        assert len(ordered) == 4

    def test_no_duplicates_across_teams(self):
        teams = _teams() + [Team("t4", "FM North C", "fm", [TeamMember("p1", 1)])]
        resolver = FallbackPreceptorResolver(_preceptors(), teams)
        ids = [p.id for p in resolver.get_ordered_fallback_preceptors("fm", "t1", "hs-n", True)]
        assert len(ids) == len(set(ids))

    def test_excluded_preceptors(self):
        resolver = FallbackPreceptorResolver(_preceptors(), _teams())
        ordered = resolver.get_ordered_fallback_preceptors("fm", "t1", "hs-n", False, {"p1"})
        assert [p.id for p in ordered] == ["p2", "p3"]

    def test_no_teams_for_clerkship(self):
        resolver = FallbackPreceptorResolver(_preceptors(), _teams())
        assert resolver.get_ordered_fallback_preceptors("im", "t1", "hs-n", True) == []

    def test_team_health_system_from_top_member(self):
        resolver = FallbackPreceptorResolver(_preceptors(), _teams())
        infos = resolver.get_teams_for_clerkship("fm")
        assert [(t.id, t.health_system_id) for t in infos] == [
            ("t1", "hs-n"), ("t2", "hs-n"), ("t3", "hs-s")]


# ---------------------------------------------------------------------------
# Filling
# ---------------------------------------------------------------------------

class TestFillGaps:

    @pytest.fixture
    def availability(self):
        return [
            AvailabilityRecord("p2", D1),
            AvailabilityRecord("p3", D2),
            AvailabilityRecord("p3", D3),
            AvailabilityRecord("p4", D1),
            AvailabilityRecord("p4", D2),
            AvailabilityRecord("p4", D3),
        ]

    def test_fulfilled_and_skips_booked_date(self, availability):
        context = _context(availability)
        existing = [Assignment("s1", "p9", "fm", D1)]
        result = FallbackGapFiller(context).fill_gaps(
            [_unmet()], existing, _configs(), D1, D3)

        assert [(a.preceptor_id, a.date, a.tier) for a in result.assignments] == [
            ("p3", D2, TIER_SAME_HEALTH_SYSTEM), ("p3", D3, TIER_SAME_HEALTH_SYSTEM)]
        assert result.fulfilled_requirements == ["s1-fm"]
        assert result.still_unmet == []

    def test_partial_fulfillment(self, availability):
        context = _context(availability)
        existing = [Assignment("s1", "p9", "fm", D1)]
        result = FallbackGapFiller(context).fill_gaps(
            [_unmet(assigned=0, remaining=3)], existing, _configs(), D1, D3)

        assert len(result.partial_fulfillments) == 1
        partial = result.partial_fulfillments[0]
        assert partial.added_days == 2
        assert partial.assigned_days == 2
        assert partial.required_days == 3

    def test_cross_system_when_configured(self, availability):
        context = _context(availability)
        existing = [Assignment("s1", "p9", "fm", D2), Assignment("s1", "p9", "fm", D3)]
        result = FallbackGapFiller(context).fill_gaps(
            [_unmet(remaining=1)], existing, _configs(), D1, D3)
        # p2 is free on D1 in the student's own team
        assert result.assignments[0].preceptor_id == "p2"

        blocked = [Assignment("sx", "p2", "fm", D1)] + existing
        without = FallbackGapFiller(context).fill_gaps(
            [_unmet(remaining=1)], blocked, _configs(), D1, D3)
        assert without.assignments == []
        with_cross = FallbackGapFiller(context).fill_gaps(
            [_unmet(remaining=1)], blocked, _configs(fallback_allow_cross_system=True), D1, D3)
        assert with_cross.assignments[0].preceptor_id == "p4"
        assert with_cross.assignments[0].tier == TIER_CROSS_SYSTEM

    def test_blackout_dates_excluded(self, availability):
        context = _context(availability, blackout=[D2])
        result = FallbackGapFiller(context).fill_gaps(
            [_unmet(remaining=2)], [Assignment("s1", "p9", "fm", D1)], _configs(), D1, D3)
        assert [a.date for a in result.assignments] == [D3]
        assert len(result.partial_fulfillments) == 1

    def test_capacity_counts_pending(self, availability):
        context = _context(availability)
        result = FallbackGapFiller(context).fill_gaps(
            [_unmet("s1", remaining=1), _unmet("s2", remaining=1)],
            [Assignment("s1", "p9", "fm", D1), Assignment("s2", "p9", "fm", D1)],
            _configs(), D2, D2)
        # p3 has max 1: s1 takes D2, s2 has to go nowhere in-system
        assert [(a.student_id, a.preceptor_id) for a in result.assignments] == [("s1", "p3")]
        assert [u.student_id for u in result.still_unmet] == ["s2"]

    def test_no_double_booking(self, availability):
        context = _context(availability)
        result = FallbackGapFiller(context).fill_gaps(
            [_unmet(assigned=0, remaining=3)], [], _configs(fallback_allow_cross_system=True), D1, D3)
        days = [a.date for a in result.assignments]
        assert len(days) == len(set(days))

    def test_largest_gap_first(self, availability):
        context = _context(availability)
        result = FallbackGapFiller(context).fill_gaps(
            [_unmet("s1", remaining=1), _unmet("s2", assigned=0, remaining=3)],
            [], _configs(), D1, D3)
        assert result.assignments[0].student_id == "s2"

    def test_fallbacks_disabled(self, availability):
        context = _context(availability)
        result = FallbackGapFiller(context).fill_gaps(
            [_unmet()], [], _configs(allow_fallbacks=False), D1, D3)
        assert result.assignments == []
        assert len(result.still_unmet) == 1

    def test_missing_config(self, availability):
        result = FallbackGapFiller(_context(availability)).fill_gaps([_unmet()], [], {}, D1, D3)
        assert len(result.still_unmet) == 1

    def test_empty_input(self, availability):
        result = FallbackGapFiller(_context(availability)).fill_gaps([], [], _configs(), D1, D3)
        assert result.to_dict()["assignments"] == []


class TestCommitAndLog:

    def test_commit_credits_requirements(self):
        context = _context([AvailabilityRecord("p3", D2)])
        result = FallbackGapFiller(context).fill_gaps(
            [_unmet(assigned=0, remaining=3)], [], _configs(), D1, D3)
        assert commit_fallback_assignments(context, result) == 1
        assert context.student_requirements["s1"]["fm"] == 2
        assert len(context.assignments) == 1

    def test_log_appends(self, tmp_path):
        context = _context([AvailabilityRecord("p3", D2)])
        result = FallbackGapFiller(context).fill_gaps(
            [_unmet(assigned=0, remaining=3)], [], _configs(), D1, D3)
        write_gap_fill_log(result, tmp_path, prefix="first")
        path = write_gap_fill_log(result, tmp_path, prefix="second")

        with open(path) as f:
            entries = json.load(f)
        assert [e["prefix"] for e in entries] == ["first", "second"]
        assert entries[0]["assignments"][0]["date"] == "2026-07-02"
        assert entries[0]["timestamp"].endswith("Z")
