"""
tests/test_capacity.py — Preceptor capacity rule resolution and checks.
"""

import sys
from datetime import date
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from preceptor_scheduler.capacity import CapacityChecker
from preceptor_scheduler.models import Assignment, Preceptor, PreceptorCapacityRule

D1 = date(2026, 7, 1)


def _a(student, preceptor="p1", d=D1):
    return Assignment(student_id=student, preceptor_id=preceptor, clerkship_id="fm", date=d)


@pytest.fixture
def checker():
    preceptors = [Preceptor("p1", "Dr. Reyes", max_students=3), Preceptor("p2", "Dr. Nguyen", max_students=0)]
    rules = [
        PreceptorCapacityRule("p1", 5, 50),
        PreceptorCapacityRule("p1", 4, 40, requirement_type="inpatient"),
        PreceptorCapacityRule("p1", 3, 30, clerkship_id="fm"),
        PreceptorCapacityRule("p1", 2, 20, clerkship_id="fm", requirement_type="inpatient"),
    ]
    return CapacityChecker(preceptors, rules)


class TestRuleResolution:

    def test_most_specific_wins(self, checker):
        assert checker.resolve_capacity_rule("p1", "fm", "inpatient").max_students_per_day == 2

    def test_clerkship_only(self, checker):
        assert checker.resolve_capacity_rule("p1", "fm", "outpatient").max_students_per_day == 3

    def test_requirement_type_only(self, checker):
        assert checker.resolve_capacity_rule("p1", "im", "inpatient").max_students_per_day == 4

    def test_general_rule(self, checker):
        assert checker.resolve_capacity_rule("p1").max_students_per_day == 5

    def test_default_uses_max_students(self):
        rule = CapacityChecker([Preceptor("p1", "Dr. Reyes", max_students=3)]).resolve_capacity_rule("p1")
        assert rule.max_students_per_day == 3
        assert rule.max_students_per_year == 20

    def test_default_without_max_students(self, checker):
        assert checker.resolve_capacity_rule("p2").max_students_per_day == 2

    def test_default_for_unknown_preceptor(self, checker):
        assert checker.resolve_capacity_rule("ghost").max_students_per_day == 2


class TestCheckCapacity:

    def test_under_capacity(self):
        checker = CapacityChecker([Preceptor("p1", "Dr. Reyes", max_students=2)])
        result = checker.check_capacity("p1", D1, [_a("s1")])
        assert result.has_capacity
        assert result.current_count == 1

    def test_daily_limit(self):
        checker = CapacityChecker([Preceptor("p1", "Dr. Reyes", max_students=1)])
        result = checker.check_capacity("p1", D1, [_a("s1")])
        assert not result.has_capacity
        assert result.check_type == "daily"
        assert result.reason == "Preceptor at daily capacity (1/1)"

    def test_yearly_limit_same_calendar_year(self):
        checker = CapacityChecker([Preceptor("p1", "Dr. Reyes")], [PreceptorCapacityRule("p1", 5, 2)])
        existing = [_a("s1", d=date(2026, 3, 1)), _a("s2", d=date(2026, 5, 1)), _a("s3", d=date(2025, 5, 1))]
        result = checker.check_capacity("p1", D1, existing)
        assert not result.has_capacity
        assert result.check_type == "yearly"
        assert result.reason == "Preceptor at yearly capacity (2/2)"

    def test_other_preceptors_ignored(self):
        checker = CapacityChecker([Preceptor("p1", "Dr. Reyes", max_students=1)])
        assert checker.check_capacity("p1", D1, [_a("s1", preceptor="p9")]).has_capacity
