"""
capacity.py — Preceptor capacity rules for the fallback passes

Rule resolution, most specific first:
  1. clerkship + requirement type
  2. clerkship
  3. requirement type
  4. general (neither set)
  5. default: preceptor.max_students per day (DEFAULT_MAX_STUDENTS_PER_DAY
     for an unknown preceptor), DEFAULT_MAX_STUDENTS_PER_YEAR per year

Counts come from the assignment list the caller passes in (persisted plus
pending), so in-memory fallback assignments are seen immediately.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional

from preceptor_scheduler.config import DEFAULT_MAX_STUDENTS_PER_DAY, DEFAULT_MAX_STUDENTS_PER_YEAR
from preceptor_scheduler.models import Assignment, Preceptor, PreceptorCapacityRule

logger = logging.getLogger(__name__)


@dataclass
class CapacityCheckResult:
    has_capacity: bool
    reason: Optional[str] = None
    check_type: Optional[str] = None   # "daily" | "yearly"
    current_count: int = 0
    max_allowed: int = 0


class CapacityChecker:
    def __init__(
        self,
        preceptors: Iterable[Preceptor],
        rules: Optional[Iterable[PreceptorCapacityRule]] = None,
    ):
        self._preceptors: Dict[str, Preceptor] = {p.id: p for p in preceptors}
        self._rules: Dict[str, List[PreceptorCapacityRule]] = {}
        for rule in rules or []:
            self._rules.setdefault(rule.preceptor_id, []).append(rule)

    def resolve_capacity_rule(
        self,
        preceptor_id: str,
        clerkship_id: Optional[str] = None,
        requirement_type: Optional[str] = None,
    ) -> PreceptorCapacityRule:
        rules = self._rules.get(preceptor_id, [])

        candidates = []
        if clerkship_id and requirement_type:
            candidates.append(lambda r: r.clerkship_id == clerkship_id
                              and r.requirement_type == requirement_type)
        if clerkship_id:
            candidates.append(lambda r: r.clerkship_id == clerkship_id and not r.requirement_type)
        if requirement_type:
            candidates.append(lambda r: not r.clerkship_id and r.requirement_type == requirement_type)
        candidates.append(lambda r: not r.clerkship_id and not r.requirement_type)

        for match in candidates:
            for rule in rules:
                if match(rule):
                    return rule

        preceptor = self._preceptors.get(preceptor_id)
        return PreceptorCapacityRule(
            preceptor_id=preceptor_id,
            max_students_per_day=(preceptor.max_students if preceptor and preceptor.max_students
                                  else DEFAULT_MAX_STUDENTS_PER_DAY),
            max_students_per_year=DEFAULT_MAX_STUDENTS_PER_YEAR,
        )

    def check_capacity(
        self,
        preceptor_id: str,
        d: date,
        assignments: Iterable[Assignment],
        clerkship_id: Optional[str] = None,
        requirement_type: Optional[str] = None,
    ) -> CapacityCheckResult:
        """Daily then yearly (calendar year of d) assignment counts against the resolved rule."""
        rule = self.resolve_capacity_rule(preceptor_id, clerkship_id, requirement_type)

        day_count = 0
        year_count = 0
        for a in assignments:
            if a.preceptor_id != preceptor_id:
                continue
            if a.date == d:
                day_count += 1
            if a.date.year == d.year:
                year_count += 1

        if day_count >= rule.max_students_per_day:
            return CapacityCheckResult(
                has_capacity=False,
                reason=f"Preceptor at daily capacity ({day_count}/{rule.max_students_per_day})",
                check_type="daily",
                current_count=day_count,
                max_allowed=rule.max_students_per_day,
            )
        if year_count >= rule.max_students_per_year:
            return CapacityCheckResult(
                has_capacity=False,
                reason=f"Preceptor at yearly capacity ({year_count}/{rule.max_students_per_year})",
                check_type="yearly",
                current_count=year_count,
                max_allowed=rule.max_students_per_year,
            )
        return CapacityCheckResult(has_capacity=True, current_count=day_count,
                                   max_allowed=rule.max_students_per_day)
