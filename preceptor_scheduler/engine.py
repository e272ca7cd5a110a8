"""
engine.py — Greedy scheduling engine

Algorithm (single pass, no backtracking):
  dates = [start..end] − blackout dates
  For each date, ascending:
    For each student with any remaining requirement (input order):
      clerkship = the one with the most remaining days (first seen on ties)
      candidates = preceptors available on date AND under max_students
      First candidate passing every active constraint is committed:
        context.add_assignment() → all indexes + requirement decrement
  unmet = any remaining days > 0; success iff unmet is empty

A committed assignment is never revisited within a run; the gap filler
(gap_filler.py) is the second pass that compensates.

The context and violation tracker belong to one run at a time.  Do not
share an engine across concurrent runs.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Set

from preceptor_scheduler.config import TOP_BLOCKING_CONSTRAINTS, TOP_VIOLATIONS_LIMIT
from preceptor_scheduler.constraints import Constraint
from preceptor_scheduler.context import SchedulingContext, build_scheduling_context
from preceptor_scheduler.factory import build_constraints
from preceptor_scheduler.models import (
    Assignment,
    AvailabilityRecord,
    Clerkship,
    DateLike,
    Preceptor,
    ResolvedClerkshipConfig,
    Student,
    UnmetRequirement,
    iter_dates,
)
from preceptor_scheduler.requirements import (
    check_unmet_requirements,
    get_most_needed_clerkship,
    get_students_needing_assignments,
)
from preceptor_scheduler.violations import ConstraintViolation, ViolationStats, ViolationTracker

logger = logging.getLogger(__name__)


@dataclass
class ScheduleResult:
    assignments: List[Assignment]
    success: bool
    unmet_requirements: List[UnmetRequirement] = field(default_factory=list)
    violation_stats: List[ViolationStats] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assignments": [a.to_dict() for a in self.assignments],
            "success": self.success,
            "unmet_requirements": [u.to_dict() for u in self.unmet_requirements],
            "violation_stats": [s.to_dict() for s in self.violation_stats],
            "summary": dict(self.summary),
        }


# ---------------------------------------------------------------------------
# Date helpers
# ---------------------------------------------------------------------------

def get_scheduling_dates(start: date, end: date, blackout_dates: Set[date]) -> List[date]:
    """Every day in [start, end] that is not a blackout date, ascending."""
    return [d for d in iter_dates(start, end) if d not in blackout_dates]


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class SchedulingEngine:
    """Runs the greedy loop over an ordered constraint chain."""

    def __init__(
        self,
        constraints: List[Constraint],
        violation_tracker: Optional[ViolationTracker] = None,
    ):
        self.constraints = sorted(constraints, key=lambda c: c.priority)
        self.violation_tracker = violation_tracker or ViolationTracker()

    def get_violation_tracker(self) -> ViolationTracker:
        return self.violation_tracker

    def _active(self, bypassed: Optional[Set[str]]) -> List[Constraint]:
        if not bypassed:
            return self.constraints
        return [c for c in self.constraints if c.name not in bypassed]

    def validate_assignment(
        self,
        assignment: Assignment,
        context: SchedulingContext,
        bypassed_constraints: Optional[Set[str]] = None,
    ) -> bool:
        """True iff every non-bypassed constraint accepts; stops at the first rejection."""
        for constraint in self._active(bypassed_constraints):
            if not constraint.validate(assignment, context, self.violation_tracker):
                return False
        return True

    def get_available_preceptors(self, context: SchedulingContext, d: date) -> List[Preceptor]:
        """Cheap pre-filter: available on d and under max_students on d."""
        return [
            p for p in context.preceptors
            if context.is_preceptor_available(p.id, d)
            and context.preceptor_count_on_date(p.id, d) < p.max_students
        ]

    def generate_schedule(
        self,
        students: List[Student],
        preceptors: List[Preceptor],
        clerkships: List[Clerkship],
        blackout_dates: Iterable[DateLike],
        availability_records: Iterable[AvailabilityRecord],
        start_date: DateLike,
        end_date: DateLike,
        bypassed_constraints: Optional[Set[str]] = None,
        existing_context: Optional[SchedulingContext] = None,
    ) -> ScheduleResult:
        """
        Generate a schedule.

        Args:
            students, preceptors, clerkships: Master data (order matters).
            blackout_dates:       Dates excluded system-wide.
            availability_records: Preceptor availability rows.
            start_date, end_date: Inclusive bounds.
            bypassed_constraints: Constraint names to skip for this run.
            existing_context:     Pre-seeded context (regeneration); when
                                  given, the master-data arguments are ignored.

        Returns:
            ScheduleResult. Partial schedules are normal results, not errors.
        """
        if existing_context is not None:
            context = existing_context
        else:
            context = build_scheduling_context(
                students, preceptors, clerkships, blackout_dates,
                availability_records, start_date, end_date,
            )
        return self.run(context, bypassed_constraints)

    def run(
        self,
        context: SchedulingContext,
        bypassed_constraints: Optional[Set[str]] = None,
    ) -> ScheduleResult:
        """Greedy loop over an already-built context. Mutates context in place."""
        self.violation_tracker.clear()
        bypassed = set(bypassed_constraints or ())
        active = self._active(bypassed)
        if bypassed:
            logger.info(f"Bypassing constraints: {sorted(bypassed)}")

        dates = get_scheduling_dates(context.start_date, context.end_date, context.blackout_dates)
        starting_count = len(context.assignments)
        logger.info(
            f"Scheduling {len(dates)} dates ({context.start_date} → {context.end_date}) "
            f"with {len(active)} active constraints"
        )

        for d in dates:
            for student_id in get_students_needing_assignments(context):
                clerkship_id = get_most_needed_clerkship(student_id, context)
                if clerkship_id is None:
                    continue
                for preceptor in self.get_available_preceptors(context, d):
                    candidate = Assignment(
                        student_id=student_id,
                        preceptor_id=preceptor.id,
                        clerkship_id=clerkship_id,
                        date=d,
                    )
                    if all(c.validate(candidate, context, self.violation_tracker) for c in active):
                        context.add_assignment(candidate)
                        break

        result = self.build_result(context)
        logger.info(
            f"Run finished: {len(context.assignments) - starting_count} new assignments, "
            f"{len(result.unmet_requirements)} unmet requirements, "
            f"{result.summary['total_violations']} violations recorded"
        )
        return result

    def build_result(self, context: SchedulingContext) -> ScheduleResult:
        unmet = check_unmet_requirements(context)
        top = self.violation_tracker.get_top_violations(TOP_VIOLATIONS_LIMIT)
        return ScheduleResult(
            assignments=list(context.assignments),
            success=not unmet,
            unmet_requirements=unmet,
            violation_stats=top,
            summary={
                "total_assignments": len(context.assignments),
                "total_violations": self.violation_tracker.get_total_violations(),
                "most_blocking_constraints": [
                    s.constraint_name for s in top[:TOP_BLOCKING_CONSTRAINTS]
                ],
            },
        )

    def audit_schedule(
        self,
        assignments: Iterable[Assignment],
        context: SchedulingContext,
        bypassed_constraints: Optional[Set[str]] = None,
    ) -> List[ConstraintViolation]:
        """
        Replay assignments in order through the constraint chain on a cleared
        copy of the context's schedule state.  Every assignment is committed
        whether or not it passes, so later checks see the full schedule.

        The context's assignment indexes and requirements are reset first.
        Returns the violations recorded during the replay.
        """
        self.violation_tracker.clear()
        context.reset_schedule()
        active = self._active(bypassed_constraints)
        for assignment in assignments:
            for constraint in active:
                constraint.validate(assignment, context, self.violation_tracker)
            context.add_assignment(assignment)
        violations = self.violation_tracker.export_violations()
        logger.info(f"Audit replayed schedule: {len(violations)} violations")
        return violations


# ---------------------------------------------------------------------------
# Convenience
# ---------------------------------------------------------------------------

def schedule_from_context(
    context: SchedulingContext,
    configs: Optional[Dict[str, ResolvedClerkshipConfig]] = None,
    bypassed_constraints: Optional[Set[str]] = None,
) -> ScheduleResult:
    """Build constraints for every clerkship on the context and run the engine."""
    constraints = build_constraints([c.id for c in context.clerkships], context, configs)
    return SchedulingEngine(constraints).run(context, bypassed_constraints)
