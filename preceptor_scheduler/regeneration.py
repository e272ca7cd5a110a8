"""
regeneration.py — Incremental re-scheduling over an existing schedule

Strategies:
  full-reoptimize  Credit past assignments (date < regenerate_from), drop every
                   future one, rerun the engine over the future window.
  minimal-change   Credit past assignments, keep every future assignment that is
                   still valid (seeded without revalidation), and propose a
                   same-date, same-clerkship replacement preceptor for each
                   affected one.  Replacements are candidates only: the engine
                   validates them before they are committed.
  completion       Credit and seed ALL existing assignments as-is, then fill
                   whatever is still missing.  Nothing is deleted.

A future assignment is affected when
  - its preceptor is globally unavailable (on the roster, no available dates), or
  - its preceptor is not available on that date, or
  - its date is now a blackout date.

Crediting clamps at zero: extra historical days never push a requirement negative.

analyze_regeneration_impact() is the read-only preview; it never touches the
context.  regenerate_schedule() is the full run and emits one audit record.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from preceptor_scheduler.audit import (
    RegenerationAuditRecord,
    create_regeneration_audit_record,
    log_regeneration_event,
)
from preceptor_scheduler.context import SchedulingContext
from preceptor_scheduler.models import Assignment, DateLike, parse_date

logger = logging.getLogger(__name__)


class RegenerationStrategy(Enum):
    MINIMAL_CHANGE = "minimal-change"
    FULL_REOPTIMIZE = "full-reoptimize"
    COMPLETION = "completion"


def parse_strategy(value) -> RegenerationStrategy:
    """Accept a RegenerationStrategy or its string value. Raises ValueError otherwise."""
    if isinstance(value, RegenerationStrategy):
        return value
    try:
        return RegenerationStrategy(value)
    except ValueError:
        choices = ", ".join(s.value for s in RegenerationStrategy)
        raise ValueError(f"Unknown regeneration strategy {value!r} (expected one of: {choices})") from None


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class RequirementCreditResult:
    total_past_assignments: int
    credited_days: int
    credits_by_student: Dict[str, Dict[str, int]] = field(default_factory=dict)


@dataclass
class AffectedAssignmentsResult:
    preservable_assignments: List[Assignment] = field(default_factory=list)
    affected_assignments: List[Assignment] = field(default_factory=list)
    unavailable_preceptor_ids: Set[str] = field(default_factory=set)


@dataclass
class ReplacementProposal:
    original: Assignment
    replacement_preceptor_id: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original": self.original.to_dict(),
            "replacement_preceptor_id": self.replacement_preceptor_id,
        }


@dataclass
class StudentProgress:
    student_id: str
    clerkship_id: str
    completed_days: int
    remaining_days: int


@dataclass
class RegenerationPlan:
    """What prepare_* did to the context before the engine runs."""
    strategy: RegenerationStrategy
    credit_result: RequirementCreditResult
    past_assignments: List[Assignment] = field(default_factory=list)
    deleted_assignments: List[Assignment] = field(default_factory=list)
    preserved_assignments: List[Assignment] = field(default_factory=list)
    affected_assignments: List[Assignment] = field(default_factory=list)
    replacement_candidates: List[Assignment] = field(default_factory=list)
    students_with_unmet_requirements: List[str] = field(default_factory=list)


@dataclass
class RegenerationImpact:
    strategy: RegenerationStrategy
    regenerate_from_date: date
    past_assignments: List[Assignment]
    future_assignments: List[Assignment]
    deleted_count: int
    preservable_assignments: List[Assignment]
    affected_assignments: List[Assignment]
    replaceable_assignments: List[ReplacementProposal]
    student_progress: List[StudentProgress]
    summary: Dict[str, Any]

    @property
    def past_assignments_count(self) -> int:
        return len(self.past_assignments)

    @property
    def preserved_count(self) -> int:
        return len(self.preservable_assignments)

    @property
    def affected_count(self) -> int:
        return len(self.affected_assignments)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "past_assignments_count": self.past_assignments_count,
            "future_assignments_count": len(self.future_assignments),
            "deleted_count": self.deleted_count,
            "preserved_count": self.preserved_count,
            "affected_count": self.affected_count,
            "replaceable_assignments": [r.to_dict() for r in self.replaceable_assignments],
            "student_progress": [vars(p).copy() for p in self.student_progress],
            "summary": dict(self.summary),
        }


@dataclass
class RegenerationResult:
    schedule_result: Any  # engine.ScheduleResult
    audit_record: RegenerationAuditRecord
    plan: RegenerationPlan
    committed_replacements: List[Assignment] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Crediting
# ---------------------------------------------------------------------------

def split_by_date(
    assignments: Iterable[Assignment],
    regenerate_from: date,
) -> Tuple[List[Assignment], List[Assignment]]:
    """(past, future): past is date < regenerate_from, future is everything else."""
    past: List[Assignment] = []
    future: List[Assignment] = []
    for a in assignments:
        (past if a.date < regenerate_from else future).append(a)
    return past, future


def credit_past_assignments(
    context: SchedulingContext,
    assignments: Iterable[Assignment],
) -> RequirementCreditResult:
    """Decrement remaining requirements once per historical day, never below zero."""
    assignments = list(assignments)
    credits: Dict[str, Dict[str, int]] = {}
    credited = 0
    for a in assignments:
        if context.credit_requirement(a.student_id, a.clerkship_id):
            by_clerkship = credits.setdefault(a.student_id, {})
            by_clerkship[a.clerkship_id] = by_clerkship.get(a.clerkship_id, 0) + 1
            credited += 1
    logger.info(f"Credited {credited} of {len(assignments)} historical assignment days")
    return RequirementCreditResult(
        total_past_assignments=len(assignments),
        credited_days=credited,
        credits_by_student=credits,
    )


# ---------------------------------------------------------------------------
# Minimal-change helpers
# ---------------------------------------------------------------------------

def get_unavailable_preceptor_ids(context: SchedulingContext) -> Set[str]:
    """Preceptors on the roster with no available dates at all."""
    return {p.id for p in context.preceptors if not context.preceptor_availability.get(p.id)}


def identify_affected_assignments(
    context: SchedulingContext,
    future_assignments: Iterable[Assignment],
) -> AffectedAssignmentsResult:
    unavailable = get_unavailable_preceptor_ids(context)
    result = AffectedAssignmentsResult(unavailable_preceptor_ids=unavailable)

    for a in future_assignments:
        availability = context.preceptor_availability.get(a.preceptor_id)
        affected = (
            a.preceptor_id in unavailable
            or (availability is not None and a.date not in availability)
            or a.date in context.blackout_dates
        )
        if affected:
            result.affected_assignments.append(a)
        else:
            result.preservable_assignments.append(a)

    logger.info(
        f"Future assignments: {len(result.preservable_assignments)} preservable, "
        f"{len(result.affected_assignments)} affected "
        f"({len(unavailable)} preceptors unavailable)"
    )
    return result


def find_replacement_preceptor(
    assignment: Assignment,
    context: SchedulingContext,
    unavailable_preceptor_ids: Set[str],
    pending: Optional[Dict[Tuple[str, date], int]] = None,
) -> Optional[str]:
    """
    First preceptor (roster order) who can take the same student, clerkship
    and date: not the original, not globally unavailable, available on the
    date, and under max_students on the date.  None if nobody qualifies.

    pending counts (preceptor_id, date) slots already promised to earlier
    proposals that are not in the context yet.
    """
    if context.get_clerkship(assignment.clerkship_id) is None:
        return None
    for p in context.preceptors:
        if p.id in unavailable_preceptor_ids or p.id == assignment.preceptor_id:
            continue
        if not context.is_preceptor_available(p.id, assignment.date):
            continue
        taken = context.preceptor_count_on_date(p.id, assignment.date)
        if pending:
            taken += pending.get((p.id, assignment.date), 0)
        if taken >= p.max_students:
            continue
        return p.id
    return None


def _promise(pending: Dict[Tuple[str, date], int], preceptor_id: str, d: date) -> None:
    pending[(preceptor_id, d)] = pending.get((preceptor_id, d), 0) + 1


def apply_minimal_change_strategy(
    context: SchedulingContext,
    affected: AffectedAssignmentsResult,
) -> List[Assignment]:
    """
    Seed preservable assignments into the context (requirements decremented,
    no constraint checks) and return replacement candidates for the affected
    ones.  Candidates are not committed.
    """
    for a in affected.preservable_assignments:
        context.add_assignment(a)

    candidates: List[Assignment] = []
    pending: Dict[Tuple[str, date], int] = {}
    for a in affected.affected_assignments:
        replacement_id = find_replacement_preceptor(
            a, context, affected.unavailable_preceptor_ids, pending)
        if replacement_id is None:
            logger.debug(
                f"No replacement for {a.student_id} on {a.date} ({a.clerkship_id}); "
                f"left to the engine and gap filler"
            )
            continue
        _promise(pending, replacement_id, a.date)
        candidates.append(Assignment(
            student_id=a.student_id,
            preceptor_id=replacement_id,
            clerkship_id=a.clerkship_id,
            date=a.date,
            elective_id=a.elective_id,
        ))

    logger.info(
        f"Minimal change: preserved {len(affected.preservable_assignments)}, "
        f"{len(candidates)}/{len(affected.affected_assignments)} affected assignments have a replacement"
    )
    return candidates


# ---------------------------------------------------------------------------
# Context preparation
# ---------------------------------------------------------------------------

def prepare_regeneration_context(
    context: SchedulingContext,
    existing_assignments: Iterable[Assignment],
    regenerate_from: DateLike,
    strategy=RegenerationStrategy.FULL_REOPTIMIZE,
) -> RegenerationPlan:
    """Full-reoptimize or minimal-change preparation. Mutates context."""
    strategy = parse_strategy(strategy)
    if strategy is RegenerationStrategy.COMPLETION:
        return prepare_completion_context(context, existing_assignments)
    cutoff = parse_date(regenerate_from)

    past, future = split_by_date(existing_assignments, cutoff)
    credit_result = credit_past_assignments(context, past)
    plan = RegenerationPlan(strategy=strategy, credit_result=credit_result, past_assignments=past)

    if strategy is RegenerationStrategy.MINIMAL_CHANGE:
        affected = identify_affected_assignments(context, future)
        plan.replacement_candidates = apply_minimal_change_strategy(context, affected)
        plan.preserved_assignments = affected.preservable_assignments
        plan.affected_assignments = affected.affected_assignments
        plan.deleted_assignments = affected.affected_assignments
    else:
        plan.deleted_assignments = future

    return plan


def prepare_completion_context(
    context: SchedulingContext,
    existing_assignments: Iterable[Assignment],
) -> RegenerationPlan:
    """Credit and seed every existing assignment; report students still short."""
    existing = list(existing_assignments)
    credit_result = credit_past_assignments(context, existing)
    for a in existing:
        context.add_assignment(a, credit=False)

    unmet_students = [
        s.id for s in context.students
        if any(days > 0 for days in context.student_requirements.get(s.id, {}).values())
    ]
    total = len(context.students)
    completion_rate = (total - len(unmet_students)) / total * 100 if total else 100.0
    logger.info(
        f"Completion: {len(existing)} existing assignments kept, "
        f"{len(unmet_students)} students still need days ({completion_rate:.1f}% complete)"
    )
    return RegenerationPlan(
        strategy=RegenerationStrategy.COMPLETION,
        credit_result=credit_result,
        past_assignments=existing,
        preserved_assignments=existing,
        students_with_unmet_requirements=unmet_students,
    )


# ---------------------------------------------------------------------------
# Impact analysis (read-only)
# ---------------------------------------------------------------------------

def _student_progress(context: SchedulingContext, past: List[Assignment]) -> List[StudentProgress]:
    completed: Dict[str, Dict[str, int]] = {}
    for a in past:
        by_clerkship = completed.setdefault(a.student_id, {})
        by_clerkship[a.clerkship_id] = by_clerkship.get(a.clerkship_id, 0) + 1

    rows = []
    for student_id, by_clerkship in completed.items():
        for clerkship_id, days in by_clerkship.items():
            clerkship = context.get_clerkship(clerkship_id)
            required = clerkship.required_days if clerkship else 0
            rows.append(StudentProgress(
                student_id=student_id,
                clerkship_id=clerkship_id,
                completed_days=days,
                remaining_days=max(0, required - days),
            ))
    return rows


def analyze_regeneration_impact(
    context: SchedulingContext,
    existing_assignments: Iterable[Assignment],
    regenerate_from: DateLike,
    strategy=RegenerationStrategy.FULL_REOPTIMIZE,
) -> RegenerationImpact:
    """Preview what a regeneration would do. Does not modify the context."""
    strategy = parse_strategy(strategy)
    cutoff = parse_date(regenerate_from)
    past, future = split_by_date(existing_assignments, cutoff)

    preservable: List[Assignment] = []
    affected: List[Assignment] = []
    replaceable: List[ReplacementProposal] = []
    if strategy is RegenerationStrategy.MINIMAL_CHANGE:
        classified = identify_affected_assignments(context, future)
        preservable = classified.preservable_assignments
        affected = classified.affected_assignments
        # preserved assignments would be seeded before replacements are sought
        pending: Dict[Tuple[str, date], int] = {}
        for a in preservable:
            _promise(pending, a.preceptor_id, a.date)
        for a in affected:
            replacement_id = find_replacement_preceptor(
                a, context, classified.unavailable_preceptor_ids, pending)
            if replacement_id is not None:
                _promise(pending, replacement_id, a.date)
            replaceable.append(ReplacementProposal(original=a, replacement_preceptor_id=replacement_id))

    if strategy is RegenerationStrategy.FULL_REOPTIMIZE:
        deleted_count = len(future)
    elif strategy is RegenerationStrategy.MINIMAL_CHANGE:
        deleted_count = len(affected)
    else:
        deleted_count = 0

    progress = _student_progress(context, past)
    preserve_future = (
        strategy is RegenerationStrategy.COMPLETION
        or (strategy is RegenerationStrategy.MINIMAL_CHANGE and bool(preservable))
    )
    logger.info(
        f"Impact ({strategy.value} from {cutoff}): past={len(past)} future={len(future)} "
        f"preservable={len(preservable)} affected={len(affected)} deleted={deleted_count}"
    )
    return RegenerationImpact(
        strategy=strategy,
        regenerate_from_date=cutoff,
        past_assignments=past,
        future_assignments=future,
        deleted_count=deleted_count,
        preservable_assignments=preservable,
        affected_assignments=affected,
        replaceable_assignments=replaceable,
        student_progress=progress,
        summary={
            "strategy": strategy.value,
            "regenerate_from_date": cutoff.isoformat(),
            "total_assignments_impacted": deleted_count,
            "will_preserve_past": True,
            "will_preserve_future": preserve_future,
        },
    )


# ---------------------------------------------------------------------------
# Full regeneration run
# ---------------------------------------------------------------------------

def regenerate_schedule(
    engine,
    context: SchedulingContext,
    existing_assignments: Iterable[Assignment],
    strategy,
    regenerate_from: DateLike,
    end_date: DateLike,
    bypassed_constraints: Optional[Set[str]] = None,
    user_id: Optional[str] = None,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
    sinks: Optional[Iterable[Any]] = None,
) -> RegenerationResult:
    """
    Prepare the context for the strategy, commit replacement candidates that
    pass the engine's constraint chain, then run the engine over
    [regenerate_from, end_date].  The context's schedule state is reset first,
    so running twice on the same inputs gives the same result.

    Raises ValueError for an unknown strategy, malformed dates, or
    regenerate_from after end_date.  Any failure during the run is audited
    with success=False before it propagates.
    """
    strategy = parse_strategy(strategy)
    start = parse_date(regenerate_from)
    end = parse_date(end_date)
    if start > end:
        raise ValueError(f"regenerate_from {start} is after end_date {end}")
    existing = list(existing_assignments)
    sinks = list(sinks or [])

    context.reset_schedule()
    context.start_date = start
    context.end_date = end

    plan: Optional[RegenerationPlan] = None
    try:
        plan = prepare_regeneration_context(context, existing, start, strategy)

        tracker = engine.get_violation_tracker()
        tracker.clear()
        committed: List[Assignment] = []
        for candidate in plan.replacement_candidates:
            if engine.validate_assignment(candidate, context, bypassed_constraints):
                context.add_assignment(candidate)
                committed.append(candidate)
        seeded = len(context.assignments) - len(committed)
        replacement_violations = tracker.export_violations()

        engine.run(context, bypassed_constraints)
        # run() starts a fresh log; keep why replacements were rejected
        tracker.prepend(replacement_violations)
        schedule_result = engine.build_result(context)
    except Exception as e:
        record = create_regeneration_audit_record(
            strategy=strategy.value,
            regenerate_from_date=start,
            end_date=end,
            past_assignments_count=len(plan.past_assignments) if plan else 0,
            success=False,
            user_id=user_id,
            reason=reason,
            notes=notes,
            error_message=str(e),
        )
        log_regeneration_event(record, sinks)
        raise

    record = create_regeneration_audit_record(
        strategy=strategy.value,
        regenerate_from_date=start,
        end_date=end,
        past_assignments_count=len(plan.past_assignments),
        deleted_assignments_count=len(plan.deleted_assignments),
        preserved_assignments_count=len(plan.preserved_assignments),
        affected_assignments_count=len(plan.affected_assignments),
        generated_assignments_count=len(context.assignments) - seeded,
        success=True,
        user_id=user_id,
        reason=reason,
        notes=notes,
    )
    log_regeneration_event(record, sinks)

    return RegenerationResult(
        schedule_result=schedule_result,
        audit_record=record,
        plan=plan,
        committed_replacements=committed,
    )
