"""
requirements.py — Requirement tracking helpers

student_requirements maps student_id → {clerkship_id: days still needed}.
Dict insertion order is the tie-break everywhere: students in input order,
clerkships in input order.
"""

from typing import TYPE_CHECKING, Dict, List, Optional

from preceptor_scheduler.models import Clerkship, Student, UnmetRequirement

if TYPE_CHECKING:
    from preceptor_scheduler.context import SchedulingContext


def initialize_student_requirements(
    students: List[Student],
    clerkships: List[Clerkship],
) -> Dict[str, Dict[str, int]]:
    return {
        student.id: {clerkship.id: clerkship.required_days for clerkship in clerkships}
        for student in students
    }


def get_most_needed_clerkship(student_id: str, context: "SchedulingContext") -> Optional[str]:
    """
    Clerkship with the most remaining days for the student.

    Exact ties keep the first clerkship seen.  Returns None when nothing
    remains.
    """
    reqs = context.student_requirements.get(student_id)
    if not reqs:
        return None
    best: Optional[str] = None
    best_days = 0
    for clerkship_id, days in reqs.items():
        if days > best_days:
            best, best_days = clerkship_id, days
    return best


def get_students_needing_assignments(context: "SchedulingContext") -> List[str]:
    """Student ids with any remaining requirement, in input order."""
    return [
        student.id for student in context.students
        if any(days > 0 for days in context.student_requirements.get(student.id, {}).values())
    ]


def requirements_met(student_id: str, context: "SchedulingContext") -> bool:
    return all(days <= 0 for days in context.student_requirements.get(student_id, {}).values())


def get_total_remaining_days(context: "SchedulingContext") -> int:
    return sum(
        max(days, 0)
        for reqs in context.student_requirements.values()
        for days in reqs.values()
    )


def check_unmet_requirements(context: "SchedulingContext") -> List[UnmetRequirement]:
    unmet: List[UnmetRequirement] = []
    for student in context.students:
        for clerkship_id, remaining in context.student_requirements.get(student.id, {}).items():
            if remaining <= 0:
                continue
            clerkship = context.get_clerkship(clerkship_id)
            required = clerkship.required_days if clerkship else remaining
            unmet.append(UnmetRequirement(
                student_id=student.id,
                student_name=student.name,
                clerkship_id=clerkship_id,
                clerkship_name=clerkship.name if clerkship else clerkship_id,
                required_days=required,
                assigned_days=required - remaining,
                remaining_days=remaining,
            ))
    return unmet
