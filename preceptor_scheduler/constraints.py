"""
constraints.py — Constraint system for clerkship scheduling

Each constraint validates ONE proposed assignment against the scheduling
context.  On rejection it records exactly one violation on the tracker and
returns False; there is no exception path.

Priority (lower = evaluated earlier):
  1  BlackoutDate, NoDoubleBooking, PreceptorAvailability*, SpecialtyMatch
  2  PreceptorCapacity*, PreceptorClerkshipAssociation, StudentOnboarding,
     SiteAvailability, ValidSiteForClerkship
  3  HealthSystemContinuity, SiteContinuity, SamePreceptorTeam
  4  SiteCapacity*
  (* bypassable)

Missing reference data:
  - unknown preceptor/clerkship in capacity, availability and specialty
    checks → reject
  - unknown anchor data in continuity checks → allow
  - association map absent from context → allow (feature not enabled)

Usage:
  ok = constraint.validate(assignment, context, tracker)
"""

import logging
from typing import Any, Dict, List, Optional

from preceptor_scheduler.context import SchedulingContext
from preceptor_scheduler.models import Assignment, RequirementType
from preceptor_scheduler.violations import ViolationTracker

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 99


def _name_of(obj: Any, fallback: Optional[str]) -> str:
    if obj is not None and getattr(obj, "name", None):
        return obj.name
    return fallback if fallback is not None else "Unknown"


class Constraint:
    """Base class: subclasses set name/priority/bypassable and implement validate()."""

    name: str = ""
    priority: int = DEFAULT_PRIORITY
    bypassable: bool = False

    def validate(
        self,
        assignment: Assignment,
        context: SchedulingContext,
        tracker: ViolationTracker,
    ) -> bool:
        raise NotImplementedError

    def violation_message(self, assignment: Assignment, context: SchedulingContext) -> str:
        return f"{self.name} violated for {assignment.student_id} on {assignment.date_str}"

    def _reject(
        self,
        assignment: Assignment,
        tracker: ViolationTracker,
        reason: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        tracker.record_violation(self.name, assignment, reason, metadata)
        return False

    def __repr__(self) -> str:
        return f"<{type(self).__name__} priority={self.priority} bypassable={self.bypassable}>"


class ClerkshipScopedConstraint(Constraint):
    """Constraint instantiated per clerkship; other clerkships pass through."""

    def __init__(self, requirement_id: str, clerkship_id: str) -> None:
        self.requirement_id = requirement_id
        self.clerkship_id = clerkship_id

    def applies_to(self, assignment: Assignment) -> bool:
        return assignment.clerkship_id == self.clerkship_id

    def __repr__(self) -> str:
        return f"<{type(self).__name__} clerkship={self.clerkship_id} priority={self.priority}>"


# ---------------------------------------------------------------------------
# Baseline
# ---------------------------------------------------------------------------

class BlackoutDateConstraint(Constraint):
    name = "BlackoutDate"
    priority = 1
    bypassable = False

    def validate(self, assignment, context, tracker):
        if assignment.date not in context.blackout_dates:
            return True
        student = context.get_student(assignment.student_id)
        return self._reject(assignment, tracker, self.violation_message(assignment, context), {
            "student_name": _name_of(student, assignment.student_id),
            "date": assignment.date_str,
        })

    def violation_message(self, assignment, context):
        return f"{assignment.date_str} is a blackout date (system-wide closure)"


class NoDoubleBookingConstraint(Constraint):
    """A student holds at most one assignment per date."""

    name = "NoDoubleBooking"
    priority = 1
    bypassable = False

    def validate(self, assignment, context, tracker):
        existing = [
            a for a in context.assignments_by_date.get(assignment.date, [])
            if a.student_id == assignment.student_id
        ]
        if not existing:
            return True
        student = context.get_student(assignment.student_id)
        conflicting = context.get_preceptor(existing[0].preceptor_id)
        return self._reject(assignment, tracker, self.violation_message(assignment, context), {
            "student_name": _name_of(student, assignment.student_id),
            "date": assignment.date_str,
            "conflicting_preceptor_id": existing[0].preceptor_id,
            "conflicting_preceptor_name": _name_of(conflicting, existing[0].preceptor_id),
        })

    def violation_message(self, assignment, context):
        student = context.get_student(assignment.student_id)
        return (f"Student {_name_of(student, assignment.student_id)} "
                f"is already assigned on {assignment.date_str}")


class PreceptorCapacityConstraint(Constraint):
    """Same-date assignment count must stay below the preceptor's max_students."""

    name = "PreceptorCapacity"
    priority = 2
    bypassable = True

    def validate(self, assignment, context, tracker):
        preceptor = context.get_preceptor(assignment.preceptor_id)
        if preceptor is None:
            return False

        same_day = [
            a for a in context.assignments_by_date.get(assignment.date, [])
            if a.preceptor_id == assignment.preceptor_id
        ]
        if len(same_day) < preceptor.max_students:
            return True

        student = context.get_student(assignment.student_id)
        return self._reject(assignment, tracker, self.violation_message(assignment, context), {
            "preceptor_name": preceptor.name,
            "max_students": preceptor.max_students,
            "current_count": len(same_day),
            "student_name": _name_of(student, assignment.student_id),
            "date": assignment.date_str,
            "assigned_students": ",".join(a.student_id for a in same_day),
        })

    def violation_message(self, assignment, context):
        preceptor = context.get_preceptor(assignment.preceptor_id)
        limit = preceptor.max_students if preceptor else 0
        return (f"Preceptor {_name_of(preceptor, assignment.preceptor_id)} is at capacity "
                f"({limit}) on {assignment.date_str}")


class PreceptorAvailabilityConstraint(Constraint):
    """Preceptor must have an availability entry for the date; no data means unavailable."""

    name = "PreceptorAvailability"
    priority = 1
    bypassable = True

    def validate(self, assignment, context, tracker):
        available = context.preceptor_availability.get(assignment.preceptor_id)
        if available is not None and assignment.date in available:
            return True

        preceptor = context.get_preceptor(assignment.preceptor_id)
        student = context.get_student(assignment.student_id)
        clerkship = context.get_clerkship(assignment.clerkship_id)
        return self._reject(assignment, tracker, self.violation_message(assignment, context), {
            "preceptor_name": _name_of(preceptor, assignment.preceptor_id),
            "preceptor_id": assignment.preceptor_id,
            "student_name": _name_of(student, assignment.student_id),
            "clerkship_name": _name_of(clerkship, assignment.clerkship_id),
            "date": assignment.date_str,
            "total_available_dates": len(available) if available else 0,
        })

    def violation_message(self, assignment, context):
        preceptor = context.get_preceptor(assignment.preceptor_id)
        return (f"Preceptor {_name_of(preceptor, assignment.preceptor_id)} "
                f"is not available on {assignment.date_str}")


class SpecialtyMatchConstraint(Constraint):
    """
    Preceptor specialty must match the clerkship specialty.

    Deployments that do not record specialties leave either side unset, and
    the check passes.  Unknown preceptor or clerkship ids are rejected
    without a recorded violation.
    """

    name = "SpecialtyMatch"
    priority = 1
    bypassable = False

    def validate(self, assignment, context, tracker):
        preceptor = context.get_preceptor(assignment.preceptor_id)
        clerkship = context.get_clerkship(assignment.clerkship_id)
        if preceptor is None or clerkship is None:
            return False
        if not preceptor.specialty or not clerkship.specialty:
            return True
        if preceptor.specialty.strip().lower() == clerkship.specialty.strip().lower():
            return True

        student = context.get_student(assignment.student_id)
        return self._reject(assignment, tracker, self.violation_message(assignment, context), {
            "preceptor_name": preceptor.name,
            "preceptor_specialty": preceptor.specialty,
            "clerkship_name": clerkship.name,
            "required_specialty": clerkship.specialty,
            "student_name": _name_of(student, assignment.student_id),
        })

    def violation_message(self, assignment, context):
        preceptor = context.get_preceptor(assignment.preceptor_id)
        clerkship = context.get_clerkship(assignment.clerkship_id)
        return (f"Preceptor {_name_of(preceptor, assignment.preceptor_id)} "
                f"({preceptor.specialty if preceptor else None}) cannot teach "
                f"{_name_of(clerkship, assignment.clerkship_id)} "
                f"(requires {clerkship.specialty if clerkship else None})")


# ---------------------------------------------------------------------------
# Continuity: the first assignment for a student+clerkship is the anchor
# ---------------------------------------------------------------------------

class HealthSystemContinuityConstraint(ClerkshipScopedConstraint):
    name = "HealthSystemContinuity"
    priority = 3
    bypassable = False

    def __init__(self, requirement_id: str, clerkship_id: str, allow_cross_system: bool) -> None:
        super().__init__(requirement_id, clerkship_id)
        self.allow_cross_system = allow_cross_system

    def _systems(self, assignment, context):
        preceptor = context.get_preceptor(assignment.preceptor_id)
        if preceptor is None or not preceptor.health_system_id:
            return None
        prior = context.student_clerkship_assignments(assignment.student_id, self.clerkship_id)
        if not prior:
            return None
        anchor = context.get_preceptor(prior[0].preceptor_id)
        if anchor is None or not anchor.health_system_id:
            return None
        return preceptor, anchor

    def validate(self, assignment, context, tracker):
        if self.allow_cross_system or not self.applies_to(assignment):
            return True
        pair = self._systems(assignment, context)
        if pair is None:
            return True
        preceptor, anchor = pair
        if preceptor.health_system_id == anchor.health_system_id:
            return True

        student = context.get_student(assignment.student_id)
        clerkship = context.get_clerkship(assignment.clerkship_id)
        return self._reject(assignment, tracker, self.violation_message(assignment, context), {
            "student_name": _name_of(student, assignment.student_id),
            "clerkship_name": _name_of(clerkship, assignment.clerkship_id),
            "preceptor_name": preceptor.name,
            "current_health_system": _name_of(
                context.get_health_system(preceptor.health_system_id), preceptor.health_system_id),
            "first_health_system": _name_of(
                context.get_health_system(anchor.health_system_id), anchor.health_system_id),
        })

    def violation_message(self, assignment, context):
        student = context.get_student(assignment.student_id)
        clerkship = context.get_clerkship(assignment.clerkship_id)
        pair = self._systems(assignment, context)
        if pair is None:
            return (f"Health system continuity violated for "
                    f"{_name_of(student, assignment.student_id)} in "
                    f"{_name_of(clerkship, assignment.clerkship_id)}")
        preceptor, anchor = pair
        first = _name_of(context.get_health_system(anchor.health_system_id), anchor.health_system_id)
        current = _name_of(
            context.get_health_system(preceptor.health_system_id), preceptor.health_system_id)
        return (f"Student {_name_of(student, assignment.student_id)} must stay within {first} "
                f"for {_name_of(clerkship, assignment.clerkship_id)}. "
                f"Cannot assign to {preceptor.name} at {current}.")


class SiteContinuityConstraint(ClerkshipScopedConstraint):
    name = "SiteContinuity"
    priority = 3
    bypassable = False

    def __init__(self, requirement_id: str, clerkship_id: str, require_same_site: bool) -> None:
        super().__init__(requirement_id, clerkship_id)
        self.require_same_site = require_same_site

    def _sites(self, assignment, context):
        preceptor = context.get_preceptor(assignment.preceptor_id)
        if preceptor is None or not preceptor.site_id:
            return None
        prior = context.student_clerkship_assignments(assignment.student_id, self.clerkship_id)
        if not prior:
            return None
        anchor = context.get_preceptor(prior[0].preceptor_id)
        if anchor is None or not anchor.site_id:
            return None
        return preceptor, anchor

    def validate(self, assignment, context, tracker):
        if not self.require_same_site or not self.applies_to(assignment):
            return True
        pair = self._sites(assignment, context)
        if pair is None:
            return True
        preceptor, anchor = pair
        if preceptor.site_id == anchor.site_id:
            return True

        student = context.get_student(assignment.student_id)
        clerkship = context.get_clerkship(assignment.clerkship_id)
        return self._reject(assignment, tracker, self.violation_message(assignment, context), {
            "student_name": _name_of(student, assignment.student_id),
            "clerkship_name": _name_of(clerkship, assignment.clerkship_id),
            "preceptor_name": preceptor.name,
            "current_site": _name_of(context.get_site(preceptor.site_id), preceptor.site_id),
            "first_site": _name_of(context.get_site(anchor.site_id), anchor.site_id),
        })

    def violation_message(self, assignment, context):
        student = context.get_student(assignment.student_id)
        clerkship = context.get_clerkship(assignment.clerkship_id)
        pair = self._sites(assignment, context)
        if pair is None:
            return (f"Site continuity violated for {_name_of(student, assignment.student_id)} "
                    f"in {_name_of(clerkship, assignment.clerkship_id)}")
        preceptor, anchor = pair
        return (f"Student {_name_of(student, assignment.student_id)} must stay at "
                f"{_name_of(context.get_site(anchor.site_id), anchor.site_id)} for "
                f"{_name_of(clerkship, assignment.clerkship_id)}. Cannot assign to "
                f"{preceptor.name} at {_name_of(context.get_site(preceptor.site_id), preceptor.site_id)}.")


class SamePreceptorTeamConstraint(ClerkshipScopedConstraint):
    """Later assignments must share at least one team with the anchor preceptor."""

    name = "SamePreceptorTeam"
    priority = 3
    bypassable = False

    def __init__(self, requirement_id: str, clerkship_id: str, require_same_team: bool) -> None:
        super().__init__(requirement_id, clerkship_id)
        self.require_same_team = require_same_team

    def _teams(self, assignment, context):
        if not context.preceptor_teams:
            return None
        current = context.preceptor_teams.get(assignment.preceptor_id)
        if not current:
            return None
        prior = context.student_clerkship_assignments(assignment.student_id, self.clerkship_id)
        if not prior:
            return None
        first = context.preceptor_teams.get(prior[0].preceptor_id)
        if not first:
            return None
        return current, first, prior[0]

    def validate(self, assignment, context, tracker):
        if not self.require_same_team or not self.applies_to(assignment):
            return True
        found = self._teams(assignment, context)
        if found is None:
            return True
        current, first, anchor = found
        if current & first:
            return True

        student = context.get_student(assignment.student_id)
        clerkship = context.get_clerkship(assignment.clerkship_id)
        preceptor = context.get_preceptor(assignment.preceptor_id)
        first_team = sorted(first)[0]
        current_team = sorted(current)[0]
        return self._reject(assignment, tracker, self.violation_message(assignment, context), {
            "student_name": _name_of(student, assignment.student_id),
            "clerkship_name": _name_of(clerkship, assignment.clerkship_id),
            "preceptor_name": _name_of(preceptor, assignment.preceptor_id),
            "first_preceptor_name": _name_of(
                context.get_preceptor(anchor.preceptor_id), anchor.preceptor_id),
            "current_team": _name_of(context.get_team(current_team), current_team),
            "first_team": _name_of(context.get_team(first_team), first_team),
        })

    def violation_message(self, assignment, context):
        student = context.get_student(assignment.student_id)
        clerkship = context.get_clerkship(assignment.clerkship_id)
        found = self._teams(assignment, context)
        if found is None:
            return (f"Preceptor team continuity violated for "
                    f"{_name_of(student, assignment.student_id)} in "
                    f"{_name_of(clerkship, assignment.clerkship_id)}")
        current, first, _anchor = found
        first_team = sorted(first)[0]
        current_team = sorted(current)[0]
        preceptor = context.get_preceptor(assignment.preceptor_id)
        return (f"Student {_name_of(student, assignment.student_id)} must stay with team "
                f"{_name_of(context.get_team(first_team), first_team)} for "
                f"{_name_of(clerkship, assignment.clerkship_id)}. Cannot assign to "
                f"{_name_of(preceptor, assignment.preceptor_id)} on team "
                f"{_name_of(context.get_team(current_team), current_team)}.")


# ---------------------------------------------------------------------------
# Associations
# ---------------------------------------------------------------------------

class StudentOnboardingConstraint(ClerkshipScopedConstraint):
    """Student must have completed onboarding at the preceptor's health system."""

    name = "StudentOnboarding"
    priority = 2
    bypassable = False

    def validate(self, assignment, context, tracker):
        if context.student_onboarding is None or not self.applies_to(assignment):
            return True
        preceptor = context.get_preceptor(assignment.preceptor_id)
        if preceptor is None or not preceptor.health_system_id:
            return True
        onboarded = context.student_onboarding.get(assignment.student_id, set())
        if preceptor.health_system_id in onboarded:
            return True

        student = context.get_student(assignment.student_id)
        clerkship = context.get_clerkship(assignment.clerkship_id)
        return self._reject(assignment, tracker, self.violation_message(assignment, context), {
            "student_name": _name_of(student, assignment.student_id),
            "clerkship_name": _name_of(clerkship, assignment.clerkship_id),
            "preceptor_name": preceptor.name,
            "health_system_id": preceptor.health_system_id,
            "health_system_name": _name_of(
                context.get_health_system(preceptor.health_system_id), preceptor.health_system_id),
        })

    def violation_message(self, assignment, context):
        student = context.get_student(assignment.student_id)
        preceptor = context.get_preceptor(assignment.preceptor_id)
        system_id = preceptor.health_system_id if preceptor else None
        system = _name_of(context.get_health_system(system_id), system_id)
        return (f"Student {_name_of(student, assignment.student_id)} has not completed "
                f"onboarding at {system}. Cannot assign to "
                f"{_name_of(preceptor, assignment.preceptor_id)}.")


class PreceptorClerkshipAssociationConstraint(ClerkshipScopedConstraint):
    """
    Preceptor must be associated with the clerkship (or elective).

    Clerkships: any site entry in preceptor_clerkship_associations lists the
    clerkship.  Electives: preceptor_elective_associations lists the
    elective id (assignment.elective_id, else the requirement id).
    """

    name = "PreceptorClerkshipAssociation"
    priority = 2
    bypassable = False

    def __init__(self, requirement_id: str, clerkship_id: str, requirement_type: str) -> None:
        super().__init__(requirement_id, clerkship_id)
        self.requirement_type = requirement_type

    @property
    def is_elective(self) -> bool:
        return self.requirement_type == RequirementType.ELECTIVE.value

    def validate(self, assignment, context, tracker):
        if not self.applies_to(assignment):
            return True

        if self.is_elective:
            if context.preceptor_elective_associations is None:
                return True
            elective_id = assignment.elective_id or self.requirement_id
            associated = elective_id in context.preceptor_elective_associations.get(
                assignment.preceptor_id, set())
        else:
            if context.preceptor_clerkship_associations is None:
                return True
            by_site = context.preceptor_clerkship_associations.get(assignment.preceptor_id, {})
            associated = any(self.clerkship_id in clerkship_ids for clerkship_ids in by_site.values())

        if associated:
            return True

        student = context.get_student(assignment.student_id)
        preceptor = context.get_preceptor(assignment.preceptor_id)
        clerkship = context.get_clerkship(assignment.clerkship_id)
        return self._reject(assignment, tracker, self.violation_message(assignment, context), {
            "student_name": _name_of(student, assignment.student_id),
            "preceptor_name": _name_of(preceptor, assignment.preceptor_id),
            "clerkship_name": _name_of(clerkship, assignment.clerkship_id),
            "requirement_type": self.requirement_type,
        })

    def violation_message(self, assignment, context):
        student = context.get_student(assignment.student_id)
        preceptor = context.get_preceptor(assignment.preceptor_id)
        clerkship = context.get_clerkship(assignment.clerkship_id)
        rotation = "elective" if self.is_elective else "clerkship"
        return (f"Preceptor {_name_of(preceptor, assignment.preceptor_id)} is not associated "
                f"with {rotation} {_name_of(clerkship, assignment.clerkship_id)}. "
                f"Cannot assign student {_name_of(student, assignment.student_id)}.")


# ---------------------------------------------------------------------------
# Sites
# ---------------------------------------------------------------------------

class SiteAvailabilityConstraint(Constraint):
    """The preceptor's home site must not be closed on the date (missing entry = open)."""

    name = "SiteAvailability"
    priority = 2
    bypassable = False

    def validate(self, assignment, context, tracker):
        if context.site_availability is None:
            return True
        preceptor = context.get_preceptor(assignment.preceptor_id)
        if preceptor is None or not preceptor.site_id:
            return True
        if context.site_availability.get(preceptor.site_id, {}).get(assignment.date, True):
            return True

        student = context.get_student(assignment.student_id)
        clerkship = context.get_clerkship(assignment.clerkship_id)
        return self._reject(assignment, tracker, self.violation_message(assignment, context), {
            "student_name": _name_of(student, assignment.student_id),
            "clerkship_name": _name_of(clerkship, assignment.clerkship_id),
            "preceptor_name": preceptor.name,
            "site_name": _name_of(context.get_site(preceptor.site_id), preceptor.site_id),
            "site_id": preceptor.site_id,
            "date": assignment.date_str,
        })

    def violation_message(self, assignment, context):
        student = context.get_student(assignment.student_id)
        clerkship = context.get_clerkship(assignment.clerkship_id)
        preceptor = context.get_preceptor(assignment.preceptor_id)
        site_id = preceptor.site_id if preceptor else None
        return (f"Site {_name_of(context.get_site(site_id), site_id)} is not available on "
                f"{assignment.date_str}. Cannot assign {_name_of(student, assignment.student_id)} "
                f"to {_name_of(preceptor, assignment.preceptor_id)} for "
                f"{_name_of(clerkship, assignment.clerkship_id)}.")


class SiteCapacityConstraint(Constraint):
    """
    Daily and yearly student limits per site.

    The preceptor's site on the date comes from availability.  Rule
    precedence: clerkship-specific > requirement-type-specific > site-global.
    Daily counts same-site assignments on the date; yearly counts distinct
    students ever placed at the site, including the one being assigned.
    """

    name = "SiteCapacity"
    priority = 4
    bypassable = True

    def resolve_rule(self, site_id, assignment, context):
        rules = (context.site_capacity_rules or {}).get(site_id) or []
        clerkship = context.get_clerkship(assignment.clerkship_id)
        requirement_type = clerkship.clerkship_type if clerkship else None
        for match in (
            lambda r: r.clerkship_id == assignment.clerkship_id,
            lambda r: r.requirement_type == requirement_type and not r.clerkship_id,
            lambda r: not r.clerkship_id and not r.requirement_type,
        ):
            for rule in rules:
                if match(rule):
                    return rule
        return None

    def validate(self, assignment, context, tracker):
        if context.site_capacity_rules is None:
            return True
        site_id = context.get_preceptor_site_on_date(assignment.preceptor_id, assignment.date)
        if not site_id:
            return True
        rule = self.resolve_rule(site_id, assignment, context)
        if rule is None:
            return True

        daily = sum(
            1 for a in context.assignments_by_date.get(assignment.date, [])
            if context.get_preceptor_site_on_date(a.preceptor_id, a.date) == site_id
        )
        site_name = _name_of(context.get_site(site_id), site_id)
        if daily >= rule.max_students_per_day:
            reason = (f"Site {site_name} has reached daily capacity "
                      f"({rule.max_students_per_day} students) on {assignment.date_str}.")
            return self._reject(assignment, tracker, reason,
                                self._metadata(assignment, context, site_id, "daily_capacity"))

        students_at_site = {
            student_id
            for student_id, assignments in context.assignments_by_student.items()
            if any(context.get_preceptor_site_on_date(a.preceptor_id, a.date) == site_id
                   for a in assignments)
        }
        students_at_site.add(assignment.student_id)
        if len(students_at_site) > rule.max_students_per_year:
            reason = (f"Site {site_name} has reached yearly capacity "
                      f"({rule.max_students_per_year} unique students).")
            return self._reject(assignment, tracker, reason,
                                self._metadata(assignment, context, site_id, "yearly_capacity"))
        return True

    def _metadata(self, assignment, context, site_id, violation_type):
        student = context.get_student(assignment.student_id)
        clerkship = context.get_clerkship(assignment.clerkship_id)
        preceptor = context.get_preceptor(assignment.preceptor_id)
        return {
            "student_name": _name_of(student, assignment.student_id),
            "clerkship_name": _name_of(clerkship, assignment.clerkship_id),
            "preceptor_name": _name_of(preceptor, assignment.preceptor_id),
            "site_name": _name_of(context.get_site(site_id), site_id),
            "site_id": site_id,
            "date": assignment.date_str,
            "violation_type": violation_type,
        }

    def violation_message(self, assignment, context):
        student = context.get_student(assignment.student_id)
        clerkship = context.get_clerkship(assignment.clerkship_id)
        preceptor = context.get_preceptor(assignment.preceptor_id)
        site_id = context.get_preceptor_site_on_date(assignment.preceptor_id, assignment.date)
        return (f"Site {_name_of(context.get_site(site_id), site_id)} capacity exceeded. "
                f"Cannot assign {_name_of(student, assignment.student_id)} to "
                f"{_name_of(preceptor, assignment.preceptor_id)} for "
                f"{_name_of(clerkship, assignment.clerkship_id)} on {assignment.date_str}.")


class ValidSiteForClerkshipConstraint(Constraint):
    """
    The preceptor's site on the date must offer the rotation.

    Electives: elective_sites[elective_id] contains the site.
    Clerkships: preceptor → site → {clerkship ids}; when that map is absent,
    clerkship_sites[clerkship_id] contains the site.
    """

    name = "ValidSiteForClerkship"
    priority = 2
    bypassable = False

    def validate(self, assignment, context, tracker):
        if context.preceptor_clerkship_associations is None and context.clerkship_sites is None:
            return True
        site_id = context.get_preceptor_site_on_date(assignment.preceptor_id, assignment.date)
        if not site_id:
            return True

        clerkship = context.get_clerkship(assignment.clerkship_id)
        if clerkship is not None and clerkship.clerkship_type == RequirementType.ELECTIVE.value:
            if context.elective_sites is None or not assignment.elective_id:
                return True
            valid = site_id in context.elective_sites.get(assignment.elective_id, set())
            is_elective = True
        elif context.preceptor_clerkship_associations is not None:
            by_site = context.preceptor_clerkship_associations.get(assignment.preceptor_id)
            valid = by_site is not None and assignment.clerkship_id in by_site.get(site_id, set())
            is_elective = False
        else:
            valid = site_id in context.clerkship_sites.get(assignment.clerkship_id, set())
            is_elective = False

        if valid:
            return True
        student = context.get_student(assignment.student_id)
        preceptor = context.get_preceptor(assignment.preceptor_id)
        reason = self._message(assignment, context, site_id, is_elective)
        return self._reject(assignment, tracker, reason, {
            "student_name": _name_of(student, assignment.student_id),
            "clerkship_name": _name_of(clerkship, assignment.clerkship_id),
            "preceptor_name": _name_of(preceptor, assignment.preceptor_id),
            "site_name": _name_of(context.get_site(site_id), site_id),
            "site_id": site_id,
            "date": assignment.date_str,
        })

    def _message(self, assignment, context, site_id, is_elective):
        clerkship = context.get_clerkship(assignment.clerkship_id)
        preceptor = context.get_preceptor(assignment.preceptor_id)
        site_name = _name_of(context.get_site(site_id), site_id)
        if is_elective:
            return (f"Site {site_name} is not associated with elective "
                    f"{assignment.elective_id}. Cannot assign on {assignment.date_str}.")
        return (f"{_name_of(clerkship, assignment.clerkship_id)} is not offered at {site_name} "
                f"by {_name_of(preceptor, assignment.preceptor_id)}. "
                f"Cannot assign on {assignment.date_str}.")

    def violation_message(self, assignment, context):
        site_id = context.get_preceptor_site_on_date(assignment.preceptor_id, assignment.date)
        clerkship = context.get_clerkship(assignment.clerkship_id)
        is_elective = clerkship is not None and clerkship.clerkship_type == RequirementType.ELECTIVE.value
        return self._message(assignment, context, site_id, is_elective)


ALL_CONSTRAINT_TYPES: List[type] = [
    BlackoutDateConstraint,
    NoDoubleBookingConstraint,
    PreceptorAvailabilityConstraint,
    SpecialtyMatchConstraint,
    PreceptorCapacityConstraint,
    PreceptorClerkshipAssociationConstraint,
    StudentOnboardingConstraint,
    SiteAvailabilityConstraint,
    ValidSiteForClerkshipConstraint,
    HealthSystemContinuityConstraint,
    SiteContinuityConstraint,
    SamePreceptorTeamConstraint,
    SiteCapacityConstraint,
]
