"""
context.py — Scheduling context: shared working state for one run

A SchedulingContext holds:
  - master data (students, preceptors, clerkships, optional teams/sites/
    health systems), read-only during a run
  - blackout dates and the inclusive run window
  - preceptor availability: preceptor_id → {date: site_id or None}
  - remaining requirements: student_id → {clerkship_id: days still needed}
  - running assignment indexes (flat list, by date, by student, by preceptor)
  - optional association maps; a map left as None means the matching
    constraint is not enabled for this run

Only the engine, the regeneration strategies and the completion helpers call
add_assignment().  Constraints read the context and never write to it.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Set

from preceptor_scheduler.models import (
    Assignment,
    AvailabilityRecord,
    Clerkship,
    DateLike,
    HealthSystem,
    Preceptor,
    Site,
    SiteCapacityRule,
    Student,
    Team,
    parse_date,
)
from preceptor_scheduler.requirements import initialize_student_requirements

logger = logging.getLogger(__name__)

AvailabilityMap = Dict[str, Dict[date, Optional[str]]]


@dataclass
class SchedulingContext:
    students: List[Student]
    preceptors: List[Preceptor]
    clerkships: List[Clerkship]
    start_date: date
    end_date: date
    blackout_dates: Set[date] = field(default_factory=set)
    preceptor_availability: AvailabilityMap = field(default_factory=dict)
    student_requirements: Dict[str, Dict[str, int]] = field(default_factory=dict)

    assignments: List[Assignment] = field(default_factory=list)
    assignments_by_date: Dict[date, List[Assignment]] = field(default_factory=dict)
    assignments_by_student: Dict[str, List[Assignment]] = field(default_factory=dict)
    assignments_by_preceptor: Dict[str, List[Assignment]] = field(default_factory=dict)

    health_systems: Optional[List[HealthSystem]] = None
    teams: Optional[List[Team]] = None
    sites: Optional[List[Site]] = None

    student_onboarding: Optional[Dict[str, Set[str]]] = None
    preceptor_clerkship_associations: Optional[Dict[str, Dict[str, Set[str]]]] = None
    preceptor_elective_associations: Optional[Dict[str, Set[str]]] = None
    clerkship_sites: Optional[Dict[str, Set[str]]] = None
    elective_sites: Optional[Dict[str, Set[str]]] = None
    preceptor_teams: Optional[Dict[str, Set[str]]] = None
    site_availability: Optional[Dict[str, Dict[date, bool]]] = None
    site_capacity_rules: Optional[Dict[str, List[SiteCapacityRule]]] = None

    def __post_init__(self) -> None:
        self._students_by_id = {s.id: s for s in self.students}
        self._preceptors_by_id = {p.id: p for p in self.preceptors}
        self._clerkships_by_id = {c.id: c for c in self.clerkships}
        self._sites_by_id = {s.id: s for s in self.sites or []}
        self._health_systems_by_id = {h.id: h for h in self.health_systems or []}
        self._teams_by_id = {t.id: t for t in self.teams or []}

    # -----------------------------------------------------------------------
    # Lookups
    # -----------------------------------------------------------------------

    def get_student(self, student_id: str) -> Optional[Student]:
        return self._students_by_id.get(student_id)

    def get_preceptor(self, preceptor_id: str) -> Optional[Preceptor]:
        return self._preceptors_by_id.get(preceptor_id)

    def get_clerkship(self, clerkship_id: str) -> Optional[Clerkship]:
        return self._clerkships_by_id.get(clerkship_id)

    def get_site(self, site_id: Optional[str]) -> Optional[Site]:
        if site_id is None:
            return None
        return self._sites_by_id.get(site_id)

    def get_health_system(self, health_system_id: Optional[str]) -> Optional[HealthSystem]:
        if health_system_id is None:
            return None
        return self._health_systems_by_id.get(health_system_id)

    def get_team(self, team_id: Optional[str]) -> Optional[Team]:
        if team_id is None:
            return None
        return self._teams_by_id.get(team_id)

    def is_preceptor_available(self, preceptor_id: str, d: date) -> bool:
        return d in self.preceptor_availability.get(preceptor_id, {})

    def get_preceptor_site_on_date(self, preceptor_id: str, d: date) -> Optional[str]:
        """Site the preceptor works at on d, from availability; None if unknown."""
        return self.preceptor_availability.get(preceptor_id, {}).get(d)

    def student_clerkship_assignments(self, student_id: str, clerkship_id: str) -> List[Assignment]:
        """The student's assignments for one clerkship, in commit order."""
        return [
            a for a in self.assignments_by_student.get(student_id, [])
            if a.clerkship_id == clerkship_id
        ]

    def preceptor_count_on_date(self, preceptor_id: str, d: date) -> int:
        return sum(1 for a in self.assignments_by_date.get(d, []) if a.preceptor_id == preceptor_id)

    # -----------------------------------------------------------------------
    # Mutation (engine / regeneration only)
    # -----------------------------------------------------------------------

    def add_assignment(self, assignment: Assignment, credit: bool = True) -> None:
        """
        Append to the flat list and all three indexes, then decrement the
        student's requirement for the clerkship (clamped at zero).
        """
        self.assignments.append(assignment)
        self.assignments_by_date.setdefault(assignment.date, []).append(assignment)
        self.assignments_by_student.setdefault(assignment.student_id, []).append(assignment)
        self.assignments_by_preceptor.setdefault(assignment.preceptor_id, []).append(assignment)
        if credit:
            self.credit_requirement(assignment.student_id, assignment.clerkship_id)

    def credit_requirement(self, student_id: str, clerkship_id: str) -> bool:
        """Decrement one day if still needed. Returns True if a day was credited."""
        reqs = self.student_requirements.get(student_id)
        if reqs is None:
            return False
        remaining = reqs.get(clerkship_id, 0)
        if remaining <= 0:
            return False
        reqs[clerkship_id] = remaining - 1
        return True

    def reset_schedule(self) -> None:
        """Drop all assignments and restore requirements to the clerkships' required days."""
        self.assignments = []
        self.assignments_by_date = {}
        self.assignments_by_student = {}
        self.assignments_by_preceptor = {}
        self.student_requirements = initialize_student_requirements(self.students, self.clerkships)


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

def build_availability_map(records: Iterable[AvailabilityRecord]) -> AvailabilityMap:
    """preceptor_id → {date: site_id}; only rows flagged available are kept."""
    availability: AvailabilityMap = {}
    for record in records:
        if not record.is_available:
            continue
        availability.setdefault(record.preceptor_id, {})[record.date] = record.site_id
    return availability


def build_preceptor_teams(teams: Iterable[Team]) -> Dict[str, Set[str]]:
    preceptor_teams: Dict[str, Set[str]] = {}
    for team in teams:
        for member in team.members:
            preceptor_teams.setdefault(member.preceptor_id, set()).add(team.id)
    return preceptor_teams


def build_elective_sites(clerkships: Iterable[Clerkship]) -> Dict[str, Set[str]]:
    return {
        elective.id: set(elective.site_ids)
        for clerkship in clerkships
        for elective in clerkship.electives
        if elective.site_ids
    }


def build_scheduling_context(
    students: List[Student],
    preceptors: List[Preceptor],
    clerkships: List[Clerkship],
    blackout_dates: Iterable[DateLike],
    availability_records: Iterable[AvailabilityRecord],
    start_date: DateLike,
    end_date: DateLike,
    health_systems: Optional[List[HealthSystem]] = None,
    teams: Optional[List[Team]] = None,
    sites: Optional[List[Site]] = None,
    student_onboarding: Optional[Dict[str, Set[str]]] = None,
    preceptor_clerkship_associations: Optional[Dict[str, Dict[str, Set[str]]]] = None,
    preceptor_elective_associations: Optional[Dict[str, Set[str]]] = None,
    clerkship_sites: Optional[Dict[str, Set[str]]] = None,
    site_availability: Optional[Dict[str, Dict[DateLike, bool]]] = None,
    site_capacity_rules: Optional[List[SiteCapacityRule]] = None,
) -> SchedulingContext:
    """
    Build a fresh context with full requirements and empty assignment indexes.

    Raises ValueError for malformed dates or start_date after end_date.
    """
    start = parse_date(start_date)
    end = parse_date(end_date)
    if start > end:
        raise ValueError(f"start_date {start} is after end_date {end}")

    capacity_by_site: Optional[Dict[str, List[SiteCapacityRule]]] = None
    if site_capacity_rules is not None:
        capacity_by_site = {}
        for rule in site_capacity_rules:
            capacity_by_site.setdefault(rule.site_id, []).append(rule)

    site_avail: Optional[Dict[str, Dict[date, bool]]] = None
    if site_availability is not None:
        site_avail = {
            site_id: {parse_date(d): bool(flag) for d, flag in by_date.items()}
            for site_id, by_date in site_availability.items()
        }

    elective_sites = build_elective_sites(clerkships)

    context = SchedulingContext(
        students=list(students),
        preceptors=list(preceptors),
        clerkships=list(clerkships),
        start_date=start,
        end_date=end,
        blackout_dates={parse_date(d) for d in blackout_dates},
        preceptor_availability=build_availability_map(availability_records),
        student_requirements=initialize_student_requirements(students, clerkships),
        health_systems=health_systems,
        teams=teams,
        sites=sites,
        student_onboarding=student_onboarding,
        preceptor_clerkship_associations=preceptor_clerkship_associations,
        preceptor_elective_associations=preceptor_elective_associations,
        clerkship_sites=clerkship_sites,
        elective_sites=elective_sites or None,
        preceptor_teams=build_preceptor_teams(teams) if teams else None,
        site_availability=site_avail,
        site_capacity_rules=capacity_by_site,
    )

    logger.info(
        f"Context built: {len(context.students)} students, {len(context.preceptors)} preceptors, "
        f"{len(context.clerkships)} clerkships, {start} → {end}, "
        f"{len(context.blackout_dates)} blackout dates"
    )
    return context
