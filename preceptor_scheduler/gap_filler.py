"""
gap_filler.py — Fallback gap filling after the primary greedy pass

When the engine finishes with unmet requirements, this pass tries to close
each gap with preceptors from the clerkship's teams, in tiers:

  Tier 1: other members of the student's team
  Tier 2: members of other teams in the same health system
  Tier 3: members of any team for the clerkship (only if cross-system
          fallback is allowed by the clerkship configuration)

Within a tier members keep their team priority order.  A preceptor listed
in a higher tier is never repeated lower down.

Requirements are processed largest gap first.  Each requirement ends in
exactly one of: fulfilled, partially fulfilled, still unmet.  Nothing here
raises for domain outcomes.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

from preceptor_scheduler.capacity import CapacityChecker
from preceptor_scheduler.context import SchedulingContext
from preceptor_scheduler.models import (
    Assignment,
    DateLike,
    Preceptor,
    ResolvedClerkshipConfig,
    Team,
    UnmetRequirement,
    parse_date,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
TIER_SAME_TEAM = 1
TIER_SAME_HEALTH_SYSTEM = 2
TIER_CROSS_SYSTEM = 3
GAP_FILL_LOG_FILENAME = "gap_fill_log.json"


@dataclass
class TeamInfo:
    id: str
    name: str
    health_system_id: Optional[str]


@dataclass
class FallbackPreceptor:
    id: str
    name: str
    health_system_id: Optional[str]
    team_id: str
    team_name: str
    priority: int
    tier: int


@dataclass
class FallbackAssignment:
    student_id: str
    preceptor_id: str
    clerkship_id: str
    date: date
    tier: int
    fallback_team_id: str
    original_team_id: Optional[str] = None

    def to_assignment(self) -> Assignment:
        return Assignment(
            student_id=self.student_id,
            preceptor_id=self.preceptor_id,
            clerkship_id=self.clerkship_id,
            date=self.date,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "student_id": self.student_id,
            "preceptor_id": self.preceptor_id,
            "clerkship_id": self.clerkship_id,
            "date": self.date.isoformat(),
            "tier": self.tier,
            "fallback_team_id": self.fallback_team_id,
            "original_team_id": self.original_team_id,
        }


@dataclass
class PartialFulfillment:
    student_id: str
    clerkship_id: str
    required_days: int
    assigned_days: int
    added_days: int


@dataclass
class GapFillerResult:
    assignments: List[FallbackAssignment] = field(default_factory=list)
    fulfilled_requirements: List[str] = field(default_factory=list)
    partial_fulfillments: List[PartialFulfillment] = field(default_factory=list)
    still_unmet: List[UnmetRequirement] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assignments": [a.to_dict() for a in self.assignments],
            "fulfilled_requirements": list(self.fulfilled_requirements),
            "partial_fulfillments": [vars(p).copy() for p in self.partial_fulfillments],
            "still_unmet": [u.to_dict() for u in self.still_unmet],
        }


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class FallbackPreceptorResolver:
    """Orders fallback preceptors for a clerkship by team proximity."""

    def __init__(self, preceptors: Iterable[Preceptor], teams: Optional[Iterable[Team]]):
        self._preceptors: Dict[str, Preceptor] = {p.id: p for p in preceptors}
        self._teams: List[Team] = list(teams or [])

    def _teams_with_members(self, clerkship_id: str) -> List[Team]:
        return [t for t in self._teams if t.clerkship_id == clerkship_id]

    def _members(self, team: Team):
        """(member, preceptor) pairs by priority; unknown preceptors are dropped."""
        for member in team.ordered_members():
            preceptor = self._preceptors.get(member.preceptor_id)
            if preceptor is not None:
                yield member, preceptor

    def get_team_health_system(self, team: Team) -> Optional[str]:
        """Health system of the team's highest-priority member."""
        for _member, preceptor in self._members(team):
            return preceptor.health_system_id
        return None

    def get_teams_for_clerkship(self, clerkship_id: str) -> List[TeamInfo]:
        return [
            TeamInfo(id=t.id, name=t.name, health_system_id=self.get_team_health_system(t))
            for t in self._teams_with_members(clerkship_id)
        ]

    def get_ordered_fallback_preceptors(
        self,
        clerkship_id: str,
        primary_team_id: Optional[str],
        primary_health_system_id: Optional[str],
        allow_cross_system: bool,
        exclude_preceptor_ids: Optional[Set[str]] = None,
    ) -> List[FallbackPreceptor]:
        teams = self._teams_with_members(clerkship_id)
        if not teams:
            return []
        exclude = exclude_preceptor_ids or set()
        result: List[FallbackPreceptor] = []
        seen: Set[str] = set()

        def add(team: Team, member, preceptor: Preceptor, tier: int) -> None:
            result.append(FallbackPreceptor(
                id=preceptor.id,
                name=preceptor.name,
                health_system_id=preceptor.health_system_id,
                team_id=team.id,
                team_name=team.name,
                priority=member.priority,
                tier=tier,
            ))
            seen.add(preceptor.id)

        if primary_team_id:
            for team in teams:
                if team.id != primary_team_id:
                    continue
                for member, preceptor in self._members(team):
                    if preceptor.id not in exclude and preceptor.id not in seen:
                        add(team, member, preceptor, TIER_SAME_TEAM)

        if primary_health_system_id:
            for team in teams:
                if team.id == primary_team_id:
                    continue
                team_systems = {p.health_system_id for _m, p in self._members(team) if p.health_system_id}
                if primary_health_system_id not in team_systems:
                    continue
                for member, preceptor in self._members(team):
                    if (preceptor.health_system_id == primary_health_system_id
                            and preceptor.id not in exclude and preceptor.id not in seen):
                        add(team, member, preceptor, TIER_SAME_HEALTH_SYSTEM)

        if allow_cross_system:
            for team in teams:
                for member, preceptor in self._members(team):
                    if preceptor.id not in exclude and preceptor.id not in seen:
                        add(team, member, preceptor, TIER_CROSS_SYSTEM)

        return result


# ---------------------------------------------------------------------------
# Gap filler
# ---------------------------------------------------------------------------

class FallbackGapFiller:
    """
    Fills unmet requirements from the fallback tiers.

    Candidate dates for a preceptor: available in the window, not a blackout,
    not a date the student is already booked on, and under the preceptor's
    resolved capacity counting existing and pending assignments.
    """

    def __init__(
        self,
        context: SchedulingContext,
        capacity_checker: Optional[CapacityChecker] = None,
    ):
        self.context = context
        self.capacity_checker = capacity_checker or CapacityChecker(context.preceptors)
        self.resolver = FallbackPreceptorResolver(context.preceptors, context.teams)

    def fill_gaps(
        self,
        unmet_requirements: List[UnmetRequirement],
        existing_assignments: Iterable[Assignment],
        configs: Dict[str, ResolvedClerkshipConfig],
        start_date: DateLike,
        end_date: DateLike,
    ) -> GapFillerResult:
        result = GapFillerResult()
        if not unmet_requirements:
            return result

        start = parse_date(start_date)
        end = parse_date(end_date)
        all_assignments: List[Assignment] = list(existing_assignments)

        # Largest gap first; stable for equal gaps
        ordered = sorted(unmet_requirements, key=lambda r: r.remaining_days, reverse=True)

        for requirement in ordered:
            config = configs.get(requirement.clerkship_id)
            if config is None or not config.allow_fallbacks:
                result.still_unmet.append(requirement)
                continue

            added = self._fill_student_gap(requirement, config, all_assignments, start, end)
            if not added:
                result.still_unmet.append(requirement)
                continue

            result.assignments.extend(added)
            all_assignments.extend(a.to_assignment() for a in added)

            total = requirement.assigned_days + len(added)
            if total >= requirement.required_days:
                result.fulfilled_requirements.append(
                    f"{requirement.student_id}-{requirement.clerkship_id}")
            else:
                result.partial_fulfillments.append(PartialFulfillment(
                    student_id=requirement.student_id,
                    clerkship_id=requirement.clerkship_id,
                    required_days=requirement.required_days,
                    assigned_days=total,
                    added_days=len(added),
                ))

        logger.info(
            f"Gap fill: {len(result.assignments)} fallback assignments, "
            f"{len(result.fulfilled_requirements)} fulfilled, "
            f"{len(result.partial_fulfillments)} partial, {len(result.still_unmet)} still unmet"
        )
        return result

    def _fill_student_gap(
        self,
        requirement: UnmetRequirement,
        config: ResolvedClerkshipConfig,
        all_assignments: List[Assignment],
        start: date,
        end: date,
    ) -> List[FallbackAssignment]:
        added: List[FallbackAssignment] = []
        remaining = requirement.remaining_days
        booked = {a.date for a in all_assignments if a.student_id == requirement.student_id}

        primary_team_id = requirement.primary_team_id
        primary_system_id = requirement.primary_health_system_id
        if not primary_team_id:
            teams = self.resolver.get_teams_for_clerkship(requirement.clerkship_id)
            if teams:
                primary_team_id = teams[0].id
                primary_system_id = teams[0].health_system_id
            else:
                logger.warning(f"No teams configured for clerkship {requirement.clerkship_id}")

        candidates = self.resolver.get_ordered_fallback_preceptors(
            requirement.clerkship_id,
            primary_team_id,
            primary_system_id,
            config.fallback_allow_cross_system,
        )

        for preceptor in candidates:
            if remaining <= 0:
                break
            pending = all_assignments + [a.to_assignment() for a in added]
            for d in self._available_dates(preceptor.id, start, end, booked, pending,
                                           requirement.clerkship_id, config.requirement_type):
                if remaining <= 0:
                    break
                fallback = FallbackAssignment(
                    student_id=requirement.student_id,
                    preceptor_id=preceptor.id,
                    clerkship_id=requirement.clerkship_id,
                    date=d,
                    tier=preceptor.tier,
                    fallback_team_id=preceptor.team_id,
                    original_team_id=primary_team_id,
                )
                added.append(fallback)
                pending.append(fallback.to_assignment())
                booked.add(d)
                remaining -= 1
        return added

    def _available_dates(
        self,
        preceptor_id: str,
        start: date,
        end: date,
        booked: Set[date],
        assignments: List[Assignment],
        clerkship_id: str,
        requirement_type: str,
    ) -> Iterable[date]:
        """Lazily yields usable dates so capacity sees each newly added assignment."""
        availability = self.context.preceptor_availability.get(preceptor_id, {})
        for d in sorted(availability):
            if d < start or d > end:
                continue
            if d in booked or d in self.context.blackout_dates:
                continue
            check = self.capacity_checker.check_capacity(
                preceptor_id, d, assignments, clerkship_id, requirement_type)
            if check.has_capacity:
                yield d


def commit_fallback_assignments(context: SchedulingContext, result: GapFillerResult) -> int:
    """Add gap-filler assignments to the context (crediting requirements). Returns count."""
    for fallback in result.assignments:
        context.add_assignment(fallback.to_assignment())
    return len(result.assignments)


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

def print_gap_fill_summary(result: GapFillerResult, unmet_before: int) -> None:
    sep = "━" * 38
    print(f"\n{sep}")
    print("  GAP FILL SUMMARY")
    print(sep)
    print(f"  Unmet before gap fill  : {unmet_before}")
    print(f"  Fallback assignments   : {len(result.assignments)}")
    print(f"  Fulfilled              : {len(result.fulfilled_requirements)}")
    print(f"  Partially fulfilled    : {len(result.partial_fulfillments)}")
    print(f"  Still unmet            : {len(result.still_unmet)}")
    print()
    if result.assignments:
        print("  FILLED:")
        for a in result.assignments:
            print(f"  {a.date}  {a.student_id}  {a.clerkship_id}  →  {a.preceptor_id}  [tier {a.tier}]")
    if result.still_unmet:
        print("  STILL UNMET:")
        for u in result.still_unmet:
            print(f"  {u.student_id}  {u.clerkship_id}  →  {u.remaining_days} days remaining")
    print(sep + "\n")


def write_gap_fill_log(result: GapFillerResult, output_dir: Path, prefix: str = "") -> Path:
    """Append this pass to <output_dir>/gap_fill_log.json (a JSON list). Best effort."""
    log_path = Path(output_dir) / GAP_FILL_LOG_FILENAME
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "prefix": prefix,
        **result.to_dict(),
    }
    try:
        existing: List[Dict[str, Any]] = []
        if log_path.exists():
            with open(log_path) as f:
                data = json.load(f)
                existing = data if isinstance(data, list) else [data]
        existing.append(entry)
        with open(log_path, "w") as f:
            json.dump(existing, f, indent=2)
    except (OSError, ValueError) as e:
        logger.warning(f"Could not write gap fill log: {e}")
    return log_path
