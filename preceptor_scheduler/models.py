"""
models.py — Data model for the clerkship scheduling engine

Master data (students, preceptors, clerkships, sites, teams), the immutable
Assignment value, capacity rules, and the resolved per-clerkship
configuration consumed by the constraint factory and gap filler.

Dates are datetime.date everywhere inside the core.  Inbound ISO strings are
converted once with parse_date(); malformed values raise ValueError.
"""

from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Union

DateLike = Union[date, str]


class RequirementType(Enum):
    OUTPATIENT = "outpatient"
    INPATIENT = "inpatient"
    ELECTIVE = "elective"


class HealthSystemRule(Enum):
    ENFORCE_SAME_SYSTEM = "enforce_same_system"
    PREFER_SAME_SYSTEM = "prefer_same_system"
    NO_PREFERENCE = "no_preference"


# ---------------------------------------------------------------------------
# Date helpers
# ---------------------------------------------------------------------------

def parse_date(value: DateLike) -> date:
    """Return a date for a date or 'YYYY-MM-DD' string. Raises ValueError otherwise."""
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Expected a date or ISO date string, got {value!r}")
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        raise ValueError(f"Malformed date: {value!r} (expected YYYY-MM-DD)") from None


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Yield every calendar day from start to end inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


# ---------------------------------------------------------------------------
# Master data
# ---------------------------------------------------------------------------

@dataclass
class Student:
    id: str
    name: str
    email: Optional[str] = None


@dataclass
class Preceptor:
    id: str
    name: str
    max_students: int = 1
    specialty: Optional[str] = None
    health_system_id: Optional[str] = None
    site_id: Optional[str] = None


@dataclass
class Elective:
    id: str
    name: str
    minimum_days: int = 0
    specialty: Optional[str] = None
    preceptor_ids: List[str] = field(default_factory=list)
    site_ids: List[str] = field(default_factory=list)


@dataclass
class Clerkship:
    id: str
    name: str
    required_days: int
    clerkship_type: str = RequirementType.OUTPATIENT.value
    specialty: Optional[str] = None
    electives: List[Elective] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.required_days < 0:
            raise ValueError(
                f"Clerkship {self.id} has negative required_days ({self.required_days})"
            )


@dataclass
class HealthSystem:
    id: str
    name: str


@dataclass
class Site:
    id: str
    name: str
    health_system_id: Optional[str] = None


@dataclass
class TeamMember:
    preceptor_id: str
    priority: int = 1


@dataclass
class Team:
    id: str
    name: str
    clerkship_id: str
    members: List[TeamMember] = field(default_factory=list)

    def ordered_members(self) -> List[TeamMember]:
        """Members by priority within the team (stable for equal priorities)."""
        return sorted(self.members, key=lambda m: m.priority)


@dataclass
class SiteCapacityRule:
    site_id: str
    max_students_per_day: int
    max_students_per_year: int
    clerkship_id: Optional[str] = None
    requirement_type: Optional[str] = None


@dataclass
class PreceptorCapacityRule:
    preceptor_id: str
    max_students_per_day: int
    max_students_per_year: int
    clerkship_id: Optional[str] = None
    requirement_type: Optional[str] = None


@dataclass
class AvailabilityRecord:
    preceptor_id: str
    date: date
    is_available: bool = True
    site_id: Optional[str] = None

    def __post_init__(self) -> None:
        self.date = parse_date(self.date)


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Assignment:
    """One student-day commitment. Immutable; replacement means remove + create."""

    student_id: str
    preceptor_id: str
    clerkship_id: str
    date: date
    elective_id: Optional[str] = None
    site_id: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "date", parse_date(self.date))

    @property
    def date_str(self) -> str:
        return self.date.isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "student_id": self.student_id,
            "preceptor_id": self.preceptor_id,
            "clerkship_id": self.clerkship_id,
            "date": self.date_str,
            "elective_id": self.elective_id,
            "site_id": self.site_id,
        }


@dataclass
class UnmetRequirement:
    student_id: str
    student_name: str
    clerkship_id: str
    clerkship_name: str
    required_days: int
    assigned_days: int
    remaining_days: int
    primary_team_id: Optional[str] = None
    primary_health_system_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "student_id": self.student_id,
            "student_name": self.student_name,
            "clerkship_id": self.clerkship_id,
            "clerkship_name": self.clerkship_name,
            "required_days": self.required_days,
            "assigned_days": self.assigned_days,
            "remaining_days": self.remaining_days,
        }


# ---------------------------------------------------------------------------
# Resolved configuration
# ---------------------------------------------------------------------------

@dataclass
class ResolvedClerkshipConfig:
    """
    Already-resolved scheduling configuration for one clerkship.

    Produced outside the core (global defaults merged with overrides); the
    factory and gap filler only read it.
    """

    clerkship_id: str
    requirement_type: str = RequirementType.OUTPATIENT.value
    required_days: int = 0
    # Soft by default; enforce_same_system must be set per clerkship.
    health_system_rule: str = HealthSystemRule.PREFER_SAME_SYSTEM.value
    allow_cross_system: bool = False
    require_same_site: bool = False
    require_same_team: bool = False
    allow_fallbacks: bool = True
    fallback_allow_cross_system: bool = False
    fallback_requires_approval: bool = False
    max_students_per_day: Optional[int] = None
    max_students_per_year: Optional[int] = None

    @classmethod
    def default_for(cls, clerkship: Clerkship) -> "ResolvedClerkshipConfig":
        return cls(
            clerkship_id=clerkship.id,
            requirement_type=clerkship.clerkship_type,
            required_days=clerkship.required_days,
        )

    @classmethod
    def from_dict(
        cls,
        clerkship_id: str,
        data: Dict[str, Any],
        base: Optional["ResolvedClerkshipConfig"] = None,
    ) -> "ResolvedClerkshipConfig":
        """
        Apply the keys present in data on top of base (usually
        default_for(clerkship)); omitted keys keep the base values.
        """
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        known["clerkship_id"] = clerkship_id
        rule = known.get("health_system_rule")
        if rule is not None and rule not in {r.value for r in HealthSystemRule}:
            raise ValueError(f"Unknown health_system_rule for {clerkship_id}: {rule!r}")
        if base is None:
            return cls(**known)
        return replace(base, **known)
