"""
config.py — Configuration and input loading

Defaults used across the engine, plus loaders that read the scheduling
inputs a host application exports:

  students.csv            id, name, email
  preceptors.csv          id, name, max_students, specialty, health_system_id, site_id
  clerkships.csv          id, name, required_days, clerkship_type, specialty
  availability.csv        preceptor_id, date, is_available, site_id
  blackout_dates.csv      date
  electives.csv           id, clerkship_id, name, minimum_days, specialty,
                          preceptor_ids, site_ids        (";"-separated lists)
  health_systems.csv      id, name
  sites.csv               id, name, health_system_id
  teams.csv               team_id, team_name, clerkship_id, preceptor_id, priority
  site_capacity.csv       site_id, max_students_per_day, max_students_per_year,
                          clerkship_id, requirement_type
  preceptor_capacity.csv  preceptor_id, max_students_per_day, max_students_per_year,
                          clerkship_id, requirement_type
  fallbacks.csv           primary_preceptor_id, fallback_preceptor_id, priority,
                          clerkship_id, requires_approval, allow_different_health_system
  onboarding.csv          student_id, health_system_id
  associations.csv        preceptor_id, site_id, clerkship_id
  clerkship_sites.csv     clerkship_id, site_id
  clerkship_config.json   {clerkship_id: {resolved config fields}}

Only students, preceptors, clerkships and availability are required.
Optional files that are absent leave the matching feature disabled.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from preceptor_scheduler.models import (
    Assignment,
    AvailabilityRecord,
    Clerkship,
    DateLike,
    Elective,
    HealthSystem,
    Preceptor,
    PreceptorCapacityRule,
    ResolvedClerkshipConfig,
    Site,
    SiteCapacityRule,
    Student,
    Team,
    TeamMember,
    parse_date,
)

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_DATA_DIR = PROJECT_ROOT / "data"
OUTPUTS_DIR = PROJECT_ROOT / "outputs"

TOP_VIOLATIONS_LIMIT = 10
TOP_BLOCKING_CONSTRAINTS = 3
DEFAULT_MAX_STUDENTS_PER_DAY = 2
DEFAULT_MAX_STUDENTS_PER_YEAR = 20
DEFAULT_MAX_FALLBACK_DEPTH = 5

CLERKSHIP_CONFIG_FILENAME = "clerkship_config.json"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _parse_yes_no(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("yes", "true", "1", "y")


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    if not s or s.lower() == "nan":
        return None
    return s


def _opt_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    s = _opt_str(value)
    if s is None:
        return default
    return int(float(s))


def _split_list(value: Any) -> List[str]:
    s = _opt_str(value)
    if s is None:
        return []
    return [p.strip() for p in s.replace("|", ";").split(";") if p.strip()]


def _read_rows(path: Path, required: bool = True) -> Optional[List[Dict[str, Any]]]:
    """Rows of a CSV as dicts of strings ("" for blanks). None if optional and missing."""
    import pandas as pd

    if not path.exists():
        if required:
            raise FileNotFoundError(f"Input file not found: {path}")
        logger.debug(f"Optional input not found: {path}")
        return None
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    df.columns = [c.strip() for c in df.columns]
    return df.to_dict(orient="records")


# ---------------------------------------------------------------------------
# Master data loaders
# ---------------------------------------------------------------------------

def load_students(path: Path) -> List[Student]:
    rows = _read_rows(path)
    students = [
        Student(id=str(r["id"]).strip(), name=str(r["name"]).strip(), email=_opt_str(r.get("email")))
        for r in rows
    ]
    logger.info(f"Loaded {len(students)} students from {path}")
    return students


def load_preceptors(path: Path) -> List[Preceptor]:
    rows = _read_rows(path)
    preceptors = [
        Preceptor(
            id=str(r["id"]).strip(),
            name=str(r["name"]).strip(),
            max_students=_opt_int(r.get("max_students"), 1),
            specialty=_opt_str(r.get("specialty")),
            health_system_id=_opt_str(r.get("health_system_id")),
            site_id=_opt_str(r.get("site_id")),
        )
        for r in rows
    ]
    logger.info(f"Loaded {len(preceptors)} preceptors from {path}")
    return preceptors


def load_electives(path: Path) -> Dict[str, List[Elective]]:
    """clerkship_id → electives; empty when the file is absent."""
    rows = _read_rows(path, required=False) or []
    by_clerkship: Dict[str, List[Elective]] = {}
    for r in rows:
        by_clerkship.setdefault(str(r["clerkship_id"]).strip(), []).append(Elective(
            id=str(r["id"]).strip(),
            name=str(r["name"]).strip(),
            minimum_days=_opt_int(r.get("minimum_days"), 0),
            specialty=_opt_str(r.get("specialty")),
            preceptor_ids=_split_list(r.get("preceptor_ids")),
            site_ids=_split_list(r.get("site_ids")),
        ))
    return by_clerkship


def load_clerkships(path: Path, electives_path: Optional[Path] = None) -> List[Clerkship]:
    rows = _read_rows(path)
    electives = load_electives(electives_path) if electives_path else {}
    clerkships = []
    for r in rows:
        clerkship_id = str(r["id"]).strip()
        clerkships.append(Clerkship(
            id=clerkship_id,
            name=str(r["name"]).strip(),
            required_days=_opt_int(r.get("required_days"), 0),
            clerkship_type=_opt_str(r.get("clerkship_type")) or "outpatient",
            specialty=_opt_str(r.get("specialty")),
            electives=electives.get(clerkship_id, []),
        ))
    logger.info(f"Loaded {len(clerkships)} clerkships from {path}")
    return clerkships


def load_availability(path: Path) -> List[AvailabilityRecord]:
    rows = _read_rows(path)
    records = [
        AvailabilityRecord(
            preceptor_id=str(r["preceptor_id"]).strip(),
            date=parse_date(str(r["date"])),
            is_available=_parse_yes_no(r.get("is_available", "yes") or "yes"),
            site_id=_opt_str(r.get("site_id")),
        )
        for r in rows
    ]
    logger.info(f"Loaded {len(records)} availability rows from {path}")
    return records


def load_blackout_dates(path: Path) -> Set[date]:
    rows = _read_rows(path, required=False)
    if rows is None:
        logger.warning(f"Blackout dates not found: {path}. Assuming none.")
        return set()
    return {parse_date(str(r["date"])) for r in rows if _opt_str(r.get("date"))}


def load_health_systems(path: Path) -> Optional[List[HealthSystem]]:
    rows = _read_rows(path, required=False)
    if rows is None:
        return None
    return [HealthSystem(id=str(r["id"]).strip(), name=str(r["name"]).strip()) for r in rows]


def load_sites(path: Path) -> Optional[List[Site]]:
    rows = _read_rows(path, required=False)
    if rows is None:
        return None
    return [
        Site(id=str(r["id"]).strip(), name=str(r["name"]).strip(),
             health_system_id=_opt_str(r.get("health_system_id")))
        for r in rows
    ]


def load_teams(path: Path) -> Optional[List[Team]]:
    """One row per team member; teams keep first-seen order."""
    rows = _read_rows(path, required=False)
    if rows is None:
        return None
    teams: Dict[str, Team] = {}
    for r in rows:
        team_id = str(r["team_id"]).strip()
        team = teams.get(team_id)
        if team is None:
            team = Team(
                id=team_id,
                name=_opt_str(r.get("team_name")) or team_id,
                clerkship_id=str(r["clerkship_id"]).strip(),
            )
            teams[team_id] = team
        team.members.append(TeamMember(
            preceptor_id=str(r["preceptor_id"]).strip(),
            priority=_opt_int(r.get("priority"), len(team.members) + 1),
        ))
    logger.info(f"Loaded {len(teams)} teams from {path}")
    return list(teams.values())


def load_site_capacity_rules(path: Path) -> Optional[List[SiteCapacityRule]]:
    rows = _read_rows(path, required=False)
    if rows is None:
        return None
    return [
        SiteCapacityRule(
            site_id=str(r["site_id"]).strip(),
            max_students_per_day=_opt_int(r.get("max_students_per_day"), DEFAULT_MAX_STUDENTS_PER_DAY),
            max_students_per_year=_opt_int(r.get("max_students_per_year"), DEFAULT_MAX_STUDENTS_PER_YEAR),
            clerkship_id=_opt_str(r.get("clerkship_id")),
            requirement_type=_opt_str(r.get("requirement_type")),
        )
        for r in rows
    ]


def load_preceptor_capacity_rules(path: Path) -> List[PreceptorCapacityRule]:
    rows = _read_rows(path, required=False) or []
    return [
        PreceptorCapacityRule(
            preceptor_id=str(r["preceptor_id"]).strip(),
            max_students_per_day=_opt_int(r.get("max_students_per_day"), DEFAULT_MAX_STUDENTS_PER_DAY),
            max_students_per_year=_opt_int(r.get("max_students_per_year"), DEFAULT_MAX_STUDENTS_PER_YEAR),
            clerkship_id=_opt_str(r.get("clerkship_id")),
            requirement_type=_opt_str(r.get("requirement_type")),
        )
        for r in rows
    ]


def load_fallback_chains(path: Path) -> List[Any]:
    from preceptor_scheduler.fallback_chain import FallbackChainLink

    rows = _read_rows(path, required=False) or []
    return [
        FallbackChainLink(
            primary_preceptor_id=str(r["primary_preceptor_id"]).strip(),
            fallback_preceptor_id=str(r["fallback_preceptor_id"]).strip(),
            priority=_opt_int(r.get("priority"), 1),
            clerkship_id=_opt_str(r.get("clerkship_id")),
            requires_approval=_parse_yes_no(r.get("requires_approval", "no") or "no"),
            allow_different_health_system=_parse_yes_no(
                r.get("allow_different_health_system", "no") or "no"),
        )
        for r in rows
    ]


def load_student_onboarding(path: Path) -> Optional[Dict[str, Set[str]]]:
    rows = _read_rows(path, required=False)
    if rows is None:
        return None
    onboarding: Dict[str, Set[str]] = {}
    for r in rows:
        onboarding.setdefault(str(r["student_id"]).strip(), set()).add(
            str(r["health_system_id"]).strip())
    return onboarding


def load_preceptor_associations(path: Path) -> Optional[Dict[str, Dict[str, Set[str]]]]:
    """preceptor_id → site_id → {clerkship_id}."""
    rows = _read_rows(path, required=False)
    if rows is None:
        return None
    associations: Dict[str, Dict[str, Set[str]]] = {}
    for r in rows:
        by_site = associations.setdefault(str(r["preceptor_id"]).strip(), {})
        by_site.setdefault(str(r["site_id"]).strip(), set()).add(str(r["clerkship_id"]).strip())
    return associations


def load_clerkship_sites(path: Path) -> Optional[Dict[str, Set[str]]]:
    rows = _read_rows(path, required=False)
    if rows is None:
        return None
    clerkship_sites: Dict[str, Set[str]] = {}
    for r in rows:
        clerkship_sites.setdefault(str(r["clerkship_id"]).strip(), set()).add(
            str(r["site_id"]).strip())
    return clerkship_sites


def load_clerkship_configs(
    path: Path,
    clerkships: Optional[List[Clerkship]] = None,
) -> Dict[str, ResolvedClerkshipConfig]:
    """
    Resolved per-clerkship configuration; empty dict when the file is absent.

    Entries are layered over the matching clerkship's defaults, so a partial
    entry keeps that clerkship's requirement_type and required_days.
    """
    if not path.exists():
        logger.warning(f"Clerkship config not found: {path}. Using defaults.")
        return {}
    with open(path) as f:
        data = json.load(f)
    by_id = {c.id: c for c in clerkships or []}
    configs: Dict[str, ResolvedClerkshipConfig] = {}
    for clerkship_id, values in data.items():
        clerkship = by_id.get(clerkship_id)
        base = ResolvedClerkshipConfig.default_for(clerkship) if clerkship else None
        configs[clerkship_id] = ResolvedClerkshipConfig.from_dict(clerkship_id, values, base)
    return configs


def load_assignments(path: Path) -> List[Assignment]:
    """Existing schedule (e.g. for regeneration)."""
    rows = _read_rows(path)
    assignments = [
        Assignment(
            student_id=str(r["student_id"]).strip(),
            preceptor_id=str(r["preceptor_id"]).strip(),
            clerkship_id=str(r["clerkship_id"]).strip(),
            date=parse_date(str(r["date"])),
            elective_id=_opt_str(r.get("elective_id")),
            site_id=_opt_str(r.get("site_id")),
        )
        for r in rows
    ]
    logger.info(f"Loaded {len(assignments)} existing assignments from {path}")
    return assignments


# ---------------------------------------------------------------------------
# Bundle
# ---------------------------------------------------------------------------

@dataclass
class SchedulingInputs:
    students: List[Student]
    preceptors: List[Preceptor]
    clerkships: List[Clerkship]
    availability: List[AvailabilityRecord]
    blackout_dates: Set[date] = field(default_factory=set)
    health_systems: Optional[List[HealthSystem]] = None
    sites: Optional[List[Site]] = None
    teams: Optional[List[Team]] = None
    site_capacity_rules: Optional[List[SiteCapacityRule]] = None
    preceptor_capacity_rules: List[PreceptorCapacityRule] = field(default_factory=list)
    fallback_chains: List[Any] = field(default_factory=list)
    student_onboarding: Optional[Dict[str, Set[str]]] = None
    preceptor_clerkship_associations: Optional[Dict[str, Dict[str, Set[str]]]] = None
    clerkship_sites: Optional[Dict[str, Set[str]]] = None
    configs: Dict[str, ResolvedClerkshipConfig] = field(default_factory=dict)

    def build_context(self, start_date: DateLike, end_date: DateLike):
        from preceptor_scheduler.context import build_scheduling_context

        return build_scheduling_context(
            self.students, self.preceptors, self.clerkships,
            self.blackout_dates, self.availability, start_date, end_date,
            health_systems=self.health_systems,
            teams=self.teams,
            sites=self.sites,
            student_onboarding=self.student_onboarding,
            preceptor_clerkship_associations=self.preceptor_clerkship_associations,
            clerkship_sites=self.clerkship_sites,
            site_capacity_rules=self.site_capacity_rules,
        )

    def config_for(self, clerkship: Clerkship) -> ResolvedClerkshipConfig:
        return self.configs.get(clerkship.id) or ResolvedClerkshipConfig.default_for(clerkship)

    def all_configs(self) -> Dict[str, ResolvedClerkshipConfig]:
        return {c.id: self.config_for(c) for c in self.clerkships}


def load_scheduling_inputs(data_dir: Optional[Path] = None) -> SchedulingInputs:
    """Load every input file from data_dir (default: <project>/data)."""
    d = Path(data_dir) if data_dir else DEFAULT_DATA_DIR
    if not d.is_dir():
        raise FileNotFoundError(f"Data directory not found: {d}")

    clerkships = load_clerkships(d / "clerkships.csv", d / "electives.csv")
    return SchedulingInputs(
        students=load_students(d / "students.csv"),
        preceptors=load_preceptors(d / "preceptors.csv"),
        clerkships=clerkships,
        availability=load_availability(d / "availability.csv"),
        blackout_dates=load_blackout_dates(d / "blackout_dates.csv"),
        health_systems=load_health_systems(d / "health_systems.csv"),
        sites=load_sites(d / "sites.csv"),
        teams=load_teams(d / "teams.csv"),
        site_capacity_rules=load_site_capacity_rules(d / "site_capacity.csv"),
        preceptor_capacity_rules=load_preceptor_capacity_rules(d / "preceptor_capacity.csv"),
        fallback_chains=load_fallback_chains(d / "fallbacks.csv"),
        student_onboarding=load_student_onboarding(d / "onboarding.csv"),
        preceptor_clerkship_associations=load_preceptor_associations(d / "associations.csv"),
        clerkship_sites=load_clerkship_sites(d / "clerkship_sites.csv"),
        configs=load_clerkship_configs(d / CLERKSHIP_CONFIG_FILENAME, clerkships),
    )
