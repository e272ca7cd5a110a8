"""
violations.py — Violation tracking for constraint checks

Every failed constraint check is appended to a ViolationTracker with a
human-readable reason and a flat metadata dict.  Aggregations are
recomputed from the log on each query; this is a diagnostic path, not the
hot loop.

Usage:
  tracker = ViolationTracker()
  tracker.record_violation("NoDoubleBooking", assignment, reason, {"date": "2024-01-15"})
  top = tracker.get_top_violations(10)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Union

from preceptor_scheduler.models import Assignment

logger = logging.getLogger(__name__)

# Scalar values only so records stay serializable and comparable in tests
MetadataValue = Union[str, int, float, bool, None]
Metadata = Dict[str, MetadataValue]


@dataclass(frozen=True)
class ConstraintViolation:
    constraint_name: str
    assignment: Assignment
    reason: str
    metadata: Metadata = field(default_factory=dict)
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    )

    def __str__(self) -> str:
        a = self.assignment
        parts = [
            self.constraint_name,
            f"date={a.date_str}",
            f"student={a.student_id}",
            f"preceptor={a.preceptor_id}",
            f"→ {self.reason}",
        ]
        return " | ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "constraint_name": self.constraint_name,
            "timestamp": self.timestamp,
            "assignment": self.assignment.to_dict(),
            "reason": self.reason,
            "metadata": dict(self.metadata),
        }


@dataclass
class ViolationStats:
    constraint_name: str
    count: int = 0
    violations: List[ConstraintViolation] = field(default_factory=list)
    affected_students: Set[str] = field(default_factory=set)
    affected_dates: Set[str] = field(default_factory=set)
    affected_preceptors: Set[str] = field(default_factory=set)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "constraint_name": self.constraint_name,
            "count": self.count,
            "summary": {
                "affected_students": sorted(self.affected_students),
                "affected_dates": sorted(self.affected_dates),
                "affected_preceptors": sorted(self.affected_preceptors),
            },
        }


def _clean_metadata(metadata: Optional[Dict[str, Any]]) -> Metadata:
    """Coerce metadata to scalars; anything else is stored as its string form."""
    cleaned: Metadata = {}
    for key, value in (metadata or {}).items():
        if value is None or isinstance(value, (str, int, float, bool)):
            cleaned[key] = value
        else:
            cleaned[key] = str(value)
    return cleaned


class ViolationTracker:
    """Append-only log of constraint violations for one scheduling run."""

    def __init__(self) -> None:
        self._violations: List[ConstraintViolation] = []

    def record_violation(
        self,
        constraint_name: str,
        assignment: Assignment,
        reason: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._violations.append(ConstraintViolation(
            constraint_name=constraint_name,
            assignment=assignment,
            reason=reason,
            metadata=_clean_metadata(metadata),
        ))
        logger.debug(f"{constraint_name} rejected {assignment.student_id} → "
                     f"{assignment.preceptor_id} on {assignment.date_str}: {reason}")

    def get_stats_by_constraint(self) -> Dict[str, ViolationStats]:
        """Group the log by constraint name, in first-seen order."""
        stats: Dict[str, ViolationStats] = {}
        for v in self._violations:
            entry = stats.get(v.constraint_name)
            if entry is None:
                entry = ViolationStats(constraint_name=v.constraint_name)
                stats[v.constraint_name] = entry
            entry.count += 1
            entry.violations.append(v)
            entry.affected_students.add(v.assignment.student_id)
            entry.affected_dates.add(v.assignment.date_str)
            entry.affected_preceptors.add(v.assignment.preceptor_id)
        return stats

    def get_top_violations(self, limit: int = 10) -> List[ViolationStats]:
        """Stats sorted by count descending; equal counts keep first-seen order."""
        ranked = sorted(
            self.get_stats_by_constraint().values(),
            key=lambda s: s.count,
            reverse=True,
        )
        return ranked[:limit]

    def get_violations_for_constraint(self, constraint_name: str) -> List[ConstraintViolation]:
        return [v for v in self._violations if v.constraint_name == constraint_name]

    def get_total_violations(self) -> int:
        return len(self._violations)

    def clear(self) -> None:
        self._violations = []

    def export_violations(self) -> List[ConstraintViolation]:
        """Copy of the log; mutating it does not affect the tracker."""
        return list(self._violations)

    def prepend(self, violations: List[ConstraintViolation]) -> None:
        """Insert earlier violations ahead of the current log, keeping order."""
        self._violations = list(violations) + self._violations
