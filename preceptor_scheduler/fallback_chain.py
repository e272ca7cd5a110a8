"""
fallback_chain.py — Designated-backup resolver for a single preceptor

Each preceptor may have an ordered chain of backups (per clerkship, or a
general chain when clerkship_id is empty).  When a preceptor becomes
unavailable for a set of dates, find_fallback() walks the chain and returns
the first backup that:
  - is in the same health system (unless the link or the caller allows otherwise)
  - is available on every required date
  - has capacity on every required date

find_cascading_fallback() also follows the backups' own chains, depth
first, with a visited set and a depth limit so malformed chains terminate.

Misconfiguration is reported in FallbackResult.reason; nothing here raises.
Independent of the team-tier gap filler (gap_filler.py).
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Set

from preceptor_scheduler.capacity import CapacityChecker
from preceptor_scheduler.config import DEFAULT_MAX_FALLBACK_DEPTH
from preceptor_scheduler.context import AvailabilityMap
from preceptor_scheduler.models import Assignment, DateLike, Preceptor, parse_date

logger = logging.getLogger(__name__)

REASON_NO_CHAIN = "No fallback chain configured for primary preceptor"


@dataclass
class FallbackChainLink:
    primary_preceptor_id: str
    fallback_preceptor_id: str
    priority: int = 1
    clerkship_id: Optional[str] = None
    requires_approval: bool = False
    allow_different_health_system: bool = False


@dataclass
class FallbackResult:
    success: bool
    fallback_preceptor_id: Optional[str] = None
    requires_approval: bool = False
    fallback_depth: Optional[int] = None
    reason: Optional[str] = None
    health_system_override_used: bool = False


class FallbackResolver:
    def __init__(
        self,
        preceptors: Iterable[Preceptor],
        chains: Iterable[FallbackChainLink],
        availability: AvailabilityMap,
        assignments: Optional[Iterable[Assignment]] = None,
        capacity_checker: Optional[CapacityChecker] = None,
    ):
        preceptors = list(preceptors)
        self._preceptors: Dict[str, Preceptor] = {p.id: p for p in preceptors}
        self._chains: List[FallbackChainLink] = list(chains)
        self._availability = availability
        self._assignments: List[Assignment] = list(assignments or [])
        self.capacity_checker = capacity_checker or CapacityChecker(preceptors)

    def get_fallback_chain(
        self,
        primary_preceptor_id: str,
        clerkship_id: Optional[str] = None,
    ) -> List[FallbackChainLink]:
        """Links for the preceptor scoped to clerkship_id (or unscoped when None), by priority."""
        links = [
            link for link in self._chains
            if link.primary_preceptor_id == primary_preceptor_id
            and link.clerkship_id == clerkship_id
        ]
        return sorted(links, key=lambda link: link.priority)

    @staticmethod
    def detect_circular_reference(chain: Sequence[FallbackChainLink]) -> Optional[str]:
        """First fallback id repeated within the chain, else None."""
        seen: Set[str] = set()
        for link in chain:
            if link.fallback_preceptor_id in seen:
                return link.fallback_preceptor_id
            seen.add(link.fallback_preceptor_id)
        return None

    def _is_available(self, preceptor_id: str, dates: Sequence[date]) -> bool:
        available = self._availability.get(preceptor_id, {})
        return all(d in available for d in dates)

    def _has_capacity(self, preceptor_id, dates, clerkship_id, requirement_type) -> bool:
        return all(
            self.capacity_checker.check_capacity(
                preceptor_id, d, self._assignments, clerkship_id, requirement_type).has_capacity
            for d in dates
        )

    def find_fallback(
        self,
        primary_preceptor_id: str,
        required_dates: Iterable[DateLike],
        clerkship_id: Optional[str] = None,
        requirement_type: Optional[str] = None,
        health_system_id: Optional[str] = None,
        allow_health_system_override: bool = False,
    ) -> FallbackResult:
        dates = [parse_date(d) for d in required_dates]
        chain = self.get_fallback_chain(primary_preceptor_id, clerkship_id)
        if not chain:
            return FallbackResult(success=False, reason=REASON_NO_CHAIN)

        cycle = self.detect_circular_reference(chain)
        if cycle is not None:
            return FallbackResult(
                success=False,
                reason=f"Circular reference detected in fallback chain: {cycle}",
            )

        for i, link in enumerate(chain):
            candidate_id = link.fallback_preceptor_id
            if health_system_id and not link.allow_different_health_system:
                candidate = self._preceptors.get(candidate_id)
                candidate_system = candidate.health_system_id if candidate else None
                if candidate_system != health_system_id and not allow_health_system_override:
                    logger.debug(f"Skipping {candidate_id}: different health system")
                    continue
            if not self._is_available(candidate_id, dates):
                logger.debug(f"Skipping {candidate_id}: not available on all dates")
                continue
            if not self._has_capacity(candidate_id, dates, clerkship_id, requirement_type):
                logger.debug(f"Skipping {candidate_id}: at capacity")
                continue

            return FallbackResult(
                success=True,
                fallback_preceptor_id=candidate_id,
                requires_approval=link.requires_approval,
                fallback_depth=i + 1,
                health_system_override_used=link.allow_different_health_system,
            )

        return FallbackResult(
            success=False,
            reason=f"No valid fallback found after checking {len(chain)} candidates",
        )

    def find_cascading_fallback(
        self,
        primary_preceptor_id: str,
        required_dates: Iterable[DateLike],
        clerkship_id: Optional[str] = None,
        requirement_type: Optional[str] = None,
        health_system_id: Optional[str] = None,
        allow_health_system_override: bool = False,
        max_depth: int = DEFAULT_MAX_FALLBACK_DEPTH,
    ) -> FallbackResult:
        dates = [parse_date(d) for d in required_dates]
        visited: Set[str] = set()
        return self._resolve_recursive(
            primary_preceptor_id, dates, clerkship_id, requirement_type,
            health_system_id, allow_health_system_override, visited, 0, max_depth,
        )

    def _resolve_recursive(
        self,
        preceptor_id: str,
        dates: List[date],
        clerkship_id: Optional[str],
        requirement_type: Optional[str],
        health_system_id: Optional[str],
        allow_override: bool,
        visited: Set[str],
        depth: int,
        max_depth: int,
    ) -> FallbackResult:
        if preceptor_id in visited:
            return FallbackResult(
                success=False,
                reason=f"Circular reference detected at preceptor {preceptor_id}",
            )
        if depth >= max_depth:
            return FallbackResult(
                success=False,
                reason=f"Maximum fallback depth ({max_depth}) exceeded",
            )
        visited.add(preceptor_id)

        direct = self.find_fallback(
            preceptor_id, dates, clerkship_id, requirement_type,
            health_system_id, allow_override,
        )
        if direct.success:
            direct.fallback_depth = depth + (direct.fallback_depth or 1)
            return direct

        for link in self.get_fallback_chain(preceptor_id, clerkship_id):
            cascaded = self._resolve_recursive(
                link.fallback_preceptor_id, dates, clerkship_id, requirement_type,
                health_system_id, allow_override, visited, depth + 1, max_depth,
            )
            if cascaded.success:
                return cascaded

        return FallbackResult(success=False, reason=f"No valid fallback found at depth {depth}")
