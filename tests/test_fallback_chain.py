"""
tests/test_fallback_chain.py — Designated-backup resolution (direct and cascading).
"""

import sys
from datetime import date
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from preceptor_scheduler.fallback_chain import (
    REASON_NO_CHAIN,
    FallbackChainLink,
    FallbackResolver,
)
from preceptor_scheduler.models import Assignment, Preceptor

D1 = date(2026, 7, 1)
D2 = date(2026, 7, 2)
DATES = [D1, D2]


def _preceptors():
    return [
        Preceptor("p1", "Dr. Reyes", max_students=1, health_system_id="hs-n"),
        Preceptor("p2", "Dr. Nguyen", max_students=1, health_system_id="hs-n"),
        Preceptor("p3", "Dr. Okafor", max_students=1, health_system_id="hs-n"),
        Preceptor("p4", "Dr. Lindqvist", max_students=1, health_system_id="hs-s"),
    ]


def _available(*ids):
    return {pid: {D1: None, D2: None} for pid in ids}


def _resolver(chains, availability=None, assignments=None):
    return FallbackResolver(
        _preceptors(), chains,
        availability if availability is not None else _available("p1", "p2", "p3", "p4"),
        assignments,
    )


# ---------------------------------------------------------------------------
# Direct lookup
# ---------------------------------------------------------------------------

class TestFindFallback:

    def test_no_chain(self):
        result = _resolver([]).find_fallback("p1", DATES)
        assert not result.success
        assert result.reason == REASON_NO_CHAIN

    def test_first_by_priority(self):
        chains = [FallbackChainLink("p1", "p3", priority=2), FallbackChainLink("p1", "p2", priority=1)]
        result = _resolver(chains).find_fallback("p1", DATES)
        assert result.success
        assert result.fallback_preceptor_id == "p2"
        assert result.fallback_depth == 1

    def test_skips_unavailable(self):
        chains = [FallbackChainLink("p1", "p2", 1), FallbackChainLink("p1", "p3", 2)]
        availability = _available("p3")
        availability["p2"] = {D1: None}
        result = _resolver(chains, availability).find_fallback("p1", DATES)
        assert result.fallback_preceptor_id == "p3"
        assert result.fallback_depth == 2

    def test_skips_full_preceptor(self):
        chains = [FallbackChainLink("p1", "p2", 1), FallbackChainLink("p1", "p3", 2)]
        booked = [Assignment("sx", "p2", "fm", D2)]
        result = _resolver(chains, assignments=booked).find_fallback("p1", DATES)
        assert result.fallback_preceptor_id == "p3"

    def test_all_candidates_rejected(self):
        chains = [FallbackChainLink("p1", "p2", 1)]
        result = _resolver(chains, availability={}).find_fallback("p1", DATES)
        assert not result.success
        assert result.reason == "No valid fallback found after checking 1 candidates"

    def test_circular_reference_in_chain(self):
        chains = [FallbackChainLink("p1", "p2", 1), FallbackChainLink("p1", "p2", 2)]
        result = _resolver(chains).find_fallback("p1", DATES)
        assert not result.success
        assert result.reason == "Circular reference detected in fallback chain: p2"

    def test_clerkship_scoped_chain(self):
        chains = [FallbackChainLink("p1", "p2", 1, clerkship_id="fm"), FallbackChainLink("p1", "p3", 1)]
        resolver = _resolver(chains)
        assert resolver.find_fallback("p1", DATES, clerkship_id="fm").fallback_preceptor_id == "p2"
        assert resolver.find_fallback("p1", DATES).fallback_preceptor_id == "p3"

    def test_requires_approval_carried(self):
        chains = [FallbackChainLink("p1", "p2", 1, requires_approval=True)]
        assert _resolver(chains).find_fallback("p1", DATES).requires_approval


class TestHealthSystem:

    def test_other_system_skipped(self):
        chains = [FallbackChainLink("p1", "p4", 1)]
        result = _resolver(chains).find_fallback("p1", DATES, health_system_id="hs-n")
        assert not result.success

    def test_link_allows_other_system(self):
        chains = [FallbackChainLink("p1", "p4", 1, allow_different_health_system=True)]
        result = _resolver(chains).find_fallback("p1", DATES, health_system_id="hs-n")
        assert result.success
        assert result.health_system_override_used

    def test_caller_override(self):
        chains = [FallbackChainLink("p1", "p4", 1)]
        result = _resolver(chains).find_fallback(
            "p1", DATES, health_system_id="hs-n", allow_health_system_override=True)
        assert result.fallback_preceptor_id == "p4"
        assert not result.health_system_override_used


# ---------------------------------------------------------------------------
# Cascading
# ---------------------------------------------------------------------------

class TestCascading:

    def test_follows_backup_chain(self):
        chains = [FallbackChainLink("p1", "p2", 1), FallbackChainLink("p2", "p3", 1)]
        availability = _available("p3")
        result = _resolver(chains, availability).find_cascading_fallback("p1", DATES)
        assert result.success
        assert result.fallback_preceptor_id == "p3"
        assert result.fallback_depth == 2

    def test_cycle_terminates(self):
        chains = [FallbackChainLink("p1", "p2", 1), FallbackChainLink("p2", "p1", 1)]
        result = _resolver(chains, availability={}).find_cascading_fallback("p1", DATES)
        assert not result.success
        assert result.reason == "No valid fallback found at depth 0"

    def test_max_depth(self):
        chains = [FallbackChainLink("p1", "p2", 1)]
        result = _resolver(chains).find_cascading_fallback("p1", DATES, max_depth=0)
        assert not result.success
        assert result.reason == "Maximum fallback depth (0) exceeded"

    def test_string_dates_accepted(self):
        chains = [FallbackChainLink("p1", "p2", 1)]
        result = _resolver(chains).find_cascading_fallback("p1", ["2026-07-01"])
        assert result.fallback_preceptor_id == "p2"

    def test_malformed_date_raises(self):
        with pytest.raises(ValueError):
            _resolver([]).find_fallback("p1", ["07/01/2026"])
