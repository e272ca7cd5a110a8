"""
Clerkship Preceptor Scheduling Engine

Modules:
- models: Students, preceptors, clerkships, assignments, resolved configuration
- context: Per-run scheduling state and requirement tracking
- constraints / factory: Pluggable constraint chain and its builder
- violations: Constraint violation tracking
- engine: Greedy scheduling algorithm
- gap_filler: Team-tier fallback pass for unmet requirements
- fallback_chain: Designated-backup resolver for a single preceptor
- capacity: Preceptor capacity rule hierarchy
- regeneration / audit: Incremental re-scheduling and its audit records
- config: Defaults and CSV/JSON input loading
- exporter: CSV, Excel and report outputs
- api_client: Host application REST integration
"""

from .config import (
    load_scheduling_inputs,
    load_assignments,
    SchedulingInputs,
)

from .context import build_scheduling_context, SchedulingContext

from .engine import (
    SchedulingEngine,
    ScheduleResult,
    schedule_from_context,
)

from .factory import build_constraints

from .gap_filler import FallbackGapFiller, GapFillerResult

from .regeneration import (
    RegenerationStrategy,
    analyze_regeneration_impact,
    regenerate_schedule,
)

from .violations import ViolationTracker

__all__ = [
    "load_scheduling_inputs",
    "load_assignments",
    "SchedulingInputs",
    "build_scheduling_context",
    "SchedulingContext",
    "SchedulingEngine",
    "ScheduleResult",
    "schedule_from_context",
    "build_constraints",
    "FallbackGapFiller",
    "GapFillerResult",
    "RegenerationStrategy",
    "analyze_regeneration_impact",
    "regenerate_schedule",
    "ViolationTracker",
]
