"""
factory.py — Builds the ordered constraint list for a scheduling run

Baseline (always):
  BlackoutDate, NoDoubleBooking, PreceptorAvailability, PreceptorCapacity,
  SpecialtyMatch

Context-conditional (only when the backing data is on the context):
  SiteAvailability       ← site_availability
  SiteCapacity           ← site_capacity_rules
  ValidSiteForClerkship  ← clerkship_sites or preceptor_clerkship_associations

Per clerkship, from its resolved configuration:
  HealthSystemContinuity        ← health_system_rule == "enforce_same_system"
  StudentOnboarding             ← student_onboarding on context
  PreceptorClerkshipAssociation ← either association map on context
  SiteContinuity                ← require_same_site
  SamePreceptorTeam             ← require_same_team

Output is sorted by priority; equal priorities keep insertion order.
"""

import logging
from typing import Dict, Iterable, List, Optional

from preceptor_scheduler.constraints import (
    BlackoutDateConstraint,
    Constraint,
    HealthSystemContinuityConstraint,
    NoDoubleBookingConstraint,
    PreceptorAvailabilityConstraint,
    PreceptorCapacityConstraint,
    PreceptorClerkshipAssociationConstraint,
    SamePreceptorTeamConstraint,
    SiteAvailabilityConstraint,
    SiteCapacityConstraint,
    SiteContinuityConstraint,
    SpecialtyMatchConstraint,
    StudentOnboardingConstraint,
    ValidSiteForClerkshipConstraint,
)
from preceptor_scheduler.context import SchedulingContext
from preceptor_scheduler.models import HealthSystemRule, ResolvedClerkshipConfig

logger = logging.getLogger(__name__)


def resolve_config(
    clerkship_id: str,
    context: SchedulingContext,
    configs: Optional[Dict[str, ResolvedClerkshipConfig]],
) -> Optional[ResolvedClerkshipConfig]:
    """Supplied config for the clerkship, else defaults for a known clerkship, else None."""
    if configs and clerkship_id in configs:
        return configs[clerkship_id]
    clerkship = context.get_clerkship(clerkship_id)
    if clerkship is None:
        return None
    return ResolvedClerkshipConfig.default_for(clerkship)


def build_clerkship_constraints(
    config: ResolvedClerkshipConfig,
    context: SchedulingContext,
) -> List[Constraint]:
    constraints: List[Constraint] = []
    requirement_id = config.clerkship_id

    if config.health_system_rule == HealthSystemRule.ENFORCE_SAME_SYSTEM.value:
        constraints.append(HealthSystemContinuityConstraint(
            requirement_id, config.clerkship_id, config.allow_cross_system))

    if context.student_onboarding is not None:
        constraints.append(StudentOnboardingConstraint(requirement_id, config.clerkship_id))

    if (context.preceptor_clerkship_associations is not None
            or context.preceptor_elective_associations is not None):
        constraints.append(PreceptorClerkshipAssociationConstraint(
            requirement_id, config.clerkship_id, config.requirement_type))

    if config.require_same_site:
        constraints.append(SiteContinuityConstraint(requirement_id, config.clerkship_id, True))

    if config.require_same_team:
        constraints.append(SamePreceptorTeamConstraint(requirement_id, config.clerkship_id, True))

    return constraints


def build_constraints(
    clerkship_ids: Iterable[str],
    context: SchedulingContext,
    configs: Optional[Dict[str, ResolvedClerkshipConfig]] = None,
) -> List[Constraint]:
    """
    Build the full constraint chain for a batch of clerkships.

    Args:
        clerkship_ids: Clerkships scheduled in this run.
        context:       Built context; optional maps decide the site constraints.
        configs:       Resolved configuration per clerkship id.  Missing
                       entries fall back to ResolvedClerkshipConfig.default_for().

    Returns:
        Constraints sorted ascending by priority (stable).
    """
    constraints: List[Constraint] = [
        BlackoutDateConstraint(),
        NoDoubleBookingConstraint(),
        PreceptorAvailabilityConstraint(),
        PreceptorCapacityConstraint(),
        SpecialtyMatchConstraint(),
    ]

    if context.site_availability is not None:
        constraints.append(SiteAvailabilityConstraint())
    if context.site_capacity_rules is not None:
        constraints.append(SiteCapacityConstraint())
    if context.clerkship_sites is not None or context.preceptor_clerkship_associations is not None:
        constraints.append(ValidSiteForClerkshipConstraint())

    for clerkship_id in clerkship_ids:
        config = resolve_config(clerkship_id, context, configs)
        if config is None:
            logger.warning(f"No configuration or clerkship found for {clerkship_id}; skipping")
            continue
        constraints.extend(build_clerkship_constraints(config, context))

    ordered = sorted(constraints, key=lambda c: c.priority)
    logger.info(f"Built {len(ordered)} constraints: {', '.join(c.name for c in ordered)}")
    return ordered
