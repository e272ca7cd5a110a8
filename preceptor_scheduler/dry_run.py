"""
dry_run.py — Schedule generation from exported inputs (no push to the host)

Full orchestration:
  1. Load inputs (CSV/JSON from the data directory)
  2. Build context and constraints
  3. Run the engine, or regenerate over an existing schedule
  4. Gap fill unmet requirements from the team fallback tiers
  5. Export CSV, Excel, diagnostics report, JSON
  6. Print summary to console

Usage:
  python -m preceptor_scheduler.dry_run --start 2026-07-01 --end 2026-08-31
  python -m preceptor_scheduler.dry_run --start 2026-07-01 --end 2026-08-31 \\
      --existing outputs/schedule.csv --strategy minimal-change --regenerate-from 2026-07-15
  python -m preceptor_scheduler.dry_run --start 2026-07-01 --end 2026-08-31 \\
      --existing outputs/schedule.csv           # check an imported schedule only
"""

import argparse
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from preceptor_scheduler.audit import AUDIT_LOG_FILENAME, JsonFileAuditSink
from preceptor_scheduler.capacity import CapacityChecker
from preceptor_scheduler.config import OUTPUTS_DIR, load_assignments, load_scheduling_inputs
from preceptor_scheduler.constraints import ALL_CONSTRAINT_TYPES
from preceptor_scheduler.engine import SchedulingEngine
from preceptor_scheduler.exporter import (
    export_assignments_csv,
    export_assignments_excel,
    export_result_json,
    export_violation_report,
)
from preceptor_scheduler.factory import build_constraints
from preceptor_scheduler.fallback_chain import FallbackResolver
from preceptor_scheduler.gap_filler import (
    FallbackGapFiller,
    commit_fallback_assignments,
    print_gap_fill_summary,
    write_gap_fill_log,
)
from preceptor_scheduler.models import parse_date
from preceptor_scheduler.regeneration import (
    RegenerationStrategy,
    analyze_regeneration_impact,
    get_unavailable_preceptor_ids,
    parse_strategy,
    regenerate_schedule,
)
from preceptor_scheduler.requirements import check_unmet_requirements

logger = logging.getLogger(__name__)

CONSTRAINT_NAMES = [c.name for c in ALL_CONSTRAINT_TYPES]


def _fail(message: str) -> None:
    print(f"  ✗ {message}")
    sys.exit(1)


def _print_designated_backups(inputs, context, impact) -> None:
    """For each unavailable preceptor with affected days, show the chain's pick."""
    if not inputs.fallback_chains:
        return
    resolver = FallbackResolver(
        inputs.preceptors,
        inputs.fallback_chains,
        context.preceptor_availability,
        assignments=impact.preservable_assignments,
        capacity_checker=CapacityChecker(inputs.preceptors, inputs.preceptor_capacity_rules),
    )
    unavailable = get_unavailable_preceptor_ids(context)
    affected_by_preceptor: Dict[str, List[Any]] = {}
    for a in impact.affected_assignments:
        if a.preceptor_id in unavailable:
            affected_by_preceptor.setdefault(a.preceptor_id, []).append(a)

    for preceptor_id, affected in affected_by_preceptor.items():
        preceptor = context.get_preceptor(preceptor_id)
        result = resolver.find_cascading_fallback(
            preceptor_id,
            sorted({a.date for a in affected}),
            health_system_id=preceptor.health_system_id if preceptor else None,
        )
        if result.success:
            approval = " (requires approval)" if result.requires_approval else ""
            print(f"    {preceptor_id} → {result.fallback_preceptor_id} "
                  f"[depth {result.fallback_depth}]{approval}")
        else:
            print(f"    {preceptor_id} → no designated backup: {result.reason}")


# ---------------------------------------------------------------------------
# Main orchestrator
# ---------------------------------------------------------------------------

def run_dry_run(
    start_date: date,
    end_date: date,
    data_dir: Optional[Path] = None,
    output_dir: Path = OUTPUTS_DIR,
    bypassed_constraints: Optional[Set[str]] = None,
    gap_fill: bool = True,
    existing_path: Optional[Path] = None,
    strategy: Optional[str] = None,
    regenerate_from: Optional[date] = None,
    analyze_only: bool = False,
    audit_log: Optional[Path] = None,
) -> Dict[str, Any]:
    """
    Generate a schedule from the inputs in data_dir and write outputs.

    Args:
        start_date, end_date:  Inclusive scheduling window
        data_dir:              Input directory (default: <project>/data)
        output_dir:            Directory for output files
        bypassed_constraints:  Constraint names skipped for this run
        gap_fill:              Run the fallback pass on unmet requirements
        existing_path:         CSV of an existing schedule.  Without a strategy
                               it is only checked against the constraints.
        strategy:              Regeneration strategy for the existing schedule
        regenerate_from:       First date to regenerate (default: start_date)
        analyze_only:          Print the regeneration impact and stop
        audit_log:             JSON file that regeneration audit records append to

    Returns:
        Dict with schedule_result, gap_fill, violations/impact, output paths
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    prefix = f"dry_run_{start_date}_{end_date}"
    sep = "=" * 70
    bypassed = set(bypassed_constraints or ())

    print(f"\n{sep}")
    print("  DRY RUN MODE — nothing is pushed to the host application")
    print(f"  Period: {start_date} → {end_date}")
    if bypassed:
        print(f"  Bypassing: {', '.join(sorted(bypassed))}")
    print(f"{sep}\n")

    # ── 1. Load inputs ─────────────────────────────────────────────────────
    print("Step 1/6: Loading inputs...")
    try:
        inputs = load_scheduling_inputs(data_dir)
        existing = load_assignments(Path(existing_path)) if existing_path else None
    except (FileNotFoundError, ValueError, KeyError) as e:
        _fail(f"Cannot load inputs: {e}")
    print(f"  ✓ {len(inputs.students)} students | {len(inputs.preceptors)} preceptors | "
          f"{len(inputs.clerkships)} clerkships | {len(inputs.availability)} availability rows | "
          f"{len(inputs.blackout_dates)} blackout dates")
    if existing is not None:
        print(f"  ✓ {len(existing)} existing assignments from {Path(existing_path).name}")

    # ── 2. Context + constraints ───────────────────────────────────────────
    print("\nStep 2/6: Building constraints...")
    try:
        context = inputs.build_context(start_date, end_date)
    except ValueError as e:
        _fail(str(e))
    configs = inputs.all_configs()
    constraints = build_constraints([c.id for c in inputs.clerkships], context, configs)
    engine = SchedulingEngine(constraints)
    print(f"  ✓ {len(constraints)} constraints: {', '.join(c.name for c in constraints)}")

    result: Dict[str, Any] = {"outputs": {}}
    # past days kept outside the regenerated window
    carried: List[Any] = []

    # ── 3. Engine / regeneration ───────────────────────────────────────────
    if existing is not None and strategy is None:
        print("\nStep 3/6: Checking existing schedule against constraints...")
        violations = engine.audit_schedule(existing, context, bypassed)
        stats = engine.get_violation_tracker().get_top_violations()
        report_path = output_dir / f"{prefix}_existing_violations.txt"
        export_violation_report(
            stats, check_unmet_requirements(context), report_path,
            total_assignments=len(existing), label="Existing Schedule",
        )
        icon = "✓" if not violations else "✗"
        print(f"  {icon} {len(violations)} violations across {len(existing)} assignments")
        for s in stats:
            print(f"    {s.constraint_name:<32} {s.count}")
        print(f"  ✓ Report: {report_path.name}\n")
        result.update({"violations": violations, "outputs": {"report": report_path}})
        return result

    if existing is not None:
        regen_from = regenerate_from or start_date
        if analyze_only:
            print(f"\nStep 3/6: Analyzing {strategy} regeneration from {regen_from}...")
            impact = analyze_regeneration_impact(context, existing, regen_from, strategy)
            print(f"  Past assignments kept:     {impact.past_assignments_count}")
            print(f"  Future assignments:        {len(impact.future_assignments)}")
            print(f"  Would delete:              {impact.deleted_count}")
            print(f"  Preservable:               {impact.preserved_count}")
            print(f"  Affected:                  {impact.affected_count}")
            replaceable = sum(1 for r in impact.replaceable_assignments if r.replacement_preceptor_id)
            print(f"  Affected with replacement: {replaceable}")
            _print_designated_backups(inputs, context, impact)
            print()
            result["impact"] = impact
            return result

        print(f"\nStep 3/6: Regenerating ({strategy}) from {regen_from}...")
        sinks = [JsonFileAuditSink(audit_log or output_dir / AUDIT_LOG_FILENAME)]
        regen = regenerate_schedule(
            engine, context, existing, strategy, regen_from, end_date,
            bypassed_constraints=bypassed, sinks=sinks,
        )
        schedule_result = regen.schedule_result
        record = regen.audit_record
        print(f"  ✓ Preserved {record.preserved_assignments_count} | deleted "
              f"{record.deleted_assignments_count} | replaced {len(regen.committed_replacements)} | "
              f"generated {record.generated_assignments_count}")
        result["regeneration"] = regen
        window_start = regen_from
        if regen.plan.strategy is not RegenerationStrategy.COMPLETION:
            carried = list(regen.plan.past_assignments)
    else:
        print("\nStep 3/6: Running scheduling engine...")
        schedule_result = engine.run(context, bypassed)
        window_start = start_date

    status = "✓" if schedule_result.success else "✗"
    print(f"  {status} {len(schedule_result.assignments)} assignments | "
          f"{len(schedule_result.unmet_requirements)} unmet requirements | "
          f"{schedule_result.summary['total_violations']} constraint rejections")
    if schedule_result.summary["most_blocking_constraints"]:
        print(f"  Most blocking: {', '.join(schedule_result.summary['most_blocking_constraints'])}")

    # ── 4. Gap fill ────────────────────────────────────────────────────────
    gap_result = None
    if gap_fill and schedule_result.unmet_requirements:
        print("\nStep 4/6: Gap filling from fallback tiers...")
        filler = FallbackGapFiller(
            context, CapacityChecker(inputs.preceptors, inputs.preceptor_capacity_rules))
        unmet_before = len(schedule_result.unmet_requirements)
        gap_result = filler.fill_gaps(
            schedule_result.unmet_requirements, context.assignments, configs,
            window_start, end_date,
        )
        commit_fallback_assignments(context, gap_result)
        print_gap_fill_summary(gap_result, unmet_before)
        write_gap_fill_log(gap_result, output_dir, prefix)
        schedule_result = engine.build_result(context)
    else:
        print("\nStep 4/6: Gap fill skipped")

    # ── 5. Export ──────────────────────────────────────────────────────────
    print("\nStep 5/6: Exporting outputs...")
    csv_path = output_dir / f"{prefix}_schedule.csv"
    xlsx_path = output_dir / f"{prefix}_schedule.xlsx"
    report_path = output_dir / f"{prefix}_violations.txt"
    json_path = output_dir / f"{prefix}_result.json"

    full_schedule = carried + list(schedule_result.assignments)
    export_assignments_csv(full_schedule, csv_path)
    export_assignments_excel(
        full_schedule, xlsx_path,
        student_names={s.id: s.name for s in inputs.students},
        preceptor_names={p.id: p.name for p in inputs.preceptors},
    )
    export_violation_report(
        schedule_result.violation_stats, schedule_result.unmet_requirements, report_path,
        total_assignments=len(full_schedule), gap_fill=gap_result,
    )
    export_result_json(schedule_result, json_path, gap_result)

    print(f"  ✓ CSV:        {csv_path.name}")
    print(f"  ✓ Excel:      {xlsx_path.name}")
    print(f"  ✓ Report:     {report_path.name}")
    print(f"  ✓ JSON:       {json_path.name}")

    # ── 6. Summary ─────────────────────────────────────────────────────────
    unmet = schedule_result.unmet_requirements
    icon = "✓" if not unmet else "✗"
    print(f"\n{sep}")
    print("  SUMMARY")
    print(f"{sep}")
    print(f"  Period:              {start_date} → {end_date}")
    print(f"  Total assignments:   {len(full_schedule)}")
    if gap_result is not None:
        print(f"  From gap fill:       {len(gap_result.assignments)}")
    print(f"  Unmet requirements:  {len(unmet)}  {icon}")
    for u in unmet:
        print(f"    {u.student_name:<24} {u.clerkship_name:<20} {u.remaining_days} days short")
    print(f"\n{sep}\n")

    result.update({
        "schedule_result": schedule_result,
        "gap_fill": gap_result,
        "outputs": {
            "csv": csv_path,
            "excel": xlsx_path,
            "report": report_path,
            "json": json_path,
        },
    })
    return result


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        description="Dry-run clerkship schedule generation (no push to the host application)"
    )
    parser.add_argument("--start",      required=True, help="Start date YYYY-MM-DD")
    parser.add_argument("--end",        required=True, help="End date YYYY-MM-DD")
    parser.add_argument("--data-dir",   default=None,  help="Input directory (default: data/)")
    parser.add_argument("--output-dir", default=None,  help="Output directory (default: outputs/)")
    parser.add_argument("--bypass", nargs="*", default=[], metavar="NAME",
                        help=f"Constraint names to skip: {', '.join(CONSTRAINT_NAMES)}")
    parser.add_argument("--no-gap-fill", action="store_true", help="Skip the fallback gap fill pass")
    parser.add_argument("--existing", default=None, help="CSV of an existing schedule")
    parser.add_argument("--strategy", default=None,
                        choices=[s.value for s in RegenerationStrategy],
                        help="Regenerate the existing schedule with this strategy")
    parser.add_argument("--regenerate-from", default=None, help="First date to regenerate (default: --start)")
    parser.add_argument("--analyze-only", action="store_true", help="Preview regeneration impact only")
    parser.add_argument("--audit-log", default=None, help="Regeneration audit log (JSON list file)")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    try:
        start = parse_date(args.start)
        end = parse_date(args.end)
        regen_from = parse_date(args.regenerate_from) if args.regenerate_from else None
    except ValueError as e:
        print(f"Invalid date format: {e}")
        sys.exit(1)

    if start > end:
        print("Error: start date must be before end date")
        sys.exit(1)

    unknown = [name for name in args.bypass if name not in CONSTRAINT_NAMES]
    if unknown:
        print(f"Error: unknown constraint(s) {unknown}; choose from {CONSTRAINT_NAMES}")
        sys.exit(1)

    if (args.strategy or args.analyze_only or args.regenerate_from) and not args.existing:
        print("Error: --strategy, --regenerate-from and --analyze-only need --existing")
        sys.exit(1)
    if args.analyze_only and not args.strategy:
        print("Error: --analyze-only needs --strategy")
        sys.exit(1)

    run_dry_run(
        start, end,
        data_dir=Path(args.data_dir) if args.data_dir else None,
        output_dir=Path(args.output_dir) if args.output_dir else OUTPUTS_DIR,
        bypassed_constraints=set(args.bypass),
        gap_fill=not args.no_gap_fill,
        existing_path=Path(args.existing) if args.existing else None,
        strategy=parse_strategy(args.strategy).value if args.strategy else None,
        regenerate_from=regen_from,
        analyze_only=args.analyze_only,
        audit_log=Path(args.audit_log) if args.audit_log else None,
    )


if __name__ == "__main__":
    main()
