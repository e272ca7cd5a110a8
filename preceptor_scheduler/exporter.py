"""
exporter.py — Export Layer for clerkship schedules

Outputs:
  - CSV: flat (date, student, preceptor, clerkship, elective, site)
  - Excel (.xlsx): formatted date × student grid, cells "preceptor (clerkship)"
  - Violation report (.txt): most blocking constraints, unmet requirements,
    gap fill outcome
  - JSON: ScheduleResult / GapFillerResult as plain dicts

Usage:
  from preceptor_scheduler.exporter import export_assignments_csv, export_assignments_excel
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from preceptor_scheduler.models import Assignment, UnmetRequirement
from preceptor_scheduler.violations import ViolationStats

logger = logging.getLogger(__name__)

CSV_FIELDS = ["date", "student_id", "preceptor_id", "clerkship_id", "elective_id", "site_id"]


def _sorted(assignments: Iterable[Assignment]) -> List[Assignment]:
    return sorted(assignments, key=lambda a: (a.date, a.student_id))


# ---------------------------------------------------------------------------
# CSV Export
# ---------------------------------------------------------------------------

def export_assignments_csv(assignments: Iterable[Assignment], output_path: Path) -> None:
    """
    Export assignments to flat CSV, one row per student-day, sorted by date
    then student.  The file round-trips through config.load_assignments().
    """
    import csv
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=CSV_FIELDS)
        writer.writeheader()
        for a in _sorted(assignments):
            row = a.to_dict()
            writer.writerow({k: row.get(k) or "" for k in CSV_FIELDS})

    logger.info(f"CSV exported → {output_path}")


# ---------------------------------------------------------------------------
# Excel Export
# ---------------------------------------------------------------------------

def export_assignments_excel(
    assignments: Iterable[Assignment],
    output_path: Path,
    pivot: bool = True,
    student_names: Optional[Dict[str, str]] = None,
    preceptor_names: Optional[Dict[str, str]] = None,
) -> None:
    """
    Export assignments to a formatted Excel workbook.

    Pivot mode (default): rows=date, columns=student, cells="preceptor (clerkship)".
    Flat mode: one row per assignment.

    Args:
        assignments:     Assignments to write
        output_path:     .xlsx file path
        pivot:           If True, create date × student grid
        student_names:   Optional id → display name for column headers
        preceptor_names: Optional id → display name for cells
    """
    import pandas as pd

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    students = student_names or {}
    preceptors = preceptor_names or {}

    rows = []
    for a in _sorted(assignments):
        rows.append({
            "Date": a.date_str,
            "Student": students.get(a.student_id, a.student_id),
            "Preceptor": preceptors.get(a.preceptor_id, a.preceptor_id),
            "Clerkship": a.clerkship_id,
        })

    df = pd.DataFrame(rows)
    if df.empty:
        df.to_excel(output_path, index=False)
        return

    if pivot:
        df["Cell"] = df["Preceptor"] + " (" + df["Clerkship"] + ")"
        grid = df.pivot_table(
            index="Date",
            columns="Student",
            values="Cell",
            aggfunc=lambda x: "; ".join(x),
        )
        with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
            grid.to_excel(writer, sheet_name="Schedule")
            _format_excel_grid(writer, "Schedule")
    else:
        with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
            df.to_excel(writer, sheet_name="Assignments", index=False)
            _format_excel_grid(writer, "Assignments")

    logger.info(f"Excel exported → {output_path}")


def _format_excel_grid(writer: Any, sheet_name: str) -> None:
    """Header fill, column widths and alternate row shading."""
    try:
        from openpyxl.styles import Alignment, Font, PatternFill
        ws = writer.sheets[sheet_name]
        header_fill = PatternFill("solid", fgColor="1F4E79")
        header_font = Font(bold=True, color="FFFFFF")

        for cell in ws[1]:
            cell.fill = header_fill
            cell.font = header_font
            cell.alignment = Alignment(horizontal="center")

        for col in ws.columns:
            max_len = max((len(str(c.value)) for c in col if c.value), default=8)
            ws.column_dimensions[col[0].column_letter].width = min(max_len + 2, 40)

        alt = PatternFill("solid", fgColor="EBF3FB")
        for i, row in enumerate(ws.iter_rows(min_row=2), start=2):
            if i % 2 == 0:
                for cell in row:
                    cell.fill = alt

    except Exception as e:
        logger.warning(f"Excel formatting failed (non-critical): {e}")


# ---------------------------------------------------------------------------
# Violation Report
# ---------------------------------------------------------------------------

def export_violation_report(
    violation_stats: List[ViolationStats],
    unmet_requirements: List[UnmetRequirement],
    output_path: Path,
    total_assignments: int = 0,
    gap_fill: Optional[Any] = None,
    label: str = "",
    samples_per_constraint: int = 3,
) -> str:
    """
    Write a plain-text diagnostics report and return its text.

    Sections: run totals, constraints ranked by rejection count (with a few
    sample reasons each), unmet requirements, and the gap fill outcome when a
    GapFillerResult is given.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    sep = "=" * 70
    rule = "─" * 70
    status = "✓ COMPLETE" if not unmet_requirements else "✗ INCOMPLETE"

    lines = [
        sep,
        f"  SCHEDULE DIAGNOSTICS REPORT{(' — ' + label) if label else ''}",
        sep,
        "",
        f"  Status:                {status}",
        f"  Total assignments:     {total_assignments}",
        f"  Unmet requirements:    {len(unmet_requirements)}",
        f"  Violations recorded:   {sum(s.count for s in violation_stats)} (top {len(violation_stats)} constraints)",
        "",
        rule,
        "  Most Blocking Constraints",
        rule,
        f"  {'Constraint':<36} {'Count':>7} {'Students':>9} {'Dates':>7}",
    ]

    if violation_stats:
        for s in violation_stats:
            lines.append(
                f"  {s.constraint_name:<36} {s.count:>7d} "
                f"{len(s.affected_students):>9d} {len(s.affected_dates):>7d}"
            )
            for v in s.violations[:samples_per_constraint]:
                lines.append(f"      · {v.reason}")
    else:
        lines.append("  (no violations recorded)")

    lines += [
        "",
        rule,
        "  Unmet Requirements",
        rule,
    ]
    if unmet_requirements:
        lines.append(f"  {'Student':<24} {'Clerkship':<20} {'Req':>5} {'Done':>5} {'Left':>5}")
        for u in unmet_requirements:
            lines.append(
                f"  {u.student_name:<24} {u.clerkship_name:<20} "
                f"{u.required_days:>5d} {u.assigned_days:>5d} {u.remaining_days:>5d}"
            )
    else:
        lines.append("  (all requirements met)")

    if gap_fill is not None:
        lines += [
            "",
            rule,
            "  Gap Fill",
            rule,
            f"  Fallback assignments:  {len(gap_fill.assignments)}",
            f"  Fulfilled:             {len(gap_fill.fulfilled_requirements)}",
            f"  Partially fulfilled:   {len(gap_fill.partial_fulfillments)}",
            f"  Still unmet:           {len(gap_fill.still_unmet)}",
        ]

    lines.append("")
    lines.append(sep)

    report_text = "\n".join(lines)
    with open(output_path, "w") as f:
        f.write(report_text)

    logger.info(f"Violation report exported → {output_path}")
    return report_text


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------

def result_to_dict(schedule_result: Any, gap_fill: Optional[Any] = None) -> Dict[str, Any]:
    """ScheduleResult (and optional GapFillerResult) as JSON-ready dicts."""
    data = schedule_result.to_dict()
    if gap_fill is not None:
        data["gap_fill"] = gap_fill.to_dict()
    return data


def export_result_json(schedule_result: Any, output_path: Path, gap_fill: Optional[Any] = None) -> None:
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        json.dump(result_to_dict(schedule_result, gap_fill), f, indent=2)
    logger.info(f"JSON exported → {output_path}")
