"""
tests/test_exporter.py — CSV, Excel, report and JSON outputs.
"""

import json
import sys
from datetime import date
from pathlib import Path

import pandas as pd
import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from preceptor_scheduler.config import load_assignments
from preceptor_scheduler.engine import ScheduleResult
from preceptor_scheduler.exporter import (
    export_assignments_csv,
    export_assignments_excel,
    export_result_json,
    export_violation_report,
)
from preceptor_scheduler.gap_filler import GapFillerResult
from preceptor_scheduler.models import Assignment, UnmetRequirement
from preceptor_scheduler.violations import ViolationTracker


@pytest.fixture
def assignments():
    return [
        Assignment("s2", "p1", "fm", date(2026, 7, 2)),
        Assignment("s1", "p2", "im", date(2026, 7, 2), site_id="site-a"),
        Assignment("s1", "p1", "fm", date(2026, 7, 1), elective_id="derm"),
    ]


@pytest.fixture
def unmet():
    return [UnmetRequirement("s3", "Riley Okafor", "im", "Internal Medicine", 3, 1, 2)]


class TestCsv:

    def test_sorted_and_reloadable(self, assignments, tmp_path):
        path = tmp_path / "out" / "schedule.csv"
        export_assignments_csv(assignments, path)
        loaded = load_assignments(path)
        assert [(a.date.day, a.student_id) for a in loaded] == [(1, "s1"), (2, "s1"), (2, "s2")]
        assert set(loaded) == set(assignments)


class TestExcel:

    def test_pivot_grid(self, assignments, tmp_path):
        path = tmp_path / "schedule.xlsx"
        export_assignments_excel(assignments, path, student_names={"s1": "Avery"})
        grid = pd.read_excel(path, sheet_name="Schedule", index_col=0)
        assert "Avery" in grid.columns
        assert grid.loc["2026-07-01", "Avery"] == "p1 (fm)"

    def test_flat(self, assignments, tmp_path):
        path = tmp_path / "flat.xlsx"
        export_assignments_excel(assignments, path, pivot=False)
        df = pd.read_excel(path, sheet_name="Assignments")
        assert len(df) == 3

    def test_empty(self, tmp_path):
        path = tmp_path / "empty.xlsx"
        export_assignments_excel([], path)
        assert path.exists()


class TestViolationReport:

    def test_complete_run(self, tmp_path):
        text = export_violation_report([], [], tmp_path / "report.txt", total_assignments=7)
        assert "✓ COMPLETE" in text
        assert "(no violations recorded)" in text
        assert "(all requirements met)" in text
        assert (tmp_path / "report.txt").read_text() == text

    def test_blocking_and_unmet(self, assignments, unmet, tmp_path):
        tracker = ViolationTracker()
        tracker.record_violation("PreceptorCapacity", assignments[0], "Dr. Reyes is full on 2026-07-02")
        text = export_violation_report(
            tracker.get_top_violations(), unmet, tmp_path / "report.txt",
            gap_fill=GapFillerResult(), label="July block")
        assert "✗ INCOMPLETE" in text
        assert "July block" in text
        assert "PreceptorCapacity" in text
        assert "Dr. Reyes is full on 2026-07-02" in text
        assert "Riley Okafor" in text
        assert "Gap Fill" in text


class TestJson:

    def test_result_json(self, assignments, unmet, tmp_path):
        result = ScheduleResult(assignments=assignments, success=False, unmet_requirements=unmet,
                                summary={"total_assignments": 3})
        path = tmp_path / "result.json"
        export_result_json(result, path, gap_fill=GapFillerResult())
        data = json.loads(path.read_text())
        assert data["success"] is False
        assert data["assignments"][2]["elective_id"] == "derm"
        assert data["unmet_requirements"][0]["remaining_days"] == 2
        assert data["gap_fill"]["still_unmet"] == []
