"""Tests for report aggregation and export."""

import csv
import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

from teamsops.operations import (
    ErrorDetail,
    GraphOperation,
    OperationOutcome,
    OperationStatus,
)
from teamsops.report import CSV_COLUMNS, ReportAggregator, format_summary, write_csv, write_json


def sample_outcomes() -> list[OperationOutcome]:
    return [
        OperationOutcome(
            GraphOperation.add("alice@contoso.com", scope="team"),
            OperationStatus.SUCCEEDED,
            attempts=1,
            elapsed_ms=12,
            index=0,
        ),
        OperationOutcome(
            GraphOperation.add("ghost@contoso.com", scope="team"),
            OperationStatus.FAILED_TERMINAL,
            attempts=1,
            last_error=ErrorDetail("NotFound", "User not found", 404),
            index=1,
        ),
        OperationOutcome(
            GraphOperation.remove("bob@contoso.com", scope="team"),
            OperationStatus.FAILED_RETRYABLE,
            attempts=5,
            last_error=ErrorDetail("http_503", "Graph returned HTTP 503", 503, retryable=True),
            index=2,
        ),
    ]


class TestReportAggregator:
    """Tests for ReportAggregator.summarize()."""

    def test_totals_match_details(self) -> None:
        """Test that the three counts add up to the number of outcomes."""
        report = ReportAggregator.summarize(sample_outcomes())

        assert report.succeeded == 1
        assert report.failed_terminal == 1
        assert report.failed_retryable == 1
        assert report.total == len(report.details) == 3
        assert not report.success

    def test_details_keep_input_order(self) -> None:
        outcomes = sample_outcomes()

        report = ReportAggregator.summarize(outcomes)

        assert list(report.details) == outcomes
        assert [o.operation.target_key for o in report.failures()] == [
            "ghost@contoso.com",
            "bob@contoso.com",
        ]

    def test_empty_batch(self) -> None:
        report = ReportAggregator.summarize([])

        assert report.total == 0
        assert report.success

    def test_by_kind(self) -> None:
        report = ReportAggregator.summarize(sample_outcomes())

        assert report.by_kind["Add"] == {"Succeeded": 1, "FailedTerminal": 1, "FailedRetryable": 0}
        assert report.by_kind["Remove"]["FailedRetryable"] == 1
        assert sum(report.by_kind["Update"].values()) == 0

    def test_duration(self) -> None:
        started = datetime(2026, 1, 1, tzinfo=UTC)

        report = ReportAggregator.summarize(
            [], started_at=started, finished_at=started + timedelta(seconds=90)
        )

        assert report.duration_seconds == 90.0

    def test_format_summary(self) -> None:
        summary = format_summary(ReportAggregator.summarize(sample_outcomes()))

        assert summary == "3 operations: 1 succeeded, 1 failed, 1 gave up after retries"


class TestReportExport:
    """Tests for CSV and JSON export."""

    def test_write_csv(self, tmp_path: Path) -> None:
        path = write_csv(ReportAggregator.summarize(sample_outcomes()), tmp_path / "out" / "r.csv")

        with path.open(newline="", encoding="utf-8") as handle:
            rows = list(csv.DictReader(handle))

        assert tuple(rows[0].keys()) == CSV_COLUMNS
        assert [row["status"] for row in rows] == ["Succeeded", "FailedTerminal", "FailedRetryable"]
        assert rows[1]["error_code"] == "NotFound"
        assert rows[1]["http_status"] == "404"
        assert rows[0]["error_code"] == ""
        assert rows[2]["attempts"] == "5"

    def test_write_json(self, tmp_path: Path) -> None:
        path = write_json(ReportAggregator.summarize(sample_outcomes()), tmp_path / "r.json")

        data = json.loads(path.read_text(encoding="utf-8"))

        assert data["summary"]["total"] == 3
        assert data["summary"]["failedRetryable"] == 1
        assert len(data["details"]) == 3
        assert data["details"][2]["kind"] == "Remove"
