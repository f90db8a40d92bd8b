"""Batch result aggregation and report sinks.

summarize() is pure: it turns a list of outcomes into a Report and never
touches the filesystem. The write_* helpers persist a Report, or any other
table with columns, rows and a dict form such as an inventory listing, as CSV
or JSON for the report exports admins hand to service owners.
"""

from __future__ import annotations

import csv
import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from .operations import OperationKind, OperationOutcome, OperationStatus

logger = logging.getLogger(__name__)

CSV_COLUMNS = (
    "index",
    "kind",
    "scope",
    "target",
    "status",
    "attempts",
    "error_code",
    "error_message",
    "http_status",
    "elapsed_ms",
    "idempotency_key",
)


class Exportable(Protocol):
    """Anything the write_* sinks can persist."""

    @property
    def columns(self) -> tuple[str, ...]: ...

    def to_rows(self) -> list[dict[str, Any]]: ...

    def to_dict(self) -> dict[str, Any]: ...


@dataclass(frozen=True)
class Report:
    """Structured summary of one batch run.

    details keeps the input order of the batch.
    """

    succeeded: int
    failed_terminal: int
    failed_retryable: int
    details: tuple[OperationOutcome, ...] = ()
    by_kind: dict[str, dict[str, int]] = field(default_factory=dict)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def columns(self) -> tuple[str, ...]:
        return CSV_COLUMNS

    @property
    def total(self) -> int:
        return self.succeeded + self.failed_terminal + self.failed_retryable

    @property
    def failed(self) -> int:
        return self.failed_terminal + self.failed_retryable

    @property
    def success(self) -> bool:
        return self.failed == 0

    @property
    def duration_seconds(self) -> float:
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def failures(self) -> list[OperationOutcome]:
        return [outcome for outcome in self.details if not outcome.succeeded]

    def to_rows(self) -> list[dict[str, Any]]:
        """One flat dict per outcome, keyed by CSV_COLUMNS."""
        rows = []
        for outcome in self.details:
            error = outcome.last_error
            rows.append(
                {
                    "index": outcome.index,
                    "kind": outcome.operation.kind.value,
                    "scope": outcome.operation.scope,
                    "target": outcome.operation.target_key,
                    "status": outcome.status.value,
                    "attempts": outcome.attempts,
                    "error_code": error.code if error else "",
                    "error_message": error.message if error else "",
                    "http_status": error.http_status if error and error.http_status else "",
                    "elapsed_ms": outcome.elapsed_ms,
                    "idempotency_key": outcome.operation.idempotency_key,
                }
            )
        return rows

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": {
                "total": self.total,
                "succeeded": self.succeeded,
                "failedTerminal": self.failed_terminal,
                "failedRetryable": self.failed_retryable,
                "byKind": self.by_kind,
                "startedAt": self.started_at.isoformat() if self.started_at else None,
                "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
                "durationSeconds": self.duration_seconds,
            },
            "details": self.to_rows(),
        }


class ReportAggregator:
    """Summarize batch outcomes."""

    @staticmethod
    def summarize(
        outcomes: Sequence[OperationOutcome],
        started_at: datetime | None = None,
        finished_at: datetime | None = None,
    ) -> Report:
        counts = {status: 0 for status in OperationStatus}
        by_kind: dict[str, dict[str, int]] = {
            kind.value: {status.value: 0 for status in OperationStatus} for kind in OperationKind
        }

        for outcome in outcomes:
            counts[outcome.status] += 1
            by_kind[outcome.operation.kind.value][outcome.status.value] += 1

        return Report(
            succeeded=counts[OperationStatus.SUCCEEDED],
            failed_terminal=counts[OperationStatus.FAILED_TERMINAL],
            failed_retryable=counts[OperationStatus.FAILED_RETRYABLE],
            details=tuple(outcomes),
            by_kind=by_kind,
            started_at=started_at,
            finished_at=finished_at,
        )


def format_summary(report: Report) -> str:
    """One-line console summary."""
    return (
        f"{report.total} operations: {report.succeeded} succeeded, "
        f"{report.failed_terminal} failed, {report.failed_retryable} gave up after retries"
    )


def write_csv(report: Exportable, path: Path) -> Path:
    """Write one row per outcome (or inventory record) to a CSV file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as handle:
        rows = report.to_rows()
        writer = csv.DictWriter(handle, fieldnames=list(report.columns))
        writer.writeheader()
        writer.writerows(rows)
    logger.info("Wrote CSV report", extra={"path": str(path), "rows": len(rows)})
    return path


def write_json(report: Exportable, path: Path) -> Path:
    """Write totals and per-operation details to a JSON file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(report.to_dict(), indent=2, default=str), encoding="utf-8")
    logger.info("Wrote JSON report", extra={"path": str(path)})
    return path
