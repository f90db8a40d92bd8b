"""Runtime entry point: logging setup, sync job execution and inventory listings.

Exit codes:
    0: every job planned (and applied) without failures
    1: configuration, spec, authentication or Graph read failure
    2: security violation (secrets present in managed identity mode)
    3: batch finished but some operations failed
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
import sys
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .config import Config, ConfigurationError
from .graph_client import DEFAULT_SEARCH_TOP, GraphClient, GraphRequestError
from .inventory import Inventory, InventoryKind, InventoryReader, format_inventory
from .models import BaseJob
from .rate_limiter import RateLimiter
from .report import format_summary, write_csv, write_json
from .security import (
    AuthError,
    CredentialTokenProvider,
    SecretlessViolationError,
    TokenProvider,
)
from .spec_loader import SpecLoadError, load_jobs
from .sync import SyncResult, Synchronizer

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_SECURITY = 2
EXIT_FAILED_OPERATIONS = 3

# LogRecord attributes that are not user-supplied extra fields
_RESERVED_LOG_ATTRS = frozenset(
    (
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    )
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_LOG_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Configure structured logging with JSON output on stderr.

    stdout is left to the CLI for plan and summary output.
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Reduce noise from Azure SDK and HTTP stack
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


@dataclass(frozen=True)
class RunOptions:
    """What the CLI asked for."""

    spec_path: Path
    apply: bool = False
    report_csv: Path | None = None
    report_json: Path | None = None


@dataclass(frozen=True)
class InventoryRequest:
    """A read-only listing asked for on the CLI."""

    kind: InventoryKind
    team_id: str = ""
    query: str = ""
    top: int = DEFAULT_SEARCH_TOP
    report_csv: Path | None = None
    report_json: Path | None = None


def report_path(base: Path, job: BaseJob, index: int, multiple: bool) -> Path:
    """Per-job report path; files get a job suffix when a spec holds several jobs."""
    if not multiple:
        return base
    safe_label = "".join(ch if ch.isalnum() or ch in "-_" else "-" for ch in job.label)
    return base.with_name(f"{base.stem}-{index}-{safe_label}{base.suffix}")


def _export(result: SyncResult, options: RunOptions, index: int, multiple: bool) -> None:
    if result.report is None:
        return
    if options.report_csv:
        write_csv(result.report, report_path(options.report_csv, result.job, index, multiple))
    if options.report_json:
        write_json(result.report, report_path(options.report_json, result.job, index, multiple))


def exit_code_for(results: list[SyncResult]) -> int:
    if any(result.error is not None for result in results):
        return EXIT_ERROR
    if any(result.report is not None and not result.report.success for result in results):
        return EXIT_FAILED_OPERATIONS
    return EXIT_OK


async def run_jobs(
    config: Config,
    options: RunOptions,
    token_provider: TokenProvider | None = None,
    transport: Any = None,
    echo: Any = print,
) -> int:
    """Load the spec, then plan (and optionally apply) every job in it.

    Args:
        config: Validated configuration.
        options: Spec path, apply flag and report destinations.
        token_provider: Provider override; built from config when None.
        transport: httpx transport override for the Graph client.
        echo: Sink for human-readable output.

    Returns:
        Process exit code.
    """
    logger = logging.getLogger(__name__)

    try:
        jobs = load_jobs(options.spec_path)
    except SpecLoadError as e:
        logger.error("Spec loading failed", extra={"error": str(e)})
        echo(f"Error: {e}")
        return EXIT_ERROR

    try:
        provider = token_provider or CredentialTokenProvider.from_config(config)
    except SecretlessViolationError as e:
        logger.critical("Security violation: credentials detected in environment")
        echo(f"Security violation: {e}")
        return EXIT_SECURITY
    except AuthError as e:
        echo(f"Authentication error: {e}")
        return EXIT_ERROR

    dry_run = config.dry_run or not options.apply
    synchronizer = Synchronizer.from_config(config, provider, transport=transport)

    # Graceful shutdown: stop starting new operations, let in-flight ones finish
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, synchronizer.cancel)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Not available on this platform or outside the main thread
            pass

    results: list[SyncResult] = []
    try:
        for index, job in enumerate(jobs, 1):
            try:
                result = await synchronizer.run(job, dry_run=dry_run)
            except AuthError as e:
                logger.error("Authentication failed", extra={"error": str(e)})
                echo(f"Authentication error: {e}")
                return EXIT_ERROR

            results.append(result)
            _print_result(result, echo)
            _export(result, options, index, multiple=len(jobs) > 1)

            if synchronizer.runner.cancelled:
                logger.warning("Run cancelled, skipping remaining jobs")
                break
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        await synchronizer.client.aclose()

    return exit_code_for(results)


async def run_inventory(
    config: Config,
    request: InventoryRequest,
    token_provider: TokenProvider | None = None,
    transport: Any = None,
    echo: Any = print,
) -> int:
    """List teams, channels or users, print them and export them if asked.

    Returns:
        Process exit code.
    """
    logger = logging.getLogger(__name__)

    try:
        provider = token_provider or CredentialTokenProvider.from_config(config)
    except SecretlessViolationError as e:
        logger.critical("Security violation: credentials detected in environment")
        echo(f"Security violation: {e}")
        return EXIT_SECURITY
    except AuthError as e:
        echo(f"Authentication error: {e}")
        return EXIT_ERROR

    limiter = RateLimiter(
        limit=config.rate_limit_calls,
        window_seconds=config.rate_limit_window_seconds,
    )
    async with GraphClient.from_config(
        config, provider, rate_limiter=limiter, transport=transport
    ) as client:
        try:
            inventory = await _read_inventory(InventoryReader(client), request)
        except (AuthError, GraphRequestError, ValueError) as e:
            logger.error(
                "Inventory read failed",
                extra={
                    "kind": request.kind.value,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            echo(f"Error: {e}")
            return EXIT_ERROR

    for line in format_inventory(inventory):
        echo(line)
    if request.report_csv:
        write_csv(inventory, request.report_csv)
    if request.report_json:
        write_json(inventory, request.report_json)
    return EXIT_OK


async def _read_inventory(reader: InventoryReader, request: InventoryRequest) -> Inventory:
    match request.kind:
        case InventoryKind.TEAMS:
            return await reader.teams()
        case InventoryKind.CHANNELS:
            return await reader.channels(request.team_id)
        case InventoryKind.USERS:
            return await reader.users(request.query, top=request.top)
    raise ValueError(f"Unsupported inventory kind: {request.kind}")


def _print_result(result: SyncResult, echo: Any) -> None:
    header = f"[{result.job.label}]"
    if result.error is not None:
        echo(f"{header} failed: {result.error}")
        return

    plan = result.plan
    if plan is None:
        return

    if not plan.operations:
        echo(f"{header} in sync ({len(plan.desired)} desired, {len(plan.observed)} observed)")
        return

    if result.report is None:
        echo(f"{header} {len(plan.operations)} planned operation(s):")
        for operation in plan.operations:
            echo(f"  {operation.kind.value:<6} {operation.target_key}")
        return

    echo(f"{header} {format_summary(result.report)}")
    for outcome in result.report.failures():
        error = outcome.last_error
        reason = f"{error.code}: {error.message}" if error else "unknown"
        echo(f"  {outcome.status.value:<15} {outcome.operation.describe()} ({reason})")


def main(argv: list[str] | None = None) -> int:
    """Run from environment: SPEC_PATH names the spec, APPLY=true applies it.

    Container entry point; interactive use goes through the CLI.
    """
    setup_logging(os.environ.get("LOG_LEVEL", "INFO").upper())
    logger = logging.getLogger(__name__)

    try:
        config = Config.from_env()
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return EXIT_ERROR

    args = argv if argv is not None else sys.argv[1:]
    spec_path = Path(args[0] if args else os.environ.get("SPEC_PATH", "/specs/sync.yaml"))
    apply = os.environ.get("APPLY", "").lower() in ("true", "1", "yes")

    return asyncio.run(run_jobs(config, RunOptions(spec_path=spec_path, apply=apply)))


def run() -> None:
    """Entry point for the container image."""
    sys.exit(main())


if __name__ == "__main__":
    run()
