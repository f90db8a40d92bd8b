"""Sync job orchestration.

A sync run is split into two calls so reporting can be verified without side
effects:

1. plan(): auth precheck, read desired and observed state from Graph, build
   snapshots, diff them. Read-only.
2. apply(): execute the planned operations through the BatchRunner and
   summarize the outcomes.

Batch-wide preconditions (AuthError, duplicate keys, removal limit, failed
reads) raise before any write is issued. Per-operation failures are data in
the returned Report. An AuthError during apply stops the batch and propagates.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .config import Config
from .executors import ChannelExecutor, TeamMembershipExecutor, role_from_roles
from .graph_client import GraphClient, GraphRequestError
from .models import BaseJob, ChannelJob, TeamMembershipJob
from .operations import Executor, GraphOperation
from .rate_limiter import RateLimiter
from .reconciliation import (
    DiffSummary,
    ReconcileOptions,
    ReconciliationEngine,
    RemovalLimitExceeded,
)
from .report import Report, ReportAggregator
from .runner import BatchRunner, OutcomeCallback
from .security import TokenProvider
from .snapshot import DuplicateKeyError, Snapshot

logger = logging.getLogger(__name__)

GUID_RE = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)


@dataclass
class SyncPlan:
    """Operations planned for one job, with the snapshots they came from."""

    job: BaseJob
    desired: Snapshot
    observed: Snapshot
    operations: list[GraphOperation]
    summary: DiffSummary | None = None
    planned_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def has_changes(self) -> bool:
        return bool(self.operations)


@dataclass
class SyncResult:
    """Result of running one job end to end."""

    job: BaseJob
    plan: SyncPlan | None = None
    report: Report | None = None
    dry_run: bool = False
    error: Exception | None = None

    @property
    def success(self) -> bool:
        if self.error is not None:
            return False
        return self.report is None or self.report.success


class Synchronizer:
    """Plan and apply sync jobs against one tenant.

    Usage:
        sync = Synchronizer(config, provider, client)
        plan = await sync.plan(job)
        report = await sync.apply(plan)
    """

    def __init__(
        self,
        config: Config,
        token_provider: TokenProvider,
        client: GraphClient,
        runner: BatchRunner | None = None,
        engine: ReconciliationEngine | None = None,
    ) -> None:
        self._config = config
        self._token_provider = token_provider
        self._client = client
        self._runner = runner or BatchRunner.from_config(config)
        self._engine = engine or ReconciliationEngine()

    @classmethod
    def from_config(
        cls,
        config: Config,
        token_provider: TokenProvider,
        transport: Any = None,
    ) -> Synchronizer:
        """Wire client and runner to one shared rate limiter."""
        limiter = RateLimiter(
            limit=config.rate_limit_calls,
            window_seconds=config.rate_limit_window_seconds,
        )
        client = GraphClient.from_config(
            config, token_provider, rate_limiter=limiter, transport=transport
        )
        runner = BatchRunner.from_config(config, rate_limiter=limiter)
        return cls(config, token_provider, client, runner=runner)

    @property
    def client(self) -> GraphClient:
        return self._client

    @property
    def runner(self) -> BatchRunner:
        return self._runner

    def cancel(self) -> None:
        self._runner.cancel()

    async def check_auth(self) -> None:
        """Fail fast if no token can be obtained.

        Raises:
            AuthError: If the token provider fails.
        """
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._token_provider.get_token)
        logger.info("Graph authentication verified")

    async def plan(self, job: BaseJob) -> SyncPlan:
        """Compute the operations for a job without writing anything.

        Raises:
            AuthError: If authentication fails.
            GraphRequestError: If desired or observed state cannot be read.
            DuplicateKeyError: If a source yields the same identity twice.
            RemovalLimitExceeded: If the diff exceeds the removal limit.
        """
        await self.check_auth()

        if isinstance(job, TeamMembershipJob):
            desired = await self._desired_members(job)
            observed = await self._observed_members(job, desired)
        elif isinstance(job, ChannelJob):
            desired = self._desired_channels(job)
            observed = await self._observed_channels(job)
        else:
            raise TypeError(f"Unsupported job type: {type(job).__name__}")

        operations = self._engine.diff(desired, observed, self._options_for(job))
        plan = SyncPlan(
            job=job,
            desired=desired,
            observed=observed,
            operations=operations,
            summary=self._engine.last_summary,
        )

        logger.info(
            "Plan computed",
            extra={
                "job": job.label,
                "team_id": job.team_id,
                "operation_count": len(operations),
                "desired_count": len(desired),
                "observed_count": len(observed),
            },
        )
        for operation in operations:
            logger.debug("Planned operation", extra={"operation": operation.describe()})
        return plan

    async def apply(self, plan: SyncPlan, on_outcome: OutcomeCallback | None = None) -> Report:
        """Execute a plan and summarize the outcomes.

        Raises:
            AuthError: If a token cannot be obtained mid-batch.
        """
        started_at = datetime.now(UTC)
        outcomes = await self._runner.run(
            plan.operations, self.executor_for(plan.job), on_outcome=on_outcome
        )
        report = ReportAggregator.summarize(
            outcomes, started_at=started_at, finished_at=datetime.now(UTC)
        )
        logger.info(
            "Apply complete",
            extra={
                "job": plan.job.label,
                "succeeded": report.succeeded,
                "failed_terminal": report.failed_terminal,
                "failed_retryable": report.failed_retryable,
                "duration_seconds": report.duration_seconds,
            },
        )
        return report

    async def run(self, job: BaseJob, dry_run: bool | None = None) -> SyncResult:
        """Plan and, unless dry-run, apply a job.

        AuthError propagates: without a token no other job can run either.
        Other batch-wide failures are returned on the SyncResult.
        """
        dry_run = self._config.dry_run if dry_run is None else dry_run
        result = SyncResult(job=job, dry_run=dry_run)

        try:
            result.plan = await self.plan(job)
        except (GraphRequestError, DuplicateKeyError, RemovalLimitExceeded, ValueError) as e:
            logger.error(
                "Planning failed",
                extra={"job": job.label, "error": str(e), "error_type": type(e).__name__},
            )
            result.error = e
            return result

        if dry_run:
            logger.info(
                "Dry run: plan reported but not applied",
                extra={"job": job.label, "operation_count": len(result.plan.operations)},
            )
            return result

        result.report = await self.apply(result.plan)
        return result

    def executor_for(self, job: BaseJob) -> Executor:
        if isinstance(job, TeamMembershipJob):
            return TeamMembershipExecutor(self._client, job.team_id)
        if isinstance(job, ChannelJob):
            return ChannelExecutor(self._client, job.team_id)
        raise TypeError(f"Unsupported job type: {type(job).__name__}")

    def _options_for(self, job: BaseJob) -> ReconcileOptions:
        options = job.to_options()
        # Environment limit caps whatever the spec asks for
        limit = self._config.max_removals_per_run
        if options.max_removals is not None:
            limit = min(options.max_removals, limit)
        return ReconcileOptions(
            allow_removal=options.allow_removal,
            compare_attributes=options.compare_attributes,
            protected_keys=options.protected_keys,
            max_removals=limit,
            scope=options.scope,
        )

    # -------------------------------------------------------------------------
    # Snapshot builders
    # -------------------------------------------------------------------------

    async def _desired_members(self, job: TeamMembershipJob) -> Snapshot:
        source = job.source
        entries: list[tuple[str, dict[str, Any]]] = []

        if source.group_id:
            for user in await self._client.list_group_members(source.group_id):
                key = user.get("userPrincipalName") or user.get("mail") or user.get("id")
                if not key:
                    continue
                entries.append(
                    (
                        key,
                        {
                            "userId": user.get("id"),
                            "role": source.default_role,
                            "displayName": user.get("displayName"),
                        },
                    )
                )
            label = f"group:{source.group_id}"
        else:
            for member in source.members:
                attrs: dict[str, Any] = {"role": member.role}
                if GUID_RE.match(member.user):
                    attrs["userId"] = member.user
                entries.append((member.user, attrs))
            label = "spec:members"

        return Snapshot(entries, source=label)

    async def _observed_members(self, job: TeamMembershipJob, desired: Snapshot) -> Snapshot:
        # Match by Entra object id when the desired side knows it, so a mail
        # address that differs from the UPN still lines up
        key_by_user_id = {
            str(attrs["userId"]).lower(): desired.original_key(key)
            for key in desired
            if (attrs := desired.attributes(key)).get("userId")
        }

        entries: list[tuple[str, dict[str, Any]]] = []
        for member in await self._client.list_team_members(job.team_id):
            user_id = member.get("userId")
            key = key_by_user_id.get(str(user_id).lower()) if user_id else None
            key = key or member.get("email") or user_id
            if not key:
                continue
            entries.append(
                (
                    key,
                    {
                        "membershipId": member.get("id"),
                        "userId": user_id,
                        "role": role_from_roles(member.get("roles")),
                        "displayName": member.get("displayName"),
                    },
                )
            )
        return Snapshot(entries, source=f"team:{job.team_id}")

    @staticmethod
    def _desired_channels(job: ChannelJob) -> Snapshot:
        entries = [
            (
                channel.display_name,
                {
                    "displayName": channel.display_name,
                    "description": channel.description,
                    "membershipType": channel.membership_type,
                },
            )
            for channel in job.channels
        ]
        return Snapshot(entries, source="spec:channels")

    async def _observed_channels(self, job: ChannelJob) -> Snapshot:
        channels = await self._client.list_channels(job.team_id)
        entries = [
            (
                channel["displayName"],
                {
                    "channelId": channel.get("id"),
                    "displayName": channel["displayName"],
                    "description": channel.get("description") or "",
                    "membershipType": channel.get("membershipType") or "standard",
                },
            )
            for channel in channels
            if channel.get("displayName")
        ]
        return Snapshot(entries, source=f"team:{job.team_id}:channels")
