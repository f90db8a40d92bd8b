"""Read-only tenant listings: teams, channels and user search.

These back the list-teams, list-channels and search-users commands. Reads go
through the same GraphClient (rate limiter, retry, paging) as sync planning
and never write. An Inventory exports through report.write_csv/write_json.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .graph_client import DEFAULT_SEARCH_TOP, GraphClient
from .snapshot import freeze


class InventoryKind(str, Enum):
    """What an inventory lists."""

    TEAMS = "teams"
    CHANNELS = "channels"
    USERS = "users"


COLUMNS: dict[InventoryKind, tuple[str, ...]] = {
    InventoryKind.TEAMS: ("id", "displayName", "description"),
    InventoryKind.CHANNELS: ("id", "displayName", "description", "membershipType"),
    InventoryKind.USERS: ("id", "displayName", "mail", "userPrincipalName"),
}


@dataclass(frozen=True)
class Inventory:
    """Records of one kind, read from Graph at one point in time.

    scope names the container that was listed (a team) or the search query.
    """

    kind: InventoryKind
    records: tuple[Mapping[str, Any], ...] = ()
    scope: str = ""
    captured_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        object.__setattr__(self, "records", tuple(freeze(record) for record in self.records))

    def __len__(self) -> int:
        return len(self.records)

    @property
    def columns(self) -> tuple[str, ...]:
        return COLUMNS[self.kind]

    def to_rows(self) -> list[dict[str, Any]]:
        """One flat dict per record, keyed by columns; missing values are blank."""
        return [
            {column: record.get(column) or "" for column in self.columns}
            for record in self.records
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": {
                "kind": self.kind.value,
                "scope": self.scope,
                "count": len(self.records),
                "capturedAt": self.captured_at.isoformat(),
            },
            "details": self.to_rows(),
        }


def _sorted_by_name(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return sorted(
        records, key=lambda r: (str(r.get("displayName") or "").casefold(), str(r.get("id")))
    )


class InventoryReader:
    """Build inventories from a connected GraphClient.

    Usage:
        async with GraphClient(provider) as client:
            teams = await InventoryReader(client).teams()

    Raises GraphRequestError when a read fails after retries and AuthError
    when no token can be obtained.
    """

    def __init__(self, client: GraphClient) -> None:
        self._client = client

    async def teams(self) -> Inventory:
        records = await self._client.list_teams()
        return Inventory(InventoryKind.TEAMS, tuple(_sorted_by_name(records)))

    async def channels(self, team_id: str) -> Inventory:
        team = await self._client.get_team(team_id)
        records = await self._client.list_channels(team_id)
        return Inventory(
            InventoryKind.CHANNELS,
            tuple(_sorted_by_name(records)),
            scope=team.get("displayName") or team_id,
        )

    async def users(self, query: str, top: int = DEFAULT_SEARCH_TOP) -> Inventory:
        if not query.strip():
            raise ValueError("Search query cannot be empty")
        records = await self._client.search_users(query.strip(), top=top)
        return Inventory(InventoryKind.USERS, tuple(records), scope=query.strip())


def format_inventory(inventory: Inventory) -> list[str]:
    """Human-readable lines for the CLI: a header, then one line per record."""
    count = len(inventory)
    match inventory.kind:
        case InventoryKind.TEAMS:
            header = f"{count} team(s)"
        case InventoryKind.CHANNELS:
            header = f"{count} channel(s) in {inventory.scope}"
        case InventoryKind.USERS:
            header = f"{count} user(s) matching '{inventory.scope}'"

    lines = [header]
    for row in inventory.to_rows():
        match inventory.kind:
            case InventoryKind.TEAMS:
                detail = row["description"]
            case InventoryKind.CHANNELS:
                detail = row["membershipType"]
            case InventoryKind.USERS:
                detail = row["userPrincipalName"]
        line = f"  {row['id']}  {row['displayName']}"
        lines.append(f"{line}  ({detail})" if detail else line)
    return lines
