"""Tests for read-only tenant listings."""

import csv
import json
from pathlib import Path

import pytest
from graph_mock import BASE_URL, MockGraphTenant, MockTokenProvider

from teamsops.graph_client import GraphClient, GraphRequestError
from teamsops.inventory import Inventory, InventoryKind, InventoryReader, format_inventory
from teamsops.report import write_csv, write_json


def make_client(tenant: MockGraphTenant, provider: MockTokenProvider) -> GraphClient:
    return GraphClient(provider, base_url=BASE_URL, transport=tenant.transport)


class TestInventoryReader:
    """Tests for InventoryReader."""

    @pytest.mark.asyncio
    async def test_teams_sorted_by_name(
        self, tenant: MockGraphTenant, token_provider: MockTokenProvider
    ) -> None:
        tenant.add_team("sales")
        tenant.add_team("Engineering", description="Platform and apps")

        async with make_client(tenant, token_provider) as client:
            inventory = await InventoryReader(client).teams()

        assert inventory.kind == InventoryKind.TEAMS
        assert [r["displayName"] for r in inventory.records] == ["Engineering", "sales"]
        assert tenant.writes == []

    @pytest.mark.asyncio
    async def test_channels_scoped_to_team_name(
        self, tenant: MockGraphTenant, token_provider: MockTokenProvider
    ) -> None:
        team_id = tenant.add_team("Engineering", channels=["Releases", "design"])

        async with make_client(tenant, token_provider) as client:
            inventory = await InventoryReader(client).channels(team_id)

        assert inventory.scope == "Engineering"
        assert [r["displayName"] for r in inventory.records] == ["design", "General", "Releases"]

    @pytest.mark.asyncio
    async def test_unknown_team_raises(
        self, tenant: MockGraphTenant, token_provider: MockTokenProvider
    ) -> None:
        async with make_client(tenant, token_provider) as client:
            with pytest.raises(GraphRequestError):
                await InventoryReader(client).channels("00000000-0000-0000-0000-000000000000")

    @pytest.mark.asyncio
    async def test_users(self, tenant: MockGraphTenant, token_provider: MockTokenProvider) -> None:
        tenant.add_user("alice@contoso.com", display_name="Alice Smith")
        tenant.add_user("bob@contoso.com")

        async with make_client(tenant, token_provider) as client:
            inventory = await InventoryReader(client).users("  ali ")

        assert inventory.scope == "ali"
        assert [r["userPrincipalName"] for r in inventory.records] == ["alice@contoso.com"]

    @pytest.mark.asyncio
    async def test_empty_query_rejected(
        self, tenant: MockGraphTenant, token_provider: MockTokenProvider
    ) -> None:
        async with make_client(tenant, token_provider) as client:
            with pytest.raises(ValueError):
                await InventoryReader(client).users("   ")

        assert tenant.requests == []


class TestInventory:
    """Tests for Inventory rows, formatting and export."""

    def make_channels(self) -> Inventory:
        return Inventory(
            InventoryKind.CHANNELS,
            (
                {"id": "c-1", "displayName": "General", "membershipType": "standard"},
                {"id": "c-2", "displayName": "Leads", "description": None, "extra": "x"},
            ),
            scope="Engineering",
        )

    def test_rows_follow_columns(self) -> None:
        """Test that rows only carry the kind's columns, with blanks for missing values."""
        rows = self.make_channels().to_rows()

        assert rows[1] == {
            "id": "c-2",
            "displayName": "Leads",
            "description": "",
            "membershipType": "",
        }

    def test_records_are_frozen(self) -> None:
        inventory = self.make_channels()

        with pytest.raises(TypeError):
            inventory.records[0]["displayName"] = "Renamed"  # type: ignore[index]

    def test_format(self) -> None:
        lines = format_inventory(self.make_channels())

        assert lines == [
            "2 channel(s) in Engineering",
            "  c-1  General  (standard)",
            "  c-2  Leads",
        ]

    def test_format_users(self) -> None:
        inventory = Inventory(
            InventoryKind.USERS,
            ({"id": "u-1", "displayName": "Alice", "userPrincipalName": "alice@contoso.com"},),
            scope="ali",
        )

        assert format_inventory(inventory) == [
            "1 user(s) matching 'ali'",
            "  u-1  Alice  (alice@contoso.com)",
        ]

    def test_export(self, tmp_path: Path) -> None:
        """Test that inventories go through the same CSV and JSON sinks as reports."""
        inventory = self.make_channels()

        csv_path = write_csv(inventory, tmp_path / "out" / "channels.csv")
        json_path = write_json(inventory, tmp_path / "out" / "channels.json")

        with csv_path.open(encoding="utf-8") as handle:
            rows = list(csv.DictReader(handle))
        assert [row["displayName"] for row in rows] == ["General", "Leads"]
        assert list(rows[0]) == ["id", "displayName", "description", "membershipType"]

        data = json.loads(json_path.read_text(encoding="utf-8"))
        assert data["summary"]["kind"] == "channels"
        assert data["summary"]["count"] == 2
        assert data["details"][0]["id"] == "c-1"
