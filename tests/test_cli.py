"""Tests for the command line interface."""

from decimal import Decimal

import pytest
from typer.testing import CliRunner

from settleloop.cli import app, format_money
from settleloop.clients import InMemoryNotificationSink, JsonFileTransactionFeed
from settleloop.config import Settings
from settleloop.db import Database
from settleloop.service import LedgerService

runner = CliRunner()


@pytest.fixture
def env(tmp_path, monkeypatch):
    """Point the CLI at a temporary database and transaction file."""
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "cli.db"))
    monkeypatch.setenv("TRANSACTIONS_PATH", str(tmp_path / "transactions.json"))
    return Settings()


@pytest.fixture
def mission_id(env):
    """A persisted mission where Teresa owes Sarah $25."""
    db = Database(env.database_path)
    try:
        service = LedgerService(
            env,
            JsonFileTransactionFeed(env.transactions_path),
            InMemoryNotificationSink(),
            database=db,
        )
        mission = service.create_mission("Cottage")
        sarah = service.add_member(mission.id, "Sarah")
        service.add_member(mission.id, "Teresa")
        service.add_expense(mission.id, "Groceries", Decimal("50.00"), sarah.id)
        return mission.id
    finally:
        db.close()


class TestFormatMoney:
    """Test accounting-style money formatting."""

    def test_positive(self):
        assert format_money(Decimal("85.02"), use_color=False) == " $85.02 "

    def test_negative(self):
        assert format_money(Decimal("-1234.5"), use_color=False) == "($1,234.50)"


class TestCommands:
    """Test commands end to end against a temporary database."""

    def test_missions_empty(self, env):
        result = runner.invoke(app, ["missions"])

        assert result.exit_code == 0
        assert "No shared ledgers yet" in result.output

    def test_balances(self, mission_id):
        result = runner.invoke(app, ["balances", mission_id])

        assert result.exit_code == 0
        assert "Sarah" in result.output
        assert "25.00" in result.output
        assert "Balance (CAD)" in result.output

    def test_unknown_mission(self, env):
        result = runner.invoke(app, ["balances", "nope"])

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_settle(self, mission_id, env):
        result = runner.invoke(app, ["settle", mission_id, "--user", "x", "--yes"])
        assert result.exit_code == 1

        db = Database(env.database_path)
        try:
            mission = db.get_mission(mission_id)
        finally:
            db.close()
        sarah = mission.members[0]

        result = runner.invoke(app, ["settle", mission_id, "--user", sarah.id, "--yes"])

        assert result.exit_code == 0
        assert "Payment Received" in result.output
        assert JsonFileTransactionFeed(env.transactions_path).list_transactions()

    def test_scan_without_transactions(self, env):
        result = runner.invoke(app, ["scan"])

        assert result.exit_code == 0
        assert "No new matching transactions" in result.output
