"""Tests for SQLite persistence."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from settleloop.db import Database
from settleloop.models import (
    AutoSplitRule,
    BankTransaction,
    BillPack,
    ContainsDetection,
)
from settleloop.service import LedgerService


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test.db"


@pytest.fixture
def open_service(settings, feed, notifications, clock, db_path):
    """Open services on the same database file, closing them afterwards."""
    databases = []

    def _open() -> LedgerService:
        db = Database(db_path)
        databases.append(db)
        return LedgerService(settings, feed, notifications, database=db, clock=clock)

    yield _open

    for db in databases:
        db.close()


class TestConfig:
    """Test config key/value storage."""

    def test_last_scan_at(self, db_path):
        db = Database(db_path)
        try:
            assert db.get_last_scan_at() is None

            scanned_at = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)
            db.set_last_scan_at(scanned_at)

            assert db.get_last_scan_at() == scanned_at
        finally:
            db.close()

    def test_set_config_overwrites(self, db_path):
        db = Database(db_path)
        try:
            db.set_config("currency", "CAD")
            db.set_config("currency", "USD")

            assert db.get_config("currency") == "USD"
            assert db.get_config("missing") is None
        finally:
            db.close()


class TestPersistence:
    """Test state surviving a restart."""

    def test_missions_round_trip(self, open_service):
        service = open_service()
        mission = service.create_mission("Cottage weekend")
        sarah = service.add_member(mission.id, "Sarah", email="sarah@test.com")
        mike = service.add_member(mission.id, "Mike")
        service.add_expense(mission.id, "Groceries", Decimal("80.00"), sarah.id)

        reloaded = open_service()
        loaded = reloaded.get_mission(mission.id)

        assert loaded.title == "Cottage weekend"
        assert [m.name for m in loaded.members] == ["Sarah", "Mike"]
        assert len(loaded.expenses) == 1
        assert {m.id: m.balance for m in reloaded.get_balances(mission.id)} == {
            sarah.id: Decimal("40.00"),
            mike.id: Decimal("-40.00"),
        }

    def test_missions_keep_creation_order(self, open_service):
        service = open_service()
        first = service.create_mission("First")
        second = service.create_mission("Second")
        service.update_mission_title(first.id, "First, renamed")

        titles = [m.title for m in open_service().list_missions()]

        assert titles == ["First, renamed", "Second"]
        assert second.id != first.id

    def test_rules_and_packs_round_trip(self, open_service, feed):
        service = open_service()
        mission = service.create_mission("House")
        sarah = service.add_member(mission.id, "Sarah")
        teresa = service.add_member(mission.id, "Teresa")
        pack = service.create_bill_pack(BillPack(mission_id=mission.id, name="Bills"))
        rule = service.create_rule(
            AutoSplitRule(
                mission_id=mission.id,
                bill_pack_id=pack.id,
                account_id="credit-1",
                detection=ContainsDetection(text="internet"),
                paid_by=sarah.id,
                participants=[sarah.id, teresa.id],
                split_type="PERCENT",
                split_values=[Decimal("60"), Decimal("40")],
                recurrence="monthly",
            )
        )
        feed.append_transaction(
            BankTransaction(
                id="txn-1",
                account_id="credit-1",
                type="charge",
                amount=Decimal("-75.00"),
                description="ROGERS INTERNET",
                date=datetime(2026, 3, 2, tzinfo=UTC),
                status="completed",
            )
        )
        service.check_transactions()

        reloaded = open_service()
        loaded_rule = reloaded.get_rule(rule.id)

        assert isinstance(loaded_rule.detection, ContainsDetection)
        assert loaded_rule.match_count == 1
        assert loaded_rule.last_matched_transaction_id == "txn-1"
        assert reloaded.get_bill_pack(pack.id).name == "Bills"
        assert reloaded.db.get_last_scan_at() is not None
        # already imported before the restart
        assert reloaded.check_transactions() == []

    def test_delete_mission_removes_rows(self, open_service):
        service = open_service()
        mission = service.create_mission("House")
        sarah = service.add_member(mission.id, "Sarah")
        service.create_bill_pack(BillPack(mission_id=mission.id, name="Bills"))
        service.create_rule(
            AutoSplitRule(
                mission_id=mission.id,
                account_id="credit-1",
                detection=ContainsDetection(text="internet"),
                paid_by=sarah.id,
                participants=[sarah.id],
            )
        )

        service.delete_mission(mission.id)
        reloaded = open_service()

        assert reloaded.list_missions() == []
        assert reloaded.rules == []
        assert reloaded.bill_packs == []
