"""Shared fixtures for SettleLoop tests."""

from datetime import UTC, datetime

import pytest

from settleloop.clients import InMemoryNotificationSink, InMemoryTransactionFeed
from settleloop.config import Settings
from settleloop.service import LedgerService


class FakeClock:
    """Settable clock for the ledger service."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a temporary directory."""
    return Settings(
        database_path=tmp_path / "settleloop.db",
        transactions_path=tmp_path / "transactions.json",
    )


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 10, 12, 0, tzinfo=UTC))


@pytest.fixture
def feed():
    return InMemoryTransactionFeed()


@pytest.fixture
def notifications():
    return InMemoryNotificationSink()


@pytest.fixture
def service(settings, feed, notifications, clock):
    """Create a LedgerService without a database."""
    return LedgerService(settings, feed, notifications, clock=clock)


@pytest.fixture
def trip(service):
    """A mission with Sarah, Teresa and Mike (Mike has no email)."""
    mission = service.create_mission("Cottage weekend")
    service.add_member(mission.id, "Sarah", email="sarah@test.com")
    service.add_member(mission.id, "Teresa", email="teresa@test.com")
    service.add_member(mission.id, "Mike")
    return mission
