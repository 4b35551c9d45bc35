"""Collaborators of the ledger core: bank feed and notification sink."""

from .bank_feed import InMemoryTransactionFeed, JsonFileTransactionFeed
from .notifications import InMemoryNotificationSink
from .ports import NotificationSink, TransactionFeed

__all__ = [
    "TransactionFeed",
    "NotificationSink",
    "InMemoryTransactionFeed",
    "JsonFileTransactionFeed",
    "InMemoryNotificationSink",
]
