"""Ports to the collaborators around the ledger core."""

from typing import Protocol

from ..models import BankTransaction, Notification


class TransactionFeed(Protocol):
    """Read access to bank transactions plus an append operation."""

    def list_transactions(self) -> list[BankTransaction]: ...

    def append_transaction(self, transaction: BankTransaction) -> BankTransaction: ...


class NotificationSink(Protocol):
    """Where the core sends notifications it wants shown."""

    def notify(self, notification: Notification) -> Notification: ...
