"""Bank transaction feeds."""

import json
import logging
from pathlib import Path

from pydantic import TypeAdapter

from ..models import BankTransaction

logger = logging.getLogger(__name__)

_transactions_adapter = TypeAdapter(list[BankTransaction])


class InMemoryTransactionFeed:
    """Transaction feed held in a list. Appends go to the end."""

    def __init__(self, transactions: list[BankTransaction] | None = None):
        """Initialize the feed."""
        self.transactions: list[BankTransaction] = list(transactions or [])

    def list_transactions(self) -> list[BankTransaction]:
        """Get all transactions."""
        return list(self.transactions)

    def append_transaction(self, transaction: BankTransaction) -> BankTransaction:
        """Record a new transaction."""
        self.transactions.append(transaction)
        logger.info(
            f"Recorded {transaction.type} of ${transaction.amount:.2f} "
            f"on {transaction.account_id}"
        )
        return transaction


class JsonFileTransactionFeed:
    """
    Transaction feed backed by a JSON array on disk.

    The file is read on every call, so edits made by other tools are seen.
    A missing file is an empty feed.
    """

    def __init__(self, path: Path):
        """Initialize the feed."""
        self.path = path

    def list_transactions(self) -> list[BankTransaction]:
        """Load all transactions from the file."""
        if not self.path.exists():
            logger.debug(f"No transaction file at {self.path}")
            return []
        return _transactions_adapter.validate_json(self.path.read_bytes())

    def append_transaction(self, transaction: BankTransaction) -> BankTransaction:
        """Append a transaction and rewrite the file."""
        transactions = self.list_transactions()
        transactions.append(transaction)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = _transactions_adapter.dump_python(transactions, mode="json")
        self.path.write_text(json.dumps(payload, indent=2))
        logger.info(f"Appended transaction {transaction.id} to {self.path}")
        return transaction
