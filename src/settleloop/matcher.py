"""Match bank transactions against AutoSplit rules."""

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta

from .models import AutoSplitRule, BankTransaction

logger = logging.getLogger(__name__)


def is_duplicate(rule: AutoSplitRule, transaction: BankTransaction) -> bool:
    """True if this exact transaction was the rule's last match."""
    return rule.last_matched_transaction_id == transaction.id


def is_throttled(rule: AutoSplitRule, transaction: BankTransaction) -> bool:
    """
    True if a monthly rule already matched in the transaction's month.

    Keeps a bill from being imported twice in one billing cycle.
    """
    if rule.recurrence != "monthly" or rule.last_matched_at is None:
        return False
    last = rule.last_matched_at
    return (last.year, last.month) == (transaction.date.year, transaction.date.month)


def match_transaction(
    transaction: BankTransaction, rules: Iterable[AutoSplitRule]
) -> AutoSplitRule | None:
    """
    Find the first active rule that claims a transaction.

    Rules are tried in catalog order and the first one passing every check
    wins:
    1. Rule watches the transaction's account
    2. Rule's detection criterion matches
    3. Transaction is not the rule's last match
    4. Monthly rules have not matched yet in the transaction's month

    Args:
        transaction: Bank transaction to classify
        rules: Rule catalog (paused rules are skipped)

    Returns:
        The matching rule, or None
    """
    for rule in rules:
        if rule.status != "active":
            continue
        if rule.account_id != transaction.account_id:
            continue
        if not rule.detection.matches(transaction):
            continue

        if is_duplicate(rule, transaction):
            logger.debug(f"Rule {rule.id} already matched transaction {transaction.id}")
            continue
        if is_throttled(rule, transaction):
            logger.debug(
                f"Rule {rule.id} already matched in "
                f"{transaction.date:%Y-%m}, skipping {transaction.id}"
            )
            continue

        logger.info(
            f"Transaction {transaction.id} ({transaction.description}) "
            f"matched rule {rule.id} ({rule.detection.method})"
        )
        return rule

    return None


def recent_completed(
    transactions: Iterable[BankTransaction], now: datetime, lookback_days: int
) -> list[BankTransaction]:
    """
    Completed transactions from the lookback window, oldest first.

    Sorting by date keeps monthly throttling deterministic regardless of the
    order the feed returns transactions in.
    """
    cutoff = now - timedelta(days=lookback_days)
    recent = [
        transaction
        for transaction in transactions
        if transaction.status == "completed" and transaction.date >= cutoff
    ]
    return sorted(recent, key=lambda transaction: transaction.date)
