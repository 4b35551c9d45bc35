"""Tests for matching bank transactions against AutoSplit rules."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

from settleloop.matcher import (
    is_duplicate,
    is_throttled,
    match_transaction,
    recent_completed,
)
from settleloop.models import (
    AmountRangeDetection,
    AutoSplitRule,
    BankTransaction,
    CategoryDetection,
    ContainsDetection,
    ExactAmountDetection,
    MerchantDetection,
)


def make_transaction(
    id: str = "txn-1",
    amount: str = "-15.99",
    description: str = "NETFLIX.COM 866-579-7172",
    category: str | None = "Entertainment",
    date: datetime = datetime(2026, 3, 3, 9, 0, tzinfo=UTC),
    account_id: str = "credit-1",
    status: str = "completed",
) -> BankTransaction:
    """Create a bank transaction for testing."""
    return BankTransaction(
        id=id,
        account_id=account_id,
        type="charge",
        amount=Decimal(amount),
        description=description,
        category=category,
        date=date,
        status=status,
    )


def make_rule(detection, **overrides) -> AutoSplitRule:
    fields = {
        "mission_id": "m1",
        "account_id": "credit-1",
        "detection": detection,
        "paid_by": "sarah",
        "participants": ["sarah", "teresa"],
    }
    fields.update(overrides)
    return AutoSplitRule(**fields)


class TestDetection:
    """Test each detection method."""

    def test_merchant_is_case_insensitive_substring(self):
        detection = MerchantDetection(merchant="Netflix")

        assert detection.matches(make_transaction())
        assert not detection.matches(make_transaction(description="SPOTIFY"))

    def test_contains(self):
        detection = ContainsDetection(text="579-7172")

        assert detection.matches(make_transaction())
        assert not detection.matches(make_transaction(description="NETFLIX.COM"))

    def test_exact_amount_uses_magnitude(self):
        detection = ExactAmountDetection(amount=Decimal("15.99"))

        assert detection.matches(make_transaction(amount="-15.99"))
        assert detection.matches(make_transaction(amount="15.99"))
        assert not detection.matches(make_transaction(amount="-15.98"))

    def test_amount_range_is_inclusive(self):
        detection = AmountRangeDetection(
            min_amount=Decimal("10.00"), max_amount=Decimal("20.00")
        )

        assert detection.matches(make_transaction(amount="-10.00"))
        assert detection.matches(make_transaction(amount="-20.00"))
        assert not detection.matches(make_transaction(amount="-20.01"))
        assert not detection.matches(make_transaction(amount="-9.99"))

    def test_amount_range_bounds_must_be_ordered(self):
        with pytest.raises(PydanticValidationError, match="must not exceed"):
            AmountRangeDetection(
                min_amount=Decimal("20.00"), max_amount=Decimal("10.00")
            )

    def test_category(self):
        detection = CategoryDetection(category="entertainment")

        assert detection.matches(make_transaction())
        assert not detection.matches(make_transaction(category="Groceries"))
        assert not detection.matches(make_transaction(category=None))

    def test_detection_parsed_from_dict(self):
        rule = make_rule({"method": "exactAmount", "amount": "15.99"})
        assert isinstance(rule.detection, ExactAmountDetection)

    def test_unknown_method_rejected(self):
        with pytest.raises(PydanticValidationError):
            make_rule({"method": "regex", "pattern": ".*"})


class TestMatchTransaction:
    """Test rule selection."""

    def test_matching_rule(self):
        rule = make_rule(MerchantDetection(merchant="netflix"))
        assert match_transaction(make_transaction(), [rule]) is rule

    def test_no_match(self):
        rule = make_rule(MerchantDetection(merchant="spotify"))
        assert match_transaction(make_transaction(), [rule]) is None

    def test_paused_rule_skipped(self):
        rule = make_rule(MerchantDetection(merchant="netflix"), status="paused")
        assert match_transaction(make_transaction(), [rule]) is None

    def test_other_account_skipped(self):
        rule = make_rule(MerchantDetection(merchant="netflix"), account_id="chequing-1")
        assert match_transaction(make_transaction(), [rule]) is None

    def test_first_rule_in_catalog_order_wins(self):
        first = make_rule(CategoryDetection(category="Entertainment"))
        second = make_rule(MerchantDetection(merchant="netflix"))

        assert match_transaction(make_transaction(), [first, second]) is first
        assert match_transaction(make_transaction(), [second, first]) is second

    def test_duplicate_falls_through_to_next_rule(self):
        first = make_rule(
            MerchantDetection(merchant="netflix"), last_matched_transaction_id="txn-1"
        )
        second = make_rule(CategoryDetection(category="Entertainment"))

        assert is_duplicate(first, make_transaction())
        assert match_transaction(make_transaction(), [first, second]) is second


class TestMonthlyThrottle:
    """Test that monthly rules match once per calendar month."""

    def test_same_month_is_throttled(self):
        rule = make_rule(
            MerchantDetection(merchant="netflix"),
            recurrence="monthly",
            last_matched_at=datetime(2026, 3, 3, 9, 0, tzinfo=UTC),
            last_matched_transaction_id="txn-1",
        )
        later = make_transaction(id="txn-2", date=datetime(2026, 3, 20, tzinfo=UTC))

        assert is_throttled(rule, later)
        assert match_transaction(later, [rule]) is None

    def test_next_month_matches(self):
        rule = make_rule(
            MerchantDetection(merchant="netflix"),
            recurrence="monthly",
            last_matched_at=datetime(2026, 3, 3, 9, 0, tzinfo=UTC),
        )
        next_month = make_transaction(id="txn-3", date=datetime(2026, 4, 2, tzinfo=UTC))

        assert not is_throttled(rule, next_month)
        assert match_transaction(next_month, [rule]) is rule

    def test_same_month_previous_year_matches(self):
        rule = make_rule(
            MerchantDetection(merchant="netflix"),
            recurrence="monthly",
            last_matched_at=datetime(2025, 3, 3, tzinfo=UTC),
        )
        assert not is_throttled(rule, make_transaction())

    def test_non_monthly_rule_not_throttled(self):
        rule = make_rule(
            MerchantDetection(merchant="netflix"),
            recurrence="weekly",
            last_matched_at=datetime(2026, 3, 1, tzinfo=UTC),
        )
        assert not is_throttled(rule, make_transaction())


class TestRecentCompleted:
    """Test the lookback window."""

    def test_filters_and_sorts(self):
        now = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)
        transactions = [
            make_transaction(id="new", date=datetime(2026, 3, 8, tzinfo=UTC)),
            make_transaction(id="old", date=datetime(2026, 1, 1, tzinfo=UTC)),
            make_transaction(
                id="pending", date=datetime(2026, 3, 9, tzinfo=UTC), status="pending"
            ),
            make_transaction(id="mid", date=datetime(2026, 2, 20, tzinfo=UTC)),
        ]

        recent = recent_completed(transactions, now, lookback_days=30)

        assert [t.id for t in recent] == ["mid", "new"]

    def test_naive_dates_read_as_utc(self):
        transaction = make_transaction(date=datetime(2026, 3, 9))
        assert transaction.date.tzinfo is not None

        now = datetime(2026, 3, 10, tzinfo=UTC)
        assert recent_completed([transaction], now, lookback_days=30) == [transaction]
