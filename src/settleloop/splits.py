"""Cent-exact split generation and validation for expenses.

All arithmetic that has to add up exactly is done in integer cents. Dollar
amounts are only produced at the edges, so a split never leaks a cent.
"""

import logging
from collections.abc import Sequence
from decimal import ROUND_HALF_UP, Decimal

from .exceptions import ValidationError
from .models import AutoSplitRule, Expense, Share, SplitType, ValidationResult

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
TOLERANCE = Decimal("0.01")  # one cent, or 0.01 percentage points
HUNDRED = Decimal("100")


def to_cents(amount: Decimal) -> int:
    """
    Convert Decimal dollars to integer cents.
    Uses ROUND_HALF_UP for consistency.

    Args:
        amount: Dollar amount as Decimal

    Returns:
        Amount in cents (integer)
    """
    cents = Decimal(amount) * 100
    return int(cents.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    """Convert integer cents back to a 2-decimal Decimal."""
    return (Decimal(cents) / 100).quantize(CENT)


def round_money(amount: Decimal) -> Decimal:
    """Round a Decimal to whole cents (ROUND_HALF_UP)."""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def distribute_cents(total_cents: int, count: int) -> list[int]:
    """
    Divide cents evenly, handing the remainder out one cent at a time.

    The first `total_cents % count` slots get the extra cent, so the result
    always sums to `total_cents`.
    """
    base, remainder = divmod(total_cents, count)
    return [base + 1 if index < remainder else base for index in range(count)]


def default_percents(count: int) -> list[Decimal]:
    """Equal percentages (2 decimals) that sum to exactly 100."""
    base = round_money(HUNDRED / count)
    percents = [base] * count
    percents[0] += HUNDRED - base * count
    return percents


def percent_share_amounts(
    total: Decimal, percents: Sequence[Decimal | None]
) -> list[Decimal]:
    """
    Turn percentages into dollar amounts that sum exactly to `total`.

    Each amount is `round(total * percent / 100, 2)`. Whatever the rounding
    leaves over is placed on the first share.

    Args:
        total: Expense total
        percents: One percentage per share (None counts as 0)

    Returns:
        Dollar amounts, same order as `percents`
    """
    amounts = [round_money(total * (percent or 0) / HUNDRED) for percent in percents]
    if not amounts:
        return amounts

    residual = to_cents(total) - sum(to_cents(amount) for amount in amounts)
    if residual:
        amounts[0] = from_cents(to_cents(amounts[0]) + residual)
        logger.debug(f"Applied rounding adjustment: {residual} cent(s) to first share")

    return amounts


def generate_splits(
    participant_ids: Sequence[str], mode: SplitType, total: Decimal
) -> list[Share]:
    """
    Create default shares for an expense.

    - EQUAL: integer-cent division, remainder cents to the first participants
    - AMOUNT: every share starts at zero for the caller to fill in
    - PERCENT: equal percentages with derived amounts

    Args:
        participant_ids: Members included in the split, in display order
        mode: Split mode
        total: Expense total

    Returns:
        Shares in participant order (empty when there are no participants)
    """
    if not participant_ids:
        return []

    if mode == "EQUAL":
        cents = distribute_cents(to_cents(total), len(participant_ids))
        return [
            Share(member_id=member_id, amount=from_cents(share_cents))
            for member_id, share_cents in zip(participant_ids, cents, strict=True)
        ]

    if mode == "AMOUNT":
        return [
            Share(member_id=member_id, amount=Decimal("0.00"))
            for member_id in participant_ids
        ]

    percents = default_percents(len(participant_ids))
    amounts = percent_share_amounts(total, percents)
    return [
        Share(member_id=member_id, amount=amount, percent=percent)
        for member_id, amount, percent in zip(
            participant_ids, amounts, percents, strict=True
        )
    ]


def validate_expense(expense: Expense) -> ValidationResult:
    """
    Check an expense's shares against its split mode.

    Rules:
    - EQUAL: shares sum to the total and each is within a cent of total / n
    - AMOUNT: shares sum to the total (within a cent)
    - PERCENT: percentages sum to 100 (within 0.01)
    """
    splits = expense.splits
    if not splits:
        return _invalid("At least one member must be included in the split")

    member_ids = [split.member_id for split in splits]
    if len(set(member_ids)) != len(member_ids):
        return _invalid("Each member can appear only once in a split")

    if any(split.amount < 0 for split in splits):
        return _invalid("Split amounts cannot be negative")

    total = expense.amount
    split_total = sum((split.amount for split in splits), Decimal("0"))

    if expense.split_type == "EQUAL":
        if abs(split_total - total) > TOLERANCE:
            return _invalid(
                f"Equal split total (${split_total:.2f}) must equal "
                f"expense amount (${total:.2f})"
            )
        expected = total / len(splits)
        for split in splits:
            if abs(split.amount - expected) > TOLERANCE:
                return _invalid("Equal split amounts must match")

    elif expense.split_type == "AMOUNT":
        if abs(split_total - total) > TOLERANCE:
            return _invalid(
                f"Split amounts must total ${total:.2f} (got ${split_total:.2f})"
            )

    elif expense.split_type == "PERCENT":
        total_percent = sum((split.percent or 0 for split in splits), Decimal("0"))
        if abs(total_percent - HUNDRED) > TOLERANCE:
            return _invalid(f"Percentages must total 100% (got {total_percent:.2f}%)")

    return ValidationResult(valid=True)


def ensure_valid(expense: Expense) -> None:
    """Raise ValidationError naming the broken invariant, if any."""
    result = validate_expense(expense)
    if not result.valid:
        raise ValidationError(result.error)


def absorb_residual(expense: Expense) -> Expense:
    """
    Make an accepted expense's shares add up to its total exactly.

    Validation lets EQUAL and AMOUNT shares be a cent off the total. That cent
    goes onto the payer's share (or the largest share when the payer has none
    or it would turn negative), so every expense conserves money on its own.
    PERCENT amounts are always rederived from percentages and are left alone.

    Returns:
        The adjusted expense (the original when nothing is left over)
    """
    if expense.split_type == "PERCENT" or not expense.splits:
        return expense

    residual = to_cents(expense.amount) - sum(
        to_cents(split.amount) for split in expense.splits
    )
    if not residual:
        return expense

    splits = [split.model_copy() for split in expense.splits]
    target = next((s for s in splits if s.member_id == expense.paid_by), None)
    if target is None or to_cents(target.amount) + residual < 0:
        target = max(splits, key=lambda split: split.amount)
    target.amount = from_cents(to_cents(target.amount) + residual)

    logger.debug(
        f"Absorbed {residual} cent(s) on {target.member_id}'s share "
        f"of expense {expense.id}"
    )
    return expense.model_copy(update={"splits": splits})


def _invalid(error: str) -> ValidationResult:
    return ValidationResult(valid=False, error=error)


def rule_splits(rule: AutoSplitRule, total: Decimal) -> tuple[list[Share], str | None]:
    """
    Split a matched transaction total according to an AutoSplit rule.

    Fixed-amount rules are trusted as configured. If their amounts don't add
    up to the total, the difference lands on the payer's own share and a
    configuration warning is returned instead of failing the import.

    Args:
        rule: The matched rule
        total: Absolute transaction amount

    Returns:
        Tuple of (shares, configuration_warning)
    """
    if rule.split_type == "EQUAL":
        return generate_splits(rule.participants, "EQUAL", total), None

    if rule.split_type == "PERCENT":
        amounts = percent_share_amounts(total, rule.split_values)
        shares = [
            Share(member_id=member_id, amount=amount, percent=percent)
            for member_id, amount, percent in zip(
                rule.participants, amounts, rule.split_values, strict=True
            )
        ]
        return shares, None

    shares = [
        Share(member_id=member_id, amount=round_money(value))
        for member_id, value in zip(rule.participants, rule.split_values, strict=True)
    ]
    configured = sum((share.amount for share in shares), Decimal("0"))
    residual = to_cents(total) - to_cents(configured)

    warning = None
    if abs(residual) > 1:
        warning = (
            f"AutoSplit rule {rule.id}: fixed amounts (${configured:.2f}) "
            f"don't match transaction amount (${total:.2f})"
        )
        logger.warning(warning)

    if residual:
        _add_to_member(shares, rule.paid_by, residual)

    return shares, warning


def drop_member(expense: Expense, member_id: str) -> Expense:
    """
    Give a removed member zero weight in an existing expense.

    EQUAL expenses are re-split among the remaining participants, PERCENT
    expenses have their percentages renormalised, and AMOUNT expenses move
    the removed amount onto the payer. If nobody is left, the payer carries
    the whole expense.

    Returns:
        The updated expense (the original when the member had no share)
    """
    remaining = [split for split in expense.splits if split.member_id != member_id]
    if len(remaining) == len(expense.splits):
        return expense

    if not remaining:
        percent = HUNDRED if expense.split_type == "PERCENT" else None
        splits = [
            Share(member_id=expense.paid_by, amount=expense.amount, percent=percent)
        ]
    elif expense.split_type == "EQUAL":
        splits = generate_splits(
            [split.member_id for split in remaining], "EQUAL", expense.amount
        )
    elif expense.split_type == "PERCENT":
        splits = _renormalised_percent_splits(remaining, expense.amount)
    else:
        removed_cents = to_cents(expense.amount) - sum(
            to_cents(split.amount) for split in remaining
        )
        splits = [split.model_copy() for split in remaining]
        if removed_cents:
            _add_to_member(splits, expense.paid_by, removed_cents)

    return expense.model_copy(update={"splits": splits})


def _renormalised_percent_splits(remaining: list[Share], total: Decimal) -> list[Share]:
    weights = [split.percent or Decimal("0") for split in remaining]
    weight_total = sum(weights, Decimal("0"))
    if weight_total == 0:
        percents = default_percents(len(remaining))
    else:
        percents = [round_money(weight * HUNDRED / weight_total) for weight in weights]
        percents[0] += HUNDRED - sum(percents, Decimal("0"))

    amounts = percent_share_amounts(total, percents)
    return [
        Share(member_id=split.member_id, amount=amount, percent=percent)
        for split, amount, percent in zip(remaining, amounts, percents, strict=True)
    ]


def _add_to_member(shares: list[Share], member_id: str, cents: int) -> None:
    for share in shares:
        if share.member_id == member_id:
            share.amount = from_cents(to_cents(share.amount) + cents)
            return
    shares.append(Share(member_id=member_id, amount=from_cents(cents)))
