"""Balance computation for a mission.

Balances are always derived from the full expense history. A member's stored
`balance` field is output only and is never read here.
"""

import logging
from decimal import Decimal

from .exceptions import ConservationError
from .models import Member, Mission
from .splits import TOLERANCE, from_cents, percent_share_amounts, to_cents

logger = logging.getLogger(__name__)


def compute_balances(mission: Mission) -> list[Member]:
    """
    Calculate every member's net balance from the mission's expenses.

    Rules:
    - The payer is credited with the full expense amount
    - Each share's member is debited by the share amount
    - PERCENT shares are recomputed from their percentages
    - Members without a share in an expense are not debited for it

    Positive = member is owed money, negative = member owes money.

    Args:
        mission: The mission to compute balances for

    Returns:
        Copies of the mission's members (same order) with fresh balances
    """
    balances_cents: dict[str, int] = {member.id: 0 for member in mission.members}

    for expense in mission.expenses:
        total_cents = to_cents(expense.amount)
        balances_cents[expense.paid_by] = (
            balances_cents.get(expense.paid_by, 0) + total_cents
        )

        if expense.split_type == "PERCENT":
            amounts = percent_share_amounts(
                expense.amount, [split.percent for split in expense.splits]
            )
        else:
            amounts = [split.amount for split in expense.splits]

        for split, amount in zip(expense.splits, amounts, strict=True):
            balances_cents[split.member_id] = balances_cents.get(
                split.member_id, 0
            ) - to_cents(amount)

    return [
        member.model_copy(update={"balance": from_cents(balances_cents[member.id])})
        for member in mission.members
    ]


def balance_sum(members: list[Member]) -> Decimal:
    return sum((member.balance for member in members), Decimal("0"))


def validate_balances(members: list[Member]) -> bool:
    """Check that balances sum to zero (within a cent)."""
    return abs(balance_sum(members)) <= TOLERANCE


def check_conservation(members: list[Member], context: str = "") -> None:
    """
    Raise if money was created or destroyed.

    Raises:
        ConservationError: If balances don't sum to zero within a cent
    """
    if not validate_balances(members):
        total = balance_sum(members)
        where = f" after {context}" if context else ""
        logger.error(f"Balances sum to {total}{where}")
        raise ConservationError(
            f"Member balances must sum to zero{where}, got ${total:.2f}. "
            f"This indicates a ledger computation defect."
        )


def get_debtors(members: list[Member]) -> list[Member]:
    """Members who need to send money (negative balance)."""
    return [member for member in members if member.balance < -TOLERANCE]


def get_creditors(members: list[Member]) -> list[Member]:
    """Members who should receive money (positive balance)."""
    return [member for member in members if member.balance > TOLERANCE]
