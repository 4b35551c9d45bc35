"""Settlement planning: turn balances into a short list of transfers."""

import logging
from decimal import Decimal

from .models import Member, SettlementSummary, Transfer, UserPosition
from .splits import CENT, from_cents, to_cents

logger = logging.getLogger(__name__)


def optimize_settlements(members: list[Member]) -> SettlementSummary:
    """
    Compute transfers that bring every balance to zero.

    Greedy largest-first matching. It is deterministic but not guaranteed to
    find the theoretical minimum number of transfers.

    Algorithm:
    1. Drop members whose balance is smaller than one cent
    2. Separate debtors (negative balance) and creditors (positive balance)
    3. Sort both by magnitude, largest first (ties keep member order)
    4. Repeatedly move min(debt, credit) from the front debtor to the front
       creditor, advancing whichever side is paid off

    Args:
        members: Members with computed balances

    Returns:
        Settlement summary with at most len(members) - 1 transfers
    """
    settling = [member for member in members if abs(member.balance) >= CENT]
    debtors = [
        [member.id, -to_cents(member.balance)]
        for member in settling
        if member.balance < 0
    ]
    creditors = [
        [member.id, to_cents(member.balance)]
        for member in settling
        if member.balance > 0
    ]

    # list.sort is stable, also with reverse=True
    debtors.sort(key=lambda entry: entry[1], reverse=True)
    creditors.sort(key=lambda entry: entry[1], reverse=True)

    transfers: list[Transfer] = []
    sent_cents = 0
    debtor_index = 0
    creditor_index = 0

    while debtor_index < len(debtors) and creditor_index < len(creditors):
        debtor = debtors[debtor_index]
        creditor = creditors[creditor_index]

        amount_cents = min(debtor[1], creditor[1])
        transfers.append(
            Transfer(
                from_member_id=debtor[0],
                to_member_id=creditor[0],
                amount=from_cents(amount_cents),
            )
        )
        sent_cents += amount_cents

        debtor[1] -= amount_cents
        creditor[1] -= amount_cents

        if debtor[1] == 0:
            debtor_index += 1
        if creditor[1] == 0:
            creditor_index += 1

    total = from_cents(sent_cents)
    logger.debug(f"Planned {len(transfers)} transfers moving ${total:.2f}")

    return SettlementSummary(
        transfers=transfers,
        total_sending=total,
        total_receiving=total,
        net=Decimal("0.00"),
    )


def user_position(summary: SettlementSummary, member_id: str) -> UserPosition:
    """
    Pick out the transfers a specific member sends and receives.

    Args:
        summary: Settlement plan
        member_id: The member acting as the current user

    Returns:
        The member's outgoing and incoming legs with their totals
    """
    sends = [t for t in summary.transfers if t.from_member_id == member_id]
    requests = [t for t in summary.transfers if t.to_member_id == member_id]
    return UserPosition(
        member_id=member_id,
        sends=sends,
        requests=requests,
        total_sending=sum((t.amount for t in sends), Decimal("0.00")),
        total_receiving=sum((t.amount for t in requests), Decimal("0.00")),
    )
