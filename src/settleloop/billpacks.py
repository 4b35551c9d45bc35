"""Monthly consolidated totals for bill packs."""

import calendar
import logging
from collections.abc import Iterable
from datetime import UTC, date, datetime, time
from decimal import Decimal

from .models import AutoSplitRule, BillPack, Mission, MonthlyTotal

logger = logging.getLogger(__name__)


def period_start_for(moment: date | datetime) -> date:
    """First day of the calendar month containing `moment`."""
    return date(moment.year, moment.month, 1)


def add_month(day: date) -> date:
    """Same day next month, clamped to the month's length."""
    year, month = (day.year + 1, 1) if day.month == 12 else (day.year, day.month + 1)
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def period_bounds(period_start: date) -> tuple[datetime, datetime]:
    """UTC half-open interval [start, start + 1 month)."""
    start = datetime.combine(period_start, time.min, tzinfo=UTC)
    end = datetime.combine(add_month(period_start), time.min, tzinfo=UTC)
    return start, end


def collecting_rules(
    pack: BillPack, rules: Iterable[AutoSplitRule]
) -> list[AutoSplitRule]:
    """Active rules in the pack that take part in the monthly request."""
    return [
        rule
        for rule in rules
        if rule.bill_pack_id == pack.id
        and rule.status == "active"
        and rule.include_in_monthly_request
    ]


def monthly_total(
    pack: BillPack,
    rules: Iterable[AutoSplitRule],
    mission: Mission,
    period_start: date,
) -> MonthlyTotal:
    """
    Sum a bill pack's imported expenses for one month.

    Only expenses created by the pack's collecting rules inside
    [period_start, period_start + 1 month) count. The payer's own share is
    left out of `by_member` since nobody owes themself.

    Args:
        pack: The bill pack
        rules: Rule catalog (filtered to the pack here)
        mission: The pack's mission
        period_start: First day of the period

    Returns:
        Total billed plus what each non-paying participant owes
    """
    rule_ids = {rule.id for rule in collecting_rules(pack, rules)}
    start, end = period_bounds(period_start)

    total = Decimal("0.00")
    by_member: dict[str, Decimal] = {}

    for expense in mission.expenses:
        if expense.source_rule_id not in rule_ids:
            continue
        if not start <= expense.created_at < end:
            continue

        total += expense.amount
        for split in expense.splits:
            if split.member_id == expense.paid_by:
                continue
            by_member[split.member_id] = (
                by_member.get(split.member_id, Decimal("0.00")) + split.amount
            )

    logger.debug(
        f"Bill pack {pack.id} total for {period_start:%Y-%m}: ${total:.2f} "
        f"across {len(by_member)} member(s)"
    )
    return MonthlyTotal(total=total, by_member=by_member)


def exceeds_safety_limit(pack: BillPack, total: Decimal) -> bool:
    """True if the total must be reviewed by a person before sending."""
    return pack.safety_limit is not None and total > pack.safety_limit
