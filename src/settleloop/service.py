"""Ledger service that owns missions, AutoSplit rules and bill packs.

Every mutation is applied to a candidate copy first, balances are recomputed
from the full expense history, conservation is checked, and only then is the
change committed (and written through to the database when one is attached).
"""

import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any

from .balances import check_conservation, compute_balances
from .billpacks import (
    add_month,
    exceeds_safety_limit,
    monthly_total,
    period_start_for,
)
from .clients.ports import NotificationSink, TransactionFeed
from .config import Settings
from .db import Database
from .exceptions import ConfigurationWarning, NotFoundError, ValidationError
from .matcher import match_transaction, recent_completed
from .models import (
    AutoSplitRule,
    BankTransaction,
    BillPack,
    Expense,
    Member,
    Mission,
    MonthlyCollection,
    MonthlyTotal,
    Notification,
    SettlementSummary,
    Share,
    SplitType,
    as_utc,
    utcnow,
)
from .optimizer import optimize_settlements, user_position
from .splits import (
    TOLERANCE,
    absorb_residual,
    drop_member,
    ensure_valid,
    generate_splits,
    round_money,
    rule_splits,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


class LedgerService:
    """Service for shared-expense missions and their automation."""

    def __init__(
        self,
        settings: Settings,
        transactions: TransactionFeed,
        notifications: NotificationSink,
        database: Database | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize the ledger service.

        Args:
            settings: Application settings
            transactions: Bank transaction feed (read, plus appends)
            notifications: Sink for user notifications
            database: Optional store; existing state is loaded from it
            clock: Returns the current time (defaults to UTC now)
        """
        self.settings = settings
        self.transactions = transactions
        self.notifications = notifications
        self.db = database
        self.clock = clock or utcnow

        self.missions: list[Mission] = []
        self.rules: list[AutoSplitRule] = []
        self.bill_packs: list[BillPack] = []
        self.warnings: list[ConfigurationWarning] = []

        if database is not None:
            self._load()

    def _load(self):
        """Load state from the database, recomputing every balance."""
        assert self.db is not None
        self.missions = self.db.get_all_missions()
        self.rules = self.db.get_all_rules()
        self.bill_packs = self.db.get_all_bill_packs()

        for mission in self.missions:
            mission.members = self._displayed_balances(mission)

        logger.info(
            f"Loaded {len(self.missions)} missions, {len(self.rules)} rules, "
            f"{len(self.bill_packs)} bill packs"
        )

    # ========================================================================
    # Missions
    # ========================================================================

    def create_mission(self, title: str) -> Mission:
        """Create an empty, active mission."""
        mission = Mission(title=title, created_at=self.clock())
        self.missions.append(mission)
        self._save_mission(mission)
        logger.info(f"Created mission {mission.id} ({title})")
        return mission

    def get_mission(self, mission_id: str) -> Mission:
        """
        Get a mission by id.

        Raises:
            NotFoundError: If no mission has this id
        """
        mission = self._find_mission(mission_id)
        if mission is None:
            raise NotFoundError("mission", mission_id)
        return mission

    def list_missions(self) -> list[Mission]:
        return list(self.missions)

    def update_mission_title(self, mission_id: str, title: str) -> Mission:
        mission = self.get_mission(mission_id)
        mission.title = title
        self._save_mission(mission)
        return mission

    def delete_mission(self, mission_id: str):
        """Delete a mission together with its rules and bill packs."""
        mission = self.get_mission(mission_id)

        self.missions = [m for m in self.missions if m.id != mission.id]
        self.rules = [r for r in self.rules if r.mission_id != mission.id]
        self.bill_packs = [p for p in self.bill_packs if p.mission_id != mission.id]

        if self.db is not None:
            self.db.delete_mission(mission.id)

        logger.info(f"Deleted mission {mission.id} with its rules and bill packs")

    # ========================================================================
    # Members
    # ========================================================================

    def add_member(
        self, mission_id: str, name: str, email: str | None = None
    ) -> Member:
        """Add a member to a mission."""
        mission = self.get_mission(mission_id)
        member = Member(name=name, email=email)
        self._apply(mission, "adding a member", members=[*mission.members, member])
        return self._member(mission, member.id)

    def update_member(
        self,
        mission_id: str,
        member_id: str,
        name: str | None = None,
        email: str | None = None,
    ) -> Member:
        """Rename a member or change their contact email."""
        mission = self.get_mission(mission_id)
        member = self._member(mission, member_id)
        if name is not None:
            member.name = name
        if email is not None:
            member.email = email
        self._save_mission(mission)
        return member

    def remove_member(self, mission_id: str, member_id: str):
        """
        Remove a member from a mission.

        The member's shares in existing expenses get zero weight: the
        remaining participants absorb them (see splits.drop_member). Rules
        that involve the member are adjusted or paused.

        Raises:
            NotFoundError: If the mission or member doesn't exist
            ValidationError: If the member paid for any recorded expense
        """
        mission = self.get_mission(mission_id)
        member = self._member(mission, member_id)

        paid = [e for e in mission.expenses if e.paid_by == member_id]
        if paid:
            raise ValidationError(
                f"{member.name} paid for {len(paid)} recorded expense(s); "
                f"remove or reassign them before removing the member"
            )

        self._apply(
            mission,
            "removing a member",
            members=[m for m in mission.members if m.id != member_id],
            expenses=[drop_member(e, member_id) for e in mission.expenses],
        )
        self._detach_member_from_rules(mission.id, member_id)
        logger.info(f"Removed member {member_id} from mission {mission.id}")

    def _detach_member_from_rules(self, mission_id: str, member_id: str):
        for rule in self.get_rules_for_mission(mission_id):
            involved = rule.paid_by == member_id or member_id in rule.participants
            if not involved:
                continue

            remaining = [p for p in rule.participants if p != member_id]
            if rule.split_type == "EQUAL" and rule.paid_by != member_id and remaining:
                rule.participants = remaining
            elif rule.status == "active":
                rule.status = "paused"
                logger.warning(
                    f"Paused rule {rule.id}: it depends on removed member {member_id}"
                )
            self._save_rule(rule)

    # ========================================================================
    # Expenses
    # ========================================================================

    def add_expense(
        self,
        mission_id: str,
        title: str,
        amount: Decimal,
        paid_by: str,
        split_type: SplitType = "EQUAL",
        splits: list[Share] | None = None,
        participant_ids: list[str] | None = None,
    ) -> Expense:
        """
        Record a new expense.

        When `splits` is omitted, default shares are generated for
        `participant_ids` (all members if that's omitted too).

        Args:
            mission_id: Mission to add the expense to
            title: Description shown in the ledger
            amount: Expense total
            paid_by: Member who paid
            split_type: EQUAL, AMOUNT or PERCENT
            splits: Explicit shares
            participant_ids: Members to split between when generating shares

        Returns:
            The created expense

        Raises:
            ValidationError: If the payer is missing or the split is invalid
        """
        mission = self.get_mission(mission_id)
        total = round_money(amount)

        if splits is None:
            if participant_ids is None:
                participant_ids = [m.id for m in mission.members]
            splits = generate_splits(participant_ids, split_type, total)

        expense = Expense(
            title=title,
            amount=total,
            paid_by=paid_by,
            split_type=split_type,
            splits=splits,
            created_at=self.clock(),
        )
        self._check_expense(mission, expense)
        expense = absorb_residual(expense)

        self._apply(mission, "adding an expense", expenses=[*mission.expenses, expense])
        logger.info(
            f"Added expense {expense.id} (${total:.2f}) to mission {mission.id}"
        )
        return expense

    def update_expense(
        self, mission_id: str, expense_id: str, **updates: Any
    ) -> Expense:
        """
        Update fields of an existing expense.

        Changing the amount of an EQUAL expense without passing new splits
        re-splits it among the same participants.
        """
        mission = self.get_mission(mission_id)
        expense = mission.get_expense(expense_id)
        if expense is None:
            raise NotFoundError("expense", expense_id)

        if "amount" in updates:
            updates["amount"] = round_money(updates["amount"])

        candidate = Expense.model_validate({**expense.model_dump(), **updates})
        if "splits" not in updates and candidate.split_type == "EQUAL":
            candidate.splits = generate_splits(
                [split.member_id for split in expense.splits], "EQUAL", candidate.amount
            )

        self._check_expense(mission, candidate)
        candidate = absorb_residual(candidate)

        self._apply(
            mission,
            "updating an expense",
            expenses=[candidate if e.id == expense_id else e for e in mission.expenses],
        )
        return candidate

    def remove_expense(self, mission_id: str, expense_id: str):
        """Delete an expense."""
        mission = self.get_mission(mission_id)
        if mission.get_expense(expense_id) is None:
            raise NotFoundError("expense", expense_id)

        self._apply(
            mission,
            "removing an expense",
            expenses=[e for e in mission.expenses if e.id != expense_id],
        )

    def _check_expense(self, mission: Mission, expense: Expense):
        if not expense.paid_by:
            raise ValidationError("Select who paid for this expense")

        member_ids = mission.member_ids()
        if expense.paid_by not in member_ids:
            raise ValidationError(f"Payer {expense.paid_by} is not a member")
        for split in expense.splits:
            if split.member_id not in member_ids:
                raise ValidationError(
                    f"Member {split.member_id} is not in this mission"
                )

        ensure_valid(expense)

    # ========================================================================
    # Balances and settlement
    # ========================================================================

    def get_balances(self, mission_id: str) -> list[Member]:
        """
        Get members with balances computed from the expense history.

        A settled mission shows every balance as zero.
        """
        return self._displayed_balances(self.get_mission(mission_id))

    def get_settlement_plan(self, mission_id: str) -> SettlementSummary:
        """Compute the transfers that would settle a mission."""
        return optimize_settlements(self.get_balances(mission_id))

    def initiate_settlement(self, mission_id: str) -> Mission:
        """Start the settlement clock used by reminders."""
        mission = self.get_mission(mission_id)
        mission.settlement_initiated_at = self.clock()
        self._save_mission(mission)
        return mission

    def confirm_settlement(
        self,
        mission_id: str,
        current_user_id: str,
        account_id: str | None = None,
    ) -> SettlementSummary:
        """
        Record the current user's settlement legs and close the mission.

        Incoming transfers become deposits into `account_id`, outgoing ones
        become transfers out of it. Each leg produces a notification.

        Args:
            mission_id: Mission to settle
            current_user_id: Member acting as the logged-in user
            account_id: Bank account to record against (defaults to settings)

        Returns:
            The settlement plan that was confirmed

        Raises:
            ValidationError: If the mission is already settled
        """
        mission = self.get_mission(mission_id)
        if mission.status == "settled":
            raise ValidationError("This ledger is already settled")

        self._member(mission, current_user_id)
        account_id = account_id or self.settings.default_account_id
        now = self.clock()

        summary = self.get_settlement_plan(mission_id)
        position = user_position(summary, current_user_id)

        for transfer in position.requests:
            sender = self._member(mission, transfer.from_member_id)
            self.transactions.append_transaction(
                BankTransaction(
                    account_id=account_id,
                    type="deposit",
                    amount=transfer.amount,
                    description=f"E-Transfer from {sender.name}",
                    category="Transfer",
                    date=now,
                    status="completed",
                    sender=sender.name,
                )
            )
            self.notifications.notify(
                Notification(
                    type="deposit",
                    title="Payment Received",
                    message=(
                        f"{sender.name} sent you ${transfer.amount:.2f} via "
                        f"e-Transfer. Deposited to account {account_id}"
                    ),
                    amount=transfer.amount,
                    sender_name=sender.name,
                    timestamp=now,
                )
            )

        for transfer in position.sends:
            recipient = self._member(mission, transfer.to_member_id)
            self.transactions.append_transaction(
                BankTransaction(
                    account_id=account_id,
                    type="transfer",
                    amount=-transfer.amount,
                    description=f"E-Transfer to {recipient.name}",
                    category="Transfer",
                    date=now,
                    status="completed",
                    recipient=recipient.name,
                )
            )
            self.notifications.notify(
                Notification(
                    type="payment",
                    title="Payment Sent",
                    message=f"You sent ${transfer.amount:.2f} to {recipient.name}",
                    amount=transfer.amount,
                    timestamp=now,
                )
            )

        self.mark_settled(mission_id)
        logger.info(
            f"Settled mission {mission_id}: {len(position.requests)} incoming, "
            f"{len(position.sends)} outgoing legs for {current_user_id}"
        )
        return summary

    def mark_settled(self, mission_id: str) -> Mission:
        """Lock a mission; balances show as zero until it is reopened."""
        mission = self.get_mission(mission_id)
        mission.status = "settled"
        mission.settled_at = self.clock()
        mission.members = self._displayed_balances(mission)
        self._save_mission(mission)
        return mission

    def reopen_mission(self, mission_id: str) -> Mission:
        """Reopen a settled mission; balances are recomputed from expenses."""
        mission = self.get_mission(mission_id)
        mission.status = "active"
        mission.settled_at = None
        mission.settlement_initiated_at = None
        mission.members = self._displayed_balances(mission)
        self._save_mission(mission)
        return mission

    def send_settlement_reminders(
        self, now: datetime | None = None
    ) -> list[Notification]:
        """
        Remind members who still owe money on a stalled settlement.

        A reminder goes out when the settlement was initiated more than
        `reminder_after_hours` ago, the member owes money and has an email,
        and they haven't been reminded within `reminder_interval_hours`.

        Returns:
            The reminder notifications that were sent
        """
        now = self._now(now)
        initiated_before = now - timedelta(hours=self.settings.reminder_after_hours)
        reminded_before = now - timedelta(hours=self.settings.reminder_interval_hours)
        sent: list[Notification] = []

        for mission in self.missions:
            if mission.status != "active" or mission.settlement_initiated_at is None:
                continue
            if mission.settlement_initiated_at >= initiated_before:
                continue

            balances = {m.id: m.balance for m in compute_balances(mission)}
            for member in mission.members:
                if balances[member.id] >= -TOLERANCE or not member.email:
                    continue
                last = member.last_reminder_sent
                if last is not None and last >= reminded_before:
                    continue

                owed = -balances[member.id]
                sent.append(
                    self.notifications.notify(
                        Notification(
                            type="info",
                            title="Settlement Reminder",
                            message=(
                                f"Reminder sent to {member.name} ({member.email}) "
                                f"for ${owed:.2f} owed in {mission.title}"
                            ),
                            amount=owed,
                            timestamp=now,
                        )
                    )
                )
                member.last_reminder_sent = now
                self._save_mission(mission)

        if sent:
            logger.info(f"Sent {len(sent)} settlement reminder(s)")
        return sent

    # ========================================================================
    # AutoSplit rules
    # ========================================================================

    def create_rule(self, rule: AutoSplitRule) -> AutoSplitRule:
        """
        Add a rule to the end of the catalog.

        Raises:
            NotFoundError: If the mission or bill pack doesn't exist
            ValidationError: If the payer or a participant isn't a member
        """
        self._check_rule(rule)
        self.rules.append(rule)
        self._save_rule(rule)
        logger.info(f"Created rule {rule.id} ({rule.name or rule.detection.method})")
        return rule

    def create_rules_bulk(self, rules: list[AutoSplitRule]) -> list[AutoSplitRule]:
        """Add several rules at once; nothing is added if any is invalid."""
        for rule in rules:
            self._check_rule(rule)
        for rule in rules:
            self.rules.append(rule)
            self._save_rule(rule)
        logger.info(f"Created {len(rules)} rules")
        return rules

    def get_rule(self, rule_id: str) -> AutoSplitRule:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        raise NotFoundError("rule", rule_id)

    def get_rules_for_mission(self, mission_id: str) -> list[AutoSplitRule]:
        return [rule for rule in self.rules if rule.mission_id == mission_id]

    def get_rules_for_bill_pack(self, pack_id: str) -> list[AutoSplitRule]:
        return [rule for rule in self.rules if rule.bill_pack_id == pack_id]

    def update_rule(self, rule_id: str, **updates: Any) -> AutoSplitRule:
        """
        Update a rule in place in the catalog.

        The merged rule is validated again, so switching detection method or
        split mode requires the matching parameters.
        """
        rule = self.get_rule(rule_id)
        candidate = AutoSplitRule.model_validate({**rule.model_dump(), **updates})
        self._check_rule(candidate)

        index = self.rules.index(rule)
        self.rules[index] = candidate
        self._save_rule(candidate)
        return candidate

    def delete_rule(self, rule_id: str):
        rule = self.get_rule(rule_id)
        self.rules = [r for r in self.rules if r.id != rule.id]
        if self.db is not None:
            self.db.delete_rule(rule.id)

    def toggle_rule_status(self, rule_id: str) -> AutoSplitRule:
        """Switch a rule between active and paused."""
        rule = self.get_rule(rule_id)
        rule.status = "paused" if rule.status == "active" else "active"
        self._save_rule(rule)
        logger.info(f"Rule {rule.id} is now {rule.status}")
        return rule

    def _check_rule(self, rule: AutoSplitRule):
        mission = self.get_mission(rule.mission_id)
        if rule.bill_pack_id is not None:
            pack = self.get_bill_pack(rule.bill_pack_id)
            if pack.mission_id != mission.id:
                raise ValidationError(
                    f"Bill pack {pack.id} belongs to a different mission"
                )

        missing = self._unknown_members(mission, [rule.paid_by, *rule.participants])
        if missing:
            raise ValidationError(
                f"Rule refers to members not in this mission: {', '.join(missing)}"
            )

    def match_transaction(self, transaction: BankTransaction) -> AutoSplitRule | None:
        """Find the first active rule in the catalog that claims a transaction."""
        return match_transaction(transaction, self.rules)

    def check_transactions(self, now: datetime | None = None) -> list[Expense]:
        """
        Scan recent completed transactions and import matches as expenses.

        Safe to call repeatedly: already imported transactions are skipped.

        Args:
            now: Scan time (defaults to the service clock)

        Returns:
            Expenses created by this scan
        """
        now = self._now(now)
        recent = recent_completed(
            self.transactions.list_transactions(), now, self.settings.lookback_days
        )

        created: list[Expense] = []
        for transaction in recent:
            rule = self.match_transaction(transaction)
            if rule is None or not rule.actions.auto_create_expense:
                continue
            expense = self.create_expense_from_match(rule, transaction)
            if expense is not None:
                created.append(expense)

        if self.db is not None:
            self.db.set_last_scan_at(now)

        logger.info(
            f"Scanned {len(recent)} recent transactions, "
            f"imported {len(created)} expense(s)"
        )
        return created

    def create_expense_from_match(
        self, rule: AutoSplitRule, transaction: BankTransaction
    ) -> Expense | None:
        """
        Turn a matched transaction into an expense on the rule's mission.

        The transaction's absolute amount is split per the rule. The rule's
        match bookkeeping is updated afterwards.

        Returns:
            The new expense, or None if the transaction was already imported
            or the rule can no longer be applied
        """
        mission = self._find_mission(rule.mission_id)
        if mission is None:
            logger.warning(
                f"Rule {rule.id} points at missing mission {rule.mission_id}"
            )
            return None

        for existing in mission.expenses:
            if existing.imported_from == transaction.id:
                logger.debug(
                    f"Transaction {transaction.id} already imported "
                    f"as expense {existing.id}"
                )
                return None

        missing = self._unknown_members(mission, [rule.paid_by, *rule.participants])
        if missing:
            self._record_warning(
                f"AutoSplit rule {rule.id}: members {', '.join(missing)} are no "
                f"longer in mission {mission.id}; transaction {transaction.id} skipped"
            )
            return None

        total = round_money(abs(transaction.amount))
        shares, warning = rule_splits(rule, total)
        if warning:
            self._record_warning(warning)

        expense = Expense(
            title=rule.name or transaction.description,
            amount=total,
            paid_by=rule.paid_by,
            split_type=rule.split_type,
            splits=shares,
            created_at=self.clock(),
            imported_from=transaction.id,
            source_rule_id=rule.id,
        )
        self._apply(
            mission,
            f"importing transaction {transaction.id}",
            expenses=[*mission.expenses, expense],
        )

        rule.last_matched_at = transaction.date
        rule.last_matched_transaction_id = transaction.id
        rule.match_count += 1
        self._save_rule(rule)

        if rule.actions.auto_send_requests:
            self._request_shares(mission, expense)

        logger.info(
            f"Imported transaction {transaction.id} as expense {expense.id} "
            f"(${total:.2f}) via rule {rule.id}"
        )
        return expense

    def _request_shares(self, mission: Mission, expense: Expense):
        """Request each participant's share of an imported expense from them."""
        for split in expense.splits:
            if split.member_id == expense.paid_by or split.amount < TOLERANCE:
                continue
            member = self._member(mission, split.member_id)
            self.transactions.append_transaction(
                BankTransaction(
                    account_id=self.settings.default_account_id,
                    type="request",
                    amount=split.amount,
                    description=f"{expense.title} - your share",
                    category="Transfer",
                    date=expense.created_at,
                    status="pending",
                    recipient=member.name,
                )
            )
            self.notifications.notify(
                Notification(
                    type="info",
                    title="Request Sent",
                    message=(
                        f"Requested ${split.amount:.2f} from {member.name} "
                        f"for {expense.title}"
                    ),
                    amount=split.amount,
                    timestamp=expense.created_at,
                )
            )

    def _record_warning(self, message: str):
        logger.warning(message)
        self.warnings.append(ConfigurationWarning(message))

    # ========================================================================
    # Bill packs
    # ========================================================================

    def create_bill_pack(self, pack: BillPack) -> BillPack:
        self.get_mission(pack.mission_id)
        self.bill_packs.append(pack)
        self._save_bill_pack(pack)
        logger.info(f"Created bill pack {pack.id} ({pack.name})")
        return pack

    def get_bill_pack(self, pack_id: str) -> BillPack:
        for pack in self.bill_packs:
            if pack.id == pack_id:
                return pack
        raise NotFoundError("bill pack", pack_id)

    def get_bill_packs_for_mission(self, mission_id: str) -> list[BillPack]:
        return [pack for pack in self.bill_packs if pack.mission_id == mission_id]

    def update_bill_pack(self, pack_id: str, **updates: Any) -> BillPack:
        pack = self.get_bill_pack(pack_id)
        candidate = BillPack.model_validate({**pack.model_dump(), **updates})
        self.get_mission(candidate.mission_id)

        index = self.bill_packs.index(pack)
        self.bill_packs[index] = candidate
        self._save_bill_pack(candidate)
        return candidate

    def delete_bill_pack(self, pack_id: str):
        """Delete a bill pack. Its rules stay but leave the pack."""
        pack = self.get_bill_pack(pack_id)
        self.bill_packs = [p for p in self.bill_packs if p.id != pack.id]

        for rule in self.get_rules_for_bill_pack(pack.id):
            rule.bill_pack_id = None
            self._save_rule(rule)

        if self.db is not None:
            self.db.delete_bill_pack(pack.id)

    def calculate_monthly_total(self, pack_id: str, period_start: date) -> MonthlyTotal:
        """Sum a pack's imported expenses for the month starting at `period_start`."""
        pack = self.get_bill_pack(pack_id)
        mission = self.get_mission(pack.mission_id)
        return monthly_total(pack, self.rules, mission, period_start)

    def process_monthly_requests(
        self, mission_id: str, now: datetime | None = None
    ) -> list[MonthlyCollection]:
        """
        Send each bill pack's consolidated request for the previous month.

        A pack is due once the current day reaches its request day (clamped
        to the month's length) and it hasn't been sent for the period yet.
        Totals above the pack's safety limit are held for review and never
        sent automatically. Held periods stay on the pack until they are
        approved or dismissed, even after later months have been sent.

        Args:
            mission_id: Mission whose packs to process
            now: Run time (defaults to the service clock)

        Returns:
            One result per auto-sending pack
        """
        mission = self.get_mission(mission_id)
        now = self._now(now)
        this_month = period_start_for(now)
        period = _previous_month(this_month)
        results: list[MonthlyCollection] = []

        for pack in self.get_bill_packs_for_mission(mission.id):
            if pack.status != "active" or not pack.auto_send_monthly_request:
                continue

            last_day = (add_month(this_month) - timedelta(days=1)).day
            if now.day < min(pack.request_day_of_month, last_day):
                results.append(
                    MonthlyCollection(pack_id=pack.id, period=period, status="not_due")
                )
                continue

            last_sent = pack.last_request_period
            if last_sent is not None and period <= last_sent:
                results.append(
                    MonthlyCollection(
                        pack_id=pack.id, period=period, status="already_sent"
                    )
                )
                continue

            totals = monthly_total(pack, self.rules, mission, period)

            if exceeds_safety_limit(pack, totals.total):
                logger.warning(
                    f"Monthly request for pack {pack.id} (${totals.total:.2f}) exceeds "
                    f"safety limit ${pack.safety_limit:.2f}; holding for review"
                )
                if period not in pack.pending_review_periods:
                    pack.pending_review_periods.append(period)
                    self._save_bill_pack(pack)
                    self.notifications.notify(
                        Notification(
                            type="info",
                            title="Monthly Request Needs Review",
                            message=(
                                f"{pack.name} totals ${totals.total:.2f} for "
                                f"{period:%b %Y}, above the "
                                f"${pack.safety_limit:.2f} safety limit"
                            ),
                            amount=totals.total,
                            timestamp=now,
                        )
                    )
                results.append(
                    MonthlyCollection(
                        pack_id=pack.id,
                        period=period,
                        status="needs_review",
                        total=totals.total,
                        by_member=totals.by_member,
                    )
                )
                continue

            results.append(
                self._send_monthly_request(pack, mission, period, totals, now)
            )

        return results

    def approve_monthly_request(
        self, pack_id: str, period: date | None = None, now: datetime | None = None
    ) -> MonthlyCollection:
        """
        Send a monthly request that was held for review.

        Args:
            pack_id: Bill pack with held periods
            period: Held period to send (defaults to the oldest one)
            now: Send time (defaults to the service clock)

        Raises:
            ValidationError: If the period isn't waiting for review
        """
        pack = self.get_bill_pack(pack_id)
        period = self._held_period(pack, period)

        mission = self.get_mission(pack.mission_id)
        totals = monthly_total(pack, self.rules, mission, period)
        logger.info(f"Monthly request for pack {pack.id} approved for {period:%Y-%m}")
        return self._send_monthly_request(
            pack, mission, period, totals, self._now(now)
        )

    def dismiss_monthly_request(
        self, pack_id: str, period: date | None = None
    ) -> BillPack:
        """Drop a held period without sending anything for it."""
        pack = self.get_bill_pack(pack_id)
        period = self._held_period(pack, period)

        pack.pending_review_periods.remove(period)
        self._save_bill_pack(pack)
        logger.info(f"Monthly request for pack {pack.id} dismissed for {period:%Y-%m}")
        return pack

    def _held_period(self, pack: BillPack, period: date | None) -> date:
        if not pack.pending_review_periods:
            raise ValidationError(
                f"Bill pack {pack.name} has no request awaiting review"
            )
        if period is None:
            return pack.pending_review_periods[0]
        if period not in pack.pending_review_periods:
            raise ValidationError(
                f"Bill pack {pack.name} has no request awaiting review "
                f"for {period:%b %Y}"
            )
        return period

    def _send_monthly_request(
        self,
        pack: BillPack,
        mission: Mission,
        period: date,
        totals: MonthlyTotal,
        now: datetime,
    ) -> MonthlyCollection:
        for member_id, amount in totals.by_member.items():
            if amount <= TOLERANCE:
                continue
            member = mission.get_member(member_id)
            if member is None:
                continue

            if pack.mode in ("request-only", "send-request"):
                self.transactions.append_transaction(
                    BankTransaction(
                        account_id=self.settings.default_account_id,
                        type="request",
                        amount=amount,
                        description=f"Monthly bills - {pack.name}",
                        category="Transfer",
                        date=now,
                        status="pending",
                        recipient=member.name,
                    )
                )
                title = "Monthly Request Sent"
                message = f"Requested ${amount:.2f} from {member.name} for {pack.name}"
            else:
                title = "Monthly Bill Summary"
                message = f"{member.name} owes ${amount:.2f} for {pack.name}"

            self.notifications.notify(
                Notification(
                    type="info",
                    title=title,
                    message=message,
                    amount=amount,
                    timestamp=now,
                )
            )

        pack.last_request_sent_at = now
        if pack.last_request_period is None or period > pack.last_request_period:
            pack.last_request_period = period
        if period in pack.pending_review_periods:
            pack.pending_review_periods.remove(period)
        self._save_bill_pack(pack)

        logger.info(
            f"Sent monthly request for pack {pack.id} ({period:%Y-%m}): "
            f"${totals.total:.2f}"
        )
        return MonthlyCollection(
            pack_id=pack.id,
            period=period,
            status="sent",
            total=totals.total,
            by_member=totals.by_member,
        )

    # ========================================================================
    # Helpers
    # ========================================================================

    def _now(self, now: datetime | None) -> datetime:
        """Explicit run time or the clock, as an aware UTC datetime."""
        return as_utc(now or self.clock())

    def _find_mission(self, mission_id: str) -> Mission | None:
        for mission in self.missions:
            if mission.id == mission_id:
                return mission
        return None

    def _member(self, mission: Mission, member_id: str) -> Member:
        member = mission.get_member(member_id)
        if member is None:
            raise NotFoundError("member", member_id)
        return member

    def _unknown_members(self, mission: Mission, member_ids: list[str]) -> list[str]:
        known = mission.member_ids()
        return [
            member_id
            for member_id in dict.fromkeys(member_ids)
            if member_id not in known
        ]

    def _displayed_balances(self, mission: Mission) -> list[Member]:
        members = compute_balances(mission)
        if mission.status == "settled":
            return [m.model_copy(update={"balance": ZERO}) for m in members]
        return members

    def _apply(
        self,
        mission: Mission,
        action: str,
        members: list[Member] | None = None,
        expenses: list[Expense] | None = None,
    ):
        """Commit new members/expenses only if the ledger still balances."""
        updates: dict[str, Any] = {}
        if members is not None:
            updates["members"] = members
        if expenses is not None:
            updates["expenses"] = expenses

        candidate = mission.model_copy(update=updates)
        check_conservation(compute_balances(candidate), action)

        mission.expenses = candidate.expenses
        mission.members = self._displayed_balances(candidate)
        self._save_mission(mission)

    def _save_mission(self, mission: Mission):
        if self.db is not None:
            self.db.save_mission(mission)

    def _save_rule(self, rule: AutoSplitRule):
        if self.db is not None:
            self.db.save_rule(rule)

    def _save_bill_pack(self, pack: BillPack):
        if self.db is not None:
            self.db.save_bill_pack(pack)


def _previous_month(period_start: date) -> date:
    if period_start.month == 1:
        return date(period_start.year - 1, 12, 1)
    return date(period_start.year, period_start.month - 1, 1)
