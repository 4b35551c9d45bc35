"""Pydantic domain models for SettleLoop."""

from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Annotated, Literal
from uuid import uuid4

from pydantic import AfterValidator, BaseModel, Field, model_validator

SplitType = Literal["EQUAL", "AMOUNT", "PERCENT"]
MissionStatus = Literal["active", "settled"]
RuleStatus = Literal["active", "paused"]
Recurrence = Literal["monthly", "weekly", "biweekly", "custom"]
CollectionMode = Literal["request-only", "send-request", "send-only"]
TransactionType = Literal[
    "transfer",
    "bill",
    "deposit",
    "withdrawal",
    "request",
    "payment",
    "charge",
    "creditPayment",
]
TransactionStatus = Literal["pending", "completed", "failed", "cancelled"]
NotificationType = Literal["info", "deposit", "payment"]


def as_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC so every timestamp is comparable."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


def utcnow() -> datetime:
    """Current time, timezone aware."""
    return datetime.now(UTC)


def generate_id() -> str:
    """Generate a record identifier."""
    return uuid4().hex


# ============================================================================
# Ledger Models
# ============================================================================


class Member(BaseModel):
    """A participant of a mission.

    `balance` is a display copy written by the ledger service after each
    recomputation. It is never read back as a source of truth.
    """

    id: str = Field(default_factory=generate_id)
    name: str
    email: str | None = None
    balance: Decimal = Decimal("0")  # positive = owed money, negative = owes
    last_reminder_sent: UtcDatetime | None = None


class Share(BaseModel):
    """One member's part of an expense."""

    member_id: str
    amount: Decimal
    percent: Decimal | None = None  # only for PERCENT splits


class Expense(BaseModel):
    """A shared cost paid by one member and split across shares."""

    id: str = Field(default_factory=generate_id)
    title: str
    amount: Decimal = Field(ge=0)
    paid_by: str
    split_type: SplitType
    splits: list[Share]
    created_at: UtcDatetime = Field(default_factory=utcnow)
    imported_from: str | None = None  # bank transaction id
    source_rule_id: str | None = None  # AutoSplit rule that created it


class Mission(BaseModel):
    """A shared ledger: members, expenses and settlement status."""

    id: str = Field(default_factory=generate_id)
    title: str
    status: MissionStatus = "active"
    members: list[Member] = Field(default_factory=list)
    expenses: list[Expense] = Field(default_factory=list)
    created_at: UtcDatetime = Field(default_factory=utcnow)
    settled_at: UtcDatetime | None = None
    settlement_initiated_at: UtcDatetime | None = None

    def get_member(self, member_id: str) -> Member | None:
        """Find a member by id."""
        for member in self.members:
            if member.id == member_id:
                return member
        return None

    def get_expense(self, expense_id: str) -> Expense | None:
        """Find an expense by id."""
        for expense in self.expenses:
            if expense.id == expense_id:
                return expense
        return None

    def member_ids(self) -> set[str]:
        return {member.id for member in self.members}


class ValidationResult(BaseModel):
    """Outcome of validating an expense's split."""

    valid: bool
    error: str | None = None


# ============================================================================
# Settlement Models
# ============================================================================


class Transfer(BaseModel):
    """A recommended payment between two members. Never persisted."""

    from_member_id: str
    to_member_id: str
    amount: Decimal


class SettlementSummary(BaseModel):
    """Transfer plan that brings every balance to zero."""

    transfers: list[Transfer] = Field(default_factory=list)
    total_sending: Decimal = Decimal("0")
    total_receiving: Decimal = Decimal("0")
    net: Decimal = Decimal("0")  # always zero when money is conserved


class UserPosition(BaseModel):
    """The legs of a settlement plan that involve one member."""

    member_id: str
    sends: list[Transfer]
    requests: list[Transfer]
    total_sending: Decimal
    total_receiving: Decimal


# ============================================================================
# Banking Collaborator Models
# ============================================================================


class BankTransaction(BaseModel):
    """A transaction read from (or appended to) the bank feed."""

    id: str = Field(default_factory=generate_id)
    account_id: str
    type: TransactionType
    amount: Decimal  # signed
    description: str
    category: str | None = None
    date: UtcDatetime
    status: TransactionStatus
    recipient: str | None = None
    sender: str | None = None


class Notification(BaseModel):
    """A notification requested by the core. Delivery is not our concern."""

    id: str = Field(default_factory=generate_id)
    type: NotificationType
    title: str
    message: str
    amount: Decimal | None = None
    sender_name: str | None = None
    timestamp: UtcDatetime = Field(default_factory=utcnow)
    read: bool = False


# ============================================================================
# AutoSplit Models
# ============================================================================


class MerchantDetection(BaseModel):
    """Merchant name appears in the transaction description."""

    method: Literal["merchant"] = "merchant"
    merchant: str = Field(min_length=1)

    def matches(self, transaction: BankTransaction) -> bool:
        return self.merchant.lower() in transaction.description.lower()


class ContainsDetection(BaseModel):
    """Arbitrary text appears in the transaction description."""

    method: Literal["contains"] = "contains"
    text: str = Field(min_length=1)

    def matches(self, transaction: BankTransaction) -> bool:
        return self.text.lower() in transaction.description.lower()


class ExactAmountDetection(BaseModel):
    """Transaction magnitude equals a fixed amount (to the cent)."""

    method: Literal["exactAmount"] = "exactAmount"
    amount: Decimal = Field(ge=0)

    def matches(self, transaction: BankTransaction) -> bool:
        return abs(abs(transaction.amount) - self.amount) < Decimal("0.01")


class AmountRangeDetection(BaseModel):
    """Transaction magnitude falls inside an inclusive range."""

    method: Literal["amountRange"] = "amountRange"
    min_amount: Decimal = Field(ge=0)
    max_amount: Decimal = Field(ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "AmountRangeDetection":
        if self.min_amount > self.max_amount:
            raise ValueError(
                f"min_amount ({self.min_amount}) must not exceed "
                f"max_amount ({self.max_amount})"
            )
        return self

    def matches(self, transaction: BankTransaction) -> bool:
        magnitude = abs(transaction.amount)
        return self.min_amount <= magnitude <= self.max_amount


class CategoryDetection(BaseModel):
    """Transaction category equals the rule's category."""

    method: Literal["category"] = "category"
    category: str = Field(min_length=1)

    def matches(self, transaction: BankTransaction) -> bool:
        if not transaction.category:
            return False
        return transaction.category.lower() == self.category.lower()


Detection = Annotated[
    MerchantDetection
    | ContainsDetection
    | ExactAmountDetection
    | AmountRangeDetection
    | CategoryDetection,
    Field(discriminator="method"),
]


class RuleActions(BaseModel):
    """What to do when a rule matches."""

    auto_create_expense: bool = True
    auto_send_requests: bool = False


class AutoSplitRule(BaseModel):
    """A saved pattern that turns recurring bank transactions into expenses.

    `split_values` lines up with `participants`: percentages for PERCENT,
    fixed dollar amounts for AMOUNT, unused for EQUAL.
    """

    id: str = Field(default_factory=generate_id)
    mission_id: str
    bill_pack_id: str | None = None
    name: str = ""
    account_id: str
    detection: Detection
    paid_by: str
    participants: list[str] = Field(min_length=1)
    split_type: SplitType = "EQUAL"
    split_values: list[Decimal] = Field(default_factory=list)
    recurrence: Recurrence | None = None
    actions: RuleActions = Field(default_factory=RuleActions)
    include_in_monthly_request: bool = True
    status: RuleStatus = "active"
    created_at: UtcDatetime = Field(default_factory=utcnow)
    last_matched_at: UtcDatetime | None = None
    last_matched_transaction_id: str | None = None
    match_count: int = 0

    @model_validator(mode="after")
    def _check_split_config(self) -> "AutoSplitRule":
        if self.split_type == "EQUAL":
            return self
        if len(self.split_values) != len(self.participants):
            raise ValueError(
                f"{self.split_type} rules need one split value per participant "
                f"(got {len(self.split_values)} for {len(self.participants)})"
            )
        if self.split_type == "PERCENT":
            total_percent = sum(self.split_values, Decimal("0"))
            if abs(total_percent - 100) > Decimal("0.01"):
                raise ValueError(
                    f"Percentages must total 100% (got {total_percent:.2f}%)"
                )
        return self


class BillPack(BaseModel):
    """A named group of rules collected once a month."""

    id: str = Field(default_factory=generate_id)
    mission_id: str
    name: str
    description: str | None = None
    auto_send_monthly_request: bool = False
    request_day_of_month: int = Field(default=1, ge=1, le=31)
    safety_limit: Decimal | None = None  # totals above this need review
    mode: CollectionMode = "request-only"
    status: RuleStatus = "active"
    created_at: UtcDatetime = Field(default_factory=utcnow)
    last_request_sent_at: UtcDatetime | None = None
    last_request_period: date | None = None
    # Over-limit periods held for review, oldest first
    pending_review_periods: list[date] = Field(default_factory=list)


class MonthlyTotal(BaseModel):
    """Amounts collected by a bill pack for one calendar month."""

    total: Decimal = Decimal("0")
    by_member: dict[str, Decimal] = Field(default_factory=dict)


class MonthlyCollection(BaseModel):
    """What the monthly run did for one bill pack."""

    pack_id: str
    period: date
    status: Literal["sent", "needs_review", "not_due", "already_sent"]
    total: Decimal = Decimal("0")
    by_member: dict[str, Decimal] = Field(default_factory=dict)
