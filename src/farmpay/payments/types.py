"""Domain records for wallets, transactions, invoices and payroll."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

ZERO = Decimal("0.00")


class PaymentStatus(str, Enum):
    """Status values shared by transactions and salary payments."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    EXPIRED = "expired"


class TransactionType(str, Enum):
    """Kinds of money movement."""

    PAYMENT = "payment"
    TOPUP = "topup"
    WITHDRAWAL = "withdrawal"
    SALARY = "salary"
    INVOICE = "invoice"
    REFUND = "refund"

    @property
    def is_debit(self) -> bool:
        """True when the transaction takes money out of its wallet."""
        return self in DEBIT_TYPES


DEBIT_TYPES = frozenset(
    {
        TransactionType.PAYMENT,
        TransactionType.WITHDRAWAL,
        TransactionType.SALARY,
        TransactionType.INVOICE,
    }
)

REFERENCE_PREFIXES: dict[TransactionType, str] = {
    TransactionType.PAYMENT: "PAY",
    TransactionType.TOPUP: "TOP",
    TransactionType.WITHDRAWAL: "WTH",
    TransactionType.SALARY: "SAL",
    TransactionType.INVOICE: "INV",
    TransactionType.REFUND: "REF",
}


class WalletStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class InvoiceStatus(str, Enum):
    """Invoice status values. OVERDUE is derived at read time, never stored."""

    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class PayrollStatus(str, Enum):
    DRAFT = "draft"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class EmployeeStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    TERMINATED = "terminated"


# =============================================================================
# Wallets
# =============================================================================


@dataclass
class LinkedAccount:
    """External mobile-money account attached to a wallet."""

    provider: str
    number: str
    verified: bool = False


@dataclass
class WalletAccount:
    """Per-user, per-currency balance record.

    balance == available_balance + reserved_balance at all times.
    """

    user_id: str
    currency: str
    id: UUID = field(default_factory=uuid4)
    balance: Decimal = ZERO
    available_balance: Decimal = ZERO
    reserved_balance: Decimal = ZERO
    status: WalletStatus = WalletStatus.ACTIVE
    linked_accounts: list[LinkedAccount] = field(default_factory=list)
    updated_at: datetime | None = None

    @property
    def is_balanced(self) -> bool:
        return self.balance == self.available_balance + self.reserved_balance


# =============================================================================
# Transactions
# =============================================================================


@dataclass(frozen=True)
class Fees:
    """Fees charged on a transaction."""

    platform_fee: Decimal = ZERO
    provider_fee: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.platform_fee + self.provider_fee


@dataclass(frozen=True)
class SettlementEntry:
    """A signed balance change applied to one wallet during settlement.

    reserved is the part of the change drawn from the wallet's reservation
    rather than its available balance.
    """

    wallet_id: UUID
    delta: Decimal
    reserved: Decimal = ZERO

    def to_dict(self) -> dict[str, str]:
        return {
            "wallet_id": str(self.wallet_id),
            "delta": str(self.delta),
            "reserved": str(self.reserved),
        }

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> SettlementEntry:
        return cls(
            wallet_id=UUID(data["wallet_id"]),
            delta=Decimal(data["delta"]),
            reserved=Decimal(data.get("reserved", "0")),
        )


@dataclass(frozen=True)
class TransactionRequest:
    """Caller input for initiating a transaction."""

    wallet_id: UUID
    type: TransactionType
    amount: Decimal
    currency: str
    payment_method: str
    phone_number: str
    description: str = ""
    counterpart: str | None = None
    counterpart_wallet_id: UUID | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class PaymentTransaction:
    """A single money movement. Append-only; never deleted."""

    wallet_id: UUID
    type: TransactionType
    amount: Decimal
    currency: str
    payment_method: str
    reference: str
    id: UUID = field(default_factory=uuid4)
    status: PaymentStatus = PaymentStatus.PENDING
    description: str = ""
    counterpart: str | None = None
    counterpart_wallet_id: UUID | None = None
    phone_number: str | None = None
    fees: Fees = field(default_factory=Fees)
    created_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    failure_reason: str | None = None
    provider_push_id: str | None = None
    original_transaction_id: UUID | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def amount_due(self) -> Decimal:
        """Amount plus fees; what the payer is charged."""
        return self.amount + self.fees.total

    @property
    def settlement_entries(self) -> list[SettlementEntry]:
        return [SettlementEntry.from_dict(e) for e in self.metadata.get("settlement", [])]


# =============================================================================
# Invoices
# =============================================================================


@dataclass(frozen=True)
class ContactInfo:
    id: str
    name: str
    email: str = ""
    phone: str = ""
    address: str = ""


@dataclass
class InvoiceItem:
    description: str
    quantity: Decimal
    unit: str
    unit_price: Decimal
    id: UUID = field(default_factory=uuid4)
    line_total: Decimal = ZERO


@dataclass
class InvoiceData:
    """An invoice. Totals are recomputed from items, never patched."""

    invoice_number: str
    from_user: ContactInfo
    to_user: ContactInfo
    currency: str
    issue_date: date
    due_date: date
    payment_terms: int
    tax_rate: Decimal
    id: UUID = field(default_factory=uuid4)
    items: list[InvoiceItem] = field(default_factory=list)
    subtotal: Decimal = ZERO
    tax_amount: Decimal = ZERO
    total: Decimal = ZERO
    status: InvoiceStatus = InvoiceStatus.DRAFT
    payment_date: datetime | None = None
    payment_method: str | None = None
    payment_reference: str | None = None
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


# =============================================================================
# Payroll
# =============================================================================


@dataclass(frozen=True)
class Employee:
    employee_id: str
    name: str
    phone_number: str
    base_salary: Decimal
    currency: str
    payment_method: str
    status: EmployeeStatus = EmployeeStatus.ACTIVE
    department: str | None = None


@dataclass(frozen=True)
class AttendanceRecord:
    """Attendance inputs for one employee in one payroll period."""

    employee_id: str
    days_worked: Decimal
    overtime_hours: Decimal = Decimal("0")
    bonuses: Decimal = ZERO
    deductions: Decimal = ZERO


@dataclass
class SalaryPayment:
    employee_id: str
    employee_name: str
    payroll_period_id: UUID
    base_salary: Decimal
    overtime_pay: Decimal
    bonuses: Decimal
    deductions: Decimal
    gross_amount: Decimal
    tax_amount: Decimal
    net_amount: Decimal
    currency: str
    payment_method: str
    phone_number: str
    pay_date: date
    id: UUID = field(default_factory=uuid4)
    status: PaymentStatus = PaymentStatus.PENDING
    paid_at: datetime | None = None
    reference: str | None = None
    transaction_id: UUID | None = None
    failure_reason: str | None = None
    attempts: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class PayrollPeriod:
    start_date: date
    end_date: date
    pay_date: date
    id: UUID = field(default_factory=uuid4)
    status: PayrollStatus = PayrollStatus.DRAFT
    total_amount: Decimal = ZERO
    employee_count: int = 0
    funding_wallet_id: UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a validation pass. Errors accumulate; nothing short-circuits."""

    errors: tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class PayrollRunResult:
    period_id: UUID
    status: PayrollStatus
    attempted: int
    succeeded: int
    failed: int
    skipped: int
