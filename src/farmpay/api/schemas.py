"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from farmpay.payments.providers.base import OutcomeStatus
from farmpay.payments.services.transaction_engine import CallbackStatus
from farmpay.payments.types import (
    EmployeeStatus,
    InvoiceStatus,
    PaymentStatus,
    PayrollStatus,
    TransactionType,
    WalletStatus,
)


# ============================================================================
# Errors
# ============================================================================


class ErrorResponse(BaseModel):
    """Error body for not-found, conflict and unexpected errors."""

    detail: str
    code: str


class ValidationErrorResponse(BaseModel):
    """Every validation failure found for a request."""

    errors: list[str]
    code: str = "VALIDATION_ERROR"


# ============================================================================
# Wallet schemas
# ============================================================================


class WalletCreate(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    currency: str = Field(min_length=3, max_length=3)


class LinkedAccountCreate(BaseModel):
    provider: str
    number: str


class LinkedAccountResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    provider: str
    number: str
    verified: bool


class WalletResponse(BaseModel):
    """Schema for wallet response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: str
    currency: str
    balance: Decimal
    available_balance: Decimal
    reserved_balance: Decimal
    status: WalletStatus
    linked_accounts: list[LinkedAccountResponse]
    updated_at: datetime | None = None


# ============================================================================
# Transaction schemas
# ============================================================================


class TransactionCreate(BaseModel):
    """Schema for initiating a transaction.

    With process=True (the default) the STK push is sent in the background
    and the pending record is returned at once; poll the transaction or
    wait for the webhook to learn the outcome.
    """

    wallet_id: UUID
    type: TransactionType
    amount: Decimal
    currency: str
    payment_method: str
    phone_number: str
    description: str = ""
    counterpart: str | None = None
    counterpart_wallet_id: UUID | None = None
    process: bool = True


class FeesResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    platform_fee: Decimal
    provider_fee: Decimal
    total: Decimal


class TransactionResponse(BaseModel):
    """Schema for transaction response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    wallet_id: UUID
    type: TransactionType
    amount: Decimal
    amount_due: Decimal
    currency: str
    status: PaymentStatus
    description: str
    counterpart: str | None = None
    counterpart_wallet_id: UUID | None = None
    payment_method: str
    phone_number: str | None = None
    reference: str
    fees: FeesResponse
    created_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    failure_reason: str | None = None
    provider_push_id: str | None = None
    original_transaction_id: UUID | None = None


class TransactionListResponse(BaseModel):
    items: list[TransactionResponse]
    total: int


class ReasonRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


# ============================================================================
# Webhook schemas
# ============================================================================


class MobileMoneyCallback(BaseModel):
    """Authorization result posted by the provider."""

    push_id: str
    status: OutcomeStatus
    result_code: str | None = None
    message: str = ""
    provider_reference: str | None = None


class CallbackResponse(BaseModel):
    status: CallbackStatus


# ============================================================================
# Invoice schemas
# ============================================================================


class ContactSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str = ""
    phone: str = ""
    address: str = ""


class InvoiceItemCreate(BaseModel):
    description: str
    quantity: Decimal
    unit: str
    unit_price: Decimal


class InvoiceItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    description: str
    quantity: Decimal
    unit: str
    unit_price: Decimal
    line_total: Decimal


class InvoiceCreate(BaseModel):
    """Schema for creating a draft invoice."""

    from_user: ContactSchema
    to_user: ContactSchema
    currency: str
    tax_rate: Decimal = Decimal("16")
    payment_terms: int = 14
    issue_date: date | None = None
    notes: str | None = None
    items: list[InvoiceItemCreate] = Field(default_factory=list)


class InvoiceUpdate(BaseModel):
    tax_rate: Decimal | None = None
    payment_terms: int | None = None
    notes: str | None = None


class InvoicePaymentRequest(BaseModel):
    reference: str


class InvoiceResponse(BaseModel):
    """Schema for invoice response. status is the effective status."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    invoice_number: str
    from_user: ContactSchema
    to_user: ContactSchema
    items: list[InvoiceItemResponse]
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal
    currency: str
    status: InvoiceStatus
    issue_date: date
    due_date: date
    payment_terms: int
    payment_date: datetime | None = None
    payment_method: str | None = None
    payment_reference: str | None = None
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class InvoiceListResponse(BaseModel):
    items: list[InvoiceResponse]
    total: int


class InvoiceSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    counts: dict[str, int]
    outstanding: dict[str, Decimal]
    overdue: dict[str, Decimal]
    paid: dict[str, Decimal]
    total_count: int


# ============================================================================
# Payroll schemas
# ============================================================================


class PayrollPeriodCreate(BaseModel):
    start_date: date
    end_date: date
    pay_date: date


class PayrollPeriodResponse(BaseModel):
    """Schema for payroll period response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    start_date: date
    end_date: date
    pay_date: date
    status: PayrollStatus
    total_amount: Decimal
    employee_count: int
    funding_wallet_id: UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class EmployeeSchema(BaseModel):
    employee_id: str
    name: str
    phone_number: str
    base_salary: Decimal
    currency: str
    payment_method: str
    status: EmployeeStatus = EmployeeStatus.ACTIVE
    department: str | None = None


class AttendanceSchema(BaseModel):
    employee_id: str
    days_worked: Decimal
    overtime_hours: Decimal = Decimal("0")
    bonuses: Decimal = Decimal("0")
    deductions: Decimal = Decimal("0")


class PayrollPrepareRequest(BaseModel):
    employees: list[EmployeeSchema]
    attendance: list[AttendanceSchema]


class PayrollRunRequest(BaseModel):
    """Run a draft period.

    With wait=False (the default) the batch runs in the background and the
    period is returned in its current state.
    """

    funding_wallet_id: UUID
    wait: bool = False


class PayrollRunResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    period_id: UUID
    status: PayrollStatus
    attempted: int
    succeeded: int
    failed: int
    skipped: int


class SalaryPaymentResponse(BaseModel):
    """Schema for salary payment response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
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
    status: PaymentStatus
    pay_date: date
    paid_at: datetime | None = None
    reference: str | None = None
    transaction_id: UUID | None = None
    failure_reason: str | None = None
    attempts: int


class SalaryPaymentListResponse(BaseModel):
    items: list[SalaryPaymentResponse]
    total: int
