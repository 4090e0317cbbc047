"""Payment core package.

This package contains:
- Wallet ledger (balances with reservations)
- Transaction engine (mobile-money authorization and settlement)
- Invoice lifecycle
- Payroll batches
- Mobile-money gateway adapters
- Domain events
"""

from farmpay.payments.errors import (
    InsufficientFundsError,
    InvalidTransitionError,
    InvariantViolationError,
    NotFoundError,
    PaymentError,
    ProviderError,
    TimeoutExpiredError,
    ValidationError,
)
from farmpay.payments.facade import FarmPay
from farmpay.payments.registry import DEFAULT_REGISTRY, PaymentRegistry, PayrollPolicy
from farmpay.payments.types import (
    AttendanceRecord,
    ContactInfo,
    Employee,
    InvoiceData,
    InvoiceItem,
    InvoiceStatus,
    PaymentStatus,
    PaymentTransaction,
    PayrollPeriod,
    PayrollStatus,
    SalaryPayment,
    TransactionRequest,
    TransactionType,
    WalletAccount,
)

__all__ = [
    # Facade
    "FarmPay",
    # Configuration
    "DEFAULT_REGISTRY",
    "PaymentRegistry",
    "PayrollPolicy",
    # Errors
    "PaymentError",
    "ValidationError",
    "InsufficientFundsError",
    "ProviderError",
    "TimeoutExpiredError",
    "InvariantViolationError",
    "InvalidTransitionError",
    "NotFoundError",
    # Records
    "WalletAccount",
    "TransactionRequest",
    "PaymentTransaction",
    "TransactionType",
    "PaymentStatus",
    "ContactInfo",
    "InvoiceItem",
    "InvoiceData",
    "InvoiceStatus",
    "Employee",
    "AttendanceRecord",
    "PayrollPeriod",
    "PayrollStatus",
    "SalaryPayment",
]
