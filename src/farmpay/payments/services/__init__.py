"""Payment services."""

from farmpay.payments.services.invoice_service import InvoiceService, InvoiceSummary
from farmpay.payments.services.payroll_processor import (
    PayrollProcessor,
    SalaryBreakdown,
    calculate_salary,
)
from farmpay.payments.services.transaction_engine import (
    CallbackStatus,
    EngineConfig,
    TransactionEngine,
)
from farmpay.payments.services.wallet_ledger import WalletLedger

__all__ = [
    # Wallets
    "WalletLedger",
    # Transactions
    "TransactionEngine",
    "EngineConfig",
    "CallbackStatus",
    # Invoices
    "InvoiceService",
    "InvoiceSummary",
    # Payroll
    "PayrollProcessor",
    "SalaryBreakdown",
    "calculate_salary",
]
