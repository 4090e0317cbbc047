"""SQLAlchemy ORM tables backing SqlAlchemyPaymentStore."""

from farmpay.models.base import Base
from farmpay.models.invoice import InvoiceItemRow, InvoiceRow, InvoiceSequenceRow
from farmpay.models.payroll import PayrollPeriodRow, SalaryPaymentRow
from farmpay.models.wallet import PaymentTransactionRow, WalletAccountRow

__all__ = [
    "Base",
    "InvoiceItemRow",
    "InvoiceRow",
    "InvoiceSequenceRow",
    "PaymentTransactionRow",
    "PayrollPeriodRow",
    "SalaryPaymentRow",
    "WalletAccountRow",
]
