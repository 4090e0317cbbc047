"""Persistence collaborator contract.

All payment services read and write through a PaymentStore. Implementations
must provide:
- Keyed CRUD for wallets, transactions, invoices, salary payments and
  payroll periods, returning copies (callers mutate then update explicitly).
- Unique transaction references (DuplicateReferenceError on conflict).
- A compare-and-set status write for payroll periods.
- atomic(): an all-or-nothing unit of work. Writes made inside the block
  are discarded if the block raises.
- A monotonic invoice sequence per period key.
"""

from __future__ import annotations

from typing import AsyncContextManager, Protocol
from uuid import UUID

from farmpay.payments.types import (
    InvoiceData,
    InvoiceStatus,
    PaymentStatus,
    PaymentTransaction,
    PayrollPeriod,
    PayrollStatus,
    SalaryPayment,
    WalletAccount,
)


class InvoiceSequence(Protocol):
    """Monotonic counter per invoice period (e.g. "202407")."""

    async def next_invoice_sequence(self, period_key: str) -> int:
        """Return the next number for period_key, starting at 1."""
        ...


class PaymentStore(InvoiceSequence, Protocol):
    """Persistence protocol for the payment core."""

    def atomic(self) -> AsyncContextManager[None]:
        """Open an all-or-nothing unit of work.

        A failed block undoes only the writes made inside it; writes other
        tasks make meanwhile are kept.
        """
        ...

    # Wallets
    async def add_wallet(self, wallet: WalletAccount) -> None: ...

    async def get_wallet(self, wallet_id: UUID) -> WalletAccount | None: ...

    async def find_wallet(self, user_id: str, currency: str) -> WalletAccount | None: ...

    async def list_wallets(self, user_id: str | None = None) -> list[WalletAccount]: ...

    async def update_wallet(self, wallet: WalletAccount) -> None: ...

    # Transactions
    async def add_transaction(self, transaction: PaymentTransaction) -> None: ...

    async def get_transaction(self, transaction_id: UUID) -> PaymentTransaction | None: ...

    async def get_transaction_by_reference(self, reference: str) -> PaymentTransaction | None: ...

    async def get_transaction_by_push_id(self, push_id: str) -> PaymentTransaction | None: ...

    async def list_transactions(
        self,
        wallet_id: UUID | None = None,
        status: PaymentStatus | None = None,
    ) -> list[PaymentTransaction]: ...

    async def update_transaction(self, transaction: PaymentTransaction) -> None: ...

    # Invoices
    async def add_invoice(self, invoice: InvoiceData) -> None: ...

    async def get_invoice(self, invoice_id: UUID) -> InvoiceData | None: ...

    async def list_invoices(self, status: InvoiceStatus | None = None) -> list[InvoiceData]: ...

    async def update_invoice(self, invoice: InvoiceData) -> None: ...

    # Payroll
    async def add_payroll_period(self, period: PayrollPeriod) -> None: ...

    async def get_payroll_period(self, period_id: UUID) -> PayrollPeriod | None: ...

    async def transition_payroll_period(
        self, period: PayrollPeriod, expected: PayrollStatus
    ) -> bool:
        """Write period only if the stored status is still expected.

        Returns False, writing nothing, when another writer got there first.
        """
        ...

    async def add_salary_payment(self, payment: SalaryPayment) -> None: ...

    async def get_salary_payment(self, payment_id: UUID) -> SalaryPayment | None: ...

    async def list_salary_payments(self, period_id: UUID) -> list[SalaryPayment]: ...

    async def update_salary_payment(self, payment: SalaryPayment) -> None: ...

    async def delete_salary_payments(self, period_id: UUID) -> int:
        """Remove a draft period's computed payments before recomputation."""
        ...
