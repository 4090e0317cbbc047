"""In-memory PaymentStore for tests and single-process deployments.

Records are deep-copied on the way in and out, so a caller's object is never
shared with the store. Inside atomic() every write first saves the previous
value of the record it replaces; if the block raises, those records alone
are put back. The journal belongs to the task that opened the block, so
writes other tasks make meanwhile are never undone by it.
Store methods never suspend.
"""

from __future__ import annotations

import copy
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, AsyncIterator, Hashable, TypeVar
from uuid import UUID

from farmpay.payments.errors import DuplicateReferenceError, NotFoundError
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

T = TypeVar("T")

_MISSING = object()


def _copy(record: T) -> T:
    return copy.deepcopy(record)


class InMemoryPaymentStore:
    """Dictionary-backed implementation of PaymentStore."""

    def __init__(self) -> None:
        self._wallets: dict[UUID, WalletAccount] = {}
        self._transactions: dict[UUID, PaymentTransaction] = {}
        self._references: dict[str, UUID] = {}
        self._invoices: dict[UUID, InvoiceData] = {}
        self._periods: dict[UUID, PayrollPeriod] = {}
        self._salary_payments: dict[UUID, SalaryPayment] = {}
        self._sequences: dict[str, int] = {}
        # Previous values of records written by the current task's atomic block
        self._journal: ContextVar[dict[Any, tuple[dict[Any, Any], Hashable, Any]] | None] = (
            ContextVar(f"farmpay_memory_journal_{id(self)}", default=None)
        )

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        """Undo this block's writes if it raises.

        Nested blocks join the outermost unit of work.
        """
        if self._journal.get() is not None:
            yield
            return

        journal: dict[tuple[int, Hashable], tuple[dict[Any, Any], Hashable, Any]] = {}
        token = self._journal.set(journal)
        try:
            yield
        except BaseException:
            for table, key, previous in reversed(list(journal.values())):
                if previous is _MISSING:
                    table.pop(key, None)
                else:
                    table[key] = previous
            raise
        finally:
            self._journal.reset(token)

    def _remember(self, table: dict[Any, Any], key: Hashable) -> None:
        journal = self._journal.get()
        if journal is not None and (id(table), key) not in journal:
            journal[(id(table), key)] = (table, key, table.get(key, _MISSING))

    def _put(self, table: dict[Any, Any], key: Hashable, value: Any) -> None:
        self._remember(table, key)
        table[key] = value

    def _delete(self, table: dict[Any, Any], key: Hashable) -> None:
        self._remember(table, key)
        del table[key]

    async def next_invoice_sequence(self, period_key: str) -> int:
        value = self._sequences.get(period_key, 0) + 1
        self._put(self._sequences, period_key, value)
        return value

    # -------------------------------------------------------------------------
    # Wallets
    # -------------------------------------------------------------------------

    async def add_wallet(self, wallet: WalletAccount) -> None:
        self._put(self._wallets, wallet.id, _copy(wallet))

    async def get_wallet(self, wallet_id: UUID) -> WalletAccount | None:
        wallet = self._wallets.get(wallet_id)
        return _copy(wallet) if wallet else None

    async def find_wallet(self, user_id: str, currency: str) -> WalletAccount | None:
        for wallet in self._wallets.values():
            if wallet.user_id == user_id and wallet.currency == currency:
                return _copy(wallet)
        return None

    async def list_wallets(self, user_id: str | None = None) -> list[WalletAccount]:
        return [
            _copy(w) for w in self._wallets.values() if user_id is None or w.user_id == user_id
        ]

    async def update_wallet(self, wallet: WalletAccount) -> None:
        if wallet.id not in self._wallets:
            raise NotFoundError("Wallet", wallet.id)
        self._put(self._wallets, wallet.id, _copy(wallet))

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def add_transaction(self, transaction: PaymentTransaction) -> None:
        if transaction.reference in self._references:
            raise DuplicateReferenceError(transaction.reference)
        self._put(self._transactions, transaction.id, _copy(transaction))
        self._put(self._references, transaction.reference, transaction.id)

    async def get_transaction(self, transaction_id: UUID) -> PaymentTransaction | None:
        transaction = self._transactions.get(transaction_id)
        return _copy(transaction) if transaction else None

    async def get_transaction_by_reference(self, reference: str) -> PaymentTransaction | None:
        transaction_id = self._references.get(reference)
        if transaction_id is None:
            return None
        return await self.get_transaction(transaction_id)

    async def get_transaction_by_push_id(self, push_id: str) -> PaymentTransaction | None:
        for transaction in self._transactions.values():
            if transaction.provider_push_id == push_id:
                return _copy(transaction)
        return None

    async def list_transactions(
        self,
        wallet_id: UUID | None = None,
        status: PaymentStatus | None = None,
    ) -> list[PaymentTransaction]:
        return [
            _copy(t)
            for t in self._transactions.values()
            if (wallet_id is None or t.wallet_id == wallet_id)
            and (status is None or t.status == status)
        ]

    async def update_transaction(self, transaction: PaymentTransaction) -> None:
        if transaction.id not in self._transactions:
            raise NotFoundError("Transaction", transaction.id)
        self._put(self._transactions, transaction.id, _copy(transaction))

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    async def add_invoice(self, invoice: InvoiceData) -> None:
        self._put(self._invoices, invoice.id, _copy(invoice))

    async def get_invoice(self, invoice_id: UUID) -> InvoiceData | None:
        invoice = self._invoices.get(invoice_id)
        return _copy(invoice) if invoice else None

    async def list_invoices(self, status: InvoiceStatus | None = None) -> list[InvoiceData]:
        return [
            _copy(i) for i in self._invoices.values() if status is None or i.status == status
        ]

    async def update_invoice(self, invoice: InvoiceData) -> None:
        if invoice.id not in self._invoices:
            raise NotFoundError("Invoice", invoice.id)
        self._put(self._invoices, invoice.id, _copy(invoice))

    # -------------------------------------------------------------------------
    # Payroll
    # -------------------------------------------------------------------------

    async def add_payroll_period(self, period: PayrollPeriod) -> None:
        self._put(self._periods, period.id, _copy(period))

    async def get_payroll_period(self, period_id: UUID) -> PayrollPeriod | None:
        period = self._periods.get(period_id)
        return _copy(period) if period else None

    async def transition_payroll_period(
        self, period: PayrollPeriod, expected: PayrollStatus
    ) -> bool:
        stored = self._periods.get(period.id)
        if stored is None:
            raise NotFoundError("PayrollPeriod", period.id)
        if stored.status != expected:
            return False
        self._put(self._periods, period.id, _copy(period))
        return True

    async def add_salary_payment(self, payment: SalaryPayment) -> None:
        self._put(self._salary_payments, payment.id, _copy(payment))

    async def get_salary_payment(self, payment_id: UUID) -> SalaryPayment | None:
        payment = self._salary_payments.get(payment_id)
        return _copy(payment) if payment else None

    async def list_salary_payments(self, period_id: UUID) -> list[SalaryPayment]:
        return [
            _copy(p) for p in self._salary_payments.values() if p.payroll_period_id == period_id
        ]

    async def update_salary_payment(self, payment: SalaryPayment) -> None:
        if payment.id not in self._salary_payments:
            raise NotFoundError("SalaryPayment", payment.id)
        self._put(self._salary_payments, payment.id, _copy(payment))

    async def delete_salary_payments(self, period_id: UUID) -> int:
        doomed = [p.id for p in self._salary_payments.values() if p.payroll_period_id == period_id]
        for payment_id in doomed:
            self._delete(self._salary_payments, payment_id)
        return len(doomed)
