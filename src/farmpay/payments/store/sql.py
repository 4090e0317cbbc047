"""SQLAlchemy implementation of PaymentStore.

Each call runs in its own session and transaction unless an atomic() block
is open in the current task, in which case every call joins that block's
session and commits or rolls back with it.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncIterator
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from farmpay.models import (
    InvoiceItemRow,
    InvoiceRow,
    InvoiceSequenceRow,
    PaymentTransactionRow,
    PayrollPeriodRow,
    SalaryPaymentRow,
    WalletAccountRow,
)
from farmpay.payments.errors import DuplicateReferenceError, NotFoundError
from farmpay.payments.types import (
    ContactInfo,
    Fees,
    InvoiceData,
    InvoiceItem,
    InvoiceStatus,
    LinkedAccount,
    PaymentStatus,
    PaymentTransaction,
    PayrollPeriod,
    PayrollStatus,
    SalaryPayment,
    TransactionType,
    WalletAccount,
    WalletStatus,
)
from farmpay.payments.utils import to_money

# Dialects with INSERT .. ON CONFLICT DO UPDATE .. RETURNING
_UPSERTS = {"sqlite": sqlite.insert, "postgresql": postgresql.insert}

_current_session: ContextVar[AsyncSession | None] = ContextVar(
    "farmpay_store_session", default=None
)


def _aware(value: datetime | None) -> datetime | None:
    """Databases without timezone support hand back naive UTC values."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _money(value: Decimal | None) -> Decimal:
    return to_money(value if value is not None else 0)


def _plain(value: Decimal | None) -> Decimal:
    """Drop the trailing zeros a fixed-scale column adds."""
    if value is None:
        return Decimal("0")
    value = Decimal(value)
    if value == value.to_integral_value():
        return value.quantize(Decimal("1"))
    return value.normalize()


# =============================================================================
# Row <-> record mapping
# =============================================================================


def _wallet_values(wallet: WalletAccount) -> dict[str, Any]:
    return {
        "user_id": wallet.user_id,
        "currency": wallet.currency,
        "balance": wallet.balance,
        "available_balance": wallet.available_balance,
        "reserved_balance": wallet.reserved_balance,
        "status": wallet.status.value,
        "linked_accounts": [
            {"provider": a.provider, "number": a.number, "verified": a.verified}
            for a in wallet.linked_accounts
        ],
        "updated_at": wallet.updated_at,
    }


def _wallet_record(row: WalletAccountRow) -> WalletAccount:
    return WalletAccount(
        id=row.id,
        user_id=row.user_id,
        currency=row.currency,
        balance=_money(row.balance),
        available_balance=_money(row.available_balance),
        reserved_balance=_money(row.reserved_balance),
        status=WalletStatus(row.status),
        linked_accounts=[LinkedAccount(**a) for a in row.linked_accounts or []],
        updated_at=_aware(row.updated_at),
    )


def _transaction_values(txn: PaymentTransaction) -> dict[str, Any]:
    return {
        "wallet_id": txn.wallet_id,
        "type": txn.type.value,
        "amount": txn.amount,
        "currency": txn.currency,
        "status": txn.status.value,
        "description": txn.description,
        "counterpart": txn.counterpart,
        "counterpart_wallet_id": txn.counterpart_wallet_id,
        "payment_method": txn.payment_method,
        "phone_number": txn.phone_number,
        "reference": txn.reference,
        "platform_fee": txn.fees.platform_fee,
        "provider_fee": txn.fees.provider_fee,
        "created_at": txn.created_at,
        "completed_at": txn.completed_at,
        "failed_at": txn.failed_at,
        "failure_reason": txn.failure_reason,
        "provider_push_id": txn.provider_push_id,
        "original_transaction_id": txn.original_transaction_id,
        "metadata_json": dict(txn.metadata),
    }


def _transaction_record(row: PaymentTransactionRow) -> PaymentTransaction:
    return PaymentTransaction(
        id=row.id,
        wallet_id=row.wallet_id,
        type=TransactionType(row.type),
        amount=_money(row.amount),
        currency=row.currency,
        payment_method=row.payment_method,
        reference=row.reference,
        status=PaymentStatus(row.status),
        description=row.description,
        counterpart=row.counterpart,
        counterpart_wallet_id=row.counterpart_wallet_id,
        phone_number=row.phone_number,
        fees=Fees(_money(row.platform_fee), _money(row.provider_fee)),
        created_at=_aware(row.created_at),
        completed_at=_aware(row.completed_at),
        failed_at=_aware(row.failed_at),
        failure_reason=row.failure_reason,
        provider_push_id=row.provider_push_id,
        original_transaction_id=row.original_transaction_id,
        metadata=dict(row.metadata_json or {}),
    )


def _contact_values(contact: ContactInfo) -> dict[str, str]:
    return {
        "id": contact.id,
        "name": contact.name,
        "email": contact.email,
        "phone": contact.phone,
        "address": contact.address,
    }


def _invoice_values(invoice: InvoiceData) -> dict[str, Any]:
    return {
        "invoice_number": invoice.invoice_number,
        "from_contact": _contact_values(invoice.from_user),
        "to_contact": _contact_values(invoice.to_user),
        "currency": invoice.currency,
        "issue_date": invoice.issue_date,
        "due_date": invoice.due_date,
        "payment_terms": invoice.payment_terms,
        "tax_rate": invoice.tax_rate,
        "subtotal": invoice.subtotal,
        "tax_amount": invoice.tax_amount,
        "total": invoice.total,
        "status": invoice.status.value,
        "payment_date": invoice.payment_date,
        "payment_method": invoice.payment_method,
        "payment_reference": invoice.payment_reference,
        "notes": invoice.notes,
        "created_at": invoice.created_at,
        "updated_at": invoice.updated_at,
    }


def _item_row(item: InvoiceItem, position: int) -> InvoiceItemRow:
    return InvoiceItemRow(
        id=item.id,
        position=position,
        description=item.description,
        quantity=item.quantity,
        unit=item.unit,
        unit_price=item.unit_price,
        line_total=item.line_total,
    )


def _invoice_record(row: InvoiceRow) -> InvoiceData:
    return InvoiceData(
        id=row.id,
        invoice_number=row.invoice_number,
        from_user=ContactInfo(**row.from_contact),
        to_user=ContactInfo(**row.to_contact),
        currency=row.currency,
        issue_date=row.issue_date,
        due_date=row.due_date,
        payment_terms=row.payment_terms,
        tax_rate=_plain(row.tax_rate),
        items=[
            InvoiceItem(
                id=item.id,
                description=item.description,
                quantity=_plain(item.quantity),
                unit=item.unit,
                unit_price=_money(item.unit_price),
                line_total=_money(item.line_total),
            )
            for item in row.items
        ],
        subtotal=_money(row.subtotal),
        tax_amount=_money(row.tax_amount),
        total=_money(row.total),
        status=InvoiceStatus(row.status),
        payment_date=_aware(row.payment_date),
        payment_method=row.payment_method,
        payment_reference=row.payment_reference,
        notes=row.notes,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _period_values(period: PayrollPeriod) -> dict[str, Any]:
    return {
        "start_date": period.start_date,
        "end_date": period.end_date,
        "pay_date": period.pay_date,
        "status": period.status.value,
        "total_amount": period.total_amount,
        "employee_count": period.employee_count,
        "funding_wallet_id": period.funding_wallet_id,
        "created_at": period.created_at,
        "updated_at": period.updated_at,
    }


def _period_record(row: PayrollPeriodRow) -> PayrollPeriod:
    return PayrollPeriod(
        id=row.id,
        start_date=row.start_date,
        end_date=row.end_date,
        pay_date=row.pay_date,
        status=PayrollStatus(row.status),
        total_amount=_money(row.total_amount),
        employee_count=row.employee_count,
        funding_wallet_id=row.funding_wallet_id,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


_SALARY_MONEY = (
    "base_salary",
    "overtime_pay",
    "bonuses",
    "deductions",
    "gross_amount",
    "tax_amount",
    "net_amount",
)


def _salary_values(payment: SalaryPayment) -> dict[str, Any]:
    values: dict[str, Any] = {name: getattr(payment, name) for name in _SALARY_MONEY}
    values.update(
        payroll_period_id=payment.payroll_period_id,
        employee_id=payment.employee_id,
        employee_name=payment.employee_name,
        currency=payment.currency,
        payment_method=payment.payment_method,
        phone_number=payment.phone_number,
        pay_date=payment.pay_date,
        status=payment.status.value,
        paid_at=payment.paid_at,
        reference=payment.reference,
        transaction_id=payment.transaction_id,
        failure_reason=payment.failure_reason,
        attempts=payment.attempts,
        metadata_json=dict(payment.metadata),
    )
    return values


def _salary_record(row: SalaryPaymentRow) -> SalaryPayment:
    return SalaryPayment(
        id=row.id,
        payroll_period_id=row.payroll_period_id,
        employee_id=row.employee_id,
        employee_name=row.employee_name,
        currency=row.currency,
        payment_method=row.payment_method,
        phone_number=row.phone_number,
        pay_date=row.pay_date,
        status=PaymentStatus(row.status),
        paid_at=_aware(row.paid_at),
        reference=row.reference,
        transaction_id=row.transaction_id,
        failure_reason=row.failure_reason,
        attempts=row.attempts,
        metadata=dict(row.metadata_json or {}),
        **{name: _money(getattr(row, name)) for name in _SALARY_MONEY},
    )


def _assign(row: Any, values: dict[str, Any]) -> None:
    for key, value in values.items():
        setattr(row, key, value)


# =============================================================================
# Store
# =============================================================================


class SqlAlchemyPaymentStore:
    """PaymentStore backed by the farmpay ORM tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._factory = session_factory

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        """Run the block in one database transaction.

        Nested blocks join the outer transaction.
        """
        if _current_session.get() is not None:
            yield
            return

        async with self._factory() as session:
            token = _current_session.set(session)
            try:
                async with session.begin():
                    yield
            finally:
                _current_session.reset(token)

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        session = _current_session.get()
        if session is not None:
            yield session
            await session.flush()
            return

        async with self._factory() as session:
            async with session.begin():
                yield session

    async def next_invoice_sequence(self, period_key: str) -> int:
        """Increment the period's counter in a single upsert statement."""
        async with self._session() as session:
            insert = _UPSERTS.get(session.get_bind().dialect.name)
            if insert is None:
                row = await session.get(InvoiceSequenceRow, period_key, with_for_update=True)
                if row is None:
                    row = InvoiceSequenceRow(period_key=period_key, last_value=0)
                    session.add(row)
                row.last_value += 1
                return row.last_value

            stmt = (
                insert(InvoiceSequenceRow)
                .values(period_key=period_key, last_value=1)
                .on_conflict_do_update(
                    index_elements=[InvoiceSequenceRow.period_key],
                    set_={"last_value": InvoiceSequenceRow.last_value + 1},
                )
                .returning(InvoiceSequenceRow.last_value)
            )
            return (await session.execute(stmt)).scalar_one()

    async def _require(self, session: AsyncSession, model: type, key: UUID, kind: str) -> Any:
        row = await session.get(model, key)
        if row is None:
            raise NotFoundError(kind, key)
        return row

    # -------------------------------------------------------------------------
    # Wallets
    # -------------------------------------------------------------------------

    async def add_wallet(self, wallet: WalletAccount) -> None:
        async with self._session() as session:
            session.add(WalletAccountRow(id=wallet.id, **_wallet_values(wallet)))

    async def get_wallet(self, wallet_id: UUID) -> WalletAccount | None:
        async with self._session() as session:
            row = await session.get(WalletAccountRow, wallet_id, populate_existing=True)
            return _wallet_record(row) if row else None

    async def find_wallet(self, user_id: str, currency: str) -> WalletAccount | None:
        async with self._session() as session:
            row = await session.scalar(
                select(WalletAccountRow).where(
                    WalletAccountRow.user_id == user_id,
                    WalletAccountRow.currency == currency,
                )
            )
            return _wallet_record(row) if row else None

    async def list_wallets(self, user_id: str | None = None) -> list[WalletAccount]:
        stmt = select(WalletAccountRow).order_by(WalletAccountRow.user_id, WalletAccountRow.currency)
        if user_id is not None:
            stmt = stmt.where(WalletAccountRow.user_id == user_id)
        async with self._session() as session:
            rows = await session.scalars(stmt)
            return [_wallet_record(row) for row in rows]

    async def update_wallet(self, wallet: WalletAccount) -> None:
        async with self._session() as session:
            row = await self._require(session, WalletAccountRow, wallet.id, "Wallet")
            _assign(row, _wallet_values(wallet))

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def add_transaction(self, transaction: PaymentTransaction) -> None:
        async with self._session() as session:
            taken = await session.scalar(
                select(PaymentTransactionRow.id).where(
                    PaymentTransactionRow.reference == transaction.reference
                )
            )
            if taken is not None:
                raise DuplicateReferenceError(transaction.reference)
            session.add(PaymentTransactionRow(id=transaction.id, **_transaction_values(transaction)))

    async def get_transaction(self, transaction_id: UUID) -> PaymentTransaction | None:
        async with self._session() as session:
            row = await session.get(PaymentTransactionRow, transaction_id, populate_existing=True)
            return _transaction_record(row) if row else None

    async def get_transaction_by_reference(self, reference: str) -> PaymentTransaction | None:
        async with self._session() as session:
            row = await session.scalar(
                select(PaymentTransactionRow).where(PaymentTransactionRow.reference == reference)
            )
            return _transaction_record(row) if row else None

    async def get_transaction_by_push_id(self, push_id: str) -> PaymentTransaction | None:
        async with self._session() as session:
            row = await session.scalar(
                select(PaymentTransactionRow).where(
                    PaymentTransactionRow.provider_push_id == push_id
                )
            )
            return _transaction_record(row) if row else None

    async def list_transactions(
        self,
        wallet_id: UUID | None = None,
        status: PaymentStatus | None = None,
    ) -> list[PaymentTransaction]:
        stmt = select(PaymentTransactionRow).order_by(PaymentTransactionRow.created_at)
        if wallet_id is not None:
            stmt = stmt.where(PaymentTransactionRow.wallet_id == wallet_id)
        if status is not None:
            stmt = stmt.where(PaymentTransactionRow.status == status.value)
        async with self._session() as session:
            rows = await session.scalars(stmt)
            return [_transaction_record(row) for row in rows]

    async def update_transaction(self, transaction: PaymentTransaction) -> None:
        async with self._session() as session:
            row = await self._require(session, PaymentTransactionRow, transaction.id, "Transaction")
            _assign(row, _transaction_values(transaction))

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    async def add_invoice(self, invoice: InvoiceData) -> None:
        async with self._session() as session:
            row = InvoiceRow(id=invoice.id, **_invoice_values(invoice))
            row.items = [_item_row(item, i) for i, item in enumerate(invoice.items)]
            session.add(row)

    async def get_invoice(self, invoice_id: UUID) -> InvoiceData | None:
        async with self._session() as session:
            row = await session.get(InvoiceRow, invoice_id, populate_existing=True)
            return _invoice_record(row) if row else None

    async def list_invoices(self, status: InvoiceStatus | None = None) -> list[InvoiceData]:
        stmt = select(InvoiceRow).order_by(InvoiceRow.invoice_number)
        if status is not None:
            stmt = stmt.where(InvoiceRow.status == status.value)
        async with self._session() as session:
            rows = await session.scalars(stmt)
            return [_invoice_record(row) for row in rows]

    async def update_invoice(self, invoice: InvoiceData) -> None:
        async with self._session() as session:
            row = await self._require(session, InvoiceRow, invoice.id, "Invoice")
            _assign(row, _invoice_values(invoice))

            existing = {item.id: item for item in row.items}
            items = []
            for position, item in enumerate(invoice.items):
                item_row = existing.get(item.id)
                if item_row is None:
                    item_row = _item_row(item, position)
                else:
                    _assign(
                        item_row,
                        {
                            "position": position,
                            "description": item.description,
                            "quantity": item.quantity,
                            "unit": item.unit,
                            "unit_price": item.unit_price,
                            "line_total": item.line_total,
                        },
                    )
                items.append(item_row)
            row.items = items

    # -------------------------------------------------------------------------
    # Payroll
    # -------------------------------------------------------------------------

    async def add_payroll_period(self, period: PayrollPeriod) -> None:
        async with self._session() as session:
            session.add(PayrollPeriodRow(id=period.id, **_period_values(period)))

    async def get_payroll_period(self, period_id: UUID) -> PayrollPeriod | None:
        async with self._session() as session:
            row = await session.get(PayrollPeriodRow, period_id, populate_existing=True)
            return _period_record(row) if row else None

    async def transition_payroll_period(
        self, period: PayrollPeriod, expected: PayrollStatus
    ) -> bool:
        async with self._session() as session:
            result = await session.execute(
                update(PayrollPeriodRow)
                .where(
                    PayrollPeriodRow.id == period.id,
                    PayrollPeriodRow.status == expected.value,
                )
                .values(**_period_values(period))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return True
            await self._require(session, PayrollPeriodRow, period.id, "PayrollPeriod")
            return False

    async def add_salary_payment(self, payment: SalaryPayment) -> None:
        async with self._session() as session:
            session.add(SalaryPaymentRow(id=payment.id, **_salary_values(payment)))

    async def get_salary_payment(self, payment_id: UUID) -> SalaryPayment | None:
        async with self._session() as session:
            row = await session.get(SalaryPaymentRow, payment_id, populate_existing=True)
            return _salary_record(row) if row else None

    async def list_salary_payments(self, period_id: UUID) -> list[SalaryPayment]:
        async with self._session() as session:
            rows = await session.scalars(
                select(SalaryPaymentRow)
                .where(SalaryPaymentRow.payroll_period_id == period_id)
                .order_by(SalaryPaymentRow.employee_id)
            )
            return [_salary_record(row) for row in rows]

    async def update_salary_payment(self, payment: SalaryPayment) -> None:
        async with self._session() as session:
            row = await self._require(session, SalaryPaymentRow, payment.id, "SalaryPayment")
            _assign(row, _salary_values(payment))

    async def delete_salary_payments(self, period_id: UUID) -> int:
        async with self._session() as session:
            result = await session.execute(
                delete(SalaryPaymentRow).where(SalaryPaymentRow.payroll_period_id == period_id)
            )
            return result.rowcount or 0
