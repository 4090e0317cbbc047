"""Invoice Lifecycle Manager.

Invoices move draft → sent → paid | cancelled (draft may also be cancelled).
"Overdue" is never written: while an invoice is sent it reads as overdue
once the clock passes its due date.

Totals are recomputed from the items on every change:
    line_total = round(quantity * unit_price, 2)
    subtotal   = sum(line_total)
    tax_amount = round(subtotal * tax_rate / 100, 2)
    total      = subtotal + tax_amount
"""

from __future__ import annotations

import dataclasses
import logging
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from farmpay.payments.clock import Clock, SystemClock
from farmpay.payments.errors import (
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from farmpay.payments.events.emitter import EventEmitter
from farmpay.payments.events.types import (
    DomainEvent,
    EventMetadata,
    InvoiceCancelled,
    InvoicePaid,
    InvoiceSent,
)
from farmpay.payments.registry import DEFAULT_REGISTRY, PaymentRegistry
from farmpay.payments.state_machine import InvoiceStateMachine
from farmpay.payments.store.base import PaymentStore
from farmpay.payments.types import (
    ZERO,
    ContactInfo,
    InvoiceData,
    InvoiceItem,
    InvoiceStatus,
    PaymentStatus,
)
from farmpay.payments.utils import (
    calculate_due_date,
    generate_invoice_number,
    is_overdue,
    to_money,
)

logger = logging.getLogger(__name__)

DEFAULT_TAX_RATE = Decimal("16")
DEFAULT_PAYMENT_TERMS = 14


@dataclass(frozen=True)
class InvoiceSummary:
    """Dashboard statistics. Amounts are grouped by currency."""

    counts: dict[str, int]
    outstanding: dict[str, Decimal]
    overdue: dict[str, Decimal]
    paid: dict[str, Decimal]

    @property
    def total_count(self) -> int:
        return sum(self.counts.values())


def _item_errors(item: InvoiceItem) -> list[str]:
    errors = []
    if not item.description.strip():
        errors.append("Item description is required")
    if item.quantity <= 0:
        errors.append(f"Quantity for '{item.description}' must be greater than 0")
    if item.unit_price < 0:
        errors.append(f"Unit price for '{item.description}' cannot be negative")
    return errors


def _terms_errors(tax_rate: Decimal, payment_terms: int) -> list[str]:
    errors = []
    if not (0 <= tax_rate <= 100):
        errors.append("Tax rate must be between 0 and 100")
    if payment_terms < 0:
        errors.append("Payment terms cannot be negative")
    return errors


def recompute_totals(invoice: InvoiceData) -> None:
    """Recalculate line totals, subtotal, tax and total from scratch."""
    for item in invoice.items:
        item.line_total = to_money(item.quantity * item.unit_price)
    invoice.subtotal = sum((item.line_total for item in invoice.items), ZERO)
    invoice.tax_amount = to_money(invoice.subtotal * invoice.tax_rate / 100)
    invoice.total = invoice.subtotal + invoice.tax_amount


class InvoiceService:
    """Creates invoices, edits drafts and records payments against them."""

    def __init__(
        self,
        store: PaymentStore,
        registry: PaymentRegistry = DEFAULT_REGISTRY,
        clock: Clock | None = None,
        events: EventEmitter | None = None,
    ):
        self.store = store
        self.registry = registry
        self.clock = clock or SystemClock()
        self.events = events or EventEmitter()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get_invoice(self, invoice_id: UUID) -> InvoiceData:
        invoice = await self.store.get_invoice(invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    def effective_status(self, invoice: InvoiceData) -> InvoiceStatus:
        """Stored status, except a sent invoice past its due date reads as overdue."""
        if invoice.status == InvoiceStatus.SENT and is_overdue(invoice.due_date, self.clock.now()):
            return InvoiceStatus.OVERDUE
        return invoice.status

    def view(self, invoice: InvoiceData) -> InvoiceData:
        """Copy of the invoice carrying its effective status."""
        return dataclasses.replace(invoice, status=self.effective_status(invoice))

    async def list_invoices(self, status: InvoiceStatus | None = None) -> list[InvoiceData]:
        """List invoices, filtering on effective status."""
        invoices = await self.store.list_invoices()
        if status is not None:
            invoices = [i for i in invoices if self.effective_status(i) == status]
        return sorted(invoices, key=lambda i: i.invoice_number)

    async def summarize(self) -> InvoiceSummary:
        counts: Counter[str] = Counter()
        outstanding: defaultdict[str, Decimal] = defaultdict(lambda: ZERO)
        overdue: defaultdict[str, Decimal] = defaultdict(lambda: ZERO)
        paid: defaultdict[str, Decimal] = defaultdict(lambda: ZERO)

        for invoice in await self.store.list_invoices():
            status = self.effective_status(invoice)
            counts[status.value] += 1
            if status in (InvoiceStatus.SENT, InvoiceStatus.OVERDUE):
                outstanding[invoice.currency] += invoice.total
            if status == InvoiceStatus.OVERDUE:
                overdue[invoice.currency] += invoice.total
            elif status == InvoiceStatus.PAID:
                paid[invoice.currency] += invoice.total

        return InvoiceSummary(
            counts={s.value: counts.get(s.value, 0) for s in InvoiceStatus},
            outstanding=dict(outstanding),
            overdue=dict(overdue),
            paid=dict(paid),
        )

    # -------------------------------------------------------------------------
    # Drafting
    # -------------------------------------------------------------------------

    async def create_invoice(
        self,
        from_user: ContactInfo,
        to_user: ContactInfo,
        currency: str,
        tax_rate: Decimal = DEFAULT_TAX_RATE,
        payment_terms: int = DEFAULT_PAYMENT_TERMS,
        issue_date: date | None = None,
        notes: str | None = None,
        items: Iterable[InvoiceItem] = (),
    ) -> InvoiceData:
        """Create a draft invoice numbered from the monthly sequence."""
        items = list(items)
        tax_rate = Decimal(str(tax_rate))
        errors = _terms_errors(tax_rate, payment_terms)
        if self.registry.get_currency(currency) is None:
            errors.append(f"Unsupported currency: {currency}")
        if from_user.id == to_user.id:
            errors.append("An invoice cannot be addressed to its issuer")
        for item in items:
            errors.extend(_item_errors(item))
        if errors:
            raise ValidationError(errors)

        now = self.clock.now()
        issue_date = issue_date or now.date()
        invoice = InvoiceData(
            invoice_number=await generate_invoice_number(self.store, issue_date),
            from_user=from_user,
            to_user=to_user,
            currency=currency,
            issue_date=issue_date,
            due_date=calculate_due_date(issue_date, payment_terms),
            payment_terms=payment_terms,
            tax_rate=tax_rate,
            items=items,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        recompute_totals(invoice)
        await self.store.add_invoice(invoice)

        logger.info("Created invoice %s for %s", invoice.invoice_number, to_user.name)
        return invoice

    async def add_item(
        self,
        invoice_id: UUID,
        description: str,
        quantity: Decimal,
        unit: str,
        unit_price: Decimal,
    ) -> InvoiceData:
        item = InvoiceItem(
            description=description,
            quantity=Decimal(str(quantity)),
            unit=unit,
            unit_price=Decimal(str(unit_price)),
        )
        errors = _item_errors(item)
        if errors:
            raise ValidationError(errors)

        invoice = await self._draft(invoice_id)
        invoice.items.append(item)
        return await self._save_draft(invoice)

    async def remove_item(self, invoice_id: UUID, item_id: UUID) -> InvoiceData:
        invoice = await self._draft(invoice_id)
        remaining = [item for item in invoice.items if item.id != item_id]
        if len(remaining) == len(invoice.items):
            raise NotFoundError("InvoiceItem", item_id)
        invoice.items = remaining
        return await self._save_draft(invoice)

    async def update_terms(
        self,
        invoice_id: UUID,
        tax_rate: Decimal | None = None,
        payment_terms: int | None = None,
        notes: str | None = None,
    ) -> InvoiceData:
        invoice = await self._draft(invoice_id)
        if tax_rate is not None:
            invoice.tax_rate = Decimal(str(tax_rate))
        if payment_terms is not None:
            invoice.payment_terms = payment_terms
        if notes is not None:
            invoice.notes = notes

        errors = _terms_errors(invoice.tax_rate, invoice.payment_terms)
        if errors:
            raise ValidationError(errors)
        invoice.due_date = calculate_due_date(invoice.issue_date, invoice.payment_terms)
        return await self._save_draft(invoice)

    async def _draft(self, invoice_id: UUID) -> InvoiceData:
        invoice = await self.get_invoice(invoice_id)
        if not InvoiceStateMachine.can_modify_items(invoice.status):
            raise InvalidTransitionError(
                invoice.status.value,
                InvoiceStatus.DRAFT.value,
                "only draft invoices can be modified",
            )
        return invoice

    async def _save_draft(self, invoice: InvoiceData) -> InvoiceData:
        recompute_totals(invoice)
        invoice.updated_at = self.clock.now()
        await self.store.update_invoice(invoice)
        return invoice

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def send_invoice(self, invoice_id: UUID) -> InvoiceData:
        invoice = await self.get_invoice(invoice_id)
        InvoiceStateMachine.validate_transition(invoice.status, InvoiceStatus.SENT)
        if not invoice.items:
            raise ValidationError(["Invoice has no items"])
        if invoice.total <= 0:
            raise ValidationError(["Invoice total must be greater than 0"])

        await self._transition(invoice, InvoiceStatus.SENT)
        self._emit(
            InvoiceSent(
                metadata=self._metadata(invoice.id),
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
                total=invoice.total,
                currency=invoice.currency,
                due_date=invoice.due_date,
            )
        )
        return invoice

    async def cancel_invoice(self, invoice_id: UUID) -> InvoiceData:
        invoice = await self.get_invoice(invoice_id)
        InvoiceStateMachine.validate_transition(invoice.status, InvoiceStatus.CANCELLED)
        await self._transition(invoice, InvoiceStatus.CANCELLED)
        self._emit(
            InvoiceCancelled(
                metadata=self._metadata(invoice.id),
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
            )
        )
        return invoice

    async def record_payment(self, invoice_id: UUID, reference: str) -> InvoiceData:
        """Mark an invoice paid by a completed transaction.

        Raises:
            InvalidTransitionError: The invoice is not sent (or overdue).
            NotFoundError: No transaction has this reference.
            ValidationError: The transaction did not complete, is in another
                currency, does not cover the total, or already paid an invoice.
        """
        invoice = await self.get_invoice(invoice_id)
        InvoiceStateMachine.validate_transition(invoice.status, InvoiceStatus.PAID)

        transaction = await self.store.get_transaction_by_reference(reference)
        if transaction is None:
            raise NotFoundError("Transaction", reference)

        errors = []
        if transaction.status != PaymentStatus.COMPLETED:
            errors.append(f"Transaction {reference} is {transaction.status.value}, not completed")
        if transaction.currency != invoice.currency:
            errors.append(
                f"Transaction currency {transaction.currency} does not match "
                f"invoice currency {invoice.currency}"
            )
        elif transaction.amount < invoice.total:
            errors.append(
                f"Transaction amount {transaction.amount} does not cover "
                f"invoice total {invoice.total}"
            )
        for other in await self.store.list_invoices(InvoiceStatus.PAID):
            if other.payment_reference == reference:
                errors.append(f"Transaction {reference} already paid invoice {other.invoice_number}")
        if errors:
            raise ValidationError(errors)

        invoice.payment_date = transaction.completed_at or self.clock.now()
        invoice.payment_method = transaction.payment_method
        invoice.payment_reference = reference
        await self._transition(invoice, InvoiceStatus.PAID)

        self._emit(
            InvoicePaid(
                metadata=self._metadata(invoice.id),
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
                payment_reference=reference,
                total=invoice.total,
            )
        )
        return invoice

    async def _transition(self, invoice: InvoiceData, status: InvoiceStatus) -> None:
        previous = invoice.status
        invoice.status = status
        invoice.updated_at = self.clock.now()
        await self.store.update_invoice(invoice)
        logger.info(
            "Invoice %s: %s -> %s", invoice.invoice_number, previous.value, status.value
        )

    def _metadata(self, invoice_id: UUID) -> EventMetadata:
        return EventMetadata.create(
            correlation_id=invoice_id,
            source_service="invoice_service",
            timestamp=self.clock.now(),
        )

    def _emit(self, event: DomainEvent) -> None:
        self.events.emit(event)
