"""Tests for the invoice lifecycle."""

import asyncio
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from farmpay.payments.errors import InvalidTransitionError, NotFoundError, ValidationError
from farmpay.payments.events import InvoiceCancelled, InvoicePaid, InvoiceSent
from farmpay.payments.facade import FarmPay
from farmpay.payments.providers.base import AuthorizationOutcome
from farmpay.payments.providers.stub import MobileMoneyStubGateway
from farmpay.payments.types import (
    ContactInfo,
    InvoiceItem,
    InvoiceStatus,
    PaymentStatus,
    TransactionType,
)

from tests.conftest import fund, payment_request

SELLER = ContactInfo(id="farm-1", name="Green Valley Farm", phone="254712345678")
BUYER = ContactInfo(id="coop-1", name="Nakuru Dairy Co-op", email="buy@coop.example")


def _maize() -> InvoiceItem:
    return InvoiceItem(
        description="Maize", quantity=Decimal("10"), unit="bag", unit_price=Decimal("100")
    )


@pytest.fixture
def invoices(farmpay):
    return farmpay.invoices


async def _sent_invoice(invoices, **kwargs):
    invoice = await invoices.create_invoice(SELLER, BUYER, "KES", items=[_maize()], **kwargs)
    return await invoices.send_invoice(invoice.id)


class TestCreateInvoice:
    """Test drafting."""

    async def test_totals_and_terms(self, invoices):
        invoice = await invoices.create_invoice(
            SELLER, BUYER, "KES", items=[_maize()], issue_date=date(2024, 7, 1)
        )

        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.invoice_number == "INV-202407-0001"
        assert invoice.items[0].line_total == Decimal("1000.00")
        assert invoice.subtotal == Decimal("1000.00")
        assert invoice.tax_amount == Decimal("160.00")
        assert invoice.total == Decimal("1160.00")
        assert invoice.due_date == date(2024, 7, 15)
        assert invoice.payment_terms == 14

    async def test_issue_date_defaults_to_today(self, invoices, clock):
        invoice = await invoices.create_invoice(SELLER, BUYER, "KES")
        assert invoice.issue_date == clock.now().date()
        assert invoice.total == 0

    async def test_numbers_are_sequential(self, invoices):
        first = await invoices.create_invoice(SELLER, BUYER, "KES")
        second = await invoices.create_invoice(SELLER, BUYER, "KES")
        assert first.invoice_number == "INV-202407-0001"
        assert second.invoice_number == "INV-202407-0002"

    async def test_validation_errors_accumulate(self, invoices):
        bad_item = InvoiceItem(
            description=" ", quantity=Decimal("0"), unit="bag", unit_price=Decimal("-1")
        )
        with pytest.raises(ValidationError) as exc_info:
            await invoices.create_invoice(
                SELLER, SELLER, "EUR", payment_terms=-1, items=[bad_item]
            )

        errors = exc_info.value.errors
        assert "Unsupported currency: EUR" in errors
        assert "An invoice cannot be addressed to its issuer" in errors
        assert "Item description is required" in errors
        assert len(errors) >= 5
        assert await invoices.list_invoices() == []


class TestDraftEditing:
    """Totals are recomputed after every item change."""

    async def test_add_and_remove_items(self, invoices):
        invoice = await invoices.create_invoice(SELLER, BUYER, "KES", items=[_maize()])
        invoice = await invoices.add_item(
            invoice.id, "Milk", Decimal("2.5"), "litre", Decimal("45.33")
        )

        milk = invoice.items[1]
        assert milk.line_total == Decimal("113.33")
        assert invoice.subtotal == Decimal("1113.33")
        assert invoice.tax_amount == Decimal("178.13")
        assert invoice.total == invoice.subtotal + invoice.tax_amount

        invoice = await invoices.remove_item(invoice.id, milk.id)
        assert invoice.total == Decimal("1160.00")

    async def test_remove_unknown_item(self, invoices):
        invoice = await invoices.create_invoice(SELLER, BUYER, "KES", items=[_maize()])
        with pytest.raises(NotFoundError):
            await invoices.remove_item(invoice.id, uuid4())

    async def test_update_terms(self, invoices):
        invoice = await invoices.create_invoice(
            SELLER, BUYER, "KES", items=[_maize()], issue_date=date(2024, 7, 1)
        )
        invoice = await invoices.update_terms(
            invoice.id, tax_rate=Decimal("0"), payment_terms=30, notes="Net 30"
        )

        assert invoice.tax_amount == 0
        assert invoice.total == Decimal("1000.00")
        assert invoice.due_date == date(2024, 7, 31)
        assert invoice.notes == "Net 30"

    async def test_sent_invoice_is_frozen(self, invoices):
        invoice = await _sent_invoice(invoices)
        with pytest.raises(InvalidTransitionError):
            await invoices.add_item(invoice.id, "Beans", Decimal("1"), "bag", Decimal("50"))
        with pytest.raises(InvalidTransitionError):
            await invoices.update_terms(invoice.id, payment_terms=7)


class TestLifecycle:
    """Test send, cancel and overdue."""

    async def test_send(self, invoices, recorder):
        invoice = await _sent_invoice(invoices)
        assert invoice.status == InvoiceStatus.SENT
        assert recorder.of_type(InvoiceSent)[0].total == Decimal("1160.00")

    async def test_cannot_send_empty_invoice(self, invoices):
        invoice = await invoices.create_invoice(SELLER, BUYER, "KES")
        with pytest.raises(ValidationError):
            await invoices.send_invoice(invoice.id)

    async def test_cancel(self, invoices, recorder):
        invoice = await _sent_invoice(invoices)
        invoice = await invoices.cancel_invoice(invoice.id)
        assert invoice.status == InvoiceStatus.CANCELLED
        assert len(recorder.of_type(InvoiceCancelled)) == 1

        with pytest.raises(InvalidTransitionError):
            await invoices.send_invoice(invoice.id)

    async def test_overdue_is_derived(self, invoices, clock):
        invoice = await _sent_invoice(invoices, issue_date=date(2024, 7, 1))

        clock.set(datetime(2024, 7, 10, tzinfo=timezone.utc))
        assert invoices.effective_status(invoice) == InvoiceStatus.SENT

        clock.set(datetime(2024, 8, 1, tzinfo=timezone.utc))
        assert invoices.effective_status(invoice) == InvoiceStatus.OVERDUE
        assert invoices.view(invoice).status == InvoiceStatus.OVERDUE
        # Never written
        assert (await invoices.get_invoice(invoice.id)).status == InvoiceStatus.SENT

        overdue = await invoices.list_invoices(InvoiceStatus.OVERDUE)
        assert [i.id for i in overdue] == [invoice.id]
        assert await invoices.list_invoices(InvoiceStatus.SENT) == []

    async def test_summary(self, invoices, clock):
        await _sent_invoice(invoices, issue_date=date(2024, 6, 1))
        await _sent_invoice(invoices, issue_date=date(2024, 7, 1))
        await invoices.create_invoice(SELLER, BUYER, "KES")

        summary = await invoices.summarize()

        assert summary.counts["overdue"] == 1
        assert summary.counts["sent"] == 1
        assert summary.counts["draft"] == 1
        assert summary.total_count == 3
        assert summary.outstanding == {"KES": Decimal("2320.00")}
        assert summary.overdue == {"KES": Decimal("1160.00")}
        assert summary.paid == {}


class TestRecordPayment:
    """Paid is reached only through a completed transaction."""

    async def test_pay_with_completed_transaction(self, farmpay, invoices, wallet, recorder):
        invoice = await _sent_invoice(invoices)
        txn = await farmpay.engine.execute(payment_request(wallet.id, "1160"))

        invoice = await invoices.record_payment(invoice.id, txn.reference)

        assert invoice.status == InvoiceStatus.PAID
        assert invoice.payment_reference == txn.reference
        assert invoice.payment_method == "mpesa"
        assert invoice.payment_date == txn.completed_at
        assert recorder.of_type(InvoicePaid)[0].payment_reference == txn.reference

    async def test_overdue_invoice_can_be_paid(self, farmpay, invoices, wallet, clock):
        invoice = await _sent_invoice(invoices, issue_date=date(2024, 5, 1))
        txn = await farmpay.engine.execute(payment_request(wallet.id, "1160"))
        invoice = await invoices.record_payment(invoice.id, txn.reference)
        assert invoices.effective_status(invoice) == InvoiceStatus.PAID

    async def test_rejects_incomplete_or_short_payment(self, farmpay, invoices, wallet):
        invoice = await _sent_invoice(invoices)
        pending = await farmpay.engine.create(payment_request(wallet.id, "1160"))
        short = await farmpay.engine.execute(payment_request(wallet.id, "1000"))

        with pytest.raises(ValidationError) as exc_info:
            await invoices.record_payment(invoice.id, pending.reference)
        assert f"Transaction {pending.reference} is pending, not completed" in exc_info.value.errors

        with pytest.raises(ValidationError) as exc_info:
            await invoices.record_payment(invoice.id, short.reference)
        assert any("does not cover" in e for e in exc_info.value.errors)

        assert (await invoices.get_invoice(invoice.id)).status == InvoiceStatus.SENT

    async def test_one_transaction_pays_one_invoice(self, farmpay, invoices, wallet):
        first = await _sent_invoice(invoices)
        second = await _sent_invoice(invoices)
        txn = await farmpay.engine.execute(payment_request(wallet.id, "1160"))

        await invoices.record_payment(first.id, txn.reference)
        with pytest.raises(ValidationError):
            await invoices.record_payment(second.id, txn.reference)

    async def test_draft_cannot_be_paid(self, farmpay, invoices, wallet):
        invoice = await invoices.create_invoice(SELLER, BUYER, "KES", items=[_maize()])
        txn = await farmpay.engine.execute(payment_request(wallet.id, "1160"))
        with pytest.raises(InvalidTransitionError):
            await invoices.record_payment(invoice.id, txn.reference)

    async def test_unknown_reference(self, invoices):
        invoice = await _sent_invoice(invoices)
        with pytest.raises(NotFoundError):
            await invoices.record_payment(invoice.id, "PAY_NOPE_000000")


class TestPayInvoice:
    """Test the facade's pay-and-record flow."""

    async def test_pay_invoice_credits_seller(self, farmpay, wallet, payee_wallet):
        invoice = await _sent_invoice(farmpay.invoices)

        txn, invoice = await farmpay.pay_invoice(
            invoice.id, wallet.id, "mpesa", "254712345678", counterpart_wallet_id=payee_wallet.id
        )

        assert txn.status == PaymentStatus.COMPLETED
        assert txn.metadata["invoice_id"] == str(invoice.id)
        assert invoice.status == InvoiceStatus.PAID
        assert (await farmpay.ledger.get(payee_wallet.id)).balance == Decimal("1160.00")

    async def test_failed_payment_leaves_invoice_sent(self, farmpay, wallet):
        invoice = await _sent_invoice(farmpay.invoices)
        await farmpay.ledger.settle(wallet.id, Decimal("-9500"))

        txn, invoice = await farmpay.pay_invoice(invoice.id, wallet.id, "mpesa", "254712345678")

        assert txn.status == PaymentStatus.FAILED
        assert invoice.status == InvoiceStatus.SENT

    async def test_cannot_pay_draft(self, farmpay, wallet):
        invoice = await farmpay.invoices.create_invoice(SELLER, BUYER, "KES", items=[_maize()])
        with pytest.raises(ValidationError):
            await farmpay.pay_invoice(invoice.id, wallet.id, "mpesa", "254712345678")

    async def test_concurrent_payments_charge_once(self, farmpay, wallet):
        invoice = await _sent_invoice(farmpay.invoices)

        results = await asyncio.gather(
            farmpay.pay_invoice(invoice.id, wallet.id, "mpesa", "254712345678"),
            farmpay.pay_invoice(invoice.id, wallet.id, "mpesa", "254712345678"),
            return_exceptions=True,
        )

        paid = [r for r in results if isinstance(r, tuple)]
        rejected = [r for r in results if isinstance(r, ValidationError)]
        assert len(paid) == 1
        assert len(rejected) == 1
        charges = await farmpay.engine.list_transactions(wallet.id)
        assert [t.type for t in charges] == [TransactionType.INVOICE]
        # 1160 total plus 4% fees
        assert (await farmpay.ledger.get(wallet.id)).balance == Decimal("8793.60")

    async def test_payment_is_refunded_when_invoice_cannot_record_it(self, clock):
        core = FarmPay.in_memory(MobileMoneyStubGateway(), clock=clock)
        created = await core.ledger.get_or_create("coop-1", "KES")
        wallet = await fund(core, created.id, Decimal("10000"))
        invoice = await _sent_invoice(core.invoices)

        task = asyncio.create_task(
            core.pay_invoice(invoice.id, wallet.id, "mpesa", "254712345678")
        )
        for _ in range(100):
            if core.engine.pending_authorizations:
                break
            await asyncio.sleep(0)
        await core.invoices.cancel_invoice(invoice.id)
        (charge,) = await core.engine.list_transactions(wallet.id)
        push = core.gateway.push_for_reference(charge.reference)
        await core.gateway.simulate_result(push.push_id, AuthorizationOutcome.confirmed())

        with pytest.raises(InvalidTransitionError):
            await task

        assert (await core.engine.get(charge.id)).status == PaymentStatus.REFUNDED
        assert (await core.ledger.get(wallet.id)).balance == Decimal("10000.00")
        assert (await core.invoices.get_invoice(invoice.id)).status == InvoiceStatus.CANCELLED
        await core.aclose()
