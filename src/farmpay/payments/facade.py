"""FarmPay facade - one object that wires the payment core together.

Usage:
    farmpay = FarmPay(store, gateway)

    wallet = await farmpay.ledger.get_or_create("user-1", "KES")
    txn = await farmpay.engine.execute(request)

    # Or process in the background and return at once
    txn = await farmpay.start_transaction(request)

    invoice = await farmpay.invoices.create_invoice(...)
    result = await farmpay.payroll.run(period_id, funding_wallet_id)

The facade:
- Builds the ledger, engine, invoice and payroll services over one store,
  one clock and one event emitter
- Binds the gateway's result callback to the engine
- Owns background processing tasks until they finish
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Coroutine
from uuid import UUID

from farmpay.payments.clock import Clock, SystemClock
from farmpay.payments.errors import PaymentError, ValidationError
from farmpay.payments.events.emitter import EventEmitter
from farmpay.payments.providers.base import MobileMoneyGateway
from farmpay.payments.providers.stub import MobileMoneyStubGateway
from farmpay.payments.registry import DEFAULT_REGISTRY, PaymentRegistry, PayrollPolicy
from farmpay.payments.services.invoice_service import InvoiceService
from farmpay.payments.services.payroll_processor import PayrollProcessor
from farmpay.payments.services.transaction_engine import EngineConfig, TransactionEngine
from farmpay.payments.services.wallet_ledger import WalletLedger
from farmpay.payments.state_machine import InvoiceStateMachine, PayrollStateMachine
from farmpay.payments.store.base import PaymentStore
from farmpay.payments.store.memory import InMemoryPaymentStore
from farmpay.payments.types import (
    InvoiceData,
    InvoiceStatus,
    PaymentStatus,
    PaymentTransaction,
    PayrollPeriod,
    PayrollStatus,
    TransactionRequest,
    TransactionType,
)

logger = logging.getLogger(__name__)


class FarmPay:
    """Payment core facade."""

    def __init__(
        self,
        store: PaymentStore,
        gateway: MobileMoneyGateway,
        registry: PaymentRegistry = DEFAULT_REGISTRY,
        clock: Clock | None = None,
        engine_config: EngineConfig | None = None,
        payroll_policy: PayrollPolicy | None = None,
        payroll_concurrency: int = 5,
        platform_user_id: str = "platform",
        events: EventEmitter | None = None,
    ):
        self.store = store
        self.gateway = gateway
        self.registry = registry
        self.clock = clock or SystemClock()
        self.events = events or EventEmitter()

        self.ledger = WalletLedger(store, self.clock, registry, platform_user_id)
        self.engine = TransactionEngine(
            store,
            self.ledger,
            gateway,
            registry=registry,
            clock=self.clock,
            config=engine_config,
            events=self.events,
        )
        self.invoices = InvoiceService(store, registry, self.clock, self.events)
        self.payroll = PayrollProcessor(
            store,
            self.engine,
            policy=payroll_policy,
            registry=registry,
            clock=self.clock,
            events=self.events,
            max_concurrency=payroll_concurrency,
        )

        bind = getattr(gateway, "bind", None)
        if callable(bind):
            bind(self.engine.handle_provider_result)

        self._tasks: set[asyncio.Task[Any]] = set()
        self._invoice_locks: defaultdict[UUID, asyncio.Lock] = defaultdict(asyncio.Lock)

    @classmethod
    def in_memory(cls, gateway: MobileMoneyGateway | None = None, **kwargs: Any) -> FarmPay:
        """Facade over an in-memory store and, by default, a stub gateway."""
        return cls(InMemoryPaymentStore(), gateway or MobileMoneyStubGateway(), **kwargs)

    async def recover(self) -> list[PaymentTransaction]:
        """Close transactions left in processing by a previous run."""
        return await self.engine.expire_stale()

    # -------------------------------------------------------------------------
    # Background processing
    # -------------------------------------------------------------------------

    async def start_transaction(self, request: TransactionRequest) -> PaymentTransaction:
        """Create a transaction and process it in the background.

        Validation errors are raised here; the returned record is pending.
        """
        transaction = await self.engine.create(request)
        self._spawn(self.engine.process(transaction.id), f"process-{transaction.reference}")
        return transaction

    async def start_payroll(self, period_id: UUID, funding_wallet_id: UUID) -> PayrollPeriod:
        """Check that a period can run, then run it in the background."""
        period = await self.payroll.get_period(period_id)
        PayrollStateMachine.validate_transition(period.status, PayrollStatus.PROCESSING)
        await self.ledger.get(funding_wallet_id)
        self._spawn(self.payroll.run(period_id, funding_wallet_id), f"payroll-{period_id}")
        return period

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Background task %s failed", task.get_name(), exc_info=error)

    async def drain(self) -> None:
        """Wait until every background task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel outstanding background work.

        Transactions interrupted while awaiting authorization are expired
        and their reservations returned.
        """
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def background_tasks(self) -> int:
        return len(self._tasks)

    # -------------------------------------------------------------------------
    # Composite operations
    # -------------------------------------------------------------------------

    async def pay_invoice(
        self,
        invoice_id: UUID,
        wallet_id: UUID,
        payment_method: str,
        phone_number: str,
        counterpart_wallet_id: UUID | None = None,
    ) -> tuple[PaymentTransaction, InvoiceData]:
        """Pay an invoice's total from a wallet and record the payment.

        The invoice is marked paid only when the transaction completes;
        otherwise it is returned unchanged next to the failed transaction.
        Payments of one invoice run one at a time. If a completed payment
        cannot be recorded against the invoice it is refunded and the
        recording error is raised.
        """
        async with self._invoice_locks[invoice_id]:
            invoice = await self.invoices.get_invoice(invoice_id)
            if not InvoiceStateMachine.can_transition(invoice.status, InvoiceStatus.PAID):
                raise ValidationError(
                    [f"Invoice {invoice.invoice_number} is {invoice.status.value} and cannot be paid"]
                )

            transaction = await self.engine.execute(
                TransactionRequest(
                    wallet_id=wallet_id,
                    type=TransactionType.INVOICE,
                    amount=invoice.total,
                    currency=invoice.currency,
                    payment_method=payment_method,
                    phone_number=phone_number,
                    description=f"Payment for invoice {invoice.invoice_number}",
                    counterpart=invoice.from_user.name,
                    counterpart_wallet_id=counterpart_wallet_id,
                    metadata={"invoice_id": str(invoice.id)},
                )
            )
            if transaction.status != PaymentStatus.COMPLETED:
                return transaction, invoice

            try:
                invoice = await self.invoices.record_payment(invoice.id, transaction.reference)
            except PaymentError as e:
                logger.warning(
                    "Payment %s could not be recorded on invoice %s: %s; refunding",
                    transaction.reference,
                    invoice.invoice_number,
                    e,
                )
                await self.engine.refund(
                    transaction.id, f"Invoice {invoice.invoice_number} could not be settled"
                )
                raise
            return transaction, invoice
