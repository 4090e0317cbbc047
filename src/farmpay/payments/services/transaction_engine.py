"""Transaction Engine - drives a payment transaction through its lifecycle.

Lifecycle:
    pending → processing → completed | failed
    pending → cancelled
    pending | processing → expired
    completed → refunded (written by a compensating refund transaction)

process() is the only place that waits: after the STK push goes out it
suspends on a future that handle_provider_result() resolves, bounded by
the authorization timeout.

Failures during processing (insufficient funds, provider decline or error,
timeout, settlement failure) are recorded on the transaction rather than
raised. Validation and transition errors propagate to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from uuid import UUID

from farmpay.payments.clock import Clock, SystemClock
from farmpay.payments.errors import (
    DuplicateReferenceError,
    InsufficientFundsError,
    InvalidTransitionError,
    InvariantViolationError,
    NotFoundError,
    ProviderError,
    TimeoutExpiredError,
    ValidationError,
)
from farmpay.payments.events.emitter import EventEmitter
from farmpay.payments.events.types import (
    AuthorizationRequested,
    DomainEvent,
    EventMetadata,
    TransactionCancelled,
    TransactionCompleted,
    TransactionCreated,
    TransactionExpired,
    TransactionFailed,
    TransactionRefunded,
)
from farmpay.payments.providers.base import AuthorizationOutcome, MobileMoneyGateway
from farmpay.payments.registry import DEFAULT_REGISTRY, PaymentRegistry
from farmpay.payments.services.wallet_ledger import WalletLedger
from farmpay.payments.state_machine import TransactionStateMachine
from farmpay.payments.store.base import PaymentStore
from farmpay.payments.types import (
    REFERENCE_PREFIXES,
    ZERO,
    PaymentStatus,
    PaymentTransaction,
    SettlementEntry,
    TransactionRequest,
    TransactionType,
    WalletAccount,
    WalletStatus,
)
from farmpay.payments.utils import (
    calculate_transaction_fees,
    format_currency,
    generate_payment_ref,
    to_money,
    validate_amount,
    validate_momo_number,
)

logger = logging.getLogger(__name__)

# Types that may credit an internal counterpart wallet on settlement
COUNTERPART_TYPES = frozenset({TransactionType.PAYMENT, TransactionType.INVOICE})

# Statuses whose amounts count towards the daily and monthly limits
LIMITED_STATUSES = frozenset({PaymentStatus.PROCESSING, PaymentStatus.COMPLETED})


def _processing_started(transaction: PaymentTransaction) -> datetime | None:
    started = transaction.metadata.get("processing_started_at")
    if started:
        return datetime.fromisoformat(started)
    return transaction.created_at


@dataclass(frozen=True)
class EngineConfig:
    """Transaction engine settings.

    Attributes:
        authorization_timeout: Seconds to wait for the payer's PIN.
        reference_attempts: Reference generations tried before giving up
            on a collision.
    """

    authorization_timeout: float = 120.0
    reference_attempts: int = 5

    def __post_init__(self) -> None:
        if self.authorization_timeout <= 0:
            raise ValueError("authorization_timeout must be positive")
        if self.reference_attempts < 1:
            raise ValueError("reference_attempts must be at least 1")


class CallbackStatus(str, Enum):
    """What handle_provider_result() did with a result."""

    PROCESSED = "processed"
    DUPLICATE = "duplicate"  # Transaction already terminal; ignored
    UNKNOWN = "unknown"  # No transaction for this push


@dataclass
class _Waiter:
    reference: str
    future: asyncio.Future[AuthorizationOutcome] = field(repr=False)


class TransactionEngine:
    """Creates, processes, cancels and refunds payment transactions.

    Usage:
        engine = TransactionEngine(store, ledger, gateway)
        txn = await engine.create(request)
        txn = await engine.process(txn.id)
        assert txn.status in TransactionStateMachine.TERMINAL
    """

    def __init__(
        self,
        store: PaymentStore,
        ledger: WalletLedger,
        gateway: MobileMoneyGateway,
        registry: PaymentRegistry = DEFAULT_REGISTRY,
        clock: Clock | None = None,
        config: EngineConfig | None = None,
        events: EventEmitter | None = None,
    ):
        self.store = store
        self.ledger = ledger
        self.gateway = gateway
        self.registry = registry
        self.clock = clock or SystemClock()
        self.config = config or EngineConfig()
        self.events = events or EventEmitter()
        self._waiters: dict[str, _Waiter] = {}  # push_id → waiter
        self._in_flight: set[UUID] = set()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get(self, transaction_id: UUID) -> PaymentTransaction:
        transaction = await self.store.get_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError("Transaction", transaction_id)
        return transaction

    async def get_by_reference(self, reference: str) -> PaymentTransaction:
        transaction = await self.store.get_transaction_by_reference(reference)
        if transaction is None:
            raise NotFoundError("Transaction", reference)
        return transaction

    async def list_transactions(
        self,
        wallet_id: UUID | None = None,
        status: PaymentStatus | None = None,
    ) -> list[PaymentTransaction]:
        transactions = await self.store.list_transactions(wallet_id, status)
        return sorted(transactions, key=lambda t: t.created_at or self.clock.now())

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    async def create(self, request: TransactionRequest) -> PaymentTransaction:
        """Validate a request and persist it as a pending transaction.

        Raises:
            ValidationError: With every failure found. Nothing is persisted.
            NotFoundError: The source wallet does not exist.
        """
        wallet = await self.ledger.get(request.wallet_id)
        errors = await self._validate(request, wallet)
        if errors:
            raise ValidationError(errors)

        amount = to_money(request.amount)
        transaction = PaymentTransaction(
            wallet_id=request.wallet_id,
            type=request.type,
            amount=amount,
            currency=request.currency,
            payment_method=request.payment_method,
            reference="",
            description=request.description,
            counterpart=request.counterpart,
            counterpart_wallet_id=request.counterpart_wallet_id,
            phone_number=request.phone_number.removeprefix("+"),
            fees=calculate_transaction_fees(request.type, amount, self.registry),
            created_at=self.clock.now(),
            metadata=dict(request.metadata),
        )
        await self._insert_with_reference(transaction)

        logger.info(
            "Created %s transaction %s for %s %s",
            transaction.type.value,
            transaction.reference,
            transaction.amount,
            transaction.currency,
        )
        self._emit(
            TransactionCreated(
                metadata=self._metadata(transaction.id),
                transaction_id=transaction.id,
                wallet_id=transaction.wallet_id,
                transaction_type=transaction.type.value,
                amount=transaction.amount,
                fees_total=transaction.fees.total,
                currency=transaction.currency,
                reference=transaction.reference,
            )
        )
        return transaction

    async def _validate(
        self,
        request: TransactionRequest,
        wallet: WalletAccount,
    ) -> list[str]:
        if request.type == TransactionType.REFUND:
            return ["Refunds are issued against a completed transaction"]

        errors = list(
            validate_amount(
                request.amount, request.currency, request.payment_method, self.registry
            ).errors
        )

        provider = self.registry.get_provider(request.payment_method)
        if provider is not None and not validate_momo_number(
            request.phone_number, request.payment_method, self.registry
        ):
            errors.append(f"Invalid {provider.name} number: {request.phone_number}")

        if request.currency != wallet.currency:
            errors.append(
                f"Currency {request.currency} does not match wallet currency {wallet.currency}"
            )
        if wallet.status != WalletStatus.ACTIVE:
            errors.append("Wallet is suspended")
        errors.extend(await self._limit_errors(request, wallet))

        if request.counterpart_wallet_id is not None:
            if request.type not in COUNTERPART_TYPES:
                errors.append(f"A {request.type.value} cannot credit another wallet")
            elif request.counterpart_wallet_id == request.wallet_id:
                errors.append("Counterpart wallet must differ from the source wallet")
            else:
                counterpart = await self.store.get_wallet(request.counterpart_wallet_id)
                if counterpart is None:
                    errors.append(f"Unknown counterpart wallet: {request.counterpart_wallet_id}")
                elif counterpart.currency != request.currency:
                    errors.append("Counterpart wallet currency does not match")
                elif self._over_wallet_limit(
                    counterpart,
                    self.registry.to_reference(Decimal(str(request.amount)), request.currency),
                ):
                    errors.append("Counterpart wallet balance would exceed its limit")

        return errors

    async def _limit_errors(
        self,
        request: TransactionRequest,
        wallet: WalletAccount,
    ) -> list[str]:
        limits = self.registry.limits
        amount = self.registry.to_reference(Decimal(str(request.amount)), request.currency)
        if amount <= 0:
            return []

        errors: list[str] = []
        if request.type == TransactionType.TOPUP and self._over_wallet_limit(wallet, amount):
            errors.append(
                f"Wallet balance would exceed {self._reference_amount(limits.wallet_limit)}"
            )

        now = self.clock.now()
        daily = monthly = ZERO
        for transaction in await self.store.list_transactions(wallet.id):
            created = transaction.created_at
            if (
                transaction.type == TransactionType.REFUND
                or transaction.status not in LIMITED_STATUSES
                or created is None
                or (created.year, created.month) != (now.year, now.month)
            ):
                continue
            volume = self.registry.to_reference(transaction.amount, transaction.currency)
            monthly += volume
            if created.date() == now.date():
                daily += volume

        if daily + amount > limits.daily_limit:
            errors.append(f"Daily limit of {self._reference_amount(limits.daily_limit)} reached")
        if monthly + amount > limits.monthly_limit:
            errors.append(
                f"Monthly limit of {self._reference_amount(limits.monthly_limit)} reached"
            )
        return errors

    def _over_wallet_limit(self, wallet: WalletAccount, amount: Decimal) -> bool:
        balance = self.registry.to_reference(wallet.balance, wallet.currency)
        return balance + amount > self.registry.limits.wallet_limit

    def _reference_amount(self, amount: Decimal) -> str:
        return format_currency(amount, self.registry.reference_currency, self.registry)

    async def _insert_with_reference(self, transaction: PaymentTransaction) -> None:
        prefix = REFERENCE_PREFIXES[transaction.type]
        for _ in range(self.config.reference_attempts):
            transaction.reference = generate_payment_ref(prefix)
            try:
                await self.store.add_transaction(transaction)
                return
            except DuplicateReferenceError:
                logger.warning("Reference %s collided; regenerating", transaction.reference)
        raise InvariantViolationError(
            f"Could not allocate a unique {prefix} reference after "
            f"{self.config.reference_attempts} attempts"
        )

    # -------------------------------------------------------------------------
    # Process
    # -------------------------------------------------------------------------

    async def execute(self, request: TransactionRequest) -> PaymentTransaction:
        """Create then process a transaction."""
        transaction = await self.create(request)
        return await self.process(transaction.id)

    async def process(self, transaction_id: UUID) -> PaymentTransaction:
        """Reserve, authorize and settle a pending transaction.

        Returns the transaction in its terminal status.

        Raises:
            InvalidTransitionError: The transaction is not pending.
        """
        if transaction_id in self._in_flight:
            raise InvalidTransitionError(
                PaymentStatus.PROCESSING.value,
                PaymentStatus.PROCESSING.value,
                "transaction is already being processed",
            )
        self._in_flight.add(transaction_id)
        try:
            return await self._process(transaction_id)
        finally:
            self._in_flight.discard(transaction_id)

    async def _process(self, transaction_id: UUID) -> PaymentTransaction:
        transaction = await self.get(transaction_id)
        TransactionStateMachine.validate_transition(transaction.status, PaymentStatus.PROCESSING)
        transaction.status = PaymentStatus.PROCESSING
        transaction.metadata["processing_started_at"] = self.clock.now().isoformat()

        async def mark_processing() -> None:
            await self.store.update_transaction(transaction)

        # A stored debit in processing always holds its reservation
        reserved = transaction.type.is_debit
        if reserved:
            try:
                await self.ledger.reserve(
                    transaction.wallet_id, transaction.amount_due, on_commit=mark_processing
                )
            except (InsufficientFundsError, InvariantViolationError) as e:
                return await self._close(
                    transaction,
                    PaymentStatus.FAILED,
                    str(e),
                    release=False,
                    expected=PaymentStatus.PENDING,
                )
        else:
            await mark_processing()

        try:
            return await self._authorize(transaction, reserved)
        except asyncio.CancelledError:
            await asyncio.shield(self._abandon(transaction.id))
            raise

    async def _authorize(
        self, transaction: PaymentTransaction, reserved: bool
    ) -> PaymentTransaction:
        future: asyncio.Future[AuthorizationOutcome] = asyncio.get_running_loop().create_future()
        push_id: str | None = None
        try:
            try:
                push = await self.gateway.initiate_authorization(
                    transaction.phone_number or "",
                    transaction.amount_due,
                    transaction.currency,
                    transaction.reference,
                )
            except ProviderError as e:
                logger.warning("Push for %s failed: %s", transaction.reference, e)
                return await self._fail(transaction, f"Provider error: {e}", release=reserved)
            except Exception as e:
                logger.exception("Push for %s raised", transaction.reference)
                return await self._fail(transaction, f"Provider error: {e!r}", release=reserved)

            if not push.accepted:
                logger.warning("Push for %s rejected: %s", transaction.reference, push.message)
                return await self._fail(
                    transaction, push.message or "Authorization request rejected", release=reserved
                )

            push_id = push.push_id
            self._waiters[push_id] = _Waiter(transaction.reference, future)
            transaction.provider_push_id = push_id
            await self.store.update_transaction(transaction)
            self._emit(
                AuthorizationRequested(
                    metadata=self._metadata(transaction.id),
                    transaction_id=transaction.id,
                    reference=transaction.reference,
                    push_id=push_id,
                    timeout_seconds=self.config.authorization_timeout,
                )
            )

            try:
                outcome = await asyncio.wait_for(future, timeout=self.config.authorization_timeout)
            except asyncio.TimeoutError:
                return await self._expire(transaction, release=reserved)

            return await self._conclude(transaction, outcome)
        finally:
            if push_id is not None:
                self._waiters.pop(push_id, None)

    async def _abandon(self, transaction_id: UUID) -> PaymentTransaction:
        """Close a transaction whose processing was cancelled mid-flight."""
        transaction = await self.get(transaction_id)
        if transaction.status != PaymentStatus.PROCESSING:
            return transaction
        logger.warning("Processing of %s was interrupted", transaction.reference)
        return await self._close(
            transaction,
            PaymentStatus.EXPIRED,
            "Processing interrupted before authorization completed",
            release=transaction.type.is_debit,
        )

    async def expire_stale(self) -> list[PaymentTransaction]:
        """Expire processing transactions whose authorization window has passed.

        Transactions this engine is still driving are left alone; anything
        else stuck in processing (e.g. after a restart) is closed and its
        reservation returned.
        """
        now = self.clock.now()
        window = timedelta(seconds=self.config.authorization_timeout)
        expired = []
        for transaction in await self.store.list_transactions(status=PaymentStatus.PROCESSING):
            if transaction.id in self._in_flight:
                continue
            started = _processing_started(transaction)
            if started is not None and now - started < window:
                continue
            closed = await self._expire(transaction, release=transaction.type.is_debit)
            if closed.status == PaymentStatus.EXPIRED:
                expired.append(closed)

        if expired:
            logger.warning("Expired %d stale transaction(s)", len(expired))
        return expired

    async def handle_provider_result(
        self, push_id: str, outcome: AuthorizationOutcome
    ) -> CallbackStatus:
        """Accept an authorization result from the provider.

        Results for terminal transactions are acknowledged and ignored, so a
        repeated or late callback never settles twice.
        """
        waiter = self._waiters.get(push_id)
        if waiter is not None:
            if waiter.future.done():
                return CallbackStatus.DUPLICATE
            waiter.future.set_result(outcome)
            logger.info("Result %s received for %s", outcome.status.value, waiter.reference)
            return CallbackStatus.PROCESSED

        transaction = await self.store.get_transaction_by_push_id(push_id)
        if transaction is None:
            logger.warning("Result for unknown push %s", push_id)
            return CallbackStatus.UNKNOWN
        if transaction.status != PaymentStatus.PROCESSING:
            logger.info(
                "Ignoring %s result for %s transaction %s",
                outcome.status.value,
                transaction.status.value,
                transaction.reference,
            )
            return CallbackStatus.DUPLICATE

        # Nobody is waiting (e.g. after a restart); conclude here
        await self._conclude(transaction, outcome)
        return CallbackStatus.PROCESSED

    async def _conclude(
        self, transaction: PaymentTransaction, outcome: AuthorizationOutcome
    ) -> PaymentTransaction:
        reserved = transaction.type.is_debit
        if not outcome.is_confirmed:
            reason = outcome.message or f"Provider returned {outcome.status.value}"
            logger.warning("Authorization for %s declined: %s", transaction.reference, reason)
            return await self._fail(transaction, reason, release=reserved)

        entries = await self._settlement_entries(transaction)
        completed_at = self.clock.now()

        async def commit() -> None:
            transaction.status = PaymentStatus.COMPLETED
            transaction.completed_at = completed_at
            transaction.metadata["settlement"] = [entry.to_dict() for entry in entries]
            if outcome.provider_reference:
                transaction.metadata["provider_reference"] = outcome.provider_reference
            await self.store.update_transaction(transaction)

        try:
            applied = await self.ledger.apply_settlement(
                entries,
                precondition=self._still_processing(transaction.id),
                on_commit=commit,
            )
        except (InvariantViolationError, NotFoundError) as e:
            logger.error("Settlement of %s failed: %s", transaction.reference, e)
            transaction = await self.get(transaction.id)
            return await self._fail(transaction, f"Settlement failed: {e}", release=reserved)

        if not applied:
            return await self.get(transaction.id)

        logger.info("Transaction %s completed", transaction.reference)
        self._emit(
            TransactionCompleted(
                metadata=self._metadata(transaction.id),
                transaction_id=transaction.id,
                reference=transaction.reference,
                amount=transaction.amount,
                fees_total=transaction.fees.total,
                currency=transaction.currency,
            )
        )
        return transaction

    async def _settlement_entries(self, transaction: PaymentTransaction) -> list[SettlementEntry]:
        entries: list[SettlementEntry] = []
        if transaction.type.is_debit:
            due = transaction.amount_due
            entries.append(SettlementEntry(transaction.wallet_id, -due, reserved=due))
            if transaction.counterpart_wallet_id and transaction.type in COUNTERPART_TYPES:
                entries.append(SettlementEntry(transaction.counterpart_wallet_id, transaction.amount))
        elif transaction.type == TransactionType.TOPUP:
            entries.append(SettlementEntry(transaction.wallet_id, transaction.amount))

        if transaction.fees.total > 0:
            fee_wallet = await self.ledger.fee_wallet(transaction.currency)
            entries.append(SettlementEntry(fee_wallet.id, transaction.fees.total))
        return entries

    def _still_processing(self, transaction_id: UUID):
        return self._still_in(transaction_id, PaymentStatus.PROCESSING)

    def _still_in(self, transaction_id: UUID, status: PaymentStatus):
        async def check() -> bool:
            current = await self.store.get_transaction(transaction_id)
            return current is not None and current.status == status

        return check

    async def _fail(
        self, transaction: PaymentTransaction, reason: str, *, release: bool
    ) -> PaymentTransaction:
        return await self._close(transaction, PaymentStatus.FAILED, reason, release=release)

    async def _expire(self, transaction: PaymentTransaction, *, release: bool) -> PaymentTransaction:
        error = TimeoutExpiredError(transaction.reference, self.config.authorization_timeout)
        logger.warning("%s", error)
        return await self._close(transaction, PaymentStatus.EXPIRED, str(error), release=release)

    async def _close(
        self,
        transaction: PaymentTransaction,
        status: PaymentStatus,
        reason: str,
        *,
        release: bool,
        expected: PaymentStatus = PaymentStatus.PROCESSING,
    ) -> PaymentTransaction:
        """Write a failed or expired status, returning any reservation.

        Nothing is written unless the stored status is still expected.
        """
        closed_at = self.clock.now()

        async def commit() -> None:
            TransactionStateMachine.validate_transition(transaction.status, status)
            transaction.status = status
            transaction.failed_at = closed_at
            transaction.failure_reason = reason
            await self.store.update_transaction(transaction)

        check = self._still_in(transaction.id, expected)
        if release:
            written = await self.ledger.release(
                transaction.wallet_id,
                transaction.amount_due,
                precondition=check,
                on_commit=commit,
            )
            if written is None:
                return await self.get(transaction.id)
        else:
            async with self.ledger.locked(transaction.wallet_id):
                if not await check():
                    return await self.get(transaction.id)
                await commit()

        if status == PaymentStatus.EXPIRED:
            event: DomainEvent = TransactionExpired(
                metadata=self._metadata(transaction.id),
                transaction_id=transaction.id,
                reference=transaction.reference,
                timeout_seconds=self.config.authorization_timeout,
            )
        else:
            logger.info("Transaction %s failed: %s", transaction.reference, reason)
            event = TransactionFailed(
                metadata=self._metadata(transaction.id),
                transaction_id=transaction.id,
                reference=transaction.reference,
                reason=reason,
            )
        self._emit(event)
        return transaction

    # -------------------------------------------------------------------------
    # Cancel / refund
    # -------------------------------------------------------------------------

    async def cancel(
        self, transaction_id: UUID, reason: str = "Cancelled by user"
    ) -> PaymentTransaction:
        """Abort a transaction that has not started processing."""
        transaction = await self.get(transaction_id)
        TransactionStateMachine.validate_transition(transaction.status, PaymentStatus.CANCELLED)
        transaction.status = PaymentStatus.CANCELLED
        transaction.failure_reason = reason
        await self.store.update_transaction(transaction)

        logger.info("Transaction %s cancelled", transaction.reference)
        self._emit(
            TransactionCancelled(
                metadata=self._metadata(transaction.id),
                transaction_id=transaction.id,
                reference=transaction.reference,
                reason=reason,
            )
        )
        return transaction

    async def refund(self, transaction_id: UUID, reason: str) -> PaymentTransaction:
        """Reverse a completed transaction with a compensating refund.

        The refund transaction applies the exact negation of the original's
        settlement entries and marks the original refunded in the same unit
        of work. Returns the refund transaction.

        Raises:
            InvalidTransitionError: The original is not completed.
            InsufficientFundsError: A credited wallet no longer holds the funds.
        """
        original = await self.get(transaction_id)
        TransactionStateMachine.validate_transition(original.status, PaymentStatus.REFUNDED)
        if original.type == TransactionType.REFUND:
            raise ValidationError(["Refund transactions cannot be refunded"])

        entries = [SettlementEntry(e.wallet_id, -e.delta) for e in original.settlement_entries]
        for entry in entries:
            if entry.delta < 0:
                wallet = await self.ledger.get(entry.wallet_id)
                if wallet.available_balance < -entry.delta:
                    raise InsufficientFundsError(
                        entry.wallet_id, -entry.delta, wallet.available_balance
                    )

        now = self.clock.now()
        refund = PaymentTransaction(
            wallet_id=original.wallet_id,
            type=TransactionType.REFUND,
            amount=original.amount,
            currency=original.currency,
            payment_method=original.payment_method,
            reference="",
            status=PaymentStatus.COMPLETED,
            description=f"Refund of {original.reference}: {reason}",
            counterpart=original.counterpart,
            phone_number=original.phone_number,
            created_at=now,
            completed_at=now,
            original_transaction_id=original.id,
            metadata={"settlement": [entry.to_dict() for entry in entries], "reason": reason},
        )

        async def still_completed() -> bool:
            current = await self.store.get_transaction(original.id)
            return current is not None and current.status == PaymentStatus.COMPLETED

        async def commit() -> None:
            await self.store.add_transaction(refund)
            original.status = PaymentStatus.REFUNDED
            await self.store.update_transaction(original)

        prefix = REFERENCE_PREFIXES[TransactionType.REFUND]
        for _ in range(self.config.reference_attempts):
            refund.reference = generate_payment_ref(prefix)
            try:
                applied = await self.ledger.apply_settlement(
                    entries, precondition=still_completed, on_commit=commit
                )
            except DuplicateReferenceError:
                logger.warning("Reference %s collided; regenerating", refund.reference)
                continue
            except InvariantViolationError as e:
                current = await self.get(original.id)
                if current.status != PaymentStatus.COMPLETED:
                    raise InvalidTransitionError(
                        current.status.value, PaymentStatus.REFUNDED.value
                    ) from e
                raise
            if not applied:
                current = await self.get(original.id)
                raise InvalidTransitionError(current.status.value, PaymentStatus.REFUNDED.value)
            break
        else:
            raise InvariantViolationError("Could not allocate a unique refund reference")

        logger.info("Transaction %s refunded by %s", original.reference, refund.reference)
        self._emit(
            TransactionRefunded(
                metadata=self._metadata(original.id),
                transaction_id=original.id,
                refund_transaction_id=refund.id,
                amount=refund.amount,
                reason=reason,
            )
        )
        return refund

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _metadata(self, correlation_id: UUID) -> EventMetadata:
        return EventMetadata.create(
            correlation_id=correlation_id,
            source_service="transaction_engine",
            timestamp=self.clock.now(),
        )

    def _emit(self, event: DomainEvent) -> None:
        self.events.emit(event)

    @property
    def pending_authorizations(self) -> int:
        """Number of pushes currently awaiting a result."""
        return len(self._waiters)
