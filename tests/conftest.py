"""Pytest fixtures for farmpay tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

import pytest
import pytest_asyncio

from farmpay.payments.clock import FixedClock
from farmpay.payments.events.emitter import EventRecorder
from farmpay.payments.facade import FarmPay
from farmpay.payments.providers.base import OutcomeStatus
from farmpay.payments.providers.stub import MobileMoneyStubGateway
from farmpay.payments.services.transaction_engine import EngineConfig
from farmpay.payments.types import TransactionRequest, TransactionType, WalletAccount

PAYER_PHONE = "254712345678"
PAYEE_PHONE = "254798765432"

# Timeout used by tests that wait for an authorization window to elapse
SHORT_TIMEOUT = 0.05


@pytest.fixture
def clock() -> FixedClock:
    """Clock pinned to 2024-07-01 09:00 UTC."""
    return FixedClock(datetime(2024, 7, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def gateway() -> MobileMoneyStubGateway:
    """Stub gateway that confirms every push."""
    return MobileMoneyStubGateway(default_outcome=OutcomeStatus.CONFIRMED)


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest_asyncio.fixture
async def farmpay(
    gateway: MobileMoneyStubGateway,
    clock: FixedClock,
    recorder: EventRecorder,
) -> AsyncGenerator[FarmPay, None]:
    """In-memory payment core with a 2 second authorization window."""
    core = FarmPay.in_memory(
        gateway,
        clock=clock,
        engine_config=EngineConfig(authorization_timeout=2.0),
    )
    core.events.on_all(recorder)
    yield core
    await core.aclose()


@pytest_asyncio.fixture
async def wallet(farmpay: FarmPay) -> WalletAccount:
    """KES wallet holding 10,000."""
    created = await farmpay.ledger.get_or_create("farmer-1", "KES")
    return await fund(farmpay, created.id, Decimal("10000"))


@pytest_asyncio.fixture
async def payee_wallet(farmpay: FarmPay) -> WalletAccount:
    """Empty KES wallet of a second user."""
    return await farmpay.ledger.get_or_create("buyer-1", "KES")


async def fund(farmpay: FarmPay, wallet_id: UUID, amount: Decimal) -> WalletAccount:
    """Credit a wallet directly through the ledger."""
    return await farmpay.ledger.settle(wallet_id, amount)


def payment_request(
    wallet_id: UUID,
    amount: Decimal | str = "1000",
    type: TransactionType = TransactionType.PAYMENT,
    phone_number: str = PAYER_PHONE,
    **kwargs,
) -> TransactionRequest:
    """M-Pesa KES request with sensible defaults."""
    return TransactionRequest(
        wallet_id=wallet_id,
        type=type,
        amount=Decimal(amount),
        currency=kwargs.pop("currency", "KES"),
        payment_method=kwargs.pop("payment_method", "mpesa"),
        phone_number=phone_number,
        description=kwargs.pop("description", "Maize seed"),
        **kwargs,
    )
