"""Mobile-money stub gateway for local development and testing.

Replace with a real Daraja (M-Pesa) or MoMo API adapter for production.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Awaitable, Callable

from farmpay.payments.errors import ProviderError
from farmpay.payments.providers.base import AuthorizationOutcome, OutcomeStatus, PushResult

logger = logging.getLogger(__name__)

ResultHandler = Callable[[str, AuthorizationOutcome], Awaitable[object]]


@dataclass
class StubPush:
    """A push recorded by the stub."""

    push_id: str
    phone_number: str
    amount: Decimal
    currency: str
    reference: str
    submitted_at: datetime
    outcome: AuthorizationOutcome | None = None


class MobileMoneyStubGateway:
    """Stub gateway.

    In production, this would:
    - Obtain an OAuth token from the provider
    - Send an STK push / request-to-pay
    - Receive the result on a callback URL
    """

    provider_name = "momo_stub"

    def __init__(
        self,
        default_outcome: OutcomeStatus | None = None,
        outcomes: dict[str, OutcomeStatus | None] | None = None,
        unreachable: set[str] | None = None,
        delay: float = 0.0,
    ):
        """Initialize stub gateway.

        Args:
            default_outcome: Outcome delivered automatically for every push.
                None means results only arrive via simulate_result() or a
                webhook, so the push times out unless someone answers.
            outcomes: Per-phone overrides of default_outcome. A None value
                means that phone never answers.
            unreachable: Phones for which initiation raises ProviderError.
            delay: Seconds before an automatic outcome is delivered.
        """
        self.default_outcome = default_outcome
        self.outcomes = dict(outcomes or {})
        self.unreachable = set(unreachable or ())
        self.delay = delay
        self._handler: ResultHandler | None = None
        self._pushes: dict[str, StubPush] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    def bind(self, handler: ResultHandler) -> None:
        """Register the callback that receives automatic outcomes."""
        self._handler = handler

    async def initiate_authorization(
        self,
        phone_number: str,
        amount: Decimal,
        currency: str,
        reference: str,
    ) -> PushResult:
        """Record the push and schedule the scripted outcome, if any."""
        if phone_number in self.unreachable:
            raise ProviderError(f"Subscriber {phone_number} unreachable", code="NETWORK")

        push_id = f"ws_CO_{uuid.uuid4().hex[:20].upper()}"
        self._pushes[push_id] = StubPush(
            push_id=push_id,
            phone_number=phone_number,
            amount=amount,
            currency=currency,
            reference=reference,
            submitted_at=datetime.now(timezone.utc),
        )

        outcome_status = self.outcomes.get(phone_number, self.default_outcome)
        if outcome_status is not None and self._handler is not None:
            task = asyncio.create_task(self._deliver(push_id, outcome_status))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        return PushResult(push_id=push_id, accepted=True, message="Success. Request accepted for processing")

    async def _deliver(self, push_id: str, status: OutcomeStatus) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        else:
            await asyncio.sleep(0)

        if status == OutcomeStatus.CONFIRMED:
            outcome = AuthorizationOutcome.confirmed(f"STUB{push_id[-10:]}")
        elif status == OutcomeStatus.DECLINED:
            outcome = AuthorizationOutcome.declined()
        else:
            outcome = AuthorizationOutcome.error("Stub provider error", code="1")

        await self.simulate_result(push_id, outcome)

    async def simulate_result(self, push_id: str, outcome: AuthorizationOutcome) -> object:
        """Deliver an outcome for a push (for testing).

        Returns whatever the bound handler returns.
        """
        push = self._pushes.get(push_id)
        if push is not None:
            push.outcome = outcome
        if self._handler is None:
            raise RuntimeError("No result handler bound to the stub gateway")
        logger.debug("Stub delivering %s for push %s", outcome.status.value, push_id)
        return await self._handler(push_id, outcome)

    def push_for_reference(self, reference: str) -> StubPush | None:
        for push in self._pushes.values():
            if push.reference == reference:
                return push
        return None

    @property
    def pushes(self) -> list[StubPush]:
        return list(self._pushes.values())
