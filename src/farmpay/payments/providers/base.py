"""Base protocol and types for mobile-money gateways.

All gateway adapters must implement the MobileMoneyGateway protocol.
Authorization results arrive asynchronously (provider callback/webhook) and
are delivered to TransactionEngine.handle_provider_result().
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Protocol


class OutcomeStatus(str, Enum):
    """Result reported by the provider for an authorization push."""

    CONFIRMED = "confirmed"  # Payer entered PIN, funds moved provider-side
    DECLINED = "declined"  # Payer cancelled or provider rejected
    ERROR = "error"  # Provider-side failure


@dataclass(frozen=True)
class PushResult:
    """Result of initiating an authorization push."""

    push_id: str
    accepted: bool
    message: str = ""


@dataclass(frozen=True)
class AuthorizationOutcome:
    """Outcome delivered by a provider callback."""

    status: OutcomeStatus
    message: str = ""
    provider_reference: str | None = None  # Provider receipt number
    result_code: str | None = None

    @classmethod
    def confirmed(cls, provider_reference: str | None = None) -> AuthorizationOutcome:
        return cls(OutcomeStatus.CONFIRMED, "Confirmed", provider_reference, "0")

    @classmethod
    def declined(cls, message: str = "Request cancelled by user", code: str = "1032") -> AuthorizationOutcome:
        return cls(OutcomeStatus.DECLINED, message, None, code)

    @classmethod
    def error(cls, message: str, code: str | None = None) -> AuthorizationOutcome:
        return cls(OutcomeStatus.ERROR, message, None, code)

    @property
    def is_confirmed(self) -> bool:
        return self.status == OutcomeStatus.CONFIRMED


class MobileMoneyGateway(Protocol):
    """Protocol for mobile-money gateway adapters.

    Each provider (M-Pesa, MTN, Airtel, ...) has its own adapter. The
    transaction engine uses adapters without knowing provider details.
    """

    provider_name: str

    async def initiate_authorization(
        self,
        phone_number: str,
        amount: Decimal,
        currency: str,
        reference: str,
    ) -> PushResult:
        """Send a PIN prompt (STK push) to the phone.

        Args:
            phone_number: Subscriber number in international format.
            amount: Amount the subscriber is asked to authorize.
            currency: Currency code.
            reference: Transaction reference echoed back by the provider.

        Returns:
            PushResult with the provider's push id.

        Raises:
            ProviderError: The provider could not be reached or refused
                the request outright.
        """
        ...
