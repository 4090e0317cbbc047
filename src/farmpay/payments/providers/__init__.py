"""Mobile-money gateway adapters."""

from farmpay.payments.providers.base import (
    AuthorizationOutcome,
    MobileMoneyGateway,
    OutcomeStatus,
    PushResult,
)
from farmpay.payments.providers.stub import MobileMoneyStubGateway, StubPush

__all__ = [
    "AuthorizationOutcome",
    "MobileMoneyGateway",
    "MobileMoneyStubGateway",
    "OutcomeStatus",
    "PushResult",
    "StubPush",
]
