"""Error taxonomy for the payment core.

Validation and invariant errors propagate to the caller immediately.
Insufficient funds, provider and timeout errors raised while a transaction
is being processed are caught at the engine boundary and recorded on the
transaction record instead.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID


class PaymentError(Exception):
    """Base class for all payment core errors."""


class ValidationError(PaymentError):
    """Raised when a request fails validation. Carries every failure found."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Validation failed")


class InsufficientFundsError(PaymentError):
    """Raised when a wallet cannot cover a reservation or debit."""

    def __init__(self, wallet_id: UUID, requested: Decimal, available: Decimal):
        self.wallet_id = wallet_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient funds in wallet {wallet_id}: "
            f"requested {requested}, available {available}"
        )


class ProviderError(PaymentError):
    """Raised when the mobile-money provider declines or cannot be reached."""

    def __init__(self, message: str, code: str | None = None):
        self.code = code
        super().__init__(message)


class TimeoutExpiredError(PaymentError):
    """Raised when no authorization result arrives inside the window."""

    def __init__(self, reference: str, timeout_seconds: float):
        self.reference = reference
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Authorization for {reference} not confirmed within {timeout_seconds}s"
        )


class InvariantViolationError(PaymentError):
    """Raised when an operation would corrupt a record. Never swallowed."""


class InvalidTransitionError(PaymentError):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class NotFoundError(PaymentError):
    """Raised when a record does not exist in the store."""

    def __init__(self, kind: str, key: object):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} {key} not found")


class DuplicateReferenceError(PaymentError):
    """Raised by a store when a transaction reference is already taken."""

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Reference {reference} already exists")


class UnknownFeeKindError(PaymentError, KeyError):
    """Raised when a fee kind is not in the fee schedule."""

    def __init__(self, fee_kind: str):
        self.fee_kind = fee_kind
        super().__init__(f"Unknown fee kind: {fee_kind}")

    def __str__(self) -> str:
        return f"Unknown fee kind: {self.fee_kind}"
