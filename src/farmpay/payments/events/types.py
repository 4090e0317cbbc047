"""Domain event types for payment operations.

All events are:
- Immutable (frozen dataclasses)
- Typed with explicit payloads
- Traceable via metadata
- Serializable for logging and notification fan-out
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class EventCategory(str, Enum):
    """Event categories for routing and filtering."""

    TRANSACTION = "transaction"
    INVOICE = "invoice"
    PAYROLL = "payroll"


@dataclass(frozen=True)
class EventMetadata:
    """Metadata attached to every domain event."""

    event_id: UUID
    timestamp: datetime
    correlation_id: UUID  # Links related events
    actor_type: str  # 'user', 'system', 'webhook'
    source_service: str  # Service that emitted

    @classmethod
    def create(
        cls,
        correlation_id: UUID | None = None,
        actor_type: str = "system",
        source_service: str = "payments",
        timestamp: datetime | None = None,
    ) -> EventMetadata:
        """Create metadata with auto-generated fields."""
        return cls(
            event_id=uuid4(),
            timestamp=timestamp or datetime.now(timezone.utc),
            correlation_id=correlation_id or uuid4(),
            actor_type=actor_type,
            source_service=source_service,
        )


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    metadata: EventMetadata

    @property
    def event_type(self) -> str:
        """Event type name for routing."""
        return self.__class__.__name__

    @property
    def category(self) -> EventCategory:
        """Event category for filtering."""
        raise NotImplementedError("Subclasses must define category")

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to dictionary."""
        data = _serialize(asdict(self))
        data["event_type"] = self.event_type
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


def _serialize(obj: Any) -> Any:
    """Recursively serialize objects for JSON compatibility."""
    if isinstance(obj, dict):
        return {k: _serialize(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [_serialize(v) for v in obj]
    elif isinstance(obj, UUID):
        return str(obj)
    elif isinstance(obj, (datetime, date)):
        return obj.isoformat()
    elif isinstance(obj, Decimal):
        return str(obj)
    elif isinstance(obj, Enum):
        return obj.value
    return obj


# =============================================================================
# Transaction Events
# =============================================================================


@dataclass(frozen=True)
class TransactionCreated(DomainEvent):
    """A transaction was persisted in pending."""

    transaction_id: UUID
    wallet_id: UUID
    transaction_type: str
    amount: Decimal
    fees_total: Decimal
    currency: str
    reference: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.TRANSACTION


@dataclass(frozen=True)
class AuthorizationRequested(DomainEvent):
    """A PIN prompt was pushed to the payer's phone."""

    transaction_id: UUID
    reference: str
    push_id: str
    timeout_seconds: float

    @property
    def category(self) -> EventCategory:
        return EventCategory.TRANSACTION


@dataclass(frozen=True)
class TransactionCompleted(DomainEvent):
    """A transaction settled and completed."""

    transaction_id: UUID
    reference: str
    amount: Decimal
    fees_total: Decimal
    currency: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.TRANSACTION


@dataclass(frozen=True)
class TransactionFailed(DomainEvent):
    """A transaction failed. Retry is a new transaction."""

    transaction_id: UUID
    reference: str
    reason: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.TRANSACTION


@dataclass(frozen=True)
class TransactionExpired(DomainEvent):
    """No authorization result arrived inside the window."""

    transaction_id: UUID
    reference: str
    timeout_seconds: float

    @property
    def category(self) -> EventCategory:
        return EventCategory.TRANSACTION


@dataclass(frozen=True)
class TransactionCancelled(DomainEvent):
    transaction_id: UUID
    reference: str
    reason: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.TRANSACTION


@dataclass(frozen=True)
class TransactionRefunded(DomainEvent):
    """A completed transaction was reversed by a refund transaction."""

    transaction_id: UUID
    refund_transaction_id: UUID
    amount: Decimal
    reason: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.TRANSACTION


# =============================================================================
# Invoice Events
# =============================================================================


@dataclass(frozen=True)
class InvoiceSent(DomainEvent):
    invoice_id: UUID
    invoice_number: str
    total: Decimal
    currency: str
    due_date: date

    @property
    def category(self) -> EventCategory:
        return EventCategory.INVOICE


@dataclass(frozen=True)
class InvoicePaid(DomainEvent):
    invoice_id: UUID
    invoice_number: str
    payment_reference: str
    total: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.INVOICE


@dataclass(frozen=True)
class InvoiceCancelled(DomainEvent):
    invoice_id: UUID
    invoice_number: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.INVOICE


# =============================================================================
# Payroll Events
# =============================================================================


@dataclass(frozen=True)
class PayrollStarted(DomainEvent):
    period_id: UUID
    employee_count: int
    total_amount: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYROLL


@dataclass(frozen=True)
class PayrollCompleted(DomainEvent):
    period_id: UUID
    paid_count: int

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYROLL


@dataclass(frozen=True)
class PayrollFailed(DomainEvent):
    """At least one salary payment in the period did not complete."""

    period_id: UUID
    paid_count: int
    failed_employee_ids: tuple[str, ...]

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYROLL
