"""Domain events for payment operations.

Events are emitted by the payment services at every status change and can
be consumed for notifications, audit logging and dashboards.
"""

from farmpay.payments.events.emitter import (
    EventBatch,
    EventEmitter,
    EventHandler,
    EventRecorder,
)
from farmpay.payments.events.types import (
    AuthorizationRequested,
    DomainEvent,
    EventCategory,
    EventMetadata,
    InvoiceCancelled,
    InvoicePaid,
    InvoiceSent,
    PayrollCompleted,
    PayrollFailed,
    PayrollStarted,
    TransactionCancelled,
    TransactionCompleted,
    TransactionCreated,
    TransactionExpired,
    TransactionFailed,
    TransactionRefunded,
)

__all__ = [
    # Base types
    "DomainEvent",
    "EventMetadata",
    "EventCategory",
    # Emitter
    "EventEmitter",
    "EventHandler",
    "EventBatch",
    "EventRecorder",
    # Transaction events
    "TransactionCreated",
    "AuthorizationRequested",
    "TransactionCompleted",
    "TransactionFailed",
    "TransactionExpired",
    "TransactionCancelled",
    "TransactionRefunded",
    # Invoice events
    "InvoiceSent",
    "InvoicePaid",
    "InvoiceCancelled",
    # Payroll events
    "PayrollStarted",
    "PayrollCompleted",
    "PayrollFailed",
]
