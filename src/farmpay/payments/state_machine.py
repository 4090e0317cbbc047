"""State machines for transactions, invoices and payroll periods.

Each machine is a transition table plus helpers; services call
validate_transition() before every status write.
"""

from __future__ import annotations

from farmpay.payments.errors import InvalidTransitionError
from farmpay.payments.types import InvoiceStatus, PaymentStatus, PayrollStatus


class TransactionStateMachine:
    """State machine for payment transaction status transitions.

    Allowed transitions:
    - pending → processing
    - pending → cancelled (abort before processing starts)
    - pending → expired
    - processing → completed
    - processing → failed
    - processing → expired (authorization window elapsed)
    - completed → refunded (written by a compensating refund transaction)
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PaymentStatus.PENDING: [
            PaymentStatus.PROCESSING,
            PaymentStatus.CANCELLED,
            PaymentStatus.EXPIRED,
        ],
        PaymentStatus.PROCESSING: [
            PaymentStatus.COMPLETED,
            PaymentStatus.FAILED,
            PaymentStatus.EXPIRED,
        ],
        PaymentStatus.COMPLETED: [PaymentStatus.REFUNDED],
        PaymentStatus.FAILED: [],  # Terminal; retry is a new transaction
        PaymentStatus.CANCELLED: [],
        PaymentStatus.REFUNDED: [],
        PaymentStatus.EXPIRED: [],
    }

    TERMINAL = {
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
        PaymentStatus.REFUNDED,
        PaymentStatus.EXPIRED,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        """Completed is terminal for processing purposes even though a refund may follow."""
        return status in cls.TERMINAL

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        return cls.VALID_TRANSITIONS.get(current_status, [])


class InvoiceStateMachine:
    """State machine for invoices.

    Allowed transitions:
    - draft → sent
    - draft → cancelled
    - sent → paid
    - sent → cancelled

    OVERDUE is never stored; it is derived from the due date while sent.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        InvoiceStatus.DRAFT: [InvoiceStatus.SENT, InvoiceStatus.CANCELLED],
        InvoiceStatus.SENT: [InvoiceStatus.PAID, InvoiceStatus.CANCELLED],
        InvoiceStatus.PAID: [],
        InvoiceStatus.CANCELLED: [],
    }

    # Statuses where items and terms can be modified
    ITEMS_MUTABLE = {InvoiceStatus.DRAFT}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def can_modify_items(cls, status: str) -> bool:
        return status in cls.ITEMS_MUTABLE


class PayrollStateMachine:
    """State machine for payroll periods.

    Allowed transitions:
    - draft → processing
    - processing → completed
    - processing → failed
    - failed → draft (reopen to retry the failed employees)
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PayrollStatus.DRAFT: [PayrollStatus.PROCESSING],
        PayrollStatus.PROCESSING: [PayrollStatus.COMPLETED, PayrollStatus.FAILED],
        PayrollStatus.COMPLETED: [],
        PayrollStatus.FAILED: [PayrollStatus.DRAFT],
    }

    INPUTS_MUTABLE = {PayrollStatus.DRAFT}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def can_modify_inputs(cls, status: str) -> bool:
        return status in cls.INPUTS_MUTABLE

    @classmethod
    def is_reopen(cls, from_status: str, to_status: str) -> bool:
        return from_status == PayrollStatus.FAILED and to_status == PayrollStatus.DRAFT
