"""Persistence adapters for the payment core."""

from farmpay.payments.store.base import InvoiceSequence, PaymentStore
from farmpay.payments.store.memory import InMemoryPaymentStore
from farmpay.payments.store.sql import SqlAlchemyPaymentStore

__all__ = [
    "InMemoryPaymentStore",
    "InvoiceSequence",
    "PaymentStore",
    "SqlAlchemyPaymentStore",
]
