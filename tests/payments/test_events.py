"""Tests for domain events and the event emitter.

Tests verify:
1. Events serialize with their type and plain JSON values
2. The emitter routes by type and by category
3. Handler errors are isolated
4. Batches hold events until the block exits cleanly
"""

import json
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from farmpay.payments.events import (
    EventCategory,
    EventEmitter,
    EventMetadata,
    EventRecorder,
    InvoiceSent,
    PayrollFailed,
    TransactionCompleted,
    TransactionFailed,
)


def _completed(**overrides) -> TransactionCompleted:
    values = dict(
        metadata=EventMetadata.create(source_service="transaction_engine"),
        transaction_id=uuid4(),
        reference="PAY_LZ3K9Q1A_X7P2QD",
        amount=Decimal("1000.00"),
        fees_total=Decimal("40.00"),
        currency="KES",
    )
    values.update(overrides)
    return TransactionCompleted(**values)


class TestEventTypes:
    """Test event structure."""

    def test_event_type_and_category(self):
        event = _completed()
        assert event.event_type == "TransactionCompleted"
        assert event.category == EventCategory.TRANSACTION

    def test_to_dict_serializes_values(self):
        event = _completed()
        data = event.to_dict()

        assert data["event_type"] == "TransactionCompleted"
        assert data["amount"] == "1000.00"
        assert data["transaction_id"] == str(event.transaction_id)
        assert data["metadata"]["source_service"] == "transaction_engine"

    def test_to_json_round_trips_through_json(self):
        event = InvoiceSent(
            metadata=EventMetadata.create(),
            invoice_id=uuid4(),
            invoice_number="INV-202407-0001",
            total=Decimal("1160.00"),
            currency="KES",
            due_date=date(2024, 7, 15),
        )
        data = json.loads(event.to_json())
        assert data["due_date"] == "2024-07-15"
        assert data["total"] == "1160.00"

    def test_tuples_serialize_as_lists(self):
        event = PayrollFailed(
            metadata=EventMetadata.create(),
            period_id=uuid4(),
            paid_count=4,
            failed_employee_ids=("emp-5",),
        )
        assert event.to_dict()["failed_employee_ids"] == ["emp-5"]
        assert event.category == EventCategory.PAYROLL

    def test_events_are_immutable(self):
        event = _completed()
        with pytest.raises(AttributeError):
            event.amount = Decimal("1")


class TestEventEmitter:
    """Test event routing."""

    def test_routes_by_type(self):
        emitter = EventEmitter()
        recorder = EventRecorder()
        emitter.on(TransactionFailed, recorder)

        emitter.emit(_completed())
        failed = TransactionFailed(
            metadata=EventMetadata.create(),
            transaction_id=uuid4(),
            reference="PAY_1",
            reason="Request cancelled by user",
        )
        emitter.emit(failed)

        assert recorder.events == [failed]

    def test_routes_by_category(self):
        emitter = EventEmitter()
        recorder = EventRecorder()
        emitter.on_category(EventCategory.INVOICE, recorder)

        emitter.emit(_completed())
        assert recorder.events == []

    def test_on_all_and_off(self):
        emitter = EventEmitter()
        recorder = EventRecorder()
        emitter.on_all(recorder)
        emitter.emit(_completed())
        emitter.off(recorder)
        emitter.emit(_completed())

        assert len(recorder.of_type(TransactionCompleted)) == 1

    def test_handler_errors_are_isolated(self):
        emitter = EventEmitter()
        recorder = EventRecorder()

        def broken(event):
            raise RuntimeError("notification service down")

        emitter.on_all(broken)
        emitter.on_all(recorder)

        errors = emitter.emit(_completed())

        assert len(errors) == 1
        assert isinstance(errors[0], RuntimeError)
        assert len(recorder.events) == 1

    def test_batch_emits_on_clean_exit(self):
        emitter = EventEmitter()
        recorder = EventRecorder()
        emitter.on_all(recorder)

        with emitter.batch() as batch:
            batch.add(_completed())
            batch.add(_completed())
            assert recorder.events == []

        assert len(recorder.events) == 2

    def test_batch_discarded_on_error(self):
        emitter = EventEmitter()
        recorder = EventRecorder()
        emitter.on_all(recorder)

        with pytest.raises(ValueError):
            with emitter.batch() as batch:
                batch.add(_completed())
                raise ValueError("rollback")

        assert recorder.events == []
        emitter.emit(_completed())
        assert len(recorder.events) == 1
