"""Tests for payroll calculation and batch runs."""

import asyncio
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio

from farmpay.payments.errors import InvalidTransitionError, NotFoundError, ValidationError
from farmpay.payments.events import PayrollCompleted, PayrollFailed, PayrollStarted
from farmpay.payments.facade import FarmPay
from farmpay.payments.providers.base import OutcomeStatus
from farmpay.payments.providers.stub import MobileMoneyStubGateway
from farmpay.payments.registry import PayrollPolicy
from farmpay.payments.services.payroll_processor import calculate_salary
from farmpay.payments.types import (
    AttendanceRecord,
    Employee,
    EmployeeStatus,
    PaymentStatus,
    PayrollRunResult,
    PayrollStatus,
    TransactionRequest,
    TransactionType,
)

from tests.conftest import fund


def make_employee(n: int, base_salary: str = "22000", **kwargs) -> Employee:
    return Employee(
        employee_id=f"EMP{n:03d}",
        name=f"Worker {n}",
        phone_number=kwargs.pop("phone_number", f"25470000000{n}"),
        base_salary=Decimal(base_salary),
        currency=kwargs.pop("currency", "KES"),
        payment_method=kwargs.pop("payment_method", "mpesa"),
        **kwargs,
    )


def full_month(employee: Employee, **kwargs) -> AttendanceRecord:
    return AttendanceRecord(employee_id=employee.employee_id, days_worked=Decimal("22"), **kwargs)


@pytest.fixture
def crew() -> list[Employee]:
    return [make_employee(n) for n in range(1, 6)]


@pytest_asyncio.fixture
async def funding(farmpay):
    created = await farmpay.ledger.get_or_create("farm-owner", "KES")
    return await fund(farmpay, created.id, Decimal("200000"))


@pytest_asyncio.fixture
async def period(farmpay):
    return await farmpay.payroll.create_period(
        date(2024, 6, 1), date(2024, 6, 30), date(2024, 7, 1)
    )


class TestCalculateSalary:
    """Test the salary formula."""

    def test_full_period(self):
        breakdown = calculate_salary(
            make_employee(1),
            AttendanceRecord(
                employee_id="EMP001",
                days_worked=Decimal("22"),
                overtime_hours=Decimal("5"),
                bonuses=Decimal("1000"),
                deductions=Decimal("200"),
            ),
            PayrollPolicy(),
        )

        assert breakdown.prorated_base == Decimal("22000.00")
        assert breakdown.overtime_pay == Decimal("500.00")
        assert breakdown.gross_amount == Decimal("23300.00")
        assert breakdown.tax_amount == Decimal("1165.00")
        assert breakdown.net_amount == Decimal("22135.00")

    def test_prorated(self):
        breakdown = calculate_salary(
            make_employee(1, "30000"),
            AttendanceRecord(employee_id="EMP001", days_worked=Decimal("11")),
            PayrollPolicy(),
        )
        assert breakdown.prorated_base == Decimal("15000.00")
        assert breakdown.net_amount == Decimal("14250.00")

    def test_tax_rounds_to_whole_units(self):
        breakdown = calculate_salary(
            make_employee(1, "1010"),
            AttendanceRecord(employee_id="EMP001", days_worked=Decimal("22")),
            PayrollPolicy(),
        )
        # 1010 * 0.05 = 50.5
        assert breakdown.tax_amount == Decimal("51.00")
        assert breakdown.net_amount == Decimal("959.00")

    def test_custom_policy(self):
        policy = PayrollPolicy(standard_working_days=20, overtime_rate=Decimal("150"), tax_rate=Decimal("0"))
        breakdown = calculate_salary(
            make_employee(1, "20000"),
            AttendanceRecord(
                employee_id="EMP001", days_worked=Decimal("10"), overtime_hours=Decimal("2")
            ),
            policy,
        )
        assert breakdown.gross_amount == Decimal("10300.00")
        assert breakdown.net_amount == breakdown.gross_amount


class TestPeriods:
    """Test period creation and preparation."""

    async def test_create_period(self, period):
        assert period.status == PayrollStatus.DRAFT
        assert period.employee_count == 0

    async def test_end_before_start(self, farmpay):
        with pytest.raises(ValidationError):
            await farmpay.payroll.create_period(date(2024, 6, 30), date(2024, 6, 1), date(2024, 7, 1))

    async def test_unknown_period(self, farmpay):
        with pytest.raises(NotFoundError):
            await farmpay.payroll.get_period(uuid4())

    async def test_prepare(self, farmpay, period, crew):
        payments = await farmpay.payroll.prepare(period.id, crew, [full_month(e) for e in crew])

        assert len(payments) == 5
        assert all(p.status == PaymentStatus.PENDING for p in payments)
        assert all(p.net_amount == Decimal("20900.00") for p in payments)

        stored = await farmpay.payroll.get_period(period.id)
        assert stored.employee_count == 5
        assert stored.total_amount == Decimal("110000.00")

    async def test_prepare_replaces_earlier_inputs(self, farmpay, period, crew):
        await farmpay.payroll.prepare(period.id, crew, [full_month(e) for e in crew])
        await farmpay.payroll.prepare(period.id, crew[:2], [full_month(e) for e in crew[:2]])

        payments = await farmpay.payroll.list_salary_payments(period.id)
        assert [p.employee_id for p in payments] == ["EMP001", "EMP002"]
        assert (await farmpay.payroll.get_period(period.id)).employee_count == 2

    async def test_prepare_validation(self, farmpay, period):
        active = make_employee(1)
        inactive = make_employee(2, status=EmployeeStatus.INACTIVE)
        bad_phone = make_employee(3, phone_number="0712")
        records = [
            full_month(active),
            full_month(active),
            full_month(inactive),
            full_month(bad_phone),
            AttendanceRecord(employee_id="EMP999", days_worked=Decimal("1")),
        ]

        with pytest.raises(ValidationError) as exc_info:
            await farmpay.payroll.prepare(period.id, [active, inactive, bad_phone], records)

        errors = exc_info.value.errors
        assert "Duplicate attendance record for EMP001" in errors
        assert "Employee EMP002 is inactive" in errors
        assert "Invalid mpesa number for EMP003: 0712" in errors
        assert "Attendance for unknown employee: EMP999" in errors
        assert await farmpay.payroll.list_salary_payments(period.id) == []

    async def test_prepare_rejects_zero_earnings(self, farmpay, period):
        employee = make_employee(1)
        with pytest.raises(ValidationError):
            await farmpay.payroll.prepare(
                period.id, [employee], [AttendanceRecord(employee_id="EMP001", days_worked=Decimal("0"))]
            )


class TestRun:
    """Test batch runs."""

    async def test_all_paid(self, farmpay, period, crew, funding, recorder):
        await farmpay.payroll.prepare(period.id, crew, [full_month(e) for e in crew])

        result = await farmpay.payroll.run(period.id, funding.id)

        assert result.status == PayrollStatus.COMPLETED
        assert (result.attempted, result.succeeded, result.failed, result.skipped) == (5, 5, 0, 0)

        payments = await farmpay.payroll.list_salary_payments(period.id)
        assert all(p.status == PaymentStatus.COMPLETED for p in payments)
        assert all(p.reference and p.reference.startswith("SAL_") for p in payments)

        # 20900 net + 313.50 provider fee each
        wallet = await farmpay.ledger.get(funding.id)
        assert wallet.balance == Decimal("93932.50")
        assert wallet.reserved_balance == 0

        txn = await farmpay.engine.get(payments[0].transaction_id)
        assert txn.type == TransactionType.SALARY
        assert txn.metadata["payroll_period_id"] == str(period.id)

        assert len(recorder.of_type(PayrollStarted)) == 1
        assert recorder.of_type(PayrollCompleted)[0].paid_count == 5

    async def test_partial_failure_then_retry(self, farmpay, gateway, period, crew, funding, recorder):
        gateway.outcomes["254700000005"] = OutcomeStatus.DECLINED
        await farmpay.payroll.prepare(period.id, crew, [full_month(e) for e in crew])

        result = await farmpay.payroll.run(period.id, funding.id)

        assert result.status == PayrollStatus.FAILED
        assert (result.succeeded, result.failed) == (4, 1)
        failed_event = recorder.of_type(PayrollFailed)[0]
        assert failed_event.failed_employee_ids == ("EMP005",)
        assert failed_event.paid_count == 4

        payments = await farmpay.payroll.list_salary_payments(period.id)
        assert [p.status for p in payments].count(PaymentStatus.COMPLETED) == 4
        assert payments[4].status == PaymentStatus.FAILED
        assert payments[4].failure_reason
        assert (await farmpay.ledger.get(funding.id)).balance == Decimal("115146.00")

        gateway.outcomes["254700000005"] = OutcomeStatus.CONFIRMED
        await farmpay.payroll.reopen(period.id)
        with pytest.raises(ValidationError):
            await farmpay.payroll.prepare(period.id, crew, [full_month(e) for e in crew])

        retry = await farmpay.payroll.run(period.id, funding.id)

        assert retry.status == PayrollStatus.COMPLETED
        assert (retry.attempted, retry.succeeded, retry.skipped) == (1, 1, 4)
        payments = await farmpay.payroll.list_salary_payments(period.id)
        assert payments[4].status == PaymentStatus.COMPLETED
        assert payments[4].attempts == 2
        assert (await farmpay.ledger.get(funding.id)).balance == Decimal("93932.50")

    async def test_underfunded_wallet_fails_some(self, farmpay, period, crew):
        created = await farmpay.ledger.get_or_create("farm-owner", "KES")
        wallet = await fund(farmpay, created.id, Decimal("50000"))
        await farmpay.payroll.prepare(period.id, crew, [full_month(e) for e in crew])

        result = await farmpay.payroll.run(period.id, wallet.id)

        # Two salaries fit in 50000
        assert result.status == PayrollStatus.FAILED
        assert (result.succeeded, result.failed) == (2, 3)
        wallet = await farmpay.ledger.get(wallet.id)
        assert wallet.balance == Decimal("7573.00")
        assert wallet.reserved_balance == 0

    async def test_unprepared_period(self, farmpay, period, funding):
        with pytest.raises(ValidationError):
            await farmpay.payroll.run(period.id, funding.id)
        assert (await farmpay.payroll.get_period(period.id)).status == PayrollStatus.DRAFT

    async def test_currency_mismatch(self, farmpay, period, crew):
        usd = await farmpay.ledger.get_or_create("farm-owner", "USD")
        await farmpay.payroll.prepare(period.id, crew, [full_month(e) for e in crew])
        with pytest.raises(ValidationError) as exc_info:
            await farmpay.payroll.run(period.id, usd.id)
        assert exc_info.value.errors == ["Funding wallet is in USD; salaries are in KES"]

    async def test_completed_period_cannot_rerun(self, farmpay, period, crew, funding):
        await farmpay.payroll.prepare(period.id, crew[:1], [full_month(crew[0])])
        await farmpay.payroll.run(period.id, funding.id)

        with pytest.raises(InvalidTransitionError):
            await farmpay.payroll.run(period.id, funding.id)
        with pytest.raises(InvalidTransitionError):
            await farmpay.payroll.reopen(period.id)

    async def test_start_payroll_in_background(self, farmpay, period, crew, funding):
        await farmpay.payroll.prepare(period.id, crew, [full_month(e) for e in crew])

        await farmpay.start_payroll(period.id, funding.id)
        await farmpay.drain()

        assert (await farmpay.payroll.get_period(period.id)).status == PayrollStatus.COMPLETED

    async def test_concurrent_runs_pay_once(self, farmpay, period, crew, funding):
        await farmpay.payroll.prepare(period.id, crew, [full_month(e) for e in crew])

        results = await asyncio.gather(
            farmpay.payroll.run(period.id, funding.id),
            farmpay.payroll.run(period.id, funding.id),
            return_exceptions=True,
        )

        completed = [r for r in results if isinstance(r, PayrollRunResult)]
        rejected = [r for r in results if isinstance(r, InvalidTransitionError)]
        assert len(completed) == 1
        assert len(rejected) == 1
        assert completed[0].status == PayrollStatus.COMPLETED
        salaries = await farmpay.engine.list_transactions(funding.id)
        assert len([t for t in salaries if t.type == TransactionType.SALARY]) == 5
        assert (await farmpay.ledger.get(funding.id)).balance == Decimal("93932.50")

    async def test_stale_period_write_is_refused(self, farmpay, period):
        stale = await farmpay.store.get_payroll_period(period.id)
        period.status = PayrollStatus.PROCESSING
        assert await farmpay.store.transition_payroll_period(period, PayrollStatus.DRAFT)

        stale.status = PayrollStatus.PROCESSING
        assert not await farmpay.store.transition_payroll_period(stale, PayrollStatus.DRAFT)
        period.id = uuid4()
        with pytest.raises(NotFoundError):
            await farmpay.store.transition_payroll_period(period, PayrollStatus.PROCESSING)

    async def test_salary_already_settled_is_not_paid_again(self, farmpay, period, crew, funding):
        payments = await farmpay.payroll.prepare(period.id, crew, [full_month(e) for e in crew])
        first = payments[0]
        # A run that stopped after its transaction settled
        txn = await farmpay.engine.execute(
            TransactionRequest(
                wallet_id=funding.id,
                type=TransactionType.SALARY,
                amount=first.net_amount,
                currency="KES",
                payment_method="mpesa",
                phone_number=first.phone_number,
                description="Salary June",
            )
        )
        first.status = PaymentStatus.PROCESSING
        first.transaction_id = txn.id
        first.reference = txn.reference
        await farmpay.store.update_salary_payment(first)

        result = await farmpay.payroll.run(period.id, funding.id)

        assert result.status == PayrollStatus.COMPLETED
        stored = await farmpay.store.get_salary_payment(first.id)
        assert stored.status == PaymentStatus.COMPLETED
        assert stored.transaction_id == txn.id
        assert stored.paid_at == txn.completed_at
        assert (await farmpay.ledger.get(funding.id)).balance == Decimal("93932.50")

    async def test_interrupted_run_fails_period(self, clock, crew, recorder):
        core = FarmPay.in_memory(MobileMoneyStubGateway(), clock=clock)
        core.events.on_all(recorder)
        created = await core.ledger.get_or_create("farm-owner", "KES")
        funding = await fund(core, created.id, Decimal("200000"))
        period = await core.payroll.create_period(
            date(2024, 6, 1), date(2024, 6, 30), date(2024, 7, 1)
        )
        await core.payroll.prepare(period.id, crew, [full_month(e) for e in crew])

        await core.start_payroll(period.id, funding.id)
        for _ in range(200):
            if core.engine.pending_authorizations == len(crew):
                break
            await asyncio.sleep(0)
        assert core.engine.pending_authorizations == len(crew)

        await core.aclose()

        assert (await core.payroll.get_period(period.id)).status == PayrollStatus.FAILED
        payments = await core.payroll.list_salary_payments(period.id)
        assert {p.failure_reason for p in payments} == {"Payroll run interrupted"}
        wallet = await core.ledger.get(funding.id)
        assert wallet.balance == Decimal("200000.00")
        assert wallet.reserved_balance == 0
        assert len(recorder.of_type(PayrollFailed)) == 1
