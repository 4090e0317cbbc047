"""Payroll Batch Processor - computes and pays salaries for a payroll period.

Flow:
1. create_period() opens a draft period.
2. prepare() turns employees + attendance into one pending SalaryPayment
   per employee. Inputs can be re-prepared while the period is draft.
3. run() claims the period (draft to processing, compare-and-set) and pays
   every salary that is not already completed, each as a salary
   transaction from the funding wallet, with bounded concurrency. Once
   every payment is terminal the period is completed (all paid) or failed
   (any not paid). A cancelled run fails the period.
4. reopen() returns a failed period to draft; the next run() only retries
   the employees that were not paid.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence
from uuid import UUID

from farmpay.payments.clock import Clock, SystemClock
from farmpay.payments.errors import (
    InvalidTransitionError,
    NotFoundError,
    PaymentError,
    ValidationError,
)
from farmpay.payments.events.emitter import EventEmitter
from farmpay.payments.events.types import (
    DomainEvent,
    EventMetadata,
    PayrollCompleted,
    PayrollFailed,
    PayrollStarted,
)
from farmpay.payments.registry import DEFAULT_REGISTRY, PaymentRegistry, PayrollPolicy
from farmpay.payments.services.transaction_engine import TransactionEngine
from farmpay.payments.state_machine import PayrollStateMachine, TransactionStateMachine
from farmpay.payments.store.base import PaymentStore
from farmpay.payments.types import (
    ZERO,
    AttendanceRecord,
    Employee,
    EmployeeStatus,
    PaymentStatus,
    PayrollPeriod,
    PayrollRunResult,
    PayrollStatus,
    SalaryPayment,
    TransactionRequest,
    TransactionType,
)
from farmpay.payments.utils import to_money, validate_momo_number

logger = logging.getLogger(__name__)

WHOLE_UNITS = Decimal("1")


@dataclass(frozen=True)
class SalaryBreakdown:
    """Computed pay for one employee."""

    prorated_base: Decimal
    overtime_pay: Decimal
    bonuses: Decimal
    deductions: Decimal
    gross_amount: Decimal
    tax_amount: Decimal
    net_amount: Decimal


def calculate_salary(
    employee: Employee,
    attendance: AttendanceRecord,
    policy: PayrollPolicy,
) -> SalaryBreakdown:
    """Derive gross, tax and net pay from attendance.

    gross = base * days_worked / standard_days + overtime + bonuses - deductions
    tax   = gross * tax_rate, rounded to whole currency units
    net   = gross - tax
    """
    prorated = to_money(
        employee.base_salary * attendance.days_worked / policy.standard_working_days
    )
    overtime = to_money(attendance.overtime_hours * policy.overtime_rate)
    bonuses = to_money(attendance.bonuses)
    deductions = to_money(attendance.deductions)
    gross = prorated + overtime + bonuses - deductions
    tax = to_money((gross * policy.tax_rate).quantize(WHOLE_UNITS, rounding=ROUND_HALF_UP))
    return SalaryBreakdown(
        prorated_base=prorated,
        overtime_pay=overtime,
        bonuses=bonuses,
        deductions=deductions,
        gross_amount=gross,
        tax_amount=tax,
        net_amount=gross - tax,
    )


class PayrollProcessor:
    """Prepares and runs payroll batches through the transaction engine."""

    def __init__(
        self,
        store: PaymentStore,
        engine: TransactionEngine,
        policy: PayrollPolicy | None = None,
        registry: PaymentRegistry = DEFAULT_REGISTRY,
        clock: Clock | None = None,
        events: EventEmitter | None = None,
        max_concurrency: int = 5,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.store = store
        self.engine = engine
        self.policy = policy or PayrollPolicy()
        self.registry = registry
        self.clock = clock or SystemClock()
        self.events = events or EventEmitter()
        self.max_concurrency = max_concurrency

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get_period(self, period_id: UUID) -> PayrollPeriod:
        period = await self.store.get_payroll_period(period_id)
        if period is None:
            raise NotFoundError("PayrollPeriod", period_id)
        return period

    async def list_salary_payments(self, period_id: UUID) -> list[SalaryPayment]:
        await self.get_period(period_id)
        payments = await self.store.list_salary_payments(period_id)
        return sorted(payments, key=lambda p: p.employee_id)

    # -------------------------------------------------------------------------
    # Preparation
    # -------------------------------------------------------------------------

    async def create_period(self, start_date: date, end_date: date, pay_date: date) -> PayrollPeriod:
        errors = []
        if end_date < start_date:
            errors.append("Period end date is before its start date")
        if pay_date < start_date:
            errors.append("Pay date is before the period start")
        if errors:
            raise ValidationError(errors)

        now = self.clock.now()
        period = PayrollPeriod(
            start_date=start_date,
            end_date=end_date,
            pay_date=pay_date,
            created_at=now,
            updated_at=now,
        )
        await self.store.add_payroll_period(period)
        logger.info("Created payroll period %s (%s to %s)", period.id, start_date, end_date)
        return period

    async def prepare(
        self,
        period_id: UUID,
        employees: Sequence[Employee],
        attendance: Sequence[AttendanceRecord],
    ) -> list[SalaryPayment]:
        """Compute one pending salary payment per attendance record.

        Replaces any payments computed earlier for this draft period.

        Raises:
            InvalidTransitionError: The period is not draft.
            ValidationError: Inputs are malformed, or salaries were already
                paid in this period.
        """
        period = await self.get_period(period_id)
        if not PayrollStateMachine.can_modify_inputs(period.status):
            raise InvalidTransitionError(
                period.status.value,
                PayrollStatus.DRAFT.value,
                "payroll inputs can only change in draft",
            )

        existing = await self.store.list_salary_payments(period_id)
        if any(p.status == PaymentStatus.COMPLETED for p in existing):
            raise ValidationError(["Salaries were already paid in this period; inputs are locked"])

        errors = self._input_errors(employees, attendance)
        by_id = {e.employee_id: e for e in employees}
        breakdowns: list[tuple[Employee, SalaryBreakdown]] = []
        if not errors:
            for record in attendance:
                employee = by_id[record.employee_id]
                breakdown = calculate_salary(employee, record, self.policy)
                if breakdown.gross_amount <= 0:
                    errors.append(f"Employee {employee.employee_id} has no earnings for the period")
                breakdowns.append((employee, breakdown))
        if errors:
            raise ValidationError(errors)

        payments = [
            SalaryPayment(
                employee_id=employee.employee_id,
                employee_name=employee.name,
                payroll_period_id=period.id,
                base_salary=employee.base_salary,
                overtime_pay=b.overtime_pay,
                bonuses=b.bonuses,
                deductions=b.deductions,
                gross_amount=b.gross_amount,
                tax_amount=b.tax_amount,
                net_amount=b.net_amount,
                currency=employee.currency,
                payment_method=employee.payment_method,
                phone_number=employee.phone_number,
                pay_date=period.pay_date,
                metadata={"prorated_base": str(b.prorated_base)},
            )
            for employee, b in breakdowns
        ]

        async with self.store.atomic():
            await self.store.delete_salary_payments(period.id)
            for payment in payments:
                await self.store.add_salary_payment(payment)
            period.total_amount = sum((p.gross_amount for p in payments), ZERO)
            period.employee_count = len(payments)
            period.updated_at = self.clock.now()
            await self._write(period, PayrollStatus.DRAFT)

        logger.info(
            "Prepared payroll %s: %d employees, gross %s",
            period.id,
            period.employee_count,
            period.total_amount,
        )
        return payments

    def _input_errors(
        self,
        employees: Sequence[Employee],
        attendance: Sequence[AttendanceRecord],
    ) -> list[str]:
        errors: list[str] = []
        by_id: dict[str, Employee] = {}
        for employee in employees:
            if employee.employee_id in by_id:
                errors.append(f"Duplicate employee: {employee.employee_id}")
            by_id[employee.employee_id] = employee

        currencies = {e.currency for e in employees}
        if len(currencies) > 1:
            errors.append(f"Employees are paid in several currencies: {', '.join(sorted(currencies))}")

        seen: set[str] = set()
        for record in attendance:
            employee_id = record.employee_id
            if employee_id in seen:
                errors.append(f"Duplicate attendance record for {employee_id}")
                continue
            seen.add(employee_id)

            employee = by_id.get(employee_id)
            if employee is None:
                errors.append(f"Attendance for unknown employee: {employee_id}")
                continue
            if employee.status != EmployeeStatus.ACTIVE:
                errors.append(f"Employee {employee_id} is {employee.status.value}")
            if employee.base_salary <= 0:
                errors.append(f"Base salary for {employee_id} must be greater than 0")
            if self.registry.get_currency(employee.currency) is None:
                errors.append(f"Unsupported currency for {employee_id}: {employee.currency}")
            if not validate_momo_number(employee.phone_number, employee.payment_method, self.registry):
                errors.append(
                    f"Invalid {employee.payment_method} number for {employee_id}: "
                    f"{employee.phone_number}"
                )

            for name in ("days_worked", "overtime_hours", "bonuses", "deductions"):
                if getattr(record, name) < 0:
                    errors.append(f"Negative {name} for {employee_id}")

        if not attendance:
            errors.append("No attendance records supplied")
        return errors

    # -------------------------------------------------------------------------
    # Running
    # -------------------------------------------------------------------------

    async def run(self, period_id: UUID, funding_wallet_id: UUID) -> PayrollRunResult:
        """Pay every salary in the period that is not yet completed.

        Claiming the period is a compare-and-set on its draft status, so of
        two concurrent runs only one pays; the other raises.

        Raises:
            InvalidTransitionError: The period is not draft, or another run
                claimed it first.
            ValidationError: Nothing to pay, or the funding wallet's currency
                does not match the salaries.
        """
        period = await self.get_period(period_id)
        PayrollStateMachine.validate_transition(period.status, PayrollStatus.PROCESSING)

        payments = await self.store.list_salary_payments(period_id)
        if not payments:
            raise ValidationError(["Payroll period has no salary payments; prepare it first"])

        wallet = await self.engine.ledger.get(funding_wallet_id)
        mismatched = sorted({p.currency for p in payments if p.currency != wallet.currency})
        if mismatched:
            raise ValidationError(
                [f"Funding wallet is in {wallet.currency}; salaries are in {', '.join(mismatched)}"]
            )

        period.status = PayrollStatus.PROCESSING
        period.funding_wallet_id = funding_wallet_id
        period.updated_at = self.clock.now()
        await self._write(period, PayrollStatus.DRAFT)

        payments = await self.store.list_salary_payments(period_id)
        pending = [p for p in payments if p.status != PaymentStatus.COMPLETED]
        skipped = len(payments) - len(pending)
        logger.info(
            "Payroll %s processing: %d to pay, %d already paid", period.id, len(pending), skipped
        )
        self._emit(
            PayrollStarted(
                metadata=self._metadata(period.id),
                period_id=period.id,
                employee_count=len(pending),
                total_amount=sum((p.net_amount for p in pending), ZERO),
            )
        )

        semaphore = asyncio.Semaphore(self.max_concurrency)
        try:
            outcomes = await asyncio.gather(
                *(self._pay(payment, period, semaphore) for payment in pending),
                return_exceptions=True,
            )
        except asyncio.CancelledError:
            logger.warning("Payroll %s interrupted; closing the period", period.id)
            await asyncio.shield(self._finish(period, pending, skipped, interrupted=True))
            raise

        for payment, outcome in zip(pending, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Salary payment for %s raised", payment.employee_id, exc_info=outcome
                )
                await self._mark_failed(payment.id, f"Unexpected error: {outcome}")

        return await self._finish(period, pending, skipped)

    async def _finish(
        self,
        period: PayrollPeriod,
        pending: list[SalaryPayment],
        skipped: int,
        interrupted: bool = False,
    ) -> PayrollRunResult:
        if interrupted:
            for payment in pending:
                current = await self.store.get_salary_payment(payment.id)
                if current is not None and not await self._reconcile(current):
                    await self._mark_failed(payment.id, "Payroll run interrupted")

        payments = await self.store.list_salary_payments(period.id)
        failed = [p for p in payments if p.status != PaymentStatus.COMPLETED]
        succeeded = len(pending) - len(failed)

        status = PayrollStatus.FAILED if failed else PayrollStatus.COMPLETED
        PayrollStateMachine.validate_transition(period.status, status)
        period.status = status
        period.updated_at = self.clock.now()
        await self._write(period, PayrollStatus.PROCESSING)

        paid_count = len(payments) - len(failed)
        if failed:
            logger.warning(
                "Payroll %s failed: %d of %d salaries unpaid", period.id, len(failed), len(payments)
            )
            event: DomainEvent = PayrollFailed(
                metadata=self._metadata(period.id),
                period_id=period.id,
                paid_count=paid_count,
                failed_employee_ids=tuple(sorted(p.employee_id for p in failed)),
            )
        else:
            logger.info("Payroll %s completed: %d salaries paid", period.id, paid_count)
            event = PayrollCompleted(
                metadata=self._metadata(period.id),
                period_id=period.id,
                paid_count=paid_count,
            )
        self._emit(event)

        return PayrollRunResult(
            period_id=period.id,
            status=status,
            attempted=len(pending),
            succeeded=succeeded,
            failed=len(failed),
            skipped=skipped,
        )

    async def _reconcile(self, payment: SalaryPayment) -> bool:
        """Bring a payment up to date with its transaction.

        Returns True when the payment needs no new transaction: it is paid,
        or its transaction is still in flight.
        """
        if payment.status == PaymentStatus.COMPLETED:
            return True
        if payment.status != PaymentStatus.PROCESSING or payment.transaction_id is None:
            return False

        transaction = await self.engine.get(payment.transaction_id)
        if transaction.status == PaymentStatus.COMPLETED:
            payment.status = PaymentStatus.COMPLETED
            payment.paid_at = transaction.completed_at
            await self.store.update_salary_payment(payment)
            logger.info(
                "Salary for %s was already paid by %s", payment.employee_id, transaction.reference
            )
            return True
        if not TransactionStateMachine.is_terminal(transaction.status):
            logger.warning(
                "Salary for %s is still in flight as %s", payment.employee_id, transaction.reference
            )
            return True
        return False

    async def _pay(
        self,
        payment: SalaryPayment,
        period: PayrollPeriod,
        semaphore: asyncio.Semaphore,
    ) -> None:
        async with semaphore:
            current = await self.store.get_salary_payment(payment.id)
            if current is None:
                raise NotFoundError("SalaryPayment", payment.id)
            if await self._reconcile(current):
                return
            payment = current

            payment.status = PaymentStatus.PROCESSING
            payment.attempts += 1
            payment.failure_reason = None
            await self.store.update_salary_payment(payment)

            request = TransactionRequest(
                wallet_id=period.funding_wallet_id,
                type=TransactionType.SALARY,
                amount=payment.net_amount,
                currency=payment.currency,
                payment_method=payment.payment_method,
                phone_number=payment.phone_number,
                description=f"Salary {period.start_date} to {period.end_date}",
                counterpart=payment.employee_name,
                metadata={
                    "payroll_period_id": str(period.id),
                    "salary_payment_id": str(payment.id),
                },
            )
            try:
                transaction = await self.engine.create(request)
            except PaymentError as e:
                await self._mark_failed(payment.id, str(e))
                return

            payment.reference = transaction.reference
            payment.transaction_id = transaction.id
            await self.store.update_salary_payment(payment)

            transaction = await self.engine.process(transaction.id)
            if transaction.status == PaymentStatus.COMPLETED:
                payment.status = PaymentStatus.COMPLETED
                payment.paid_at = transaction.completed_at
                await self.store.update_salary_payment(payment)
                logger.info("Paid salary of %s to %s", payment.net_amount, payment.employee_id)
            else:
                reason = transaction.failure_reason or transaction.status.value
                await self._mark_failed(payment.id, reason)

    async def _mark_failed(self, payment_id: UUID, reason: str) -> None:
        payment = await self.store.get_salary_payment(payment_id)
        if payment is None:
            raise NotFoundError("SalaryPayment", payment_id)
        payment.status = PaymentStatus.FAILED
        payment.failure_reason = reason
        await self.store.update_salary_payment(payment)
        logger.warning("Salary payment for %s failed: %s", payment.employee_id, reason)

    async def reopen(self, period_id: UUID) -> PayrollPeriod:
        """Return a failed period to draft so the unpaid employees can be retried."""
        period = await self.get_period(period_id)
        PayrollStateMachine.validate_transition(period.status, PayrollStatus.DRAFT)
        period.status = PayrollStatus.DRAFT
        period.updated_at = self.clock.now()
        await self._write(period, PayrollStatus.FAILED)
        logger.info("Payroll %s reopened", period.id)
        return period

    async def _write(self, period: PayrollPeriod, expected: PayrollStatus) -> None:
        """Store period, provided nobody moved it off expected meanwhile."""
        if await self.store.transition_payroll_period(period, expected):
            return
        current = await self.get_period(period.id)
        raise InvalidTransitionError(
            current.status.value,
            period.status.value,
            "payroll period changed concurrently",
        )

    def _metadata(self, period_id: UUID) -> EventMetadata:
        return EventMetadata.create(
            correlation_id=period_id,
            source_service="payroll_processor",
            timestamp=self.clock.now(),
        )

    def _emit(self, event: DomainEvent) -> None:
        self.events.emit(event)
