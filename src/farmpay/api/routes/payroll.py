"""Payroll API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Response, status

from farmpay.api.dependencies import FarmPayDep
from farmpay.api.schemas import (
    ErrorResponse,
    PayrollPeriodCreate,
    PayrollPeriodResponse,
    PayrollPrepareRequest,
    PayrollRunRequest,
    PayrollRunResponse,
    SalaryPaymentListResponse,
    SalaryPaymentResponse,
    ValidationErrorResponse,
)
from farmpay.payments.types import AttendanceRecord, Employee

router = APIRouter(prefix="/payroll/periods", tags=["payroll"])


@router.post(
    "",
    response_model=PayrollPeriodResponse,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": ValidationErrorResponse}},
)
async def create_period(
    farmpay: FarmPayDep,
    payload: PayrollPeriodCreate,
) -> PayrollPeriodResponse:
    """Create a payroll period in draft status."""
    period = await farmpay.payroll.create_period(
        payload.start_date, payload.end_date, payload.pay_date
    )
    return PayrollPeriodResponse.model_validate(period)


@router.get(
    "/{period_id}",
    response_model=PayrollPeriodResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_period(
    farmpay: FarmPayDep,
    period_id: Annotated[UUID, Path()],
) -> PayrollPeriodResponse:
    period = await farmpay.payroll.get_period(period_id)
    return PayrollPeriodResponse.model_validate(period)


@router.get(
    "/{period_id}/payments",
    response_model=SalaryPaymentListResponse,
    responses={404: {"model": ErrorResponse}},
)
async def list_salary_payments(
    farmpay: FarmPayDep,
    period_id: Annotated[UUID, Path()],
) -> SalaryPaymentListResponse:
    payments = await farmpay.payroll.list_salary_payments(period_id)
    return SalaryPaymentListResponse(
        items=[SalaryPaymentResponse.model_validate(p) for p in payments],
        total=len(payments),
    )


# ============================================================================
# Lifecycle actions
# ============================================================================


@router.post(
    "/{period_id}/prepare",
    response_model=SalaryPaymentListResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ValidationErrorResponse},
    },
)
async def prepare_period(
    farmpay: FarmPayDep,
    period_id: Annotated[UUID, Path()],
    payload: PayrollPrepareRequest,
) -> SalaryPaymentListResponse:
    """Compute salary payments from employees and attendance."""
    payments = await farmpay.payroll.prepare(
        period_id,
        [Employee(**e.model_dump()) for e in payload.employees],
        [AttendanceRecord(**a.model_dump()) for a in payload.attendance],
    )
    return SalaryPaymentListResponse(
        items=[SalaryPaymentResponse.model_validate(p) for p in payments],
        total=len(payments),
    )


@router.post(
    "/{period_id}/run",
    response_model=PayrollRunResponse | PayrollPeriodResponse,
    responses={
        202: {"model": PayrollPeriodResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ValidationErrorResponse},
    },
)
async def run_period(
    farmpay: FarmPayDep,
    period_id: Annotated[UUID, Path()],
    payload: PayrollRunRequest,
    response: Response,
) -> PayrollRunResponse | PayrollPeriodResponse:
    """Pay every unpaid salary in a draft period.

    Runs in the background and answers 202 unless wait is set.
    """
    if payload.wait:
        result = await farmpay.payroll.run(period_id, payload.funding_wallet_id)
        return PayrollRunResponse.model_validate(result)

    period = await farmpay.start_payroll(period_id, payload.funding_wallet_id)
    response.status_code = status.HTTP_202_ACCEPTED
    return PayrollPeriodResponse.model_validate(period)


@router.post(
    "/{period_id}/reopen",
    response_model=PayrollPeriodResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def reopen_period(
    farmpay: FarmPayDep,
    period_id: Annotated[UUID, Path()],
) -> PayrollPeriodResponse:
    """Return a failed period to draft so unpaid salaries can be retried."""
    period = await farmpay.payroll.reopen(period_id)
    return PayrollPeriodResponse.model_validate(period)
