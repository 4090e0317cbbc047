"""Payroll period and salary payment tables."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from farmpay.models.base import Base


class PayrollPeriodRow(Base):
    __tablename__ = "payroll_period"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    start_date: Mapped[date] = mapped_column(nullable=False)
    end_date: Mapped[date] = mapped_column(nullable=False)
    pay_date: Mapped[date] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    employee_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    funding_wallet_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("wallet_account.id", ondelete="RESTRICT"),
        nullable=True,
    )
    created_at: Mapped[datetime | None] = mapped_column(nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="payroll_period_dates_check"),
        CheckConstraint(
            "status IN ('draft', 'processing', 'completed', 'failed')",
            name="payroll_period_status_check",
        ),
    )


class SalaryPaymentRow(Base):
    """One salary per employee per period."""

    __tablename__ = "salary_payment"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    payroll_period_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_period.id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[str] = mapped_column(String(64), nullable=False)
    employee_name: Mapped[str] = mapped_column(String(128), nullable=False)
    base_salary: Mapped[Decimal] = mapped_column(nullable=False)
    overtime_pay: Mapped[Decimal] = mapped_column(nullable=False)
    bonuses: Mapped[Decimal] = mapped_column(nullable=False)
    deductions: Mapped[Decimal] = mapped_column(nullable=False)
    gross_amount: Mapped[Decimal] = mapped_column(nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(32), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)
    pay_date: Mapped[date] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reference: Mapped[str | None] = mapped_column(String(64), nullable=True)
    transaction_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("payment_transaction.id", ondelete="RESTRICT"),
        nullable=True,
    )
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    metadata_json: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint(
            "payroll_period_id", "employee_id", name="salary_payment_period_employee_key"
        ),
    )
