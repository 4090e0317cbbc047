"""Wallet and payment transaction tables."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from farmpay.models.base import Base


class WalletAccountRow(Base):
    """One balance per (user, currency)."""

    __tablename__ = "wallet_account"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    balance: Mapped[Decimal] = mapped_column(nullable=False)
    available_balance: Mapped[Decimal] = mapped_column(nullable=False)
    reserved_balance: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    linked_accounts: Mapped[list[dict[str, Any]]] = mapped_column(nullable=False, default=list)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "currency", name="wallet_account_user_currency_key"),
        CheckConstraint("available_balance >= 0", name="wallet_account_available_check"),
        CheckConstraint("reserved_balance >= 0", name="wallet_account_reserved_check"),
        CheckConstraint(
            "status IN ('active', 'suspended')",
            name="wallet_account_status_check",
        ),
    )


class PaymentTransactionRow(Base):
    """Append-only money movement record."""

    __tablename__ = "payment_transaction"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    wallet_id: Mapped[UUID] = mapped_column(
        ForeignKey("wallet_account.id", ondelete="RESTRICT"),
        nullable=False,
    )
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    counterpart: Mapped[str | None] = mapped_column(String(128), nullable=True)
    counterpart_wallet_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("wallet_account.id", ondelete="RESTRICT"),
        nullable=True,
    )
    payment_method: Mapped[str] = mapped_column(String(32), nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    reference: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    platform_fee: Mapped[Decimal] = mapped_column(nullable=False)
    provider_fee: Mapped[Decimal] = mapped_column(nullable=False)
    created_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider_push_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    original_transaction_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("payment_transaction.id", ondelete="RESTRICT"),
        nullable=True,
    )
    metadata_json: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)

    __table_args__ = (
        CheckConstraint("amount > 0", name="payment_transaction_amount_check"),
        CheckConstraint(
            "type IN ('payment', 'topup', 'withdrawal', 'salary', 'invoice', 'refund')",
            name="payment_transaction_type_check",
        ),
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', "
            "'cancelled', 'refunded', 'expired')",
            name="payment_transaction_status_check",
        ),
        Index("payment_transaction_wallet_status_idx", "wallet_id", "status"),
        Index("payment_transaction_push_idx", "provider_push_id"),
    )
