"""Currency, fee and validation utilities.

Pure functions. Every function that needs configuration takes the registry
as an optional argument and falls back to DEFAULT_REGISTRY.
"""

from __future__ import annotations

import re
import secrets
import time
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Mapping

from farmpay.payments.registry import DEFAULT_REGISTRY, TRANSACTION_FEE_KINDS, PaymentRegistry
from farmpay.payments.types import ZERO, Fees, TransactionType, ValidationResult

if TYPE_CHECKING:
    from farmpay.payments.store.base import InvoiceSequence

CENTS = Decimal("0.01")
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def to_money(value: Decimal | int | float | str) -> Decimal:
    """Quantize a value to 2 decimal places (half-up)."""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def format_currency(
    amount: Decimal | int | float,
    currency: str,
    registry: PaymentRegistry = DEFAULT_REGISTRY,
) -> str:
    """Format an amount with the currency symbol, e.g. "$1,234.50".

    Unknown currencies are prefixed with the raw code.
    """
    config = registry.get_currency(currency)
    symbol = config.symbol if config else currency
    return f"{symbol}{to_money(amount):,.2f}"


def calculate_fee(
    amount: Decimal | int | float,
    fee_kind: str,
    registry: PaymentRegistry = DEFAULT_REGISTRY,
) -> Decimal:
    """Calculate a fee: round(amount * rate, 2).

    Raises UnknownFeeKindError for a fee kind missing from the schedule.
    """
    rate = registry.fees.rate(fee_kind)
    return to_money(Decimal(str(amount)) * rate)


def calculate_transaction_fees(
    transaction_type: TransactionType,
    amount: Decimal,
    registry: PaymentRegistry = DEFAULT_REGISTRY,
) -> Fees:
    """Compute platform and provider fees for a transaction type."""
    platform_kind, provider_kind = TRANSACTION_FEE_KINDS[transaction_type]
    return Fees(
        platform_fee=calculate_fee(amount, platform_kind, registry) if platform_kind else ZERO,
        provider_fee=calculate_fee(amount, provider_kind, registry) if provider_kind else ZERO,
    )


def calculate_total(
    amount: Decimal,
    include_platform_fee: bool = True,
    registry: PaymentRegistry = DEFAULT_REGISTRY,
) -> dict[str, Decimal]:
    """Total payable with the platform fee."""
    platform_fee = calculate_fee(amount, "platform_fee", registry) if include_platform_fee else ZERO
    return {
        "amount": to_money(amount),
        "platform_fee": platform_fee,
        "total": to_money(amount) + platform_fee,
    }


def convert_currency(
    amount: Decimal,
    from_currency: str,
    to_currency: str,
    rates: Mapping[str, Decimal],
    apply_conversion_fee: bool = False,
    registry: PaymentRegistry = DEFAULT_REGISTRY,
) -> Decimal:
    """Convert between currencies using rates quoted against a common base.

    Missing rates are treated as 1. With apply_conversion_fee the
    registry's currency_conversion_fee is deducted from the converted
    amount; same-currency amounts are never charged.
    """
    if from_currency == to_currency:
        return to_money(amount)
    from_rate = rates.get(from_currency, Decimal("1"))
    to_rate = rates.get(to_currency, Decimal("1"))
    converted = to_money(Decimal(str(amount)) / from_rate * to_rate)
    if apply_conversion_fee:
        converted -= calculate_fee(converted, "currency_conversion_fee", registry)
    return converted


def validate_amount(
    amount: Decimal | int | float,
    currency: str,
    provider_id: str | None = None,
    registry: PaymentRegistry = DEFAULT_REGISTRY,
) -> ValidationResult:
    """Validate an amount against global and provider limits.

    All applicable checks run and every failure is reported.
    """
    errors: list[str] = []
    value = Decimal(str(amount))

    if value <= 0:
        errors.append("Amount must be greater than 0")

    if registry.get_currency(currency) is None:
        errors.append(f"Unsupported currency: {currency}")

    limit = registry.limits.transaction_limit
    if registry.to_reference(value, currency) > limit:
        errors.append(
            "Amount exceeds transaction limit of "
            f"{format_currency(limit, registry.reference_currency, registry)}"
        )

    if provider_id:
        provider = registry.get_provider(provider_id)
        if provider is None:
            errors.append(f"Unknown payment provider: {provider_id}")
        else:
            if not provider.is_active:
                errors.append(f"{provider.name} is not available")
            if not provider.supports_currency(currency):
                errors.append(f"{provider.name} does not support {currency}")
            if value < provider.min_amount:
                errors.append(
                    f"Amount below minimum for {provider.name}: "
                    f"{format_currency(provider.min_amount, currency, registry)}"
                )
            if value > provider.max_amount:
                errors.append(
                    f"Amount exceeds maximum for {provider.name}: "
                    f"{format_currency(provider.max_amount, currency, registry)}"
                )

    return ValidationResult(errors=tuple(errors))


def validate_momo_number(
    phone_number: str,
    provider_id: str,
    registry: PaymentRegistry = DEFAULT_REGISTRY,
) -> bool:
    """Check a subscriber number against the provider's pattern.

    Unknown providers never match. A leading "+" is ignored.
    """
    provider = registry.get_provider(provider_id)
    if provider is None or not phone_number:
        return False
    return re.fullmatch(provider.phone_pattern, phone_number.removeprefix("+")) is not None


def get_supported_providers(
    currency: str,
    registry: PaymentRegistry = DEFAULT_REGISTRY,
) -> list[str]:
    return [p.id for p in registry.providers_for_currency(currency)]


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_payment_ref(kind: str) -> str:
    """Generate a reference like PAY_LZ3K9Q1A_X7P2QD.

    Uniqueness is advisory; stores reject duplicates and callers regenerate.
    """
    timestamp = _base36(time.time_ns() // 1_000_000)
    random_part = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"{kind}_{timestamp}_{random_part}".upper()


async def generate_invoice_number(
    sequence: InvoiceSequence,
    issue_date: date,
    prefix: str = "INV",
) -> str:
    """Generate INV-YYYYMM-NNNN from the monotonic per-month sequence."""
    period_key = f"{issue_date.year}{issue_date.month:02d}"
    number = await sequence.next_invoice_sequence(period_key)
    return f"{prefix}-{period_key}-{number:04d}"


def calculate_due_date(issue_date: date, payment_terms: int) -> date:
    """Due date is issue date plus payment terms in days."""
    return issue_date + timedelta(days=payment_terms)


def is_overdue(due_date: date, now: datetime | date) -> bool:
    """True once the current date is past the due date."""
    today = now.date() if isinstance(now, datetime) else now
    return today > due_date
