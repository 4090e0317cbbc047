"""Provider registry: currencies, mobile-money providers, fees and limits.

Read-only, process-wide configuration. Loaded once at startup and passed
explicitly to every service that needs it.

Pattern:
    registry = PaymentRegistry(
        currencies=(CurrencyConfig("KES", "Kenyan Shilling", "KSh"), ...),
        providers=(ProviderConfig(id="mpesa", ...), ...),
        fees=FeeSchedule(),
        limits=TransactionLimits(),
    )

Rules:
    1. No env vars. Configuration is explicit.
    2. Immutable after creation (frozen dataclasses).
    3. Amount limits for a provider are in the provider's own currency;
       global limits are in the reference currency.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping

from farmpay.payments.errors import UnknownFeeKindError
from farmpay.payments.types import TransactionType


@dataclass(frozen=True)
class CurrencyConfig:
    """A supported currency."""

    code: str
    name: str
    symbol: str


@dataclass(frozen=True)
class ProviderConfig:
    """
    Mobile-money provider configuration.

    Attributes:
        id: Provider identifier used as a transaction's payment method.
        name: Display name used in validation messages.
        countries: ISO country codes served.
        currencies: Currency codes accepted.
        min_amount: Smallest accepted amount.
        max_amount: Largest accepted amount.
        processing_time: Human estimate of settlement latency.
        phone_pattern: Full-match regex for subscriber numbers.
    """

    id: str
    name: str
    countries: tuple[str, ...]
    currencies: tuple[str, ...]
    min_amount: Decimal
    max_amount: Decimal
    processing_time: str
    phone_pattern: str
    is_active: bool = True

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not self.id:
            raise ValueError("id is required")
        if self.min_amount < 0:
            raise ValueError("min_amount cannot be negative")
        if self.max_amount < self.min_amount:
            raise ValueError("max_amount must be >= min_amount")

    def supports_currency(self, currency: str) -> bool:
        return currency in self.currencies


@dataclass(frozen=True)
class FeeSchedule:
    """
    Fee rates as fractions of the transaction amount.

    Attributes:
        mobile_money_fee: Provider fee for mobile-money collections/payouts.
        currency_conversion_fee: Fee applied on currency conversion.
        withdrawal_fee: Provider fee for wallet withdrawals.
        platform_fee: Platform commission.
    """

    mobile_money_fee: Decimal = Decimal("0.015")
    currency_conversion_fee: Decimal = Decimal("0.02")
    withdrawal_fee: Decimal = Decimal("0.01")
    platform_fee: Decimal = Decimal("0.025")

    def __post_init__(self) -> None:
        """Validate configuration."""
        for name, rate in self.rates().items():
            if rate < 0 or rate >= 1:
                raise ValueError(f"{name} must be in [0, 1)")

    def rates(self) -> dict[str, Decimal]:
        return {
            "mobile_money_fee": self.mobile_money_fee,
            "currency_conversion_fee": self.currency_conversion_fee,
            "withdrawal_fee": self.withdrawal_fee,
            "platform_fee": self.platform_fee,
        }

    def rate(self, fee_kind: str) -> Decimal:
        """Get the rate for a fee kind, raising UnknownFeeKindError."""
        rates = self.rates()
        if fee_kind not in rates:
            raise UnknownFeeKindError(fee_kind)
        return rates[fee_kind]


# (platform fee kind, provider fee kind) charged for each transaction type.
TRANSACTION_FEE_KINDS: Mapping[TransactionType, tuple[str | None, str | None]] = MappingProxyType(
    {
        TransactionType.PAYMENT: ("platform_fee", "mobile_money_fee"),
        TransactionType.INVOICE: ("platform_fee", "mobile_money_fee"),
        TransactionType.TOPUP: ("platform_fee", "mobile_money_fee"),
        TransactionType.WITHDRAWAL: ("platform_fee", "withdrawal_fee"),
        TransactionType.SALARY: (None, "mobile_money_fee"),
        TransactionType.REFUND: (None, None),
    }
)


@dataclass(frozen=True)
class TransactionLimits:
    """
    Limits expressed in the reference currency.

    Attributes:
        daily_limit: Maximum volume per wallet per day.
        monthly_limit: Maximum volume per wallet per month.
        transaction_limit: Maximum single transaction amount.
        wallet_limit: Maximum wallet balance.
    """

    daily_limit: Decimal = Decimal("500000")
    monthly_limit: Decimal = Decimal("5000000")
    transaction_limit: Decimal = Decimal("150000")
    wallet_limit: Decimal = Decimal("1000000")


@dataclass(frozen=True)
class PayrollPolicy:
    """
    Salary computation policy.

    Attributes:
        standard_working_days: Days in a full period; base salary is prorated
            by days_worked / standard_working_days.
        overtime_rate: Pay per overtime hour, in the employee's currency.
        tax_rate: Withholding rate applied to gross, as a fraction.
    """

    standard_working_days: int = 22
    overtime_rate: Decimal = Decimal("100")
    tax_rate: Decimal = Decimal("0.05")

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.standard_working_days < 1:
            raise ValueError("standard_working_days must be at least 1")
        if self.overtime_rate < 0:
            raise ValueError("overtime_rate cannot be negative")
        if self.tax_rate < 0 or self.tax_rate >= 1:
            raise ValueError("tax_rate must be in [0, 1)")


@dataclass(frozen=True)
class PaymentRegistry:
    """
    Complete payment configuration.

    Attributes:
        currencies: Supported currencies.
        providers: Mobile-money providers.
        fees: Fee schedule.
        limits: Global limits in reference_currency.
        reference_currency: Currency that global limits are expressed in.
        reference_rates: Units of reference_currency per unit of each
            currency. Static; live rate sourcing is an external concern.
    """

    currencies: tuple[CurrencyConfig, ...]
    providers: tuple[ProviderConfig, ...]
    fees: FeeSchedule = field(default_factory=FeeSchedule)
    limits: TransactionLimits = field(default_factory=TransactionLimits)
    reference_currency: str = "KES"
    reference_rates: Mapping[str, Decimal] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not self.currencies:
            raise ValueError("At least one currency is required")

        codes = [c.code for c in self.currencies]
        if len(codes) != len(set(codes)):
            raise ValueError("Currency codes must be unique")

        ids = [p.id for p in self.providers]
        if len(ids) != len(set(ids)):
            raise ValueError("Provider ids must be unique")

        if self.reference_currency not in codes:
            raise ValueError("reference_currency must be a supported currency")

    def get_currency(self, code: str) -> CurrencyConfig | None:
        for currency in self.currencies:
            if currency.code == code:
                return currency
        return None

    def get_provider(self, provider_id: str) -> ProviderConfig | None:
        for provider in self.providers:
            if provider.id == provider_id:
                return provider
        return None

    def providers_for_currency(self, currency: str) -> list[ProviderConfig]:
        return [p for p in self.providers if p.is_active and p.supports_currency(currency)]

    def to_reference(self, amount: Decimal, currency: str) -> Decimal:
        """Convert an amount to the reference currency.

        Currencies without a configured rate convert at par.
        """
        if currency == self.reference_currency:
            return amount
        return amount * self.reference_rates.get(currency, Decimal("1"))


def create_default_registry() -> PaymentRegistry:
    """
    Create the registry for the East/West African markets served by default.

    Provider limits and phone patterns follow each provider's published
    subscriber rules; reference rates are indicative KES values.
    """
    return PaymentRegistry(
        currencies=(
            CurrencyConfig("KES", "Kenyan Shilling", "KSh"),
            CurrencyConfig("UGX", "Ugandan Shilling", "USh"),
            CurrencyConfig("GHS", "Ghanaian Cedi", "₵"),
            CurrencyConfig("NGN", "Nigerian Naira", "₦"),
            CurrencyConfig("TZS", "Tanzanian Shilling", "TSh"),
            CurrencyConfig("USD", "US Dollar", "$"),
        ),
        providers=(
            ProviderConfig(
                id="mpesa",
                name="M-Pesa",
                countries=("KE", "TZ"),
                currencies=("KES", "TZS"),
                min_amount=Decimal("1"),
                max_amount=Decimal("150000"),
                processing_time="1-3 minutes",
                phone_pattern=r"254[17]\d{8}",
            ),
            ProviderConfig(
                id="mtn_momo",
                name="MTN Mobile Money",
                countries=("UG", "GH"),
                currencies=("UGX", "GHS"),
                min_amount=Decimal("100"),
                max_amount=Decimal("5000000"),
                processing_time="1-5 minutes",
                phone_pattern=r"256[37]\d{8}|233[25]\d{8}",
            ),
            ProviderConfig(
                id="airtel_money",
                name="Airtel Money",
                countries=("KE", "UG", "TZ", "GH"),
                currencies=("KES", "UGX", "TZS", "GHS"),
                min_amount=Decimal("10"),
                max_amount=Decimal("100000"),
                processing_time="1-3 minutes",
                phone_pattern=r"254[17]\d{8}|256[37]\d{8}",
            ),
            ProviderConfig(
                id="vodafone_cash",
                name="Vodafone Cash",
                countries=("GH",),
                currencies=("GHS",),
                min_amount=Decimal("1"),
                max_amount=Decimal("10000"),
                processing_time="1-2 minutes",
                phone_pattern=r"233[25]\d{8}",
            ),
        ),
        fees=FeeSchedule(),
        limits=TransactionLimits(),
        reference_currency="KES",
        reference_rates=MappingProxyType(
            {
                "KES": Decimal("1"),
                "UGX": Decimal("0.035"),
                "GHS": Decimal("10.5"),
                "NGN": Decimal("0.085"),
                "TZS": Decimal("0.05"),
                "USD": Decimal("129"),
            }
        ),
    )


DEFAULT_REGISTRY = create_default_registry()
