"""Tests for the provider registry and payroll policy."""

from decimal import Decimal

import pytest

from farmpay.payments.errors import UnknownFeeKindError
from farmpay.payments.registry import (
    DEFAULT_REGISTRY,
    CurrencyConfig,
    FeeSchedule,
    PaymentRegistry,
    PayrollPolicy,
    ProviderConfig,
)


def _provider(**overrides) -> ProviderConfig:
    values = dict(
        id="mpesa",
        name="M-Pesa",
        countries=("KE",),
        currencies=("KES",),
        min_amount=Decimal("1"),
        max_amount=Decimal("150000"),
        processing_time="1-3 minutes",
        phone_pattern=r"254[17]\d{8}",
    )
    values.update(overrides)
    return ProviderConfig(**values)


class TestDefaultRegistry:
    """Test the shipped configuration."""

    def test_currencies(self):
        assert DEFAULT_REGISTRY.get_currency("KES").symbol == "KSh"
        assert DEFAULT_REGISTRY.get_currency("USD").symbol == "$"
        assert DEFAULT_REGISTRY.get_currency("EUR") is None

    def test_mpesa_limits(self):
        mpesa = DEFAULT_REGISTRY.get_provider("mpesa")
        assert mpesa.min_amount == Decimal("1")
        assert mpesa.max_amount == Decimal("150000")
        assert mpesa.supports_currency("KES") is True
        assert mpesa.supports_currency("UGX") is False

    def test_reference_conversion(self):
        assert DEFAULT_REGISTRY.to_reference(Decimal("100"), "KES") == Decimal("100")
        assert DEFAULT_REGISTRY.to_reference(Decimal("10"), "GHS") == Decimal("105.0")

    def test_registry_is_frozen(self):
        with pytest.raises(AttributeError):
            DEFAULT_REGISTRY.reference_currency = "USD"


class TestRegistryValidation:
    """Test configuration validation."""

    def test_requires_a_currency(self):
        with pytest.raises(ValueError, match="At least one currency"):
            PaymentRegistry(currencies=(), providers=())

    def test_duplicate_provider_ids(self):
        with pytest.raises(ValueError, match="Provider ids must be unique"):
            PaymentRegistry(
                currencies=(CurrencyConfig("KES", "Kenyan Shilling", "KSh"),),
                providers=(_provider(), _provider()),
            )

    def test_reference_currency_must_be_supported(self):
        with pytest.raises(ValueError, match="reference_currency"):
            PaymentRegistry(
                currencies=(CurrencyConfig("UGX", "Ugandan Shilling", "USh"),),
                providers=(),
            )

    def test_provider_range(self):
        with pytest.raises(ValueError, match="max_amount"):
            _provider(min_amount=Decimal("10"), max_amount=Decimal("5"))

    def test_inactive_providers_are_not_offered(self):
        registry = PaymentRegistry(
            currencies=(CurrencyConfig("KES", "Kenyan Shilling", "KSh"),),
            providers=(_provider(is_active=False),),
        )
        assert registry.providers_for_currency("KES") == []


class TestFeeSchedule:
    def test_rate_lookup(self):
        fees = FeeSchedule()
        assert fees.rate("platform_fee") == Decimal("0.025")
        with pytest.raises(UnknownFeeKindError):
            fees.rate("stamp_duty")

    def test_rates_must_be_fractions(self):
        with pytest.raises(ValueError, match="platform_fee"):
            FeeSchedule(platform_fee=Decimal("1.5"))


class TestPayrollPolicy:
    def test_defaults(self):
        policy = PayrollPolicy()
        assert policy.standard_working_days == 22
        assert policy.tax_rate == Decimal("0.05")

    def test_invalid_tax_rate(self):
        with pytest.raises(ValueError):
            PayrollPolicy(tax_rate=Decimal("1"))
