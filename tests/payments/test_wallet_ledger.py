"""Tests for the wallet ledger.

Tests verify:
1. balance == available + reserved after every operation
2. Reservations fail cleanly on insufficient funds
3. Settlement is all-or-nothing across wallets
4. Concurrent mutations of one wallet are serialized
5. A failed unit of work undoes only its own writes
"""

import asyncio
from decimal import Decimal
from uuid import uuid4

import pytest

from farmpay.payments.errors import (
    InsufficientFundsError,
    InvariantViolationError,
    NotFoundError,
    ValidationError,
)
from farmpay.payments.services.wallet_ledger import WalletLedger
from farmpay.payments.store.memory import InMemoryPaymentStore
from farmpay.payments.types import SettlementEntry, WalletAccount, WalletStatus


@pytest.fixture
def ledger() -> WalletLedger:
    return WalletLedger(InMemoryPaymentStore())


async def _funded(ledger: WalletLedger, user_id: str = "farmer-1", amount: str = "1000"):
    wallet = await ledger.get_or_create(user_id, "KES")
    return await ledger.settle(wallet.id, Decimal(amount))


def _assert_balanced(wallet):
    assert wallet.balance == wallet.available_balance + wallet.reserved_balance


class TestWalletCreation:
    """Test get_or_create."""

    async def test_creates_empty_wallet(self, ledger):
        wallet = await ledger.get_or_create("farmer-1", "KES")
        assert wallet.balance == 0
        assert wallet.status == WalletStatus.ACTIVE
        assert wallet.updated_at is not None

    async def test_returns_existing_wallet(self, ledger):
        first = await ledger.get_or_create("farmer-1", "KES")
        second = await ledger.get_or_create("farmer-1", "KES")
        other = await ledger.get_or_create("farmer-1", "UGX")

        assert first.id == second.id
        assert other.id != first.id

    async def test_concurrent_creation_yields_one_wallet(self, ledger):
        wallets = await asyncio.gather(
            *(ledger.get_or_create("farmer-1", "KES") for _ in range(10))
        )
        assert len({w.id for w in wallets}) == 1
        assert len(await ledger.list_wallets("farmer-1")) == 1

    async def test_unsupported_currency(self, ledger):
        with pytest.raises(ValidationError) as exc_info:
            await ledger.get_or_create("farmer-1", "EUR")
        assert exc_info.value.errors == ["Unsupported currency: EUR"]

    async def test_unknown_wallet(self, ledger):
        with pytest.raises(NotFoundError) as exc_info:
            await ledger.get(uuid4())
        assert exc_info.value.kind == "Wallet"

    async def test_fee_wallet_belongs_to_platform(self, ledger):
        fee_wallet = await ledger.fee_wallet("KES")
        assert fee_wallet.user_id == "platform"
        assert (await ledger.fee_wallet("KES")).id == fee_wallet.id


class TestReserveAndRelease:
    """Test reservations."""

    async def test_reserve_moves_available_to_reserved(self, ledger):
        wallet = await _funded(ledger)
        wallet = await ledger.reserve(wallet.id, Decimal("300"))

        assert wallet.balance == Decimal("1000.00")
        assert wallet.available_balance == Decimal("700.00")
        assert wallet.reserved_balance == Decimal("300.00")
        _assert_balanced(wallet)

    async def test_reserve_insufficient_funds(self, ledger):
        wallet = await _funded(ledger, amount="100")

        with pytest.raises(InsufficientFundsError) as exc_info:
            await ledger.reserve(wallet.id, Decimal("100.01"))

        assert exc_info.value.available == Decimal("100.00")
        unchanged = await ledger.get(wallet.id)
        assert unchanged.available_balance == Decimal("100.00")
        assert unchanged.reserved_balance == 0

    async def test_reserve_rejects_non_positive(self, ledger):
        wallet = await _funded(ledger)
        with pytest.raises(InvariantViolationError):
            await ledger.reserve(wallet.id, Decimal("0"))

    async def test_release_returns_funds(self, ledger):
        wallet = await _funded(ledger)
        await ledger.reserve(wallet.id, Decimal("300"))
        wallet = await ledger.release(wallet.id, Decimal("300"))

        assert wallet.available_balance == Decimal("1000.00")
        assert wallet.reserved_balance == 0
        _assert_balanced(wallet)

    async def test_release_more_than_reserved(self, ledger):
        wallet = await _funded(ledger)
        await ledger.reserve(wallet.id, Decimal("100"))
        with pytest.raises(InvariantViolationError):
            await ledger.release(wallet.id, Decimal("100.01"))

    async def test_release_skipped_when_precondition_declines(self, ledger):
        wallet = await _funded(ledger)
        await ledger.reserve(wallet.id, Decimal("100"))
        committed = []

        async def declined() -> bool:
            return False

        async def on_commit() -> None:
            committed.append(True)

        result = await ledger.release(
            wallet.id, Decimal("100"), precondition=declined, on_commit=on_commit
        )

        assert result is None
        assert committed == []
        assert (await ledger.get(wallet.id)).reserved_balance == Decimal("100.00")

    async def test_reserve_hook_failure_rolls_back(self, ledger):
        wallet = await _funded(ledger)

        async def on_commit() -> None:
            raise RuntimeError("status write failed")

        with pytest.raises(RuntimeError):
            await ledger.reserve(wallet.id, Decimal("100"), on_commit=on_commit)

        after = await ledger.get(wallet.id)
        assert after.available_balance == Decimal("1000.00")
        assert after.reserved_balance == 0

    async def test_concurrent_reservations_never_overdraw(self, ledger):
        wallet = await _funded(ledger, amount="500")

        results = await asyncio.gather(
            *(ledger.reserve(wallet.id, Decimal("100")) for _ in range(8)),
            return_exceptions=True,
        )

        succeeded = [r for r in results if not isinstance(r, Exception)]
        failed = [r for r in results if isinstance(r, InsufficientFundsError)]
        assert len(succeeded) == 5
        assert len(failed) == 3
        final = await ledger.get(wallet.id)
        assert final.available_balance == 0
        assert final.reserved_balance == Decimal("500.00")
        _assert_balanced(final)


class TestSettlement:
    """Test settle and apply_settlement."""

    async def test_settle_credit_and_debit(self, ledger):
        wallet = await _funded(ledger)
        wallet = await ledger.settle(wallet.id, Decimal("-250.50"))
        assert wallet.balance == Decimal("749.50")
        assert wallet.available_balance == Decimal("749.50")

    async def test_settle_cannot_overdraw(self, ledger):
        wallet = await _funded(ledger, amount="100")
        with pytest.raises(InvariantViolationError):
            await ledger.settle(wallet.id, Decimal("-100.01"))
        assert (await ledger.get(wallet.id)).balance == Decimal("100.00")

    async def test_settle_consumes_reservation(self, ledger):
        wallet = await _funded(ledger)
        await ledger.reserve(wallet.id, Decimal("400"))
        wallet = await ledger.settle(wallet.id, Decimal("-400"), reserved=Decimal("400"))

        assert wallet.balance == Decimal("600.00")
        assert wallet.available_balance == Decimal("600.00")
        assert wallet.reserved_balance == 0

    async def test_settle_cannot_consume_more_than_reserved(self, ledger):
        wallet = await _funded(ledger)
        with pytest.raises(InvariantViolationError):
            await ledger.settle(wallet.id, Decimal("-10"), reserved=Decimal("10"))

    async def test_apply_settlement_moves_money_between_wallets(self, ledger):
        source = await _funded(ledger)
        target = await ledger.get_or_create("buyer-1", "KES")
        await ledger.reserve(source.id, Decimal("300"))

        applied = await ledger.apply_settlement(
            [
                SettlementEntry(source.id, Decimal("-300"), reserved=Decimal("300")),
                SettlementEntry(target.id, Decimal("300")),
            ]
        )

        assert applied is True
        assert (await ledger.get(source.id)).balance == Decimal("700.00")
        assert (await ledger.get(target.id)).balance == Decimal("300.00")

    async def test_apply_settlement_is_all_or_nothing(self, ledger):
        source = await _funded(ledger, amount="100")
        target = await ledger.get_or_create("buyer-1", "KES")

        with pytest.raises(InvariantViolationError):
            await ledger.apply_settlement(
                [
                    SettlementEntry(target.id, Decimal("500")),
                    SettlementEntry(source.id, Decimal("-500")),
                ]
            )

        assert (await ledger.get(target.id)).balance == 0
        assert (await ledger.get(source.id)).balance == Decimal("100.00")

    async def test_on_commit_failure_rolls_back_balances(self, ledger):
        source = await _funded(ledger)

        async def on_commit() -> None:
            raise RuntimeError("status write failed")

        with pytest.raises(RuntimeError):
            await ledger.apply_settlement(
                [SettlementEntry(source.id, Decimal("-100"))], on_commit=on_commit
            )

        assert (await ledger.get(source.id)).balance == Decimal("1000.00")

    async def test_suspended_wallet_rejects_settlement(self, ledger):
        wallet = await _funded(ledger)
        await ledger.suspend(wallet.id)

        with pytest.raises(InvariantViolationError):
            await ledger.settle(wallet.id, Decimal("10"))
        with pytest.raises(InvariantViolationError):
            await ledger.reserve(wallet.id, Decimal("10"))

        wallet = await ledger.activate(wallet.id)
        assert wallet.status == WalletStatus.ACTIVE
        await ledger.reserve(wallet.id, Decimal("10"))


class TestLinkedAccounts:
    """Test linked mobile-money accounts."""

    async def test_link_and_verify(self, ledger):
        wallet = await ledger.get_or_create("farmer-1", "KES")
        wallet = await ledger.link_account(wallet.id, "mpesa", "254712345678")
        wallet = await ledger.link_account(wallet.id, "mpesa", "254712345678")

        assert len(wallet.linked_accounts) == 1
        assert wallet.linked_accounts[0].verified is False

        wallet = await ledger.verify_linked_account(wallet.id, "254712345678")
        assert wallet.linked_accounts[0].verified is True

    async def test_link_rejects_invalid_number(self, ledger):
        wallet = await ledger.get_or_create("farmer-1", "KES")
        with pytest.raises(ValidationError) as exc_info:
            await ledger.link_account(wallet.id, "mpesa", "0712345678")
        assert exc_info.value.errors == ["Invalid M-Pesa number: 0712345678"]

    async def test_verify_unknown_number(self, ledger):
        wallet = await ledger.get_or_create("farmer-1", "KES")
        with pytest.raises(NotFoundError):
            await ledger.verify_linked_account(wallet.id, "254700000000")


class TestUnitOfWork:
    """Test the in-memory store's atomic blocks."""

    async def test_rollback_removes_added_records(self):
        store = InMemoryPaymentStore()
        wallet = WalletAccount(user_id="farmer-1", currency="KES")

        with pytest.raises(RuntimeError):
            async with store.atomic():
                await store.add_wallet(wallet)
                async with store.atomic():
                    assert await store.get_wallet(wallet.id) is not None
                raise RuntimeError("abort")

        assert await store.get_wallet(wallet.id) is None

    async def test_rollback_keeps_writes_of_other_tasks(self):
        store = InMemoryPaymentStore()
        ledger = WalletLedger(store)
        first = await _funded(ledger, "farmer-1")
        second = await _funded(ledger, "farmer-2")
        entered = asyncio.Event()
        written = asyncio.Event()

        async def failing() -> None:
            async with store.atomic():
                wallet = await store.get_wallet(first.id)
                wallet.status = WalletStatus.SUSPENDED
                await store.update_wallet(wallet)
                entered.set()
                await written.wait()
                raise RuntimeError("abort")

        async def crediting() -> None:
            await entered.wait()
            await ledger.settle(second.id, Decimal("500"))
            written.set()

        results = await asyncio.gather(failing(), crediting(), return_exceptions=True)

        assert isinstance(results[0], RuntimeError)
        assert (await ledger.get(first.id)).status == WalletStatus.ACTIVE
        assert (await ledger.get(second.id)).balance == Decimal("1500.00")
