"""Wallet Ledger - per-user, per-currency balances with reservations.

Every wallet mutation goes through this service:
- reserve: available → reserved while a debit is in flight
- release: reserved → available when the debit does not go through
- settle: signed balance change, optionally consuming a reservation
- apply_settlement: several settles as one all-or-nothing unit, together
  with the caller's terminal status write

Mutations are serialized per wallet with an asyncio.Lock. Operations that
touch several wallets take the locks in sorted id order, so two settlements
over the same wallets can never wait on each other.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import AsyncExitStack, asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator, Awaitable, Callable, Iterable
from uuid import UUID

from farmpay.payments.clock import Clock, SystemClock
from farmpay.payments.errors import (
    InsufficientFundsError,
    InvariantViolationError,
    NotFoundError,
    ValidationError,
)
from farmpay.payments.registry import DEFAULT_REGISTRY, PaymentRegistry
from farmpay.payments.store.base import PaymentStore
from farmpay.payments.types import (
    ZERO,
    LinkedAccount,
    SettlementEntry,
    WalletAccount,
    WalletStatus,
)
from farmpay.payments.utils import to_money, validate_momo_number

logger = logging.getLogger(__name__)

Hook = Callable[[], Awaitable[None]]
Guard = Callable[[], Awaitable[bool]]


def _require_active(wallet: WalletAccount) -> None:
    if wallet.status != WalletStatus.ACTIVE:
        raise InvariantViolationError(f"Wallet {wallet.id} is {wallet.status.value}")


def _apply_entry(wallet: WalletAccount, delta: Decimal, reserved: Decimal) -> None:
    """Apply a signed change to a wallet in place.

    reserved is drained from the reservation first; the rest of delta lands
    on the available balance.
    """
    if reserved < 0:
        raise InvariantViolationError("Reserved portion of a settlement cannot be negative")
    if reserved > wallet.reserved_balance:
        raise InvariantViolationError(
            f"Wallet {wallet.id} cannot consume {reserved} from a reservation of "
            f"{wallet.reserved_balance}"
        )

    balance = wallet.balance + delta
    available = wallet.available_balance + delta + reserved
    reserved_balance = wallet.reserved_balance - reserved

    if balance < 0 or available < 0:
        raise InvariantViolationError(
            f"Settlement of {delta} would overdraw wallet {wallet.id} "
            f"(balance {wallet.balance}, available {wallet.available_balance})"
        )

    wallet.balance = balance
    wallet.available_balance = available
    wallet.reserved_balance = reserved_balance


class WalletLedger:
    """Balance bookkeeping for wallets.

    Usage:
        ledger = WalletLedger(store)
        wallet = await ledger.get_or_create("user-1", "KES")
        await ledger.settle(wallet.id, Decimal("500.00"))
        await ledger.reserve(wallet.id, Decimal("120.00"))
    """

    def __init__(
        self,
        store: PaymentStore,
        clock: Clock | None = None,
        registry: PaymentRegistry = DEFAULT_REGISTRY,
        platform_user_id: str = "platform",
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.registry = registry
        self.platform_user_id = platform_user_id
        self._locks: defaultdict[UUID, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._create_lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Locking
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def locked(self, *wallet_ids: UUID) -> AsyncIterator[None]:
        """Hold the locks of every given wallet, acquired in sorted order."""
        async with AsyncExitStack() as stack:
            for wallet_id in sorted(set(wallet_ids)):
                await stack.enter_async_context(self._locks[wallet_id])
            yield

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get(self, wallet_id: UUID) -> WalletAccount:
        wallet = await self.store.get_wallet(wallet_id)
        if wallet is None:
            raise NotFoundError("Wallet", wallet_id)
        return wallet

    async def get_or_create(self, user_id: str, currency: str) -> WalletAccount:
        """Return the user's wallet in currency, creating an empty one on first use."""
        if self.registry.get_currency(currency) is None:
            raise ValidationError([f"Unsupported currency: {currency}"])

        async with self._create_lock:
            wallet = await self.store.find_wallet(user_id, currency)
            if wallet is not None:
                return wallet

            wallet = WalletAccount(user_id=user_id, currency=currency, updated_at=self.clock.now())
            await self.store.add_wallet(wallet)
            logger.info("Created %s wallet %s for user %s", currency, wallet.id, user_id)
            return wallet

    async def fee_wallet(self, currency: str) -> WalletAccount:
        """The platform wallet that collects fees in currency."""
        return await self.get_or_create(self.platform_user_id, currency)

    async def list_wallets(self, user_id: str | None = None) -> list[WalletAccount]:
        return await self.store.list_wallets(user_id)

    # -------------------------------------------------------------------------
    # Balance mutations
    # -------------------------------------------------------------------------

    async def reserve(
        self,
        wallet_id: UUID,
        amount: Decimal,
        *,
        on_commit: Hook | None = None,
    ) -> WalletAccount:
        """Move amount from available to reserved.

        on_commit runs inside the same unit of work as the reservation.

        Raises:
            InsufficientFundsError: available balance is below amount.
        """
        amount = to_money(amount)
        if amount <= 0:
            raise InvariantViolationError("Reservation amount must be positive")

        async with self.locked(wallet_id):
            async with self.store.atomic():
                wallet = await self.get(wallet_id)
                _require_active(wallet)
                if wallet.available_balance < amount:
                    raise InsufficientFundsError(wallet_id, amount, wallet.available_balance)

                wallet.available_balance -= amount
                wallet.reserved_balance += amount
                await self._save(wallet)
                if on_commit is not None:
                    await on_commit()

        logger.debug("Reserved %s on wallet %s", amount, wallet_id)
        return wallet

    async def release(
        self,
        wallet_id: UUID,
        amount: Decimal,
        *,
        precondition: Guard | None = None,
        on_commit: Hook | None = None,
    ) -> WalletAccount | None:
        """Move amount from reserved back to available.

        When precondition returns False nothing is written and None is
        returned. on_commit runs inside the same unit of work.

        Raises:
            InvariantViolationError: amount exceeds the reservation.
        """
        amount = to_money(amount)
        if amount < 0:
            raise InvariantViolationError("Release amount cannot be negative")

        async with self.locked(wallet_id):
            if precondition is not None and not await precondition():
                return None

            async with self.store.atomic():
                wallet = await self.get(wallet_id)
                if amount > wallet.reserved_balance:
                    raise InvariantViolationError(
                        f"Cannot release {amount} from wallet {wallet_id}: "
                        f"only {wallet.reserved_balance} reserved"
                    )
                wallet.reserved_balance -= amount
                wallet.available_balance += amount
                await self._save(wallet)
                if on_commit is not None:
                    await on_commit()

        logger.debug("Released %s on wallet %s", amount, wallet_id)
        return wallet

    async def settle(
        self,
        wallet_id: UUID,
        delta: Decimal,
        reserved: Decimal = ZERO,
    ) -> WalletAccount:
        """Apply a signed balance change to one wallet.

        Raises:
            InvariantViolationError: the change would overdraw the wallet or
                consume more than is reserved.
        """
        async with self.locked(wallet_id):
            wallet = await self.get(wallet_id)
            _require_active(wallet)
            _apply_entry(wallet, to_money(delta), to_money(reserved))
            await self._save(wallet)
        return wallet

    async def apply_settlement(
        self,
        entries: Iterable[SettlementEntry],
        *,
        precondition: Guard | None = None,
        on_commit: Hook | None = None,
    ) -> bool:
        """Apply several entries atomically.

        Either every wallet changes and on_commit's writes land, or nothing
        does. Returns False without writing when precondition declines.
        """
        entries = list(entries)
        wallet_ids = {entry.wallet_id for entry in entries}

        async with self.locked(*wallet_ids):
            if precondition is not None and not await precondition():
                return False

            async with self.store.atomic():
                wallets: dict[UUID, WalletAccount] = {}
                for entry in entries:
                    wallet = wallets.get(entry.wallet_id)
                    if wallet is None:
                        wallet = await self.get(entry.wallet_id)
                        _require_active(wallet)
                        wallets[entry.wallet_id] = wallet
                    _apply_entry(wallet, to_money(entry.delta), to_money(entry.reserved))

                for wallet in wallets.values():
                    await self._save(wallet)
                if on_commit is not None:
                    await on_commit()

        logger.debug("Applied settlement across %d wallet(s)", len(wallet_ids))
        return True

    # -------------------------------------------------------------------------
    # Account management
    # -------------------------------------------------------------------------

    async def link_account(self, wallet_id: UUID, provider: str, number: str) -> WalletAccount:
        """Attach a mobile-money account. Linking the same number twice is a no-op."""
        provider_config = self.registry.get_provider(provider)
        if provider_config is None:
            raise ValidationError([f"Unknown payment provider: {provider}"])
        if not validate_momo_number(number, provider, self.registry):
            raise ValidationError([f"Invalid {provider_config.name} number: {number}"])

        async with self.locked(wallet_id):
            wallet = await self.get(wallet_id)
            if any(a.provider == provider and a.number == number for a in wallet.linked_accounts):
                return wallet
            wallet.linked_accounts.append(LinkedAccount(provider=provider, number=number))
            await self._save(wallet)
        return wallet

    async def verify_linked_account(self, wallet_id: UUID, number: str) -> WalletAccount:
        async with self.locked(wallet_id):
            wallet = await self.get(wallet_id)
            for account in wallet.linked_accounts:
                if account.number == number:
                    account.verified = True
                    break
            else:
                raise NotFoundError("LinkedAccount", number)
            await self._save(wallet)
        return wallet

    async def suspend(self, wallet_id: UUID) -> WalletAccount:
        return await self._set_status(wallet_id, WalletStatus.SUSPENDED)

    async def activate(self, wallet_id: UUID) -> WalletAccount:
        return await self._set_status(wallet_id, WalletStatus.ACTIVE)

    async def _set_status(self, wallet_id: UUID, status: WalletStatus) -> WalletAccount:
        async with self.locked(wallet_id):
            wallet = await self.get(wallet_id)
            if wallet.status != status:
                wallet.status = status
                await self._save(wallet)
                logger.info("Wallet %s is now %s", wallet_id, status.value)
        return wallet

    async def _save(self, wallet: WalletAccount) -> None:
        if not wallet.is_balanced:
            raise InvariantViolationError(f"Wallet {wallet.id} is out of balance")
        wallet.updated_at = self.clock.now()
        await self.store.update_wallet(wallet)
