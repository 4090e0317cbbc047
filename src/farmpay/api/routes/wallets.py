"""Wallet API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from farmpay.api.dependencies import FarmPayDep
from farmpay.api.schemas import (
    ErrorResponse,
    LinkedAccountCreate,
    TransactionListResponse,
    TransactionResponse,
    ValidationErrorResponse,
    WalletCreate,
    WalletResponse,
)
from farmpay.payments.types import PaymentStatus

router = APIRouter(prefix="/wallets", tags=["wallets"])


@router.post(
    "",
    response_model=WalletResponse,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": ValidationErrorResponse}},
)
async def open_wallet(farmpay: FarmPayDep, payload: WalletCreate) -> WalletResponse:
    """Return the user's wallet for a currency, creating it if needed."""
    wallet = await farmpay.ledger.get_or_create(payload.user_id, payload.currency.upper())
    return WalletResponse.model_validate(wallet)


@router.get("", response_model=list[WalletResponse])
async def list_wallets(
    farmpay: FarmPayDep,
    user_id: Annotated[str | None, Query()] = None,
) -> list[WalletResponse]:
    wallets = await farmpay.ledger.list_wallets(user_id)
    return [WalletResponse.model_validate(w) for w in wallets]


@router.get(
    "/{wallet_id}",
    response_model=WalletResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_wallet(
    farmpay: FarmPayDep,
    wallet_id: Annotated[UUID, Path()],
) -> WalletResponse:
    wallet = await farmpay.ledger.get(wallet_id)
    return WalletResponse.model_validate(wallet)


@router.get(
    "/{wallet_id}/transactions",
    response_model=TransactionListResponse,
    responses={404: {"model": ErrorResponse}},
)
async def list_wallet_transactions(
    farmpay: FarmPayDep,
    wallet_id: Annotated[UUID, Path()],
    status_filter: Annotated[PaymentStatus | None, Query(alias="status")] = None,
) -> TransactionListResponse:
    """Transaction history of a wallet, oldest first."""
    await farmpay.ledger.get(wallet_id)
    transactions = await farmpay.engine.list_transactions(wallet_id, status_filter)
    return TransactionListResponse(
        items=[TransactionResponse.model_validate(t) for t in transactions],
        total=len(transactions),
    )


# ============================================================================
# Linked accounts and status
# ============================================================================


@router.post(
    "/{wallet_id}/linked-accounts",
    response_model=WalletResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ValidationErrorResponse}},
)
async def link_account(
    farmpay: FarmPayDep,
    wallet_id: Annotated[UUID, Path()],
    payload: LinkedAccountCreate,
) -> WalletResponse:
    wallet = await farmpay.ledger.link_account(wallet_id, payload.provider, payload.number)
    return WalletResponse.model_validate(wallet)


@router.post(
    "/{wallet_id}/linked-accounts/{number}/verify",
    response_model=WalletResponse,
    responses={404: {"model": ErrorResponse}},
)
async def verify_linked_account(
    farmpay: FarmPayDep,
    wallet_id: Annotated[UUID, Path()],
    number: Annotated[str, Path()],
) -> WalletResponse:
    wallet = await farmpay.ledger.verify_linked_account(wallet_id, number)
    return WalletResponse.model_validate(wallet)


@router.post(
    "/{wallet_id}/suspend",
    response_model=WalletResponse,
    responses={404: {"model": ErrorResponse}},
)
async def suspend_wallet(
    farmpay: FarmPayDep,
    wallet_id: Annotated[UUID, Path()],
) -> WalletResponse:
    """Block new debits and credits on a wallet."""
    wallet = await farmpay.ledger.suspend(wallet_id)
    return WalletResponse.model_validate(wallet)


@router.post(
    "/{wallet_id}/activate",
    response_model=WalletResponse,
    responses={404: {"model": ErrorResponse}},
)
async def activate_wallet(
    farmpay: FarmPayDep,
    wallet_id: Annotated[UUID, Path()],
) -> WalletResponse:
    wallet = await farmpay.ledger.activate(wallet_id)
    return WalletResponse.model_validate(wallet)
