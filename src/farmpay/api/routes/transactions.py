"""Transaction API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from farmpay.api.dependencies import FarmPayDep
from farmpay.api.schemas import (
    ErrorResponse,
    ReasonRequest,
    TransactionCreate,
    TransactionListResponse,
    TransactionResponse,
    ValidationErrorResponse,
)
from farmpay.payments.types import PaymentStatus, TransactionRequest

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.post(
    "",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 422: {"model": ValidationErrorResponse}},
)
async def create_transaction(
    farmpay: FarmPayDep,
    payload: TransactionCreate,
) -> TransactionResponse:
    """Validate and record a transaction, then send the STK push in the background."""
    request = TransactionRequest(
        wallet_id=payload.wallet_id,
        type=payload.type,
        amount=payload.amount,
        currency=payload.currency.upper(),
        payment_method=payload.payment_method,
        phone_number=payload.phone_number,
        description=payload.description,
        counterpart=payload.counterpart,
        counterpart_wallet_id=payload.counterpart_wallet_id,
    )
    if payload.process:
        transaction = await farmpay.start_transaction(request)
    else:
        transaction = await farmpay.engine.create(request)
    return TransactionResponse.model_validate(transaction)


@router.get("", response_model=TransactionListResponse)
async def list_transactions(
    farmpay: FarmPayDep,
    wallet_id: UUID | None = None,
    status_filter: Annotated[PaymentStatus | None, Query(alias="status")] = None,
) -> TransactionListResponse:
    transactions = await farmpay.engine.list_transactions(wallet_id, status_filter)
    return TransactionListResponse(
        items=[TransactionResponse.model_validate(t) for t in transactions],
        total=len(transactions),
    )


@router.get(
    "/by-reference/{reference}",
    response_model=TransactionResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_transaction_by_reference(
    farmpay: FarmPayDep,
    reference: Annotated[str, Path()],
) -> TransactionResponse:
    transaction = await farmpay.engine.get_by_reference(reference)
    return TransactionResponse.model_validate(transaction)


@router.get(
    "/{transaction_id}",
    response_model=TransactionResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_transaction(
    farmpay: FarmPayDep,
    transaction_id: Annotated[UUID, Path()],
) -> TransactionResponse:
    transaction = await farmpay.engine.get(transaction_id)
    return TransactionResponse.model_validate(transaction)


# ============================================================================
# Lifecycle actions
# ============================================================================


@router.post(
    "/{transaction_id}/process",
    response_model=TransactionResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def process_transaction(
    farmpay: FarmPayDep,
    transaction_id: Annotated[UUID, Path()],
) -> TransactionResponse:
    """Process a pending transaction and wait for its terminal status."""
    transaction = await farmpay.engine.process(transaction_id)
    return TransactionResponse.model_validate(transaction)


@router.post(
    "/{transaction_id}/cancel",
    response_model=TransactionResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def cancel_transaction(
    farmpay: FarmPayDep,
    transaction_id: Annotated[UUID, Path()],
    payload: ReasonRequest | None = None,
) -> TransactionResponse:
    """Cancel a transaction that has not started processing."""
    if payload is None:
        transaction = await farmpay.engine.cancel(transaction_id)
    else:
        transaction = await farmpay.engine.cancel(transaction_id, payload.reason)
    return TransactionResponse.model_validate(transaction)


@router.post(
    "/{transaction_id}/refund",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def refund_transaction(
    farmpay: FarmPayDep,
    transaction_id: Annotated[UUID, Path()],
    payload: ReasonRequest,
) -> TransactionResponse:
    """Refund a completed transaction. Returns the refund transaction."""
    refund = await farmpay.engine.refund(transaction_id, payload.reason)
    return TransactionResponse.model_validate(refund)
