"""Invoice API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from farmpay.api.dependencies import FarmPayDep
from farmpay.api.schemas import (
    ContactSchema,
    ErrorResponse,
    InvoiceCreate,
    InvoiceItemCreate,
    InvoiceListResponse,
    InvoicePaymentRequest,
    InvoiceResponse,
    InvoiceSummaryResponse,
    InvoiceUpdate,
    ValidationErrorResponse,
)
from farmpay.payments.types import ContactInfo, InvoiceItem, InvoiceStatus

router = APIRouter(prefix="/invoices", tags=["invoices"])


def _contact(schema: ContactSchema) -> ContactInfo:
    return ContactInfo(**schema.model_dump())


# ============================================================================
# Invoice CRUD
# ============================================================================


@router.post(
    "",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": ValidationErrorResponse}},
)
async def create_invoice(farmpay: FarmPayDep, payload: InvoiceCreate) -> InvoiceResponse:
    """Create a draft invoice."""
    invoice = await farmpay.invoices.create_invoice(
        from_user=_contact(payload.from_user),
        to_user=_contact(payload.to_user),
        currency=payload.currency.upper(),
        tax_rate=payload.tax_rate,
        payment_terms=payload.payment_terms,
        issue_date=payload.issue_date,
        notes=payload.notes,
        items=[InvoiceItem(**item.model_dump()) for item in payload.items],
    )
    return InvoiceResponse.model_validate(farmpay.invoices.view(invoice))


@router.get("", response_model=InvoiceListResponse)
async def list_invoices(
    farmpay: FarmPayDep,
    status_filter: Annotated[InvoiceStatus | None, Query(alias="status")] = None,
) -> InvoiceListResponse:
    """List invoices; the status filter matches overdue invoices as overdue."""
    invoices = await farmpay.invoices.list_invoices(status_filter)
    return InvoiceListResponse(
        items=[InvoiceResponse.model_validate(farmpay.invoices.view(i)) for i in invoices],
        total=len(invoices),
    )


@router.get("/summary", response_model=InvoiceSummaryResponse)
async def invoice_summary(farmpay: FarmPayDep) -> InvoiceSummaryResponse:
    summary = await farmpay.invoices.summarize()
    return InvoiceSummaryResponse.model_validate(summary)


@router.get(
    "/{invoice_id}",
    response_model=InvoiceResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_invoice(
    farmpay: FarmPayDep,
    invoice_id: Annotated[UUID, Path()],
) -> InvoiceResponse:
    invoice = await farmpay.invoices.get_invoice(invoice_id)
    return InvoiceResponse.model_validate(farmpay.invoices.view(invoice))


@router.patch(
    "/{invoice_id}",
    response_model=InvoiceResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ValidationErrorResponse},
    },
)
async def update_invoice(
    farmpay: FarmPayDep,
    invoice_id: Annotated[UUID, Path()],
    payload: InvoiceUpdate,
) -> InvoiceResponse:
    """Change tax rate, payment terms or notes of a draft."""
    invoice = await farmpay.invoices.update_terms(
        invoice_id,
        tax_rate=payload.tax_rate,
        payment_terms=payload.payment_terms,
        notes=payload.notes,
    )
    return InvoiceResponse.model_validate(farmpay.invoices.view(invoice))


@router.post(
    "/{invoice_id}/items",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ValidationErrorResponse},
    },
)
async def add_invoice_item(
    farmpay: FarmPayDep,
    invoice_id: Annotated[UUID, Path()],
    payload: InvoiceItemCreate,
) -> InvoiceResponse:
    invoice = await farmpay.invoices.add_item(
        invoice_id,
        description=payload.description,
        quantity=payload.quantity,
        unit=payload.unit,
        unit_price=payload.unit_price,
    )
    return InvoiceResponse.model_validate(farmpay.invoices.view(invoice))


@router.delete(
    "/{invoice_id}/items/{item_id}",
    response_model=InvoiceResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def remove_invoice_item(
    farmpay: FarmPayDep,
    invoice_id: Annotated[UUID, Path()],
    item_id: Annotated[UUID, Path()],
) -> InvoiceResponse:
    invoice = await farmpay.invoices.remove_item(invoice_id, item_id)
    return InvoiceResponse.model_validate(farmpay.invoices.view(invoice))


# ============================================================================
# Lifecycle actions
# ============================================================================


@router.post(
    "/{invoice_id}/send",
    response_model=InvoiceResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ValidationErrorResponse},
    },
)
async def send_invoice(
    farmpay: FarmPayDep,
    invoice_id: Annotated[UUID, Path()],
) -> InvoiceResponse:
    invoice = await farmpay.invoices.send_invoice(invoice_id)
    return InvoiceResponse.model_validate(farmpay.invoices.view(invoice))


@router.post(
    "/{invoice_id}/cancel",
    response_model=InvoiceResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def cancel_invoice(
    farmpay: FarmPayDep,
    invoice_id: Annotated[UUID, Path()],
) -> InvoiceResponse:
    invoice = await farmpay.invoices.cancel_invoice(invoice_id)
    return InvoiceResponse.model_validate(farmpay.invoices.view(invoice))


@router.post(
    "/{invoice_id}/payments",
    response_model=InvoiceResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ValidationErrorResponse},
    },
)
async def record_invoice_payment(
    farmpay: FarmPayDep,
    invoice_id: Annotated[UUID, Path()],
    payload: InvoicePaymentRequest,
) -> InvoiceResponse:
    """Mark an invoice paid by a completed transaction."""
    invoice = await farmpay.invoices.record_payment(invoice_id, payload.reference)
    return InvoiceResponse.model_validate(farmpay.invoices.view(invoice))
