"""Provider callback endpoints."""

import logging

from fastapi import APIRouter, status

from farmpay.api.dependencies import FarmPayDep
from farmpay.api.schemas import CallbackResponse, MobileMoneyCallback
from farmpay.payments.providers.base import AuthorizationOutcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
    "/mobile-money",
    response_model=CallbackResponse,
    status_code=status.HTTP_200_OK,
)
async def mobile_money_callback(
    farmpay: FarmPayDep,
    payload: MobileMoneyCallback,
) -> CallbackResponse:
    """Receive an STK push result.

    Always answers 200 so the provider stops retrying; repeated and unknown
    callbacks are reported in the body instead.
    """
    outcome = AuthorizationOutcome(
        status=payload.status,
        message=payload.message,
        provider_reference=payload.provider_reference,
        result_code=payload.result_code,
    )
    result = await farmpay.engine.handle_provider_result(payload.push_id, outcome)
    logger.info("Callback for push %s: %s", payload.push_id, result.value)
    return CallbackResponse(status=result)
