# backend/carshare/routes/v1/payments.py
"""
PayOS webhook endpoint (v1).

Mounted under /api/v1/payments. Every delivery is written to the webhook
ledger before it is applied. The gateway retries anything that is not a
2xx, so only transient failures answer 503; processed, duplicate,
ignored and rejected deliveries all answer 200.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
from time import monotonic

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from ...api.dependencies import get_payment_service, get_webhook_ledger_service
from ...core.exceptions import DomainException, GatewayException, ServiceException
from ...schemas.payment import PayOSWebhookPayload, WebhookAckResponse
from ...services.payment_service import PaymentService, WebhookOutcome
from ...services.webhook_ledger_service import WebhookLedgerService

logger = logging.getLogger(__name__)

# v1 router - mounted under /api/v1/payments
router = APIRouter(tags=["payments-v1"])

_RETRYABLE_ERRORS = (ServiceException, GatewayException)


@router.post("/payos/webhook", response_model=WebhookAckResponse)
async def handle_payos_webhook(
    request: Request,
    response: Response,
    payment_service: PaymentService = Depends(get_payment_service),
    ledger_service: WebhookLedgerService = Depends(get_webhook_ledger_service),
) -> WebhookAckResponse:
    """Verify, record and apply a PayOS payment notification."""
    raw_body = await request.body()
    try:
        body = json.loads(raw_body.decode("utf-8"))
        payload = PayOSWebhookPayload.model_validate(body)
    except (UnicodeDecodeError, json.JSONDecodeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Invalid webhook payload", "code": "INVALID_WEBHOOK"},
        )

    try:
        payment_service.verify_webhook(body)
    except DomainException as exc:
        logger.warning("Rejected PayOS webhook: %s", exc.message)
        raise exc.to_http_exception()

    event = await asyncio.to_thread(
        functools.partial(
            ledger_service.record_delivery,
            event_id=payload.event_id,
            paid=str(payload.data.get("code", "00")) == "00",
            payload=payload.model_dump(mode="json"),
            headers=dict(request.headers),
        )
    )

    start_time = monotonic()
    order_code = payload.order_code
    try:
        outcome: WebhookOutcome = await asyncio.to_thread(
            payment_service.handle_payment_webhook, body
        )
    except _RETRYABLE_ERRORS as exc:
        logger.error("PayOS webhook for order %s failed, will retry: %s", order_code, exc.message)
        await asyncio.to_thread(
            ledger_service.record_failure, event, exc.message, ledger_service.elapsed_ms(start_time)
        )
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return WebhookAckResponse(outcome="retry", order_code=order_code, reason=exc.code)
    except DomainException as exc:
        logger.warning("PayOS webhook for order %s not applied: %s", order_code, exc.message)
        await asyncio.to_thread(
            ledger_service.record_failure, event, exc.message, ledger_service.elapsed_ms(start_time)
        )
        return WebhookAckResponse(outcome="failed", order_code=order_code, reason=exc.code)
    except Exception as exc:
        logger.exception("Unexpected error applying PayOS webhook for order %s", order_code)
        await asyncio.to_thread(
            ledger_service.record_failure, event, str(exc), ledger_service.elapsed_ms(start_time)
        )
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return WebhookAckResponse(outcome="retry", order_code=order_code, reason="internal_error")

    await asyncio.to_thread(
        ledger_service.record_outcome, event, outcome, ledger_service.elapsed_ms(start_time)
    )
    return WebhookAckResponse(**outcome.as_dict())
