# backend/lessonbook/routes/v1/webhooks.py
"""
Stripe Webhook Endpoint - API v1

Verifies the delivery's signature, then hands the normalised event to the
payment event service. Replays are acknowledged without reprocessing. A
handler failure answers 500 so Stripe redelivers the event later.

Endpoints:
    POST /webhooks/stripe → Receive a Stripe event
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ...api.dependencies import get_payment_event_service, get_stripe_service
from ...core.exceptions import DomainException, ValidationException
from ...schemas.payment_schemas import WebhookResponse
from ...services.payment_event_service import PaymentEventService
from ...services.stripe_service import StripeService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks-v1"])


@router.post("/stripe", response_model=WebhookResponse)
async def handle_stripe_webhook(
    request: Request,
    stripe_service: StripeService = Depends(get_stripe_service),
    event_service: PaymentEventService = Depends(get_payment_event_service),
) -> WebhookResponse:
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        event = stripe_service.verify_webhook_signature(payload, signature)
    except ValidationException as e:
        logger.warning(f"Rejected Stripe webhook: {e.message}")
        raise e.to_http_exception()
    except DomainException as e:
        logger.error(f"Stripe webhook could not be verified: {e.message}")
        raise e.to_http_exception()

    logger.info(f"Processing Stripe webhook event: {event.source_type}", extra={"event_id": event.id})

    try:
        result = await asyncio.to_thread(event_service.handle_event, event)
    except Exception as e:
        logger.error(
            f"Error processing Stripe webhook {event.id}: {str(e)}",
            exc_info=True,
            extra={"event_id": event.id, "event_type": event.source_type},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        )

    return WebhookResponse(status=result["status"], event_type=event.source_type)
