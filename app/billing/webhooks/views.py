"""
Webhook endpoint for payment gateway notifications.

The view:
1. Verifies the webhook signature (before anything touches the database)
2. Passes the event through the idempotency guard, which records it and
   runs the registered handler in one transaction
3. Maps the outcome to the status code the gateway's retry logic expects

Processing is synchronous: a 2xx tells the gateway the ledger has been
updated, any other status makes it retry.

Usage:
    # In urls.py
    from billing.webhooks.views import payment_events_webhook

    urlpatterns = [
        path("webhooks/payment-events", payment_events_webhook, name="payment_events_webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from billing.adapters import get_payment_gateway
from billing.exceptions import InvariantViolation, SignatureError, TransientGatewayError
from billing.webhooks.handlers import WebhookServices, dispatch_event
from billing.webhooks.idempotency import EventIdempotencyGuard
from core.exceptions import ConflictError, ValidationError

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def payment_events_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive and process a gateway webhook.

    Returns:
        HttpResponse with status:
        - 200: Processed, ignored, or already processed (duplicate)
        - 400: Missing/invalid signature or malformed payload
        - 409: Lost an optimistic-concurrency race (gateway retries)
        - 500: Invariant violation; rolled back and left for investigation
        - 503: Gateway unavailable while handling (gateway retries)
    """
    signature = request.headers.get("Stripe-Signature", "")
    if not signature:
        logger.warning("Webhook received without Stripe-Signature header")
        return HttpResponse("Missing signature", status=400)

    gateway = get_payment_gateway()

    try:
        event = gateway.verify_webhook_signature(request.body, signature)
    except SignatureError as e:
        logger.warning("Webhook signature verification failed", extra={"error": e.message})
        return HttpResponse("Invalid signature", status=400)
    except ValidationError as e:
        logger.warning("Malformed webhook payload", extra={"error": e.message})
        return HttpResponse("Invalid event", status=400)

    log_context = {
        "gateway_event_id": event.event_id,
        "gateway_event_type": event.gateway_event_type,
        "event_type": str(event.event_type),
    }
    logger.info(f"Received webhook: {event.gateway_event_type}", extra=log_context)

    services = WebhookServices.build(gateway)
    guard = EventIdempotencyGuard()

    try:
        outcome = guard.process(
            event,
            lambda payment_event: dispatch_event(event, payment_event, services),
        )
    except ValidationError as e:
        logger.warning(
            "Webhook rejected by validation",
            extra={**log_context, "error": e.message, "error_code": e.error_code},
        )
        return HttpResponse("Invalid event", status=400)
    except TransientGatewayError as e:
        logger.warning(
            "Gateway unavailable while processing webhook",
            extra={**log_context, "error": e.message},
        )
        return HttpResponse("Temporarily unavailable", status=503)
    except InvariantViolation as e:
        logger.error(
            "Invariant violation while processing webhook",
            extra={**log_context, "error": e.message, "details": e.details},
            exc_info=True,
        )
        return HttpResponse("Processing error", status=500)
    except ConflictError as e:
        logger.warning(
            "Concurrent update while processing webhook",
            extra={**log_context, "error": e.message, "error_code": e.error_code},
        )
        return HttpResponse("Conflict", status=409)

    if outcome.duplicate:
        return HttpResponse("Already processed", status=200)

    result = outcome.result
    if result is not None and not result:
        logger.info(
            "Webhook acknowledged without ledger change",
            extra={**log_context, "reason": result.error, "error_code": result.error_code},
        )
        return HttpResponse("Ignored", status=200)

    return HttpResponse("Processed", status=200)
