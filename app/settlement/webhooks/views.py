"""
Webhook endpoint view for Stripe.

Events are applied synchronously: the response status tells Stripe whether
to redeliver. A 500 means the event was rolled back and must be retried.

Usage:
    # In urls.py
    from settlement.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from settlement.exceptions import InvalidSignatureError, MalformedEventError
from settlement.webhooks.processor import WebhookProcessor

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> JsonResponse:
    """
    Receive and apply a Stripe webhook event.

    Returns:
        JsonResponse with status:
        - 200: Event applied, acknowledged or duplicate
        - 400: Missing/invalid signature or malformed event
        - 500: Handler failed (Stripe will redeliver) or the
               webhook secret is not configured

    Example Stripe-Signature header:
        t=1614556800,v1=xxx,v0=yyy
    """
    signature = request.headers.get("Stripe-Signature", "")

    if not signature:
        logger.warning("Webhook received without Stripe-Signature header")
        return JsonResponse({"error": "Missing signature"}, status=400)

    try:
        result = WebhookProcessor().handle(request.body, signature)
    except InvalidSignatureError as e:
        if e.error_code == "WEBHOOK_SECRET_MISSING":
            logger.error("Webhook secret is not configured")
            return JsonResponse({"error": "Webhook not configured"}, status=500)
        logger.warning(
            "Webhook signature verification failed",
            extra={"error": str(e)},
        )
        return JsonResponse({"error": "Invalid signature"}, status=400)
    except MalformedEventError as e:
        logger.warning(
            "Malformed webhook event",
            extra={"error": str(e), "details": e.details},
        )
        return JsonResponse({"error": "Invalid event"}, status=400)

    if not result.success:
        return JsonResponse({"error": "Webhook processing failed"}, status=500)

    return JsonResponse({"received": True}, status=200)
