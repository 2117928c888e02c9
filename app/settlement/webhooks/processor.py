"""
Webhook processor: verify, deduplicate and apply Stripe events.

Processing Flow:
    1. Verify the Stripe-Signature header (InvalidSignatureError on failure)
    2. Parse the body into a typed GatewayEvent (MalformedEventError)
    3. Skip events whose WebhookProcessingRecord already exists
    4. In one atomic block: insert the record, run the handler, and roll
       everything back if the handler reports failure

The unique event_id on WebhookProcessingRecord is the gate between
concurrent deliveries of the same event: the second insert fails and the
delivery is reported as a duplicate.

Usage:
    from settlement.webhooks.processor import WebhookProcessor

    result = WebhookProcessor().handle(request.body, signature)
    if result.success and result.data.duplicate:
        ...
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction

from core.services import ServiceResult

from settlement.exceptions import MalformedEventError
from settlement.fees import FeeCalculator
from settlement.models import WebhookProcessingRecord
from settlement.services.base import SettlementService
from settlement.webhooks.events import GatewayEvent
from settlement.webhooks.handlers import HandlerContext, dispatch

if TYPE_CHECKING:
    from typing import Any


@dataclass(frozen=True)
class ProcessedEvent:
    """
    Outcome of one webhook delivery.

    Attributes:
        event_id: Stripe Event ID
        event_type: Stripe event type
        duplicate: The event had already been processed
        applied: The handler changed ledger state
    """

    event_id: str
    event_type: str
    duplicate: bool = False
    applied: bool = False


class WebhookProcessor(SettlementService):
    """Applies verified Stripe events to the ledger exactly once."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.context = HandlerContext(
            config=self.config,
            fees=FeeCalculator.from_config(self.config),
            fanout=self.fanout,
        )

    def handle(self, payload: bytes, signature: str) -> ServiceResult[ProcessedEvent]:
        """
        Verify and process a raw webhook delivery.

        Raises:
            InvalidSignatureError: Missing or bad signature (nothing stored)
            MalformedEventError: Body is not a valid Stripe event
        """
        try:
            event_dict = self.gateway.verify_webhook_signature(payload, signature)
        except ValueError as e:
            raise MalformedEventError(f"Invalid event body: {e}") from e

        return self.process(GatewayEvent.parse(event_dict))

    def process(self, event: GatewayEvent) -> ServiceResult[ProcessedEvent]:
        """
        Apply a parsed event once.

        Returns:
            ServiceResult with ProcessedEvent on success, or the handler's
            failure (in which case nothing was stored).
        """
        logger = self.get_logger()
        log_context = {"stripe_event_id": event.id, "event_type": event.type}

        if WebhookProcessingRecord.objects.filter(event_id=event.id).exists():
            logger.info("Duplicate webhook event, skipping", extra=log_context)
            return ServiceResult.success(self._duplicate(event))

        try:
            with transaction.atomic():
                WebhookProcessingRecord.objects.create(
                    event_id=event.id,
                    event_type=event.type,
                )
                result = self._dispatch(event, log_context)
                if not result.success:
                    transaction.set_rollback(True)
        except IntegrityError:
            if WebhookProcessingRecord.objects.filter(event_id=event.id).exists():
                logger.info("Concurrent duplicate webhook event", extra=log_context)
                return ServiceResult.success(self._duplicate(event))
            raise

        if not result.success:
            logger.error(
                f"Webhook handler failed: {result.error}",
                extra={**log_context, "error_code": result.error_code},
            )
            return result

        data: dict[str, Any] = result.data or {}
        logger.info(
            "Webhook event processed",
            extra={**log_context, "applied": bool(data.get("applied"))},
        )
        return ServiceResult.success(
            ProcessedEvent(
                event_id=event.id,
                event_type=event.type,
                applied=bool(data.get("applied")),
            )
        )

    def _dispatch(self, event: GatewayEvent, log_context: dict[str, Any]) -> ServiceResult:
        """Run the handler, turning unexpected errors into a failed result."""
        try:
            return dispatch(event, self.context)
        except IntegrityError:
            raise
        except Exception as e:
            self.get_logger().exception("Webhook handler raised", extra=log_context)
            return ServiceResult.from_exception(e)

    @staticmethod
    def _duplicate(event: GatewayEvent) -> ProcessedEvent:
        return ProcessedEvent(event_id=event.id, event_type=event.type, duplicate=True)
