"""
Payment intent creation for fan-to-creator payments.

Creates a Stripe destination charge (the creator's share is transferred
automatically, the platform keeps the application fee) and records a
pending Transaction. The Transaction only moves on when Stripe confirms
the outcome through a webhook.

Flow:
    1. Validate the amount against the configured minimum
    2. Validate the creator's payout account (live Stripe check)
    3. Split the gross amount into platform fee and creator earnings
    4. Create the PaymentIntent with a deterministic idempotency key
    5. Persist Transaction(status=pending) keyed by the intent id

Usage:
    from settlement.services import PaymentIntentService

    pending = PaymentIntentService().create_payment(
        gross_amount_cents=10000,
        creator_id=creator.id,
        payer=request.user,
        metadata={"occasion": "birthday"},
    )
    pending.client_secret
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from settlement.adapters import CreatePaymentIntentParams, IdempotencyKeyGenerator
from settlement.fees import FeeCalculator
from settlement.models import Transaction
from settlement.services.account_validator import AccountValidator
from settlement.services.base import (
    SettlementService,
    require_chargeable_amount,
    stringify_metadata,
)
from settlement.state_machines import TransactionType

if TYPE_CHECKING:
    from typing import Any

    from django.contrib.auth.models import AbstractBaseUser


@dataclass
class PendingPayment:
    """
    A created payment awaiting confirmation.

    Attributes:
        transaction: The pending Transaction row
        client_secret: Secret for client-side confirmation (Stripe.js)
    """

    transaction: Transaction
    client_secret: str | None

    @property
    def payment_intent_id(self) -> str:
        return self.transaction.stripe_payment_intent_id


class PaymentIntentService(SettlementService):
    """
    Creates destination-charge payment intents and pending ledger rows.
    """

    def __init__(self, *args, validator: AccountValidator | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.validator = validator or AccountValidator(config=self.config, gateway=self.gateway)
        self.fees = FeeCalculator.from_config(self.config)

    def create_payment(
        self,
        gross_amount_cents: int,
        creator_id: Any,
        payer: AbstractBaseUser,
        metadata: dict[str, Any] | None = None,
        transaction_type: str = TransactionType.VIDEO,
    ) -> PendingPayment:
        """
        Create a payment intent and its pending Transaction.

        Args:
            gross_amount_cents: Amount charged to the fan
            creator_id: Creator user id
            payer: Fan paying
            metadata: Caller metadata (order details), stored on the row
            transaction_type: video or subscription

        Returns:
            PendingPayment with the Transaction and client secret

        Raises:
            InvalidAmountError: Amount not positive or below minimum
            AccountNotFoundError: Creator has no usable payout account
            AccountNotReadyError: Creator account not enabled
            GatewayError: Stripe call failed (nothing persisted)
        """
        logger = self.get_logger()

        require_chargeable_amount(gross_amount_cents, self.config)
        account = self.validator.validate(creator_id)
        split = self.fees.split(gross_amount_cents)

        # Known before insert so it can key the intent and travel as metadata
        transaction_id = uuid.uuid4()
        caller_metadata = dict(metadata or {})

        intent = self.gateway.create_payment_intent(
            CreatePaymentIntentParams(
                amount_cents=split.gross_amount_cents,
                currency=self.config.currency,
                destination_account=account.stripe_account_id,
                application_fee_cents=split.platform_fee_cents,
                idempotency_key=IdempotencyKeyGenerator.generate("create_intent", transaction_id),
                metadata=stringify_metadata(
                    {
                        **caller_metadata,
                        "transaction_id": transaction_id,
                        "creator_id": creator_id,
                        "payer_id": payer.pk,
                        "transaction_type": transaction_type,
                    }
                ),
            )
        )

        txn = Transaction.objects.create(
            id=transaction_id,
            stripe_payment_intent_id=intent.id,
            creator_id=creator_id,
            payer=payer,
            gross_amount_cents=split.gross_amount_cents,
            platform_fee_cents=split.platform_fee_cents,
            creator_earnings_cents=split.creator_earnings_cents,
            currency=self.config.currency,
            transaction_type=transaction_type,
            metadata=caller_metadata,
        )

        logger.info(
            "Payment intent created",
            extra={
                "transaction_id": str(txn.id),
                "payment_intent_id": intent.id,
                "gross_amount_cents": split.gross_amount_cents,
                "platform_fee_cents": split.platform_fee_cents,
                "creator_id": str(creator_id),
            },
        )

        return PendingPayment(transaction=txn, client_secret=intent.client_secret)
