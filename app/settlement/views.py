"""
API views for settlement.

Provides:
- PaymentIntentCreateView: Start a payment to a creator
- RefundCreateView: Refund a completed payment
- SubscriptionCreateView: Subscribe to a creator tier
- SubscriptionCancelView: Cancel a subscription
- CreatorEarningsView: Earnings totals for a creator

Application errors raised by services are rendered by
core.handlers.api_exception_handler.
"""

from __future__ import annotations

import uuid

from django.contrib.auth import get_user_model
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import NotFoundError, PermissionDeniedError

from settlement.exceptions import SubscriptionNotFoundError, TransactionNotFoundError
from settlement.models import Subscription, Transaction
from settlement.serializers import (
    EarningsQuerySerializer,
    EarningsResponseSerializer,
    PaymentIntentCreateSerializer,
    PaymentIntentResponseSerializer,
    RefundCreateSerializer,
    RefundResponseSerializer,
    SubscriptionCancelResponseSerializer,
    SubscriptionCancelSerializer,
    SubscriptionCreateSerializer,
    SubscriptionResponseSerializer,
)
from settlement.services import (
    EarningsService,
    PaymentIntentService,
    RefundService,
    SubscriptionService,
)

ERROR_RESPONSES = {
    400: OpenApiResponse(description="Validation error"),
    401: OpenApiResponse(description="Authentication required"),
    403: OpenApiResponse(description="Not allowed for this user"),
    404: OpenApiResponse(description="Creator, transaction or subscription not found"),
    409: OpenApiResponse(description="Invalid state transition"),
    502: OpenApiResponse(description="Payment gateway error"),
}


def resolve_payer(request, payer_id: int | None):
    """
    The paying user: the caller, or (staff only) someone else.

    Raises:
        PermissionDeniedError: Non-staff caller named another payer
        NotFoundError: Unknown payer
    """
    if payer_id is None or payer_id == request.user.pk:
        return request.user

    if not request.user.is_staff:
        raise PermissionDeniedError(
            "You can only pay on your own behalf",
            details={"payer_id": payer_id},
        )

    User = get_user_model()
    try:
        return User.objects.get(pk=payer_id, is_active=True)
    except User.DoesNotExist:
        raise NotFoundError("Payer not found", details={"payer_id": payer_id}) from None


class PaymentIntentCreateView(APIView):
    """
    Create a payment intent for a creator.

    POST /api/v1/settlement/payment-intents/

    Authentication:
        Requires valid JWT token.

    Response:
        201 Created: Intent created, Transaction pending
        400 Bad Request: Invalid amount or creator account not ready
        404 Not Found: Creator has no payout account
        502 Bad Gateway: Stripe error
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="create_payment_intent",
        summary="Create payment intent",
        description=(
            "Charges the fan and routes the creator's share to their connected "
            "account. The platform fee is kept as the application fee."
        ),
        request=PaymentIntentCreateSerializer,
        responses={201: PaymentIntentResponseSerializer, **ERROR_RESPONSES},
        tags=["Settlement - Payments"],
    )
    def post(self, request):
        serializer = PaymentIntentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        payer = resolve_payer(request, data.get("payer_id"))
        pending = PaymentIntentService().create_payment(
            gross_amount_cents=data["amount_cents"],
            creator_id=data["creator_id"],
            payer=payer,
            metadata=data["metadata"],
        )

        return Response(
            PaymentIntentResponseSerializer.from_pending(pending),
            status=status.HTTP_201_CREATED,
        )


class RefundCreateView(APIView):
    """
    Refund a completed payment, fully or partially.

    POST /api/v1/settlement/refunds/

    Allowed for staff and for the creator who received the payment.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="create_refund",
        summary="Refund payment",
        description=(
            "Refunds the fan. With reverseTransfer the creator's share is pulled "
            "back and the platform fee is returned proportionally."
        ),
        request=RefundCreateSerializer,
        responses={200: RefundResponseSerializer, **ERROR_RESPONSES},
        tags=["Settlement - Refunds"],
    )
    def post(self, request):
        serializer = RefundCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        txn = Transaction.objects.filter(
            stripe_payment_intent_id=data["payment_intent_id"]
        ).first()
        if txn is None:
            raise TransactionNotFoundError(
                "Transaction not found",
                details={"payment_intent_id": data["payment_intent_id"]},
            )
        if not request.user.is_staff and txn.creator_id != request.user.pk:
            raise PermissionDeniedError("Only the creator or staff can refund this payment")

        outcome = RefundService().refund(
            data["payment_intent_id"],
            amount_cents=data.get("amount_cents"),
            reason=data["reason"],
            reverse_transfer=data["reverse_transfer"],
        )

        return Response(RefundResponseSerializer.from_outcome(outcome), status=status.HTTP_200_OK)


class SubscriptionCreateView(APIView):
    """
    Subscribe a fan to a creator tier.

    POST /api/v1/settlement/subscriptions/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="create_subscription",
        summary="Subscribe to creator",
        request=SubscriptionCreateSerializer,
        responses={201: SubscriptionResponseSerializer, **ERROR_RESPONSES},
        tags=["Settlement - Subscriptions"],
    )
    def post(self, request):
        serializer = SubscriptionCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        payer = resolve_payer(request, data.get("payer_id"))
        signup = SubscriptionService().subscribe(
            creator_id=data["creator_id"],
            payer=payer,
            tier_name=data["tier_name"],
            amount_cents=data["amount_cents"],
            interval=data["interval"],
        )

        return Response(
            SubscriptionResponseSerializer.from_signup(signup),
            status=status.HTTP_201_CREATED,
        )


class SubscriptionCancelView(APIView):
    """
    Cancel a subscription immediately.

    POST /api/v1/settlement/subscriptions/cancel/

    Allowed for staff and for the subscriber.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="cancel_subscription",
        summary="Cancel subscription",
        request=SubscriptionCancelSerializer,
        responses={200: SubscriptionCancelResponseSerializer, **ERROR_RESPONSES},
        tags=["Settlement - Subscriptions"],
    )
    def post(self, request):
        serializer = SubscriptionCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        subscription = _find_subscription(data["subscription_id"])
        if not request.user.is_staff and subscription.payer_id != request.user.pk:
            raise PermissionDeniedError("Only the subscriber or staff can cancel this subscription")

        subscription = SubscriptionService().cancel(subscription.id, prorate=data["prorate"])

        return Response(
            {"subscriptionId": str(subscription.id), "status": subscription.status},
            status=status.HTTP_200_OK,
        )


def _find_subscription(subscription_id: str) -> Subscription:
    subscription = Subscription.objects.filter(stripe_subscription_id=subscription_id).first()
    if subscription is None:
        try:
            subscription = Subscription.objects.filter(pk=uuid.UUID(subscription_id)).first()
        except ValueError:
            subscription = None
    if subscription is None:
        raise SubscriptionNotFoundError(
            "Subscription not found",
            details={"subscription_id": subscription_id},
        )
    return subscription


class CreatorEarningsView(APIView):
    """
    Earnings totals for a creator over a date range.

    GET /api/v1/settlement/creators/{creator_id}/earnings/?startDate=&endDate=&daily=

    Allowed for staff and for the creator.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_creator_earnings",
        summary="Creator earnings",
        description="Totals over completed transactions in the inclusive date range.",
        parameters=[
            OpenApiParameter("startDate", OpenApiTypes.DATE, OpenApiParameter.QUERY, required=True),
            OpenApiParameter("endDate", OpenApiTypes.DATE, OpenApiParameter.QUERY, required=True),
            OpenApiParameter(
                "daily",
                OpenApiTypes.BOOL,
                OpenApiParameter.QUERY,
                description="Include a per-day breakdown",
            ),
        ],
        responses={200: EarningsResponseSerializer, **ERROR_RESPONSES},
        tags=["Settlement - Earnings"],
    )
    def get(self, request, creator_id: int):
        if not request.user.is_staff and creator_id != request.user.pk:
            raise PermissionDeniedError("You can only view your own earnings")

        serializer = EarningsQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        service = EarningsService()
        report = service.report(creator_id, data["start_date"], data["end_date"])
        daily = None
        if data["daily"]:
            daily = service.daily_breakdown(creator_id, data["start_date"], data["end_date"])

        return Response(
            EarningsResponseSerializer.from_report(report, daily),
            status=status.HTTP_200_OK,
        )
