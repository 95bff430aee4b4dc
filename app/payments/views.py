"""
DRF views for the payments app.

Buyer-facing:
    POST /api/v1/payments/checkout/               - Start checkout for a link
    POST /api/v1/payments/checkout/verify/        - Payment callback verification
    POST /api/v1/payments/delivery/confirm/       - Confirm delivery (releases escrow)
    POST /api/v1/payments/delivery/reject/        - Reject delivery (opens a dispute)
    POST /api/v1/payments/disputes/               - Open a dispute
    GET  /api/v1/payments/banks/                  - Banks accepted for payouts

Operator only (X-Operator-Key):
    POST /api/v1/payments/delivery/dispatch/      - Record dispatch proof
    POST /api/v1/payments/escrow/{hold_id}/release/
    POST /api/v1/payments/escrow/refund/
    POST /api/v1/payments/disputes/{id}/resolve/
    POST /api/v1/payments/payouts/{id}/retry/
    GET  /api/v1/payments/sellers/{id}/summary/
    GET  /api/v1/payments/sellers/{id}/payouts/
    POST /api/v1/payments/sellers/{id}/payout-settings/

Every view validates input with a serializer, calls one service method and
turns its ServiceResult into a response. Failures map to HTTP status codes
through ERROR_STATUS.
"""

from __future__ import annotations

from typing import Any, Callable

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from core.services import ServiceResult
from marketplace.services import DeliveryService
from payments.permissions import HasOperatorKey
from payments.serializers import (
    BankSerializer,
    CheckoutRequestSerializer,
    CheckoutSessionSerializer,
    CheckoutStatusSerializer,
    CheckoutVerifySerializer,
    ConfirmDeliverySerializer,
    DispatchRequestSerializer,
    DispatchResponseSerializer,
    DisputeOutcomeSerializer,
    DisputeSerializer,
    EscrowOutcomeSerializer,
    OpenDisputeSerializer,
    PayoutHistoryQuerySerializer,
    PayoutHistorySerializer,
    PayoutOutcomeSerializer,
    PayoutSerializer,
    PayoutSettingsRequestSerializer,
    PayoutSettingsSerializer,
    RefundEscrowSerializer,
    RejectDeliverySerializer,
    ReleaseEscrowSerializer,
    ResolveDisputeSerializer,
    SellerSummarySerializer,
)
from payments.services import (
    CheckoutService,
    DisputeService,
    EscrowService,
    PayoutService,
)


# =============================================================================
# Error code -> HTTP status
# =============================================================================

ERROR_STATUS = {
    # 400
    "VALIDATION_ERROR": status.HTTP_400_BAD_REQUEST,
    "INVALID_PARTIAL_AMOUNT": status.HTTP_400_BAD_REQUEST,
    # 404
    "TRANSACTION_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "HOLD_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "PAYOUT_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "DISPUTE_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "CONFIRMATION_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "SELLER_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "REFUND_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "LINK_NOT_AVAILABLE": status.HTTP_404_NOT_FOUND,
    # 409
    "INVALID_STATE_TRANSITION": status.HTTP_409_CONFLICT,
    "ALREADY_RELEASED": status.HTTP_409_CONFLICT,
    "ALREADY_REFUNDED": status.HTTP_409_CONFLICT,
    "DISPUTE_ALREADY_OPEN": status.HTTP_409_CONFLICT,
    "DISPUTE_ALREADY_RESOLVED": status.HTTP_409_CONFLICT,
    "DISPUTE_PENDING": status.HTTP_409_CONFLICT,
    "DELIVERY_ALREADY_CONFIRMED": status.HTTP_409_CONFLICT,
    "PAYOUT_NOT_FAILED": status.HTTP_409_CONFLICT,
    "PAYOUT_ALREADY_RETRIED": status.HTTP_409_CONFLICT,
    "INSUFFICIENT_BALANCE": status.HTTP_409_CONFLICT,
    "AMOUNT_MISMATCH": status.HTTP_409_CONFLICT,
    # 422
    "PAYOUT_SETTINGS_MISSING": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "PAYOUT_RETRIES_EXHAUSTED": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "MANUAL_INTERVENTION_REQUIRED": status.HTTP_422_UNPROCESSABLE_ENTITY,
    # 502
    "GATEWAY_ERROR": status.HTTP_502_BAD_GATEWAY,
    "TRANSFER_FAILED": status.HTTP_502_BAD_GATEWAY,
}


def service_response(
    result: ServiceResult,
    serialize: Callable[[Any], Any],
    success_status: int = status.HTTP_200_OK,
) -> Response:
    """Build the API response for a service result."""
    if result.success:
        return Response(
            {"success": True, "data": serialize(result.data)},
            status=success_status,
        )
    response_status = ERROR_STATUS.get(result.error_code, status.HTTP_400_BAD_REQUEST)
    return Response(result.to_response(), status=response_status)


def validation_error(serializer) -> Response:
    return Response(
        {
            "success": False,
            "error": "Invalid request",
            "error_code": "VALIDATION_ERROR",
            "errors": serializer.errors,
        },
        status=status.HTTP_400_BAD_REQUEST,
    )


def _to_dict(data: Any) -> dict:
    return data.to_dict()


# =============================================================================
# Checkout
# =============================================================================


class CheckoutView(APIView):
    """
    Start paying for a payment link.

    POST /api/v1/payments/checkout/

    Response:
        201 Created: checkout_url to redirect the buyer to
        404 Not Found: Link does not exist or is no longer active
        502 Bad Gateway: Gateway rejected or did not answer
    """

    permission_classes = [AllowAny]

    @extend_schema(
        operation_id="start_checkout",
        summary="Start checkout",
        request=CheckoutRequestSerializer,
        responses={
            201: OpenApiResponse(response=CheckoutSessionSerializer, description="Checkout created"),
            400: OpenApiResponse(description="Validation error"),
            404: OpenApiResponse(description="Link not available"),
            502: OpenApiResponse(description="Gateway error"),
        },
        tags=["Payments - Checkout"],
    )
    def post(self, request):
        serializer = CheckoutRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error(serializer)

        result = CheckoutService.initiate_checkout(**serializer.validated_data)
        return service_response(result, _to_dict, success_status=status.HTTP_201_CREATED)


class CheckoutVerifyView(APIView):
    """
    Payment callback: verify a charge after the buyer returns from the gateway.

    POST /api/v1/payments/checkout/verify/
    """

    permission_classes = [AllowAny]

    @extend_schema(
        operation_id="verify_checkout",
        summary="Verify checkout",
        request=CheckoutVerifySerializer,
        responses={
            200: OpenApiResponse(response=CheckoutStatusSerializer, description="Current checkout status"),
            404: OpenApiResponse(description="Unknown reference"),
            502: OpenApiResponse(description="Gateway error"),
        },
        tags=["Payments - Checkout"],
    )
    def post(self, request):
        serializer = CheckoutVerifySerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error(serializer)

        result = CheckoutService.verify_checkout(serializer.validated_data["reference"])
        return service_response(result, _to_dict)


# =============================================================================
# Delivery
# =============================================================================


class DispatchView(APIView):
    """
    Record the seller's dispatch proof; starts the auto-release clock.

    POST /api/v1/payments/delivery/dispatch/
    """

    permission_classes = [HasOperatorKey]

    @extend_schema(
        operation_id="record_dispatch",
        summary="Record dispatch proof",
        request=DispatchRequestSerializer,
        responses={
            201: OpenApiResponse(response=DispatchResponseSerializer, description="Dispatch recorded"),
            404: OpenApiResponse(description="Transaction not found"),
            409: OpenApiResponse(description="Transaction is not paid"),
        },
        tags=["Payments - Delivery"],
    )
    def post(self, request):
        serializer = DispatchRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error(serializer)

        result = DeliveryService.record_dispatch(**serializer.validated_data)
        return service_response(
            result,
            lambda proof: DispatchResponseSerializer(
                {
                    "transaction_id": proof.transaction_id,
                    "dispatched_at": proof.dispatched_at,
                    "confirmation_code": proof.transaction.delivery_confirmation.confirmation_code,
                }
            ).data,
            success_status=status.HTTP_201_CREATED,
        )


class ConfirmDeliveryView(APIView):
    """
    Buyer confirms receipt; releases escrow to the seller.

    POST /api/v1/payments/delivery/confirm/
    """

    permission_classes = [AllowAny]

    @extend_schema(
        operation_id="confirm_delivery",
        summary="Confirm delivery",
        request=ConfirmDeliverySerializer,
        responses={
            200: OpenApiResponse(response=EscrowOutcomeSerializer, description="Escrow released"),
            404: OpenApiResponse(description="Unknown confirmation code"),
            409: OpenApiResponse(description="Escrow not held or dispute pending"),
        },
        tags=["Payments - Delivery"],
    )
    def post(self, request):
        serializer = ConfirmDeliverySerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error(serializer)

        result = EscrowService.confirm_delivery(serializer.validated_data["confirmation_code"])
        return service_response(result, _to_dict)


class RejectDeliveryView(APIView):
    """
    Buyer rejects the delivery; opens a buyer dispute that blocks auto-release.

    POST /api/v1/payments/delivery/reject/
    """

    permission_classes = [AllowAny]

    @extend_schema(
        operation_id="reject_delivery",
        summary="Reject delivery",
        request=RejectDeliverySerializer,
        responses={
            201: OpenApiResponse(response=DisputeSerializer, description="Dispute opened"),
            404: OpenApiResponse(description="Unknown confirmation code"),
            409: OpenApiResponse(description="Already confirmed or dispute already open"),
        },
        tags=["Payments - Delivery"],
    )
    def post(self, request):
        serializer = RejectDeliverySerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error(serializer)

        result = DisputeService.reject_delivery(
            serializer.validated_data["confirmation_code"],
            serializer.validated_data["reason"],
        )
        return service_response(
            result,
            lambda dispute: DisputeSerializer(dispute).data,
            success_status=status.HTTP_201_CREATED,
        )


# =============================================================================
# Disputes
# =============================================================================


class OpenDisputeView(APIView):
    """
    Open a dispute on a paid transaction.

    POST /api/v1/payments/disputes/
    """

    permission_classes = [AllowAny]

    @extend_schema(
        operation_id="open_dispute",
        summary="Open dispute",
        request=OpenDisputeSerializer,
        responses={
            201: OpenApiResponse(response=DisputeSerializer, description="Dispute opened"),
            404: OpenApiResponse(description="Transaction not found"),
            409: OpenApiResponse(description="Dispute already open or transaction not paid"),
        },
        tags=["Payments - Disputes"],
    )
    def post(self, request):
        serializer = OpenDisputeSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error(serializer)

        result = DisputeService.open_dispute(**serializer.validated_data)
        return service_response(
            result,
            lambda dispute: DisputeSerializer(dispute).data,
            success_status=status.HTTP_201_CREATED,
        )


class ResolveDisputeView(APIView):
    """
    Resolve a dispute and apply the resolution to the escrow.

    POST /api/v1/payments/disputes/{dispute_id}/resolve/

    Resolving again with the same resolution returns the stored outcome.
    """

    permission_classes = [HasOperatorKey]

    @extend_schema(
        operation_id="resolve_dispute",
        summary="Resolve dispute",
        request=ResolveDisputeSerializer,
        responses={
            200: OpenApiResponse(response=DisputeOutcomeSerializer, description="Resolution applied"),
            400: OpenApiResponse(description="Invalid partial amount"),
            404: OpenApiResponse(description="Dispute not found"),
            409: OpenApiResponse(description="Already resolved differently"),
        },
        tags=["Payments - Disputes"],
    )
    def post(self, request, dispute_id):
        serializer = ResolveDisputeSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error(serializer)

        result = DisputeService.resolve_dispute(dispute_id, **serializer.validated_data)
        return service_response(result, _to_dict)


# =============================================================================
# Escrow (operator)
# =============================================================================


class ReleaseEscrowView(APIView):
    """
    Release a held escrow to the seller and start the payout.

    POST /api/v1/payments/escrow/{hold_id}/release/
    """

    permission_classes = [HasOperatorKey]

    @extend_schema(
        operation_id="release_escrow",
        summary="Release escrow",
        request=ReleaseEscrowSerializer,
        responses={
            200: OpenApiResponse(response=EscrowOutcomeSerializer, description="Escrow released"),
            404: OpenApiResponse(description="Hold not found"),
            409: OpenApiResponse(description="Hold is not held"),
        },
        tags=["Payments - Escrow"],
    )
    def post(self, request, hold_id):
        serializer = ReleaseEscrowSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error(serializer)

        result = EscrowService.release_escrow(hold_id, reason=serializer.validated_data["reason"])
        return service_response(result, _to_dict)


class RefundEscrowView(APIView):
    """
    Refund a held escrow to the buyer.

    POST /api/v1/payments/escrow/refund/
    """

    permission_classes = [HasOperatorKey]

    @extend_schema(
        operation_id="refund_escrow",
        summary="Refund buyer",
        request=RefundEscrowSerializer,
        responses={
            200: OpenApiResponse(response=EscrowOutcomeSerializer, description="Escrow refunded"),
            404: OpenApiResponse(description="Transaction or hold not found"),
            409: OpenApiResponse(description="Already released or refunded"),
        },
        tags=["Payments - Escrow"],
    )
    def post(self, request):
        serializer = RefundEscrowSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error(serializer)

        result = EscrowService.refund_buyer(**serializer.validated_data)
        return service_response(result, _to_dict)


# =============================================================================
# Payouts & Sellers
# =============================================================================


class RetryPayoutView(APIView):
    """
    Retry a failed payout as a new payout attempt.

    POST /api/v1/payments/payouts/{payout_id}/retry/
    """

    permission_classes = [HasOperatorKey]

    @extend_schema(
        operation_id="retry_payout",
        summary="Retry failed payout",
        request=None,
        responses={
            200: OpenApiResponse(response=PayoutOutcomeSerializer, description="Retry submitted"),
            404: OpenApiResponse(description="Payout not found"),
            409: OpenApiResponse(description="Payout not failed or already retried"),
            422: OpenApiResponse(description="Retries exhausted or payout settings missing"),
            502: OpenApiResponse(description="Transfer failed again"),
        },
        tags=["Payments - Payouts"],
    )
    def post(self, request, payout_id):
        result = PayoutService.retry_failed_payout(payout_id)
        return service_response(result, _to_dict)


class SellerSummaryView(APIView):
    """
    GET /api/v1/payments/sellers/{seller_id}/summary/
    """

    permission_classes = [HasOperatorKey]

    @extend_schema(
        operation_id="seller_summary",
        summary="Seller balance summary",
        responses={
            200: OpenApiResponse(response=SellerSummarySerializer, description="Balances and counts"),
            404: OpenApiResponse(description="Seller not found"),
        },
        tags=["Payments - Sellers"],
    )
    def get(self, request, seller_id):
        result = EscrowService.get_seller_summary(seller_id)
        return service_response(result, _to_dict)


class SellerPayoutHistoryView(APIView):
    """
    GET /api/v1/payments/sellers/{seller_id}/payouts/?page=1&page_size=20
    """

    permission_classes = [HasOperatorKey]

    @extend_schema(
        operation_id="seller_payout_history",
        summary="Seller payout history",
        parameters=[PayoutHistoryQuerySerializer],
        responses={200: OpenApiResponse(response=PayoutHistorySerializer, description="Page of payouts")},
        tags=["Payments - Sellers"],
    )
    def get(self, request, seller_id):
        query = PayoutHistoryQuerySerializer(data=request.query_params)
        if not query.is_valid():
            return validation_error(query)

        result = PayoutService.get_payout_history(
            seller_id,
            page=query.validated_data["page"],
            page_size=query.validated_data.get("page_size"),
        )
        return service_response(
            result,
            lambda history: {
                "results": PayoutSerializer(history.payouts, many=True).data,
                "page": history.page,
                "page_size": history.page_size,
                "total_count": history.total_count,
                "has_next": history.has_next,
            },
        )


class PayoutSettingsView(APIView):
    """
    Register the account a seller is paid into.

    POST /api/v1/payments/sellers/{seller_id}/payout-settings/

    Released escrows waiting for settings are paid out once they are saved.
    """

    permission_classes = [HasOperatorKey]

    @extend_schema(
        operation_id="save_payout_settings",
        summary="Save payout settings",
        request=PayoutSettingsRequestSerializer,
        responses={
            200: OpenApiResponse(response=PayoutSettingsSerializer, description="Settings saved and verified"),
            400: OpenApiResponse(description="Invalid account details"),
            404: OpenApiResponse(description="Seller not found"),
            502: OpenApiResponse(description="Gateway rejected the recipient"),
        },
        tags=["Payments - Sellers"],
    )
    def post(self, request, seller_id):
        serializer = PayoutSettingsRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error(serializer)

        result = PayoutService.save_payout_settings(seller_id, **serializer.validated_data)
        return service_response(result, lambda payout_settings: PayoutSettingsSerializer(payout_settings).data)


class BankListView(APIView):
    """
    GET /api/v1/payments/banks/
    """

    permission_classes = [AllowAny]

    @extend_schema(
        operation_id="list_banks",
        summary="List payout banks",
        responses={
            200: OpenApiResponse(response=BankSerializer(many=True), description="Banks"),
            502: OpenApiResponse(description="Gateway error"),
        },
        tags=["Payments - Payouts"],
    )
    def get(self, request):
        result = PayoutService.list_banks()
        return service_response(result, lambda banks: BankSerializer(banks, many=True).data)
