"""
DRF serializers for the payments API.

Request serializers validate input before it reaches a service; response
serializers describe the outcome dictionaries the services return and are
used for the OpenAPI schema.

Provides:
- CheckoutRequestSerializer / CheckoutVerifySerializer: Buyer checkout
- DispatchRequestSerializer, ConfirmDeliverySerializer, RejectDeliverySerializer
- OpenDisputeSerializer, ResolveDisputeSerializer, DisputeSerializer
- ReleaseEscrowSerializer, RefundEscrowSerializer
- PayoutSettingsRequestSerializer, PayoutSerializer, BankSerializer
- EscrowOutcomeSerializer, PayoutOutcomeSerializer, SellerSummarySerializer, ...
"""

from __future__ import annotations

from typing import Any

from rest_framework import serializers

from payments.models import Dispute, Payout
from payments.state_machines import (
    DisputeInitiator,
    DisputeResolution,
    PaymentMethod,
    PayoutAccountType,
)


# =============================================================================
# Checkout
# =============================================================================


class CheckoutRequestSerializer(serializers.Serializer):
    """
    Start paying for a payment link.

    Fields:
        short_code: The link's public code
        buyer_email: Receipt and gateway customer email
        payment_method: card, mobile_money or bank_transfer
        buyer_phone: Required for mobile_money (M-Pesa)
    """

    short_code = serializers.CharField(max_length=12)
    buyer_email = serializers.EmailField()
    payment_method = serializers.ChoiceField(
        choices=PaymentMethod.choices,
        default=PaymentMethod.CARD,
    )
    buyer_phone = serializers.CharField(max_length=20, required=False, allow_blank=True, default="")

    def validate(self, attrs: dict[str, Any]) -> dict[str, Any]:
        if attrs["payment_method"] == PaymentMethod.MOBILE_MONEY and not attrs.get("buyer_phone"):
            raise serializers.ValidationError(
                {"buyer_phone": "A phone number is required for mobile money."}
            )
        return attrs


class CheckoutVerifySerializer(serializers.Serializer):
    reference = serializers.CharField(max_length=100)


class CheckoutSessionSerializer(serializers.Serializer):
    transaction_id = serializers.UUIDField()
    reference = serializers.CharField()
    checkout_url = serializers.URLField()
    amount_cents = serializers.IntegerField()
    currency = serializers.CharField()


class CheckoutStatusSerializer(serializers.Serializer):
    transaction_id = serializers.UUIDField()
    reference = serializers.CharField()
    status = serializers.CharField()
    hold_id = serializers.UUIDField(allow_null=True)
    paid_at = serializers.DateTimeField(allow_null=True)


# =============================================================================
# Delivery
# =============================================================================


class DispatchRequestSerializer(serializers.Serializer):
    transaction_id = serializers.UUIDField()
    courier_name = serializers.CharField(max_length=255)
    courier_contact = serializers.CharField(max_length=50, required=False, allow_blank=True, default="")
    tracking_number = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")


class DispatchResponseSerializer(serializers.Serializer):
    transaction_id = serializers.UUIDField()
    dispatched_at = serializers.DateTimeField()
    confirmation_code = serializers.CharField()


class ConfirmDeliverySerializer(serializers.Serializer):
    confirmation_code = serializers.CharField(max_length=16)


class RejectDeliverySerializer(serializers.Serializer):
    confirmation_code = serializers.CharField(max_length=16)
    reason = serializers.CharField(max_length=2000)


# =============================================================================
# Disputes
# =============================================================================


class OpenDisputeSerializer(serializers.Serializer):
    transaction_id = serializers.UUIDField()
    initiated_by = serializers.ChoiceField(
        choices=[DisputeInitiator.BUYER, DisputeInitiator.SELLER],
    )
    reason = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True, default="")


class ResolveDisputeSerializer(serializers.Serializer):
    """
    Resolve a dispute.

    partial_amount_cents is the amount refunded to the buyer and is required
    for partial_refund; the remainder is released to the seller.
    """

    resolution = serializers.ChoiceField(
        choices=[
            DisputeResolution.REFUND_BUYER,
            DisputeResolution.PAY_SELLER,
            DisputeResolution.PARTIAL_REFUND,
        ],
    )
    partial_amount_cents = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    resolved_by = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    admin_notes = serializers.CharField(required=False, allow_blank=True, default="")

    def validate(self, attrs: dict[str, Any]) -> dict[str, Any]:
        if attrs["resolution"] == DisputeResolution.PARTIAL_REFUND and not attrs.get("partial_amount_cents"):
            raise serializers.ValidationError(
                {"partial_amount_cents": "Required for a partial refund."}
            )
        return attrs


class DisputeSerializer(serializers.ModelSerializer):
    class Meta:
        model = Dispute
        fields = [
            "id",
            "transaction",
            "initiated_by",
            "reason",
            "description",
            "resolution",
            "partial_refund_cents",
            "resolution_applied",
            "resolved_at",
            "created_at",
        ]
        read_only_fields = fields


class DisputeOutcomeSerializer(serializers.Serializer):
    dispute_id = serializers.UUIDField()
    resolution = serializers.CharField()
    already_resolved = serializers.BooleanField()
    escrow = serializers.DictField()


# =============================================================================
# Escrow
# =============================================================================


class ReleaseEscrowSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=50, required=False, default="operator")


class RefundEscrowSerializer(serializers.Serializer):
    transaction_id = serializers.UUIDField()
    reason = serializers.CharField(max_length=255)
    initiated_by = serializers.ChoiceField(
        choices=DisputeInitiator.choices,
        required=False,
        default=DisputeInitiator.SYSTEM,
    )


class EscrowOutcomeSerializer(serializers.Serializer):
    action = serializers.CharField()
    transaction_id = serializers.UUIDField()
    hold_id = serializers.UUIDField()
    amount_cents = serializers.IntegerField()
    message = serializers.CharField()
    created = serializers.BooleanField()
    payout_id = serializers.UUIDField(allow_null=True)
    payout_error = serializers.CharField(allow_null=True)
    payout_error_code = serializers.CharField(allow_null=True)
    refund_id = serializers.UUIDField(allow_null=True)
    refund_status = serializers.CharField(allow_null=True)
    gateway_error = serializers.CharField(allow_null=True)
    released_amount_cents = serializers.IntegerField(allow_null=True)
    refunded_amount_cents = serializers.IntegerField(allow_null=True)
    sub_hold_ids = serializers.ListField(child=serializers.UUIDField())


# =============================================================================
# Payouts & Sellers
# =============================================================================


class PayoutSettingsRequestSerializer(serializers.Serializer):
    """
    Register where a seller is paid.

    For mpesa, account_number is the phone number and bank_code is ignored.
    """

    account_type = serializers.ChoiceField(choices=PayoutAccountType.choices)
    account_name = serializers.CharField(max_length=255)
    account_number = serializers.CharField(max_length=50)
    bank_code = serializers.CharField(max_length=20, required=False, allow_blank=True, default="")
    bank_name = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


class PayoutSettingsSerializer(serializers.Serializer):
    account_type = serializers.CharField()
    account_name = serializers.CharField()
    account_number = serializers.CharField()
    bank_code = serializers.CharField()
    bank_name = serializers.CharField()
    is_verified = serializers.BooleanField()
    verified_at = serializers.DateTimeField(allow_null=True)


class PayoutSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payout
        fields = [
            "id",
            "escrow_hold",
            "retry_of",
            "amount_cents",
            "currency",
            "status",
            "transfer_reference",
            "retry_count",
            "failure_reason",
            "completed_at",
            "failed_at",
            "created_at",
        ]
        read_only_fields = fields


class PayoutOutcomeSerializer(serializers.Serializer):
    payout_id = serializers.UUIDField()
    hold_id = serializers.UUIDField()
    seller_id = serializers.UUIDField()
    amount_cents = serializers.IntegerField()
    status = serializers.CharField()
    transfer_reference = serializers.CharField()
    transfer_code = serializers.CharField(allow_null=True)
    retry_count = serializers.IntegerField()
    created = serializers.BooleanField()
    message = serializers.CharField()


class PayoutHistorySerializer(serializers.Serializer):
    results = PayoutSerializer(many=True)
    page = serializers.IntegerField()
    page_size = serializers.IntegerField()
    total_count = serializers.IntegerField()
    has_next = serializers.BooleanField()


class PayoutHistoryQuerySerializer(serializers.Serializer):
    page = serializers.IntegerField(min_value=1, required=False, default=1)
    page_size = serializers.IntegerField(min_value=1, max_value=100, required=False)


class SellerSummarySerializer(serializers.Serializer):
    seller_id = serializers.UUIDField()
    pending_escrow_cents = serializers.IntegerField()
    available_cents = serializers.IntegerField()
    total_paid_out_cents = serializers.IntegerField()
    currency = serializers.CharField()
    held_count = serializers.IntegerField()
    pending_payout_count = serializers.IntegerField()
    failed_payout_count = serializers.IntegerField()


class BankSerializer(serializers.Serializer):
    name = serializers.CharField()
    code = serializers.CharField()
    type = serializers.CharField()
    currency = serializers.CharField()
