"""
Payment admin configuration.

Registers the escrow domain models with the Django admin. State fields are
read-only: every state change goes through the service layer so the ledger
and the state machines stay in step. The admin actions below call those
services rather than editing rows.
"""

from django.contrib import admin, messages

from payments.ledger.admin import BalanceEntryAdmin
from payments.models import (
    Dispute,
    EscrowHold,
    Payout,
    PayoutSettings,
    Refund,
    Transaction,
    WebhookEvent,
)
from payments.state_machines import PayoutStatus, WebhookEventStatus

__all__ = [
    "BalanceEntryAdmin",
    "DisputeAdmin",
    "EscrowHoldAdmin",
    "PayoutAdmin",
    "PayoutSettingsAdmin",
    "RefundAdmin",
    "TransactionAdmin",
    "WebhookEventAdmin",
]


def format_amount(amount_cents: int, currency: str) -> str:
    return f"{currency.upper()} {amount_cents / 100:,.2f}"


class ReadOnlyAdminMixin:
    """Money rows are created by services only and never deleted (audit trail)."""

    def has_add_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


class EscrowHoldInline(admin.TabularInline):
    """Inline display of escrow holds for a transaction."""

    model = EscrowHold
    extra = 0
    fields = ["id", "parent", "amount_cents", "status", "release_reason", "released_at", "refunded_at"]
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Transaction)
class TransactionAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """
    Admin configuration for Transaction.

    Provides visibility into buyer payments and their escrow holds.
    """

    list_display = [
        "id",
        "payment_reference",
        "seller",
        "buyer_email",
        "amount_display",
        "payment_method",
        "status",
        "paid_at",
        "created_at",
    ]
    list_filter = ["status", "payment_method", "currency", "created_at"]
    search_fields = ["id", "payment_reference", "buyer_email", "buyer_phone", "seller__business_name"]
    readonly_fields = [
        "id",
        "link",
        "seller",
        "amount_cents",
        "currency",
        "payment_method",
        "payment_reference",
        "gateway_channel",
        "status",
        "paid_at",
        "version",
        "created_at",
        "updated_at",
    ]
    inlines = [EscrowHoldInline]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (None, {"fields": ("id", "link", "seller", "status")}),
        ("Buyer", {"fields": ("buyer_email", "buyer_phone")}),
        ("Amount", {"fields": ("amount_cents", "currency")}),
        (
            "Payment Details",
            {"fields": ("payment_method", "payment_reference", "gateway_channel", "paid_at")},
        ),
        ("Timestamps", {"fields": ("version", "created_at", "updated_at"), "classes": ("collapse",)}),
    )

    @admin.display(description="Amount")
    def amount_display(self, obj: Transaction) -> str:
        return format_amount(obj.amount_cents, obj.currency)


@admin.register(EscrowHold)
class EscrowHoldAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """
    Admin configuration for EscrowHold.

    Split holds show their refunded and released portions as children.
    """

    list_display = [
        "id",
        "transaction",
        "seller",
        "amount_display",
        "status",
        "release_reason",
        "released_at",
        "paid_out_at",
        "created_at",
    ]
    list_filter = ["status", "release_reason", "created_at"]
    search_fields = ["id", "transaction__payment_reference", "transfer_reference", "seller__business_name"]
    readonly_fields = [
        "id",
        "transaction",
        "seller",
        "parent",
        "amount_cents",
        "currency",
        "status",
        "transfer_reference",
        "release_reason",
        "released_at",
        "refunded_at",
        "paid_out_at",
        "version",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    @admin.display(description="Amount")
    def amount_display(self, obj: EscrowHold) -> str:
        return format_amount(obj.amount_cents, obj.currency)


@admin.register(Payout)
class PayoutAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """
    Admin configuration for Payout.

    Each retry is its own row; retry_of links it to the attempt it replaced.
    """

    list_display = [
        "id",
        "seller",
        "escrow_hold",
        "amount_display",
        "status",
        "retry_count",
        "transfer_reference",
        "completed_at",
        "failed_at",
        "created_at",
    ]
    list_filter = ["status", "currency", "created_at"]
    search_fields = ["id", "transfer_reference", "transfer_code", "seller__business_name"]
    readonly_fields = [
        "id",
        "seller",
        "escrow_hold",
        "retry_of",
        "amount_cents",
        "currency",
        "status",
        "balance_reserved",
        "transfer_reference",
        "transfer_code",
        "retry_count",
        "failure_reason",
        "completed_at",
        "failed_at",
        "version",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    actions = ["retry_payouts"]

    @admin.display(description="Amount")
    def amount_display(self, obj: Payout) -> str:
        return format_amount(obj.amount_cents, obj.currency)

    @admin.action(description="Retry selected failed payouts")
    def retry_payouts(self, request, queryset):
        from payments.services import PayoutService

        retried = 0
        for payout in queryset.filter(status=PayoutStatus.FAILED):
            result = PayoutService.retry_failed_payout(payout.id)
            if result.success:
                retried += 1
            else:
                self.message_user(
                    request,
                    f"Payout {payout.id}: {result.error}",
                    level=messages.WARNING,
                )
        self.message_user(request, f"Retried {retried} payouts.")


@admin.register(PayoutSettings)
class PayoutSettingsAdmin(admin.ModelAdmin):
    list_display = ["seller", "account_type", "account_name", "bank_name", "is_verified", "verified_at"]
    list_filter = ["account_type", "is_verified"]
    search_fields = ["seller__business_name", "account_name", "account_number", "recipient_code"]
    readonly_fields = ["id", "recipient_code", "is_verified", "verified_at", "created_at", "updated_at"]


@admin.register(Refund)
class RefundAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """
    Admin configuration for Refund.

    NEEDS_ATTENTION and FAILED refunds are the ones an operator must
    reconcile with the gateway.
    """

    list_display = [
        "id",
        "transaction",
        "amount_display",
        "status",
        "refund_reference",
        "initiated_by",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "initiated_by", "created_at"]
    search_fields = ["id", "refund_reference", "transaction__payment_reference"]
    readonly_fields = [
        "id",
        "transaction",
        "escrow_hold",
        "amount_cents",
        "currency",
        "reason",
        "initiated_by",
        "status",
        "refund_reference",
        "processed_at",
        "logs",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    @admin.display(description="Amount")
    def amount_display(self, obj: Refund) -> str:
        return format_amount(obj.amount_cents, obj.currency)


@admin.register(Dispute)
class DisputeAdmin(admin.ModelAdmin):
    """
    Admin configuration for Dispute.

    Disputes are resolved through the resolve endpoint so the escrow
    action runs; the admin only edits notes.
    """

    list_display = [
        "id",
        "transaction",
        "initiated_by",
        "reason",
        "resolution",
        "resolution_applied",
        "resolved_at",
        "created_at",
    ]
    list_filter = ["resolution", "resolution_applied", "initiated_by", "created_at"]
    search_fields = ["id", "transaction__payment_reference", "reason"]
    readonly_fields = [
        "id",
        "transaction",
        "initiated_by",
        "reason",
        "description",
        "resolution",
        "partial_refund_cents",
        "resolution_applied",
        "outcome",
        "resolved_at",
        "resolved_by",
        "version",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Webhook events are immutable once received; failed ones can be
    re-queued.
    """

    list_display = [
        "id",
        "event_key",
        "event_type",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "event_type", "created_at"]
    search_fields = ["id", "event_key"]
    readonly_fields = [
        "id",
        "event_key",
        "event_type",
        "payload",
        "status",
        "processed_at",
        "error_message",
        "retry_count",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    actions = ["requeue_events"]

    @admin.action(description="Re-queue selected failed events")
    def requeue_events(self, request, queryset):
        from payments.tasks import process_webhook_event

        count = 0
        for event in queryset.filter(status=WebhookEventStatus.FAILED):
            process_webhook_event.delay(str(event.id))
            count += 1
        self.message_user(request, f"Queued {count} webhook events.")
