"""
Marketplace admin configuration.

Seller balance counters are shown but never editable here; the ledger is
their only writer.
"""

from django.contrib import admin

from marketplace.models import DeliveryConfirmation, PaymentLink, Seller, ShippingProof


def format_kes(amount_cents: int) -> str:
    return f"KES {amount_cents / 100:,.2f}"


class PaymentLinkInline(admin.TabularInline):
    model = PaymentLink
    extra = 0
    fields = ["short_code", "item_name", "price_cents", "status"]
    readonly_fields = ["short_code", "status"]
    show_change_link = True


@admin.register(Seller)
class SellerAdmin(admin.ModelAdmin):
    """
    Admin configuration for Seller.

    Balances are read-only; use the ledger journal (Balance entries) to see
    how they were reached.
    """

    list_display = [
        "business_name",
        "email",
        "is_active",
        "pending_display",
        "available_display",
        "paid_out_display",
        "created_at",
    ]
    list_filter = ["is_active", "created_at"]
    search_fields = ["business_name", "email", "phone_number"]
    readonly_fields = [
        "id",
        "pending_escrow_balance_cents",
        "available_balance_cents",
        "total_paid_out_cents",
        "created_at",
        "updated_at",
    ]
    inlines = [PaymentLinkInline]
    ordering = ["business_name"]

    fieldsets = (
        (None, {"fields": ("id", "business_name", "email", "phone_number", "is_active")}),
        (
            "Balances",
            {
                "fields": (
                    "pending_escrow_balance_cents",
                    "available_balance_cents",
                    "total_paid_out_cents",
                )
            },
        ),
        ("Timestamps", {"fields": ("created_at", "updated_at"), "classes": ("collapse",)}),
    )

    @admin.display(description="Pending escrow")
    def pending_display(self, obj: Seller) -> str:
        return format_kes(obj.pending_escrow_balance_cents)

    @admin.display(description="Available")
    def available_display(self, obj: Seller) -> str:
        return format_kes(obj.available_balance_cents)

    @admin.display(description="Paid out")
    def paid_out_display(self, obj: Seller) -> str:
        return format_kes(obj.total_paid_out_cents)


@admin.register(PaymentLink)
class PaymentLinkAdmin(admin.ModelAdmin):
    list_display = ["short_code", "item_name", "seller", "price_display", "status", "created_at"]
    list_filter = ["status", "currency", "created_at"]
    search_fields = ["short_code", "item_name", "seller__business_name"]
    readonly_fields = ["id", "short_code", "status", "created_at", "updated_at"]
    ordering = ["-created_at"]

    @admin.display(description="Price")
    def price_display(self, obj: PaymentLink) -> str:
        return f"{obj.currency} {obj.price_cents / 100:,.2f}"


@admin.register(ShippingProof)
class ShippingProofAdmin(admin.ModelAdmin):
    list_display = ["transaction", "courier_name", "tracking_number", "dispatched_at"]
    search_fields = ["transaction__payment_reference", "tracking_number", "courier_name"]
    readonly_fields = ["id", "transaction", "dispatched_at", "created_at", "updated_at"]
    ordering = ["-dispatched_at"]

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(DeliveryConfirmation)
class DeliveryConfirmationAdmin(admin.ModelAdmin):
    """Delivery outcomes are written by the buyer flow and the auto-release worker."""

    list_display = [
        "transaction",
        "confirmed",
        "auto_confirmed",
        "confirmed_at",
        "rejected_at",
    ]
    list_filter = ["confirmed", "auto_confirmed"]
    search_fields = ["transaction__payment_reference", "confirmation_code"]
    readonly_fields = [
        "id",
        "transaction",
        "confirmation_code",
        "confirmed",
        "confirmed_at",
        "auto_confirmed",
        "rejection_reason",
        "rejected_at",
        "created_at",
        "updated_at",
    ]

    def has_add_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False
