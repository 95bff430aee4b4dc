"""
Admin for the balance journal.

Entries are immutable: no add, change or delete through the admin.
Corrections are new entries written by LedgerService.
"""

from django.contrib import admin

from .models import BalanceEntry


@admin.register(BalanceEntry)
class BalanceEntryAdmin(admin.ModelAdmin):
    list_display = [
        "created_at",
        "seller",
        "entry_type",
        "amount_display",
        "pending_delta_cents",
        "available_delta_cents",
        "paid_out_delta_cents",
        "reference_type",
    ]
    list_filter = ["entry_type", "reference_type", "created_at"]
    search_fields = ["id", "idempotency_key", "reference_id", "seller__business_name"]
    readonly_fields = [
        "id",
        "created_at",
        "seller",
        "entry_type",
        "amount_cents",
        "pending_delta_cents",
        "available_delta_cents",
        "paid_out_delta_cents",
        "idempotency_key",
        "reference_type",
        "reference_id",
        "description",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    @admin.display(description="Amount")
    def amount_display(self, obj: BalanceEntry) -> str:
        return f"KES {obj.amount_cents / 100:,.2f}"

    def has_delete_permission(self, request, obj=None) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_add_permission(self, request) -> bool:
        return False
