"""
URL configuration for the payments app.

All routes are prefixed with /api/v1/payments/ when included in the main URLconf.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("payments/", include("payments.urls")),
    ]
"""

from django.urls import path

from payments import views
from payments.webhooks.views import paystack_webhook

app_name = "payments"

urlpatterns = [
    # Webhook endpoints
    path("webhooks/paystack/", paystack_webhook, name="paystack_webhook"),
    # Checkout
    path("checkout/", views.CheckoutView.as_view(), name="checkout"),
    path("checkout/verify/", views.CheckoutVerifyView.as_view(), name="checkout_verify"),
    # Delivery
    path("delivery/dispatch/", views.DispatchView.as_view(), name="delivery_dispatch"),
    path("delivery/confirm/", views.ConfirmDeliveryView.as_view(), name="delivery_confirm"),
    path("delivery/reject/", views.RejectDeliveryView.as_view(), name="delivery_reject"),
    # Disputes
    path("disputes/", views.OpenDisputeView.as_view(), name="dispute_open"),
    path(
        "disputes/<uuid:dispute_id>/resolve/",
        views.ResolveDisputeView.as_view(),
        name="dispute_resolve",
    ),
    # Escrow
    path(
        "escrow/<uuid:hold_id>/release/",
        views.ReleaseEscrowView.as_view(),
        name="escrow_release",
    ),
    path("escrow/refund/", views.RefundEscrowView.as_view(), name="escrow_refund"),
    # Payouts & sellers
    path(
        "payouts/<uuid:payout_id>/retry/",
        views.RetryPayoutView.as_view(),
        name="payout_retry",
    ),
    path("banks/", views.BankListView.as_view(), name="banks"),
    path(
        "sellers/<uuid:seller_id>/summary/",
        views.SellerSummaryView.as_view(),
        name="seller_summary",
    ),
    path(
        "sellers/<uuid:seller_id>/payouts/",
        views.SellerPayoutHistoryView.as_view(),
        name="seller_payouts",
    ),
    path(
        "sellers/<uuid:seller_id>/payout-settings/",
        views.PayoutSettingsView.as_view(),
        name="seller_payout_settings",
    ),
]
