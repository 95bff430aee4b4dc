"""
URL configuration for the escrow marketplace.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/payments/              - Payment endpoints
        webhooks/paystack/         - Paystack webhook endpoint (POST)
        checkout/                  - Start checkout for a payment link
        checkout/verify/           - Payment callback verification
        delivery/dispatch/         - Seller records dispatch proof
        delivery/confirm/          - Buyer confirms delivery
        delivery/reject/           - Buyer rejects delivery (opens a dispute)
        disputes/                  - Open a dispute
        disputes/{id}/resolve/     - Resolve a dispute (operator)
        escrow/{hold_id}/release/  - Release escrow (operator)
        escrow/refund/             - Refund the buyer (operator)
        payouts/{id}/retry/        - Retry a failed payout (operator)
        banks/                     - Banks accepted for payouts
        sellers/{id}/summary/      - Seller balance summary (operator)
        sellers/{id}/payouts/      - Seller payout history (operator)
        sellers/{id}/payout-settings/ - Register payout account (operator)
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
# All routes here are prefixed with /api/v1/ automatically
api_v1_patterns = [
    path("payments/", include("payments.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Escrow Marketplace Admin"
admin.site.site_title = "Escrow Admin"
admin.site.index_title = "Escrow operations"
