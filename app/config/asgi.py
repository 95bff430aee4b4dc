"""
ASGI entry point.

Exposes the ASGI callable as ``application`` for Uvicorn. The service is
plain HTTP (REST API + gateway webhooks), so no protocol router is needed.
"""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_asgi_application()
