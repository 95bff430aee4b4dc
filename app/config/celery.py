"""
Celery application.

Runs the asynchronous side of the escrow flow:
- Processing stored gateway webhook events
- Periodic auto-release of stale escrow holds
- Periodic retry of failed payouts and failed/stuck webhook events

Redis is both broker and result backend. Periodic schedules live in the
database (django-celery-beat DatabaseScheduler) and are installed by the
payments data migrations.

Usage:
    celery -A config worker -l info
    celery -A config beat -l info
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Picks up payments.tasks, which re-exports the worker tasks
app.autodiscover_tasks()
