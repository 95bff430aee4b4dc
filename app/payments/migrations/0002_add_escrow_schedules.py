"""
Add celery-beat schedules for the escrow background workers.

- Auto-release sweep: every 15 minutes, releases dispatched and
  undisputed holds past the auto-release window
- Payout retry sweep: every 10 minutes, retries failed payouts
- Webhook retry: every 5 minutes, re-queues failed webhook events
- Stuck webhook cleanup: every 15 minutes, fails events stuck in processing
"""

from django.db import migrations

SCHEDULES = [
    {
        "name": "Auto-release Stale Escrows",
        "task": "payments.workers.auto_release.process_stale_escrows",
        "every": 15,
        "description": (
            "Finds held escrows whose shipment was dispatched more than "
            "ESCROW_AUTO_RELEASE_HOURS ago with no open dispute and queues "
            "their release to the seller."
        ),
    },
    {
        "name": "Retry Failed Payouts",
        "task": "payments.workers.payout_executor.retry_failed_payouts",
        "every": 10,
        "description": "Re-attempts failed seller payouts up to PAYOUT_MAX_RETRIES.",
    },
    {
        "name": "Retry Failed Webhooks",
        "task": "payments.tasks.retry_failed_webhooks",
        "every": 5,
        "description": "Re-queues failed webhook events that have attempts left.",
    },
    {
        "name": "Cleanup Stuck Webhooks",
        "task": "payments.tasks.cleanup_stuck_webhooks",
        "every": 15,
        "description": "Marks webhook events stuck in processing as failed so they retry.",
    },
]


def create_periodic_tasks(apps, schema_editor):
    """Create the periodic tasks for the escrow workers."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for entry in SCHEDULES:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=entry["every"],
            period="minutes",
        )
        PeriodicTask.objects.get_or_create(
            name=entry["name"],
            defaults={
                "task": entry["task"],
                "interval": schedule,
                "enabled": True,
                "description": entry["description"],
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[entry["name"] for entry in SCHEDULES],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("payments", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
