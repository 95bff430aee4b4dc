import uuid

import django.db.models.deletion
from django.db import migrations, models

import marketplace.models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Seller",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("business_name", models.CharField(max_length=255)),
                ("email", models.EmailField(max_length=254, unique=True)),
                ("phone_number", models.CharField(blank=True, max_length=20)),
                ("is_active", models.BooleanField(default=True)),
                (
                    "pending_escrow_balance_cents",
                    models.PositiveBigIntegerField(
                        default=0, help_text="Funds held in escrow for this seller"
                    ),
                ),
                (
                    "available_balance_cents",
                    models.PositiveBigIntegerField(
                        default=0, help_text="Released funds available for payout"
                    ),
                ),
                (
                    "total_paid_out_cents",
                    models.PositiveBigIntegerField(
                        default=0, help_text="Funds transferred to the seller's account"
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("pending_escrow_balance_cents__gte", 0)),
                        name="seller_pending_escrow_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("available_balance_cents__gte", 0)),
                        name="seller_available_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("total_paid_out_cents__gte", 0)),
                        name="seller_paid_out_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PaymentLink",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "short_code",
                    models.CharField(
                        default=marketplace.models.generate_short_code,
                        max_length=16,
                        unique=True,
                    ),
                ),
                ("item_name", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True)),
                (
                    "price_cents",
                    models.PositiveBigIntegerField(help_text="Item price in minor units"),
                ),
                ("currency", models.CharField(default="KES", max_length=3)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("active", "Active"),
                            ("paid", "Paid"),
                            ("completed", "Completed"),
                            ("cancelled", "Cancelled"),
                            ("disputed", "Disputed"),
                        ],
                        db_index=True,
                        default="active",
                        max_length=20,
                    ),
                ),
                (
                    "seller",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payment_links",
                        to="marketplace.seller",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("price_cents__gt", 0)),
                        name="payment_link_price_positive",
                    ),
                ],
            },
        ),
    ]
