import uuid

import django.db.models.deletion
import django_fsm
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("orders", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="RefundLedgerEntry",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("metadata", models.JSONField(blank=True, default=dict, help_text="Arbitrary JSON metadata for extensibility")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier for this record", primary_key=True, serialize=False)),
                ("amount_cents", models.PositiveBigIntegerField(help_text="Refund amount in smallest currency unit (e.g., pence)")),
                ("status", django_fsm.FSMField(choices=[("pending", "Pending"), ("refunded", "Refunded"), ("failed", "Failed"), ("cancelled", "Cancelled")], db_index=True, default="pending", help_text="Current state of the ledger row (managed by FSM)", max_length=50)),
                ("processed_at", models.DateTimeField(blank=True, help_text="When the refund was confirmed", null=True)),
                ("notes", models.TextField(blank=True, default="")),
                ("source", models.CharField(choices=[("admin", "Admin"), ("stripe_webhook", "Stripe Webhook"), ("manual", "Manual")], db_index=True, default="admin", max_length=32)),
                ("is_manual", models.BooleanField(default=False, help_text="Refund was issued outside this service")),
                ("gateway", models.CharField(blank=True, default="", max_length=32)),
                ("gateway_refund_id", models.CharField(blank=True, db_index=True, default="", help_text="Gateway refund ID (re_xxx); shared by rows of one bulk refund", max_length=255)),
                ("order", models.ForeignKey(help_text="Order being refunded", on_delete=django.db.models.deletion.PROTECT, related_name="refund_entries", to="orders.order")),
                ("order_return", models.ForeignKey(blank=True, help_text="Return refunded by this row (empty for manual refunds)", null=True, on_delete=django.db.models.deletion.PROTECT, related_name="refund_entries", to="orders.orderreturn")),
            ],
            options={
                "verbose_name": "Refund Ledger Entry",
                "verbose_name_plural": "Refund Ledger Entries",
                "ordering": ["-created_at"],
                "permissions": [("manage_refunds", "Can process, cancel and reconcile refunds")],
                "indexes": [
                    models.Index(fields=["order", "status"], name="refunds_ref_order_i_6c1f3e_idx"),
                    models.Index(fields=["status", "created_at"], name="refunds_ref_status_9a2d41_idx"),
                ],
                "constraints": [models.CheckConstraint(condition=models.Q(("amount_cents__gt", 0)), name="refund_ledger_amount_positive")],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier for this record", primary_key=True, serialize=False)),
                ("stripe_event_id", models.CharField(help_text="Stripe Event ID (evt_xxx) - unique constraint for idempotency", max_length=255, unique=True)),
                ("event_type", models.CharField(db_index=True, max_length=100)),
                ("payload", models.JSONField(help_text="Full webhook payload from Stripe (JSON)")),
                ("status", models.CharField(choices=[("pending", "Pending"), ("processing", "Processing"), ("processed", "Processed"), ("failed", "Failed")], db_index=True, default="pending", max_length=20)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True, null=True)),
                ("attempt_count", models.PositiveSmallIntegerField(default=0)),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-created_at"],
                "indexes": [models.Index(fields=["event_type", "created_at"], name="refunds_web_event_t_4b7e20_idx")],
            },
        ),
    ]
