import uuid

import django.db.models.deletion
import django_fsm
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Order",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier for this record", primary_key=True, serialize=False)),
                ("number", models.CharField(help_text="Human-facing order number", max_length=32, unique=True)),
                ("status", models.CharField(choices=[("pending", "Pending"), ("confirmed", "Confirmed"), ("partially_refunded", "Partially Refunded"), ("refunded", "Refunded"), ("cancelled", "Cancelled")], db_index=True, default="pending", help_text="Current order status", max_length=20)),
                ("currency", models.CharField(default="gbp", help_text="ISO 4217 currency code (lowercase)", max_length=3)),
                ("user", models.ForeignKey(help_text="Customer who placed the order", on_delete=django.db.models.deletion.PROTECT, related_name="orders", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "verbose_name": "Order",
                "verbose_name_plural": "Orders",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="OrderItem",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier for this record", primary_key=True, serialize=False)),
                ("product_name", models.CharField(max_length=255)),
                ("unit_price_cents", models.PositiveBigIntegerField(help_text="Price per unit in smallest currency unit")),
                ("quantity", models.PositiveIntegerField(default=1)),
                ("order", models.ForeignKey(help_text="Parent order", on_delete=django.db.models.deletion.CASCADE, related_name="items", to="orders.order")),
            ],
            options={
                "verbose_name": "Order Item",
                "verbose_name_plural": "Order Items",
                "ordering": ["created_at"],
            },
        ),
        migrations.CreateModel(
            name="OrderReturn",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier for this record", primary_key=True, serialize=False)),
                ("status", django_fsm.FSMField(choices=[("requested", "Requested"), ("approved", "Approved"), ("rejected", "Rejected"), ("completed", "Completed")], db_index=True, default="requested", help_text="Current state of the return (managed by FSM)", max_length=50)),
                ("quantity", models.PositiveIntegerField(blank=True, help_text="Units returned; empty means the whole line", null=True)),
                ("reason", models.TextField(blank=True, default="")),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("order_item", models.OneToOneField(help_text="Item being returned", on_delete=django.db.models.deletion.CASCADE, related_name="order_return", to="orders.orderitem")),
            ],
            options={
                "verbose_name": "Order Return",
                "verbose_name_plural": "Order Returns",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="Payment",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier for this record", primary_key=True, serialize=False)),
                ("amount_cents", models.PositiveBigIntegerField(help_text="Captured amount in smallest currency unit (e.g., pence)")),
                ("status", models.CharField(choices=[("pending", "Pending"), ("paid", "Paid"), ("partially_refunded", "Partially Refunded"), ("refunded", "Refunded"), ("failed", "Failed")], db_index=True, default="pending", help_text="Current payment status", max_length=20)),
                ("transaction_reference", models.CharField(blank=True, db_index=True, default="", help_text="Gateway payment reference (e.g., Stripe PaymentIntent ID)", max_length=255)),
                ("gateway", models.CharField(default="stripe", help_text="Gateway that captured this payment", max_length=32)),
                ("order", models.ForeignKey(help_text="Order this payment belongs to", on_delete=django.db.models.deletion.PROTECT, related_name="payments", to="orders.order")),
            ],
            options={
                "verbose_name": "Payment",
                "verbose_name_plural": "Payments",
                "ordering": ["-created_at"],
                "constraints": [models.CheckConstraint(condition=models.Q(("amount_cents__gt", 0)), name="payment_amount_positive")],
            },
        ),
    ]
