import uuid

import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("accounts", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Subscription",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier for this record", primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("deliverable_id", models.CharField(db_index=True, help_text="External id of the deliverable this subscription unlocks", max_length=255)),
                ("gateway_subscription_id", models.CharField(help_text="Stripe Subscription ID (sub_xxx)", max_length=255, unique=True)),
                ("gateway_price_id", models.CharField(blank=True, default="", help_text="Stripe Price ID (price_xxx)", max_length=255)),
                ("amount_cents", models.PositiveBigIntegerField(default=0, help_text="Recurring amount in smallest currency unit")),
                ("currency", models.CharField(default="usd", help_text="ISO 4217 currency code (lowercase)", max_length=3)),
                ("commission_rate_bps", models.PositiveIntegerField(default=0, help_text="Provider share in basis points, snapshotted at creation")),
                ("state", django_fsm.FSMField(choices=[("trialing", "Trialing"), ("active", "Active"), ("past_due", "Past Due"), ("grace_period", "Grace Period"), ("cancel_pending", "Cancel Pending"), ("suspended", "Suspended"), ("cancelled", "Cancelled")], db_index=True, default="trialing", help_text="Current state of the subscription (managed by FSM)", max_length=50, protected=True)),
                ("cancel_at_period_end", models.BooleanField(default=False, help_text="Renewal stops at the end of the current period")),
                ("current_period_end", models.DateTimeField(blank=True, help_text="End of the current paid period", null=True)),
                ("grace_period_ends_at", models.DateTimeField(blank=True, db_index=True, help_text="Deadline after which the grace period expires", null=True)),
                ("payment_failure_count", models.PositiveIntegerField(default=0, help_text="Consecutive failed charges since the last success")),
                ("last_payment_failure_at", models.DateTimeField(blank=True, null=True)),
                ("access_suspended", models.BooleanField(default=False, help_text="Subscriber access withdrawn after the grace period")),
                ("access_suspended_at", models.DateTimeField(blank=True, null=True)),
                ("gateway_ended_at", models.DateTimeField(blank=True, help_text="When the gateway reported the subscription deleted", null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("last_event_at", models.DateTimeField(blank=True, help_text="Gateway timestamp of the newest applied event", null=True)),
                ("version", models.PositiveIntegerField(default=1, help_text="Version for optimistic locking - incremented on each ledger write")),
                ("metadata", models.JSONField(blank=True, default=dict, help_text="Arbitrary JSON metadata for extensibility")),
                ("provider", models.ForeignKey(blank=True, help_text="Provider earning a commission share (optional)", null=True, on_delete=django.db.models.deletion.PROTECT, related_name="provided_subscriptions", to="accounts.account")),
                ("subscriber", models.ForeignKey(help_text="Account holding the entitlement", on_delete=django.db.models.deletion.PROTECT, related_name="subscriptions", to="accounts.account")),
            ],
            options={
                "verbose_name": "Subscription",
                "verbose_name_plural": "Subscriptions",
                "db_table": "subscriptions",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["subscriber", "state"], name="subscriptio_subscri_5e2c1a_idx"),
                    models.Index(fields=["provider", "state"], name="subscriptio_provide_9b7d3f_idx"),
                    models.Index(fields=["state", "current_period_end"], name="subscriptio_state_4a8e6c_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(condition=models.Q(("state", "cancelled"), _negated=True), fields=("subscriber", "deliverable_id"), name="subscription_one_live_per_deliverable"),
                    models.CheckConstraint(condition=models.Q(("commission_rate_bps__lte", 10000)), name="subscription_commission_rate_bps_range"),
                ],
            },
        ),
        migrations.CreateModel(
            name="PaymentEvent",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier for this record", primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("gateway_event_id", models.CharField(help_text="Stripe Event ID (evt_xxx) - unique constraint for idempotency", max_length=255, unique=True)),
                ("event_type", models.CharField(choices=[("charge_succeeded", "Charge Succeeded"), ("charge_failed", "Charge Failed"), ("subscription_updated", "Subscription Updated"), ("subscription_deleted", "Subscription Deleted"), ("checkout_completed", "Checkout Completed"), ("unsupported", "Unsupported")], db_index=True, help_text="Normalized event type", max_length=32)),
                ("gateway_event_type", models.CharField(help_text="Stripe event type (e.g., 'invoice.paid')", max_length=100)),
                ("gateway_payment_id", models.CharField(blank=True, db_index=True, default="", help_text="Stripe Invoice ID (in_xxx)", max_length=255)),
                ("amount_cents", models.PositiveBigIntegerField(default=0)),
                ("fee_cents", models.PositiveBigIntegerField(default=0)),
                ("currency", models.CharField(default="usd", max_length=3)),
                ("occurred_at", models.DateTimeField(help_text="Gateway event timestamp")),
                ("received_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("payload", models.JSONField(default=dict, help_text="Full webhook payload from Stripe (JSON)")),
                ("subscription", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="payment_events", to="billing.subscription")),
            ],
            options={
                "verbose_name": "Payment Event",
                "verbose_name_plural": "Payment Events",
                "db_table": "payment_events",
                "ordering": ["-occurred_at"],
                "indexes": [
                    models.Index(fields=["subscription", "occurred_at"], name="payment_eve_subscri_2d7b91_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="CommissionRecord",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier for this record", primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("gateway_payment_id", models.CharField(blank=True, db_index=True, default="", help_text="Invoice id, used to spot the same invoice reported twice", max_length=255)),
                ("gross_cents", models.PositiveBigIntegerField()),
                ("fee_cents", models.PositiveBigIntegerField(default=0)),
                ("provider_cents", models.PositiveBigIntegerField()),
                ("platform_cents", models.PositiveBigIntegerField()),
                ("currency", models.CharField(default="usd", max_length=3)),
                ("commission_rate_bps", models.PositiveIntegerField(help_text="Rate the split was computed with (subscription snapshot)")),
                ("status", models.CharField(choices=[("posted", "Posted"), ("withheld", "Withheld")], db_index=True, default="posted", max_length=16)),
                ("payment_event", models.OneToOneField(help_text="Originating payment event (unique - at most one commission per payment)", on_delete=django.db.models.deletion.PROTECT, related_name="commission_record", to="billing.paymentevent")),
                ("provider", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="commission_records", to="accounts.account")),
                ("subscription", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="commission_records", to="billing.subscription")),
            ],
            options={
                "verbose_name": "Commission Record",
                "verbose_name_plural": "Commission Records",
                "db_table": "commission_records",
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("gross_cents", models.F("provider_cents") + models.F("platform_cents") + models.F("fee_cents"))), name="commission_split_sums_to_gross"),
                ],
            },
        ),
        migrations.CreateModel(
            name="BillingTakeover",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier for this record", primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("takeover_type", models.CharField(choices=[("billing_only", "Billing Only"), ("full_primary", "Full Primary")], max_length=20)),
                ("reason", models.CharField(choices=[("death", "Death"), ("financial", "Financial"), ("health", "Health"), ("other", "Other")], max_length=20)),
                ("reason_text", models.TextField(blank=True, default="")),
                ("state", django_fsm.FSMField(choices=[("pending", "Pending"), ("payment_confirmed", "Payment Confirmed"), ("completed", "Completed"), ("failed", "Failed")], db_index=True, default="pending", max_length=50, protected=True)),
                ("checkout_session_id", models.CharField(blank=True, db_index=True, default="", max_length=255)),
                ("checkout_url", models.URLField(blank=True, default="", max_length=2048)),
                ("gateway_subscription_id", models.CharField(blank=True, default="", max_length=255)),
                ("failure_reason", models.CharField(blank=True, default="", max_length=255)),
                ("confirmed_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("account", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="takeovers", to="accounts.account")),
                ("candidate", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="takeover_attempts", to="accounts.account")),
                ("expected_previous_payer", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="+", to="accounts.account")),
            ],
            options={
                "verbose_name": "Billing Takeover",
                "verbose_name_plural": "Billing Takeovers",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["account", "state"], name="billing_bil_account_6f1e2d_idx"),
                    models.Index(fields=["candidate", "state"], name="billing_bil_candida_0c9a4b_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="TakeoverRecord",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier for this record", primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("takeover_type", models.CharField(choices=[("billing_only", "Billing Only"), ("full_primary", "Full Primary")], max_length=20)),
                ("reason", models.CharField(choices=[("death", "Death"), ("financial", "Financial"), ("health", "Health"), ("other", "Other")], max_length=20)),
                ("reason_text", models.TextField(blank=True, default="")),
                ("gateway_subscription_id", models.CharField(blank=True, default="", max_length=255)),
                ("completed_at", models.DateTimeField()),
                ("account", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="takeover_records", to="accounts.account")),
                ("new_payer", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="+", to="accounts.account")),
                ("previous_owner", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="+", to=settings.AUTH_USER_MODEL)),
                ("previous_payer", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="+", to="accounts.account")),
                ("takeover", models.OneToOneField(on_delete=django.db.models.deletion.PROTECT, related_name="record", to="billing.billingtakeover")),
            ],
            options={
                "verbose_name": "Takeover Record",
                "verbose_name_plural": "Takeover Records",
                "db_table": "takeover_records",
                "ordering": ["-completed_at"],
            },
        ),
    ]
