import uuid

import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models

import accounts.managers
import accounts.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("auth", "0012_alter_user_first_name_max_length"),
    ]

    operations = [
        migrations.CreateModel(
            name="User",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("password", models.CharField(max_length=128, verbose_name="password")),
                ("last_login", models.DateTimeField(blank=True, null=True, verbose_name="last login")),
                ("is_superuser", models.BooleanField(default=False, help_text="Designates that this user has all permissions without explicitly assigning them.", verbose_name="superuser status")),
                ("email", models.EmailField(help_text="User's email address (primary identifier)", max_length=254, unique=True)),
                ("is_active", models.BooleanField(default=True, help_text="Whether this user can log in. Deselect instead of deleting.")),
                ("is_staff", models.BooleanField(default=False, help_text="Whether the user can access the admin site.")),
                ("date_joined", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("groups", models.ManyToManyField(blank=True, help_text="The groups this user belongs to. A user will get all permissions granted to each of their groups.", related_name="user_set", related_query_name="user", to="auth.group", verbose_name="groups")),
                ("user_permissions", models.ManyToManyField(blank=True, help_text="Specific permissions for this user.", related_name="user_set", related_query_name="user", to="auth.permission", verbose_name="user permissions")),
            ],
            options={
                "verbose_name": "user",
                "verbose_name_plural": "users",
                "ordering": ["-date_joined"],
            },
            managers=[
                ("objects", accounts.managers.UserManager()),
            ],
        ),
        migrations.CreateModel(
            name="Account",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier for this record", primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("kind", models.CharField(choices=[("provider", "Provider"), ("subscriber", "Subscriber")], db_index=True, max_length=20)),
                ("display_name", models.CharField(blank=True, max_length=200)),
                ("gateway_customer_id", models.CharField(blank=True, db_index=True, help_text="Gateway customer id (cus_xxx)", max_length=255)),
                ("gateway_connected_account_id", models.CharField(blank=True, help_text="Gateway connected account id for provider payouts (acct_xxx)", max_length=255)),
                ("commission_rate_bps", models.PositiveIntegerField(default=accounts.models.default_commission_rate_bps, help_text="Provider share of net revenue in basis points (providers only)", validators=[django.core.validators.MinValueValidator(0), django.core.validators.MaxValueValidator(10000)])),
                ("status", models.CharField(choices=[("active", "Active"), ("suspended", "Suspended"), ("deactivated", "Deactivated")], db_index=True, default="active", max_length=20)),
                ("suspended_at", models.DateTimeField(blank=True, null=True)),
                ("deactivated_at", models.DateTimeField(blank=True, null=True)),
                ("payment_overdue_since", models.DateTimeField(blank=True, help_text="When the oldest unresolved charge failure happened", null=True)),
                ("billing_payer_since", models.DateTimeField(blank=True, null=True)),
                ("billing_payer", models.ForeignKey(blank=True, help_text="Account that took over billing (unset means self-paying)", null=True, on_delete=django.db.models.deletion.PROTECT, related_name="paid_accounts", to="accounts.account")),
                ("original_owner", models.ForeignKey(blank=True, help_text="Owner before the first full ownership transfer", null=True, on_delete=django.db.models.deletion.PROTECT, related_name="+", to=settings.AUTH_USER_MODEL)),
                ("user", models.ForeignKey(help_text="Current owner of this account", on_delete=django.db.models.deletion.PROTECT, related_name="accounts", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["kind", "status"], name="accounts_ac_kind_3f1a2b_idx"),
                    models.Index(fields=["status", "payment_overdue_since"], name="accounts_ac_status_8c4d1e_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(commission_rate_bps__lte=10000), name="account_commission_rate_bps_range"),
                ],
            },
        ),
    ]
