import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("billing", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="billingtakeover",
            name="subscription",
            field=models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="takeovers", to="billing.subscription"),
        ),
        migrations.AddConstraint(
            model_name="commissionrecord",
            constraint=models.UniqueConstraint(condition=models.Q(("gateway_payment_id", ""), _negated=True), fields=("gateway_payment_id",), name="commission_one_per_gateway_payment"),
        ),
    ]
