from decimal import Decimal

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion

import billing.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="BillingEntity",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("kind", models.CharField(choices=[("studio", "Studio"), ("teacher", "Teacher")], db_index=True, default="studio", max_length=16)),
                ("recipient_type", models.CharField(choices=[("studio", "Studio"), ("internal_teacher", "Internal teacher"), ("external_teacher", "External teacher")], default="studio", max_length=20)),
                ("name", models.CharField(max_length=255)),
                ("location_match", models.JSONField(blank=True, default=list)),
                ("match_priority", models.IntegerField(default=100, help_text="Lower values are matched first when several entities share a location pattern.")),
                ("rate_config", models.JSONField(blank=True, null=True)),
                ("currency", models.CharField(default=billing.models._default_currency, max_length=3)),
                ("recipient_name", models.CharField(blank=True, default="", max_length=255)),
                ("recipient_email", models.EmailField(blank=True, default="", max_length=255)),
                ("recipient_phone", models.CharField(blank=True, default="", max_length=50)),
                ("address", models.TextField(blank=True, default="")),
                ("iban", models.CharField(blank=True, default="", max_length=34)),
                ("bic", models.CharField(blank=True, default="", max_length=11)),
                ("tax_id", models.CharField(blank=True, default="", max_length=50)),
                ("vat_id", models.CharField(blank=True, default="", max_length=50)),
                ("notes", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("owner", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="billing_entities", to=settings.AUTH_USER_MODEL)),
                ("recipient_user", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="billed_as_teacher", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["match_priority", "created_at", "id"],
                "indexes": [models.Index(fields=["owner", "kind"], name="bill_entity_owner_kind_idx")],
            },
        ),
        migrations.CreateModel(
            name="InvoiceSettings",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("invoice_prefix", models.CharField(default=billing.models._default_invoice_prefix, max_length=20)),
                ("currency", models.CharField(default=billing.models._default_currency, max_length=3)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("owner", models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name="invoice_settings", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "verbose_name": "Invoice settings",
                "verbose_name_plural": "Invoice settings",
            },
        ),
        migrations.CreateModel(
            name="Invoice",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("invoice_number", models.CharField(max_length=50)),
                ("period_start", models.DateField(blank=True, null=True)),
                ("period_end", models.DateField(blank=True, null=True)),
                ("notes", models.TextField(blank=True, default="")),
                ("amount_total", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("currency", models.CharField(default=billing.models._default_currency, max_length=3)),
                ("status", models.CharField(choices=[("draft", "Draft"), ("sent", "Sent"), ("paid", "Paid"), ("overdue", "Overdue"), ("cancelled", "Cancelled")], db_index=True, default="draft", max_length=12)),
                ("sent_at", models.DateTimeField(blank=True, null=True)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("pdf_url", models.URLField(blank=True, default="", max_length=1024)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("billing_entity", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="invoices", to="billing.billingentity")),
                ("owner", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="class_invoices", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["-created_at", "-id"],
                "constraints": [models.UniqueConstraint(fields=("owner", "invoice_number"), name="uniq_class_invoice_number_per_owner")],
            },
        ),
    ]
