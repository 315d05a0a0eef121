from django.conf import settings
import django.core.validators
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("billing", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="CalendarFeed",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255)),
                ("source_url", models.URLField(blank=True, default="", max_length=1024)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("owner", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="calendar_feeds", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["name", "id"],
            },
        ),
        migrations.CreateModel(
            name="Tag",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=100)),
                ("slug", models.SlugField(max_length=100)),
                ("owner", models.ForeignKey(blank=True, help_text="Empty for global tags shared by every teacher.", null=True, on_delete=django.db.models.deletion.CASCADE, related_name="tags", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["name", "id"],
                "constraints": [models.UniqueConstraint(fields=("owner", "slug"), name="uniq_tag_slug_per_owner")],
            },
        ),
        migrations.CreateModel(
            name="TagRule",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("keywords", models.JSONField(blank=True, default=list)),
                ("location_keywords", models.JSONField(blank=True, default=list)),
                ("keyword", models.CharField(blank=True, default="", max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("owner", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="tag_rules", to=settings.AUTH_USER_MODEL)),
                ("tag", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="rules", to="scheduling.tag")),
            ],
            options={
                "ordering": ["created_at", "id"],
            },
        ),
        migrations.CreateModel(
            name="Event",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("title", models.CharField(blank=True, default="", max_length=500)),
                ("description", models.TextField(blank=True, default="")),
                ("location", models.CharField(blank=True, default="", max_length=500)),
                ("start_time", models.DateTimeField(db_index=True)),
                ("end_time", models.DateTimeField(db_index=True)),
                ("students_studio", models.PositiveIntegerField(default=0, validators=[django.core.validators.MinValueValidator(0)])),
                ("students_online", models.PositiveIntegerField(default=0, validators=[django.core.validators.MinValueValidator(0)])),
                ("tags", models.JSONField(blank=True, default=list)),
                ("manually_assigned", models.BooleanField(default=False, help_text="Set when a human picked the billing entity; matching never overwrites it.")),
                ("exclude_from_matching", models.BooleanField(db_index=True, default=False)),
                ("invoice_type", models.CharField(choices=[("studio_invoice", "Studio invoice"), ("teacher_invoice", "Teacher invoice")], default="studio_invoice", max_length=20)),
                ("substitute_notes", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("billing_entity", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="events", to="billing.billingentity")),
                ("feed", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="events", to="scheduling.calendarfeed")),
                ("invoice", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="events", to="billing.invoice")),
                ("owner", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="events", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["-start_time", "-id"],
                "indexes": [
                    models.Index(fields=["owner", "billing_entity", "invoice"], name="sched_event_owner_ent_inv_idx"),
                    models.Index(fields=["owner", "feed"], name="sched_event_owner_feed_idx"),
                ],
            },
        ),
    ]
