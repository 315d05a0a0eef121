from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("billing", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="invoicesettings",
            name="sequence_period",
            field=models.CharField(blank=True, default="", help_text="YYYYMM of the last number issued.", max_length=6),
        ),
        migrations.AddField(
            model_name="invoicesettings",
            name="sequence_last",
            field=models.PositiveIntegerField(default=0),
        ),
    ]
