"""
inbox/migrations/0001_initial.py

Initial migration: ProcessedEmail idempotency table.
"""

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("candidates", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="ProcessedEmail",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("message_id", models.CharField(max_length=255, unique=True)),
                ("sender", models.CharField(blank=True, max_length=255)),
                ("subject", models.CharField(blank=True, max_length=500)),
                ("intent", models.CharField(blank=True, max_length=30)),
                ("outcome", models.CharField(
                    choices=[("handled", "Handled"), ("skipped", "Skipped"), ("failed", "Failed")],
                    default="handled",
                    max_length=10,
                )),
                ("error", models.TextField(blank=True)),
                ("processed_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("candidate", models.ForeignKey(
                    blank=True,
                    null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name="processed_emails",
                    to="candidates.candidate",
                )),
            ],
            options={
                "verbose_name": "Processed Email",
                "verbose_name_plural": "Processed Emails",
                "ordering": ["-processed_at"],
            },
        ),
    ]
