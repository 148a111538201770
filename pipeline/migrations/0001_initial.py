"""
pipeline/migrations/0001_initial.py

Initial migration: StatusChange audit table.
"""

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models

STATUS_CHOICES = [
    ("NEW", "New"),
    ("IN_PROCESS", "In Process"),
    ("TEST_SENT", "Test Sent"),
    ("TEST_SUBMITTED", "Test Submitted"),
    ("UNDER_REVIEW", "Under Review"),
    ("INTERVIEW_PENDING", "Interview Pending"),
    ("INTERVIEW_DONE", "Interview Done"),
    ("PENDING_REJECTION", "Pending Rejection"),
    ("REJECTED", "Rejected"),
    ("HIRED", "Hired"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("candidates", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="StatusChange",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("from_status", models.CharField(choices=STATUS_CHOICES, max_length=30)),
                ("to_status", models.CharField(choices=STATUS_CHOICES, max_length=30)),
                ("note", models.TextField(blank=True, default="")),
                ("is_irregular", models.BooleanField(default=False)),
                ("changed_at", models.DateTimeField(auto_now_add=True)),
                ("candidate", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="status_changes",
                    to="candidates.candidate",
                )),
                ("changed_by", models.ForeignKey(
                    blank=True,
                    null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name="status_changes",
                    to=settings.AUTH_USER_MODEL,
                )),
            ],
            options={
                "verbose_name": "Status Change",
                "verbose_name_plural": "Status Changes",
                "ordering": ["-changed_at"],
            },
        ),
    ]
