"""
messaging/migrations/0001_initial.py

Initial migration: MessageTemplate and RetryItem tables.
"""

import django.db.models.deletion
from django.db import migrations, models

MESSAGE_TYPE_CHOICES = [
    ("welcome", "Welcome"),
    ("test_link", "Test Link"),
    ("test_reminder", "Test Reminder"),
    ("interview_schedule", "Interview Schedule"),
    ("interview_confirmation", "Interview Confirmation"),
    ("portal_link", "Portal Link"),
    ("rejection", "Rejection"),
    ("application_ack", "Application Acknowledgement"),
    ("test_ack", "Test Acknowledgement"),
    ("status_reply", "Status Reply"),
    ("escalation_ack", "Escalation Acknowledgement"),
]

CHANNEL_CHOICES = [("email", "Email"), ("whatsapp", "WhatsApp")]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("candidates", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="MessageTemplate",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("message_type", models.CharField(choices=MESSAGE_TYPE_CHOICES, db_index=True, max_length=30)),
                ("channel", models.CharField(choices=CHANNEL_CHOICES, db_index=True, max_length=10)),
                ("subject", models.CharField(blank=True, max_length=255)),
                ("body", models.TextField()),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "Message Template",
                "verbose_name_plural": "Message Templates",
                "ordering": ["message_type", "channel"],
                "unique_together": {("message_type", "channel")},
            },
        ),
        migrations.CreateModel(
            name="RetryItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("channel", models.CharField(choices=CHANNEL_CHOICES, max_length=10)),
                ("destination", models.CharField(max_length=254)),
                ("message_type", models.CharField(choices=MESSAGE_TYPE_CHOICES, max_length=30)),
                ("params", models.JSONField(blank=True, default=dict)),
                ("status", models.CharField(
                    choices=[("pending", "Pending"), ("sent", "Sent"), ("failed", "Failed")],
                    db_index=True,
                    default="pending",
                    max_length=10,
                )),
                ("attempts", models.PositiveSmallIntegerField(default=0)),
                ("last_error", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("sent_at", models.DateTimeField(blank=True, null=True)),
                ("candidate", models.ForeignKey(
                    blank=True,
                    null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name="retry_items",
                    to="candidates.candidate",
                )),
            ],
            options={
                "verbose_name": "Retry Item",
                "verbose_name_plural": "Retry Items",
                "ordering": ["created_at", "pk"],
            },
        ),
    ]
