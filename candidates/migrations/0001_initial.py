"""
candidates/migrations/0001_initial.py

Initial migration: Candidate and TimelineEvent tables.
"""

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Candidate",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=300)),
                ("email", models.CharField(blank=True, db_index=True, max_length=254)),
                ("phone", models.CharField(blank=True, db_index=True, max_length=50)),
                ("city", models.CharField(blank=True, max_length=120)),
                ("role", models.CharField(blank=True, max_length=200)),
                ("department", models.CharField(blank=True, max_length=50)),
                ("status", models.CharField(
                    choices=[
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
                    ],
                    db_index=True,
                    default="NEW",
                    max_length=30,
                )),
                ("source", models.CharField(
                    choices=[("form", "Application Form"), ("email", "Email"), ("manual", "Manual")],
                    default="manual",
                    max_length=20,
                )),
                ("degree", models.CharField(blank=True, max_length=255)),
                ("start_date", models.CharField(blank=True, max_length=100)),
                ("tenure", models.CharField(blank=True, max_length=100)),
                ("salary_expected", models.CharField(blank=True, max_length=100)),
                ("salary_last", models.CharField(blank=True, max_length=100)),
                ("experience", models.CharField(blank=True, max_length=255)),
                ("hindi_proficient", models.CharField(blank=True, max_length=50)),
                ("health_notes", models.TextField(blank=True)),
                ("previous_application", models.CharField(blank=True, max_length=255)),
                ("willing_to_relocate", models.CharField(blank=True, max_length=50)),
                ("test_availability", models.CharField(blank=True, max_length=255)),
                ("portfolio_url", models.URLField(blank=True, max_length=500)),
                ("cv_url", models.URLField(blank=True, max_length=500)),
                ("test_sent_at", models.DateTimeField(blank=True, null=True)),
                ("test_submitted_at", models.DateTimeField(blank=True, null=True)),
                ("portfolio_score", models.FloatField(blank=True, null=True)),
                ("portfolio_feedback", models.TextField(blank=True)),
                ("interview_at", models.DateTimeField(blank=True, null=True)),
                ("calendar_event_id", models.CharField(blank=True, max_length=255)),
                ("log", models.TextField(blank=True)),
                ("portal_token", models.CharField(blank=True, max_length=64, null=True, unique=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True, db_index=True)),
            ],
            options={
                "verbose_name": "Candidate",
                "verbose_name_plural": "Candidates",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="TimelineEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("email", models.CharField(db_index=True, max_length=254)),
                ("event_type", models.CharField(db_index=True, max_length=50)),
                ("payload", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("candidate", models.ForeignKey(
                    blank=True,
                    null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name="timeline",
                    to="candidates.candidate",
                )),
            ],
            options={
                "verbose_name": "Timeline Event",
                "verbose_name_plural": "Timeline Events",
                "ordering": ["created_at", "pk"],
            },
        ),
    ]
