"""
candidates/migrations/0002_candidate_test_submission.py

Store submitted test files separately from the application portfolio.
"""

from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("candidates", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="candidate",
            name="test_submission_url",
            field=models.URLField(blank=True, max_length=500),
        ),
        migrations.AddField(
            model_name="candidate",
            name="test_files",
            field=models.TextField(blank=True),
        ),
    ]
