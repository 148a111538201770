from django.db import models


class ProcessedEmail(models.Model):
    """
    Idempotency key for inbound Gmail messages. A message id recorded here
    is never handled again, whether or not its Gmail label was applied.
    """

    class Outcome(models.TextChoices):
        HANDLED = "handled", "Handled"
        SKIPPED = "skipped", "Skipped"
        FAILED  = "failed",  "Failed"

    message_id = models.CharField(max_length=255, unique=True)
    sender     = models.CharField(max_length=255, blank=True)
    subject    = models.CharField(max_length=500, blank=True)
    intent     = models.CharField(max_length=30, blank=True)
    outcome    = models.CharField(max_length=10, choices=Outcome.choices, default=Outcome.HANDLED)
    error      = models.TextField(blank=True)
    candidate  = models.ForeignKey(
        "candidates.Candidate",
        null=True, blank=True,
        on_delete=models.SET_NULL,
        related_name="processed_emails",
    )
    processed_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["-processed_at"]
        verbose_name = "Processed Email"
        verbose_name_plural = "Processed Emails"

    def __str__(self) -> str:
        return f"{self.message_id} ({self.intent or 'unclassified'}: {self.outcome})"
