from django.conf import settings
from django.db import models

from candidates.models import Candidate


class StatusChange(models.Model):
    """
    Audit trail entry recording every Candidate status transition.
    Irregular transitions (not in pipeline.transitions.ALLOWED_TRANSITIONS)
    are kept but flagged.
    """

    candidate = models.ForeignKey(
        Candidate,
        on_delete=models.CASCADE,
        related_name="status_changes",
    )
    from_status = models.CharField(max_length=30, choices=Candidate.Status.choices)
    to_status = models.CharField(max_length=30, choices=Candidate.Status.choices)
    changed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="status_changes",
    )
    note = models.TextField(blank=True, default="")
    is_irregular = models.BooleanField(default=False)
    changed_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-changed_at"]
        verbose_name = "Status Change"
        verbose_name_plural = "Status Changes"

    def __str__(self) -> str:
        return f"Candidate#{self.candidate_id}: {self.from_status} → {self.to_status}"
