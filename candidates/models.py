from django.db import models


class Candidate(models.Model):
    """
    One logical record per applicant. Owns the pipeline status; status
    changes go through change_status() (or pipeline.transitions) so every
    transition is audited.
    """

    class Status(models.TextChoices):
        # ── Intake ────────────────────────────────────────────────────────────
        NEW = "NEW", "New"
        IN_PROCESS = "IN_PROCESS", "In Process"

        # ── Test ──────────────────────────────────────────────────────────────
        TEST_SENT = "TEST_SENT", "Test Sent"
        TEST_SUBMITTED = "TEST_SUBMITTED", "Test Submitted"
        UNDER_REVIEW = "UNDER_REVIEW", "Under Review"

        # ── Interview ─────────────────────────────────────────────────────────
        INTERVIEW_PENDING = "INTERVIEW_PENDING", "Interview Pending"
        INTERVIEW_DONE = "INTERVIEW_DONE", "Interview Done"

        # ── Outcome ───────────────────────────────────────────────────────────
        PENDING_REJECTION = "PENDING_REJECTION", "Pending Rejection"
        REJECTED = "REJECTED", "Rejected"
        HIRED = "HIRED", "Hired"

    class Source(models.TextChoices):
        FORM = "form", "Application Form"
        EMAIL = "email", "Email"
        MANUAL = "manual", "Manual"

    # Identity & contact
    name = models.CharField(max_length=300)
    email = models.CharField(max_length=254, blank=True, db_index=True)
    phone = models.CharField(max_length=50, blank=True, db_index=True)
    city = models.CharField(max_length=120, blank=True)

    role = models.CharField(max_length=200, blank=True)
    department = models.CharField(max_length=50, blank=True)

    status = models.CharField(
        max_length=30,
        choices=Status.choices,
        default=Status.NEW,
        db_index=True,
    )
    source = models.CharField(max_length=20, choices=Source.choices, default=Source.MANUAL)

    # Application form answers
    degree = models.CharField(max_length=255, blank=True)
    start_date = models.CharField(max_length=100, blank=True)
    tenure = models.CharField(max_length=100, blank=True)
    salary_expected = models.CharField(max_length=100, blank=True)
    salary_last = models.CharField(max_length=100, blank=True)
    experience = models.CharField(max_length=255, blank=True)
    hindi_proficient = models.CharField(max_length=50, blank=True)
    health_notes = models.TextField(blank=True)
    previous_application = models.CharField(max_length=255, blank=True)
    willing_to_relocate = models.CharField(max_length=50, blank=True)
    # Free text from the form ("any weekday after 5pm"), distinct from interview_at
    test_availability = models.CharField(max_length=255, blank=True)

    # Links
    portfolio_url = models.URLField(max_length=500, blank=True)
    cv_url = models.URLField(max_length=500, blank=True)
    # Submitted test: the file that gets scored, plus every uploaded link joined by " | "
    test_submission_url = models.URLField(max_length=500, blank=True)
    test_files = models.TextField(blank=True)

    # Test lifecycle (test_submitted_at >= test_sent_at when both are set)
    test_sent_at = models.DateTimeField(null=True, blank=True)
    test_submitted_at = models.DateTimeField(null=True, blank=True)

    # AI portfolio review
    portfolio_score = models.FloatField(null=True, blank=True)
    portfolio_feedback = models.TextField(blank=True)

    # Interview
    interview_at = models.DateTimeField(null=True, blank=True)
    calendar_event_id = models.CharField(max_length=255, blank=True)

    # Human-readable last action
    log = models.TextField(blank=True)

    portal_token = models.CharField(max_length=64, null=True, blank=True, unique=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True, db_index=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Candidate"
        verbose_name_plural = "Candidates"

    def __str__(self) -> str:
        return f"{self.name} <{self.email}> [{self.status}]"

    def write_log(self, message: str) -> None:
        """Overwrite the last-action log field."""
        self.log = message
        self.save(update_fields=["log", "updated_at"])

    def change_status(self, new_status: str, changed_by=None, note: str = "", irregular: bool = False) -> bool:
        """
        Transition status and create an audit StatusChange record.
        Returns False (and writes nothing) when the status is unchanged.
        """
        from pipeline.models import StatusChange

        old_status = self.status
        if old_status == new_status:
            return False
        self.status = new_status
        self.save(update_fields=["status", "updated_at"])
        StatusChange.objects.create(
            candidate=self,
            from_status=old_status,
            to_status=new_status,
            changed_by=changed_by,
            note=note,
            is_irregular=irregular,
        )
        return True


class TimelineEvent(models.Model):
    """
    Append-only audit trail: one row per action taken for a candidate.
    Rows are never updated or deleted.
    """

    candidate = models.ForeignKey(
        Candidate,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="timeline",
    )
    email = models.CharField(max_length=254, db_index=True)
    event_type = models.CharField(max_length=50, db_index=True)
    payload = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["created_at", "pk"]
        verbose_name = "Timeline Event"
        verbose_name_plural = "Timeline Events"

    def __str__(self) -> str:
        return f"{self.email}: {self.event_type}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Timeline events are append-only.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Timeline events are append-only.")

