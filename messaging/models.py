from django.db import models


class MessageTemplate(models.Model):
    """
    Editable body templates for every outbound message type × channel
    combination. Used by messaging.services as the primary source of
    message text; falls back to hardcoded defaults if no active template
    is found for a given combination.

    Available placeholders:
      {name} {role} {company} {test_link} {time_limit} {date}
      {portal_link} {form_link} {status} {message}
    """

    class MessageType(models.TextChoices):
        WELCOME                = "welcome",                "Welcome"
        TEST_LINK              = "test_link",              "Test Link"
        TEST_REMINDER          = "test_reminder",          "Test Reminder"
        INTERVIEW_SCHEDULE     = "interview_schedule",     "Interview Schedule"
        INTERVIEW_CONFIRMATION = "interview_confirmation", "Interview Confirmation"
        PORTAL_LINK            = "portal_link",            "Portal Link"
        REJECTION              = "rejection",              "Rejection"
        APPLICATION_ACK        = "application_ack",        "Application Acknowledgement"
        TEST_ACK               = "test_ack",               "Test Acknowledgement"
        STATUS_REPLY           = "status_reply",           "Status Reply"
        ESCALATION_ACK         = "escalation_ack",         "Escalation Acknowledgement"

    class Channel(models.TextChoices):
        EMAIL    = "email",    "Email"
        WHATSAPP = "whatsapp", "WhatsApp"

    message_type = models.CharField(max_length=30, choices=MessageType.choices, db_index=True)
    channel      = models.CharField(max_length=10, choices=Channel.choices,     db_index=True)

    # Email-only subject line; ignored for WhatsApp.
    subject = models.CharField(max_length=255, blank=True)
    body    = models.TextField()

    is_active  = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = [("message_type", "channel")]
        ordering        = ["message_type", "channel"]
        verbose_name    = "Message Template"
        verbose_name_plural = "Message Templates"

    def __str__(self) -> str:
        return f"{self.get_message_type_display()} / {self.get_channel_display()}"

    PLACEHOLDERS = (
        "name", "role", "company", "test_link", "time_limit",
        "date", "portal_link", "form_link", "status", "message",
    )

    @classmethod
    def fill(cls, text: str, context: dict) -> str:
        """Substitute known placeholders; unknown braces are left untouched."""
        for key in cls.PLACEHOLDERS:
            text = text.replace("{" + key + "}", str(context.get(key, "") or ""))
        return text

    def render(self, **context) -> str:
        return self.fill(self.body, context)

    def render_subject(self, **context) -> str:
        return self.fill(self.subject, context)


class RetryItem(models.Model):
    """
    Durable queue of failed outbound notifications, replayed by the
    background cycle (messaging.retry.drain).
    """

    class Channel(models.TextChoices):
        EMAIL    = "email",    "Email"
        WHATSAPP = "whatsapp", "WhatsApp"

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        SENT    = "sent",    "Sent"
        FAILED  = "failed",  "Failed"

    candidate = models.ForeignKey(
        "candidates.Candidate",
        null=True, blank=True,
        on_delete=models.SET_NULL,
        related_name="retry_items",
    )
    channel      = models.CharField(max_length=10, choices=Channel.choices)
    destination  = models.CharField(max_length=254)
    message_type = models.CharField(max_length=30, choices=MessageTemplate.MessageType.choices)
    params       = models.JSONField(default=dict, blank=True)

    status     = models.CharField(max_length=10, choices=Status.choices, default=Status.PENDING, db_index=True)
    attempts   = models.PositiveSmallIntegerField(default=0)
    last_error = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    sent_at    = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["created_at", "pk"]
        verbose_name = "Retry Item"
        verbose_name_plural = "Retry Items"

    def __str__(self) -> str:
        return f"{self.channel}:{self.message_type} → {self.destination} [{self.status}]"
