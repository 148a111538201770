"""
inbox/services.py

Inbound-email processing for the hiring inbox.

For each unread, unprocessed message: classify intent with the AI service,
dispatch to one intent handler, then record the message id in
ProcessedEmail (the idempotency key) and apply the Gmail processed label.
Both markers are written even when classification or handling fails, so a
message is never handled twice.
"""

import logging
from collections import Counter

from django.conf import settings
from django.utils import timezone

from ai.services import AIService, IntentResult
from candidates.duplicates import DuplicateMatcher
from candidates.models import Candidate
from candidates.services import lookup_candidate_by_email, record_event, upsert_from_form_response
from hirepilot.config import PipelineConfig, get_config
from hirepilot.text_utils import extract_display_name, mask_email
from inbox.models import ProcessedEmail
from messaging.models import MessageTemplate
from messaging.services import GmailService, notify_admin, render_message
from pipeline.transitions import set_test_submitted

logger = logging.getLogger(__name__)

_T = MessageTemplate.MessageType
_EMAIL = MessageTemplate.Channel.EMAIL

HANDLED = ProcessedEmail.Outcome.HANDLED
SKIPPED = ProcessedEmail.Outcome.SKIPPED
FAILED = ProcessedEmail.Outcome.FAILED

UNKNOWN_SENDER_REPLY = (
    "Hi,\n\nThank you for your submission. We could not find an application under "
    "this email address. Please resend your test from the address you applied with.\n\n"
    "Best regards,\nThe Hiring Team"
)


class InboxProcessor:
    """
    Accepts optional ``gmail``, ``ai``, ``matcher`` and ``engine`` via
    constructor injection for testability.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        *,
        gmail: GmailService | None = None,
        ai: AIService | None = None,
        matcher: DuplicateMatcher | None = None,
        engine=None,
    ):
        self.config = config or get_config()
        self.gmail = gmail or GmailService(sandbox=self.config.sandbox_mode)
        self.ai = ai or AIService()
        self.matcher = matcher or DuplicateMatcher()
        self._engine = engine
        self._label_id = None

    @property
    def engine(self):
        if self._engine is None:
            from pipeline.engine import WorkflowEngine
            self._engine = WorkflowEngine(config=self.config)
        return self._engine

    @property
    def query(self) -> str:
        return f"is:unread -label:{settings.GMAIL_PROCESSED_LABEL} -category:social"

    # ── Entry point ────────────────────────────────────────────────────────────

    def process(self, max_messages: int | None = None) -> dict:
        messages = self.gmail.list_messages(self.query, max_results=max_messages or self.config.inbox_batch_size)
        summary = Counter()

        for message in messages:
            if ProcessedEmail.objects.filter(message_id=message["id"]).exists():
                # Recorded earlier but the label write failed; retry the label only.
                self._apply_label(message["id"])
                summary["already_processed"] += 1
                continue

            intent, outcome, candidate, error = None, SKIPPED, None, ""
            try:
                intent = self._classify(message)
                if intent is not None:
                    outcome, candidate = self._dispatch(intent, message)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "Inbox handling failed for message=%s from %s: %s",
                    message["id"], mask_email(message.get("sender_email", "")), exc,
                    exc_info=True,
                )
                outcome, error = FAILED, str(exc)
            finally:
                self._mark_processed(message, intent, outcome, candidate, error)
            summary[outcome] += 1

        if messages:
            logger.info("Inbox processed: %s", dict(summary))
        return dict(summary)

    # ── Classification / dispatch ──────────────────────────────────────────────

    def _classify(self, message: dict) -> IntentResult | None:
        body = (message.get("body") or "")[: self.config.inbox_body_limit]
        message["body"] = body
        intent = self.ai.classify_intent(message.get("subject", ""), body, bool(message.get("attachments")))
        if intent is None:
            logger.warning("Intent unclassified for message=%s; no automated reply", message["id"])
        else:
            logger.info("Message %s classified as %s (%.2f)", message["id"], intent.intent, intent.confidence)
        return intent

    def _dispatch(self, intent: IntentResult, message: dict) -> tuple[str, Candidate | None]:
        handler = {
            "TEST_SUBMISSION": self.handle_test_submission,
            "NEW_APPLICATION": self.handle_new_application,
            "FORM_RESPONSE": self.handle_form_response,
            "FOLLOWUP": self.handle_followup,
            "QUESTION": self.handle_question,
            "ESCALATE": self.handle_escalation,
        }.get(intent.intent)
        if handler is None:
            return SKIPPED, None
        return handler(message, intent)

    # ── Markers ────────────────────────────────────────────────────────────────

    def _mark_processed(self, message, intent, outcome, candidate, error) -> None:
        try:
            ProcessedEmail.objects.get_or_create(
                message_id=message["id"],
                defaults={
                    "sender": (message.get("sender_email") or "")[:255],
                    "subject": (message.get("subject") or "")[:500],
                    "intent": intent.intent if intent else "",
                    "outcome": outcome,
                    "error": error,
                    "candidate": candidate if candidate is not None and candidate.pk else None,
                },
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("Could not record processed message %s: %s", message["id"], exc, exc_info=True)
        self._apply_label(message["id"])

    def _apply_label(self, message_id: str) -> None:
        if self._label_id is None:
            self._label_id = self.gmail.get_or_create_label(settings.GMAIL_PROCESSED_LABEL)
        if self._label_id:
            self.gmail.add_label(message_id, self._label_id)

    # ── Helpers ────────────────────────────────────────────────────────────────

    def _reply_template(self, message: dict, message_type: str, **context) -> None:
        if not context.get("name"):
            context["name"] = extract_display_name(message.get("sender", "")) or "there"
        _subject, body = render_message(message_type, _EMAIL, **context)
        self.gmail.reply(message, body)

    # ── Intent handlers ────────────────────────────────────────────────────────

    def handle_test_submission(self, message: dict, intent: IntentResult):
        candidate = lookup_candidate_by_email(message["sender_email"])
        if candidate is None:
            self.gmail.reply(message, UNKNOWN_SENDER_REPLY)
            return SKIPPED, None

        attachments = message.get("attachments") or []
        record_event(
            candidate,
            "TEST_RECEIVED_EMAIL",
            subject=message.get("subject", ""),
            attachments=[a["name"] for a in attachments],
        )
        if attachments:
            notify_admin(
                f"Test submission: {candidate.name} — {candidate.role}",
                f"{candidate.name} emailed their test.\n\nSubject: {message.get('subject', '')}\n\n{message.get('body', '')}",
                attachments=[{"name": a["name"], "data": a["data"]} for a in attachments],
                gmail=self.gmail,
                config=self.config,
            )

        candidate.test_submitted_at = timezone.now()
        candidate.save(update_fields=["test_submitted_at", "updated_at"])
        set_test_submitted(candidate, note="Test received by email", engine=self.engine, config=self.config)

        self._reply_template(message, _T.TEST_ACK, name=candidate.name, role=candidate.role)
        return HANDLED, candidate

    def handle_new_application(self, message: dict, intent: IntentResult):
        sender_email = message["sender_email"]
        name_hint = intent.name or extract_display_name(message.get("sender", ""))

        if self.config.duplicate_check:
            match = self.matcher.check(sender_email, "", name_hint)
            if match.is_duplicate:
                self.gmail.reply(message, DuplicateMatcher.response_text(match))
                record_event(match.candidate, "DUPLICATE_APPLICATION", matchType=match.match_type.value,
                             similarity=round(match.similarity, 3), sender=sender_email)
                return SKIPPED, match.candidate
        else:
            existing = lookup_candidate_by_email(sender_email)
            if existing is not None:
                self._reply_template(message, _T.STATUS_REPLY, name=existing.name, role=existing.role,
                                     status=existing.get_status_display())
                return SKIPPED, existing

        info = self.ai.extract_candidate_info(message.get("body", ""), message.get("subject", ""))
        if info is None:
            logger.error("Candidate extraction failed for message=%s", message["id"])
            return FAILED, None

        verdict = self.ai.detect_spam(message.get("body", ""), message.get("subject", ""))
        if verdict.is_spam and verdict.confidence > self.config.spam_confidence_threshold:
            record_event(None, "SPAM_BLOCKED", email=sender_email, confidence=verdict.confidence,
                         reasons=verdict.reasons)
            logger.info("Spam application blocked from %s", mask_email(sender_email))
            return SKIPPED, None

        role = info.get("role") or intent.role or ""
        candidate = Candidate.objects.create(
            name=info.get("name") or name_hint or sender_email,
            email=(info.get("email") or sender_email).lower(),
            phone=info.get("phone") or "",
            role=role,
            department=self.config.department_for(role),
            portfolio_url=info.get("portfolioUrl") or "",
            source=Candidate.Source.EMAIL,
        )
        record_event(candidate, "APPLICATION_EMAIL", subject=message.get("subject", ""),
                     portfolioLinks=info.get("portfolioLinks", []))
        self.engine.dispatch(candidate)

        self._reply_template(message, _T.APPLICATION_ACK, name=candidate.name, role=role or "open",
                             form_link=self.config.application_form_url)
        return HANDLED, candidate

    def handle_form_response(self, message: dict, intent: IntentResult):
        data = self.ai.extract_form_response(message.get("body", ""), message["sender_email"])
        if data is None:
            logger.error("Form extraction failed for message=%s", message["id"])
            return FAILED, None

        candidate, created = upsert_from_form_response(data, source=Candidate.Source.EMAIL)
        record_event(candidate, "FORM_RESPONSE", created=created)
        if created:
            self.engine.dispatch(candidate)
        return HANDLED, candidate

    def handle_followup(self, message: dict, intent: IntentResult):
        candidate = lookup_candidate_by_email(message["sender_email"])
        if candidate is None:
            # Strangers get no reply.
            return SKIPPED, None
        self._reply_template(message, _T.STATUS_REPLY, name=candidate.name, role=candidate.role,
                             status=candidate.get_status_display())
        record_event(candidate, "FOLLOWUP_REPLIED", status=candidate.status)
        return HANDLED, candidate

    def handle_question(self, message: dict, intent: IntentResult):
        candidate = lookup_candidate_by_email(message["sender_email"])
        context = {
            "name": candidate.name if candidate else intent.name,
            "role": candidate.role if candidate else intent.role,
            "status": candidate.get_status_display() if candidate else None,
        }
        reply = self.ai.suggest_reply(message.get("body", ""), context)
        if reply:
            self.gmail.reply(message, reply)
            record_event(candidate, "QUESTION_ANSWERED", email=message["sender_email"])
            return HANDLED, candidate

        notify_admin(
            f"Question needs a reply: {message.get('subject', '')}",
            f"From: {message.get('sender', '')}\n\n{message.get('body', '')}",
            gmail=self.gmail,
            config=self.config,
        )
        record_event(candidate, "QUESTION_ESCALATED", email=message["sender_email"])
        return HANDLED, candidate

    def handle_escalation(self, message: dict, intent: IntentResult):
        candidate = lookup_candidate_by_email(message["sender_email"])
        attachments = message.get("attachments") or []
        notify_admin(
            f"Escalation: {message.get('subject', '')}",
            f"From: {message.get('sender', '')}\n\n{message.get('body', '')}",
            attachments=[{"name": a["name"], "data": a["data"]} for a in attachments] or None,
            gmail=self.gmail,
            config=self.config,
        )
        extra = {"name": candidate.name} if candidate else {}
        self._reply_template(message, _T.ESCALATION_ACK, **extra)
        record_event(candidate, "ESCALATED", email=message["sender_email"])
        return HANDLED, candidate


def process_inbox(max_messages: int | None = None) -> dict:
    return InboxProcessor().process(max_messages)
