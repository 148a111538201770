"""
pipeline/handlers.py

One handler per actionable candidate status. Each handler validates what
it needs, performs its notifications, and writes the candidate's log
field plus a timeline event.

Notification failures are caught here and written to the candidate log
(or queued on the retry queue); only unexpected errors reach the
WorkflowEngine dispatch boundary.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from django.utils import timezone

from ai.services import AIService
from candidates.models import Candidate
from candidates.services import record_event
from hirepilot.config import PipelineConfig, get_config
from hirepilot.text_utils import format_local
from interviews.services import CalendarError, CalendarService
from messaging import retry
from messaging.models import MessageTemplate
from messaging.services import (
    GmailService,
    WhatsAppService,
    notify_admin,
    notify_team,
    render_html,
    render_message,
)
from pipeline.transitions import is_default_note, set_under_review

logger = logging.getLogger(__name__)

_T = MessageTemplate.MessageType
_WA = MessageTemplate.Channel.WHATSAPP
_EMAIL = MessageTemplate.Channel.EMAIL

NO_INTERVIEW_DATE = "TBD - Check your email for booking link"


@dataclass(frozen=True)
class SubmissionTiming:
    hours_taken: float
    limit_hours: float

    @property
    def on_time(self) -> bool:
        return self.hours_taken <= self.limit_hours

    def describe(self) -> str:
        label = "On time" if self.on_time else "LATE"
        return f"{label}: submitted in {self.hours_taken:.1f}h (limit: {self.limit_hours:g}h)"

    @property
    def hours_rounded(self) -> float:
        return round(self.hours_taken, 1)


def evaluate_submission_timing(
    sent_at: datetime | None,
    submitted_at: datetime | None,
    limit_hours: float,
) -> SubmissionTiming | None:
    """Elapsed hours between test sent and submitted; rounding is for display only."""
    if sent_at is None or submitted_at is None:
        return None
    hours = max((submitted_at - sent_at).total_seconds() / 3600, 0.0)
    return SubmissionTiming(hours, float(limit_hours))


class StatusHandlers:
    """
    Services are injected for testability; defaults are built lazily so
    constructing the handlers never touches an external API.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        *,
        whatsapp: WhatsAppService | None = None,
        gmail: GmailService | None = None,
        ai: AIService | None = None,
        calendar: CalendarService | None = None,
    ):
        self.config = config or get_config()
        self._whatsapp = whatsapp
        self._gmail = gmail
        self._ai = ai
        self._calendar = calendar

    @property
    def whatsapp(self) -> WhatsAppService:
        if self._whatsapp is None:
            self._whatsapp = WhatsAppService(sandbox=self.config.sandbox_mode)
        return self._whatsapp

    @property
    def gmail(self) -> GmailService:
        if self._gmail is None:
            self._gmail = GmailService(sandbox=self.config.sandbox_mode)
        return self._gmail

    @property
    def ai(self) -> AIService:
        if self._ai is None:
            self._ai = AIService()
        return self._ai

    @property
    def calendar(self) -> CalendarService:
        if self._calendar is None:
            self._calendar = CalendarService(config=self.config)
        return self._calendar

    # ── Helpers ────────────────────────────────────────────────────────────────

    def _context(self, candidate: Candidate, **extra) -> dict:
        return {
            "name": candidate.name or "there",
            "role": candidate.role or "open",
            "company": self.config.company_name,
            **extra,
        }

    def _send_whatsapp(self, candidate: Candidate, message_type: str, **extra) -> tuple[bool, str]:
        _subject, body = render_message(message_type, _WA, **self._context(candidate, **extra))
        return self.whatsapp.send_text(candidate.phone, body)

    @staticmethod
    def _skip_without_phone(candidate: Candidate, action: str) -> bool:
        if candidate.phone:
            return False
        logger.warning("Candidate %s has no phone — %s skipped", candidate.pk, action)
        candidate.write_log(f"No phone on file: {action} not sent")
        return True

    # ── NEW ────────────────────────────────────────────────────────────────────

    def handle_new(self, candidate: Candidate) -> None:
        record_event(candidate, "APPLICATION_RECEIVED", role=candidate.role, source=candidate.source)
        body = (
            f"Name: {candidate.name}\n"
            f"Email: {candidate.email}\n"
            f"Phone: {candidate.phone}\n"
            f"Role: {candidate.role} ({candidate.department})\n"
            f"Portfolio: {candidate.portfolio_url or '—'}\n"
            f"Test availability: {candidate.test_availability or '—'}"
        )
        notify_admin(
            f"New application: {candidate.name} — {candidate.role}",
            body,
            html_body=render_html("New application", body),
            gmail=self.gmail,
            config=self.config,
        )
        candidate.write_log("Application logged")

    # ── IN_PROCESS ─────────────────────────────────────────────────────────────

    def handle_in_process(self, candidate: Candidate) -> None:
        if self._skip_without_phone(candidate, "welcome message"):
            return
        ok, detail = self._send_whatsapp(candidate, _T.WELCOME)
        if ok:
            candidate.write_log("Welcome message sent")
            record_event(candidate, "WELCOME_SENT")
        else:
            candidate.write_log(f"Welcome message failed: {detail}")

    # ── TEST_SENT ──────────────────────────────────────────────────────────────

    def handle_test_sent(self, candidate: Candidate) -> None:
        if self._skip_without_phone(candidate, "test link"):
            return

        limit = self.config.time_limit_for(candidate.role, candidate.department)
        link = self.config.test_link_for(candidate.role, candidate.department)
        if not link:
            logger.warning("No test link configured for role=%r department=%r", candidate.role, candidate.department)
            candidate.write_log(f"No test link configured for {candidate.role or 'this role'}")
            return

        ok, detail = self._send_whatsapp(candidate, _T.TEST_LINK, test_link=link, time_limit=f"{limit:g}")
        if not ok:
            candidate.write_log(f"Test link failed: {detail}")
            return

        candidate.test_sent_at = timezone.now()
        candidate.log = f"Test sent ({limit:g}h limit)"
        candidate.save(update_fields=["test_sent_at", "log", "updated_at"])
        record_event(candidate, "TEST_SENT", testLink=link, timeLimitHours=limit)

    # ── TEST_SUBMITTED ─────────────────────────────────────────────────────────

    def handle_test_submitted(self, candidate: Candidate) -> None:
        now = timezone.now()
        if candidate.test_submitted_at is None or (
            candidate.test_sent_at and candidate.test_submitted_at < candidate.test_sent_at
        ):
            candidate.test_submitted_at = now

        limit = self.config.time_limit_for(candidate.role, candidate.department)
        timing = evaluate_submission_timing(candidate.test_sent_at, candidate.test_submitted_at, limit)
        candidate.log = timing.describe() if timing else "Test submitted (send time unknown)"
        candidate.save(update_fields=["test_submitted_at", "log", "updated_at"])
        record_event(
            candidate,
            "TEST_SUBMITTED",
            hoursTaken=timing.hours_rounded if timing else None,
            limitHours=limit,
            onTime=timing.on_time if timing else None,
        )

        score = None
        score_url = candidate.test_submission_url or candidate.portfolio_url
        if self.config.auto_portfolio_scoring and score_url:
            score = self.ai.score_portfolio(score_url, candidate.role)
            if score.error:
                logger.warning("Portfolio scoring failed for candidate=%s: %s", candidate.pk, score.error)
                record_event(candidate, "PORTFOLIO_SCORE_FAILED", url=score_url, error=score.error)
            else:
                candidate.portfolio_score = score.score
                candidate.portfolio_feedback = score.feedback_text()
                candidate.save(update_fields=["portfolio_score", "portfolio_feedback", "updated_at"])
                record_event(
                    candidate,
                    "PORTFOLIO_SCORED",
                    url=score_url,
                    score=score.score,
                    recommendation=score.recommendation,
                )

        lines = [
            f"{candidate.name} ({candidate.role}) submitted their test.",
            candidate.log,
            f"Test files: {candidate.test_submission_url or '—'}",
            f"Portfolio: {candidate.portfolio_url or '—'}",
        ]
        if score is not None and score.error:
            lines.append("AI score: unavailable, manual review required")
        elif score is not None:
            lines.append(f"AI score: {score.score:g}/10 ({score.recommendation}) — {score.summary}")
        notify_team(f"Test submitted: {candidate.name}", "\n".join(lines), gmail=self.gmail, config=self.config)

        set_under_review(candidate, note="Auto-advanced after test submission", dispatch=False, config=self.config)

    # ── INTERVIEW_PENDING ──────────────────────────────────────────────────────

    def handle_interview_pending(self, candidate: Candidate) -> None:
        if self.config.calendar_integration and candidate.interview_at:
            self._sync_calendar_event(candidate)

        if not candidate.interview_at and self.config.portal_enabled:
            from portal.services import send_portal_link

            send_portal_link(candidate, gmail=self.gmail, config=self.config)

        if self._skip_without_phone(candidate, "interview schedule"):
            return

        date_str = format_local(candidate.interview_at, self.config.tz) if candidate.interview_at else NO_INTERVIEW_DATE
        ok, detail = self._send_whatsapp(candidate, _T.INTERVIEW_SCHEDULE, date=date_str)
        if ok:
            candidate.write_log(f"Interview schedule sent ({date_str})")
            record_event(candidate, "INTERVIEW_SCHEDULE_SENT", date=date_str)
            return

        candidate.write_log(f"Interview schedule failed: {detail} (queued for retry)")
        retry.enqueue(
            MessageTemplate.Channel.WHATSAPP,
            candidate.phone,
            _T.INTERVIEW_SCHEDULE,
            self._context(candidate, date=date_str),
            detail,
            candidate=candidate,
        )

    def _sync_calendar_event(self, candidate: Candidate) -> None:
        try:
            if candidate.calendar_event_id:
                self.calendar.reschedule_event(candidate.calendar_event_id, candidate.interview_at)
                return
            description = ""
            if candidate.portfolio_feedback:
                questions = self.ai.generate_interview_questions(candidate.role, candidate.portfolio_feedback)
                description = "Suggested questions:\n" + "\n".join(f"- {q}" for q in questions)
            event_id = self.calendar.schedule_interview(candidate, description=description)
        except CalendarError as exc:
            logger.error("Calendar event failed for candidate=%s: %s", candidate.pk, exc)
            candidate.write_log(f"Calendar event failed: {exc}")
            return

        candidate.calendar_event_id = event_id
        candidate.save(update_fields=["calendar_event_id", "updated_at"])
        record_event(candidate, "CALENDAR_EVENT_CREATED", eventId=event_id)

    # ── PENDING_REJECTION ──────────────────────────────────────────────────────

    def handle_pending_rejection(self, candidate: Candidate) -> None:
        reject_at = timezone.now() + timedelta(hours=self.config.rejection_delay_hours)
        candidate.write_log(f"Will reject at {format_local(reject_at, self.config.tz)}")
        record_event(candidate, "REJECTION_QUEUED", rejectAt=reject_at.isoformat())

    # ── REJECTED ───────────────────────────────────────────────────────────────

    @staticmethod
    def _rejection_reason(candidate: Candidate) -> str:
        """Most recent note a person typed on a transition, if any."""
        notes = (
            candidate.status_changes
            .filter(changed_by__isnull=False)
            .order_by("-changed_at", "-pk")
            .values_list("note", flat=True)
        )
        return next((note for note in notes if not is_default_note(note)), "application review")

    def handle_rejected(self, candidate: Candidate) -> None:
        if not candidate.email:
            logger.warning("Candidate %s has no email — rejection not sent", candidate.pk)
            candidate.write_log("No email on file: rejection not sent")
            return

        context = self._context(candidate)
        subject, fallback_body = render_message(_T.REJECTION, _EMAIL, **context)
        ai_body = self.ai.generate_rejection(candidate.name, candidate.role, self._rejection_reason(candidate))
        body = ai_body or fallback_body

        msg_id = self.gmail.send_email(
            candidate.email, subject, body, html_body=render_html(subject, body),
        )
        if msg_id:
            candidate.write_log("Rejection email sent")
            record_event(candidate, "REJECTION_SENT", aiGenerated=bool(ai_body))
            return

        candidate.write_log("Rejection email failed (queued for retry)")
        retry.enqueue(
            MessageTemplate.Channel.EMAIL,
            candidate.email,
            _T.REJECTION,
            context,
            "Gmail send failed",
            candidate=candidate,
        )

    # ── HIRED ──────────────────────────────────────────────────────────────────

    def handle_hired(self, candidate: Candidate) -> None:
        candidate.write_log("Hired")
        record_event(candidate, "HIRED", role=candidate.role)
        notify_team(
            f"New hire: {candidate.name}",
            f"{candidate.name} has been hired as {candidate.role}.",
            gmail=self.gmail,
            config=self.config,
        )
