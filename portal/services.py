"""
portal/services.py

Self-service candidate portal, addressed by an opaque per-candidate token.

  generate_token(candidate)          → token
  send_portal_link(candidate)        → Gmail message id | None
  resolve_token(token)               → Candidate | None
  portal_status(candidate)           → dict for the GET view
  submit_test(candidate, ...)        → Candidate (advanced to TEST_SUBMITTED)
  book_slot(candidate, slot_start)   → Candidate (interview booked)
  list_slots(day)                    → [datetime]
"""

import logging
import uuid
from datetime import date, datetime
from urllib.parse import urlencode

from django.utils import timezone

from candidates.models import Candidate
from candidates.services import record_event
from hirepilot.config import PipelineConfig, get_config
from hirepilot.text_utils import format_local
from messaging.models import MessageTemplate
from messaging.services import GmailService, notify_admin, render_html, render_message
from pipeline.transitions import InvalidTransition, set_test_submitted

logger = logging.getLogger(__name__)

S = Candidate.Status


class PortalError(Exception):
    """Raised for a portal action the candidate may not perform."""


STATUS_INFO: dict[str, dict[str, str]] = {
    S.NEW: {"title": "Application received", "message": "We have your application and will be in touch soon."},
    S.IN_PROCESS: {"title": "In process", "message": "Your application is being processed. Your test will follow."},
    S.TEST_SENT: {"title": "Test sent", "message": "Your test is ready. Upload your work below when you are done."},
    S.TEST_SUBMITTED: {"title": "Test submitted", "message": "Thanks! We have received your test."},
    S.UNDER_REVIEW: {"title": "Under review", "message": "Our team is reviewing your work."},
    S.INTERVIEW_PENDING: {"title": "Interview", "message": "Pick a time for your interview below."},
    S.INTERVIEW_DONE: {"title": "Interview done", "message": "Thanks for interviewing with us. We will share our decision soon."},
    S.PENDING_REJECTION: {"title": "Under review", "message": "Our team is reviewing your application."},
    S.REJECTED: {"title": "Application closed", "message": "Thank you for your interest. We will not be moving forward."},
    S.HIRED: {"title": "Welcome aboard", "message": "Congratulations! Our team will contact you with next steps."},
}

ACTIONS_BY_STATUS: dict[str, tuple[str, ...]] = {
    S.TEST_SENT: ("submit_test",),
    S.INTERVIEW_PENDING: ("book_slot", "list_slots"),
}

FINAL_STATUSES = frozenset({S.REJECTED, S.HIRED})


# ── Tokens ─────────────────────────────────────────────────────────────────────

def generate_token(candidate: Candidate) -> str:
    candidate.portal_token = uuid.uuid4().hex
    candidate.save(update_fields=["portal_token", "updated_at"])
    return candidate.portal_token


def resolve_token(token: str) -> Candidate | None:
    if not token:
        return None
    return Candidate.objects.filter(portal_token=token).first()


def portal_link(candidate: Candidate, config: PipelineConfig | None = None) -> str:
    config = config or get_config()
    token = candidate.portal_token or generate_token(candidate)
    return f"{config.portal_url}?{urlencode({'token': token})}"


def send_portal_link(
    candidate: Candidate,
    *,
    gmail: GmailService | None = None,
    config: PipelineConfig | None = None,
) -> str | None:
    config = config or get_config()
    if not candidate.email:
        logger.warning("Candidate %s has no email — portal link not sent", candidate.pk)
        return None

    link = portal_link(candidate, config)
    subject, body = render_message(
        MessageTemplate.MessageType.PORTAL_LINK,
        MessageTemplate.Channel.EMAIL,
        name=candidate.name,
        role=candidate.role,
        portal_link=link,
    )
    msg_id = (gmail or GmailService()).send_email(
        candidate.email,
        subject,
        body,
        html_body=render_html(subject, body, cta_label="Open my portal", cta_url=link),
    )
    if msg_id:
        record_event(candidate, "PORTAL_LINK_SENT")
    return msg_id


# ── Status ─────────────────────────────────────────────────────────────────────

def allowed_actions(candidate: Candidate) -> tuple[str, ...]:
    return ACTIONS_BY_STATUS.get(candidate.status, ())


def portal_status(candidate: Candidate, config: PipelineConfig | None = None) -> dict:
    config = config or get_config()
    info = STATUS_INFO.get(candidate.status, {"title": candidate.status, "message": ""})
    return {
        "name": candidate.name,
        "role": candidate.role,
        "status": candidate.status,
        "title": info["title"],
        "message": info["message"],
        "actions": list(allowed_actions(candidate)),
        "time_limit_hours": config.time_limit_for(candidate.role, candidate.department),
        "test_sent_at": candidate.test_sent_at.isoformat() if candidate.test_sent_at else None,
        "interview_at": candidate.interview_at.isoformat() if candidate.interview_at else None,
    }


def _require_action(candidate: Candidate, action: str) -> None:
    if action not in allowed_actions(candidate):
        raise PortalError(f"'{action}' is not available while status is {candidate.status}")


# ── Actions ────────────────────────────────────────────────────────────────────

def submit_test(
    candidate: Candidate,
    *,
    pdf_url: str = "",
    dwg_url: str = "",
    other_url: str = "",
    notes: str = "",
    source: str = "portal",
    require_status: bool = True,
    engine=None,
    config: PipelineConfig | None = None,
) -> Candidate:
    """
    Record uploaded test links and advance to TEST_SUBMITTED; the
    TEST_SUBMITTED handler computes timing, scores and notifies the team.

    The portal only offers this action in TEST_SENT. The external test form
    passes require_status=False: its links are always stored and the admin
    notified, and the candidate is moved to TEST_SUBMITTED unless already
    there or in a final status.
    """
    config = config or get_config()
    if require_status:
        _require_action(candidate, "submit_test")

    links = [url for url in (pdf_url, dwg_url, other_url) if url]
    if not links:
        raise PortalError("At least one file link is required")

    candidate.test_files = " | ".join(links)
    candidate.test_submission_url = pdf_url or dwg_url or other_url
    candidate.test_submitted_at = timezone.now()
    candidate.save(update_fields=["test_files", "test_submission_url", "test_submitted_at", "updated_at"])

    record_event(
        candidate,
        "TEST_UPLOADED",
        source=source,
        status=candidate.status,
        pdfUrl=pdf_url,
        dwgUrl=dwg_url,
        otherUrl=other_url,
        notes=notes,
    )
    notify_admin(
        f"Test uploaded: {candidate.name}",
        "\n".join([f"{candidate.name} ({candidate.role}) uploaded their test via {source}."]
                  + [f"Status at upload: {candidate.get_status_display()}"]
                  + [f"- {url}" for url in links]
                  + ([f"Notes: {notes}"] if notes else [])),
        config=config,
    )

    if candidate.status in FINAL_STATUSES:
        logger.warning("Test upload for candidate=%s in final status %s; status kept", candidate.pk, candidate.status)
        candidate.write_log(f"Test uploaded via {source} after {candidate.get_status_display()}")
        return candidate

    try:
        set_test_submitted(candidate, note=f"Test uploaded via {source}", engine=engine, config=config)
    except InvalidTransition as exc:
        logger.warning("Test upload for candidate=%s stored without status change: %s", candidate.pk, exc)
        candidate.write_log(f"Test uploaded via {source}; status left at {candidate.get_status_display()}")
    return candidate


def list_slots(day: date, calendar=None) -> list[datetime]:
    from interviews.services import get_available_slots

    return get_available_slots(day, calendar=calendar)


def book_slot(
    candidate: Candidate,
    slot_start: datetime,
    *,
    calendar=None,
    gmail: GmailService | None = None,
    engine=None,
    config: PipelineConfig | None = None,
) -> Candidate:
    """
    Book an interview slot, confirm by email, then re-run the
    INTERVIEW_PENDING handler so the calendar event and schedule go out.
    """
    config = config or get_config()
    _require_action(candidate, "book_slot")

    if timezone.is_naive(slot_start):
        slot_start = timezone.make_aware(slot_start, config.tz)
    if slot_start not in list_slots(slot_start.astimezone(config.tz).date(), calendar=calendar):
        raise PortalError("That slot is no longer available")

    candidate.interview_at = slot_start
    candidate.save(update_fields=["interview_at", "updated_at"])
    record_event(candidate, "SLOT_BOOKED", interviewAt=slot_start.isoformat())

    date_str = format_local(slot_start, config.tz)
    subject, body = render_message(
        MessageTemplate.MessageType.INTERVIEW_CONFIRMATION,
        MessageTemplate.Channel.EMAIL,
        name=candidate.name,
        role=candidate.role,
        date=date_str,
    )
    (gmail or GmailService()).send_email(
        candidate.email, subject, body, html_body=render_html(subject, body),
    )
    notify_admin(f"Interview booked: {candidate.name}", f"{candidate.name} ({candidate.role}) booked {date_str}.", config=config)

    if engine is None:
        from pipeline.engine import get_engine
        engine = get_engine()
    engine.dispatch(candidate)
    return candidate
