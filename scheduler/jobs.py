"""
scheduler/jobs.py

All background job definitions for the HirePilot pipeline.
Registered and started by: scheduler/management/commands/run_scheduler.py

  run_background_cycle   every BACKGROUND_CYCLE_MINUTES (default 15)
      process_inbox → process_rejection_queue → process_followups
      → drain_retry_queue → sync_team_view
  send_daily_summary     daily at DAILY_SUMMARY_HOUR

Each function is decorated with @close_old_connections from django-apscheduler so
that Django DB connections opened in APScheduler's worker threads are always
returned to the pool (or closed) after each run, preventing "connection already
closed" errors in long-running processes.
"""

import logging
from datetime import timedelta

from django.utils import timezone
from django_apscheduler.util import close_old_connections

from candidates import services as candidate_services
from candidates.models import Candidate, TimelineEvent
from candidates.services import record_event
from hirepilot.config import get_config
from inbox.services import InboxProcessor
from messaging import retry
from messaging.models import MessageTemplate, RetryItem
from messaging.services import WhatsAppService, notify_admin, render_message
from pipeline.transitions import set_rejected

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Step 1: process_inbox
# ─────────────────────────────────────────────────────────────────────────────

@close_old_connections
def process_inbox() -> dict:
    """Classify and handle unread hiring-inbox mail."""
    return InboxProcessor().process()


# ─────────────────────────────────────────────────────────────────────────────
# Step 2: process_rejection_queue
# ─────────────────────────────────────────────────────────────────────────────

@close_old_connections
def process_rejection_queue() -> int:
    """
    Promote PENDING_REJECTION candidates to REJECTED once they have waited
    rejection_delay_hours since their last update. The REJECTED handler
    sends the rejection email.
    """
    config = get_config()
    cutoff = timezone.now() - timedelta(hours=config.rejection_delay_hours)

    due = list(
        Candidate.objects
        .filter(status=Candidate.Status.PENDING_REJECTION, updated_at__lte=cutoff)
        .order_by("updated_at", "pk")
    )

    rejected = 0
    for candidate in due:
        if set_rejected(candidate, note=f"Rejection delay of {config.rejection_delay_hours}h elapsed"):
            rejected += 1

    if rejected:
        logger.info("process_rejection_queue: rejected %s candidate(s)", rejected)
    return rejected


# ─────────────────────────────────────────────────────────────────────────────
# Step 3: process_followups
# ─────────────────────────────────────────────────────────────────────────────

def _days_since(moment, tz) -> int:
    return (timezone.now().astimezone(tz).date() - moment.astimezone(tz).date()).days


@close_old_connections
def process_followups(whatsapp: WhatsAppService | None = None) -> int:
    """
    Send a WhatsApp test reminder to TEST_SENT candidates on each configured
    follow-up day (counted in the pipeline timezone from test_sent_at).
    A reminder already sent for that day is never repeated.
    """
    config = get_config()
    whatsapp = whatsapp or WhatsAppService(sandbox=config.sandbox_mode)

    waiting = (
        Candidate.objects
        .filter(status=Candidate.Status.TEST_SENT, test_sent_at__isnull=False, test_submitted_at__isnull=True)
        .exclude(phone="")
        .order_by("pk")
    )

    sent = 0
    for candidate in waiting:
        day = _days_since(candidate.test_sent_at, config.tz)
        if day not in config.followup_days:
            continue
        if TimelineEvent.objects.filter(candidate=candidate, event_type="FOLLOWUP_SENT", payload__day=day).exists():
            continue

        _subject, body = render_message(
            MessageTemplate.MessageType.TEST_REMINDER,
            MessageTemplate.Channel.WHATSAPP,
            name=candidate.name,
            role=candidate.role,
            company=config.company_name,
        )
        ok, detail = whatsapp.send_text(candidate.phone, body)
        if not ok:
            logger.warning("Follow-up day %s failed for candidate=%s: %s", day, candidate.pk, detail)
            candidate.write_log(f"Follow-up day {day} failed: {detail}")
            continue

        record_event(candidate, "FOLLOWUP_SENT", day=day)
        candidate.write_log(f"Follow-up reminder sent (day {day})")
        sent += 1

    if sent:
        logger.info("process_followups: sent %s reminder(s)", sent)
    return sent


# ─────────────────────────────────────────────────────────────────────────────
# Step 4: drain_retry_queue
# ─────────────────────────────────────────────────────────────────────────────

@close_old_connections
def drain_retry_queue() -> dict:
    return retry.drain()


# ─────────────────────────────────────────────────────────────────────────────
# Step 5: sync_team_view
# ─────────────────────────────────────────────────────────────────────────────

@close_old_connections
def sync_team_view() -> int:
    return candidate_services.sync_team_view()


# ─────────────────────────────────────────────────────────────────────────────
# Background cycle
# ─────────────────────────────────────────────────────────────────────────────

# Steps run undecorated inside the cycle; the cycle itself manages connections.
CYCLE_STEPS = (
    ("process_inbox", process_inbox.__wrapped__),
    ("process_rejection_queue", process_rejection_queue.__wrapped__),
    ("process_followups", process_followups.__wrapped__),
    ("drain_retry_queue", drain_retry_queue.__wrapped__),
    ("sync_team_view", sync_team_view.__wrapped__),
)


@close_old_connections
def run_background_cycle() -> dict:
    """
    Run every step in order. A failing step is logged at CRITICAL (which
    alerts the admin) and the cycle moves on to the next step.
    """
    results = {}
    for name, step in CYCLE_STEPS:
        try:
            results[name] = step()
        except Exception as exc:  # noqa: BLE001
            logger.critical("Background cycle step %s failed: %s", name, exc, exc_info=True)
            results[name] = None
    logger.info("Background cycle complete: %s", results)
    return results


# ─────────────────────────────────────────────────────────────────────────────
# Daily summary
# ─────────────────────────────────────────────────────────────────────────────

def build_daily_summary(now=None) -> str:
    now = now or timezone.now()
    since = now - timedelta(hours=24)

    counts = candidate_services.status_counts()
    new_today = Candidate.objects.filter(created_at__gte=since).count()
    failed_retries = RetryItem.objects.filter(status=RetryItem.Status.FAILED, updated_at__gte=since).count()

    lines = [f"New candidates (last 24h): {new_today}", "", "Pipeline by status:"]
    lines += [f"  {Candidate.Status(status).label}: {total}" for status, total in counts.items()]
    if failed_retries:
        lines += ["", f"Messages abandoned after retries (last 24h): {failed_retries}"]
    return "\n".join(lines)


@close_old_connections
def send_daily_summary() -> str | None:
    config = get_config()
    today = timezone.now().astimezone(config.tz).strftime("%d %b %Y")
    return notify_admin(f"Daily pipeline summary — {today}", build_daily_summary(), config=config)
