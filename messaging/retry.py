"""
messaging/retry.py

Durable retry queue for failed candidate notifications.

  enqueue(...) — persist a failed send with everything needed to replay it
  drain(...)   — replay pending items sequentially (called by the background cycle)
"""

import logging

from django.utils import timezone

from hirepilot.config import PipelineConfig, get_config
from messaging.models import RetryItem

logger = logging.getLogger(__name__)


def enqueue(
    channel: str,
    destination: str,
    message_type: str,
    params: dict,
    error: str = "",
    *,
    candidate=None,
) -> RetryItem:
    item = RetryItem.objects.create(
        candidate=candidate,
        channel=channel,
        destination=destination,
        message_type=message_type,
        params=params or {},
        last_error=error or "",
    )
    logger.info(
        "Queued for retry: item=%s channel=%s type=%s error=%s",
        item.pk, channel, message_type, error,
    )
    return item


def _send(item: RetryItem, whatsapp, gmail) -> tuple[bool, str]:
    from messaging.services import GmailService, WhatsAppService, render_message

    subject, body = render_message(item.message_type, item.channel, **item.params)
    if not body:
        return False, f"No template for {item.message_type}/{item.channel}"

    if item.channel == RetryItem.Channel.WHATSAPP:
        return (whatsapp or WhatsAppService()).send_text(item.destination, body)

    msg_id = (gmail or GmailService()).send_email(item.destination, subject, body)
    return (True, msg_id) if msg_id else (False, "Gmail send failed")


def drain(
    max_items: int | None = None,
    *,
    whatsapp=None,
    gmail=None,
    config: PipelineConfig | None = None,
) -> dict:
    """
    Replay pending items oldest-first. Items that keep failing are marked
    FAILED after config.retry_max_attempts attempts.
    """
    config = config or get_config()
    summary = {"sent": 0, "retrying": 0, "failed": 0}

    pending = RetryItem.objects.filter(status=RetryItem.Status.PENDING).order_by("created_at", "pk")
    if max_items:
        pending = pending[:max_items]

    for item in pending:
        try:
            ok, detail = _send(item, whatsapp, gmail)
        except Exception as exc:  # noqa: BLE001
            ok, detail = False, str(exc)

        item.attempts += 1
        if ok:
            item.status = RetryItem.Status.SENT
            item.sent_at = timezone.now()
            summary["sent"] += 1
        else:
            item.last_error = detail or ""
            if item.attempts >= config.retry_max_attempts:
                item.status = RetryItem.Status.FAILED
                summary["failed"] += 1
                logger.error(
                    "Retry item %s abandoned after %s attempts: %s",
                    item.pk, item.attempts, detail,
                )
            else:
                summary["retrying"] += 1
        item.save(update_fields=["attempts", "status", "sent_at", "last_error", "updated_at"])

    if any(summary.values()):
        logger.info("Retry queue drained: %s", summary)
    return summary
