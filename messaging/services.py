"""
messaging/services.py

Outbound messaging: WhatsApp (Twilio) and Email (Gmail API), plus the
Gmail inbox reader used by inbox.services.

Public helpers:
  render_message(message_type, channel, **context) — (subject, body)
  render_html(title, body, cta_label, cta_url)      — branded HTML email
  notify_admin(subject, body, ...)                 — admin alert email
  notify_team(subject, body, ...)                  — team broadcast email
"""

import base64
import logging
import re
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import requests as http_requests
from django.conf import settings
from django.template.loader import render_to_string

from candidates.duplicates import digits_only
from hirepilot.config import PipelineConfig, get_config
from hirepilot.text_utils import extract_email_address, mask_email, strip_markup
from messaging.models import MessageTemplate

logger = logging.getLogger(__name__)

SANDBOX_ID = "sandbox"

_GMAIL_SCOPES = ["https://mail.google.com/"]


def build_google_credentials(scopes: list[str]):
    """OAuth2 user credentials from the configured refresh token."""
    from google.auth.transport.requests import Request
    from google.oauth2.credentials import Credentials

    client_id = settings.GOOGLE_CLIENT_ID
    client_secret = settings.GOOGLE_CLIENT_SECRET
    refresh_token = settings.GOOGLE_REFRESH_TOKEN

    if not all([client_id, client_secret, refresh_token]):
        raise RuntimeError("Google API credentials not configured (GOOGLE_CLIENT_ID/SECRET/REFRESH_TOKEN).")

    creds = Credentials(
        token=None,
        refresh_token=refresh_token,
        token_uri="https://oauth2.googleapis.com/token",
        client_id=client_id,
        client_secret=client_secret,
        scopes=scopes,
    )
    creds.refresh(Request())
    return creds


# ─────────────────────────────────────────────────────────────────────────────
# WhatsAppService
# ─────────────────────────────────────────────────────────────────────────────

class WhatsAppService:
    """Send WhatsApp messages via the Twilio Messages REST API."""

    api_base = "https://api.twilio.com/2010-04-01"

    def __init__(self, sandbox: bool | None = None, session=None):
        self.account_sid = settings.TWILIO_ACCOUNT_SID
        self.auth_token = settings.TWILIO_AUTH_TOKEN
        self.source = settings.TWILIO_WHATSAPP_FROM
        self.country_code = settings.WHATSAPP_DEFAULT_COUNTRY_CODE
        self.sandbox = settings.SANDBOX_MODE if sandbox is None else sandbox
        self.session = session or http_requests

    def normalize_phone(self, phone: str) -> str:
        """Digits only, with the default country code added to bare 10-digit numbers."""
        digits = digits_only(phone)
        if len(digits) == 10:
            digits = f"{self.country_code}{digits}"
        return digits

    def send_text(self, phone: str, body: str) -> tuple[bool, str]:
        """
        Send a plain-text WhatsApp message.

        Returns:
            (success, detail) — detail is the Twilio message SID on success
            or a short error description on failure. Never raises.
        """
        if not phone or not digits_only(phone):
            return False, "No phone number"

        if self.sandbox:
            logger.info("Sandbox mode: WhatsApp to %s not sent", phone)
            return True, SANDBOX_ID

        if not all([self.account_sid, self.auth_token, self.source]):
            logger.warning("Twilio credentials not configured — message not sent")
            return False, "WhatsApp not configured"

        url = f"{self.api_base}/Accounts/{self.account_sid}/Messages.json"
        source = self.source if self.source.startswith("whatsapp:") else f"whatsapp:{self.source}"
        data = {
            "From": source,
            "To": f"whatsapp:+{self.normalize_phone(phone)}",
            "Body": body,
        }

        try:
            resp = self.session.post(url, data=data, auth=(self.account_sid, self.auth_token), timeout=20)
        except http_requests.RequestException as exc:
            logger.error("WhatsApp send failed to %s: %s", phone, exc)
            return False, str(exc)

        try:
            payload = resp.json()
        except ValueError:
            payload = {}

        if resp.status_code >= 400:
            message = payload.get("message") or resp.text[:200] or f"HTTP {resp.status_code}"
            logger.error("WhatsApp send failed to %s: %s", phone, message)
            return False, message

        sid = payload.get("sid") or ""
        logger.info("WhatsApp sent to %s: sid=%s", phone, sid)
        return True, sid


# ─────────────────────────────────────────────────────────────────────────────
# GmailService
# ─────────────────────────────────────────────────────────────────────────────

class GmailService:
    """
    Send emails and read the inbox via Gmail API using an OAuth2 refresh token.

    Requires google-api-python-client + google-auth.
    """

    def __init__(self, sandbox: bool | None = None):
        self._service = None
        self.sandbox = settings.SANDBOX_MODE if sandbox is None else sandbox

    @property
    def service(self):
        if self._service is None:
            self._service = self._build_service()
        return self._service

    @staticmethod
    def _build_service():
        from googleapiclient.discovery import build

        creds = build_google_credentials(_GMAIL_SCOPES)
        return build("gmail", "v1", credentials=creds, cache_discovery=False)

    def _reset_service(self) -> None:
        """Clear cached service to force credential rebuild on next access."""
        self._service = None

    def _execute(self, request_factory):
        """
        Run ``request_factory(service).execute()``, rebuilding the service
        once on a 401. Other errors propagate to the caller.
        """
        for attempt in range(2):
            try:
                return request_factory(self.service).execute()
            except Exception as exc:
                if attempt == 0 and "401" in str(exc):
                    logger.warning("Gmail auth error, rebuilding service: %s", exc)
                    self._reset_service()
                    continue
                raise
        return None

    # ── Sending ────────────────────────────────────────────────────────────────

    @staticmethod
    def _build_mime(to, subject, body, html_body=None, attachments=None, in_reply_to=None):
        if html_body or attachments:
            mime = MIMEMultipart("mixed")
            alternative = MIMEMultipart("alternative")
            alternative.attach(MIMEText(body, "plain", "utf-8"))
            if html_body:
                alternative.attach(MIMEText(html_body, "html", "utf-8"))
            mime.attach(alternative)
            for attachment in attachments or []:
                part = MIMEApplication(attachment["data"], Name=attachment["name"])
                part["Content-Disposition"] = f'attachment; filename="{attachment["name"]}"'
                mime.attach(part)
        else:
            mime = MIMEText(body, "plain", "utf-8")

        mime["To"] = to
        mime["Subject"] = subject
        if in_reply_to:
            mime["In-Reply-To"] = in_reply_to
            mime["References"] = in_reply_to
        return mime

    def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        *,
        html_body: str | None = None,
        attachments: list[dict] | None = None,
        thread_id: str | None = None,
        in_reply_to: str | None = None,
    ) -> str | None:
        """
        Send an email via Gmail API.

        attachments: list of {"name": str, "data": bytes}.

        Returns:
            Gmail message ID on success, or None on failure.
        """
        if not to:
            logger.warning("Email '%s' not sent: no recipient", subject)
            return None

        if self.sandbox:
            logger.info("Sandbox mode: email to %s not sent (subject=%r)", mask_email(to), subject)
            return SANDBOX_ID

        mime = self._build_mime(to, subject, body, html_body, attachments, in_reply_to)
        message = {"raw": base64.urlsafe_b64encode(mime.as_bytes()).decode("ascii")}
        if thread_id:
            message["threadId"] = thread_id

        try:
            result = self._execute(
                lambda svc: svc.users().messages().send(userId="me", body=message)
            )
        except Exception as exc:
            logger.error("Gmail send failed to %s: %s", mask_email(to), exc)
            return None

        msg_id = (result or {}).get("id")
        logger.info("Gmail sent to %s: id=%s", mask_email(to), msg_id)
        return msg_id

    def reply(self, message: dict, body: str, html_body: str | None = None) -> str | None:
        """Reply in-thread to a message returned by list_messages()."""
        subject = message.get("subject") or ""
        if not subject.lower().startswith("re:"):
            subject = f"Re: {subject}".strip()
        return self.send_email(
            message.get("sender_email") or "",
            subject,
            body,
            html_body=html_body,
            thread_id=message.get("thread_id"),
            in_reply_to=message.get("message_id_header"),
        )

    # ── Reading ────────────────────────────────────────────────────────────────

    def list_messages(self, query: str, max_results: int = 10) -> list[dict]:
        """
        Fetch messages matching a Gmail search query.

        Returns a list of dicts: {id, thread_id, sender, sender_email, subject,
        body, message_id_header, attachments: [{name, data, mime_type}]}.
        Failures are logged and yield an empty list.
        """
        try:
            result = self._execute(
                lambda svc: svc.users().messages().list(userId="me", q=query, maxResults=max_results)
            )
        except Exception as exc:
            logger.error("Gmail list failed: %s", exc)
            return []

        messages = []
        for ref in (result or {}).get("messages", []):
            try:
                messages.append(self._fetch_message(ref["id"]))
            except Exception as exc:
                logger.warning("Failed to fetch Gmail message %s: %s", ref.get("id"), exc)
        return messages

    def _fetch_message(self, message_id: str) -> dict:
        msg = self._execute(
            lambda svc: svc.users().messages().get(userId="me", id=message_id, format="full")
        )
        payload = msg.get("payload", {})
        headers = {h["name"].lower(): h["value"] for h in payload.get("headers", [])}
        sender = headers.get("from", "")

        attachments = []
        for part in self._collect_attachment_parts(payload):
            att = self._execute(
                lambda svc, att_id=part["att_id"]: svc.users().messages().attachments().get(
                    userId="me", messageId=message_id, id=att_id
                )
            )
            attachments.append({
                "name": part["filename"],
                "mime_type": part["mime_type"],
                "data": base64.urlsafe_b64decode(att["data"]),
            })

        return {
            "id": message_id,
            "thread_id": msg.get("threadId"),
            "sender": sender,
            "sender_email": extract_email_address(sender),
            "subject": headers.get("subject", ""),
            "message_id_header": headers.get("message-id", ""),
            "body": self._extract_body(payload) or msg.get("snippet", ""),
            "attachments": attachments,
        }

    @staticmethod
    def _decode(data: str) -> str:
        return base64.urlsafe_b64decode(data.encode("ascii")).decode("utf-8", errors="replace")

    @staticmethod
    def _extract_body(part: dict) -> str:
        """Plain-text body from a MIME tree; stripped HTML when only HTML exists."""
        plain, html = [], []

        def walk(node):
            mime_type = node.get("mimeType", "")
            data = node.get("body", {}).get("data")
            if data and not node.get("filename"):
                if mime_type == "text/plain":
                    plain.append(GmailService._decode(data))
                elif mime_type == "text/html":
                    html.append(GmailService._decode(data))
            for child in node.get("parts", []):
                walk(child)

        walk(part)
        if plain:
            return "\n".join(plain).strip()
        if html:
            return strip_markup("\n".join(html))
        return ""

    @staticmethod
    def _collect_attachment_parts(part: dict) -> list[dict]:
        """
        Recursively walk a MIME part tree and return all parts that have a
        non-empty filename and an attachmentId.
        """
        results = []
        filename = part.get("filename", "")
        att_id = part.get("body", {}).get("attachmentId")
        if filename and att_id:
            results.append({
                "filename": filename,
                "att_id": att_id,
                "mime_type": part.get("mimeType", "application/octet-stream"),
            })
        for child in part.get("parts", []):
            results.extend(GmailService._collect_attachment_parts(child))
        return results

    # ── Labels ─────────────────────────────────────────────────────────────────

    def get_or_create_label(self, label_name: str) -> str | None:
        """Resolve a label name to its Gmail label ID, creating it if missing."""
        try:
            labels = self._execute(lambda svc: svc.users().labels().list(userId="me")).get("labels", [])
            for lbl in labels:
                if lbl["name"].lower() == label_name.lower():
                    return lbl["id"]
            created = self._execute(
                lambda svc: svc.users().labels().create(userId="me", body={"name": label_name})
            )
            return created.get("id")
        except Exception as exc:
            logger.warning("Gmail label lookup failed for '%s': %s", label_name, exc)
            return None

    def add_label(self, message_id: str, label_id: str) -> bool:
        try:
            self._execute(
                lambda svc: svc.users().messages().modify(
                    userId="me", id=message_id, body={"addLabelIds": [label_id]}
                )
            )
            return True
        except Exception as exc:
            logger.warning("Gmail add-label failed for %s: %s", message_id, exc)
            return False


# ─────────────────────────────────────────────────────────────────────────────
# Message body resolution
# ─────────────────────────────────────────────────────────────────────────────

_T = MessageTemplate.MessageType
_WA = MessageTemplate.Channel.WHATSAPP
_EMAIL = MessageTemplate.Channel.EMAIL

# Hardcoded fallback bodies; used only when no active MessageTemplate exists
# for a given message_type × channel combination.
_FALLBACK_BODIES: dict[tuple[str, str], str] = {
    (_T.WELCOME, _WA): (
        "Hi {name}! Thank you for applying for the {role} role at {company}. "
        "We have received your application and will share your test details shortly."
    ),
    (_T.TEST_LINK, _WA): (
        "Hi {name}, here is your test for the {role} role: {test_link}\n\n"
        "You have {time_limit} hours to complete it once you start. "
        "Please submit your work through the link provided. Good luck!"
    ),
    (_T.TEST_REMINDER, _WA): (
        "Hi {name}, a friendly reminder about your test for the {role} role. "
        "Please submit it as soon as you can."
    ),
    (_T.INTERVIEW_SCHEDULE, _WA): (
        "Hi {name}, congratulations! You are invited to interview for the {role} role.\n\n"
        "When: {date}\n\nWe look forward to speaking with you."
    ),
    (_T.INTERVIEW_CONFIRMATION, _EMAIL): (
        "Hi {name},\n\nYour interview for the {role} role is confirmed for {date}.\n\n"
        "A calendar invitation will follow. Reply to this email if you need to reschedule.\n\n"
        "Best regards,\nThe {company} Hiring Team"
    ),
    (_T.PORTAL_LINK, _EMAIL): (
        "Hi {name},\n\nYou can check your application status and take the next step here:\n"
        "{portal_link}\n\nPlease keep this link private.\n\n"
        "Best regards,\nThe {company} Hiring Team"
    ),
    (_T.REJECTION, _EMAIL): (
        "Hi {name},\n\nThank you for your interest in the {role} role and for the time you "
        "invested in the process. After careful consideration we have decided not to move "
        "forward with your application.\n\nWe wish you every success.\n\n"
        "Best regards,\nThe {company} Hiring Team"
    ),
    (_T.APPLICATION_ACK, _EMAIL): (
        "Hi {name},\n\nThank you for applying for the {role} role at {company}.\n\n"
        "To complete your application, please fill in our application form:\n{form_link}\n\n"
        "Best regards,\nThe {company} Hiring Team"
    ),
    (_T.TEST_ACK, _EMAIL): (
        "Hi {name},\n\nWe have received your test submission for the {role} role. "
        "Our team will review it and get back to you.\n\n"
        "Best regards,\nThe {company} Hiring Team"
    ),
    (_T.STATUS_REPLY, _EMAIL): (
        "Hi {name},\n\nThank you for following up. Your application for the {role} role "
        "is currently: {status}.\n\nWe will contact you as soon as there is an update.\n\n"
        "Best regards,\nThe {company} Hiring Team"
    ),
    (_T.ESCALATION_ACK, _EMAIL): (
        "Hi {name},\n\nThank you for your message. A member of our team will get back "
        "to you personally.\n\nBest regards,\nThe {company} Hiring Team"
    ),
}

_FALLBACK_SUBJECTS: dict[str, str] = {
    _T.INTERVIEW_CONFIRMATION: "Interview confirmed — {role}",
    _T.PORTAL_LINK:            "Your application portal — {company}",
    _T.REJECTION:              "Your application — {role}",
    _T.APPLICATION_ACK:        "Application received — {role}",
    _T.TEST_ACK:               "Test received — {role}",
    _T.STATUS_REPLY:           "Your application status — {role}",
    _T.ESCALATION_ACK:         "We received your message",
}


def render_message(message_type: str, channel: str, **context) -> tuple[str, str]:
    """
    Return (subject, body) for a given message_type × channel combination.

    Priority:
      1. Active MessageTemplate from the database (user-customised)
      2. Hardcoded fallback from _FALLBACK_BODIES
    """
    context.setdefault("company", get_config().company_name)

    tpl = MessageTemplate.objects.filter(
        message_type=message_type,
        channel=channel,
        is_active=True,
    ).first()

    if tpl:
        return tpl.render_subject(**context), tpl.render(**context)

    logger.debug("No active MessageTemplate for %s/%s — using hardcoded fallback", message_type, channel)
    body = MessageTemplate.fill(_FALLBACK_BODIES.get((message_type, channel), ""), context)
    subject = MessageTemplate.fill(_FALLBACK_SUBJECTS.get(message_type, ""), context)
    return subject, body


def render_html(title: str, body: str, *, cta_label: str = "", cta_url: str = "") -> str:
    """Wrap plain text in the branded HTML email layout."""
    return render_to_string("messaging/email.html", {
        "title": title,
        "body": body,
        "company": get_config().company_name,
        "cta_label": cta_label,
        "cta_url": cta_url,
    })


# ─────────────────────────────────────────────────────────────────────────────
# Internal notifications
# ─────────────────────────────────────────────────────────────────────────────

_SUBJECT_WS_RE = re.compile(r"\s+")


def notify_admin(
    subject: str,
    body: str,
    *,
    html_body: str | None = None,
    attachments: list[dict] | None = None,
    gmail: GmailService | None = None,
    config: PipelineConfig | None = None,
) -> str | None:
    config = config or get_config()
    if not config.admin_email:
        logger.warning("ADMIN_EMAIL not configured — admin notification '%s' dropped", subject)
        return None
    subject = _SUBJECT_WS_RE.sub(" ", f"[{config.company_name}] {subject}")
    return (gmail or GmailService()).send_email(
        config.admin_email, subject, body, html_body=html_body, attachments=attachments,
    )


def notify_team(
    subject: str,
    body: str,
    *,
    gmail: GmailService | None = None,
    config: PipelineConfig | None = None,
) -> list[str]:
    """Email every team member (admin when no team list is configured)."""
    config = config or get_config()
    recipients = list(config.team_emails) or ([config.admin_email] if config.admin_email else [])
    gmail = gmail or GmailService()
    sent = []
    for recipient in recipients:
        msg_id = gmail.send_email(recipient, f"[{config.company_name}] {subject}", body)
        if msg_id:
            sent.append(msg_id)
    return sent
