"""
messaging/tests.py

Covers:
  - MessageTemplate.fill / render_message : DB template vs. hardcoded fallback
  - render_html                           : branded email layout
  - WhatsAppService.send_text             : Twilio request shape and failure modes
  - GmailService                          : sandbox, 401 rebuild, MIME parsing, replies
  - notify_admin / notify_team
  - retry.enqueue / retry.drain           : durable retry queue
  - CriticalAlertHandler                  : CRITICAL records email the admin, no recursion
  - seed_message_templates command
"""

import base64
import io
import logging
import sys
from unittest.mock import MagicMock, patch

from django.core.management import call_command
from django.test import TestCase, override_settings

from candidates.models import Candidate
from hirepilot.config import PipelineConfig
from messaging import retry
from messaging.log_handlers import CriticalAlertHandler
from messaging.models import MessageTemplate, RetryItem
from messaging.services import (
    _FALLBACK_BODIES,
    SANDBOX_ID,
    GmailService,
    WhatsAppService,
    notify_admin,
    notify_team,
    render_html,
    render_message,
)

_T = MessageTemplate.MessageType
_WA = MessageTemplate.Channel.WHATSAPP
_EMAIL = MessageTemplate.Channel.EMAIL

TWILIO = dict(
    TWILIO_ACCOUNT_SID="AC123",
    TWILIO_AUTH_TOKEN="secret",
    TWILIO_WHATSAPP_FROM="+14155238886",
    WHATSAPP_DEFAULT_COUNTRY_CODE="91",
)


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii")


def _response(status_code=201, payload=None, text=""):
    resp = MagicMock(status_code=status_code, text=text)
    if payload is None:
        resp.json.side_effect = ValueError("no json")
    else:
        resp.json.return_value = payload
    return resp


# ── Templates ──────────────────────────────────────────────────────────────────

class RenderMessageTests(TestCase):
    def test_fill_replaces_known_placeholders_only(self):
        text = MessageTemplate.fill("Hi {name}, {unknown} {role}", {"name": "Ana", "role": None})
        self.assertEqual(text, "Hi Ana, {unknown} ")

    def test_fallback_used_without_db_template(self):
        subject, body = render_message(_T.REJECTION, _EMAIL, name="Ana", role="Designer")
        self.assertIn("Designer", subject)
        self.assertIn("Hi Ana", body)
        self.assertIn("not to move forward", body)
        self.assertIn("HirePilot", body)

    def test_active_db_template_wins(self):
        MessageTemplate.objects.create(
            message_type=_T.WELCOME, channel=_WA, body="Custom hello {name} from {company}",
        )
        _subject, body = render_message(_T.WELCOME, _WA, name="Ana", company="Acme")
        self.assertEqual(body, "Custom hello Ana from Acme")

    def test_inactive_db_template_is_ignored(self):
        MessageTemplate.objects.create(message_type=_T.WELCOME, channel=_WA, body="Disabled", is_active=False)
        _subject, body = render_message(_T.WELCOME, _WA, name="Ana", role="Designer")
        self.assertNotEqual(body, "Disabled")
        self.assertIn("Thank you for applying", body)

    def test_unknown_combination_is_empty(self):
        self.assertEqual(render_message(_T.WELCOME, _EMAIL, name="Ana"), ("", ""))

    def test_render_html_includes_body_and_cta(self):
        html = render_html("Your portal", "Hello Ana", cta_label="Open my portal", cta_url="https://x/portal?token=abc")
        self.assertIn("Hello Ana", html)
        self.assertIn("Open my portal", html)
        self.assertIn("https://x/portal?token=abc", html)


# ── WhatsApp ───────────────────────────────────────────────────────────────────

@override_settings(**TWILIO)
class WhatsAppServiceTests(TestCase):
    def test_missing_phone(self):
        self.assertEqual(WhatsAppService(sandbox=False).send_text("", "hi"), (False, "No phone number"))
        self.assertEqual(WhatsAppService(sandbox=False).send_text("n/a", "hi"), (False, "No phone number"))

    def test_sandbox_never_calls_api(self):
        session = MagicMock()
        self.assertEqual(WhatsAppService(sandbox=True, session=session).send_text("9876543210", "hi"), (True, SANDBOX_ID))
        session.post.assert_not_called()

    @override_settings(TWILIO_AUTH_TOKEN="")
    def test_not_configured(self):
        with self.assertLogs("messaging.services", level="WARNING"):
            result = WhatsAppService(sandbox=False, session=MagicMock()).send_text("9876543210", "hi")
        self.assertEqual(result, (False, "WhatsApp not configured"))

    def test_success(self):
        session = MagicMock()
        session.post.return_value = _response(201, {"sid": "SM1"})
        result = WhatsAppService(sandbox=False, session=session).send_text("98765 43210", "Hello")

        self.assertEqual(result, (True, "SM1"))
        url = session.post.call_args.args[0]
        self.assertEqual(url, "https://api.twilio.com/2010-04-01/Accounts/AC123/Messages.json")
        kwargs = session.post.call_args.kwargs
        self.assertEqual(kwargs["data"], {
            "From": "whatsapp:+14155238886",
            "To": "whatsapp:+919876543210",
            "Body": "Hello",
        })
        self.assertEqual(kwargs["auth"], ("AC123", "secret"))

    def test_api_error_message(self):
        session = MagicMock()
        session.post.return_value = _response(400, {"message": "Invalid 'To' number"})
        result = WhatsAppService(sandbox=False, session=session).send_text("+44 7700 900123", "Hello")
        self.assertEqual(result, (False, "Invalid 'To' number"))
        self.assertEqual(session.post.call_args.kwargs["data"]["To"], "whatsapp:+447700900123")

    def test_error_without_json(self):
        session = MagicMock()
        session.post.return_value = _response(500)
        self.assertEqual(WhatsAppService(sandbox=False, session=session).send_text("9876543210", "x"), (False, "HTTP 500"))


# ── Gmail ──────────────────────────────────────────────────────────────────────

class GmailServiceTests(TestCase):
    def test_sandbox_and_missing_recipient(self):
        gmail = GmailService(sandbox=True)
        self.assertEqual(gmail.send_email("ana@example.com", "s", "b"), SANDBOX_ID)
        self.assertIsNone(gmail.send_email("", "s", "b"))

    def test_missing_credentials_is_a_soft_failure(self):
        gmail = GmailService(sandbox=False)
        with self.assertLogs("messaging.services", level="ERROR"):
            self.assertIsNone(gmail.send_email("ana@example.com", "Subject", "Body"))

    def test_rebuilds_service_once_on_401(self):
        stale, fresh = MagicMock(), MagicMock()
        stale.users.return_value.messages.return_value.send.return_value.execute.side_effect = Exception("HttpError 401")
        fresh.users.return_value.messages.return_value.send.return_value.execute.return_value = {"id": "m-1"}

        with patch.object(GmailService, "_build_service", side_effect=[stale, fresh]) as build:
            msg_id = GmailService(sandbox=False).send_email("ana@example.com", "Subject", "Body", html_body="<p>Body</p>")

        self.assertEqual(msg_id, "m-1")
        self.assertEqual(build.call_count, 2)
        sent = fresh.users.return_value.messages.return_value.send.call_args.kwargs["body"]
        raw = base64.urlsafe_b64decode(sent["raw"]).decode("utf-8")
        self.assertIn("Subject: Subject", raw)
        self.assertIn("text/html", raw)

    def test_reply_keeps_thread(self):
        gmail = GmailService(sandbox=True)
        message = {
            "subject": "My application",
            "sender_email": "ana@example.com",
            "thread_id": "t-1",
            "message_id_header": "<abc@mail>",
        }
        with patch.object(gmail, "send_email", return_value="m-2") as send:
            self.assertEqual(gmail.reply(message, "Thanks"), "m-2")
        send.assert_called_once_with(
            "ana@example.com", "Re: My application", "Thanks",
            html_body=None, thread_id="t-1", in_reply_to="<abc@mail>",
        )

    def test_reply_does_not_double_prefix(self):
        gmail = GmailService(sandbox=True)
        with patch.object(gmail, "send_email") as send:
            gmail.reply({"subject": "RE: Test", "sender_email": "a@b.c"}, "x")
        self.assertEqual(send.call_args.args[1], "RE: Test")

    def test_extract_body_prefers_plain_text(self):
        payload = {
            "mimeType": "multipart/alternative",
            "parts": [
                {"mimeType": "text/html", "body": {"data": _b64("<p>HTML version</p>")}},
                {"mimeType": "text/plain", "body": {"data": _b64("Plain version")}},
            ],
        }
        self.assertEqual(GmailService._extract_body(payload), "Plain version")

    def test_extract_body_falls_back_to_stripped_html(self):
        payload = {"mimeType": "text/html", "body": {"data": _b64("<div>Hello <b>there</b></div>")}}
        self.assertEqual(GmailService._extract_body(payload), "Hello there")

    def test_collect_attachment_parts_recurses(self):
        payload = {
            "parts": [
                {"mimeType": "text/plain", "body": {"data": _b64("hi")}},
                {"parts": [
                    {"filename": "test.pdf", "mimeType": "application/pdf", "body": {"attachmentId": "a1"}},
                    {"filename": "inline.png", "body": {}},
                ]},
            ],
        }
        parts = GmailService._collect_attachment_parts(payload)
        self.assertEqual(parts, [{"filename": "test.pdf", "att_id": "a1", "mime_type": "application/pdf"}])

    def test_list_messages_parses_headers_and_attachments(self):
        service = MagicMock()
        messages = service.users.return_value.messages.return_value
        messages.list.return_value.execute.return_value = {"messages": [{"id": "m-1"}]}
        messages.get.return_value.execute.return_value = {
            "threadId": "t-1",
            "payload": {
                "headers": [
                    {"name": "From", "value": "Ana Pop <Ana@Example.com>"},
                    {"name": "Subject", "value": "Test submission"},
                    {"name": "Message-ID", "value": "<id@mail>"},
                ],
                "parts": [
                    {"mimeType": "text/plain", "body": {"data": _b64("Please find attached")}},
                    {"filename": "work.pdf", "mimeType": "application/pdf", "body": {"attachmentId": "a1"}},
                ],
            },
        }
        messages.attachments.return_value.get.return_value.execute.return_value = {"data": _b64("PDFDATA")}

        gmail = GmailService(sandbox=False)
        gmail._service = service
        result = gmail.list_messages("is:unread", max_results=5)

        self.assertEqual(len(result), 1)
        message = result[0]
        self.assertEqual(message["sender_email"], "ana@example.com")
        self.assertEqual(message["subject"], "Test submission")
        self.assertEqual(message["body"], "Please find attached")
        self.assertEqual(message["attachments"][0]["data"], b"PDFDATA")
        messages.list.assert_called_once_with(userId="me", q="is:unread", maxResults=5)

    def test_label_lookup_creates_missing_label(self):
        service = MagicMock()
        labels = service.users.return_value.labels.return_value
        labels.list.return_value.execute.return_value = {"labels": [{"name": "INBOX", "id": "INBOX"}]}
        labels.create.return_value.execute.return_value = {"id": "Label_7"}
        gmail = GmailService(sandbox=False)
        gmail._service = service

        self.assertEqual(gmail.get_or_create_label("HIREPILOT_PROCESSED"), "Label_7")
        self.assertTrue(gmail.add_label("m-1", "Label_7"))


# ── Notifications ──────────────────────────────────────────────────────────────

class NotifyTests(TestCase):
    def test_admin_not_configured(self):
        gmail = MagicMock()
        with self.assertLogs("messaging.services", level="WARNING"):
            self.assertIsNone(notify_admin("Alert", "body", gmail=gmail, config=PipelineConfig()))
        gmail.send_email.assert_not_called()

    def test_admin_subject_is_prefixed_and_collapsed(self):
        gmail = MagicMock()
        gmail.send_email.return_value = "m-1"
        config = PipelineConfig(admin_email="hr@example.com", company_name="Acme")
        attachments = [{"name": "a.pdf", "data": b"x"}]

        self.assertEqual(notify_admin("New\n  application", "body", attachments=attachments, gmail=gmail, config=config), "m-1")
        gmail.send_email.assert_called_once_with(
            "hr@example.com", "[Acme] New application", "body", html_body=None, attachments=attachments,
        )

    def test_team_falls_back_to_admin(self):
        gmail = MagicMock()
        gmail.send_email.return_value = "m-1"
        sent = notify_team("Hire", "body", gmail=gmail, config=PipelineConfig(admin_email="hr@example.com"))
        self.assertEqual(sent, ["m-1"])
        self.assertEqual(gmail.send_email.call_args.args[0], "hr@example.com")

    def test_team_sends_to_each_member(self):
        gmail = MagicMock()
        gmail.send_email.side_effect = ["m-1", None]
        config = PipelineConfig(admin_email="hr@example.com", team_emails=("a@example.com", "b@example.com"))
        self.assertEqual(notify_team("Hire", "body", gmail=gmail, config=config), ["m-1"])
        self.assertEqual([c.args[0] for c in gmail.send_email.call_args_list], ["a@example.com", "b@example.com"])


# ── Retry queue ────────────────────────────────────────────────────────────────

class RetryQueueTests(TestCase):
    def setUp(self):
        self.candidate = Candidate.objects.create(name="Ana", email="ana@example.com", phone="9876543210")
        self.whatsapp = MagicMock()
        self.gmail = MagicMock()
        self.config = PipelineConfig(retry_max_attempts=2)

    def _enqueue_whatsapp(self):
        return retry.enqueue(
            _WA, "9876543210", _T.INTERVIEW_SCHEDULE, {"name": "Ana", "role": "Designer", "date": "Monday"},
            "HTTP 503", candidate=self.candidate,
        )

    def test_enqueue_persists_everything_needed_to_replay(self):
        item = self._enqueue_whatsapp()
        self.assertEqual(item.status, RetryItem.Status.PENDING)
        self.assertEqual(item.attempts, 0)
        self.assertEqual(item.last_error, "HTTP 503")
        self.assertEqual(item.params["date"], "Monday")

    def test_successful_replay(self):
        item = self._enqueue_whatsapp()
        self.whatsapp.send_text.return_value = (True, "SM1")

        summary = retry.drain(whatsapp=self.whatsapp, gmail=self.gmail, config=self.config)

        self.assertEqual(summary, {"sent": 1, "retrying": 0, "failed": 0})
        phone, body = self.whatsapp.send_text.call_args.args
        self.assertEqual(phone, "9876543210")
        self.assertIn("Monday", body)
        item.refresh_from_db()
        self.assertEqual(item.status, RetryItem.Status.SENT)
        self.assertIsNotNone(item.sent_at)

    def test_gives_up_after_max_attempts(self):
        item = self._enqueue_whatsapp()
        self.whatsapp.send_text.return_value = (False, "HTTP 500")

        first = retry.drain(whatsapp=self.whatsapp, gmail=self.gmail, config=self.config)
        with self.assertLogs("messaging.retry", level="ERROR"):
            second = retry.drain(whatsapp=self.whatsapp, gmail=self.gmail, config=self.config)
        third = retry.drain(whatsapp=self.whatsapp, gmail=self.gmail, config=self.config)

        self.assertEqual(first["retrying"], 1)
        self.assertEqual(second["failed"], 1)
        self.assertEqual(third, {"sent": 0, "retrying": 0, "failed": 0})
        item.refresh_from_db()
        self.assertEqual(item.status, RetryItem.Status.FAILED)
        self.assertEqual(item.attempts, 2)

    def test_email_items_and_exceptions(self):
        retry.enqueue(_EMAIL, "ana@example.com", _T.REJECTION, {"name": "Ana", "role": "Designer"}, candidate=self.candidate)
        self._enqueue_whatsapp()
        self.gmail.send_email.return_value = None
        self.whatsapp.send_text.side_effect = RuntimeError("boom")

        summary = retry.drain(whatsapp=self.whatsapp, gmail=self.gmail, config=self.config)

        self.assertEqual(summary["retrying"], 2)
        to, subject, _body = self.gmail.send_email.call_args.args
        self.assertEqual(to, "ana@example.com")
        self.assertIn("Designer", subject)
        errors = sorted(RetryItem.objects.values_list("last_error", flat=True))
        self.assertEqual(errors, ["Gmail send failed", "boom"])

    def test_max_items(self):
        self._enqueue_whatsapp()
        self._enqueue_whatsapp()
        self.whatsapp.send_text.return_value = (True, "SM1")
        summary = retry.drain(max_items=1, whatsapp=self.whatsapp, gmail=self.gmail, config=self.config)
        self.assertEqual(summary["sent"], 1)
        self.assertEqual(RetryItem.objects.filter(status=RetryItem.Status.PENDING).count(), 1)


# ── Critical alerts ────────────────────────────────────────────────────────────

class CriticalAlertHandlerTests(TestCase):
    def _record(self, message, exc_info=None):
        return logging.LogRecord("pipeline.engine", logging.CRITICAL, __file__, 1, message, None, exc_info)

    def test_emails_admin_with_traceback(self):
        try:
            raise RuntimeError("handler exploded")
        except RuntimeError:
            exc_info = sys.exc_info()

        with patch("messaging.services.notify_admin") as notify:
            CriticalAlertHandler().emit(self._record("Status handler failed", exc_info))

        subject, body = notify.call_args.args
        self.assertEqual(subject, "CRITICAL: Status handler failed")
        self.assertIn("[pipeline.engine]", body)
        self.assertIn("RuntimeError: handler exploded", body)

    def test_alert_failure_does_not_recurse(self):
        handler = CriticalAlertHandler()

        def nested(*args, **kwargs):
            handler.emit(self._record("second"))

        with patch("messaging.services.notify_admin", side_effect=nested) as notify:
            handler.emit(self._record("first"))
        self.assertEqual(notify.call_count, 1)

    def test_only_critical_level(self):
        self.assertEqual(CriticalAlertHandler().level, logging.CRITICAL)


# ── Seed command ───────────────────────────────────────────────────────────────

class SeedMessageTemplatesTests(TestCase):
    def test_seeds_once_and_force_overwrites(self):
        call_command("seed_message_templates", stdout=io.StringIO())
        self.assertEqual(MessageTemplate.objects.count(), len(_FALLBACK_BODIES))
        rejection = MessageTemplate.objects.get(message_type=_T.REJECTION, channel=_EMAIL)
        self.assertEqual(rejection.subject, "Your application — {role}")
        welcome = MessageTemplate.objects.get(message_type=_T.WELCOME, channel=_WA)
        self.assertEqual(welcome.subject, "")

        rejection.body = "Edited"
        rejection.save()
        call_command("seed_message_templates", stdout=io.StringIO())
        rejection.refresh_from_db()
        self.assertEqual(rejection.body, "Edited")

        call_command("seed_message_templates", "--force", stdout=io.StringIO())
        rejection.refresh_from_db()
        self.assertEqual(rejection.body, _FALLBACK_BODIES[(_T.REJECTION, _EMAIL)])
