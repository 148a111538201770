"""
inbox/tests.py

Covers:
  - InboxProcessor.process   : idempotency (ProcessedEmail + label), failure recording,
                               body truncation, unclassified messages
  - intent handlers          : test submission, new application (duplicate / spam / create),
                               form response, follow-up, question, escalation
"""

from unittest.mock import MagicMock

from django.test import TestCase

from ai.services import IntentResult, SpamVerdict
from candidates.models import Candidate, TimelineEvent
from hirepilot.config import PipelineConfig
from inbox.models import ProcessedEmail
from inbox.services import UNKNOWN_SENDER_REPLY, InboxProcessor

S = Candidate.Status


# ── Helpers ────────────────────────────────────────────────────────────────────

def _message(msg_id="m-1", sender="Ana Pop <ana@example.com>", subject="Hello", body="Hi there", attachments=None):
    return {
        "id": msg_id,
        "thread_id": f"t-{msg_id}",
        "sender": sender,
        "sender_email": sender.split("<")[-1].rstrip(">").lower(),
        "subject": subject,
        "body": body,
        "message_id_header": f"<{msg_id}@mail>",
        "attachments": attachments or [],
    }


def _make_candidate(**kwargs) -> Candidate:
    defaults = dict(
        name="Ana Pop",
        email="ana@example.com",
        phone="9876543210",
        role="Junior Interior Designer",
        department="DESIGN",
    )
    defaults.update(kwargs)
    return Candidate.objects.create(**defaults)


class InboxTestCase(TestCase):
    def setUp(self):
        self.gmail = MagicMock()
        self.gmail.get_or_create_label.return_value = "Label_1"
        self.gmail.send_email.return_value = "sent-1"
        self.ai = MagicMock()
        self.ai.detect_spam.return_value = SpamVerdict(is_spam=False)
        self.engine = MagicMock()
        self.config = PipelineConfig(
            admin_email="hr@example.com",
            application_form_url="https://forms.example.com/apply",
        )
        self.processor = self._processor(self.config)

    def _processor(self, config):
        return InboxProcessor(config, gmail=self.gmail, ai=self.ai, engine=self.engine)

    def _run(self, message, intent, **intent_kwargs):
        self.gmail.list_messages.return_value = [message]
        self.ai.classify_intent.return_value = IntentResult(intent=intent, confidence=0.9, **intent_kwargs)
        return self.processor.process()

    def _reply_body(self):
        return self.gmail.reply.call_args.args[1]


# ── Processing loop ────────────────────────────────────────────────────────────

class ProcessLoopTests(InboxTestCase):
    def test_query_excludes_processed_label(self):
        self.gmail.list_messages.return_value = []
        self.processor.process()
        query = self.gmail.list_messages.call_args.args[0]
        self.assertEqual(query, "is:unread -label:HIREPILOT_PROCESSED -category:social")
        self.assertEqual(self.gmail.list_messages.call_args.kwargs["max_results"], 10)

    def test_already_processed_message_only_gets_label(self):
        ProcessedEmail.objects.create(message_id="m-1", outcome=ProcessedEmail.Outcome.HANDLED)
        self.gmail.list_messages.return_value = [_message()]

        summary = self.processor.process()

        self.assertEqual(summary, {"already_processed": 1})
        self.ai.classify_intent.assert_not_called()
        self.gmail.add_label.assert_called_once_with("m-1", "Label_1")

    def test_processed_twice_is_handled_once(self):
        _make_candidate()
        self._run(_message(), "FOLLOWUP")
        self.processor.process()

        self.assertEqual(self.gmail.reply.call_count, 1)
        self.assertEqual(ProcessedEmail.objects.count(), 1)

    def test_unclassified_message_is_recorded_without_reply(self):
        self.gmail.list_messages.return_value = [_message()]
        self.ai.classify_intent.return_value = None

        summary = self.processor.process()

        self.assertEqual(summary, {"skipped": 1})
        self.gmail.reply.assert_not_called()
        record = ProcessedEmail.objects.get(message_id="m-1")
        self.assertEqual(record.intent, "")
        self.gmail.add_label.assert_called_once_with("m-1", "Label_1")

    def test_handler_failure_is_recorded_and_labelled(self):
        _make_candidate()
        self.gmail.reply.side_effect = RuntimeError("gmail down")

        with self.assertLogs("inbox.services", level="ERROR"):
            summary = self._run(_message(), "FOLLOWUP")

        self.assertEqual(summary, {"failed": 1})
        record = ProcessedEmail.objects.get(message_id="m-1")
        self.assertEqual(record.outcome, ProcessedEmail.Outcome.FAILED)
        self.assertEqual(record.error, "gmail down")
        self.gmail.add_label.assert_called_once_with("m-1", "Label_1")

    def test_label_failure_does_not_block_recording(self):
        self.gmail.get_or_create_label.return_value = None
        self._run(_message(), "SPAM")
        self.assertTrue(ProcessedEmail.objects.filter(message_id="m-1", outcome="skipped").exists())
        self.gmail.add_label.assert_not_called()

    def test_body_is_truncated_before_classification(self):
        processor = self._processor(PipelineConfig(inbox_body_limit=5))
        self.gmail.list_messages.return_value = [_message(body="0123456789")]
        self.ai.classify_intent.return_value = None
        processor.process()
        self.ai.classify_intent.assert_called_once_with("Hello", "01234", False)

    def test_spam_intent_is_skipped(self):
        summary = self._run(_message(), "SPAM")
        self.assertEqual(summary, {"skipped": 1})
        self.gmail.reply.assert_not_called()


# ── TEST_SUBMISSION ────────────────────────────────────────────────────────────

class TestSubmissionTests(InboxTestCase):
    def test_known_sender(self):
        candidate = _make_candidate(status=S.TEST_SENT)
        attachments = [{"name": "work.pdf", "data": b"%PDF", "mime_type": "application/pdf"}]

        summary = self._run(_message(subject="My test", attachments=attachments), "TEST_SUBMISSION")

        self.assertEqual(summary, {"handled": 1})
        candidate.refresh_from_db()
        self.assertEqual(candidate.status, S.TEST_SUBMITTED)
        self.assertIsNotNone(candidate.test_submitted_at)
        self.engine.dispatch.assert_called_once()

        admin_call = self.gmail.send_email.call_args
        self.assertEqual(admin_call.args[0], "hr@example.com")
        self.assertEqual(admin_call.kwargs["attachments"], [{"name": "work.pdf", "data": b"%PDF"}])
        self.assertIn("received your test submission", self._reply_body())

        event = TimelineEvent.objects.get(candidate=candidate, event_type="TEST_RECEIVED_EMAIL")
        self.assertEqual(event.payload["attachments"], ["work.pdf"])
        self.assertEqual(ProcessedEmail.objects.get(message_id="m-1").candidate, candidate)

    def test_unknown_sender(self):
        summary = self._run(_message(sender="stranger@example.com"), "TEST_SUBMISSION")
        self.assertEqual(summary, {"skipped": 1})
        self.assertEqual(self._reply_body(), UNKNOWN_SENDER_REPLY)
        self.engine.dispatch.assert_not_called()


# ── NEW_APPLICATION ────────────────────────────────────────────────────────────

class NewApplicationTests(InboxTestCase):
    def setUp(self):
        super().setUp()
        self.ai.extract_candidate_info.return_value = {
            "name": "Rahul Verma",
            "email": None,
            "phone": "+91 91234 56789",
            "role": "Social Media Executive",
            "portfolioLinks": ["https://rahul.design"],
            "portfolioUrl": "https://rahul.design",
        }

    def test_creates_candidate_and_acknowledges(self):
        summary = self._run(_message(sender="Rahul <rahul@example.com>"), "NEW_APPLICATION")

        self.assertEqual(summary, {"handled": 1})
        candidate = Candidate.objects.get(email="rahul@example.com")
        self.assertEqual(candidate.name, "Rahul Verma")
        self.assertEqual(candidate.department, "MARKETING")
        self.assertEqual(candidate.source, Candidate.Source.EMAIL)
        self.assertEqual(candidate.portfolio_url, "https://rahul.design")
        self.engine.dispatch.assert_called_once_with(candidate)
        self.assertIn("https://forms.example.com/apply", self._reply_body())
        self.assertTrue(TimelineEvent.objects.filter(candidate=candidate, event_type="APPLICATION_EMAIL").exists())

    def test_duplicate_gets_status_reply(self):
        existing = _make_candidate(status=S.TEST_SENT)
        summary = self._run(_message(), "NEW_APPLICATION")

        self.assertEqual(summary, {"skipped": 1})
        self.assertIn("already applied", self._reply_body())
        self.assertIn("Test Sent", self._reply_body())
        self.assertEqual(Candidate.objects.count(), 1)
        event = TimelineEvent.objects.get(event_type="DUPLICATE_APPLICATION")
        self.assertEqual(event.candidate, existing)
        self.assertEqual(event.payload["matchType"], "EMAIL_EXACT")
        self.ai.extract_candidate_info.assert_not_called()

    def test_without_duplicate_check_existing_email_gets_status(self):
        _make_candidate()
        processor = self._processor(PipelineConfig(duplicate_check=False))
        self.gmail.list_messages.return_value = [_message()]
        self.ai.classify_intent.return_value = IntentResult(intent="NEW_APPLICATION")

        self.assertEqual(processor.process(), {"skipped": 1})
        self.assertIn("is currently: New", self._reply_body())

    def test_extraction_failure(self):
        self.ai.extract_candidate_info.return_value = None
        with self.assertLogs("inbox.services", level="ERROR"):
            summary = self._run(_message(sender="new@example.com"), "NEW_APPLICATION")
        self.assertEqual(summary, {"failed": 1})
        self.assertFalse(Candidate.objects.exists())

    def test_confident_spam_is_blocked(self):
        self.ai.detect_spam.return_value = SpamVerdict(is_spam=True, confidence=0.95, reasons=["crypto"])
        summary = self._run(_message(sender="spam@example.com"), "NEW_APPLICATION")

        self.assertEqual(summary, {"skipped": 1})
        self.assertFalse(Candidate.objects.exists())
        event = TimelineEvent.objects.get(event_type="SPAM_BLOCKED")
        self.assertIsNone(event.candidate)
        self.assertEqual(event.email, "spam@example.com")
        self.gmail.reply.assert_not_called()

    def test_spam_threshold_is_strict(self):
        self.ai.detect_spam.return_value = SpamVerdict(is_spam=True, confidence=0.8)
        summary = self._run(_message(sender="edge@example.com"), "NEW_APPLICATION")
        self.assertEqual(summary, {"handled": 1})
        self.assertTrue(Candidate.objects.filter(email="edge@example.com").exists())


# ── FORM_RESPONSE ──────────────────────────────────────────────────────────────

class FormResponseTests(InboxTestCase):
    def test_new_candidate_is_dispatched(self):
        self.ai.extract_form_response.return_value = {"email": "form@example.com", "name": "Form Person", "role": "Sales"}
        summary = self._run(_message(sender="form@example.com"), "FORM_RESPONSE")

        self.assertEqual(summary, {"handled": 1})
        candidate = Candidate.objects.get(email="form@example.com")
        self.assertEqual(candidate.department, "SALES")
        self.engine.dispatch.assert_called_once_with(candidate)

    def test_existing_candidate_is_updated_without_dispatch(self):
        candidate = _make_candidate()
        self.ai.extract_form_response.return_value = {"email": "ana@example.com", "city": "Pune"}
        self._run(_message(), "FORM_RESPONSE")
        candidate.refresh_from_db()
        self.assertEqual(candidate.city, "Pune")
        self.engine.dispatch.assert_not_called()

    def test_extraction_failure(self):
        self.ai.extract_form_response.return_value = None
        with self.assertLogs("inbox.services", level="ERROR"):
            self.assertEqual(self._run(_message(), "FORM_RESPONSE"), {"failed": 1})


# ── FOLLOWUP / QUESTION / ESCALATE ─────────────────────────────────────────────

class ConversationIntentTests(InboxTestCase):
    def test_followup_known_sender_gets_status(self):
        candidate = _make_candidate(status=S.UNDER_REVIEW)
        self.assertEqual(self._run(_message(), "FOLLOWUP"), {"handled": 1})
        self.assertIn("is currently: Under Review", self._reply_body())
        self.assertTrue(TimelineEvent.objects.filter(candidate=candidate, event_type="FOLLOWUP_REPLIED").exists())

    def test_followup_stranger_gets_nothing(self):
        self.assertEqual(self._run(_message(sender="who@example.com"), "FOLLOWUP"), {"skipped": 1})
        self.gmail.reply.assert_not_called()

    def test_question_answered(self):
        _make_candidate()
        self.ai.suggest_reply.return_value = "The test takes about three hours."
        self.assertEqual(self._run(_message(body="How long is the test?"), "QUESTION"), {"handled": 1})
        self.assertEqual(self._reply_body(), "The test takes about three hours.")
        context = self.ai.suggest_reply.call_args.args[1]
        self.assertEqual(context["status"], "New")
        self.gmail.send_email.assert_not_called()

    def test_question_escalated_when_no_safe_reply(self):
        self.ai.suggest_reply.return_value = None
        self._run(_message(sender="who@example.com", subject="Salary?"), "QUESTION")
        self.gmail.reply.assert_not_called()
        to, subject, _body = self.gmail.send_email.call_args.args
        self.assertEqual(to, "hr@example.com")
        self.assertIn("Question needs a reply: Salary?", subject)
        self.assertTrue(TimelineEvent.objects.filter(email="who@example.com", event_type="QUESTION_ESCALATED").exists())

    def test_escalation_forwards_and_acknowledges(self):
        attachments = [{"name": "complaint.pdf", "data": b"x", "mime_type": "application/pdf"}]
        self._run(_message(subject="Complaint", attachments=attachments), "ESCALATE")

        admin_call = self.gmail.send_email.call_args
        self.assertIn("Escalation: Complaint", admin_call.args[1])
        self.assertEqual(admin_call.kwargs["attachments"], [{"name": "complaint.pdf", "data": b"x"}])
        self.assertIn("A member of our team will get back", self._reply_body())
        self.assertTrue(TimelineEvent.objects.filter(event_type="ESCALATED").exists())

    def test_escalation_from_unknown_sender_greets_generically(self):
        self._run(_message(sender="who@example.com", subject="Complaint"), "ESCALATE")
        self.assertTrue(self._reply_body().startswith("Hi there,"))

    def test_escalation_from_unknown_sender_uses_display_name(self):
        self._run(_message(sender="Ravi Kumar <ravi@example.com>", subject="Complaint"), "ESCALATE")
        self.assertTrue(self._reply_body().startswith("Hi Ravi Kumar,"))

    def test_escalation_from_candidate_uses_stored_name(self):
        _make_candidate(name="Ana P.")
        self._run(_message(subject="Complaint"), "ESCALATE")
        self.assertTrue(self._reply_body().startswith("Hi Ana P.,"))
