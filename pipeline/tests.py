"""
pipeline/tests.py

Covers:
  - transition_status          : allowed vs. irregular transitions, strict mode, same-status no-op
  - WorkflowEngine.dispatch    : handler table, failures contained and logged CRITICAL
  - evaluate_submission_timing : on-time / late description
  - StatusHandlers             : one test group per actionable status
  - dispatch_status command
"""

from datetime import timedelta
from unittest.mock import MagicMock, patch

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase
from django.utils import timezone

from ai.services import PortfolioScore
from candidates.models import Candidate, TimelineEvent
from hirepilot.config import PipelineConfig
from messaging.models import RetryItem
from pipeline.engine import HANDLER_TABLE, WorkflowEngine
from pipeline.handlers import NO_INTERVIEW_DATE, StatusHandlers, evaluate_submission_timing
from pipeline.models import StatusChange
from pipeline.transitions import (
    ADMIN_CHANGE_NOTE,
    ALLOWED_TRANSITIONS,
    InvalidTransition,
    is_allowed,
    set_rejected,
    transition_status,
)

S = Candidate.Status


# ── Helpers ────────────────────────────────────────────────────────────────────

def _make_candidate(**kwargs) -> Candidate:
    defaults = dict(
        name="Ana Pop",
        email="ana@example.com",
        phone="+91 98765 43210",
        role="Junior Interior Designer",
        department="DESIGN",
    )
    defaults.update(kwargs)
    return Candidate.objects.create(**defaults)


def _config(**kwargs) -> PipelineConfig:
    defaults = dict(
        admin_email="hr@example.com",
        team_emails=("team@example.com",),
        time_limits={"DESIGN": {"intern": 2, "junior": 3, "senior": 4}},
        test_links={"DESIGN": {"junior": "https://tests.example.com/junior"}},
        portal_url="https://hirepilot.example.com/portal/",
        timezone="UTC",
    )
    defaults.update(kwargs)
    return PipelineConfig(**defaults)


def _events(candidate, event_type) -> list[TimelineEvent]:
    return list(TimelineEvent.objects.filter(candidate=candidate, event_type=event_type))


# ── Transitions ────────────────────────────────────────────────────────────────

class TransitionTableTests(TestCase):
    def test_every_status_has_an_entry(self):
        self.assertEqual(set(ALLOWED_TRANSITIONS), set(S.values))

    def test_terminal_statuses(self):
        self.assertEqual(ALLOWED_TRANSITIONS[S.REJECTED], frozenset())
        self.assertEqual(ALLOWED_TRANSITIONS[S.HIRED], frozenset())

    def test_main_path_and_reject_paths(self):
        self.assertTrue(is_allowed(S.NEW, S.TEST_SENT))
        self.assertTrue(is_allowed(S.INTERVIEW_DONE, S.HIRED))
        self.assertTrue(is_allowed(S.UNDER_REVIEW, S.PENDING_REJECTION))
        self.assertTrue(is_allowed(S.PENDING_REJECTION, S.IN_PROCESS))
        self.assertFalse(is_allowed(S.NEW, S.HIRED))


class TransitionStatusTests(TestCase):
    def setUp(self):
        self.engine = MagicMock()
        self.candidate = _make_candidate()

    def test_allowed_transition_is_audited_and_dispatched(self):
        changed = transition_status(self.candidate, S.IN_PROCESS, engine=self.engine, config=_config())

        self.assertTrue(changed)
        change = StatusChange.objects.get(candidate=self.candidate)
        self.assertEqual((change.from_status, change.to_status), (S.NEW, S.IN_PROCESS))
        self.assertEqual(change.note, "Automatic transition to IN_PROCESS")
        self.assertFalse(change.is_irregular)
        self.engine.dispatch.assert_called_once_with(self.candidate)

    def test_irregular_transition_is_flagged_but_applied(self):
        with self.assertLogs("pipeline.transitions", level="WARNING"):
            transition_status(self.candidate, S.HIRED, engine=self.engine, config=_config())
        self.candidate.refresh_from_db()
        self.assertEqual(self.candidate.status, S.HIRED)
        self.assertTrue(StatusChange.objects.get(candidate=self.candidate).is_irregular)

    def test_strict_mode_refuses_irregular_transition(self):
        with self.assertRaises(InvalidTransition):
            transition_status(self.candidate, S.HIRED, engine=self.engine, config=_config(strict_transitions=True))
        self.candidate.refresh_from_db()
        self.assertEqual(self.candidate.status, S.NEW)
        self.assertFalse(StatusChange.objects.exists())
        self.engine.dispatch.assert_not_called()

    def test_same_status_is_a_no_op(self):
        self.assertFalse(transition_status(self.candidate, S.NEW, engine=self.engine, config=_config()))
        self.engine.dispatch.assert_not_called()
        self.assertFalse(StatusChange.objects.exists())

    def test_dispatch_false_skips_handler(self):
        transition_status(self.candidate, S.IN_PROCESS, dispatch=False, engine=self.engine, config=_config())
        self.engine.dispatch.assert_not_called()

    def test_changed_by_and_note(self):
        user = get_user_model().objects.create_user("recruiter", password="pw")
        self.candidate.status = S.UNDER_REVIEW
        self.candidate.save()
        set_rejected(self.candidate, changed_by=user, note="Weak portfolio", engine=self.engine, config=_config())
        change = StatusChange.objects.get(candidate=self.candidate)
        self.assertEqual(change.changed_by, user)
        self.assertEqual(change.note, "Weak portfolio")

    def test_default_engine_is_resolved_lazily(self):
        with patch("pipeline.engine.get_engine", return_value=self.engine):
            transition_status(self.candidate, S.IN_PROCESS, config=_config())
        self.engine.dispatch.assert_called_once_with(self.candidate)


# ── Engine ─────────────────────────────────────────────────────────────────────

class WorkflowEngineTests(TestCase):
    def setUp(self):
        self.handlers = MagicMock(spec=StatusHandlers)
        self.engine = WorkflowEngine(handlers=self.handlers, config=_config())

    def test_handler_table_covers_actionable_statuses(self):
        self.assertNotIn(S.UNDER_REVIEW, HANDLER_TABLE)
        self.assertNotIn(S.INTERVIEW_DONE, HANDLER_TABLE)
        self.assertEqual(len(HANDLER_TABLE), 8)
        for name in HANDLER_TABLE.values():
            self.assertTrue(callable(getattr(StatusHandlers, name)))

    def test_dispatch_runs_exactly_one_handler(self):
        candidate = _make_candidate(status=S.TEST_SENT)
        self.assertTrue(self.engine.dispatch(candidate))
        self.handlers.handle_test_sent.assert_called_once_with(candidate)
        self.handlers.handle_new.assert_not_called()

    def test_status_without_handler(self):
        candidate = _make_candidate(status=S.UNDER_REVIEW)
        self.assertFalse(self.engine.dispatch(candidate))

    def test_handler_failure_is_contained(self):
        candidate = _make_candidate(status=S.HIRED)
        self.handlers.handle_hired.side_effect = RuntimeError("smtp down")
        with self.assertLogs("pipeline.engine", level="CRITICAL") as logs:
            self.assertFalse(self.engine.dispatch(candidate))
        self.assertIn("smtp down", logs.output[0])


# ── Submission timing ──────────────────────────────────────────────────────────

class SubmissionTimingTests(TestCase):
    def test_on_time(self):
        sent = timezone.now()
        timing = evaluate_submission_timing(sent, sent + timedelta(hours=1, minutes=30), 2)
        self.assertTrue(timing.on_time)
        self.assertEqual(timing.describe(), "On time: submitted in 1.5h (limit: 2h)")

    def test_late(self):
        sent = timezone.now()
        timing = evaluate_submission_timing(sent, sent + timedelta(hours=3, minutes=6), 2.5)
        self.assertFalse(timing.on_time)
        self.assertEqual(timing.describe(), "LATE: submitted in 3.1h (limit: 2.5h)")

    def test_minutes_over_the_limit_is_late(self):
        sent = timezone.now()
        timing = evaluate_submission_timing(sent, sent + timedelta(hours=2, minutes=2), 2)
        self.assertFalse(timing.on_time)
        self.assertEqual(timing.hours_rounded, 2.0)
        self.assertEqual(timing.describe(), "LATE: submitted in 2.0h (limit: 2h)")

    def test_exactly_on_the_limit_is_on_time(self):
        sent = timezone.now()
        self.assertTrue(evaluate_submission_timing(sent, sent + timedelta(hours=2), 2).on_time)

    def test_missing_timestamp(self):
        self.assertIsNone(evaluate_submission_timing(None, timezone.now(), 2))


# ── Handlers ───────────────────────────────────────────────────────────────────

class HandlerTestCase(TestCase):
    def setUp(self):
        self.whatsapp = MagicMock()
        self.whatsapp.send_text.return_value = (True, "SM123")
        self.gmail = MagicMock()
        self.gmail.send_email.return_value = "gmail-1"
        self.ai = MagicMock()
        self.calendar = MagicMock()
        self.config = _config()
        self.handlers = self._handlers(self.config)

    def _handlers(self, config):
        return StatusHandlers(
            config, whatsapp=self.whatsapp, gmail=self.gmail, ai=self.ai, calendar=self.calendar,
        )


class HandleNewTests(HandlerTestCase):
    def test_logs_and_notifies_admin(self):
        candidate = _make_candidate()
        self.handlers.handle_new(candidate)

        self.assertEqual(candidate.log, "Application logged")
        self.assertEqual(len(_events(candidate, "APPLICATION_RECEIVED")), 1)
        to, subject, _body = self.gmail.send_email.call_args.args
        self.assertEqual(to, "hr@example.com")
        self.assertTrue(subject.startswith("[HirePilot] New application: Ana Pop"))


class HandleInProcessTests(HandlerTestCase):
    def test_sends_welcome(self):
        candidate = _make_candidate(status=S.IN_PROCESS)
        self.handlers.handle_in_process(candidate)

        phone, body = self.whatsapp.send_text.call_args.args
        self.assertEqual(phone, "+91 98765 43210")
        self.assertIn("Ana Pop", body)
        self.assertEqual(candidate.log, "Welcome message sent")
        self.assertEqual(len(_events(candidate, "WELCOME_SENT")), 1)

    def test_no_phone(self):
        candidate = _make_candidate(status=S.IN_PROCESS, phone="")
        self.handlers.handle_in_process(candidate)
        self.whatsapp.send_text.assert_not_called()
        self.assertEqual(candidate.log, "No phone on file: welcome message not sent")

    def test_send_failure_is_logged(self):
        self.whatsapp.send_text.return_value = (False, "WhatsApp not configured")
        candidate = _make_candidate(status=S.IN_PROCESS)
        self.handlers.handle_in_process(candidate)
        self.assertEqual(candidate.log, "Welcome message failed: WhatsApp not configured")
        self.assertEqual(_events(candidate, "WELCOME_SENT"), [])


class HandleTestSentTests(HandlerTestCase):
    def test_sends_link_with_time_limit(self):
        candidate = _make_candidate(status=S.TEST_SENT)
        self.handlers.handle_test_sent(candidate)

        _phone, body = self.whatsapp.send_text.call_args.args
        self.assertIn("https://tests.example.com/junior", body)
        self.assertIn("3 hours", body)
        candidate.refresh_from_db()
        self.assertIsNotNone(candidate.test_sent_at)
        self.assertEqual(candidate.log, "Test sent (3h limit)")
        event = _events(candidate, "TEST_SENT")[0]
        self.assertEqual(event.payload["timeLimitHours"], 3.0)

    def test_missing_link_stops(self):
        candidate = _make_candidate(status=S.TEST_SENT, role="Senior Interior Designer")
        with self.assertLogs("pipeline.handlers", level="WARNING"):
            self.handlers.handle_test_sent(candidate)
        self.whatsapp.send_text.assert_not_called()
        self.assertEqual(candidate.log, "No test link configured for Senior Interior Designer")
        self.assertIsNone(candidate.test_sent_at)

    def test_send_failure_leaves_sent_at_empty(self):
        self.whatsapp.send_text.return_value = (False, "HTTP 500")
        candidate = _make_candidate(status=S.TEST_SENT)
        self.handlers.handle_test_sent(candidate)
        candidate.refresh_from_db()
        self.assertIsNone(candidate.test_sent_at)
        self.assertEqual(candidate.log, "Test link failed: HTTP 500")


class HandleTestSubmittedTests(HandlerTestCase):
    def setUp(self):
        super().setUp()
        self.ai.score_portfolio.return_value = PortfolioScore(
            score=7.5, recommendation="PROCEED", summary="Solid", strengths=["detail"],
        )

    def test_scores_notifies_and_advances(self):
        sent = timezone.now() - timedelta(hours=2)
        candidate = _make_candidate(
            status=S.TEST_SUBMITTED,
            portfolio_url="https://ana.design",
            test_sent_at=sent,
            test_submitted_at=sent + timedelta(hours=2, minutes=30),
        )
        self.handlers.handle_test_submitted(candidate)

        candidate.refresh_from_db()
        self.assertEqual(candidate.status, S.UNDER_REVIEW)
        self.assertEqual(candidate.portfolio_score, 7.5)
        self.assertIn("Strengths: detail", candidate.portfolio_feedback)
        self.assertEqual(candidate.log, "On time: submitted in 2.5h (limit: 3h)")
        self.ai.score_portfolio.assert_called_once_with("https://ana.design", "Junior Interior Designer")
        self.assertEqual(len(_events(candidate, "PORTFOLIO_SCORED")), 1)
        self.assertEqual(_events(candidate, "TEST_SUBMITTED")[0].payload["onTime"], True)

        to, subject, body = self.gmail.send_email.call_args.args
        self.assertEqual(to, "team@example.com")
        self.assertIn("AI score: 7.5/10 (PROCEED)", body)

        change = StatusChange.objects.get(candidate=candidate)
        self.assertEqual(change.to_status, S.UNDER_REVIEW)

    def test_late_submission(self):
        sent = timezone.now() - timedelta(hours=5)
        candidate = _make_candidate(status=S.TEST_SUBMITTED, test_sent_at=sent, test_submitted_at=sent + timedelta(hours=4))
        self.handlers.handle_test_submitted(candidate)
        self.assertTrue(candidate.log.startswith("LATE: submitted in 4.0h"))

    def test_failed_scoring_is_not_stored(self):
        self.ai.score_portfolio.return_value = PortfolioScore.fallback("All AI providers failed")
        candidate = _make_candidate(status=S.TEST_SUBMITTED, portfolio_url="https://ana.design")

        with self.assertLogs("pipeline.handlers", level="WARNING"):
            self.handlers.handle_test_submitted(candidate)

        candidate.refresh_from_db()
        self.assertIsNone(candidate.portfolio_score)
        self.assertEqual(candidate.portfolio_feedback, "")
        self.assertEqual(_events(candidate, "PORTFOLIO_SCORED"), [])
        failed = _events(candidate, "PORTFOLIO_SCORE_FAILED")[0]
        self.assertEqual(failed.payload["error"], "All AI providers failed")
        _to, _subject, body = self.gmail.send_email.call_args.args
        self.assertIn("AI score: unavailable", body)
        self.assertEqual(candidate.status, S.UNDER_REVIEW)

    def test_submitted_test_file_is_scored_over_portfolio(self):
        candidate = _make_candidate(
            status=S.TEST_SUBMITTED,
            portfolio_url="https://ana.design",
            test_submission_url="https://drive.example.com/test.pdf",
        )
        self.handlers.handle_test_submitted(candidate)
        self.ai.score_portfolio.assert_called_once_with("https://drive.example.com/test.pdf", "Junior Interior Designer")
        self.assertEqual(_events(candidate, "PORTFOLIO_SCORED")[0].payload["url"], "https://drive.example.com/test.pdf")

    def test_late_by_minutes_is_flagged(self):
        sent = timezone.now() - timedelta(hours=4)
        candidate = _make_candidate(status=S.TEST_SUBMITTED, test_sent_at=sent, test_submitted_at=sent + timedelta(hours=3, minutes=2))
        self.handlers.handle_test_submitted(candidate)
        self.assertTrue(candidate.log.startswith("LATE: submitted in 3.0h"))
        payload = _events(candidate, "TEST_SUBMITTED")[0].payload
        self.assertFalse(payload["onTime"])
        self.assertEqual(payload["hoursTaken"], 3.0)

    def test_submitted_before_sent_is_reset_to_now(self):
        sent = timezone.now() - timedelta(hours=1)
        candidate = _make_candidate(status=S.TEST_SUBMITTED, test_sent_at=sent, test_submitted_at=sent - timedelta(hours=1))
        self.handlers.handle_test_submitted(candidate)
        candidate.refresh_from_db()
        self.assertGreaterEqual(candidate.test_submitted_at, candidate.test_sent_at)

    def test_scoring_disabled(self):
        handlers = self._handlers(_config(auto_portfolio_scoring=False))
        candidate = _make_candidate(status=S.TEST_SUBMITTED, portfolio_url="https://ana.design")
        handlers.handle_test_submitted(candidate)
        self.ai.score_portfolio.assert_not_called()
        self.assertEqual(candidate.log, "Test submitted (send time unknown)")


class HandleInterviewPendingTests(HandlerTestCase):
    def test_with_date_sends_schedule_and_creates_event(self):
        self.calendar.schedule_interview.return_value = "evt-1"
        self.ai.generate_interview_questions.return_value = ["Q1", "Q2"]
        handlers = self._handlers(_config(calendar_integration=True))
        when = timezone.now() + timedelta(days=2)
        candidate = _make_candidate(status=S.INTERVIEW_PENDING, interview_at=when, portfolio_feedback="Good")

        handlers.handle_interview_pending(candidate)

        candidate.refresh_from_db()
        self.assertEqual(candidate.calendar_event_id, "evt-1")
        description = self.calendar.schedule_interview.call_args.kwargs["description"]
        self.assertIn("- Q1", description)
        self.assertEqual(len(_events(candidate, "CALENDAR_EVENT_CREATED")), 1)
        self.assertEqual(len(_events(candidate, "INTERVIEW_SCHEDULE_SENT")), 1)
        self.gmail.send_email.assert_not_called()

    def test_existing_event_is_rescheduled(self):
        handlers = self._handlers(_config(calendar_integration=True))
        when = timezone.now() + timedelta(days=1)
        candidate = _make_candidate(status=S.INTERVIEW_PENDING, interview_at=when, calendar_event_id="evt-9")
        handlers.handle_interview_pending(candidate)
        self.calendar.reschedule_event.assert_called_once_with("evt-9", when)
        self.calendar.schedule_interview.assert_not_called()

    def test_without_date_sends_portal_link_and_tbd(self):
        candidate = _make_candidate(status=S.INTERVIEW_PENDING)
        self.handlers.handle_interview_pending(candidate)

        candidate.refresh_from_db()
        self.assertTrue(candidate.portal_token)
        to, _subject, body = self.gmail.send_email.call_args.args
        self.assertEqual(to, "ana@example.com")
        self.assertIn(candidate.portal_token, body)
        _phone, wa_body = self.whatsapp.send_text.call_args.args
        self.assertIn(NO_INTERVIEW_DATE, wa_body)
        self.calendar.schedule_interview.assert_not_called()

    def test_failure_is_queued_for_retry(self):
        self.whatsapp.send_text.return_value = (False, "HTTP 503")
        candidate = _make_candidate(status=S.INTERVIEW_PENDING, interview_at=timezone.now() + timedelta(days=1))
        self.handlers.handle_interview_pending(candidate)

        item = RetryItem.objects.get(candidate=candidate)
        self.assertEqual(item.channel, RetryItem.Channel.WHATSAPP)
        self.assertEqual(item.message_type, "interview_schedule")
        self.assertEqual(item.last_error, "HTTP 503")
        self.assertIn("date", item.params)
        self.assertIn("queued for retry", candidate.log)


class HandlePendingRejectionTests(HandlerTestCase):
    def test_queues_rejection(self):
        candidate = _make_candidate(status=S.PENDING_REJECTION)
        self.handlers.handle_pending_rejection(candidate)
        self.assertTrue(candidate.log.startswith("Will reject at "))
        self.assertEqual(len(_events(candidate, "REJECTION_QUEUED")), 1)
        self.whatsapp.send_text.assert_not_called()
        self.gmail.send_email.assert_not_called()


class HandleRejectedTests(HandlerTestCase):
    def test_ai_rejection_uses_human_note(self):
        user = get_user_model().objects.create_user("recruiter", password="pw")
        candidate = _make_candidate(status=S.UNDER_REVIEW)
        candidate.change_status(S.REJECTED, changed_by=user, note="Portfolio lacks 3D work")
        self.ai.generate_rejection.return_value = "Dear Ana, thank you..."

        self.handlers.handle_rejected(candidate)

        self.ai.generate_rejection.assert_called_once_with("Ana Pop", "Junior Interior Designer", "Portfolio lacks 3D work")
        _to, _subject, body = self.gmail.send_email.call_args.args
        self.assertEqual(body, "Dear Ana, thank you...")
        self.assertEqual(candidate.log, "Rejection email sent")
        self.assertTrue(_events(candidate, "REJECTION_SENT")[0].payload["aiGenerated"])

    def test_admin_default_note_is_not_a_reason(self):
        user = get_user_model().objects.create_user("recruiter", password="pw")
        candidate = _make_candidate(status=S.UNDER_REVIEW)
        candidate.change_status(S.PENDING_REJECTION, changed_by=user, note="No 3D experience")
        candidate.change_status(S.REJECTED, changed_by=user, note=ADMIN_CHANGE_NOTE)
        self.ai.generate_rejection.return_value = "Dear Ana..."

        self.handlers.handle_rejected(candidate)

        self.ai.generate_rejection.assert_called_once_with("Ana Pop", "Junior Interior Designer", "No 3D experience")

    def test_only_default_notes_falls_back(self):
        user = get_user_model().objects.create_user("recruiter", password="pw")
        candidate = _make_candidate(status=S.UNDER_REVIEW)
        candidate.change_status(S.REJECTED, changed_by=user, note=ADMIN_CHANGE_NOTE)
        self.ai.generate_rejection.return_value = None

        self.handlers.handle_rejected(candidate)

        self.ai.generate_rejection.assert_called_once_with("Ana Pop", "Junior Interior Designer", "application review")

    def test_fallback_template_when_ai_unavailable(self):
        self.ai.generate_rejection.return_value = None
        candidate = _make_candidate(status=S.REJECTED)
        self.handlers.handle_rejected(candidate)
        _to, _subject, body = self.gmail.send_email.call_args.args
        self.assertIn("not to move forward", body)
        self.ai.generate_rejection.assert_called_once_with("Ana Pop", "Junior Interior Designer", "application review")

    def test_send_failure_is_queued(self):
        self.ai.generate_rejection.return_value = None
        self.gmail.send_email.return_value = None
        candidate = _make_candidate(status=S.REJECTED)
        self.handlers.handle_rejected(candidate)
        item = RetryItem.objects.get(candidate=candidate)
        self.assertEqual(item.channel, RetryItem.Channel.EMAIL)
        self.assertEqual(item.destination, "ana@example.com")
        self.assertEqual(candidate.log, "Rejection email failed (queued for retry)")

    def test_no_email(self):
        candidate = _make_candidate(status=S.REJECTED, email="")
        with self.assertLogs("pipeline.handlers", level="WARNING"):
            self.handlers.handle_rejected(candidate)
        self.gmail.send_email.assert_not_called()
        self.assertEqual(candidate.log, "No email on file: rejection not sent")


class HandleHiredTests(HandlerTestCase):
    def test_notifies_team(self):
        candidate = _make_candidate(status=S.HIRED)
        self.handlers.handle_hired(candidate)
        self.assertEqual(candidate.log, "Hired")
        self.assertEqual(len(_events(candidate, "HIRED")), 1)
        to, subject, _body = self.gmail.send_email.call_args.args
        self.assertEqual((to, subject), ("team@example.com", "[HirePilot] New hire: Ana Pop"))


# ── Management command ─────────────────────────────────────────────────────────

class DispatchStatusCommandTests(TestCase):
    def setUp(self):
        self.engine = MagicMock()
        self.engine.dispatch.return_value = True
        patcher = patch("pipeline.management.commands.dispatch_status.get_engine", return_value=self.engine)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_by_ids(self):
        candidate = _make_candidate()
        call_command("dispatch_status", str(candidate.pk), stdout=MagicMock())
        self.engine.dispatch.assert_called_once_with(candidate)

    def test_by_status(self):
        _make_candidate(status=S.TEST_SENT)
        _make_candidate(email="b@example.com", status=S.TEST_SENT)
        _make_candidate(email="c@example.com", status=S.NEW)
        call_command("dispatch_status", status=S.TEST_SENT, stdout=MagicMock())
        self.assertEqual(self.engine.dispatch.call_count, 2)

    def test_requires_arguments(self):
        with self.assertRaises(CommandError):
            call_command("dispatch_status")

    def test_unknown_ids(self):
        with self.assertRaises(CommandError):
            call_command("dispatch_status", "9999")
