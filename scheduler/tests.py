"""
scheduler/tests.py

Jobs are called through __wrapped__ so close_old_connections does not touch
the test transaction's connection.
"""

from datetime import timedelta
from io import StringIO
from unittest.mock import MagicMock, patch

from django.core.management import call_command
from django.test import TestCase, override_settings
from django.utils import timezone

from candidates.models import Candidate, TimelineEvent
from messaging.models import RetryItem
from scheduler import jobs

S = Candidate.Status


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


# ── Rejection queue ────────────────────────────────────────────────────────────

@override_settings(REJECTION_DELAY_HOURS=24)
class RejectionQueueTests(TestCase):
    def setUp(self):
        self.engine = MagicMock()
        patcher = patch("pipeline.engine.get_engine", return_value=self.engine)
        patcher.start()
        self.addCleanup(patcher.stop)

    def _age(self, candidate, hours):
        Candidate.objects.filter(pk=candidate.pk).update(updated_at=timezone.now() - timedelta(hours=hours))

    def test_only_expired_candidates_are_rejected(self):
        due = _make_candidate(status=S.PENDING_REJECTION)
        fresh = _make_candidate(name="Bo", email="bo@example.com", phone="", status=S.PENDING_REJECTION)
        other = _make_candidate(name="Cy", email="cy@example.com", phone="", status=S.UNDER_REVIEW)
        self._age(due, 25)
        self._age(fresh, 2)
        self._age(other, 48)

        self.assertEqual(jobs.process_rejection_queue.__wrapped__(), 1)

        due.refresh_from_db()
        fresh.refresh_from_db()
        other.refresh_from_db()
        self.assertEqual(due.status, S.REJECTED)
        self.assertEqual(fresh.status, S.PENDING_REJECTION)
        self.assertEqual(other.status, S.UNDER_REVIEW)
        self.engine.dispatch.assert_called_once()

    def test_nothing_due(self):
        self.assertEqual(jobs.process_rejection_queue.__wrapped__(), 0)
        self.engine.dispatch.assert_not_called()


# ── Follow-ups ─────────────────────────────────────────────────────────────────

@override_settings(FOLLOWUP_DAYS=[2, 4], PIPELINE_TIMEZONE="Asia/Kolkata", SANDBOX_MODE=False)
class FollowupTests(TestCase):
    def setUp(self):
        self.whatsapp = MagicMock()
        self.whatsapp.send_text.return_value = (True, "SM-1")

    def _waiting(self, days_ago, **kwargs):
        return _make_candidate(
            status=S.TEST_SENT,
            test_sent_at=timezone.now() - timedelta(days=days_ago),
            **kwargs,
        )

    def test_reminder_on_followup_day(self):
        candidate = self._waiting(2)

        self.assertEqual(jobs.process_followups.__wrapped__(whatsapp=self.whatsapp), 1)

        phone, body = self.whatsapp.send_text.call_args.args
        self.assertEqual(phone, "9876543210")
        self.assertIn("Ana Pop", body)
        self.assertTrue(TimelineEvent.objects.filter(candidate=candidate, event_type="FOLLOWUP_SENT", payload__day=2).exists())
        candidate.refresh_from_db()
        self.assertIn("Follow-up reminder sent (day 2)", candidate.log)

    def test_reminder_is_sent_once_per_day(self):
        self._waiting(2)
        jobs.process_followups.__wrapped__(whatsapp=self.whatsapp)
        self.assertEqual(jobs.process_followups.__wrapped__(whatsapp=self.whatsapp), 0)
        self.assertEqual(self.whatsapp.send_text.call_count, 1)

    def test_skips_other_days_and_ineligible_candidates(self):
        self._waiting(3)
        self._waiting(2, name="No Phone", email="np@example.com", phone="")
        self._waiting(4, name="Done", email="done@example.com", test_submitted_at=timezone.now())
        _make_candidate(name="New", email="new@example.com", status=S.NEW, test_sent_at=timezone.now() - timedelta(days=2))

        self.assertEqual(jobs.process_followups.__wrapped__(whatsapp=self.whatsapp), 0)
        self.whatsapp.send_text.assert_not_called()

    def test_failed_send_is_logged_and_retried_next_cycle(self):
        candidate = self._waiting(4)
        self.whatsapp.send_text.return_value = (False, "Twilio HTTP 400")

        with self.assertLogs("scheduler.jobs", level="WARNING"):
            self.assertEqual(jobs.process_followups.__wrapped__(whatsapp=self.whatsapp), 0)

        candidate.refresh_from_db()
        self.assertIn("Follow-up day 4 failed: Twilio HTTP 400", candidate.log)
        self.assertFalse(TimelineEvent.objects.filter(candidate=candidate, event_type="FOLLOWUP_SENT").exists())


# ── Background cycle ───────────────────────────────────────────────────────────

class BackgroundCycleTests(TestCase):
    @patch("scheduler.jobs.candidate_services.sync_team_view", return_value=3)
    @patch("scheduler.jobs.retry.drain", return_value={"sent": 0, "failed": 0})
    @patch("scheduler.jobs.InboxProcessor")
    def test_failing_step_does_not_stop_the_cycle(self, inbox, drain, sync):
        inbox.return_value.process.side_effect = RuntimeError("gmail down")

        with self.assertLogs("scheduler.jobs", level="CRITICAL") as logs:
            results = jobs.run_background_cycle.__wrapped__()

        self.assertIn("Background cycle step process_inbox failed", logs.output[0])
        self.assertIsNone(results["process_inbox"])
        self.assertEqual(results["process_rejection_queue"], 0)
        self.assertEqual(results["process_followups"], 0)
        self.assertEqual(results["drain_retry_queue"], {"sent": 0, "failed": 0})
        self.assertEqual(results["sync_team_view"], 3)
        drain.assert_called_once()
        sync.assert_called_once()

    def test_steps_run_in_order(self):
        self.assertEqual(
            [name for name, _step in jobs.CYCLE_STEPS],
            ["process_inbox", "process_rejection_queue", "process_followups", "drain_retry_queue", "sync_team_view"],
        )

    def test_run_once_command(self):
        out = StringIO()
        with patch(
            "scheduler.management.commands.run_scheduler.run_background_cycle",
            return_value={"process_inbox": {"processed": 0}},
        ) as cycle:
            call_command("run_scheduler", "--once", stdout=out)
        cycle.assert_called_once_with()
        self.assertIn("Cycle complete", out.getvalue())


# ── Daily summary ──────────────────────────────────────────────────────────────

class DailySummaryTests(TestCase):
    def test_summary_text(self):
        _make_candidate()
        _make_candidate(name="Bo", email="bo@example.com", phone="", status=S.TEST_SENT)
        RetryItem.objects.create(
            channel=RetryItem.Channel.EMAIL,
            destination="x@example.com",
            message_type="rejection",
            status=RetryItem.Status.FAILED,
        )

        text = jobs.build_daily_summary()

        self.assertIn("New candidates (last 24h): 2", text)
        self.assertIn("  New: 1", text)
        self.assertIn("  Test Sent: 1", text)
        self.assertIn("  Hired: 0", text)
        self.assertIn("Messages abandoned after retries (last 24h): 1", text)

    def test_no_failed_line_when_queue_is_clean(self):
        self.assertNotIn("abandoned", jobs.build_daily_summary())

    @patch("scheduler.jobs.notify_admin", return_value="m-9")
    def test_send_daily_summary(self, notify):
        self.assertEqual(jobs.send_daily_summary.__wrapped__(), "m-9")
        subject, body = notify.call_args.args
        self.assertTrue(subject.startswith("Daily pipeline summary"))
        self.assertIn("Pipeline by status:", body)
