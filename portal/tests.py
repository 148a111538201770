"""
portal/tests.py

Covers:
  - tokens            : generate / resolve / portal_link
  - send_portal_link  : email with the candidate's link
  - portal_status     : status copy and allowed actions
  - submit_test       : link validation, advance to TEST_SUBMITTED
  - book_slot         : availability check, confirmation, handler re-run
  - portal view       : JSON GET/POST and its error codes, malformed payloads
  - portal page       : HTML status page, upload form, slot picker
"""

import json
from datetime import date, datetime
from unittest.mock import MagicMock, patch
from zoneinfo import ZoneInfo

from django.test import TestCase, override_settings
from django.urls import reverse

from candidates.models import Candidate, TimelineEvent
from hirepilot.config import PipelineConfig
from interviews.services import CalendarError
from portal.services import (
    PortalError,
    book_slot,
    generate_token,
    portal_link,
    portal_status,
    resolve_token,
    send_portal_link,
    submit_test,
)

S = Candidate.Status
IST = ZoneInfo("Asia/Kolkata")
SLOT = datetime(2025, 3, 10, 11, 30, tzinfo=IST)


def _make_candidate(**kwargs) -> Candidate:
    defaults = dict(
        name="Ana Pop",
        email="ana@example.com",
        phone="9876543210",
        role="Junior Interior Designer",
        department="DESIGN",
        status=S.TEST_SENT,
    )
    defaults.update(kwargs)
    return Candidate.objects.create(**defaults)


def _config(**kwargs) -> PipelineConfig:
    defaults = dict(
        admin_email="",
        portal_url="https://hirepilot.example.com/portal/",
        time_limits={"DESIGN": {"junior": 3}},
        timezone="Asia/Kolkata",
    )
    defaults.update(kwargs)
    return PipelineConfig(**defaults)


# ── Tokens ─────────────────────────────────────────────────────────────────────

class TokenTests(TestCase):
    def test_generate_and_resolve(self):
        candidate = _make_candidate()
        token = generate_token(candidate)
        self.assertEqual(len(token), 32)
        self.assertEqual(resolve_token(token), candidate)
        self.assertIsNone(resolve_token("nope"))
        self.assertIsNone(resolve_token(""))

    def test_portal_link_reuses_token(self):
        candidate = _make_candidate(portal_token="abc123")
        self.assertEqual(portal_link(candidate, _config()), "https://hirepilot.example.com/portal/?token=abc123")

    def test_send_portal_link(self):
        candidate = _make_candidate(status=S.INTERVIEW_PENDING)
        gmail = MagicMock()
        gmail.send_email.return_value = "m-1"

        self.assertEqual(send_portal_link(candidate, gmail=gmail, config=_config()), "m-1")

        to, _subject, body = gmail.send_email.call_args.args
        self.assertEqual(to, "ana@example.com")
        self.assertIn(f"?token={candidate.portal_token}", body)
        self.assertIn("Open my portal", gmail.send_email.call_args.kwargs["html_body"])
        self.assertTrue(TimelineEvent.objects.filter(candidate=candidate, event_type="PORTAL_LINK_SENT").exists())

    def test_send_portal_link_without_email(self):
        gmail = MagicMock()
        with self.assertLogs("portal.services", level="WARNING"):
            self.assertIsNone(send_portal_link(_make_candidate(email=""), gmail=gmail, config=_config()))
        gmail.send_email.assert_not_called()


# ── Status ─────────────────────────────────────────────────────────────────────

class PortalStatusTests(TestCase):
    def test_test_sent(self):
        status = portal_status(_make_candidate(), _config())
        self.assertEqual(status["title"], "Test sent")
        self.assertEqual(status["actions"], ["submit_test"])
        self.assertEqual(status["time_limit_hours"], 3.0)
        self.assertNotIn("email", status)

    def test_interview_pending(self):
        status = portal_status(_make_candidate(status=S.INTERVIEW_PENDING), _config())
        self.assertEqual(status["actions"], ["book_slot", "list_slots"])

    def test_no_actions_after_rejection(self):
        self.assertEqual(portal_status(_make_candidate(status=S.REJECTED), _config())["actions"], [])


# ── Actions ────────────────────────────────────────────────────────────────────

class SubmitTestTests(TestCase):
    def setUp(self):
        self.engine = MagicMock()

    def test_advances_to_submitted(self):
        candidate = _make_candidate()
        submit_test(candidate, pdf_url="https://drive/test.pdf", notes="Done", engine=self.engine, config=_config())

        candidate.refresh_from_db()
        self.assertEqual(candidate.status, S.TEST_SUBMITTED)
        self.assertIsNotNone(candidate.test_submitted_at)
        self.assertEqual(candidate.test_submission_url, "https://drive/test.pdf")
        self.assertEqual(candidate.portfolio_url, "")
        self.engine.dispatch.assert_called_once()
        event = TimelineEvent.objects.get(candidate=candidate, event_type="TEST_UPLOADED")
        self.assertEqual(event.payload["source"], "portal")
        self.assertEqual(event.payload["notes"], "Done")

    def test_submitted_file_is_stored_apart_from_portfolio(self):
        candidate = _make_candidate(portfolio_url="https://ana.design")
        submit_test(candidate, dwg_url="https://drive/plan.dwg", other_url="https://drive/refs.zip",
                    engine=self.engine, config=_config())
        candidate.refresh_from_db()
        self.assertEqual(candidate.portfolio_url, "https://ana.design")
        self.assertEqual(candidate.test_submission_url, "https://drive/plan.dwg")
        self.assertEqual(candidate.test_files, "https://drive/plan.dwg | https://drive/refs.zip")

    def test_requires_a_link(self):
        with self.assertRaisesMessage(PortalError, "At least one file link is required"):
            submit_test(_make_candidate(), engine=self.engine, config=_config())
        self.engine.dispatch.assert_not_called()

    def test_wrong_status(self):
        with self.assertRaises(PortalError):
            submit_test(_make_candidate(status=S.NEW), pdf_url="https://x", engine=self.engine, config=_config())


class BookSlotTests(TestCase):
    def setUp(self):
        self.engine = MagicMock()
        self.gmail = MagicMock()
        self.candidate = _make_candidate(status=S.INTERVIEW_PENDING)

    def test_books_available_slot(self):
        with patch("interviews.services.get_available_slots", return_value=[SLOT]) as slots:
            book_slot(self.candidate, SLOT, gmail=self.gmail, engine=self.engine, config=_config())

        slots.assert_called_once_with(date(2025, 3, 10), calendar=None)
        self.candidate.refresh_from_db()
        self.assertEqual(self.candidate.interview_at, SLOT)
        to, subject, body = self.gmail.send_email.call_args.args
        self.assertEqual(to, "ana@example.com")
        self.assertIn("Monday, 10 March 2025, 11:30 AM", body)
        self.engine.dispatch.assert_called_once()
        self.assertTrue(TimelineEvent.objects.filter(candidate=self.candidate, event_type="SLOT_BOOKED").exists())

    def test_naive_slot_is_read_in_pipeline_timezone(self):
        with patch("interviews.services.get_available_slots", return_value=[SLOT]):
            book_slot(self.candidate, SLOT.replace(tzinfo=None), gmail=self.gmail, engine=self.engine, config=_config())
        self.candidate.refresh_from_db()
        self.assertEqual(self.candidate.interview_at, SLOT)

    def test_taken_slot_is_refused(self):
        with patch("interviews.services.get_available_slots", return_value=[]):
            with self.assertRaisesMessage(PortalError, "That slot is no longer available"):
                book_slot(self.candidate, SLOT, gmail=self.gmail, engine=self.engine, config=_config())
        self.gmail.send_email.assert_not_called()
        self.engine.dispatch.assert_not_called()


# ── View ───────────────────────────────────────────────────────────────────────

class PortalViewTests(TestCase):
    def setUp(self):
        self.url = reverse("portal:portal")
        self.candidate = _make_candidate(portal_token="tok-1")
        patcher = patch("pipeline.engine.get_engine", return_value=MagicMock())
        patcher.start()
        self.addCleanup(patcher.stop)

    def _post(self, payload):
        return self.client.post(self.url, data=json.dumps(payload), content_type="application/json")

    def test_get_status(self):
        response = self.client.get(self.url, {"token": "tok-1", "format": "json"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "TEST_SENT")

    def test_invalid_token(self):
        response = self.client.get(self.url, {"token": "bad"}, HTTP_ACCEPT="application/json")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"], "invalid_token")

    def test_bad_json(self):
        response = self.client.post(self.url, data="{not json", content_type="application/json")
        self.assertEqual(response.status_code, 400)

    def test_non_object_body(self):
        response = self._post([])
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "bad_request")

    def test_non_string_slot(self):
        self.candidate.status = S.INTERVIEW_PENDING
        self.candidate.save()
        response = self._post({"token": "tok-1", "action": "book_slot", "slot": 123})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "bad_request")

    def test_non_string_links_are_ignored(self):
        response = self._post({"token": "tok-1", "action": "submit_test", "pdf_url": ["x"]})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"], "action_failed")

    def test_submit_test(self):
        response = self._post({"token": "tok-1", "action": "submit_test", "pdf_url": " https://drive/t.pdf "})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "TEST_SUBMITTED")
        self.candidate.refresh_from_db()
        self.assertEqual(self.candidate.test_submission_url, "https://drive/t.pdf")

    def test_submit_without_links(self):
        response = self._post({"token": "tok-1", "action": "submit_test"})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"], "action_failed")

    def test_action_not_allowed(self):
        response = self._post({"token": "tok-1", "action": "book_slot", "slot": SLOT.isoformat()})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"], "action_not_allowed")

    def test_list_slots(self):
        self.candidate.status = S.INTERVIEW_PENDING
        self.candidate.save()
        with patch("portal.services.list_slots", return_value=[SLOT]):
            response = self._post({"token": "tok-1", "action": "list_slots", "date": "2025-03-10"})
        self.assertEqual(response.json(), {"slots": [SLOT.isoformat()]})

    def test_list_slots_bad_date(self):
        self.candidate.status = S.INTERVIEW_PENDING
        self.candidate.save()
        response = self._post({"token": "tok-1", "action": "list_slots", "date": "next tuesday"})
        self.assertEqual(response.status_code, 400)

    def test_calendar_unavailable(self):
        self.candidate.status = S.INTERVIEW_PENDING
        self.candidate.save()
        with patch("portal.services.list_slots", side_effect=CalendarError("down")):
            response = self._post({"token": "tok-1", "action": "list_slots", "date": "2025-03-10"})
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["error"], "calendar_unavailable")

    @override_settings(SANDBOX_MODE=True)
    def test_book_slot(self):
        self.candidate.status = S.INTERVIEW_PENDING
        self.candidate.save()
        with patch("interviews.services.get_available_slots", return_value=[SLOT]):
            response = self._post({"token": "tok-1", "action": "book_slot", "slot": SLOT.isoformat()})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(datetime.fromisoformat(response.json()["interview_at"]), SLOT)

    @override_settings(FEATURE_PORTAL=False)
    def test_portal_disabled(self):
        response = self.client.get(self.url, {"token": "tok-1", "format": "json"})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"], "portal_disabled")

    def test_put_not_allowed(self):
        self.assertEqual(self.client.put(self.url).status_code, 405)


@override_settings(COMPANY_NAME="Studio Nine")
class PortalPageTests(TestCase):
    def setUp(self):
        self.url = reverse("portal:portal")
        self.candidate = _make_candidate(portal_token="tok-1")
        patcher = patch("pipeline.engine.get_engine", return_value=MagicMock())
        patcher.start()
        self.addCleanup(patcher.stop)

    def _interview_pending(self):
        self.candidate.status = S.INTERVIEW_PENDING
        self.candidate.save()

    def test_page_shows_status_and_upload_form(self):
        response = self.client.get(self.url, {"token": "tok-1"})

        self.assertEqual(response.status_code, 200)
        self.assertTemplateUsed(response, "portal/portal.html")
        self.assertContains(response, "Studio Nine")
        self.assertContains(response, "Hi Ana Pop,")
        self.assertContains(response, "Test sent")
        self.assertContains(response, 'id="upload-form"')
        self.assertNotContains(response, 'id="date-form"')

    def test_no_forms_once_submitted(self):
        self.candidate.status = S.TEST_SUBMITTED
        self.candidate.save()
        response = self.client.get(self.url, {"token": "tok-1"})
        self.assertContains(response, "Test submitted")
        self.assertNotContains(response, 'id="upload-form"')

    def test_invalid_token_page(self):
        response = self.client.get(self.url, {"token": "bad"})
        self.assertEqual(response.status_code, 404)
        self.assertTemplateUsed(response, "portal/error.html")
        self.assertContains(response, "This link is not valid", status_code=404)

    @override_settings(FEATURE_PORTAL=False)
    def test_disabled_page(self):
        response = self.client.get(self.url, {"token": "tok-1"})
        self.assertContains(response, "Portal unavailable", status_code=404)

    def test_upload_form_post(self):
        response = self.client.post(self.url, {
            "token": "tok-1", "action": "submit_test", "pdf_url": "https://drive/t.pdf", "notes": "done",
        })

        self.assertEqual(response.status_code, 200)
        self.assertTemplateUsed(response, "portal/portal.html")
        self.assertContains(response, "Your test has been uploaded")
        self.candidate.refresh_from_db()
        self.assertEqual(self.candidate.status, S.TEST_SUBMITTED)
        self.assertEqual(self.candidate.test_submission_url, "https://drive/t.pdf")

    def test_upload_form_without_links_shows_error(self):
        response = self.client.post(self.url, {"token": "tok-1", "action": "submit_test"})
        self.assertContains(response, "At least one file link is required", status_code=409)
        self.assertContains(response, 'id="upload-form"', status_code=409)

    def test_slot_picker_lists_times_for_date(self):
        self._interview_pending()
        with patch("portal.services.list_slots", return_value=[SLOT]) as list_slots:
            response = self.client.get(self.url, {"token": "tok-1", "date": "2025-03-10"})

        list_slots.assert_called_once_with(date(2025, 3, 10))
        self.assertContains(response, 'id="slot-form"')
        self.assertContains(response, SLOT.isoformat())
        self.assertContains(response, "Monday, 10 March 2025, 11:30 AM")

    def test_slot_picker_without_date_shows_only_date_form(self):
        self._interview_pending()
        response = self.client.get(self.url, {"token": "tok-1"})
        self.assertContains(response, 'id="date-form"')
        self.assertNotContains(response, 'id="slot-form"')

    def test_slot_picker_no_free_times(self):
        self._interview_pending()
        with patch("portal.services.list_slots", return_value=[]):
            response = self.client.get(self.url, {"token": "tok-1", "date": "2025-03-10"})
        self.assertContains(response, "No free times on this day")

    def test_slot_picker_calendar_down(self):
        self._interview_pending()
        with patch("portal.services.list_slots", side_effect=CalendarError("down")):
            response = self.client.get(self.url, {"token": "tok-1", "date": "2025-03-10"})
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, "Scheduling is temporarily unavailable")

    @override_settings(SANDBOX_MODE=True)
    def test_book_slot_form_post(self):
        self._interview_pending()
        with patch("interviews.services.get_available_slots", return_value=[SLOT]):
            response = self.client.post(self.url, {
                "token": "tok-1", "action": "book_slot", "slot": SLOT.isoformat(), "date": "2025-03-10",
            })

        self.assertContains(response, "Your interview is booked")
        self.assertContains(response, "Monday, 10 March 2025, 11:30 AM")
        self.candidate.refresh_from_db()
        self.assertEqual(self.candidate.interview_at, SLOT)
