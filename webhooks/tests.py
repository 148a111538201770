"""
webhooks/tests.py

Covers:
  - X-Form-Secret validation       : missing / wrong secret, unset secret in DEBUG vs. production
  - application_form_webhook       : create + dispatch, duplicates, bad payloads
  - test_form_webhook              : submission in any status, unknown email, missing links
"""

import json
from unittest.mock import MagicMock, patch

from django.test import TestCase, override_settings
from django.urls import reverse

from candidates.models import Candidate, TimelineEvent
from webhooks.views import APPLICATION_FIELDS, _collect, _first_answer

SECRET = "s3cret"

APPLICATION = {
    "namedValues": {
        "Full Name": ["Ana Pop"],
        "Email Address": ["Ana@Example.com"],
        "Phone Number": ["+91 98765 43210"],
        "Position": ["Junior Interior Designer"],
        "Current City": ["Pune"],
        "Test Availability": ["Weekdays after 5pm"],
        "Portfolio Link": ["https://ana.design"],
        "Salary Expectations": [""],
    }
}


class WebhookTestCase(TestCase):
    def setUp(self):
        self.engine = MagicMock()
        patcher = patch("pipeline.engine.get_engine", return_value=self.engine)
        patcher.start()
        self.addCleanup(patcher.stop)

    def _post(self, url_name, payload, secret=SECRET, raw=None):
        headers = {"HTTP_X_FORM_SECRET": secret} if secret is not None else {}
        return self.client.post(
            reverse(f"webhooks:{url_name}"),
            data=raw if raw is not None else json.dumps(payload),
            content_type="application/json",
            **headers,
        )


# ── Helpers ────────────────────────────────────────────────────────────────────

class AnswerParsingTests(TestCase):
    def test_first_answer_uses_first_matching_variant(self):
        answers = {"Name": "Second", "Your Name": ["Third"], "Full Name": ""}
        self.assertEqual(_first_answer(answers, ("Full Name", "Name", "Your Name")), "Second")

    def test_single_item_lists_are_unwrapped(self):
        self.assertEqual(_first_answer({"Email": [" a@b.c "]}, ("Email",)), "a@b.c")
        self.assertEqual(_first_answer({"Email": []}, ("Email",)), "")

    def test_collect_fills_every_field(self):
        data = _collect({"Email": "a@b.c"}, APPLICATION_FIELDS)
        self.assertEqual(set(data), set(APPLICATION_FIELDS))
        self.assertEqual(data["email"], "a@b.c")
        self.assertEqual(data["name"], "")


# ── Secret validation ──────────────────────────────────────────────────────────

@override_settings(FORM_WEBHOOK_SECRET=SECRET)
class SecretTests(WebhookTestCase):
    def test_missing_secret_header(self):
        response = self._post("application_form", APPLICATION, secret=None)
        self.assertEqual(response.status_code, 401)
        self.assertFalse(Candidate.objects.exists())

    def test_wrong_secret(self):
        self.assertEqual(self._post("test_form", {}, secret="nope").status_code, 401)

    @override_settings(FORM_WEBHOOK_SECRET="", DEBUG=False)
    def test_unset_secret_in_production(self):
        response = self._post("application_form", APPLICATION, secret=None)
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "server_misconfigured"})

    @override_settings(FORM_WEBHOOK_SECRET="", DEBUG=True)
    def test_unset_secret_in_debug_is_allowed(self):
        response = self._post("application_form", APPLICATION, secret=None)
        self.assertEqual(response.status_code, 200)

    def test_get_not_allowed(self):
        self.assertEqual(self.client.get(reverse("webhooks:application_form")).status_code, 405)


# ── Application form ───────────────────────────────────────────────────────────

@override_settings(FORM_WEBHOOK_SECRET=SECRET)
class ApplicationFormTests(WebhookTestCase):
    def test_creates_candidate_and_dispatches(self):
        response = self._post("application_form", APPLICATION)

        self.assertEqual(response.status_code, 200)
        candidate = Candidate.objects.get()
        self.assertEqual(response.json(), {"status": "created", "candidate": candidate.pk})
        self.assertEqual(candidate.email, "ana@example.com")
        self.assertEqual(candidate.source, Candidate.Source.FORM)
        self.assertEqual(candidate.department, "DESIGN")
        self.assertEqual(candidate.city, "Pune")
        self.assertEqual(candidate.test_availability, "Weekdays after 5pm")
        self.assertEqual(candidate.salary_expected, "")
        self.assertEqual(candidate.status, Candidate.Status.NEW)
        self.engine.dispatch.assert_called_once_with(candidate)
        event = TimelineEvent.objects.get(candidate=candidate, event_type="FORM_SUBMITTED")
        self.assertEqual(event.payload["testAvailability"], "Weekdays after 5pm")

    def test_top_level_answers_are_accepted(self):
        payload = {"Email": "flat@example.com", "Name": "Flat", "Role": "Sales Executive"}
        self._post("application_form", payload)
        self.assertEqual(Candidate.objects.get().department, "SALES")

    def test_duplicate_is_acknowledged_without_new_record(self):
        existing = Candidate.objects.create(name="Ana Pop", email="other@example.com", phone="9876543210")

        response = self._post("application_form", APPLICATION)

        self.assertEqual(response.json(), {"status": "duplicate", "candidate": existing.pk, "match_type": "PHONE_EXACT"})
        self.assertEqual(Candidate.objects.count(), 1)
        self.engine.dispatch.assert_not_called()
        self.assertTrue(TimelineEvent.objects.filter(candidate=existing, event_type="DUPLICATE_APPLICATION").exists())

    @override_settings(FEATURE_DUPLICATE_CHECK=False)
    def test_without_duplicate_check_same_email_is_still_refused(self):
        Candidate.objects.create(name="Ana", email="ana@example.com")
        self.assertEqual(self._post("application_form", APPLICATION).json(), {"status": "duplicate"})
        self.assertEqual(Candidate.objects.count(), 1)

    def test_missing_email(self):
        response = self._post("application_form", {"namedValues": {"Full Name": ["No Email"]}})
        self.assertEqual(response.status_code, 400)

    def test_invalid_json(self):
        self.assertEqual(self._post("application_form", None, raw="{oops").status_code, 400)


# ── Test form ──────────────────────────────────────────────────────────────────

@override_settings(FORM_WEBHOOK_SECRET=SECRET, ADMIN_EMAIL="")
class TestFormTests(WebhookTestCase):
    def _payload(self, email="ana@example.com", **answers):
        named = {"Email Address": [email], **answers}
        return {"namedValues": named}

    def test_submission_advances_candidate(self):
        candidate = Candidate.objects.create(
            name="Ana", email="ana@example.com", status=Candidate.Status.TEST_SENT,
        )
        response = self._post("test_form", self._payload(**{
            "PDF/Docs Upload": ["https://drive/test.pdf"],
            "Test Notes": ["Used AutoCAD"],
        }))

        self.assertEqual(response.json(), {"status": "submitted", "candidate": candidate.pk})
        candidate.refresh_from_db()
        self.assertEqual(candidate.status, Candidate.Status.TEST_SUBMITTED)
        event = TimelineEvent.objects.get(candidate=candidate, event_type="TEST_UPLOADED")
        self.assertEqual(event.payload["source"], "form")
        self.assertEqual(event.payload["notes"], "Used AutoCAD")
        self.engine.dispatch.assert_called_once()

    def test_unknown_email_is_recorded(self):
        response = self._post("test_form", self._payload(email="ghost@example.com", **{"DWG Upload": ["https://d/x.dwg"]}))
        self.assertEqual(response.json(), {"status": "candidate_not_found"})
        event = TimelineEvent.objects.get(event_type="TEST_FORM_UNMATCHED")
        self.assertEqual(event.email, "ghost@example.com")
        self.assertEqual(event.payload["dwgUrl"], "https://d/x.dwg")

    @patch("portal.services.notify_admin")
    def test_submission_outside_test_sent_is_kept(self, notify):
        candidate = Candidate.objects.create(name="Ana", email="ana@example.com", status=Candidate.Status.IN_PROCESS)
        response = self._post("test_form", self._payload(**{
            "PDF/Docs Upload": ["https://drive/test.pdf"],
            "DWG Upload": ["https://drive/plan.dwg"],
        }))

        self.assertEqual(response.json(), {"status": "submitted", "candidate": candidate.pk})
        candidate.refresh_from_db()
        self.assertEqual(candidate.status, Candidate.Status.TEST_SUBMITTED)
        self.assertIsNotNone(candidate.test_submitted_at)
        self.assertEqual(candidate.test_submission_url, "https://drive/test.pdf")
        self.assertEqual(candidate.test_files, "https://drive/test.pdf | https://drive/plan.dwg")
        self.assertTrue(candidate.status_changes.get().is_irregular)
        notify.assert_called_once()
        event = TimelineEvent.objects.get(candidate=candidate, event_type="TEST_UPLOADED")
        self.assertEqual(event.payload["status"], "IN_PROCESS")

    @override_settings(STRICT_TRANSITIONS=True)
    @patch("portal.services.notify_admin")
    def test_strict_mode_stores_links_without_status_change(self, notify):
        candidate = Candidate.objects.create(name="Ana", email="ana@example.com", status=Candidate.Status.IN_PROCESS)
        response = self._post("test_form", self._payload(**{"DWG Upload": ["https://drive/plan.dwg"]}))

        self.assertEqual(response.status_code, 200)
        candidate.refresh_from_db()
        self.assertEqual(candidate.status, Candidate.Status.IN_PROCESS)
        self.assertEqual(candidate.test_submission_url, "https://drive/plan.dwg")
        self.assertIn("status left at In Process", candidate.log)
        notify.assert_called_once()
        self.engine.dispatch.assert_not_called()

    @patch("portal.services.notify_admin")
    def test_final_status_is_not_changed(self, notify):
        candidate = Candidate.objects.create(name="Ana", email="ana@example.com", status=Candidate.Status.REJECTED)
        self._post("test_form", self._payload(**{"PDF/Docs Upload": ["https://drive/test.pdf"]}))

        candidate.refresh_from_db()
        self.assertEqual(candidate.status, Candidate.Status.REJECTED)
        self.assertEqual(candidate.test_files, "https://drive/test.pdf")
        notify.assert_called_once()
        self.engine.dispatch.assert_not_called()

    def test_no_links_is_refused(self):
        Candidate.objects.create(name="Ana", email="ana@example.com", status=Candidate.Status.TEST_SENT)
        response = self._post("test_form", self._payload())
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json(), {"error": "At least one file link is required"})

    def test_missing_email(self):
        self.assertEqual(self._post("test_form", {"namedValues": {"Test Notes": ["hi"]}}).status_code, 400)
