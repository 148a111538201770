"""
candidates/tests.py

Covers:
  - levenshtein / name_similarity  : string distance helpers
  - DuplicateMatcher               : email, phone and fuzzy-name rules, scan order, fail-open
  - lookup_candidate_by_*          : shared lookup helpers
  - TimelineEvent / record_event   : append-only audit trail
  - Candidate.change_status        : audited status writes
  - upsert_from_form_response      : create vs. partial update
  - sync_team_view                 : redacted CSV export
  - CandidateAdmin                 : status edits routed through transition_status
"""

import csv
import io
from unittest.mock import MagicMock, patch

from django.contrib import admin as django_admin
from django.contrib.auth import get_user_model
from django.core.files.storage import InMemoryStorage
from django.db import transaction
from django.test import RequestFactory, TestCase

from candidates.admin import CandidateAdmin
from candidates.duplicates import (
    DuplicateMatcher,
    MatchType,
    last_ten_digits,
    levenshtein,
    name_similarity,
    normalize_name,
)
from candidates.models import Candidate, TimelineEvent
from candidates.services import (
    TEAM_VIEW_FIELDS,
    get_timeline,
    lookup_candidate_by_email,
    lookup_candidate_by_phone,
    record_event,
    status_counts,
    sync_team_view,
    upsert_from_form_response,
)
from hirepilot.constants import SENSITIVE_FIELDS
from pipeline.models import StatusChange


# ── Helpers ────────────────────────────────────────────────────────────────────

def _make_candidate(**kwargs) -> Candidate:
    defaults = dict(
        name="Priya Sharma",
        email="priya@example.com",
        phone="+91 98765 43210",
        role="Junior Interior Designer",
        department="DESIGN",
    )
    defaults.update(kwargs)
    return Candidate.objects.create(**defaults)


# ── String helpers ─────────────────────────────────────────────────────────────

class StringHelperTests(TestCase):
    def test_levenshtein(self):
        self.assertEqual(levenshtein("kitten", "sitting"), 3)
        self.assertEqual(levenshtein("", "abc"), 3)
        self.assertEqual(levenshtein("same", "same"), 0)

    def test_normalize_name_keeps_letters_and_spaces(self):
        self.assertEqual(normalize_name("  Dr. Ana-Maria O'Neil 2 "), "dr anamaria oneil")

    def test_name_similarity(self):
        self.assertEqual(name_similarity("Ana Pop", "ana pop"), 1.0)
        self.assertEqual(name_similarity("", "Ana"), 0.0)
        self.assertAlmostEqual(name_similarity("Priya Sharma", "Priya Sharme"), 1 - 1 / 12)

    def test_last_ten_digits(self):
        self.assertEqual(last_ten_digits("+91 98765-43210"), "9876543210")
        self.assertEqual(last_ten_digits(""), "")


# ── DuplicateMatcher ───────────────────────────────────────────────────────────

class DuplicateMatcherTests(TestCase):
    def setUp(self):
        self.existing = _make_candidate()

    def test_exact_email_is_case_insensitive(self):
        match = DuplicateMatcher().check("PRIYA@example.com ", "", "Someone Else")
        self.assertTrue(match.is_duplicate)
        self.assertEqual(match.match_type, MatchType.EMAIL_EXACT)
        self.assertEqual(match.similarity, 1.0)
        self.assertEqual(match.candidate, self.existing)

    def test_exact_phone_on_last_ten_digits(self):
        match = DuplicateMatcher().check("other@example.com", "09876543210", "Someone Else")
        self.assertEqual(match.match_type, MatchType.PHONE_EXACT)

    def test_short_phone_never_matches_exactly(self):
        _make_candidate(name="Short", email="short@example.com", phone="12345")
        match = DuplicateMatcher().check("new@example.com", "12345", "Totally Different")
        self.assertFalse(match.is_duplicate)

    def test_fuzzy_name_needs_phone_corroboration(self):
        without_phone = DuplicateMatcher().check("new@example.com", "", "Priya Sharme")
        self.assertFalse(without_phone.is_duplicate)

        with_phone = DuplicateMatcher().check("new@example.com", "+1 555 543210", "Priya Sharme")
        self.assertTrue(with_phone.is_duplicate)
        self.assertEqual(with_phone.match_type, MatchType.NAME_FUZZY)
        self.assertAlmostEqual(with_phone.similarity, 1 - 1 / 12)

    def test_strong_name_match_needs_no_phone(self):
        _make_candidate(name="Alexandria Montgomery", email="alex@example.com", phone="")
        match = DuplicateMatcher().check("new@example.com", "", "Alexandria Montgomary")
        self.assertTrue(match.is_duplicate)
        self.assertEqual(match.match_type, MatchType.NAME_FUZZY)
        self.assertGreater(match.similarity, 0.95)

    def test_no_match(self):
        match = DuplicateMatcher().check("new@example.com", "+44 7700 900123", "Rahul Verma")
        self.assertFalse(match.is_duplicate)
        self.assertIsNone(match.candidate)

    def test_first_candidate_in_pk_order_wins(self):
        second = _make_candidate(email="second@example.com", phone="+91 98765 43210")
        match = DuplicateMatcher().check("second@example.com", "9876543210", "")
        # The first row matches on phone before the second row's email is reached.
        self.assertEqual(match.candidate, self.existing)
        self.assertEqual(match.match_type, MatchType.PHONE_EXACT)
        self.assertNotEqual(match.candidate, second)

    def test_fails_open_on_scan_error(self):
        def broken():
            raise RuntimeError("db down")
            yield  # pragma: no cover

        with self.assertLogs("candidates.duplicates", level="ERROR"):
            match = DuplicateMatcher(candidates=broken()).check("priya@example.com", "", "")
        self.assertFalse(match.is_duplicate)

    def test_injected_candidates_are_used(self):
        other = Candidate(name="Injected", email="injected@example.com")
        match = DuplicateMatcher(candidates=[other]).check("injected@example.com", "", "")
        self.assertIs(match.candidate, other)

    def test_response_text(self):
        match = DuplicateMatcher().check("priya@example.com", "", "")
        text = DuplicateMatcher.response_text(match)
        self.assertIn("already applied", text)
        self.assertIn("New", text)
        self.assertEqual(DuplicateMatcher.response_text(DuplicateMatcher().check("x@y.z", "", "")), "")


# ── Lookup helpers ─────────────────────────────────────────────────────────────

class LookupTests(TestCase):
    def setUp(self):
        self.candidate = _make_candidate()

    def test_lookup_by_email_accepts_rfc2822(self):
        self.assertEqual(lookup_candidate_by_email('"Priya" <Priya@Example.com>'), self.candidate)
        self.assertIsNone(lookup_candidate_by_email("not-an-email"))
        self.assertIsNone(lookup_candidate_by_email(""))

    def test_lookup_by_phone_handles_country_code(self):
        self.assertEqual(lookup_candidate_by_phone("9876543210"), self.candidate)
        self.assertIsNone(lookup_candidate_by_phone("12345"))
        self.assertIsNone(lookup_candidate_by_phone(""))


# ── Timeline ───────────────────────────────────────────────────────────────────

class TimelineTests(TestCase):
    def setUp(self):
        self.candidate = _make_candidate()

    def test_record_event_defaults_email_to_candidate(self):
        event = record_event(self.candidate, "WELCOME_SENT", channel="whatsapp")
        self.assertEqual(event.email, "priya@example.com")
        self.assertEqual(event.payload, {"channel": "whatsapp"})

    def test_record_event_without_candidate(self):
        event = record_event(None, "SPAM_BLOCKED", email="Spam@Example.com")
        self.assertIsNone(event.candidate)
        self.assertEqual(event.email, "spam@example.com")

    def test_events_are_append_only(self):
        event = record_event(self.candidate, "APPLICATION_RECEIVED")
        event.event_type = "CHANGED"
        with self.assertRaises(ValueError):
            event.save()
        with self.assertRaises(ValueError):
            event.delete()
        self.assertEqual(TimelineEvent.objects.get(pk=event.pk).event_type, "APPLICATION_RECEIVED")

    def test_get_timeline_is_chronological(self):
        record_event(self.candidate, "FIRST")
        record_event(self.candidate, "SECOND")
        types = [e.event_type for e in get_timeline("PRIYA@example.com")]
        self.assertEqual(types, ["FIRST", "SECOND"])

    def test_record_event_never_raises(self):
        with patch.object(TimelineEvent.objects, "create", side_effect=RuntimeError("boom")):
            with self.assertLogs("candidates.services", level="ERROR"):
                self.assertIsNone(record_event(self.candidate, "X"))

    def test_failed_write_leaves_enclosing_transaction_usable(self):
        with transaction.atomic():
            with self.assertLogs("candidates.services", level="ERROR"):
                # NOT NULL violation on event_type
                self.assertIsNone(record_event(self.candidate, None))
            self.candidate.write_log("still writable")
            self.assertTrue(Candidate.objects.filter(pk=self.candidate.pk, log="still writable").exists())


# ── Candidate.change_status ────────────────────────────────────────────────────

class ChangeStatusTests(TestCase):
    def test_change_writes_audit_row(self):
        candidate = _make_candidate()
        self.assertTrue(candidate.change_status(Candidate.Status.IN_PROCESS, note="go"))
        change = StatusChange.objects.get(candidate=candidate)
        self.assertEqual(change.from_status, Candidate.Status.NEW)
        self.assertEqual(change.to_status, Candidate.Status.IN_PROCESS)
        self.assertFalse(change.is_irregular)

    def test_same_status_is_a_no_op(self):
        candidate = _make_candidate()
        self.assertFalse(candidate.change_status(Candidate.Status.NEW))
        self.assertFalse(StatusChange.objects.exists())

    def test_write_log_overwrites(self):
        candidate = _make_candidate(log="old")
        candidate.write_log("new")
        candidate.refresh_from_db()
        self.assertEqual(candidate.log, "new")


# ── upsert_from_form_response ──────────────────────────────────────────────────

class UpsertFromFormResponseTests(TestCase):
    def test_creates_candidate_with_department(self):
        candidate, created = upsert_from_form_response(
            {"email": "Ana@Example.com", "name": "Ana Pop", "role": "Marketing Intern", "city": None},
            source=Candidate.Source.FORM,
        )
        self.assertTrue(created)
        self.assertEqual(candidate.email, "ana@example.com")
        self.assertEqual(candidate.department, "MARKETING")
        self.assertEqual(candidate.source, Candidate.Source.FORM)

    def test_update_only_overwrites_present_fields(self):
        existing = _make_candidate(city="Delhi")
        candidate, created = upsert_from_form_response(
            {"email": "priya@example.com", "name": "", "city": "Pune", "salaryExpected": "40k"}
        )
        self.assertFalse(created)
        self.assertEqual(candidate.pk, existing.pk)
        candidate.refresh_from_db()
        self.assertEqual(candidate.name, "Priya Sharma")
        self.assertEqual(candidate.city, "Pune")
        self.assertEqual(candidate.salary_expected, "40k")


# ── Team view ──────────────────────────────────────────────────────────────────

class TeamViewTests(TestCase):
    def test_sensitive_fields_are_excluded(self):
        self.assertTrue(SENSITIVE_FIELDS.isdisjoint(TEAM_VIEW_FIELDS))
        self.assertIn("status", TEAM_VIEW_FIELDS)

    def test_sync_writes_redacted_csv(self):
        _make_candidate(salary_expected="50k", health_notes="private")
        _make_candidate(name="Rahul", email="rahul@example.com", phone="")
        storage = InMemoryStorage()
        storage.save("team_view.csv", io.BytesIO(b"stale"))

        rows = sync_team_view(path="team_view.csv", storage=storage)

        self.assertEqual(rows, 2)
        with storage.open("team_view.csv") as fh:
            content = fh.read().decode("utf-8")
        reader = list(csv.DictReader(io.StringIO(content)))
        self.assertEqual([r["name"] for r in reader], ["Priya Sharma", "Rahul"])
        self.assertNotIn("email", reader[0])
        self.assertNotIn("50k", content)
        self.assertNotIn("private", content)

    def test_status_counts_includes_empty_statuses(self):
        _make_candidate()
        counts = status_counts()
        self.assertEqual(counts["NEW"], 1)
        self.assertEqual(counts["HIRED"], 0)


# ── Admin ──────────────────────────────────────────────────────────────────────

class CandidateAdminTests(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_superuser("admin", "admin@example.com", "pw")
        self.request = RequestFactory().post("/admin/")
        self.request.user = self.user
        self.model_admin = CandidateAdmin(Candidate, django_admin.site)
        self.engine = MagicMock()
        patcher = patch("pipeline.engine.get_engine", return_value=self.engine)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_status_edit_is_audited_and_dispatched(self):
        candidate = _make_candidate()
        candidate.status = Candidate.Status.TEST_SENT
        self.model_admin.save_model(self.request, candidate, form=None, change=True)

        change = StatusChange.objects.get(candidate=candidate)
        self.assertEqual(change.changed_by, self.user)
        self.assertEqual(change.note, "Changed in admin")
        self.engine.dispatch.assert_called_once_with(candidate)

    def test_edit_without_status_change_does_not_dispatch(self):
        candidate = _make_candidate()
        candidate.city = "Mumbai"
        self.model_admin.save_model(self.request, candidate, form=None, change=True)
        self.engine.dispatch.assert_not_called()
        candidate.refresh_from_db()
        self.assertEqual(candidate.city, "Mumbai")

    def test_new_candidate_is_dispatched(self):
        candidate = Candidate(name="Walk In", email="walkin@example.com")
        self.model_admin.save_model(self.request, candidate, form=None, change=False)
        self.assertIsNotNone(candidate.pk)
        self.engine.dispatch.assert_called_once_with(candidate)

    def test_rerun_action(self):
        _make_candidate()
        _make_candidate(email="b@example.com")
        self.engine.dispatch.side_effect = [True, False]
        with patch.object(self.model_admin, "message_user") as message_user:
            self.model_admin.rerun_status_handler(self.request, Candidate.objects.all())
        message_user.assert_called_once_with(self.request, "Handler ran for 1 of 2 candidate(s).")
