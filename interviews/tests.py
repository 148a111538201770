"""
interviews/tests.py

Covers:
  - compute_available_slots : working-hours grid, busy overlap, past slots
  - CalendarService         : event body, error wrapping, sandbox, listing, cancel/reschedule
  - get_available_slots     : calendar busy times feed the slot maths
"""

from datetime import date, datetime, timedelta
from unittest.mock import MagicMock, patch
from zoneinfo import ZoneInfo

from django.test import TestCase

from candidates.models import Candidate
from hirepilot.config import PipelineConfig
from interviews.services import (
    SANDBOX_EVENT_ID,
    CalendarError,
    CalendarService,
    compute_available_slots,
    get_available_slots,
)

IST = ZoneInfo("Asia/Kolkata")
DAY = date(2025, 3, 10)


def _at(hour, minute=0):
    return datetime(2025, 3, 10, hour, minute, tzinfo=IST)


class ComputeAvailableSlotsTests(TestCase):
    def _slots(self, busy=(), now=None):
        return compute_available_slots(
            DAY, list(busy), working_hours=(10, 19), slot_minutes=45, tz=IST, now=now,
        )

    def test_full_free_day(self):
        slots = self._slots()
        self.assertEqual(len(slots), 12)
        self.assertEqual(slots[0], _at(10))
        self.assertEqual(slots[1], _at(10, 45))
        self.assertEqual(slots[-1], _at(18, 15))

    def test_busy_interval_removes_overlapping_slots(self):
        slots = self._slots(busy=[(_at(11), _at(12))])
        # 10:45-11:30 and 11:30-12:15 overlap the meeting.
        self.assertNotIn(_at(10, 45), slots)
        self.assertNotIn(_at(11, 30), slots)
        self.assertIn(_at(10), slots)
        self.assertIn(_at(12, 15), slots)
        self.assertEqual(len(slots), 10)

    def test_back_to_back_busy_edge_is_free(self):
        slots = self._slots(busy=[(_at(9), _at(10))])
        self.assertIn(_at(10), slots)

    def test_past_slots_are_dropped(self):
        slots = self._slots(now=_at(17))
        self.assertEqual(slots, [_at(17, 30), _at(18, 15)])


class CalendarServiceTests(TestCase):
    def setUp(self):
        self.api = MagicMock()
        self.config = PipelineConfig(admin_email="hr@example.com", timezone="Asia/Kolkata")
        self.calendar = CalendarService(self.config, service=self.api)

    def test_create_event_body(self):
        self.api.events.return_value.insert.return_value.execute.return_value = {"id": "evt-1"}

        event_id = self.calendar.create_event("Interview", _at(10), _at(10, 45), ["hr@example.com", "", "ana@example.com"], "Qs")

        self.assertEqual(event_id, "evt-1")
        kwargs = self.api.events.return_value.insert.call_args.kwargs
        self.assertEqual(kwargs["sendUpdates"], "all")
        body = kwargs["body"]
        self.assertEqual(body["attendees"], [{"email": "hr@example.com"}, {"email": "ana@example.com"}])
        self.assertEqual(body["start"]["timeZone"], "Asia/Kolkata")
        self.assertEqual(
            body["reminders"]["overrides"],
            [{"method": "popup", "minutes": 30}, {"method": "email", "minutes": 60}],
        )

    def test_create_event_error_is_wrapped(self):
        self.api.events.return_value.insert.return_value.execute.side_effect = Exception("quota")
        with self.assertRaises(CalendarError):
            self.calendar.create_event("Interview", _at(10), _at(10, 45), [])

    def test_sandbox_skips_api(self):
        calendar = CalendarService(PipelineConfig(sandbox_mode=True), service=self.api)
        self.assertEqual(calendar.create_event("x", _at(10), _at(11), []), SANDBOX_EVENT_ID)
        self.assertEqual(calendar.list_events(DAY), [])
        self.assertTrue(calendar.cancel_event("evt-1"))
        self.api.events.assert_not_called()

    def test_list_events_returns_timed_intervals(self):
        self.api.events.return_value.list.return_value.execute.return_value = {"items": [
            {"start": {"dateTime": "2025-03-10T11:00:00+05:30"}, "end": {"dateTime": "2025-03-10T12:00:00+05:30"}},
            {"start": {"date": "2025-03-10"}, "end": {"date": "2025-03-11"}},
        ]}
        busy = self.calendar.list_events(DAY)
        self.assertEqual(busy, [(_at(11), _at(12))])
        kwargs = self.api.events.return_value.list.call_args.kwargs
        self.assertTrue(kwargs["singleEvents"])

    def test_cancel_failure_returns_false(self):
        self.api.events.return_value.delete.return_value.execute.side_effect = Exception("gone")
        with self.assertLogs("interviews.services", level="ERROR"):
            self.assertFalse(self.calendar.cancel_event("evt-1"))

    def test_reschedule_uses_interview_duration(self):
        self.assertTrue(self.calendar.reschedule_event("evt-1", _at(15)))
        body = self.api.events.return_value.patch.call_args.kwargs["body"]
        self.assertEqual(body["end"]["dateTime"], _at(15, 45).isoformat())

    def test_schedule_interview_invites_admin_and_candidate(self):
        candidate = Candidate(name="Ana", email="ana@example.com", role="Designer", interview_at=_at(12))
        with patch.object(self.calendar, "create_event", return_value="evt-2") as create:
            self.assertEqual(self.calendar.schedule_interview(candidate, description="Qs"), "evt-2")
        create.assert_called_once_with(
            title="Interview: Ana (Designer)",
            start=_at(12),
            end=_at(12) + timedelta(minutes=45),
            attendees=["hr@example.com", "ana@example.com"],
            description="Qs",
        )


class GetAvailableSlotsTests(TestCase):
    def test_busy_times_come_from_calendar(self):
        calendar = MagicMock()
        calendar.config = PipelineConfig(timezone="Asia/Kolkata", working_hours=(10, 12), interview_duration_minutes=60)
        calendar.list_events.return_value = [(_at(10), _at(11))]

        with patch("interviews.services.timezone.now", return_value=_at(8)):
            slots = get_available_slots(DAY, calendar=calendar)

        self.assertEqual(slots, [_at(11)])
        calendar.list_events.assert_called_once_with(DAY)
