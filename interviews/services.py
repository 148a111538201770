"""
interviews/services.py

Interview scheduling over Google Calendar.

  compute_available_slots(...)  — pure slot maths (no I/O)
  CalendarService               — create / list / cancel / reschedule events
  get_available_slots(day)      — free interview slots for a calendar day
"""

import logging
from datetime import date, datetime, time, timedelta

from django.conf import settings
from django.utils import timezone

from hirepilot.config import PipelineConfig, get_config

logger = logging.getLogger(__name__)

SANDBOX_EVENT_ID = "SANDBOX_EVENT"

_CALENDAR_SCOPES = ["https://www.googleapis.com/auth/calendar"]


class CalendarError(Exception):
    """Raised when the calendar API rejects or fails a request."""


def compute_available_slots(
    day: date,
    busy: list[tuple[datetime, datetime]],
    *,
    working_hours: tuple[int, int],
    slot_minutes: int,
    tz,
    now: datetime | None = None,
) -> list[datetime]:
    """
    Contiguous slot start times within working hours on ``day`` that do
    not overlap any busy interval and start after ``now``.
    """
    start_hour, end_hour = working_hours
    cursor = datetime.combine(day, time(start_hour), tzinfo=tz)
    day_end = datetime.combine(day, time(end_hour), tzinfo=tz)
    step = timedelta(minutes=slot_minutes)

    slots = []
    while cursor + step <= day_end:
        slot_end = cursor + step
        overlaps = any(cursor < busy_end and slot_end > busy_start for busy_start, busy_end in busy)
        if not overlaps and (now is None or cursor > now):
            slots.append(cursor)
        cursor = slot_end
    return slots


class CalendarService:
    """Google Calendar v3 wrapper. The API client is built lazily."""

    def __init__(self, config: PipelineConfig | None = None, service=None):
        self.config = config or get_config()
        self._service = service
        self.calendar_id = settings.GOOGLE_CALENDAR_ID

    @property
    def service(self):
        if self._service is None:
            from googleapiclient.discovery import build

            from messaging.services import build_google_credentials

            creds = build_google_credentials(_CALENDAR_SCOPES)
            self._service = build("calendar", "v3", credentials=creds, cache_discovery=False)
        return self._service

    def create_event(
        self,
        title: str,
        start: datetime,
        end: datetime,
        attendees: list[str],
        description: str = "",
    ) -> str:
        """Create an event with popup (30 min) and email (60 min) reminders; returns its id."""
        if self.config.sandbox_mode:
            logger.info("Sandbox mode: calendar event '%s' not created", title)
            return SANDBOX_EVENT_ID

        body = {
            "summary": title,
            "description": description,
            "start": {"dateTime": start.isoformat(), "timeZone": self.config.timezone},
            "end": {"dateTime": end.isoformat(), "timeZone": self.config.timezone},
            "attendees": [{"email": a} for a in attendees if a],
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "popup", "minutes": 30},
                    {"method": "email", "minutes": 60},
                ],
            },
        }
        try:
            event = self.service.events().insert(
                calendarId=self.calendar_id, body=body, sendUpdates="all",
            ).execute()
        except Exception as exc:
            raise CalendarError(f"Calendar event creation failed: {exc}") from exc
        logger.info("Calendar event created: %s", event.get("id"))
        return event["id"]

    def list_events(self, day: date) -> list[tuple[datetime, datetime]]:
        """Busy (start, end) intervals for ``day`` in the pipeline timezone."""
        if self.config.sandbox_mode:
            return []
        tz = self.config.tz
        day_start = datetime.combine(day, time.min, tzinfo=tz)
        day_end = day_start + timedelta(days=1)
        try:
            result = self.service.events().list(
                calendarId=self.calendar_id,
                timeMin=day_start.isoformat(),
                timeMax=day_end.isoformat(),
                singleEvents=True,
                orderBy="startTime",
            ).execute()
        except Exception as exc:
            raise CalendarError(f"Calendar listing failed: {exc}") from exc

        busy = []
        for event in result.get("items", []):
            start = event.get("start", {}).get("dateTime")
            end = event.get("end", {}).get("dateTime")
            if start and end:
                busy.append((datetime.fromisoformat(start), datetime.fromisoformat(end)))
        return busy

    def cancel_event(self, event_id: str) -> bool:
        if self.config.sandbox_mode or not event_id:
            return True
        try:
            self.service.events().delete(
                calendarId=self.calendar_id, eventId=event_id, sendUpdates="all",
            ).execute()
        except Exception as exc:
            logger.error("Calendar cancel failed for %s: %s", event_id, exc)
            return False
        logger.info("Calendar event cancelled: %s", event_id)
        return True

    def reschedule_event(self, event_id: str, new_start: datetime) -> bool:
        if self.config.sandbox_mode:
            return True
        new_end = new_start + timedelta(minutes=self.config.interview_duration_minutes)
        try:
            self.service.events().patch(
                calendarId=self.calendar_id,
                eventId=event_id,
                body={
                    "start": {"dateTime": new_start.isoformat(), "timeZone": self.config.timezone},
                    "end": {"dateTime": new_end.isoformat(), "timeZone": self.config.timezone},
                },
                sendUpdates="all",
            ).execute()
        except Exception as exc:
            logger.error("Calendar reschedule failed for %s: %s", event_id, exc)
            return False
        logger.info("Calendar event rescheduled: %s → %s", event_id, new_start.isoformat())
        return True

    def schedule_interview(self, candidate, description: str = "") -> str:
        """Create the interview event for candidate.interview_at with admin + candidate as guests."""
        start = candidate.interview_at
        end = start + timedelta(minutes=self.config.interview_duration_minutes)
        return self.create_event(
            title=f"Interview: {candidate.name} ({candidate.role or 'candidate'})",
            start=start,
            end=end,
            attendees=[self.config.admin_email, candidate.email],
            description=description,
        )


def get_available_slots(day: date, calendar: CalendarService | None = None) -> list[datetime]:
    calendar = calendar or CalendarService()
    config = calendar.config
    return compute_available_slots(
        day,
        calendar.list_events(day),
        working_hours=config.working_hours,
        slot_minutes=config.interview_duration_minutes,
        tz=config.tz,
        now=timezone.now(),
    )
