"""
candidates/services.py

Public services:
  lookup_candidate_by_email(email)           → Candidate | None
  lookup_candidate_by_phone(phone)           → Candidate | None
  record_event(candidate, event_type, ...)   → TimelineEvent | None
  apply_extracted_fields(candidate, data)    → list of changed field names
  upsert_from_form_response(data, source)    → (Candidate, created)
  sync_team_view()                           → rows written
  status_counts()                            → {status: count}
"""

import csv
import io
import logging
import re

from django.conf import settings
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage
from django.db import transaction
from django.db.models import Count

from candidates.duplicates import digits_only
from candidates.models import Candidate, TimelineEvent
from hirepilot.constants import SENSITIVE_FIELDS

logger = logging.getLogger(__name__)

# ── Extraction → model field mapping ───────────────────────────────────────────

# Keys produced by AIService.extract_form_response / extract_candidate_info.
EXTRACTED_FIELD_MAP = {
    "name": "name",
    "email": "email",
    "phone": "phone",
    "city": "city",
    "role": "role",
    "degree": "degree",
    "startDate": "start_date",
    "tenure": "tenure",
    "salaryExpected": "salary_expected",
    "salaryLast": "salary_last",
    "experience": "experience",
    "hindiProficient": "hindi_proficient",
    "healthNotes": "health_notes",
    "previousApplication": "previous_application",
    "testAvailability": "test_availability",
    "willingToRelocate": "willing_to_relocate",
    "portfolioUrl": "portfolio_url",
    "cvUrl": "cv_url",
}

TEAM_VIEW_FIELDS = [
    f.name for f in Candidate._meta.concrete_fields
    if f.name not in SENSITIVE_FIELDS
]


# ── Candidate lookup helpers (shared with inbox / portal / webhooks) ───────────

def _phones_match(query_digits: str, stored_phone: str) -> bool:
    """
    Compare two phone numbers by their digit-only representations.
    Handles country-code prefix differences by checking if either is a suffix
    of the other (minimum 7 significant digits required).
    """
    stored_digits = digits_only(stored_phone)
    if not stored_digits or len(query_digits) < 7:
        return False
    if query_digits == stored_digits:
        return True
    short, long_ = (
        (query_digits, stored_digits)
        if len(query_digits) <= len(stored_digits)
        else (stored_digits, query_digits)
    )
    return long_.endswith(short) and len(short) >= 7


def lookup_candidate_by_phone(phone: str) -> "Candidate | None":
    digits = digits_only(phone)
    if not digits:
        return None
    for candidate in Candidate.objects.exclude(phone="").only("id", "phone"):
        if _phones_match(digits, candidate.phone):
            return Candidate.objects.get(pk=candidate.pk)
    return None


def lookup_candidate_by_email(email: str) -> "Candidate | None":
    """
    Return a Candidate whose email exactly matches (case-insensitive).
    Accepts both bare addresses and RFC 2822 'Name <addr>' strings.
    """
    if not email:
        return None
    match = re.search(r"<([^>]+@[^>]+)>", email)
    bare = match.group(1).strip() if match else email.strip()
    if not bare or "@" not in bare:
        return None
    return Candidate.objects.filter(email__iexact=bare).order_by("pk").first()


# ── Timeline ───────────────────────────────────────────────────────────────────

def record_event(candidate: Candidate | None, event_type: str, email: str = "", **payload) -> TimelineEvent | None:
    """
    Append a timeline event. A failed write is logged, never raised: the
    audit trail must not break the action it describes.
    """
    try:
        # Own savepoint: a failed insert must not poison an enclosing transaction.
        with transaction.atomic():
            return TimelineEvent.objects.create(
                candidate=candidate,
                email=(email or (candidate.email if candidate else "")).lower(),
                event_type=event_type,
                payload=payload,
            )
    except Exception as exc:
        logger.error("Timeline write failed for %s/%s: %s", email, event_type, exc, exc_info=True)
        return None


def get_timeline(email: str) -> list[TimelineEvent]:
    return list(TimelineEvent.objects.filter(email=(email or "").lower()))


# ── Form-response upsert ───────────────────────────────────────────────────────

def apply_extracted_fields(candidate: Candidate, data: dict) -> list[str]:
    """
    Copy extracted values onto the candidate, only for keys that carry a
    value. Missing or null fields never overwrite what is stored.
    """
    changed = []
    for key, field_name in EXTRACTED_FIELD_MAP.items():
        value = data.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        value = str(value).strip()
        if field_name == "email":
            value = value.lower()
        if getattr(candidate, field_name) != value:
            setattr(candidate, field_name, value)
            changed.append(field_name)
    return changed


def upsert_from_form_response(data: dict, source: str = Candidate.Source.EMAIL) -> tuple[Candidate, bool]:
    """Create or update the candidate identified by data['email']."""
    from hirepilot.config import get_config

    email = (data.get("email") or "").strip().lower()
    candidate = lookup_candidate_by_email(email) if email else None

    if candidate is None:
        candidate = Candidate(source=source)
        apply_extracted_fields(candidate, data)
        candidate.department = get_config().department_for(candidate.role)
        candidate.save()
        logger.info("Candidate created from form response: candidate=%s", candidate.pk)
        return candidate, True

    changed = apply_extracted_fields(candidate, data)
    if changed:
        candidate.save(update_fields=changed + ["updated_at"])
    logger.info("Candidate updated from form response: candidate=%s fields=%s", candidate.pk, changed)
    return candidate, False


# ── Team view ──────────────────────────────────────────────────────────────────

def sync_team_view(path: str | None = None, storage=None) -> int:
    """
    Rewrite the privacy-redacted CSV of the candidate table used by the
    wider team. Sensitive columns (hirepilot.constants.SENSITIVE_FIELDS)
    are never written.
    """
    storage = storage or default_storage
    path = path or settings.TEAM_VIEW_PATH

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=TEAM_VIEW_FIELDS)
    writer.writeheader()
    rows = 0
    for row in Candidate.objects.order_by("pk").values(*TEAM_VIEW_FIELDS):
        writer.writerow(row)
        rows += 1

    if storage.exists(path):
        storage.delete(path)
    storage.save(path, ContentFile(buffer.getvalue().encode("utf-8")))
    logger.info("Team view synced: %s rows → %s", rows, path)
    return rows


def status_counts() -> dict[str, int]:
    counts = {status: 0 for status in Candidate.Status.values}
    for row in Candidate.objects.values("status").annotate(total=Count("pk")):
        counts[row["status"]] = row["total"]
    return counts
