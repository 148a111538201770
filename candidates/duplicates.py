"""
candidates/duplicates.py

Repeat-application detection run before a new candidate record is created.

Per existing candidate (scan order = primary key), first hit wins:
  1. Exact email (case-insensitive)                → EMAIL_EXACT, similarity 1.0
  2. Exact phone on the last 10 digits             → PHONE_EXACT, similarity 1.0
  3. Fuzzy name (normalised Levenshtein) > 0.85 AND
     (similarity > 0.95 OR last 6 digits of the new phone occur in the
      existing phone's last 10)                     → NAME_FUZZY

The scan fails open: any error is logged and reported as "no duplicate".
"""

import enum
import logging
import re
from dataclasses import dataclass

from candidates.models import Candidate
from hirepilot.constants import (
    NAME_MATCH_THRESHOLD,
    NAME_STRONG_MATCH_THRESHOLD,
    PHONE_COMPARE_DIGITS,
    PHONE_PARTIAL_DIGITS,
)

logger = logging.getLogger(__name__)

_NON_LETTER_RE = re.compile(r"[^a-z\s]")


class MatchType(str, enum.Enum):
    EMAIL_EXACT = "EMAIL_EXACT"
    PHONE_EXACT = "PHONE_EXACT"
    NAME_FUZZY = "NAME_FUZZY"


@dataclass(frozen=True)
class DuplicateMatch:
    is_duplicate: bool
    match_type: MatchType | None = None
    similarity: float = 0.0
    candidate: Candidate | None = None


NO_MATCH = DuplicateMatch(is_duplicate=False)


# ── String helpers ─────────────────────────────────────────────────────────────

def levenshtein(a: str, b: str) -> int:
    """Classic edit distance; insert, delete and substitute each cost 1."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost,
            ))
        previous = current
    return previous[-1]


def normalize_name(name: str) -> str:
    return _NON_LETTER_RE.sub("", (name or "").lower()).strip()


def name_similarity(a: str, b: str) -> float:
    """1 - levenshtein / longest length, on normalised names."""
    a, b = normalize_name(a), normalize_name(b)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    return 1 - levenshtein(a, b) / max(len(a), len(b))


def digits_only(value: str) -> str:
    return re.sub(r"\D", "", value or "")


def last_ten_digits(phone: str) -> str:
    return digits_only(phone)[-PHONE_COMPARE_DIGITS:]


# ── Matcher ────────────────────────────────────────────────────────────────────

class DuplicateMatcher:
    """
    Accepts an optional iterable of candidates for testability; by default
    scans the whole Candidate table.
    """

    def __init__(self, candidates=None):
        self._candidates = candidates

    def _existing(self):
        if self._candidates is not None:
            return self._candidates
        return Candidate.objects.order_by("pk").iterator()

    def check(self, email: str, phone: str, name: str) -> DuplicateMatch:
        clean_email = (email or "").strip().lower()
        clean_phone = last_ten_digits(phone)
        partial = clean_phone[-PHONE_PARTIAL_DIGITS:] if len(clean_phone) >= PHONE_PARTIAL_DIGITS else ""

        try:
            for existing in self._existing():
                match = self._compare(existing, clean_email, clean_phone, partial, name)
                if match is not None:
                    logger.info(
                        "Duplicate detected: type=%s similarity=%.2f existing=%s",
                        match.match_type.value, match.similarity, existing.pk,
                    )
                    return match
        except Exception as exc:
            logger.error("Duplicate check failed, treating as new: %s", exc, exc_info=True)
            return NO_MATCH

        return NO_MATCH

    @staticmethod
    def _compare(existing, clean_email, clean_phone, partial, name) -> DuplicateMatch | None:
        existing_email = (existing.email or "").strip().lower()
        if clean_email and existing_email == clean_email:
            return DuplicateMatch(True, MatchType.EMAIL_EXACT, 1.0, existing)

        existing_phone = last_ten_digits(existing.phone)
        if len(clean_phone) == PHONE_COMPARE_DIGITS and existing_phone == clean_phone:
            return DuplicateMatch(True, MatchType.PHONE_EXACT, 1.0, existing)

        if name and existing.name:
            similarity = name_similarity(name, existing.name)
            if similarity > NAME_MATCH_THRESHOLD:
                corroborated = bool(partial) and partial in existing_phone
                if corroborated or similarity > NAME_STRONG_MATCH_THRESHOLD:
                    return DuplicateMatch(True, MatchType.NAME_FUZZY, similarity, existing)
        return None

    @staticmethod
    def response_text(match: DuplicateMatch) -> str:
        """Candidate-facing reply for a repeat application."""
        if not match.is_duplicate or match.candidate is None:
            return ""
        existing = match.candidate
        return (
            f"Hi {existing.name or 'there'},\n\n"
            f"It looks like you have already applied for the {existing.role or 'open'} role. "
            f"Your application is currently at: {existing.get_status_display()}.\n\n"
            "There is no need to apply again; we will be in touch with next steps.\n\n"
            "Best regards,\nThe Hiring Team"
        )
