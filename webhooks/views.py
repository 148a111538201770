"""
webhooks/views.py

Inbound form-submission webhooks.

  POST /webhooks/application-form/   — application form response (named values)
  POST /webhooks/test-form/          — test submission form response

Both views are CSRF-exempt (form providers cannot obtain a CSRF token).
Both validate the X-Form-Secret shared secret before any processing occurs.

Payloads carry form answers keyed by question title, either at the top level
or under "namedValues". Each value may be a string or a single-item list.
"""

import hmac
import json
import logging

from django.conf import settings
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from candidates.duplicates import DuplicateMatcher
from candidates.models import Candidate
from candidates.services import apply_extracted_fields, lookup_candidate_by_email, record_event
from hirepilot.config import get_config
from hirepilot.text_utils import mask_email
from portal.services import PortalError, submit_test

logger = logging.getLogger(__name__)

# Question-title variants per candidate field, first match wins.
APPLICATION_FIELDS: dict[str, tuple[str, ...]] = {
    "name": ("Full Name", "Name", "Your Name"),
    "email": ("Email Address", "Email", "Username"),
    "phone": ("Phone Number", "Phone", "WhatsApp Number", "Contact Number"),
    "city": ("Current City", "City"),
    "role": ("Position", "Role", "Desired Position", "Applying For"),
    "degree": ("Degree", "Education", "Degree/Education"),
    "startDate": ("Earliest Start Date", "Start Date"),
    "tenure": ("Expected Tenure", "Tenure"),
    "salaryExpected": ("Salary Expectations", "Expected Salary"),
    "salaryLast": ("Last Drawn Salary", "Current Salary"),
    "experience": ("Work Experience", "Experience"),
    "hindiProficient": ("Hindi Proficiency", "Hindi Proficient", "Do you speak Hindi?"),
    "healthNotes": ("Health Considerations", "Health Notes"),
    "previousApplication": ("Applied Before", "Previous Application"),
    "testAvailability": ("Test Availability", "Preferred Test Date/Time", "Test Date"),
    "willingToRelocate": ("Willing to Relocate", "Relocate"),
    "portfolioUrl": ("Portfolio Link", "Portfolio", "Portfolio URL"),
    "cvUrl": ("CV Link", "Resume Link", "CV/Resume", "CV"),
}

TEST_FIELDS: dict[str, tuple[str, ...]] = {
    "email": ("Email Address", "Email", "Username"),
    "pdf_url": ("PDF/Docs Upload", "PDF/Docs", "Upload PDF/Docs"),
    "dwg_url": ("DWG Upload", "DWG Files", "Upload DWG"),
    "other_url": ("Other Files", "Other Uploads"),
    "notes": ("Test Notes", "Notes"),
}


# ── Shared response helpers ────────────────────────────────────────────────────

def _ok(message: str = "ok", **extra) -> JsonResponse:
    return JsonResponse({"status": message, **extra}, status=200)


def _reject(reason: str, status: int = 401) -> JsonResponse:
    logger.warning("Webhook rejected: %s", reason)
    return JsonResponse({"error": reason}, status=status)


def _check_secret(request) -> JsonResponse | None:
    """
    Returns an error response when the request must be refused, else None.
    With no secret configured, requests pass in DEBUG and fail hard otherwise.
    """
    secret = settings.FORM_WEBHOOK_SECRET
    if not secret:
        if settings.DEBUG:
            logger.warning("FORM_WEBHOOK_SECRET is not set — skipping secret validation.")
            return None
        logger.error("FORM_WEBHOOK_SECRET is not set in production; refusing form webhook.")
        return JsonResponse({"error": "server_misconfigured"}, status=500)

    token = request.META.get("HTTP_X_FORM_SECRET", "")
    if not token or not hmac.compare_digest(token, secret):
        return _reject("Invalid or missing X-Form-Secret header")
    return None


def _parse_answers(request) -> dict | None:
    try:
        payload = json.loads(request.body or b"{}")
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    answers = payload.get("namedValues", payload)
    return answers if isinstance(answers, dict) else None


def _first_answer(answers: dict, variants: tuple[str, ...]) -> str:
    for title in variants:
        value = answers.get(title)
        if isinstance(value, list):
            value = value[0] if value else ""
        if value not in (None, ""):
            return str(value).strip()
    return ""


def _collect(answers: dict, fields: dict[str, tuple[str, ...]]) -> dict[str, str]:
    return {key: _first_answer(answers, variants) for key, variants in fields.items()}


# ─────────────────────────────────────────────────────────────────────────────
# Application form
# ─────────────────────────────────────────────────────────────────────────────

@csrf_exempt
@require_POST
def application_form_webhook(request):
    """
    POST /webhooks/application-form/

    Creates a NEW candidate from an application form response and runs the
    NEW handler. Duplicate submissions are acknowledged without creating a
    second record.
    """
    denied = _check_secret(request)
    if denied is not None:
        return denied

    answers = _parse_answers(request)
    if answers is None:
        return _reject("Invalid JSON body", status=400)

    data = _collect(answers, APPLICATION_FIELDS)
    email = data["email"].lower()
    if not email or "@" not in email:
        return _reject("No email address in form response", status=400)

    config = get_config()

    if config.duplicate_check:
        match = DuplicateMatcher().check(email, data["phone"], data["name"])
        if match.is_duplicate:
            record_event(match.candidate, "DUPLICATE_APPLICATION", source="form",
                         matchType=match.match_type.value, sender=email)
            logger.info("Duplicate form application from %s (%s)", mask_email(email), match.match_type.value)
            return _ok("duplicate", candidate=match.candidate.pk, match_type=match.match_type.value)
    elif lookup_candidate_by_email(email) is not None:
        return _ok("duplicate")

    candidate = Candidate(source=Candidate.Source.FORM)
    apply_extracted_fields(candidate, data)
    candidate.department = config.department_for(candidate.role)
    candidate.save()
    record_event(candidate, "FORM_SUBMITTED", testAvailability=candidate.test_availability)
    logger.info("Candidate created from application form: candidate=%s", candidate.pk)

    from pipeline.engine import get_engine
    get_engine().dispatch(candidate)

    return _ok("created", candidate=candidate.pk)


# ─────────────────────────────────────────────────────────────────────────────
# Test submission form
# ─────────────────────────────────────────────────────────────────────────────

@csrf_exempt
@require_POST
def test_form_webhook(request):
    """
    POST /webhooks/test-form/

    Records a test submission made through the external form, identified by
    the email the candidate applied with. Unlike a portal upload it is accepted
    in any status: the links are stored and the admin notified even when the
    candidate was not waiting on a test.
    """
    denied = _check_secret(request)
    if denied is not None:
        return denied

    answers = _parse_answers(request)
    if answers is None:
        return _reject("Invalid JSON body", status=400)

    data = _collect(answers, TEST_FIELDS)
    if not data["email"]:
        logger.error("Test form submission without an email address")
        return _reject("No email address in form response", status=400)

    candidate = lookup_candidate_by_email(data["email"])
    if candidate is None:
        logger.warning("Test form submission from unknown email %s", mask_email(data["email"]))
        record_event(None, "TEST_FORM_UNMATCHED", email=data["email"],
                     pdfUrl=data["pdf_url"], dwgUrl=data["dwg_url"], otherUrl=data["other_url"])
        return _ok("candidate_not_found")

    try:
        submit_test(
            candidate,
            pdf_url=data["pdf_url"],
            dwg_url=data["dwg_url"],
            other_url=data["other_url"],
            notes=data["notes"],
            source="form",
            require_status=False,
        )
    except PortalError as exc:
        logger.warning("Test form submission refused for candidate=%s: %s", candidate.pk, exc)
        return _reject(str(exc), status=409)

    return _ok("submitted", candidate=candidate.pk)
