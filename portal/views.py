"""
portal/views.py

Candidate self-service portal. Access is by opaque token only.

  GET  /portal/?token=...[&date=YYYY-MM-DD]        — HTML page: status, upload form, slot picker
  GET  /portal/?token=...&format=json               — status + allowed actions (JSON)
  POST /portal/  form fields {token, action, ...}   — HTML page re-rendered with the outcome
  POST /portal/  {"token", "action", ...} (JSON)    — submit_test | book_slot | list_slots

Both surfaces run the same actions through portal.services.
"""

import json
import logging
from datetime import date, datetime

from django.http import JsonResponse
from django.shortcuts import render
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from hirepilot.config import PipelineConfig, get_config
from hirepilot.text_utils import format_local
from interviews.services import CalendarError
from portal import services

logger = logging.getLogger(__name__)

PAGE_TEMPLATE = "portal/portal.html"
ERROR_TEMPLATE = "portal/error.html"

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")

NOTICES = {
    "submit_test": "Your test has been uploaded. Thank you!",
    "book_slot": "Your interview is booked. A confirmation is on its way to your inbox.",
}


class ActionRejected(Exception):
    """A portal action that could not run; carries the error code and HTTP status."""

    def __init__(self, code: str, detail: str, status: int):
        super().__init__(detail)
        self.code = code
        self.detail = detail
        self.status = status


def _wants_json(request) -> bool:
    if request.method == "POST":
        return request.content_type not in FORM_CONTENT_TYPES
    return request.GET.get("format") == "json" or request.headers.get("Accept", "").startswith("application/json")


def _error(request, as_json: bool, code: str, detail: str, status: int):
    logger.warning("Portal request rejected: %s (%s)", code, detail)
    if as_json:
        return JsonResponse({"error": code, "detail": detail}, status=status)
    return render(request, ERROR_TEMPLATE, {
        "company": get_config().company_name,
        "code": code,
        "detail": detail,
    }, status=status)


def _text(payload: dict, key: str) -> str:
    value = payload.get(key)
    return value.strip() if isinstance(value, str) else ""


def _run_action(candidate, payload: dict, config: PipelineConfig) -> dict | None:
    """Run the requested action; list_slots returns its slots, the others return None."""
    action = payload.get("action", "")
    if action not in services.allowed_actions(candidate):
        raise ActionRejected("action_not_allowed", f"'{action}' is not available right now", 409)

    try:
        if action == "submit_test":
            services.submit_test(
                candidate,
                pdf_url=_text(payload, "pdf_url"),
                dwg_url=_text(payload, "dwg_url"),
                other_url=_text(payload, "other_url"),
                notes=_text(payload, "notes"),
                config=config,
            )
        elif action == "list_slots":
            slots = services.list_slots(date.fromisoformat(payload.get("date", "")))
            return {"slots": [slot.isoformat() for slot in slots]}
        elif action == "book_slot":
            services.book_slot(candidate, datetime.fromisoformat(payload.get("slot", "")), config=config)
    except (TypeError, ValueError) as exc:
        raise ActionRejected("bad_request", str(exc), 400) from exc
    except services.PortalError as exc:
        raise ActionRejected("action_failed", str(exc), 409) from exc
    except CalendarError as exc:
        logger.error("Portal calendar failure for candidate=%s: %s", candidate.pk, exc)
        raise ActionRejected("calendar_unavailable", "Scheduling is temporarily unavailable", 503) from exc
    return None


def _slot_picker(day: str, config: PipelineConfig) -> dict:
    if not day:
        return {"day": "", "slots": None}
    try:
        slots = services.list_slots(date.fromisoformat(day))
    except ValueError:
        return {"day": "", "slots": None, "slots_error": "Please pick a valid date."}
    except CalendarError as exc:
        logger.error("Portal calendar failure listing %s: %s", day, exc)
        return {"day": day, "slots": None, "slots_error": "Scheduling is temporarily unavailable."}
    return {
        "day": day,
        "slots": [{"value": slot.isoformat(), "label": format_local(slot, config.tz)} for slot in slots],
    }


def _page(request, candidate, config: PipelineConfig, *, day="", notice="", error="", status=200):
    context = services.portal_status(candidate, config)
    context.update(
        company=config.company_name,
        token=candidate.portal_token,
        notice=notice,
        error=error,
        interview_label=format_local(candidate.interview_at, config.tz),
    )
    if "list_slots" in context["actions"]:
        context.update(_slot_picker(day if isinstance(day, str) else "", config))
    return render(request, PAGE_TEMPLATE, context, status=status)


@csrf_exempt
@require_http_methods(["GET", "POST"])
def portal(request):
    config = get_config()
    as_json = _wants_json(request)
    if not config.portal_enabled:
        return _error(request, as_json, "portal_disabled", "The candidate portal is disabled", 404)

    if request.method == "GET":
        candidate = services.resolve_token(request.GET.get("token", ""))
        if candidate is None:
            return _error(request, as_json, "invalid_token", "Unknown or expired link", 404)
        if as_json:
            return JsonResponse(services.portal_status(candidate, config))
        return _page(request, candidate, config, day=request.GET.get("date", ""))

    if as_json:
        try:
            payload = json.loads(request.body or b"{}")
        except json.JSONDecodeError:
            return _error(request, True, "bad_request", "Invalid JSON body", 400)
        if not isinstance(payload, dict):
            return _error(request, True, "bad_request", "Expected a JSON object", 400)
    else:
        payload = request.POST.dict()

    token = payload.get("token")
    candidate = services.resolve_token(token if isinstance(token, str) else "")
    if candidate is None:
        return _error(request, as_json, "invalid_token", "Unknown or expired link", 404)

    day = payload.get("date", "")
    try:
        result = _run_action(candidate, payload, config)
    except ActionRejected as exc:
        if as_json:
            return _error(request, True, exc.code, exc.detail, exc.status)
        logger.warning("Portal request rejected: %s (%s)", exc.code, exc.detail)
        return _page(request, candidate, config, day=day, error=exc.detail, status=exc.status)

    if as_json:
        if result is not None:
            return JsonResponse(result)
        candidate.refresh_from_db()
        return JsonResponse(services.portal_status(candidate, config))

    candidate.refresh_from_db()
    return _page(request, candidate, config, day=day, notice=NOTICES.get(payload.get("action"), ""))
