"""
pipeline/transitions.py

Explicit status transition table plus the audited transition entry point.

Any status may still be written by a human or an integration. Writes that
are not in ALLOWED_TRANSITIONS are flagged as irregular on the StatusChange
audit row and logged, or refused outright when STRICT_TRANSITIONS is on.
"""

import logging

from candidates.models import Candidate
from hirepilot.config import PipelineConfig, get_config

logger = logging.getLogger(__name__)

S = Candidate.Status

_REJECT_PATHS = frozenset({S.PENDING_REJECTION, S.REJECTED})

ALLOWED_TRANSITIONS: dict[str, frozenset] = {
    S.NEW: frozenset({S.IN_PROCESS, S.TEST_SENT}) | _REJECT_PATHS,
    S.IN_PROCESS: frozenset({S.TEST_SENT}) | _REJECT_PATHS,
    S.TEST_SENT: frozenset({S.TEST_SUBMITTED}) | _REJECT_PATHS,
    S.TEST_SUBMITTED: frozenset({S.UNDER_REVIEW}) | _REJECT_PATHS,
    S.UNDER_REVIEW: frozenset({S.INTERVIEW_PENDING}) | _REJECT_PATHS,
    S.INTERVIEW_PENDING: frozenset({S.INTERVIEW_DONE}) | _REJECT_PATHS,
    S.INTERVIEW_DONE: frozenset({S.HIRED}) | _REJECT_PATHS,
    # Cooling-off window: a human may pull the candidate back into the funnel.
    S.PENDING_REJECTION: frozenset({
        S.REJECTED, S.IN_PROCESS, S.TEST_SENT, S.UNDER_REVIEW, S.INTERVIEW_PENDING,
    }),
    S.REJECTED: frozenset(),
    S.HIRED: frozenset(),
}


class InvalidTransition(Exception):
    """Raised for a transition outside the table when strict mode is on."""


def is_allowed(from_status: str, to_status: str) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


ADMIN_CHANGE_NOTE = "Changed in admin"


def _default_note(status: str) -> str:
    return f"Automatic transition to {status}"


def is_default_note(note: str) -> bool:
    """True for notes written by the system rather than typed by a person."""
    return not note or note == ADMIN_CHANGE_NOTE or note.startswith("Automatic transition to ")


def transition_status(
    candidate: Candidate,
    new_status: str,
    *,
    changed_by=None,
    note: str | None = None,
    dispatch: bool = True,
    engine=None,
    config: PipelineConfig | None = None,
) -> bool:
    """
    Audit the status change, then run the handler for the new status.

    Returns False when the candidate already had new_status (nothing is
    written and no handler runs). Use WorkflowEngine.dispatch() directly
    for a deliberate re-send.
    """
    config = config or get_config()
    old_status = candidate.status
    if old_status == new_status:
        return False

    irregular = not is_allowed(old_status, new_status)
    if irregular:
        if config.strict_transitions:
            raise InvalidTransition(f"{old_status} → {new_status} is not an allowed transition")
        logger.warning(
            "Irregular transition for candidate=%s: %s → %s",
            candidate.pk, old_status, new_status,
        )

    candidate.change_status(
        new_status,
        changed_by=changed_by,
        note=note or _default_note(new_status),
        irregular=irregular,
    )

    if dispatch:
        if engine is None:
            from pipeline.engine import get_engine
            engine = get_engine()
        engine.dispatch(candidate)
    return True


def set_test_submitted(candidate: Candidate, *, changed_by=None, note: str | None = None, **kwargs) -> bool:
    return transition_status(candidate, S.TEST_SUBMITTED, changed_by=changed_by, note=note, **kwargs)


def set_under_review(candidate: Candidate, *, changed_by=None, note: str | None = None, **kwargs) -> bool:
    return transition_status(candidate, S.UNDER_REVIEW, changed_by=changed_by, note=note, **kwargs)


def set_rejected(candidate: Candidate, *, changed_by=None, note: str | None = None, **kwargs) -> bool:
    return transition_status(candidate, S.REJECTED, changed_by=changed_by, note=note, **kwargs)
