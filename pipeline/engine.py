"""
pipeline/engine.py

Status dispatch: reads the candidate's current status and runs exactly one
handler for it. Nothing a handler raises escapes dispatch(); failures are
logged at CRITICAL (which also emails the admin) so one candidate can never
abort a batch.
"""

import logging

from django.db import transaction

from candidates.models import Candidate
from hirepilot.config import PipelineConfig, get_config
from pipeline.handlers import StatusHandlers

logger = logging.getLogger(__name__)

S = Candidate.Status

# Statuses without an entry (UNDER_REVIEW, INTERVIEW_DONE) have no side effects.
HANDLER_TABLE: dict[str, str] = {
    S.NEW: "handle_new",
    S.IN_PROCESS: "handle_in_process",
    S.TEST_SENT: "handle_test_sent",
    S.TEST_SUBMITTED: "handle_test_submitted",
    S.INTERVIEW_PENDING: "handle_interview_pending",
    S.PENDING_REJECTION: "handle_pending_rejection",
    S.REJECTED: "handle_rejected",
    S.HIRED: "handle_hired",
}


class WorkflowEngine:
    def __init__(self, handlers: StatusHandlers | None = None, config: PipelineConfig | None = None):
        self.config = config or get_config()
        self.handlers = handlers or StatusHandlers(config=self.config)

    def handler_for(self, status: str):
        name = HANDLER_TABLE.get(status)
        return getattr(self.handlers, name) if name else None

    def dispatch(self, candidate: Candidate) -> bool:
        """
        Run the handler for candidate.status. Returns True when a handler
        ran to completion, False when there was none or it failed.
        """
        handler = self.handler_for(candidate.status)
        if handler is None:
            logger.debug("No handler for status=%r (candidate=%s)", candidate.status, candidate.pk)
            return False

        logger.info("Dispatching %s for candidate=%s", candidate.status, candidate.pk)
        try:
            with transaction.atomic():
                # One status transition processed at a time per candidate.
                list(Candidate.objects.select_for_update().filter(pk=candidate.pk).values_list("pk", flat=True))
                handler(candidate)
        except Exception as exc:  # noqa: BLE001
            logger.critical(
                "Status handler %s failed for candidate=%s: %s",
                candidate.status, candidate.pk, exc,
                exc_info=True,
            )
            return False
        return True


def get_engine() -> WorkflowEngine:
    """Engine wired with default services and the process configuration."""
    return WorkflowEngine()


def dispatch_status(candidate: Candidate) -> bool:
    return get_engine().dispatch(candidate)
