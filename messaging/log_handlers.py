"""
messaging/log_handlers.py

Logging handler that emails the admin for every CRITICAL record.
Wired in settings.LOGGING; imported before the app registry is ready, so
all Django-dependent imports happen inside emit().
"""

import logging
import threading


class CriticalAlertHandler(logging.Handler):
    """Sends CRITICAL log records to the admin through GmailService."""

    _local = threading.local()

    def __init__(self, level=logging.CRITICAL):
        super().__init__(level)

    def emit(self, record: logging.LogRecord) -> None:
        # A failure while alerting must not alert again.
        if getattr(self._local, "active", False):
            return
        self._local.active = True
        try:
            from messaging.services import notify_admin

            message = record.getMessage()
            if record.exc_info:
                message = f"{message}\n\n{logging.Formatter().formatException(record.exc_info)}"
            notify_admin(f"CRITICAL: {record.getMessage()[:120]}", f"[{record.name}]\n{message}")
        except Exception:  # noqa: BLE001
            self.handleError(record)
        finally:
            self._local.active = False
