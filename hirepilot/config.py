"""
hirepilot/config.py

Immutable pipeline configuration.

PipelineConfig is built once from Django settings and handed to every
component constructor (WorkflowEngine, StatusHandlers, InboxProcessor, ...).
Components call get_config() only when no config was injected.
"""

from dataclasses import dataclass, field
from functools import lru_cache
from types import MappingProxyType
from typing import Mapping
from zoneinfo import ZoneInfo

from django.core.signals import setting_changed
from django.dispatch import receiver

from hirepilot.constants import DEFAULT_DEPARTMENT, DEPARTMENT_KEYWORDS


def _freeze(mapping: dict | None) -> Mapping:
    """Recursively wrap nested dicts in read-only proxies."""
    return MappingProxyType({
        str(key).upper() if isinstance(value, dict) else str(key).lower():
            _freeze(value) if isinstance(value, dict) else value
        for key, value in (mapping or {}).items()
    })


@dataclass(frozen=True)
class PipelineConfig:
    company_name: str = "HirePilot"
    admin_email: str = ""
    team_emails: tuple[str, ...] = ()
    sandbox_mode: bool = False

    # ── Feature flags ──────────────────────────────────────────────────────────
    duplicate_check: bool = True
    auto_portfolio_scoring: bool = True
    calendar_integration: bool = False
    portal_enabled: bool = True
    strict_transitions: bool = False

    # ── Workflow rules ─────────────────────────────────────────────────────────
    rejection_delay_hours: float = 24.0
    followup_days: tuple[int, ...] = (2, 4)
    default_time_limit_hours: float = 2.0
    time_limits: Mapping = field(default_factory=lambda: MappingProxyType({}))
    test_links: Mapping = field(default_factory=lambda: MappingProxyType({}))

    # ── Links ──────────────────────────────────────────────────────────────────
    portal_url: str = ""
    application_form_url: str = ""

    # ── Interviews ─────────────────────────────────────────────────────────────
    interview_duration_minutes: int = 45
    working_hours: tuple[int, int] = (10, 19)
    timezone: str = "Asia/Kolkata"

    # ── Inbox / retry ──────────────────────────────────────────────────────────
    spam_confidence_threshold: float = 0.8
    retry_max_attempts: int = 3
    inbox_batch_size: int = 10
    inbox_body_limit: int = 1000

    @classmethod
    def from_settings(cls, source=None) -> "PipelineConfig":
        if source is None:
            from django.conf import settings as source

        return cls(
            company_name=source.COMPANY_NAME,
            admin_email=source.ADMIN_EMAIL,
            team_emails=tuple(source.TEAM_EMAILS),
            sandbox_mode=source.SANDBOX_MODE,
            duplicate_check=source.FEATURE_DUPLICATE_CHECK,
            auto_portfolio_scoring=source.FEATURE_AUTO_PORTFOLIO_SCORING,
            calendar_integration=source.FEATURE_CALENDAR_INTEGRATION,
            portal_enabled=source.FEATURE_PORTAL,
            strict_transitions=source.STRICT_TRANSITIONS,
            rejection_delay_hours=source.REJECTION_DELAY_HOURS,
            followup_days=tuple(source.FOLLOWUP_DAYS),
            default_time_limit_hours=source.DEFAULT_TEST_TIME_LIMIT_HOURS,
            time_limits=_freeze(source.TEST_TIME_LIMITS),
            test_links=_freeze(source.TEST_LINKS),
            portal_url=source.PORTAL_URL,
            application_form_url=source.APPLICATION_FORM_URL,
            interview_duration_minutes=source.INTERVIEW_DURATION_MINUTES,
            working_hours=(source.WORK_HOURS_START, source.WORK_HOURS_END),
            timezone=source.PIPELINE_TIMEZONE,
            spam_confidence_threshold=source.SPAM_CONFIDENCE_THRESHOLD,
            retry_max_attempts=source.RETRY_MAX_ATTEMPTS,
            inbox_batch_size=source.INBOX_BATCH_SIZE,
            inbox_body_limit=source.INBOX_BODY_LIMIT,
        )

    # ── Derived lookups ────────────────────────────────────────────────────────

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @staticmethod
    def role_level(role: str) -> str:
        lowered = (role or "").lower()
        if "senior" in lowered:
            return "senior"
        if "junior" in lowered:
            return "junior"
        return "intern"

    @staticmethod
    def department_for(role: str) -> str:
        lowered = (role or "").lower()
        for department, keywords in DEPARTMENT_KEYWORDS.items():
            if any(keyword in lowered for keyword in keywords):
                return department
        return DEFAULT_DEPARTMENT

    def time_limit_for(self, role: str, department: str = "") -> float:
        """Test time limit in hours for a role, by department then level."""
        dept = (department or self.department_for(role)).upper()
        limits = self.time_limits.get(dept) or self.time_limits.get(DEFAULT_DEPARTMENT) or {}
        value = limits.get(self.role_level(role))
        return float(value) if value else self.default_time_limit_hours

    def test_link_for(self, role: str, department: str = "") -> str:
        dept = (department or self.department_for(role)).upper()
        links = self.test_links.get(dept) or self.test_links.get(DEFAULT_DEPARTMENT) or {}
        return links.get(self.role_level(role)) or ""


@lru_cache(maxsize=1)
def get_config() -> PipelineConfig:
    """Process-wide configuration, built from settings on first use."""
    return PipelineConfig.from_settings()


@receiver(setting_changed)
def _reset_config(**kwargs):
    """Rebuild on next use when settings change (override_settings in tests)."""
    get_config.cache_clear()
