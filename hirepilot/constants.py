"""
hirepilot/constants.py

Central repository for cross-cutting, operationally-tunable constants.

Rules for what belongs here:
  - Pure Python only — no Django model imports (prevents circular import risk).
  - Referenced by more than one module, or genuinely tunable at the ops level.

What intentionally stays elsewhere:
  - TextChoices on models     — Django convention, DB-validated.
  - Provider endpoints        — ai/providers.py (single consumer).
  - Fallback message bodies   — messaging/services.py (single consumer).
"""

# ── Departments ────────────────────────────────────────────────────────────────

DEFAULT_DEPARTMENT = "DESIGN"

# Role keywords used to infer a department; first department with a hit wins.
DEPARTMENT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "DESIGN": ("design", "interior", "architect", "3d", "visual", "autocad", "render"),
    "MARKETING": ("marketing", "social media", "content", "brand", "seo"),
    "SALES": ("sales", "business development", "client"),
    "OPERATIONS": ("operations", "admin", "hr", "account", "finance", "procurement"),
}

ROLE_LEVELS = ("intern", "junior", "senior")

# ── Duplicate detection ────────────────────────────────────────────────────────

# Minimum normalised edit-distance similarity for a fuzzy name match.
NAME_MATCH_THRESHOLD = 0.85

# Similarity above which a name match is accepted without phone corroboration.
NAME_STRONG_MATCH_THRESHOLD = 0.95

# Trailing digits of the new phone that must appear in the existing phone
# to corroborate a fuzzy name match.
PHONE_PARTIAL_DIGITS = 6

PHONE_COMPARE_DIGITS = 10

# ── AI ─────────────────────────────────────────────────────────────────────────

# Returned by the router in sandbox mode; helpers treat it as "no result".
AI_SANDBOX_RESPONSE = "AI_TEST_RESPONSE"

# Characters of fetched portfolio text sent to the model.
PORTFOLIO_TEXT_LIMIT = 3000

# Maximum PDF pages extracted from a portfolio (pdfplumber).
PDF_MAX_PAGES = 5

# ── Team view ──────────────────────────────────────────────────────────────────

# Candidate fields never exported to the team view.
SENSITIVE_FIELDS = frozenset({
    "email",
    "phone",
    "portal_token",
    "salary_expected",
    "salary_last",
    "health_notes",
    "calendar_event_id",
    "cv_url",
    "log",
})
