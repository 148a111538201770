"""
ai/services.py

Task helpers built on AIRouter.call.

Responsibilities:
  - classify_intent              : route inbound email to an intent handler
  - extract_candidate_info       : name / email / phone / role / portfolio links
  - extract_form_response        : full application-form field set
  - generate_rejection           : personalised rejection letter (free text)
  - suggest_reply                : candidate reply, placeholder-filtered
  - score_portfolio              : fetch + score a portfolio, never fails
  - generate_interview_questions : role-specific questions with a fixed fallback
  - detect_spam                  : spam verdict, fails open to "not spam"

JSON helpers return None on any failure; callers treat None as
"skip automated handling".
"""

import io
import json
import logging
import re
from dataclasses import dataclass, field

import json_repair
import pdfplumber
import requests as http_requests

from ai.providers import AIRouter, AIRouterError
from hirepilot.constants import AI_SANDBOX_RESPONSE, PDF_MAX_PAGES, PORTFOLIO_TEXT_LIMIT
from hirepilot.text_utils import strip_json_fence, strip_markup

logger = logging.getLogger(__name__)

INTENTS = frozenset({
    "TEST_SUBMISSION",
    "NEW_APPLICATION",
    "FORM_RESPONSE",
    "FOLLOWUP",
    "QUESTION",
    "ESCALATE",
    "SPAM",
})

RECOMMENDATIONS = frozenset({"PROCEED", "REVIEW", "REJECT"})

# Unfilled template slots or dates the model invented a placeholder for.
_PLACEHOLDER_RE = re.compile(
    r"[\[\]{}]|<\s*(?:date|time|name|role)\s*>|proposed date|insert (?:date|time)",
    re.IGNORECASE,
)

_JSON_ONLY = "Respond with valid JSON only. Use null for any field you cannot determine."

DEFAULT_INTERVIEW_QUESTIONS = [
    "Walk us through the project in your portfolio you are most proud of.",
    "How do you approach a brief when the client's requirements are unclear?",
    "Describe a time you had to deliver under a tight deadline.",
    "Which tools do you use day to day, and where are you strongest?",
    "Why do you want to join our team, and where do you see yourself in two years?",
]


@dataclass(frozen=True)
class IntentResult:
    intent: str
    confidence: float = 0.0
    name: str | None = None
    role: str | None = None


@dataclass(frozen=True)
class SpamVerdict:
    is_spam: bool
    confidence: float = 0.0
    reasons: list = field(default_factory=list)


@dataclass(frozen=True)
class PortfolioScore:
    score: float
    recommendation: str
    summary: str
    strengths: list = field(default_factory=list)
    weaknesses: list = field(default_factory=list)
    suggested_questions: list = field(default_factory=list)
    error: str | None = None

    @classmethod
    def fallback(cls, error: str) -> "PortfolioScore":
        return cls(
            score=5.0,
            recommendation="REVIEW",
            summary="Automatic scoring failed - manual review required",
            error=error,
        )

    def feedback_text(self) -> str:
        parts = [f"{self.recommendation}: {self.summary}"]
        if self.strengths:
            parts.append("Strengths: " + "; ".join(str(s) for s in self.strengths))
        if self.weaknesses:
            parts.append("Weaknesses: " + "; ".join(str(w) for w in self.weaknesses))
        return "\n".join(parts)


def _to_float(value, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


class AIService:
    """
    Accepts an optional ``router`` and HTTP ``session`` via constructor
    injection for testability.
    """

    def __init__(self, router: AIRouter | None = None, session=None):
        self.router = router or AIRouter()
        self.session = session or http_requests

    # ── Plumbing ───────────────────────────────────────────────────────────────

    def _complete(self, prompt: str, system: str) -> str | None:
        """Router call that maps exhaustion and sandbox output to None."""
        try:
            text = self.router.call(prompt, system)
        except AIRouterError as exc:
            logger.error("AI call failed: %s", exc)
            return None
        if not text or text.strip() == AI_SANDBOX_RESPONSE:
            return None
        return text.strip()

    def _complete_json(self, prompt: str, system: str) -> dict | None:
        raw = self._complete(prompt, system)
        if raw is None:
            return None
        return self._parse_json(raw)

    @staticmethod
    def _parse_json(raw: str) -> dict | None:
        """Strip fences, parse, and fall back to json_repair for near-JSON."""
        text = strip_json_fence(raw)
        try:
            data = json.loads(text)
        except json.JSONDecodeError as first_exc:
            logger.warning(
                "Strict JSON parse failed (%s) — attempting json_repair. Raw[:200]=%r",
                first_exc, raw[:200],
            )
            try:
                data = json.loads(json_repair.repair_json(text, return_objects=False))
            except Exception as second_exc:  # noqa: BLE001
                logger.warning("AI JSON repair failed: %s", second_exc)
                return None
        if not isinstance(data, dict) or not data:
            logger.warning("AI response was not a JSON object: %.200s", raw)
            return None
        return data

    # ── Classification / extraction ────────────────────────────────────────────

    def classify_intent(self, subject: str, body: str, has_attachments: bool = False) -> IntentResult | None:
        prompt = (
            "Classify this email sent to a hiring inbox.\n\n"
            f"Subject: {subject}\n"
            f"Has attachments: {'yes' if has_attachments else 'no'}\n"
            f"Body:\n{body}\n\n"
            "Categories:\n"
            "TEST_SUBMISSION - candidate submitting a completed test or assignment\n"
            "NEW_APPLICATION - someone applying for a job\n"
            "FORM_RESPONSE - a filled-in application form with labelled answers\n"
            "FOLLOWUP - asking about the status of an existing application\n"
            "QUESTION - a general question about a role or the process\n"
            "ESCALATE - complaint, legal, urgent or anything needing a human\n"
            "SPAM - marketing, scams or irrelevant mail\n\n"
            'Return JSON: {"intent": "...", "confidence": 0.0-1.0, '
            '"name": "sender name or null", "role": "role mentioned or null"}'
        )
        data = self._complete_json(prompt, "You classify recruiting emails. " + _JSON_ONLY)
        if data is None:
            return None

        intent = str(data.get("intent") or "").strip().upper()
        if intent not in INTENTS:
            logger.warning("AI returned unknown intent %r", intent)
            return None
        return IntentResult(
            intent=intent,
            confidence=_to_float(data.get("confidence")),
            name=data.get("name") or None,
            role=data.get("role") or None,
        )

    def extract_candidate_info(self, body: str, subject: str = "") -> dict | None:
        prompt = (
            "Extract the applicant's details from this job application email.\n\n"
            f"Subject: {subject}\nBody:\n{body}\n\n"
            'Return JSON: {"name": ..., "email": ..., "phone": ..., "role": ..., '
            '"portfolioLinks": [...]}'
        )
        data = self._complete_json(prompt, "You extract structured data. " + _JSON_ONLY)
        if data is None:
            return None
        links = data.get("portfolioLinks") or []
        if isinstance(links, str):
            links = [links]
        data["portfolioLinks"] = [link for link in links if link]
        if data["portfolioLinks"] and not data.get("portfolioUrl"):
            data["portfolioUrl"] = data["portfolioLinks"][0]
        return data

    def extract_form_response(self, body: str, sender_email: str = "") -> dict | None:
        prompt = (
            "Extract the answers from this application form reply.\n\n"
            f"{body}\n\n"
            "Return JSON with exactly these keys: name, email, phone, city, role, degree, "
            "startDate, tenure, salaryExpected, salaryLast, experience, hindiProficient, "
            "healthNotes, previousApplication, testAvailability, willingToRelocate, "
            "portfolioUrl, cvUrl."
        )
        data = self._complete_json(prompt, "You extract form answers. " + _JSON_ONLY)
        if data is None:
            return None
        if not data.get("email") and sender_email:
            data["email"] = sender_email
        return data

    def detect_spam(self, body: str, subject: str = "") -> SpamVerdict:
        prompt = (
            "Is this email to a hiring inbox spam?\n\n"
            f"Subject: {subject}\nBody:\n{body}\n\n"
            'Return JSON: {"isSpam": true|false, "confidence": 0.0-1.0, "reasons": [...]}'
        )
        data = self._complete_json(prompt, "You detect spam. " + _JSON_ONLY)
        if data is None:
            return SpamVerdict(is_spam=False)
        return SpamVerdict(
            is_spam=bool(data.get("isSpam")),
            confidence=_to_float(data.get("confidence")),
            reasons=list(data.get("reasons") or []),
        )

    # ── Generation ─────────────────────────────────────────────────────────────

    def generate_rejection(self, name: str, role: str, reason: str = "application review") -> str | None:
        prompt = (
            f"Write a short, kind rejection email to {name or 'the candidate'} "
            f"who applied for the {role or 'open'} role. Context: {reason}.\n"
            "Thank them, do not give false hope, wish them well. "
            "Plain text only, no subject line, no placeholders."
        )
        return self._complete(prompt, "You write warm, professional HR emails.")

    def suggest_reply(self, question: str, context: dict | None = None) -> str | None:
        """
        Draft a reply to a candidate question. Text containing unresolved
        placeholders is discarded so a human answers instead.
        """
        context = context or {}
        prompt = (
            "Draft a brief reply to this candidate question.\n\n"
            f"Question:\n{question}\n\n"
            f"Candidate context: {json.dumps(context, default=str)}\n\n"
            "Only state facts present in the context. Never invent dates or times. "
            "If you cannot answer, reply with exactly: ESCALATE"
        )
        text = self._complete(prompt, "You answer candidate questions for a hiring team.")
        if text is None or text.strip().upper() == "ESCALATE":
            return None
        if _PLACEHOLDER_RE.search(text):
            logger.warning("Suggested reply discarded: unresolved placeholder")
            return None
        return text

    def generate_interview_questions(self, role: str, portfolio_summary: str = "") -> list[str]:
        prompt = (
            f"Suggest 5 interview questions for a {role or 'design'} candidate.\n"
            f"Portfolio summary: {portfolio_summary or 'not available'}\n\n"
            'Return JSON: {"questions": ["...", ...]}'
        )
        data = self._complete_json(prompt, "You help interviewers prepare. " + _JSON_ONLY)
        questions = (data or {}).get("questions")
        if not isinstance(questions, list) or not questions:
            return list(DEFAULT_INTERVIEW_QUESTIONS)
        return [str(q) for q in questions if q][:5] or list(DEFAULT_INTERVIEW_QUESTIONS)

    # ── Portfolio scoring ──────────────────────────────────────────────────────

    def fetch_portfolio_text(self, url: str) -> str:
        """Best-effort page/PDF text, markup stripped and truncated; '' on failure."""
        try:
            resp = self.session.get(url, timeout=15)
            resp.raise_for_status()
        except http_requests.RequestException as exc:
            logger.warning("Portfolio fetch failed for %s: %s", url, exc)
            return ""

        content_type = (resp.headers.get("Content-Type") or "").lower()
        if "pdf" in content_type or url.lower().split("?")[0].endswith(".pdf"):
            text = self._pdf_text(resp.content)
        else:
            text = strip_markup(resp.text)
        return text[:PORTFOLIO_TEXT_LIMIT]

    @staticmethod
    def _pdf_text(content: bytes) -> str:
        try:
            with pdfplumber.open(io.BytesIO(content)) as pdf:
                pages = pdf.pages[:PDF_MAX_PAGES]
                return " ".join((page.extract_text() or "") for page in pages).strip()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Portfolio PDF extraction failed: %s", exc)
            return ""

    def score_portfolio(self, url: str, role: str = "") -> PortfolioScore:
        """Score a portfolio 0-10. Any failure yields the REVIEW fallback."""
        try:
            content = self.fetch_portfolio_text(url)
            prompt = (
                f"Evaluate this portfolio for a {role or 'design'} position.\n"
                f"URL: {url}\n"
                f"Content:\n{content or '(content could not be fetched; judge from the URL only)'}\n\n"
                'Return JSON: {"score": 0-10, "strengths": [...], "weaknesses": [...], '
                '"recommendation": "PROCEED|REVIEW|REJECT", "summary": "...", '
                '"suggestedQuestions": [...]}'
            )
            data = self._complete_json(prompt, "You are a senior reviewer of creative portfolios. " + _JSON_ONLY)
            if data is None or data.get("score") is None:
                return PortfolioScore.fallback("No usable AI response")

            recommendation = str(data.get("recommendation") or "REVIEW").upper()
            if recommendation not in RECOMMENDATIONS:
                recommendation = "REVIEW"
            return PortfolioScore(
                score=_to_float(data.get("score"), 5.0),
                recommendation=recommendation,
                summary=str(data.get("summary") or ""),
                strengths=list(data.get("strengths") or []),
                weaknesses=list(data.get("weaknesses") or []),
                suggested_questions=list(data.get("suggestedQuestions") or []),
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("Portfolio scoring failed for %s: %s", url, exc, exc_info=True)
            return PortfolioScore.fallback(str(exc))
