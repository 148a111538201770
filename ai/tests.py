"""
ai/tests.py

Covers:
  - LLMProvider.complete   : failure reasons (no key, bad JSON, API error, bad structure)
  - AnthropicProvider      : SDK response handling via an injected client
  - build_providers        : order from AI_PROVIDER_ORDER, unknown names skipped
  - AIRouter.call          : sequential fallback, sandbox short-circuit, exhaustion
  - AIService helpers      : JSON repair, intent validation, placeholder filter,
                             portfolio fetch/score with fallbacks
"""

import json
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import requests as http_requests
from django.test import SimpleTestCase

from ai.providers import (
    AIRouter,
    AIRouterError,
    AnthropicProvider,
    GeminiProvider,
    OpenAICompatibleProvider,
    ProviderResult,
    build_providers,
)
from ai.services import DEFAULT_INTERVIEW_QUESTIONS, AIService, PortfolioScore
from hirepilot.constants import AI_SANDBOX_RESPONSE


# ── Helpers ────────────────────────────────────────────────────────────────────

def _session(body) -> MagicMock:
    session = MagicMock()
    text = body if isinstance(body, str) else json.dumps(body)
    session.post.return_value = MagicMock(text=text)
    return session


def _fake_provider(name, text=None, error=None) -> MagicMock:
    provider = MagicMock()
    provider.complete.return_value = ProviderResult(name, text=text, error=error)
    return provider


def _service(reply=None, side_effect=None, session=None) -> AIService:
    router = MagicMock()
    router.call.return_value = reply
    if side_effect is not None:
        router.call.side_effect = side_effect
    return AIService(router=router, session=session or MagicMock())


# ── Providers ──────────────────────────────────────────────────────────────────

class LLMProviderTests(SimpleTestCase):
    def test_missing_key(self):
        result = GeminiProvider("", "gemini-2.0-flash", session=MagicMock()).complete("p", "s")
        self.assertFalse(result.ok)
        self.assertEqual(result.error, "Gemini API key not configured")

    def test_gemini_success(self):
        session = _session({"candidates": [{"content": {"parts": [{"text": "Hello"}]}}]})
        provider = GeminiProvider("key", "gemini-2.0-flash", session=session)
        result = provider.complete("prompt", "system")

        self.assertEqual(result.text, "Hello")
        url = session.post.call_args.args[0]
        self.assertIn("gemini-2.0-flash:generateContent?key=key", url)
        sent = session.post.call_args.kwargs["json"]
        self.assertEqual(sent["contents"][0]["parts"][0]["text"], "system\n\nprompt")

    def test_unparseable_body(self):
        provider = GeminiProvider("key", "m", session=_session("<html>Bad Gateway</html>"))
        result = provider.complete("p", "s")
        self.assertTrue(result.error.startswith("Failed to parse Gemini response: <html>"))

    def test_api_error_message(self):
        provider = OpenAICompatibleProvider(
            "Groq", "https://groq", "key", "llama",
            session=_session({"error": {"message": "rate limited"}}),
        )
        self.assertEqual(provider.complete("p", "s").error, "Groq API error: rate limited")

    def test_invalid_structure(self):
        provider = OpenAICompatibleProvider("Groq", "https://groq", "key", "llama", session=_session({"choices": []}))
        self.assertTrue(provider.complete("p", "s").error.startswith("Invalid response structure from Groq"))

    def test_request_exception(self):
        session = MagicMock()
        session.post.side_effect = http_requests.ConnectionError("down")
        result = GeminiProvider("key", "m", session=session).complete("p", "s")
        self.assertIn("request failed", result.error)

    def test_openai_compatible_sends_role_tagged_messages(self):
        session = _session({"choices": [{"message": {"content": "Hi"}}]})
        provider = OpenAICompatibleProvider(
            "OpenRouter", "https://openrouter", "key", "model",
            extra_headers={"X-Title": "HirePilot"}, session=session,
        )
        self.assertEqual(provider.complete("question", "be brief").text, "Hi")
        kwargs = session.post.call_args.kwargs
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer key")
        self.assertEqual(kwargs["headers"]["X-Title"], "HirePilot")
        self.assertEqual(
            kwargs["json"]["messages"],
            [{"role": "system", "content": "be brief"}, {"role": "user", "content": "question"}],
        )


class AnthropicProviderTests(SimpleTestCase):
    def test_concatenates_text_blocks(self):
        client = MagicMock()
        client.messages.create.return_value = SimpleNamespace(content=[
            SimpleNamespace(type="text", text="Hello "),
            SimpleNamespace(type="tool_use", text="ignored"),
            SimpleNamespace(type="text", text="there"),
        ])
        result = AnthropicProvider("key", "claude", client=client).complete("p", "s")
        self.assertEqual(result.text, "Hello there")
        self.assertEqual(client.messages.create.call_args.kwargs["system"], "s")

    def test_empty_response_is_a_failure(self):
        client = MagicMock()
        client.messages.create.return_value = SimpleNamespace(content=[])
        result = AnthropicProvider("key", "claude", client=client).complete("p", "s")
        self.assertEqual(result.error, "Invalid response structure from Anthropic")

    def test_missing_key(self):
        self.assertEqual(
            AnthropicProvider("", "claude").complete("p", "s").error,
            "Anthropic API key not configured",
        )


class BuildProvidersTests(SimpleTestCase):
    def _source(self, order):
        return SimpleNamespace(
            AI_PROVIDER_ORDER=order,
            AI_REQUEST_TIMEOUT=30, AI_TEMPERATURE=0.3, AI_MAX_TOKENS=512,
            GEMINI_API_KEY="g", GEMINI_MODEL="gm",
            GITHUB_MODELS_TOKEN="gh", GITHUB_MODELS_MODEL="ghm",
            GROQ_API_KEY="q", GROQ_MODEL="qm",
            OPENROUTER_API_KEY="o", OPENROUTER_MODEL="om",
            ANTHROPIC_API_KEY="a", ANTHROPIC_MODEL="am",
            COMPANY_NAME="HirePilot",
        )

    def test_order_is_preserved(self):
        providers = build_providers(self._source(["groq", "Gemini", "openrouter", "github"]))
        self.assertEqual([p.name for p in providers], ["Groq", "Gemini", "OpenRouter", "GitHub Models"])
        self.assertEqual(providers[0].max_tokens, 512)

    def test_unknown_provider_is_skipped(self):
        with self.assertLogs("ai.providers", level="WARNING"):
            providers = build_providers(self._source(["mystery", "anthropic"]))
        self.assertEqual([p.name for p in providers], ["Anthropic"])


# ── Router ─────────────────────────────────────────────────────────────────────

class AIRouterTests(SimpleTestCase):
    def test_first_success_wins_and_later_providers_are_not_called(self):
        first = _fake_provider("A", error="A API error: boom")
        second = _fake_provider("B", text="answer")
        third = _fake_provider("C", text="unused")

        result = AIRouter([first, second, third], sandbox=False).call("prompt", "system")

        self.assertEqual(result, "answer")
        first.complete.assert_called_once_with("prompt", "system")
        third.complete.assert_not_called()

    def test_all_fail_raises_last_reason(self):
        router = AIRouter([
            _fake_provider("A", error="A API key not configured"),
            _fake_provider("B", error="B API error: quota"),
        ], sandbox=False)
        with self.assertRaises(AIRouterError) as ctx:
            router.call("prompt")
        self.assertEqual(str(ctx.exception), "B API error: quota")

    def test_no_providers(self):
        with self.assertRaises(AIRouterError) as ctx:
            AIRouter([], sandbox=False).call("prompt")
        self.assertEqual(str(ctx.exception), "No AI providers configured")

    def test_sandbox_skips_providers(self):
        provider = _fake_provider("A", text="real")
        self.assertEqual(AIRouter([provider], sandbox=True).call("prompt"), AI_SANDBOX_RESPONSE)
        provider.complete.assert_not_called()


# ── AIService ──────────────────────────────────────────────────────────────────

class ClassifyIntentTests(SimpleTestCase):
    def test_fenced_near_json_is_repaired(self):
        service = _service('```json\n{"intent": "question", "confidence": 0.9, "name": "Ana",}\n```')
        result = service.classify_intent("Hi", "When is the interview?")
        self.assertEqual(result.intent, "QUESTION")
        self.assertEqual(result.confidence, 0.9)
        self.assertEqual(result.name, "Ana")

    def test_unknown_intent_is_none(self):
        self.assertIsNone(_service('{"intent": "PARTY", "confidence": 1}').classify_intent("s", "b"))

    def test_router_exhaustion_is_none(self):
        service = _service(side_effect=AIRouterError("all down"))
        with self.assertLogs("ai.services", level="ERROR"):
            self.assertIsNone(service.classify_intent("s", "b"))

    def test_sandbox_response_is_none(self):
        self.assertIsNone(_service(AI_SANDBOX_RESPONSE).classify_intent("s", "b"))

    def test_attachment_flag_in_prompt(self):
        service = _service('{"intent": "TEST_SUBMISSION"}')
        service.classify_intent("Test", "attached", has_attachments=True)
        self.assertIn("Has attachments: yes", service.router.call.call_args.args[0])


class ExtractionTests(SimpleTestCase):
    def test_candidate_info_normalises_links(self):
        service = _service('{"name": "Ana", "portfolioLinks": "https://behance.net/ana"}')
        data = service.extract_candidate_info("body")
        self.assertEqual(data["portfolioLinks"], ["https://behance.net/ana"])
        self.assertEqual(data["portfolioUrl"], "https://behance.net/ana")

    def test_form_response_falls_back_to_sender(self):
        data = _service('{"name": "Ana", "email": null}').extract_form_response("body", "ana@example.com")
        self.assertEqual(data["email"], "ana@example.com")

    def test_spam_fails_open(self):
        verdict = _service(side_effect=AIRouterError("down")).detect_spam("body")
        self.assertFalse(verdict.is_spam)
        self.assertEqual(verdict.confidence, 0.0)

    def test_spam_verdict(self):
        verdict = _service('{"isSpam": true, "confidence": 0.95, "reasons": ["crypto"]}').detect_spam("b")
        self.assertTrue(verdict.is_spam)
        self.assertEqual(verdict.reasons, ["crypto"])


class GenerationTests(SimpleTestCase):
    def test_suggest_reply_discards_placeholders(self):
        self.assertIsNone(_service("Your interview is on [date].").suggest_reply("When?"))
        self.assertIsNone(_service("We will confirm the proposed date soon.").suggest_reply("When?"))

    def test_suggest_reply_escalate(self):
        self.assertIsNone(_service("ESCALATE").suggest_reply("Can I negotiate?"))

    def test_suggest_reply_text(self):
        reply = _service("The test takes about three hours.").suggest_reply("How long is the test?")
        self.assertEqual(reply, "The test takes about three hours.")

    def test_generate_rejection(self):
        self.assertEqual(_service("  Thank you, Ana.  ").generate_rejection("Ana", "Designer"), "Thank you, Ana.")

    def test_interview_questions_fallback(self):
        questions = _service(side_effect=AIRouterError("down")).generate_interview_questions("Designer")
        self.assertEqual(questions, DEFAULT_INTERVIEW_QUESTIONS)

    def test_interview_questions_capped_at_five(self):
        payload = json.dumps({"questions": [f"Q{i}" for i in range(8)]})
        self.assertEqual(_service(payload).generate_interview_questions("Designer"), ["Q0", "Q1", "Q2", "Q3", "Q4"])


class PortfolioTests(SimpleTestCase):
    def test_fetch_html_strips_markup(self):
        session = MagicMock()
        session.get.return_value = MagicMock(headers={"Content-Type": "text/html"}, text="<h1>Ana</h1><p>Work</p>")
        text = AIService(router=MagicMock(), session=session).fetch_portfolio_text("https://ana.design")
        self.assertEqual(text, "Ana Work")
        session.get.assert_called_once_with("https://ana.design", timeout=15)

    def test_fetch_pdf_uses_pdfplumber(self):
        session = MagicMock()
        session.get.return_value = MagicMock(headers={"Content-Type": "application/pdf"}, content=b"%PDF")
        pdf = MagicMock()
        pdf.__enter__.return_value = pdf
        pdf.pages = [MagicMock(**{"extract_text.return_value": "Page one"}),
                     MagicMock(**{"extract_text.return_value": None})]

        with patch("ai.services.pdfplumber.open", return_value=pdf):
            text = AIService(router=MagicMock(), session=session).fetch_portfolio_text("https://x/p.pdf")
        self.assertEqual(text, "Page one")

    def test_fetch_failure_is_empty(self):
        session = MagicMock()
        session.get.side_effect = http_requests.Timeout("slow")
        self.assertEqual(AIService(router=MagicMock(), session=session).fetch_portfolio_text("https://x"), "")

    def test_score_success(self):
        session = MagicMock()
        session.get.return_value = MagicMock(headers={}, text="portfolio")
        reply = json.dumps({
            "score": "8.5", "recommendation": "maybe", "summary": "Strong work",
            "strengths": ["layout"], "suggestedQuestions": ["Why?"],
        })
        score = _service(reply, session=session).score_portfolio("https://ana.design", "Designer")
        self.assertEqual(score.score, 8.5)
        self.assertEqual(score.recommendation, "REVIEW")
        self.assertEqual(score.suggested_questions, ["Why?"])
        self.assertIn("Strengths: layout", score.feedback_text())

    def test_score_falls_back_when_ai_unavailable(self):
        session = MagicMock()
        session.get.return_value = MagicMock(headers={}, text="")
        score = _service(side_effect=AIRouterError("down"), session=session).score_portfolio("https://x")
        self.assertEqual(score, PortfolioScore.fallback("No usable AI response"))

    def test_score_never_raises(self):
        service = _service('{"score": 7}')
        with patch.object(service, "fetch_portfolio_text", side_effect=RuntimeError("boom")):
            score = service.score_portfolio("https://x")
        self.assertEqual(score.score, 5.0)
        self.assertEqual(score.error, "boom")
