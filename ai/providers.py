"""
ai/providers.py

Multi-provider LLM fallback router.

Providers are tried strictly in order; each attempt yields a ProviderResult
(success text or failure reason) instead of raising. AIRouter.call raises
AIRouterError only once every provider has failed, carrying the last
provider's reason.

  Gemini        concatenated text block   candidates[0].content.parts[0].text
  GitHub Models role-tagged messages      choices[0].message.content
  Groq          role-tagged messages      choices[0].message.content
  OpenRouter    role-tagged messages      choices[0].message.content
  Anthropic     (opt-in) anthropic SDK    content[0].text
"""

import json
import logging
from dataclasses import dataclass

import anthropic
import requests as http_requests
from django.conf import settings

from hirepilot.constants import AI_SANDBOX_RESPONSE

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_INSTRUCTION = (
    "You are an assistant for a hiring team. Be concise and professional. "
    "When asked for JSON, respond with JSON only."
)

# Raw body characters kept in a failure reason.
_BODY_EXCERPT_CHARS = 500


class AIRouterError(Exception):
    """Raised when every configured provider failed."""


@dataclass(frozen=True)
class ProviderResult:
    provider: str
    text: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return bool(self.text)


def _dig(data, path: tuple):
    """Follow a key/index path through nested JSON; None when any step is missing."""
    current = data
    for step in path:
        try:
            current = current[step]
        except (KeyError, IndexError, TypeError):
            return None
    return current


# ─────────────────────────────────────────────────────────────────────────────
# Providers
# ─────────────────────────────────────────────────────────────────────────────

class LLMProvider:
    """
    Base HTTP JSON provider. Subclasses define the request shape and the
    path to the completion text.
    """

    name = "provider"
    response_path: tuple = ()

    def __init__(self, api_key: str, model: str, *, timeout: int = 30,
                 temperature: float = 0.3, max_tokens: int = 1024, session=None):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.session = session or http_requests

    def build_request(self, prompt: str, system: str) -> tuple[str, dict, dict]:
        raise NotImplementedError

    def complete(self, prompt: str, system: str) -> ProviderResult:
        if not self.api_key:
            return ProviderResult(self.name, error=f"{self.name} API key not configured")

        url, headers, payload = self.build_request(prompt, system)
        try:
            resp = self.session.post(url, json=payload, headers=headers, timeout=self.timeout)
        except http_requests.RequestException as exc:
            return ProviderResult(self.name, error=f"{self.name} request failed: {exc}")

        # Status codes are not raised on; the body decides.
        raw = resp.text or ""
        try:
            data = json.loads(raw)
        except ValueError:
            return ProviderResult(
                self.name,
                error=f"Failed to parse {self.name} response: {raw[:_BODY_EXCERPT_CHARS]}",
            )

        if not isinstance(data, dict):
            return ProviderResult(
                self.name,
                error=f"Unexpected {self.name} response: {raw[:_BODY_EXCERPT_CHARS]}",
            )

        if data.get("error") is not None:
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else error
            return ProviderResult(self.name, error=f"{self.name} API error: {message or error}")

        text = _dig(data, self.response_path)
        if not isinstance(text, str) or not text.strip():
            return ProviderResult(
                self.name,
                error=f"Invalid response structure from {self.name}: {raw[:_BODY_EXCERPT_CHARS]}",
            )
        return ProviderResult(self.name, text=text)


class GeminiProvider(LLMProvider):
    name = "Gemini"
    response_path = ("candidates", 0, "content", "parts", 0, "text")
    base_url = "https://generativelanguage.googleapis.com/v1beta/models"

    def build_request(self, prompt, system):
        url = f"{self.base_url}/{self.model}:generateContent?key={self.api_key}"
        payload = {
            "contents": [{"parts": [{"text": f"{system}\n\n{prompt}"}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_tokens,
            },
        }
        return url, {"Content-Type": "application/json"}, payload


class OpenAICompatibleProvider(LLMProvider):
    """Chat-completions style endpoint (GitHub Models, Groq, OpenRouter)."""

    response_path = ("choices", 0, "message", "content")

    def __init__(self, name: str, url: str, api_key: str, model: str, *,
                 extra_headers: dict | None = None, **kwargs):
        super().__init__(api_key, model, **kwargs)
        self.name = name
        self.url = url
        self.extra_headers = extra_headers or {}

    def build_request(self, prompt, system):
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            **self.extra_headers,
        }
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        return self.url, headers, payload


class AnthropicProvider:
    """
    Claude via the anthropic SDK. Opt-in: add "anthropic" to AI_PROVIDER_ORDER.
    Accepts an optional ``client`` via constructor injection for testability.
    """

    name = "Anthropic"

    def __init__(self, api_key: str, model: str, *, max_tokens: int = 1024,
                 temperature: float = 0.3, client: anthropic.Anthropic | None = None, **_kwargs):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = client

    @property
    def client(self) -> anthropic.Anthropic:
        if self._client is None:
            self._client = anthropic.Anthropic(api_key=self.api_key)
        return self._client

    def complete(self, prompt: str, system: str) -> ProviderResult:
        if not self.api_key and self._client is None:
            return ProviderResult(self.name, error=f"{self.name} API key not configured")
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as exc:
            return ProviderResult(self.name, error=f"{self.name} API error: {exc}")

        text = "".join(
            block.text for block in (response.content or []) if getattr(block, "type", "") == "text"
        )
        if not text.strip():
            return ProviderResult(self.name, error=f"Invalid response structure from {self.name}")
        return ProviderResult(self.name, text=text)


def build_providers(source=None) -> list:
    """Instantiate the provider chain in AI_PROVIDER_ORDER."""
    source = source or settings
    common = {
        "timeout": source.AI_REQUEST_TIMEOUT,
        "temperature": source.AI_TEMPERATURE,
        "max_tokens": source.AI_MAX_TOKENS,
    }
    factories = {
        "gemini": lambda: GeminiProvider(source.GEMINI_API_KEY, source.GEMINI_MODEL, **common),
        "github": lambda: OpenAICompatibleProvider(
            "GitHub Models",
            "https://models.github.ai/inference/chat/completions",
            source.GITHUB_MODELS_TOKEN,
            source.GITHUB_MODELS_MODEL,
            **common,
        ),
        "groq": lambda: OpenAICompatibleProvider(
            "Groq",
            "https://api.groq.com/openai/v1/chat/completions",
            source.GROQ_API_KEY,
            source.GROQ_MODEL,
            **common,
        ),
        "openrouter": lambda: OpenAICompatibleProvider(
            "OpenRouter",
            "https://openrouter.ai/api/v1/chat/completions",
            source.OPENROUTER_API_KEY,
            source.OPENROUTER_MODEL,
            extra_headers={"X-Title": source.COMPANY_NAME},
            **common,
        ),
        "anthropic": lambda: AnthropicProvider(source.ANTHROPIC_API_KEY, source.ANTHROPIC_MODEL, **common),
    }

    providers = []
    for key in source.AI_PROVIDER_ORDER:
        factory = factories.get(key.strip().lower())
        if factory is None:
            logger.warning("Unknown AI provider '%s' in AI_PROVIDER_ORDER — ignored", key)
            continue
        providers.append(factory())
    return providers


# ─────────────────────────────────────────────────────────────────────────────
# Router
# ─────────────────────────────────────────────────────────────────────────────

class AIRouter:
    """Ordered fallback chain over LLM providers. Never queries providers in parallel."""

    def __init__(self, providers: list | None = None, sandbox: bool | None = None):
        self._providers = providers
        self.sandbox = settings.SANDBOX_MODE if sandbox is None else sandbox

    @property
    def providers(self) -> list:
        if self._providers is None:
            self._providers = build_providers()
        return self._providers

    def call(self, prompt: str, system_instruction: str = DEFAULT_SYSTEM_INSTRUCTION) -> str:
        if self.sandbox:
            logger.info("Sandbox mode: returning canned AI response")
            return AI_SANDBOX_RESPONSE

        last: ProviderResult | None = None
        for provider in self.providers:
            result = provider.complete(prompt, system_instruction)
            if result.ok:
                logger.info("AI completion served by %s", result.provider)
                return result.text
            logger.warning("AI provider %s failed: %s", result.provider, result.error)
            last = result

        reason = last.error if last else "No AI providers configured"
        logger.error("All AI providers failed: %s", reason)
        raise AIRouterError(reason)
