"""
adapters/openai_llm.py
──────────────────────────────────────────────────────────────────────────────
Implements LLMPort for any OpenAI-compatible Chat Completions endpoint.

One adapter, three providers:
  openai    → https://api.openai.com/v1/chat/completions   (OPENAI_API_KEY)
  deepseek  → https://api.deepseek.com/chat/completions     (DEEPSEEK_API_KEY)
  local     → Ollama / LM Studio, LOCAL_LLM_URL            (no key needed)
LLM_BASE_URL overrides the URL for any of them.

Key behaviour:
  - Uses /chat/completions via raw requests (no openai SDK dependency)
  - JSON mode (response_format={"type": "json_object"}) for OpenAI only;
    other servers get the instruction in the prompt and the caller strips
    any markdown fences
  - Retries on 429 / 500 / 503 and transport errors with exponential back-off
  - Returns the raw JSON string (caller parses)
"""
from __future__ import annotations

import logging
import time

import requests

from statcoder.config.settings import Settings
from statcoder.domain.exceptions import AuthenticationError, ConfigurationError, LLMError

logger = logging.getLogger(__name__)

_OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
_DEEPSEEK_CHAT_URL = "https://api.deepseek.com/chat/completions"


class OpenAICompatibleLLMAdapter:
    """OpenAI-style chat completions adapter.

    Injected into LLMClassifier via services/container.py when
    ``LLM_PROVIDER`` is ``openai``, ``deepseek`` or ``local``.

    Args:
        settings: Shared application settings.
        provider: Which provider defaults (URL, key, model) to use.
    """

    def __init__(self, settings: Settings, provider: str = "openai") -> None:
        self._settings = settings
        self._provider = provider.lower()
        url, api_key, model = self._resolve_provider(settings)
        if self._provider != "local" and not api_key:
            env_name = "OPENAI_API_KEY" if self._provider == "openai" else "DEEPSEEK_API_KEY"
            raise AuthenticationError(
                f"{env_name} is not set. "
                "Add it to your .env file or environment."
            )
        self._url = settings.llm_base_url or url
        self._model = model
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"
        logger.debug(
            "OpenAICompatibleLLMAdapter ready | provider=%s model=%s url=%s",
            self._provider, self._model, self._url,
        )

    def _resolve_provider(self, settings: Settings) -> tuple[str, str, str]:
        if self._provider == "openai":
            return _OPENAI_CHAT_URL, settings.openai_api_key, settings.openai_llm_model
        if self._provider == "deepseek":
            return _DEEPSEEK_CHAT_URL, settings.deepseek_api_key, settings.deepseek_model
        if self._provider == "local":
            # Local servers ignore the key, but forward one if configured
            return settings.local_llm_url, settings.openai_api_key, settings.local_llm_model
        raise ConfigurationError(
            f"Unknown OpenAI-compatible provider '{self._provider}'. "
            "Valid values: 'openai', 'deepseek', 'local'."
        )

    # ── LLMPort implementation ─────────────────────────────────────────────

    @property
    def model_name(self) -> str:
        """Name of the underlying chat model."""
        return self._model

    def generate_json(
        self,
        system_prompt: str,
        user_message: str,
    ) -> str | None:
        """Send a prompt and return the raw JSON response string.

        Args:
            system_prompt: System-level instruction for the model.
            user_message:  User-turn message content.

        Returns:
            Raw JSON string from the model, or ``None`` if the model
            answered with no content.

        Raises:
            AuthenticationError: On 401.
            LLMError: On non-retryable HTTP errors or after all retries.
        """
        payload = self._build_payload(system_prompt, user_message)
        return self._post_with_retry(payload)

    # ── Private helpers ────────────────────────────────────────────────────

    def _build_payload(self, system_prompt: str, user_message: str) -> dict:
        """Build the chat completions request body."""
        payload: dict = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
            "temperature": 0.1,
        }
        if self._provider == "openai":
            payload["response_format"] = {"type": "json_object"}
        return payload

    def _post_with_retry(self, payload: dict) -> str | None:
        """POST to the endpoint with back-off on 429 / 500 / 503."""
        retries = max(1, self._settings.llm_retries)
        delay = 2.0

        for attempt in range(1, retries + 1):
            try:
                resp = requests.post(
                    self._url,
                    headers=self._headers,
                    json=payload,
                    timeout=self._settings.llm_timeout,
                )
            except requests.RequestException as exc:
                logger.warning(
                    "%s LLM request error (attempt %d/%d): %s",
                    self._provider, attempt, retries, exc,
                )
                if attempt == retries:
                    raise LLMError(f"{self._provider} request failed: {exc}") from exc
                time.sleep(delay)
                delay *= 2
                continue

            if resp.status_code == 401:
                raise AuthenticationError(
                    f"{self._provider} returned 401 Unauthorised. Check the API key."
                )

            if resp.status_code in (429, 500, 503):
                logger.warning(
                    "%s LLM %d (attempt %d/%d), back-off %.1fs",
                    self._provider, resp.status_code, attempt, retries, delay,
                )
                if attempt < retries:
                    time.sleep(delay)
                    delay *= 2
                continue

            if not resp.ok:
                logger.error(
                    "%s LLM HTTP %d: %s",
                    self._provider, resp.status_code, resp.text[:300],
                )
                raise LLMError(
                    f"API Error ({self._provider}): {resp.status_code} - {resp.text[:300]}"
                )

            return self._extract_text(resp.json())

        raise LLMError(f"{self._provider} LLM failed after {retries} attempts")

    def _extract_text(self, response_json: dict) -> str | None:
        """Pull the content string out of the chat completions response."""
        try:
            choices = response_json.get("choices", [])
            if not choices:
                logger.warning("%s response contained no choices", self._provider)
                return None
            content = (choices[0].get("message", {}).get("content") or "").strip()
            return content if content else None
        except (AttributeError, KeyError, IndexError, TypeError) as exc:
            logger.error("Failed to parse %s response structure: %s", self._provider, exc)
            return None
