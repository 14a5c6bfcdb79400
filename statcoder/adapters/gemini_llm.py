"""
adapters/gemini_llm.py
──────────────────────────────────────────────────────────────────────────────
Implements LLMPort using the Google Gemini generateContent REST API.

Key behaviour:
  - Sends systemInstruction + contents in the Gemini REST format
  - Requests JSON output via responseMimeType: application/json plus a
    responseSchema that pins code / label / confidence (High|Medium|Low)
  - Adds a thinkingConfig budget for 2.5-series models
  - Retries on 429 / 500 / 503 and transport errors with exponential back-off
  - Returns the raw JSON string (caller parses)

Required env vars:
  GEMINI_API_KEY  : Google AI Studio key
  GEMINI_MODEL    : default: gemini-2.5-flash
"""
from __future__ import annotations

import logging
import time

import requests

from statcoder.config.settings import Settings
from statcoder.domain.exceptions import AuthenticationError, LLMError

logger = logging.getLogger(__name__)

_GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

# Structured-output schema for the coding prompt.  The search / suggest
# prompts ask for other shapes, so the schema is only sent when requested.
CODING_RESPONSE_SCHEMA: dict = {
    "type": "OBJECT",
    "properties": {
        "code": {
            "type": "STRING",
            "description": "The classification code (e.g. 2512 for ISCO or 6201 for ISIC).",
        },
        "label": {
            "type": "STRING",
            "description": "The official label for the code.",
        },
        "confidence": {
            "type": "STRING",
            "enum": ["High", "Medium", "Low"],
            "description": "Confidence level of the classification.",
        },
        "reasoning": {
            "type": "STRING",
            "description": "Brief explanation of why this code was chosen.",
        },
    },
    "required": ["code", "label", "confidence"],
}


class GeminiLLMAdapter:
    """Google Gemini adapter.

    Injected into LLMClassifier via services/container.py when
    ``LLM_PROVIDER=gemini`` (the default).

    Args:
        settings:        Shared application settings.
        response_schema: Optional Gemini responseSchema enforced on output.
    """

    def __init__(self, settings: Settings, response_schema: dict | None = None) -> None:
        if not settings.gemini_api_key:
            raise AuthenticationError(
                "GEMINI_API_KEY is not set. "
                "Add it to your .env file or environment."
            )
        self._settings = settings
        self._schema = response_schema
        self._url = _GEMINI_URL.format(model=settings.gemini_model)
        self._proxies = (
            {"https": f"http://{settings.https_proxy}"}
            if settings.https_proxy
            else {}
        )
        logger.debug("GeminiLLMAdapter ready | model=%s", settings.gemini_model)

    # ── LLMPort implementation ─────────────────────────────────────────────

    @property
    def model_name(self) -> str:
        return self._settings.gemini_model

    def generate_json(
        self,
        system_prompt: str,
        user_message: str,
    ) -> str | None:
        """Send a prompt and return the raw JSON response string.

        Args:
            system_prompt: System-level instruction for Gemini.
            user_message:  User-turn message content.

        Returns:
            Raw JSON string from the model, or None if the model answered
            with no content.

        Raises:
            AuthenticationError: On 401 / 403.
            LLMError: On non-retryable HTTP errors or after all retries.
        """
        payload = self._build_payload(system_prompt, user_message)
        return self._post_with_retry(payload)

    # ── Private helpers ────────────────────────────────────────────────────

    def _build_payload(self, system_prompt: str, user_message: str) -> dict:
        generation_config: dict = {
            "temperature": 0.1,
            "responseMimeType": "application/json",
        }
        if self._schema is not None:
            generation_config["responseSchema"] = self._schema
        if "2.5" in self.model_name and self._settings.gemini_thinking_budget > 0:
            generation_config["thinkingConfig"] = {
                "thinkingBudget": self._settings.gemini_thinking_budget,
            }
        return {
            "systemInstruction": {
                "parts": [{"text": system_prompt}],
            },
            "contents": [
                {
                    "role": "user",
                    "parts": [{"text": user_message}],
                }
            ],
            "generationConfig": generation_config,
        }

    def _post_with_retry(self, payload: dict) -> str | None:
        """POST to Gemini with back-off on 429 / 5xx."""
        retries = max(1, self._settings.llm_retries)
        delay = 2.0
        headers = {
            "x-goog-api-key": self._settings.gemini_api_key,
            "Content-Type": "application/json",
        }

        for attempt in range(1, retries + 1):
            try:
                resp = requests.post(
                    self._url,
                    headers=headers,
                    json=payload,
                    proxies=self._proxies,
                    timeout=self._settings.llm_timeout,
                )
            except requests.RequestException as exc:
                logger.warning("Gemini HTTP error (attempt %d/%d): %s", attempt, retries, exc)
                if attempt == retries:
                    raise LLMError(f"Gemini request failed: {exc}") from exc
                time.sleep(delay)
                delay *= 2
                continue

            if resp.status_code in (401, 403):
                raise AuthenticationError(
                    f"Gemini returned {resp.status_code}. Check that GEMINI_API_KEY is valid."
                )

            if resp.status_code in (429, 500, 503):
                logger.warning(
                    "Gemini %d (attempt %d/%d), back-off %.1fs",
                    resp.status_code, attempt, retries, delay,
                )
                if attempt < retries:
                    time.sleep(delay)
                    delay *= 2
                continue

            if not resp.ok:
                logger.error("Gemini HTTP %d: %s", resp.status_code, resp.text[:300])
                raise LLMError(f"Gemini HTTP {resp.status_code}: {resp.text[:300]}")

            return self._extract_text(resp.json())

        raise LLMError(f"Gemini failed after {retries} attempts")

    def _extract_text(self, response_json: dict) -> str | None:
        """Pull the text content out of the generateContent response."""
        try:
            candidates = response_json.get("candidates", [])
            if not candidates:
                logger.warning("Gemini response contained no candidates")
                return None
            parts = candidates[0].get("content", {}).get("parts", [])
            # Thinking models may emit thought parts before the answer
            texts = [p.get("text", "") for p in parts if not p.get("thought")]
            text = "".join(texts).strip()
            return text if text else None
        except (AttributeError, KeyError, IndexError, TypeError) as exc:
            logger.error("Failed to parse Gemini response structure: %s", exc)
            return None
