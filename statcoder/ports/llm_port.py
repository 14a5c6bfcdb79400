"""
ports/llm_port.py
──────────────────────────────────────────────────────────────────────────────
Abstract interface for JSON-generating LLM providers.

Current implementations:
  GeminiLLMAdapter            (Google Gemini API)
  OpenAICompatibleLLMAdapter  (OpenAI, DeepSeek, Ollama / LM Studio)

The LLMClassifier (services/classifier.py) turns this raw text interface into
the structured ClassifierPort contract.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class LLMPort(Protocol):
    """Contract for a JSON-generating LLM provider."""

    @property
    def model_name(self) -> str:
        """Identifier of the underlying LLM."""
        ...

    def generate_json(
        self,
        system_prompt: str,
        user_message: str,
    ) -> str | None:
        """Send a prompt to the LLM and return its JSON response as a string.

        Blocking call; async callers run it in a worker thread.

        Args:
            system_prompt: System-level instruction.
            user_message:  User-turn content.

        Returns:
            Raw JSON string, or None if the model returned no content.

        Raises:
            LLMError: On unrecoverable API failure.
            AuthenticationError: When the provider rejects the credentials.
        """
        ...
