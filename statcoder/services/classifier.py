"""
services/classifier.py
──────────────────────────────────────────────────────────────────────────────
LLM-backed implementation of ClassifierPort.

Responsibilities:
  1. Build the coding prompt (few-shot examples included) via config/prompts.py.
  2. Call the LLMPort and parse its JSON answer into a ClassifierResponse.
  3. Turn every failure (transport, auth, empty or malformed output) into a
     ClassifierError so the orchestrator can pin it on exactly one row.

Also hosts the two manual-coding helpers (code search and autocomplete).
Those are advisory: failures are logged and answered with an empty list.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from statcoder.config.prompts import (
    build_coding_prompts,
    build_search_prompts,
    build_suggest_prompts,
)
from statcoder.config.settings import Settings
from statcoder.domain.exceptions import ClassifierError
from statcoder.domain.models import (
    ClassificationRequest,
    ClassifierResponse,
    CodeSuggestion,
    ModuleType,
    SearchResult,
)
from statcoder.ports.llm_port import LLMPort

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class LLMClassifier:
    """Single-record classifier over a JSON-generating LLM.

    Args:
        llm:        Any object satisfying LLMPort, used for coding.
        settings:   Shared application settings.
        assist_llm: LLM for search / suggest; defaults to ``llm``.  Lets a
                    schema-constrained coding adapter sit beside a free-form one.
    """

    def __init__(
        self,
        llm: LLMPort,
        settings: Settings,
        assist_llm: LLMPort | None = None,
    ) -> None:
        self._llm = llm
        self._assist_llm = assist_llm or llm
        self._settings = settings
        logger.debug("LLMClassifier init | model=%s", llm.model_name)

    @property
    def model_name(self) -> str:
        return self._llm.model_name

    # ── ClassifierPort implementation ──────────────────────────────────────

    def classify(self, request: ClassificationRequest) -> ClassifierResponse:
        """Classify one record into the request's module.

        Raises:
            ClassifierError: On any LLM failure or unparseable response.
        """
        if request.module == ModuleType.DUAL:
            raise ClassifierError(
                "DUAL requests must be split into ISCO-08 and ISIC Rev. 4 calls"
            )
        system, user = build_coding_prompts(
            request.module,
            request.primary_text,
            request.secondary_text,
            request.few_shot_examples,
        )
        logger.debug(
            "classify | module=%s text=%r examples=%d",
            request.module.value,
            request.primary_text[:80],
            len(request.few_shot_examples),
        )

        try:
            raw = self._llm.generate_json(system, user)
        except Exception as exc:
            raise ClassifierError(f"LLM call failed: {exc}") from exc
        if not raw:
            raise ClassifierError(f"Empty response from {self._llm.model_name}")

        return self._parse_response(raw)

    # ── Manual-coding helpers ──────────────────────────────────────────────

    def search(self, query: str, module: ModuleType, limit: int = 5) -> list[SearchResult]:
        """Ask the LLM for codes related to ``query`` (empty list on failure)."""
        items = self._ask_for_list(*build_search_prompts(query, module, limit), key="results")
        return _validate_items(items[:limit], SearchResult)

    def suggest(self, query: str, module: ModuleType) -> list[CodeSuggestion]:
        """Autocomplete-style code suggestions (empty list on failure)."""
        items = self._ask_for_list(*build_suggest_prompts(query, module), key="suggestions")
        return _validate_items(items, CodeSuggestion)

    # ── Private helpers ────────────────────────────────────────────────────

    def _parse_response(self, raw: str) -> ClassifierResponse:
        """Parse the LLM JSON response into a ClassifierResponse.

        Tolerates markdown fences and a single-element array wrapper.
        """
        try:
            parsed = json.loads(strip_fences(raw))
        except (json.JSONDecodeError, TypeError) as exc:
            logger.error("LLMClassifier: failed to parse JSON: %.200s", raw)
            raise ClassifierError(f"Unparseable classifier output: {exc}") from exc

        if isinstance(parsed, list) and parsed and isinstance(parsed[0], dict):
            parsed = parsed[0]
        if not isinstance(parsed, dict):
            raise ClassifierError(
                f"Unexpected classifier output type {type(parsed).__name__}"
            )

        try:
            return ClassifierResponse.model_validate(parsed)
        except PydanticValidationError as exc:
            logger.error("LLMClassifier: malformed result %.200s", raw)
            raise ClassifierError(f"Malformed classifier output: {exc}") from exc

    def _ask_for_list(self, system: str, user: str, key: str) -> list[Any]:
        try:
            raw = self._assist_llm.generate_json(system, user)
            if not raw:
                return []
            parsed = json.loads(strip_fences(raw))
        except Exception as exc:
            logger.error("LLM %s request failed: %s", key, exc)
            return []
        if isinstance(parsed, dict):
            value = parsed.get(key, [])
            return value if isinstance(value, list) else []
        return parsed if isinstance(parsed, list) else []


def strip_fences(raw: str) -> str:
    """Remove ```json … ``` fences some local models wrap around JSON."""
    return _FENCE_RE.sub("", raw.strip()).strip()


def _validate_items(items: list[Any], model: type) -> list:
    results = []
    for item in items:
        try:
            results.append(model.model_validate(item))
        except Exception as exc:
            logger.warning("Skipping malformed item %s: %s", item, exc)
    return results
