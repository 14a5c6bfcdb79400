"""
services/container.py
──────────────────────────────────────────────────────────────────────────────
Dependency Injection container.

THIS IS THE ONLY FILE THAT NAMES CONCRETE ADAPTER CLASSES.

Provider selection is driven entirely by environment variables; no code
changes are needed to switch between providers:

  LLM_PROVIDER=gemini   (default) → GeminiLLMAdapter
  LLM_PROVIDER=openai             → OpenAICompatibleLLMAdapter (OpenAI)
  LLM_PROVIDER=deepseek           → OpenAICompatibleLLMAdapter (DeepSeek)
  LLM_PROVIDER=local              → OpenAICompatibleLLMAdapter (Ollama / LM Studio)

  REFERENCE_STORE=postgres (default) → PostgresReferenceStore
  REFERENCE_STORE=memory             → InMemoryReferenceStore

The pieces are built lazily and separately so that dictionary maintenance
(import / stats / clear) never needs LLM credentials.

Thread safety:
  @lru_cache(maxsize=1) makes each getter return the same instance across
  calls.  The FuzzyIndex subscribes to the shared ReferenceStore, so every
  write made through get_reference_store() invalidates the index used by
  get_resolver().
"""
from __future__ import annotations

import logging
from functools import lru_cache

from statcoder.config.settings import Settings, get_settings
from statcoder.domain.exceptions import ConfigurationError
from statcoder.ports.llm_port import LLMPort
from statcoder.ports.reference_store_port import ReferenceStorePort
from statcoder.services.classifier import LLMClassifier
from statcoder.services.fuzzy_index import FuzzyIndex
from statcoder.services.orchestrator import BatchOrchestrator, ProgressCallback
from statcoder.services.reference_store import ReferenceStore
from statcoder.services.resolver import ResolutionStrategy

logger = logging.getLogger(__name__)


def _build_backend(settings: Settings) -> ReferenceStorePort:
    """Instantiate the ReferenceStorePort adapter named by REFERENCE_STORE."""
    kind = settings.reference_store.lower()
    if kind == "postgres":
        from statcoder.adapters.postgres_store import PostgresReferenceStore
        logger.info("Reference store: PostgreSQL")
        return PostgresReferenceStore(settings)
    if kind == "memory":
        from statcoder.adapters.memory_store import InMemoryReferenceStore
        logger.info("Reference store: in-memory (not persisted)")
        return InMemoryReferenceStore()
    raise ConfigurationError(
        f"Unknown REFERENCE_STORE '{settings.reference_store}'. "
        "Valid values: 'postgres', 'memory'."
    )


def _build_llms(settings: Settings) -> tuple[LLMPort, LLMPort]:
    """Return (coding_llm, assist_llm) for LLM_PROVIDER."""
    provider = settings.llm_provider.lower()
    if provider == "gemini":
        from statcoder.adapters.gemini_llm import CODING_RESPONSE_SCHEMA, GeminiLLMAdapter
        logger.info("LLM provider: Gemini (%s)", settings.gemini_model)
        return (
            GeminiLLMAdapter(settings, response_schema=CODING_RESPONSE_SCHEMA),
            GeminiLLMAdapter(settings),
        )
    if provider in ("openai", "deepseek", "local"):
        from statcoder.adapters.openai_llm import OpenAICompatibleLLMAdapter
        llm = OpenAICompatibleLLMAdapter(settings, provider=provider)
        logger.info("LLM provider: %s (%s)", provider, llm.model_name)
        return llm, llm
    raise ConfigurationError(
        f"Unknown LLM_PROVIDER '{settings.llm_provider}'. "
        "Valid values: 'gemini', 'openai', 'deepseek', 'local'."
    )


@lru_cache(maxsize=1)
def get_reference_store() -> ReferenceStore:
    """The process-wide ReferenceStore singleton."""
    return ReferenceStore(_build_backend(get_settings()))


@lru_cache(maxsize=1)
def get_classifier() -> LLMClassifier:
    """The process-wide LLMClassifier singleton.

    Raises:
        ConfigurationError: If LLM_PROVIDER is unknown.
        AuthenticationError: If the provider's API key is missing.
    """
    settings = get_settings()
    coding_llm, assist_llm = _build_llms(settings)
    return LLMClassifier(llm=coding_llm, settings=settings, assist_llm=assist_llm)


@lru_cache(maxsize=1)
def get_resolver() -> ResolutionStrategy:
    """Build and return the fully wired ResolutionStrategy singleton."""
    settings = get_settings()
    store = get_reference_store()
    index = FuzzyIndex(store=store, settings=settings)
    classifier = get_classifier()
    logger.info(
        "ResolutionStrategy ready | llm=%s exact<%.2f similar<=%.2f k=%d",
        classifier.model_name,
        settings.fuzzy_exact_threshold,
        settings.fuzzy_similar_threshold,
        settings.few_shot_k,
    )
    return ResolutionStrategy(index=index, classifier=classifier, settings=settings)


def build_orchestrator(on_progress: ProgressCallback | None = None) -> BatchOrchestrator:
    """A fresh BatchOrchestrator (one per batch) over the shared services."""
    return BatchOrchestrator(
        resolver=get_resolver(),
        settings=get_settings(),
        store=get_reference_store(),
        on_progress=on_progress,
    )
