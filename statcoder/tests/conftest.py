"""
tests/conftest.py
──────────────────────────────────────────────────────────────────────────────
Shared pytest fixtures and mock adapter implementations.

Mock adapters implement the Port Protocols via structural subtyping; they do
NOT inherit from any base class.  pytest uses them to test service logic
without any real LLM or database connections.

Fixture hierarchy:
  settings      → Settings with the in-memory store and test thresholds
  backend       → FlakyMemoryStore (InMemoryReferenceStore with a kill switch)
  store         → ReferenceStore over backend
  index         → FuzzyIndex subscribed to store
  classifier    → StubClassifier (canned answers, call log, per-text failures)
  resolver      → ResolutionStrategy wired with index + classifier
  orchestrator  → BatchOrchestrator wired with resolver + store
"""
from __future__ import annotations

import json
import threading
from datetime import datetime, timedelta, timezone

import pytest

from statcoder.adapters.memory_store import InMemoryReferenceStore
from statcoder.config.settings import Settings
from statcoder.domain.exceptions import ClassifierError
from statcoder.domain.models import (
    ClassificationRequest,
    ClassifierResponse,
    Confidence,
    EntrySource,
    ModuleType,
    ReferenceEntry,
)
from statcoder.services.fuzzy_index import FuzzyIndex
from statcoder.services.orchestrator import BatchOrchestrator
from statcoder.services.reference_store import ReferenceStore
from statcoder.services.resolver import ResolutionStrategy


# ── Settings fixture ───────────────────────────────────────────────────────

def make_settings(**overrides) -> Settings:
    """Settings with sane test defaults; keyword args override fields."""
    values = dict(
        llm_provider="openai",
        reference_store="memory",
        openai_api_key="sk-test-key",
        openai_llm_model="gpt-4o",
        deepseek_api_key="ds-test-key",
        gemini_api_key="gm-test-key",
        gemini_model="gemini-2.5-flash",
        gemini_thinking_budget=1024,
        llm_base_url="",
        https_proxy="",
        db_dsn="dbname=statcoder_test",
        fuzzy_exact_threshold=0.1,
        fuzzy_similar_threshold=0.4,
        fuzzy_min_chars=2,
        few_shot_k=3,
        wave_size=3,
        classifier_timeout=0,
        llm_timeout=5,
        llm_retries=3,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


# ── Reference data ─────────────────────────────────────────────────────────

_T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_entry(
    term: str,
    code: str,
    label: str = "",
    module: ModuleType = ModuleType.ISCO08,
    minutes: int = 0,
    source: EntrySource = EntrySource.UPLOAD,
) -> ReferenceEntry:
    """ReferenceEntry with a deterministic timestamp (``minutes`` after T0)."""
    return ReferenceEntry(
        module=module,
        term=term,
        code=code,
        label=label or f"Label {code}",
        source=source,
        added_at=_T0 + timedelta(minutes=minutes),
    )


SEED_ENTRIES = [
    make_entry("software engineer", "2512", "Software developers"),
    make_entry("registered nurse", "2221", "Nursing professionals"),
    make_entry("secondary school teacher", "2330", "Secondary education teachers"),
    make_entry("bus driver", "8331", "Bus and tram drivers"),
    make_entry("software development", "6201", "Computer programming activities",
               module=ModuleType.ISIC4),
    make_entry("bakery", "1071", "Manufacture of bakery products", module=ModuleType.ISIC4),
    make_entry("rice", "01.1.1.1", "Rice", module=ModuleType.COICOP),
]


# ── Mock adapters ──────────────────────────────────────────────────────────

class FlakyMemoryStore(InMemoryReferenceStore):
    """In-memory backend that can be told to fail and counts full scans."""

    def __init__(self, entries=None) -> None:
        self.fail = False
        self.fetch_calls = 0
        self.fetch_delay = 0.0
        super().__init__(entries)

    def fetch_module(self, module):
        self.fetch_calls += 1
        if self.fetch_delay:
            threading.Event().wait(self.fetch_delay)
        if self.fail:
            raise ConnectionError("backend unavailable")
        return super().fetch_module(module)

    def upsert(self, entries):
        if self.fail:
            raise ConnectionError("backend unavailable")
        super().upsert(entries)


class StubClassifier:
    """ClassifierPort stand-in.

    Answers with ``code`` "9999" / Medium by default.  ``answers`` maps a
    primary text to a specific response; ``failures`` is a set of texts that
    raise ClassifierError.  Every request is recorded in ``calls``.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.calls: list[ClassificationRequest] = []
        self.answers: dict[str, ClassifierResponse] = {}
        self.failures: set[str] = set()
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def classify(self, request: ClassificationRequest) -> ClassifierResponse:
        with self._lock:
            self.calls.append(request)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                threading.Event().wait(self.delay)
            return self._answer(request)
        finally:
            with self._lock:
                self.in_flight -= 1

    def _answer(self, request: ClassificationRequest) -> ClassifierResponse:
        if request.primary_text in self.failures:
            raise ClassifierError(f"model refused {request.primary_text!r}")
        if request.primary_text in self.answers:
            return self.answers[request.primary_text]
        return ClassifierResponse(
            code="9999",
            label=f"Stub {request.module.value}",
            confidence=Confidence.MEDIUM,
            reasoning=f"stub for {request.primary_text}",
        )

    def texts(self) -> list[str]:
        return [c.primary_text for c in self.calls]


class StubLLM:
    """LLMPort stand-in returning queued raw strings (or raising them)."""

    model_name = "stub-llm"

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.prompts: list[tuple[str, str]] = []

    def generate_json(self, system_prompt: str, user_message: str) -> str | None:
        self.prompts.append((system_prompt, user_message))
        item = self.responses.pop(0) if self.responses else None
        if isinstance(item, Exception):
            raise item
        if isinstance(item, (dict, list)):
            return json.dumps(item)
        return item


# ── pytest fixtures ────────────────────────────────────────────────────────

@pytest.fixture
def backend() -> FlakyMemoryStore:
    return FlakyMemoryStore(SEED_ENTRIES)


@pytest.fixture
def store(backend) -> ReferenceStore:
    return ReferenceStore(backend)


@pytest.fixture
def index(store, settings) -> FuzzyIndex:
    return FuzzyIndex(store=store, settings=settings)


@pytest.fixture
def classifier() -> StubClassifier:
    return StubClassifier()


@pytest.fixture
def resolver(index, classifier, settings) -> ResolutionStrategy:
    return ResolutionStrategy(index=index, classifier=classifier, settings=settings)


@pytest.fixture
def orchestrator(resolver, store, settings) -> BatchOrchestrator:
    return BatchOrchestrator(resolver=resolver, settings=settings, store=store)


def job_records(n: int) -> list[dict[str, str]]:
    """``n`` raw survey records whose titles miss the seed dictionary."""
    return [
        {"rid": f"r{i:02d}", "title": f"widget inspector grade {i}", "duties": "checks widgets"}
        for i in range(n)
    ]

