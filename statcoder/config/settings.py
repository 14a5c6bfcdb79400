"""
config/settings.py
──────────────────────────────────────────────────────────────────────────────
Single source of truth for all tuneable parameters.

All values can be overridden via environment variables or a .env file placed
at the project root.  The frozen dataclass ensures settings are never mutated
at runtime.

To swap providers, change the relevant env var; no code edits required:
  LLM_PROVIDER      → gemini | openai | deepseek | local
  REFERENCE_STORE   → postgres | memory
  DB_DSN            → swap database
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root (two levels up from this file)
load_dotenv(Path(__file__).parent.parent.parent / ".env")


def _env(key: str, default: str) -> str:
    return os.getenv(key, default)


def _env_int(key: str, default: int) -> int:
    return int(os.getenv(key, str(default)))


def _env_float(key: str, default: float) -> float:
    return float(os.getenv(key, str(default)))


@dataclass(frozen=True)
class Settings:
    """Immutable application settings loaded from environment variables."""

    # ── Provider selection ──────────────────────────────────────────────────
    # Valid values: "gemini" | "openai" | "deepseek" | "local"
    llm_provider: str = field(
        default_factory=lambda: _env("LLM_PROVIDER", "gemini")
    )
    # Valid values: "postgres" | "memory"
    reference_store: str = field(
        default_factory=lambda: _env("REFERENCE_STORE", "postgres")
    )

    # ── OpenAI-compatible endpoints ────────────────────────────────────────
    openai_api_key: str = field(
        default_factory=lambda: _env("OPENAI_API_KEY", "")
    )
    openai_llm_model: str = field(
        default_factory=lambda: _env("OPENAI_LLM_MODEL", "gpt-4o")
    )
    deepseek_api_key: str = field(
        default_factory=lambda: _env("DEEPSEEK_API_KEY", "")
    )
    deepseek_model: str = field(
        default_factory=lambda: _env("DEEPSEEK_MODEL", "deepseek-chat")
    )
    # Ollama / LM Studio expose an OpenAI-compatible route
    local_llm_url: str = field(
        default_factory=lambda: _env(
            "LOCAL_LLM_URL", "http://localhost:11434/v1/chat/completions"
        )
    )
    local_llm_model: str = field(
        default_factory=lambda: _env("LOCAL_LLM_MODEL", "llama3")
    )
    # Overrides the provider default URL when non-empty
    llm_base_url: str = field(
        default_factory=lambda: _env("LLM_BASE_URL", "")
    )

    # ── Google Gemini ──────────────────────────────────────────────────────
    gemini_api_key: str = field(
        default_factory=lambda: _env("GEMINI_API_KEY", "")
    )
    gemini_model: str = field(
        default_factory=lambda: _env("GEMINI_MODEL", "gemini-2.5-flash")
    )
    # Reasoning budget for 2.5-series models; 0 disables thinking config
    gemini_thinking_budget: int = field(
        default_factory=lambda: _env_int("GEMINI_THINKING_BUDGET", 1024)
    )

    # ── Network ────────────────────────────────────────────────────────────
    https_proxy: str = field(
        default_factory=lambda: _env("HTTPS_PROXY", "")
    )

    # ── Database ───────────────────────────────────────────────────────────
    db_dsn: str = field(
        default_factory=lambda: _env("DB_DSN", "dbname=statcoder")
    )

    # ── Resolution ─────────────────────────────────────────────────────────
    # Scores run 0.0 (identical) → 1.0 (unrelated)
    fuzzy_exact_threshold: float = field(
        default_factory=lambda: _env_float("FUZZY_EXACT_THRESHOLD", 0.1)
    )
    fuzzy_similar_threshold: float = field(
        default_factory=lambda: _env_float("FUZZY_SIMILAR_THRESHOLD", 0.4)
    )
    fuzzy_min_chars: int = field(
        default_factory=lambda: _env_int("FUZZY_MIN_CHARS", 2)
    )
    few_shot_k: int = field(
        default_factory=lambda: _env_int("FEW_SHOT_K", 3)
    )

    # ── Batch orchestration ────────────────────────────────────────────────
    wave_size: int = field(
        default_factory=lambda: _env_int("WAVE_SIZE", 3)
    )
    # Per-call classifier timeout in seconds; 0 disables it
    classifier_timeout: float = field(
        default_factory=lambda: _env_float("CLASSIFIER_TIMEOUT", 0)
    )

    # ── HTTP timeouts (seconds) ────────────────────────────────────────────
    llm_timeout: int   = field(default_factory=lambda: _env_int("LLM_TIMEOUT", 90))
    llm_retries: int   = field(default_factory=lambda: _env_int("LLM_RETRIES", 3))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Returns a cached singleton Settings instance.

    Use this everywhere instead of instantiating Settings() directly;
    it guarantees a single object is shared across the entire process.
    """
    return Settings()
