"""
services/fuzzy_index.py
──────────────────────────────────────────────────────────────────────────────
Per-module approximate term lookup over the reference dictionary.

Two query profiles share one memoized index per module:
  match_exact   → best entry only, strict threshold (typo-tolerant exact match)
  match_similar → top-k entries, loose threshold (few-shot context for the LLM)

Scoring:
  Terms are normalised with rapidfuzz.utils.default_process (lowercase,
  non-alphanumerics → spaces, trimmed), then internal whitespace is
  collapsed.  Scores run from 0.0 = identical to 1.0 = unrelated.
  match_exact scores with fuzz.ratio (normalised Indel distance over the
  whole string), so only small edits pass and every extra word costs.
  match_similar scores with fuzz.WRatio, which blends full, partial and
  token-order-free ratios: "senior software engineer" is a close neighbour
  of "software engineer" there, but never an exact match.

Staleness:
  The index subscribes to ReferenceStore mutation events.  Each event bumps
  the module's generation counter and drops the cached index; an index is
  only served while its generation matches the current one.  Builds are
  serialised by one asyncio.Lock per module, so concurrent first queries wait
  for the in-flight build instead of duplicating it.

Failures never escape: a storage or scoring error is logged with the module
and a truncated copy of the term, and the query answers "no match".
"""
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass

from rapidfuzz import fuzz, process
from rapidfuzz.utils import default_process

from statcoder.config.settings import Settings
from statcoder.domain.exceptions import FuzzyIndexError
from statcoder.domain.models import ModuleType, ReferenceEntry
from statcoder.services.reference_store import ReferenceStore

logger = logging.getLogger(__name__)

_LOG_TERM_CHARS = 50


def normalize_term(text: str | None) -> str:
    """Canonical form used for both indexing and querying."""
    if not text:
        return ""
    return " ".join(default_process(text).split())


def similarity_score(a: str, b: str, scorer=fuzz.WRatio) -> float:
    """Dissimilarity of two raw strings: 0.0 = identical, 1.0 = unrelated."""
    return _to_score(scorer(normalize_term(a), normalize_term(b)))


def _to_score(ratio: float) -> float:
    # Computed as (100 - r) / 100 so a ratio of exactly 90 maps to exactly 0.1
    return (100.0 - ratio) / 100.0


def _to_cutoff(score: float) -> float:
    return max(0.0, 100.0 - score * 100.0)


# ── Memoized per-module structure ──────────────────────────────────────────

@dataclass(frozen=True)
class _ModuleIndex:
    """Distinct normalised terms, each mapped to its entries (newest first)."""

    generation: int
    terms: list[str]
    entries: list[list[ReferenceEntry]]

    @classmethod
    def build(cls, entries: list[ReferenceEntry], generation: int) -> "_ModuleIndex":
        grouped: dict[str, list[ReferenceEntry]] = {}
        for entry in entries:
            key = normalize_term(entry.term)
            if key:
                grouped.setdefault(key, []).append(entry)
        terms = list(grouped)
        buckets = [
            sorted(grouped[t], key=lambda e: e.added_at, reverse=True) for t in terms
        ]
        return cls(generation=generation, terms=terms, entries=buckets)

    def search(
        self,
        query: str,
        limit: int,
        max_score: float,
        scorer=fuzz.WRatio,
    ) -> list[tuple[float, list[ReferenceEntry]]]:
        """Return (score, entries) pairs with score ≤ max_score, best first."""
        if not self.terms or limit <= 0:
            return []
        hits = process.extract(
            query,
            self.terms,
            scorer=scorer,
            processor=None,
            score_cutoff=_to_cutoff(max_score),
            limit=limit,
        )
        return [(_to_score(ratio), self.entries[idx]) for _, ratio, idx in hits]


# ── Service class ──────────────────────────────────────────────────────────

class FuzzyIndex:
    """Lazily built, write-invalidated fuzzy index over a ReferenceStore.

    Args:
        store:    The ReferenceStore to index; the index subscribes to its
                  mutation events on construction.
        settings: Shared application settings (thresholds, min length).
    """

    def __init__(self, store: ReferenceStore, settings: Settings) -> None:
        self._store = store
        self._exact_threshold = settings.fuzzy_exact_threshold
        self._similar_threshold = settings.fuzzy_similar_threshold
        self._min_chars = settings.fuzzy_min_chars
        self._cache: dict[ModuleType, _ModuleIndex] = {}
        self._generations: dict[ModuleType, int] = defaultdict(int)
        self._locks: dict[ModuleType, asyncio.Lock] = {}
        self._locks_loop: asyncio.AbstractEventLoop | None = None
        self.build_count = 0
        store.subscribe(self.invalidate)
        logger.debug(
            "FuzzyIndex init | exact<%.2f similar<=%.2f min_chars=%d",
            self._exact_threshold,
            self._similar_threshold,
            self._min_chars,
        )

    # ── Invalidation ───────────────────────────────────────────────────────

    def invalidate(self, module: ModuleType | None = None) -> None:
        """Drop the cached index for ``module`` (or all modules)."""
        targets = list(ModuleType) if module is None else [module]
        for m in targets:
            self._generations[m] += 1
            self._cache.pop(m, None)
        logger.debug(
            "FuzzyIndex invalidated | module=%s", module.value if module else "ALL"
        )

    # ── Public API ─────────────────────────────────────────────────────────

    async def match_exact(
        self,
        term: str,
        module: ModuleType,
    ) -> ReferenceEntry | None:
        """Return the dictionary entry for ``term`` if it is a near-exact match.

        The best candidate by edit distance (fuzz.ratio) is accepted only when
        its score is strictly below the exact threshold.  Extra or missing
        words are edits too, so "senior software engineer" does not match
        "software engineer".
        """
        try:
            query = normalize_term(term)
            if len(query) < self._min_chars:
                return None
            index = await self._get_index(module)
            hits = index.search(
                query, limit=1, max_score=self._exact_threshold, scorer=fuzz.ratio
            )
            if hits and hits[0][0] < self._exact_threshold:
                return hits[0][1][0]
            return None
        except Exception as exc:
            logger.warning(
                "match_exact failed (treating as no match) | module=%s term=%r: %s",
                module.value,
                (term or "")[:_LOG_TERM_CHARS],
                exc,
            )
            return None

    async def match_similar(
        self,
        term: str,
        module: ModuleType,
        k: int = 3,
    ) -> list[ReferenceEntry]:
        """Return up to ``k`` loosely similar entries from ``module``, best first."""
        try:
            query = normalize_term(term)
            if len(query) < self._min_chars or k <= 0:
                return []
            index = await self._get_index(module)
            results: list[ReferenceEntry] = []
            hits = index.search(
                query, limit=k, max_score=self._similar_threshold, scorer=fuzz.WRatio
            )
            for _, bucket in hits:
                results.extend(bucket[: k - len(results)])
                if len(results) >= k:
                    break
            return results
        except Exception as exc:
            logger.warning(
                "match_similar failed (returning empty) | module=%s term=%r: %s",
                module.value,
                (term or "")[:_LOG_TERM_CHARS],
                exc,
            )
            return []

    # ── Private helpers ────────────────────────────────────────────────────

    async def _get_index(self, module: ModuleType) -> _ModuleIndex:
        cached = self._current(module)
        if cached is not None:
            return cached

        async with self._lock_for(module):
            # Another caller may have finished the build while we waited
            cached = self._current(module)
            if cached is not None:
                return cached

            generation = self._generations[module]
            entries = await asyncio.to_thread(self._store.get_by_module, module)
            try:
                index = _ModuleIndex.build(entries, generation)
            except Exception as exc:
                raise FuzzyIndexError(
                    f"Index build failed for {module.value}: {exc}"
                ) from exc
            self.build_count += 1

            # A write during the build leaves the result uncached
            if self._generations[module] == generation:
                self._cache[module] = index
            logger.info(
                "FuzzyIndex built | module=%s entries=%d terms=%d",
                module.value,
                len(entries),
                len(index.terms),
            )
            return index

    def _current(self, module: ModuleType) -> _ModuleIndex | None:
        cached = self._cache.get(module)
        if cached is not None and cached.generation == self._generations[module]:
            return cached
        return None

    def _lock_for(self, module: ModuleType) -> asyncio.Lock:
        # asyncio.Lock binds to the loop it first waits on; start fresh per loop
        loop = asyncio.get_running_loop()
        if self._locks_loop is not loop:
            self._locks = {}
            self._locks_loop = loop
        lock = self._locks.get(module)
        if lock is None:
            lock = self._locks[module] = asyncio.Lock()
        return lock
