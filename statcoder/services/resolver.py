"""
services/resolver.py
──────────────────────────────────────────────────────────────────────────────
Resolution Strategy: one input text → one CodedResult.

Tiers, cheapest first:
  1. FuzzyIndex.match_exact    → hit ⇒ confidence "Reference", no LLM call
  2. FuzzyIndex.match_similar  → up to k dictionary entries as few-shot context
  3. ClassifierPort.classify   → code / label / High|Medium|Low / reasoning

Error policy:
  • Blank primary text      → ValidationError before anything else runs
  • Index / store failures  → already absorbed inside FuzzyIndex ("no match")
  • Anything in tiers 2–3   → ClassifierError (original exception chained)
There is no internal retry; retrying is an explicit orchestrator action.

DUAL module:
  Occupation (ISCO-08) and industry (ISIC Rev. 4) are resolved concurrently,
  each through the full tier ladder against its own dictionary, then merged
  into one composite result whose confidence is the weaker of the two.
"""
from __future__ import annotations

import asyncio
import logging

from statcoder.config.settings import Settings
from statcoder.domain.exceptions import ClassifierError, ValidationError
from statcoder.domain.models import (
    ClassificationRequest,
    ClassifierResponse,
    CodedResult,
    Confidence,
    FewShotExample,
    ModuleType,
    ProcessedRow,
    ResolutionOutcome,
    weaker_confidence,
)
from statcoder.ports.classifier_port import ClassifierPort
from statcoder.services.fuzzy_index import FuzzyIndex

logger = logging.getLogger(__name__)

REFERENCE_REASONING = "matched local dictionary"


class ResolutionStrategy:
    """Tiered resolver over a FuzzyIndex and an external classifier.

    Args:
        index:      FuzzyIndex over the reference dictionary.
        classifier: Any object satisfying ClassifierPort.
        settings:   Shared application settings (few-shot k, call timeout).
    """

    def __init__(
        self,
        index: FuzzyIndex,
        classifier: ClassifierPort,
        settings: Settings,
    ) -> None:
        self._index = index
        self._classifier = classifier
        self._k = settings.few_shot_k
        self._timeout = settings.classifier_timeout if settings.classifier_timeout > 0 else None

    # ── Public API ─────────────────────────────────────────────────────────

    async def resolve(
        self,
        primary_text: str,
        module: ModuleType,
        secondary_text: str = "",
        tertiary_text: str = "",
    ) -> CodedResult:
        """Resolve one record.

        Args:
            primary_text:   Main description (job title, activity, item).
            module:         Target classification.
            secondary_text: Optional free-text context.
            tertiary_text:  Optional industry text, used by DUAL only.

        Returns:
            CodedResult.

        Raises:
            ValidationError: If ``primary_text`` is blank.
            ClassifierError: If the classifier tier fails.
        """
        if not primary_text or not primary_text.strip():
            raise ValidationError("Primary text is empty")

        if module == ModuleType.DUAL:
            return await self._resolve_dual(primary_text, secondary_text, tertiary_text)
        return await self._resolve_single(primary_text, secondary_text, module)

    async def resolve_row(self, row: ProcessedRow, module: ModuleType) -> CodedResult:
        return await self.resolve(
            row.primary_text,
            module,
            secondary_text=row.secondary_text,
            tertiary_text=row.tertiary_text,
        )

    async def outcome(self, row: ProcessedRow, module: ModuleType) -> ResolutionOutcome:
        """Resolve a row without raising: the error becomes a message."""
        try:
            result = await self.resolve_row(row, module)
        except Exception as exc:
            message = describe_error(exc)
            logger.error("Row %s failed | %s", row.id, message)
            return ResolutionOutcome(error_message=message)
        return ResolutionOutcome(result=result)

    # ── Private helpers ────────────────────────────────────────────────────

    async def _resolve_single(
        self,
        text: str,
        context: str,
        module: ModuleType,
    ) -> CodedResult:
        hit = await self._index.match_exact(text, module)
        if hit is not None:
            logger.debug("Dictionary hit | module=%s text=%r code=%s", module.value, text[:80], hit.code)
            return CodedResult(
                code=hit.code,
                label=hit.label,
                confidence=Confidence.REFERENCE,
                reasoning=REFERENCE_REASONING,
            )

        try:
            similar = await self._index.match_similar(text, module, k=self._k)
            request = ClassificationRequest(
                primary_text=text.strip(),
                secondary_text=(context or "").strip(),
                module=module,
                few_shot_examples=[FewShotExample.from_entry(e) for e in similar],
            )
            response = await self._call_classifier(request)
            return response.to_result()
        except ClassifierError:
            raise
        except Exception as exc:
            raise ClassifierError(f"Classification failed: {exc}") from exc

    async def _call_classifier(self, request: ClassificationRequest) -> ClassifierResponse:
        # The worker thread is never interrupted; on timeout its answer is dropped
        call = asyncio.to_thread(self._classifier.classify, request)
        if self._timeout is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise ClassifierError(
                f"Classifier timed out after {self._timeout:g}s"
            ) from exc

    async def _resolve_dual(
        self,
        primary_text: str,
        secondary_text: str,
        tertiary_text: str,
    ) -> CodedResult:
        industry_text = tertiary_text.strip() or secondary_text.strip() or primary_text
        industry_context = secondary_text if tertiary_text.strip() else ""

        occupation, industry = await asyncio.gather(
            self._resolve_single(primary_text, secondary_text, ModuleType.ISCO08),
            self._resolve_single(industry_text, industry_context, ModuleType.ISIC4),
            return_exceptions=True,
        )
        for side in (occupation, industry):
            if isinstance(side, BaseException):
                raise side
        return merge_dual(occupation, industry)


# ── Pure helpers ───────────────────────────────────────────────────────────

def merge_dual(occupation: CodedResult, industry: CodedResult) -> CodedResult:
    """Combine ISCO and ISIC results into one composite DUAL result.

    Examples:
        >>> a = CodedResult(code="2512", label="Software developers", confidence="High")
        >>> b = CodedResult(code="6201", label="Computer programming", confidence="Medium")
        >>> merge_dual(a, b).code
        'ISCO: 2512 / ISIC: 6201'
        >>> merge_dual(a, b).confidence.value
        'Medium'
    """
    return CodedResult(
        code=f"ISCO: {occupation.code} / ISIC: {industry.code}",
        label=f"{occupation.label} / {industry.label}",
        confidence=weaker_confidence(occupation.confidence, industry.confidence),
        reasoning=(
            f"ISCO: {occupation.reasoning or 'no reasoning given'}. "
            f"ISIC: {industry.reasoning or 'no reasoning given'}."
        ),
    )


def describe_error(exc: BaseException) -> str:
    """Row-level error message: ``"<ErrorClass>: <message>"``."""
    message = str(exc) or "unknown error"
    return f"{type(exc).__name__}: {message}"
