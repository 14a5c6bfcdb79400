"""
domain/models.py
──────────────────────────────────────────────────────────────────────────────
Pure domain objects: Pydantic models with no imports from adapters or ports.

These models are the lingua franca of the entire system:
  • adapters produce and consume them
  • services orchestrate them
  • the CLI serialises them

Rows carry their original input columns in an opaque ``data`` dict; all
resolution logic reads only the explicit primary/secondary/tertiary text
fields, which are resolved once from a ColumnMapping.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ── Enums ──────────────────────────────────────────────────────────────────────

class ModuleType(str, Enum):
    """Classification taxonomies a batch can be coded against."""
    ISCO08 = "ISCO-08"
    ISIC4  = "ISIC Rev. 4"
    COICOP = "COICOP 2018"
    DUAL   = "Dual Coding (ISCO + ISIC)"


class Confidence(str, Enum):
    HIGH      = "High"
    MEDIUM    = "Medium"
    LOW       = "Low"
    MANUAL    = "Manual"      # set by a human edit
    REFERENCE = "Reference"   # local dictionary hit, no LLM call


# Human and dictionary decisions outrank any model-assigned tier
_CONFIDENCE_STRENGTH: dict[Confidence, int] = {
    Confidence.LOW: 0,
    Confidence.MEDIUM: 1,
    Confidence.HIGH: 2,
    Confidence.MANUAL: 3,
    Confidence.REFERENCE: 3,
}

# Tiers an external classifier is allowed to emit
CLASSIFIER_CONFIDENCES = (Confidence.HIGH, Confidence.MEDIUM, Confidence.LOW)


def weaker_confidence(a: Confidence, b: Confidence) -> Confidence:
    """Return the weaker of two confidence tiers (``a`` wins ties)."""
    return b if _CONFIDENCE_STRENGTH[b] < _CONFIDENCE_STRENGTH[a] else a


class EntrySource(str, Enum):
    UPLOAD  = "upload"
    LEARNED = "learned"


class CodingStatus(str, Enum):
    PENDING = "pending"
    CODED   = "coded"
    ERROR   = "error"


class RunStatus(str, Enum):
    """Batch run state machine: idle → mapping → processing ⇄ paused → review."""
    IDLE       = "idle"
    MAPPING    = "mapping"
    PROCESSING = "processing"
    PAUSED     = "paused"
    REVIEW     = "review"


# ── Reference dictionary ───────────────────────────────────────────────────────

class ReferenceEntry(BaseModel):
    """A single term → code mapping in the local dictionary."""

    model_config = ConfigDict(frozen=True)

    id:          str = Field(default_factory=lambda: str(uuid4()))
    module:      ModuleType
    term:        str = Field(..., min_length=1)
    code:        str = Field(..., min_length=1)
    label:       str
    description: Optional[str] = None
    source:      EntrySource = EntrySource.UPLOAD
    added_at:    datetime = Field(
                     default_factory=lambda: datetime.now(timezone.utc)
                 )


# ── Results ────────────────────────────────────────────────────────────────────

class CodedResult(BaseModel):
    """The code attached to a row, from the resolver or a human edit."""

    model_config = ConfigDict(frozen=True)

    code:       str
    label:      str
    confidence: Confidence
    reasoning:  Optional[str] = None


class ResolutionOutcome(BaseModel):
    """Either a result or a human-readable error, never both."""

    result:        Optional[CodedResult] = None
    error_message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


# ── Classifier contract ────────────────────────────────────────────────────────

class FewShotExample(BaseModel):
    term:  str
    code:  str
    label: str

    @classmethod
    def from_entry(cls, entry: ReferenceEntry) -> "FewShotExample":
        return cls(term=entry.term, code=entry.code, label=entry.label)


class ClassificationRequest(BaseModel):
    """Validated input to a ClassifierPort."""

    primary_text:      str = Field(..., min_length=1)
    secondary_text:    str = ""
    module:            ModuleType
    few_shot_examples: list[FewShotExample] = Field(default_factory=list)


class ClassifierResponse(BaseModel):
    """Structured answer from the external classifier.

    LLMs are loose with types: numeric codes are coerced to strings and the
    confidence tier is matched case-insensitively.
    """

    code:       str = Field(..., min_length=1)
    label:      str = ""
    confidence: Confidence
    reasoning:  Optional[str] = None

    @field_validator("code", "label", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> Any:
        if isinstance(v, (int, float)):
            return str(v)
        return v.strip() if isinstance(v, str) else v

    @field_validator("confidence", mode="before")
    @classmethod
    def normalise_confidence(cls, v: Any) -> Any:
        if isinstance(v, str):
            for tier in CLASSIFIER_CONFIDENCES:
                if v.strip().lower() == tier.value.lower():
                    return tier
        if v not in CLASSIFIER_CONFIDENCES:
            raise ValueError(f"confidence must be High, Medium or Low, got {v!r}")
        return v

    def to_result(self) -> CodedResult:
        return CodedResult(
            code=self.code,
            label=self.label,
            confidence=self.confidence,
            reasoning=self.reasoning,
        )


class SearchResult(BaseModel):
    """A code returned by the manual-coding search helper."""

    code:        str
    label:       str
    description: str = ""


class CodeSuggestion(BaseModel):
    """A code returned by the manual-coding autocomplete helper."""

    code:       str
    label:      str
    confidence: str = "Medium"


# ── Batch rows ─────────────────────────────────────────────────────────────────

class ColumnMapping(BaseModel):
    """Which input columns feed the resolver."""

    primary_column:   str = Field(..., min_length=1)
    secondary_column: Optional[str] = None
    tertiary_column:  Optional[str] = None   # industry context for DUAL coding
    id_column:        Optional[str] = None


class ProcessedRow(BaseModel):
    """One input record plus its coding state."""

    id:              str
    data:            dict[str, Any] = Field(default_factory=dict)
    primary_text:    str = ""
    secondary_text:  str = ""
    tertiary_text:   str = ""
    coding_status:   CodingStatus = CodingStatus.PENDING
    result:          Optional[CodedResult] = None
    error_message:   Optional[str] = None
    manually_edited: bool = False

    @property
    def is_settled(self) -> bool:
        """True when bulk auto-resolution must leave this row alone."""
        return self.coding_status == CodingStatus.CODED or self.manually_edited

    def to_record(self) -> dict[str, Any]:
        """Flatten back to a tabular record for export."""
        record = dict(self.data)
        record.update(
            {
                "id": self.id,
                "coding_status": self.coding_status.value,
                "code": self.result.code if self.result else "",
                "label": self.result.label if self.result else "",
                "confidence": self.result.confidence.value if self.result else "",
                "reasoning": (self.result.reasoning or "") if self.result else "",
                "error_message": self.error_message or "",
                "manually_edited": self.manually_edited,
            }
        )
        return record


class BatchProgress(BaseModel):
    completed: int = 0
    total:     int = 0

    @property
    def fraction(self) -> float:
        return self.completed / self.total if self.total else 0.0
