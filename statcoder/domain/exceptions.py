"""
domain/exceptions.py
──────────────────────────────────────────────────────────────────────────────
Custom exception hierarchy.

All exceptions are rooted at StatCoderError so callers can catch broadly
(except StatCoderError) or narrowly (except ClassifierError).

Where each error stops propagating:
  StorageError       → absorbed by the fuzzy index ("no reference match")
  FuzzyIndexError    → absorbed by the fuzzy index (empty result set)
  ClassifierError    → recorded on the owning row; the batch run continues
  ValidationError    → recorded on the owning row; no external call made
  OrchestrationError → raised to the operator (invalid state transition)
"""
from __future__ import annotations


class StatCoderError(Exception):
    """Base exception for all application errors."""


class ConfigurationError(StatCoderError):
    """Raised when required configuration is missing or invalid."""


class AuthenticationError(StatCoderError):
    """Raised when provider credentials are missing or rejected."""


class StorageError(StatCoderError):
    """Raised when the reference store is unavailable or corrupt."""


class FuzzyIndexError(StatCoderError):
    """Raised when a fuzzy index build or query fails."""


class LLMError(StatCoderError):
    """Raised when the LLM API call fails unrecoverably."""


class ClassifierError(StatCoderError):
    """Raised when classification fails, times out or returns unparseable output."""


class ValidationError(StatCoderError):
    """Raised when input is unusable (e.g. blank primary text)."""


class OrchestrationError(StatCoderError):
    """Raised on an invalid batch-run state transition."""
