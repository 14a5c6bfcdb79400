"""
ports/classifier_port.py
──────────────────────────────────────────────────────────────────────────────
Abstract interface for the external text-classification oracle.

The Resolution Strategy depends only on this Protocol, so tests can plug in a
stub classifier and production can plug in LLMClassifier, or any other
service that answers with a code, label and High/Medium/Low confidence.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from statcoder.domain.models import ClassificationRequest, ClassifierResponse


@runtime_checkable
class ClassifierPort(Protocol):
    """Contract for a single-item classifier."""

    def classify(self, request: ClassificationRequest) -> ClassifierResponse:
        """Classify one record.

        Blocking call; the resolver runs it in a worker thread.

        Args:
            request: Primary/secondary text, target module and few-shot
                     examples retrieved from the local dictionary.

        Returns:
            Validated ClassifierResponse.

        Raises:
            ClassifierError: On malformed output, timeout or transport failure.
        """
        ...
