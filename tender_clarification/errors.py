"""Exception taxonomy for the analysis pipeline."""

from __future__ import annotations

from typing import Optional


class ClarificationError(Exception):
    """Base class for pipeline exceptions."""


class ExtractionError(ClarificationError):
    """Document bytes could not be turned into text, or the extractor isn't ready."""


class TransportError(ClarificationError):
    """The LLM endpoint could not be reached (connect failure, timeout)."""


class UpstreamError(ClarificationError):
    """The LLM endpoint answered with a non-success status."""

    def __init__(self, status: int, message: Optional[str] = None):
        self.status = status
        self.message = message or f"HTTP {status}"
        super().__init__(self.message)


class MalformedResponseError(ClarificationError):
    """The model answered, but not in a shape we can use."""


class SelectionError(ClarificationError):
    """Analysis was requested with nothing selected."""


class QuestionNotFoundError(ClarificationError):
    """No question with the given id."""


class StateError(ClarificationError):
    """Operation not allowed in the object's current state."""


class OperationInProgressError(ClarificationError):
    """Another run for the same operation is still in flight."""
