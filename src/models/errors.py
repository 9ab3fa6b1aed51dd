"""Exceptions raised by the classification and insight pipelines."""

from typing import Optional


class InsightsPipelineError(Exception):
    """Base class for pipeline errors."""


class CompletionError(InsightsPipelineError):
    """A single completion attempt failed."""


class RetriesExhaustedError(CompletionError):
    """
    Raised when every completion attempt has failed.

    Attributes:
        attempts: Number of attempts made.
        last_error: The error raised by the final attempt.
    """

    def __init__(self, attempts: int, last_error: Exception):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"failed after {attempts} attempts: {last_error}")


class OperationCancelled(InsightsPipelineError):
    """The caller's cancel event was set."""


class FeedbackStoreError(InsightsPipelineError):
    """A feedback store query or write failed."""


class AggregationError(InsightsPipelineError):
    """An entire grouping dimension could not be aggregated."""

    def __init__(self, dimension: str, cause: Optional[Exception] = None):
        self.dimension = dimension
        self.cause = cause
        message = f"failed to aggregate {dimension} insights"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class IssueTrackerError(InsightsPipelineError):
    """The issue tracker API returned an error."""
