"""
Exception hierarchy.

Fatal-to-run errors derive from PipelineError and abort the current
pipeline invocation. Per-item errors are caught by the batch that raised
them. "Already resolved" outcomes of the recommendation lifecycle are not
exceptions at all; see TransitionOutcome.
"""


class InsiderTraderError(Exception):
    """Base class for all application errors."""


class PipelineError(InsiderTraderError):
    """Aborts the current pipeline run; surfaced to the operator chat."""


class FilingSourceError(PipelineError):
    """The filing search request failed or returned an unusable shape."""


class ReasoningServiceError(PipelineError):
    """The reasoning service could not be reached or replied with an unexpected shape."""


class DecisionParseError(PipelineError):
    """The reasoning service output did not contain a valid list of decisions."""


class DocumentFetchError(InsiderTraderError):
    """A single filing document could not be resolved or fetched."""


class RecommendationPersistenceError(InsiderTraderError):
    """A single recommendation could not be written to the store."""


class BrokerError(InsiderTraderError):
    """Brokerage request failed."""


class NotificationError(InsiderTraderError):
    """Notification channel request failed."""
