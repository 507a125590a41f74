# ecoreco/domain/errors.py


class RecommendationError(Exception):
    """Base class for every error raised inside the recommendation engine."""


class StorageError(RecommendationError):
    """The product/order store could not be read."""


class RankerError(RecommendationError):
    """
    Base class for LLM ranking failures.
    The orchestrator treats every subclass the same way: drop to the next fallback tier.
    """


class RankerUnavailable(RankerError):
    """Liveness probe failed or the endpoint refused the request."""


class RankerTimeout(RankerError):
    """The generation call exceeded its hard timeout and was cancelled."""


class RankerMalformedResponse(RankerError):
    """Non-JSON body, missing `response` field, or no id tokens in the text."""


class RankerInsufficientConfidence(RankerError):
    """Too few of the parsed ids belong to the candidate pool."""
