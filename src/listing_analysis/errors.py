from __future__ import annotations


GENERIC_FAILURE_MESSAGE = "Failed to analyze the listing. Please check the URL and try again."
RATE_LIMIT_MESSAGE = "API rate limit reached. Please wait about 60 seconds and try again."


class AnalysisError(Exception):
    """Base for failures of a single listing analysis.

    ``user_message`` is safe to show to end users; the exception text and
    chained cause are for logs only.
    """

    user_message = GENERIC_FAILURE_MESSAGE

    def __init__(self, detail: str = "", *, user_message: str | None = None) -> None:
        super().__init__(detail or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class RateLimitError(AnalysisError):
    user_message = RATE_LIMIT_MESSAGE


class EmptyResponseError(AnalysisError):
    pass


class MalformedResponseError(AnalysisError):
    pass


class ModelCallError(AnalysisError):
    pass


class EnrichmentError(Exception):
    pass


class ConfigurationError(RuntimeError):
    pass
