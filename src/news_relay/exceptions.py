"""
Exception hierarchy for news relay.

Per-item and per-source errors are absorbed by the run coordinator and
recorded in the run report; only ConfigurationError aborts a run.
"""

from typing import Optional


class NewsRelayError(Exception):
    """Base class for all news relay errors."""


class FetchError(NewsRelayError):
    """A feed source could not be retrieved."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class FetchTimeout(FetchError):
    """Retrieval did not finish within the per-attempt timeout."""


class FetchMalformed(FetchError):
    """Retrieved document is not a recognizable feed."""


class FetchHttpError(FetchError):
    """Retrieval failed with an HTTP error status."""

    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, url=url)
        self.status_code = status_code

    @property
    def is_client_error(self) -> bool:
        return self.status_code is not None and 400 <= self.status_code < 500


class ParseError(NewsRelayError):
    """A single feed entry could not be turned into an article."""


class DeliveryFailure(NewsRelayError):
    """The delivery sink rejected a payload or was unreachable."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(NewsRelayError):
    """Configuration is invalid for the requested run."""
