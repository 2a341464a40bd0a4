"""Error taxonomy shared by stores, providers and pipelines.

The message of every error is a compact reason code (``story_empty``,
``clip_timeout:<job id>``, ``image_http_400:...``) because it is surfaced
verbatim in a task's ``error`` field for polling clients.
"""

from typing import Optional


class TaleweaverError(Exception):
    """Base class for all errors raised by taleweaver."""


class ConfigurationError(TaleweaverError):
    """Missing credential, endpoint, session id or namespace. Never retried."""


class InputValidationError(TaleweaverError):
    """A job input or a required session artifact is missing or empty."""


class LLMOutputError(TaleweaverError):
    """Model output did not contain a parseable JSON object."""


class ProviderError(TaleweaverError):
    """An external generation provider call failed."""


class ProviderHTTPError(ProviderError):
    """Provider answered with a non-2xx status."""

    def __init__(self, prefix: str, status_code: int, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"{prefix}_http_{status_code}:{body[:800]}")


class TransientNetworkError(ProviderError):
    """Connection reset, timeout or DNS failure. Eligible for retry."""


class ProviderResponseError(ProviderError):
    """Provider answered 2xx but without the field we need."""


class ExternalJobError(ProviderError):
    """A remote asynchronous job reached a failed terminal state."""

    def __init__(self, message: str, job_id: Optional[str] = None) -> None:
        self.job_id = job_id
        super().__init__(message)


class ExternalJobTimeout(ExternalJobError):
    """A remote asynchronous job did not finish within the poll timeout."""


class AllUnitsFailedError(TaleweaverError):
    """Every unit of a batch pipeline failed."""
