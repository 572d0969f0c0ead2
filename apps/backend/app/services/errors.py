from __future__ import annotations


class ServiceError(RuntimeError):
    """Base error for service-layer failures that map to HTTP responses."""

    status_code: int = 400

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.__class__.__name__
        super().__init__(self.message)


class InvalidRequestError(ServiceError):
    status_code = 400


class ResearchUnavailableError(ServiceError):
    status_code = 502


class ResearchProviderError(RuntimeError):
    """The deep-research provider failed, timed out, or returned no usable payload."""


class DesignGenerationError(RuntimeError):
    """Structured generation for a design exhausted its retries."""
