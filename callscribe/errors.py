"""
Error taxonomy for the transcription pipeline.

Every error carries a ``retryable`` flag used by the job orchestrator to decide
between re-queueing an attempt and failing it for good, and a ``status_code``
used by the HTTP surface when the error reaches a caller.
"""

import enum
from typing import Any

# -------------------------------------------------------------- #
# Base Error
# -------------------------------------------------------------- #


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    retryable: bool = False
    status_code: int = 500
    stage: str | None = None

    def __init__(
        self,
        message: str,
        retryable: bool | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for job metadata and API responses."""
        return {
            "error": self.message,
            "type": type(self).__name__,
            "retryable": self.retryable,
        }


# -------------------------------------------------------------- #
# Access / Lookup Errors
# -------------------------------------------------------------- #


class AccessDenied(PipelineError):
    """Caller neither owns the call nor shares a group with its owner."""

    status_code = 403
    stage = "fetch"


class NotFound(PipelineError):
    """Call, transcript or audio object does not exist."""

    status_code = 404
    stage = "fetch"


class ConflictError(PipelineError):
    """A transcription is already completed or in flight for the call."""

    status_code = 409


class StorageUnavailable(PipelineError):
    """Object storage could not mint a retrieval URL."""

    retryable = True
    status_code = 503
    stage = "fetch"


# -------------------------------------------------------------- #
# Provider Errors
# -------------------------------------------------------------- #


class ProviderErrorCode(enum.Enum):
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    UNSUPPORTED_FORMAT = "UNSUPPORTED_FORMAT"
    API_ERROR = "API_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
    NETWORK_ERROR = "NETWORK_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ProviderError(PipelineError):
    """Speech-to-text provider failure."""

    status_code = 502
    stage = "transcribe"

    def __init__(
        self,
        code: ProviderErrorCode,
        message: str,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
        provider: str | None = None,
    ):
        super().__init__(message, retryable=retryable, details=details)
        self.code = code
        self.provider = provider

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["code"] = self.code.value
        data["provider"] = self.provider
        return data


def provider_error_from_status(
    status: int, body: str, provider: str | None = None
) -> ProviderError:
    """
    Map an HTTP status returned by a provider onto a ProviderError.

    Args:
        status: HTTP status code of the provider response
        body: Response body, kept in the error details
        provider: Name of the provider that answered

    Returns:
        ProviderError with the matching code and retryable flag
    """
    details = {"status": status, "body": body[:500]}

    if status == 401:
        return ProviderError(
            ProviderErrorCode.API_ERROR, "Invalid API key", False, details, provider
        )
    if status == 402:
        return ProviderError(
            ProviderErrorCode.INSUFFICIENT_CREDITS,
            "Insufficient credits",
            False,
            details,
            provider,
        )
    if status == 413:
        return ProviderError(
            ProviderErrorCode.FILE_TOO_LARGE, "Audio file too large", False, details, provider
        )
    if status == 429:
        return ProviderError(
            ProviderErrorCode.RATE_LIMIT, "Rate limit exceeded", True, details, provider
        )
    if status >= 500:
        return ProviderError(
            ProviderErrorCode.API_ERROR,
            f"Provider server error ({status})",
            True,
            details,
            provider,
        )
    return ProviderError(
        ProviderErrorCode.API_ERROR, f"Provider request failed ({status})", False, details, provider
    )


# -------------------------------------------------------------- #
# Non-fatal Step Errors
# -------------------------------------------------------------- #


class TranslationFailure(PipelineError):
    """Translation could not be produced. Never fails a job."""

    stage = "translate"


class CorrectionRuleInvalid(PipelineError):
    """A single correction rule could not be compiled. Never fails a job."""

    stage = "correct"


class EmbeddingFailure(PipelineError):
    """Embedding generation failed. Never fails a job."""

    stage = "embed"


# -------------------------------------------------------------- #
# Job-level Errors
# -------------------------------------------------------------- #


class PipelineTimeout(PipelineError):
    """Attempt exceeded the wall-clock ceiling."""

    status_code = 504

    def __init__(self, timeout_seconds: float, stage: str | None = None):
        super().__init__(
            f"Transcription timed out after {timeout_seconds:g}s",
            retryable=False,
            details={"timeout_seconds": timeout_seconds, "timeout": True},
        )
        self.stage = stage


class PersistenceFailure(PipelineError):
    """Relational store write failed."""

    status_code = 500
    stage = "save"


class ServiceUnavailable(PipelineError):
    """The service is shutting down and admits no new work."""

    retryable = True
    status_code = 503
