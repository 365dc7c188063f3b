"""
Custom exceptions for the trail import pipeline with structured error context.

Every exception carries a ``context`` dictionary so failures can be logged
and stored on job records without losing the provider, region or job they
belong to.

Exception Hierarchy:
    ImportPipelineError (base)
    ├── ProviderError
    │   ├── ProviderRequestError
    │   ├── NetworkError            (retryable)
    │   ├── RateLimitError          (retryable)
    │   ├── AuthenticationError     (non-retryable)
    │   ├── ResourceNotFoundError   (non-retryable)
    │   └── CircuitOpenError
    ├── NormalizationError
    │   ├── InvalidCoordinatesError (non-retryable)
    │   └── UnknownSourceError      (non-retryable)
    ├── BatchWriteError
    ├── JobError
    │   ├── JobNotFoundError
    │   ├── JobCreationError
    │   └── InvalidJobTransitionError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime


class ImportPipelineError(Exception):
    """
    Base exception for all import pipeline errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (source, region, job id, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(ImportPipelineError):
    """
    Mixin for errors that should trigger retry logic.

    Provider calls are retried with backoff only when the classified
    error is a RetryableError:
    - Network timeouts
    - Rate limiting (HTTP 429)
    - Service unavailable (HTTP 5xx)
    """
    pass


class NonRetryableError(ImportPipelineError):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors:
    - Authentication failures (HTTP 401, 403)
    - Resource not found (HTTP 404)
    - Records that can never be normalized
    """
    pass


# ============================================================================
# Provider Errors
# ============================================================================

class ProviderError(ImportPipelineError):
    """Base exception for failures talking to an external trail provider."""
    pass


class ProviderRequestError(ProviderError):
    """
    A provider call failed for a reason that is not classified further.

    Context should include:
        - provider: Provider tag (hiking_project, openstreetmap, ...)
        - url: Endpoint that failed
        - region: Region/page being fetched
        - status_code: HTTP status code (if applicable)
    """
    pass


class NetworkError(RetryableError, ProviderError):
    """Network failures and timeouts that should be retried."""
    pass


class RateLimitError(RetryableError, ProviderError):
    """Rate limiting errors (HTTP 429) that should be retried with backoff."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after
        if retry_after:
            self.context["retry_after"] = retry_after


class AuthenticationError(NonRetryableError, ProviderError):
    """Authentication failures (HTTP 401, 403) that should not be retried."""
    pass


class ResourceNotFoundError(NonRetryableError, ProviderError):
    """Resource not found errors (HTTP 404) that should not be retried."""
    pass


class CircuitOpenError(ProviderError):
    """Raised instead of calling a provider whose circuit breaker is open."""
    pass


# ============================================================================
# Normalization Errors
# ============================================================================

class NormalizationError(ImportPipelineError):
    """
    A raw record could not be converted into a canonical trail.

    Context should include:
        - source: Provider tag
        - native_id: Provider-native record id
    """
    pass


class InvalidCoordinatesError(NonRetryableError, NormalizationError):
    """The record has no usable latitude/longitude pair."""
    pass


class UnknownSourceError(NonRetryableError, NormalizationError):
    """No normalization handler or adapter is registered for the source tag."""
    pass


# ============================================================================
# Write Errors
# ============================================================================

class BatchWriteError(ImportPipelineError):
    """
    A batch upsert into the trail store failed as a whole.

    Context should include:
        - batch_size: Number of records in the failed batch
        - table_name: Target table
        - job_id: Owning import job
    """
    pass


# ============================================================================
# Job Errors
# ============================================================================

class JobError(ImportPipelineError):
    """Base exception for import job bookkeeping failures."""
    pass


class JobNotFoundError(JobError):
    """No import job exists with the requested id."""
    pass


class JobCreationError(JobError):
    """The job record itself could not be created; the import cannot start."""
    pass


class InvalidJobTransitionError(JobError):
    """
    A status change would move a job backwards.

    Context should include:
        - job_id: Job being updated
        - current_status / requested_status
    """
    pass
