"""
Structured error types for enclave-spine.

Every failure the reconciler can hit maps onto one class in a small typed
hierarchy. Each error carries a category, a retry hint, structured context
(job id, operation, backend, URL, HTTP status) and the underlying cause, so
a log line is enough to diagnose the failure without replaying the call.

Manifesto:
    - **Typed Error Hierarchy:** Upstream, backend and config failures are
      different classes with different pass-level consequences
    - **Rich Context:** Errors carry job_id/operation/backend for logging
    - **Error Chaining:** The original SDK/HTTP exception is kept as cause

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       EnclaveError                               │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ConfigError        UpstreamError          BackendError         │
        │  (CONFIG)           (SOURCE)               (ORCHESTRATION)      │
        │                         │                       │                │
        │                 UpstreamAuthError        LaunchError            │
        │                 UpstreamProtocolError    BackendListError       │
        │                                          CleanupError           │
        └─────────────────────────────────────────────────────────────────┘

    Pass-level consequences:

        UpstreamAuthError      → fatal, aborts the whole pass
        UpstreamProtocolError  → fatal, snapshot cannot be trusted
        LaunchError            → caught per job, reported JOB-ERRORED
        BackendListError       → backend-specific (tolerated or fatal)
        status push rejected   → StatusUpdateResult(success=False), no raise

Examples:
    >>> err = LaunchError("image pull failed").with_context(job_id="j1")
    >>> err.context.job_id
    'j1'
    >>> err.to_dict()["category"]
    'ORCHESTRATION'

Tags:
    error-handling, exception-hierarchy, error-context, enclave-spine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    NETWORK = "NETWORK"              # Connection, timeout, DNS
    SOURCE = "SOURCE"                # Registry / ResultStore misbehaving
    VALIDATION = "VALIDATION"        # Response shape violations
    CONFIG = "CONFIG"                # Missing config, invalid settings
    AUTH = "AUTH"                    # Credentials absent or unusable
    ORCHESTRATION = "ORCHESTRATION"  # Compute backend failures
    INTERNAL = "INTERNAL"            # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata context for errors.

    Only non-None fields are emitted by :meth:`to_dict`, so a context can be
    attached early and filled in as the error travels up the stack.

    Attributes:
        job_id: Job the failure concerns
        operation: Operation that failed (``launch``, ``get_ready_jobs``, ...)
        backend: Compute backend name (``aws``, ``docker``, ``kubernetes``)
        url: URL that was being accessed
        http_status: HTTP status code if applicable
        metadata: Additional key-value pairs
    """

    job_id: str | None = None
    operation: str | None = None
    backend: str | None = None
    url: str | None = None
    http_status: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["job_id", "operation", "backend", "url", "http_status"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class EnclaveError(Exception):
    """
    Base exception for all enclave-spine errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers
    may override either per instance.

    Examples:
        >>> error = EnclaveError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.retryable
        False
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> EnclaveError:
        """
        Add context to this error (fluent API).

        Usage:
            raise LaunchError("Failed").with_context(job_id="j1", backend="aws")
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION
# =============================================================================


class ConfigError(EnclaveError):
    """Missing or invalid configuration. Never retryable."""

    default_category = ErrorCategory.CONFIG


# =============================================================================
# UPSTREAM (Registry / ResultStore)
# =============================================================================


class UpstreamError(EnclaveError):
    """Base class for failures talking to the Registry or the ResultStore."""

    default_category = ErrorCategory.SOURCE


class UpstreamAuthError(UpstreamError):
    """A signing credential or shared secret is absent, or the token came out empty."""

    default_category = ErrorCategory.AUTH


class UpstreamProtocolError(UpstreamError):
    """
    Non-success HTTP status, unparseable body, or a body that does not match
    the expected shape.

    Reads from the Registry and ResultStore are a strict contract: any schema
    drift is a hard failure, never a best-effort parse.
    """

    default_category = ErrorCategory.SOURCE
    default_retryable = True


# =============================================================================
# COMPUTE BACKEND
# =============================================================================


class BackendError(EnclaveError):
    """Base class for compute backend failures."""

    default_category = ErrorCategory.ORCHESTRATION


class LaunchError(BackendError):
    """Launching a single job failed. Caught per job by the driver."""

    default_retryable = True


class BackendListError(BackendError):
    """Enumerating deployed or terminated resources failed."""

    default_retryable = True


class CleanupError(BackendError):
    """Deleting one resource failed. Logged, never aborts a cleanup batch."""

    default_retryable = True


# =============================================================================
# NON-EXCEPTION RESULTS
# =============================================================================


@dataclass(frozen=True)
class StatusUpdateResult:
    """Outcome of a ResultStore status push.

    A rejected push is surfaced as ``success=False`` rather than an exception
    so the caller decides whether it is fatal. The driver does not retry
    within the same pass.
    """

    success: bool


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "EnclaveError",
    "ConfigError",
    "UpstreamError",
    "UpstreamAuthError",
    "UpstreamProtocolError",
    "BackendError",
    "LaunchError",
    "BackendListError",
    "CleanupError",
    "StatusUpdateResult",
]
