"""Tests for enclave_spine.core.errors module."""

import dataclasses

import pytest

from enclave_spine.core.errors import (
    BackendError,
    BackendListError,
    CleanupError,
    ConfigError,
    EnclaveError,
    ErrorCategory,
    ErrorContext,
    LaunchError,
    StatusUpdateResult,
    UpstreamAuthError,
    UpstreamError,
    UpstreamProtocolError,
)


class TestErrorContext:
    """Test ErrorContext dataclass."""

    def test_create_empty_context(self):
        ctx = ErrorContext()
        assert ctx.job_id is None
        assert ctx.metadata == {}
        assert ctx.to_dict() == {}

    def test_to_dict_includes_only_set_fields(self):
        ctx = ErrorContext(job_id="j1", http_status=502, metadata={"attempt": 2})
        d = ctx.to_dict()
        assert d == {"job_id": "j1", "http_status": 502, "attempt": 2}
        assert "backend" not in d


class TestEnclaveError:
    """Test the base error."""

    def test_defaults(self):
        error = EnclaveError("boom")
        assert str(error) == "boom"
        assert error.message == "boom"
        assert error.category == ErrorCategory.INTERNAL
        assert error.retryable is False

    def test_cause_is_chained(self):
        cause = RuntimeError("socket closed")
        error = EnclaveError("failed", cause=cause)
        assert error.__cause__ is cause
        assert error.to_dict()["cause"] == "socket closed"

    def test_with_context_sets_known_fields_and_metadata(self):
        error = LaunchError("failed").with_context(job_id="j1", backend="aws", image="x:1")
        assert error.context.job_id == "j1"
        assert error.context.backend == "aws"
        assert error.context.metadata == {"image": "x:1"}

    def test_with_context_returns_same_instance(self):
        error = LaunchError("failed")
        assert error.with_context(job_id="j1") is error

    def test_to_dict(self):
        error = BackendListError("cannot list").with_context(backend="kubernetes")
        d = error.to_dict()
        assert d["error_type"] == "BackendListError"
        assert d["message"] == "cannot list"
        assert d["category"] == "ORCHESTRATION"
        assert d["retryable"] is True
        assert d["context"] == {"backend": "kubernetes"}

    def test_repr(self):
        assert repr(ConfigError("missing")) == "ConfigError('missing', category=CONFIG)"


class TestHierarchy:
    """Categories and retryability of the concrete errors."""

    @pytest.mark.parametrize(
        "error_cls, parent, category, retryable",
        [
            (ConfigError, EnclaveError, ErrorCategory.CONFIG, False),
            (UpstreamAuthError, UpstreamError, ErrorCategory.AUTH, False),
            (UpstreamProtocolError, UpstreamError, ErrorCategory.SOURCE, True),
            (LaunchError, BackendError, ErrorCategory.ORCHESTRATION, True),
            (BackendListError, BackendError, ErrorCategory.ORCHESTRATION, True),
            (CleanupError, BackendError, ErrorCategory.ORCHESTRATION, True),
        ],
    )
    def test_defaults(self, error_cls, parent, category, retryable):
        error = error_cls("x")
        assert isinstance(error, parent)
        assert isinstance(error, EnclaveError)
        assert error.category == category
        assert error.retryable is retryable

    def test_retryable_override(self):
        assert LaunchError("x", retryable=False).retryable is False


class TestStatusUpdateResult:
    def test_is_frozen(self):
        result = StatusUpdateResult(success=False)
        with pytest.raises(dataclasses.FrozenInstanceError):
            result.success = True  # type: ignore[misc]
