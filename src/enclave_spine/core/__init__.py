"""Ambient primitives shared by every enclave-spine module: errors, logging, settings."""

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
from enclave_spine.core.logging import LogContext, configure_logging, get_logger
from enclave_spine.core.settings import (
    DeploymentEnvironment,
    EnclaveSettings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    "BackendError",
    "BackendListError",
    "CleanupError",
    "ConfigError",
    "EnclaveError",
    "ErrorCategory",
    "ErrorContext",
    "LaunchError",
    "StatusUpdateResult",
    "UpstreamAuthError",
    "UpstreamError",
    "UpstreamProtocolError",
    "LogContext",
    "configure_logging",
    "get_logger",
    "DeploymentEnvironment",
    "EnclaveSettings",
    "clear_settings_cache",
    "get_settings",
]
