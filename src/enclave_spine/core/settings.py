"""
Centralized settings for enclave-spine.

Manifesto:
    One validated settings object is built once at startup and passed down
    to the gateway and the selected backend. Nothing below the entry point
    reads ``os.environ`` directly, so adapters never couple through ambient
    state and tests construct settings explicitly.

All fields can be set via ``ENCLAVE_*`` environment variables (e.g.
``ENCLAVE_DEPLOYMENT_ENVIRONMENT=KUBERNETES``) or through a ``.env`` file.
Backends validate the fields they need with :meth:`EnclaveSettings.require`
when they are constructed, so a misconfigured backend fails before any pass
starts.

Tags:
    enclave-spine, configuration, settings, pydantic, validation

Doc-Types:
    api-reference
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from enclave_spine.core.errors import ConfigError


class DeploymentEnvironment(str, Enum):
    """Supported compute backends. Selected once at startup."""

    AWS = "AWS"
    DOCKER = "DOCKER"
    KUBERNETES = "KUBERNETES"


class EnclaveSettings(BaseSettings):
    """enclave-spine configuration."""

    model_config = SettingsConfigDict(
        env_prefix="ENCLAVE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Backend selection ────────────────────────────────────────
    deployment_environment: DeploymentEnvironment = Field(default=DeploymentEnvironment.AWS)

    # ── Registry (management app) ────────────────────────────────
    management_app_base_url: str = Field(default="")
    management_app_member_id: str = Field(default="")
    management_app_private_key: SecretStr = Field(default=SecretStr(""))
    management_app_token_ttl_seconds: int = Field(default=60)

    # ── ResultStore (trusted output app) ─────────────────────────
    toa_base_url: str = Field(default="")
    toa_basic_auth: SecretStr = Field(default=SecretStr(""), description="user:password")

    legacy_routes: bool = Field(default=False, description="Use /studies/runnable, /runs, /run/<id>")
    http_timeout_seconds: float = Field(default=30.0)

    # ── AWS ──────────────────────────────────────────────────────
    ecs_cluster: str = Field(default="")
    base_task_definition_family: str = Field(default="")
    vpc_subnets: str = Field(default="", description="Comma-separated subnet ids")
    security_groups: str = Field(
        default="",
        description="Comma-separated security group ids",
        validation_alias=AliasChoices("ENCLAVE_SECURITY_GROUPS", "ENCLAVE_SECURITY_GROUP", "security_groups"),
    )
    aws_region: str | None = Field(default=None)
    log_group_prefix: str = Field(
        default="OpenStaxSecureEnclaveStack-ResearchContainerTaskDefResearchContainerLogGroup"
    )
    ignore_deployed: bool = Field(default=False)

    # ── Docker ───────────────────────────────────────────────────
    docker_host: str | None = Field(default=None)
    docker_registry_auth: SecretStr | None = Field(default=None)

    # ── Kubernetes ───────────────────────────────────────────────
    k8s_namespace: str | None = Field(default=None)
    k8s_serviceaccount_path: str = Field(default="/var/run/secrets/kubernetes.io/serviceaccount")
    k8s_in_cluster: bool = Field(default=True)

    # ── Polling ──────────────────────────────────────────────────
    poll_studies_interval_seconds: int = Field(default=30)
    poll_errored_jobs_interval_seconds: int = Field(default=60)

    # ── Observability ────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    @property
    def subnet_list(self) -> list[str]:
        return _split_csv(self.vpc_subnets)

    @property
    def security_group_list(self) -> list[str]:
        return _split_csv(self.security_groups)

    def require(self, *names: str) -> None:
        """Raise :class:`ConfigError` naming every listed field that is empty."""
        missing = []
        for name in names:
            value: Any = getattr(self, name)
            if isinstance(value, SecretStr):
                value = value.get_secret_value()
            if value is None or value == "":
                missing.append(f"ENCLAVE_{name.upper()}")
        if missing:
            raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

    def redacted(self) -> dict[str, Any]:
        """Settings as a plain dict with secrets masked, for display."""
        data = self.model_dump(mode="json")
        for name in ("management_app_private_key", "toa_basic_auth", "docker_registry_auth"):
            if data.get(name):
                data[name] = "**********"
        return data


def _split_csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


_settings_cache: dict[str, EnclaveSettings] = {}


def get_settings(*, _force_reload: bool = False) -> EnclaveSettings:
    """Load, validate, and cache an :class:`EnclaveSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = EnclaveSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()


__all__ = [
    "DeploymentEnvironment",
    "EnclaveSettings",
    "get_settings",
    "clear_settings_cache",
]
