"""Tests for enclave_spine.core.settings."""

import pytest

from enclave_spine.core.errors import ConfigError
from enclave_spine.core.settings import (
    DeploymentEnvironment,
    EnclaveSettings,
    get_settings,
)


class TestDefaults:
    def test_defaults(self):
        settings = EnclaveSettings(_env_file=None)
        assert settings.deployment_environment is DeploymentEnvironment.AWS
        assert settings.legacy_routes is False
        assert settings.management_app_token_ttl_seconds == 60
        assert settings.poll_studies_interval_seconds == 30
        assert settings.poll_errored_jobs_interval_seconds == 60
        assert settings.k8s_serviceaccount_path == "/var/run/secrets/kubernetes.io/serviceaccount"
        assert settings.ignore_deployed is False


class TestEnvironment:
    def test_reads_prefixed_variables(self, monkeypatch):
        monkeypatch.setenv("ENCLAVE_DEPLOYMENT_ENVIRONMENT", "KUBERNETES")
        monkeypatch.setenv("ENCLAVE_TOA_BASE_URL", "https://toa")
        monkeypatch.setenv("ENCLAVE_LEGACY_ROUTES", "true")
        settings = EnclaveSettings(_env_file=None)
        assert settings.deployment_environment is DeploymentEnvironment.KUBERNETES
        assert settings.toa_base_url == "https://toa"
        assert settings.legacy_routes is True

    def test_legacy_single_security_group(self, monkeypatch):
        monkeypatch.setenv("ENCLAVE_SECURITY_GROUP", "sg-legacy")
        settings = EnclaveSettings(_env_file=None)
        assert settings.security_group_list == ["sg-legacy"]

    def test_rejects_unknown_backend(self, monkeypatch):
        monkeypatch.setenv("ENCLAVE_DEPLOYMENT_ENVIRONMENT", "NOMAD")
        with pytest.raises(ValueError):
            EnclaveSettings(_env_file=None)

    def test_get_settings_is_cached(self, monkeypatch):
        monkeypatch.setenv("ENCLAVE_ECS_CLUSTER", "first")
        first = get_settings()
        monkeypatch.setenv("ENCLAVE_ECS_CLUSTER", "second")
        assert get_settings() is first
        assert get_settings(_force_reload=True).ecs_cluster == "second"


class TestHelpers:
    def test_csv_lists(self):
        settings = EnclaveSettings(_env_file=None, vpc_subnets=" a, b ,,c", security_groups="sg-1,sg-2")
        assert settings.subnet_list == ["a", "b", "c"]
        assert settings.security_group_list == ["sg-1", "sg-2"]

    def test_require_names_every_missing_variable(self):
        settings = EnclaveSettings(_env_file=None, ecs_cluster="c")
        with pytest.raises(ConfigError) as exc_info:
            settings.require("ecs_cluster", "vpc_subnets", "toa_basic_auth")
        message = str(exc_info.value)
        assert "ENCLAVE_VPC_SUBNETS" in message
        assert "ENCLAVE_TOA_BASIC_AUTH" in message
        assert "ENCLAVE_ECS_CLUSTER" not in message

    def test_require_passes_when_set(self, settings):
        settings.require("ecs_cluster", "management_app_private_key")

    def test_redacted_masks_secrets(self, settings):
        data = settings.redacted()
        assert data["toa_basic_auth"] == "**********"
        assert data["management_app_private_key"] == "**********"
        assert data["toa_base_url"] == settings.toa_base_url
        assert "user:secret" not in str(data)
