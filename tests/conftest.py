"""
Shared pytest fixtures and configuration for enclave-spine tests.

This module provides:
- An explicit ``EnclaveSettings`` fixture (no environment or .env lookup)
- A session-scoped RSA private key for Registry JWT signing
- A fake ``UpstreamGateway`` whose calls are ``AsyncMock`` objects
- Auto-applied ``unit`` / ``integration`` markers by test location
"""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from enclave_spine.core.errors import StatusUpdateResult
from enclave_spine.core.settings import EnclaveSettings, clear_settings_cache
from enclave_spine.upstream.gateway import UpstreamGateway
from enclave_spine.upstream.models import JobStatusResponse, KnownJobsResponse, ReadyJobsResponse

TOA_BASE_URL = "https://toa.example.test"
MANAGEMENT_APP_BASE_URL = "https://mgmt.example.test"


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location and explicit markers."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture(scope="session")
def rsa_private_key_pem() -> str:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture
def settings(rsa_private_key_pem: str) -> EnclaveSettings:
    """Fully populated settings for every backend."""
    return EnclaveSettings(
        _env_file=None,
        management_app_base_url=MANAGEMENT_APP_BASE_URL,
        management_app_member_id="member-1",
        management_app_private_key=rsa_private_key_pem,
        toa_base_url=TOA_BASE_URL,
        toa_basic_auth="user:secret",
        ecs_cluster="research-cluster",
        base_task_definition_family="research-base",
        vpc_subnets="subnet-a, subnet-b",
        security_groups="sg-1",
        aws_region="us-east-1",
        k8s_namespace="research",
    )


@pytest.fixture(autouse=True)
def clean_settings_cache() -> Generator[None, None, None]:
    clear_settings_cache()
    yield
    clear_settings_cache()


# =============================================================================
# Gateway
# =============================================================================


@pytest.fixture
def fake_gateway() -> MagicMock:
    """An ``UpstreamGateway`` stand-in with empty upstream state.

    Tests set ``get_ready_jobs.return_value`` etc. to shape a pass; every
    status push succeeds unless overridden.
    """
    gateway = MagicMock(spec=UpstreamGateway)
    gateway.get_ready_jobs = AsyncMock(return_value=ReadyJobsResponse(jobs=[]))
    gateway.get_known_jobs = AsyncMock(return_value=KnownJobsResponse(jobs=[]))
    gateway.get_job_status = AsyncMock(return_value=JobStatusResponse(status="JOB-RUNNING"))
    gateway.update_job_status = AsyncMock(return_value=StatusUpdateResult(success=True))
    gateway.send_logs = AsyncMock(return_value=StatusUpdateResult(success=True))
    gateway.result_endpoint = MagicMock(side_effect=lambda job_id: f"{TOA_BASE_URL}/api/job/{job_id}")
    return gateway
