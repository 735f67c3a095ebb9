"""Backend selection.

The backend is chosen once per process from
``EnclaveSettings.deployment_environment``. Backend modules are imported
lazily so a deployment only needs the SDK of the backend it runs.
"""

from __future__ import annotations

from enclave_spine.core.errors import ConfigError
from enclave_spine.core.logging import get_logger
from enclave_spine.core.settings import DeploymentEnvironment, EnclaveSettings
from enclave_spine.enclave.base import Enclave
from enclave_spine.upstream.gateway import UpstreamGateway

logger = get_logger(__name__)


def create_enclave(settings: EnclaveSettings, gateway: UpstreamGateway) -> Enclave:
    """Instantiate the configured backend."""
    environment = settings.deployment_environment
    logger.info("enclave_selected", deployment_environment=environment.value)

    if environment is DeploymentEnvironment.AWS:
        from enclave_spine.enclave.aws import AWSEnclave

        return AWSEnclave(settings, gateway)

    if environment is DeploymentEnvironment.DOCKER:
        from enclave_spine.enclave.docker import DockerEnclave

        return DockerEnclave(settings, gateway)

    if environment is DeploymentEnvironment.KUBERNETES:
        from enclave_spine.enclave.kube import KubernetesEnclave

        return KubernetesEnclave(settings, gateway)

    raise ConfigError(f"Unsupported deployment environment: {environment}")


__all__ = ["create_enclave"]
