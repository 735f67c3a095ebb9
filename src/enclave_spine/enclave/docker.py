"""
Local Docker backend.

Jobs run as labelled containers on a single Docker host. Intended for
development and small on-premise deployments.

Architecture:

    .. code-block:: text

        launch_study(job, endpoint)
          ├── images.pull(job image, auth_config from ENCLAVE_DOCKER_REGISTRY_AUTH)
          ├── containers.create(name=research-container-<jobId>, labels, env)
          └── container.start()

        deployed  = managed containers with status "running"
        cleanup   = remove managed containers that completed or exited with 0
        error scan = managed containers exited with a non-zero code → JOB-ERRORED

    The filter here only launches jobs the ResultStore already knows about
    and that are not running. This backend does not suppress duplicate
    JOB-ERRORED reports: a failed container is reported on every scan until
    it is removed by hand.

Tags:
    enclave-spine, enclave, docker, containers

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import base64
import json
from typing import Any

import docker
from docker.errors import DockerException
from docker.models.containers import Container

from enclave_spine.core.errors import CleanupError, ConfigError, LaunchError
from enclave_spine.core.logging import get_logger
from enclave_spine.core.settings import EnclaveSettings
from enclave_spine.enclave.base import Enclave, ScanResult, join_all
from enclave_spine.enclave.labels import (
    INSTANCE_LABEL,
    MANAGED_SELECTOR,
    RESULT_ENDPOINT_ENV,
    container_name,
    job_labels,
    label_selector,
    matches_labels,
)
from enclave_spine.upstream.gateway import UpstreamGateway
from enclave_spine.upstream.models import Job, KnownJobsResponse, ReadyJobsResponse

logger = get_logger(__name__)


def _exit_code(container: Container) -> int | None:
    return container.attrs.get("State", {}).get("ExitCode")


class DockerEnclave(Enclave[Container]):
    """Containers on one Docker daemon, discovered by label."""

    backend_name = "docker"

    def __init__(
        self,
        settings: EnclaveSettings,
        gateway: UpstreamGateway,
        *,
        client: docker.DockerClient | None = None,
    ) -> None:
        super().__init__(settings, gateway)
        if client is not None:
            self.client = client
        elif settings.docker_host:
            self.client = docker.DockerClient(base_url=settings.docker_host)
        else:
            self.client = docker.from_env()
        self._auth_config = self._load_registry_auth(settings)

    @staticmethod
    def _load_registry_auth(settings: EnclaveSettings) -> dict[str, str] | None:
        if settings.docker_registry_auth is None:
            return None
        raw = settings.docker_registry_auth.get_secret_value().strip()
        if not raw:
            return None
        try:
            if not raw.startswith("{"):
                raw = base64.b64decode(raw).decode("utf-8")
            auth = json.loads(raw)
        except ValueError as exc:
            raise ConfigError(
                "ENCLAVE_DOCKER_REGISTRY_AUTH is neither JSON nor base64-encoded JSON", cause=exc
            ) from exc
        if not isinstance(auth, dict):
            raise ConfigError("ENCLAVE_DOCKER_REGISTRY_AUTH must be a JSON object")
        return auth

    # ── Discovery ────────────────────────────────────────────────────

    async def get_all_studies_in_enclave(self) -> list[Container]:
        """Every managed container, running or not. Empty if the daemon is unreachable."""
        try:
            containers = await asyncio.to_thread(
                self.client.containers.list,
                all=True,
                filters={"label": label_selector(MANAGED_SELECTOR).split(",")},
            )
        except DockerException as exc:
            logger.error("docker_container_listing_failed", error=str(exc))
            return []
        managed = [c for c in containers if matches_labels(c.labels, MANAGED_SELECTOR)]
        logger.info("docker_containers_listed", count=len(managed))
        return managed

    async def get_deployed_studies(self) -> list[Container]:
        containers = await self.get_all_studies_in_enclave()
        return [c for c in containers if c.status == "running"]

    def filter_jobs_in_enclave(
        self,
        ready: ReadyJobsResponse,
        known: KnownJobsResponse,
        deployed: list[Container],
    ) -> list[Job]:
        known_ids = set(known.job_ids)
        running_ids = {c.labels.get(INSTANCE_LABEL) for c in deployed}
        return [
            job for job in ready.jobs
            if job.job_id in known_ids and job.job_id not in running_ids
        ]

    # ── Launch ───────────────────────────────────────────────────────

    async def launch_study(self, job: Job, result_endpoint: str) -> None:
        try:
            await asyncio.to_thread(self._pull_image, job.container_location)
            container = await asyncio.to_thread(
                self.client.containers.create,
                job.container_location,
                name=container_name(job.job_id),
                labels=job_labels(job.job_id, job.title),
                environment=[f"{RESULT_ENDPOINT_ENV}={result_endpoint}"],
                detach=True,
            )
            await asyncio.to_thread(container.start)
        except DockerException as exc:
            raise LaunchError(
                f"Failed to start container for job {job.job_id}: {exc}", cause=exc
            ).with_context(job_id=job.job_id, backend=self.backend_name) from exc
        logger.info("docker_container_started", job_id=job.job_id, container_id=container.id)

    def _pull_image(self, image: str) -> None:
        logger.info("docker_pulling_image", image=image)
        self.client.images.pull(image, auth_config=self._auth_config)

    # ── Cleanup ──────────────────────────────────────────────────────

    async def cleanup(self, ready: ReadyJobsResponse) -> None:
        containers = await self.get_all_studies_in_enclave()
        finished = [c for c in containers if self._is_finished(c)]
        logger.info("docker_finished_containers_found", count=len(finished))
        await join_all((self._remove(c) for c in finished), operation="remove_container")

    @staticmethod
    def _is_finished(container: Container) -> bool:
        if container.status == "completed":
            return True
        return container.status == "exited" and _exit_code(container) == 0

    async def _remove(self, container: Container) -> None:
        job_id = container.labels.get(INSTANCE_LABEL)
        try:
            await asyncio.to_thread(container.remove)
        except DockerException as exc:
            error = CleanupError(
                f"Failed to remove container {container.name}: {exc}", cause=exc
            ).with_context(job_id=job_id, backend=self.backend_name)
            logger.error("docker_container_remove_failed", error=error.to_dict())
            return
        logger.info("docker_container_removed", job_id=job_id, container=container.name)

    # ── Error scan ───────────────────────────────────────────────────

    async def check_for_errored_jobs(self) -> ScanResult:
        scan = ScanResult()
        containers = await self.get_all_studies_in_enclave()
        failed = [
            c for c in containers
            if c.status == "exited" and (_exit_code(c) or 0) != 0
        ]
        await join_all(
            (self._report(c, scan) for c in failed),
            operation="report_errored_container",
        )
        logger.info("docker_error_scan_complete", **scan.to_dict())
        return scan

    async def _report(self, container: Container, scan: ScanResult) -> None:
        job_id = container.labels.get(INSTANCE_LABEL)
        if not job_id:
            logger.warning("docker_container_without_instance", container=container.name)
            return
        state: dict[str, Any] = container.attrs.get("State", {})
        await self.report_errored(
            job_id, f"Container {container.short_id} exited with message: {state.get('Error', '')}"
        )
        scan.reported.append(job_id)


__all__ = ["DockerEnclave"]
