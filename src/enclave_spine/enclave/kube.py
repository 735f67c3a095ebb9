"""
Kubernetes backend.

Each job becomes a namespaced ``batch/v1`` Job whose single pod carries the
``role=toa-access`` label that network policy uses to let it reach the
ResultStore.

Architecture:

    .. code-block:: text

        launch_study(job, endpoint)
          └── BatchV1Api.create_namespaced_job(build_job_manifest(...))

        deployed   = managed Jobs whose pod template has role=toa-access
        cleanup    = Jobs with condition Complete=True:
                       delete pods (instance=<jobId>) first, then the Job
        error scan = managed pods with a terminated container exit code != 0

    Listing failures raise ``BackendListError`` everywhere in this backend,
    including the error scan.

Tags:
    enclave-spine, enclave, kubernetes, batch-job

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException

from enclave_spine.core.errors import BackendListError, CleanupError, ConfigError, LaunchError
from enclave_spine.core.logging import get_logger
from enclave_spine.core.settings import EnclaveSettings
from enclave_spine.enclave.base import Enclave, ScanResult, exclude_job_ids, join_all
from enclave_spine.enclave.labels import (
    INSTANCE_LABEL,
    MANAGED_BY,
    MANAGED_BY_LABEL,
    MANAGED_SELECTOR,
    RESULT_ENDPOINT_ENV,
    ROLE_LABEL,
    TOA_ACCESS_ROLE,
    container_name,
    job_labels,
    label_selector,
    matches_labels,
)
from enclave_spine.upstream.gateway import UpstreamGateway
from enclave_spine.upstream.models import Job, KnownJobsResponse, ReadyJobsResponse

logger = get_logger(__name__)

DEPLOYED_SELECTOR = {**MANAGED_SELECTOR, ROLE_LABEL: TOA_ACCESS_ROLE}


def build_job_manifest(job: Job, namespace: str, result_endpoint: str) -> dict[str, Any]:
    """``batch/v1`` Job manifest for one study."""
    name = container_name(job.job_id)
    labels = job_labels(job.job_id, job.title)
    return {
        "apiVersion": "batch/v1",
        "kind": "Job",
        "metadata": {"name": name, "namespace": namespace, "labels": labels},
        "spec": {
            "template": {
                "metadata": {"labels": {**labels, ROLE_LABEL: TOA_ACCESS_ROLE}},
                "spec": {
                    "containers": [
                        {
                            "name": name,
                            "image": job.container_location,
                            "env": [{"name": RESULT_ENDPOINT_ENV, "value": result_endpoint}],
                        }
                    ],
                    "restartPolicy": "Never",
                },
            },
        },
    }


def _job_instance(job: Any) -> str | None:
    return (job.metadata.labels or {}).get(INSTANCE_LABEL)


def _template_labels(job: Any) -> dict[str, str]:
    template = job.spec.template if job.spec else None
    if template is None or template.metadata is None:
        return {}
    return template.metadata.labels or {}


def _is_complete(job: Any) -> bool:
    conditions = (job.status.conditions if job.status else None) or []
    return any(c.type == "Complete" and c.status == "True" for c in conditions)


def _failed_exit_code(pod: Any) -> int | None:
    """First non-zero terminated exit code among the pod's containers."""
    statuses = (pod.status.container_statuses if pod.status else None) or []
    for status in statuses:
        terminated = status.state.terminated if status.state else None
        if terminated is not None and terminated.exit_code not in (None, 0):
            return terminated.exit_code
    return None


class KubernetesEnclave(Enclave[Any]):
    """Managed ``batch/v1`` Jobs in a single namespace."""

    backend_name = "kubernetes"

    def __init__(
        self,
        settings: EnclaveSettings,
        gateway: UpstreamGateway,
        *,
        batch_api: Any | None = None,
        core_api: Any | None = None,
    ) -> None:
        super().__init__(settings, gateway)
        self.namespace = self._resolve_namespace(settings)
        if batch_api is None or core_api is None:
            self._load_config(settings)
        self.batch = batch_api or k8s_client.BatchV1Api()
        self.core = core_api or k8s_client.CoreV1Api()

    @staticmethod
    def _resolve_namespace(settings: EnclaveSettings) -> str:
        if settings.k8s_namespace:
            return settings.k8s_namespace
        namespace_file = Path(settings.k8s_serviceaccount_path) / "namespace"
        if not namespace_file.exists():
            raise ConfigError(
                f"Namespace file not found at {namespace_file}; set ENCLAVE_K8S_NAMESPACE"
            )
        return namespace_file.read_text(encoding="utf-8").strip()

    @staticmethod
    def _load_config(settings: EnclaveSettings) -> None:
        try:
            if settings.k8s_in_cluster:
                k8s_config.load_incluster_config()
            else:
                k8s_config.load_kube_config()
        except ConfigException as exc:
            raise ConfigError(f"Could not load Kubernetes configuration: {exc}", cause=exc) from exc

    # ── Discovery ────────────────────────────────────────────────────

    async def _list(self, kind: str, call: Any, selector: dict[str, str]) -> list[Any]:
        try:
            result = await asyncio.to_thread(
                call, self.namespace, label_selector=label_selector(selector)
            )
        except ApiException as exc:
            raise BackendListError(
                f"Error listing {kind} in namespace {self.namespace}: {exc.reason}", cause=exc
            ).with_context(backend=self.backend_name, operation=f"list_{kind}") from exc
        items = result.items or []
        logger.info("k8s_resources_listed", kind=kind, count=len(items))
        return items

    async def get_all_studies_in_enclave(self) -> list[Any]:
        jobs = await self._list("jobs", self.batch.list_namespaced_job, MANAGED_SELECTOR)
        return [j for j in jobs if matches_labels(j.metadata.labels, MANAGED_SELECTOR)]

    async def get_deployed_studies(self) -> list[Any]:
        jobs = await self.get_all_studies_in_enclave()
        return [j for j in jobs if matches_labels(_template_labels(j), DEPLOYED_SELECTOR)]

    def filter_jobs_in_enclave(
        self,
        ready: ReadyJobsResponse,
        known: KnownJobsResponse,
        deployed: list[Any],
    ) -> list[Job]:
        return exclude_job_ids(ready.jobs, known.job_ids, (_job_instance(j) for j in deployed))

    # ── Launch ───────────────────────────────────────────────────────

    async def launch_study(self, job: Job, result_endpoint: str) -> None:
        manifest = build_job_manifest(job, self.namespace, result_endpoint)
        logger.info("k8s_creating_job", job_id=job.job_id, name=manifest["metadata"]["name"])
        try:
            await asyncio.to_thread(
                self.batch.create_namespaced_job, self.namespace, body=manifest
            )
        except ApiException as exc:
            raise LaunchError(
                f"Failed to deploy {job.title} with job id {job.job_id}: {exc.reason}", cause=exc
            ).with_context(
                job_id=job.job_id, backend=self.backend_name, http_status=exc.status
            ) from exc
        logger.info("k8s_job_created", job_id=job.job_id)

    # ── Cleanup ──────────────────────────────────────────────────────

    async def cleanup(self, ready: ReadyJobsResponse) -> None:
        jobs = await self.get_all_studies_in_enclave()
        complete = [j for j in jobs if _is_complete(j)]
        logger.info("k8s_complete_jobs_found", count=len(complete))
        await join_all((self._delete_job(j) for j in complete), operation="delete_job")

    async def _delete_job(self, job: Any) -> None:
        name = job.metadata.name
        job_id = _job_instance(job)
        await self._delete_pods(job_id)
        try:
            await asyncio.to_thread(
                self.batch.delete_namespaced_job,
                name,
                self.namespace,
                propagation_policy="Background",
            )
        except ApiException as exc:
            error = CleanupError(f"Failed to delete job {name}: {exc.reason}", cause=exc).with_context(
                job_id=job_id, backend=self.backend_name
            )
            logger.error("k8s_job_delete_failed", error=error.to_dict())
            return
        logger.info("k8s_job_deleted", job_id=job_id, name=name)

    async def _delete_pods(self, job_id: str | None) -> None:
        selector = {INSTANCE_LABEL: job_id or "", MANAGED_BY_LABEL: MANAGED_BY}
        try:
            pods = await self._list("pods", self.core.list_namespaced_pod, selector)
            for pod in pods:
                await asyncio.to_thread(
                    self.core.delete_namespaced_pod, pod.metadata.name, self.namespace
                )
                logger.info("k8s_pod_deleted", job_id=job_id, pod=pod.metadata.name)
        except (ApiException, BackendListError) as exc:
            logger.warning("k8s_pod_delete_failed", job_id=job_id, error=str(exc))

    # ── Error scan ───────────────────────────────────────────────────

    async def check_for_errored_jobs(self) -> ScanResult:
        scan = ScanResult()
        # job listing failures stay fatal; pods alone decide what is reported
        await self.get_all_studies_in_enclave()
        pods = await self._list("pods", self.core.list_namespaced_pod, MANAGED_SELECTOR)

        # one report per job even when the Job retried through several pods
        failed: dict[str, tuple[str, int]] = {}
        for pod in pods:
            job_id = (pod.metadata.labels or {}).get(INSTANCE_LABEL)
            if not job_id or job_id in failed:
                continue
            exit_code = _failed_exit_code(pod)
            if exit_code is not None:
                failed[job_id] = (pod.metadata.name, exit_code)

        await join_all(
            (self._report(job_id, pod_name, code, scan) for job_id, (pod_name, code) in failed.items()),
            operation="report_errored_pod",
        )
        logger.info("k8s_error_scan_complete", **scan.to_dict())
        return scan

    async def _report(self, job_id: str, pod_name: str, exit_code: int, scan: ScanResult) -> None:
        await self.report_errored(
            job_id, f"Pod {pod_name} terminated with exit code {exit_code}"
        )
        scan.reported.append(job_id)


__all__ = ["KubernetesEnclave", "build_job_manifest"]
