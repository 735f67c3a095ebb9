"""
Enclave: the backend-agnostic reconciliation driver.

Provides ``Enclave``, the abstract base every compute backend implements, and
the shared ``run_studies`` pass that drives a backend and the
``UpstreamGateway`` through one full reconcile.

Architecture:

    .. code-block:: text

        run_studies()
          ├── gateway.get_ready_jobs()           ← ready
          ├── gateway.get_known_jobs()           ← known
          ├── get_deployed_studies()             ← deployed  (subclass)
          ├── filter_jobs_in_enclave(...)        ← launch set (subclass)
          ├── for job in launch set (Registry order):
          │     ├── launch_study(job, endpoint)  (subclass)
          │     ├── ok  → update_job_status(JOB-PROVISIONING)
          │     └── err → update_job_status(JOB-ERRORED, str(err)), continue
          └── cleanup(ready)                     (subclass, always runs)

        check_for_errored_jobs()                 (subclass, independent pass)

    Per job, within one pass:

        Ready ──► Launching ──┬──► Provisioned
                              └──► LaunchFailed

    No state survives a pass. A job that failed to launch is simply absent
    from ``deployed`` next pass and is retried, unless it was marked
    JOB-ERRORED and so now appears in ``known``.

    .. mermaid::

        classDiagram
            class Enclave {
                <<abstract>>
                +run_studies() PassResult
                +filter_jobs_in_enclave(ready, known, deployed)* list~Job~
                +get_all_studies_in_enclave()* list
                +get_deployed_studies()* list
                +launch_study(job, endpoint)*
                +cleanup(ready)*
                +check_for_errored_jobs()* ScanResult
            }
            Enclave <|-- AWSEnclave
            Enclave <|-- DockerEnclave
            Enclave <|-- KubernetesEnclave

Manifesto:
    The scheduling algorithm is one set difference over a freshly fetched
    snapshot. Launch is best-effort per job; one broken image must never
    block every other ready job in the same pass.

Tags:
    enclave-spine, enclave, reconciliation, driver, adapter-ABC

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from enclave_spine.core.logging import LogContext, get_logger
from enclave_spine.core.settings import EnclaveSettings
from enclave_spine.upstream.gateway import UpstreamGateway
from enclave_spine.upstream.models import (
    JOB_ERRORED,
    JOB_PROVISIONING,
    Job,
    KnownJobsResponse,
    ReadyJobsResponse,
    StatusUpdate,
)

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class PassResult:
    """What one ``run_studies`` pass did."""

    pass_id: str
    ready: list[str] = field(default_factory=list)
    known: list[str] = field(default_factory=list)
    deployed: int = 0
    launch_set: list[str] = field(default_factory=list)
    launched: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    status_push_failures: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pass_id": self.pass_id,
            "ready": len(self.ready),
            "known": len(self.known),
            "deployed": self.deployed,
            "launch_set": self.launch_set,
            "launched": self.launched,
            "failed": self.failed,
            "status_push_failures": self.status_push_failures,
        }


@dataclass
class ScanResult:
    """What one ``check_for_errored_jobs`` pass reported."""

    reported: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"reported": self.reported, "skipped": self.skipped}


async def join_all(
    aws: Iterable[Awaitable[Any]],
    *,
    operation: str,
) -> list[Any]:
    """Run per-item side effects concurrently and wait for every one.

    A failing item is logged and returned as its exception; it never cancels
    its siblings. Returning only after all items settle makes a pass's
    completion a true barrier before the process may be torn down.
    """
    results = await asyncio.gather(*aws, return_exceptions=True)
    for result in results:
        if isinstance(result, Exception):
            logger.error("fan_out_item_failed", operation=operation, error=str(result))
    return list(results)


class Enclave(ABC, Generic[T]):
    """Base class for compute backends with the shared reconcile pass.

    ``T`` is the backend's native record for a deployed resource (a tagged
    ARN mapping, a container, a cluster Job).

    Subclasses MUST implement:
        filter_jobs_in_enclave, get_all_studies_in_enclave,
        get_deployed_studies, launch_study, cleanup, check_for_errored_jobs
    """

    backend_name: str = "abstract"

    def __init__(self, settings: EnclaveSettings, gateway: UpstreamGateway) -> None:
        self.settings = settings
        self.gateway = gateway

    async def run_studies(self) -> PassResult:
        """One full reconcile pass: snapshot, launch, cleanup."""
        result = PassResult(pass_id=uuid.uuid4().hex[:12])
        async with LogContext(pass_id=result.pass_id, backend=self.backend_name):
            ready = await self.gateway.get_ready_jobs()
            result.ready = ready.job_ids
            logger.info("ready_jobs_found", count=len(ready.jobs), job_ids=ready.job_ids)

            known = await self.gateway.get_known_jobs()
            result.known = known.job_ids
            logger.info("known_jobs_found", count=len(known.jobs), job_ids=known.job_ids)

            try:
                deployed = await self.get_deployed_studies()
                result.deployed = len(deployed)
                logger.info("deployed_studies_found", count=len(deployed))

                launch_set = self.filter_jobs_in_enclave(ready, known, deployed)
                result.launch_set = [job.job_id for job in launch_set]
                logger.info(
                    "launch_set_computed",
                    count=len(launch_set),
                    job_ids=result.launch_set,
                )

                for job in launch_set:
                    await self._launch_one(job, result)
            finally:
                await self.cleanup(ready)

            logger.info("run_studies_complete", **result.to_dict())
        return result

    async def _launch_one(self, job: Job, result: PassResult) -> None:
        logger.info("launching_study", job_id=job.job_id, title=job.title)
        endpoint = self.gateway.result_endpoint(job.job_id)
        try:
            await self.launch_study(job, endpoint)
        except Exception as exc:
            logger.error("launch_failed", job_id=job.job_id, error=str(exc))
            result.failed[job.job_id] = str(exc)
            update = StatusUpdate(status=JOB_ERRORED, message=str(exc))
        else:
            result.launched.append(job.job_id)
            update = StatusUpdate(status=JOB_PROVISIONING)

        pushed = await self.gateway.update_job_status(job.job_id, update)
        if not pushed.success:
            logger.warning("status_push_failed", job_id=job.job_id, status=update.status)
            result.status_push_failures.append(job.job_id)

    async def report_errored(self, job_id: str, message: str) -> bool:
        """Mark a job JOB-ERRORED in the ResultStore. Returns push success."""
        logger.info("reporting_errored_job", job_id=job_id, message=message)
        pushed = await self.gateway.update_job_status(
            job_id, StatusUpdate(status=JOB_ERRORED, message=message)
        )
        if not pushed.success:
            logger.warning("status_push_failed", job_id=job_id, status=JOB_ERRORED)
        return pushed.success

    # --- Abstract methods for subclasses ---

    @abstractmethod
    def filter_jobs_in_enclave(
        self,
        ready: ReadyJobsResponse,
        known: KnownJobsResponse,
        deployed: list[T],
    ) -> list[Job]:
        """Launch set. Always a subset of ``ready`` in Registry order, never
        containing a job present in ``deployed``."""

    @abstractmethod
    async def get_all_studies_in_enclave(self) -> list[T]:
        """Every managed resource, in any state."""

    @abstractmethod
    async def get_deployed_studies(self) -> list[T]:
        """Managed resources that count as "already launched"."""

    @abstractmethod
    async def launch_study(self, job: Job, result_endpoint: str) -> None:
        """Materialize one job on the backend. Raise on failure."""

    @abstractmethod
    async def cleanup(self, ready: ReadyJobsResponse) -> None:
        """Garbage-collect stale managed resources."""

    @abstractmethod
    async def check_for_errored_jobs(self) -> ScanResult:
        """Report abnormally terminated managed resources as JOB-ERRORED."""


def exclude_job_ids(jobs: Iterable[Job], *excluded: Iterable[str]) -> list[Job]:
    """Jobs whose id is in none of ``excluded``, order preserved."""
    skip: set[str] = set()
    for ids in excluded:
        skip.update(ids)
    return [job for job in jobs if job.job_id not in skip]


__all__ = [
    "Enclave",
    "PassResult",
    "ScanResult",
    "exclude_job_ids",
    "join_all",
]
