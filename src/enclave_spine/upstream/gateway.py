"""
UpstreamGateway: typed request/response wrappers for the Registry and the
ResultStore.

Architecture:

    .. code-block:: text

        UpstreamGateway(settings, client=httpx.AsyncClient)
        │
        ├── Registry  (Bearer <RS256 JWT, iss=member id>)
        │   └── get_ready_jobs()         GET  /api/studies/ready
        │
        └── ResultStore  (Basic <static credential>)
            ├── get_known_jobs()         GET  /api/jobs
            ├── get_job_status(id)       GET  /api/job/<id>
            ├── update_job_status(id, u) PUT  /api/job/<id>       → StatusUpdateResult
            └── send_logs(id, logs)      POST /api/job/<id>/upload → StatusUpdateResult

        legacy_routes=True swaps in /api/studies/runnable, /api/runs, /api/run/<id>.

    Failure contract:

        reads (ready / known / status) ── non-2xx, bad JSON, shape drift ──► UpstreamProtocolError
        any call ── credential absent or empty ──────────────────────────► UpstreamAuthError
        update_job_status / send_logs ── non-2xx or transport error ─────► success=False (logged)

Tokens are minted per request. Nothing is cached between calls.

Tags:
    enclave-spine, upstream, http, httpx, registry, result-store

Doc-Types:
    api-reference
"""

from __future__ import annotations

import json
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from enclave_spine.core.errors import StatusUpdateResult, UpstreamProtocolError
from enclave_spine.core.logging import get_logger
from enclave_spine.core.settings import EnclaveSettings
from enclave_spine.upstream.auth import management_app_headers, toa_headers
from enclave_spine.upstream.models import (
    JobStatusResponse,
    KnownJobsResponse,
    LogEntry,
    ReadyJobsResponse,
    StatusUpdate,
)

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class UpstreamGateway:
    """Async client for the Registry and the ResultStore.

    Use as an async context manager, or pass an existing ``httpx.AsyncClient``
    (tests inject one backed by ``httpx.MockTransport``).
    """

    def __init__(self, settings: EnclaveSettings, client: httpx.AsyncClient | None = None) -> None:
        self.settings = settings
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)

    async def __aenter__(self) -> UpstreamGateway:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ── Routes ───────────────────────────────────────────────────────

    @property
    def _ready_path(self) -> str:
        return "/api/studies/runnable" if self.settings.legacy_routes else "/api/studies/ready"

    @property
    def _known_path(self) -> str:
        return "/api/runs" if self.settings.legacy_routes else "/api/jobs"

    def _job_path(self, job_id: str) -> str:
        return f"/api/run/{job_id}" if self.settings.legacy_routes else f"/api/job/{job_id}"

    def result_endpoint(self, job_id: str) -> str:
        """Callback URL a launched job reports its results to."""
        return f"{self.settings.toa_base_url}{self._job_path(job_id)}"

    # ── Registry ─────────────────────────────────────────────────────

    async def get_ready_jobs(self) -> ReadyJobsResponse:
        """Jobs the Registry reports as ready to run."""
        url = f"{self.settings.management_app_base_url}{self._ready_path}"
        headers = management_app_headers(self.settings)
        logger.info("registry_fetch_ready_jobs", url=url)
        data = await self._get_json(url, headers, service="management app")
        result = self._parse(ReadyJobsResponse, data, url, service="Management app")
        logger.info("registry_ready_jobs_received", count=len(result.jobs))
        return result

    # ── ResultStore ──────────────────────────────────────────────────

    async def get_known_jobs(self) -> KnownJobsResponse:
        """Jobs the ResultStore already has results or a status for."""
        url = f"{self.settings.toa_base_url}{self._known_path}"
        headers = toa_headers(self.settings)
        logger.info("toa_fetch_known_jobs", url=url)
        data = await self._get_json(url, headers, service="trusted output app")
        result = self._parse(KnownJobsResponse, data, url, service="Trusted output app")
        logger.info("toa_known_jobs_received", count=len(result.jobs))
        return result

    async def get_job_status(self, job_id: str) -> JobStatusResponse:
        """Last status the ResultStore holds for one job."""
        url = f"{self.settings.toa_base_url}{self._job_path(job_id)}"
        headers = toa_headers(self.settings)
        logger.info("toa_fetch_job_status", job_id=job_id)
        data = await self._get_json(url, headers, service="trusted output app", job_id=job_id)
        return self._parse(JobStatusResponse, data, url, service="Trusted output app", job_id=job_id)

    async def update_job_status(self, job_id: str, update: StatusUpdate) -> StatusUpdateResult:
        """Replace a job's status in the ResultStore.

        Never raises on an HTTP failure: returns ``success=False`` and logs
        the response body so the caller decides what to do.
        """
        url = f"{self.settings.toa_base_url}{self._job_path(job_id)}"
        headers = toa_headers(self.settings)
        payload = update.to_payload()
        logger.info("toa_update_job_status", job_id=job_id, status=update.status)
        try:
            response = await self._client.put(url, headers=headers, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("toa_update_job_status_failed", job_id=job_id, error=str(exc))
            return StatusUpdateResult(success=False)

        if not response.is_success:
            logger.warning(
                "toa_update_job_status_failed",
                job_id=job_id,
                http_status=response.status_code,
                body=response.text,
            )
            return StatusUpdateResult(success=False)

        logger.info("toa_update_job_status_succeeded", job_id=job_id, status=update.status)
        return StatusUpdateResult(success=True)

    async def send_logs(self, job_id: str, logs: list[LogEntry]) -> StatusUpdateResult:
        """Upload diagnostic logs for a failed job. Best-effort."""
        url = f"{self.settings.toa_base_url}{self._job_path(job_id)}/upload"
        headers = toa_headers(self.settings)
        # multipart body, httpx sets the content type with the boundary
        headers.pop("Content-Type", None)
        body = json.dumps([entry.model_dump() for entry in logs])
        logger.info("toa_send_logs", job_id=job_id, entries=len(logs))
        try:
            response = await self._client.post(url, headers=headers, files={"logs": (None, body)})
        except httpx.HTTPError as exc:
            logger.warning("toa_send_logs_failed", job_id=job_id, error=str(exc))
            return StatusUpdateResult(success=False)

        if not response.is_success:
            logger.warning(
                "toa_send_logs_failed",
                job_id=job_id,
                http_status=response.status_code,
                body=response.text,
            )
            return StatusUpdateResult(success=False)

        logger.info("toa_send_logs_succeeded", job_id=job_id)
        return StatusUpdateResult(success=True)

    # ── Internals ────────────────────────────────────────────────────

    async def _get_json(
        self,
        url: str,
        headers: dict[str, str],
        *,
        service: str,
        job_id: str | None = None,
    ) -> Any:
        try:
            response = await self._client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            raise UpstreamProtocolError(
                f"Request to {service} failed: {exc}", cause=exc
            ).with_context(url=url, job_id=job_id) from exc

        if not response.is_success:
            raise UpstreamProtocolError(
                f"Received an unexpected {response.status_code} from {service}: {response.text}"
            ).with_context(url=url, http_status=response.status_code, job_id=job_id)

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamProtocolError(
                f"{service} returned a body that is not JSON", cause=exc
            ).with_context(url=url, http_status=response.status_code, job_id=job_id) from exc

    @staticmethod
    def _parse(
        model: type[ModelT],
        data: Any,
        url: str,
        *,
        service: str,
        job_id: str | None = None,
    ) -> ModelT:
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise UpstreamProtocolError(
                f"{service} response does not match expected structure", cause=exc
            ).with_context(url=url, job_id=job_id) from exc


__all__ = ["UpstreamGateway"]
