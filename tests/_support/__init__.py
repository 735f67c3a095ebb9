"""Builders for upstream responses used across the test suite."""

from __future__ import annotations

from enclave_spine.upstream.models import Job, KnownJob, KnownJobsResponse, ReadyJobsResponse


def make_job(job_id: str, title: str | None = None, image: str | None = None) -> Job:
    return Job(
        job_id=job_id,
        title=title or f"Study {job_id}",
        container_location=image or f"registry.example.test/research/{job_id.lower()}:latest",
    )


def ready_jobs(*job_ids: str) -> ReadyJobsResponse:
    return ReadyJobsResponse(jobs=[make_job(job_id) for job_id in job_ids])


def known_jobs(*job_ids: str) -> KnownJobsResponse:
    return KnownJobsResponse(jobs=[KnownJob(job_id=job_id) for job_id in job_ids])


def pushed_statuses(gateway) -> dict[str, list[tuple[str, str | None]]]:
    """``{job_id: [(status, message), ...]}`` from a fake gateway's update calls."""
    pushes: dict[str, list[tuple[str, str | None]]] = {}
    for call in gateway.update_job_status.await_args_list:
        job_id, update = call.args
        pushes.setdefault(job_id, []).append((update.status, update.message))
    return pushes
