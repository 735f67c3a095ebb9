"""
Wire models for the Registry and the ResultStore.

Parsing is strict: a missing field or a field of the wrong JSON type fails
validation (no ``"1" -> 1`` coercion), which the gateway turns into an
:class:`~enclave_spine.core.errors.UpstreamProtocolError`. Unknown extra
fields are ignored.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr

JOB_PROVISIONING = "JOB-PROVISIONING"
JOB_ERRORED = "JOB-ERRORED"

WritableStatus = Literal["JOB-PROVISIONING", "JOB-ERRORED"]


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")


class Job(_WireModel):
    """A job the Registry reports as ready to run."""

    job_id: StrictStr = Field(alias="jobId")
    title: StrictStr
    container_location: StrictStr = Field(alias="containerLocation")


class ReadyJobsResponse(_WireModel):
    jobs: list[Job]

    @property
    def job_ids(self) -> list[str]:
        return [job.job_id for job in self.jobs]


class KnownJob(_WireModel):
    """A job the ResultStore already has an opinion on."""

    job_id: StrictStr = Field(alias="jobId")


class KnownJobsResponse(_WireModel):
    jobs: list[KnownJob]

    @property
    def job_ids(self) -> list[str]:
        return [job.job_id for job in self.jobs]


class JobStatusResponse(_WireModel):
    status: StrictStr


class StatusUpdate(_WireModel):
    """Body of a ResultStore status PUT. The core only writes two statuses."""

    status: WritableStatus
    message: str | None = None

    def to_payload(self) -> dict[str, str]:
        return self.model_dump(exclude_none=True)


class LogEntry(_WireModel):
    timestamp: StrictInt
    message: StrictStr


__all__ = [
    "JOB_PROVISIONING",
    "JOB_ERRORED",
    "Job",
    "ReadyJobsResponse",
    "KnownJob",
    "KnownJobsResponse",
    "JobStatusResponse",
    "StatusUpdate",
    "LogEntry",
]
