"""Registry and ResultStore clients."""

from enclave_spine.upstream.gateway import UpstreamGateway
from enclave_spine.upstream.models import (
    JOB_ERRORED,
    JOB_PROVISIONING,
    Job,
    JobStatusResponse,
    KnownJob,
    KnownJobsResponse,
    LogEntry,
    ReadyJobsResponse,
    StatusUpdate,
)

__all__ = [
    "UpstreamGateway",
    "JOB_ERRORED",
    "JOB_PROVISIONING",
    "Job",
    "JobStatusResponse",
    "KnownJob",
    "KnownJobsResponse",
    "LogEntry",
    "ReadyJobsResponse",
    "StatusUpdate",
]
