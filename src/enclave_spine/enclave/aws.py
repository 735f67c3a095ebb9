"""
AWS ECS/Fargate backend.

Architecture:

    .. code-block:: text

        launch_study(job, endpoint)
          ├── ecs.describe_task_definition(base family)
          ├── ecs.register_task_definition(<base>-<jobId>, image=job image,
          │       env += TRUSTED_OUTPUT_ENDPOINT, tags=jobId/title/managed)
          └── ecs.run_task(FARGATE, awsvpc subnets/security groups, same tags)

        discovery (tasks / task definitions)
          └── tagging.get_resources(TagFilters=[jobId, managed-by, component])
                follows PaginationToken until empty

        cleanup(ready)
          └── every tagged task definition whose jobId ∉ ready:
                ACTIVE   → deregister, then delete
                INACTIVE → delete
                other    → skip (deletion already in progress)

        check_for_errored_jobs()
          ├── tagged tasks → ecs.describe_tasks (≤100 ARNs per call)
          ├── TaskFailedToStart          → JOB-ERRORED
          ├── EssentialContainerExited with a non-zero exit code
          │     ├── ResultStore status already JOB-ERRORED → skip
          │     └── else fetch CloudWatch logs, JOB-ERRORED, upload logs
          └── cleanup(ready) for orphan task definitions

    boto3 clients are synchronous; every call runs in a worker thread via
    ``asyncio.to_thread`` so per-item work can be joined concurrently.

Tags:
    enclave-spine, enclave, aws, ecs, fargate, boto3

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from enclave_spine.core.errors import BackendListError, LaunchError
from enclave_spine.core.logging import get_logger
from enclave_spine.core.settings import EnclaveSettings
from enclave_spine.enclave.base import Enclave, ScanResult, exclude_job_ids, join_all
from enclave_spine.enclave.labels import (
    COMPONENT_LABEL,
    JOB_ID_TAG_KEY,
    MANAGED_BY,
    MANAGED_BY_LABEL,
    RESEARCH_CONTAINER,
    RESULT_ENDPOINT_ENV,
    TITLE_TAG_KEY,
)
from enclave_spine.upstream.gateway import UpstreamGateway
from enclave_spine.upstream.models import (
    JOB_ERRORED,
    Job,
    KnownJobsResponse,
    LogEntry,
    ReadyJobsResponse,
)

logger = get_logger(__name__)

TASK_RESOURCE = "ecs:task"
TASK_DEFINITION_RESOURCE = "ecs:task-definition"

STOP_FAILED_TO_START = "TaskFailedToStart"
STOP_ESSENTIAL_CONTAINER_EXITED = "EssentialContainerExited"

DELETABLE_STATUSES = ("ACTIVE", "INACTIVE")
DESCRIBE_TASKS_BATCH = 100

# Fields copied verbatim from the base task definition into each derived one
_INHERITED_FIELDS = (
    "taskRoleArn",
    "executionRoleArn",
    "networkMode",
    "cpu",
    "memory",
    "requiresCompatibilities",
)

_AWS_ERRORS = (ClientError, BotoCoreError)


@dataclass(frozen=True)
class TaggedResource:
    """A resource returned by the tagging API with its jobId tag."""

    arn: str
    job_id: str

    @classmethod
    def from_mapping(cls, mapping: dict[str, Any]) -> TaggedResource | None:
        tags = {tag["Key"]: tag["Value"] for tag in mapping.get("Tags", [])}
        arn = mapping.get("ResourceARN")
        job_id = tags.get(JOB_ID_TAG_KEY)
        if not arn or not job_id:
            return None
        return cls(arn=arn, job_id=job_id)


class AWSEnclave(Enclave[TaggedResource]):
    """ECS/Fargate backend discovered through the resource-tagging API."""

    backend_name = "aws"

    def __init__(
        self,
        settings: EnclaveSettings,
        gateway: UpstreamGateway,
        *,
        ecs_client: Any | None = None,
        tagging_client: Any | None = None,
        logs_client: Any | None = None,
    ) -> None:
        super().__init__(settings, gateway)
        settings.require("ecs_cluster", "base_task_definition_family", "vpc_subnets", "security_groups")
        region = {"region_name": settings.aws_region} if settings.aws_region else {}
        self.ecs = ecs_client or boto3.client("ecs", **region)
        self.tagging = tagging_client or boto3.client("resourcegroupstaggingapi", **region)
        self.logs = logs_client or boto3.client("logs", **region)

    # ── Discovery ────────────────────────────────────────────────────

    async def _get_tagged_resources(self, resource_type: str) -> list[TaggedResource]:
        """All managed resources of one type, following every page."""
        tag_filters = [
            {"Key": JOB_ID_TAG_KEY},
            {"Key": MANAGED_BY_LABEL, "Values": [MANAGED_BY]},
            {"Key": COMPONENT_LABEL, "Values": [RESEARCH_CONTAINER]},
        ]
        resources: list[TaggedResource] = []
        token = ""
        while True:
            request: dict[str, Any] = {
                "TagFilters": tag_filters,
                "ResourceTypeFilters": [resource_type],
            }
            if token:
                request["PaginationToken"] = token
            try:
                page = await asyncio.to_thread(self.tagging.get_resources, **request)
            except _AWS_ERRORS as exc:
                raise BackendListError(
                    f"Failed to list {resource_type} resources: {exc}", cause=exc
                ).with_context(backend=self.backend_name, operation="get_resources") from exc

            for mapping in page.get("ResourceTagMappingList", []):
                resource = TaggedResource.from_mapping(mapping)
                if resource is not None:
                    resources.append(resource)
            token = page.get("PaginationToken", "")
            if not token:
                break

        logger.info("aws_tagged_resources_listed", resource_type=resource_type, count=len(resources))
        return resources

    async def get_all_studies_in_enclave(self) -> list[TaggedResource]:
        tasks = await self._get_tagged_resources(TASK_RESOURCE)
        task_definitions = await self._get_tagged_resources(TASK_DEFINITION_RESOURCE)
        return tasks + task_definitions

    async def get_deployed_studies(self) -> list[TaggedResource]:
        """Tagged tasks and task definitions; either means "already launched"."""
        if self.settings.ignore_deployed:
            logger.warning("aws_ignoring_deployed_resources")
            return []
        return await self.get_all_studies_in_enclave()

    def filter_jobs_in_enclave(
        self,
        ready: ReadyJobsResponse,
        known: KnownJobsResponse,
        deployed: list[TaggedResource],
    ) -> list[Job]:
        return exclude_job_ids(ready.jobs, known.job_ids, (r.job_id for r in deployed))

    # ── Launch ───────────────────────────────────────────────────────

    def _tags(self, job: Job) -> list[dict[str, str]]:
        return [
            {"key": JOB_ID_TAG_KEY, "value": job.job_id},
            {"key": TITLE_TAG_KEY, "value": job.title},
            {"key": MANAGED_BY_LABEL, "value": MANAGED_BY},
            {"key": COMPONENT_LABEL, "value": RESEARCH_CONTAINER},
        ]

    async def launch_study(self, job: Job, result_endpoint: str) -> None:
        try:
            family = await self._register_task_definition(job, result_endpoint)
            await self._run_task(job, family)
        except _AWS_ERRORS as exc:
            raise LaunchError(
                f"Failed to launch {job.title} with job id {job.job_id}: {exc}", cause=exc
            ).with_context(job_id=job.job_id, backend=self.backend_name) from exc

    async def _register_task_definition(self, job: Job, result_endpoint: str) -> str:
        base_family = self.settings.base_task_definition_family
        described = await asyncio.to_thread(
            self.ecs.describe_task_definition, taskDefinition=base_family
        )
        base = described.get("taskDefinition")
        if not base:
            raise LaunchError(f"Could not find task definition data for {base_family}").with_context(
                job_id=job.job_id, backend=self.backend_name
            )

        containers = []
        for container in base.get("containerDefinitions", []):
            derived = copy.deepcopy(container)
            derived["image"] = job.container_location
            derived.setdefault("environment", []).append(
                {"name": RESULT_ENDPOINT_ENV, "value": result_endpoint}
            )
            containers.append(derived)

        family = f"{base['family']}-{job.job_id}"
        request: dict[str, Any] = {
            "family": family,
            "containerDefinitions": containers,
            "tags": self._tags(job),
        }
        for name in _INHERITED_FIELDS:
            if base.get(name) is not None:
                request[name] = base[name]

        logger.info("aws_registering_task_definition", job_id=job.job_id, family=family)
        registered = await asyncio.to_thread(self.ecs.register_task_definition, **request)
        registered_family = registered.get("taskDefinition", {}).get("family")
        if not registered_family:
            raise LaunchError(f"Could not register task definition {family}").with_context(
                job_id=job.job_id, backend=self.backend_name
            )
        return registered_family

    async def _run_task(self, job: Job, family: str) -> None:
        logger.info("aws_running_task", job_id=job.job_id, family=family)
        response = await asyncio.to_thread(
            self.ecs.run_task,
            taskDefinition=family,
            cluster=self.settings.ecs_cluster,
            launchType="FARGATE",
            networkConfiguration={
                "awsvpcConfiguration": {
                    "subnets": self.settings.subnet_list,
                    "securityGroups": self.settings.security_group_list,
                }
            },
            tags=self._tags(job),
        )
        failures = response.get("failures") or []
        if failures and not response.get("tasks"):
            reasons = ", ".join(f.get("reason", "unknown") for f in failures)
            raise LaunchError(f"RunTask reported failures: {reasons}").with_context(
                job_id=job.job_id, backend=self.backend_name
            )
        logger.info(
            "aws_task_started",
            job_id=job.job_id,
            task_arns=[t.get("taskArn") for t in response.get("tasks", [])],
        )

    # ── Cleanup ──────────────────────────────────────────────────────

    async def cleanup(self, ready: ReadyJobsResponse) -> None:
        """Deregister and delete task definitions for jobs no longer ready."""
        task_definitions = await self._get_tagged_resources(TASK_DEFINITION_RESOURCE)
        ready_ids = set(ready.job_ids)
        orphans = [td for td in task_definitions if td.job_id not in ready_ids]
        logger.info("aws_orphan_task_definitions_found", count=len(orphans))
        await join_all(
            (self._delete_task_definition(td) for td in orphans),
            operation="delete_task_definition",
        )

    async def _delete_task_definition(self, resource: TaggedResource) -> None:
        described = await asyncio.to_thread(
            self.ecs.describe_task_definition, taskDefinition=resource.arn
        )
        status = described.get("taskDefinition", {}).get("status")
        if status not in DELETABLE_STATUSES:
            logger.info("aws_task_definition_skipped", arn=resource.arn, status=status)
            return

        if status == "ACTIVE":
            logger.info("aws_deregistering_task_definition", arn=resource.arn, job_id=resource.job_id)
            await asyncio.to_thread(self.ecs.deregister_task_definition, taskDefinition=resource.arn)

        logger.info("aws_deleting_task_definition", arn=resource.arn, job_id=resource.job_id)
        await asyncio.to_thread(self.ecs.delete_task_definitions, taskDefinitions=[resource.arn])

    # ── Error scan ───────────────────────────────────────────────────

    async def check_for_errored_jobs(self) -> ScanResult:
        scan = ScanResult()
        try:
            tasks = await self._get_tagged_resources(TASK_RESOURCE)
        except BackendListError as exc:
            logger.error("aws_task_listing_failed", error=str(exc))
            tasks = []

        described = await self._describe_tasks([task.arn for task in tasks])
        await join_all(
            (self._check_task(task, scan) for task in described),
            operation="check_task",
        )

        ready = await self.gateway.get_ready_jobs()
        await self.cleanup(ready)
        logger.info("aws_error_scan_complete", **scan.to_dict())
        return scan

    async def _describe_tasks(self, arns: list[str]) -> list[dict[str, Any]]:
        described: list[dict[str, Any]] = []
        for start in range(0, len(arns), DESCRIBE_TASKS_BATCH):
            batch = arns[start:start + DESCRIBE_TASKS_BATCH]
            try:
                response = await asyncio.to_thread(
                    self.ecs.describe_tasks,
                    cluster=self.settings.ecs_cluster,
                    tasks=batch,
                    include=["TAGS"],
                )
            except _AWS_ERRORS as exc:
                logger.error("aws_describe_tasks_failed", count=len(batch), error=str(exc))
                continue
            described.extend(response.get("tasks", []))
        return described

    async def _check_task(self, task: dict[str, Any], scan: ScanResult) -> None:
        tags = {tag.get("key"): tag.get("value") for tag in task.get("tags", [])}
        job_id = tags.get(JOB_ID_TAG_KEY)
        if not job_id:
            logger.warning("aws_task_without_job_id", task_arn=task.get("taskArn"))
            return

        stop_code = task.get("stopCode")
        if stop_code == STOP_FAILED_TO_START:
            # stopReason is AWS-generated and confusing to researchers; not passed through
            await self.report_errored(job_id, "Task failed to start")
            scan.reported.append(job_id)
            return

        if stop_code != STOP_ESSENTIAL_CONTAINER_EXITED:
            return

        exit_codes = [c.get("exitCode") for c in task.get("containers", [])]
        if not any(code is not None and code != 0 for code in exit_codes):
            return

        current = await self.gateway.get_job_status(job_id)
        if current.status == JOB_ERRORED:
            logger.info("aws_errored_job_already_reported", job_id=job_id, status=current.status)
            scan.skipped.append(job_id)
            return

        task_id = task["taskArn"].split("/")[-1]
        try:
            logs: list[LogEntry] | None = await self.get_logs_for_task(task_id)
        except _AWS_ERRORS as exc:
            logger.warning("aws_log_fetch_failed", job_id=job_id, task_id=task_id, error=str(exc))
            logs = None

        await self.report_errored(job_id, "Task container stopped with non-zero exit code")
        scan.reported.append(job_id)
        if logs is not None:
            await self.gateway.send_logs(job_id, logs)

    async def get_logs_for_task(self, task_id: str) -> list[LogEntry]:
        """CloudWatch events for a task across research-container log groups."""
        return await asyncio.to_thread(self._collect_task_logs, task_id)

    def _collect_task_logs(self, task_id: str) -> list[LogEntry]:
        groups: list[str] = []
        paginator = self.logs.get_paginator("describe_log_groups")
        for page in paginator.paginate(logGroupNamePrefix=self.settings.log_group_prefix):
            for group in page.get("logGroups", []):
                if group.get("storedBytes", 0) > 0:
                    groups.append(group["logGroupName"])

        events: list[LogEntry] = []
        paginator = self.logs.get_paginator("filter_log_events")
        for group in groups:
            for page in paginator.paginate(
                logGroupName=group,
                logStreamNames=[f"ResearchContainer/ResearchContainer/{task_id}"],
            ):
                for event in page.get("events", []):
                    events.append(LogEntry(timestamp=event["timestamp"], message=event["message"]))

        logger.info("aws_task_logs_collected", task_id=task_id, groups=len(groups), events=len(events))
        return events


__all__ = ["AWSEnclave", "TaggedResource"]
