"""
Scheduled-invocation handler.

Entry point for a serverless scheduler (e.g. an EventBridge rule targeting a
Lambda function). The event selects which pass to run::

    {"action": "run-studies" | "check-errored-jobs" | "both", "ignoreDeployed": false}

``action`` defaults to ``both``; ``ignoreAWSJobs`` is accepted as an alias of
``ignoreDeployed``. The response is a plain dict::

    {"statusCode": 200, "message": ..., "timestamp": ..., "requestId": ...,
     "remainingTimeInMillis": ...}

Any failure is logged and returned as ``statusCode`` 500 with the error text.

Tags:
    enclave-spine, handler, lambda, scheduler

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

from enclave_spine.core.logging import bind_context, clear_context, configure_logging, get_logger
from enclave_spine.core.settings import EnclaveSettings, get_settings
from enclave_spine.runner import check_jobs_once, run_studies_once

logger = get_logger(__name__)

RUN_STUDIES = "run-studies"
CHECK_ERRORED_JOBS = "check-errored-jobs"
BOTH = "both"
ACTIONS = (RUN_STUDIES, CHECK_ERRORED_JOBS, BOTH)

_logging_configured = False


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _request_id(context: Any) -> str:
    return getattr(context, "aws_request_id", "") or ""


def _remaining(context: Any) -> int | None:
    getter = getattr(context, "get_remaining_time_in_millis", None)
    return getter() if callable(getter) else None


def _load_settings(ignore_deployed: bool) -> EnclaveSettings:
    global _logging_configured
    settings = get_settings()
    if not _logging_configured:
        configure_logging(level=settings.log_level, json_format=settings.log_format == "json")
        _logging_configured = True
    if ignore_deployed:
        settings = settings.model_copy(update={"ignore_deployed": True})
    return settings


async def _execute(action: str, settings: EnclaveSettings) -> None:
    if action in (RUN_STUDIES, BOTH):
        logger.info("handler_running_studies")
        await run_studies_once(settings)
    if action in (CHECK_ERRORED_JOBS, BOTH):
        logger.info("handler_checking_errored_jobs")
        await check_jobs_once(settings)


def handler(event: dict[str, Any] | None, context: Any) -> dict[str, Any]:
    """Run the requested pass(es) and report the outcome."""
    event = event or {}
    action = event.get("action") or BOTH
    ignore_deployed = bool(event.get("ignoreDeployed", event.get("ignoreAWSJobs", False)))
    request_id = _request_id(context)
    # bindings from a previous warm invocation must not carry over
    clear_context()
    bind_context(request_id=request_id)

    if action not in ACTIONS:
        logger.error("handler_unknown_action", action=action)
        return {
            "statusCode": 400,
            "error": f"Unknown action: {action}",
            "timestamp": _now(),
            "requestId": request_id,
        }

    try:
        settings = _load_settings(ignore_deployed)
        logger.info(
            "handler_started",
            action=action,
            ignore_deployed=ignore_deployed,
            remaining_time_ms=_remaining(context),
        )
        asyncio.run(_execute(action, settings))
    except Exception as exc:
        logger.exception("handler_failed", action=action)
        return {
            "statusCode": 500,
            "error": str(exc) or exc.__class__.__name__,
            "timestamp": _now(),
            "requestId": request_id,
        }

    response = {
        "statusCode": 200,
        "message": f"Execution completed successfully: {action}",
        "timestamp": _now(),
        "requestId": request_id,
    }
    remaining = _remaining(context)
    if remaining is not None:
        response["remainingTimeInMillis"] = remaining
    logger.info("handler_completed", **response)
    return response


__all__ = ["handler"]
