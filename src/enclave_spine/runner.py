"""
Pass runners shared by the CLI and the scheduled handler.

Each runner opens an ``UpstreamGateway``, builds the configured backend and
runs one pass, closing the HTTP client afterwards. ``poll`` repeats both
passes on their own intervals until stopped.

Architecture:

    .. code-block:: text

        run_studies_once(settings)   → PassResult
        check_jobs_once(settings)    → ScanResult
        poll(settings, stop)
          ├── every poll_studies_interval_seconds        run_studies_once
          └── every poll_errored_jobs_interval_seconds   check_jobs_once
              a failing pass is logged and the loop keeps going

Tags:
    enclave-spine, runner, polling, asyncio

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from enclave_spine.core.logging import get_logger
from enclave_spine.core.settings import EnclaveSettings
from enclave_spine.enclave.base import PassResult, ScanResult
from enclave_spine.enclave.factory import create_enclave
from enclave_spine.upstream.gateway import UpstreamGateway

logger = get_logger(__name__)


async def run_studies_once(settings: EnclaveSettings) -> PassResult:
    """One reconcile pass against the configured backend."""
    async with UpstreamGateway(settings) as gateway:
        enclave = create_enclave(settings, gateway)
        return await enclave.run_studies()


async def check_jobs_once(settings: EnclaveSettings) -> ScanResult:
    """One error-scan pass against the configured backend."""
    async with UpstreamGateway(settings) as gateway:
        enclave = create_enclave(settings, gateway)
        return await enclave.check_for_errored_jobs()


async def _every(
    name: str,
    interval: float,
    action: Callable[[], Awaitable[Any]],
    stop: asyncio.Event,
) -> None:
    while not stop.is_set():
        try:
            await action()
        except Exception:
            logger.exception("poll_pass_failed", pass_name=name)
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            continue


async def poll(settings: EnclaveSettings, stop: asyncio.Event | None = None) -> None:
    """Run both passes on their configured intervals until ``stop`` is set."""
    stop = stop or asyncio.Event()
    logger.info(
        "poll_started",
        studies_interval=settings.poll_studies_interval_seconds,
        errored_jobs_interval=settings.poll_errored_jobs_interval_seconds,
    )
    await asyncio.gather(
        _every(
            "run_studies",
            settings.poll_studies_interval_seconds,
            lambda: run_studies_once(settings),
            stop,
        ),
        _every(
            "check_for_errored_jobs",
            settings.poll_errored_jobs_interval_seconds,
            lambda: check_jobs_once(settings),
            stop,
        ),
    )
    logger.info("poll_stopped")


__all__ = ["check_jobs_once", "poll", "run_studies_once"]
