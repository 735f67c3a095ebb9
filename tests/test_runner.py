"""Tests for the one-shot runners and the poll loop."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from enclave_spine import runner
from enclave_spine.enclave.base import PassResult, ScanResult


@pytest.fixture
def enclave():
    backend = MagicMock()
    backend.run_studies = AsyncMock(return_value=PassResult(pass_id="p1"))
    backend.check_for_errored_jobs = AsyncMock(return_value=ScanResult(reported=["A"]))
    return backend


class TestOneShot:
    @pytest.mark.asyncio
    async def test_run_studies_once(self, settings, enclave):
        with patch.object(runner, "create_enclave", return_value=enclave) as factory:
            result = await runner.run_studies_once(settings)
        assert result.pass_id == "p1"
        gateway = factory.call_args.args[1]
        assert gateway.settings is settings

    @pytest.mark.asyncio
    async def test_check_jobs_once(self, settings, enclave):
        with patch.object(runner, "create_enclave", return_value=enclave):
            result = await runner.check_jobs_once(settings)
        assert result.reported == ["A"]


class TestPoll:
    @pytest.mark.asyncio
    async def test_runs_both_passes_until_stopped(self, settings):
        settings = settings.model_copy(
            update={"poll_studies_interval_seconds": 0, "poll_errored_jobs_interval_seconds": 0}
        )
        stop = asyncio.Event()
        counts = {"run": 0, "check": 0}

        async def run_once(_settings):
            counts["run"] += 1
            if counts["run"] == 1:
                raise RuntimeError("transient")
            if counts["run"] >= 3:
                stop.set()

        async def check_once(_settings):
            counts["check"] += 1

        with patch.object(runner, "run_studies_once", run_once), patch.object(
            runner, "check_jobs_once", check_once
        ):
            await asyncio.wait_for(runner.poll(settings, stop), timeout=5)

        assert counts["run"] >= 3
        assert counts["check"] >= 1
