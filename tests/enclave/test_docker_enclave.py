"""Tests for the Docker backend with a mocked docker SDK client.

The Docker filter only launches jobs the ResultStore already lists among
known jobs, the opposite of the AWS and Kubernetes backends. These tests pin
that asymmetry so it is never unified by accident.
"""

import base64
import json
from unittest.mock import MagicMock

import pytest
from _support import known_jobs, make_job, pushed_statuses, ready_jobs
from docker.errors import APIError, DockerException, ImageNotFound
from pydantic import SecretStr

from enclave_spine.core.errors import ConfigError, LaunchError
from enclave_spine.enclave.docker import DockerEnclave
from enclave_spine.upstream.models import JOB_ERRORED

MANAGED = {"component": "research-container", "managed-by": "setup-app"}


def container(job_id, status="running", exit_code=0, error="", labels=None):
    c = MagicMock()
    c.id = f"id-{job_id}"
    c.short_id = f"short-{job_id}"
    c.name = f"research-container-{job_id}"
    c.status = status
    c.labels = labels if labels is not None else {**MANAGED, "instance": job_id}
    c.attrs = {"State": {"ExitCode": exit_code, "Error": error}}
    return c


@pytest.fixture
def docker_client():
    client = MagicMock()
    client.containers.list.return_value = []
    client.containers.create.return_value = container("new", status="created")
    return client


def make_enclave(settings, gateway, client):
    return DockerEnclave(settings, gateway, client=client)


class TestFilter:
    def test_launches_known_jobs_that_are_not_running(self, settings, fake_gateway, docker_client):
        enclave = make_enclave(settings, fake_gateway, docker_client)
        launch = enclave.filter_jobs_in_enclave(
            ready_jobs("A", "B", "C", "D"),
            known_jobs("B", "C", "D"),
            [container("C")],
        )
        assert [job.job_id for job in launch] == ["B", "D"]

    def test_unknown_jobs_are_never_launched(self, settings, fake_gateway, docker_client):
        enclave = make_enclave(settings, fake_gateway, docker_client)
        assert enclave.filter_jobs_in_enclave(ready_jobs("A"), known_jobs(), []) == []


class TestDiscovery:
    @pytest.mark.asyncio
    async def test_deployed_is_running_managed_containers(self, settings, fake_gateway, docker_client):
        docker_client.containers.list.return_value = [
            container("A"),
            container("B", status="exited"),
            container("C", labels={"instance": "C"}),
        ]
        enclave = make_enclave(settings, fake_gateway, docker_client)

        deployed = await enclave.get_deployed_studies()

        assert [c.labels["instance"] for c in deployed] == ["A"]
        kwargs = docker_client.containers.list.call_args.kwargs
        assert kwargs["all"] is True
        assert kwargs["filters"] == {"label": ["component=research-container", "managed-by=setup-app"]}

    @pytest.mark.asyncio
    async def test_listing_failure_is_empty(self, settings, fake_gateway, docker_client):
        docker_client.containers.list.side_effect = DockerException("daemon unreachable")
        enclave = make_enclave(settings, fake_gateway, docker_client)
        assert await enclave.get_all_studies_in_enclave() == []
        assert await enclave.get_deployed_studies() == []


class TestLaunchStudy:
    @pytest.mark.asyncio
    async def test_pull_create_start(self, settings, fake_gateway, docker_client):
        created = container("A", status="created")
        docker_client.containers.create.return_value = created
        enclave = make_enclave(settings, fake_gateway, docker_client)

        await enclave.launch_study(make_job("A", title="Study A", image="img/a:1"), "https://toa/api/job/A")

        docker_client.images.pull.assert_called_once_with("img/a:1", auth_config=None)
        args, kwargs = docker_client.containers.create.call_args
        assert args == ("img/a:1",)
        assert kwargs["name"] == "research-container-A"
        assert kwargs["environment"] == ["TRUSTED_OUTPUT_ENDPOINT=https://toa/api/job/A"]
        assert kwargs["labels"]["instance"] == "A"
        assert kwargs["labels"]["managed-by"] == "setup-app"
        created.start.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_pull_failure_wrapped(self, settings, fake_gateway, docker_client):
        docker_client.images.pull.side_effect = ImageNotFound("no such image")
        enclave = make_enclave(settings, fake_gateway, docker_client)
        with pytest.raises(LaunchError) as exc_info:
            await enclave.launch_study(make_job("A"), "https://toa/api/job/A")
        assert exc_info.value.context.job_id == "A"
        docker_client.containers.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_start_failure_wrapped(self, settings, fake_gateway, docker_client):
        created = container("A", status="created")
        created.start.side_effect = APIError("port in use")
        docker_client.containers.create.return_value = created
        enclave = make_enclave(settings, fake_gateway, docker_client)
        with pytest.raises(LaunchError):
            await enclave.launch_study(make_job("A"), "https://toa/api/job/A")

    @pytest.mark.asyncio
    async def test_registry_auth_json(self, settings, fake_gateway, docker_client):
        auth = {"username": "robot", "password": "pw", "serveraddress": "registry.example.test"}
        settings = settings.model_copy(update={"docker_registry_auth": SecretStr(json.dumps(auth))})
        enclave = make_enclave(settings, fake_gateway, docker_client)
        await enclave.launch_study(make_job("A", image="img/a:1"), "https://toa/api/job/A")
        docker_client.images.pull.assert_called_once_with("img/a:1", auth_config=auth)

    def test_registry_auth_base64(self, settings, fake_gateway, docker_client):
        auth = {"username": "robot", "password": "pw"}
        encoded = base64.b64encode(json.dumps(auth).encode()).decode()
        settings = settings.model_copy(update={"docker_registry_auth": SecretStr(encoded)})
        assert make_enclave(settings, fake_gateway, docker_client)._auth_config == auth

    def test_registry_auth_invalid(self, settings, fake_gateway, docker_client):
        settings = settings.model_copy(update={"docker_registry_auth": SecretStr("{not json")})
        with pytest.raises(ConfigError):
            make_enclave(settings, fake_gateway, docker_client)


class TestRunStudies:
    @pytest.mark.asyncio
    async def test_pass(self, settings, fake_gateway, docker_client):
        fake_gateway.get_ready_jobs.return_value = ready_jobs("A", "B")
        fake_gateway.get_known_jobs.return_value = known_jobs("A", "B")
        docker_client.containers.list.return_value = [container("B")]
        enclave = make_enclave(settings, fake_gateway, docker_client)

        result = await enclave.run_studies()

        assert result.launch_set == ["A"]
        assert result.launched == ["A"]

    @pytest.mark.asyncio
    async def test_listing_failure_does_not_abort_pass(self, settings, fake_gateway, docker_client):
        fake_gateway.get_ready_jobs.return_value = ready_jobs("A")
        fake_gateway.get_known_jobs.return_value = known_jobs("A")
        docker_client.containers.list.side_effect = DockerException("daemon unreachable")
        enclave = make_enclave(settings, fake_gateway, docker_client)

        result = await enclave.run_studies()

        assert result.deployed == 0
        assert result.launch_set == ["A"]


class TestCleanup:
    @pytest.mark.asyncio
    async def test_removes_finished_containers(self, settings, fake_gateway, docker_client):
        done = container("A", status="completed")
        clean_exit = container("B", status="exited", exit_code=0)
        failed = container("C", status="exited", exit_code=1)
        running = container("D")
        docker_client.containers.list.return_value = [done, clean_exit, failed, running]
        enclave = make_enclave(settings, fake_gateway, docker_client)

        await enclave.cleanup(ready_jobs())

        done.remove.assert_called_once_with()
        clean_exit.remove.assert_called_once_with()
        failed.remove.assert_not_called()
        running.remove.assert_not_called()

    @pytest.mark.asyncio
    async def test_remove_error_does_not_abort_batch(self, settings, fake_gateway, docker_client):
        first = container("A", status="completed")
        first.remove.side_effect = APIError("conflict")
        second = container("B", status="completed")
        docker_client.containers.list.return_value = [first, second]
        enclave = make_enclave(settings, fake_gateway, docker_client)

        await enclave.cleanup(ready_jobs())

        second.remove.assert_called_once_with()


class TestErrorScan:
    @pytest.mark.asyncio
    async def test_reports_non_zero_exits_only(self, settings, fake_gateway, docker_client):
        docker_client.containers.list.return_value = [
            container("A", status="exited", exit_code=1, error="OOMKilled"),
            container("B", status="exited", exit_code=0),
            container("C"),
        ]
        enclave = make_enclave(settings, fake_gateway, docker_client)

        scan = await enclave.check_for_errored_jobs()

        assert scan.reported == ["A"]
        assert pushed_statuses(fake_gateway) == {
            "A": [(JOB_ERRORED, "Container short-A exited with message: OOMKilled")]
        }

    @pytest.mark.asyncio
    async def test_no_duplicate_suppression(self, settings, fake_gateway, docker_client):
        docker_client.containers.list.return_value = [container("A", status="exited", exit_code=2)]
        enclave = make_enclave(settings, fake_gateway, docker_client)

        await enclave.check_for_errored_jobs()
        await enclave.check_for_errored_jobs()

        assert fake_gateway.update_job_status.await_count == 2
        fake_gateway.get_job_status.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_listing_failure_tolerated(self, settings, fake_gateway, docker_client):
        docker_client.containers.list.side_effect = DockerException("daemon unreachable")
        enclave = make_enclave(settings, fake_gateway, docker_client)
        scan = await enclave.check_for_errored_jobs()
        assert scan.reported == []
