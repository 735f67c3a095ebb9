"""
Root Typer application for the enclave-spine CLI.

Every command loads settings once, configures logging from them and runs
one pass (or the poll loop) against the configured backend.
"""

from __future__ import annotations

import asyncio

import typer
from typer import Typer

from enclave_spine.cli.config import app as config_app
from enclave_spine.cli.utils import console, fail, load_settings, output_result
from enclave_spine.core.errors import EnclaveError
from enclave_spine.runner import check_jobs_once, poll, run_studies_once

app = Typer(
    name="enclave-spine",
    help="enclave-spine: launch, clean up and error-check research containers.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("enclave-spine")
        except PackageNotFoundError:
            v = "0.1.0"
        typer.echo(f"enclave-spine {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """enclave-spine CLI: reconcile ready jobs against a compute backend."""


@app.command("run")
def run(
    ignore_deployed: bool = typer.Option(
        False, "--ignore-deployed", help="AWS only: launch without checking existing tasks."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the pass result as JSON."),
) -> None:
    """Run one reconcile pass: launch ready jobs, then clean up."""
    overrides = {"ignore_deployed": True} if ignore_deployed else {}
    settings = load_settings(**overrides)
    try:
        result = asyncio.run(run_studies_once(settings))
    except EnclaveError as exc:
        fail(exc)
    output_result(result, as_json=as_json, title="run-studies")


@app.command("check-jobs")
def check_jobs(
    as_json: bool = typer.Option(False, "--json", help="Print the scan result as JSON."),
) -> None:
    """Run one error scan: report abnormally terminated jobs as errored."""
    settings = load_settings()
    try:
        result = asyncio.run(check_jobs_once(settings))
    except EnclaveError as exc:
        fail(exc)
    output_result(result, as_json=as_json, title="check-errored-jobs")


@app.command("poll")
def poll_command() -> None:
    """Run both passes on their configured intervals until interrupted."""
    settings = load_settings()
    console.print(
        f"[bold green]Polling {settings.deployment_environment.value}[/bold green] "
        f"(studies every {settings.poll_studies_interval_seconds}s, "
        f"errored jobs every {settings.poll_errored_jobs_interval_seconds}s)"
    )
    try:
        asyncio.run(poll(settings))
    except KeyboardInterrupt:
        console.print("\n[yellow]Polling stopped by user[/yellow]")


app.add_typer(config_app, name="config", help="Configuration inspection.")
