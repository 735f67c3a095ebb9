"""
CLI: ``enclave-spine config`` for configuration inspection.
"""

from __future__ import annotations

import json

import typer
from rich.table import Table

from enclave_spine.cli.utils import console, err_console
from enclave_spine.core.errors import ConfigError

app = typer.Typer(no_args_is_help=True)

# Fields each backend requires before a pass can start
_REQUIRED = {
    "AWS": ("ecs_cluster", "base_task_definition_family", "vpc_subnets", "security_groups"),
    "DOCKER": (),
    "KUBERNETES": (),
}
_UPSTREAM_REQUIRED = (
    "management_app_base_url",
    "management_app_member_id",
    "management_app_private_key",
    "toa_base_url",
    "toa_basic_auth",
)


@app.command("show")
def show_config(
    format: str = typer.Option("table", "--format", "-f", help="Output format: table, json, env"),
) -> None:
    """Show the effective configuration with secrets masked."""
    from enclave_spine.core.settings import get_settings

    data = get_settings().redacted()

    if format == "json":
        console.print_json(json.dumps(data, default=str))
        return

    if format == "env":
        for key, value in sorted(data.items()):
            console.print(f"ENCLAVE_{key.upper()}={'' if value is None else value}")
        return

    table = Table(title="enclave-spine settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", overflow="fold")
    for key, value in sorted(data.items()):
        table.add_row(key, "" if value is None else str(value))
    console.print(table)


@app.command("validate")
def validate_config() -> None:
    """Check that every variable the configured backend needs is set."""
    from enclave_spine.core.settings import get_settings

    settings = get_settings(_force_reload=True)
    backend = settings.deployment_environment.value
    try:
        settings.require(*_UPSTREAM_REQUIRED, *_REQUIRED[backend])
    except ConfigError as exc:
        err_console.print(f"[red]Configuration Error:[/red] {exc.message}")
        raise typer.Exit(1) from exc
    console.print(f"[green]✓ {backend} configuration complete[/green]")
