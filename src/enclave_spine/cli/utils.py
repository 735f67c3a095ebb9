"""
CLI utility helpers: settings bootstrap and output formatting.
"""

from __future__ import annotations

import json
from dataclasses import asdict
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.table import Table

from enclave_spine.core.errors import EnclaveError
from enclave_spine.core.logging import configure_logging
from enclave_spine.core.settings import EnclaveSettings, get_settings

console = Console()
err_console = Console(stderr=True)


def load_settings(**overrides: Any) -> EnclaveSettings:
    """Load settings, apply CLI overrides and configure logging from them."""
    try:
        settings = get_settings()
    except ValueError as exc:
        err_console.print(f"[bold red]Configuration error[/bold red]: {exc}")
        raise typer.Exit(code=2) from exc
    if overrides:
        settings = settings.model_copy(update=overrides)
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_format == "json",
    )
    return settings


def fail(exc: EnclaveError) -> NoReturn:
    """Print an enclave error and exit non-zero."""
    err_console.print(
        f"[bold red]Error[/bold red] ({exc.category.value}): {exc.message}"
    )
    raise typer.Exit(code=1) from exc


def _to_dict(obj: Any) -> dict[str, Any]:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    return dict(obj)


def output_result(obj: Any, *, as_json: bool = False, title: str = "") -> None:
    """Render a pass result to the terminal."""
    data = _to_dict(obj)
    if as_json:
        console.print_json(json.dumps(data, default=str))
        return
    _print_dict(data, title=title)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    table = Table(title=title or None, show_header=False, pad_edge=False)
    table.add_column("key", style="cyan")
    table.add_column("value", overflow="fold")
    for key, value in data.items():
        if isinstance(value, (list, dict)):
            value = json.dumps(value) if value else "-"
        table.add_row(key, str(value))
    console.print(table)
