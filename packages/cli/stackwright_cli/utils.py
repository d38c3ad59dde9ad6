from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.logging import RichHandler

_err_console = Console(stderr=True)


def setup_logging(verbose: bool) -> None:
    """Route engine logs through rich on stderr: warnings by default, everything with --verbose."""
    level = logging.DEBUG if verbose else logging.WARNING
    root = logging.getLogger("stackwright")
    root.handlers = [RichHandler(console=_err_console, show_path=verbose, rich_tracebacks=True)]
    root.setLevel(level)
    root.propagate = False


def handle_error(ctx: typer.Context, e: Exception) -> None:
    """Print a clean error message and exit 1."""
    import yaml
    from pydantic import ValidationError
    from stackwright.errors import StackwrightError

    verbose = ctx.obj.get("verbose", False) if ctx.obj else False
    json_mode = ctx.obj.get("json", False) if ctx.obj else False

    if isinstance(e, FileNotFoundError):
        msg = f"File not found: {e}"
    elif isinstance(e, yaml.YAMLError):
        msg = f"Invalid YAML: {e}"
    elif isinstance(e, StackwrightError):
        msg = f"{type(e).__name__}: {e}"
    elif isinstance(e, ValidationError):
        msg = f"Invalid configuration: {e}"
    elif isinstance(e, ValueError):
        msg = str(e)
    else:
        msg = f"Error: {e}"

    if json_mode:
        print(json.dumps({"error": msg, "type": type(e).__name__}))
    else:
        _err_console.print(f"[red]Error:[/red] {msg}")

    if verbose:
        _err_console.print_exception()

    raise typer.Exit(1)


def is_json(ctx: typer.Context) -> bool:
    return bool(ctx.obj and ctx.obj.get("json"))


def build_reconciler(
    ctx: typer.Context,
    region: str | None = None,
    account_id: str | None = None,
    state_dir: Path | None = None,
    provider: str | None = None,
    replacement_policy: str | None = None,
):
    """Reconciler for this invocation: project config, env, then explicit options."""
    from stackwright.config import load_config
    from stackwright.reconciler import Reconciler

    config = load_config(
        overrides={
            "region": region,
            "account_id": account_id,
            "state_dir": state_dir,
            "provider": provider,
            "replacement_policy": replacement_policy,
        }
    )
    logging.getLogger("stackwright").debug("Effective config: %s", config.model_dump(mode="json"))
    return Reconciler(config)


def collect_parameters(assignments: list[str] | None, params_file: Path | None) -> dict[str, Any]:
    """Merge --params-file with --param Key=Value (the latter wins)."""
    from stackwright.loader import load_file
    from stackwright.parameters import parse_assignments, parse_parameter_document

    values: dict[str, Any] = {}
    if params_file is not None:
        values.update(parse_parameter_document(load_file(params_file)))
    values.update(parse_assignments(assignments or []))
    return values


def print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))
