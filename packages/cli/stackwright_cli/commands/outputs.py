from __future__ import annotations

import json
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from stackwright_cli.options import StateDirOpt
from stackwright_cli.utils import build_reconciler, handle_error, is_json, print_json

console = Console()


def outputs(
    ctx: typer.Context,
    stack_name: Annotated[str, typer.Option("--stack-name", "-s", help="Stack whose outputs to show")],
    state_dir: StateDirOpt = None,
) -> None:
    """Show the recorded outputs and exports of an applied stack."""
    try:
        reconciler = build_reconciler(ctx, state_dir=state_dir)
        state = reconciler.store.load(stack_name)
        if state is None:
            raise FileNotFoundError(f"No state recorded for stack {stack_name!r}")

        if is_json(ctx):
            print_json({"outputs": state.outputs, "exports": state.exports})
            return

        if not state.outputs:
            console.print(f"Stack {stack_name} has no outputs.")
            return

        table = Table(title=f"Outputs of {stack_name} (serial {state.serial})")
        table.add_column("Output", style="cyan")
        table.add_column("Value")
        for name, value in state.outputs.items():
            table.add_row(name, _text(value))
        console.print(table)

        if state.exports:
            exports = Table(title="Exports")
            exports.add_column("Export name", style="cyan")
            exports.add_column("Value")
            for name, value in state.exports.items():
                exports.add_row(name, _text(value))
            console.print(exports)
    except typer.Exit:
        raise
    except Exception as e:
        handle_error(ctx, e)


def _text(value) -> str:
    return value if isinstance(value, str) else json.dumps(value)
