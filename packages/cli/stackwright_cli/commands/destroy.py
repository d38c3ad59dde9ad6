from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console

from stackwright_cli.commands.apply import run_plan
from stackwright_cli.options import ProviderOpt, StateDirOpt
from stackwright_cli.utils import build_reconciler, handle_error

console = Console()


def destroy(
    ctx: typer.Context,
    stack_name: Annotated[str, typer.Option("--stack-name", "-s", help="Stack to destroy")],
    state_dir: StateDirOpt = None,
    provider: ProviderOpt = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Destroy without asking for confirmation")] = False,
) -> None:
    """Delete every resource of a stack (resources with DeletionPolicy Retain are only forgotten)."""
    try:
        reconciler = build_reconciler(ctx, state_dir=state_dir, provider=provider)
        if reconciler.store.load(stack_name) is None:
            raise FileNotFoundError(f"No state recorded for stack {stack_name!r}")

        with console.status("Planning destroy..."):
            plan = reconciler.plan_destroy(stack_name)

        run_plan(ctx, reconciler, plan, yes, verb="Destroy")
    except typer.Exit:
        raise
    except Exception as e:
        handle_error(ctx, e)
