from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from stackwright_cli.options import (
    AccountOpt,
    ParamOpt,
    ParamsFileOpt,
    ProviderOpt,
    RegionOpt,
    ReplacementPolicyOpt,
    StackNameOpt,
    StateDirOpt,
    TemplateArg,
)
from stackwright_cli.project import default_stack_name, resolve_template_path
from stackwright_cli.render import render_plan
from stackwright_cli.utils import build_reconciler, collect_parameters, handle_error, is_json, print_json

console = Console()


def plan(
    ctx: typer.Context,
    template_file: TemplateArg = None,
    stack_name: StackNameOpt = None,
    param: ParamOpt = None,
    params_file: ParamsFileOpt = None,
    region: RegionOpt = None,
    account_id: AccountOpt = None,
    state_dir: StateDirOpt = None,
    provider: ProviderOpt = None,
    replacement_policy: ReplacementPolicyOpt = None,
    out: Annotated[Path | None, typer.Option("--out", "-o", help="Write the plan as JSON to this path")] = None,
    refresh: Annotated[bool, typer.Option(help="Refresh observed state from the provider first")] = True,
) -> None:
    """Show what apply would change (dry run)."""
    try:
        path = resolve_template_path(template_file)
        stack = stack_name or default_stack_name(path)
        reconciler = build_reconciler(
            ctx,
            region=region,
            account_id=account_id,
            state_dir=state_dir,
            provider=provider,
            replacement_policy=replacement_policy,
        )
        parameters = collect_parameters(param, params_file)

        with console.status("Planning..."):
            result = reconciler.plan(path, stack, parameters, refresh=refresh)

        if out:
            out.write_text(result.to_json())

        if is_json(ctx):
            print_json(result.to_dict())
            return

        render_plan(console, result)
        if out:
            console.print(f"[green]Plan written to {out}[/green]")
    except typer.Exit:
        raise
    except Exception as e:
        handle_error(ctx, e)
