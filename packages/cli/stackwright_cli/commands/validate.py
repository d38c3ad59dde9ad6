from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console
from rich.rule import Rule
from rich.table import Table

from stackwright_cli.options import (
    AccountOpt,
    ParamOpt,
    ParamsFileOpt,
    RegionOpt,
    StackNameOpt,
    StateDirOpt,
    TemplateArg,
)
from stackwright_cli.project import default_stack_name, resolve_template_path
from stackwright_cli.utils import build_reconciler, collect_parameters, handle_error, is_json, print_json

console = Console()


def validate(
    ctx: typer.Context,
    template_file: TemplateArg = None,
    stack_name: StackNameOpt = None,
    param: ParamOpt = None,
    params_file: ParamsFileOpt = None,
    region: RegionOpt = None,
    account_id: AccountOpt = None,
    state_dir: StateDirOpt = None,
    show_resources: Annotated[bool, typer.Option("--resources", help="List every resource and its status")] = False,
) -> None:
    """Parse a template, resolve parameters and evaluate it without touching any resource."""
    try:
        from stackwright.evaluator import Excluded

        path = resolve_template_path(template_file)
        stack = stack_name or default_stack_name(path)
        reconciler = build_reconciler(ctx, region=region, account_id=account_id, state_dir=state_dir)
        parameters = collect_parameters(param, params_file)

        with console.status("Validating template..."):
            result = reconciler.validate(path, stack, parameters)

        resolved = result.resolved
        if is_json(ctx):
            print_json(
                {
                    "valid": True,
                    "stack_name": stack,
                    "parameters": resolved.context.parameters.masked(),
                    "conditions": resolved.conditions,
                    "resources": result.order,
                    "excluded": resolved.excluded,
                    "outputs": sorted(resolved.outputs),
                    "imports": sorted(resolved.imports),
                }
            )
            return

        console.print(Rule(f"[bold]{path.name}[/bold]"))
        if result.template.description:
            console.print(f"[dim]{result.template.description}[/dim]")
        console.print(
            f"[green]Valid.[/green] {len(result.order)} resource(s) included, "
            f"{len(resolved.excluded)} excluded, {len(resolved.outputs)} output(s)."
        )

        if resolved.conditions:
            conditions = ", ".join(
                f"{name}=[{'green' if value else 'yellow'}]{str(value).lower()}[/]"
                for name, value in resolved.conditions.items()
            )
            console.print(f"Conditions: {conditions}")

        if show_resources:
            table = Table(title=f"Resources for stack {stack}")
            table.add_column("Logical ID", style="cyan")
            table.add_column("Type")
            table.add_column("Status")
            table.add_column("Depends on", style="dim")
            for logical_id, inclusion in resolved.inclusions.items():
                if isinstance(inclusion, Excluded):
                    table.add_row(
                        logical_id,
                        result.template.resources[logical_id].type,
                        f"[yellow]excluded ({inclusion.condition})[/yellow]",
                        "",
                    )
                    continue
                resource = resolved.resources[logical_id]
                table.add_row(logical_id, resource.type, "[green]included[/green]", ", ".join(sorted(resource.dependencies)))
            console.print(table)
    except typer.Exit:
        raise
    except Exception as e:
        handle_error(ctx, e)
