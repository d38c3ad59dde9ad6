"""Rich renderings of plans and apply reports, shared by plan, apply and destroy."""

from __future__ import annotations

import json

from rich.console import Console
from rich.table import Table

_ACTION_STYLES = {
    "create": ("green", "+"),
    "update": ("yellow", "~"),
    "replace": ("magenta", "-/+"),
    "delete": ("red", "-"),
}


def _short(value) -> str:
    if isinstance(value, (dict, list)):
        text = json.dumps(value, sort_keys=True)
    else:
        text = "" if value is None else str(value)
    return text if len(text) <= 60 else text[:57] + "..."


def render_plan(console: Console, plan) -> None:
    data = plan.to_dict()
    if plan.is_empty:
        console.print(f"[green]No changes.[/green] Stack {plan.stack_name} matches the template.")
        return

    table = Table(title=f"Plan for stack {plan.stack_name}")
    table.add_column("", width=3)
    table.add_column("Logical ID", style="cyan")
    table.add_column("Type")
    table.add_column("Action")
    table.add_column("Reason", style="dim")
    for change in data["changes"]:
        style, symbol = _ACTION_STYLES[change["action"]]
        action = change["action"] + (" (retain)" if change.get("retain") else "")
        table.add_row(
            f"[{style}]{symbol}[/{style}]",
            change["logical_id"],
            change["type"],
            f"[{style}]{action}[/{style}]",
            change.get("reason", ""),
        )
    console.print(table)

    for change in data["changes"]:
        if not change.get("changes"):
            continue
        console.print(f"\n[bold]{change['logical_id']}[/bold]")
        for prop in change["changes"]:
            marker = " [magenta](forces replacement)[/magenta]" if prop["requires_replacement"] else ""
            console.print(f"  {prop['name']}: {_short(prop['before'])} -> {_short(prop['after'])}{marker}")

    counts = data["summary"]
    console.print(
        f"\nPlan: {counts['create']} to create, {counts['update']} to update, "
        f"{counts['replace']} to replace, {counts['delete']} to delete."
    )
    for warning in plan.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")


def render_report(console: Console, report) -> None:
    table = Table(title=f"Apply report for stack {report.stack_name}")
    table.add_column("Logical ID", style="cyan")
    table.add_column("Action")
    table.add_column("Result")
    table.add_column("Physical ID", style="dim")
    table.add_column("Attempts", justify="right")
    for result in report.succeeded:
        table.add_row(result.logical_id, result.action.value, "[green]ok[/green]", result.physical_id or "", str(result.attempts))
    for result in report.failed:
        table.add_row(
            result.logical_id,
            result.action.value,
            f"[red]failed: {_short(result.error)}[/red]",
            result.physical_id or "",
            str(result.attempts),
        )
    for logical_id in report.not_attempted:
        table.add_row(logical_id, "", "[yellow]not attempted[/yellow]", "", "0")
    console.print(table)

    if report.success:
        console.print("[green]Apply complete.[/green]")
    elif report.cancelled:
        console.print("[yellow]Apply cancelled.[/yellow] Completed operations are recorded in state.")
    else:
        console.print("[red]Apply failed.[/red] Completed operations are recorded in state; re-run to converge.")
