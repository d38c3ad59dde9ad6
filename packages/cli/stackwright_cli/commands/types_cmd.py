from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from stackwright_cli.utils import handle_error, is_json, print_json

console = Console()


def types(
    ctx: typer.Context,
    service: Annotated[str | None, typer.Option("--service", help="Only types of this service, e.g. ec2")] = None,
) -> None:
    """List the resource types the catalog knows, and the installed plugins."""
    try:
        from stackwright.catalog import get_catalog
        from stackwright.plugins import list_plugins

        type_defs = get_catalog().list_types(service.lower() if service else None)
        plugins = list_plugins()

        if is_json(ctx):
            print_json({"types": [t.to_dict() for t in type_defs], "plugins": plugins})
            return

        if not type_defs:
            console.print(f"[yellow]No resource types for service {service!r}.[/yellow]")
        else:
            table = Table(title="Resource types")
            table.add_column("Type", style="cyan")
            table.add_column("Required", style="dim")
            table.add_column("Forces replacement", style="dim")
            table.add_column("Hints")
            for t in type_defs:
                hints = []
                if t.async_provisioning:
                    hints.append("async")
                if t.tolerates_transient_absence:
                    hints.append("tolerant")
                table.add_row(t.type_name, ", ".join(sorted(t.required)), ", ".join(sorted(t.replacement)), " ".join(hints))
            console.print(table)

        for group, names in plugins.items():
            console.print(f"[bold]{group}[/bold]: {', '.join(names) if names else '[dim]none[/dim]'}")
    except typer.Exit:
        raise
    except Exception as e:
        handle_error(ctx, e)
