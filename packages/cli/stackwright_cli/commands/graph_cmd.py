from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console
from rich.tree import Tree

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


def graph(
    ctx: typer.Context,
    template_file: TemplateArg = None,
    stack_name: StackNameOpt = None,
    param: ParamOpt = None,
    params_file: ParamsFileOpt = None,
    region: RegionOpt = None,
    account_id: AccountOpt = None,
    state_dir: StateDirOpt = None,
    dot: Annotated[bool, typer.Option("--dot", help="Print the graph in Graphviz DOT format")] = False,
) -> None:
    """Show the resource dependency graph, its creation order and its parallel waves."""
    try:
        path = resolve_template_path(template_file)
        stack = stack_name or default_stack_name(path)
        reconciler = build_reconciler(ctx, region=region, account_id=account_id, state_dir=state_dir)
        result = reconciler.validate(path, stack, collect_parameters(param, params_file))
        dependency_graph = result.graph

        if is_json(ctx):
            print_json(
                {
                    "order": result.order,
                    "waves": dependency_graph.waves(),
                    "edges": [list(edge) for edge in dependency_graph.edges()],
                }
            )
            return

        if dot:
            lines = [f'digraph "{stack}" {{', "  rankdir=LR;"]
            lines.extend(f'  "{node}";' for node in dependency_graph.nodes)
            lines.extend(f'  "{dep}" -> "{node}";' for dep, node in dependency_graph.edges())
            lines.append("}")
            print("\n".join(lines))
            return

        tree = Tree(f"[bold]{stack}[/bold] ({len(result.order)} resources)")
        for i, wave in enumerate(dependency_graph.waves(), 1):
            branch = tree.add(f"[cyan]Wave {i}[/cyan]")
            for node in wave:
                deps = sorted(dependency_graph.dependencies_of(node))
                suffix = f" [dim]<- {', '.join(deps)}[/dim]" if deps else ""
                branch.add(f"{node} [dim]{result.resolved.resources[node].type}[/dim]{suffix}")
        console.print(tree)
    except typer.Exit:
        raise
    except Exception as e:
        handle_error(ctx, e)
