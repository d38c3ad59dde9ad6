from __future__ import annotations

import signal
import threading
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
from stackwright_cli.render import render_plan, render_report
from stackwright_cli.utils import build_reconciler, collect_parameters, handle_error, is_json, print_json

console = Console()


def run_plan(ctx: typer.Context, reconciler, plan, yes: bool, verb: str = "Apply"):
    """Show ``plan``, confirm, execute it with Ctrl-C mapped to cancellation, and report."""
    json_mode = is_json(ctx)
    if plan.is_empty:
        # nothing to dispatch; still records outputs and metadata-only changes
        report = reconciler.apply(plan)
        if json_mode:
            print_json({"plan": plan.to_dict(), "report": report.to_dict()})
        else:
            render_plan(console, plan)
        return report

    if json_mode and not yes:
        raise ValueError("--yes is required with --json")
    if not json_mode:
        render_plan(console, plan)
        if not yes and not typer.confirm(f"\n{verb} these changes to stack {plan.stack_name}?"):
            console.print("Aborted.")
            raise typer.Exit(1)

    cancel = threading.Event()
    previous = None
    if threading.current_thread() is threading.main_thread():
        previous = signal.signal(signal.SIGINT, lambda *_: cancel.set())
    try:
        if json_mode:
            report = reconciler.apply(plan, cancel=cancel)
        else:
            with console.status(f"{verb}ing {len(plan.changes)} change(s)..."):
                report = reconciler.apply(plan, cancel=cancel)
    finally:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)

    if json_mode:
        print_json({"plan": plan.to_dict(), "report": report.to_dict()})
    else:
        render_report(console, report)
    if not report.success:
        raise typer.Exit(1)
    return report


def apply(
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
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Apply without asking for confirmation")] = False,
) -> None:
    """Plan and converge the stack to the template."""
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
            plan = reconciler.plan(path, stack, parameters)

        run_plan(ctx, reconciler, plan, yes)
    except typer.Exit:
        raise
    except Exception as e:
        handle_error(ctx, e)
