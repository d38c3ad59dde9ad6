import typer

from stackwright_cli import __version__
from stackwright_cli.commands.apply import apply
from stackwright_cli.commands.destroy import destroy
from stackwright_cli.commands.graph_cmd import graph
from stackwright_cli.commands.outputs import outputs
from stackwright_cli.commands.plan import plan
from stackwright_cli.commands.types_cmd import types
from stackwright_cli.commands.validate import validate
from stackwright_cli.utils import setup_logging


def _version_callback(value: bool) -> None:
    if value:
        print(f"stackwright {__version__}")
        raise typer.Exit()


app = typer.Typer(
    name="stackwright",
    help="Declarative stack reconciler for CloudFormation-style templates",
    no_args_is_help=True,
)


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False, "--version", "-V", help="Show version", callback=_version_callback, is_eager=True
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["json"] = json_output
    setup_logging(verbose)


app.command()(validate)
app.command()(plan)
app.command()(apply)
app.command()(destroy)
app.command()(graph)
app.command()(outputs)
app.command()(types)
