"""Options shared by several commands."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

TemplateArg = Annotated[
    Path | None, typer.Argument(help="Template file (YAML or JSON); default: .stackwright/template.yaml")
]
StackNameOpt = Annotated[
    str | None, typer.Option("--stack-name", "-s", help="Stack name (default: derived from the template file name)")
]
RegionOpt = Annotated[str | None, typer.Option("--region", help="Region for AWS::Region and physical ids")]
AccountOpt = Annotated[str | None, typer.Option("--account-id", help="Account id for AWS::AccountId")]
StateDirOpt = Annotated[Path | None, typer.Option("--state-dir", help="Directory holding stack state files")]
ProviderOpt = Annotated[str | None, typer.Option("--provider", help="Resource provider name (default: local)")]
ParamOpt = Annotated[
    list[str] | None, typer.Option("--param", "-p", help="Parameter value as Key=Value (repeatable)")
]
ParamsFileOpt = Annotated[
    Path | None, typer.Option("--params-file", help="YAML/JSON file of parameter values", exists=True)
]
ReplacementPolicyOpt = Annotated[
    str | None, typer.Option("--replacement-policy", help="Unsafe replacement handling: block or warn")
]
