"""Reconciler configuration — defaults, project file, environment, explicit overrides."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

from stackwright.planner import ReplacementPolicy

logger = logging.getLogger(__name__)

PROJECT_DIR = ".stackwright"
CONFIG_FILE = "config.yaml"
ENV_PREFIX = "STACKWRIGHT_"


class ReconcilerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_workers: int = Field(default=4, ge=1)
    max_retries: int = Field(default=3, ge=0)
    retry_base_delay: float = Field(default=1.0, ge=0)
    poll_interval: float = Field(default=2.0, ge=0)
    stabilize_timeout: float = Field(default=600, ge=0)
    replacement_policy: ReplacementPolicy = ReplacementPolicy.BLOCK
    region: str = "us-east-1"
    account_id: str = "123456789012"
    partition: str = "aws"
    state_dir: Path = Path(PROJECT_DIR) / "state"
    provider: str = "local"
    provider_options: dict[str, Any] = Field(default_factory=dict)

    @property
    def local_store(self) -> Path:
        """Where the local provider keeps its simulated cloud (beside the state dir)."""
        return self.state_dir.parent / "local-cloud.json"


def find_project_root(start: Path | None = None) -> Path | None:
    """Walk up from start (default: cwd) looking for a .stackwright/ directory."""
    current = (start or Path.cwd()).resolve()
    for parent in [current, *current.parents]:
        if (parent / PROJECT_DIR).is_dir():
            return parent
    return None


def load_project_config(project_root: Path) -> dict[str, Any]:
    """Load .stackwright/config.yaml if it exists."""
    config_path = project_root / PROJECT_DIR / CONFIG_FILE
    if config_path.exists():
        return yaml.safe_load(config_path.read_text()) or {}
    return {}


def _from_env(environ: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for name in ReconcilerConfig.model_fields:
        key = ENV_PREFIX + name.upper()
        if key in environ and name != "provider_options":
            values[name] = environ[key]
    return values


def load_config(
    start: Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> ReconcilerConfig:
    """Build the effective configuration.

    Priority: explicit overrides > STACKWRIGHT_* env vars > .stackwright/config.yaml
    (nearest one walking up from ``start``) > defaults. A relative ``state_dir``
    from the project file is taken relative to the project root.
    """
    values: dict[str, Any] = {}

    root = find_project_root(start)
    if root is not None:
        project = load_project_config(root)
        if "state_dir" in project and not Path(project["state_dir"]).is_absolute():
            project["state_dir"] = root / project["state_dir"]
        values.update(project)
        if "state_dir" not in project:
            values["state_dir"] = root / PROJECT_DIR / "state"
        logger.debug("Loaded project config from %s", root / PROJECT_DIR)

    values.update(_from_env(os.environ if environ is None else environ))
    values.update({k: v for k, v in (overrides or {}).items() if v is not None})
    return ReconcilerConfig(**values)
