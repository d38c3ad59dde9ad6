"""Project directory support — finds the default template under .stackwright/."""

from __future__ import annotations

import re
from pathlib import Path

from stackwright.config import PROJECT_DIR, find_project_root

_TEMPLATE_NAMES = ("template.yaml", "template.yml", "template.json")


def get_project_template_path(project_root: Path) -> Path | None:
    """Return the path to .stackwright/template.yaml (or .yml/.json) if it exists."""
    for name in _TEMPLATE_NAMES:
        path = project_root / PROJECT_DIR / name
        if path.exists():
            return path
    return None


def resolve_template_path(template_file: Path | None) -> Path:
    """Resolve a template path — if None, try the project directory."""
    if template_file:
        if not template_file.exists():
            raise FileNotFoundError(str(template_file))
        return template_file

    root = find_project_root()
    if root:
        path = get_project_template_path(root)
        if path:
            return path

    raise FileNotFoundError(
        "No template specified and no .stackwright/template.yaml found. Pass a template file explicitly."
    )


def default_stack_name(template_path: Path) -> str:
    """Stack name derived from the template file name (``load-balancer.yaml`` -> ``load-balancer``)."""
    stem = template_path.stem if template_path.stem != "template" else template_path.resolve().parent.parent.name
    slug = re.sub(r"[^A-Za-z0-9-]+", "-", stem).strip("-")
    if not slug or not slug[0].isalpha():
        slug = f"stack-{slug}".rstrip("-")
    return slug[:128]
