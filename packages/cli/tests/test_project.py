"""Tests for project directory support."""

from __future__ import annotations

from pathlib import Path

import pytest
from stackwright_cli.project import default_stack_name, get_project_template_path, resolve_template_path


def test_project_template_found(tmp_path: Path):
    (tmp_path / ".stackwright").mkdir()
    (tmp_path / ".stackwright" / "template.yml").write_text("Resources: {}\n")
    assert get_project_template_path(tmp_path) == tmp_path / ".stackwright" / "template.yml"


def test_project_template_missing(tmp_path: Path):
    assert get_project_template_path(tmp_path) is None


def test_resolve_explicit_path(tmp_path: Path):
    p = tmp_path / "stack.yaml"
    p.write_text("Resources: {}\n")
    assert resolve_template_path(p) == p


def test_resolve_explicit_missing(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        resolve_template_path(tmp_path / "missing.yaml")


def test_resolve_from_project(tmp_path: Path, monkeypatch):
    (tmp_path / ".stackwright").mkdir()
    template = tmp_path / ".stackwright" / "template.yaml"
    template.write_text("Resources: {}\n")
    nested = tmp_path / "src"
    nested.mkdir()
    monkeypatch.chdir(nested)
    assert resolve_template_path(None) == template.resolve()


def test_resolve_without_project(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError, match="No template specified"):
        resolve_template_path(None)


@pytest.mark.parametrize(
    "filename,expected",
    [
        ("load-balancer.yaml", "load-balancer"),
        ("my_stack.v2.yaml", "my-stack-v2"),
        ("2024.json", "stack-2024"),
    ],
)
def test_default_stack_name(filename: str, expected: str):
    assert default_stack_name(Path(filename)) == expected


def test_default_stack_name_for_project_template(tmp_path: Path):
    project = tmp_path / "shop"
    assert default_stack_name(project / ".stackwright" / "template.yaml") == "shop"
