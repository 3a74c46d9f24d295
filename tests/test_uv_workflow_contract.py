#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Contract tests for uv-based development and test workflow.
"""

from __future__ import annotations

from pathlib import Path


def _iter_non_comment_lines(text: str) -> list[str]:
    lines: list[str] = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        lines.append(line)
    return lines


def test_root_makefile_uses_uv_for_sync_and_tests() -> None:
    project_root = Path(__file__).resolve().parents[1]
    content = (project_root / "Makefile").read_text(encoding="utf-8")

    assert "uv sync" in content
    assert "uv run pytest -q" in content


def test_makefile_example_targets_exist_and_use_uv() -> None:
    project_root = Path(__file__).resolve().parents[1]
    lines = _iter_non_comment_lines((project_root / "Makefile").read_text(encoding="utf-8"))

    violations = [line for line in lines if "python" in line and "uv run python" not in line]
    assert not violations, "Found non-uv python commands: " + "; ".join(violations)

    for line in lines:
        if line.startswith("uv run python "):
            script = line.split()[-1]
            assert (project_root / script).is_file(), script
