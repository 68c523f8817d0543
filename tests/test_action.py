"""Tests for the composite action definition."""

from __future__ import annotations

import re
from pathlib import Path

ACTION_FILE = Path(__file__).resolve().parents[1] / "action.yml"

_INPUT_EXPRESSION = re.compile(r"\$\{\{\s*inputs\.([\w-]+)\s*\}\}")


def _input_names(text: str) -> list[str]:
    section = text.split("\ninputs:\n", 1)[1].split("\noutputs:\n", 1)[0]
    return re.findall(r"^  ([\w-]+):$", section, re.MULTILINE)


def _run_scripts(text: str) -> list[str]:
    """Return the body of every `run:` key, inline or block."""
    scripts: list[str] = []
    current: list[str] | None = None
    run_indent = 0
    for line in text.splitlines():
        stripped = line.lstrip()
        indent = len(line) - len(stripped)
        if current is not None:
            if stripped and indent <= run_indent:
                scripts.append("\n".join(current))
                current = None
            else:
                current.append(line)
                continue
        if stripped.startswith("run:"):
            run_indent = indent
            value = stripped.removeprefix("run:").strip()
            if value in ("|", ">"):
                current = []
            else:
                scripts.append(value)
    if current is not None:
        scripts.append("\n".join(current))
    return scripts


def test_inputs_are_never_expanded_into_scripts() -> None:
    scripts = _run_scripts(ACTION_FILE.read_text())

    assert scripts
    for script in scripts:
        assert _INPUT_EXPRESSION.search(script) is None, script


def test_every_setting_input_is_passed_through_the_environment() -> None:
    text = ACTION_FILE.read_text()
    env_inputs = set(re.findall(r"^\s+INPUT_\w+: \$\{\{ inputs\.([\w-]+) \}\}$", text, re.MULTILINE))

    assert set(_input_names(text)) == env_inputs
