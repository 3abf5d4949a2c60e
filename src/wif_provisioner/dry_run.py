"""Dry run planning.

In dry run mode the reconcilers record what they would have done instead of
calling the cloud. The plan can be written out as a ``gcloud`` script so an
operator can review it or apply it by hand.
"""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

SCRIPT_FILENAME = "script.sh"
JWKS_FILENAME = "jwk.json"

SCRIPT_HEADER = """#!/bin/bash
# Generated by wif-provisioner in dry run mode.
set -euo pipefail
"""


def _quote(arg: str) -> str:
    # Arguments referencing script variables must stay expandable
    if "${" in arg:
        return f'"{arg}"'
    return shlex.quote(arg)


@dataclass(frozen=True)
class PlannedAction:
    resource: str
    description: str
    command: tuple[str, ...] = ()


@dataclass
class DryRunPlan:
    """Actions collected during one dry run."""

    actions: list[PlannedAction] = field(default_factory=list)
    files: dict[str, str] = field(default_factory=dict)
    variables: dict[str, tuple[str, ...]] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    def record(self, resource: str, description: str, command: list[str] | None = None) -> None:
        logger.info(description, extra={"resource": resource, "dry_run": True})
        self.actions.append(PlannedAction(resource, description, tuple(command or ())))

    def warn(self, message: str) -> None:
        logger.warning(message, extra={"dry_run": True})
        self.warnings.append(message)

    def add_file(self, filename: str, content: str) -> str:
        """Register a file the script depends on and return its name."""
        self.files[filename] = content
        return filename

    def variable(self, name: str, command: list[str]) -> str:
        """Define a script variable from a command's output and return its reference."""
        self.variables.setdefault(name, tuple(command))
        return f"${{{name}}}"

    def render_script(self) -> str:
        lines = [SCRIPT_HEADER]
        for name, command in self.variables.items():
            lines.append(f'{name}="$({" ".join(_quote(arg) for arg in command)})"')
        if self.variables:
            lines.append("")
        for action in self.actions:
            if not action.command:
                continue
            lines.append(f"# {action.description}")
            lines.append(" ".join(_quote(arg) for arg in action.command))
            lines.append("")
        return "\n".join(lines)

    def write(self, output_dir: Path) -> Path:
        """Write the script and its supporting files into ``output_dir``.

        Returns:
            Path of the generated script.
        """
        for filename, content in self.files.items():
            (output_dir / filename).write_text(content, encoding="utf-8")

        script_path = output_dir / SCRIPT_FILENAME
        script_path.write_text(self.render_script(), encoding="utf-8")
        script_path.chmod(0o750)
        logger.info(
            "Wrote dry run script",
            extra={"path": str(script_path), "action_count": len(self.actions)},
        )
        return script_path
