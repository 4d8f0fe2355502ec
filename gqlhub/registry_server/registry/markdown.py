"""
Markdown rendering of check and publish outcomes for GitHub check runs.

Example:
    >>> bolderize("Field 'hello' was removed from object type 'Query'")
    "Field **hello** was removed from object type **Query**"
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from ..schema.changes import CriticalityLevel, SchemaChange

_QUOTED = re.compile(r"'([^']+)'")


@dataclass(frozen=True)
class CheckRunOutput:
    title: str
    summary: str


def bolderize(message: str) -> str:
    """Render single-quoted names in bold."""
    return _QUOTED.sub(r"**\1**", message)


def errors_to_markdown(messages: Iterable[str]) -> str:
    return "\n".join(["", *(f"- {bolderize(m)}" for m in messages)])


def _write_changes(kind: str, changes: Sequence[SchemaChange], lines: List[str]) -> None:
    lines.extend(["", f"### {kind} changes"])
    lines.extend(f" - {bolderize(c.message)}" for c in changes)


def changes_to_markdown(changes: Sequence[SchemaChange]) -> str:
    breaking = [c for c in changes if c.criticality is CriticalityLevel.BREAKING]
    dangerous = [c for c in changes if c.criticality is CriticalityLevel.DANGEROUS]
    safe = [c for c in changes if c.criticality is CriticalityLevel.SAFE]

    lines = [f"## Found {len(changes)} change{'s' if len(changes) > 1 else ''}", ""]
    if breaking:
        lines.append(f"Breaking: {len(breaking)}")
    if dangerous:
        lines.append(f"Dangerous: {len(dangerous)}")
    if safe:
        lines.append(f"Safe: {len(safe)}")

    if breaking:
        _write_changes("Breaking", breaking, lines)
    if dangerous:
        _write_changes("Dangerous", dangerous, lines)
    if safe:
        _write_changes("Safe", safe, lines)

    return "\n".join(lines)


def warnings_to_markdown(warnings: Iterable[str]) -> str:
    return "\n".join(["", "### Policy Warnings", *(f"- {bolderize(w)}" for w in warnings)])


def render_check_output(
    success: bool,
    changes: Optional[Sequence[SchemaChange]] = None,
    errors: Optional[Sequence[str]] = None,
    warnings: Optional[Sequence[str]] = None,
) -> CheckRunOutput:
    """Title and summary of a schema check run."""
    if success:
        if not changes:
            title, summary = "No changes", "No changes detected"
        else:
            title, summary = "No breaking changes", changes_to_markdown(changes)
    else:
        total = len(errors or ())
        title = f"Detected {total} error{'' if total == 1 else 's'}"
        summary = "\n\n".join(
            part
            for part in (
                errors_to_markdown(errors) if errors else None,
                changes_to_markdown(changes) if changes else None,
            )
            if part
        )

    if warnings:
        summary = f"{summary}\n\n{warnings_to_markdown(warnings)}"

    return CheckRunOutput(title=title, summary=summary)


def render_publish_output(
    valid: bool,
    initial: bool,
    changes: Optional[Sequence[SchemaChange]] = None,
    errors: Optional[Sequence[str]] = None,
    messages: Optional[Sequence[str]] = None,
    forced: bool = False,
) -> CheckRunOutput:
    """Title and summary of a schema publish run."""
    if valid:
        if initial:
            title, summary = "Schema published", "Initial Schema published"
        elif not changes:
            title, summary = "No changes", "No changes detected"
        else:
            title, summary = "No breaking changes", changes_to_markdown(changes)
    else:
        total = len(errors or ())
        title = f"Detected {total} error{'' if total == 1 else 's'}"
        summary = "\n\n".join(
            part
            for part in (
                errors_to_markdown(errors) if errors else None,
                changes_to_markdown(changes) if changes else None,
            )
            if part
        )

    if messages:
        summary += "\n\n" + "\n".join(f"- {m}" for m in messages)

    if not valid and forced:
        title += " (forced)"

    return CheckRunOutput(title=title, summary=summary)
