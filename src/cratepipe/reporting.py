# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Rich rendering of check results and pipeline reports."""

from __future__ import annotations

import sys
from collections.abc import Iterable
from functools import lru_cache
from typing import Final, Literal, TypeAlias

from rich import box
from rich.console import Console
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from .errors import PipelineError
from .models import CheckResult
from .pipeline import PipelineReport

Marker: TypeAlias = Literal["ok", "fail", "skip"]

_STATUS_STYLES: Final[dict[str, str]] = {"pass": "green", "fail": "red"}
_MARKERS: Final[dict[Marker, tuple[str, str]]] = {
    "ok": ("✅ ", "green"),
    "fail": ("❌ ", "red"),
    "skip": ("⚠️ ", "yellow"),
}


def _stdout_is_terminal() -> bool:
    try:
        return sys.stdout.isatty()
    except (AttributeError, ValueError):
        return False


@lru_cache(maxsize=8)
def _cached_console(color: bool, emoji: bool, terminal: bool) -> Console:
    enabled = color and terminal
    return Console(
        color_system="auto" if enabled else None,
        force_terminal=terminal,
        no_color=not enabled,
        emoji=emoji,
        soft_wrap=True,
    )


def report_console(*, use_color: bool, use_emoji: bool) -> Console:
    """Return the shared stdout console for the given preferences.

    Colour is only enabled when stdout is a terminal.
    """

    return _cached_console(use_color, use_emoji, _stdout_is_terminal())


def _status_line(console: Console, marker: Marker, message: str, *, use_color: bool, use_emoji: bool) -> None:
    symbol, style = _MARKERS[marker]
    text = Text(f"{symbol if use_emoji else ''}{message}")
    if use_color:
        text.stylize(style)
    console.print(text)


def artifact_line(console: Console, kind: str, label: str, key: str, *, use_color: bool, use_emoji: bool) -> None:
    """Print the line announcing a produced artifact, e.g. ``package app-0.1.0 (pkg-...)``."""

    _status_line(console, "ok", f"{kind} {label} ({key})", use_color=use_color, use_emoji=use_emoji)


def check_line(console: Console, result: CheckResult, *, use_color: bool, use_emoji: bool) -> None:
    """Print the status line of one check, followed by its diagnostics when it failed."""

    if result.passed:
        suffix = " (cached)" if result.cached else ""
        _status_line(console, "ok", f"check {result.name} passed{suffix}", use_color=use_color, use_emoji=use_emoji)
        return
    _status_line(console, "fail", f"check {result.name} failed", use_color=use_color, use_emoji=use_emoji)
    if result.diagnostics:
        console.print(Text(result.diagnostics))


def error_line(console: Console, node: str, error: PipelineError, *, use_color: bool, use_emoji: bool) -> None:
    """Print a fatal component error with its hint and context."""

    _status_line(console, "fail", f"{node}: {error}", use_color=use_color, use_emoji=use_emoji)


def skip_line(console: Console, nodes: Iterable[str], *, use_color: bool, use_emoji: bool) -> None:
    """Print the components skipped because an upstream component failed."""

    names = ", ".join(nodes)
    if names:
        _status_line(console, "skip", f"skipped: {names}", use_color=use_color, use_emoji=use_emoji)


def create_checks_table(results: Iterable[CheckResult], *, use_color: bool) -> Table:
    """Create a table with one row per check result.

    Args:
        results: Results in the order they should be listed.
        use_color: Flag indicating whether status cells are styled.

    Returns:
        Table: Rich table of check name, kind, status and cache reuse.
    """

    table = Table(box=box.SIMPLE, pad_edge=False, expand=False)
    table.add_column("Check", no_wrap=True)
    table.add_column("Kind", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Cached", justify="right", no_wrap=True)
    for result in results:
        status = Text(result.status, style=_STATUS_STYLES[result.status] if use_color else "")
        table.add_row(result.name, result.kind.value, status, "yes" if result.cached else "no")
    return table


def render_report(
    report: PipelineReport,
    *,
    use_color: bool = False,
    use_emoji: bool = False,
    console: Console | None = None,
) -> None:
    """Print ``report`` as a summary table followed by failure details.

    Args:
        report: Outcome of a pipeline run.
        use_color: Flag indicating whether ANSI colour support is desired.
        use_emoji: Flag indicating whether emoji output is desired.
        console: Console to print to; the shared stdout console when omitted.
    """

    target = console or report_console(use_color=use_color, use_emoji=use_emoji)
    options = {"use_color": use_color, "use_emoji": use_emoji}
    if use_color:
        target.print(Rule("cratepipe"))
    else:
        target.print("--- cratepipe ---")
    if report.dependencies is not None:
        artifact_line(target, "dependencies", report.dependencies.identity.label, report.dependencies.key, **options)
    if report.package is not None:
        artifact_line(target, "package", report.package.identity.label, report.package.key, **options)
    if report.checks:
        target.print(create_checks_table(report.checks, use_color=use_color))
    for result in report.failed_checks:
        check_line(target, result, **options)
    for node, error in report.errors.items():
        error_line(target, node, error, **options)
    skip_line(target, report.skipped, **options)
    if report.environment is not None:
        artifact_line(
            target,
            "dev environment",
            f"with {len(report.environment.tools)} tools",
            report.environment.digest[:12],
            **options,
        )


__all__ = [
    "artifact_line",
    "check_line",
    "create_checks_table",
    "error_line",
    "render_report",
    "report_console",
    "skip_line",
]
