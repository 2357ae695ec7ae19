"""Rich tables for diagnostics and effective configuration."""

from __future__ import annotations

from rich.console import Console
from rich.table import Table

from texmd.config import PipelineConfig
from texmd.phases.base import Diagnostic, DiagnosticKind

_KIND_STYLE = {
    DiagnosticKind.PHASE_FAILURE: "[red]",
    DiagnosticKind.ENVIRONMENT_MISMATCH: "[red]",
    DiagnosticKind.UNMATCHED_ENVIRONMENT: "[red]",
    DiagnosticKind.DELIMITER_MISMATCH: "[red]",
}


def line_of(text: str, position: int) -> int:
    """1-based line number of an offset (clamped to the text)."""
    return text.count("\n", 0, max(0, min(position, len(text)))) + 1


def print_diagnostics(
    diagnostics: list[Diagnostic],
    console: Console,
    source: str = "",
    title: str = "Diagnostics",
) -> None:
    """Print diagnostics as a table, or a single ok line when there are none."""
    if not diagnostics:
        console.print("  [green]ok[/] no diagnostics")
        return

    table = Table(title=title, show_lines=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Kind", style="bold")
    # offsets come from each phase's input, so later phases only approximate
    table.add_column("~Line", justify="right")
    table.add_column("Message")
    for index, diag in enumerate(diagnostics, 1):
        style = _KIND_STYLE.get(diag.kind, "[yellow]")
        line = str(line_of(source, diag.position)) if source else "-"
        table.add_row(str(index), f"{style}{diag.kind.value}[/]", line, diag.message)
    table.caption = f"{len(diagnostics)} diagnostic(s)"
    console.print(table)


def print_config(
    config: PipelineConfig, console: Console, env_file: str = "", service_url: str = "",
) -> None:
    """Print the effective pipeline configuration."""
    table = Table(title="Pipeline Configuration", show_lines=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    for name, value in config.to_dict().items():
        if isinstance(value, dict):
            value = ", ".join(f"{k}={v}" for k, v in value.items())
        elif isinstance(value, list):
            value = ", ".join(value) or "-"
        table.add_row(name, str(value))
    caption = []
    if env_file:
        caption.append(f"Settings file: {env_file}")
    if service_url:
        caption.append(f"Service: {service_url}")
    if caption:
        table.caption = "  ".join(caption)
    console.print(table)
