"""Output formatting for review reports."""

import json
from abc import ABC, abstractmethod
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from diffsight.diff import parse_detailed_diff
from diffsight.models import AnalysisMeta, Severity
from diffsight.output.diff_view import render_annotated_diff, render_annotated_diff_markdown
from diffsight.placement import severity_summary
from diffsight.review import ReviewReport, sort_findings


class OutputFormatter(ABC):
  """Base output formatter."""

  def __init__(self, verbose: bool = False):
    self.verbose = verbose

  @abstractmethod
  def format(self, report: ReviewReport) -> str:
    """Format review report for output."""
    ...


class TerminalFormatter(OutputFormatter):
  """Rich terminal output formatter."""

  SEVERITY_STYLES = {
    Severity.BUG: "bold red",
    Severity.SECURITY: "bold magenta",
    Severity.SUGGESTION: "yellow",
    Severity.NITPICK: "dim",
  }

  def __init__(self, console: Console | None = None, verbose: bool = False):
    super().__init__(verbose)
    self.console = console or Console()

  def format(self, report: ReviewReport) -> str:
    self._print_header(report)
    self._print_findings(report)
    self._print_meta(report)
    if self.verbose:
      self._print_diff(report)
    return ""

  def _print_header(self, report: ReviewReport) -> None:
    change = report.change
    title = change.title
    if change.number is not None:
      title = f"#{change.number} {title}"
    details = (
      f"{change.author}  {change.head_branch} -> {change.base_branch}\n"
      f"{change.changed_files} file(s), +{change.additions} -{change.deletions}"
    )
    self.console.print()
    self.console.print(Panel(
      escape(details),
      title=f"[bold]{escape(title)}[/bold]",
      subtitle=f"claude/{report.model}",
      border_style="blue",
    ))
    for warning in report.warnings:
      self.console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")

  def _print_findings(self, report: ReviewReport) -> None:
    if not report.findings:
      self.console.print("\n[green]No issues found.[/green]")
      return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Severity", width=10)
    table.add_column("Conf", width=6)
    table.add_column("Location", width=30)
    table.add_column("Issue", min_width=40)

    off_diff = {id(f) for f in report.partition.off_diff}
    for finding in sort_findings(report.findings):
      style = self.SEVERITY_STYLES.get(finding.severity, "")
      message = escape(finding.description)
      if finding.suggested_fix:
        message += f"\n[dim]Fix: {escape(finding.suggested_fix)}[/dim]"
      for loc in finding.related_locations or ():
        message += f"\n[dim]Related: {escape(loc.file)}:{loc.line} {escape(loc.reason)}[/dim]"

      location = f"{escape(finding.file)}:{finding.line}"
      if id(finding) in off_diff:
        location += " [dim](outside diff)[/dim]"

      table.add_row(
        Text(finding.severity.value.upper(), style=style),
        finding.confidence.value,
        location,
        message,
      )

    self.console.print()
    self.console.print(table)
    self.console.print(f"\n[dim]{severity_summary(report.findings)}[/dim]")
    if report.review_url:
      self.console.print(f"[dim]Review URL:[/dim] {report.review_url}")

  def _print_meta(self, report: ReviewReport) -> None:
    for label, meta in (("quick", report.meta), ("deep", report.deep_meta)):
      if meta is None:
        continue
      self.console.print(
        f"[dim]{label}: {meta.num_turns} turn(s), {meta.duration_ms / 1000:.1f}s, "
        f"${meta.cost_usd:.4f}[/dim]"
      )

  def _print_diff(self, report: ReviewReport) -> None:
    files = parse_detailed_diff(report.change.diff)
    self.console.print()
    self.console.print(render_annotated_diff(files, report.findings))
    self.console.print(f"[dim]({len(report.change.diff)} characters)[/dim]")


class JsonFormatter(OutputFormatter):
  """JSON output formatter."""

  def format(self, report: ReviewReport) -> str:
    change = report.change
    data = {
      "title": change.title,
      "number": change.number,
      "base": change.base_branch,
      "head": change.head_branch,
      "model": report.model,
      "summary": severity_summary(report.findings),
      "findings": [f.to_wire() for f in sort_findings(report.findings)],
      "inline": [f.to_wire() for f in report.partition.inline],
      "off_diff": [f.to_wire() for f in report.partition.off_diff],
      "meta": _meta_dict(report.meta),
      "deep_meta": _meta_dict(report.deep_meta),
      "review_url": report.review_url,
      "warnings": list(report.warnings),
    }
    return json.dumps(data, indent=2)


def _meta_dict(meta: AnalysisMeta | None) -> dict[str, Any] | None:
  if meta is None:
    return None
  return {
    "cost_usd": meta.cost_usd,
    "duration_ms": meta.duration_ms,
    "duration_api_ms": meta.duration_api_ms,
    "num_turns": meta.num_turns,
    "session_id": meta.session_id,
  }


class MarkdownFormatter(OutputFormatter):
  """Markdown output formatter."""

  def format(self, report: ReviewReport) -> str:
    change = report.change
    title = change.title if change.number is None else f"#{change.number} {change.title}"
    lines = [
      f"# Code Review: {title}",
      "",
      f"**Model:** claude/{report.model}",
      "",
      severity_summary(report.findings),
      "",
    ]

    for warning in report.warnings:
      lines.extend([f"> **Warning:** {warning}", ""])

    if report.findings:
      lines.extend(["## Findings", ""])
      for finding in sort_findings(report.findings):
        lines.append(
          f"### [{finding.severity.value.upper()}] {finding.file}:{finding.line}"
        )
        lines.append("")
        lines.append(f"`[{finding.confidence.value}]` {finding.description}")
        if finding.suggested_fix:
          lines.extend(["", f"**Suggested fix:** {finding.suggested_fix}"])
        lines.append("")
    else:
      lines.extend(["## Findings", "", "No issues found.", ""])

    if self.verbose:
      lines.extend(["## Diff", ""])
      files = parse_detailed_diff(change.diff)
      lines.append(render_annotated_diff_markdown(files, report.findings))

    return "\n".join(lines)


class GitHubFormatter(OutputFormatter):
  """GitHub Actions workflow command formatter for PR annotations."""

  def format(self, report: ReviewReport) -> str:
    lines = []
    for finding in sort_findings(report.findings):
      level = self._severity_to_level(finding.severity)
      location = f"file={finding.file},line={finding.line}"
      if finding.end_line is not None:
        location += f",endLine={finding.end_line}"
      message = f"[{finding.category}] {finding.description}"
      message = message.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")
      lines.append(f"::{level} {location}::{message}")
    return "\n".join(lines)

  def _severity_to_level(self, severity: Severity) -> str:
    if severity in (Severity.BUG, Severity.SECURITY):
      return "error"
    if severity == Severity.SUGGESTION:
      return "warning"
    return "notice"


def get_formatter(format_type: str, verbose: bool = False) -> OutputFormatter:
  """Get formatter by type name."""
  formatters = {
    "terminal": TerminalFormatter,
    "json": JsonFormatter,
    "markdown": MarkdownFormatter,
    "github": GitHubFormatter,
  }
  formatter_class = formatters.get(format_type)
  if not formatter_class:
    raise ValueError(f"Unknown format: {format_type}")
  return formatter_class(verbose=verbose)
