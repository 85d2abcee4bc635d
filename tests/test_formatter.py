"""Tests for output formatters."""

import io
import json
from typing import Callable

import pytest
from diffsight.diff import parse_detailed_diff, parse_diff_hunks
from diffsight.models import AnalysisMeta, ChangeRequest, Severity
from diffsight.output import (
  GitHubFormatter,
  JsonFormatter,
  MarkdownFormatter,
  TerminalFormatter,
  get_formatter,
  render_annotated_diff,
  render_annotated_diff_markdown,
)
from diffsight.placement import partition_findings
from diffsight.review import ReviewReport
from diffsight.schemas import Finding
from rich.console import Console

MakeFinding = Callable[..., Finding]


@pytest.fixture
def report(sample_change: ChangeRequest, make_finding: MakeFinding) -> ReviewReport:
  findings = (
    make_finding(
      line=3,
      severity=Severity.SUGGESTION,
      description="Return value is never used",
      suggested_fix="print('hello world')",
    ),
    make_finding(file="lib/util.py", line=40, severity=Severity.SECURITY, description="Shell injection"),
  )
  return ReviewReport(
    change=sample_change,
    findings=findings,
    partition=partition_findings(findings, parse_diff_hunks(sample_change.diff)),
    model="claude-sonnet-4",
    meta=AnalysisMeta(cost_usd=0.02, duration_ms=3000, num_turns=1),
  )


def _terminal(verbose: bool = False) -> tuple[TerminalFormatter, io.StringIO]:
  buffer = io.StringIO()
  console = Console(file=buffer, width=200, color_system=None)
  return TerminalFormatter(console=console, verbose=verbose), buffer


class TestTerminalFormatter:
  def test_findings_table(self, report: ReviewReport) -> None:
    formatter, buffer = _terminal()
    assert formatter.format(report) == ""

    output = buffer.getvalue()
    assert "#42 Add greeting" in output
    assert "SECURITY" in output
    assert "Shell injection" in output
    assert "(outside diff)" in output
    assert "Found 2 issues: 1 security, 1 suggestion" in output
    assert output.index("SECURITY") < output.index("SUGGESTION")

  def test_no_findings(self, sample_change: ChangeRequest) -> None:
    formatter, buffer = _terminal()
    empty = ReviewReport(
      change=sample_change,
      findings=(),
      partition=partition_findings([], {}),
      model="claude-sonnet-4",
    )
    formatter.format(empty)
    assert "No issues found." in buffer.getvalue()

  def test_markup_in_description_is_literal(
    self, sample_change: ChangeRequest, make_finding: MakeFinding
  ) -> None:
    finding = make_finding(description="Use list[int] instead of [bold]list[/bold]")
    formatter, buffer = _terminal()
    formatter.format(ReviewReport(
      change=sample_change,
      findings=(finding,),
      partition=partition_findings([finding], {}),
      model="m",
    ))
    assert "[bold]list[/bold]" in buffer.getvalue()

  def test_verbose_shows_annotated_diff(self, report: ReviewReport) -> None:
    formatter, buffer = _terminal(verbose=True)
    formatter.format(report)
    output = buffer.getvalue()
    assert "+    return True" in output
    assert "^ suggestion" in output


class TestJsonFormatter:
  def test_structure(self, report: ReviewReport) -> None:
    data = json.loads(JsonFormatter().format(report))

    assert data["number"] == 42
    assert data["model"] == "claude-sonnet-4"
    assert data["summary"] == "Found 2 issues: 1 security, 1 suggestion"
    assert [f["severity"] for f in data["findings"]] == ["security", "suggestion"]
    assert data["findings"][1]["suggestedFix"] == "print('hello world')"
    assert [f["file"] for f in data["inline"]] == ["test.py"]
    assert [f["file"] for f in data["off_diff"]] == ["lib/util.py"]
    assert data["meta"]["cost_usd"] == 0.02
    assert data["deep_meta"] is None


class TestMarkdownFormatter:
  def test_sections(self, report: ReviewReport) -> None:
    output = MarkdownFormatter().format(report)
    assert output.startswith("# Code Review: #42 Add greeting")
    assert "### [SECURITY] lib/util.py:40" in output
    assert "**Suggested fix:** print('hello world')" in output
    assert "```diff" not in output

  def test_verbose_diff(self, report: ReviewReport) -> None:
    output = MarkdownFormatter(verbose=True).format(report)
    assert "## Diff" in output
    assert "```diff" in output


class TestGitHubFormatter:
  def test_workflow_commands(self, report: ReviewReport) -> None:
    lines = GitHubFormatter().format(report).split("\n")
    assert lines[0] == "::error file=lib/util.py,line=40::[logic] Shell injection"
    assert lines[1].startswith("::warning file=test.py,line=3::")

  def test_escapes_newlines(self, sample_change: ChangeRequest, make_finding: MakeFinding) -> None:
    finding = make_finding(severity=Severity.NITPICK, description="100% wrong\nreally")
    output = GitHubFormatter().format(ReviewReport(
      change=sample_change,
      findings=(finding,),
      partition=partition_findings([finding], {}),
      model="m",
    ))
    assert output == "::notice file=test.py,line=2::[logic] 100%25 wrong%0Areally"


class TestAnnotatedDiff:
  def test_annotations_on_new_lines(self, sample_diff: str, make_finding: MakeFinding) -> None:
    files = parse_detailed_diff(sample_diff)
    finding = make_finding(line=3, description="Always true")

    text = render_annotated_diff(files, [finding]).plain

    lines = text.split("\n")
    annotated = lines.index(next(line for line in lines if "return True" in line))
    assert "^ bug [high] Always true" in lines[annotated + 1]
    assert "new_file.py (added)" in text

  def test_unmapped_findings(self, sample_diff: str, make_finding: MakeFinding) -> None:
    files = parse_detailed_diff(sample_diff)
    text = render_annotated_diff(files, [make_finding(file="other.py", line=1)]).plain
    assert "Findings not mapped to diff lines" in text
    assert "other.py:1" in text

  def test_markdown(self, sample_diff: str, make_finding: MakeFinding) -> None:
    files = parse_detailed_diff(sample_diff)
    output = render_annotated_diff_markdown(files, [make_finding(line=2)])
    assert "### test.py" in output
    assert "**Findings in this file:**" in output
    assert "- **bug** (line 2) Something is wrong" in output


class TestGetFormatter:
  def test_known_formats(self) -> None:
    assert isinstance(get_formatter("json"), JsonFormatter)
    assert isinstance(get_formatter("markdown"), MarkdownFormatter)
    assert isinstance(get_formatter("github"), GitHubFormatter)
    assert get_formatter("terminal", verbose=True).verbose

  def test_unknown_format(self) -> None:
    with pytest.raises(ValueError, match="Unknown format"):
      get_formatter("xml")
