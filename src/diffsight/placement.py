"""Placement of findings against the diff: inline comments vs review body."""

from dataclasses import dataclass
from typing import Mapping, Sequence

from diffsight.diff.parser import is_line_in_diff
from diffsight.models import DiffHunk, Severity
from diffsight.schemas import Finding


@dataclass(frozen=True)
class Partition:
  """Findings split by whether their line can carry an inline comment."""

  inline: tuple[Finding, ...]
  off_diff: tuple[Finding, ...]


@dataclass(frozen=True)
class ReviewComment:
  """An inline review comment on the new side of the diff."""

  path: str
  line: int
  body: str
  side: str = "RIGHT"


def partition_findings(
  findings: Sequence[Finding],
  hunks_by_file: Mapping[str, Sequence[DiffHunk]],
) -> Partition:
  """Split findings into inline and off-diff, preserving order and duplicates.

  A finding is inline when its file has hunks and its primary line falls
  inside one of them. Everything else, including files the diff does not
  touch, is off-diff.
  """
  inline: list[Finding] = []
  off_diff: list[Finding] = []

  for finding in findings:
    hunks = hunks_by_file.get(finding.file)
    if hunks and is_line_in_diff(hunks, finding.line):
      inline.append(finding)
    else:
      off_diff.append(finding)

  return Partition(inline=tuple(inline), off_diff=tuple(off_diff))


def severity_summary(findings: Sequence[Finding]) -> str:
  """One-line count of findings by severity, e.g. 'Found 3 issues: 1 bug, 2 suggestions'."""
  by_severity: dict[Severity, int] = {}
  for finding in findings:
    by_severity[finding.severity] = by_severity.get(finding.severity, 0) + 1

  parts = [
    _pluralize(severity, by_severity[severity])
    for severity in Severity
    if by_severity.get(severity)
  ]

  total = len(findings)
  summary = f"Found {total} issue{'s' if total != 1 else ''}"
  if parts:
    summary += f": {', '.join(parts)}"
  return summary


def off_diff_section(off_diff: Sequence[Finding]) -> str | None:
  """Markdown section for findings outside the diff, or None when there are none."""
  if not off_diff:
    return None

  lines = ["**Findings outside the diff** (cannot be posted as inline comments):", ""]
  for f in off_diff:
    lines.append(
      f"- **{f.severity.value}** `[{f.confidence.value}]` `{f.file}:{f.line}` -- {f.description}"
    )
  return "\n".join(lines)


def build_review_body(
  all_findings: Sequence[Finding],
  off_diff: Sequence[Finding],
) -> str:
  """Review body: summary line, then the off-diff section if any."""
  body = severity_summary(all_findings)
  section = off_diff_section(off_diff)
  if section:
    body += f"\n\n---\n\n{section}"
  return body


def format_inline_comment(finding: Finding) -> str:
  """Markdown body of an inline comment."""
  body = f"**{finding.severity.value}** `[{finding.confidence.value}]` {finding.description}"

  if finding.related_locations:
    body += "\n\n**Related:**"
    for loc in finding.related_locations:
      body += f"\n- `{loc.file}:{loc.line}` -- {loc.reason}"

  if finding.suggested_fix is not None:
    fence = "````" if "```" in finding.suggested_fix else "```"
    body += f"\n\n{fence}suggestion\n{finding.suggested_fix}\n{fence}"

  return body


def to_review_comments(inline: Sequence[Finding]) -> list[ReviewComment]:
  """Inline findings as review comments anchored on their primary line."""
  return [
    ReviewComment(path=f.file, line=f.line, body=format_inline_comment(f))
    for f in inline
  ]


def _pluralize(severity: Severity, count: int) -> str:
  if severity == Severity.SECURITY:
    return f"{count} security"
  noun = severity.value
  return f"{count} {noun}{'s' if count != 1 else ''}"
