"""Detailed diff rendering with findings annotated on their lines."""

from typing import Sequence

from rich.text import Text

from diffsight.models import DiffFile, DiffLineType, FileStatus
from diffsight.schemas import Finding

LINE_STYLES = {
  DiffLineType.ADDITION: "green",
  DiffLineType.DELETION: "red",
  DiffLineType.HUNK_HEADER: "cyan",
  DiffLineType.CONTEXT: "",
}

_PREFIXES = {
  DiffLineType.ADDITION: "+",
  DiffLineType.DELETION: "-",
  DiffLineType.CONTEXT: " ",
}


def _findings_by_line(files: Sequence[DiffFile], findings: Sequence[Finding]) -> tuple[
  dict[tuple[str, int], list[Finding]], list[Finding]
]:
  """Attach findings to rendered new-side lines; the rest are unmapped."""
  visible = {
    (f.filename, line.new_line)
    for f in files
    for line in f.lines
    if line.new_line is not None
  }
  by_line: dict[tuple[str, int], list[Finding]] = {}
  unmapped: list[Finding] = []
  for finding in findings:
    key = (finding.file, finding.line)
    if key in visible:
      by_line.setdefault(key, []).append(finding)
    else:
      unmapped.append(finding)
  return by_line, unmapped


def _file_title(diff_file: DiffFile) -> str:
  if diff_file.status == FileStatus.RENAMED:
    return f"{diff_file.previous_filename} -> {diff_file.filename} (renamed)"
  if diff_file.status == FileStatus.MODIFIED:
    return diff_file.filename
  return f"{diff_file.filename} ({diff_file.status.value})"


def _number(value: int | None) -> str:
  return f"{value:>5}" if value is not None else " " * 5


def render_annotated_diff(
  files: Sequence[DiffFile],
  findings: Sequence[Finding],
) -> Text:
  """Render a parsed diff with old/new line numbers and inline annotations."""
  by_line, unmapped = _findings_by_line(files, findings)
  text = Text()

  for diff_file in files:
    text.append(_file_title(diff_file), style="bold")
    text.append("\n")
    for line in diff_file.lines:
      if line.type == DiffLineType.HUNK_HEADER:
        text.append(line.content, style=LINE_STYLES[line.type])
        text.append("\n")
        continue

      text.append(f"{_number(line.old_line)} {_number(line.new_line)} ", style="dim")
      text.append(f"{_PREFIXES[line.type]}{line.content}", style=LINE_STYLES[line.type])
      text.append("\n")

      if line.new_line is None:
        continue
      for finding in by_line.get((diff_file.filename, line.new_line), []):
        text.append(" " * 12)
        text.append(f"^ {finding.severity.value}", style="bold yellow")
        text.append(f" [{finding.confidence.value}] {finding.description}\n", style="yellow")
    text.append("\n")

  if unmapped:
    text.append("Findings not mapped to diff lines\n", style="bold")
    for finding in unmapped:
      text.append(
        f"  {finding.severity.value} {finding.file}:{finding.line} {finding.description}\n"
      )

  return text


def render_annotated_diff_markdown(
  files: Sequence[DiffFile],
  findings: Sequence[Finding],
) -> str:
  """Markdown rendition: one ```diff block per file, followed by its findings."""
  by_line, unmapped = _findings_by_line(files, findings)
  lines: list[str] = []

  for diff_file in files:
    lines.extend([f"### {_file_title(diff_file)}", "", "```diff"])
    annotated: list[Finding] = []
    for line in diff_file.lines:
      if line.type == DiffLineType.HUNK_HEADER:
        lines.append(line.content)
        continue
      lines.append(f"{_PREFIXES[line.type]}{line.content}")
      if line.new_line is not None:
        annotated.extend(by_line.get((diff_file.filename, line.new_line), []))
    lines.append("```")

    if annotated:
      lines.extend(["", "**Findings in this file:**"])
      for f in annotated:
        lines.append(f"- **{f.severity.value}** (line {f.line}) {f.description}")
    lines.append("")

  if unmapped:
    lines.extend(["### Findings not mapped to diff lines", ""])
    for f in unmapped:
      lines.append(f"- **{f.severity.value}** `{f.file}:{f.line}` {f.description}")
    lines.append("")

  return "\n".join(lines)
