"""Unified diff parsing into per-line coordinates and hunk ranges.

Two views of the same text are offered. ``parse_detailed_diff`` builds every
line with its old and new line numbers, for rendering. ``parse_diff_hunks``
keeps only the new-side range of each hunk header, which is all that is
needed to decide whether a line number is part of the diff.

Both parsers are tolerant: diffs come from external tools, so lines that are
not understood are skipped instead of raising.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable

from diffsight.models import DiffFile, DiffHunk, DiffLine, DiffLineType, FileStatus

FILE_HEADER_RE = re.compile(r"^diff --git a/.+ b/(.+)$")

# @@ -old_start[,old_count] +new_start[,new_count] @@ optional section text
HUNK_HEADER_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")

_METADATA_PREFIXES = (
  "index ",
  "new file mode",
  "deleted file mode",
  "old mode",
  "new mode",
  "similarity index",
  "dissimilarity index",
  "copy from ",
  "copy to ",
  "Binary files",
  "GIT binary patch",
  "\\",
)


@dataclass
class _FileBuilder:
  filename: str
  previous_filename: str
  status: FileStatus = FileStatus.MODIFIED
  lines: list[DiffLine] = field(default_factory=list)
  in_hunk: bool = False

  def build(self) -> DiffFile:
    return DiffFile(
      filename=self.filename,
      previous_filename=self.previous_filename,
      status=self.status,
      lines=tuple(self.lines),
    )


def parse_detailed_diff(diff_text: str) -> list[DiffFile]:
  """Parse a unified diff into files of line-numbered DiffLines."""
  if not diff_text or not diff_text.strip():
    return []

  files: list[DiffFile] = []
  current: _FileBuilder | None = None
  old_line = 0
  new_line = 0

  for line in diff_text.split("\n"):
    file_match = FILE_HEADER_RE.match(line)
    if file_match:
      if current is not None:
        files.append(current.build())
      current = _FileBuilder(file_match.group(1), file_match.group(1))
      continue

    if current is None:
      continue

    if line.startswith("rename from "):
      current.previous_filename = line[len("rename from "):]
      current.status = FileStatus.RENAMED
      continue
    if line.startswith("rename to "):
      current.filename = line[len("rename to "):]
      current.status = FileStatus.RENAMED
      continue

    # ---/+++ are file headers only until the first hunk; after that a
    # line such as "--- x" is the deletion of "-- x".
    if not current.in_hunk and (line.startswith("--- ") or line.startswith("+++ ")):
      if line.startswith("--- /dev/null"):
        current.status = FileStatus.ADDED
      elif line.startswith("+++ /dev/null"):
        current.status = FileStatus.DELETED
      continue

    if line.startswith(_METADATA_PREFIXES):
      continue

    hunk_match = HUNK_HEADER_RE.match(line)
    if hunk_match:
      old_line = int(hunk_match.group(1))
      new_line = int(hunk_match.group(3))
      current.in_hunk = True
      current.lines.append(DiffLine(DiffLineType.HUNK_HEADER, None, None, line))
      continue

    if not current.in_hunk:
      continue

    if line.startswith("+"):
      current.lines.append(DiffLine(DiffLineType.ADDITION, None, new_line, line[1:]))
      new_line += 1
    elif line.startswith("-"):
      current.lines.append(DiffLine(DiffLineType.DELETION, old_line, None, line[1:]))
      old_line += 1
    elif line.startswith(" "):
      current.lines.append(DiffLine(DiffLineType.CONTEXT, old_line, new_line, line[1:]))
      old_line += 1
      new_line += 1

  if current is not None:
    files.append(current.build())

  return files


def parse_diff_hunks(diff_text: str) -> dict[str, list[DiffHunk]]:
  """Map each file in a diff to the new-side ranges of its hunks."""
  result: dict[str, list[DiffHunk]] = {}
  current_file: str | None = None

  for line in diff_text.split("\n"):
    file_match = FILE_HEADER_RE.match(line)
    if file_match:
      current_file = file_match.group(1)
      result.setdefault(current_file, [])
      continue

    hunk_match = HUNK_HEADER_RE.match(line)
    if hunk_match and current_file is not None:
      new_start = int(hunk_match.group(3))
      count = hunk_match.group(4)
      new_count = int(count) if count is not None else 1
      result[current_file].append(DiffHunk(new_start, new_count))

  return result


def is_line_in_diff(hunks: Iterable[DiffHunk], line: int) -> bool:
  """Check whether a new-side line number falls inside any hunk."""
  return any(hunk.contains(line) for hunk in hunks)
