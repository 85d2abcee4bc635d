"""Diff extraction and parsing."""

from diffsight.diff.extractor import (
    GitError,
    build_change,
    extract_branch_change,
    extract_staged_change,
)
from diffsight.diff.parser import is_line_in_diff, parse_detailed_diff, parse_diff_hunks

__all__ = [
  "GitError",
  "build_change",
  "extract_branch_change",
  "extract_staged_change",
  "is_line_in_diff",
  "parse_detailed_diff",
  "parse_diff_hunks",
]
