"""Output formatting."""

from diffsight.output.diff_view import render_annotated_diff, render_annotated_diff_markdown
from diffsight.output.formatter import (
    GitHubFormatter,
    JsonFormatter,
    MarkdownFormatter,
    OutputFormatter,
    TerminalFormatter,
    get_formatter,
)

__all__ = [
  "OutputFormatter",
  "TerminalFormatter",
  "JsonFormatter",
  "MarkdownFormatter",
  "GitHubFormatter",
  "get_formatter",
  "render_annotated_diff",
  "render_annotated_diff_markdown",
]
