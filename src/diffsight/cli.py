"""CLI interface using Typer."""

import contextlib
import dataclasses
import json
import logging
import os
import traceback
from pathlib import Path
from typing import NoReturn, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from diffsight import __version__
from diffsight.config import ConfigError
from diffsight.diff import GitError
from diffsight.engine import ClaudeEngine, EngineError
from diffsight.errors import (
  EXIT_ANALYSIS_ERROR,
  EXIT_API_ERROR,
  EXIT_INVALID_URL,
  EXIT_PREREQ,
  sanitize_error,
)
from diffsight.evaluation import EvalMetrics, FixtureError, MatchResult, evaluate, load_findings, load_fixture
from diffsight.github import GitHubClient, GitHubError, get_github_token, parse_pr_url
from diffsight.models import AnalysisMode, ReviewMode
from diffsight.output import get_formatter
from diffsight.review import ReviewOrchestrator, fetch_local_change, post_report, resolve_settings

app = typer.Typer(
  name="diffsight",
  help="AI code review for git diffs and GitHub pull requests",
  no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)


def _is_debug() -> bool:
  return os.environ.get("DIFFSIGHT_DEBUG", "").lower() in ("1", "true", "yes")


def _configure_logging(debug: bool) -> None:
  if not debug:
    return
  logger = logging.getLogger("diffsight")
  logger.setLevel(logging.DEBUG)
  if not any(isinstance(h, RichHandler) for h in logger.handlers):
    logger.addHandler(RichHandler(console=err_console, show_path=False))


def _fail(message: object, code: int, show_traceback: bool = False) -> NoReturn:
  err_console.print(f"[red]Error:[/red] {escape(sanitize_error(message))}")
  if show_traceback:
    err_console.print("\n[dim]Traceback:[/dim]")
    err_console.print(escape(traceback.format_exc()))
  raise typer.Exit(code) from None


def version_callback(value: bool) -> None:
  if value:
    console.print(f"diffsight {__version__}")
    raise typer.Exit()


@app.callback()
def main(
  version: bool = typer.Option(None, "--version", "-v", callback=version_callback, is_eager=True),
) -> None:
  """Review code changes with the Claude CLI."""


@app.command()
def review(
  pr_url: Optional[str] = typer.Argument(
    None,
    help="GitHub pull request URL (https://github.com/owner/repo/pull/123)",
  ),
  branch: str = typer.Option(None, "--branch", "-b", help="Branch to review against base"),
  base: str = typer.Option("main", "--base", help="Base branch for comparison"),
  deep: bool = typer.Option(False, "--deep", help="Also explore the codebase for cross-file impact"),
  cwd: Path = typer.Option(None, "--cwd", help="Repository checkout to review and explore"),
  mode: str = typer.Option(None, "--mode", help="Review mode: strict, detailed, lenient, balanced"),
  model: str = typer.Option(None, "--model", "-m", help="Claude model to use (e.g. sonnet, opus)"),
  post: bool = typer.Option(False, "--post", help="Post the review to the pull request"),
  format_type: str = typer.Option(
    None, "--format", help="Output format: terminal, json, markdown, github"
  ),
  verbose: bool = typer.Option(False, "--verbose", help="Show the annotated diff"),
  config: Path = typer.Option(None, "--config", "-c", help="Config file path"),
  debug: bool = typer.Option(False, "--debug", "-d", help="Debug logging and full tracebacks"),
) -> None:
  """Review a pull request, a branch, or the staged changes.

  With no PR URL and no --branch, reviews staged git changes.
  """
  show_traceback = debug or _is_debug()
  _configure_logging(show_traceback)

  try:
    review_mode = ReviewMode(mode.lower()) if mode else None
  except ValueError:
    valid = ", ".join(m.value for m in ReviewMode)
    _fail(f"Unknown review mode '{mode}' (expected one of: {valid})", EXIT_PREREQ)

  try:
    settings = resolve_settings(config, model, review_mode, deep)
    formatter = get_formatter(format_type or settings.format, verbose=verbose)
  except (ConfigError, ValueError) as e:
    _fail(e, EXIT_PREREQ, show_traceback)

  post = post or settings.post
  ref = None
  if pr_url:
    ref = parse_pr_url(pr_url)
    if ref is None:
      err_console.print(f"[red]Error:[/red] Invalid PR URL: {escape(pr_url)}")
      err_console.print("[dim]  Expected: https://github.com/owner/repo/pull/123[/dim]")
      raise typer.Exit(EXIT_INVALID_URL)
    if settings.analysis == AnalysisMode.DEEP and cwd is None:
      err_console.print(
        f"[yellow]Warning:[/yellow] Deep review will explore {escape(str(Path.cwd()))}. "
        f"Pass --cwd to point it at a checkout of {escape(ref.owner)}/{escape(ref.repo)}."
      )
  elif post:
    _fail("--post requires a pull request URL", EXIT_PREREQ)

  engine = ClaudeEngine(
    model=settings.model,
    quick_timeout=settings.quick_timeout_seconds,
    deep_timeout=settings.deep_timeout_seconds,
    max_attempts=settings.max_attempts,
    max_diff_chars=settings.max_diff_chars,
  )
  if not engine.is_available():
    _fail(
      "claude CLI not found on PATH. Install it and run 'claude' once to authenticate.",
      EXIT_PREREQ,
    )

  with contextlib.ExitStack() as stack:
    stack.enter_context(engine)
    client = None

    if ref is not None:
      try:
        client = stack.enter_context(GitHubClient(get_github_token()))
      except GitHubError as e:
        _fail(e, EXIT_PREREQ, show_traceback)

    try:
      if client is not None:
        with err_console.status("Fetching pull request..."):
          change = client.fetch_pull_request(ref)
      else:
        change = fetch_local_change(branch, base, cwd)
    except (GitHubError, GitError) as e:
      _fail(e, EXIT_API_ERROR, show_traceback)

    try:
      report = ReviewOrchestrator(engine, settings).review(change, cwd)
    except EngineError as e:
      _fail(f"Analysis failed: {e}", EXIT_ANALYSIS_ERROR, show_traceback)
    except KeyboardInterrupt:
      err_console.print("\n[yellow]Interrupted.[/yellow]")
      raise typer.Exit(130) from None

    if post and client is not None and report.findings:
      try:
        with err_console.status("Posting review to GitHub..."):
          url = post_report(client, ref, report)
        report = dataclasses.replace(report, review_url=url)
      except GitHubError as e:
        err_console.print(
          f"[yellow]Warning:[/yellow] Failed to post review to GitHub: {escape(sanitize_error(e))}"
        )

  output = formatter.format(report)
  if output:
    console.out(output, highlight=False)


@app.command("eval")
def eval_command(
  fixture: Path = typer.Argument(..., help="Labelled fixture JSON file"),
  findings: Path = typer.Argument(..., help="Recorded findings JSON file"),
  json_output: bool = typer.Option(False, "--json", help="Print metrics as JSON"),
) -> None:
  """Score recorded findings against a labelled fixture."""
  try:
    expected = load_fixture(fixture)
    actual = load_findings(findings)
  except FixtureError as e:
    _fail(e, EXIT_PREREQ)

  result, metrics = evaluate(actual, expected)

  if json_output:
    console.out(json.dumps(dataclasses.asdict(metrics), indent=2), highlight=False)
    return

  _print_eval(expected.name or fixture.stem, result, metrics)


def _print_eval(name: str, result: MatchResult, metrics: EvalMetrics) -> None:
  table = Table(title=f"Evaluation: {escape(name)}", show_header=True, header_style="bold")
  table.add_column("Expected", min_width=24)
  table.add_column("Label", width=6)
  table.add_column("Matched", min_width=24)
  table.add_column("Distance", justify="right")

  for match in result.matched:
    exp = match.expected
    if match.actual is not None:
      matched = f"{escape(match.actual.file)}:{match.actual.line}"
      distance = str(match.distance)
    else:
      matched, distance = "[dim]-[/dim]", "-"
    table.add_row(
      f"{escape(exp.file)}:{exp.line}",
      exp.classification.value,
      matched,
      distance,
    )

  console.print()
  console.print(table)

  for finding in result.unmatched_actual:
    console.print(
      f"[yellow]Unmatched:[/yellow] {escape(finding.file)}:{finding.line} "
      f"{escape(finding.description)}"
    )

  console.print(
    f"\nPrecision: {metrics.precision:.2f}  Recall: {metrics.recall:.2f}  "
    f"Hallucination rate: {metrics.hallucination_rate:.2f}"
  )


if __name__ == "__main__":
  app()
