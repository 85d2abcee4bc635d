"""Core review orchestration."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from rich.console import Console

from diffsight.config import Settings, load_config
from diffsight.diff import extract_branch_change, extract_staged_change, parse_diff_hunks
from diffsight.engine import ClaudeEngine, EngineError
from diffsight.github import GitHubClient, PullRequestRef
from diffsight.models import AnalysisMeta, AnalysisMode, ChangeRequest, Confidence, ReviewMode, Severity
from diffsight.placement import Partition, build_review_body, partition_findings, to_review_comments
from diffsight.schemas import Finding

logger = logging.getLogger(__name__)

_console = Console(stderr=True)

SEVERITY_ORDER = {severity: i for i, severity in enumerate(Severity)}
CONFIDENCE_ORDER = {confidence: i for i, confidence in enumerate(Confidence)}


@dataclass(frozen=True)
class ReviewReport:
  """Everything a formatter needs to present one review."""

  change: ChangeRequest
  findings: tuple[Finding, ...]
  partition: Partition
  model: str
  meta: AnalysisMeta | None = None
  deep_meta: AnalysisMeta | None = None
  review_url: str | None = None
  warnings: tuple[str, ...] = field(default_factory=tuple)


def sort_findings(findings: Sequence[Finding]) -> list[Finding]:
  """Display order: severity, then confidence, then file and line."""
  return sorted(
    findings,
    key=lambda f: (SEVERITY_ORDER[f.severity], CONFIDENCE_ORDER[f.confidence], f.file, f.line),
  )


def merge_findings(quick: Sequence[Finding], deep: Sequence[Finding]) -> tuple[Finding, ...]:
  """Concatenate quick and deep findings, ordered by severity then file."""
  return tuple(sorted([*quick, *deep], key=lambda f: (SEVERITY_ORDER[f.severity], f.file)))


class ReviewOrchestrator:
  """Orchestrates the code review process."""

  def __init__(self, engine: ClaudeEngine, settings: Settings | None = None):
    self.engine = engine
    self.settings = settings or Settings()

  def review(
    self,
    change: ChangeRequest,
    cwd: Path | None = None,
  ) -> ReviewReport:
    """Analyze a change and partition its findings against the diff."""
    if not change.diff.strip():
      return ReviewReport(
        change=change,
        findings=(),
        partition=Partition(inline=(), off_diff=()),
        model=self.settings.model or "N/A",
        warnings=("No changes to review.",),
      )

    mode = self.settings.review_mode
    with _console.status(f"Analyzing diff with {self.engine.name}..."):
      quick = self.engine.analyze(change, mode)

    findings = tuple(quick.findings)
    deep_meta = None
    warnings: list[str] = []

    if self.settings.analysis == AnalysisMode.DEEP:
      _console.print("[dim]Exploring codebase...[/dim]")
      try:
        deep = self.engine.analyze_streaming(change, cwd, mode)
      except EngineError as e:
        logger.debug("Deep analysis failed", exc_info=True)
        warnings.append(f"Deep review failed: {e}. Showing quick review findings only.")
      else:
        findings = merge_findings(quick.findings, deep.findings)
        deep_meta = deep.meta

    partition = partition_findings(findings, parse_diff_hunks(change.diff))
    return ReviewReport(
      change=change,
      findings=findings,
      partition=partition,
      model=quick.model,
      meta=quick.meta,
      deep_meta=deep_meta,
      warnings=tuple(warnings),
    )


def post_report(client: GitHubClient, ref: PullRequestRef, report: ReviewReport) -> str:
  """Post a report as a COMMENT review and return its URL."""
  body = build_review_body(report.findings, report.partition.off_diff)
  comments = to_review_comments(report.partition.inline)
  return client.post_review(ref, report.change.head_sha, body, comments)


def resolve_settings(
  config_path: Path | None = None,
  model: str | None = None,
  mode: ReviewMode | None = None,
  deep: bool = False,
) -> Settings:
  """Load the config file and apply command line overrides."""
  settings = load_config(config_path).model_copy(deep=True)

  if model:
    settings.model = model
  if mode:
    settings.review_mode = mode
  if deep:
    settings.analysis = AnalysisMode.DEEP

  return settings


def fetch_local_change(
  branch: str | None = None,
  base: str = "main",
  cwd: Path | None = None,
) -> ChangeRequest:
  """Branch diff against base, or the staged changes when no branch is given."""
  if branch:
    return extract_branch_change(branch, base, cwd)
  return extract_staged_change(cwd)
