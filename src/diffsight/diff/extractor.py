"""Local git change extraction."""

import subprocess
from pathlib import Path

from diffsight.diff.parser import parse_detailed_diff
from diffsight.errors import scrub_secrets
from diffsight.models import ChangedFile, ChangeRequest, DiffFile, DiffLineType


class GitError(Exception):
  """Git command failed."""


def _sanitize_error(stderr: str) -> str:
  """Remove potentially sensitive path information from error messages."""
  lines = stderr.strip().split("\n")
  sanitized = []
  for line in lines:
    if "fatal:" in line or "error:" in line:
      sanitized.append(line.split("/")[-1] if "/" in line else line)
    else:
      sanitized.append(line)
  return scrub_secrets("\n".join(sanitized))


def run_git(*args: str, cwd: Path | None = None) -> str:
  """Run a git command and return stdout."""
  try:
    result = subprocess.run(
      ["git", *args],
      capture_output=True,
      text=True,
      check=True,
      cwd=cwd,
    )
    return result.stdout
  except FileNotFoundError as e:
    raise GitError("git executable not found") from e
  except subprocess.CalledProcessError as e:
    sanitized = _sanitize_error(e.stderr or "")
    raise GitError(f"git {' '.join(args)} failed: {sanitized}") from e


def extract_staged_change(cwd: Path | None = None) -> ChangeRequest:
  """Build a change from the staged index."""
  diff_output = run_git("diff", "--cached", cwd=cwd)
  return build_change(diff_output, title="Staged changes", base="HEAD", head="staged")


def extract_branch_change(
  branch: str,
  base: str = "main",
  cwd: Path | None = None,
) -> ChangeRequest:
  """Build a change from the merge-base diff between base and branch."""
  diff_output = run_git("diff", f"{base}...{branch}", cwd=cwd)
  subject = run_git("log", "-1", "--format=%s", branch, cwd=cwd).strip()
  head_sha = run_git("rev-parse", branch, cwd=cwd).strip()
  return build_change(
    diff_output,
    title=subject or f"{branch} -> {base}",
    base=base,
    head=branch,
    head_sha=head_sha,
  )


def build_change(
  diff_output: str,
  title: str,
  base: str,
  head: str,
  head_sha: str = "",
) -> ChangeRequest:
  """Wrap raw diff text in a ChangeRequest, deriving per-file stats from it."""
  files = [_changed_file(f) for f in parse_detailed_diff(diff_output)]
  return ChangeRequest(
    title=title,
    diff=diff_output,
    base_branch=base,
    head_branch=head,
    head_sha=head_sha,
    additions=sum(f.additions for f in files),
    deletions=sum(f.deletions for f in files),
    changed_files=len(files),
    files=tuple(files),
  )


def _changed_file(diff_file: DiffFile) -> ChangedFile:
  additions = sum(1 for line in diff_file.lines if line.type == DiffLineType.ADDITION)
  deletions = sum(1 for line in diff_file.lines if line.type == DiffLineType.DELETION)
  return ChangedFile(
    filename=diff_file.filename,
    status=diff_file.status.value,
    additions=additions,
    deletions=deletions,
  )
