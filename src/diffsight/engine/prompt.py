"""Prompt construction for engine invocations."""

from diffsight.diff.parser import FILE_HEADER_RE
from diffsight.models import ChangeRequest, ReviewMode

DEFAULT_MAX_DIFF_CHARS = 100_000

REVIEW_MODES: tuple[ReviewMode, ...] = (
  ReviewMode.STRICT,
  ReviewMode.DETAILED,
  ReviewMode.LENIENT,
  ReviewMode.BALANCED,
)

_MODE_OVERLAYS = {
  ReviewMode.STRICT: (
    "REVIEW MODE: STRICT\n"
    "Report only bug and security findings that you are confident about. "
    "Do not report nitpicks. Report a suggestion only when it prevents a likely defect."
  ),
  ReviewMode.DETAILED: (
    "REVIEW MODE: DETAILED\n"
    "Be thorough. Report bugs, security issues and suggestions, and include "
    "nitpick findings for naming, readability and minor style problems."
  ),
  ReviewMode.LENIENT: (
    "REVIEW MODE: LENIENT\n"
    "Report only clear bugs and security problems plus suggestions with significant impact. "
    "Do not report nitpicks or matters of taste."
  ),
  ReviewMode.BALANCED: (
    "REVIEW MODE: BALANCED\n"
    "Report bugs, security issues and meaningful suggestions. "
    "Do not report nitpicks."
  ),
}

_FINDING_FORMAT = """For each issue found, provide:
- file: the file path exactly as shown in the diff
- line: the line number in the new version of the file where the issue occurs
- endLine: (optional) if the issue spans multiple lines, the ending line number
- severity: one of "bug", "security", "suggestion", or "nitpick"
  - bug: logic errors, crashes, incorrect behavior, off-by-one errors, race conditions
  - security: injection vulnerabilities, auth issues, data exposure, insecure patterns
  - suggestion: meaningful improvements to readability, maintainability, performance, or design
  - nitpick: minor style preferences or trivial observations
- confidence: "high", "medium", or "low", how confident you are this is a real issue
- category: a short tag describing the issue type (e.g. "null-safety", "sql-injection", "error-handling")
- description: 2-4 sentences explaining the problem and how to fix it
- suggestedFix: (optional) corrected code for simple fixes only
- relatedLocations: (optional) other related locations, each with file, line, and reason"""

_JSON_INSTRUCTION = """IMPORTANT: Respond with ONLY a valid JSON object matching this exact structure, with no explanation and no markdown:
{"findings": [{"file": "string", "line": number, "severity": "bug"|"security"|"suggestion"|"nitpick", "confidence": "high"|"medium"|"low", "category": "string", "description": "string"}]}
Optional fields per finding: "endLine" (number), "suggestedFix" (string), "relatedLocations" ([{"file": "string", "line": number, "reason": "string"}])"""


def get_mode_overlay(mode: ReviewMode) -> str:
  """Prompt text that tunes how strict the review is."""
  return _MODE_OVERLAYS[mode]


def build_prompt(
  change: ChangeRequest,
  mode: ReviewMode = ReviewMode.BALANCED,
  max_diff_chars: int = DEFAULT_MAX_DIFF_CHARS,
) -> str:
  """Build the single-shot review prompt."""
  return f"""You are an experienced software engineer reviewing a pull request. Be a helpful, constructive colleague rather than a pedantic gatekeeper. Focus on issues that matter: bugs, security vulnerabilities, logic errors, and meaningful code quality improvements.

Review the following pull request diff and identify any issues.

{_metadata_block(change)}

<diff>
{truncate_diff(change.diff, max_diff_chars)}
</diff>

{_FINDING_FORMAT}

Focus on the CHANGED code (lines with + prefix in the diff). Only flag issues in unchanged context lines if they are directly affected by the changes.

Report all issues you find. If you find no issues, return an empty findings array.

{_JSON_INSTRUCTION}

{get_mode_overlay(mode)}"""


def build_deep_prompt(
  change: ChangeRequest,
  mode: ReviewMode = ReviewMode.BALANCED,
  max_diff_chars: int = DEFAULT_MAX_DIFF_CHARS,
) -> str:
  """Build the exploratory prompt used with a checked-out repository."""
  return f"""You are an experienced software engineer performing a deep codebase analysis of a pull request. The repository is checked out in your working directory at the head of the pull request. Use your tools to read the surrounding code.

Look beyond the diff for cross-file impacts: callers of changed functions, implementations of changed interfaces, configuration and tests that the change invalidates. Use relatedLocations to point at the code that is affected.

{_metadata_block(change)}

<diff>
{truncate_diff(change.diff, max_diff_chars)}
</diff>

{_FINDING_FORMAT}

Anchor each finding on the line it concerns. Prefer lines in the new version of the changed files; cross-file findings may point at other files.

{_JSON_INSTRUCTION}

{get_mode_overlay(mode)}"""


def truncate_diff(diff: str, max_chars: int = DEFAULT_MAX_DIFF_CHARS) -> str:
  """Cut a diff to a character budget, preferring a file boundary."""
  if len(diff) <= max_chars:
    return diff

  cut = max_chars
  head = diff[:max_chars]
  boundaries = [i for i in _file_boundaries(head) if i > 0]
  if boundaries:
    cut = boundaries[-1]

  omitted = len(diff) - cut
  return f"{diff[:cut].rstrip()}\n\n[diff truncated: {omitted} characters omitted]"


def _file_boundaries(text: str) -> list[int]:
  offsets = []
  position = 0
  for line in text.split("\n"):
    if FILE_HEADER_RE.match(line):
      offsets.append(position)
    position += len(line) + 1
  return offsets


def _metadata_block(change: ChangeRequest) -> str:
  description = change.body or "(no description provided)"
  return f"""<pr_metadata>
Title: {change.title}
Description: {description}
Branch: {change.head_branch} -> {change.base_branch}
Changed files: {change.changed_files} (+{change.additions} -{change.deletions})
</pr_metadata>"""
