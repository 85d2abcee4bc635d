"""Core domain models for diff review."""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
  from diffsight.schemas import Finding


class Severity(Enum):
  """Finding severity, in display order."""

  BUG = "bug"
  SECURITY = "security"
  SUGGESTION = "suggestion"
  NITPICK = "nitpick"


class Confidence(Enum):
  """How sure the engine is that a finding is real."""

  HIGH = "high"
  MEDIUM = "medium"
  LOW = "low"


class ReviewMode(Enum):
  """Review strictness. Only changes the prompt text."""

  STRICT = "strict"
  DETAILED = "detailed"
  LENIENT = "lenient"
  BALANCED = "balanced"


class AnalysisMode(Enum):
  """Engine invocation mode."""

  QUICK = "quick"
  DEEP = "deep"


class DiffLineType(Enum):
  """Kind of a rendered diff line."""

  CONTEXT = "context"
  ADDITION = "addition"
  DELETION = "deletion"
  HUNK_HEADER = "hunk-header"


class FileStatus(Enum):
  """How a file changed."""

  ADDED = "added"
  DELETED = "deleted"
  MODIFIED = "modified"
  RENAMED = "renamed"


@dataclass(frozen=True)
class DiffLine:
  """One line of a parsed diff with its old/new coordinates."""

  type: DiffLineType
  old_line: int | None
  new_line: int | None
  content: str


@dataclass(frozen=True)
class DiffFile:
  """A single file's entry in a parsed diff."""

  filename: str
  previous_filename: str
  status: FileStatus = FileStatus.MODIFIED
  lines: tuple[DiffLine, ...] = ()


@dataclass(frozen=True)
class DiffHunk:
  """New-side range of a hunk header."""

  new_start: int
  new_count: int

  def contains(self, line: int) -> bool:
    return self.new_start <= line < self.new_start + self.new_count


@dataclass(frozen=True)
class ChangedFile:
  """Per-file statistics reported by the change source."""

  filename: str
  status: str = "modified"
  additions: int = 0
  deletions: int = 0


@dataclass(frozen=True)
class ChangeRequest:
  """A change to review: metadata plus its unified diff."""

  title: str
  diff: str
  body: str = ""
  author: str = "unknown"
  number: int | None = None
  base_branch: str = "main"
  head_branch: str = "HEAD"
  head_sha: str = ""
  additions: int = 0
  deletions: int = 0
  changed_files: int = 0
  files: Sequence[ChangedFile] = field(default_factory=tuple)


@dataclass(frozen=True)
class AnalysisMeta:
  """Operational metadata reported by the engine."""

  cost_usd: float = 0.0
  duration_ms: int = 0
  duration_api_ms: int = 0
  num_turns: int = 0
  session_id: str = ""


@dataclass(frozen=True)
class AnalysisResult:
  """Validated engine findings plus the identity of the model that produced them."""

  findings: Sequence["Finding"]
  model: str
  meta: AnalysisMeta | None = None
