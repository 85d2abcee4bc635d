"""Scoring engine findings against hand-labelled fixtures.

Expected findings carry a classification: GOOD findings are ones a reviewer
should raise, MEH and BAD ones should not have been raised. Actual findings
are paired with expected ones by file and line proximity, and the pairing is
turned into precision, recall and hallucination rate.
"""

import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Sequence

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError

from diffsight.engine.envelope import validate_answer
from diffsight.engine.errors import SchemaValidationFailure
from diffsight.schemas import Finding

MATCH_WINDOW = 5


class FixtureError(Exception):
  """Fixture or recorded findings file is missing or malformed."""


class Classification(Enum):
  """Ground-truth label of an expected finding."""

  GOOD = "GOOD"
  MEH = "MEH"
  BAD = "BAD"


class EvalFinding(BaseModel):
  """An expected finding from an evaluation fixture."""

  model_config = ConfigDict(frozen=True)

  file: StrictStr
  line: StrictInt
  severity: StrictStr
  category: StrictStr
  classification: Classification
  is_cross_file: bool | None = None


class EvalFixture(BaseModel):
  """A labelled change: its expected findings plus optional provenance."""

  model_config = ConfigDict(frozen=True)

  name: str = ""
  pr_url: str | None = None
  expected_findings: tuple[EvalFinding, ...] = Field(min_length=1)


@dataclass(frozen=True)
class FindingMatch:
  """An expected finding and the actual finding paired with it, if any."""

  expected: EvalFinding
  actual: Finding | None
  distance: int  # -1 when unmatched


@dataclass(frozen=True)
class MatchResult:
  matched: tuple[FindingMatch, ...]
  unmatched_actual: tuple[Finding, ...]


@dataclass(frozen=True)
class EvalMetrics:
  precision: float
  recall: float
  hallucination_rate: float
  true_positives: int = 0
  false_positives: int = 0
  false_negatives: int = 0
  hallucinations: int = 0


def match_findings(actual: Sequence[Finding], expected: Sequence[EvalFinding]) -> MatchResult:
  """Greedily pair each expected finding with the closest unused actual one.

  Expected findings are processed in (file, line) order. A candidate must be
  in the same file and at most MATCH_WINDOW lines away; the smallest
  distance wins and ties go to the earliest remaining candidate. Each actual
  finding is used at most once.
  """
  remaining = list(actual)
  matched: list[FindingMatch] = []

  for exp in sorted(expected, key=lambda e: (e.file, e.line)):
    best_idx = -1
    best_distance = MATCH_WINDOW + 1

    for i, act in enumerate(remaining):
      if act.file != exp.file:
        continue
      distance = abs(act.line - exp.line)
      if distance < best_distance:
        best_distance = distance
        best_idx = i

    if best_idx >= 0:
      matched.append(FindingMatch(exp, remaining.pop(best_idx), best_distance))
    else:
      matched.append(FindingMatch(exp, None, -1))

  return MatchResult(matched=tuple(matched), unmatched_actual=tuple(remaining))


def compute_metrics(result: MatchResult) -> EvalMetrics:
  """Precision, recall and hallucination rate of a match result.

  Unmatched MEH/BAD expectations do not count against recall. Empty
  denominators give precision and recall 1.0 and a hallucination rate of 0.
  """
  tp = fp = fn = 0
  for match in result.matched:
    is_good = match.expected.classification == Classification.GOOD
    if match.actual is not None:
      if is_good:
        tp += 1
      else:
        fp += 1
    elif is_good:
      fn += 1

  hallucinations = len(result.unmatched_actual)
  total_actual = sum(1 for m in result.matched if m.actual is not None) + hallucinations

  return EvalMetrics(
    precision=1.0 if tp + fp == 0 else tp / (tp + fp),
    recall=1.0 if tp + fn == 0 else tp / (tp + fn),
    hallucination_rate=0.0 if total_actual == 0 else hallucinations / total_actual,
    true_positives=tp,
    false_positives=fp,
    false_negatives=fn,
    hallucinations=hallucinations,
  )


def evaluate(actual: Sequence[Finding], fixture: EvalFixture) -> tuple[MatchResult, EvalMetrics]:
  """Match and score in one step."""
  result = match_findings(actual, fixture.expected_findings)
  return result, compute_metrics(result)


def load_fixture(path: Path) -> EvalFixture:
  """Load a labelled fixture, failing loudly on anything malformed."""
  data = _read_json(path)
  try:
    return EvalFixture.model_validate(data)
  except ValidationError as e:
    raise FixtureError(f"Invalid fixture {path}: {e}") from e


def load_findings(path: Path) -> tuple[Finding, ...]:
  """Load recorded engine findings: a findings object or a bare list."""
  data = _read_json(path)
  if isinstance(data, list):
    data = {"findings": data}
  try:
    return validate_answer(data)
  except SchemaValidationFailure as e:
    raise FixtureError(f"Invalid findings file {path}: {e}") from e


def _read_json(path: Path) -> Any:
  try:
    with open(path) as f:
      return json.load(f)
  except OSError as e:
    raise FixtureError(f"Cannot read {path}: {e}") from e
  except json.JSONDecodeError as e:
    raise FixtureError(f"Invalid JSON in {path}: {e}") from e
