"""Decoding and validation of the engine's JSON envelope.

The engine prints an envelope such as::

  {"type": "result", "subtype": "success", "is_error": false,
   "result": "{\\"findings\\": [...]}", "num_turns": 3, ...}

``result`` holds the actual answer as JSON text, occasionally wrapped in
prose or a markdown fence. Both invocation modes hand their envelope to
``findings_from_envelope``.
"""

import json
import logging
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from diffsight.engine.errors import (
  EngineProcessFailure,
  ResponseParseFailure,
  SchemaValidationFailure,
)
from diffsight.errors import scrub_secrets
from diffsight.models import AnalysisMeta, AnalysisResult
from diffsight.schemas import Finding, ReviewResponse

logger = logging.getLogger(__name__)

MAX_RESPONSE_LENGTH = 1_000_000  # 1MB limit for regex processing

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)
_FINDINGS_OBJECT_RE = re.compile(r"\{.*\"findings\".*\}", re.DOTALL)


class Envelope(BaseModel):
  """The engine's result envelope.

  Metadata fields never fail validation: malformed values fall back to
  their defaults so a usable answer is not lost over a bad counter.
  """

  model_config = ConfigDict(extra="allow", populate_by_name=True)

  type: str = "result"
  subtype: str | None = None
  is_error: bool = False
  result: str | None = None
  duration_ms: int = 0
  duration_api_ms: int = 0
  num_turns: int = 0
  session_id: str = ""
  cost_usd: float | None = None
  total_cost_usd: float | None = None
  model_usage: dict[str, Any] | None = Field(default=None, alias="modelUsage")

  @field_validator("duration_ms", "duration_api_ms", "num_turns", mode="before")
  @classmethod
  def _count_or_zero(cls, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
      return 0
    return int(value)

  @field_validator("cost_usd", "total_cost_usd", mode="before")
  @classmethod
  def _cost_or_none(cls, value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
      return None
    return float(value)

  @field_validator("session_id", mode="before")
  @classmethod
  def _session_or_empty(cls, value: Any) -> str:
    return value if isinstance(value, str) else ""

  @field_validator("model_usage", mode="before")
  @classmethod
  def _usage_or_none(cls, value: Any) -> dict[str, Any] | None:
    return value if isinstance(value, dict) else None


def parse_envelope(stdout: str) -> Envelope:
  """Decode a single-shot envelope."""
  if not stdout.strip():
    raise ResponseParseFailure("engine returned empty output")
  try:
    loaded = json.loads(stdout)
  except json.JSONDecodeError as e:
    raise ResponseParseFailure(f"could not decode engine envelope: {e}") from e
  if not isinstance(loaded, dict):
    raise ResponseParseFailure("engine envelope is not a JSON object")
  return _validate_envelope(loaded)


def parse_stream_result(stdout: str) -> Envelope:
  """Find the last ``result`` event in newline-delimited stream output."""
  for line in reversed(stdout.strip().split("\n")):
    try:
      event = json.loads(line)
    except json.JSONDecodeError:
      continue
    if isinstance(event, dict) and event.get("type") == "result":
      return _validate_envelope(event)
  raise ResponseParseFailure("no result event found in stream output")


def _validate_envelope(data: dict[str, Any]) -> Envelope:
  try:
    return Envelope.model_validate(data)
  except ValidationError as e:
    raise ResponseParseFailure(f"malformed engine envelope: {e}") from e


def findings_from_envelope(
  envelope: Envelope,
  requested_model: str | None = None,
) -> AnalysisResult:
  """Turn a decoded envelope into a validated AnalysisResult."""
  if envelope.is_error or envelope.subtype != "success":
    message = envelope.result or "unknown error"
    raise EngineProcessFailure(f"engine reported an error: {scrub_secrets(message)}")

  if envelope.result is None:
    raise ResponseParseFailure("engine envelope has no result text")

  findings = validate_answer(extract_answer(envelope.result))
  model = extract_model_id(envelope, requested_model)
  logger.debug("Engine %s returned %d finding(s)", model, len(findings))
  return AnalysisResult(findings=findings, model=model, meta=extract_meta(envelope))


def extract_answer(text: str) -> Any:
  """Decode the answer JSON, tolerating prose or fences around it."""
  text = text.strip()

  if len(text) > MAX_RESPONSE_LENGTH:
    raise ResponseParseFailure(
      f"Response too large ({len(text)} bytes), max {MAX_RESPONSE_LENGTH}"
    )

  try:
    return json.loads(text)
  except json.JSONDecodeError:
    pass

  fence_match = _FENCE_RE.search(text)
  if fence_match:
    try:
      return json.loads(fence_match.group(1).strip())
    except json.JSONDecodeError:
      pass

  object_match = _FINDINGS_OBJECT_RE.search(text)
  if object_match:
    try:
      return json.loads(object_match.group(0))
    except json.JSONDecodeError:
      pass

  raise ResponseParseFailure(f"could not find JSON in engine response: {text[:200]}...")


def validate_answer(data: Any) -> tuple[Finding, ...]:
  """Validate decoded JSON against the findings schema."""
  try:
    return ReviewResponse.model_validate(data).findings
  except ValidationError as e:
    raise SchemaValidationFailure(f"response validation failed: {e}") from e


def extract_model_id(envelope: Envelope, fallback: str | None = None) -> str:
  """First key of ``modelUsage``, else the requested model, else 'unknown'."""
  if envelope.model_usage:
    return str(next(iter(envelope.model_usage)))
  return fallback or "unknown"


def extract_meta(envelope: Envelope) -> AnalysisMeta:
  cost = envelope.total_cost_usd
  if cost is None:
    cost = envelope.cost_usd
  return AnalysisMeta(
    cost_usd=cost or 0.0,
    duration_ms=envelope.duration_ms,
    duration_api_ms=envelope.duration_api_ms,
    num_turns=envelope.num_turns,
    session_id=envelope.session_id,
  )
