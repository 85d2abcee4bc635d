"""Validated schema of the engine's structured answer."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr

from diffsight.models import Confidence, Severity


class RelatedLocation(BaseModel):
  """Another code location a finding refers to."""

  model_config = ConfigDict(frozen=True)

  file: StrictStr
  line: StrictInt
  reason: StrictStr


class Finding(BaseModel):
  """A single review finding anchored to a file and line."""

  model_config = ConfigDict(frozen=True, populate_by_name=True)

  file: StrictStr
  line: StrictInt
  end_line: StrictInt | None = Field(default=None, alias="endLine")
  severity: Severity
  confidence: Confidence
  category: StrictStr
  description: StrictStr
  suggested_fix: StrictStr | None = Field(default=None, alias="suggestedFix")
  related_locations: tuple[RelatedLocation, ...] | None = Field(
    default=None, alias="relatedLocations"
  )

  def to_wire(self) -> dict[str, Any]:
    """Serialize using the engine's field names, omitting unset optionals."""
    return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ReviewResponse(BaseModel):
  """The complete structured answer: a flat list of findings."""

  model_config = ConfigDict(frozen=True)

  findings: tuple[Finding, ...]
