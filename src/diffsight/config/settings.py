"""Application settings."""

from pydantic import BaseModel, ConfigDict, Field

from diffsight.engine.prompt import DEFAULT_MAX_DIFF_CHARS
from diffsight.engine.runner import ClaudeEngine
from diffsight.models import AnalysisMode, ReviewMode


class Settings(BaseModel):
  """Application configuration."""

  model_config = ConfigDict(use_enum_values=False, extra="forbid")

  model: str | None = None
  review_mode: ReviewMode = ReviewMode.BALANCED
  analysis: AnalysisMode = AnalysisMode.QUICK
  max_diff_chars: int = Field(default=DEFAULT_MAX_DIFF_CHARS, gt=0)
  quick_timeout_seconds: float = Field(default=ClaudeEngine.QUICK_TIMEOUT_SECONDS, gt=0)
  deep_timeout_seconds: float = Field(default=ClaudeEngine.DEEP_TIMEOUT_SECONDS, gt=0)
  max_attempts: int = Field(default=ClaudeEngine.MAX_ATTEMPTS, ge=1)
  post: bool = False
  format: str = "terminal"
