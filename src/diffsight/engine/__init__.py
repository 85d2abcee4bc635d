"""Analysis engine invocation."""

from diffsight.engine.errors import (
  EngineError,
  EngineProcessFailure,
  EngineTimeout,
  ResponseParseFailure,
  SchemaValidationFailure,
)
from diffsight.engine.runner import ClaudeEngine, ProcessHandle

__all__ = [
  "ClaudeEngine",
  "EngineError",
  "EngineProcessFailure",
  "EngineTimeout",
  "ProcessHandle",
  "ResponseParseFailure",
  "SchemaValidationFailure",
]
