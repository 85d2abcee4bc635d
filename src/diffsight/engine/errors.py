"""Typed failures of an engine invocation."""


class EngineError(Exception):
  """Base class for analysis engine failures."""


class EngineTimeout(EngineError):
  """The engine did not finish within its wall-clock budget."""

  def __init__(self, timeout_seconds: float, message: str):
    super().__init__(message)
    self.timeout_seconds = timeout_seconds


class EngineProcessFailure(EngineError):
  """The engine process failed or reported an error in its envelope.

  ``exit_code`` is None when the process exited cleanly but the envelope
  carried an error status, or when it could not be started at all.
  """

  def __init__(self, message: str, exit_code: int | None = None):
    super().__init__(message)
    self.exit_code = exit_code


class ResponseParseFailure(EngineError):
  """The engine output could not be decoded into JSON."""


class SchemaValidationFailure(EngineError):
  """The decoded answer does not match the findings schema."""
