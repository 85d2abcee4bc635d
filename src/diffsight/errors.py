"""Exit codes and secret scrubbing for user-visible messages."""

import re

EXIT_PREREQ = 1
EXIT_INVALID_URL = 2
EXIT_API_ERROR = 3
EXIT_ANALYSIS_ERROR = 4

REDACTED = "[REDACTED]"

_SECRET_PATTERNS: list[tuple[re.Pattern[str], str]] = [
  (re.compile(r"\b(?:ghp_|gho_|ghs_|ghr_|ghu_)[A-Za-z0-9_]+"), REDACTED),
  (re.compile(r"\bgithub_pat_[A-Za-z0-9_]+"), REDACTED),
  (re.compile(r"\bsk-ant-[A-Za-z0-9_-]+"), REDACTED),
  (re.compile(r"(Bearer|token)\s+[A-Za-z0-9._\-]+", re.IGNORECASE), rf"\1 {REDACTED}"),
  (re.compile(r"https?://[^@\s/]+@"), f"https://{REDACTED}@"),
]


def scrub_secrets(text: str) -> str:
  """Replace known token and credential patterns with a placeholder."""
  for pattern, replacement in _SECRET_PATTERNS:
    text = pattern.sub(replacement, text)
  return text


def sanitize_error(error: BaseException | object) -> str:
  """Message of an error (or any value) with secrets scrubbed."""
  return scrub_secrets(str(error))
