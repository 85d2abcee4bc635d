"""Environment redaction for engine subprocesses."""

import os
from typing import Mapping

DANGEROUS_PREFIXES = (
  "AWS_",
  "AZURE_",
  "GCP_",
  "GOOGLE_",
  "DATABASE_",
  "REDIS_",
  "MONGO_",
  "SECRET_",
  "PASSWORD_",
  "CI_",
  "JENKINS_",
  "TRAVIS_",
  "CIRCLE_",
  "TOKEN_",
  "KEY_",
)

DANGEROUS_EXACT = frozenset({"DATABASE_URL", "REDIS_URL"})

# Needed by the engine itself and by the GitHub CLI it may call.
KEEP = frozenset({"ANTHROPIC_API_KEY", "GH_TOKEN", "GITHUB_TOKEN"})


def filter_env(environ: Mapping[str, str] | None = None) -> dict[str, str]:
  """Copy of the environment without cloud, database and CI credentials."""
  source = os.environ if environ is None else environ
  filtered: dict[str, str] = {}
  for key, value in source.items():
    if key in KEEP:
      filtered[key] = value
      continue
    if key in DANGEROUS_EXACT or key.startswith(DANGEROUS_PREFIXES):
      continue
    filtered[key] = value
  return filtered
