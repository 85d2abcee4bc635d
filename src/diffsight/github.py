"""GitHub pull request fetching and review posting."""

import logging
import os
import re
import subprocess
from dataclasses import dataclass
from typing import Any, Sequence

import httpx

from diffsight.errors import scrub_secrets
from diffsight.models import ChangedFile, ChangeRequest
from diffsight.placement import ReviewComment

logger = logging.getLogger(__name__)

_PR_URL_RE = re.compile(
  r"^https?://github\.com/([A-Za-z0-9_.-]+)/([A-Za-z0-9_.-]+)/pull/(\d+)/?(?:\?[^#]*)?(?:#.*)?$"
)


class GitHubError(Exception):
  """GitHub API request failed."""


@dataclass(frozen=True)
class PullRequestRef:
  owner: str
  repo: str
  number: int


def parse_pr_url(url: str) -> PullRequestRef | None:
  """Parse https://github.com/owner/repo/pull/123, or None if it is not one."""
  match = _PR_URL_RE.match(url.strip())
  if not match:
    return None
  return PullRequestRef(match.group(1), match.group(2), int(match.group(3)))


def get_github_token() -> str:
  """Token from GITHUB_TOKEN / GH_TOKEN, else from the gh CLI."""
  for var in ("GITHUB_TOKEN", "GH_TOKEN"):
    token = os.environ.get(var)
    if token:
      return token

  try:
    result = subprocess.run(
      ["gh", "auth", "token"],
      capture_output=True,
      text=True,
      check=True,
    )
  except (OSError, subprocess.CalledProcessError) as e:
    raise GitHubError(
      "No GitHub token: set GITHUB_TOKEN or run 'gh auth login'"
    ) from e

  token = result.stdout.strip()
  if not token:
    raise GitHubError("gh auth token returned an empty token")
  return token


class GitHubClient:
  """Minimal REST client for the pull request endpoints the review needs."""

  DEFAULT_BASE_URL = "https://api.github.com"
  DEFAULT_TIMEOUT = 30.0

  def __init__(
    self,
    token: str,
    base_url: str = DEFAULT_BASE_URL,
    client: httpx.Client | None = None,
  ):
    self._client = client or httpx.Client(
      base_url=base_url,
      timeout=self.DEFAULT_TIMEOUT,
    )
    self._headers = {
      "Authorization": f"Bearer {token}",
      "Accept": "application/vnd.github+json",
      "X-GitHub-Api-Version": "2022-11-28",
    }

  def close(self) -> None:
    self._client.close()

  def __enter__(self) -> "GitHubClient":
    return self

  def __exit__(self, *exc_info: object) -> None:
    self.close()

  def fetch_pull_request(self, ref: PullRequestRef) -> ChangeRequest:
    """Fetch metadata, file list and unified diff of a pull request."""
    path = f"/repos/{ref.owner}/{ref.repo}/pulls/{ref.number}"
    pr = self._request("GET", path).json()
    files = self._request("GET", f"{path}/files", params={"per_page": 100}).json()
    diff = self._request(
      "GET", path, headers={"Accept": "application/vnd.github.v3.diff"}
    ).text

    return ChangeRequest(
      title=pr.get("title") or "",
      body=pr.get("body") or "",
      author=(pr.get("user") or {}).get("login") or "unknown",
      number=pr.get("number", ref.number),
      base_branch=pr["base"]["ref"],
      head_branch=pr["head"]["ref"],
      head_sha=pr["head"]["sha"],
      additions=pr.get("additions", 0),
      deletions=pr.get("deletions", 0),
      changed_files=pr.get("changed_files", len(files)),
      files=tuple(
        ChangedFile(
          filename=f["filename"],
          status=f.get("status", "modified"),
          additions=f.get("additions", 0),
          deletions=f.get("deletions", 0),
        )
        for f in files
      ),
      diff=diff,
    )

  def post_review(
    self,
    ref: PullRequestRef,
    head_sha: str,
    body: str,
    comments: Sequence[ReviewComment],
  ) -> str:
    """Post a COMMENT review and return its URL.

    When GitHub rejects the inline positions (HTTP 422), every comment is
    moved into the review body and the review is posted again without
    inline comments.
    """
    path = f"/repos/{ref.owner}/{ref.repo}/pulls/{ref.number}/reviews"
    payload = _review_payload(head_sha, body, comments)

    response = self._send("POST", path, json=payload)
    if response.status_code == 422 and comments:
      logger.debug("Inline comments rejected, posting them in the review body")
      payload = _review_payload(head_sha, promote_comments(body, comments), [])
      response = self._send("POST", path, json=payload)

    _raise_for_status(response)
    return response.json().get("html_url", "")

  def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
    response = self._send(method, path, **kwargs)
    _raise_for_status(response)
    return response

  def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
    headers = {**self._headers, **kwargs.pop("headers", {})}
    try:
      return self._client.request(method, path, headers=headers, **kwargs)
    except httpx.RequestError as e:
      raise GitHubError(f"{method} {path} failed: {scrub_secrets(str(e))}") from e


def promote_comments(body: str, comments: Sequence[ReviewComment]) -> str:
  """Append inline comments to a review body."""
  sections = [body, "---", "**Inline comments** (could not be attached to diff lines):"]
  for comment in comments:
    sections.append(f"`{comment.path}:{comment.line}`\n\n{comment.body}")
  return "\n\n".join(sections)


def _review_payload(
  head_sha: str,
  body: str,
  comments: Sequence[ReviewComment],
) -> dict[str, Any]:
  return {
    "commit_id": head_sha,
    "body": body,
    "event": "COMMENT",
    "comments": [
      {"path": c.path, "line": c.line, "side": c.side, "body": c.body}
      for c in comments
    ],
  }


def _raise_for_status(response: httpx.Response) -> None:
  if response.is_success:
    return
  try:
    data = response.json()
    message = data.get("message", "") if isinstance(data, dict) else ""
  except ValueError:
    message = response.text[:200]
  raise GitHubError(
    f"GitHub API returned {response.status_code}: {scrub_secrets(str(message))}"
  )
