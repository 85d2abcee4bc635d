"""Pytest fixtures."""

import io
import json
import subprocess
import threading
from typing import Any, Callable

import pytest
from diffsight.models import ChangeRequest, Confidence, Severity
from diffsight.schemas import Finding


@pytest.fixture
def sample_diff() -> str:
  return """diff --git a/test.py b/test.py
index 1234567..abcdefg 100644
--- a/test.py
+++ b/test.py
@@ -1,5 +1,6 @@
 def hello():
-    print("hello")
+    print("hello world")
+    return True


 def bye():
diff --git a/new_file.py b/new_file.py
new file mode 100644
index 0000000..1234567
--- /dev/null
+++ b/new_file.py
@@ -0,0 +1,3 @@
+def new_func():
+    pass
+
"""


@pytest.fixture
def sample_change(sample_diff: str) -> ChangeRequest:
  return ChangeRequest(
    title="Add greeting",
    diff=sample_diff,
    body="Makes hello friendlier.",
    author="octocat",
    number=42,
    base_branch="main",
    head_branch="feature/greeting",
    head_sha="abc123",
    additions=5,
    deletions=1,
    changed_files=2,
  )


@pytest.fixture
def make_finding() -> Callable[..., Finding]:
  def _make(
    file: str = "test.py",
    line: int = 2,
    severity: Severity = Severity.BUG,
    confidence: Confidence = Confidence.HIGH,
    description: str = "Something is wrong",
    **kwargs: Any,
  ) -> Finding:
    return Finding(
      file=file,
      line=line,
      severity=severity,
      confidence=confidence,
      category=kwargs.pop("category", "logic"),
      description=description,
      **kwargs,
    )

  return _make


def make_envelope(findings: list[dict] | None = None, **overrides: Any) -> dict:
  """A successful engine envelope carrying the given findings."""
  envelope = {
    "type": "result",
    "subtype": "success",
    "is_error": False,
    "result": json.dumps({"findings": findings or []}),
    "duration_ms": 1200,
    "duration_api_ms": 900,
    "num_turns": 1,
    "session_id": "session-1",
    "total_cost_usd": 0.01,
  }
  envelope.update(overrides)
  return envelope


WIRE_FINDING = {
  "file": "test.py",
  "line": 2,
  "severity": "bug",
  "confidence": "high",
  "category": "logic",
  "description": "Return value is ignored",
}


class _Stdin(io.StringIO):
  """Keeps what was written after the pipe is closed."""

  text = ""

  def close(self) -> None:
    if not self.closed:
      self.text = self.getvalue()
    super().close()


class FakeProcess:
  """Stand-in for subprocess.Popen driven by canned output."""

  def __init__(
    self,
    stdout: str = "",
    stderr: str = "",
    returncode: int = 0,
    hang: bool = False,
  ):
    self.stdin = _Stdin()
    self.stdout = io.StringIO(stdout)
    self.stderr = io.StringIO(stderr)
    self.pid = 4242
    self.terminated = False
    self._returncode = returncode
    self._hang = hang
    self._done = threading.Event()
    self.returncode: int | None = None
    self.timeout: float | None = None
    if not hang:
      self._done.set()

  @property
  def stdin_text(self) -> str:
    return self.stdin.text

  def poll(self) -> int | None:
    if self._done.is_set():
      self.returncode = self._returncode
    return self.returncode

  def wait(self, timeout: float | None = None) -> int:
    if self.timeout is None:
      self.timeout = timeout
    if not self._done.wait(timeout):
      raise subprocess.TimeoutExpired("claude", timeout)
    self.returncode = self._returncode
    return self.returncode

  def terminate(self) -> None:
    self.terminated = True
    self._returncode = -15
    self._done.set()

  def kill(self) -> None:
    self.terminate()
