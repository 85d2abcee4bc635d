"""Claude CLI invocation in bounded and streaming modes."""

import contextlib
import logging
import shutil
import subprocess
import threading
from pathlib import Path
from typing import Callable, TextIO

from rich.console import Console

from diffsight.engine.envelope import findings_from_envelope, parse_envelope, parse_stream_result
from diffsight.engine.environment import filter_env
from diffsight.engine.errors import EngineError, EngineProcessFailure, EngineTimeout
from diffsight.engine.prompt import DEFAULT_MAX_DIFF_CHARS, build_deep_prompt, build_prompt
from diffsight.errors import scrub_secrets
from diffsight.models import AnalysisResult, ChangeRequest, ReviewMode

logger = logging.getLogger(__name__)

_console = Console(stderr=True)

_READ_CHUNK_CHARS = 64 * 1024


class ProcessHandle:
  """A running engine process that is terminated when the handle is released."""

  TERMINATE_GRACE_SECONDS = 5.0

  def __init__(self, process: subprocess.Popen):
    self.process = process

  @property
  def running(self) -> bool:
    return self.process.poll() is None

  def terminate(self) -> None:
    """Stop the process if it is still running, escalating to kill."""
    if not self.running:
      return
    logger.debug("Terminating engine process %s", getattr(self.process, "pid", "?"))
    self.process.terminate()
    try:
      self.process.wait(timeout=self.TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
      self.process.kill()
      self.process.wait()

  def __enter__(self) -> "ProcessHandle":
    return self

  def __exit__(self, *exc_info: object) -> None:
    self.terminate()
    for stream in (self.process.stdin, self.process.stdout, self.process.stderr):
      if stream is not None and not stream.closed:
        with contextlib.suppress(OSError):
          stream.close()


class ClaudeEngine:
  """Runs the ``claude`` CLI and returns validated findings.

  The engine is a context manager. While a call is in flight its process is
  exposed as ``active_process``; leaving the ``with`` block (including via
  KeyboardInterrupt) terminates it.

  Example:
    with ClaudeEngine(model="sonnet") as engine:
      result = engine.analyze(change)
  """

  EXECUTABLE = "claude"
  QUICK_TIMEOUT_SECONDS = 5 * 60
  DEEP_TIMEOUT_SECONDS = 10 * 60
  MAX_OUTPUT_CHARS = 10 * 1024 * 1024
  MAX_ATTEMPTS = 2
  MAX_ANALYSIS_TURNS = 10
  MAX_AGENTIC_TURNS = 75

  def __init__(
    self,
    model: str | None = None,
    executable: str | None = None,
    quick_timeout: float | None = None,
    deep_timeout: float | None = None,
    max_attempts: int | None = None,
    max_diff_chars: int = DEFAULT_MAX_DIFF_CHARS,
    stderr_sink: Callable[[str], None] | None = None,
  ):
    self._model = model
    self._executable = executable or self.EXECUTABLE
    self._quick_timeout = quick_timeout or self.QUICK_TIMEOUT_SECONDS
    self._deep_timeout = deep_timeout or self.DEEP_TIMEOUT_SECONDS
    self._max_attempts = max(1, max_attempts or self.MAX_ATTEMPTS)
    self._max_diff_chars = max_diff_chars
    self._stderr_sink = stderr_sink or _print_stderr
    self._active: ProcessHandle | None = None

  @property
  def name(self) -> str:
    return "claude"

  @property
  def model(self) -> str | None:
    return self._model

  @property
  def active_process(self) -> ProcessHandle | None:
    """Handle of the in-flight engine process, if any."""
    return self._active

  def is_available(self) -> bool:
    return shutil.which(self._executable) is not None

  def close(self) -> None:
    """Terminate any in-flight engine process."""
    if self._active is not None:
      self._active.terminate()
      self._active = None

  def __enter__(self) -> "ClaudeEngine":
    return self

  def __exit__(self, *exc_info: object) -> None:
    self.close()

  def analyze(
    self,
    change: ChangeRequest,
    mode: ReviewMode = ReviewMode.BALANCED,
  ) -> AnalysisResult:
    """Single-shot analysis with a hard timeout and one retry.

    A timeout is raised immediately. Any other EngineError is retried until
    the attempt budget is spent, then the last one is raised.
    """
    prompt = build_prompt(change, mode, self._max_diff_chars)
    last_error: EngineError | None = None

    for attempt in range(1, self._max_attempts + 1):
      try:
        return self._run_bounded(prompt)
      except EngineTimeout:
        raise
      except EngineError as e:
        last_error = e
        logger.debug("Analysis attempt %d/%d failed: %s", attempt, self._max_attempts, e)

    raise last_error or EngineProcessFailure("analysis failed")

  def analyze_streaming(
    self,
    change: ChangeRequest,
    cwd: Path | None = None,
    mode: ReviewMode = ReviewMode.BALANCED,
  ) -> AnalysisResult:
    """Long multi-turn analysis with live stderr and a manual timeout.

    Never retries. Callers that want to fall back to ``analyze`` must do so
    themselves.
    """
    prompt = build_deep_prompt(change, mode, self._max_diff_chars)
    args = self._command("stream-json", self.MAX_AGENTIC_TURNS, verbose=True)

    stdout_lines: list[str] = []
    stderr_lines: list[str] = []
    timed_out = threading.Event()

    def forward_stderr(line: str) -> None:
      stderr_lines.append(line)
      self._stderr_sink(scrub_secrets(line))

    with self._spawn(args, cwd) as handle:
      process = handle.process
      readers = [
        threading.Thread(target=_drain, args=(process.stdout, stdout_lines.append), daemon=True),
        threading.Thread(target=_drain, args=(process.stderr, forward_stderr), daemon=True),
      ]
      for reader in readers:
        reader.start()

      timer = threading.Timer(self._deep_timeout, _expire, args=(handle, timed_out))
      timer.daemon = True
      timer.start()
      try:
        _send_prompt(process, prompt)
        returncode = process.wait()
        for reader in readers:
          reader.join()
      finally:
        timer.cancel()
        self._active = None

    stdout = "".join(stdout_lines)
    stderr = "".join(stderr_lines)

    if timed_out.is_set():
      raise EngineTimeout(
        self._deep_timeout,
        f"Deep review timed out after {_describe(self._deep_timeout)}.",
      )

    if returncode != 0:
      _log_raw_output(stdout, stderr)
      if returncode < 0:
        reason = f"engine terminated by signal {-returncode}"
      elif "max turns" in stderr.lower():
        reason = f"max turns ({self.MAX_AGENTIC_TURNS}) reached without completing the review"
      else:
        reason = f"engine exited with code {returncode}"
      raise EngineProcessFailure(reason, returncode)

    try:
      return findings_from_envelope(parse_stream_result(stdout), self._model)
    except EngineError:
      _log_raw_output(stdout, stderr)
      raise

  def _run_bounded(self, prompt: str) -> AnalysisResult:
    args = self._command("json", self.MAX_ANALYSIS_TURNS)
    stdout_chunks: list[str] = []
    stderr_lines: list[str] = []
    overflowed = threading.Event()

    try:
      with self._spawn(args) as handle:
        process = handle.process
        readers = [
          threading.Thread(
            target=_read_capped,
            args=(process.stdout, stdout_chunks, self.MAX_OUTPUT_CHARS, overflowed, handle),
            daemon=True,
          ),
          threading.Thread(target=_drain, args=(process.stderr, stderr_lines.append), daemon=True),
        ]
        for reader in readers:
          reader.start()

        _send_prompt(process, prompt)
        try:
          returncode = process.wait(timeout=self._quick_timeout)
        except subprocess.TimeoutExpired:
          raise EngineTimeout(
            self._quick_timeout,
            f"Analysis timed out after {_describe(self._quick_timeout)}. "
            "The diff may be too large for a quick review; reduce its size and retry.",
          ) from None
        for reader in readers:
          reader.join()
    finally:
      self._active = None

    if overflowed.is_set():
      raise EngineProcessFailure(
        f"engine output exceeded {self.MAX_OUTPUT_CHARS} characters", returncode
      )

    if returncode != 0:
      detail = scrub_secrets("".join(stderr_lines).strip()[-500:])
      message = f"engine exited with code {returncode}"
      raise EngineProcessFailure(f"{message}: {detail}" if detail else message, returncode)

    return findings_from_envelope(parse_envelope("".join(stdout_chunks)), self._model)

  def _command(self, output_format: str, max_turns: int, verbose: bool = False) -> list[str]:
    args = [self._executable, "-p", "--output-format", output_format]
    if verbose:
      args.append("--verbose")
    args.extend(["--max-turns", str(max_turns)])
    if self._model:
      args.extend(["--model", self._model])
    return args

  def _spawn(self, args: list[str], cwd: Path | None = None) -> ProcessHandle:
    logger.debug("Spawning engine: %s (cwd=%s)", " ".join(args), cwd)
    try:
      process = subprocess.Popen(
        args,
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        encoding="utf-8",
        errors="replace",
        env=filter_env(),
        cwd=cwd,
      )
    except OSError as e:
      raise EngineProcessFailure(f"could not start {self._executable}: {e.strerror or e}") from e
    self._active = ProcessHandle(process)
    return self._active


def _drain(stream: TextIO | None, sink: Callable[[str], None]) -> None:
  """Pass every line of a pipe to ``sink`` in emission order."""
  if stream is None:
    return
  for line in stream:
    sink(line)


def _read_capped(
  stream: TextIO | None,
  chunks: list[str],
  limit: int,
  overflowed: threading.Event,
  handle: ProcessHandle,
) -> None:
  """Collect ``stream`` until EOF, stopping the process once ``limit`` is passed."""
  if stream is None:
    return
  total = 0
  while True:
    chunk = stream.read(_READ_CHUNK_CHARS)
    if not chunk:
      return
    total += len(chunk)
    if total > limit:
      logger.debug("Engine output passed %d characters, stopping it", limit)
      overflowed.set()
      handle.terminate()
      return
    chunks.append(chunk)


def _send_prompt(process: subprocess.Popen, prompt: str) -> None:
  if process.stdin is None:
    return
  try:
    process.stdin.write(prompt)
    process.stdin.close()
  except BrokenPipeError:
    # The process exited before reading its input; its exit status says why.
    logger.debug("Engine closed stdin before the prompt was written")


def _expire(handle: ProcessHandle, timed_out: threading.Event) -> None:
  timed_out.set()
  handle.terminate()


def _print_stderr(text: str) -> None:
  _console.out(text, end="", highlight=False)


def _log_raw_output(stdout: str, stderr: str) -> None:
  logger.debug("Raw engine stdout: %s", scrub_secrets(stdout[:2000]))
  logger.debug("Raw engine stderr: %s", scrub_secrets(stderr[:2000]))


def _describe(seconds: float) -> str:
  if seconds >= 60 and seconds % 60 == 0:
    minutes = int(seconds // 60)
    return f"{minutes} minute{'s' if minutes != 1 else ''}"
  return f"{seconds:g} second{'s' if seconds != 1 else ''}"
