"""Tests for the Claude CLI runner."""

import json
import subprocess
from unittest.mock import patch

import pytest
from conftest import WIRE_FINDING, FakeProcess, make_envelope
from diffsight.engine.environment import filter_env
from diffsight.engine.errors import EngineProcessFailure, EngineTimeout, ResponseParseFailure
from diffsight.engine.runner import ClaudeEngine, ProcessHandle
from diffsight.models import ChangeRequest, ReviewMode

POPEN = "diffsight.engine.runner.subprocess.Popen"


def _ok(findings: list[dict] | None = None, **overrides) -> FakeProcess:
  return FakeProcess(stdout=json.dumps(make_envelope(findings, **overrides)))


def _stream(*events: dict, returncode: int = 0, stderr: str = "") -> FakeProcess:
  stdout = "".join(json.dumps(e) + "\n" for e in events)
  return FakeProcess(stdout=stdout, stderr=stderr, returncode=returncode)


class TestAnalyze:
  def test_success(self, sample_change: ChangeRequest) -> None:
    with patch(POPEN, return_value=_ok([WIRE_FINDING])) as popen:
      result = ClaudeEngine(model="sonnet").analyze(sample_change)

    assert len(result.findings) == 1
    assert result.model == "sonnet"
    args = popen.call_args.args[0]
    assert args[:4] == ["claude", "-p", "--output-format", "json"]
    assert args[args.index("--max-turns") + 1] == "10"
    assert args[args.index("--model") + 1] == "sonnet"

  def test_prompt_sent_on_stdin(self, sample_change: ChangeRequest) -> None:
    process = _ok()
    with patch(POPEN, return_value=process):
      ClaudeEngine().analyze(sample_change, ReviewMode.STRICT)

    assert "REVIEW MODE: STRICT" in process.stdin_text
    assert process.timeout == ClaudeEngine.QUICK_TIMEOUT_SECONDS

  def test_no_model_flag_by_default(self, sample_change: ChangeRequest) -> None:
    with patch(POPEN, return_value=_ok()) as popen:
      ClaudeEngine().analyze(sample_change)
    assert "--model" not in popen.call_args.args[0]

  def test_retries_once_after_failure(self, sample_change: ChangeRequest) -> None:
    processes = [FakeProcess(stderr="boom", returncode=1), _ok([WIRE_FINDING])]
    with patch(POPEN, side_effect=processes) as popen:
      result = ClaudeEngine().analyze(sample_change)

    assert popen.call_count == 2
    assert len(result.findings) == 1

  def test_gives_up_after_attempts(self, sample_change: ChangeRequest) -> None:
    processes = [FakeProcess(stderr="boom", returncode=1) for _ in range(2)]
    with patch(POPEN, side_effect=processes) as popen:
      with pytest.raises(EngineProcessFailure, match="engine exited with code 1: boom") as exc_info:
        ClaudeEngine().analyze(sample_change)

    assert popen.call_count == 2
    assert exc_info.value.exit_code == 1

  def test_is_error_envelope_fails(self, sample_change: ChangeRequest) -> None:
    processes = [_ok(is_error=True, result="overloaded") for _ in range(2)]
    with patch(POPEN, side_effect=processes):
      with pytest.raises(EngineProcessFailure, match="overloaded"):
        ClaudeEngine().analyze(sample_change)

  def test_timeout_is_not_retried(self, sample_change: ChangeRequest) -> None:
    process = FakeProcess(hang=True)
    with patch(POPEN, return_value=process) as popen:
      with pytest.raises(EngineTimeout, match="reduce its size") as exc_info:
        ClaudeEngine(quick_timeout=0.05).analyze(sample_change)

    assert popen.call_count == 1
    assert process.terminated
    assert exc_info.value.timeout_seconds == 0.05

  def test_output_cap_exceeded(self, sample_change: ChangeRequest) -> None:
    processes = [FakeProcess(stdout="x" * 500, hang=True) for _ in range(2)]
    with patch.object(ClaudeEngine, "MAX_OUTPUT_CHARS", 100), \
        patch(POPEN, side_effect=processes) as popen:
      with pytest.raises(EngineProcessFailure, match="output exceeded 100 characters"):
        ClaudeEngine().analyze(sample_change)

    assert popen.call_count == 2
    assert all(p.terminated for p in processes)

  def test_output_within_cap(self, sample_change: ChangeRequest) -> None:
    process = _ok([WIRE_FINDING])
    with patch.object(ClaudeEngine, "MAX_OUTPUT_CHARS", len(process.stdout.getvalue())), \
        patch(POPEN, return_value=process):
      result = ClaudeEngine().analyze(sample_change)
    assert len(result.findings) == 1

  def test_unparseable_output(self, sample_change: ChangeRequest) -> None:
    processes = [FakeProcess(stdout="not json") for _ in range(2)]
    with patch(POPEN, side_effect=processes):
      with pytest.raises(ResponseParseFailure):
        ClaudeEngine().analyze(sample_change)

  def test_stderr_secrets_scrubbed(self, sample_change: ChangeRequest) -> None:
    processes = [FakeProcess(stderr="auth failed for ghp_secret123", returncode=1)]
    with patch(POPEN, side_effect=processes):
      with pytest.raises(EngineProcessFailure) as exc_info:
        ClaudeEngine(max_attempts=1).analyze(sample_change)
    assert "ghp_secret123" not in str(exc_info.value)

  def test_executable_missing(self, sample_change: ChangeRequest) -> None:
    with patch(POPEN, side_effect=FileNotFoundError(2, "No such file or directory")):
      with pytest.raises(EngineProcessFailure, match="could not start claude"):
        ClaudeEngine().analyze(sample_change)

  def test_active_process_cleared(self, sample_change: ChangeRequest) -> None:
    engine = ClaudeEngine()
    with patch(POPEN, return_value=_ok()):
      engine.analyze(sample_change)
    assert engine.active_process is None

  def test_environment_filtered(
    self, sample_change: ChangeRequest, monkeypatch: pytest.MonkeyPatch
  ) -> None:
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "aws")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "key")
    with patch(POPEN, return_value=_ok()) as popen:
      ClaudeEngine().analyze(sample_change)

    env = popen.call_args.kwargs["env"]
    assert "AWS_SECRET_ACCESS_KEY" not in env
    assert env["ANTHROPIC_API_KEY"] == "key"


class TestAnalyzeStreaming:
  def test_success(self, sample_change: ChangeRequest, tmp_path) -> None:
    process = _stream(
      {"type": "system", "subtype": "init"},
      make_envelope([WIRE_FINDING], num_turns=12),
      stderr="reading files\n",
    )
    forwarded: list[str] = []
    with patch(POPEN, return_value=process) as popen:
      engine = ClaudeEngine(stderr_sink=forwarded.append)
      result = engine.analyze_streaming(sample_change, cwd=tmp_path)

    assert len(result.findings) == 1
    assert result.meta.num_turns == 12
    assert forwarded == ["reading files\n"]
    assert "deep codebase analysis" in process.stdin_text
    args = popen.call_args.args[0]
    assert "stream-json" in args
    assert "--verbose" in args
    assert args[args.index("--max-turns") + 1] == "75"
    assert popen.call_args.kwargs["cwd"] == tmp_path

  def test_nonzero_exit(self, sample_change: ChangeRequest) -> None:
    with patch(POPEN, return_value=_stream(returncode=2)) as popen:
      with pytest.raises(EngineProcessFailure, match="engine exited with code 2") as exc_info:
        ClaudeEngine(stderr_sink=lambda _: None).analyze_streaming(sample_change)

    assert popen.call_count == 1
    assert exc_info.value.exit_code == 2

  def test_signal_termination(self, sample_change: ChangeRequest) -> None:
    with patch(POPEN, return_value=_stream(returncode=-9)):
      with pytest.raises(EngineProcessFailure, match="signal 9") as exc_info:
        ClaudeEngine(stderr_sink=lambda _: None).analyze_streaming(sample_change)

    assert exc_info.value.exit_code == -9

  def test_max_turns(self, sample_change: ChangeRequest) -> None:
    process = _stream(returncode=1, stderr="Error: Reached max turns (75)\n")
    with patch(POPEN, return_value=process):
      with pytest.raises(EngineProcessFailure, match="max turns"):
        ClaudeEngine(stderr_sink=lambda _: None).analyze_streaming(sample_change)

  def test_missing_result_event(self, sample_change: ChangeRequest) -> None:
    process = _stream({"type": "assistant", "message": {}})
    with patch(POPEN, return_value=process):
      with pytest.raises(ResponseParseFailure, match="no result event"):
        ClaudeEngine().analyze_streaming(sample_change)

  def test_timeout_terminates_process(self, sample_change: ChangeRequest) -> None:
    process = FakeProcess(hang=True)
    engine = ClaudeEngine(deep_timeout=0.05)
    with patch(POPEN, return_value=process):
      with pytest.raises(EngineTimeout, match="Deep review timed out"):
        engine.analyze_streaming(sample_change)

    assert process.terminated
    assert engine.active_process is None


class TestProcessHandle:
  def test_terminate_escalates_to_kill(self) -> None:
    class Stubborn(FakeProcess):
      def __init__(self) -> None:
        super().__init__(hang=True)
        self.killed = False

      def terminate(self) -> None:
        self.terminated = True

      def wait(self, timeout: float | None = None) -> int:
        if timeout is not None and not self.killed:
          raise subprocess.TimeoutExpired("claude", timeout)
        return -9

      def kill(self) -> None:
        self.killed = True

    process = Stubborn()
    ProcessHandle(process).terminate()
    assert process.terminated
    assert process.killed

  def test_finished_process_left_alone(self) -> None:
    process = FakeProcess()
    process.wait()
    ProcessHandle(process).terminate()
    assert not process.terminated

  def test_exit_closes_pipes(self) -> None:
    process = FakeProcess()
    with ProcessHandle(process):
      pass
    assert process.stdout.closed
    assert process.stderr.closed

  def test_engine_close_terminates_active_process(self) -> None:
    process = FakeProcess(hang=True)
    engine = ClaudeEngine()
    engine._active = ProcessHandle(process)
    with engine:
      assert engine.active_process is not None
    assert process.terminated
    assert engine.active_process is None


class TestFilterEnv:
  def test_removes_credentials(self) -> None:
    env = filter_env({
      "PATH": "/usr/bin",
      "AWS_ACCESS_KEY_ID": "a",
      "DATABASE_URL": "postgres://",
      "CI_JOB_TOKEN": "c",
      "SECRET_THING": "s",
      "GITHUB_TOKEN": "g",
      "ANTHROPIC_API_KEY": "k",
    })
    assert env == {"PATH": "/usr/bin", "GITHUB_TOKEN": "g", "ANTHROPIC_API_KEY": "k"}

  def test_availability(self) -> None:
    with patch("diffsight.engine.runner.shutil.which", return_value=None):
      assert not ClaudeEngine().is_available()
    with patch("diffsight.engine.runner.shutil.which", return_value="/usr/bin/claude"):
      assert ClaudeEngine().is_available()
