from __future__ import annotations

import contextlib
import logging
import math
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from functools import partial
from typing import IO, Any, Mapping

from .capabilities import HostCapabilities, host_capabilities
from .composer import compose
from .languages import LanguageProfile, Strategy
from .types import ExecutionOutcome, OutcomeStatus, StepResult
from .workspace import Workspace

logger = logging.getLogger(__name__)

_resource: Any
try:
    import resource as _resource_module  # POSIX only
    _resource = _resource_module
except ImportError:  # pragma: no cover - platform specific
    _resource = None

DEFAULT_MAX_OUTPUT_BYTES = 1024 * 1024
DEFAULT_POLL_INTERVAL_SECONDS = 0.05
# How long to wait for pipes to drain after the process is gone.
_DRAIN_GRACE_SECONDS = 2.0
_READ_CHUNK = 64 * 1024

TIMEOUT_MESSAGE = (
    "Execution timed out after {timeout_ms}ms - program took too long to complete. "
    "Check for infinite loops or missing input."
)
COMPILE_TIMEOUT_MESSAGE = "Compilation timed out after {timeout_ms}ms"
CANCELLED_MESSAGE = "Execution cancelled after {elapsed_ms}ms"

_ENV_PASSTHROUGH = (
    "PATH",
    "HOME",
    "LANG",
    "LC_ALL",
    "TMPDIR",
    "TEMP",
    "TMP",
    "SYSTEMROOT",
    "WINDIR",
    "JAVA_HOME",
    "GOPATH",
    "GOCACHE",
    "GOROOT",
    "CARGO_HOME",
    "RUSTUP_HOME",
)


def normalize_stdin(text: str | None) -> str:
    """Trim each line, drop blank lines and newline-terminate every remaining line.

    Blank input produces an empty string, so nothing is written before EOF.

    Example:
        ```python
        assert normalize_stdin("Alice\\n  25  \\n\\n") == "Alice\\n25\\n"
        ```
    """
    if not text or not text.strip():
        return ""
    lines = [line.strip() for line in text.splitlines()]
    return "".join(f"{line}\n" for line in lines if line)


def kill_process_tree(process: subprocess.Popen[bytes]) -> None:
    """Forcibly terminate a process and, where supported, its whole process group.

    This is the single forced-termination path used by timeouts and cancellation.

    Example:
        ```python
        kill_process_tree(proc)
        proc.wait()
        ```
    """
    if os.name == "posix":
        with contextlib.suppress(ProcessLookupError, PermissionError):
            os.killpg(process.pid, signal.SIGKILL)
    with contextlib.suppress(ProcessLookupError, OSError):
        process.kill()


def _child_env() -> dict[str, str]:
    """Return a reduced environment for child processes.

    Example:
        ```python
        env = _child_env()
        ```
    """
    env = {key: os.environ[key] for key in _ENV_PASSTHROUGH if key in os.environ}
    env.setdefault("PATH", os.defpath)
    env["PYTHONUNBUFFERED"] = "1"
    return env


_Limit = tuple[int, int, int]


def _run_limits(profile: LanguageProfile, capabilities: HostCapabilities) -> list[_Limit]:
    """Return the (resource, soft, hard) limits for a run step, empty when unsupported.

    Example:
        ```python
        limits = _run_limits(profile, host_capabilities())
        ```
    """
    if _resource is None or not capabilities.supports_memory_limit:
        return []
    cpu_seconds = max(1, math.ceil(profile.timeout_ms / 1000)) + 1
    limits = [(_resource.RLIMIT_CPU, cpu_seconds, cpu_seconds + 1)]
    if hasattr(_resource, "RLIMIT_CORE"):
        limits.append((_resource.RLIMIT_CORE, 0, 0))
    if profile.limit_address_space and hasattr(_resource, "RLIMIT_AS"):
        memory_bytes = profile.memory_limit_bytes
        limits.append((_resource.RLIMIT_AS, memory_bytes, memory_bytes))
    return limits


def _apply_limits(limits: list[_Limit], pid: int | None = None) -> None:
    """Apply limits to `pid`, or to the calling process when `pid` is None.

    A limit that cannot be set is skipped: the wall-clock timeout still applies.
    Hard limits are never raised above the current hard limit.

    Example:
        ```python
        _apply_limits(_run_limits(profile, host_capabilities()), pid=proc.pid)
        ```
    """
    for which, soft, hard in limits:
        try:
            if pid is None:
                _, current_hard = _resource.getrlimit(which)
            else:
                _, current_hard = _resource.prlimit(pid, which)
            if current_hard not in (-1, _resource.RLIM_INFINITY):
                hard = min(hard, current_hard)
                soft = min(soft, hard)
            if pid is None:
                _resource.setrlimit(which, (soft, hard))
            else:
                _resource.prlimit(pid, which, (soft, hard))
        except (ValueError, OSError):
            continue


class _StreamCollector:
    """Drain one pipe on a background thread, keeping at most `limit` bytes.

    Example:
        ```python
        collector = _StreamCollector(proc.stdout, limit=1024)
        collector.start()
        ```
    """

    def __init__(self, stream: IO[bytes], limit: int) -> None:
        """Prepare a collector for `stream`.

        Example:
            ```python
            collector = _StreamCollector(proc.stderr, limit=4096)
            ```
        """
        self._stream = stream
        self._limit = limit
        self._chunks: list[bytes] = []
        self._size = 0
        self._frozen = False
        self._lock = threading.Lock()
        self.truncated = False
        self._thread = threading.Thread(target=self._drain, daemon=True)

    def start(self) -> None:
        """Start draining the pipe.

        Example:
            ```python
            collector.start()
            ```
        """
        self._thread.start()

    def freeze(self) -> None:
        """Stop recording; bytes read afterwards are discarded.

        Example:
            ```python
            collector.freeze()
            ```
        """
        with self._lock:
            self._frozen = True

    def join(self, timeout: float) -> bool:
        """Wait for EOF; return True when the pipe was fully drained.

        Example:
            ```python
            drained = collector.join(2.0)
            ```
        """
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def text(self) -> str:
        """Return captured bytes decoded as UTF-8.

        Example:
            ```python
            out = collector.text()
            ```
        """
        with self._lock:
            data = b"".join(self._chunks)
        return data.decode("utf-8", errors="replace")

    def close(self) -> None:
        """Close the pipe once the reader thread has finished.

        Example:
            ```python
            collector.close()
            ```
        """
        if not self._thread.is_alive():
            self._stream.close()

    def _drain(self) -> None:
        """Read until EOF, honoring the byte limit and the frozen flag.

        Example:
            ```python
            threading.Thread(target=collector._drain).start()
            ```
        """
        read = getattr(self._stream, "read1", self._stream.read)
        try:
            while True:
                chunk = read(_READ_CHUNK)
                if not chunk:
                    return
                with self._lock:
                    if self._frozen:
                        continue
                    room = self._limit - self._size
                    if room <= 0:
                        self.truncated = True
                        continue
                    if len(chunk) > room:
                        chunk = chunk[:room]
                        self.truncated = True
                    self._chunks.append(chunk)
                    self._size += len(chunk)
        except (OSError, ValueError):
            # Pipe closed underneath us; whatever was captured stands.
            return


def _feed_stdin(stream: IO[bytes], data: bytes) -> None:
    """Write the whole input once, then close stdin to signal EOF.

    A program that exits without reading its input closes the pipe; that is
    not an error.

    Example:
        ```python
        threading.Thread(target=_feed_stdin, args=(proc.stdin, b"Alice\\n")).start()
        ```
    """
    try:
        if data:
            stream.write(data)
            stream.flush()
    except (BrokenPipeError, ConnectionResetError):
        pass
    finally:
        with contextlib.suppress(BrokenPipeError, OSError):
            stream.close()


@dataclass(slots=True)
class ProcessReport:
    """Raw facts about one finished subprocess.

    Example:
        ```python
        report = ProcessReport(returncode=0, stdout="hi", stderr="", elapsed_ms=5)
        ```
    """

    returncode: int | None
    stdout: str
    stderr: str
    elapsed_ms: int
    timed_out: bool = False
    cancelled: bool = False
    truncated: bool = False
    spawn_error: str | None = None


class ProcessOrchestrator:
    """Spawn, feed, time and reap the compile and run subprocesses of one request.

    The orchestrator keeps no state between requests; concurrency limits are
    the caller's responsibility.

    Example:
        ```python
        orchestrator = ProcessOrchestrator(max_output_bytes=64 * 1024)
        with manager.open(profile, code) as ws:
            outcome = orchestrator.run(ws, profile, stdin="Alice\\n25\\n")
        ```
    """

    def __init__(
        self,
        *,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        capabilities: HostCapabilities | None = None,
    ) -> None:
        """Configure output capping and the wait-loop granularity.

        Example:
            ```python
            orchestrator = ProcessOrchestrator(poll_interval=0.02)
            ```
        """
        if max_output_bytes <= 0:
            raise ValueError("max_output_bytes must be positive")
        self._max_output_bytes = max_output_bytes
        self._poll_interval = poll_interval
        self._capabilities = capabilities or host_capabilities()

    def run(
        self,
        workspace: Workspace,
        profile: LanguageProfile,
        stdin: str = "",
        cancel_event: threading.Event | None = None,
    ) -> ExecutionOutcome:
        """Compile (when needed) and run a workspace's source, returning one outcome.

        Example:
            ```python
            outcome = orchestrator.run(ws, profile, stdin="")
            ```
        """
        placeholders = workspace.placeholders(profile)
        compile_result: StepResult | None = None
        if profile.strategy is Strategy.COMPILED:
            compile_result = self._compile(workspace, profile, placeholders, cancel_event)
            if compile_result.status is not OutcomeStatus.SUCCESS:
                return compose(compile_result, None, workspace_id=workspace.id)

        run_result = self._run(workspace, profile, placeholders, stdin, cancel_event)
        return compose(compile_result, run_result, workspace_id=workspace.id)

    def _compile(
        self,
        workspace: Workspace,
        profile: LanguageProfile,
        placeholders: Mapping[str, str],
        cancel_event: threading.Event | None,
    ) -> StepResult:
        """Run the compiler and classify its result.

        Example:
            ```python
            step = orchestrator._compile(ws, profile, ws.placeholders(profile), None)
            ```
        """
        if profile.artifact_name is not None:
            workspace.record_artifact(workspace.artifact_path(profile.artifact_name))
        argv = profile.compile_argv(placeholders)
        logger.debug("Compiling %s workspace %s: %s", profile.id, workspace.id, argv)
        report = self.execute(
            argv,
            cwd=str(workspace.directory),
            stdin_data=None,
            timeout_ms=profile.compile_timeout_ms,
            cancel_event=cancel_event,
        )
        for pattern in profile.artifact_patterns:
            for path in sorted(workspace.directory.glob(pattern)):
                workspace.record_artifact(path)

        if report.spawn_error is not None:
            return StepResult.spawn_error(report.spawn_error)
        if report.timed_out or report.cancelled:
            message = (
                CANCELLED_MESSAGE.format(elapsed_ms=report.elapsed_ms)
                if report.cancelled
                else COMPILE_TIMEOUT_MESSAGE.format(timeout_ms=profile.compile_timeout_ms)
            )
            return StepResult(
                OutcomeStatus.TIMEOUT,
                stdout=report.stdout,
                stderr=report.stderr,
                elapsed_ms=report.elapsed_ms,
                message=message,
                truncated=report.truncated,
            )
        if report.returncode != 0:
            # Some compilers (mcs) report diagnostics on stdout.
            diagnostics = report.stderr or report.stdout or "Compilation failed"
            return StepResult(
                OutcomeStatus.COMPILE_ERROR,
                stdout=report.stdout,
                stderr=diagnostics,
                exit_code=report.returncode,
                elapsed_ms=report.elapsed_ms,
                message=f"Compilation failed: {diagnostics.strip()}",
                truncated=report.truncated,
            )
        return StepResult(
            OutcomeStatus.SUCCESS,
            stdout=report.stdout,
            stderr=report.stderr,
            exit_code=0,
            elapsed_ms=report.elapsed_ms,
        )

    def _run(
        self,
        workspace: Workspace,
        profile: LanguageProfile,
        placeholders: Mapping[str, str],
        stdin: str,
        cancel_event: threading.Event | None,
    ) -> StepResult:
        """Run the program and classify its result.

        Example:
            ```python
            step = orchestrator._run(ws, profile, ws.placeholders(profile), "", None)
            ```
        """
        argv = profile.run_argv(placeholders)
        logger.debug("Running %s workspace %s: %s", profile.id, workspace.id, argv)
        report = self.execute(
            argv,
            cwd=str(workspace.directory),
            stdin_data=normalize_stdin(stdin).encode("utf-8"),
            timeout_ms=profile.timeout_ms,
            cancel_event=cancel_event,
            limits=_run_limits(profile, self._capabilities),
        )
        if report.spawn_error is not None:
            return StepResult.spawn_error(report.spawn_error)
        if report.timed_out or report.cancelled:
            message = (
                CANCELLED_MESSAGE.format(elapsed_ms=report.elapsed_ms)
                if report.cancelled
                else TIMEOUT_MESSAGE.format(timeout_ms=profile.timeout_ms)
            )
            return StepResult(
                OutcomeStatus.TIMEOUT,
                stdout=report.stdout,
                stderr=report.stderr,
                elapsed_ms=report.elapsed_ms,
                message=message,
                truncated=report.truncated,
            )
        status = OutcomeStatus.SUCCESS if report.returncode == 0 else OutcomeStatus.RUNTIME_ERROR
        message: str | None = None
        if report.returncode is not None and report.returncode < 0:
            message = f"Process terminated by signal {_signal_name(-report.returncode)}"
        return StepResult(
            status,
            stdout=report.stdout,
            stderr=report.stderr,
            exit_code=report.returncode,
            elapsed_ms=report.elapsed_ms,
            message=message,
            truncated=report.truncated,
        )

    def execute(
        self,
        argv: list[str],
        *,
        cwd: str,
        stdin_data: bytes | None,
        timeout_ms: int,
        cancel_event: threading.Event | None = None,
        limits: list[_Limit] | None = None,
    ) -> ProcessReport:
        """Spawn one process and race its exit against the deadline and cancellation.

        Example:
            ```python
            report = orchestrator.execute(["python3", "-c", "print(1)"], cwd="/tmp", stdin_data=b"", timeout_ms=2_000)
            ```
        """
        popen_kwargs: dict[str, Any] = {}
        # prlimit() limits the child from this process once it has started; hosts
        # without it fall back to setting the limits in the child before exec.
        apply_after_spawn = bool(limits) and hasattr(_resource, "prlimit")
        if os.name == "posix":
            popen_kwargs["start_new_session"] = True
            if limits and not apply_after_spawn:
                popen_kwargs["preexec_fn"] = partial(_apply_limits, limits)

        start = time.monotonic()
        try:
            process = subprocess.Popen(
                argv,
                cwd=cwd,
                stdin=subprocess.PIPE if stdin_data is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=_child_env(),
                **popen_kwargs,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            logger.warning("Failed to spawn %s: %s", argv[0], exc)
            return ProcessReport(
                returncode=None,
                stdout="",
                stderr="",
                elapsed_ms=_elapsed_ms(start),
                spawn_error=str(exc),
            )

        assert process.stdout is not None and process.stderr is not None
        if apply_after_spawn:
            _apply_limits(limits or [], pid=process.pid)
        out = _StreamCollector(process.stdout, self._max_output_bytes)
        err = _StreamCollector(process.stderr, self._max_output_bytes)
        out.start()
        err.start()
        writer: threading.Thread | None = None
        if process.stdin is not None:
            writer = threading.Thread(
                target=_feed_stdin,
                args=(process.stdin, stdin_data or b""),
                daemon=True,
            )
            writer.start()

        timed_out = False
        cancelled = False
        deadline = start + timeout_ms / 1000
        try:
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    break
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    timed_out = True
                    break
                try:
                    process.wait(timeout=min(remaining, self._poll_interval))
                    break
                except subprocess.TimeoutExpired:
                    continue

            if timed_out or cancelled:
                # Freeze capture first so output emitted while dying is not appended.
                out.freeze()
                err.freeze()
                kill_process_tree(process)
            process.wait()
            elapsed_ms = _elapsed_ms(start)

            drained = out.join(_DRAIN_GRACE_SECONDS) and err.join(_DRAIN_GRACE_SECONDS)
            if not drained:
                # A background child still holds the pipes open.
                out.freeze()
                err.freeze()
                kill_process_tree(process)
        finally:
            if process.poll() is None:
                kill_process_tree(process)
                process.wait()
            if writer is not None:
                writer.join(_DRAIN_GRACE_SECONDS)
            out.close()
            err.close()

        return ProcessReport(
            returncode=None if (timed_out or cancelled) else process.returncode,
            stdout=out.text(),
            stderr=err.text(),
            elapsed_ms=elapsed_ms,
            timed_out=timed_out,
            cancelled=cancelled,
            truncated=out.truncated or err.truncated,
        )


def _elapsed_ms(start: float) -> int:
    """Return whole milliseconds elapsed since a monotonic start time.

    Example:
        ```python
        ms = _elapsed_ms(time.monotonic())
        ```
    """
    return int((time.monotonic() - start) * 1000)


def _signal_name(number: int) -> str:
    """Return a signal's name, falling back to its number.

    Example:
        ```python
        assert _signal_name(9) == "SIGKILL"
        ```
    """
    try:
        return signal.Signals(number).name
    except ValueError:
        return str(number)
