from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping

import requests

from .composer import compose
from .orchestrator import normalize_stdin
from .types import (
    ExecutionOutcome,
    ExecutionRequest,
    HealthReport,
    LanguageInfo,
    OutcomeStatus,
    StepResult,
)

logger = logging.getLogger(__name__)

DEFAULT_REMOTE_URL = "https://emkc.org/api/v2/piston"
DEFAULT_HTTP_TIMEOUT_SECONDS = 15.0
HEALTH_TIMEOUT_SECONDS = 5.0
DEFAULT_RUN_TIMEOUT_MS = 3_000
DEFAULT_COMPILE_TIMEOUT_MS = 10_000
_KILL_SIGNALS = {"SIGKILL", "SIGXCPU"}


@dataclass(frozen=True, slots=True)
class RemoteLanguage:
    """Runtime name, version and entry file name on the hosted service.

    Example:
        ```python
        lang = RemoteLanguage("python", "3.10.0", "main.py")
        ```
    """

    language: str
    version: str
    file_name: str

    @property
    def extension(self) -> str:
        """Return the entry file's extension.

        Example:
            ```python
            assert RemoteLanguage("c++", "10.2.0", "main.cpp").extension == ".cpp"
            ```
        """
        _, dot, ext = self.file_name.rpartition(".")
        return f".{ext}" if dot else ""


REMOTE_LANGUAGES: Mapping[str, RemoteLanguage] = {
    "javascript": RemoteLanguage("javascript", "18.15.0", "main.js"),
    "python": RemoteLanguage("python", "3.10.0", "main.py"),
    "java": RemoteLanguage("java", "15.0.2", "Main.java"),
    "cpp": RemoteLanguage("c++", "10.2.0", "main.cpp"),
    "c": RemoteLanguage("c", "10.2.0", "main.c"),
    "csharp": RemoteLanguage("csharp", "6.12.0", "Main.cs"),
    "go": RemoteLanguage("go", "1.16.2", "main.go"),
    "rust": RemoteLanguage("rust", "1.68.2", "main.rs"),
    "php": RemoteLanguage("php", "8.2.3", "main.php"),
    "typescript": RemoteLanguage("typescript", "5.0.3", "main.ts"),
    "ruby": RemoteLanguage("ruby", "3.0.1", "main.rb"),
    "swift": RemoteLanguage("swift", "5.3.3", "main.swift"),
    "kotlin": RemoteLanguage("kotlin", "1.8.20", "Main.kt"),
    "scala": RemoteLanguage("scala", "3.2.2", "Main.scala"),
    "perl": RemoteLanguage("perl", "5.36.0", "main.pl"),
    "lua": RemoteLanguage("lua", "5.4.4", "main.lua"),
    "r": RemoteLanguage("r", "4.1.1", "main.r"),
    "dart": RemoteLanguage("dart", "2.19.6", "main.dart"),
    "elixir": RemoteLanguage("elixir", "1.11.3", "main.exs"),
    "haskell": RemoteLanguage("haskell", "9.0.1", "main.hs"),
}


class MalformedResponse(ValueError):
    """Raised internally when the remote payload does not have the expected shape."""


class RemoteEngine:
    """Execute code through a hosted Piston-compatible execution API.

    Example:
        ```python
        engine = RemoteEngine(base_url="https://emkc.org/api/v2/piston", timeout_seconds=15)
        outcome = engine.execute(ExecutionRequest("print('hi')", "python"))
        ```
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_REMOTE_URL,
        timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
        run_timeout_ms: int = DEFAULT_RUN_TIMEOUT_MS,
        compile_timeout_ms: int = DEFAULT_COMPILE_TIMEOUT_MS,
        max_output_bytes: int | None = None,
        languages: Mapping[str, RemoteLanguage] | None = None,
        session: requests.Session | None = None,
    ) -> None:
        """Configure the remote endpoint and its bounded HTTP wait.

        Example:
            ```python
            engine = RemoteEngine(timeout_seconds=5, session=requests.Session())
            ```
        """
        cleaned = base_url.strip().rstrip("/")
        if not cleaned:
            raise ValueError("RemoteEngine requires a non-empty 'base_url'")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self._base_url = cleaned
        self._timeout_seconds = float(timeout_seconds)
        self._run_timeout_ms = run_timeout_ms
        self._compile_timeout_ms = compile_timeout_ms
        self._max_output_bytes = max_output_bytes
        self._languages = dict(languages if languages is not None else REMOTE_LANGUAGES)
        self._session = session or requests.Session()

    @property
    def base_url(self) -> str:
        """Return the API base URL.

        Example:
            ```python
            print(engine.base_url)
            ```
        """
        return self._base_url

    def execute(self, request: ExecutionRequest) -> ExecutionOutcome:
        """Forward one request to the hosted API and map its response to an outcome.

        Example:
            ```python
            outcome = engine.execute(ExecutionRequest("print(input())", "python", stdin="hi"))
            ```
        """
        remote = self._languages.get(request.language_id.strip().lower())
        if remote is None:
            return compose(precheck=StepResult.unsupported(request.language_id))

        payload = {
            "language": remote.language,
            "version": remote.version,
            "files": [{"name": remote.file_name, "content": request.source_code}],
            "stdin": normalize_stdin(request.stdin),
            "args": [],
            "compile_timeout": self._compile_timeout_ms,
            "run_timeout": self._run_timeout_ms,
            "compile_memory_limit": -1,
            "run_memory_limit": -1,
        }
        start = time.monotonic()
        try:
            response = self._session.post(
                f"{self._base_url}/execute",
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self._timeout_seconds,
            )
        except requests.Timeout:
            elapsed_ms = _elapsed_ms(start)
            message = f"Remote execution timed out after {self._timeout_seconds:g}s"
            return compose(
                run_result=StepResult(
                    OutcomeStatus.TIMEOUT,
                    stderr=message,
                    elapsed_ms=elapsed_ms,
                    message=message,
                )
            )
        except requests.RequestException as exc:
            logger.warning("Remote execution request failed: %s", exc)
            return compose(run_result=StepResult.spawn_error(f"Execution failed: {exc}"))

        elapsed_ms = _elapsed_ms(start)
        if not response.ok:
            return compose(
                run_result=StepResult.spawn_error(f"API Error: {_error_message(response)}")
            )
        try:
            body = response.json()
            return self._map_response(body, elapsed_ms)
        except ValueError as exc:  # JSON decode errors and MalformedResponse
            return compose(
                run_result=StepResult.spawn_error(
                    f"Malformed response from remote execution API: {exc}"
                )
            )

    def languages(self) -> list[LanguageInfo]:
        """Return the languages the hosted service is configured to run.

        Memory is reported as -1: limits are the service's own defaults.

        Example:
            ```python
            names = [info.name for info in engine.languages()]
            ```
        """
        return [
            LanguageInfo(
                name=name,
                extension=remote.extension,
                timeout_ms=self._run_timeout_ms,
                memory_limit_bytes=-1,
                version=remote.version,
            )
            for name, remote in self._languages.items()
        ]

    def check_health(self) -> HealthReport:
        """Probe the runtimes endpoint with a short timeout.

        Example:
            ```python
            report = engine.check_health()
            ```
        """
        try:
            response = self._session.get(
                f"{self._base_url}/runtimes",
                timeout=min(HEALTH_TIMEOUT_SECONDS, self._timeout_seconds),
            )
            response.raise_for_status()
            runtimes = response.json()
        except (requests.RequestException, ValueError) as exc:
            return HealthReport(
                available=False,
                details={
                    "backend": "remote",
                    "url": self._base_url,
                    "runtimes": 0,
                    "message": f"Service unavailable: {exc}",
                },
            )
        count = len(runtimes) if isinstance(runtimes, list) else 0
        return HealthReport(
            available=True,
            details={
                "backend": "remote",
                "url": self._base_url,
                "runtimes": count,
                "message": "Online compiler service is available",
            },
        )

    def _map_response(self, body: Any, elapsed_ms: int) -> ExecutionOutcome:
        """Translate a Piston response body into an outcome.

        Example:
            ```python
            outcome = engine._map_response({"run": {"stdout": "hi", "stderr": "", "code": 0}}, 120)
            ```
        """
        if not isinstance(body, dict):
            raise MalformedResponse("expected a JSON object")
        run = body.get("run")
        if not isinstance(run, dict):
            raise MalformedResponse("missing 'run' stage")

        compile_stage = body.get("compile")
        compile_result: StepResult | None = None
        if compile_stage is not None:
            if not isinstance(compile_stage, dict):
                raise MalformedResponse("'compile' stage is not an object")
            compile_result = self._map_compile(compile_stage)
            if compile_result.status is not OutcomeStatus.SUCCESS:
                return compose(compile_result, None)

        return compose(compile_result, self._map_run(run, elapsed_ms))

    def _map_compile(self, stage: Mapping[str, Any]) -> StepResult:
        """Classify the compile stage of a remote response.

        Example:
            ```python
            step = engine._map_compile({"stdout": "", "stderr": "error", "code": 1})
            ```
        """
        stdout = self._cap(_text(stage.get("stdout")))
        stderr = self._cap(_text(stage.get("stderr")))
        code = _code(stage.get("code"))
        if _was_killed(stage):
            message = f"Compilation timed out after {self._compile_timeout_ms}ms"
            return StepResult(OutcomeStatus.TIMEOUT, stdout=stdout, stderr=stderr, message=message)
        if code not in (None, 0):
            diagnostics = stderr or "Compilation failed"
            return StepResult(
                OutcomeStatus.COMPILE_ERROR,
                stdout=stdout,
                stderr=diagnostics,
                exit_code=code,
                message=f"Compilation failed: {diagnostics.strip()}",
            )
        return StepResult(OutcomeStatus.SUCCESS, stdout=stdout, stderr=stderr, exit_code=0)

    def _map_run(self, stage: Mapping[str, Any], elapsed_ms: int) -> StepResult:
        """Classify the run stage of a remote response.

        Example:
            ```python
            step = engine._map_run({"stdout": "hi", "stderr": "", "code": 0}, 50)
            ```
        """
        stdout = self._cap(_text(stage.get("stdout")))
        stderr = self._cap(_text(stage.get("stderr")))
        truncated = self._max_output_bytes is not None and (
            len(_text(stage.get("stdout")).encode("utf-8")) > self._max_output_bytes
            or len(_text(stage.get("stderr")).encode("utf-8")) > self._max_output_bytes
        )
        code = _code(stage.get("code"))
        if _was_killed(stage):
            return StepResult(
                OutcomeStatus.TIMEOUT,
                stdout=stdout,
                stderr=stderr,
                elapsed_ms=elapsed_ms,
                message=(
                    f"Execution timed out after {self._run_timeout_ms}ms - program took too "
                    "long to complete. Check for infinite loops or missing input."
                ),
                truncated=truncated,
            )
        if code == 0:
            return StepResult(
                OutcomeStatus.SUCCESS,
                stdout=stdout,
                stderr=stderr,
                exit_code=0,
                elapsed_ms=elapsed_ms,
                truncated=truncated,
            )
        signal_name = stage.get("signal")
        return StepResult(
            OutcomeStatus.RUNTIME_ERROR,
            stdout=stdout,
            stderr=stderr or "Runtime error",
            exit_code=code,
            elapsed_ms=elapsed_ms,
            message=f"Process terminated by signal {signal_name}" if signal_name else None,
            truncated=truncated,
        )

    def _cap(self, text: str) -> str:
        """Apply the configured output cap to remote output.

        Example:
            ```python
            out = engine._cap("x" * 10)
            ```
        """
        if self._max_output_bytes is None:
            return text
        data = text.encode("utf-8")
        if len(data) <= self._max_output_bytes:
            return text
        return data[: self._max_output_bytes].decode("utf-8", errors="ignore")


def _text(value: Any) -> str:
    """Coerce an optional remote field to text.

    Example:
        ```python
        assert _text(None) == ""
        ```
    """
    if value is None:
        return ""
    if not isinstance(value, str):
        raise MalformedResponse(f"expected text output, got {type(value).__name__}")
    return value


def _code(value: Any) -> int | None:
    """Coerce an optional remote exit code.

    Example:
        ```python
        assert _code(1) == 1
        ```
    """
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedResponse(f"expected integer exit code, got {value!r}")
    return value


def _was_killed(stage: Mapping[str, Any]) -> bool:
    """Return True when the service killed a stage for exceeding its time limit.

    Example:
        ```python
        assert _was_killed({"signal": "SIGKILL"})
        ```
    """
    return stage.get("status") == "TO" or stage.get("signal") in _KILL_SIGNALS


def _error_message(response: requests.Response) -> str:
    """Extract a readable error from a non-2xx response.

    Example:
        ```python
        message = _error_message(response)
        ```
    """
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return f"{body['message']} (HTTP {response.status_code})"
    return f"HTTP {response.status_code} {response.reason or ''}".strip()


def _elapsed_ms(start: float) -> int:
    """Return whole milliseconds elapsed since a monotonic start time.

    Example:
        ```python
        ms = _elapsed_ms(time.monotonic())
        ```
    """
    return int((time.monotonic() - start) * 1000)
