from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any, Protocol

from .config import SandboxConfig
from .execution.composer import compose
from .execution.engine import ExecutionEngine
from .execution.languages import LanguageRegistry
from .execution.local_engine import LocalEngine
from .execution.remote_engine import RemoteEngine
from .execution.types import (
    ExecutionOutcome,
    ExecutionRequest,
    HealthReport,
    OutcomeStatus,
    StepResult,
)
from .security import SecurityFilter

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class InteractionRecord:
    """What the interaction log receives after an execution.

    Example:
        ```python
        record = InteractionRecord(user_id="u1", input_code="print(1)", output="1\\n")
        ```
    """

    user_id: str
    input_code: str
    output: str
    prompt_type: str = "execute"
    tokens_used: int = 0


class InteractionSink(Protocol):
    def record(self, interaction: InteractionRecord) -> None:
        """Persist one interaction; implemented outside this package.

        Example:
            ```python
            sink.record(InteractionRecord("u1", "print(1)", "1\\n"))
            ```
        """
        ...


@dataclass(frozen=True, slots=True)
class ExecutionResponse:
    """Caller-facing result of `ExecutionService.execute`.

    Example:
        ```python
        response = service.execute("print('hi')", "python")
        payload = response.to_dict()
        ```
    """

    success: bool
    output: str
    error: str | None
    exit_code: int
    execution_time: str
    status: OutcomeStatus
    language: str
    truncated: bool = False

    @classmethod
    def from_outcome(cls, outcome: ExecutionOutcome, language: str) -> "ExecutionResponse":
        """Flatten an outcome into the response shape.

        Example:
            ```python
            response = ExecutionResponse.from_outcome(outcome, "python")
            ```
        """
        if outcome.status is OutcomeStatus.SUCCESS:
            error = outcome.stderr or None
        elif outcome.status in {OutcomeStatus.TIMEOUT, OutcomeStatus.COMPILE_ERROR}:
            error = outcome.message or outcome.stderr
        else:
            error = outcome.stderr or outcome.message
        duration_ms = outcome.elapsed_ms
        if outcome.status is OutcomeStatus.COMPILE_ERROR and outcome.compile_ms is not None:
            # No run step was attempted; report how long compilation took.
            duration_ms = outcome.compile_ms
        return cls(
            success=outcome.ok,
            output=outcome.stdout,
            error=error,
            exit_code=outcome.exit_code if outcome.exit_code is not None else -1,
            execution_time=f"{duration_ms}ms",
            status=outcome.status,
            language=language,
            truncated=outcome.truncated,
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the camelCase payload used by the HTTP layer.

        Example:
            ```python
            body = response.to_dict()
            ```
        """
        payload: dict[str, Any] = {
            "success": self.success,
            "output": self.output,
            "exitCode": self.exit_code,
            "executionTime": self.execution_time,
            "status": self.status.value,
            "language": self.language,
            "truncated": self.truncated,
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


def run_code(
    code: str,
    language: str,
    engine: ExecutionEngine,
    stdin: str = "",
    security_filter: SecurityFilter | None = None,
) -> ExecutionOutcome:
    """Filter code and execute it with the provided engine.

    Example:
        ```python
        from safe_code_runner import LocalEngine, run_code
        outcome = run_code("print('hi')", "python", engine=LocalEngine())
        ```
    """
    gate = security_filter if security_filter is not None else SecurityFilter()
    verdict = gate.check(code, language)
    if not verdict.allowed:
        logger.info("Rejected %s submission: %s", language, verdict.construct)
        return compose(precheck=StepResult.rejected(verdict.reason or "Rejected"))
    return engine.execute(ExecutionRequest(source_code=code, language_id=language, stdin=stdin))


def build_engine(config: SandboxConfig) -> ExecutionEngine:
    """Create the execution engine selected by a config.

    Example:
        ```python
        engine = build_engine(SandboxConfig(backend="remote"))
        ```
    """
    if config.backend == "remote":
        return RemoteEngine(
            base_url=config.remote_url,
            timeout_seconds=config.remote_timeout_seconds,
            run_timeout_ms=config.remote_run_timeout_ms,
            compile_timeout_ms=config.remote_compile_timeout_ms,
            max_output_bytes=config.max_output_bytes,
        )
    registry = LanguageRegistry.discover(
        overrides=config.languages,
        compile_timeout_ms=config.compile_timeout_ms,
    )
    return LocalEngine(
        registry=registry,
        workspace_root=config.workspace_root,
        max_output_bytes=config.max_output_bytes,
    )


class ExecutionService:
    """Entry point used by the HTTP layer: execute, list languages, check health.

    Bounds how many executions run at once; the engines themselves do not.

    Example:
        ```python
        service = ExecutionService.from_config(SandboxConfig())
        response = service.execute("print(input())", "python", input="hi")
        ```
    """

    def __init__(
        self,
        engine: ExecutionEngine,
        *,
        security_filter: SecurityFilter | None = None,
        max_concurrent: int = 4,
        interaction_sink: InteractionSink | None = None,
    ) -> None:
        """Wire an engine with the security gate and a concurrency ceiling.

        Example:
            ```python
            service = ExecutionService(LocalEngine(), max_concurrent=2)
            ```
        """
        if max_concurrent <= 0:
            raise ValueError("max_concurrent must be positive")
        self._engine = engine
        self._filter = security_filter if security_filter is not None else SecurityFilter()
        self._slots = threading.BoundedSemaphore(max_concurrent)
        self._sink = interaction_sink

    @classmethod
    def from_config(
        cls,
        config: SandboxConfig,
        interaction_sink: InteractionSink | None = None,
    ) -> "ExecutionService":
        """Build a service and its engine from configuration.

        Example:
            ```python
            service = ExecutionService.from_config(SandboxConfig.from_file("scr.toml"))
            ```
        """
        return cls(
            build_engine(config),
            security_filter=SecurityFilter(enabled=config.security_filter),
            max_concurrent=config.max_concurrent,
            interaction_sink=interaction_sink,
        )

    @property
    def engine(self) -> ExecutionEngine:
        """Return the backend engine.

        Example:
            ```python
            engine = service.engine
            ```
        """
        return self._engine

    def run(self, code: str, language: str, stdin: str = "") -> ExecutionOutcome:
        """Execute and return the full outcome, waiting for a free slot first.

        Example:
            ```python
            outcome = service.run("print(1)", "python")
            ```
        """
        with self._slots:
            return run_code(code, language, self._engine, stdin=stdin, security_filter=self._filter)

    def execute(
        self,
        code: str,
        language: str,
        input: str = "",
        user_id: str | None = None,
    ) -> ExecutionResponse:
        """Execute code and return the caller-facing response.

        Example:
            ```python
            response = service.execute("print('hi')", "python")
            assert response.success
            ```
        """
        outcome = self.run(code, language, stdin=input or "")
        logger.info(
            "Executed %s: %s (%sms)",
            language,
            outcome.status.value,
            outcome.elapsed_ms,
        )
        response = ExecutionResponse.from_outcome(outcome, language)
        if user_id is not None and self._sink is not None:
            self._record(user_id, code, response.output)
        return response

    async def execute_async(
        self,
        code: str,
        language: str,
        input: str = "",
        user_id: str | None = None,
    ) -> ExecutionResponse:
        """Execute without blocking the event loop.

        Example:
            ```python
            response = await service.execute_async("print('hi')", "python")
            ```
        """
        return await asyncio.to_thread(self.execute, code, language, input, user_id)

    def list_supported_languages(self) -> list[dict[str, Any]]:
        """Return the language catalog derived from the engine.

        Example:
            ```python
            names = [item["name"] for item in service.list_supported_languages()]
            ```
        """
        catalog: list[dict[str, Any]] = []
        for info in self._engine.languages():
            item: dict[str, Any] = {
                "name": info.name,
                "extension": info.extension,
                "timeoutMs": info.timeout_ms,
                "memoryLimitBytes": info.memory_limit_bytes,
            }
            if info.version is not None:
                item["version"] = info.version
            catalog.append(item)
        return catalog

    def check_health(self) -> HealthReport:
        """Report whether the backend is currently usable.

        Example:
            ```python
            report = service.check_health()
            ```
        """
        return self._engine.check_health()

    def _record(self, user_id: str, code: str, output: str) -> None:
        """Forward an interaction to the sink; failures are logged, not raised.

        Example:
            ```python
            service._record("u1", "print(1)", "1\\n")
            ```
        """
        assert self._sink is not None
        try:
            self._sink.record(InteractionRecord(user_id=user_id, input_code=code, output=output))
        except Exception:
            logger.exception("Failed to record interaction for user %s", user_id)
