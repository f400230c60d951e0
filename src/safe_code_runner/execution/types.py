from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class OutcomeStatus(str, Enum):
    """Terminal classification assigned to every execution request.

    Example:
        ```python
        status = OutcomeStatus("Timeout")
        ```
    """

    SUCCESS = "Success"
    COMPILE_ERROR = "CompileError"
    RUNTIME_ERROR = "RuntimeError"
    TIMEOUT = "Timeout"
    UNSUPPORTED_LANGUAGE = "UnsupportedLanguage"
    REJECTED_BY_SECURITY_FILTER = "RejectedBySecurityFilter"
    SPAWN_ERROR = "SpawnError"


# Statuses that are decided before any process is started.
PRE_EXECUTION_STATUSES = frozenset(
    {OutcomeStatus.REJECTED_BY_SECURITY_FILTER, OutcomeStatus.UNSUPPORTED_LANGUAGE}
)


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """Normalized request sent to an execution engine.

    Example:
        ```python
        req = ExecutionRequest(source_code="print(1)", language_id="python", stdin="")
        ```
    """

    source_code: str
    language_id: str
    stdin: str = ""


@dataclass(frozen=True, slots=True)
class StepResult:
    """Outcome of a single compile or run subprocess.

    Example:
        ```python
        step = StepResult(OutcomeStatus.SUCCESS, stdout="hi\\n", exit_code=0, elapsed_ms=12)
        ```
    """

    status: OutcomeStatus
    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    elapsed_ms: int = 0
    message: str | None = None
    truncated: bool = False

    @classmethod
    def rejected(cls, reason: str) -> "StepResult":
        """Build a pre-execution rejection from the security filter.

        Example:
            ```python
            step = StepResult.rejected("process spawning via 'subprocess'")
            ```
        """
        return cls(OutcomeStatus.REJECTED_BY_SECURITY_FILTER, stderr=reason, message=reason)

    @classmethod
    def unsupported(cls, language_id: str) -> "StepResult":
        """Build a pre-execution result for an unknown or unavailable language.

        Example:
            ```python
            step = StepResult.unsupported("cobol")
            ```
        """
        reason = f"Unsupported language: {language_id}"
        return cls(OutcomeStatus.UNSUPPORTED_LANGUAGE, stderr=reason, message=reason)

    @classmethod
    def spawn_error(cls, error: str) -> "StepResult":
        """Build a result for a process (or transport) that never started.

        Example:
            ```python
            step = StepResult.spawn_error("[Errno 2] No such file or directory: 'gcc'")
            ```
        """
        return cls(OutcomeStatus.SPAWN_ERROR, stderr=error, message=error)


@dataclass(frozen=True, slots=True)
class ExecutionOutcome:
    """Normalized response returned by an execution engine.

    Example:
        ```python
        out = ExecutionOutcome(OutcomeStatus.SUCCESS, stdout="hi\\n", stderr="", exit_code=0, elapsed_ms=40)
        ```
    """

    status: OutcomeStatus
    stdout: str
    stderr: str
    exit_code: int | None
    elapsed_ms: int
    compile_ms: int | None = None
    message: str | None = None
    truncated: bool = False
    workspace_id: str | None = None

    @property
    def ok(self) -> bool:
        """Return True when the program ran to completion with exit code zero.

        Example:
            ```python
            assert outcome.ok
            ```
        """
        return self.status is OutcomeStatus.SUCCESS


@dataclass(frozen=True, slots=True)
class LanguageInfo:
    """Catalog entry describing one language a backend can execute.

    Example:
        ```python
        info = LanguageInfo("python", ".py", 15_000, 268_435_456)
        ```
    """

    name: str
    extension: str
    timeout_ms: int
    memory_limit_bytes: int
    version: str | None = None


@dataclass(frozen=True, slots=True)
class HealthReport:
    """Whether a backend is currently usable, with backend-specific details.

    Example:
        ```python
        report = HealthReport(available=True, details={"languages": 4})
        ```
    """

    available: bool
    details: dict[str, object]
