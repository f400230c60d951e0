from __future__ import annotations

from typing import Protocol

from .types import ExecutionOutcome, ExecutionRequest, HealthReport, LanguageInfo


class ExecutionEngine(Protocol):
    def execute(self, request: ExecutionRequest) -> ExecutionOutcome:
        """Execute one request and return normalized execution outcome.

        Example:
            ```python
            outcome = engine.execute(ExecutionRequest(source_code="print(1)", language_id="python"))
            ```
        """
        ...

    def languages(self) -> list[LanguageInfo]:
        """Return the languages this engine can execute.

        Example:
            ```python
            names = [info.name for info in engine.languages()]
            ```
        """
        ...

    def check_health(self) -> HealthReport:
        """Report whether the engine is currently usable.

        Example:
            ```python
            report = engine.check_health()
            ```
        """
        ...
