from __future__ import annotations

import logging
import threading
from pathlib import Path

from .capabilities import preflight_validate_backend_capabilities
from .composer import compose
from .languages import LanguageRegistry
from .orchestrator import DEFAULT_MAX_OUTPUT_BYTES, ProcessOrchestrator
from .types import (
    ExecutionOutcome,
    ExecutionRequest,
    HealthReport,
    LanguageInfo,
    StepResult,
)
from .workspace import WorkspaceManager

logger = logging.getLogger(__name__)


class LocalEngine:
    """Execute code with toolchains installed on this host.

    Example:
        ```python
        engine = LocalEngine(workspace_root="/tmp/scr")
        outcome = engine.execute(ExecutionRequest("print('hi')", "python"))
        ```
    """

    def __init__(
        self,
        *,
        registry: LanguageRegistry | None = None,
        workspace_root: str | Path | None = None,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        orchestrator: ProcessOrchestrator | None = None,
    ) -> None:
        """Initialize a local engine; discovers toolchains when no registry is given.

        Example:
            ```python
            engine = LocalEngine(registry=LanguageRegistry.discover())
            ```
        """
        self._capabilities = preflight_validate_backend_capabilities("local")
        self._registry = registry if registry is not None else LanguageRegistry.discover()
        self._workspaces = WorkspaceManager(workspace_root)
        self._orchestrator = orchestrator or ProcessOrchestrator(
            max_output_bytes=max_output_bytes,
            capabilities=self._capabilities,
        )

    @property
    def registry(self) -> LanguageRegistry:
        """Return the registry this engine resolves languages against.

        Example:
            ```python
            profile = engine.registry.resolve("python")
            ```
        """
        return self._registry

    @property
    def workspaces(self) -> WorkspaceManager:
        """Return the workspace manager used for each request.

        Example:
            ```python
            root = engine.workspaces.root
            ```
        """
        return self._workspaces

    def execute(
        self,
        request: ExecutionRequest,
        cancel_event: threading.Event | None = None,
    ) -> ExecutionOutcome:
        """Execute one request in a private workspace that is always removed.

        Example:
            ```python
            outcome = engine.execute(ExecutionRequest("print(input())", "python", stdin="hi"))
            ```
        """
        profile = self._registry.resolve(request.language_id)
        if profile is None:
            return compose(precheck=StepResult.unsupported(request.language_id))

        try:
            with self._workspaces.open(profile, request.source_code) as workspace:
                return self._orchestrator.run(
                    workspace,
                    profile,
                    stdin=request.stdin,
                    cancel_event=cancel_event,
                )
        except OSError as exc:
            logger.error("Workspace failure while executing %s: %s", profile.id, exc)
            return compose(run_result=StepResult.spawn_error(f"Workspace error: {exc}"))

    def languages(self) -> list[LanguageInfo]:
        """Return the locally available languages.

        Example:
            ```python
            names = [info.name for info in engine.languages()]
            ```
        """
        return [
            LanguageInfo(
                name=profile.id,
                extension=profile.source_extension,
                timeout_ms=profile.timeout_ms,
                memory_limit_bytes=profile.memory_limit_bytes,
            )
            for profile in self._registry.profiles()
        ]

    def check_health(self) -> HealthReport:
        """Report whether any local toolchain is usable.

        Example:
            ```python
            assert engine.check_health().available
            ```
        """
        available = len(self._registry) > 0
        return HealthReport(
            available=available,
            details={
                "backend": "local",
                "languages": [profile.id for profile in self._registry.profiles()],
                "unavailable": list(self._registry.unavailable),
                "workspace_root": str(self._workspaces.root),
                "degraded": self._capabilities.degraded(),
                "message": (
                    "Local toolchains are available"
                    if available
                    else "No supported toolchain was found on this host"
                ),
            },
        )
