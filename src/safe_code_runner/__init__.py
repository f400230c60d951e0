from .config import SandboxConfig
from .security import SecurityFilter
from .service import ExecutionResponse, ExecutionService, build_engine, run_code
from .execution.languages import LanguageRegistry
from .execution.local_engine import LocalEngine
from .execution.remote_engine import RemoteEngine
from .execution.types import ExecutionOutcome, OutcomeStatus

__all__ = [
    "SandboxConfig",
    "SecurityFilter",
    "ExecutionResponse",
    "ExecutionService",
    "build_engine",
    "run_code",
    "LanguageRegistry",
    "LocalEngine",
    "RemoteEngine",
    "ExecutionOutcome",
    "OutcomeStatus",
]
