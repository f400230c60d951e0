from .engine import ExecutionEngine
from .types import ExecutionOutcome, ExecutionRequest, OutcomeStatus

__all__ = [
    "ExecutionEngine",
    "ExecutionOutcome",
    "ExecutionRequest",
    "OutcomeStatus",
]
