from __future__ import annotations

from .types import ExecutionOutcome, OutcomeStatus, PRE_EXECUTION_STATUSES, StepResult

# Highest precedence first.
STATUS_PRECEDENCE: tuple[OutcomeStatus, ...] = (
    OutcomeStatus.REJECTED_BY_SECURITY_FILTER,
    OutcomeStatus.UNSUPPORTED_LANGUAGE,
    OutcomeStatus.SPAWN_ERROR,
    OutcomeStatus.COMPILE_ERROR,
    OutcomeStatus.TIMEOUT,
    OutcomeStatus.RUNTIME_ERROR,
    OutcomeStatus.SUCCESS,
)
_RANK = {status: index for index, status in enumerate(STATUS_PRECEDENCE)}

# Statuses for which the process never produced a meaningful exit code.
_NO_EXIT_CODE = PRE_EXECUTION_STATUSES | {OutcomeStatus.SPAWN_ERROR, OutcomeStatus.TIMEOUT}


def status_rank(status: OutcomeStatus) -> int:
    """Return the precedence rank of a status (lower wins).

    Example:
        ```python
        assert status_rank(OutcomeStatus.TIMEOUT) < status_rank(OutcomeStatus.SUCCESS)
        ```
    """
    return _RANK[status]


def compose(
    compile_result: StepResult | None = None,
    run_result: StepResult | None = None,
    *,
    precheck: StepResult | None = None,
    workspace_id: str | None = None,
) -> ExecutionOutcome:
    """Collapse step results into one outcome using the status precedence table.

    Example:
        ```python
        outcome = compose(run_result=StepResult(OutcomeStatus.SUCCESS, stdout="hi", exit_code=0))
        ```
    """
    # On equal rank the run step wins; a successful compile only contributes compile_ms.
    steps = [step for step in (precheck, run_result, compile_result) if step is not None]
    if not steps:
        return ExecutionOutcome(
            status=OutcomeStatus.SPAWN_ERROR,
            stdout="",
            stderr="Nothing was executed",
            exit_code=None,
            elapsed_ms=0,
            message="Nothing was executed",
            workspace_id=workspace_id,
        )

    winner = min(steps, key=lambda step: status_rank(step.status))
    status = winner.status

    if status in PRE_EXECUTION_STATUSES:
        return ExecutionOutcome(
            status=status,
            stdout="",
            stderr=winner.stderr,
            exit_code=None,
            elapsed_ms=0,
            message=winner.message,
            workspace_id=workspace_id,
        )

    compile_ms = compile_result.elapsed_ms if compile_result is not None else None
    elapsed_ms = run_result.elapsed_ms if winner is run_result else 0
    return ExecutionOutcome(
        status=status,
        stdout=winner.stdout,
        stderr=winner.stderr,
        exit_code=None if status in _NO_EXIT_CODE else winner.exit_code,
        elapsed_ms=elapsed_ms,
        compile_ms=compile_ms,
        message=winner.message,
        truncated=winner.truncated,
        workspace_id=workspace_id,
    )
