from safe_code_runner.execution.composer import STATUS_PRECEDENCE, compose, status_rank
from safe_code_runner.execution.types import OutcomeStatus, StepResult


def _ok(stdout: str = "", elapsed_ms: int = 10) -> StepResult:
    return StepResult(OutcomeStatus.SUCCESS, stdout=stdout, exit_code=0, elapsed_ms=elapsed_ms)


def test_precedence_order_is_total() -> None:
    assert list(STATUS_PRECEDENCE) == [
        OutcomeStatus.REJECTED_BY_SECURITY_FILTER,
        OutcomeStatus.UNSUPPORTED_LANGUAGE,
        OutcomeStatus.SPAWN_ERROR,
        OutcomeStatus.COMPILE_ERROR,
        OutcomeStatus.TIMEOUT,
        OutcomeStatus.RUNTIME_ERROR,
        OutcomeStatus.SUCCESS,
    ]
    assert set(STATUS_PRECEDENCE) == set(OutcomeStatus)
    assert status_rank(OutcomeStatus.TIMEOUT) < status_rank(OutcomeStatus.RUNTIME_ERROR)


def test_success_run_keeps_output_and_exit_code() -> None:
    outcome = compose(run_result=_ok("hi\n", elapsed_ms=42), workspace_id="ws1")

    assert outcome.ok
    assert outcome.stdout == "hi\n"
    assert outcome.exit_code == 0
    assert outcome.elapsed_ms == 42
    assert outcome.compile_ms is None
    assert outcome.workspace_id == "ws1"


def test_compile_error_wins_over_missing_run() -> None:
    failed = StepResult(
        OutcomeStatus.COMPILE_ERROR,
        stderr="main.c:1: error",
        exit_code=1,
        elapsed_ms=300,
        message="Compilation failed: main.c:1: error",
    )

    outcome = compose(failed, None)

    assert outcome.status is OutcomeStatus.COMPILE_ERROR
    assert outcome.stderr == "main.c:1: error"
    assert outcome.exit_code == 1
    assert outcome.compile_ms == 300
    assert outcome.elapsed_ms == 0


def test_successful_compile_then_run_reports_the_run() -> None:
    compiled = StepResult(OutcomeStatus.SUCCESS, stderr="warning: unused", exit_code=0, elapsed_ms=900)

    outcome = compose(compiled, _ok("hi\n", elapsed_ms=12))

    assert outcome.ok
    assert outcome.stdout == "hi\n"
    assert outcome.stderr == ""
    assert outcome.elapsed_ms == 12
    assert outcome.compile_ms == 900


def test_successful_compile_then_runtime_error_reports_the_run() -> None:
    crashed = StepResult(OutcomeStatus.RUNTIME_ERROR, stdout="before", stderr="boom", exit_code=1, elapsed_ms=7)

    outcome = compose(_ok(elapsed_ms=500), crashed)

    assert outcome.status is OutcomeStatus.RUNTIME_ERROR
    assert outcome.stdout == "before"
    assert outcome.exit_code == 1
    assert outcome.elapsed_ms == 7
    assert outcome.compile_ms == 500


def test_timeout_beats_runtime_error_and_clears_exit_code() -> None:
    timed_out = StepResult(OutcomeStatus.TIMEOUT, stdout="partial", elapsed_ms=2000, message="slow")

    outcome = compose(_ok(elapsed_ms=100), timed_out)

    assert outcome.status is OutcomeStatus.TIMEOUT
    assert outcome.exit_code is None
    assert outcome.stdout == "partial"
    assert outcome.compile_ms == 100
    assert outcome.elapsed_ms == 2000


def test_runtime_error_keeps_nonzero_exit_code() -> None:
    crashed = StepResult(OutcomeStatus.RUNTIME_ERROR, stderr="boom", exit_code=3, elapsed_ms=5)

    outcome = compose(run_result=crashed)

    assert outcome.status is OutcomeStatus.RUNTIME_ERROR
    assert outcome.exit_code == 3
    assert not outcome.ok


def test_precheck_statuses_report_nothing_executed() -> None:
    rejected = compose(precheck=StepResult.rejected("nope"), run_result=_ok("ignored"))
    unsupported = compose(precheck=StepResult.unsupported("cobol"))

    assert rejected.status is OutcomeStatus.REJECTED_BY_SECURITY_FILTER
    assert rejected.stdout == ""
    assert rejected.exit_code is None
    assert rejected.elapsed_ms == 0
    assert unsupported.status is OutcomeStatus.UNSUPPORTED_LANGUAGE
    assert unsupported.message == "Unsupported language: cobol"


def test_spawn_error_has_no_exit_code() -> None:
    outcome = compose(run_result=StepResult.spawn_error("No such file"))

    assert outcome.status is OutcomeStatus.SPAWN_ERROR
    assert outcome.exit_code is None
    assert outcome.stderr == "No such file"


def test_no_steps_is_a_spawn_error() -> None:
    outcome = compose()

    assert outcome.status is OutcomeStatus.SPAWN_ERROR
    assert outcome.message == "Nothing was executed"
