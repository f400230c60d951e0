import shutil
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from safe_code_runner import LanguageRegistry, LocalEngine, OutcomeStatus
from safe_code_runner.execution.languages import LanguageOverride, LanguageSpec
from safe_code_runner.execution.types import ExecutionRequest
from safe_code_runner.templates import get_templates


def _python_registry(timeout_ms: int | None = None) -> LanguageRegistry:
    registry = LanguageRegistry.discover(
        which=lambda name: sys.executable if name == "python3" else None
    )
    if timeout_ms is not None:
        registry = registry.with_limits("python", LanguageOverride(timeout_ms=timeout_ms))
    return registry


def _engine(tmp_path: Path, **kwargs) -> LocalEngine:
    kwargs.setdefault("registry", _python_registry())
    return LocalEngine(workspace_root=tmp_path / "ws", **kwargs)


def _run(engine: LocalEngine, code: str, stdin: str = "", language: str = "python"):
    return engine.execute(ExecutionRequest(source_code=code, language_id=language, stdin=stdin))


def test_hello_world(tmp_path: Path) -> None:
    outcome = _run(_engine(tmp_path), get_templates("python")["hello"])

    assert outcome.status is OutcomeStatus.SUCCESS
    assert outcome.stdout == "Hello, World!\n"
    assert outcome.exit_code == 0
    assert outcome.workspace_id is not None


def test_stdin_is_fed_line_by_line(tmp_path: Path) -> None:
    outcome = _run(_engine(tmp_path), get_templates("python")["input"], stdin="  Alice \n\n25\n")

    assert outcome.ok
    assert "Hello Alice, you are 25 years old!" in outcome.stdout


def test_program_that_ignores_stdin_still_succeeds(tmp_path: Path) -> None:
    outcome = _run(_engine(tmp_path), "print('done')", stdin="a\n" * 10_000)

    assert outcome.ok
    assert outcome.stdout == "done\n"


def test_uncaught_exception_is_runtime_error(tmp_path: Path) -> None:
    outcome = _run(_engine(tmp_path), "raise ValueError('bad input')")

    assert outcome.status is OutcomeStatus.RUNTIME_ERROR
    assert outcome.exit_code == 1
    assert "ValueError: bad input" in outcome.stderr


def test_nonzero_exit_code_is_preserved(tmp_path: Path) -> None:
    outcome = _run(_engine(tmp_path), "print('partial')\nraise SystemExit(3)")

    assert outcome.status is OutcomeStatus.RUNTIME_ERROR
    assert outcome.exit_code == 3
    assert outcome.stdout == "partial\n"


def test_infinite_loop_times_out(tmp_path: Path) -> None:
    engine = _engine(tmp_path, registry=_python_registry(timeout_ms=1_000))

    started = time.monotonic()
    outcome = _run(engine, "while True:\n    pass\n")

    assert outcome.status is OutcomeStatus.TIMEOUT
    assert outcome.exit_code is None
    assert "timed out after 1000ms" in (outcome.message or "")
    assert time.monotonic() - started < 10


def test_timeout_kills_background_children(tmp_path: Path) -> None:
    engine = _engine(tmp_path, registry=_python_registry(timeout_ms=1_000))
    code = (
        "import subprocess, sys, time\n"
        "subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(60)'])\n"
        "time.sleep(60)\n"
    )

    started = time.monotonic()
    outcome = _run(engine, code)

    assert outcome.status is OutcomeStatus.TIMEOUT
    assert time.monotonic() - started < 10


def test_output_is_capped(tmp_path: Path) -> None:
    engine = _engine(tmp_path, max_output_bytes=1024)

    outcome = _run(engine, "print('x' * 100_000)")

    assert outcome.status is OutcomeStatus.SUCCESS
    assert outcome.truncated
    assert len(outcome.stdout) == 1024


def test_cancel_event_stops_execution(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    cancel = threading.Event()
    timer = threading.Timer(0.3, cancel.set)
    timer.start()
    try:
        outcome = engine.execute(
            ExecutionRequest(source_code="while True:\n    pass\n", language_id="python"),
            cancel_event=cancel,
        )
    finally:
        timer.cancel()

    assert outcome.status is OutcomeStatus.TIMEOUT
    assert "cancelled" in (outcome.message or "")


def test_unsupported_language_creates_nothing(tmp_path: Path) -> None:
    engine = _engine(tmp_path)

    outcome = _run(engine, "DISPLAY 'HI'.", language="cobol")

    assert outcome.status is OutcomeStatus.UNSUPPORTED_LANGUAGE
    assert outcome.message == "Unsupported language: cobol"
    assert not (tmp_path / "ws").exists()


def test_missing_interpreter_is_spawn_error(tmp_path: Path) -> None:
    registry = LanguageRegistry.discover(
        which=lambda name: "/nonexistent/python3" if name == "python3" else None
    )

    outcome = _run(_engine(tmp_path, registry=registry), "print(1)")

    assert outcome.status is OutcomeStatus.SPAWN_ERROR
    assert outcome.exit_code is None


def test_workspaces_are_removed_after_every_run(tmp_path: Path) -> None:
    engine = _engine(tmp_path, registry=_python_registry(timeout_ms=1_000))

    _run(engine, "print('ok')")
    _run(engine, "raise SystemExit(2)")
    _run(engine, "while True:\n    pass\n")
    _run(engine, "open('scratch.txt', 'w').write('x')")

    assert list((tmp_path / "ws").iterdir()) == []


def test_concurrent_requests_use_distinct_workspaces(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    codes = [f"print(input() + '-{index}')" for index in range(6)]

    with ThreadPoolExecutor(max_workers=6) as pool:
        outcomes = list(pool.map(lambda code: _run(engine, code, stdin="run"), codes))

    assert all(outcome.ok for outcome in outcomes)
    assert sorted(outcome.stdout for outcome in outcomes) == [f"run-{i}\n" for i in range(6)]
    assert len({outcome.workspace_id for outcome in outcomes}) == 6
    assert list((tmp_path / "ws").iterdir()) == []


@pytest.mark.skipif(not sys.platform.startswith("linux"), reason="RLIMIT_AS is enforced on Linux")
def test_memory_limit_is_enforced(tmp_path: Path) -> None:
    registry = _python_registry().with_limits("python", LanguageOverride(memory_limit_mb=128))

    outcome = _run(_engine(tmp_path, registry=registry), "data = bytearray(512 * 1024 * 1024)")

    assert outcome.status is OutcomeStatus.RUNTIME_ERROR
    assert "MemoryError" in outcome.stderr


def test_languages_and_health(tmp_path: Path) -> None:
    engine = _engine(tmp_path)

    languages = engine.languages()
    report = engine.check_health()

    assert [info.name for info in languages] == ["python"]
    assert languages[0].extension == ".py"
    assert report.available
    assert report.details["backend"] == "local"
    assert report.details["languages"] == ["python"]


def test_health_without_toolchains(tmp_path: Path) -> None:
    engine = _engine(tmp_path, registry=LanguageRegistry.discover(which=lambda name: None))

    report = engine.check_health()

    assert not report.available
    assert "No supported toolchain" in str(report.details["message"])


# A "compiler" that copies the source to the artifact, or fails on the word BROKEN.
_TOY_COMPILER = (
    "import shutil, sys\n"
    "text = open(sys.argv[1]).read()\n"
    "if 'BROKEN' in text:\n"
    "    sys.stderr.write('main.toy:1: error: unexpected BROKEN\\n')\n"
    "    sys.exit(1)\n"
    "shutil.copy(sys.argv[1], sys.argv[2])\n"
)

_TOY_SPEC = LanguageSpec(
    "toy",
    ".toy",
    "main.toy",
    5_000,
    256,
    run_candidates=("python3",),
    run_args=("{artifact}",),
    compile_candidates=("python3",),
    compile_args=("-c", _TOY_COMPILER, "{source}", "{artifact}"),
    artifact_name="main_built.py",
)


def _toy_engine(tmp_path: Path) -> LocalEngine:
    registry = LanguageRegistry.discover(
        [_TOY_SPEC],
        which=lambda name: sys.executable if name == "python3" else None,
    )
    return LocalEngine(registry=registry, workspace_root=tmp_path / "ws")


def test_compiled_program_reports_run_output(tmp_path: Path) -> None:
    outcome = _run(_toy_engine(tmp_path), "print('Hello, ' + input())", "World", "toy")

    assert outcome.status is OutcomeStatus.SUCCESS
    assert outcome.stdout == "Hello, World\n"
    assert outcome.exit_code == 0
    assert outcome.compile_ms is not None
    assert outcome.elapsed_ms > 0
    assert list((tmp_path / "ws").iterdir()) == []


def test_compiled_program_runtime_error_reports_run_stderr(tmp_path: Path) -> None:
    outcome = _run(_toy_engine(tmp_path), "import sys\nsys.exit('crashed')", language="toy")

    assert outcome.status is OutcomeStatus.RUNTIME_ERROR
    assert outcome.exit_code == 1
    assert "crashed" in outcome.stderr
    assert outcome.compile_ms is not None


def test_compile_error_skips_the_run_step(tmp_path: Path) -> None:
    marker = tmp_path / "ran.txt"
    code = f"# BROKEN\nopen({str(marker)!r}, 'w').write('ran')\n"

    outcome = _run(_toy_engine(tmp_path), code, language="toy")

    assert outcome.status is OutcomeStatus.COMPILE_ERROR
    assert "unexpected BROKEN" in outcome.stderr
    assert outcome.exit_code == 1
    assert (outcome.message or "").startswith("Compilation failed:")
    assert not marker.exists()
    assert list((tmp_path / "ws").iterdir()) == []


@pytest.mark.integration
@pytest.mark.skipif(shutil.which("gcc") is None, reason="gcc is not installed")
class TestCompiledC:
    def _engine(self, tmp_path: Path) -> LocalEngine:
        return LocalEngine(
            registry=LanguageRegistry.discover(
                which=lambda name: shutil.which(name) if name == "gcc" else None
            ),
            workspace_root=tmp_path / "ws",
        )

    def test_compile_and_run(self, tmp_path: Path) -> None:
        outcome = _run(self._engine(tmp_path), get_templates("c")["input"], "Alice\n25", "c")

        assert outcome.ok
        assert outcome.stdout == "Hello Alice, you are 25 years old!\n"
        assert outcome.compile_ms is not None

    def test_compile_error_leaves_no_artifacts(self, tmp_path: Path) -> None:
        outcome = _run(self._engine(tmp_path), "int main( { return 0; }", language="c")

        assert outcome.status is OutcomeStatus.COMPILE_ERROR
        assert outcome.stderr
        assert (outcome.message or "").startswith("Compilation failed:")
        assert list((tmp_path / "ws").iterdir()) == []


@pytest.mark.integration
@pytest.mark.skipif(
    shutil.which("javac") is None or shutil.which("java") is None,
    reason="a JDK is not installed",
)
def test_java_public_class_is_compiled_and_run(tmp_path: Path) -> None:
    engine = LocalEngine(
        registry=LanguageRegistry.discover(
            which=lambda name: shutil.which(name) if name in {"javac", "java"} else None
        ),
        workspace_root=tmp_path / "ws",
    )
    code = get_templates("java")["hello"].replace("class Main", "class Greeter")

    outcome = _run(engine, code, language="java")

    assert outcome.ok, outcome.stderr
    assert outcome.stdout == "Hello, World!\n"
    assert list((tmp_path / "ws").iterdir()) == []


_HOST_LANGUAGES = [profile.id for profile in LanguageRegistry.discover().profiles()]


@pytest.mark.integration
@pytest.mark.parametrize("language", _HOST_LANGUAGES)
def test_hello_world_for_every_installed_language(tmp_path: Path, language: str) -> None:
    engine = LocalEngine(workspace_root=tmp_path / "ws")

    outcome = _run(engine, get_templates(language)["hello"], language=language)

    assert outcome.ok, outcome.stderr
    assert outcome.exit_code == 0
    assert "Hello, World!" in outcome.stdout
    assert list((tmp_path / "ws").iterdir()) == []
