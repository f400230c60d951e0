from __future__ import annotations

import json
from pathlib import Path

import pytest

from safe_code_runner import SandboxConfig
from safe_code_runner.execution.types import (
    ExecutionOutcome,
    ExecutionRequest,
    HealthReport,
    LanguageInfo,
    OutcomeStatus,
)
from scr import cli


class _FakeEngine:
    last_config: SandboxConfig | None = None
    requests: list[ExecutionRequest] = []
    available = True

    def __init__(self, config: SandboxConfig) -> None:
        self.__class__.last_config = config

    def execute(self, request: ExecutionRequest) -> ExecutionOutcome:
        self.__class__.requests.append(request)
        if "fail" in request.source_code:
            return ExecutionOutcome(OutcomeStatus.RUNTIME_ERROR, "", "Traceback: boom", 1, 4)
        return ExecutionOutcome(OutcomeStatus.SUCCESS, "hello from fake\n", "", 0, 12)

    def languages(self) -> list[LanguageInfo]:
        return [LanguageInfo("python", ".py", 15_000, 256 * 1024 * 1024)]

    def check_health(self) -> HealthReport:
        return HealthReport(
            available=self.available,
            details={"backend": "fake", "message": "fake backend"},
        )


@pytest.fixture(autouse=True)
def _patch_engine(monkeypatch: pytest.MonkeyPatch) -> None:
    _FakeEngine.last_config = None
    _FakeEngine.requests = []
    _FakeEngine.available = True
    monkeypatch.setattr(cli, "build_engine", _FakeEngine)


def _source(tmp_path: Path, name: str, code: str) -> str:
    path = tmp_path / name
    path.write_text(code, encoding="utf-8")
    return str(path)


def test_cli_run_infers_language(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["run", _source(tmp_path, "hello.py", "print('hi')")])
    output = capsys.readouterr().out

    assert code == 0
    assert "Success" in output
    assert "hello from fake" in output
    assert _FakeEngine.requests[0].language_id == "python"


def test_cli_run_passes_escaped_input(tmp_path: Path) -> None:
    cli.main(["run", _source(tmp_path, "a.py", "print(input())"), "--input", "Alice\\n25"])

    assert _FakeEngine.requests[0].stdin == "Alice\n25"


def test_cli_run_reads_input_file(tmp_path: Path) -> None:
    input_file = tmp_path / "in.txt"
    input_file.write_text("Bob\n30\n", encoding="utf-8")

    cli.main(["run", _source(tmp_path, "a.py", "x"), "--input-file", str(input_file)])

    assert _FakeEngine.requests[0].stdin == "Bob\n30\n"


def test_cli_run_failure_exit_code(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["run", _source(tmp_path, "a.py", "fail()")])
    output = capsys.readouterr().out

    assert code == 1
    assert "RuntimeError" in output
    assert "Traceback: boom" in output


def test_cli_run_json(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["run", _source(tmp_path, "a.py", "print(1)"), "--json"])
    payload = json.loads(capsys.readouterr().out)

    assert code == 0
    assert payload["status"] == "Success"
    assert payload["exitCode"] == 0
    assert payload["executionTime"] == "12ms"


def test_cli_run_rejected_by_filter(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["run", _source(tmp_path, "a.py", "import os"), "--json"])
    payload = json.loads(capsys.readouterr().out)

    assert code == 1
    assert payload["status"] == "RejectedBySecurityFilter"
    assert _FakeEngine.requests == []


def test_cli_run_unknown_extension_needs_language(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = cli.main(["run", _source(tmp_path, "prog.cob", "DISPLAY 'HI'.")])
    output = capsys.readouterr().out

    assert code == 2
    assert "--language" in output


def test_cli_run_explicit_language(tmp_path: Path) -> None:
    cli.main(["run", _source(tmp_path, "prog.txt", "puts 1"), "--language", "ruby"])

    assert _FakeEngine.requests[0].language_id == "ruby"


def test_cli_run_missing_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["run", str(tmp_path / "absent.py")])

    assert code == 2
    assert "Cannot read input" in capsys.readouterr().out


def test_cli_languages(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["languages"])
    output = capsys.readouterr().out

    assert code == 0
    assert "python" in output
    assert "256MB" in output


def test_cli_health(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["health"]) == 0
    assert "Healthy" in capsys.readouterr().out

    _FakeEngine.available = False
    assert cli.main(["health"]) == 1
    assert "Unavailable" in capsys.readouterr().out


def test_cli_global_flags_override_config() -> None:
    cli.main(["--backend", "remote", "--remote-url", "http://localhost:2000/api/v2", "health"])

    config = _FakeEngine.last_config
    assert config is not None
    assert config.backend == "remote"
    assert config.remote_url == "http://localhost:2000/api/v2"


def test_cli_config_file(tmp_path: Path) -> None:
    config_path = tmp_path / "scr.toml"
    config_path.write_text("[sandbox]\nmax_concurrent = 1\n", encoding="utf-8")

    cli.main(["--config", str(config_path), "health"])

    assert _FakeEngine.last_config is not None
    assert _FakeEngine.last_config.max_concurrent == 1


def test_cli_invalid_config(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["--config", str(tmp_path / "absent.toml"), "health"])

    assert code == 2
    assert "Invalid configuration" in capsys.readouterr().out


def test_cli_templates(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["templates", "python"]) == 0
    output = capsys.readouterr().out
    assert "hello" in output
    assert "Hello, World!" in output

    assert cli.main(["templates", "python", "--name", "hello"]) == 0
    assert capsys.readouterr().out == 'print("Hello, World!")\n'


def test_cli_templates_unknown(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["templates", "cobol"]) == 1
    assert "Templates not found" in capsys.readouterr().out


def test_cli_subcommand_help(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main(["run", "--help"])
    output = capsys.readouterr().out
    assert exc.value.code == 0
    assert "--input-file" in output


def test_cli_top_level_help_examples(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main(["--help"])
    output = capsys.readouterr().out
    assert exc.value.code == 0
    assert "Quick Examples:" in output
    assert "python -m scr languages" in output


def test_cli_requires_command(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main([])
    assert exc.value.code == 2
    assert "Error:" in capsys.readouterr().out
