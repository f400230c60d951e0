from pathlib import Path

import pytest

from safe_code_runner import SandboxConfig
from safe_code_runner.execution.languages import LanguageOverride


def test_defaults_come_from_bundled_config() -> None:
    config = SandboxConfig()

    assert config.backend == "local"
    assert config.max_output_kb == 1024
    assert config.max_output_bytes == 1024 * 1024
    assert config.max_concurrent == 4
    assert config.compile_timeout_ms == 30_000
    assert config.security_filter is True
    assert config.remote_url == "https://emkc.org/api/v2/piston"
    assert config.languages == {}


def test_from_file_reads_every_table(tmp_path: Path) -> None:
    path = tmp_path / "scr.toml"
    path.write_text(
        "\n".join(
            [
                "[sandbox]",
                'backend = "remote"',
                f'workspace_root = "{tmp_path / "ws"}"',
                "max_output_kb = 64",
                "max_concurrent = 2",
                "security_filter = false",
                "",
                "[remote]",
                'base_url = "http://localhost:2000/api/v2"',
                "timeout_seconds = 5",
                "run_timeout_ms = 1000",
                "",
                "[languages.Python]",
                "timeout_ms = 2000",
                "memory_limit_mb = 64",
            ]
        ),
        encoding="utf-8",
    )

    config = SandboxConfig.from_file(str(path))

    assert config.backend == "remote"
    assert config.workspace_root == str(tmp_path / "ws")
    assert config.max_output_bytes == 64 * 1024
    assert config.max_concurrent == 2
    assert config.security_filter is False
    assert config.remote_url == "http://localhost:2000/api/v2"
    assert config.remote_timeout_seconds == 5.0
    assert config.remote_run_timeout_ms == 1000
    assert config.remote_compile_timeout_ms == 10_000
    assert config.languages == {"python": LanguageOverride(timeout_ms=2000, memory_limit_mb=64)}
    assert config.config_path == str(path)


def test_missing_file_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Config file not found"):
        SandboxConfig.from_file(str(tmp_path / "absent.toml"))


def test_unknown_language_keys_are_rejected(tmp_path: Path) -> None:
    path = tmp_path / "scr.toml"
    path.write_text("[languages.python]\ntimeout = 5\n", encoding="utf-8")

    with pytest.raises(ValueError, match="unknown keys: timeout"):
        SandboxConfig.from_file(str(path))


@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"backend": "docker"}, "backend must be"),
        ({"max_output_kb": 0}, "max_output_kb"),
        ({"max_concurrent": 0}, "max_concurrent"),
        ({"compile_timeout_ms": -1}, "compile_timeout_ms"),
        ({"remote_timeout_seconds": 0}, "remote_timeout_seconds"),
        ({"languages": {"python": LanguageOverride(timeout_ms=0)}}, "languages.python.timeout_ms"),
    ],
)
def test_invalid_values_are_rejected(kwargs: dict, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        SandboxConfig(**kwargs)
