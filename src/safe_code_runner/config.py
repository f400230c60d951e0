from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .execution.languages import LanguageOverride

BACKENDS = frozenset({"local", "remote"})


def _default_config_path() -> Path:
    """Return bundled default config TOML path.

    Example:
        ```python
        path = _default_config_path()
        ```
    """
    return Path(__file__).with_name("default_config.toml")


def _read_config_toml(path: Path) -> dict[str, Any]:
    """Read config TOML and return its raw dictionary.

    Example:
        ```python
        raw = _read_config_toml(Path("/etc/scr.toml"))
        ```
    """
    if not path.exists():
        return {
            "sandbox": {
                "backend": "local",
                "max_output_kb": 1024,
                "max_concurrent": 4,
                "compile_timeout_ms": 30000,
                "security_filter": True,
            },
            "remote": {
                "base_url": "https://emkc.org/api/v2/piston",
                "timeout_seconds": 15,
                "run_timeout_ms": 3000,
                "compile_timeout_ms": 10000,
            },
        }
    return tomllib.loads(path.read_text(encoding="utf-8"))


def _table(raw: dict[str, Any], name: str) -> dict[str, Any]:
    """Return a TOML sub-table, validating its type.

    Example:
        ```python
        sandbox = _table(raw, "sandbox")
        ```
    """
    value = raw.get(name, {})
    if not isinstance(value, dict):
        raise ValueError(f"'{name}' must be a TOML table")
    return value


def _language_overrides(value: Any) -> dict[str, LanguageOverride]:
    """Validate and normalize the `[languages.<id>]` tables.

    Example:
        ```python
        overrides = _language_overrides({"python": {"timeout_ms": 2000}})
        ```
    """
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError("'languages' must be a TOML table")
    out: dict[str, LanguageOverride] = {}
    for language, table in value.items():
        if not isinstance(table, dict):
            raise ValueError(f"'languages.{language}' must be a TOML table")
        unknown = set(table) - {"timeout_ms", "memory_limit_mb"}
        if unknown:
            raise ValueError(
                f"'languages.{language}' has unknown keys: {', '.join(sorted(unknown))}"
            )
        timeout_ms = table.get("timeout_ms")
        memory_limit_mb = table.get("memory_limit_mb")
        out[str(language).lower()] = LanguageOverride(
            timeout_ms=int(timeout_ms) if timeout_ms is not None else None,
            memory_limit_mb=int(memory_limit_mb) if memory_limit_mb is not None else None,
        )
    return out


_DEFAULT_RAW = _read_config_toml(_default_config_path())
_DEFAULT_SANDBOX = _table(_DEFAULT_RAW, "sandbox")
_DEFAULT_REMOTE = _table(_DEFAULT_RAW, "remote")
DEFAULT_BACKEND = str(_DEFAULT_SANDBOX.get("backend", "local"))
DEFAULT_MAX_OUTPUT_KB = int(_DEFAULT_SANDBOX.get("max_output_kb", 1024))
DEFAULT_MAX_CONCURRENT = int(_DEFAULT_SANDBOX.get("max_concurrent", 4))
DEFAULT_COMPILE_TIMEOUT_MS = int(_DEFAULT_SANDBOX.get("compile_timeout_ms", 30000))
DEFAULT_SECURITY_FILTER = bool(_DEFAULT_SANDBOX.get("security_filter", True))
DEFAULT_REMOTE_URL = str(_DEFAULT_REMOTE.get("base_url", "https://emkc.org/api/v2/piston"))
DEFAULT_REMOTE_TIMEOUT_SECONDS = float(_DEFAULT_REMOTE.get("timeout_seconds", 15))
DEFAULT_REMOTE_RUN_TIMEOUT_MS = int(_DEFAULT_REMOTE.get("run_timeout_ms", 3000))
DEFAULT_REMOTE_COMPILE_TIMEOUT_MS = int(_DEFAULT_REMOTE.get("compile_timeout_ms", 10000))


@dataclass(slots=True)
class SandboxConfig:
    """Operator configuration for the execution service.

    Example:
        ```python
        config = SandboxConfig(backend="remote", remote_timeout_seconds=5)
        ```
    """

    backend: str = DEFAULT_BACKEND
    workspace_root: str | None = None
    max_output_kb: int = DEFAULT_MAX_OUTPUT_KB
    max_concurrent: int = DEFAULT_MAX_CONCURRENT
    compile_timeout_ms: int = DEFAULT_COMPILE_TIMEOUT_MS
    security_filter: bool = DEFAULT_SECURITY_FILTER
    remote_url: str = DEFAULT_REMOTE_URL
    remote_timeout_seconds: float = DEFAULT_REMOTE_TIMEOUT_SECONDS
    remote_run_timeout_ms: int = DEFAULT_REMOTE_RUN_TIMEOUT_MS
    remote_compile_timeout_ms: int = DEFAULT_REMOTE_COMPILE_TIMEOUT_MS
    languages: dict[str, LanguageOverride] = field(default_factory=dict)
    config_path: str | None = None

    def __post_init__(self) -> None:
        """Validate values after dataclass initialization.

        Example:
            ```python
            SandboxConfig(backend="local")
            ```
        """
        if self.backend not in BACKENDS:
            raise ValueError("backend must be 'local' or 'remote'")
        if self.max_output_kb <= 0:
            raise ValueError("max_output_kb must be positive")
        if self.max_concurrent <= 0:
            raise ValueError("max_concurrent must be positive")
        if self.compile_timeout_ms <= 0:
            raise ValueError("compile_timeout_ms must be positive")
        if self.remote_timeout_seconds <= 0:
            raise ValueError("remote_timeout_seconds must be positive")
        for language, override in self.languages.items():
            if override.timeout_ms is not None and override.timeout_ms <= 0:
                raise ValueError(f"languages.{language}.timeout_ms must be positive")
            if override.memory_limit_mb is not None and override.memory_limit_mb <= 0:
                raise ValueError(f"languages.{language}.memory_limit_mb must be positive")

    @property
    def max_output_bytes(self) -> int:
        """Return the per-stream output cap in bytes.

        Example:
            ```python
            assert SandboxConfig(max_output_kb=1).max_output_bytes == 1024
            ```
        """
        return self.max_output_kb * 1024

    @classmethod
    def from_file(cls, config_path: str) -> "SandboxConfig":
        """Create a config instance from a TOML file.

        Example:
            ```python
            config = SandboxConfig.from_file("/etc/scr.toml")
            ```
        """
        path = Path(config_path)
        if not path.exists():
            raise ValueError(f"Config file not found: {config_path}")
        raw = _read_config_toml(path)
        sandbox = _table(raw, "sandbox")
        remote = _table(raw, "remote")
        workspace_root = sandbox.get("workspace_root")
        return cls(
            backend=str(sandbox.get("backend", DEFAULT_BACKEND)),
            workspace_root=str(workspace_root) if workspace_root else None,
            max_output_kb=int(sandbox.get("max_output_kb", DEFAULT_MAX_OUTPUT_KB)),
            max_concurrent=int(sandbox.get("max_concurrent", DEFAULT_MAX_CONCURRENT)),
            compile_timeout_ms=int(sandbox.get("compile_timeout_ms", DEFAULT_COMPILE_TIMEOUT_MS)),
            security_filter=bool(sandbox.get("security_filter", DEFAULT_SECURITY_FILTER)),
            remote_url=str(remote.get("base_url", DEFAULT_REMOTE_URL)),
            remote_timeout_seconds=float(
                remote.get("timeout_seconds", DEFAULT_REMOTE_TIMEOUT_SECONDS)
            ),
            remote_run_timeout_ms=int(remote.get("run_timeout_ms", DEFAULT_REMOTE_RUN_TIMEOUT_MS)),
            remote_compile_timeout_ms=int(
                remote.get("compile_timeout_ms", DEFAULT_REMOTE_COMPILE_TIMEOUT_MS)
            ),
            languages=_language_overrides(raw.get("languages")),
            config_path=config_path,
        )
