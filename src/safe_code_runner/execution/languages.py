from __future__ import annotations

import logging
import os
import re
import shutil
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Callable, Iterable, Mapping

logger = logging.getLogger(__name__)

_MIB = 1024 * 1024
DEFAULT_COMPILE_TIMEOUT_MS = 30_000


class Strategy(str, Enum):
    """How a language turns a source file into a running process.

    Example:
        ```python
        assert Strategy("compiled") is Strategy.COMPILED
        ```
    """

    INTERPRETED = "interpreted"
    COMPILED = "compiled"


@dataclass(frozen=True, slots=True)
class LanguageSpec:
    """Static descriptor of how to compile and run one language.

    Argument templates may reference `{source}`, `{artifact}`, `{workdir}`,
    `{class_name}` and `{memory_mb}`. An empty `run_candidates` tuple means the
    compiled artifact is executed directly.

    Example:
        ```python
        spec = LanguageSpec("php", ".php", "main.php", 10_000, 128, run_candidates=("php",))
        ```
    """

    id: str
    extension: str
    source_name: str
    timeout_ms: int
    memory_limit_mb: int
    run_candidates: tuple[str, ...] = ()
    run_args: tuple[str, ...] = ("{source}",)
    compile_candidates: tuple[str, ...] = ()
    compile_args: tuple[str, ...] = ()
    artifact_name: str | None = None
    artifact_patterns: tuple[str, ...] = ()
    source_name_pattern: str | None = None
    limit_address_space: bool = True

    @property
    def strategy(self) -> Strategy:
        """Return the execution strategy implied by the compile candidates.

        Example:
            ```python
            assert DEFAULT_LANGUAGE_SPECS[0].strategy is Strategy.INTERPRETED
            ```
        """
        return Strategy.COMPILED if self.compile_candidates else Strategy.INTERPRETED


@dataclass(frozen=True, slots=True)
class LanguageOverride:
    """Operator override for one language's limits.

    Example:
        ```python
        override = LanguageOverride(timeout_ms=2_000, memory_limit_mb=64)
        ```
    """

    timeout_ms: int | None = None
    memory_limit_mb: int | None = None


@dataclass(frozen=True, slots=True)
class LanguageProfile:
    """A language whose toolchain was found on this host.

    Example:
        ```python
        profile = registry.resolve("python")
        argv = profile.run_argv({"source": "/tmp/run_x/main.py"})
        ```
    """

    id: str
    source_extension: str
    source_name: str
    strategy: Strategy
    run_command: str | None
    timeout_ms: int
    memory_limit_bytes: int
    run_args: tuple[str, ...] = ()
    compile_command: str | None = None
    compile_args: tuple[str, ...] = ()
    compile_timeout_ms: int = DEFAULT_COMPILE_TIMEOUT_MS
    artifact_name: str | None = None
    artifact_patterns: tuple[str, ...] = ()
    source_name_pattern: str | None = field(default=None, repr=False)
    limit_address_space: bool = True

    @property
    def memory_limit_mb(self) -> int:
        """Return the memory ceiling in whole MiB.

        Example:
            ```python
            assert profile.memory_limit_mb == 256
            ```
        """
        return self.memory_limit_bytes // _MIB

    def source_name_for(self, source_code: str) -> str:
        """Return the file name the source must be saved under.

        Java requires the file to be named after its public class.

        Example:
            ```python
            name = profile.source_name_for("public class Hello {}")  # "Hello.java"
            ```
        """
        if self.source_name_pattern:
            match = re.search(self.source_name_pattern, source_code)
            if match:
                return f"{match.group(1)}{self.source_extension}"
        return self.source_name

    def compile_argv(self, paths: Mapping[str, str]) -> list[str]:
        """Build the compile command line for a workspace.

        Example:
            ```python
            argv = profile.compile_argv(workspace.placeholders())
            ```
        """
        if self.compile_command is None:
            raise ValueError(f"Language '{self.id}' has no compile step")
        return [self.compile_command, *self._expand(self.compile_args, paths)]

    def run_argv(self, paths: Mapping[str, str]) -> list[str]:
        """Build the run command line for a workspace.

        Example:
            ```python
            argv = profile.run_argv(workspace.placeholders())
            ```
        """
        args = self._expand(self.run_args, paths)
        if self.run_command is None:
            return [paths["artifact"], *args]
        return [self.run_command, *args]

    def _expand(self, template: Iterable[str], paths: Mapping[str, str]) -> list[str]:
        """Substitute workspace placeholders into an argument template.

        Example:
            ```python
            args = profile._expand(("{source}",), {"source": "main.py"})
            ```
        """
        values = {"memory_mb": str(self.memory_limit_mb), **paths}
        return [arg.format(**values) for arg in template]


# Order is the order reported by the language catalog.
DEFAULT_LANGUAGE_SPECS: tuple[LanguageSpec, ...] = (
    LanguageSpec(
        "javascript",
        ".js",
        "main.js",
        10_000,
        128,
        run_candidates=("node", "nodejs"),
        run_args=("--max-old-space-size={memory_mb}", "{source}"),
        limit_address_space=False,
    ),
    LanguageSpec(
        "python",
        ".py",
        "main.py",
        15_000,
        256,
        run_candidates=("python3", "python", "py"),
        run_args=("-u", "{source}"),
    ),
    LanguageSpec(
        "java",
        ".java",
        "Main.java",
        20_000,
        512,
        run_candidates=("java",),
        run_args=("-Xmx{memory_mb}m", "-XX:+UseSerialGC", "-cp", "{workdir}", "{class_name}"),
        compile_candidates=("javac",),
        compile_args=("-d", "{workdir}", "{source}"),
        artifact_patterns=("*.class",),
        source_name_pattern=r"public\s+(?:final\s+|abstract\s+)*class\s+([A-Za-z_$][\w$]*)",
        limit_address_space=False,
    ),
    LanguageSpec(
        "cpp",
        ".cpp",
        "main.cpp",
        15_000,
        256,
        run_args=(),
        compile_candidates=("g++", "clang++"),
        compile_args=("{source}", "-o", "{artifact}"),
        artifact_name="main",
    ),
    LanguageSpec(
        "c",
        ".c",
        "main.c",
        15_000,
        256,
        run_args=(),
        compile_candidates=("gcc", "clang"),
        compile_args=("{source}", "-o", "{artifact}", "-lm"),
        artifact_name="main",
    ),
    LanguageSpec(
        "csharp",
        ".cs",
        "Main.cs",
        20_000,
        512,
        run_candidates=("mono",),
        run_args=("{artifact}",),
        compile_candidates=("mcs", "csc"),
        compile_args=("-out:{artifact}", "{source}"),
        artifact_name="main.exe",
        limit_address_space=False,
    ),
    LanguageSpec(
        "go",
        ".go",
        "main.go",
        15_000,
        256,
        run_args=(),
        compile_candidates=("go",),
        compile_args=("build", "-o", "{artifact}", "{source}"),
        artifact_name="main",
        limit_address_space=False,
    ),
    LanguageSpec(
        "rust",
        ".rs",
        "main.rs",
        20_000,
        256,
        run_args=(),
        compile_candidates=("rustc",),
        compile_args=("{source}", "-o", "{artifact}"),
        artifact_name="main",
    ),
    LanguageSpec(
        "php",
        ".php",
        "main.php",
        10_000,
        128,
        run_candidates=("php",),
    ),
)


def _first_available(candidates: Iterable[str], which: Callable[[str], str | None]) -> str | None:
    """Return the resolved path of the first candidate found on PATH.

    Example:
        ```python
        path = _first_available(("python3", "python"), shutil.which)
        ```
    """
    for candidate in candidates:
        resolved = which(candidate)
        if resolved:
            return resolved
    return None


def _native_artifact_name(spec: LanguageSpec) -> str | None:
    """Return the artifact file name, adding `.exe` for native binaries on Windows.

    Example:
        ```python
        name = _native_artifact_name(spec)  # "main" on Linux
        ```
    """
    if spec.artifact_name is None:
        return None
    if os.name == "nt" and not spec.run_candidates and not spec.artifact_name.endswith(".exe"):
        return f"{spec.artifact_name}.exe"
    return spec.artifact_name


def build_profile(
    spec: LanguageSpec,
    *,
    which: Callable[[str], str | None] = shutil.which,
    override: LanguageOverride | None = None,
    compile_timeout_ms: int = DEFAULT_COMPILE_TIMEOUT_MS,
) -> LanguageProfile | None:
    """Resolve one language's toolchain, returning None when it is not installed.

    Example:
        ```python
        profile = build_profile(DEFAULT_LANGUAGE_SPECS[1])
        ```
    """
    compile_command: str | None = None
    if spec.compile_candidates:
        compile_command = _first_available(spec.compile_candidates, which)
        if compile_command is None:
            return None

    run_command: str | None = None
    if spec.run_candidates:
        run_command = _first_available(spec.run_candidates, which)
        if run_command is None:
            return None

    timeout_ms = spec.timeout_ms
    memory_limit_mb = spec.memory_limit_mb
    if override is not None:
        timeout_ms = override.timeout_ms or timeout_ms
        memory_limit_mb = override.memory_limit_mb or memory_limit_mb

    return LanguageProfile(
        id=spec.id,
        source_extension=spec.extension,
        source_name=spec.source_name,
        strategy=spec.strategy,
        run_command=run_command,
        run_args=spec.run_args,
        timeout_ms=timeout_ms,
        memory_limit_bytes=memory_limit_mb * _MIB,
        compile_command=compile_command,
        compile_args=spec.compile_args,
        compile_timeout_ms=compile_timeout_ms,
        artifact_name=_native_artifact_name(spec),
        artifact_patterns=spec.artifact_patterns,
        source_name_pattern=spec.source_name_pattern,
        limit_address_space=spec.limit_address_space,
    )


class LanguageRegistry:
    """Immutable lookup table of languages usable on this host.

    Built once at startup and passed to the engines; lookups never touch the
    filesystem.

    Example:
        ```python
        registry = LanguageRegistry.discover()
        profile = registry.resolve("python")
        ```
    """

    def __init__(
        self,
        profiles: Iterable[LanguageProfile],
        unavailable: Iterable[str] = (),
    ) -> None:
        """Freeze a set of resolved profiles.

        Example:
            ```python
            registry = LanguageRegistry([profile], unavailable=["rust"])
            ```
        """
        self._profiles: Mapping[str, LanguageProfile] = MappingProxyType(
            {profile.id: profile for profile in profiles}
        )
        self._unavailable = tuple(unavailable)

    @classmethod
    def discover(
        cls,
        specs: Iterable[LanguageSpec] = DEFAULT_LANGUAGE_SPECS,
        *,
        which: Callable[[str], str | None] = shutil.which,
        overrides: Mapping[str, LanguageOverride] | None = None,
        compile_timeout_ms: int = DEFAULT_COMPILE_TIMEOUT_MS,
    ) -> "LanguageRegistry":
        """Probe the host for every known toolchain and build a registry.

        Example:
            ```python
            registry = LanguageRegistry.discover(overrides={"python": LanguageOverride(timeout_ms=2_000)})
            ```
        """
        overrides = overrides or {}
        found: list[LanguageProfile] = []
        missing: list[str] = []
        for spec in specs:
            profile = build_profile(
                spec,
                which=which,
                override=overrides.get(spec.id),
                compile_timeout_ms=compile_timeout_ms,
            )
            if profile is None:
                missing.append(spec.id)
            else:
                found.append(profile)

        logger.info(
            "Languages available: %s",
            ", ".join(profile.id for profile in found) or "none",
        )
        if missing:
            logger.info("Languages unavailable (toolchain not found): %s", ", ".join(missing))
        return cls(found, unavailable=missing)

    def resolve(self, language_id: str) -> LanguageProfile | None:
        """Return the profile for a language, or None when it is not supported.

        Example:
            ```python
            assert registry.resolve("cobol") is None
            ```
        """
        return self._profiles.get(language_id.strip().lower())

    def profiles(self) -> list[LanguageProfile]:
        """Return available profiles in catalog order.

        Example:
            ```python
            names = [p.id for p in registry.profiles()]
            ```
        """
        return list(self._profiles.values())

    @property
    def unavailable(self) -> tuple[str, ...]:
        """Return ids of known languages whose toolchain was not found.

        Example:
            ```python
            missing = registry.unavailable
            ```
        """
        return self._unavailable

    def with_limits(self, language_id: str, override: LanguageOverride) -> "LanguageRegistry":
        """Return a new registry with one profile's limits replaced.

        Example:
            ```python
            fast = registry.with_limits("python", LanguageOverride(timeout_ms=1_000))
            ```
        """
        updated: list[LanguageProfile] = []
        for profile in self._profiles.values():
            if profile.id == language_id:
                profile = replace(
                    profile,
                    timeout_ms=override.timeout_ms or profile.timeout_ms,
                    memory_limit_bytes=(override.memory_limit_mb * _MIB)
                    if override.memory_limit_mb
                    else profile.memory_limit_bytes,
                )
            updated.append(profile)
        return LanguageRegistry(updated, unavailable=self._unavailable)

    def __contains__(self, language_id: object) -> bool:
        """Return True when a language id resolves.

        Example:
            ```python
            assert "python" in registry
            ```
        """
        return isinstance(language_id, str) and self.resolve(language_id) is not None

    def __len__(self) -> int:
        """Return the number of available languages.

        Example:
            ```python
            count = len(registry)
            ```
        """
        return len(self._profiles)
