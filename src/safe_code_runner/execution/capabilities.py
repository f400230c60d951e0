from __future__ import annotations

import importlib.util
import logging
import os
from dataclasses import dataclass
from functools import lru_cache

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class HostCapabilities:
    """Capability flags advertised by a backend on this host.

    Example:
        ```python
        caps = HostCapabilities(True, True, True, True)
        ```
    """

    supports_memory_limit: bool
    supports_cpu_limit: bool
    supports_process_group_kill: bool
    supports_timeout: bool

    def degraded(self) -> list[str]:
        """Return human-readable names of missing limiting mechanisms.

        Example:
            ```python
            missing = caps.degraded()
            ```
        """
        missing: list[str] = []
        if not self.supports_memory_limit:
            missing.append("memory limit")
        if not self.supports_cpu_limit:
            missing.append("cpu limit")
        if not self.supports_process_group_kill:
            missing.append("process-group kill")
        if not self.supports_timeout:
            missing.append("timeout")
        return missing


@lru_cache(maxsize=1)
def host_capabilities() -> HostCapabilities:
    """Detect which process constraints the local OS can enforce.

    Example:
        ```python
        caps = host_capabilities()
        ```
    """
    has_resource = importlib.util.find_spec("resource") is not None
    return HostCapabilities(
        supports_memory_limit=has_resource,
        supports_cpu_limit=has_resource,
        supports_process_group_kill=os.name == "posix" and hasattr(os, "killpg"),
        supports_timeout=True,
    )


def capabilities_for_backend(backend: str) -> HostCapabilities:
    """Return capability flags for a backend name.

    Example:
        ```python
        caps = capabilities_for_backend("remote")
        ```
    """
    if backend in {"local", "localengine"}:
        return host_capabilities()
    if backend in {"remote", "remoteengine"}:
        # Limits are enforced by the hosted service; only the HTTP timeout is ours.
        return HostCapabilities(True, True, True, True)
    return HostCapabilities(False, False, False, False)


def preflight_validate_backend_capabilities(backend: str) -> HostCapabilities:
    """Log limiting mechanisms that are unavailable; absence is degraded, not fatal.

    Example:
        ```python
        preflight_validate_backend_capabilities("local")
        ```
    """
    caps = capabilities_for_backend(backend)
    missing = caps.degraded()
    if missing:
        logger.warning(
            "Backend %s runs without: %s (wall-clock timeout still applies)",
            backend,
            ", ".join(missing),
        )
    return caps
