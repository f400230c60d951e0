from __future__ import annotations

import contextlib
import logging
import secrets
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

from .languages import LanguageProfile

logger = logging.getLogger(__name__)

DEFAULT_WORKSPACE_ROOT = Path(tempfile.gettempdir()) / "safe-code-runner"


@dataclass(slots=True)
class Workspace:
    """Request-private directory holding one submission and its build artifacts.

    Example:
        ```python
        ws = Workspace("ab12", Path("/tmp/run_ab12"), Path("/tmp/run_ab12/main.py"))
        ```
    """

    id: str
    directory: Path
    source_path: Path
    artifact_paths: list[Path] = field(default_factory=list)
    released: bool = False

    @property
    def class_name(self) -> str:
        """Return the source file stem (the entry class for JVM languages).

        Example:
            ```python
            assert ws.class_name == "Main"
            ```
        """
        return self.source_path.stem

    def artifact_path(self, name: str) -> Path:
        """Return a path inside the workspace for a derived artifact.

        Example:
            ```python
            binary = ws.artifact_path("main")
            ```
        """
        return self.directory / name

    def record_artifact(self, path: Path) -> None:
        """Register a derived artifact so release removes it.

        Example:
            ```python
            ws.record_artifact(ws.artifact_path("main"))
            ```
        """
        if path not in self.artifact_paths:
            self.artifact_paths.append(path)

    def placeholders(self, profile: LanguageProfile) -> dict[str, str]:
        """Return values for the profile's command-line templates.

        Example:
            ```python
            argv = profile.run_argv(ws.placeholders(profile))
            ```
        """
        values = {
            "source": str(self.source_path),
            "workdir": str(self.directory),
            "class_name": self.class_name,
        }
        if profile.artifact_name is not None:
            values["artifact"] = str(self.artifact_path(profile.artifact_name))
        return values


class WorkspaceManager:
    """Allocate and reliably remove per-request workspaces.

    Example:
        ```python
        manager = WorkspaceManager(root="/tmp/scr")
        with manager.open(profile, "print('hi')") as ws:
            ...
        ```
    """

    def __init__(self, root: str | Path | None = None) -> None:
        """Create a manager rooted at `root` (defaults to the system temp dir).

        Example:
            ```python
            manager = WorkspaceManager()
            ```
        """
        self._root = Path(root).expanduser() if root else DEFAULT_WORKSPACE_ROOT

    @property
    def root(self) -> Path:
        """Return the directory under which workspaces are created.

        Example:
            ```python
            print(manager.root)
            ```
        """
        return self._root

    def acquire(self, profile: LanguageProfile, source_code: str) -> Workspace:
        """Create a uniquely named directory and write the source into it.

        Example:
            ```python
            ws = manager.acquire(profile, "print('hi')")
            ```
        """
        self._root.mkdir(parents=True, exist_ok=True)
        workspace_id = secrets.token_hex(16)
        directory = self._root / f"run_{workspace_id}"
        # exist_ok=False: a collision must fail loudly rather than share a directory.
        directory.mkdir(mode=0o700)
        source_path = directory / profile.source_name_for(source_code)
        workspace = Workspace(id=workspace_id, directory=directory, source_path=source_path)
        try:
            source_path.write_text(source_code, encoding="utf-8")
        except OSError:
            self.release(workspace)
            raise
        return workspace

    def release(self, workspace: Workspace) -> None:
        """Remove the source, recorded artifacts and the directory itself.

        Safe to call more than once; missing files are ignored.

        Example:
            ```python
            manager.release(ws)
            ```
        """
        if workspace.released:
            return
        workspace.released = True
        for path in [*workspace.artifact_paths, workspace.source_path]:
            with contextlib.suppress(FileNotFoundError):
                if path.is_dir():
                    shutil.rmtree(path)
                else:
                    path.unlink()
        try:
            shutil.rmtree(workspace.directory)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed to remove workspace %s: %s", workspace.directory, exc)

    @contextlib.contextmanager
    def open(self, profile: LanguageProfile, source_code: str) -> Iterator[Workspace]:
        """Yield a workspace and release it on every exit path.

        Example:
            ```python
            with manager.open(profile, code) as ws:
                outcome = orchestrator.run(ws, profile, stdin="")
            ```
        """
        workspace = self.acquire(profile, source_code)
        try:
            yield workspace
        finally:
            self.release(workspace)
