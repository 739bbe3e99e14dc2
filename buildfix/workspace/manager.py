from __future__ import annotations

import contextlib
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional

from buildfix.errors import FailureKind, PipelineFailure


@dataclass
class Workspace:
    """A disposable, exclusively owned directory for one request."""

    path: str
    released: bool = field(default=False, compare=False)

    def join(self, *parts: str) -> str:
        return os.path.join(self.path, *parts)


# Called with (workspace_path, error_text) when removal fails.
CleanupErrorHook = Callable[[str, str], None]


@dataclass(frozen=True)
class WorkspaceManager:
    root: Optional[str] = None
    prefix: str = "buildfix-fix-build-"
    on_cleanup_error: Optional[CleanupErrorHook] = None

    def acquire(self) -> Workspace:
        try:
            if self.root:
                os.makedirs(self.root, exist_ok=True)
            path = tempfile.mkdtemp(prefix=self.prefix, dir=self.root)
        except OSError as e:
            raise PipelineFailure(
                FailureKind.internal,
                "workspace",
                f"failed to create work dir: {e}",
                code="workspace-unavailable",
            ) from e
        return Workspace(path=path)

    def release(self, ws: Workspace) -> None:
        """
        Remove the workspace tree. Best effort: errors go to `on_cleanup_error` and are never raised,
        so cleanup can't replace the pipeline's own outcome. Safe to call more than once.
        """
        if ws.released:
            return
        ws.released = True
        err: str | None = None
        try:
            if os.path.exists(ws.path):
                shutil.rmtree(ws.path)
        except OSError as e:
            err = str(e)
        if err is None and os.path.exists(ws.path):
            err = "still present after removal"
        if err is not None and self.on_cleanup_error is not None:
            with contextlib.suppress(Exception):
                self.on_cleanup_error(ws.path, err)

    @contextlib.contextmanager
    def scope(self) -> Iterator[Workspace]:
        ws = self.acquire()
        try:
            yield ws
        finally:
            self.release(ws)
