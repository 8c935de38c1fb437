import logging
import shutil
import tempfile
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional
from revive.domain.errors import WorkspaceError
from revive.domain.models import Workspace

WORKSPACE_PREFIX = "revive-job-"

class WorkspaceManager:
    """Allocates and reclaims per-job temporary directory trees."""

    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root) if root else Path(tempfile.gettempdir()) / "revive"
        self.logger = logging.getLogger(__name__)
        self._active: Dict[Path, Workspace] = {}
        self._lock = threading.Lock()

    def ensure_root(self):
        """Raises WorkspaceError when no workspace could be created at all."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            probe = self.root / f".write-test-{uuid.uuid4().hex[:8]}"
            probe.touch()
            probe.unlink()
        except OSError as e:
            raise WorkspaceError(f"Workspace root {self.root} is not writable: {e}") from e

    def acquire(self, job_id: str) -> Workspace:
        safe_id = "".join(c if c.isalnum() or c in "-_" else "_" for c in job_id) or "job"
        root = self.root / f"{WORKSPACE_PREFIX}{safe_id}-{uuid.uuid4().hex[:8]}"
        workspace = Workspace(job_id=job_id, root=root)
        with self._lock:
            self._active[root] = workspace
        try:
            root.mkdir(parents=True)
            workspace.frames_dir.mkdir()
            workspace.upscaled_dir.mkdir()
        except OSError as e:
            self.release(workspace)
            raise WorkspaceError(f"Cannot allocate workspace for {job_id}: {e}") from e
        self.logger.debug(f"WORKSPACE_ACQUIRE: {job_id} -> {root}")
        return workspace

    def release(self, workspace: Workspace):
        """Removes everything the job owns. Safe to call repeatedly or after partial creation.

        A workspace that could not be removed stays tracked so release_all can retry it.
        """
        try:
            if workspace.root.exists():
                shutil.rmtree(workspace.root)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise WorkspaceError(f"Cannot remove workspace {workspace.root}: {e}") from e
        with self._lock:
            self._active.pop(workspace.root, None)
        self.logger.debug(f"WORKSPACE_RELEASE: {workspace.job_id} ({workspace.root})")

    @contextmanager
    def workspace(self, job_id: str) -> Iterator[Workspace]:
        ws = self.acquire(job_id)
        try:
            yield ws
        finally:
            try:
                self.release(ws)
            except WorkspaceError as e:
                self.logger.error(str(e))

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    def release_all(self) -> int:
        with self._lock:
            remaining = list(self._active.values())
        released = 0
        for ws in remaining:
            try:
                self.release(ws)
                released += 1
            except WorkspaceError as e:
                self.logger.error(str(e))
        return released

    def sweep_orphans(self) -> int:
        """Removes workspaces left behind by a previous crashed run."""
        if not self.root.exists():
            return 0
        with self._lock:
            active = set(self._active)
        removed = 0
        for path in self.root.glob(f"{WORKSPACE_PREFIX}*"):
            if path in active or not path.is_dir():
                continue
            shutil.rmtree(path, ignore_errors=True)
            removed += 1
        if removed:
            self.logger.info(f"Cleaned up {removed} orphaned workspaces in {self.root}")
        return removed
