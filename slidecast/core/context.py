"""Per-request working state: identity, scratch directory, live processes.

WHY: Concurrent requests must never share temporary files, and an
aborted request must not leave ffmpeg processes or scratch files behind.
Instead of module-level globals, every stage receives an explicit
RequestContext. Its lifecycle belongs to the caller (CLI run or server
job), not to the planning core.

HOW: A RequestContext owns a uniquely named directory under a common
root, a registry of running subprocesses, and a cancel event. cancel()
sets the event and kills every registered process. cleanup() cancels,
then removes the directory. request_context() wraps both in a context
manager so every exit path, including exceptions, cleans up.

RULES:
- request_id is a uuid4 hex string; work_dir = root / request_id
- Registry access is guarded by a threading.Lock
- kill_processes() sends SIGKILL and waits briefly for each process
- Cleanup is best-effort: failures are logged as ResourceCleanupError
  and never raised
- keep_files=True skips directory removal (debugging, or when the caller
  moves the final artifact out first)
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Union

from slidecast.config import WORK_ROOT
from slidecast.core.errors import ResourceCleanupError

logger = logging.getLogger(__name__)

# Seconds to wait for a killed process to be reaped
_KILL_WAIT_S = 0.5


class RequestContext:
    """Isolated working state for one render request."""

    def __init__(
        self,
        root: Optional[Union[str, Path]] = None,
        request_id: Optional[str] = None,
    ) -> None:
        self.request_id = request_id or uuid.uuid4().hex
        self.root = Path(root) if root is not None else WORK_ROOT
        self.work_dir = self.root / self.request_id
        self._processes = []  # type: List[subprocess.Popen]
        self._lock = threading.Lock()
        self._cancelled = threading.Event()

    def create(self) -> Path:
        """Create the work directory (and the shared root) if missing."""
        self.work_dir.mkdir(parents=True, exist_ok=True)
        logger.debug("Request %s working in %s", self.request_id, self.work_dir)
        return self.work_dir

    def path(self, name: str) -> Path:
        """Path of a named artifact inside the work directory."""
        return self.work_dir / name

    # ------------------------------------------------------------------
    # Process registry
    # ------------------------------------------------------------------

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def register_process(self, process: subprocess.Popen) -> None:
        """Track a running process; kill it at once if already cancelled."""
        with self._lock:
            self._processes.append(process)
        if self.cancelled:
            self._kill(process)

    def unregister_process(self, process: subprocess.Popen) -> None:
        with self._lock:
            if process in self._processes:
                self._processes.remove(process)

    def running_processes(self) -> List[subprocess.Popen]:
        with self._lock:
            return [p for p in self._processes if p.poll() is None]

    def kill_processes(self) -> int:
        """Kill every registered process still running. Returns the count."""
        with self._lock:
            processes = list(self._processes)
        killed = 0
        for process in processes:
            if process.poll() is None:
                self._kill(process)
                killed += 1
        return killed

    @staticmethod
    def _kill(process: subprocess.Popen) -> None:
        try:
            process.kill()
            process.wait(timeout=_KILL_WAIT_S)
        except (OSError, subprocess.TimeoutExpired):
            logger.warning("Process %s did not exit after SIGKILL", process.pid)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Mark the request aborted and kill its running processes."""
        self._cancelled.set()
        killed = self.kill_processes()
        if killed:
            logger.info("Request %s: killed %d running process(es)", self.request_id, killed)

    def cleanup(self, keep_files: bool = False) -> None:
        """Kill leftover processes and remove the work directory.

        Never raises: cleanup failures are logged only.
        """
        self.kill_processes()
        if keep_files or not self.work_dir.exists():
            return
        try:
            shutil.rmtree(self.work_dir)
            logger.debug("Removed %s", self.work_dir)
        except OSError as exc:
            error = ResourceCleanupError(
                "Failed to remove {}".format(self.work_dir), str(exc)
            )
            logger.warning("%s (%s)", error.message, error.details)


@contextmanager
def request_context(
    root: Optional[Union[str, Path]] = None,
    keep_files: bool = False,
) -> Iterator[RequestContext]:
    """Create a RequestContext, yield it, and always clean it up.

    On an exception the request is cancelled first so running processes
    die before the directory is removed.
    """
    ctx = RequestContext(root=root)
    ctx.create()
    try:
        yield ctx
    except BaseException:
        ctx.cancel()
        raise
    finally:
        ctx.cleanup(keep_files=keep_files)
