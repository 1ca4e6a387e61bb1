"""Unit tests for the per-request context.

WHY: Concurrent requests share a machine. If two requests shared a work
directory, or an aborted request left ffmpeg running, renders would
corrupt each other or leak CPU and disk. RequestContext is the single
owner of that state.

HOW: Tests cover directory isolation, the process registry with fake
processes, cancellation, cleanup (including failures that must not
raise), and the request_context() context manager.

RULES:
- All file I/O tests use tmp_path as the context root
- Fake processes stand in for ffmpeg; nothing is spawned
"""

from __future__ import annotations

import subprocess
from unittest.mock import patch

import pytest

from slidecast.core.context import RequestContext, request_context


class FakeProcess:
    """Minimal Popen stand-in: running until killed."""

    def __init__(self, running=True, hang=False):
        self.pid = 1234
        self.returncode = None if running else 0
        self.kill_calls = 0
        self._hang = hang

    def poll(self):
        return self.returncode

    def kill(self):
        self.kill_calls += 1
        self.returncode = -9

    def wait(self, timeout=None):
        if self._hang:
            raise subprocess.TimeoutExpired("ffmpeg", timeout)
        return self.returncode


# ---------------------------------------------------------------------------
# TestWorkDirectory
# ---------------------------------------------------------------------------


class TestWorkDirectory:
    """Each context owns a unique directory under the shared root."""

    def test_unique_ids_and_dirs(self, tmp_path):
        a = RequestContext(root=tmp_path)
        b = RequestContext(root=tmp_path)
        assert a.request_id != b.request_id
        assert a.work_dir != b.work_dir
        assert a.work_dir.parent == tmp_path

    def test_create_makes_directory(self, tmp_path):
        ctx = RequestContext(root=tmp_path / "nested" / "root")
        assert not ctx.work_dir.exists()
        ctx.create()
        assert ctx.work_dir.is_dir()

    def test_path_inside_work_dir(self, tmp_path):
        ctx = RequestContext(root=tmp_path, request_id="abc123")
        assert ctx.path("plan.json") == tmp_path / "abc123" / "plan.json"

    def test_request_id_is_hex(self, tmp_path):
        ctx = RequestContext(root=tmp_path)
        assert len(ctx.request_id) == 32
        int(ctx.request_id, 16)


# ---------------------------------------------------------------------------
# TestProcessRegistry
# ---------------------------------------------------------------------------


class TestProcessRegistry:
    """register/unregister/kill bookkeeping."""

    def test_running_processes(self, tmp_path):
        ctx = RequestContext(root=tmp_path)
        running, done = FakeProcess(), FakeProcess(running=False)
        ctx.register_process(running)
        ctx.register_process(done)
        assert ctx.running_processes() == [running]

    def test_unregister(self, tmp_path):
        ctx = RequestContext(root=tmp_path)
        process = FakeProcess()
        ctx.register_process(process)
        ctx.unregister_process(process)
        ctx.unregister_process(process)
        assert ctx.running_processes() == []

    def test_kill_processes_counts_only_running(self, tmp_path):
        ctx = RequestContext(root=tmp_path)
        running, done = FakeProcess(), FakeProcess(running=False)
        ctx.register_process(running)
        ctx.register_process(done)
        assert ctx.kill_processes() == 1
        assert running.kill_calls == 1
        assert done.kill_calls == 0

    def test_kill_timeout_is_logged(self, tmp_path, caplog):
        ctx = RequestContext(root=tmp_path)
        ctx.register_process(FakeProcess(hang=True))
        with caplog.at_level("WARNING"):
            ctx.kill_processes()
        assert "did not exit" in caplog.text


# ---------------------------------------------------------------------------
# TestCancellation
# ---------------------------------------------------------------------------


class TestCancellation:
    """cancel() marks the request aborted and kills its processes."""

    def test_cancel_kills_running(self, tmp_path):
        ctx = RequestContext(root=tmp_path)
        process = FakeProcess()
        ctx.register_process(process)
        assert not ctx.cancelled
        ctx.cancel()
        assert ctx.cancelled
        assert process.kill_calls == 1

    def test_register_after_cancel_kills_immediately(self, tmp_path):
        ctx = RequestContext(root=tmp_path)
        ctx.cancel()
        process = FakeProcess()
        ctx.register_process(process)
        assert process.kill_calls == 1


# ---------------------------------------------------------------------------
# TestCleanup
# ---------------------------------------------------------------------------


class TestCleanup:
    """cleanup() removes the work directory and never raises."""

    def test_removes_directory_with_files(self, tmp_path):
        ctx = RequestContext(root=tmp_path)
        ctx.create()
        ctx.path("batch_000.mp4").write_bytes(b"video")
        ctx.cleanup()
        assert not ctx.work_dir.exists()

    def test_keep_files(self, tmp_path):
        ctx = RequestContext(root=tmp_path)
        ctx.create()
        ctx.cleanup(keep_files=True)
        assert ctx.work_dir.is_dir()

    def test_missing_directory_is_fine(self, tmp_path):
        RequestContext(root=tmp_path).cleanup()

    def test_kills_leftover_processes(self, tmp_path):
        ctx = RequestContext(root=tmp_path)
        process = FakeProcess()
        ctx.register_process(process)
        ctx.cleanup()
        assert process.kill_calls == 1

    def test_failure_logged_not_raised(self, tmp_path, caplog):
        ctx = RequestContext(root=tmp_path)
        ctx.create()
        with patch("slidecast.core.context.shutil.rmtree", side_effect=PermissionError("busy")):
            with caplog.at_level("WARNING"):
                ctx.cleanup()
        assert "Failed to remove" in caplog.text
        assert ctx.work_dir.exists()


# ---------------------------------------------------------------------------
# TestRequestContextManager
# ---------------------------------------------------------------------------


class TestRequestContextManager:
    """request_context() always cleans up, cancelling on errors."""

    def test_normal_exit_removes_directory(self, tmp_path):
        with request_context(root=tmp_path) as ctx:
            assert ctx.work_dir.is_dir()
            work_dir = ctx.work_dir
        assert not work_dir.exists()
        assert not ctx.cancelled

    def test_exception_cancels_and_propagates(self, tmp_path):
        process = FakeProcess()
        with pytest.raises(RuntimeError, match="render failed"):
            with request_context(root=tmp_path) as ctx:
                ctx.register_process(process)
                raise RuntimeError("render failed")
        assert ctx.cancelled
        assert process.kill_calls == 1
        assert not ctx.work_dir.exists()

    def test_keep_files(self, tmp_path):
        with request_context(root=tmp_path, keep_files=True) as ctx:
            pass
        assert ctx.work_dir.is_dir()
