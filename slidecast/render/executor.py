"""Bounded concurrent execution of batch jobs, then the finalize job.

WHY: Batch jobs are independent, so running several at once shortens a
render roughly by the pool size. The finalize job reads every batch
artifact, so it may only start once all of them exist. When any job
fails the request is lost anyway (no retries), and the remaining ffmpeg
processes must not keep burning CPU or writing files.

HOW: Batch jobs are submitted to a ThreadPoolExecutor bounded by
max_workers. Each worker spawns ffmpeg with subprocess.Popen, registers
the process with the RequestContext, and waits for it. The first
failure cancels the context, which kills every running process; queued
jobs are dropped and the first failure is re-raised. After a full join
with no failure the concat manifest is written and the finalize job
runs on the calling thread.

RULES:
- Finalize never starts unless every batch job succeeded
- The first failure wins; failures caused by the cancellation are ignored
- RenderJobFailure carries the failing job's name and stderr tail
- A cancelled context fails every job that has not finished yet
"""

from __future__ import annotations

import logging
import subprocess
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from slidecast.config import DEFAULT_MAX_WORKERS, FFMPEG_BIN, STDERR_TAIL_LINES
from slidecast.core.context import RequestContext
from slidecast.core.errors import InputValidationError, RenderJobFailure
from slidecast.render.ffmpeg import (
    build_batch_command,
    build_finalize_command,
    write_concat_manifest,
)
from slidecast.render.jobs import FinalizeJob, RenderJob

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, int], None]


def stderr_tail(text: Optional[str], lines: int = STDERR_TAIL_LINES) -> Optional[str]:
    """Last lines of a process's stderr, or None when there is none."""
    if not text:
        return None
    kept = text.strip().splitlines()[-lines:]
    return "\n".join(kept) or None


class JobExecutor:
    """Runs one request's render jobs inside its RequestContext."""

    def __init__(
        self,
        ctx: RequestContext,
        max_workers: int = DEFAULT_MAX_WORKERS,
        ffmpeg_bin: str = FFMPEG_BIN,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        if isinstance(max_workers, bool) or not isinstance(max_workers, int) or max_workers < 1:
            raise InputValidationError(
                "max_workers must be a positive integer (got {!r}).".format(max_workers)
            )
        self.ctx = ctx
        self.max_workers = max_workers
        self.ffmpeg_bin = ffmpeg_bin
        self.on_progress = on_progress

    # ------------------------------------------------------------------
    # Single process
    # ------------------------------------------------------------------

    def run_command(self, job_name: str, command: List[str]) -> None:
        """Run one ffmpeg command to completion.

        Raises:
            RenderJobFailure: spawn failure, non-zero exit, or cancellation.
        """
        if self.ctx.cancelled:
            raise RenderJobFailure(job_name, "request was cancelled before the job started")

        logger.debug("%s: %s", job_name, command)
        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as exc:
            raise RenderJobFailure(job_name, "could not start ffmpeg", str(exc))

        self.ctx.register_process(process)
        try:
            _, stderr = process.communicate()
        finally:
            self.ctx.unregister_process(process)

        if self.ctx.cancelled:
            raise RenderJobFailure(job_name, "request was cancelled", stderr_tail(stderr))
        if process.returncode != 0:
            raise RenderJobFailure(
                job_name,
                "ffmpeg exited with code {}".format(process.returncode),
                stderr_tail(stderr),
            )
        logger.info("%s: done", job_name)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def run_batch(self, job: RenderJob) -> Path:
        self.run_command(job.name, build_batch_command(job, self.ffmpeg_bin))
        return job.output

    def run_batches(self, jobs: Sequence[RenderJob]) -> List[Path]:
        """Run all batch jobs with at most max_workers at a time.

        Returns:
            Batch artifacts in job order.

        Raises:
            RenderJobFailure: the first job failure; all others are killed.
        """
        if not jobs:
            return []
        total = len(jobs)
        completed = 0

        with ThreadPoolExecutor(
            max_workers=min(self.max_workers, total),
            thread_name_prefix="slidecast-{}".format(self.ctx.request_id[:8]),
        ) as pool:
            futures = [pool.submit(self.run_batch, job) for job in jobs]
            pending = set(futures)
            first_failure = None  # type: Optional[BaseException]

            while pending:
                done, pending = wait(pending, return_when=FIRST_EXCEPTION)
                for future in done:
                    if future.cancelled():
                        continue
                    exc = future.exception()
                    if exc is None:
                        completed += 1
                        if self.on_progress is not None:
                            self.on_progress("batch", completed, total)
                    elif first_failure is None:
                        first_failure = exc
                        logger.error("Render failed: %s", exc)
                        self.ctx.cancel()
                        for other in pending:
                            other.cancel()

            if first_failure is not None:
                raise first_failure

        return [future.result() for future in futures]

    def run_finalize(self, job: FinalizeJob) -> Path:
        write_concat_manifest(job.batch_outputs, job.manifest_path)
        self.run_command(job.name, build_finalize_command(job, self.ffmpeg_bin))
        if self.on_progress is not None:
            self.on_progress("finalize", 1, 1)
        return job.output

    def execute(self, jobs: Sequence[RenderJob], finalize: FinalizeJob) -> Path:
        """Run every batch job, then the finalize job. Returns the final artifact."""
        logger.info(
            "Rendering %d batch(es) with up to %d worker(s)",
            len(jobs),
            self.max_workers,
        )
        self.run_batches(jobs)
        return self.run_finalize(finalize)
