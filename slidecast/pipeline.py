"""End-to-end orchestration of one render request.

WHY: The CLI and the HTTP API run the same sequence of stages and must
report the same progress and errors. Keeping the sequence in one place
means both surfaces stay in step.

HOW: render_request() is a coroutine that runs, in order:
  validate -> fetch (fan-out) -> probe duration -> schedule -> plan
  -> write plan report and captions -> assemble jobs -> render batches
  -> finalize.
Network I/O is awaited directly; the blocking render stages run in a
worker thread via asyncio.to_thread so cancelling the coroutine can kill
ffmpeg through the RequestContext. plan_only stops after the plan
report is written, and an explicit audio_duration skips probing.

RULES:
- The caller owns the RequestContext (creation and cleanup)
- on_status receives "fetching", "planning", "rendering", "finalizing"
- Any failure propagates as a SlidecastError subclass
- Cancelling the coroutine cancels the context before re-raising
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx

from slidecast.config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_FPS,
    DEFAULT_HEIGHT,
    DEFAULT_MAX_FETCH_CONCURRENCY,
    DEFAULT_MAX_WORKERS,
    DEFAULT_WIDTH,
    FFMPEG_BIN,
    FFPROBE_BIN,
)
from slidecast.core.context import RequestContext
from slidecast.core.errors import InputValidationError
from slidecast.core.ir import DurationMode, RenderPlan, Segment, Word
from slidecast.core.planner import check_tiling, plan
from slidecast.core.scheduler import schedule, validate_audio_duration
from slidecast.fetch.client import MediaFetcher
from slidecast.formatters import FORMATTERS
from slidecast.formatters.base import FormatterOutput
from slidecast.render.executor import JobExecutor, ProgressCallback
from slidecast.render.ffmpeg import probe_duration
from slidecast.render.jobs import assemble
from slidecast.server.models import RenderRequest

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], None]

STAGE_FETCHING = "fetching"
STAGE_PLANNING = "planning"
STAGE_RENDERING = "rendering"
STAGE_FINALIZING = "finalizing"


@dataclass
class RenderSettings:
    """Output and concurrency settings for one request."""

    width: int = DEFAULT_WIDTH
    height: int = DEFAULT_HEIGHT
    fps: int = DEFAULT_FPS
    batch_size: int = DEFAULT_BATCH_SIZE
    max_workers: int = DEFAULT_MAX_WORKERS
    max_fetch_concurrency: int = DEFAULT_MAX_FETCH_CONCURRENCY
    captions: bool = True

    @classmethod
    def from_request(cls, request: RenderRequest, **overrides: Any) -> RenderSettings:
        """Defaults, then values set on the request, then non-None overrides."""
        settings = cls(captions=request.captions)
        for name in ("width", "height", "fps", "batch_size"):
            value = getattr(request, name)
            if value is not None:
                setattr(settings, name, value)
        for name, value in overrides.items():
            if value is None:
                continue
            if not hasattr(settings, name):
                raise TypeError("Unknown render setting: {}".format(name))
            setattr(settings, name, value)
        return settings

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PipelineResult:
    """Outcome of a request: the plan and every file written.

    RULES:
    - output is None in plan_only mode
    - files maps output filename to its path inside the work dir
    """

    plan: RenderPlan
    output: Optional[Path] = None
    files: Dict[str, Path] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


def _planning_notes(segments: Sequence[Segment], plan_: RenderPlan) -> List[str]:
    notes = []  # type: List[str]
    for segment, timed in zip(segments, plan_.timed_segments):
        if segment.duration_mode == DurationMode.DYNAMIC and not timed.aligned:
            notes.append(
                "Segment {}: on-screen text not found in transcript; "
                "placed with a fixed duration.".format(segment.index)
            )
    last = plan_.timed_segments[-1]
    if last.display_start > plan_.audio_duration:
        notes.append(
            "Segment {} starts after the audio ends; the timeline overflows.".format(last.index)
        )
    start = plan_.batches[0].global_start
    if start > 0:
        notes.append(
            "Video starts at the first reveal ({:.3f}s); narration and captions "
            "before it are trimmed.".format(start)
        )
    return notes


def build_plan(
    segments: Sequence[Segment],
    transcript: Sequence[Word],
    audio_duration: float,
    settings: RenderSettings,
    request_id: str = "",
) -> RenderPlan:
    """Schedule and batch a request. Pure: no I/O."""
    duration = validate_audio_duration(audio_duration)
    timed = schedule(segments, transcript, duration)
    batches = plan(timed, duration, settings.batch_size)
    check_tiling(batches, timed, duration)

    result = RenderPlan(
        transcript=list(transcript),
        timed_segments=timed,
        batches=batches,
        audio_duration=duration,
        resolution=(settings.width, settings.height),
        fps=settings.fps,
        request_id=request_id,
    )
    result.notes = _planning_notes(segments, result)
    return result


def write_outputs(outputs: Sequence[FormatterOutput], directory: Path) -> Dict[str, Path]:
    """Write formatter outputs into directory. Returns filename -> path."""
    return {output.filename: output.write_to(directory) for output in outputs}


# ---------------------------------------------------------------------------
# Request pipeline
# ---------------------------------------------------------------------------


async def render_request(
    request: RenderRequest,
    ctx: RequestContext,
    settings: Optional[RenderSettings] = None,
    on_status: Optional[StatusCallback] = None,
    on_progress: Optional[ProgressCallback] = None,
    plan_only: bool = False,
    audio_duration: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    allow_local: bool = False,
    ffmpeg_bin: str = FFMPEG_BIN,
    ffprobe_bin: str = FFPROBE_BIN,
) -> PipelineResult:
    """Run a request through every stage inside ctx.

    Args:
        request: Validated request payload.
        ctx: Per-request context; its work dir receives every file.
        settings: Output and pool settings (default: from the request).
        on_status: Called with the stage name as each stage begins.
        on_progress: Called as (stage, done, total) when batch jobs finish.
        plan_only: Stop after writing the plan report.
        audio_duration: Known audio length; skips ffprobe when given.
        transport: httpx transport override for fetching.
        allow_local: Accept local file paths as media references.

    Returns:
        PipelineResult with the plan and the written files.

    Raises:
        InputValidationError, FetchError, DurationComputationError,
        PlanningError, RenderJobFailure.
    """
    settings = settings or RenderSettings.from_request(request)
    segments = request.to_segments()
    transcript = request.to_transcript()
    ctx.create()

    def status(stage: str) -> None:
        logger.info("Request %s: %s", ctx.request_id, stage)
        if on_status is not None:
            on_status(stage)

    need_audio = not plan_only or audio_duration is None
    if need_audio and not request.has_audio_source:
        raise InputValidationError("Either audio_url or audio_base64 is required.")

    # Fetch
    images = []  # type: List[Path]
    audio_path = None  # type: Optional[Path]
    if need_audio:
        status(STAGE_FETCHING)
        async with MediaFetcher(
            ctx.path("media"),
            max_concurrency=settings.max_fetch_concurrency,
            transport=transport,
            allow_local=allow_local,
        ) as fetcher:
            if plan_only:
                ctx.path("media").mkdir(parents=True, exist_ok=True)
                audio_path = await fetcher.fetch_audio(request.audio_url, request.audio_base64)
            else:
                media = await fetcher.fetch_all(
                    [s.image_ref for s in segments],
                    request.audio_url,
                    request.audio_base64,
                )
                images, audio_path = media.images, media.audio

    # Plan
    status(STAGE_PLANNING)
    if audio_duration is None:
        audio_duration = await asyncio.to_thread(probe_duration, audio_path, ffprobe_bin)
    render_plan = build_plan(segments, transcript, audio_duration, settings, ctx.request_id)

    files = write_outputs(FORMATTERS["plan_report"]().format(render_plan), ctx.work_dir)
    if plan_only:
        return PipelineResult(plan=render_plan, files=files)

    caption_path = None  # type: Optional[Path]
    if settings.captions and render_plan.transcript:
        captions = write_outputs(FORMATTERS["ass_captions"]().format(render_plan), ctx.work_dir)
        files.update(captions)
        caption_path = next(iter(captions.values()))

    jobs, finalize = assemble(render_plan, [str(p) for p in images], str(audio_path),
                              ctx.work_dir, caption_path=caption_path)

    # Render
    executor = JobExecutor(
        ctx,
        max_workers=settings.max_workers,
        ffmpeg_bin=ffmpeg_bin,
        on_progress=on_progress,
    )
    try:
        status(STAGE_RENDERING)
        await asyncio.to_thread(executor.run_batches, jobs)
        status(STAGE_FINALIZING)
        output = await asyncio.to_thread(executor.run_finalize, finalize)
    except asyncio.CancelledError:
        ctx.cancel()
        raise

    files[output.name] = output
    logger.info(
        "Request %s: rendered %.3fs of video to %s",
        ctx.request_id,
        render_plan.audio_duration - finalize.audio_start,
        output,
    )
    return PipelineResult(plan=render_plan, output=output, files=files)


async def plan_request(
    request: RenderRequest,
    ctx: RequestContext,
    audio_duration: Optional[float] = None,
    settings: Optional[RenderSettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    allow_local: bool = False,
    ffprobe_bin: str = FFPROBE_BIN,
) -> RenderPlan:
    """Plan a request without rendering. Returns the RenderPlan."""
    result = await render_request(
        request,
        ctx,
        settings=settings,
        plan_only=True,
        audio_duration=audio_duration,
        transport=transport,
        allow_local=allow_local,
        ffprobe_bin=ffprobe_bin,
    )
    return result.plan
