"""FastAPI application exposing render jobs and synchronous planning.

WHY: Workflow tools (n8n, scripts, other services) need an HTTP API to
submit narrated-slideshow requests, poll for progress, and download the
rendered video. FastAPI provides request validation from the pydantic
models, OpenAPI documentation, and background task support.

HOW: POST /videos validates the request, creates a job, and runs the
full pipeline in the background. The job's RequestContext work dir
holds every output. DELETE /videos/{id} cancels the context, which kills
running ffmpeg processes, and removes the files. POST /plans runs only
the planning stages and returns the plan synchronously.

RULES:
- All endpoints have OpenAPI descriptions on every parameter and response
- Error responses use a consistent ErrorResponse schema
- Background rendering uses FastAPI BackgroundTasks
- The job store is a module-level singleton
- After a successful render only output.mp4, plan.json, and
  subtitles.ass are kept; intermediates are removed
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict, NoReturn

from fastapi import BackgroundTasks, FastAPI, HTTPException
from fastapi.responses import FileResponse, Response

from slidecast import __version__
from slidecast.config import (
    API_HOST,
    API_PORT,
    CLEANUP_INTERVAL_S,
    FFMPEG_BIN,
    JOB_TTL_S,
    MAX_ACTIVE_JOBS,
)
from slidecast.core.context import RequestContext, request_context
from slidecast.core.errors import (
    DurationComputationError,
    FetchError,
    InputValidationError,
    PlanningError,
    SlidecastError,
)
from slidecast.fetch.client import require_remote
from slidecast.formatters.plan_report import plan_to_dict
from slidecast.pipeline import RenderSettings, plan_request, render_request
from slidecast.server.jobs import Job, JobLimitError, JobStatus, JobStore
from slidecast.server.models import (
    ErrorResponse,
    FileInfo,
    FileListResponse,
    HealthResponse,
    JobCreatedResponse,
    JobResponse,
    PlanRequest,
    PlanResponse,
    RenderRequest,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# App and store setup
# ---------------------------------------------------------------------------

job_store = JobStore(ttl_seconds=JOB_TTL_S, max_active_jobs=MAX_ACTIVE_JOBS)


async def _expire_jobs_forever(interval: float = CLEANUP_INTERVAL_S) -> None:
    while True:
        await asyncio.sleep(interval)
        job_store.cleanup_expired()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start periodic cleanup on startup; on shutdown stop it and kill renders."""
    task = asyncio.create_task(_expire_jobs_forever())
    yield
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    job_store.cancel_all()


app = FastAPI(
    lifespan=lifespan,
    title="Slidecast API",
    description=(
        "REST API that renders narrated slideshows: images are placed on a "
        "timeline synchronized to a word-level transcript, animated with a "
        "slow corner-anchored zoom, and captioned word by word. Submit a "
        "request, poll for status, and download the video."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_ERROR_STATUS = {
    InputValidationError: 422,
    DurationComputationError: 422,
    PlanningError: 422,
    FetchError: 502,
}  # type: Dict[type, int]


def _raise_http(exc: SlidecastError) -> NoReturn:
    status_code = 500
    for error_type, code in _ERROR_STATUS.items():
        if isinstance(exc, error_type):
            status_code = code
            break
    detail = exc.message
    if exc.details:
        detail = "{} ({})".format(exc.message, exc.details)
    raise HTTPException(status_code=status_code, detail=detail)


def _job_to_response(job: Job) -> JobResponse:
    """Convert an internal Job dataclass to a JobResponse Pydantic model."""
    return JobResponse(
        id=job.id,
        status=job.status.value,
        created_at=job.created_at,
        updated_at=job.updated_at,
        config=job.config,
        progress=job.progress,
        error=job.error,
        error_details=job.error_details,
        output_files=job.output_files if job.output_files else None,
    )


def _get_job_or_404(job_id: str) -> Job:
    job = job_store.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found: {}".format(job_id))
    return job


def _require_completed(job: Job) -> None:
    if job.status != JobStatus.COMPLETED:
        raise HTTPException(
            status_code=409,
            detail="Job is not completed (current status: {}).".format(job.status.value),
        )


_MEDIA_TYPES = {
    ".mp4": "video/mp4",
    ".json": "application/json",
    ".ass": "text/x-ssa",
}


def _media_type(filename: str) -> str:
    return _MEDIA_TYPES.get(Path(filename).suffix.lower(), "application/octet-stream")


def _output_file(job: Job, filename: str) -> Path:
    """Resolve a downloadable file of a completed job.

    RULES:
    - filename must be a bare name (400 otherwise)
    - only names listed in job.output_files are served (404 otherwise)
    """
    if Path(filename).name != filename or filename.startswith(".."):
        raise HTTPException(status_code=400, detail="Invalid filename")
    _require_completed(job)
    path = job.output_dir / filename
    if filename not in job.output_files or not path.is_file():
        raise HTTPException(
            status_code=404,
            detail="File '{}' is not an output of job {}.".format(filename, job.id),
        )
    return path


def _prune_intermediates(ctx: RequestContext, keep: Dict[str, Path]) -> None:
    """Remove everything in the work dir except the listed outputs.

    A failed render passes an empty keep, so nothing outlives the failure.
    """
    if not ctx.work_dir.is_dir():
        return
    kept = set(keep)
    for entry in ctx.work_dir.iterdir():
        if entry.name in kept:
            continue
        try:
            if entry.is_dir():
                shutil.rmtree(entry)
            else:
                entry.unlink()
        except OSError:
            logger.warning("Failed to remove intermediate file: %s", entry)


async def _run_render_pipeline(job_id: str, store: JobStore) -> None:
    """Render a stored job, updating its status at every stage."""
    job = store.get_job(job_id)
    if job is None:
        return

    def on_status(stage: str) -> None:
        store.update_job(job_id, status=JobStatus(stage))

    def on_progress(stage: str, done: int, total: int) -> None:
        store.update_job(job_id, progress={"stage": stage, "done": done, "total": total})

    settings = RenderSettings(**job.config["settings"])
    try:
        result = await render_request(
            job.payload,
            job.ctx,
            settings=settings,
            on_status=on_status,
            on_progress=on_progress,
        )
    except BaseException:
        job.ctx.kill_processes()
        _prune_intermediates(job.ctx, {})
        raise

    _prune_intermediates(job.ctx, result.files)
    store.update_job(
        job_id,
        status=JobStatus.COMPLETED,
        output_files=sorted(result.files),
    )


def _run_render_sync(job_id: str, store: JobStore) -> None:
    """Synchronous wrapper for the async render pipeline.

    FastAPI BackgroundTasks run synchronous callables in a worker thread,
    so the pipeline gets its own event loop via asyncio.run().
    """
    asyncio.run(_run_render_pipeline(job_id, store))


# ---------------------------------------------------------------------------
# Endpoints: Videos
# ---------------------------------------------------------------------------


@app.post(
    "/videos",
    response_model=JobCreatedResponse,
    status_code=201,
    tags=["videos"],
    summary="Submit a render job",
    description=(
        "Submit segments, a word-level transcript, and an audio source. "
        "Returns a job ID immediately; rendering runs in the background. "
        "Poll GET /videos/{id} for status updates."
    ),
    responses={
        422: {"model": ErrorResponse, "description": "Invalid request"},
        429: {"model": ErrorResponse, "description": "Too many concurrent jobs"},
    },
)
async def create_video(
    request: RenderRequest,
    background_tasks: BackgroundTasks,
) -> JobCreatedResponse:
    try:
        segments = request.to_segments()
        if not request.has_audio_source:
            raise InputValidationError("Either audio_url or audio_base64 is required.")
        require_remote([s.image_ref for s in segments] + [request.audio_url])
    except SlidecastError as exc:
        _raise_http(exc)

    settings = RenderSettings.from_request(request)
    config = {
        "segments": len(segments),
        "transcript_words": len(request.transcript),
        "settings": settings.to_dict(),
    }

    try:
        job = job_store.create_job(config=config, payload=request)
    except JobLimitError as exc:
        raise HTTPException(status_code=429, detail=str(exc))

    background_tasks.add_task(job_store.run_in_background, job.id, _run_render_sync)

    return JobCreatedResponse(
        id=job.id,
        status=job.status.value,
        segments=len(segments),
    )


@app.get(
    "/videos/{job_id}",
    response_model=JobResponse,
    tags=["videos"],
    summary="Get render job status",
    description=(
        "Poll this endpoint to track a render job. Returns the current "
        "stage, batch progress, errors, and output files when complete."
    ),
    responses={
        404: {"model": ErrorResponse, "description": "Job not found"},
    },
)
async def get_video(job_id: str) -> JobResponse:
    return _job_to_response(_get_job_or_404(job_id))


@app.get(
    "/videos/{job_id}/files",
    response_model=FileListResponse,
    tags=["videos"],
    summary="List output files for a completed job",
    description=(
        "Returns metadata for the files produced by a completed render job: "
        "the video, the plan report, and the caption track when captions "
        "were requested."
    ),
    responses={
        404: {"model": ErrorResponse, "description": "Job not found"},
        409: {"model": ErrorResponse, "description": "Job not yet completed"},
    },
)
async def list_video_files(job_id: str) -> FileListResponse:
    job = _get_job_or_404(job_id)
    _require_completed(job)
    present = [job.output_dir / name for name in job.output_files]
    return FileListResponse(
        job_id=job.id,
        files=[
            FileInfo(filename=path.name, media_type=_media_type(path.name), size=path.stat().st_size)
            for path in present
            if path.is_file()
        ],
    )


@app.get(
    "/videos/{job_id}/files/{filename}",
    tags=["videos"],
    summary="Download a single output file",
    description=(
        "Download one output file of a completed render job. The filename "
        "must match one of the job's output_files."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "Invalid filename"},
        404: {"model": ErrorResponse, "description": "Job or file not found"},
        409: {"model": ErrorResponse, "description": "Job not yet completed"},
    },
)
async def download_video_file(job_id: str, filename: str) -> FileResponse:
    path = _output_file(_get_job_or_404(job_id), filename)
    return FileResponse(path=path, media_type=_media_type(filename), filename=filename)


@app.delete(
    "/videos/{job_id}",
    status_code=204,
    tags=["videos"],
    summary="Cancel or delete a render job",
    description=(
        "Delete a render job and all its files. A running render is "
        "cancelled first: its ffmpeg processes are killed."
    ),
    responses={
        404: {"model": ErrorResponse, "description": "Job not found"},
    },
)
async def delete_video(job_id: str) -> Response:
    if not job_store.delete_job(job_id):
        raise HTTPException(status_code=404, detail="Job not found: {}".format(job_id))
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Endpoints: Plans
# ---------------------------------------------------------------------------


@app.post(
    "/plans",
    response_model=PlanResponse,
    tags=["plans"],
    summary="Plan a request without rendering",
    description=(
        "Compute the timeline and render batches for a request and return "
        "them immediately. With audio_duration set nothing is downloaded; "
        "otherwise only the audio is fetched and probed."
    ),
    responses={
        422: {"model": ErrorResponse, "description": "Invalid request or audio"},
        502: {"model": ErrorResponse, "description": "Audio could not be fetched"},
    },
)
async def create_plan(request: PlanRequest) -> PlanResponse:
    try:
        require_remote([s.image_ref for s in request.to_segments()] + [request.audio_url])
        with request_context(root=job_store.root) as ctx:
            plan = await plan_request(request, ctx, audio_duration=request.audio_duration)
    except SlidecastError as exc:
        _raise_http(exc)
    return PlanResponse(**plan_to_dict(plan))


# ---------------------------------------------------------------------------
# Endpoints: Health
# ---------------------------------------------------------------------------


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["health"],
    summary="Health check",
    description="Liveness check; also reports whether ffmpeg is installed.",
)
async def health_check() -> HealthResponse:
    return HealthResponse(
        status="ok",
        version=__version__,
        ffmpeg=shutil.which(FFMPEG_BIN) is not None,
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def run_api():
    """Entry point for the slidecast-api console script."""
    import uvicorn
    uvicorn.run(app, host=API_HOST, port=API_PORT)
