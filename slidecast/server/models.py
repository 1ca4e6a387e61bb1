"""Pydantic request/response models for the render request and HTTP API.

WHY: A render request arrives as JSON (HTTP body or a file on the CLI).
Pydantic models enforce field types at runtime, generate the OpenAPI
schema shown at /docs, and convert the payload into the frozen IR types
the planning core consumes.

HOW: RenderRequest mirrors the JSON payload. Field names are snake_case;
the camelCase names used by existing callers (textOnScreen,
durationOnScreen, durationMode, audioInBase64) are accepted as aliases.
to_segments() and to_transcript() turn the payload into IR values,
resolving per-segment defaults. Response models describe jobs, files,
and plans.

RULES:
- All models use Field(description=...) for OpenAPI documentation
- A segment's image is image_url, else images[0].url
- A segment without duration_mode inherits the request-level mode
- Conversion errors raise InputValidationError naming the segment
- Response models never expose filesystem paths
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from slidecast.core.errors import InputValidationError
from slidecast.core.ir import DurationMode, Segment, Word

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class ImageRef(BaseModel):
    """One entry of a segment's images list; only the URL is used."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    url: str = Field(description="Image URL or local path.")


class SegmentIn(BaseModel):
    """One slide of the request.

    RULES:
    - duration_on_screen is only used for fixed placement and for
      dynamic segments whose phrase is not found
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    image_url: Optional[str] = Field(
        default=None,
        description="Image URL or local path. Takes precedence over images.",
    )
    images: Optional[List[ImageRef]] = Field(
        default=None,
        description="Image list; the first entry's url is used.",
    )
    text_on_screen: Optional[str] = Field(
        default=None,
        alias="textOnScreen",
        description="Phrase shown on the slide, located in the transcript for dynamic timing.",
    )
    duration_mode: Optional[DurationMode] = Field(
        default=None,
        alias="durationMode",
        description="'dynamic' or 'fixed'. Defaults to the request-level mode.",
    )
    duration_on_screen: Optional[float] = Field(
        default=None,
        alias="durationOnScreen",
        description="Seconds on screen for fixed placement (default 5.0).",
    )

    def image_ref(self, index: int) -> str:
        if self.image_url:
            return self.image_url
        if self.images and self.images[0].url:
            return self.images[0].url
        raise InputValidationError(
            "Segment {} is missing a valid image URL in image_url or images[0].url".format(index)
        )


class WordIn(BaseModel):
    """One transcript word with timing in seconds."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    word: str = Field(description="The spoken word, shown verbatim in captions.")
    start: float = Field(description="Start time in seconds.")
    end: float = Field(description="End time in seconds.")


class RenderRequest(BaseModel):
    """A complete narrated-slideshow render request.

    RULES:
    - segments must be non-empty
    - Exactly one audio source is used: audio_base64 wins over audio_url
    - width/height/fps/batch_size fall back to configured defaults
    """

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        json_schema_extra={
            "examples": [
                {
                    "segments": [
                        {"image_url": "https://example.com/a.jpg",
                         "text_on_screen": "hello world", "duration_mode": "dynamic"},
                        {"images": [{"url": "https://example.com/b.jpg"}],
                         "duration_on_screen": 3},
                    ],
                    "transcript": [
                        {"word": "Hello", "start": 0.0, "end": 0.5},
                        {"word": "world.", "start": 0.5, "end": 1.0},
                    ],
                    "audio_url": "https://example.com/narration.mp3",
                    "batch_size": 5,
                    "captions": True,
                }
            ]
        },
    )

    segments: List[SegmentIn] = Field(
        min_length=1,
        description="Slides in display order.",
    )
    transcript: List[WordIn] = Field(
        default_factory=list,
        description="Word-level transcript of the narration, ordered by time.",
    )
    duration_mode: DurationMode = Field(
        default=DurationMode.FIXED,
        alias="durationMode",
        description="Default duration mode for segments that do not set one.",
    )
    audio_url: Optional[str] = Field(
        default=None,
        description="Narration audio URL or local path.",
    )
    audio_base64: Optional[str] = Field(
        default=None,
        alias="audioInBase64",
        description="Narration audio as base64 (alternative to audio_url).",
    )
    width: Optional[int] = Field(default=None, gt=0, description="Output width in pixels.")
    height: Optional[int] = Field(default=None, gt=0, description="Output height in pixels.")
    fps: Optional[int] = Field(default=None, gt=0, description="Output frame rate.")
    batch_size: Optional[int] = Field(
        default=None,
        gt=0,
        description="Maximum slides rendered per intermediate batch.",
    )
    captions: bool = Field(default=True, description="Burn word-by-word captions into the video.")

    @property
    def has_audio_source(self) -> bool:
        return bool(self.audio_base64 or self.audio_url)

    def to_segments(self) -> List[Segment]:
        """Convert to IR segments, resolving images and duration modes."""
        result = []  # type: List[Segment]
        for index, seg in enumerate(self.segments):
            result.append(Segment(
                index=index,
                image_ref=seg.image_ref(index),
                on_screen_text=seg.text_on_screen,
                duration_mode=seg.duration_mode or self.duration_mode,
                explicit_duration=seg.duration_on_screen,
            ))
        return result

    def to_transcript(self) -> List[Word]:
        return [Word(text=w.word, start=w.start, end=w.end) for w in self.transcript]


class PlanRequest(RenderRequest):
    """A render request planned without rendering.

    RULES:
    - audio_duration, when given, replaces fetching and probing the audio
    """

    audio_duration: Optional[float] = Field(
        default=None,
        gt=0,
        description="Audio length in seconds. When omitted, the audio is fetched and probed.",
    )


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class JobResponse(BaseModel):
    """Render job status response.

    RULES:
    - error/error_details are only set when status is 'failed'
    - output_files is only populated when status is 'completed'
    """

    id: str = Field(description="Unique job identifier (UUID hex).")
    status: str = Field(description="Current job status.")
    created_at: float = Field(description="Job creation timestamp (Unix epoch seconds).")
    updated_at: float = Field(description="Last status change (Unix epoch seconds).")
    config: Dict[str, Any] = Field(description="Render settings used for this job.")
    progress: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Progress info, e.g. {'stage': 'batch', 'done': 2, 'total': 4}.",
    )
    error: Optional[str] = Field(
        default=None,
        description="Error message, only present when status is 'failed'.",
    )
    error_details: Optional[str] = Field(
        default=None,
        description="Extra error context such as the tail of ffmpeg's stderr.",
    )
    output_files: Optional[List[str]] = Field(
        default=None,
        description="Output filenames, only present when status is 'completed'.",
    )

    model_config = {"json_schema_extra": {
        "examples": [
            {
                "id": "550e8400e29b41d4a716446655440000",
                "status": "rendering",
                "created_at": 1739959200.0,
                "updated_at": 1739959212.5,
                "config": {"segments": 12, "batch_size": 5, "captions": True},
                "progress": {"stage": "batch", "done": 1, "total": 3},
                "error": None,
                "error_details": None,
                "output_files": None,
            }
        ]
    }}


class JobCreatedResponse(BaseModel):
    """Response returned when a render job is submitted."""

    id: str = Field(description="Unique job identifier for polling status.")
    status: str = Field(description="Initial job status (always 'pending').")
    segments: int = Field(description="Number of segments accepted.")


class FileInfo(BaseModel):
    """Metadata for a single output file."""

    filename: str = Field(description="Output filename.")
    media_type: str = Field(description="MIME type of the file content.")
    size: int = Field(description="File size in bytes.")


class FileListResponse(BaseModel):
    """List of output files for a completed job."""

    job_id: str = Field(description="The job ID these files belong to.")
    files: List[FileInfo] = Field(description="Available output files.")


class PlanResponse(BaseModel):
    """The planned timeline and batch layout (same shape as plan.json)."""

    version: str = Field(description="Slidecast version that produced the plan.")
    request_id: str = Field(description="Identifier of the planning request.")
    audio_duration: float = Field(description="Audio length in seconds.")
    resolution: Dict[str, int] = Field(description="Output width and height.")
    fps: int = Field(description="Output frame rate.")
    segments: List[Dict[str, Any]] = Field(description="Timed segments in display order.")
    batches: List[Dict[str, Any]] = Field(description="Render batches in timeline order.")
    notes: List[str] = Field(default_factory=list, description="Planning remarks.")


class ErrorResponse(BaseModel):
    """Standard error response body."""

    detail: str = Field(description="Human-readable error description.")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service health status.", json_schema_extra={"example": "ok"})
    version: str = Field(description="API version string.", json_schema_extra={"example": "0.1.0"})
    ffmpeg: bool = Field(description="Whether the ffmpeg binary was found on PATH.")
