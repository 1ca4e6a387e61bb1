"""Typed failures for every stage of a render request.

WHY: Only an alignment miss is a recoverable degradation. Every other
failure aborts the whole request, and callers (CLI, HTTP API) need to
tell the kinds apart to pick an exit code or status and to report a
structured, human-readable error.

HOW: A single SlidecastError base carries a message and optional details
(for example the failing job's ffmpeg stderr). Subclasses name the stage
that failed.

RULES:
- Alignment misses are NOT exceptions: the aligner returns None
- ResourceCleanupError is constructed for logging only, never raised
  out of a cleanup path
- to_dict() is the wire format for error responses
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class SlidecastError(Exception):
    """Base class for fatal request failures."""

    def __init__(self, message: str, details: Optional[str] = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.message}  # type: Dict[str, Any]
        if self.details:
            body["details"] = self.details
        return body


class InputValidationError(SlidecastError, ValueError):
    """Malformed or missing segments, transcript, audio source, or settings."""


class DurationComputationError(SlidecastError):
    """Audio duration is missing, non-positive, NaN, or could not be probed."""


class PlanningError(SlidecastError):
    """The timeline produced a batch window that is not finite and positive."""


class FetchError(SlidecastError):
    """A required image or the audio track could not be retrieved."""


class RenderJobFailure(SlidecastError):
    """A batch or finalize job failed, or the request was cancelled mid-render.

    RULES:
    - job_name identifies the failing job ("batch_000", "finalize", ...)
    - details holds the tail of the process's stderr when available
    """

    def __init__(
        self,
        job_name: str,
        message: str,
        details: Optional[str] = None,
    ) -> None:
        self.job_name = job_name
        super().__init__("{}: {}".format(job_name, message), details)


class ResourceCleanupError(SlidecastError):
    """Temporary state could not be removed (best-effort, logged only)."""
