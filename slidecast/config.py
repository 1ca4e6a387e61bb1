"""Configuration constants, render defaults, and .env loading.

WHY: The scheduler, planner, executor, and outer surfaces all share the
same tunables (minimum visual duration, default resolution, batch size,
worker bounds). Keeping them in one module makes them easy to find and
override without touching logic.

HOW: python-dotenv loads the .env file on import. Timeline constants are
plain module-level values. Deployment-specific values (resolution, fps,
pool sizes, binaries, working root) read from the environment with sane
defaults through positive_int_setting().

RULES:
- Timeline constants (minimum visual duration, default fixed duration)
  are NOT overridable: they define the scheduling contract
- Pool sizes and batch size must be positive integers
- WORK_ROOT is the common namespace under which each request gets its
  own uniquely named directory
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root (where the script is run from)
load_dotenv()


def positive_int_setting(name: str, default: int) -> int:
    """Read a positive integer from the environment.

    WHY: Pool sizes and batch sizes of zero or less would deadlock the
    executor or produce an empty plan. Failing at startup with a clear
    message is better than a confusing failure mid-render.

    RULES:
    - Missing or blank variable returns the default
    - Non-integer or non-positive values raise ValueError naming the variable
    """
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(
            "{} must be an integer (got {!r}).".format(name, raw)
        )
    if value <= 0:
        raise ValueError("{} must be positive (got {}).".format(name, value))
    return value


# ---------------------------------------------------------------------------
# Timeline contract
# ---------------------------------------------------------------------------

MIN_VISUAL_DURATION_S = 0.1
"""Shortest time any segment may stay on screen."""

DEFAULT_FIXED_DURATION_S = 5.0
"""Duration used for fixed segments without an explicit duration and for
dynamic segments whose phrase could not be aligned."""

# ---------------------------------------------------------------------------
# Motion (Ken Burns style pan/zoom)
# ---------------------------------------------------------------------------

ZOOM_START = 1.0
ZOOM_STEP = 0.0010
ZOOM_MAX = 1.5

# ---------------------------------------------------------------------------
# Output defaults
# ---------------------------------------------------------------------------

DEFAULT_WIDTH = positive_int_setting("SLIDECAST_WIDTH", 1920)
DEFAULT_HEIGHT = positive_int_setting("SLIDECAST_HEIGHT", 1080)
DEFAULT_FPS = positive_int_setting("SLIDECAST_FPS", 60)
DEFAULT_BATCH_SIZE = positive_int_setting("SLIDECAST_BATCH_SIZE", 5)

BACKGROUND_COLOR = "black"
VIDEO_CODEC = "libx264"
VIDEO_PRESET = "fast"
VIDEO_CRF = "23"
OUTPUT_PIXEL_FORMAT = "yuv420p"
LAYER_PIXEL_FORMAT = "yuva420p"
AUDIO_CODEC = "aac"
AUDIO_BITRATE = "128k"

# ---------------------------------------------------------------------------
# Concurrency and I/O
# ---------------------------------------------------------------------------

DEFAULT_MAX_WORKERS = positive_int_setting("SLIDECAST_MAX_WORKERS", 2)
DEFAULT_MAX_FETCH_CONCURRENCY = positive_int_setting(
    "SLIDECAST_MAX_FETCH_CONCURRENCY", 8
)
FETCH_TIMEOUT_S = float(positive_int_setting("SLIDECAST_FETCH_TIMEOUT", 30))

WORK_ROOT = Path(
    os.getenv("SLIDECAST_WORK_ROOT", "").strip()
    or os.path.join(tempfile.gettempdir(), "slidecast")
)

FFMPEG_BIN = os.getenv("SLIDECAST_FFMPEG", "ffmpeg")
FFPROBE_BIN = os.getenv("SLIDECAST_FFPROBE", "ffprobe")

# Lines of ffmpeg stderr kept for error reports
STDERR_TAIL_LINES = 40

# ---------------------------------------------------------------------------
# HTTP API
# ---------------------------------------------------------------------------

API_HOST = os.getenv("SLIDECAST_API_HOST", "0.0.0.0")
API_PORT = positive_int_setting("SLIDECAST_API_PORT", 8000)
JOB_TTL_S = positive_int_setting("SLIDECAST_JOB_TTL", 3600)
MAX_ACTIVE_JOBS = positive_int_setting("SLIDECAST_MAX_ACTIVE_JOBS", 8)
CLEANUP_INTERVAL_S = 300
