"""ffmpeg/ffprobe boundary: duration probing and command serialization.

WHY: Filter-graph syntax has its own quoting and escaping rules, and
getting them wrong produces errors far from their cause. Confining every
string that ffmpeg will parse to this module keeps the planning and
assembly layers free of text manipulation.

HOW: probe_duration() asks ffprobe for the container duration.
serialize_graph() renders each typed node as one filter chain
("[in]filter=args[out]") and joins them with ";". build_batch_command()
and build_finalize_command() produce argv lists for subprocess without a
shell, so only filter-level escaping is needed.
write_concat_manifest() writes the ffconcat list for the finalize job.

RULES:
- Numbers are written with at most 6 decimals and no trailing zeros
- Subtitle paths: backslashes become "/", ":" becomes "\\:"
- Batch audio is the [start, start + length) slice of the full track,
  selected with input-side -ss/-t
- The finalize job stream-copies video unless captions are burned in;
  audio is always encoded once (AAC) from the full track
"""

from __future__ import annotations

import logging
import math
import subprocess
from pathlib import Path
from typing import List, Sequence, Union

from slidecast.config import (
    AUDIO_BITRATE,
    AUDIO_CODEC,
    FFMPEG_BIN,
    FFPROBE_BIN,
    OUTPUT_PIXEL_FORMAT,
    VIDEO_CODEC,
    VIDEO_CRF,
    VIDEO_PRESET,
)
from slidecast.core.errors import DurationComputationError
from slidecast.core.ir import Corner, MotionSpec
from slidecast.render.graph import (
    AlphaFormat,
    CaptionOverlay,
    ColorCanvas,
    Composite,
    Motion,
    Node,
    RenderGraph,
    TimeShift,
)
from slidecast.render.jobs import FinalizeJob, RenderJob

logger = logging.getLogger(__name__)

_COMMON_FLAGS = ["-hide_banner", "-nostdin", "-loglevel", "error", "-y"]

# Pan offsets that keep a corner fixed while zooming in.
_ANCHOR_EXPRESSIONS = {
    Corner.BOTTOM_LEFT: ("0*(zoom-1)", "ih-ih/zoom"),
    Corner.TOP_RIGHT: ("iw-iw/zoom", "0"),
}


def format_number(value: float) -> str:
    """Compact decimal text for filter and argv values."""
    if not math.isfinite(value):
        raise ValueError("Cannot serialize non-finite value {!r}".format(value))
    text = "{:.6f}".format(value).rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def escape_filter_path(path: Union[str, Path]) -> str:
    """Escape a file path for use inside a quoted filter argument."""
    return str(path).replace("\\", "/").replace(":", "\\:")


# ---------------------------------------------------------------------------
# Duration probe
# ---------------------------------------------------------------------------


def probe_duration(path: Union[str, Path], ffprobe_bin: str = FFPROBE_BIN) -> float:
    """Return the media duration of path in seconds.

    Raises:
        DurationComputationError: ffprobe cannot be run, exits non-zero, or
            reports something other than a finite positive number.
    """
    command = [
        ffprobe_bin,
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        str(path),
    ]
    logger.debug("Probing duration: %s", command)
    try:
        completed = subprocess.run(command, capture_output=True, text=True, check=False)
    except OSError as exc:
        raise DurationComputationError("Could not run ffprobe", str(exc))

    if completed.returncode != 0:
        raise DurationComputationError(
            "ffprobe exited with code {}".format(completed.returncode),
            completed.stderr.strip() or None,
        )

    raw = completed.stdout.strip()
    try:
        duration = float(raw)
    except ValueError:
        raise DurationComputationError(
            "ffprobe returned an unreadable duration: {!r}".format(raw),
            completed.stderr.strip() or None,
        )
    if not math.isfinite(duration) or duration <= 0:
        raise DurationComputationError(
            "Audio duration must be a finite positive number (got {!r}).".format(duration)
        )
    logger.info("Audio duration: %.3fs", duration)
    return duration


# ---------------------------------------------------------------------------
# Filter graph serialization
# ---------------------------------------------------------------------------


def zoom_expression(spec: MotionSpec) -> str:
    return "if(eq(on,1),{},min(zoom+{},{}))".format(
        format_number(spec.zoom_start),
        format_number(spec.zoom_step),
        format_number(spec.zoom_max),
    )


def serialize_node(node: Node) -> str:
    """One filter chain for a non-source node."""
    if isinstance(node, ColorCanvas):
        return "color={}:s={}x{}:r={}:d={}[{}]".format(
            node.color, node.width, node.height, node.fps,
            format_number(node.duration), node.output,
        )
    if isinstance(node, Motion):
        spec = node.spec
        x, y = _ANCHOR_EXPRESSIONS[spec.anchor]
        return "[{}]zoompan=z='{}':x='{}':y='{}':d={}:s={}x{}:fps={}[{}]".format(
            node.input, zoom_expression(spec), x, y, spec.frames,
            spec.width, spec.height, spec.fps, node.output,
        )
    if isinstance(node, AlphaFormat):
        return "[{}]format=pix_fmts={}[{}]".format(node.input, node.pixel_format, node.output)
    if isinstance(node, TimeShift):
        return "[{}]setpts=PTS-STARTPTS+{}/TB[{}]".format(
            node.input, format_number(node.offset), node.output
        )
    if isinstance(node, Composite):
        suffix = ":format={}".format(node.output_format) if node.output_format else ""
        return "[{}][{}]overlay=shortest=0:x=0:y=0{}[{}]".format(
            node.base, node.layer, suffix, node.output
        )
    if isinstance(node, CaptionOverlay):
        return "[{}]ass='{}'[{}]".format(
            node.input, escape_filter_path(node.subtitle_path), node.output
        )
    raise TypeError("Cannot serialize node of type {}".format(type(node).__name__))


def serialize_graph(graph: RenderGraph) -> str:
    """Render a graph as -filter_complex text."""
    return ";".join(serialize_node(node) for node in graph.filters())


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _video_encoding() -> List[str]:
    return [
        "-c:v", VIDEO_CODEC,
        "-preset", VIDEO_PRESET,
        "-crf", VIDEO_CRF,
        "-pix_fmt", OUTPUT_PIXEL_FORMAT,
    ]


def _audio_encoding() -> List[str]:
    return ["-c:a", AUDIO_CODEC, "-b:a", AUDIO_BITRATE]


def build_batch_command(job: RenderJob, ffmpeg_bin: str = FFMPEG_BIN) -> List[str]:
    """argv rendering one batch to job.output.

    Inputs are the batch's images in layer order followed by the audio
    slice, so the audio stream is input number len(job.layers).
    """
    command = [ffmpeg_bin] + _COMMON_FLAGS
    for source in job.graph.sources():
        command.extend(["-i", source.path])
    command.extend([
        "-ss", format_number(job.audio_start),
        "-t", format_number(job.audio_length),
        "-i", job.audio_path,
    ])
    command.extend(["-filter_complex", serialize_graph(job.graph)])
    command.extend([
        "-map", "[{}]".format(job.graph.output),
        "-map", "{}:a".format(len(job.layers)),
    ])
    command.extend(_video_encoding())
    command.extend(_audio_encoding())
    command.extend([
        "-t", format_number(job.duration),
        "-movflags", "+faststart",
        str(job.output),
    ])
    return command


def build_finalize_command(job: FinalizeJob, ffmpeg_bin: str = FFMPEG_BIN) -> List[str]:
    """argv concatenating the batch artifacts into job.output."""
    command = [ffmpeg_bin] + _COMMON_FLAGS
    command.extend(["-f", "concat", "-safe", "0", "-i", str(job.manifest_path)])
    command.extend([
        "-ss", format_number(job.audio_start),
        "-t", format_number(job.duration),
        "-i", job.audio_path,
    ])
    if job.graph is not None:
        command.extend(["-filter_complex", serialize_graph(job.graph)])
        command.extend(["-map", "[{}]".format(job.graph.output)])
        command.extend(_video_encoding())
    else:
        command.extend(["-map", "0:v", "-c:v", "copy"])
    command.extend(["-map", "1:a"])
    command.extend(_audio_encoding())
    command.extend([
        "-t", format_number(job.duration),
        "-movflags", "+faststart",
        str(job.output),
    ])
    return command


def write_concat_manifest(paths: Sequence[Union[str, Path]], manifest_path: Union[str, Path]) -> Path:
    """Write an ffconcat list with one absolute path per line, in order."""
    if not paths:
        raise ValueError("No video files provided for concatenation")
    manifest = Path(manifest_path)
    with open(manifest, "w", encoding="utf-8") as handle:
        for video_file in paths:
            resolved = str(Path(video_file).resolve()).replace("'", "'\\''")
            handle.write("file '{}'\n".format(resolved))
    return manifest
