"""Chunk planning: split the timeline into bounded render batches.

WHY: Rendering every slide in one ffmpeg filter graph scales badly: the
graph grows with the slide count and a single failure loses all work.
Rendering bounded groups of slides as independent intermediate files
keeps each graph small and lets batches run concurrently. For the
concatenated result to stay in sync with the narration, the batches'
time windows must tile the timeline exactly.

HOW: The ordered TimedSegment list is cut into contiguous groups of at
most batch_size. Each batch's window starts at its first segment's
display start and ends where the next batch's first segment begins (or
at the audio end for the final batch), so silence between batches stays
with the earlier batch. Clamps keep the window from truncating the
batch's own last visual and from collapsing below the minimum duration.

RULES:
- Groups are contiguous, in original order, no rebalancing
- global_start = first segment's display_start
- global_end = next segment's display_start, or audio_duration for the
  final batch; then clamped up to the last segment's display_end, up to
  global_start + MIN_VISUAL_DURATION_S, and down to audio_duration
- video_duration = max(MIN_VISUAL_DURATION_S, global_end - global_start);
  a non-finite or non-positive value raises PlanningError
- Local offset of a segment = max(0, display_start - batch.global_start)
- Motion anchor alternates by ORIGINAL index parity: even segments hold
  the bottom-left corner, odd segments the top-right corner
"""

from __future__ import annotations

import logging
import math
from typing import List, Sequence

from slidecast.config import (
    DEFAULT_FPS,
    DEFAULT_HEIGHT,
    DEFAULT_WIDTH,
    MIN_VISUAL_DURATION_S,
    ZOOM_MAX,
    ZOOM_START,
    ZOOM_STEP,
)
from slidecast.core.errors import InputValidationError, PlanningError
from slidecast.core.ir import Batch, Corner, MotionSpec, TimedSegment

logger = logging.getLogger(__name__)


def plan(
    timed_segments: Sequence[TimedSegment],
    audio_duration: float,
    batch_size: int,
    min_visual_duration: float = MIN_VISUAL_DURATION_S,
) -> List[Batch]:
    """Partition the timeline into batches of at most batch_size segments.

    Args:
        timed_segments: Scheduler output, ordered by index.
        audio_duration: Total audio length in seconds.
        batch_size: Maximum segments per batch (K).
        min_visual_duration: Shortest allowed batch window.

    Returns:
        Batches in timeline order.

    Raises:
        InputValidationError: batch_size < 1 or no segments.
        PlanningError: a batch window is not finite and positive.
    """
    if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size < 1:
        raise InputValidationError(
            "Batch size must be a positive integer (got {!r}).".format(batch_size)
        )
    if not timed_segments:
        raise InputValidationError("Cannot plan an empty timeline.")

    count = len(timed_segments)
    batches = []  # type: List[Batch]

    for number, first in enumerate(range(0, count, batch_size)):
        last = min(first + batch_size, count) - 1
        global_start = timed_segments[first].display_start

        if last + 1 < count:
            global_end = timed_segments[last + 1].display_start
        else:
            global_end = audio_duration

        global_end = max(global_end, timed_segments[last].display_end)
        global_end = max(global_end, global_start + min_visual_duration)
        global_end = min(global_end, audio_duration)

        video_duration = max(min_visual_duration, global_end - global_start)
        if not math.isfinite(video_duration) or video_duration <= 0:
            raise PlanningError(
                "Batch {} has an invalid duration ({!r}) for window {!r}-{!r}.".format(
                    number, video_duration, global_start, global_end
                )
            )

        batches.append(Batch(
            number=number,
            first_index=first,
            last_index=last,
            global_start=global_start,
            global_end=global_end,
            video_duration=video_duration,
        ))
        logger.debug(
            "Batch %d: segments %d-%d, window %.3f-%.3f (%.3fs)",
            number, first, last, global_start, global_end, video_duration,
        )

    logger.info("Planned %d batch(es) of up to %d segment(s)", len(batches), batch_size)
    return batches


def check_tiling(
    batches: Sequence[Batch],
    timed_segments: Sequence[TimedSegment],
    audio_duration: float,
) -> None:
    """Raise PlanningError unless the batch windows tile the timeline exactly.

    RULES:
    - batches[0].global_start == timed_segments[0].display_start
    - batches[k].global_end == batches[k + 1].global_start
    - batches[-1].global_end == audio_duration
    """
    if not batches:
        raise PlanningError("No batches were planned.")
    if batches[0].global_start != timed_segments[0].display_start:
        raise PlanningError(
            "First batch starts at {!r}, timeline starts at {!r}.".format(
                batches[0].global_start, timed_segments[0].display_start
            )
        )
    for previous, current in zip(batches, batches[1:]):
        if previous.global_end != current.global_start:
            raise PlanningError(
                "Batch {} ends at {!r} but batch {} starts at {!r}.".format(
                    previous.number, previous.global_end,
                    current.number, current.global_start,
                )
            )
    if batches[-1].global_end != audio_duration:
        raise PlanningError(
            "Last batch ends at {!r}, audio ends at {!r}.".format(
                batches[-1].global_end, audio_duration
            )
        )


def local_offset(segment: TimedSegment, batch: Batch) -> float:
    """Seconds from the batch's start to the segment's reveal."""
    return max(0.0, segment.display_start - batch.global_start)


def anchor_corner(index: int) -> Corner:
    """Corner for a segment by original index parity."""
    return Corner.BOTTOM_LEFT if index % 2 == 0 else Corner.TOP_RIGHT


def motion_spec(
    segment: TimedSegment,
    fps: int = DEFAULT_FPS,
    width: int = DEFAULT_WIDTH,
    height: int = DEFAULT_HEIGHT,
    min_visual_duration: float = MIN_VISUAL_DURATION_S,
) -> MotionSpec:
    """Pan/zoom parameters for one segment.

    The zoom runs for the segment's speech duration, so narration pace
    sets motion pace; the image then holds its final framing for the rest
    of its visual duration.
    """
    seconds = max(min_visual_duration, segment.speech_duration)
    return MotionSpec(
        anchor=anchor_corner(segment.index),
        frames=int(math.ceil(seconds * fps)),
        fps=fps,
        width=width,
        height=height,
        zoom_start=ZOOM_START,
        zoom_step=ZOOM_STEP,
        zoom_max=ZOOM_MAX,
    )
