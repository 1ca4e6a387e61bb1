"""Two-pass timeline scheduling: speech anchors, then sequential placement.

WHY: Each slide should appear while its text is being spoken, yet slides
must never overlap, must stay on screen for a minimum time, and the last
slide must end exactly when the audio ends. Those constraints interact,
so scheduling is split into two independent pure passes that can each be
tested on their own.

HOW:
  Pass 1 (compute_speech_anchors): per segment, order-insensitive.
    Dynamic segments with a phrase are aligned against the transcript.
    Anything else (fixed mode, no phrase, alignment miss) becomes a
    fallback carrying a fixed duration.
  Pass 2 (place_segments): strictly sequential with a single cursor.
    Aligned segments start at max(cursor, aligned start); fallbacks start
    at the cursor. Durations are clamped to the minimum, the last segment
    is clamped/stretched to the audio duration, and the cursor advances to
    each segment's display end. The cursor never moves backwards, so gaps
    in speech are preserved rather than compressed.

RULES:
- schedule() rejects an audio duration that is not a finite positive number
- Fallback duration: explicit duration when it is a non-zero finite
  number, else DEFAULT_FIXED_DURATION_S
- effective_visual_duration >= MIN_VISUAL_DURATION_S for every segment
- The final segment's display_end equals audio_duration exactly
- On the final segment, a fallback's speech_duration is overwritten with
  its effective_visual_duration; an aligned segment keeps its speech window
- A speech_duration that is not positive is replaced by MIN_VISUAL_DURATION_S
"""

from __future__ import annotations

import logging
import math
from typing import List, Sequence

from slidecast.config import DEFAULT_FIXED_DURATION_S, MIN_VISUAL_DURATION_S
from slidecast.core.aligner import align
from slidecast.core.errors import DurationComputationError, InputValidationError
from slidecast.core.ir import DurationMode, Segment, SpeechAnchor, TimedSegment, Word

logger = logging.getLogger(__name__)


def validate_audio_duration(audio_duration: object) -> float:
    """Return audio_duration as a float, or raise DurationComputationError.

    RULES:
    - bool, None, strings and other non-numbers are rejected
    - NaN, infinities, zero and negatives are rejected
    """
    if isinstance(audio_duration, bool) or not isinstance(audio_duration, (int, float)):
        raise DurationComputationError(
            "Audio duration is missing or not a number: {!r}".format(audio_duration)
        )
    value = float(audio_duration)
    if not math.isfinite(value) or value <= 0:
        raise DurationComputationError(
            "Audio duration must be a finite positive number (got {!r}).".format(value)
        )
    return value


def fallback_duration_for(
    segment: Segment,
    default_duration: float = DEFAULT_FIXED_DURATION_S,
) -> float:
    """Duration used when a segment is placed without speech alignment.

    A missing, zero, or non-finite explicit duration falls back to the
    default. Negative values are kept; placement clamps them up to the
    minimum visual duration.
    """
    explicit = segment.explicit_duration
    if explicit is None or not math.isfinite(explicit) or explicit == 0:
        return default_duration
    return float(explicit)


def compute_speech_anchors(
    segments: Sequence[Segment],
    transcript: Sequence[Word],
    default_duration: float = DEFAULT_FIXED_DURATION_S,
) -> List[SpeechAnchor]:
    """Pass 1: resolve each segment's speech window or fallback duration.

    Args:
        segments: Input segments in request order.
        transcript: Time-ordered words.
        default_duration: Fallback duration for segments without one.

    Returns:
        One SpeechAnchor per segment, in the same order.
    """
    anchors = []  # type: List[SpeechAnchor]
    for segment in segments:
        result = None
        if segment.duration_mode == DurationMode.DYNAMIC and segment.on_screen_text:
            result = align(transcript, segment.on_screen_text)
            if result is None:
                logger.warning(
                    "Segment %d: phrase not found, falling back to fixed placement",
                    segment.index,
                )

        if result is not None:
            logger.debug(
                "Segment %d: aligned to %.3f-%.3f",
                segment.index,
                result.start_time,
                result.end_time,
            )
            anchors.append(SpeechAnchor(
                aligned=True,
                start_time=result.start_time,
                end_time=result.end_time,
                speech_duration=result.duration,
            ))
        else:
            anchors.append(SpeechAnchor(
                aligned=False,
                fallback_duration=fallback_duration_for(segment, default_duration),
            ))
    return anchors


def place_segments(
    segments: Sequence[Segment],
    anchors: Sequence[SpeechAnchor],
    audio_duration: float,
    min_visual_duration: float = MIN_VISUAL_DURATION_S,
) -> List[TimedSegment]:
    """Pass 2: place segments on the display timeline with a single cursor.

    Args:
        segments: Input segments in request order.
        anchors: Pass-1 output, parallel to segments.
        audio_duration: Validated total audio length in seconds.
        min_visual_duration: Shortest on-screen time for any segment.

    Returns:
        One TimedSegment per segment, in the same order.
    """
    if len(segments) != len(anchors):
        raise InputValidationError(
            "Got {} speech anchors for {} segments.".format(len(anchors), len(segments))
        )

    timed = []  # type: List[TimedSegment]
    video_time = 0.0
    last = len(segments) - 1

    for position, (segment, anchor) in enumerate(zip(segments, anchors)):
        if anchor.aligned:
            display_start = max(video_time, anchor.start_time)
            display_end = max(display_start + min_visual_duration, anchor.end_time)
            speech_duration = anchor.speech_duration
        else:
            display_start = video_time
            display_end = video_time + anchor.fallback_duration
            speech_duration = anchor.fallback_duration

        effective = max(min_visual_duration, display_end - display_start)
        display_end = display_start + effective

        if position == last:
            display_end = min(display_end, audio_duration)
            if display_end < audio_duration:
                logger.info(
                    "Stretching last segment end from %.3f to %.3f",
                    display_end,
                    audio_duration,
                )
                display_end = audio_duration
            if display_start > audio_duration:
                logger.warning(
                    "Segment %d starts at %.3f, after the audio ends (%.3f)",
                    segment.index,
                    display_start,
                    audio_duration,
                )
            effective = max(min_visual_duration, display_end - display_start)
            if not anchor.aligned:
                speech_duration = effective

        timed.append(TimedSegment(
            index=segment.index,
            display_start=display_start,
            display_end=display_end,
            effective_visual_duration=effective,
            speech_duration=speech_duration if speech_duration > 0 else min_visual_duration,
            aligned=anchor.aligned,
        ))
        video_time = display_end

    return timed


def schedule(
    segments: Sequence[Segment],
    transcript: Sequence[Word],
    audio_duration: object,
    min_visual_duration: float = MIN_VISUAL_DURATION_S,
    default_duration: float = DEFAULT_FIXED_DURATION_S,
) -> List[TimedSegment]:
    """Compute the display timeline for a request.

    Raises:
        DurationComputationError: audio_duration is not finite and positive.
        InputValidationError: there are no segments to place.
    """
    duration = validate_audio_duration(audio_duration)
    if not segments:
        raise InputValidationError("At least one segment is required.")

    anchors = compute_speech_anchors(segments, transcript, default_duration)
    timed = place_segments(segments, anchors, duration, min_visual_duration)

    aligned_count = sum(1 for a in anchors if a.aligned)
    logger.info(
        "Scheduled %d segment(s) over %.3fs (%d aligned, %d fallback)",
        len(timed),
        duration,
        aligned_count,
        len(timed) - aligned_count,
    )
    return timed
