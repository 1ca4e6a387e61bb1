"""Intermediate representation dataclasses for slideshow render planning.

WHY: A narrated slideshow request flows through several stages (align,
schedule, plan, assemble, caption). Each stage needs a precise, typed
view of the data produced by the previous one. The IR is that contract:
stages communicate only through these dataclasses.

HOW: Dataclasses form a pipeline:
  Word            - one transcript word with float-second timing
  Segment         - one slide: image, optional phrase, duration mode
  AlignmentResult - where a phrase was found in the transcript
  SpeechAnchor    - pass-1 scheduler output (aligned or fallback)
  TimedSegment    - a segment's final place on the display timeline
  Batch           - a contiguous group of timed segments rendered together
  MotionSpec      - pan/zoom parameters for one segment
  RenderPlan      - everything formatters and job assembly consume

RULES:
- All times are float seconds measured from the start of the audio
- Input and stage outputs are frozen: no stage mutates another's output
- Segment.index is the segment's original position and never changes
- TimedSegment lists are ordered by index with non-decreasing display_start
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Optional, Tuple


class DurationMode(str, enum.Enum):
    """How a segment's on-screen time is decided.

    RULES:
    - dynamic: locate the on-screen phrase in the transcript
    - fixed: use the explicit duration, or the default when absent
    """

    DYNAMIC = "dynamic"
    FIXED = "fixed"


class Corner(str, enum.Enum):
    """Screen corner a zooming image stays anchored to."""

    BOTTOM_LEFT = "bottom_left"
    TOP_RIGHT = "top_right"


@dataclass(frozen=True)
class Word:
    """A single transcript word.

    RULES:
    - text is the literal spoken word (used verbatim in captions)
    - start/end are float seconds; end < start is tolerated in input but
      such words never produce a caption event
    """

    text: str
    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class Segment:
    """One narrated slide.

    RULES:
    - index: original position in the request (0-based)
    - image_ref: URL or local path of the slide image
    - on_screen_text: phrase to align when duration_mode is dynamic
    - explicit_duration: seconds for fixed placement; None or 0 means
      "use the default"
    """

    index: int
    image_ref: str
    on_screen_text: Optional[str] = None
    duration_mode: DurationMode = DurationMode.FIXED
    explicit_duration: Optional[float] = None


@dataclass(frozen=True)
class AlignmentResult:
    """Location of a phrase inside the transcript.

    RULES:
    - start_time is the first matched word's start, end_time the last
      matched word's end
    - duration = max(0, end_time - start_time)
    - start_index/end_index are inclusive transcript positions
    """

    start_time: float
    end_time: float
    duration: float
    start_index: int
    end_index: int


@dataclass(frozen=True)
class SpeechAnchor:
    """Pass-1 timing intent for one segment.

    WHY: The scheduler's speech-anchor pass is order-insensitive; its
    result must be stored per segment before the sequential placement
    pass runs.

    RULES:
    - aligned=True: start_time/end_time/speech_duration come from the
      transcript; fallback_duration is unused
    - aligned=False: only fallback_duration is meaningful
    """

    aligned: bool
    start_time: float = 0.0
    end_time: float = 0.0
    speech_duration: float = 0.0
    fallback_duration: float = 0.0


@dataclass(frozen=True)
class TimedSegment:
    """A segment's final placement on the display timeline.

    RULES:
    - display_end = display_start + effective_visual_duration
    - effective_visual_duration >= MIN_VISUAL_DURATION_S
    - speech_duration > 0 (paces the zoom motion)
    - aligned records whether the timing came from the transcript
    """

    index: int
    display_start: float
    display_end: float
    effective_visual_duration: float
    speech_duration: float
    aligned: bool = False


@dataclass(frozen=True)
class Batch:
    """A bounded group of consecutive timed segments rendered as one file.

    RULES:
    - first_index..last_index is an inclusive, contiguous range of
      positions in the TimedSegment list
    - [global_start, global_end) is the slice of the full audio track
      this batch carries; consecutive batches tile the timeline exactly
    - video_duration = max(MIN_VISUAL_DURATION_S, global_end - global_start)
    """

    number: int
    first_index: int
    last_index: int
    global_start: float
    global_end: float
    video_duration: float

    @property
    def segment_indices(self) -> range:
        return range(self.first_index, self.last_index + 1)

    @property
    def size(self) -> int:
        return self.last_index - self.first_index + 1


@dataclass(frozen=True)
class MotionSpec:
    """Pan/zoom parameters for one segment's image layer.

    RULES:
    - anchor alternates by the segment's original index parity
    - zoom starts at zoom_start, grows by zoom_step per frame, caps at zoom_max
    - frames = ceil(max(MIN_VISUAL_DURATION_S, speech_duration) * fps)
    """

    anchor: Corner
    frames: int
    fps: int
    width: int
    height: int
    zoom_start: float
    zoom_step: float
    zoom_max: float

    def zoom_at(self, frame: int) -> float:
        """Zoom factor at a 0-based output frame."""
        if frame <= 0:
            return self.zoom_start
        return min(self.zoom_start + self.zoom_step * frame, self.zoom_max)


@dataclass
class RenderPlan:
    """Complete planning output for a request.

    WHY: Formatters (captions, plan report) and job assembly all read the
    same planning result. Bundling it keeps their signatures uniform.

    RULES:
    - transcript: the request's words, in input order
    - timed_segments: scheduler output, one per input segment
    - batches: planner output tiling [first display_start, audio_duration]
    """

    transcript: List[Word]
    timed_segments: List[TimedSegment]
    batches: List[Batch]
    audio_duration: float
    resolution: Tuple[int, int] = (1920, 1080)
    fps: int = 60
    request_id: str = ""
    notes: List[str] = field(default_factory=list)
