"""Shared test fixtures for the slidecast test suite.

WHY: Scheduler, planner, job assembly, captions, and the API tests all
need the same small narrated slideshow. Centralizing it here keeps the
expected timings in one place.

HOW: A ten-word transcript narrates three dynamic slides. The expected
timeline for a 6.0s audio track is:
  segment 0  "hello world"        aligned 0.0-0.9
  segment 1  "this is slide two"  aligned 1.2-2.6 (0.3s gap kept)
  segment 2  "finally the end"    aligned 3.3, stretched to 6.0
With batch_size=2 the plan has two batches: [0.0, 3.3) and [3.3, 6.0].

RULES:
- Times are chosen so every expected value is exact or compared with
  pytest.approx
- Fixtures return fresh objects; tests may not mutate shared module state
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from slidecast.core.ir import DurationMode, Segment, Word
from slidecast.pipeline import RenderSettings, build_plan


# ---------------------------------------------------------------------------
# Sample narration
# ---------------------------------------------------------------------------

SAMPLE_WORDS = [
    ("Hello",    0.0, 0.4),
    ("world.",   0.4, 0.9),
    ("This",     1.2, 1.5),
    ("is",       1.5, 1.7),
    ("slide",    1.7, 2.1),
    ("two!",     2.1, 2.6),
    ("And",      3.0, 3.3),
    ("finally,", 3.3, 3.9),
    ("the",      3.9, 4.0),
    ("end",      4.0, 4.5),
]

SAMPLE_PHRASES = ["Hello world", "This is slide two", "Finally the end"]

SAMPLE_AUDIO_DURATION = 6.0


def make_segment(
    index: int,
    text: Optional[str] = None,
    mode: DurationMode = DurationMode.FIXED,
    duration: Optional[float] = None,
    image: Optional[str] = None,
) -> Segment:
    """Build a Segment with a predictable image reference."""
    return Segment(
        index=index,
        image_ref=image or "https://img.example.com/slide_{}.png".format(index),
        on_screen_text=text,
        duration_mode=mode,
        explicit_duration=duration,
    )


@pytest.fixture
def sample_words() -> List[Word]:
    return [Word(text=t, start=s, end=e) for t, s, e in SAMPLE_WORDS]


@pytest.fixture
def sample_segments() -> List[Segment]:
    return [
        make_segment(i, text=phrase, mode=DurationMode.DYNAMIC)
        for i, phrase in enumerate(SAMPLE_PHRASES)
    ]


@pytest.fixture
def sample_settings() -> RenderSettings:
    return RenderSettings(width=1280, height=720, fps=30, batch_size=2, max_workers=2)


@pytest.fixture
def sample_plan(sample_segments, sample_words, sample_settings):
    """RenderPlan for the sample narration: 3 segments in 2 batches."""
    return build_plan(
        sample_segments,
        sample_words,
        SAMPLE_AUDIO_DURATION,
        sample_settings,
        request_id="test-request",
    )


@pytest.fixture
def sample_payload() -> Dict[str, Any]:
    """Request body as a workflow tool would send it (mixed key styles)."""
    return {
        "segments": [
            {"image_url": "https://img.example.com/a.png",
             "textOnScreen": "Hello world", "durationMode": "dynamic"},
            {"images": [{"url": "https://img.example.com/b.jpg"}],
             "text_on_screen": "This is slide two", "duration_mode": "dynamic"},
            {"image_url": "https://img.example.com/c.png", "durationOnScreen": 2},
        ],
        "transcript": [
            {"word": t, "start": s, "end": e} for t, s, e in SAMPLE_WORDS
        ],
        "audio_url": "https://audio.example.com/narration.mp3",
        "batch_size": 2,
    }
