"""Locate an on-screen phrase as a contiguous word run in the transcript.

WHY: Dynamic segments appear on screen while the narrator speaks their
text. The transcript carries per-word timing, so finding the phrase's
words in order gives the segment's speech window.

HOW: Both transcript words and the phrase are normalized (lowercase,
fixed punctuation set removed, whitespace trimmed). The phrase is split
into target words. Start positions are scanned left to right and the
first position where every target word matches exactly wins.

RULES:
- Punctuation removed: . , ! ? ; : ' " -
- Leftmost match wins; there is no scoring or fuzzy matching
- Miss (None) when the transcript is empty, the phrase is empty after
  normalization, or no window matches
- duration = max(0, end_time - start_time), never negative
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Sequence

from slidecast.core.ir import AlignmentResult, Word

logger = logging.getLogger(__name__)

# Characters deleted during normalization.
_STRIP_RE = re.compile(r"[.,!?;:'\"\-]")


def normalize_text(text: Optional[str]) -> str:
    """Lowercase, drop the fixed punctuation set, and trim whitespace."""
    if not text:
        return ""
    return _STRIP_RE.sub("", text.lower()).strip()


def align(transcript: Sequence[Word], phrase: Optional[str]) -> Optional[AlignmentResult]:
    """Find the leftmost contiguous run of transcript words matching phrase.

    Args:
        transcript: Time-ordered words.
        phrase: On-screen text to locate.

    Returns:
        AlignmentResult for the first match, or None on a miss.
    """
    if not transcript or not phrase:
        return None

    normalized_phrase = normalize_text(phrase)
    target = normalized_phrase.split()
    if not target:
        return None

    normalized_words = [normalize_text(w.text) for w in transcript]  # type: List[str]
    span = len(target)

    for i in range(len(normalized_words) - span + 1):
        if normalized_words[i:i + span] == target:
            start_time = transcript[i].start
            end_time = transcript[i + span - 1].end
            return AlignmentResult(
                start_time=start_time,
                end_time=end_time,
                duration=max(0.0, end_time - start_time),
                start_index=i,
                end_index=i + span - 1,
            )

    logger.warning(
        "Could not find phrase %r (normalized: %r) in transcript",
        phrase,
        normalized_phrase,
    )
    return None
