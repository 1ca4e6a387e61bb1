"""Word-by-word ASS caption track, burned in by the finalize job.

WHY: Viewers follow narration more easily when each spoken word appears
on screen exactly while it is said. The transcript already carries word
timing, so one subtitle event per word gives that effect with no further
alignment work.

HOW: generate_captions() turns each word with a positive duration into a
CaptionEvent. CaptionTrack.to_ass() renders a complete Advanced
SubStation Alpha file: [Script Info], one [V4+ Styles] style line, and
one Dialogue line per event. ASSCaptionFormatter wraps that for the
formatter registry and shifts times so they match the rendered video.

RULES:
- Words with end - start <= 0 are dropped with a warning, never fatal
- Event text is the word verbatim; to_ass() escapes override braces,
  breaks backslash escapes and flattens line breaks so one word is
  always one Dialogue line
- Times are H:MM:SS.CC; centiseconds are rounded and a carry to 100
  rolls into the next second
- Script resolution (PlayResX/Y) is 1920x1080; the style scales with it
- Registered as "ass_captions" in the FORMATTERS dict
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from slidecast.core.ir import RenderPlan, Word
from slidecast.formatters.base import BaseFormatter, FormatterOutput

logger = logging.getLogger(__name__)

CAPTION_FILENAME = "subtitles.ass"

_STYLE_FIELDS = (
    "Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, "
    "BackColour, Bold, Italic, Underline, StrikeOut, ScaleX, ScaleY, Spacing, "
    "Angle, BorderStyle, Outline, Shadow, Alignment, MarginL, MarginR, MarginV, "
    "Encoding"
)
_EVENT_FIELDS = "Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text"


def format_ass_time(seconds: float) -> str:
    """Format seconds as an ASS timestamp, e.g. 3661.257 -> '1:01:01.26'.

    Rounding happens on the total centisecond count, so 1.999 becomes
    '0:00:02.00' rather than an invalid '.100'. Negative input clamps to 0.
    """
    total_cs = int(round(max(0.0, seconds) * 100))
    total_seconds, cs = divmod(total_cs, 100)
    minutes, secs = divmod(total_seconds, 60)
    hours, minutes = divmod(minutes, 60)
    return "{}:{:02d}:{:02d}.{:02d}".format(hours, minutes, secs, cs)


@dataclass(frozen=True)
class CaptionStyle:
    """The single caption style: white Arial, bottom centre, thin outline.

    Colours are ASS &HAABBGGRR values.
    """

    name: str = "Default"
    fontname: str = "Arial"
    fontsize: int = 28
    primary_colour: str = "&H00FFFFFF"
    secondary_colour: str = "&H000000FF"
    outline_colour: str = "&H00000000"
    back_colour: str = "&H80000000"
    bold: int = 0
    italic: int = 0
    underline: int = 0
    strike_out: int = 0
    scale_x: int = 100
    scale_y: int = 100
    spacing: int = 0
    angle: int = 0
    border_style: int = 1
    outline: float = 1.5
    shadow: int = 1
    alignment: int = 2
    margin_l: int = 10
    margin_r: int = 10
    margin_v: int = 20
    encoding: int = 1

    def to_ass(self) -> str:
        values = (
            self.name, self.fontname, self.fontsize,
            self.primary_colour, self.secondary_colour,
            self.outline_colour, self.back_colour,
            self.bold, self.italic, self.underline, self.strike_out,
            self.scale_x, self.scale_y, self.spacing, self.angle,
            self.border_style, self.outline, self.shadow, self.alignment,
            self.margin_l, self.margin_r, self.margin_v, self.encoding,
        )
        return "Style: " + ",".join(str(v) for v in values)


def escape_ass_text(text: str) -> str:
    """Make text safe for the Text field of a Dialogue line."""
    # Zero-width space after each backslash so \N or \h never forms
    text = text.replace("\\", "\\\u200b")
    text = text.replace("{", "\\{").replace("}", "\\}")
    return " ".join(text.splitlines())


@dataclass(frozen=True)
class CaptionEvent:
    """One word on screen over [start, end)."""

    start: float
    end: float
    text: str

    def to_ass(self, style_name: str) -> str:
        return "Dialogue: 0,{},{},{},,0,0,0,,{}".format(
            format_ass_time(self.start),
            format_ass_time(self.end),
            style_name,
            escape_ass_text(self.text),
        )


@dataclass
class CaptionTrack:
    """A full caption file: script info, one style, and the word events."""

    events: List[CaptionEvent] = field(default_factory=list)
    style: CaptionStyle = field(default_factory=CaptionStyle)
    play_res: Tuple[int, int] = (1920, 1080)
    title: str = "Generated Subtitles"

    def to_ass(self) -> str:
        lines = [
            "[Script Info]",
            "Title: {}".format(self.title),
            "ScriptType: v4.00+",
            "WrapStyle: 0",
            "ScaledBorderAndShadow: yes",
            "YCbCr Matrix: None",
            "PlayResX: {}".format(self.play_res[0]),
            "PlayResY: {}".format(self.play_res[1]),
            "",
            "[V4+ Styles]",
            "Format: " + _STYLE_FIELDS,
            self.style.to_ass(),
            "",
            "[Events]",
            "Format: " + _EVENT_FIELDS,
        ]
        lines.extend(event.to_ass(self.style.name) for event in self.events)
        return "\n".join(lines) + "\n"

    def __len__(self) -> int:
        return len(self.events)


def generate_captions(transcript: Sequence[Word], offset: float = 0.0) -> CaptionTrack:
    """Build one caption event per spoken word.

    Args:
        transcript: Time-ordered words.
        offset: Seconds subtracted from every time, for videos that start
            after the beginning of the audio. Words that end before the
            offset are dropped; words straddling it are clipped.

    Returns:
        CaptionTrack with events in transcript order.
    """
    events = []  # type: List[CaptionEvent]
    for position, word in enumerate(transcript):
        duration = word.end - word.start
        if duration <= 0:
            logger.warning(
                "Skipping word %r at index %d: non-positive duration (%.3fs)",
                word.text,
                position,
                duration,
            )
            continue
        if word.end <= offset:
            continue
        events.append(CaptionEvent(
            start=max(0.0, word.start - offset),
            end=word.end - offset,
            text=word.text,
        ))
    return CaptionTrack(events=events)


class ASSCaptionFormatter(BaseFormatter):
    """Formatter that produces the burned-in caption track."""

    @property
    def name(self) -> str:
        return "ASS Captions"

    def format(self, plan: RenderPlan) -> List[FormatterOutput]:
        offset = plan.batches[0].global_start if plan.batches else 0.0
        track = generate_captions(plan.transcript, offset=offset)
        logger.info("Generated %d caption event(s)", len(track))
        return [
            FormatterOutput(
                filename=CAPTION_FILENAME,
                content=track.to_ass(),
                media_type="text/x-ssa",
            )
        ]
