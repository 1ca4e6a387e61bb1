"""Slidecast: narrated slideshow videos synchronized to their speech.

WHY: A slideshow with voice-over only works when each slide appears
while its text is being spoken. Doing that by hand in an editor is slow;
the word-level transcript already says when everything is said.

HOW: Four-stage pipeline: align on-screen text to the transcript, place
every slide on a non-overlapping timeline (core/), split the timeline
into bounded render batches and describe them as ffmpeg jobs (render/),
then run the jobs and concatenate the batches with burned-in captions.

RULES:
- The planning core (core/) is pure: no processes, no files, no network
- Only render/ffmpeg.py builds ffmpeg argument strings
- Every request works inside its own RequestContext
"""

__version__ = "0.1.0"
