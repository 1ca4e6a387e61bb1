"""Render job assembly: turn a plan into declarative batch and finalize jobs.

WHY: The planner decides WHAT each batch covers; something still has to
decide how each batch is composed and how the batches become one video.
Keeping that translation pure (no processes, no files written) lets the
whole render be inspected and tested before anything runs.

HOW: For every Batch one RenderJob is built. Its graph starts from a
solid canvas as long as the batch window. Each segment's image then goes
through motion, alpha format, and a time shift by its local offset, and
is composited onto the running result in ascending segment order. The
audio input is the [global_start, global_end) slice of the full track.

A single FinalizeJob concatenates the batch artifacts in order through a
concat manifest, optionally burns in the caption track, and takes its
audio from the full original track so audio is encoded once across the
whole duration, with no seams at batch boundaries.

RULES:
- Batch artifacts are named batch_NNN.mp4 (zero-padded batch number)
- The last composite of each batch converts to yuv420 for encoding
- Segment layer input indices follow segment order inside the batch
- The final video covers [first batch global_start, audio end]; the
  finalize audio slice starts at the same point so picture and sound stay
  aligned, and captions must be shifted by that start
- assemble() never touches the filesystem or spawns anything
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from slidecast.config import (
    BACKGROUND_COLOR,
    LAYER_PIXEL_FORMAT,
    MIN_VISUAL_DURATION_S,
)
from slidecast.core.errors import InputValidationError
from slidecast.core.ir import Batch, MotionSpec, RenderPlan
from slidecast.core.planner import local_offset, motion_spec
from slidecast.render.graph import (
    AlphaFormat,
    CaptionOverlay,
    ColorCanvas,
    Composite,
    Motion,
    RenderGraph,
    Source,
    TimeShift,
)

logger = logging.getLogger(__name__)

FINAL_OVERLAY_FORMAT = "yuv420"
MANIFEST_NAME = "concat.txt"
FINALIZE_JOB_NAME = "finalize"


@dataclass(frozen=True)
class SegmentLayer:
    """One slide's contribution to a batch."""

    index: int
    image: str
    offset: float
    motion: MotionSpec


@dataclass
class RenderJob:
    """Everything needed to render one batch into an intermediate file.

    RULES:
    - audio_start/audio_length select the batch's slice of the full track
    - duration equals batch.video_duration
    """

    name: str
    batch: Batch
    layers: List[SegmentLayer]
    graph: RenderGraph
    audio_path: str
    audio_start: float
    audio_length: float
    duration: float
    output: Path

    @property
    def inputs(self) -> List[str]:
        return [layer.image for layer in self.layers]


@dataclass
class FinalizeJob:
    """Concatenate batch artifacts, add captions, write the final video."""

    batch_outputs: List[Path]
    manifest_path: Path
    audio_path: str
    audio_start: float
    duration: float
    output: Path
    caption_path: Optional[Path] = None
    graph: Optional[RenderGraph] = None
    name: str = field(default=FINALIZE_JOB_NAME)

    @property
    def has_captions(self) -> bool:
        return self.caption_path is not None


def batch_output_name(batch: Batch) -> str:
    return "batch_{:03d}.mp4".format(batch.number)


def build_batch_graph(
    layers: Sequence[SegmentLayer],
    duration: float,
    width: int,
    height: int,
    fps: int,
) -> RenderGraph:
    """Compose a batch's layers over a solid canvas.

    Args:
        layers: Segment layers in ascending segment order.
        duration: Canvas length in seconds (the batch window).
        width: Output width in pixels.
        height: Output height in pixels.
        fps: Output frame rate.
    """
    graph = RenderGraph()
    current = graph.add(ColorCanvas(
        output="base",
        color=BACKGROUND_COLOR,
        width=width,
        height=height,
        duration=duration,
        fps=fps,
    ))

    last = len(layers) - 1
    for position, layer in enumerate(layers):
        source = graph.add(Source(input_index=position, path=layer.image))
        zoomed = graph.add(Motion(
            input=source,
            output="zoompan{}".format(layer.index),
            spec=layer.motion,
        ))
        alpha = graph.add(AlphaFormat(
            input=zoomed,
            output="format{}".format(layer.index),
            pixel_format=LAYER_PIXEL_FORMAT,
        ))
        shifted = graph.add(TimeShift(
            input=alpha,
            output="v{}".format(layer.index),
            offset=layer.offset,
        ))
        current = graph.add(Composite(
            base=current,
            layer=shifted,
            output="ovl{}".format(layer.index),
            output_format=FINAL_OVERLAY_FORMAT if position == last else None,
        ))
    return graph


def build_finalize_graph(caption_path: Path) -> RenderGraph:
    """Concatenated video (input 0) with the caption track burned in."""
    graph = RenderGraph()
    source = graph.add(Source(input_index=0, path=MANIFEST_NAME))
    graph.add(CaptionOverlay(
        input=source,
        output="subtitled",
        subtitle_path=str(caption_path),
    ))
    return graph


def assemble(
    plan: RenderPlan,
    image_paths: Sequence[str],
    audio_path: str,
    work_dir: Path,
    caption_path: Optional[Path] = None,
    output_name: str = "output.mp4",
    min_visual_duration: float = MIN_VISUAL_DURATION_S,
) -> Tuple[List[RenderJob], FinalizeJob]:
    """Build the render jobs for a plan.

    Args:
        plan: Scheduler and planner output.
        image_paths: Local image file per segment, by segment position.
        audio_path: Local path of the full audio track.
        work_dir: Directory the jobs will write into.
        caption_path: ASS file to burn in, or None for no captions.
        output_name: File name of the final artifact.

    Returns:
        (batch jobs in timeline order, the finalize job)

    Raises:
        InputValidationError: image count does not match the segment count.
    """
    segments = plan.timed_segments
    if len(image_paths) != len(segments):
        raise InputValidationError(
            "Got {} image(s) for {} segment(s).".format(len(image_paths), len(segments))
        )

    width, height = plan.resolution
    work_dir = Path(work_dir)
    jobs = []  # type: List[RenderJob]

    for batch in plan.batches:
        layers = []  # type: List[SegmentLayer]
        for position in batch.segment_indices:
            segment = segments[position]
            layers.append(SegmentLayer(
                index=segment.index,
                image=str(image_paths[position]),
                offset=local_offset(segment, batch),
                motion=motion_spec(segment, plan.fps, width, height, min_visual_duration),
            ))

        output = work_dir / batch_output_name(batch)
        jobs.append(RenderJob(
            name=output.stem,
            batch=batch,
            layers=layers,
            graph=build_batch_graph(layers, batch.video_duration, width, height, plan.fps),
            audio_path=str(audio_path),
            audio_start=batch.global_start,
            audio_length=batch.global_end - batch.global_start,
            duration=batch.video_duration,
            output=output,
        ))

    timeline_start = plan.batches[0].global_start if plan.batches else 0.0
    finalize = FinalizeJob(
        batch_outputs=[job.output for job in jobs],
        manifest_path=work_dir / MANIFEST_NAME,
        audio_start=timeline_start,
        audio_path=str(audio_path),
        duration=plan.audio_duration - timeline_start,
        output=work_dir / output_name,
        caption_path=caption_path,
        graph=build_finalize_graph(caption_path) if caption_path is not None else None,
    )

    logger.info(
        "Assembled %d batch job(s)%s",
        len(jobs),
        " with captions" if caption_path is not None else "",
    )
    return jobs, finalize
