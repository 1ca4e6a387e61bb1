"""Typed filter-graph nodes describing how one video stream is composed.

WHY: Building ffmpeg filter strings inline mixes timeline logic with
quoting rules, and a single misplaced bracket breaks the whole render.
The job assembler instead describes each composition step as a typed
node; only slidecast.render.ffmpeg turns nodes into text.

HOW: Each node names its input stream label(s) and its output label.
A RenderGraph is an ordered node list; nodes appear after the nodes
producing their inputs. Source nodes stand for numbered input files and
produce the "<n>:v" label ffmpeg assigns to them.

RULES:
- Labels are plain identifiers without brackets
- Source nodes produce no filter text
- The graph's output is the output label of its last node
- Nodes are immutable; a graph only ever grows
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Union

from slidecast.core.ir import MotionSpec


@dataclass(frozen=True)
class ColorCanvas:
    """Solid background the slide layers are composited onto."""

    output: str
    color: str
    width: int
    height: int
    duration: float
    fps: int


@dataclass(frozen=True)
class Source:
    """A numbered input file (an image, or the concatenated batches)."""

    input_index: int
    path: str

    @property
    def output(self) -> str:
        return "{}:v".format(self.input_index)


@dataclass(frozen=True)
class Motion:
    """Corner-anchored zoom applied to a still image."""

    input: str
    output: str
    spec: MotionSpec


@dataclass(frozen=True)
class AlphaFormat:
    """Pixel-format conversion so a layer can be composited with alpha."""

    input: str
    output: str
    pixel_format: str


@dataclass(frozen=True)
class TimeShift:
    """Delay a layer so its first frame lands at offset seconds."""

    input: str
    output: str
    offset: float


@dataclass(frozen=True)
class Composite:
    """Overlay layer on base at the top-left corner.

    The composite outlives its layer: once the layer's frames run out its
    last frame is held, so a slide stays visible until covered by the next.
    """

    base: str
    layer: str
    output: str
    output_format: Optional[str] = None


@dataclass(frozen=True)
class CaptionOverlay:
    """Burn an ASS subtitle file into the stream."""

    input: str
    output: str
    subtitle_path: str


Node = Union[ColorCanvas, Source, Motion, AlphaFormat, TimeShift, Composite, CaptionOverlay]


@dataclass
class RenderGraph:
    """Ordered list of nodes forming one filter graph."""

    nodes: List[Node] = field(default_factory=list)

    def add(self, node: Node) -> str:
        """Append a node and return its output label."""
        self.nodes.append(node)
        return node.output

    @property
    def output(self) -> str:
        if not self.nodes:
            raise ValueError("Render graph has no nodes.")
        return self.nodes[-1].output

    def sources(self) -> List[Source]:
        """Source nodes in input-index order."""
        return sorted(
            (n for n in self.nodes if isinstance(n, Source)),
            key=lambda n: n.input_index,
        )

    def filters(self) -> Iterator[Node]:
        """Nodes that produce filter text (everything except sources)."""
        return (n for n in self.nodes if not isinstance(n, Source))

    def __len__(self) -> int:
        return len(self.nodes)
