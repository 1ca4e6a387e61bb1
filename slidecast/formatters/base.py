"""Formatter interface shared by the caption track and the plan report.

WHY: Captions and the plan report read the same RenderPlan and end up as
files in the request's work dir. One interface lets the pipeline produce
and write either without knowing which it holds.

HOW: A BaseFormatter subclass names itself and turns a plan into
FormatterOutput values. Each output knows how to write itself into a
directory as text (UTF-8) or bytes.

RULES:
- format() returns a list; current formatters return one item
- filename is a bare file name, never a path
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Union

from slidecast.core.ir import RenderPlan


@dataclass
class FormatterOutput:
    """A file a formatter wants written: name, content, MIME type."""

    filename: str
    content: Union[str, bytes]
    media_type: str

    def write_to(self, directory: Union[str, Path]) -> Path:
        path = Path(directory) / self.filename
        if isinstance(self.content, bytes):
            path.write_bytes(self.content)
        else:
            path.write_text(self.content, encoding="utf-8")
        return path


class BaseFormatter(ABC):
    """Turns a RenderPlan into output files.

    New formats subclass this and are registered in FORMATTERS
    (formatters/__init__.py) under a short key.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Display name, e.g. 'ASS Captions'."""

    @abstractmethod
    def format(self, plan: RenderPlan) -> List[FormatterOutput]:
        """Render plan into one or more FormatterOutput values."""
