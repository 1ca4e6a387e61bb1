"""Plan formatter registry.

WHY: The pipeline, CLI, and API need a single lookup to find a formatter
by name. A central dict makes adding a format a one-line change.

HOW: FORMATTERS maps string keys to formatter *classes* (not instances).
Callers instantiate as needed: ``formatter = FORMATTERS["plan_report"]()``.

RULES:
- Keys are snake_case identifiers
- Values are BaseFormatter subclasses (not instances)
- Every formatter listed here must be importable without side effects
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Type

from slidecast.formatters.ass_captions import ASSCaptionFormatter
from slidecast.formatters.plan_report import PlanReportFormatter

if TYPE_CHECKING:
    from slidecast.formatters.base import BaseFormatter

FORMATTERS = {
    "ass_captions": ASSCaptionFormatter,
    "plan_report": PlanReportFormatter,
}  # type: Dict[str, Type[BaseFormatter]]
