"""Plan report formatter: the timeline and batch layout as JSON.

WHY: When a rendered video looks out of sync, the first question is
where each slide was placed and why. The plan report records the final
timeline (with whether each slide was aligned to speech) and the batch
windows, so a request can be inspected without rendering anything.

HOW: plan_to_dict() flattens a RenderPlan into plain JSON types.
PlanReportFormatter validates the result against the bundled
plan_report.schema.json with jsonschema before returning it.

RULES:
- Output is validated against the schema; failures raise
  jsonschema.ValidationError
- Times are written as floats in seconds, rounded to milliseconds
- Registered as "plan_report" in the FORMATTERS dict
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import jsonschema

from slidecast import __version__
from slidecast.core.ir import RenderPlan
from slidecast.formatters.base import BaseFormatter, FormatterOutput

REPORT_FILENAME = "plan.json"

_SCHEMA_PATH = Path(__file__).resolve().parent / "plan_report.schema.json"

_CACHED_SCHEMA = None  # type: Optional[Dict[str, Any]]


def _get_schema() -> Dict[str, Any]:
    """Load and cache the plan report JSON schema."""
    global _CACHED_SCHEMA
    if _CACHED_SCHEMA is None:
        with open(_SCHEMA_PATH) as f:
            _CACHED_SCHEMA = json.load(f)
    return _CACHED_SCHEMA


def _ms(value: float) -> float:
    return round(value, 3)


def plan_to_dict(plan: RenderPlan) -> Dict[str, Any]:
    """Flatten a RenderPlan into JSON-serializable types."""
    segments = []  # type: List[Dict[str, Any]]
    for ts in plan.timed_segments:
        segments.append({
            "index": ts.index,
            "display_start": _ms(ts.display_start),
            "display_end": _ms(ts.display_end),
            "effective_visual_duration": _ms(ts.effective_visual_duration),
            "speech_duration": _ms(ts.speech_duration),
            "aligned": ts.aligned,
        })

    batches = []  # type: List[Dict[str, Any]]
    for batch in plan.batches:
        batches.append({
            "number": batch.number,
            "first_index": batch.first_index,
            "last_index": batch.last_index,
            "global_start": _ms(batch.global_start),
            "global_end": _ms(batch.global_end),
            "video_duration": _ms(batch.video_duration),
        })

    width, height = plan.resolution
    return {
        "version": __version__,
        "request_id": plan.request_id,
        "audio_duration": _ms(plan.audio_duration),
        "resolution": {"width": width, "height": height},
        "fps": plan.fps,
        "segments": segments,
        "batches": batches,
        "notes": list(plan.notes),
    }


class PlanReportFormatter(BaseFormatter):
    """Formatter that writes the schema-validated plan report."""

    @property
    def name(self) -> str:
        return "Plan Report"

    def format(self, plan: RenderPlan) -> List[FormatterOutput]:
        """Serialize the plan and validate it.

        Raises:
            jsonschema.ValidationError: the report does not match the schema.
        """
        report = plan_to_dict(plan)
        jsonschema.validate(instance=report, schema=_get_schema())
        return [
            FormatterOutput(
                filename=REPORT_FILENAME,
                content=json.dumps(report, indent=2, ensure_ascii=False),
                media_type="application/json",
            )
        ]
