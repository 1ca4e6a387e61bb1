"""Tests for the plan report formatter and its JSON schema.

WHY: plan.json is what operators read when a video is out of sync, and
POST /plans returns the same structure. It must stay machine-readable
and schema-valid.

HOW: Tests build plans through build_plan() and check plan_to_dict()
values, schema validation, and the serialized formatter output.

RULES:
- Schema violations surface as jsonschema.ValidationError
"""

from __future__ import annotations

import json

import jsonschema
import pytest

from slidecast import __version__
from slidecast.core.ir import RenderPlan
from slidecast.formatters import FORMATTERS
from slidecast.formatters.base import BaseFormatter
from slidecast.formatters.plan_report import (
    REPORT_FILENAME,
    PlanReportFormatter,
    _get_schema,
    plan_to_dict,
)


class TestPlanToDict:
    """plan_to_dict() flattens the plan into JSON types."""

    def test_top_level_fields(self, sample_plan):
        report = plan_to_dict(sample_plan)
        assert report["version"] == __version__
        assert report["request_id"] == "test-request"
        assert report["audio_duration"] == 6.0
        assert report["resolution"] == {"width": 1280, "height": 720}
        assert report["fps"] == 30

    def test_segments(self, sample_plan):
        segments = plan_to_dict(sample_plan)["segments"]
        assert [s["index"] for s in segments] == [0, 1, 2]
        assert all(s["aligned"] for s in segments)
        assert segments[2]["display_start"] == 3.3
        assert segments[2]["effective_visual_duration"] == 2.7

    def test_batches(self, sample_plan):
        batches = plan_to_dict(sample_plan)["batches"]
        assert len(batches) == 2
        assert batches[0] == {
            "number": 0,
            "first_index": 0,
            "last_index": 1,
            "global_start": 0.0,
            "global_end": 3.3,
            "video_duration": 3.3,
        }

    def test_times_rounded_to_milliseconds(self, sample_plan):
        speech = plan_to_dict(sample_plan)["segments"][2]["speech_duration"]
        assert speech == 1.2

    def test_matches_schema(self, sample_plan):
        jsonschema.validate(instance=plan_to_dict(sample_plan), schema=_get_schema())


class TestPlanReportFormatter:
    """PlanReportFormatter validates and serializes the report."""

    def test_registered(self):
        assert FORMATTERS["plan_report"] is PlanReportFormatter
        for formatter_cls in FORMATTERS.values():
            assert issubclass(formatter_cls, BaseFormatter)

    def test_name(self):
        assert PlanReportFormatter().name == "Plan Report"

    def test_output_is_json(self, sample_plan):
        outputs = PlanReportFormatter().format(sample_plan)
        assert len(outputs) == 1
        assert outputs[0].filename == REPORT_FILENAME
        assert outputs[0].media_type == "application/json"
        parsed = json.loads(outputs[0].content)
        assert parsed["batches"][1]["global_end"] == 6.0

    def test_notes_included(self, sample_plan):
        sample_plan.notes = ["Segment 4: on-screen text not found in transcript."]
        parsed = json.loads(PlanReportFormatter().format(sample_plan)[0].content)
        assert parsed["notes"] == sample_plan.notes

    def test_invalid_plan_rejected(self):
        empty = RenderPlan(transcript=[], timed_segments=[], batches=[], audio_duration=1.0)
        with pytest.raises(jsonschema.ValidationError):
            PlanReportFormatter().format(empty)

    def test_schema_is_cached(self):
        assert _get_schema() is _get_schema()
