"""Tests for the command-line interface.

WHY: The CLI is the quickest way to debug a request's timing. Its exit
codes and the files it copies out of the work dir are what scripts
depend on.

HOW: main() is called with an explicit argv. Planning runs for real
with --audio-duration (no downloads, no ffprobe); full renders replace
render_request with an async fake that writes the video into the
context's work dir.

RULES:
- Every run uses --work-root inside tmp_path
- Errors exit 1 with "Error:" on stderr; Ctrl-C exits 130
"""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from slidecast.cli import build_parser, main
from slidecast.pipeline import PipelineResult


@pytest.fixture
def request_file(tmp_path, sample_payload):
    path = tmp_path / "request.json"
    path.write_text(json.dumps(sample_payload), encoding="utf-8")
    return path


@pytest.fixture
def work_root(tmp_path):
    return tmp_path / "work"


# ---------------------------------------------------------------------------
# TestParser
# ---------------------------------------------------------------------------


class TestParser:
    """build_parser() defaults and flags."""

    def test_defaults(self):
        args = build_parser().parse_args(["request.json"])
        assert args.output == "output.mp4"
        assert args.plan_json is None
        assert args.plan_only is False
        assert args.audio_duration is None
        assert args.batch_size is None
        assert args.captions is None
        assert args.keep_temp is False

    def test_captions_flags(self):
        parser = build_parser()
        assert parser.parse_args(["r.json", "--captions"]).captions is True
        assert parser.parse_args(["r.json", "--no-captions"]).captions is False

    def test_overrides(self):
        args = build_parser().parse_args([
            "r.json", "-o", "out/video.mp4", "--batch-size", "3",
            "--max-workers", "4", "--fps", "25", "--audio-duration", "12.5",
        ])
        assert args.output == "out/video.mp4"
        assert args.batch_size == 3
        assert args.max_workers == 4
        assert args.fps == 25
        assert args.audio_duration == 12.5

    def test_request_is_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


# ---------------------------------------------------------------------------
# TestPlanOnly
# ---------------------------------------------------------------------------


class TestPlanOnly:
    """--plan-only writes or prints the plan and renders nothing."""

    def test_plan_json(self, request_file, work_root, tmp_path):
        plan_path = tmp_path / "plan.json"
        main([
            str(request_file), "--plan-only", "--audio-duration", "6",
            "--plan-json", str(plan_path), "--work-root", str(work_root),
        ])
        report = json.loads(plan_path.read_text(encoding="utf-8"))
        assert report["audio_duration"] == 6.0
        assert len(report["segments"]) == 3
        assert list(work_root.iterdir()) == []
        assert not (tmp_path / "output.mp4").exists()

    def test_plan_to_stdout(self, request_file, work_root, capsys):
        main([
            str(request_file), "--plan-only", "--audio-duration", "6",
            "--batch-size", "1", "--work-root", str(work_root),
        ])
        captured = capsys.readouterr()
        report = json.loads(captured.out)
        assert len(report["batches"]) == 3
        assert "Planning..." in captured.err

    def test_keep_temp(self, request_file, work_root, capsys):
        main([
            str(request_file), "--plan-only", "--audio-duration", "6",
            "--keep-temp", "--work-root", str(work_root),
        ])
        (kept,) = list(work_root.iterdir())
        assert (kept / "plan.json").is_file()
        assert "Work dir:" in capsys.readouterr().err


# ---------------------------------------------------------------------------
# TestErrors
# ---------------------------------------------------------------------------


class TestErrors:
    """Request errors exit 1; Ctrl-C exits 130."""

    def _exit_code(self, argv):
        with pytest.raises(SystemExit) as exc_info:
            main(argv)
        return exc_info.value.code

    def test_missing_file(self, tmp_path, capsys):
        assert self._exit_code([str(tmp_path / "nope.json")]) == 1
        assert "Error: Cannot read request file" in capsys.readouterr().err

    def test_invalid_json(self, tmp_path, capsys):
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        assert self._exit_code([str(path)]) == 1
        assert "Error: Request is not valid JSON" in capsys.readouterr().err

    def test_invalid_request(self, tmp_path, capsys):
        path = tmp_path / "empty.json"
        path.write_text(json.dumps({"segments": []}), encoding="utf-8")
        assert self._exit_code([str(path)]) == 1
        assert "Error: Invalid request" in capsys.readouterr().err

    def test_missing_audio(self, tmp_path, sample_payload, work_root, capsys):
        del sample_payload["audio_url"]
        path = tmp_path / "request.json"
        path.write_text(json.dumps(sample_payload), encoding="utf-8")
        assert self._exit_code([str(path), "--work-root", str(work_root)]) == 1
        assert "audio_url or audio_base64" in capsys.readouterr().err
        assert list(work_root.iterdir()) == []

    def test_keyboard_interrupt(self, request_file, work_root, capsys):
        def interrupt(coro):
            coro.close()
            raise KeyboardInterrupt

        with patch("slidecast.cli.asyncio.run", side_effect=interrupt):
            assert self._exit_code([str(request_file), "--work-root", str(work_root)]) == 130
        assert "Cancelled by user." in capsys.readouterr().err
        assert list(work_root.iterdir()) == []


# ---------------------------------------------------------------------------
# TestRender
# ---------------------------------------------------------------------------


class TestRender:
    """A full render copies the video out of the work dir."""

    def test_output_copied(self, request_file, work_root, tmp_path):
        seen = {}

        async def fake_render(request, ctx, settings, on_status, on_progress, plan_only, audio_duration,
                              allow_local):
            seen["settings"] = settings
            seen["allow_local"] = allow_local
            seen["plan_only"] = plan_only
            on_status("rendering")
            on_progress("batch", 1, 1)
            output = ctx.path("output.mp4")
            output.write_bytes(b"rendered video")
            return PipelineResult(plan=None, output=output, files={"output.mp4": output})

        destination = tmp_path / "out" / "final.mp4"
        with patch("slidecast.cli.render_request", new=fake_render):
            main([
                str(request_file), "-o", str(destination), "--work-root", str(work_root),
                "--fps", "25", "--no-captions",
            ])

        assert destination.read_bytes() == b"rendered video"
        assert seen["plan_only"] is False
        assert seen["allow_local"] is True
        assert seen["settings"].fps == 25
        assert seen["settings"].batch_size == 2
        assert seen["settings"].captions is False
        assert list(work_root.iterdir()) == []
