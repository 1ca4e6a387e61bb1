"""Tests for the ffmpeg boundary: probing, filter text, and argv.

WHY: Every string ffmpeg parses is produced here. A wrong quote, label,
or input index breaks a render only at runtime, so the exact text and
argument order are pinned down. ffprobe is never run; subprocess.run is
patched.

HOW: Tests are organized by concern:
  - TestFormatting: number and path escaping helpers
  - TestProbeDuration: ffprobe output parsing and failure mapping
  - TestSerializeNode: one filter chain per node type
  - TestBatchCommand / TestFinalizeCommand: argv layout
  - TestConcatManifest: the ffconcat list file

RULES:
- No test spawns ffmpeg or ffprobe
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from slidecast.core.errors import DurationComputationError
from slidecast.core.ir import Corner, MotionSpec
from slidecast.render.ffmpeg import (
    build_batch_command,
    build_finalize_command,
    escape_filter_path,
    format_number,
    probe_duration,
    serialize_graph,
    serialize_node,
    write_concat_manifest,
    zoom_expression,
)
from slidecast.render.graph import (
    AlphaFormat,
    CaptionOverlay,
    ColorCanvas,
    Composite,
    Motion,
    Source,
    TimeShift,
)
from slidecast.render.jobs import assemble

IMAGES = ["/media/image_0.png", "/media/image_1.jpg", "/media/image_2.png"]
AUDIO = "/media/audio.mp3"


def _spec(anchor=Corner.BOTTOM_LEFT, frames=120):
    return MotionSpec(
        anchor=anchor, frames=frames, fps=60, width=1920, height=1080,
        zoom_start=1.0, zoom_step=0.001, zoom_max=1.5,
    )


def _completed(returncode=0, stdout="", stderr=""):
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)


# ---------------------------------------------------------------------------
# TestFormatting
# ---------------------------------------------------------------------------


class TestFormatting:
    """format_number() and escape_filter_path()."""

    @pytest.mark.parametrize("value,expected", [
        (1.0, "1"),
        (0.5, "0.5"),
        (3.3, "3.3"),
        (1 / 3, "0.333333"),
        (0.0, "0"),
        (-0.0, "0"),
        (12, "12"),
    ])
    def test_format_number(self, value, expected):
        assert format_number(value) == expected

    @pytest.mark.parametrize("value", [float("nan"), float("inf")])
    def test_format_number_rejects_non_finite(self, value):
        with pytest.raises(ValueError):
            format_number(value)

    def test_escape_windows_path(self):
        assert escape_filter_path("C:\\work\\subs.ass") == "C\\:/work/subs.ass"

    def test_escape_posix_path_unchanged(self):
        assert escape_filter_path("/tmp/slidecast/abc/subtitles.ass") == "/tmp/slidecast/abc/subtitles.ass"


# ---------------------------------------------------------------------------
# TestProbeDuration
# ---------------------------------------------------------------------------


class TestProbeDuration:
    """probe_duration() parses ffprobe's duration or raises."""

    def test_parses_duration(self):
        with patch("slidecast.render.ffmpeg.subprocess.run", return_value=_completed(stdout="12.480000\n")) as run:
            assert probe_duration("/media/audio.mp3", ffprobe_bin="ffprobe-test") == 12.48
        command = run.call_args[0][0]
        assert command[0] == "ffprobe-test"
        assert command[-1] == "/media/audio.mp3"
        assert "format=duration" in command

    def test_nonzero_exit(self):
        result = _completed(returncode=1, stderr="audio.mp3: Invalid data found\n")
        with patch("slidecast.render.ffmpeg.subprocess.run", return_value=result):
            with pytest.raises(DurationComputationError) as exc_info:
                probe_duration("audio.mp3")
        assert "code 1" in exc_info.value.message
        assert "Invalid data" in exc_info.value.details

    @pytest.mark.parametrize("stdout", ["N/A\n", "", "0\n", "-3.0\n", "nan\n"])
    def test_unusable_duration(self, stdout):
        with patch("slidecast.render.ffmpeg.subprocess.run", return_value=_completed(stdout=stdout)):
            with pytest.raises(DurationComputationError):
                probe_duration("audio.mp3")

    def test_missing_binary(self):
        with patch("slidecast.render.ffmpeg.subprocess.run", side_effect=FileNotFoundError("ffprobe")):
            with pytest.raises(DurationComputationError, match="Could not run ffprobe"):
                probe_duration("audio.mp3")


# ---------------------------------------------------------------------------
# TestSerializeNode
# ---------------------------------------------------------------------------


class TestSerializeNode:
    """serialize_node() renders each node type as one filter chain."""

    def test_zoom_expression(self):
        assert zoom_expression(_spec()) == "if(eq(on,1),1,min(zoom+0.001,1.5))"

    def test_color_canvas(self):
        node = ColorCanvas("base", "black", 1920, 1080, 12.5, 60)
        assert serialize_node(node) == "color=black:s=1920x1080:r=60:d=12.5[base]"

    def test_motion_bottom_left(self):
        node = Motion("0:v", "zoompan0", _spec(Corner.BOTTOM_LEFT))
        assert serialize_node(node) == (
            "[0:v]zoompan=z='if(eq(on,1),1,min(zoom+0.001,1.5))'"
            ":x='0*(zoom-1)':y='ih-ih/zoom':d=120:s=1920x1080:fps=60[zoompan0]"
        )

    def test_motion_top_right(self):
        node = Motion("1:v", "zoompan1", _spec(Corner.TOP_RIGHT, frames=45))
        text = serialize_node(node)
        assert ":x='iw-iw/zoom':y='0':d=45:" in text
        assert text.endswith("[zoompan1]")

    def test_alpha_format(self):
        node = AlphaFormat("zoompan0", "format0", "yuva420p")
        assert serialize_node(node) == "[zoompan0]format=pix_fmts=yuva420p[format0]"

    def test_time_shift(self):
        node = TimeShift("format1", "v1", 1.2)
        assert serialize_node(node) == "[format1]setpts=PTS-STARTPTS+1.2/TB[v1]"

    def test_composite(self):
        assert serialize_node(Composite("base", "v0", "ovl0")) == (
            "[base][v0]overlay=shortest=0:x=0:y=0[ovl0]"
        )

    def test_final_composite_sets_format(self):
        assert serialize_node(Composite("ovl0", "v1", "ovl1", "yuv420")) == (
            "[ovl0][v1]overlay=shortest=0:x=0:y=0:format=yuv420[ovl1]"
        )

    def test_caption_overlay(self):
        node = CaptionOverlay("0:v", "subtitled", "C:\\jobs\\subtitles.ass")
        assert serialize_node(node) == "[0:v]ass='C\\:/jobs/subtitles.ass'[subtitled]"

    def test_source_has_no_filter_text(self):
        with pytest.raises(TypeError):
            serialize_node(Source(0, "a.png"))

    def test_graph_joins_chains(self, sample_plan, tmp_path):
        jobs, _ = assemble(sample_plan, IMAGES, AUDIO, tmp_path)
        text = serialize_graph(jobs[1].graph)
        chains = text.split(";")
        assert chains[0].startswith("color=black:s=1280x720:r=30:d=2.7")
        assert chains[-1] == "[base][v2]overlay=shortest=0:x=0:y=0:format=yuv420[ovl2]"
        assert len(chains) == 5


# ---------------------------------------------------------------------------
# TestBatchCommand
# ---------------------------------------------------------------------------


class TestBatchCommand:
    """build_batch_command() lays out inputs, maps, and encoders."""

    @pytest.fixture
    def command(self, sample_plan, tmp_path):
        jobs, _ = assemble(sample_plan, IMAGES, AUDIO, tmp_path)
        return build_batch_command(jobs[0], ffmpeg_bin="ffmpeg-test")

    def test_starts_with_binary_and_flags(self, command):
        assert command[:6] == ["ffmpeg-test", "-hide_banner", "-nostdin", "-loglevel", "error", "-y"]

    def test_image_inputs_then_audio_slice(self, command):
        inputs = [command[i + 1] for i, arg in enumerate(command) if arg == "-i"]
        assert inputs == [IMAGES[0], IMAGES[1], AUDIO]
        audio_at = command.index(AUDIO)
        assert command[audio_at - 5:audio_at - 1] == ["-ss", "0", "-t", "3.3"]

    def test_maps_graph_output_and_audio_input(self, command):
        maps = [command[i + 1] for i, arg in enumerate(command) if arg == "-map"]
        assert maps == ["[ovl1]", "2:a"]

    def test_encoders(self, command):
        assert command[command.index("-c:v") + 1] == "libx264"
        assert command[command.index("-pix_fmt") + 1] == "yuv420p"
        assert command[command.index("-c:a") + 1] == "aac"

    def test_output_last_with_duration(self, command, tmp_path):
        assert command[-1] == str(tmp_path / "batch_000.mp4")
        assert command[-5:-3] == ["-t", "3.3"]
        assert "+faststart" in command


# ---------------------------------------------------------------------------
# TestFinalizeCommand
# ---------------------------------------------------------------------------


class TestFinalizeCommand:
    """build_finalize_command() concatenates batches with the full audio."""

    def test_stream_copy_without_captions(self, sample_plan, tmp_path):
        _, finalize = assemble(sample_plan, IMAGES, AUDIO, tmp_path)
        command = build_finalize_command(finalize)
        assert command[command.index("-f") + 1] == "concat"
        assert str(finalize.manifest_path) in command
        assert "-filter_complex" not in command
        assert command[command.index("-c:v") + 1] == "copy"
        maps = [command[i + 1] for i, arg in enumerate(command) if arg == "-map"]
        assert maps == ["0:v", "1:a"]

    def test_audio_encoded_once_from_full_track(self, sample_plan, tmp_path):
        _, finalize = assemble(sample_plan, IMAGES, AUDIO, tmp_path)
        command = build_finalize_command(finalize)
        audio_at = command.index(AUDIO)
        assert command[audio_at - 5:audio_at - 1] == ["-ss", "0", "-t", "6"]
        assert command[command.index("-c:a") + 1] == "aac"

    def test_captions_force_reencode(self, sample_plan, tmp_path):
        subs = tmp_path / "subtitles.ass"
        _, finalize = assemble(sample_plan, IMAGES, AUDIO, tmp_path, caption_path=subs)
        command = build_finalize_command(finalize)
        graph = command[command.index("-filter_complex") + 1]
        assert graph == "[0:v]ass='{}'[subtitled]".format(escape_filter_path(subs))
        assert command[command.index("-c:v") + 1] == "libx264"
        maps = [command[i + 1] for i, arg in enumerate(command) if arg == "-map"]
        assert maps == ["[subtitled]", "1:a"]
        assert command[-1] == str(tmp_path / "output.mp4")


# ---------------------------------------------------------------------------
# TestConcatManifest
# ---------------------------------------------------------------------------


class TestConcatManifest:
    """write_concat_manifest() lists absolute paths in order."""

    def test_lines_in_order(self, tmp_path):
        paths = [tmp_path / "batch_000.mp4", tmp_path / "batch_001.mp4"]
        manifest = write_concat_manifest(paths, tmp_path / "concat.txt")
        lines = manifest.read_text(encoding="utf-8").splitlines()
        assert lines == ["file '{}'".format(p.resolve()) for p in paths]

    def test_quotes_escaped(self, tmp_path):
        manifest = write_concat_manifest([tmp_path / "it's.mp4"], tmp_path / "concat.txt")
        assert "it'\\''s.mp4" in manifest.read_text(encoding="utf-8")

    def test_empty_list_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            write_concat_manifest([], tmp_path / "concat.txt")
