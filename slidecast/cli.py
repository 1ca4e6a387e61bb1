"""Command-line interface for rendering a narrated slideshow request.

WHY: Not every use needs a server. A single JSON request file (the same
body POST /videos accepts) can be rendered or planned straight from the
terminal, which is also the quickest way to debug timing problems.

HOW: argparse reads the request path and output/pool overrides. The
request is validated with the pydantic model, then render_request() runs
inside a request_context() via asyncio.run(). The finished video (and
optionally the plan report) are copied out of the work dir before the
context removes it. Status messages go to stderr.

RULES:
- Positional argument: request JSON file ("-" reads stdin)
- --plan-only stops after planning; the plan goes to --plan-json or stdout
- --audio-duration skips ffprobe (and, with --plan-only, all downloads)
- Exit code 1 on any request error, 130 on Ctrl-C; the work dir and
  running ffmpeg processes are always cleaned up first
- Status output goes to stderr (not stdout)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import shutil
import sys
from pathlib import Path
from typing import Any, List, Optional

from pydantic import ValidationError

from slidecast.config import DEFAULT_BATCH_SIZE, DEFAULT_MAX_WORKERS
from slidecast.core.context import request_context
from slidecast.core.errors import InputValidationError, SlidecastError
from slidecast.formatters.plan_report import REPORT_FILENAME
from slidecast.pipeline import PipelineResult, RenderSettings, render_request
from slidecast.server.models import RenderRequest


def _status(msg: str) -> None:
    """Print a status message to stderr, flushed."""
    print(msg, file=sys.stderr, flush=True)


def _load_request(source: str) -> RenderRequest:
    """Read and validate a request JSON file.

    Raises:
        InputValidationError: unreadable file, invalid JSON, or a payload
            the request model rejects.
    """
    try:
        if source == "-":
            data = json.load(sys.stdin)  # type: Any
        else:
            with open(source, encoding="utf-8") as f:
                data = json.load(f)
    except OSError as exc:
        raise InputValidationError("Cannot read request file {}".format(source), str(exc))
    except json.JSONDecodeError as exc:
        raise InputValidationError("Request is not valid JSON", str(exc))

    try:
        return RenderRequest.model_validate(data)
    except ValidationError as exc:
        raise InputValidationError("Invalid request", str(exc))


def _on_progress(stage: str, done: int, total: int) -> None:
    if stage == "batch":
        _status("  Batch {}/{} done".format(done, total))


async def _run_pipeline(args: argparse.Namespace, request: RenderRequest, ctx) -> PipelineResult:  # noqa: ANN001
    settings = RenderSettings.from_request(
        request,
        width=args.width,
        height=args.height,
        fps=args.fps,
        batch_size=args.batch_size,
        max_workers=args.max_workers,
        captions=args.captions,
    )
    return await render_request(
        request,
        ctx,
        settings=settings,
        on_status=lambda stage: _status("{}...".format(stage.capitalize())),
        on_progress=_on_progress,
        plan_only=args.plan_only,
        audio_duration=args.audio_duration,
        allow_local=True,
    )


def _export(result: PipelineResult, args: argparse.Namespace) -> None:
    """Copy results out of the work dir before it is removed."""
    plan_path = result.files.get(REPORT_FILENAME)
    if args.plan_json and plan_path is not None:
        shutil.copyfile(plan_path, args.plan_json)
        _status("Plan written to {}".format(args.plan_json))
    elif args.plan_only and plan_path is not None:
        sys.stdout.write(plan_path.read_text(encoding="utf-8") + "\n")

    if result.output is not None:
        output = Path(args.output)
        output.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(result.output, output)
        _status("Done! Video written to {}".format(output))


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="slidecast",
        description="Render a narrated slideshow request (JSON) into a video "
                    "with speech-synchronized slides and word captions.",
    )

    parser.add_argument(
        "request",
        help="Path to the request JSON file, or '-' for stdin.",
    )
    parser.add_argument(
        "-o", "--output",
        default="output.mp4",
        help="Where to write the rendered video (default: %(default)s).",
    )
    parser.add_argument(
        "--plan-json",
        default=None,
        help="Also write the plan report (timeline and batches) to this path.",
    )
    parser.add_argument(
        "--plan-only",
        action="store_true",
        help="Plan without rendering; prints the plan unless --plan-json is given.",
    )
    parser.add_argument(
        "--audio-duration",
        type=float,
        default=None,
        help="Audio length in seconds; skips probing the audio.",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Slides per render batch (default: request value or {}).".format(DEFAULT_BATCH_SIZE),
    )
    parser.add_argument(
        "--max-workers",
        type=int,
        default=None,
        help="Batch jobs rendered at once (default: {}).".format(DEFAULT_MAX_WORKERS),
    )
    parser.add_argument("--fps", type=int, default=None, help="Output frame rate.")
    parser.add_argument("--width", type=int, default=None, help="Output width in pixels.")
    parser.add_argument("--height", type=int, default=None, help="Output height in pixels.")
    parser.add_argument(
        "--captions",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Burn in word captions (default: request value).",
    )
    parser.add_argument(
        "--work-root",
        default=None,
        help="Directory under which the per-request work dir is created.",
    )
    parser.add_argument(
        "--keep-temp",
        action="store_true",
        help="Keep the work dir (batch files, captions) for debugging.",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log pipeline details to stderr.",
    )

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI.

    RULES:
    - argv=None means use sys.argv (normal CLI invocation)
    - Explicit argv is for testing
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        request = _load_request(args.request)
        _status("Loaded request with {} segment(s)".format(len(request.segments)))
        with request_context(root=args.work_root, keep_files=args.keep_temp) as ctx:
            if args.keep_temp:
                _status("Work dir: {}".format(ctx.work_dir))
            result = asyncio.run(_run_pipeline(args, request, ctx))
            _export(result, args)
    except KeyboardInterrupt:
        _status("\nCancelled by user.")
        sys.exit(130)
    except SlidecastError as e:
        print("Error: {}".format(e.message), file=sys.stderr)
        if e.details:
            print(e.details, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
