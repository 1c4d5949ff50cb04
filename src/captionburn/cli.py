"""
Command-line interface: run the HTTP server or process one video locally.
"""

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

from .assets import AssetManager
from .config import load_settings, setup_logging
from .encoder import EncodeOrchestrator
from .fonts import default_font_registry
from .models import Failure
from .pipeline import PipelineRequest, RequestPipeline, describe_failure
from .server import build_resolver, serve

logger = logging.getLogger("captionburn")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    ap = argparse.ArgumentParser(description="Burn subtitles (and optional B-roll) into videos")
    ap.add_argument("--env-file", default=None, help="Read settings from this .env file")
    ap.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    sub = ap.add_subparsers(dest="command", required=True)

    srv = sub.add_parser("serve", help="Run the HTTP API")
    srv.add_argument("--host", default="0.0.0.0")
    srv.add_argument("--port", type=int, default=8000)

    burn = sub.add_parser("burn", help="Process one video and write the result")
    burn.add_argument("--input_video", required=True)
    burn.add_argument("--srt", default=None, help="Subtitle file to burn in")
    burn.add_argument("--font", default=None, help="Font key (unknown keys use the default font)")
    burn.add_argument("--broll", action="store_true", help="Insert a stock B-roll clip")
    burn.add_argument("--output", default="output_captioned.mp4")
    burn.add_argument("--workdir", default=None, help="Scratch directory for ephemeral assets")

    return ap.parse_args(argv)


def run_burn(args: argparse.Namespace) -> int:
    settings = load_settings(args.env_file)
    if args.workdir:
        settings = replace(settings, work_dir=args.workdir)

    video = Path(args.input_video).read_bytes()
    srt_content = Path(args.srt).read_text(encoding="utf-8") if args.srt else None

    pipeline = RequestPipeline(
        AssetManager(settings.work_dir),
        default_font_registry(settings.fonts_dir, settings.default_font),
        EncodeOrchestrator(settings.ffmpeg_binary, timeout=settings.encode_timeout),
        build_resolver(settings) if args.broll else None,
    )
    outcome = pipeline.run(
        PipelineRequest(
            video=video,
            filename=Path(args.input_video).name,
            srt_content=srt_content,
            font_name=args.font,
            add_broll=args.broll,
        )
    )
    if isinstance(outcome, Failure):
        logger.error(describe_failure(outcome))
        return 1

    Path(args.output).write_bytes(outcome.data)
    logger.info(f"Done -> {args.output}")
    return 0


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    args = parse_args(argv)
    setup_logging(args.verbose)

    if args.command == "serve":
        serve(args.host, args.port, load_settings(args.env_file))
        return
    sys.exit(run_burn(args))


if __name__ == "__main__":
    main()
