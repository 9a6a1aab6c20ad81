# Copyright 2026 Firefly Software Solutions Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
SiteCast CLI.

Usage:
    sitecast record URL [OPTIONS]   # Record one page and exit
    sitecast serve [OPTIONS]        # Start the SiteCast service
    sitecast version                # Show version information

Examples:
    # Ten seconds of a page at 1280x720
    sitecast record https://example.com --duration 10000 --width 1280 --height 720 \\
        --viewport-width 1280 --viewport-height 720

    # Start the service with two concurrent recordings
    sitecast serve --port 8080 --max-concurrent 2
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import platform
import sys
from pathlib import Path
from typing import List, Optional

from sitecast.core.encoder import VideoFormat
from sitecast.core.models import DEFAULT_DURATION_MS, RecordingRequest
from sitecast.core.pipeline import PipelineConfig, record
from sitecast.exceptions import InvalidRequestError, SiteCastError
from sitecast.utils.logger import configure_logging, logger


def get_version() -> str:
    """Get the SiteCast version."""
    import sitecast
    return getattr(sitecast, "__version__", "unknown")


def cmd_version(args: argparse.Namespace) -> int:
    """Show version information."""
    version = get_version()
    if args.json:
        info = {
            "sitecast": version,
            "python": platform.python_version(),
            "platform": platform.system(),
            "architecture": platform.machine(),
        }
        print(json.dumps(info, indent=2))
    else:
        print(f"SiteCast {version}")
    return 0


def cmd_record(args: argparse.Namespace) -> int:
    """Record one page without the scheduler."""
    if args.verbose:
        configure_logging("debug")

    try:
        request = RecordingRequest.from_mapping({
            "url": args.url,
            "duration": args.duration,
            "width": args.width,
            "height": args.height,
            "cropX": args.crop_x,
            "cropY": args.crop_y,
            "viewportWidth": args.viewport_width,
            "viewportHeight": args.viewport_height,
        })
    except InvalidRequestError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    config = PipelineConfig.from_env()
    if args.output_dir:
        config.output_dir = Path(args.output_dir)
    if args.format:
        config.video_format = VideoFormat(args.format)
    if args.verbose:
        config.verbose = True

    try:
        result = asyncio.run(record(request, config))
    except SiteCastError as e:
        logger.error(f"Recording failed: {e}")
        return 1

    print(f"Recording completed: {result.output_path} ({result.size_bytes} bytes)")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the HTTP service under uvicorn."""
    import uvicorn

    if args.max_concurrent is not None:
        os.environ["SITECAST_MAX_CONCURRENT"] = str(args.max_concurrent)
    configure_logging(args.log_level)

    print()
    print(f"  SiteCast {get_version()}")
    print()
    print(f"  Host:      {args.host}")
    print(f"  Port:      {args.port}")
    print(f"  Log Level: {args.log_level}")
    print(f"  Max Jobs:  {os.environ.get('SITECAST_MAX_CONCURRENT', '3')}")
    print()
    print(f"  API Docs:  http://{args.host}:{args.port}/docs")
    print(f"  Health:    http://{args.host}:{args.port}/health")
    print()

    # Job state is in memory, so the service always runs one worker.
    uvicorn.run(
        "sitecast.service.app:app",
        host=args.host,
        port=args.port,
        workers=1,
        log_level=args.log_level,
    )
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="sitecast",
        description="Record live web pages to video files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    version_parser = subparsers.add_parser("version", help="Show version information")
    version_parser.add_argument("--json", action="store_true", help="Output as JSON")
    version_parser.set_defaults(func=cmd_version)

    record_parser = subparsers.add_parser("record", help="Record one page and exit")
    record_parser.add_argument("url", help="Page to record")
    record_parser.add_argument(
        "--duration", type=int, default=DEFAULT_DURATION_MS,
        help=f"Recording length in milliseconds (default: {DEFAULT_DURATION_MS})",
    )
    record_parser.add_argument("--width", type=int, help="Output width (default: 1920)")
    record_parser.add_argument("--height", type=int, help="Output height (default: 1080)")
    record_parser.add_argument("--crop-x", type=int, help="Crop offset from the left")
    record_parser.add_argument("--crop-y", type=int, help="Crop offset from the top")
    record_parser.add_argument("--viewport-width", type=int, help="Browser viewport width")
    record_parser.add_argument("--viewport-height", type=int, help="Browser viewport height")
    record_parser.add_argument(
        "--output-dir", help="Output directory (default: $SITECAST_OUTPUT_DIR or ./recordings)"
    )
    record_parser.add_argument(
        "--format", choices=[f.value for f in VideoFormat], help="Output format (default: mp4)"
    )
    record_parser.add_argument("--verbose", action="store_true", help="Verbose logging")
    record_parser.set_defaults(func=cmd_record)

    serve_parser = subparsers.add_parser("serve", help="Start the SiteCast service")
    serve_parser.add_argument(
        "--host",
        default=os.environ.get("SITECAST_HOST", "0.0.0.0"),
        help="Host to bind to (default: 0.0.0.0)",
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("SITECAST_PORT", "8000")),
        help="Port to bind to (default: 8000)",
    )
    serve_parser.add_argument(
        "--log-level",
        default=os.environ.get("SITECAST_LOG_LEVEL", "info"),
        choices=["debug", "info", "warning", "error", "critical"],
        help="Log level (default: info)",
    )
    serve_parser.add_argument(
        "--max-concurrent",
        type=int,
        help="Maximum concurrent recordings (default: $SITECAST_MAX_CONCURRENT or 3)",
    )
    serve_parser.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the sitecast command."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(0)
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
