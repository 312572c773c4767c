#!/usr/bin/env python3
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
VNC Recorder CLI.

Connect to a VNC server and record the screen to a video.

Usage:
    vnc-recorder [OPTIONS]            # Record once; non-zero exit on failure
    vnc-recorder daemon [OPTIONS]     # Record forever, retrying with backoff
    vnc-recorder --version            # Show version information

    Or with Python:
    python -m vncrecorder.cli.main

Every option can also be set through an environment variable, e.g.
VR_VNC_HOST, VR_VNC_PORT, VR_VNC_PASSWORD, VR_FORMAT, VR_OUTPUT_PATH.

Examples:
    # Record localhost:5900 to rotating MP4 files in ./recordings
    vnc-recorder

    # Keep a live HLS stream with one day of history, reconnecting forever
    vnc-recorder daemon --host 10.0.0.5 --format hls --hls-max-duration 86400
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from typing import List, Optional

from vncrecorder.config import RecorderConfig, resolve_output_dir
from vncrecorder.core.orchestrator import SessionOrchestrator
from vncrecorder.core.supervisor import DaemonSupervisor
from vncrecorder.exceptions import ConfigurationError, VNCRecorderError
from vncrecorder.utils.logger import LogFormat, configure_logging, logger

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

LOG_LEVELS = ["debug", "info", "warning", "error", "critical"]
LOG_FORMATS = [f.value for f in LogFormat]


def get_version() -> str:
    """Get the VNC Recorder version."""
    import vncrecorder
    return getattr(vncrecorder, "__version__", "unknown")


def _env_choice(name: str, default: str, choices: List[str]) -> str:
    """Read an environment variable that must be one of ``choices``.

    argparse does not check defaults against ``choices``.
    """
    value = os.environ.get(name, default).lower()
    if value not in choices:
        raise ConfigurationError(
            f"{name} must be one of {', '.join(choices)}, got {value!r}"
        )
    return value


def common_arguments(defaults: RecorderConfig) -> argparse.ArgumentParser:
    """Flags shared by the record and daemon commands.

    Defaults come from ``defaults``, normally ``RecorderConfig.from_env()``.
    """
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "--ffmpeg",
        default=defaults.ffmpeg,
        help="Which ffmpeg executable to use (default: ffmpeg)",
    )
    parser.add_argument(
        "--host",
        default=defaults.host,
        help="VNC host (default: localhost)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=defaults.port,
        help="VNC port (default: 5900)",
    )
    parser.add_argument(
        "--password",
        default=defaults.password,
        help="Password to connect to the VNC host; empty for no authentication",
    )
    parser.add_argument(
        "--framerate",
        type=int,
        default=defaults.framerate,
        help="Framerate to record (default: 30)",
    )
    parser.add_argument(
        "--crf",
        type=int,
        default=defaults.crf,
        help="Constant Rate Factor (CRF) to record with (default: 35)",
    )
    parser.add_argument(
        "--output-path",
        default=defaults.output_path,
        help="Output directory for recordings (default: ./recordings)",
    )
    parser.add_argument(
        "--format",
        default=defaults.format.value,
        choices=["mp4", "hls"],
        help="Output format: 'mp4' (default) or 'hls'",
    )
    parser.add_argument(
        "--mp4-max-duration",
        type=int,
        default=defaults.mp4_max_duration,
        help="Maximum duration per MP4 file in seconds (default: 1800 = 30 min)",
    )
    parser.add_argument(
        "--hls-segment-duration",
        type=int,
        default=defaults.hls_segment_duration,
        help="Duration of each HLS segment in seconds (max 30)",
    )
    parser.add_argument(
        "--hls-max-duration",
        type=int,
        default=defaults.hls_max_duration,
        help="Maximum HLS recording duration to keep in seconds (default: 2 days = 172800)",
    )
    parser.add_argument(
        "--log-level",
        default=_env_choice("VR_LOG_LEVEL", "info", LOG_LEVELS),
        choices=LOG_LEVELS,
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--log-format",
        default=_env_choice("VR_LOG_FORMAT", "text", LOG_FORMATS),
        choices=LOG_FORMATS,
        help="Log output format (default: text)",
    )
    return parser


def build_parser(defaults: Optional[RecorderConfig] = None) -> argparse.ArgumentParser:
    """Build the argument parser with the daemon subcommand.

    Raises:
        ConfigurationError: If a VR_* environment variable is invalid
    """
    common = common_arguments(defaults or RecorderConfig.from_env())
    parser = argparse.ArgumentParser(
        prog="vnc-recorder",
        description="Connect to a vnc server and record the screen to a video.",
        parents=[common],
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {get_version()}")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser(
        "daemon",
        aliases=["d", "watch"],
        parents=[common],
        help="Run continuously in background, retry on connection failure with exponential backoff",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> RecorderConfig:
    """Create a RecorderConfig from parsed arguments."""
    return RecorderConfig(
        host=args.host,
        port=args.port,
        password=args.password,
        ffmpeg=args.ffmpeg,
        framerate=args.framerate,
        crf=args.crf,
        output_path=args.output_path,
        format=args.format,
        mp4_max_duration=args.mp4_max_duration,
        hls_segment_duration=args.hls_segment_duration,
        hls_max_duration=args.hls_max_duration,
    )


async def record(config: RecorderConfig) -> None:
    """Record a single session into the resolved output directory."""
    output_dir = resolve_output_dir(config.output_path)
    await SessionOrchestrator(config, output_dir).run()


async def daemon(config: RecorderConfig) -> None:
    """Record sessions forever, reconnecting with backoff."""
    await DaemonSupervisor(config).run()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the vnc-recorder command."""
    try:
        parser = build_parser()
    except ConfigurationError as e:
        logger.error(f"Invalid environment configuration: {e}")
        return EXIT_FAILURE
    args = parser.parse_args(argv)
    configure_logging(args.log_level, args.log_format)

    try:
        config = config_from_args(args)
        if args.command in ("daemon", "d", "watch"):
            asyncio.run(daemon(config))
        else:
            asyncio.run(record(config))
    except VNCRecorderError as e:
        logger.error(f"Recording failed: {e}")
        return EXIT_FAILURE
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return EXIT_INTERRUPTED

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
