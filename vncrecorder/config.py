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
Recorder configuration.

All settings can be supplied as CLI flags or through ``VR_*`` environment
variables. ``RecorderConfig`` validates values once, at construction, so the
rest of the recorder can trust them.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from vncrecorder.exceptions import ConfigurationError
from vncrecorder.utils.logger import logger

MAX_SEGMENT_DURATION = 30
MIN_SEGMENT_DURATION = 1


class OutputFormat(str, Enum):
    """Recording output formats."""

    MP4 = "mp4"  # Rotating, bounded-duration files
    HLS = "hls"  # Live segmented playlist with bounded retention


def clamp_segment_duration(seconds: int) -> int:
    """Clamp an HLS segment duration into the supported range."""
    if seconds > MAX_SEGMENT_DURATION:
        logger.warning(
            f"[CONFIG] Segment duration {seconds}s exceeds {MAX_SEGMENT_DURATION}s, "
            f"capping to {MAX_SEGMENT_DURATION}"
        )
        return MAX_SEGMENT_DURATION
    if seconds < MIN_SEGMENT_DURATION:
        logger.warning(
            f"[CONFIG] Segment duration {seconds}s is below {MIN_SEGMENT_DURATION}s, "
            f"raising to {MIN_SEGMENT_DURATION}"
        )
        return MIN_SEGMENT_DURATION
    return seconds


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


@dataclass
class RecorderConfig:
    """Configuration for a recording session.

    Attributes:
        host: VNC host
        port: VNC port
        password: Shared-secret VNC password; empty selects no authentication
        ffmpeg: ffmpeg executable, absolute path or a name looked up on PATH
        framerate: Frames captured and encoded per second
        crf: x264 constant rate factor (0-51, lower is better quality)
        output_path: Base directory; recordings go to ``<output_path>/recordings``
        format: MP4 rotating files or HLS live stream
        mp4_max_duration: Seconds per MP4 file before rotating
        hls_segment_duration: Seconds per HLS segment, clamped to [1, 30]
        hls_max_duration: Seconds of HLS segments kept on disk
        connect_timeout: TCP connect timeout in seconds
        shutdown_grace: Seconds to wait for buffered writes after closing
    """

    host: str = "localhost"
    port: int = 5900
    password: str = "secret"
    ffmpeg: str = "ffmpeg"
    framerate: int = 30
    crf: int = 35
    output_path: str = ""
    format: OutputFormat = OutputFormat.MP4
    mp4_max_duration: int = 1800       # 30 minutes
    hls_segment_duration: int = 30
    hls_max_duration: int = 172800     # 2 days
    connect_timeout: float = 5.0
    shutdown_grace: float = 1.0

    def __post_init__(self) -> None:
        """Validate values and normalize the output format."""
        if not isinstance(self.format, OutputFormat):
            try:
                self.format = OutputFormat(str(self.format).lower())
            except ValueError:
                raise ConfigurationError(
                    f"Unknown output format {self.format!r}, expected 'mp4' or 'hls'"
                )

        if not 0 < self.port <= 65535:
            raise ConfigurationError(f"VNC port out of range: {self.port}")
        if self.framerate <= 0:
            raise ConfigurationError(f"Frame rate must be positive, got {self.framerate}")
        if not 0 <= self.crf <= 51:
            raise ConfigurationError(f"CRF must be between 0 and 51, got {self.crf}")
        if self.mp4_max_duration <= 0:
            raise ConfigurationError(
                f"MP4 max duration must be positive, got {self.mp4_max_duration}"
            )
        if self.hls_max_duration <= 0:
            raise ConfigurationError(
                f"HLS max duration must be positive, got {self.hls_max_duration}"
            )

        self.hls_segment_duration = clamp_segment_duration(self.hls_segment_duration)

    @property
    def address(self) -> str:
        """Get the VNC address as host:port."""
        return f"{self.host}:{self.port}"

    @classmethod
    def from_env(cls) -> "RecorderConfig":
        """Create RecorderConfig from environment variables.

        Environment variables:
            VR_FFMPEG_BIN: ffmpeg executable
            VR_VNC_HOST: VNC host
            VR_VNC_PORT: VNC port
            VR_VNC_PASSWORD: VNC password (empty for no authentication)
            VR_FRAMERATE: Frames per second
            VR_CRF: Constant rate factor
            VR_OUTPUT_PATH: Base output directory
            VR_FORMAT: "mp4" or "hls"
            VR_MP4_MAX_DURATION: Seconds per MP4 file
            VR_HLS_SEGMENT_DURATION: Seconds per HLS segment (max 30)
            VR_HLS_MAX_DURATION: Seconds of HLS history to keep

        Returns:
            RecorderConfig with values from environment
        """
        defaults = cls.__dataclass_fields__
        return cls(
            host=os.environ.get("VR_VNC_HOST", defaults["host"].default),
            port=_env_int("VR_VNC_PORT", defaults["port"].default),
            password=os.environ.get("VR_VNC_PASSWORD", defaults["password"].default),
            ffmpeg=os.environ.get("VR_FFMPEG_BIN", defaults["ffmpeg"].default),
            framerate=_env_int("VR_FRAMERATE", defaults["framerate"].default),
            crf=_env_int("VR_CRF", defaults["crf"].default),
            output_path=os.environ.get("VR_OUTPUT_PATH", defaults["output_path"].default),
            format=os.environ.get("VR_FORMAT", defaults["format"].default.value),
            mp4_max_duration=_env_int(
                "VR_MP4_MAX_DURATION", defaults["mp4_max_duration"].default
            ),
            hls_segment_duration=_env_int(
                "VR_HLS_SEGMENT_DURATION", defaults["hls_segment_duration"].default
            ),
            hls_max_duration=_env_int(
                "VR_HLS_MAX_DURATION", defaults["hls_max_duration"].default
            ),
        )


def resolve_output_dir(output_path: Optional[str] = None) -> Path:
    """Return the recordings directory, creating it if needed.

    Recordings always go to a ``recordings`` subdirectory of ``output_path``,
    or of the current working directory when no path is configured.

    Raises:
        ConfigurationError: If the directory cannot be created
    """
    base = Path(output_path) if output_path else Path.cwd()
    recordings = base / "recordings"
    try:
        recordings.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigurationError(f"Failed to create recordings directory {recordings}: {e}")
    return recordings
