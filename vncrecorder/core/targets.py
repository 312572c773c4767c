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

"""Recording targets.

A target accepts captured frames and owns the ffmpeg process that turns them
into video. Two variants exist:

- ``RotatingFileTarget`` writes ``output-<ts>-<suffix>.mp4`` files and starts
  a new file every ``max_duration`` seconds.
- ``SegmentedStreamTarget`` runs a single ffmpeg process for the whole
  session that writes an HLS playlist and prunes its own old segments.

Both expose ``encode`` and ``close`` to the capture side and a ``run``
coroutine that drives the encoder process until the target is closed.
"""

from __future__ import annotations

import asyncio
import secrets
import time
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional, Union

from vncrecorder.config import OutputFormat, RecorderConfig
from vncrecorder.core.pipeline import SubprocessPipeline
from vncrecorder.core.ppm import PixelStreamEncoder
from vncrecorder.exceptions import (
    EncoderError,
    EncoderExitError,
    FrameEncodeError,
)
from vncrecorder.utils.logger import logger

DEFAULT_FRAMERATE = 12
DEFAULT_SEGMENT_DURATION = 10
DEFAULT_RETENTION_WINDOW = 172800  # 2 days
KEYFRAME_INTERVAL = 250
PLAYLIST_NAME = "stream.m3u8"
SEGMENT_PATTERN = "segment_%Y%m%d_%H%M%S_%%05d.ts"


class TargetState(str, Enum):
    """Lifecycle state of a recording target."""

    UNINITIALIZED = "uninitialized"
    RUNNING = "running"
    CLOSED = "closed"


def random_suffix() -> str:
    """Return 8 random hex characters for unique filenames."""
    return secrets.token_hex(4)


class RecordingTarget(ABC):
    """Something that accepts frames and can be closed.

    Subclasses implement ``build_command`` and ``run``. ``encode`` and
    ``close`` are shared and safe to call from any thread.
    """

    def __init__(
        self,
        ffmpeg_path: str,
        output_dir: Union[str, Path],
        framerate: Optional[int] = None,
        crf: int = 35,
    ) -> None:
        self.ffmpeg_path = ffmpeg_path
        self.output_dir = Path(output_dir)
        self.framerate = framerate or DEFAULT_FRAMERATE
        self.crf = crf
        self._pipeline: Optional[SubprocessPipeline] = None
        self._encoder = PixelStreamEncoder()
        self._closed = False

    @property
    def pipeline(self) -> Optional[SubprocessPipeline]:
        """The currently active encoder pipeline, if any."""
        return self._pipeline

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def state(self) -> TargetState:
        if self._closed:
            return TargetState.CLOSED
        if self._pipeline is None:
            return TargetState.UNINITIALIZED
        return TargetState.RUNNING

    def input_args(self) -> List[str]:
        """ffmpeg arguments reading PPM frames from stdin."""
        return [
            self.ffmpeg_path,
            "-f", "image2pipe",
            "-vcodec", "ppm",
            "-r", str(self.framerate),
            "-an",  # no audio
            "-y",
            "-i", "-",
        ]

    def encode(self, frame: Any) -> None:
        """Send one frame to the active encoder.

        A no-op when no encoder is running or the target is closed. Frames
        that fail to serialize or write are logged and dropped.
        """
        pipeline = self._pipeline
        if pipeline is None or pipeline.closed or self.closed:
            return

        try:
            chunks = self._encoder.encode(frame)
        except FrameEncodeError as e:
            logger.error(f"[TARGET] Error while encoding image: {e}")
            return

        pipeline.write(chunks)

    def close(self) -> None:
        """Close the target and its active encoder. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._pipeline is not None:
            self._pipeline.close()

    async def _run_pipeline(self, args: List[str]) -> None:
        """Launch one encoder process and block until it exits.

        Raises:
            EncoderLaunchError: If the process could not be started
            EncoderExitError: If the process exited with a non-zero status
        """
        pipeline = SubprocessPipeline(args)
        await asyncio.to_thread(pipeline.start)
        self._pipeline = pipeline
        if self._closed:
            # Closed while launching; release stdin so ffmpeg exits.
            pipeline.close()

        returncode = await asyncio.to_thread(pipeline.wait)
        if returncode != 0:
            logger.error(f"[TARGET] Error while running ffmpeg: {' '.join(args)}")
            raise EncoderExitError(returncode, args)

    @abstractmethod
    def build_command(self, *args: Any) -> List[str]:
        """Build the full ffmpeg command line."""

    @abstractmethod
    async def run(self) -> None:
        """Drive the encoder process until the target is closed."""


class RotatingFileTarget(RecordingTarget):
    """Record to MP4 files, starting a new file every ``max_duration`` seconds.

    A rotation timer closes the current encoder; ``run`` notices the exit and
    launches the next file. Frames arriving between the two are dropped.
    Encoder failures are logged and the rotation cycle is retried.
    """

    extension = "mp4"

    def __init__(
        self,
        ffmpeg_path: str,
        output_dir: Union[str, Path],
        framerate: Optional[int] = None,
        crf: int = 35,
        max_duration: float = 1800,
        retry_delay: float = 1.0,
    ) -> None:
        super().__init__(ffmpeg_path, output_dir, framerate=framerate, crf=crf)
        self.max_duration = max_duration
        self.retry_delay = retry_delay
        self.current_file: Optional[Path] = None
        self.launches = 0

    def next_output_file(self) -> Path:
        """Compute the path of the next output file."""
        name = f"output-{int(time.time())}-{random_suffix()}.{self.extension}"
        return self.output_dir / name

    def build_command(self, output_file: Union[str, Path]) -> List[str]:
        return self.input_args() + [
            "-vcodec", "libx264",
            "-preset", "ultrafast",
            "-tune", "zerolatency",
            "-g", str(KEYFRAME_INTERVAL),
            "-crf", str(self.crf),
            "-pix_fmt", "yuv420p",
            "-movflags", "+faststart",
            str(output_file),
        ]

    def rotate(self) -> None:
        """Close the current file; ``run`` starts the next one."""
        pipeline = self._pipeline
        if pipeline is not None and not self.closed:
            logger.info(
                f"[TARGET] Max duration reached ({self.max_duration}s), closing {self.current_file}"
            )
            pipeline.close()

    async def _rotation_timer(self) -> None:
        while not self.closed:
            await asyncio.sleep(self.max_duration)
            if self.closed:
                return
            await asyncio.to_thread(self.rotate)

    async def run(self) -> None:
        timer = asyncio.create_task(self._rotation_timer())
        try:
            while not self.closed:
                self.current_file = self.next_output_file()
                self.launches += 1
                logger.info(
                    f"[TARGET] Starting new MP4 recording #{self.launches}: {self.current_file} "
                    f"(max duration {self.max_duration}s)"
                )
                try:
                    await self._run_pipeline(self.build_command(self.current_file))
                except EncoderError as e:
                    logger.error(f"[TARGET] MP4 encoder error: {e}")
                    if not self.closed:
                        await asyncio.sleep(self.retry_delay)

                if self.closed:
                    break
                logger.info("[TARGET] Rotating to new MP4 file...")
        finally:
            timer.cancel()
        logger.info("[TARGET] MP4 encoder stopped")


class SegmentedStreamTarget(RecordingTarget):
    """Record a live HLS stream with bounded retention.

    One ffmpeg process lives for the whole session. It cuts segments of
    ``segment_duration`` seconds, keeps ``retention_window`` seconds of them
    in the playlist, deletes expired segment files and never writes an end
    marker, so the playlist stays live.
    """

    def __init__(
        self,
        ffmpeg_path: str,
        output_dir: Union[str, Path],
        framerate: Optional[int] = None,
        crf: int = 35,
        segment_duration: Optional[int] = None,
        retention_window: Optional[int] = None,
    ) -> None:
        super().__init__(ffmpeg_path, output_dir, framerate=framerate, crf=crf)
        self.segment_duration = segment_duration or DEFAULT_SEGMENT_DURATION
        self.retention_window = retention_window or DEFAULT_RETENTION_WINDOW

    @property
    def segment_count(self) -> int:
        """Number of segments kept in the playlist (``hls_list_size``)."""
        return max(1, self.retention_window // self.segment_duration)

    @property
    def playlist_path(self) -> Path:
        return self.output_dir / PLAYLIST_NAME

    @property
    def segment_pattern(self) -> Path:
        # strftime fields plus a sequence number keep names unique across restarts
        return self.output_dir / SEGMENT_PATTERN

    def build_command(self) -> List[str]:
        return self.input_args() + [
            "-vcodec", "libx264",
            "-preset", "veryfast",
            "-g", str(KEYFRAME_INTERVAL),
            "-crf", str(self.crf),
            "-pix_fmt", "yuv420p",
            "-f", "hls",
            "-hls_time", str(self.segment_duration),
            "-hls_list_size", str(self.segment_count),
            "-hls_flags", "delete_segments+append_list+omit_endlist",
            "-strftime", "1",
            "-hls_segment_filename", str(self.segment_pattern),
            str(self.playlist_path),
        ]

    async def run(self) -> None:
        """Run the encoder for the whole session.

        Raises:
            EncoderLaunchError: If ffmpeg could not be started
            EncoderExitError: If ffmpeg exited with a non-zero status
        """
        logger.info(
            f"[TARGET] Starting HLS recording: output={self.output_dir} "
            f"segment_duration={self.segment_duration}s "
            f"max_duration={self.retention_window}s "
            f"hls_list_size={self.segment_count}"
        )
        await self._run_pipeline(self.build_command())
        logger.info("[TARGET] HLS encoder stopped")


def create_target(
    config: RecorderConfig,
    output_dir: Union[str, Path],
    ffmpeg_path: str,
) -> RecordingTarget:
    """Build the target matching the configured output format."""
    if config.format == OutputFormat.HLS:
        logger.info("[TARGET] Using HLS format")
        return SegmentedStreamTarget(
            ffmpeg_path,
            output_dir,
            framerate=config.framerate,
            crf=config.crf,
            segment_duration=config.hls_segment_duration,
            retention_window=config.hls_max_duration,
        )

    logger.info(f"[TARGET] Using MP4 format with rotation (max duration {config.mp4_max_duration}s)")
    return RotatingFileTarget(
        ffmpeg_path,
        output_dir,
        framerate=config.framerate,
        crf=config.crf,
        max_duration=config.mp4_max_duration,
    )
