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

"""Lifecycle of one external encoder process.

A ``SubprocessPipeline`` owns an ffmpeg process and the pipe feeding its
standard input. Frames are written from a worker thread while ``close`` may
be called from the event loop, the rotation timer or a signal handler, so
``close`` marks the pipeline closed before releasing the pipe. A write that
observes the flag is skipped; a write already in flight when the pipe is
released fails and is counted as dropped without being reported.
"""

from __future__ import annotations

import errno
import os
import shutil
import subprocess
import threading
from typing import Iterable, List, Optional

from vncrecorder.exceptions import EncoderLaunchError
from vncrecorder.utils.logger import logger


def resolve_encoder_binary(ffmpeg: str) -> str:
    """Find the ffmpeg executable.

    An absolute path that exists is used as-is; anything else is looked up
    on PATH.

    Raises:
        EncoderLaunchError: If the binary cannot be found
    """
    if os.path.isabs(ffmpeg) and os.path.exists(ffmpeg):
        logger.info(f"[PIPELINE] Using ffmpeg from configured path: {ffmpeg}")
        return ffmpeg

    found = shutil.which(ffmpeg)
    if not found:
        logger.error(f"[PIPELINE] ffmpeg binary not found in PATH or configured location: {ffmpeg}")
        raise EncoderLaunchError(f"ffmpeg binary not found: {ffmpeg}")
    logger.info(f"[PIPELINE] ffmpeg binary found in PATH: {found}")
    return found


class SubprocessPipeline:
    """An encoder process and its stdin pipe.

    The process inherits stdout and stderr so ffmpeg's own log output ends up
    next to the recorder's.

    Example:
        >>> pipeline = SubprocessPipeline(["ffmpeg", "-i", "-", "out.mp4"])
        >>> pipeline.start()
        >>> pipeline.write([header, payload])
        >>> pipeline.close()
        >>> pipeline.wait()
    """

    def __init__(self, args: List[str], name: str = "ffmpeg") -> None:
        self.args = list(args)
        self.name = name
        self._process: Optional[subprocess.Popen] = None
        self._closed = False
        self._close_lock = threading.Lock()
        self.frames_written = 0
        self.frames_dropped = 0

    @property
    def closed(self) -> bool:
        """Whether the pipeline no longer accepts frames."""
        return self._closed

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode if self._process else None

    def start(self) -> None:
        """Spawn the encoder process.

        Raises:
            EncoderLaunchError: If the binary is missing or cannot be executed
        """
        binary = self.args[0]
        if not os.path.exists(binary) and not shutil.which(binary):
            raise EncoderLaunchError(f"ffmpeg binary does not exist: {binary}")

        logger.info(f"[PIPELINE] Launching binary: {' '.join(self.args)}")
        try:
            self._process = subprocess.Popen(self.args, stdin=subprocess.PIPE)
        except FileNotFoundError:
            raise EncoderLaunchError(f"ffmpeg not found: {binary}")
        except PermissionError as e:
            raise EncoderLaunchError(f"Permission denied starting ffmpeg: {e}")
        except OSError as e:
            if e.errno == errno.ENOSPC:
                raise EncoderLaunchError("No space left on device")
            raise EncoderLaunchError(f"Failed to start ffmpeg: {e}")
        logger.debug(f"[PIPELINE] {self.name} started with pid {self.pid}")

    def write(self, chunks: Iterable[bytes]) -> bool:
        """Write one frame's worth of data to the encoder.

        Never raises: after ``close`` the write is a no-op, and an I/O error
        while open is logged and the frame dropped.

        Returns:
            True if the frame was handed to the pipe
        """
        stream = self._process.stdin if self._process else None
        if self._closed or stream is None:
            self.frames_dropped += 1
            return False

        try:
            for chunk in chunks:
                stream.write(chunk)
            stream.flush()
        except (BrokenPipeError, OSError, ValueError) as e:
            self.frames_dropped += 1
            if not self._closed:
                logger.error(f"[PIPELINE] Error while encoding image: {e}")
            return False

        self.frames_written += 1
        return True

    def close(self) -> bool:
        """Stop accepting frames and release the encoder's stdin.

        ffmpeg finalizes its output once stdin reaches EOF. Safe to call any
        number of times from any thread.

        Returns:
            True if this call closed the pipeline, False if it was already closed
        """
        with self._close_lock:
            if self._closed:
                return False
            self._closed = True

        stream = self._process.stdin if self._process else None
        if stream is not None:
            try:
                stream.close()
            except (BrokenPipeError, OSError, ValueError) as e:
                logger.debug(f"[PIPELINE] Could not close input cleanly: {e}")

        logger.info(
            f"[PIPELINE] Closed {self.name} input "
            f"({self.frames_written} frames written, {self.frames_dropped} dropped)"
        )
        return True

    def wait(self, timeout: Optional[float] = None) -> int:
        """Block until the encoder exits and return its exit status."""
        if self._process is None:
            raise EncoderLaunchError("ffmpeg process was never started")
        self._process.wait(timeout=timeout)
        logger.debug(f"[PIPELINE] {self.name} (pid {self.pid}) exited with status {self.returncode}")
        return self.returncode
