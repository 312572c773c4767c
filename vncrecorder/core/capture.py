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

"""Fixed-cadence frame capture."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional, Protocol

from vncrecorder.utils.logger import logger


class Canvas(Protocol):
    def capture(self) -> Any:
        ...


class FrameSink(Protocol):
    def encode(self, frame: Any) -> None:
        ...


class FrameCaptureLoop:
    """Read the session canvas every ``1 / framerate`` seconds and encode it.

    Each tick captures the canvas, hands the frame to the target and sleeps
    for whatever remains of the frame period. A tick that overruns its
    period is not compensated; the next tick starts immediately.

    Encoding runs in a worker thread so a slow pipe write never blocks the
    event loop that services the VNC connection.
    """

    def __init__(
        self,
        canvas: Canvas,
        target: FrameSink,
        framerate: int,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.canvas = canvas
        self.target = target
        self.framerate = framerate
        self._clock = clock
        self._sleep = sleep
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.frames_captured = 0

    @property
    def period(self) -> float:
        """Frame period in seconds."""
        return 1.0 / self.framerate

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def start(self) -> asyncio.Task:
        """Run the loop as a background task."""
        self._task = asyncio.create_task(self.run(), name="frame-capture")
        return self._task

    def stop(self) -> None:
        """Signal the loop to exit after its current tick."""
        self._stop.set()

    async def tick(self) -> None:
        """Capture and encode one frame, then sleep out the rest of the period."""
        started = self._clock()

        frame = self.canvas.capture()
        if frame is not None:
            await asyncio.to_thread(self.target.encode, frame)
            self.frames_captured += 1

        remaining = self.period - (self._clock() - started)
        if remaining > 0:
            await self._sleep(remaining)

    async def run(self) -> None:
        logger.debug(f"[CAPTURE] Capture loop started at {self.framerate} fps")
        while not self._stop.is_set():
            await self.tick()
        logger.debug(f"[CAPTURE] Capture loop finished: {self.frames_captured} frames")
