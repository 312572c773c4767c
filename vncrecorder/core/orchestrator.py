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

"""One recording attempt, from TCP connect to teardown.

``SessionOrchestrator.run`` walks through a fixed set of states:

    connecting -> negotiating -> streaming -> closing -> done | failed

While streaming, three background tasks are active: the target's encoder
task, the frame capture loop and a reader that decodes server messages.
All of them report to the orchestrator through one event queue, which is
also where shutdown requests land. The first error or shutdown moves the
session to ``closing``. A shutdown requested before streaming starts
abandons the connect or handshake and ends the session cleanly.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, List, Optional, Union

from vncrecorder.config import RecorderConfig
from vncrecorder.core.capture import FrameCaptureLoop
from vncrecorder.core.pipeline import resolve_encoder_binary
from vncrecorder.core.session import Session, SessionConnector, UpdateKind, VNCConnector
from vncrecorder.core.shutdown import ShutdownWatcher
from vncrecorder.core.targets import RecordingTarget, create_target
from vncrecorder.exceptions import (
    EncoderError,
    TransportError,
    VNCRecorderError,
)
from vncrecorder.utils.logger import logger

TargetFactory = Callable[[RecorderConfig, Union[str, Path], str], RecordingTarget]


class SessionState(str, Enum):
    """States of a recording session."""

    CONNECTING = "connecting"
    NEGOTIATING = "negotiating"
    STREAMING = "streaming"
    CLOSING = "closing"
    DONE = "done"
    FAILED = "failed"


class EventKind(str, Enum):
    """Kinds of events consumed by the streaming loop."""

    UPDATE = "update"
    ERROR = "error"
    SIGNAL = "signal"


@dataclass
class SessionEvent:
    kind: EventKind
    payload: Any = None


class SessionOrchestrator:
    """Drive one VNC recording session.

    Args:
        config: Recorder configuration
        output_dir: Resolved directory for recordings
        connector: Opens and negotiates VNC sessions
        target_factory: Builds the recording target for the configured format
        binary_resolver: Resolves the ffmpeg executable
        shutdown: Shared shutdown watcher; one is created when omitted
        handle_signals: Install OS signal handlers for the whole run when the
            orchestrator owns its shutdown watcher

    Example:
        >>> orchestrator = SessionOrchestrator(config, resolve_output_dir())
        >>> await orchestrator.run()  # returns on signal, raises on failure
        >>> orchestrator.shutdown_requested
        True
    """

    def __init__(
        self,
        config: RecorderConfig,
        output_dir: Union[str, Path],
        connector: Optional[SessionConnector] = None,
        target_factory: TargetFactory = create_target,
        binary_resolver: Callable[[str], str] = resolve_encoder_binary,
        shutdown: Optional[ShutdownWatcher] = None,
        handle_signals: bool = True,
    ) -> None:
        self.config = config
        self.output_dir = Path(output_dir)
        self._connector = connector or VNCConnector()
        self._target_factory = target_factory
        self._binary_resolver = binary_resolver
        self._install_handlers = handle_signals and shutdown is None
        self.shutdown = shutdown or ShutdownWatcher()

        self.state: Optional[SessionState] = None
        self.history: List[SessionState] = []
        self.shutdown_requested = False
        self.target: Optional[RecordingTarget] = None
        self.capture: Optional[FrameCaptureLoop] = None
        self.closed_at: Optional[float] = None

        self._events: Optional[asyncio.Queue] = None

        # Framebuffer request diagnostics
        self.framebuffer_requests = 0
        self._streaming_since = 0.0

    @property
    def requests_per_second(self) -> float:
        """Rate of framebuffer update requests since streaming started."""
        elapsed = time.monotonic() - self._streaming_since
        if self._streaming_since == 0.0 or elapsed <= 0:
            return 0.0
        return self.framebuffer_requests / elapsed

    def _transition(self, state: SessionState) -> None:
        previous = self.state.value if self.state else "init"
        self.state = state
        self.history.append(state)
        logger.info(
            f"[SESSION] {previous} -> {state.value} (address={self.config.address})"
        )

    def _fail(self, error: VNCRecorderError) -> VNCRecorderError:
        self._transition(SessionState.FAILED)
        logger.error(f"[SESSION] Recording failed: {error}")
        return error

    def _end_before_streaming(self) -> None:
        self.shutdown_requested = True
        logger.info(f"[SESSION] Shutdown requested before streaming: {self.shutdown.reason}")
        self._transition(SessionState.CLOSING)
        self._transition(SessionState.DONE)

    async def run(self) -> None:
        """Run the session until an error or a shutdown signal.

        Returns normally after a shutdown signal (``shutdown_requested`` is
        then True) or if the session ends without error.

        Raises:
            TransportError: If connecting, negotiating or reading fails
            EncoderError: If ffmpeg cannot be found or the HLS encoder dies
        """
        if self._install_handlers:
            self.shutdown.install()
        try:
            await self._run()
        finally:
            if self._install_handlers:
                self.shutdown.remove()

    async def _run(self) -> None:
        host, port = self.config.host, self.config.port

        self._transition(SessionState.CONNECTING)
        try:
            connected, transport = await self.shutdown.guard(
                asyncio.wait_for(
                    self._connector.open(host, port),
                    timeout=self.config.connect_timeout,
                )
            )
        except asyncio.TimeoutError:
            raise self._fail(TransportError("connection to VNC host timed out", host, port))
        except OSError as e:
            raise self._fail(TransportError(f"connection to VNC host failed: {e}", host, port))
        if not connected:
            self._end_before_streaming()
            return
        logger.info(f"[SESSION] Connection established: {self.config.address}")

        self._transition(SessionState.NEGOTIATING)
        try:
            negotiated, session = await self.shutdown.guard(
                self._connector.negotiate(transport, self.config.password)
            )
        except Exception as e:
            raise self._fail(
                TransportError(f"connection negotiation to VNC host failed: {e}", host, port)
            )
        if not negotiated:
            await transport.close()
            self._end_before_streaming()
            return

        try:
            error = await self._stream(session)
        except VNCRecorderError as e:
            raise self._fail(e)
        finally:
            await session.close()

        if error is not None:
            raise self._fail(error)
        self._transition(SessionState.DONE)

    async def _stream(self, session: Session) -> Optional[VNCRecorderError]:
        ffmpeg_path = self._binary_resolver(self.config.ffmpeg)

        self._transition(SessionState.STREAMING)
        self._events = asyncio.Queue()
        self.framebuffer_requests = 0
        self._streaming_since = time.monotonic()

        target = self._target_factory(self.config, self.output_dir, ffmpeg_path)
        self.target = target
        target_task = asyncio.create_task(self._run_target(target), name="recording-target")

        self.capture = FrameCaptureLoop(session, target, self.config.framerate)
        capture_task = self.capture.start()
        reader_task = asyncio.create_task(self._read_updates(session), name="vnc-reader")
        watcher_task = asyncio.create_task(self._watch_shutdown(), name="shutdown-watcher")

        error: Optional[VNCRecorderError] = None
        try:
            await session.request_refresh()
            error = await self._event_loop(session)
        except (ConnectionError, OSError) as e:
            error = TransportError(f"VNC connection error: {e}", self.config.host, self.config.port)
        finally:
            await self._close(target, target_task, capture_task, reader_task, watcher_task)
        return error

    async def _event_loop(self, session: Session) -> Optional[VNCRecorderError]:
        while True:
            event = await self._events.get()

            if event.kind == EventKind.ERROR:
                logger.error(f"[SESSION] VNC connection error: {event.payload}")
                return event.payload

            if event.kind == EventKind.SIGNAL:
                logger.info(f"[SESSION] Shutting down: {event.payload}")
                self.shutdown_requested = True
                return None

            if event.payload == UpdateKind.FRAMEBUFFER:
                await self._on_framebuffer_update(session)
            else:
                logger.debug(f"[SESSION] Server message received: {event.payload}")

    async def _on_framebuffer_update(self, session: Session) -> None:
        self.framebuffer_requests += 1
        logger.debug(
            f"[SESSION] Framebuffer update: reqs={self.framebuffer_requests} "
            f"seconds={time.monotonic() - self._streaming_since:.1f} "
            f"req_per_second={self.requests_per_second:.2f}"
        )
        await session.request_refresh()

    async def _watch_shutdown(self) -> None:
        reason = await self.shutdown.wait()
        self._events.put_nowait(SessionEvent(EventKind.SIGNAL, reason))

    async def _read_updates(self, session: Session) -> None:
        try:
            while True:
                update = await session.read_update()
                self._events.put_nowait(SessionEvent(EventKind.UPDATE, update))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._events.put_nowait(
                SessionEvent(
                    EventKind.ERROR,
                    TransportError(f"VNC read failed: {e!r}", self.config.host, self.config.port),
                )
            )

    async def _run_target(self, target: RecordingTarget) -> None:
        try:
            await target.run()
        except EncoderError as e:
            self._events.put_nowait(SessionEvent(EventKind.ERROR, e))
            return
        if not target.closed:
            self._events.put_nowait(
                SessionEvent(EventKind.ERROR, EncoderError("ffmpeg exited while still recording"))
            )

    async def _close(
        self,
        target: RecordingTarget,
        target_task: asyncio.Task,
        capture_task: asyncio.Task,
        reader_task: asyncio.Task,
        watcher_task: asyncio.Task,
    ) -> None:
        self._transition(SessionState.CLOSING)

        self.capture.stop()
        await asyncio.to_thread(target.close)
        self.closed_at = time.monotonic()

        # give some time to write the file
        await asyncio.sleep(self.config.shutdown_grace)

        reader_task.cancel()
        watcher_task.cancel()
        for task in (capture_task, target_task):
            if not task.done():
                task.cancel()
        await asyncio.gather(
            reader_task, watcher_task, capture_task, target_task, return_exceptions=True
        )
