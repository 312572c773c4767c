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

"""Shutdown requests from OS signals.

A ``ShutdownWatcher`` turns SIGINT, SIGHUP, SIGTERM and SIGQUIT into an
``asyncio.Event``. Its handlers stay installed for the whole of a recording
or daemon run, so a signal that arrives while connecting, negotiating or
sleeping out a reconnect backoff ends the run as cleanly as one that arrives
while streaming.
"""

from __future__ import annotations

import asyncio
import signal
from typing import Any, Awaitable, List, Optional, Tuple

from vncrecorder.utils.logger import logger

SHUTDOWN_SIGNALS = ("SIGINT", "SIGHUP", "SIGTERM", "SIGQUIT")


class ShutdownWatcher:
    """Shared shutdown flag for one run of the recorder.

    Example:
        >>> shutdown = ShutdownWatcher()
        >>> shutdown.install()
        >>> completed, transport = await shutdown.guard(connector.open(host, port))
        >>> shutdown.remove()
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._installed: List[int] = []
        self.reason: Optional[str] = None

    @property
    def requested(self) -> bool:
        """Whether a shutdown has been requested."""
        return self._event.is_set()

    @property
    def installed(self) -> List[int]:
        """Signals currently routed to this watcher."""
        return list(self._installed)

    def request(self, reason: str = "shutdown requested") -> None:
        """Request a shutdown. Only the first reason is kept."""
        if self._event.is_set():
            return
        self.reason = reason
        logger.info(f"[SHUTDOWN] Signal received: {reason}")
        self._event.set()

    async def wait(self) -> Optional[str]:
        """Block until a shutdown is requested and return its reason."""
        await self._event.wait()
        return self.reason

    async def guard(self, awaitable: Awaitable[Any]) -> Tuple[bool, Any]:
        """Await ``awaitable`` unless a shutdown is requested first.

        Exceptions raised by ``awaitable`` propagate unchanged.

        Returns:
            ``(True, result)`` if the awaitable finished first, or
            ``(False, None)`` if it was cancelled because of a shutdown
        """
        work = asyncio.ensure_future(awaitable)
        stop = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, stop}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            stop.cancel()

        if work.done():
            return True, work.result()
        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        return False, None

    def _on_signal(self, signum: int) -> None:
        self.request(signal.Signals(signum).name)

    def install(self) -> None:
        """Route the shutdown signals to this watcher on the running loop."""
        loop = asyncio.get_running_loop()
        for name in SHUTDOWN_SIGNALS:
            signum = getattr(signal, name, None)
            if signum is None or signum in self._installed:
                continue
            try:
                loop.add_signal_handler(signum, self._on_signal, signum)
            except (NotImplementedError, RuntimeError, ValueError):
                # Not supported on this platform or outside the main thread
                continue
            self._installed.append(signum)

    def remove(self) -> None:
        """Restore the default handlers for the installed signals."""
        if not self._installed:
            return
        loop = asyncio.get_running_loop()
        for signum in self._installed:
            loop.remove_signal_handler(signum)
        self._installed = []
