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

"""VNC session adapter.

The RFB protocol itself (handshake, security negotiation, pixel formats and
rectangle decoding) is handled by ``asyncvnc``. This module narrows it down
to what the recorder needs: open a TCP connection, negotiate a session,
read update notifications, request framebuffer refreshes and capture the
current canvas as an immutable frame.

The orchestrator only depends on the ``SessionConnector`` and ``Session``
protocols, so tests can substitute in-memory fakes.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

import asyncvnc
import numpy as np

from vncrecorder.utils.logger import logger


class UpdateKind(str, Enum):
    """Server message kinds surfaced to the orchestrator."""

    FRAMEBUFFER = "framebuffer"
    CLIPBOARD = "clipboard"
    BELL = "bell"


class Session(Protocol):
    """A live, negotiated VNC session."""

    width: int
    height: int

    def capture(self) -> Optional[np.ndarray]:
        """Return the current canvas, or None before the first update."""

    async def read_update(self) -> UpdateKind:
        """Wait for and decode the next server message."""

    async def request_refresh(self) -> None:
        """Ask for an incremental update of the whole framebuffer."""

    async def close(self) -> None:
        """Close the session and its transport."""


class SessionConnector(Protocol):
    """Opens transports and negotiates sessions over them."""

    async def open(self, host: str, port: int) -> "Transport":
        ...

    async def negotiate(self, transport: "Transport", password: str) -> Session:
        ...


@dataclass
class Transport:
    """An open TCP connection to a VNC server."""

    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter

    async def close(self) -> None:
        if self.writer.is_closing():
            return
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug(f"[SESSION] Error closing transport: {e}")


_UPDATE_KINDS = {
    asyncvnc.UpdateType.VIDEO: UpdateKind.FRAMEBUFFER,
    asyncvnc.UpdateType.CLIPBOARD: UpdateKind.CLIPBOARD,
    asyncvnc.UpdateType.BELL: UpdateKind.BELL,
}


class VNCSession:
    """``Session`` backed by an ``asyncvnc.Client``."""

    def __init__(self, client: asyncvnc.Client, transport: Transport) -> None:
        self._client = client
        self._transport = transport

    @property
    def width(self) -> int:
        return self._client.video.width

    @property
    def height(self) -> int:
        return self._client.video.height

    def capture(self) -> Optional[np.ndarray]:
        video = self._client.video
        if video.data is None:
            return None
        frame = np.array(video.as_rgba(), dtype=np.uint8, copy=True)
        frame.flags.writeable = False
        return frame

    async def read_update(self) -> UpdateKind:
        update_type = await self._client.read()
        return _UPDATE_KINDS.get(update_type, UpdateKind.FRAMEBUFFER)

    async def request_refresh(self) -> None:
        self._client.video.refresh()
        await self._transport.writer.drain()

    async def close(self) -> None:
        await self._transport.close()


class VNCConnector:
    """``SessionConnector`` using asyncio streams and ``asyncvnc``."""

    async def open(self, host: str, port: int) -> Transport:
        reader, writer = await asyncio.open_connection(host, port)
        return Transport(reader=reader, writer=writer)

    async def negotiate(self, transport: Transport, password: str) -> VNCSession:
        """Run the RFB handshake.

        An empty password selects no authentication; anything else is used
        for VNC password authentication.
        """
        try:
            client = await asyncvnc.Client.create(
                transport.reader,
                transport.writer,
                username=None,
                password=password or None,
            )
        except BaseException:
            await transport.close()
            raise
        session = VNCSession(client, transport)
        logger.info(
            f"[SESSION] Negotiated session ({session.width}x{session.height}, "
            f"auth={'vnc' if password else 'none'})"
        )
        return session
