# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Shared fixtures and fakes for VNC Recorder tests."""

import asyncio
import os
import shutil
import stat
import sys
import tempfile
import threading
import time
from typing import List, Optional

import numpy as np
import pytest

from vncrecorder.config import RecorderConfig
from vncrecorder.core.session import UpdateKind
from vncrecorder.exceptions import EncoderError


class FakeTransport:
    """Stands in for an open TCP connection."""

    def __init__(self):
        self.closed = False

    async def close(self):
        self.closed = True


class FakeSession:
    """In-memory VNC session.

    Serves the scripted ``updates`` one by one, then either raises
    ``read_error`` or blocks until cancelled.
    """

    def __init__(
        self,
        width: int = 4,
        height: int = 2,
        updates: Optional[List[UpdateKind]] = None,
        read_error: Optional[BaseException] = None,
        update_interval: float = 0.0,
    ):
        self.width = width
        self.height = height
        self.frame = np.zeros((height, width, 4), dtype=np.uint8)
        self.frame.flags.writeable = False
        self.updates = list(updates or [])
        self.read_error = read_error
        self.update_interval = update_interval
        self.refresh_requests = 0
        self.captures = 0
        self.closed = False

    def capture(self):
        self.captures += 1
        return self.frame

    async def read_update(self):
        if self.updates:
            if self.update_interval:
                await asyncio.sleep(self.update_interval)
            return self.updates.pop(0)
        if self.read_error is not None:
            raise self.read_error
        await asyncio.Event().wait()

    async def request_refresh(self):
        self.refresh_requests += 1

    async def close(self):
        self.closed = True


class FakeConnector:
    """Scripted ``SessionConnector``."""

    def __init__(
        self,
        session: Optional[FakeSession] = None,
        open_error: Optional[BaseException] = None,
        negotiate_error: Optional[BaseException] = None,
        open_delay: float = 0.0,
        negotiate_delay: float = 0.0,
    ):
        self.session = session or FakeSession()
        self.open_error = open_error
        self.negotiate_error = negotiate_error
        self.open_delay = open_delay
        self.negotiate_delay = negotiate_delay
        self.transport = FakeTransport()
        self.passwords: List[str] = []

    async def open(self, host, port):
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if self.open_error is not None:
            raise self.open_error
        return self.transport

    async def negotiate(self, transport, password):
        self.passwords.append(password)
        if self.negotiate_delay:
            await asyncio.sleep(self.negotiate_delay)
        if self.negotiate_error is not None:
            await transport.close()
            raise self.negotiate_error
        return self.session


class FakeTarget:
    """Recording target that keeps frames in memory."""

    def __init__(self, run_error: Optional[EncoderError] = None, exit_early: bool = False):
        self.run_error = run_error
        self.exit_early = exit_early
        self.frames = []
        self.close_calls = 0
        self.closed = False
        self.closed_at: Optional[float] = None
        self._lock = threading.Lock()

    def encode(self, frame):
        with self._lock:
            if self.closed:
                return
            self.frames.append((time.monotonic(), frame))

    def close(self):
        with self._lock:
            self.close_calls += 1
            if self.closed:
                return
            self.closed = True
            self.closed_at = time.monotonic()

    async def run(self):
        if self.run_error is not None:
            raise self.run_error
        if self.exit_early:
            return
        while not self.closed:
            await asyncio.sleep(0.01)


class FakeClock:
    """Monotonic clock advanced only by fake sleeps and simulated work."""

    def __init__(self):
        self.now = 100.0
        self.sleeps: List[float] = []

    def __call__(self):
        return self.now

    def advance(self, seconds: float):
        self.now += seconds

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds


def write_script(directory: str, name: str, body: str) -> str:
    """Write an executable shell script and return its path."""
    path = os.path.join(directory, name)
    with open(path, "w") as f:
        f.write("#!/bin/sh\n" + body + "\n")
    os.chmod(path, os.stat(path).st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


requires_posix_shell = pytest.mark.skipif(
    sys.platform == "win32" or not os.path.exists("/bin/sh"),
    reason="needs a POSIX shell to fake ffmpeg",
)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    path = tempfile.mkdtemp(prefix="vncrecorder-test-")
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def fake_ffmpeg(temp_dir):
    """An 'ffmpeg' that swallows stdin and exits 0 at EOF."""
    return write_script(temp_dir, "ffmpeg", "cat > /dev/null")


@pytest.fixture
def failing_ffmpeg(temp_dir):
    """An 'ffmpeg' that exits with status 3 immediately."""
    return write_script(temp_dir, "ffmpeg-broken", "exit 3")


@pytest.fixture
def config(temp_dir):
    """Fast configuration for orchestrator tests."""
    return RecorderConfig(
        host="vnc.test",
        port=5901,
        password="",
        framerate=50,
        output_path=temp_dir,
        connect_timeout=0.2,
        shutdown_grace=0.05,
    )


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def fake_target():
    return FakeTarget()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def rgba_frame():
    """2x3 RGBA frame with distinct samples per pixel."""
    frame = np.arange(2 * 3 * 4, dtype=np.uint8).reshape((2, 3, 4))
    frame.flags.writeable = False
    return frame
