# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for ShutdownWatcher."""

import asyncio
import os
import signal
import sys

import pytest

from vncrecorder.core.shutdown import SHUTDOWN_SIGNALS, ShutdownWatcher


class TestShutdownRequests:
    """Tests for requesting and waiting on a shutdown."""

    def test_initial_state(self):
        """Test that a new watcher has no pending request."""
        shutdown = ShutdownWatcher()

        assert shutdown.requested is False
        assert shutdown.reason is None
        assert shutdown.installed == []

    def test_first_reason_wins(self):
        """Test that later requests do not overwrite the first reason."""
        shutdown = ShutdownWatcher()

        shutdown.request("SIGTERM")
        shutdown.request("SIGINT")

        assert shutdown.requested is True
        assert shutdown.reason == "SIGTERM"

    @pytest.mark.asyncio
    async def test_wait_returns_reason(self):
        """Test that wait() resumes with the reason once requested."""
        shutdown = ShutdownWatcher()
        asyncio.get_running_loop().call_later(0.01, shutdown.request, "SIGHUP")

        assert await asyncio.wait_for(shutdown.wait(), timeout=2) == "SIGHUP"


class TestGuard:
    """Tests for racing work against a shutdown."""

    @pytest.mark.asyncio
    async def test_work_finishes_first(self):
        """Test that a finished awaitable returns its result."""
        shutdown = ShutdownWatcher()

        async def work():
            return "transport"

        assert await shutdown.guard(work()) == (True, "transport")

    @pytest.mark.asyncio
    async def test_shutdown_cancels_work(self):
        """Test that a shutdown cancels pending work."""
        shutdown = ShutdownWatcher()
        cancelled = asyncio.Event()

        async def work():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        asyncio.get_running_loop().call_later(0.05, shutdown.request, "SIGTERM")

        result = await asyncio.wait_for(shutdown.guard(work()), timeout=2)

        assert result == (False, None)
        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_already_requested(self):
        """Test that work is not awaited once a shutdown is pending."""
        shutdown = ShutdownWatcher()
        shutdown.request("SIGINT")

        result = await asyncio.wait_for(shutdown.guard(asyncio.sleep(10)), timeout=2)

        assert result == (False, None)

    @pytest.mark.asyncio
    async def test_errors_propagate(self):
        """Test that exceptions from the work reach the caller."""
        shutdown = ShutdownWatcher()

        async def work():
            raise ConnectionRefusedError("refused")

        with pytest.raises(ConnectionRefusedError):
            await shutdown.guard(work())

        assert shutdown.requested is False


@pytest.mark.skipif(sys.platform == "win32", reason="needs POSIX signal handling")
class TestSignalHandlers:
    """Tests for routing OS signals to the watcher."""

    @pytest.mark.asyncio
    async def test_install_and_remove(self):
        """Test that every shutdown signal is routed and then released."""
        shutdown = ShutdownWatcher()

        shutdown.install()
        installed = shutdown.installed
        shutdown.remove()

        assert sorted(installed) == sorted(getattr(signal, name) for name in SHUTDOWN_SIGNALS)
        assert shutdown.installed == []

    @pytest.mark.asyncio
    async def test_install_is_idempotent(self):
        """Test that installing twice does not register signals twice."""
        shutdown = ShutdownWatcher()

        shutdown.install()
        shutdown.install()
        try:
            assert len(shutdown.installed) == len(SHUTDOWN_SIGNALS)
        finally:
            shutdown.remove()

    @pytest.mark.asyncio
    async def test_signal_requests_shutdown(self):
        """Test that a delivered SIGTERM becomes a shutdown request."""
        shutdown = ShutdownWatcher()
        shutdown.install()
        try:
            if signal.SIGTERM not in shutdown.installed:
                pytest.skip("signal handlers unavailable outside the main thread")
            os.kill(os.getpid(), signal.SIGTERM)
            reason = await asyncio.wait_for(shutdown.wait(), timeout=2)
        finally:
            shutdown.remove()

        assert reason == "SIGTERM"
