# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for FrameCaptureLoop pacing."""

import asyncio

import pytest

from conftest import FakeClock, FakeSession, FakeTarget
from vncrecorder.core.capture import FrameCaptureLoop


class SlowTarget(FakeTarget):
    """Target whose encode takes ``cost`` seconds of fake time."""

    def __init__(self, clock: FakeClock, cost: float):
        super().__init__()
        self.clock = clock
        self.cost = cost

    def encode(self, frame):
        super().encode(frame)
        self.clock.advance(self.cost)


class EmptyCanvas:
    """Canvas that has not received a framebuffer yet."""

    def __init__(self):
        self.captures = 0

    def capture(self):
        self.captures += 1
        return None


class TestFrameCaptureLoopPacing:
    """Tests for the per-tick sleep computation."""

    def test_period(self):
        """Test the frame period for a frame rate."""
        loop = FrameCaptureLoop(FakeSession(), FakeTarget(), framerate=25)

        assert loop.period == pytest.approx(0.04)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("framerate", [1, 10, 12, 30, 60])
    async def test_sleeps_remainder_of_period(self, fake_clock, framerate):
        """Test that each tick sleeps for the period minus encode time."""
        cost = 0.25 / framerate
        target = SlowTarget(fake_clock, cost)
        loop = FrameCaptureLoop(
            FakeSession(), target, framerate, clock=fake_clock, sleep=fake_clock.sleep
        )

        for _ in range(5):
            await loop.tick()

        assert len(target.frames) == 5
        assert fake_clock.sleeps == pytest.approx([1.0 / framerate - cost] * 5)

    @pytest.mark.asyncio
    async def test_steady_state_period(self, fake_clock):
        """Test that tick start times are one period apart."""
        target = SlowTarget(fake_clock, 0.01)
        loop = FrameCaptureLoop(
            FakeSession(), target, 20, clock=fake_clock, sleep=fake_clock.sleep
        )
        starts = []

        for _ in range(4):
            starts.append(fake_clock())
            await loop.tick()

        gaps = [b - a for a, b in zip(starts, starts[1:])]
        assert gaps == pytest.approx([0.05] * 3)

    @pytest.mark.asyncio
    async def test_overrun_is_not_compensated(self, fake_clock):
        """Test that a slow encode skips the sleep without catching up."""
        target = SlowTarget(fake_clock, 0.15)
        loop = FrameCaptureLoop(
            FakeSession(), target, 10, clock=fake_clock, sleep=fake_clock.sleep
        )

        await loop.tick()
        await loop.tick()

        assert fake_clock.sleeps == []
        assert len(target.frames) == 2

    @pytest.mark.asyncio
    async def test_empty_canvas_skips_encode(self, fake_clock):
        """Test that no frame is encoded before the first framebuffer update."""
        canvas = EmptyCanvas()
        target = FakeTarget()
        loop = FrameCaptureLoop(canvas, target, 10, clock=fake_clock, sleep=fake_clock.sleep)

        await loop.tick()

        assert canvas.captures == 1
        assert target.frames == []
        assert loop.frames_captured == 0
        assert fake_clock.sleeps == pytest.approx([0.1])

    @pytest.mark.asyncio
    async def test_frames_come_from_canvas(self, fake_clock):
        """Test that the captured canvas is what the target receives."""
        session = FakeSession()
        target = FakeTarget()
        loop = FrameCaptureLoop(session, target, 10, clock=fake_clock, sleep=fake_clock.sleep)

        await loop.tick()

        assert target.frames[0][1] is session.frame


class TestFrameCaptureLoopLifecycle:
    """Tests for starting and stopping the loop."""

    @pytest.mark.asyncio
    async def test_stop_ends_run(self, fake_clock):
        """Test that setting the stop signal ends the loop after the current tick."""
        target = FakeTarget()
        loop = FrameCaptureLoop(FakeSession(), target, 10, clock=fake_clock)

        async def sleep(seconds):
            await fake_clock.sleep(seconds)
            if len(fake_clock.sleeps) == 3:
                loop.stop()

        loop._sleep = sleep
        await asyncio.wait_for(loop.run(), timeout=5)

        assert loop.stopped is True
        assert loop.frames_captured == 3
        assert len(target.frames) == 3

    @pytest.mark.asyncio
    async def test_start_and_stop_in_real_time(self):
        """Test the background task against the real clock."""
        target = FakeTarget()
        loop = FrameCaptureLoop(FakeSession(), target, framerate=50)

        task = loop.start()
        await asyncio.sleep(0.2)
        loop.stop()
        await asyncio.wait_for(task, timeout=1)

        assert task.done()
        assert 1 <= len(target.frames) <= 20
