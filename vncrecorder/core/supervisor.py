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

"""Daemon mode: record forever, reconnecting with exponential backoff."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from vncrecorder.config import RecorderConfig, resolve_output_dir
from vncrecorder.core.orchestrator import SessionOrchestrator
from vncrecorder.core.shutdown import ShutdownWatcher
from vncrecorder.exceptions import ConfigurationError, VNCRecorderError
from vncrecorder.utils.logger import logger

INITIAL_RETRY_DELAY = 5.0
MAX_RETRY_DELAY = 120.0


@dataclass
class BackoffState:
    """Reconnect delay that doubles on each failure up to a ceiling.

    Attributes:
        floor: Delay after the first failure, and after a reset
        ceiling: Largest delay ever returned
        current: Delay to use for the next failure
        failures: Consecutive failures since the last reset
    """

    floor: float = INITIAL_RETRY_DELAY
    ceiling: float = MAX_RETRY_DELAY
    current: float = field(init=False)
    failures: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        self.current = self.floor

    def record_failure(self) -> float:
        """Return the delay to sleep now and double the next one."""
        delay = self.current
        self.failures += 1
        self.current = min(self.current * 2, self.ceiling)
        return delay

    def reset(self) -> None:
        """Go back to the floor after a clean session end."""
        self.current = self.floor
        self.failures = 0


OrchestratorFactory = Callable[..., SessionOrchestrator]


class DaemonSupervisor:
    """Run sessions back to back until a shutdown signal arrives.

    A failed session is followed by a backoff sleep; a session that ends
    cleanly resets the backoff and a new one starts immediately. The loop
    only exits when a shutdown is requested, or when the output directory
    cannot be prepared.

    One ``ShutdownWatcher`` is shared by every session and its signal
    handlers stay installed for the whole run, so a signal that arrives
    during a backoff sleep stops the daemon straight away.
    """

    def __init__(
        self,
        config: RecorderConfig,
        orchestrator_factory: OrchestratorFactory = SessionOrchestrator,
        backoff: Optional[BackoffState] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        shutdown: Optional[ShutdownWatcher] = None,
        handle_signals: bool = True,
    ) -> None:
        self.config = config
        self.backoff = backoff or BackoffState()
        self._orchestrator_factory = orchestrator_factory
        self._sleep = sleep
        self._install_handlers = handle_signals and shutdown is None
        self.shutdown = shutdown or ShutdownWatcher()
        self.sessions = 0
        self.last_delay: Optional[float] = None

    async def run_once(self) -> bool:
        """Run a single session, sleeping out the backoff if it fails.

        Returns:
            True if a shutdown was requested and the daemon should stop

        Raises:
            ConfigurationError: If the output directory cannot be prepared
        """
        if self.shutdown.requested:
            return True

        output_dir = resolve_output_dir(self.config.output_path)
        logger.info(f"[DAEMON] Starting new {self.config.format.value.upper()} recording session: {output_dir}")

        orchestrator = self._orchestrator_factory(
            self.config, output_dir, shutdown=self.shutdown
        )
        self.sessions += 1
        try:
            await orchestrator.run()
        except ConfigurationError:
            raise
        except VNCRecorderError as e:
            delay = self.backoff.record_failure()
            self.last_delay = delay
            logger.warning(f"[DAEMON] Recording failed, will retry in {delay:g}s: {e}")
            slept, _ = await self.shutdown.guard(self._sleep(delay))
            if not slept:
                logger.info("[DAEMON] Shutdown requested during backoff, stopping daemon")
                return True
            return False

        if orchestrator.shutdown_requested or self.shutdown.requested:
            logger.info("[DAEMON] Shutdown requested, stopping daemon")
            return True

        logger.info("[DAEMON] Recording session ended, starting new session...")
        self.backoff.reset()
        return False

    async def run(self) -> None:
        """Run sessions until shutdown."""
        logger.info("[DAEMON] Starting VNC recorder in daemon mode...")
        if self._install_handlers:
            self.shutdown.install()
        try:
            while not await self.run_once():
                pass
        finally:
            if self._install_handlers:
                self.shutdown.remove()
