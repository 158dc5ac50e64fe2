"""
Keep-alive for the client's WebSocket while the app is backgrounded.

A periodic liveness probe that only reports: a failed probe is handed to
``on_failure`` and the loop stops. Reconnecting is the connection
manager's decision, never the keep-alive's.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional


logger = logging.getLogger("devlink.keepalive")


class KeepAlive:
    """
    Periodic probe running as a background task.

    Args:
        interval: Seconds between probes
        probe: Async callable that raises when the connection is dead
        on_failure: Async callback receiving the probe's exception
    """

    def __init__(
        self,
        interval: float,
        probe: Callable[[], Awaitable[object]],
        on_failure: Callable[[BaseException], Awaitable[None]]
    ):
        self.interval = interval
        self._probe = probe
        self._on_failure = on_failure

        self._task: Optional[asyncio.Task] = None
        self._running = False
        self.probes_sent = 0

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the probe loop. No-op when already running."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._loop(), name="devlink-keepalive")
        logger.debug(f"Keep-alive started (every {self.interval}s)")

    def stop(self) -> None:
        """Stop the probe loop. Safe to call when not running."""
        was_running = self._running
        self._running = False
        task, self._task = self._task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
        if was_running:
            logger.debug("Keep-alive stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval)

                if not self._running:
                    break

                self.probes_sent += 1
                await self._probe()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning(f"Keep-alive probe failed: {e}")
                self._running = False
                self._task = None
                try:
                    await self._on_failure(e)
                except Exception as callback_error:
                    logger.error(f"Error in keep-alive failure handler: {callback_error}", exc_info=True)
                break
