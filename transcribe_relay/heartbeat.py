"""Periodic liveness pings on the client connection."""

import asyncio
import logging

import websockets
import websockets.exceptions

logger = logging.getLogger(__name__)


class HeartbeatMonitor:
    """Pings the client connection at a fixed interval.

    Pongs are logged but never acted upon: an unresponsive client is not
    disconnected by the monitor.
    """

    def __init__(self, connection, interval: float = 30.0):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.connection = connection
        self.interval = interval
        self.pings_sent = 0
        self.pongs_received = 0
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the ping loop; no-op if already running."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.debug("Heartbeat started (interval=%.1fs)", self.interval)

    async def stop(self) -> None:
        """Cancel the ping loop. Safe to call repeatedly."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("Heartbeat stopped after %d pings", self.pings_sent)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                pong_waiter = await self.connection.ping()
            except websockets.exceptions.ConnectionClosed:
                logger.debug("Connection closed, heartbeat exiting")
                return
            self.pings_sent += 1
            if isinstance(pong_waiter, asyncio.Future):
                pong_waiter.add_done_callback(self._on_pong)

    def _on_pong(self, future: asyncio.Future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        self.pongs_received += 1
        logger.debug("Heartbeat pong received (%d total)", self.pongs_received)
