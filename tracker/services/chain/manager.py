"""
Chain Manager.

Supervises one listener task per configured chain and surfaces the
first fatal listener error.
"""

import asyncio

from loguru import logger

from tracker.services.chain.listener import ChainListener
from tracker.utils.exceptions import FatalListenerError


class ChainManager:
    """Supervisor of chain listeners."""

    def __init__(self, listeners: list[ChainListener], stop_event: asyncio.Event) -> None:
        """
        Initialize manager.

        Args:
            listeners: One listener per chain, in configured order
            stop_event: Root cancellation token shared by every component
        """
        self.listeners = listeners
        self.stop_event = stop_event
        self._tasks: list[asyncio.Task] = []
        self._exit: asyncio.Queue[BaseException] = asyncio.Queue(maxsize=1)

    def chain_names(self) -> list[str]:
        """Chain names in configured order."""
        return [listener.name for listener in self.listeners]

    def exit_channel(self) -> asyncio.Queue[BaseException]:
        """Single-slot queue carrying the first fatal listener error."""
        return self._exit

    @property
    def invariant_violations(self) -> dict[str, int]:
        return {listener.name: listener.invariant_violations for listener in self.listeners}

    def start(self) -> None:
        """Start every listener in its own task."""
        for listener in self.listeners:
            task = asyncio.create_task(
                listener.run(self.stop_event), name=f"listener:{listener.name}"
            )
            task.add_done_callback(self._handle_listener_exit)
            self._tasks.append(task)
        logger.info(f"[ChainManager] Started listeners: {', '.join(self.chain_names())}")

    def _handle_listener_exit(self, task: asyncio.Task) -> None:
        """Forward a listener failure to the exit channel."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        if not isinstance(exc, FatalListenerError):
            exc = FatalListenerError(f"{task.get_name()} crashed: {exc!r}")
        logger.error(f"[ChainManager] {exc}")
        try:
            self._exit.put_nowait(exc)
        except asyncio.QueueFull:
            # Only the first error is reported
            pass

    async def wait_fatal(self) -> BaseException:
        """Wait for the first fatal listener error."""
        return await self._exit.get()

    async def shutdown(self, timeout: float = 30.0) -> None:
        """
        Stop all listeners and wait for them to drain.

        Listeners finish their current RPC or store call; unfinished
        batches are abandoned without moving the cursor.
        """
        self.stop_event.set()
        if not self._tasks:
            return
        _, pending = await asyncio.wait(self._tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("[ChainManager] All listeners stopped")
