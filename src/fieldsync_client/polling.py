"""Interval polling while a push channel is unhealthy.

Lifecycle per subscription:

- ``arm()`` when the subscription is requested starts the confirmation timer
- ``subscribed`` before the timer fires cancels it; polling never starts
- timer fires without confirmation → poll every ``poll_interval`` seconds
- a late ``subscribed`` stops polling
- a later error/timeout/closed status starts polling again

Overlap between a last poll and the first pushed event is harmless: both
trigger the same idempotent refetch.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .channel import UNHEALTHY_STATUSES, ChannelStatus
from .config import get_client_settings

logger = logging.getLogger("fieldsync-client.polling")


class PollingFallbackSupervisor:
    """Runs a refetch on an interval whenever the channel cannot be trusted."""

    def __init__(
        self,
        refetch: Callable[[], Awaitable[None]],
        confirm_timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        name: str = "",
        on_fallback: Optional[Callable[[], None]] = None,
    ):
        settings = get_client_settings()
        self._refetch = refetch
        self.confirm_timeout = confirm_timeout if confirm_timeout is not None else settings.confirm_timeout
        self.poll_interval = poll_interval if poll_interval is not None else settings.poll_interval
        self.name = name
        self._on_fallback = on_fallback
        self._confirm_task: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._stopped = False
        self.confirmed = False

    @property
    def polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def arm(self) -> None:
        """Start the confirmation timer for a new subscription attempt."""
        self._cancel_confirm()
        self.confirmed = False
        self._stopped = False
        self._confirm_task = asyncio.create_task(self._confirm_timer())

    def on_status(self, status: ChannelStatus) -> None:
        """Feed a channel status change."""
        if self._stopped:
            return
        if status == ChannelStatus.SUBSCRIBED:
            self.confirmed = True
            self._cancel_confirm()
            if self.polling:
                logger.info(f"{self.name}: channel confirmed, stopping polling")
            self._cancel_poll()
        elif status in UNHEALTHY_STATUSES:
            self.confirmed = False
            self._cancel_confirm()
            self._start_polling()

    async def _confirm_timer(self) -> None:
        await asyncio.sleep(self.confirm_timeout)
        self._confirm_task = None
        if self.confirmed or self._stopped:
            return
        logger.warning(f"{self.name}: no confirmation within {self.confirm_timeout}s, falling back to polling")
        self._start_polling()

    def _start_polling(self) -> None:
        if self.polling:
            return
        logger.info(f"{self.name}: polling every {self.poll_interval}s")
        self._poll_task = asyncio.create_task(self._poll_loop())
        if self._on_fallback is not None:
            self._on_fallback()

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self._refetch()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"{self.name}: polling refetch failed")
            await asyncio.sleep(self.poll_interval)

    def _cancel_confirm(self) -> None:
        if self._confirm_task is not None and self._confirm_task is not asyncio.current_task():
            self._confirm_task.cancel()
        self._confirm_task = None

    def _cancel_poll(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
        self._poll_task = None

    async def stop(self) -> None:
        """Cancel every timer. Status changes after this are ignored."""
        self._stopped = True
        tasks = [t for t in (self._confirm_task, self._poll_task) if t is not None]
        self._cancel_confirm()
        self._cancel_poll()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
