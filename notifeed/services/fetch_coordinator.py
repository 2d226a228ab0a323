import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Set

from notifeed.core.config import settings
from notifeed.core.exceptions import NotificationClientError

logger = logging.getLogger(__name__)

FetchCallable = Callable[[], Awaitable[Any]]

class FetchCoordinator:
    """
    Decides when a bulk refresh of the feed actually goes out.

    - Session changes are debounced: only the last token change within the
      quiet period schedules a page-1 fetch plus an unread-count refresh.
    - Explicit requests arriving sooner than `min_interval` after the last
      completed fetch are dropped, not queued.
    """

    def __init__(
        self,
        fetch_first_page: FetchCallable,
        refresh_unread_count: FetchCallable,
        *,
        debounce: Optional[float] = None,
        min_interval: Optional[float] = None,
    ):
        self.fetch_first_page = fetch_first_page
        self.refresh_unread_count = refresh_unread_count
        self.debounce = settings.FETCH_DEBOUNCE_SECONDS if debounce is None else debounce
        self.min_interval = settings.FETCH_MIN_INTERVAL_SECONDS if min_interval is None else min_interval
        self._scheduled: Optional[asyncio.Task] = None
        self._last_completed_at: Optional[float] = None
        self._generation = 0
        self._cancelled: Set[asyncio.Task] = set()

    @property
    def has_pending(self) -> bool:
        return self._scheduled is not None and not self._scheduled.done()

    def schedule_session_refresh(self) -> None:
        """
        (Re)start the quiet period after a session token change.
        """
        self.cancel()
        self._scheduled = asyncio.create_task(self._refresh_after_quiet_period())

    async def _refresh_after_quiet_period(self) -> None:
        await asyncio.sleep(self.debounce)
        try:
            await self._run_fetch()
            await self.refresh_unread_count()
        except NotificationClientError as e:
            logger.warning(f"Scheduled feed refresh failed ({e.kind}): {e.message}")

    async def request_fetch(self) -> bool:
        """
        Fetch now unless the last fetch completed less than `min_interval` ago.

        Returns False when the request was dropped. Errors from the fetch
        itself propagate to the caller.
        """
        if self._last_completed_at is not None:
            elapsed = asyncio.get_running_loop().time() - self._last_completed_at
            if elapsed < self.min_interval:
                logger.debug(f"Dropping fetch request, last fetch completed {elapsed:.2f}s ago")
                return False
        await self._run_fetch()
        return True

    async def _run_fetch(self) -> None:
        generation = self._generation
        try:
            await self.fetch_first_page()
        finally:
            # A reset while this fetch was out starts the interval over
            if generation == self._generation:
                self._last_completed_at = asyncio.get_running_loop().time()

    def cancel(self) -> None:
        """
        Cancel the session refresh, whether it is still waiting out the quiet
        period or already fetching.
        """
        task, self._scheduled = self._scheduled, None
        if task is not None and not task.done():
            task.cancel()
            self._cancelled.add(task)
            task.add_done_callback(self._cancelled.discard)

    def reset(self) -> None:
        self.cancel()
        self._generation += 1
        self._last_completed_at = None

    async def aclose(self) -> None:
        """
        Cancel any session refresh and wait until cancelled refreshes unwind.
        """
        self.cancel()
        if self._cancelled:
            await asyncio.gather(*self._cancelled, return_exceptions=True)
