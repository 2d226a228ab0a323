import asyncio
import logging
import time
from typing import Any, Coroutine, Dict, Optional, Set

from pydantic import ValidationError

from notifeed.core.config import settings
from notifeed.core.exceptions import NotificationClientError, ServerRejectedError, ThrottledError
from notifeed.core.session import SessionStore
from notifeed.models.enums import ChannelEvent, ConnectionState
from notifeed.models.notification import Notification
from notifeed.schemas.feed import FeedView
from notifeed.schemas.response import FeedPageResponse, UnreadCountPayload, UnreadCountResponse
from notifeed.services.fetch_coordinator import FetchCoordinator
from notifeed.services.realtime import RealtimeChannel
from notifeed.services.transport import TransportClient
from notifeed.store.actions import (
    Action,
    Clear,
    Delete,
    MarkAllRead,
    MarkRead,
    SetConnectionState,
    SetFeed,
    SetLoading,
    SetUnreadCount,
    UpsertOne,
)
from notifeed.store.feed import NotificationStore

logger = logging.getLogger(__name__)

class NotificationCenter:
    """
    The surface UI code talks to.

    Owns one transport client, realtime channel, fetch coordinator and store
    per session. The session token drives the lifecycle: a new token resets
    the feed, opens the channel and schedules the first fetch; clearing it
    tears all of that down. Server results that resolve after the session
    they were issued under has ended are dropped.
    """

    def __init__(
        self,
        session: SessionStore,
        *,
        transport: Optional[TransportClient] = None,
        channel: Optional[RealtimeChannel] = None,
        store: Optional[NotificationStore] = None,
        coordinator: Optional[FetchCoordinator] = None,
    ):
        self.session = session
        self.store = store or NotificationStore()
        self.transport = transport or TransportClient(session)
        self.channel = channel or RealtimeChannel(session)
        self.coordinator = coordinator or FetchCoordinator(self.fetch_page, self.fetch_unread_count)
        self._epoch = 0
        self._active = False
        self._background: Set[asyncio.Task] = set()

        self._subscriptions = [
            self.channel.on(ChannelEvent.STATE_CHANGED, self._on_state_changed),
            self.channel.on(ChannelEvent.CONNECTED, self._on_connected),
            self.channel.on(ChannelEvent.DISCONNECTED, self._on_disconnected),
            self.channel.on(ChannelEvent.CONNECT_ERROR, self._on_connect_error),
            self.channel.on(ChannelEvent.NOTIFICATION_CREATED, self._on_notification_created),
            self.channel.on(ChannelEvent.UNREAD_COUNT_CHANGED, self._on_unread_count_changed),
            self.session.subscribe(self._on_token_change),
        ]

    # Lifecycle

    def start(self) -> None:
        """
        Begin a session for a token that was set before the center existed.
        """
        if self.session.token and not self._active:
            self._begin_session()

    def _on_token_change(self, token: Optional[str]) -> None:
        if self._active:
            self._end_session()
        if token:
            self._begin_session()

    def _begin_session(self) -> None:
        self._epoch += 1
        self._active = True
        self.store.dispatch(Clear())
        self.channel.connect()
        self.coordinator.schedule_session_refresh()

    def _end_session(self) -> None:
        self._epoch += 1
        self._active = False
        self.coordinator.reset()
        self.channel.close()
        self.store.dispatch(Clear())

    async def aclose(self) -> None:
        for unsubscribe in self._subscriptions:
            unsubscribe()
        if self._active:
            self._end_session()
        await self.coordinator.aclose()
        await self.channel.disconnect()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self.transport.aclose()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # State

    def snapshot(self) -> FeedView:
        state = self.store.state
        return FeedView(
            notifications=list(state.items),
            unread_count=state.unread_count,
            loading=state.loading,
            socket_connected=state.connection_state == ConnectionState.CONNECTED,
            pagination=state.pagination,
            connection_error=state.connection_error,
        )

    # Operations

    async def fetch_page(
        self,
        page: int = 1,
        limit: Optional[int] = None,
        filters: Optional[Dict[str, Any]] = None,
    ) -> Optional[FeedPageResponse]:
        """
        Fetch one page of the feed and merge it into the store.

        Returns None when there is no session, when the call was throttled
        (another fetch is already covering it), when the session changed
        before the response arrived or when the store already holds newer
        state than the page. A first page overtaken that way is fetched once
        more so the feed is not left behind.
        """
        return await self._fetch_page(page, limit, filters, refetch_if_stale=True)

    async def _fetch_page(
        self,
        page: int,
        limit: Optional[int],
        filters: Optional[Dict[str, Any]],
        refetch_if_stale: bool,
    ) -> Optional[FeedPageResponse]:
        if not self.session.token:
            return None

        params: Dict[str, Any] = {"page": page, "limit": limit or settings.DEFAULT_PAGE_LIMIT}
        for key, value in (filters or {}).items():
            if value is None:
                continue
            if isinstance(value, bool):
                value = "true" if value else "false"
            params[key] = value

        epoch = self._epoch
        sequence = self.store.next_sequence()
        self.store.dispatch(SetLoading(True))
        try:
            payload = await self.transport.get("/notifications", params=params)
        except ThrottledError:
            logger.debug(f"Page {page} fetch throttled, another request covers it")
            return None
        finally:
            if epoch == self._epoch:
                self.store.dispatch(SetLoading(False))

        if epoch != self._epoch:
            logger.debug(f"Discarding page {page} fetched for a previous session")
            return None

        try:
            response = FeedPageResponse.model_validate(payload)
        except ValidationError as e:
            raise ServerRejectedError("Malformed notification page") from e

        applied = self.store.dispatch(
            SetFeed(
                items=response.data,
                pagination=response.pagination,
                unread_count=response.unread_count,
                sequence=sequence,
                fetched_at=time.time(),
            )
        )
        if not applied:
            if page <= 1 and refetch_if_stale:
                logger.debug("First page was overtaken by a confirmed change, fetching it again")
                return await self._fetch_page(page, limit, filters, refetch_if_stale=False)
            return None
        return response

    async def request_refresh(self) -> bool:
        """
        UI-demand refresh of page 1, subject to the minimum fetch interval.
        """
        return await self.coordinator.request_fetch()

    async def fetch_unread_count(self) -> Optional[int]:
        """
        Best-effort refresh of the unread counter from the server.
        """
        if not self.session.token:
            return None

        epoch = self._epoch
        try:
            payload = await self.transport.get("/notifications/unread-count")
            count = UnreadCountResponse.model_validate(payload).unread_count
        except (NotificationClientError, ValidationError) as e:
            logger.warning(f"Unread count refresh failed: {e}")
            return None

        if epoch != self._epoch:
            return None
        self.store.dispatch(SetUnreadCount(count))
        return count

    async def mark_as_read(self, notification_id: str) -> bool:
        return await self._confirmed("PUT", f"/notifications/{notification_id}/read", MarkRead(notification_id), notification_id)

    async def mark_all_as_read(self) -> bool:
        return await self._confirmed("PUT", "/notifications/mark-all-read", MarkAllRead())

    async def delete_notification(self, notification_id: str) -> bool:
        return await self._confirmed("DELETE", f"/notifications/{notification_id}", Delete(notification_id), notification_id)

    async def _confirmed(self, method: str, path: str, action: Action, notification_id: Optional[str] = None) -> bool:
        """
        Issue a mutation and apply `action` only once the server confirms it.

        Failures propagate with the store untouched.
        """
        epoch = self._epoch
        if notification_id is not None:
            self.store.pin(notification_id)
        try:
            await self.transport.request(method, path)
        finally:
            if notification_id is not None:
                self.store.unpin(notification_id)

        if epoch != self._epoch:
            return False
        self.store.dispatch(action)
        return True

    # Realtime events

    def _on_state_changed(self, state: ConnectionState) -> None:
        self.store.dispatch(SetConnectionState(state))

    def _on_connected(self, _: Any) -> None:
        # The server count is the source of truth after every (re)connect
        self._spawn(self.fetch_unread_count())

    def _on_disconnected(self, reason: str) -> None:
        logger.info(f"Realtime delivery degraded, REST fetch remains available ({reason})")

    def _on_connect_error(self, reason: str) -> None:
        self.store.dispatch(SetConnectionState(self.store.state.connection_state, error=reason))

    def _on_notification_created(self, notification: Notification) -> None:
        self.store.dispatch(UpsertOne(notification))

    def _on_unread_count_changed(self, payload: UnreadCountPayload) -> None:
        self.store.dispatch(SetUnreadCount(payload.unread_count, payload.change, payload.notification_id))
