import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Set

import socketio
from pydantic import ValidationError
from socketio.exceptions import ConnectionError as SocketConnectionError, SocketIOError

from notifeed.core.config import settings
from notifeed.core.session import SessionStore
from notifeed.models.enums import ChannelEvent, ConnectionState, UnreadChange
from notifeed.models.notification import Notification
from notifeed.schemas.response import UnreadCountPayload

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], Any]

# Server event name -> kind of unread-count change it reports
UNREAD_EVENTS = {
    "notificationRead": UnreadChange.READ,
    "allNotificationsRead": UnreadChange.ALL_READ,
    "notificationDeleted": UnreadChange.DELETED,
}

def default_client_factory() -> socketio.AsyncClient:
    # Reconnection is driven by RealtimeChannel so the session check runs between attempts
    return socketio.AsyncClient(reconnection=False)

class RealtimeChannel:
    """
    One authenticated, auto-reconnecting Socket.IO connection per session.

    Inbound server events are turned into typed `ChannelEvent`s and handed to
    subscribers by a single delivery task, in the order they were received.
    `close()` stops delivery immediately; nothing queued before it reaches a
    subscriber afterwards.
    """

    def __init__(
        self,
        session: SessionStore,
        *,
        url: Optional[str] = None,
        reconnect_attempts: Optional[int] = None,
        reconnect_delay: Optional[float] = None,
        connect_timeout: Optional[float] = None,
        client_factory: Optional[Callable[[], Any]] = None,
    ):
        self.session = session
        self.url = url or settings.BACKEND_URL
        self.reconnect_attempts = settings.SOCKET_RECONNECT_ATTEMPTS if reconnect_attempts is None else reconnect_attempts
        self.reconnect_delay = settings.SOCKET_RECONNECT_DELAY_SECONDS if reconnect_delay is None else reconnect_delay
        self.connect_timeout = connect_timeout or settings.SOCKET_CONNECT_TIMEOUT_SECONDS
        self._client_factory = client_factory or default_client_factory
        self._subscribers: Dict[ChannelEvent, List[EventHandler]] = defaultdict(list)
        self._state = ConnectionState.DISCONNECTED
        self._client: Any = None
        self._queue: Optional[asyncio.Queue] = None
        self._runner: Optional[asyncio.Task] = None
        self._delivery: Optional[asyncio.Task] = None
        self._closing: Set[asyncio.Task] = set()
        self._disconnect_reason: Optional[str] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    def on(self, event: ChannelEvent, handler: EventHandler) -> Callable[[], None]:
        """
        Subscribe to a channel event. Returns a callable that unsubscribes.
        """
        self._subscribers[event].append(handler)

        def unsubscribe() -> None:
            if handler in self._subscribers[event]:
                self._subscribers[event].remove(handler)

        return unsubscribe

    def connect(self) -> None:
        """
        Start the connection loop for the current session token.

        A no-op when there is no token or a loop is already running.
        """
        token = self.session.token
        if not token:
            logger.info("No session token, realtime channel stays disconnected")
            return
        if self.is_running:
            return

        if self._delivery is None or self._delivery.done():
            self._queue = asyncio.Queue()
            self._delivery = asyncio.create_task(self._deliver(self._queue))
        self._runner = asyncio.create_task(self._run(token))

    def close(self) -> None:
        """
        Tear the channel down: stop reconnecting, drop pending deliveries and
        close the socket in the background.
        """
        for task in (self._runner, self._delivery):
            if task is not None and not task.done():
                task.cancel()
        self._runner = None
        self._delivery = None
        self._queue = None
        self._state = ConnectionState.DISCONNECTED

        client, self._client = self._client, None
        if client is not None:
            task = asyncio.ensure_future(client.disconnect())
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)

    async def disconnect(self) -> None:
        self.close()
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

    def _publish(self, event: ChannelEvent, payload: Any = None) -> None:
        if self._queue is not None:
            self._queue.put_nowait((event, payload))

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        self._publish(ChannelEvent.STATE_CHANGED, state)

    async def _deliver(self, queue: asyncio.Queue) -> None:
        while True:
            event, payload = await queue.get()
            for handler in list(self._subscribers[event]):
                try:
                    result = handler(payload)
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    logger.exception(f"Subscriber for {event} failed")

    async def _run(self, token: str) -> None:
        attempts = 0
        while self.session.token == token:
            self._set_state(ConnectionState.CONNECTING)
            client = self._client_factory()
            self._client = client
            self._register_handlers(client)
            try:
                await client.connect(
                    self.url,
                    auth={"token": token},
                    transports=["websocket"],
                    socketio_path=settings.SOCKET_PATH,
                    wait_timeout=self.connect_timeout,
                )
            except (SocketConnectionError, OSError) as e:
                logger.warning(f"Realtime connection failed: {e}")
                self._client = None
                self._set_state(ConnectionState.DISCONNECTED)
                self._publish(ChannelEvent.CONNECT_ERROR, str(e) or type(e).__name__)
            else:
                attempts = 0
                self._disconnect_reason = None
                self._set_state(ConnectionState.CONNECTED)
                self._publish(ChannelEvent.CONNECTED)
                logger.info(f"Realtime channel connected to {self.url}")
                await self._join_rooms(client)

                await client.wait()

                self._client = None
                self._set_state(ConnectionState.DISCONNECTED)
                reason = self._disconnect_reason or "transport close"
                logger.info(f"Realtime channel disconnected: {reason}")
                self._publish(ChannelEvent.DISCONNECTED, reason)

            if self.session.token != token:
                break
            attempts += 1
            if attempts > self.reconnect_attempts:
                logger.info(f"Giving up on realtime channel after {self.reconnect_attempts} reconnection attempts")
                break
            await asyncio.sleep(self.reconnect_delay)

        self._set_state(ConnectionState.DISCONNECTED)

    async def _join_rooms(self, client: Any) -> None:
        user_id = self.session.user_id
        if not user_id:
            return
        try:
            await client.emit("joinUser", user_id)
            if self.session.is_admin:
                await client.emit("joinAdmin", user_id)
        except SocketIOError as e:
            logger.warning(f"Could not join notification rooms: {e}")

    def _register_handlers(self, client: Any) -> None:
        def is_current() -> bool:
            return client is self._client

        def on_disconnect(*args: Any) -> None:
            if is_current() and args:
                self._disconnect_reason = str(args[0])

        def on_new_notification(data: Any) -> None:
            if not is_current():
                return
            try:
                notification = Notification.model_validate(data)
            except ValidationError as e:
                logger.warning(f"Dropping malformed newNotification payload: {e}")
                return
            self._publish(ChannelEvent.NOTIFICATION_CREATED, notification)

        def unread_handler(change: UnreadChange) -> Callable[[Any], None]:
            def handler(data: Any) -> None:
                if not is_current():
                    return
                try:
                    payload = UnreadCountPayload.model_validate(data)
                except ValidationError as e:
                    logger.warning(f"Dropping malformed {change} payload: {e}")
                    return
                self._publish(ChannelEvent.UNREAD_COUNT_CHANGED, payload.model_copy(update={"change": change}))
            return handler

        client.on("disconnect", on_disconnect)
        client.on("newNotification", on_new_notification)
        for name, change in UNREAD_EVENTS.items():
            client.on(name, unread_handler(change))
