import logging
import time
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from notifeed.core.config import settings
from notifeed.models.enums import ConnectionState, UnreadChange
from notifeed.models.notification import Notification
from notifeed.schemas.response import PaginationInfo
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

logger = logging.getLogger(__name__)

StateListener = Callable[["FeedState"], None]

@dataclass(frozen=True)
class FeedState:
    """
    Snapshot of the client-side feed. Every dispatch that changes anything
    produces a new instance; instances are never mutated.
    """
    items: Tuple[Notification, ...] = ()
    unread_count: int = 0
    pagination: PaginationInfo = field(default_factory=PaginationInfo)
    loading: bool = False
    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    connection_error: Optional[str] = None
    last_fetched_at: Optional[float] = None
    # Latest sequence token whose effects are reflected in this state.
    applied_sequence: int = 0
    # Pushed item id -> sequence token current when it arrived.
    arrivals: Dict[str, int] = field(default_factory=dict)

    def get(self, notification_id: str) -> Optional[Notification]:
        for item in self.items:
            if item.id == notification_id:
                return item
        return None

def _dedupe(items: Iterable[Notification]) -> List[Notification]:
    seen = set()
    unique = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        unique.append(item)
    return unique

def _as_read(item: Notification) -> Notification:
    return item if item.is_read else item.model_copy(update={"is_read": True})

class NotificationStore:
    """
    Single authoritative reducer over the notification feed.

    Mutations from the bulk fetch, the realtime channel and confirmed user
    actions all go through `dispatch`, so the same merge, dedup and eviction
    rules apply whichever channel produced them.
    """

    def __init__(self, max_items: int | None = None):
        self.max_items = max_items or settings.FEED_MAX_ITEMS
        self._state = FeedState()
        self._issued = 0
        self._loading_depth = 0
        self._pinned: Counter = Counter()
        self._listeners: List[StateListener] = []
        self._handlers = {
            SetFeed: self._set_feed,
            UpsertOne: self._upsert_one,
            MarkRead: self._mark_read,
            MarkAllRead: self._mark_all_read,
            Delete: self._delete,
            SetUnreadCount: self._set_unread_count,
            SetLoading: self._set_loading,
            SetConnectionState: self._set_connection_state,
            Clear: self._clear,
        }

    @property
    def state(self) -> FeedState:
        return self._state

    def next_sequence(self) -> int:
        """
        Issue a new sequence token for a fetch about to be sent.
        """
        self._issued += 1
        return self._issued

    def pin(self, notification_id: str) -> None:
        """
        Protect an item from eviction while a request referencing it is in flight.
        """
        self._pinned[notification_id] += 1

    def unpin(self, notification_id: str) -> None:
        self._pinned[notification_id] -= 1
        if self._pinned[notification_id] <= 0:
            del self._pinned[notification_id]

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, action: Action) -> bool:
        """
        Apply an action. Returns True when the state changed.
        """
        handler = self._handlers.get(type(action))
        if handler is None:
            raise TypeError(f"Unsupported action: {action!r}")

        new_state = handler(self._state, action)
        if new_state is self._state:
            return False

        self._state = new_state
        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception:
                logger.exception(f"Feed listener failed after {type(action).__name__}")
        return True

    def _evict(self, items: List[Notification]) -> List[Notification]:
        overflow = len(items) - self.max_items
        if overflow <= 0:
            return items

        kept = list(items)
        index = len(kept) - 1
        while overflow > 0 and index >= 0:
            if kept[index].id not in self._pinned:
                del kept[index]
                overflow -= 1
            index -= 1
        return kept

    @staticmethod
    def _arrivals_for(arrivals: Dict[str, int], items: Iterable[Notification]) -> Dict[str, int]:
        return {item.id: arrivals[item.id] for item in items if item.id in arrivals}

    def _set_feed(self, state: FeedState, action: SetFeed) -> FeedState:
        if action.sequence <= state.applied_sequence:
            logger.debug(f"Discarding stale page (sequence {action.sequence} <= {state.applied_sequence})")
            return state

        incoming = _dedupe(action.items)
        incoming_ids = {item.id for item in incoming}

        if action.pagination.current <= 1:
            # Full refresh; keep only pushes the page could not have seen yet.
            retained = [
                item for item in state.items
                if item.id not in incoming_ids and state.arrivals.get(item.id, 0) >= action.sequence
            ]
            items = retained + incoming
            unread_count = action.unread_count + sum(1 for item in retained if not item.is_read)
        else:
            items = list(state.items)
            positions = {item.id: position for position, item in enumerate(items)}
            for item in incoming:
                if item.id in positions:
                    items[positions[item.id]] = item
                else:
                    positions[item.id] = len(items)
                    items.append(item)
            unread_count = action.unread_count

        items = self._evict(items)
        return replace(
            state,
            items=tuple(items),
            unread_count=max(0, unread_count),
            pagination=action.pagination,
            last_fetched_at=action.fetched_at or time.time(),
            applied_sequence=action.sequence,
            arrivals=self._arrivals_for(state.arrivals, items),
        )

    def _upsert_one(self, state: FeedState, action: UpsertOne) -> FeedState:
        notification = action.notification
        if state.get(notification.id) is not None:
            return state

        items = self._evict([notification, *state.items])
        arrivals = self._arrivals_for(state.arrivals, items)
        arrivals[notification.id] = self._issued
        return replace(
            state,
            items=tuple(items),
            unread_count=state.unread_count + (0 if notification.is_read else 1),
            arrivals=self._arrivals_for(arrivals, items),
        )

    def _mark_read(self, state: FeedState, action: MarkRead) -> FeedState:
        current = state.get(action.notification_id)
        if current is not None and current.is_read:
            return replace(state, applied_sequence=self._issued)

        items = tuple(_as_read(item) if item.id == action.notification_id else item for item in state.items)
        return replace(
            state,
            items=items,
            unread_count=max(0, state.unread_count - 1),
            applied_sequence=self._issued,
        )

    def _mark_all_read(self, state: FeedState, action: MarkAllRead) -> FeedState:
        return replace(
            state,
            items=tuple(_as_read(item) for item in state.items),
            unread_count=0,
            applied_sequence=self._issued,
        )

    def _delete(self, state: FeedState, action: Delete) -> FeedState:
        removed = state.get(action.notification_id)
        if removed is None:
            return replace(state, applied_sequence=self._issued)

        items = tuple(item for item in state.items if item.id != action.notification_id)
        return replace(
            state,
            items=items,
            unread_count=state.unread_count if removed.is_read else max(0, state.unread_count - 1),
            applied_sequence=self._issued,
            arrivals=self._arrivals_for(state.arrivals, items),
        )

    def _set_unread_count(self, state: FeedState, action: SetUnreadCount) -> FeedState:
        items = state.items
        applied_sequence = state.applied_sequence

        if action.change == UnreadChange.READ and action.notification_id:
            items = tuple(_as_read(item) if item.id == action.notification_id else item for item in items)
            applied_sequence = self._issued
        elif action.change == UnreadChange.ALL_READ:
            items = tuple(_as_read(item) for item in items)
            applied_sequence = self._issued
        elif action.change == UnreadChange.DELETED and action.notification_id:
            items = tuple(item for item in items if item.id != action.notification_id)
            applied_sequence = self._issued

        count = max(0, action.count)
        if items == state.items and count == state.unread_count and applied_sequence == state.applied_sequence:
            return state
        return replace(
            state,
            items=items,
            unread_count=count,
            applied_sequence=applied_sequence,
            arrivals=self._arrivals_for(state.arrivals, items),
        )

    def _set_loading(self, state: FeedState, action: SetLoading) -> FeedState:
        if action.loading:
            self._loading_depth += 1
        else:
            self._loading_depth = max(0, self._loading_depth - 1)

        loading = self._loading_depth > 0
        if loading == state.loading:
            return state
        return replace(state, loading=loading)

    def _set_connection_state(self, state: FeedState, action: SetConnectionState) -> FeedState:
        if action.state == ConnectionState.CONNECTED:
            error = None
        elif action.error is not None:
            error = action.error
        else:
            error = state.connection_error

        if action.state == state.connection_state and error == state.connection_error:
            return state
        return replace(state, connection_state=action.state, connection_error=error)

    def _clear(self, state: FeedState, action: Clear) -> FeedState:
        self._loading_depth = 0
        # Everything issued before the reset is stale from here on.
        return FeedState(applied_sequence=self._issued)
