from dataclasses import dataclass, field
from typing import Optional, Sequence

from notifeed.models.enums import ConnectionState, UnreadChange
from notifeed.models.notification import Notification
from notifeed.schemas.response import PaginationInfo

@dataclass(frozen=True)
class SetFeed:
    """
    Result of a bulk page fetch, tagged with the sequence token it was issued under.
    """
    items: Sequence[Notification]
    pagination: PaginationInfo
    unread_count: int
    sequence: int
    fetched_at: Optional[float] = None

@dataclass(frozen=True)
class UpsertOne:
    notification: Notification

@dataclass(frozen=True)
class MarkRead:
    notification_id: str

@dataclass(frozen=True)
class MarkAllRead:
    pass

@dataclass(frozen=True)
class Delete:
    notification_id: str

@dataclass(frozen=True)
class SetUnreadCount:
    """
    Authoritative server count. `change` and `notification_id` describe the
    server-side mutation that produced the count, when known.
    """
    count: int
    change: Optional[UnreadChange] = None
    notification_id: Optional[str] = None

@dataclass(frozen=True)
class SetLoading:
    loading: bool

@dataclass(frozen=True)
class SetConnectionState:
    state: ConnectionState
    error: Optional[str] = field(default=None)

@dataclass(frozen=True)
class Clear:
    pass

Action = SetFeed | UpsertOne | MarkRead | MarkAllRead | Delete | SetUnreadCount | SetLoading | SetConnectionState | Clear
