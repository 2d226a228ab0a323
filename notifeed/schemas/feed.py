from typing import List, Optional

from pydantic import BaseModel

from notifeed.models.notification import Notification
from notifeed.schemas.response import PaginationInfo

class FeedView(BaseModel):
    """
    Read-only state shape handed to UI collaborators.
    """
    notifications: List[Notification]
    unread_count: int
    loading: bool
    socket_connected: bool
    pagination: PaginationInfo
    connection_error: Optional[str] = None
