from typing import Optional

from notifeed.core.session import SessionStore
from notifeed.services.notification_center import NotificationCenter
from notifeed.services.realtime import RealtimeChannel
from notifeed.services.transport import TransportClient

def build_notification_center(token: Optional[str] = None, backend_url: Optional[str] = None) -> NotificationCenter:
    """
    Wire a NotificationCenter with one transport client and realtime channel
    bound to a fresh session. Call `start()` on the result from inside a
    running event loop.
    """
    session = SessionStore(token)
    return NotificationCenter(
        session,
        transport=TransportClient(session, base_url=backend_url),
        channel=RealtimeChannel(session, url=backend_url),
    )
