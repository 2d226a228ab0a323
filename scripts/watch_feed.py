import asyncio
import logging
import os

from notifeed.core.config import settings
from notifeed.main import build_notification_center
from notifeed.store.feed import FeedState

def print_feed(state: FeedState) -> None:
    print(f"[{state.connection_state}] {state.unread_count} unread, {len(state.items)} loaded")
    for item in state.items[:10]:
        marker = " " if item.is_read else "*"
        print(f"  {marker} {item.title}: {item.message}")

def on_token_change(token):
    if token is None:
        print("Session expired, sign in again")

async def main():
    token = os.getenv("NOTIFEED_TOKEN")
    if not token:
        print("Set NOTIFEED_TOKEN to a valid bearer token")
        return

    center = build_notification_center(token)
    center.store.subscribe(print_feed)
    center.session.subscribe(on_token_change)
    center.start()
    print(f"Watching notifications at {settings.BACKEND_URL} (Ctrl+C to stop)")
    try:
        await asyncio.Event().wait()
    finally:
        await center.aclose()

if __name__ == "__main__":
    logging.basicConfig(level=settings.LOG_LEVEL)
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
