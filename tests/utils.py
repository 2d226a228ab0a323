import asyncio
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from jose import jwt
from socketio.exceptions import ConnectionError as SocketConnectionError
from starlette.exceptions import HTTPException as StarletteHTTPException

from notifeed.models.notification import Notification

TEST_SECRET = "test-secret"

def make_token(sub: str = "user-1", role: str = "user") -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=30)
    return jwt.encode({"exp": expire, "sub": sub, "role": role}, TEST_SECRET, algorithm="HS256")

def make_notification(notification_id: str, *, is_read: bool = False, **extra: Any) -> Notification:
    data = {"_id": notification_id, "title": f"Title {notification_id}", "message": "Body", "isRead": is_read}
    data.update(extra)
    return Notification.model_validate(data)

async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)

async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": exc.detail,
        }
    )

class FakeBackend:
    """
    In-memory notification API speaking the backend's wire format.
    """

    def __init__(self):
        self.notifications: List[Dict[str, Any]] = []
        self.valid_tokens: set = set()
        self.requests: List[Dict[str, Any]] = []
        self.fail_status: Optional[int] = None
        self.hold: Optional[asyncio.Semaphore] = None
        self.hold_mutations: Optional[asyncio.Semaphore] = None
        self.app = self._build_app()

    def add(self, notification_id: str, *, is_read: bool = False, **extra: Any) -> Dict[str, Any]:
        created = datetime.now(timezone.utc) + timedelta(seconds=len(self.notifications))
        record = {
            "_id": notification_id,
            "title": f"Title {notification_id}",
            "message": "Body",
            "type": "general",
            "priority": "medium",
            "isRead": is_read,
            "createdAt": created.isoformat(),
            "actionUrl": "/notifications",
            "metadata": {},
        }
        record.update(extra)
        self.notifications.insert(0, record)
        return record

    def find(self, notification_id: str) -> Optional[Dict[str, Any]]:
        for record in self.notifications:
            if record["_id"] == notification_id:
                return record
        return None

    def unread_count(self) -> int:
        return sum(1 for record in self.notifications if not record["isRead"])

    def count(self, method: str, path: str) -> int:
        return sum(1 for r in self.requests if r["method"] == method and r["path"] == path)

    async def _guard(self, request: Request):
        self.requests.append({
            "method": request.method,
            "path": request.url.path,
            "query": dict(request.query_params),
            "authorization": request.headers.get("authorization"),
        })
        authorization = request.headers.get("authorization", "")
        if authorization.removeprefix("Bearer ") not in self.valid_tokens:
            raise HTTPException(status_code=401, detail="Not authorized, token failed")
        if self.fail_status:
            raise HTTPException(status_code=self.fail_status, detail="Server error")

    def _build_app(self) -> FastAPI:
        app = FastAPI()
        app.add_exception_handler(StarletteHTTPException, http_exception_handler)
        router = APIRouter(prefix="/api/notifications", dependencies=[Depends(self._guard)])

        @router.get("")
        async def list_notifications(page: int = 1, limit: int = 20, type: Optional[str] = None, unreadOnly: Optional[str] = None):
            if self.hold is not None:
                await self.hold.acquire()
            records = self.notifications
            if type:
                records = [r for r in records if r["type"] == type]
            if unreadOnly == "true":
                records = [r for r in records if not r["isRead"]]
            start = (page - 1) * limit
            data = [dict(r) for r in records[start:start + limit]]
            return {
                "success": True,
                "data": data,
                "pagination": {
                    "page": page,
                    "limit": limit,
                    "total": len(data),
                    "pages": max(1, math.ceil(len(records) / limit)),
                },
                "unreadCount": self.unread_count(),
            }

        @router.get("/unread-count")
        async def unread_count():
            return {"success": True, "data": {"unreadCount": self.unread_count()}}

        @router.put("/mark-all-read")
        async def mark_all_read():
            for record in self.notifications:
                record["isRead"] = True
            return {"success": True, "data": {"modifiedCount": len(self.notifications)}}

        @router.put("/{notification_id}/read")
        async def mark_read(notification_id: str):
            if self.hold_mutations is not None:
                await self.hold_mutations.acquire()
            record = self.find(notification_id)
            if record is None:
                raise HTTPException(status_code=404, detail="Notification not found")
            record["isRead"] = True
            return {"success": True, "data": record}

        @router.delete("/{notification_id}")
        async def delete(notification_id: str):
            record = self.find(notification_id)
            if record is None:
                raise HTTPException(status_code=404, detail="Notification not found")
            self.notifications.remove(record)
            return {"success": True, "message": "Notification deleted successfully"}

        app.include_router(router)
        return app

class FakeSocketClient:
    """
    Stand-in for socketio.AsyncClient driven by a FakeSocketServer.
    """

    def __init__(self, server: "FakeSocketServer"):
        self.server = server
        self.handlers: Dict[str, Callable] = {}
        self.connected = False
        self.emitted: List[tuple] = []
        self.connect_kwargs: Dict[str, Any] = {}
        self._closed = asyncio.Event()

    def on(self, event: str, handler: Callable = None):
        self.handlers[event] = handler

    async def connect(self, url: str, **kwargs: Any):
        self.connect_kwargs = {"url": url, **kwargs}
        self.server.attempts += 1
        if self.server.refuse:
            raise SocketConnectionError("Authentication error: Invalid token")
        self.connected = True
        self.server.clients.append(self)

    async def wait(self):
        await self._closed.wait()

    async def emit(self, event: str, data: Any = None):
        self.emitted.append((event, data))

    async def disconnect(self):
        self.connected = False
        self._closed.set()

    def push(self, event: str, data: Any) -> None:
        handler = self.handlers.get(event)
        if handler is not None:
            handler(data)

    def drop(self, reason: str = "transport close") -> None:
        self.connected = False
        self.handlers["disconnect"](reason)
        self._closed.set()

class FakeSocketServer:
    def __init__(self):
        self.clients: List[FakeSocketClient] = []
        self.refuse = False
        self.attempts = 0

    @property
    def current(self) -> Optional[FakeSocketClient]:
        for client in reversed(self.clients):
            if client.connected:
                return client
        return None

    def factory(self) -> FakeSocketClient:
        return FakeSocketClient(self)
