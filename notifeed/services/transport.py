import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx

from notifeed.core.config import settings
from notifeed.core.exceptions import (
    AuthExpiredError,
    NetworkFailureError,
    ServerRejectedError,
    ThrottledError,
)
from notifeed.core.session import SessionStore

logger = logging.getLogger(__name__)

class TransportClient:
    """
    HTTP client for the notification API with client-side admission control.

    At most `max_concurrent` requests are outstanding at once; any request
    beyond that is rejected with `ThrottledError` instead of being queued.
    No retries happen at this layer.
    """

    def __init__(
        self,
        session: SessionStore,
        *,
        base_url: Optional[str] = None,
        max_concurrent: Optional[int] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        on_auth_expired: Optional[Callable[[], None]] = None,
    ):
        self.session = session
        self.max_concurrent = max_concurrent or settings.MAX_CONCURRENT_REQUESTS
        self.on_auth_expired = on_auth_expired
        self._in_flight = 0
        self._client = httpx.AsyncClient(
            base_url=f"{base_url or settings.BACKEND_URL}{settings.API_PREFIX}",
            timeout=timeout or settings.REQUEST_TIMEOUT_SECONDS,
            transport=transport,
        )

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def get_headers(self, token: Optional[str] = None) -> Dict[str, str]:
        token = token or self.session.token
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Issue a request and return the decoded JSON body.

        Raises ThrottledError, NetworkFailureError, AuthExpiredError or
        ServerRejectedError.
        """
        method = method.upper()
        if self._in_flight >= self.max_concurrent:
            logger.warning(f"Rejected {method} {path}: {self._in_flight} requests already in flight")
            raise ThrottledError("Too many concurrent requests")

        token = self.session.token
        self._in_flight += 1
        try:
            query = dict(params or {})
            if method == "GET":
                # Cache buster so intermediaries never serve a stale page
                query["_t"] = int(time.time() * 1000)

            logger.debug(f"API Request: {method} {path} (Active: {self._in_flight})")
            try:
                response = await self._client.request(method, path, params=query, headers=self.get_headers(token))
            except httpx.RequestError as e:
                logger.error(f"API Error: {method} {path} failed: {e}")
                raise NetworkFailureError(f"Could not reach notification service: {e}") from e

            logger.debug(f"API Response: {response.status_code} {path}")
            if response.status_code == httpx.codes.UNAUTHORIZED:
                # Only expire the credential this request was sent with
                if self.session.token == token:
                    self._expire_session()
                raise AuthExpiredError("Session expired", status_code=response.status_code)

            payload = self._decode(response)
            if response.is_error or payload.get("success") is False:
                message = payload.get("message") or f"Request failed with status {response.status_code}"
                raise ServerRejectedError(message, status_code=response.status_code)
            return payload
        finally:
            self._in_flight -= 1

    @staticmethod
    def _decode(response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            if response.is_error:
                return {}
            raise ServerRejectedError("Malformed response from notification service", status_code=response.status_code)
        if isinstance(payload, dict):
            return payload
        return {"data": payload}

    def _expire_session(self) -> None:
        logger.warning("Received 401 from notification service, clearing credential")
        self.session.clear()
        if self.on_auth_expired is not None:
            self.on_auth_expired()

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.request("GET", path, params=params)

    async def put(self, path: str) -> Dict[str, Any]:
        return await self.request("PUT", path)

    async def delete(self, path: str) -> Dict[str, Any]:
        return await self.request("DELETE", path)

    async def aclose(self) -> None:
        await self._client.aclose()
