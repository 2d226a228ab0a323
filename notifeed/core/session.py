import logging
from typing import Any, Callable

from jose import jwt, JWTError

logger = logging.getLogger(__name__)

TokenListener = Callable[[str | None], None]

class SessionStore:
    """
    Holds the bearer credential for the current session.

    Listeners are called synchronously, in subscription order, every time the
    token changes. A token of None means there is no session.
    """

    def __init__(self, token: str | None = None):
        self._token = token
        self._listeners: list[TokenListener] = []

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def is_authenticated(self) -> bool:
        return bool(self._token)

    def set_token(self, token: str | None) -> None:
        token = token or None
        if token == self._token:
            return
        self._token = token
        logger.info(f"Session {'started' if token else 'ended'}")
        for listener in list(self._listeners):
            listener(token)

    def clear(self) -> None:
        self.set_token(None)

    def subscribe(self, listener: TokenListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def claims(self) -> dict[str, Any]:
        """
        Unverified claims of the current token; the backend does the verifying.
        """
        if not self._token:
            return {}
        try:
            return jwt.get_unverified_claims(self._token)
        except JWTError:
            return {}

    @property
    def user_id(self) -> str | None:
        claims = self.claims
        subject = claims.get("sub") or claims.get("id")
        return str(subject) if subject is not None else None

    @property
    def is_admin(self) -> bool:
        return self.claims.get("role") == "admin"
