from enum import StrEnum

class ErrorKind(StrEnum):
    THROTTLED = "throttled"
    NETWORK_FAILURE = "network_failure"
    AUTH_EXPIRED = "auth_expired"
    SERVER_REJECTED = "server_rejected"

class NotificationClientError(Exception):
    """
    Base error raised by the notification client.

    `kind` tells callers how to react: throttled calls are dropped silently,
    auth expiry ends the session, everything else is shown to the user.
    """
    kind: ErrorKind = ErrorKind.SERVER_REJECTED

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

class ThrottledError(NotificationClientError):
    kind = ErrorKind.THROTTLED

class NetworkFailureError(NotificationClientError):
    kind = ErrorKind.NETWORK_FAILURE

class AuthExpiredError(NotificationClientError):
    kind = ErrorKind.AUTH_EXPIRED

class ServerRejectedError(NotificationClientError):
    kind = ErrorKind.SERVER_REJECTED
