from enum import StrEnum

class NotificationType(StrEnum):
    APPROVAL = "approval"
    PAYMENT_DUE = "payment_due"
    PAYMENT_RECEIVED = "payment_received"
    ACCOUNT_UPDATE = "account_update"
    GENERAL = "general"
    WARNING = "warning"
    INFO = "info"

class NotificationPriority(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"

class ChannelEvent(StrEnum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CONNECT_ERROR = "connect_error"
    STATE_CHANGED = "state_changed"
    NOTIFICATION_CREATED = "notification_created"
    UNREAD_COUNT_CHANGED = "unread_count_changed"

class UnreadChange(StrEnum):
    READ = "read"
    ALL_READ = "all_read"
    DELETED = "deleted"
