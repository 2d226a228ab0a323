from typing import Any, List, Optional

from pydantic import AliasChoices, AliasPath, BaseModel, ConfigDict, Field, field_validator

from notifeed.models.enums import UnreadChange
from notifeed.models.notification import Notification

class PaginationInfo(BaseModel):
    """
    Page descriptor normalized to `{current, total}` where total counts pages.
    """
    current: int = Field(default=1, validation_alias=AliasChoices("current", "page"))
    total: int = Field(default=1, validation_alias=AliasChoices("pages", "totalPages", "total"))

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("current", "total", mode="after")
    @classmethod
    def at_least_one(cls, v: int) -> int:
        return max(1, v)

class APIEnvelope(BaseModel):
    """
    Standard backend response wrapper.
    """
    success: bool = True
    message: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

class FeedPageResponse(APIEnvelope):
    """
    Response of `GET /notifications`.
    """
    data: List[Notification] = Field(default_factory=list)
    pagination: PaginationInfo = Field(default_factory=PaginationInfo)
    unread_count: int = Field(default=0, validation_alias=AliasChoices("unreadCount", "unread_count"))

class UnreadCountResponse(APIEnvelope):
    """
    Response of `GET /notifications/unread-count`.
    """
    unread_count: int = Field(default=0, validation_alias=AliasChoices(AliasPath("data", "unreadCount"), "unread_count"))

class MutationResponse(APIEnvelope):
    """
    Response of the read, mark-all-read and delete endpoints.
    """
    data: Optional[Any] = None

class UnreadCountPayload(BaseModel):
    """
    Body of the `notificationRead`, `allNotificationsRead` and
    `notificationDeleted` socket events.
    """
    unread_count: int = Field(validation_alias=AliasChoices("unreadCount", "unread_count"))
    notification_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("notificationId", "notification_id"))
    change: Optional[UnreadChange] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("unread_count", mode="after")
    @classmethod
    def not_negative(cls, v: int) -> int:
        return max(0, v)

    @field_validator("notification_id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        if isinstance(v, int):
            return str(v)
        return v
