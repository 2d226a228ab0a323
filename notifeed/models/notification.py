from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from notifeed.models.enums import NotificationPriority, NotificationType

class Notification(BaseModel):
    """
    A server-identified notification record.

    `metadata` is carried as-is; nothing in the client inspects it.
    """
    id: str = Field(validation_alias=AliasChoices("id", "_id"), description="Unique identifier, stable across channels")
    title: str = Field(default="", description="Notification title")
    message: str = Field(default="", description="Content of the notification")
    type: str = Field(default=NotificationType.GENERAL, description="Category (e.g., 'approval', 'payment_due')")
    priority: NotificationPriority = Field(default=NotificationPriority.MEDIUM, description="Presentation hint")
    is_read: bool = Field(default=False, validation_alias=AliasChoices("is_read", "isRead", "read"))
    created_at: datetime | None = Field(default=None, validation_alias=AliasChoices("created_at", "createdAt"))
    action_url: str | None = Field(default=None, validation_alias=AliasChoices("action_url", "actionUrl", "pageToNavigate"))
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        if isinstance(v, int):
            return str(v)
        return v

    @field_validator("priority", mode="before")
    @classmethod
    def default_unknown_priority(cls, v: Any) -> Any:
        if not isinstance(v, str) or v not in {p.value for p in NotificationPriority}:
            return NotificationPriority.MEDIUM
        return v

    @field_validator("metadata", mode="before")
    @classmethod
    def none_metadata(cls, v: Any) -> Any:
        return {} if v is None else v
