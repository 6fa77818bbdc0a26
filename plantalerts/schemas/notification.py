import json
import logging
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, model_validator

logger = logging.getLogger(__name__)

Scope = Literal["all", "mine"]
Tab = Literal["all", "unread", "read"]


def decode_detail(text: Any) -> dict | None:
    """Decodes the structured alert detail carried in a notification's text.

    Anything that is not a JSON object yields None; the notification itself
    is still delivered.
    """
    if isinstance(text, dict):
        return text
    if not isinstance(text, str) or not text:
        return None
    try:
        value = json.loads(text)
    except (ValueError, RecursionError):
        logger.debug("Notification text is not JSON, delivering without detail")
        return None
    return value if isinstance(value, dict) else None


class NotificationDraft(BaseModel):
    operator_id: str
    device: str
    metric: str
    severity: str
    text: str


class NotificationItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    operator_id: str
    device: str
    metric: str
    severity: str
    text: str
    detail: dict | None = None
    read: bool = False
    created_at: datetime

    @model_validator(mode="after")
    def _fill_detail(self):
        if self.detail is None:
            self.detail = decode_detail(self.text)
        return self


class NotificationPage(BaseModel):
    data: list[NotificationItem]
    next_cursor: str | None = None
    has_more: bool = False


class UnreadCountResponse(BaseModel):
    count: int


class MarkReadResponse(BaseModel):
    id: int
    read: bool = True


class MarkAllReadResponse(BaseModel):
    updated_count: int


class PushEvent(BaseModel):
    event: str = "notification"
    data: NotificationItem
