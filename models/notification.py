from enum import Enum
from typing import Optional

from pydantic import BaseModel


class NotificationType(str, Enum):
    FOLLOW = "follow"
    LIKE = "like"
    COMMENT = "comment"
    MENTION = "mention"


class Notification(BaseModel):
    id: Optional[str] = None
    recipient_id: str
    sender_id: str
    notification_type: NotificationType
    post_id: Optional[str] = None
    comment_id: Optional[str] = None
    message: str
    is_read: bool = False
    created_at: Optional[str] = None
