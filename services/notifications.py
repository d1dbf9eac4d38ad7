import logging
from typing import Optional

from models.notification import NotificationType
from services.firestore import FirestoreDB

logger = logging.getLogger(__name__)


def send_notification(db: FirestoreDB, recipient_id: str, sender_id: str, notification_type: NotificationType,
                      message: str, post_id: Optional[str] = None, comment_id: Optional[str] = None) -> Optional[str]:
    """
    Create a notification for another user. A failure here is logged and never fails
    the action that triggered it.
    """
    if not recipient_id or recipient_id == sender_id:
        return None
    try:
        return db.create_notification(
            recipient_id=recipient_id,
            sender_id=sender_id,
            notification_type=notification_type.value,
            message=message,
            post_id=post_id,
            comment_id=comment_id,
        )
    except Exception as e:
        logger.warning("Could not create %s notification for %s: %s", notification_type.value, recipient_id, e)
        return None
