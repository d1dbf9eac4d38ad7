from typing import Any, Dict, List

from fastapi import APIRouter, HTTPException

from dependencies import Firestore, CurrentUser
from models.notification import Notification

router = APIRouter()


@router.get("")
async def get_notifications(db: Firestore, current_user: CurrentUser) -> List[Notification]:
    """Get the current user's notifications, newest first"""
    return db.get_notifications(current_user.user_id)


@router.post("/read-all")
async def mark_all_read(db: Firestore, current_user: CurrentUser) -> Dict[str, Any]:
    updated = db.mark_all_notifications_read(current_user.user_id)
    return {"updated": updated}


@router.post("/{notification_id}/read")
async def mark_read(notification_id: str, db: Firestore, current_user: CurrentUser) -> Dict[str, Any]:
    if not db.mark_notification_read(notification_id, current_user.user_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"id": notification_id, "is_read": True}
