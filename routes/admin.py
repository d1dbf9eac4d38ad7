import logging
from typing import Any, Dict, List

from fastapi import APIRouter, HTTPException

from dependencies import AdminUser, Firestore
from models.admin import PlatformStats, UserProfile
from models.post import Post

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/stats")
async def get_stats(db: Firestore, admin: AdminUser) -> PlatformStats:
    """Platform totals for the moderation overview"""
    return PlatformStats(**db.get_platform_stats())


@router.get("/users")
async def list_users(db: Firestore, admin: AdminUser) -> List[UserProfile]:
    return db.list_users()


@router.get("/posts")
async def list_posts(db: Firestore, admin: AdminUser) -> List[Post]:
    """All posts, including ones their authors deleted"""
    return db.list_all_posts()


@router.post("/users/{user_id}/deactivate")
async def deactivate_user(user_id: str, db: Firestore, admin: AdminUser) -> Dict[str, Any]:
    if user_id == admin.user_id:
        raise HTTPException(status_code=400, detail="Cannot deactivate yourself")
    if not db.set_user_active(user_id, False):
        raise HTTPException(status_code=404, detail="User not found")

    logger.info("Admin %s deactivated user %s", admin.user_id, user_id)
    return {"id": user_id, "is_active": False}


@router.post("/users/{user_id}/reactivate")
async def reactivate_user(user_id: str, db: Firestore, admin: AdminUser) -> Dict[str, Any]:
    if not db.set_user_active(user_id, True):
        raise HTTPException(status_code=404, detail="User not found")

    logger.info("Admin %s reactivated user %s", admin.user_id, user_id)
    return {"id": user_id, "is_active": True}


@router.delete("/posts/{post_id}")
async def delete_post(post_id: str, db: Firestore, admin: AdminUser) -> Dict[str, Any]:
    """Permanently delete a post with its likes and comments"""
    if not db.delete_post(post_id):
        raise HTTPException(status_code=404, detail="Post not found")

    logger.info("Admin %s deleted post %s", admin.user_id, post_id)
    return {"message": "Post deleted permanently", "id": post_id}


@router.delete("/users/{user_id}")
async def delete_user(user_id: str, db: Firestore, admin: AdminUser) -> Dict[str, Any]:
    """Permanently delete a user with their posts, likes, comments, follows and notifications"""
    if user_id == admin.user_id:
        raise HTTPException(status_code=400, detail="Cannot delete yourself")
    if not db.delete_user(user_id):
        raise HTTPException(status_code=404, detail="User not found")

    logger.info("Admin %s deleted user %s", admin.user_id, user_id)
    return {"message": "User and all associated data deleted permanently", "id": user_id}
