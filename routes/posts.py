import logging
from datetime import datetime
from typing import List, Dict, Any

from fastapi import APIRouter, HTTPException, UploadFile, File

from dependencies import Firestore, CurrentUser, PostCounter, S3
from models.counts import PostCounts
from models.notification import NotificationType
from models.post import Post, PostCreate, CommentRequest
from services.errors import CountFetchError
from services.firestore import FirestoreDB, LIKE_COUNT_FIELD, COMMENT_COUNT_FIELD
from services.notifications import send_notification
from services.post_counts import PostCountService

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_active_post(db: FirestoreDB, post_id: str) -> Dict[str, Any]:
    snapshot = db.get_post(post_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Post not found")
    post = snapshot.to_dict()
    if not post.get("is_active", True):
        raise HTTPException(status_code=404, detail="Post not found")
    post["id"] = post_id
    return post


async def _counts_after_write(post_counter: PostCountService, db: FirestoreDB, post_id: str) -> PostCounts:
    """Authoritative counts after a write, or the cached counters when counting fails"""
    try:
        return await post_counter.get_counts(post_id)
    except CountFetchError as e:
        logger.warning("Falling back to cached counters for post %s: %s", post_id, e)
        stored = db.get_stored_counts(post_id) or {}
        return PostCounts(
            like_count=stored.get(LIKE_COUNT_FIELD, 0),
            comment_count=stored.get(COMMENT_COUNT_FIELD, 0),
        )


@router.get("")
async def get_posts(db: Firestore, current_user: CurrentUser) -> List[Post]:
    """Get all active posts with user-specific like status and comments"""
    return db.get_posts_with_user_data(current_user.user_id)


@router.post("")
async def create_post(
        db: Firestore,
        post_data: PostCreate,
        current_user: CurrentUser
) -> Dict[str, Any]:
    """Create a new post"""
    post_id = db.create_post(post_data.author, current_user.user_id, post_data.content, post_data.category.value)

    return {
        "id": post_id,
        "author": post_data.author,
        "author_uid": current_user.user_id,
        "content": post_data.content,
        "category": post_data.category.value,
        "created_at": datetime.now().isoformat(),
        "like_count": 0,
        "comment_count": 0,
        "comments": []
    }


@router.delete("/{post_id}")
async def delete_post(db: Firestore, post_id: str, current_user: CurrentUser) -> Dict[str, Any]:
    """Soft delete a post owned by the current user"""
    post = _get_active_post(db, post_id)
    if post.get("author_uid") != current_user.user_id:
        raise HTTPException(status_code=403, detail="You can only delete your own posts")

    db.deactivate_post(post_id)
    return {"message": "Post deleted", "id": post_id}


@router.post("/{post_id}/image")
async def upload_post_image(
        db: Firestore,
        s3: S3,
        post_id: str,
        current_user: CurrentUser,
        file: UploadFile = File(...)
) -> Dict[str, Any]:
    """Attach an image to a post owned by the current user"""
    post = _get_active_post(db, post_id)
    if post.get("author_uid") != current_user.user_id:
        raise HTTPException(status_code=403, detail="You can only edit your own posts")

    image_key = await s3.upload_post_image(file, current_user.user_id, post_id)
    db.set_post_image(post_id, image_key)

    return {
        "id": post_id,
        "image_key": image_key,
        "image_url": s3.get_presigned_url(image_key),
    }


@router.post("/{post_id}/like")
async def toggle_like(
        db: Firestore,
        post_counter: PostCounter,
        post_id: str,
        current_user: CurrentUser
) -> Dict[str, Any]:
    """Toggle like status for a post"""
    post = _get_active_post(db, post_id)
    user_id = current_user.user_id

    if db.user_has_liked_post(post_id, user_id):
        db.remove_like(post_id, user_id)
        liked = False
    else:
        db.add_like(post_id, user_id)
        liked = True
        send_notification(
            db, post.get("author_uid"), user_id, NotificationType.LIKE,
            f"{current_user.email or 'Someone'} liked your post", post_id=post_id,
        )

    counts = await _counts_after_write(post_counter, db, post_id)

    return {
        "post_id": post_id,
        "liked": liked,
        "like_count": counts.like_count,
        "comment_count": counts.comment_count,
    }


@router.get("/{post_id}/comments")
async def get_comments(db: Firestore, post_id: str, current_user: CurrentUser) -> List[Dict[str, Any]]:
    """Get the active comments of a post, newest first"""
    _get_active_post(db, post_id)
    return db.get_comments(post_id)


@router.post("/{post_id}/comment")
async def add_comment(
        db: Firestore,
        post_counter: PostCounter,
        post_id: str,
        comment: CommentRequest,
        current_user: CurrentUser
) -> Dict[str, Any]:
    """Add a comment to a post"""
    post = _get_active_post(db, post_id)
    comment_id = db.add_comment(post_id, comment.author, current_user.user_id, comment.text)

    send_notification(
        db, post.get("author_uid"), current_user.user_id, NotificationType.COMMENT,
        f"{comment.author} commented on your post", post_id=post_id, comment_id=comment_id,
    )
    counts = await _counts_after_write(post_counter, db, post_id)

    return {
        "id": comment_id,
        "post_id": post_id,
        "author": comment.author,
        "author_uid": current_user.user_id,
        "text": comment.text,
        "created_at": datetime.now().isoformat(),
        "comment_count": counts.comment_count,
    }


@router.delete("/{post_id}/comments/{comment_id}")
async def delete_comment(
        db: Firestore,
        post_counter: PostCounter,
        post_id: str,
        comment_id: str,
        current_user: CurrentUser
) -> Dict[str, Any]:
    """Soft delete a comment written by the current user"""
    comment = db.get_comment(comment_id)
    if comment is None or comment.get("post_id") != post_id or not comment.get("is_active", True):
        raise HTTPException(status_code=404, detail="Comment not found")
    if comment.get("author_uid") != current_user.user_id:
        raise HTTPException(status_code=403, detail="You can only delete your own comments")

    db.deactivate_comment(comment_id)
    counts = await _counts_after_write(post_counter, db, post_id)

    return {"message": "Comment deleted", "id": comment_id, "comment_count": counts.comment_count}
