import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

import firebase_admin
from firebase_admin import firestore as fs
from google.cloud import firestore
from google.cloud.firestore_v1 import FieldFilter

from models.counts import ChangeEvent, ChangeKind

logger = logging.getLogger(__name__)

LIKE_COUNT_FIELD = "like_count"
COMMENT_COUNT_FIELD = "comment_count"


class FirestoreDB:
    def __init__(self, app: firebase_admin.App):
        self.db = fs.client(app)

    def collection(self, name: str):
        return self.db.collection(name)

    # ---- posts -------------------------------------------------------

    def get_all_posts(self):
        """Get all active posts sorted by creation date descending"""
        posts_ref = self.collection("posts").where(
            filter=FieldFilter("is_active", "==", True)
        ).order_by(
            "created_at", direction=firestore.Query.DESCENDING
        ).stream()
        posts = []
        for doc in posts_ref:
            post_data = doc.to_dict()
            post_data["id"] = doc.id
            posts.append(post_data)
        return posts

    def get_posts_with_user_data(self, user_id: str):
        """
        Get all posts with user-specific like status and comments in a single efficient operation
        """
        posts = self.get_all_posts()

        if not posts:
            return []

        post_ids = [post["id"] for post in posts]

        # Batch fetch likes and comments for all posts
        user_liked_posts = self.get_user_likes_for_posts(post_ids, user_id)
        all_comments = self.get_comments_for_posts(post_ids)

        # Join the data in memory
        for post in posts:
            post_id = post["id"]
            post["userHasLiked"] = post_id in user_liked_posts
            post["comments"] = all_comments.get(post_id, [])

        return posts

    def create_post(self, author: str, author_uid: str, content: str, category: str = "general"):
        """Create a new post"""
        new_post_ref = self.collection("posts").document()
        now = datetime.now().isoformat()
        new_post_data = {
            "author": author,
            "author_uid": author_uid,
            "content": content,
            "category": category,
            "image_key": None,
            "is_active": True,
            LIKE_COUNT_FIELD: 0,
            COMMENT_COUNT_FIELD: 0,
            "created_at": now,
            "updated_at": now,
        }
        new_post_ref.set(new_post_data)
        return new_post_ref.id

    def get_post(self, post_id: str):
        """Get a post snapshot by ID, or None when it does not exist"""
        snapshot = self.collection("posts").document(post_id).get()
        if not snapshot.exists:
            return None
        return snapshot

    def set_post_image(self, post_id: str, image_key: str):
        self.collection("posts").document(post_id).update({
            "image_key": image_key,
            "updated_at": datetime.now().isoformat(),
        })

    def deactivate_post(self, post_id: str):
        self.collection("posts").document(post_id).update({
            "is_active": False,
            "updated_at": datetime.now().isoformat(),
        })

    def update_post_counter(self, post_id: str, field: str, increment: int = 1):
        """Adjust a cached counter on a post inside a transaction, never going below zero"""
        post_ref = self.collection("posts").document(post_id)
        transaction = self.db.transaction()

        @firestore.transactional
        def update_in_transaction(transaction, post_ref):
            snapshot = post_ref.get(transaction=transaction)
            if not snapshot.exists:
                return None

            current = snapshot.to_dict().get(field, 0)
            new_value = max(0, current + increment)

            transaction.update(post_ref, {field: new_value})
            return new_value

        return update_in_transaction(transaction, post_ref)

    # ---- likes -------------------------------------------------------

    def get_user_likes_for_posts(self, post_ids: List[str], user_id: str) -> Set[str]:
        """
        Batch fetch all posts that a user has liked from a list of post IDs
        Returns a set of post IDs that the user has liked
        """
        if not post_ids or not user_id:
            return set()

        liked_posts = set()

        # Process in chunks of 10 due to Firestore 'in' query limitation
        for i in range(0, len(post_ids), 10):
            chunk = post_ids[i:i + 10]

            likes_ref = self.collection("likes").where(
                filter=FieldFilter("user_id", "==", user_id)
            ).where(
                filter=FieldFilter("post_id", "in", chunk)
            ).stream()

            for doc in likes_ref:
                liked_posts.add(doc.to_dict().get("post_id"))

        return liked_posts

    def add_like(self, post_id: str, user_id: str):
        """Add a like to a post from a specific user"""
        like_ref = self.collection("likes").document(f"{post_id}_{user_id}")

        if like_ref.get().exists:
            # Like already exists, don't increment counter again
            return None

        like_ref.set({
            "post_id": post_id,
            "user_id": user_id,
            "created_at": datetime.now().isoformat()
        })

        return self.update_post_counter(post_id, LIKE_COUNT_FIELD, 1)

    def remove_like(self, post_id: str, user_id: str):
        """Remove a like from a post for a specific user"""
        like_ref = self.collection("likes").document(f"{post_id}_{user_id}")

        if not like_ref.get().exists:
            return None

        like_ref.delete()

        return self.update_post_counter(post_id, LIKE_COUNT_FIELD, -1)

    def user_has_liked_post(self, post_id: str, user_id: str) -> bool:
        """Check if a specific user has liked a post"""
        return self.collection("likes").document(f"{post_id}_{user_id}").get().exists

    # ---- comments ----------------------------------------------------

    def get_comments_for_posts(self, post_ids: List[str]) -> Dict[str, List[Dict]]:
        """
        Batch fetch active comments for multiple posts
        Returns a dictionary mapping post_ids to lists of comments
        """
        if not post_ids:
            return {}

        comments_by_post = {post_id: [] for post_id in post_ids}

        for i in range(0, len(post_ids), 10):
            chunk = post_ids[i:i + 10]

            comments_ref = self.collection("comments").where(
                filter=FieldFilter("post_id", "in", chunk)
            ).where(
                filter=FieldFilter("is_active", "==", True)
            ).order_by(
                "created_at", direction=firestore.Query.DESCENDING
            ).stream()

            for doc in comments_ref:
                comment = doc.to_dict()
                comment["id"] = doc.id
                post_id = comment.get("post_id")
                if post_id in comments_by_post:
                    comments_by_post[post_id].append(comment)

        return comments_by_post

    def add_comment(self, post_id: str, author: str, author_id: str, text: str):
        """Add a comment to a post"""
        comment_ref = self.collection("comments").document()
        now = datetime.now().isoformat()
        comment_ref.set({
            "post_id": post_id,
            "author": author,
            "author_uid": author_id,
            "text": text,
            "is_active": True,
            "created_at": now,
            "updated_at": now,
        })
        self.update_post_counter(post_id, COMMENT_COUNT_FIELD, 1)
        return comment_ref.id

    def get_comment(self, comment_id: str) -> Optional[Dict[str, Any]]:
        snapshot = self.collection("comments").document(comment_id).get()
        if not snapshot.exists:
            return None
        comment = snapshot.to_dict()
        comment["id"] = snapshot.id
        return comment

    def deactivate_comment(self, comment_id: str):
        """Soft delete a comment and decrement its post's cached counter"""
        comment = self.get_comment(comment_id)
        if comment is None or not comment.get("is_active", True):
            return None

        self.collection("comments").document(comment_id).update({
            "is_active": False,
            "updated_at": datetime.now().isoformat(),
        })
        return self.update_post_counter(comment["post_id"], COMMENT_COUNT_FIELD, -1)

    def get_comments(self, post_id: str):
        """Get active comments for a post"""
        comments_ref = self.collection("comments").where(
            filter=FieldFilter("post_id", "==", post_id)
        ).where(
            filter=FieldFilter("is_active", "==", True)
        ).order_by(
            "created_at", direction=firestore.Query.DESCENDING
        ).stream()

        comments = []
        for doc in comments_ref:
            c_data = doc.to_dict()
            c_data["id"] = doc.id
            comments.append(c_data)
        return comments

    # ---- counts ------------------------------------------------------

    def _likes_query(self, post_id: str):
        return self.collection("likes").where(filter=FieldFilter("post_id", "==", post_id))

    def _comments_query(self, post_id: str):
        return self.collection("comments").where(filter=FieldFilter("post_id", "==", post_id))

    def count_likes(self, post_id: str) -> int:
        """Count like rows for a post with a server-side aggregation"""
        result = self._likes_query(post_id).count(alias="total").get()
        return int(result[0][0].value)

    def count_comments(self, post_id: str) -> int:
        """Count active comment rows for a post with a server-side aggregation"""
        result = self._comments_query(post_id).where(
            filter=FieldFilter("is_active", "==", True)
        ).count(alias="total").get()
        return int(result[0][0].value)

    def get_stored_counts(self, post_id: str) -> Optional[Dict[str, int]]:
        """Get the counters cached on the post document"""
        snapshot = self.get_post(post_id)
        if snapshot is None:
            return None
        post_data = snapshot.to_dict()
        return {
            LIKE_COUNT_FIELD: post_data.get(LIKE_COUNT_FIELD, 0) or 0,
            COMMENT_COUNT_FIELD: post_data.get(COMMENT_COUNT_FIELD, 0) or 0,
        }

    def write_post_counts(self, post_id: str, like_count: int, comment_count: int):
        self.collection("posts").document(post_id).update({
            LIKE_COUNT_FIELD: like_count,
            COMMENT_COUNT_FIELD: comment_count,
        })

    def watch_post_interactions(self, post_id: str, on_event: Callable[[ChangeEvent], None]) -> Callable[[], None]:
        """
        Listen for like and comment changes on a post.

        Firestore delivers the current result set as the first snapshot; that one is
        skipped so on_event only sees changes made after the watch was opened.
        Callbacks run on the SDK's listener thread.

        Returns:
            A callable that closes both listeners
        """
        watches = []

        for name, query in (("likes", self._likes_query(post_id)), ("comments", self._comments_query(post_id))):
            state = {"initial": True}

            def on_snapshot(docs, changes, read_time, name=name, state=state):
                if state["initial"]:
                    state["initial"] = False
                    return
                for change in changes:
                    on_event(ChangeEvent(
                        post_id=post_id,
                        collection=name,
                        kind=ChangeKind(change.type.name.lower()),
                    ))

            watches.append(query.on_snapshot(on_snapshot))

        logger.debug("Opened %s change listeners for post %s", len(watches), post_id)

        def unsubscribe():
            for watch in watches:
                watch.unsubscribe()
            logger.debug("Closed change listeners for post %s", post_id)

        return unsubscribe

    # ---- notifications -----------------------------------------------

    def create_notification(self, recipient_id: str, sender_id: str, notification_type: str, message: str,
                            post_id: Optional[str] = None, comment_id: Optional[str] = None) -> str:
        notification_ref = self.collection("notifications").document()
        notification_ref.set({
            "recipient_id": recipient_id,
            "sender_id": sender_id,
            "notification_type": notification_type,
            "post_id": post_id,
            "comment_id": comment_id,
            "message": message,
            "is_read": False,
            "created_at": datetime.now().isoformat(),
        })
        return notification_ref.id

    def get_notifications(self, user_id: str) -> List[Dict[str, Any]]:
        """Get all notifications for a user, newest first"""
        notifications_ref = self.collection("notifications") \
            .where(filter=FieldFilter("recipient_id", "==", user_id)) \
            .order_by("created_at", direction=firestore.Query.DESCENDING) \
            .stream()

        notifications = []
        for doc in notifications_ref:
            data = doc.to_dict()
            data["id"] = doc.id
            notifications.append(data)
        return notifications

    def mark_notification_read(self, notification_id: str, user_id: str) -> bool:
        notification_ref = self.collection("notifications").document(notification_id)
        snapshot = notification_ref.get()

        if not snapshot.exists:
            return False

        # Check if this notification belongs to the user
        if snapshot.to_dict().get("recipient_id") != user_id:
            return False

        notification_ref.update({"is_read": True})
        return True

    def mark_all_notifications_read(self, user_id: str) -> int:
        unread = self.collection("notifications") \
            .where(filter=FieldFilter("recipient_id", "==", user_id)) \
            .where(filter=FieldFilter("is_read", "==", False)) \
            .stream()

        batch = self.db.batch()
        updated = 0
        for doc in unread:
            batch.update(doc.reference, {"is_read": True})
            updated += 1
        if updated:
            batch.commit()
        return updated

    # ---- moderation --------------------------------------------------

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        snapshot = self.collection("users").document(user_id).get()
        if not snapshot.exists:
            return None
        user = snapshot.to_dict()
        user["id"] = snapshot.id
        return user

    def list_users(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Get user profiles, newest first"""
        users_ref = self.collection("users").order_by(
            "created_at", direction=firestore.Query.DESCENDING
        ).limit(limit).stream()

        users = []
        for doc in users_ref:
            user = doc.to_dict()
            user["id"] = doc.id
            users.append(user)
        return users

    def list_all_posts(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Get posts including deactivated ones, newest first"""
        posts_ref = self.collection("posts").order_by(
            "created_at", direction=firestore.Query.DESCENDING
        ).limit(limit).stream()

        posts = []
        for doc in posts_ref:
            post = doc.to_dict()
            post["id"] = doc.id
            posts.append(post)
        return posts

    def set_user_active(self, user_id: str, is_active: bool) -> bool:
        user_ref = self.collection("users").document(user_id)
        if not user_ref.get().exists:
            return False
        user_ref.update({"is_active": is_active})
        return True

    def _count(self, query) -> int:
        return int(query.count(alias="total").get()[0][0].value)

    def get_platform_stats(self) -> Dict[str, int]:
        today = datetime.now().replace(hour=0, minute=0, second=0, microsecond=0).isoformat()
        return {
            "total_users": self._count(self.collection("users")),
            "new_users_today": self._count(
                self.collection("users").where(filter=FieldFilter("created_at", ">=", today))
            ),
            "total_posts": self._count(
                self.collection("posts").where(filter=FieldFilter("is_active", "==", True))
            ),
            "total_likes": self._count(self.collection("likes")),
            "total_comments": self._count(
                self.collection("comments").where(filter=FieldFilter("is_active", "==", True))
            ),
        }

    def _delete_docs(self, docs) -> int:
        """Delete documents in write batches of at most 500"""
        batch = self.db.batch()
        pending = 0
        deleted = 0
        for doc in docs:
            batch.delete(doc.reference)
            pending += 1
            deleted += 1
            if pending == 500:
                batch.commit()
                batch = self.db.batch()
                pending = 0
        if pending:
            batch.commit()
        return deleted

    def delete_post(self, post_id: str) -> bool:
        """Permanently delete a post together with its likes, comments and notifications"""
        post_ref = self.collection("posts").document(post_id)
        if not post_ref.get().exists:
            return False

        for name in ("likes", "comments", "notifications"):
            self._delete_docs(
                self.collection(name).where(filter=FieldFilter("post_id", "==", post_id)).stream()
            )
        post_ref.delete()
        logger.info("Deleted post %s", post_id)
        return True

    def delete_user(self, user_id: str) -> bool:
        """
        Permanently delete a user and everything they created.

        Likes and comments on other users' posts also lower those posts' cached
        counters.
        """
        user_ref = self.collection("users").document(user_id)
        if not user_ref.get().exists:
            return False

        likes = self.collection("likes").where(filter=FieldFilter("user_id", "==", user_id)).stream()
        for doc in likes:
            doc.reference.delete()
            self.update_post_counter(doc.to_dict()["post_id"], LIKE_COUNT_FIELD, -1)

        comments = self.collection("comments").where(filter=FieldFilter("author_uid", "==", user_id)).stream()
        for doc in comments:
            comment = doc.to_dict()
            doc.reference.delete()
            if comment.get("is_active", True):
                self.update_post_counter(comment["post_id"], COMMENT_COUNT_FIELD, -1)

        # both sides of every follow relation
        for doc in user_ref.collection("following").stream():
            self.collection("users").document(doc.id).collection("followers").document(user_id).delete()
            doc.reference.delete()
        for doc in user_ref.collection("followers").stream():
            self.collection("users").document(doc.id).collection("following").document(user_id).delete()
            doc.reference.delete()

        for field in ("sender_id", "recipient_id"):
            self._delete_docs(
                self.collection("notifications").where(filter=FieldFilter(field, "==", user_id)).stream()
            )

        posts = self.collection("posts").where(filter=FieldFilter("author_uid", "==", user_id)).stream()
        for doc in posts:
            self.delete_post(doc.id)

        user_ref.delete()
        logger.info("Deleted user %s and their content", user_id)
        return True
