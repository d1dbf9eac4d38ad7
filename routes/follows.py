from fastapi import APIRouter, HTTPException
from google.cloud import firestore

from dependencies import Firestore, CurrentUser
from models.notification import NotificationType
from services.firestore import FirestoreDB
from services.notifications import send_notification

router = APIRouter()


def _profile(data: dict) -> dict:
    return {
        "username": data.get("username", "Unknown"),
        "email": data.get("email", "Unknown"),
        "profileIcon": data.get("profileIcon"),
    }


@router.post("/{target_id}/follow")
def follow_user(target_id: str, db: Firestore, current_user: CurrentUser):
    """
    Makes the current user follow 'target_id'.
    Creates two subcollection documents:
      - In the user's 'following' subcollection for target_id.
      - In the target's 'followers' subcollection for the user.
    """
    user_id = current_user.user_id
    if user_id == target_id:
        raise HTTPException(status_code=400, detail="Cannot follow yourself")

    user_ref = db.collection("users").document(user_id)
    target_ref = db.collection("users").document(target_id)

    user_doc = user_ref.get()
    target_doc = target_ref.get()
    if not user_doc.exists:
        raise HTTPException(status_code=404, detail="User not found")
    if not target_doc.exists:
        raise HTTPException(status_code=404, detail="Target user not found")

    following_ref = user_ref.collection("following").document(target_id)
    if following_ref.get().exists:
        raise HTTPException(status_code=400, detail="Already following this user")

    user_profile = _profile(user_doc.to_dict())

    # Each side stores a copy of the other user's profile
    following_ref.set({"dateFollowed": firestore.SERVER_TIMESTAMP, **_profile(target_doc.to_dict())})
    target_ref.collection("followers").document(user_id).set(
        {"dateFollowed": firestore.SERVER_TIMESTAMP, **user_profile}
    )

    send_notification(
        db, target_id, user_id, NotificationType.FOLLOW,
        f"{user_profile['username']} started following you",
    )

    return {"message": f"{user_id} now follows {target_id}"}


@router.post("/{target_id}/unfollow")
def unfollow_user(target_id: str, db: Firestore, current_user: CurrentUser):
    """
    Makes the current user unfollow 'target_id'.
    Deletes follow documents from both the 'following' and 'followers' subcollections.
    """
    user_id = current_user.user_id
    user_ref = db.collection("users").document(user_id)
    target_ref = db.collection("users").document(target_id)

    if not user_ref.get().exists or not target_ref.get().exists:
        raise HTTPException(status_code=404, detail="User not found")

    user_ref.collection("following").document(target_id).delete()
    target_ref.collection("followers").document(user_id).delete()

    return {"message": f"{user_id} unfollowed {target_id}"}


def _list_relations(db: FirestoreDB, user_id: str, relation: str) -> list:
    user_ref = db.collection("users").document(user_id)
    if not user_ref.get().exists:
        raise HTTPException(status_code=404, detail="User not found")

    related = []
    for doc in user_ref.collection(relation).stream():
        related_user = db.collection("users").document(doc.id).get()
        if related_user.exists:
            related.append({"id": doc.id, **_profile(related_user.to_dict())})
    return related


@router.get("/{user_id}/following")
def list_following(user_id: str, db: Firestore, current_user: CurrentUser):
    """Returns the users that 'user_id' is following"""
    return {"following": _list_relations(db, user_id, "following")}


@router.get("/{user_id}/followers")
def list_followers(user_id: str, db: Firestore, current_user: CurrentUser):
    """Returns the users who follow 'user_id'"""
    return {"followers": _list_relations(db, user_id, "followers")}
