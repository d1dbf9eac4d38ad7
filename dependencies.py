import logging
from typing import Annotated, Optional

from fastapi import Request, Depends, HTTPException, Query, WebSocket, WebSocketException, status
from firebase_admin.auth import verify_id_token

from models.user import User
from services.count_backend import CountBackend
from services.firestore import FirestoreDB
from services.post_counts import PostCountService
from services.s3 import S3Service

logger = logging.getLogger(__name__)


def _user_from_token(token: str) -> User:
    decoded_token = verify_id_token(token, check_revoked=True, clock_skew_seconds=10)
    return User(
        user_id=decoded_token["uid"],
        email=decoded_token.get("email"),
    )


async def get_current_user(request: Request) -> User:
    """
    Verify Firebase ID token from Authorization header and return user info
    """
    authorization = request.headers.get("Authorization")
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=401,
            detail="Invalid authorization header"
        )

    token = authorization.split("Bearer ")[1]
    try:
        return _user_from_token(token)
    except Exception as e:
        logger.info("Invalid authentication token: %s", e)
        raise HTTPException(
            status_code=401,
            detail=f"Invalid authentication token: {str(e)}"
        )


async def get_websocket_user(websocket: WebSocket, token: Optional[str] = Query(None)) -> User:
    """
    Verify the Firebase ID token passed as the `token` query parameter of a WebSocket
    """
    if not token:
        raise WebSocketException(code=status.WS_1008_POLICY_VIOLATION, reason="Authentication required")
    try:
        return _user_from_token(token)
    except Exception as e:
        logger.info("Rejected WebSocket token: %s", e)
        raise WebSocketException(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid token")


async def get_admin_user(request: Request, current_user: Annotated[User, Depends(get_current_user)]) -> User:
    """
    Require the current user's profile to carry the admin role
    """
    profile = request.app.state.firestore.get_user(current_user.user_id)
    if not profile or profile.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin role required")
    return current_user


async def get_s3_service(request: Request) -> S3Service:
    """Get S3 service from app state"""
    return request.app.state.s3_service


async def get_firestore(request: Request) -> FirestoreDB:
    """ Get Firestore DB from app state """
    return request.app.state.firestore


async def get_websocket_firestore(websocket: WebSocket) -> FirestoreDB:
    return websocket.app.state.firestore


async def get_websocket_count_backend(websocket: WebSocket) -> CountBackend:
    return websocket.app.state.count_backend


async def get_post_count_service(request: Request) -> PostCountService:
    """Get the post count maintenance service from app state"""
    return request.app.state.post_count_service


CurrentUser = Annotated[User, Depends(get_current_user)]
WebSocketUser = Annotated[User, Depends(get_websocket_user)]
AdminUser = Annotated[User, Depends(get_admin_user)]
S3 = Annotated[S3Service, Depends(get_s3_service)]
Firestore = Annotated[FirestoreDB, Depends(get_firestore)]
WebSocketFirestore = Annotated[FirestoreDB, Depends(get_websocket_firestore)]
WebSocketCounts = Annotated[CountBackend, Depends(get_websocket_count_backend)]
PostCounter = Annotated[PostCountService, Depends(get_post_count_service)]
