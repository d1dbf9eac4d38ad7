import asyncio
import logging
from functools import partial
from typing import Any, Dict, Union

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from dependencies import CurrentUser, PostCounter, WebSocketCounts, WebSocketFirestore, WebSocketUser
from models.counts import (
    BatchRefreshRequest,
    CountsMessage,
    CountValidation,
    ErrorMessage,
    PostCounts,
    SocketAction,
)
from models.notification import NotificationType
from models.user import User
from services.count_reconciler import CountReconciler, Subscription
from services.errors import ErrorType, OptimisticWriteError, ReconcilerError, SubscriptionError, to_http_exception
from services.firestore import FirestoreDB
from services.notifications import send_notification

logger = logging.getLogger(__name__)

router = APIRouter()

Outgoing = Union[str, Dict[str, Any]]


def _like(db: FirestoreDB, post_id: str, user: User):
    new_like_count = db.add_like(post_id, user.user_id)
    if new_like_count is not None:
        snapshot = db.get_post(post_id)
        if snapshot is not None:
            send_notification(
                db, snapshot.to_dict().get("author_uid"), user.user_id, NotificationType.LIKE,
                f"{user.email or 'Someone'} liked your post", post_id=post_id,
            )
    return new_like_count


def _error_message(error: ReconcilerError) -> Dict[str, Any]:
    return ErrorMessage(
        post_id=error.post_id,
        error_type=error.error_type.value,
        message=error.user_message,
    ).model_dump()


class CountSession:
    """
    One client's live view of the posts it displays.

    Every watched post is tracked by the session's own CountReconciler; messages for
    the client are queued and written by a single sender task.
    """

    def __init__(self, websocket: WebSocket, reconciler: CountReconciler, db: FirestoreDB, user: User):
        self.websocket = websocket
        self.reconciler = reconciler
        self.db = db
        self.user = user
        self.outbox: "asyncio.Queue[Outgoing]" = asyncio.Queue()
        self.subscriptions: Dict[str, Subscription] = {}

    def _counts_message(self, post_id: str, counts: PostCounts) -> Dict[str, Any]:
        return CountsMessage(
            post_id=post_id,
            like_count=counts.like_count,
            comment_count=counts.comment_count,
            state=self.reconciler.state(post_id).value,
        ).model_dump()

    async def pump(self):
        while True:
            message = await self.outbox.get()
            if isinstance(message, str):
                await self.websocket.send_text(message)
            else:
                await self.websocket.send_json(message)

    async def watch(self, post_id: str):
        if post_id in self.subscriptions:
            self.outbox.put_nowait(self._counts_message(post_id, self.reconciler.displayed(post_id)))
            return

        try:
            self.subscriptions[post_id] = await self.reconciler.subscribe_to_changes(
                post_id,
                lambda counts: self.outbox.put_nowait(self._counts_message(post_id, counts)),
                lambda error: self.outbox.put_nowait(_error_message(error)),
            )
        except SubscriptionError as e:
            # live updates are unavailable; the client still gets counts on request
            self.outbox.put_nowait(_error_message(e))
            counts = await self.reconciler.sync_counts(post_id)
            self.outbox.put_nowait(self._counts_message(post_id, counts))
            return

        await self.reconciler.sync_counts(post_id)

    def unwatch(self, post_id: str):
        subscription = self.subscriptions.pop(post_id, None)
        if subscription is not None:
            subscription.unsubscribe()
        self.reconciler.release(post_id)

    async def toggle(self, post_id: str, like: bool):
        if like:
            write = partial(run_in_threadpool, _like, self.db, post_id, self.user)
        else:
            write = partial(run_in_threadpool, self.db.remove_like, post_id, self.user.user_id)

        live = post_id in self.subscriptions
        try:
            await self.reconciler.perform_optimistic(post_id, 1 if like else -1, 0, write)
        except OptimisticWriteError as e:
            if not live:
                self.outbox.put_nowait(self._counts_message(post_id, self.reconciler.displayed(post_id)))
                self.outbox.put_nowait(_error_message(e))
            return

        # without a subscription nothing else reports the settled counts
        if not live:
            self.outbox.put_nowait(self._counts_message(post_id, self.reconciler.displayed(post_id)))

    async def handle(self, data: str):
        if data == "ping":
            self.outbox.put_nowait("pong")
            return

        try:
            message = SocketAction.model_validate_json(data)
        except ValidationError as e:
            self.outbox.put_nowait(ErrorMessage(
                error_type=ErrorType.VALIDATION.value,
                message=f"Invalid message: {e.errors()[0]['msg']}",
            ).model_dump())
            return

        if message.action == "watch":
            await self.watch(message.post_id)
        elif message.action == "unwatch":
            self.unwatch(message.post_id)
        else:
            await self.toggle(message.post_id, message.action == "like")

    def close(self):
        self.subscriptions.clear()
        self.reconciler.close()


@router.websocket("/ws")
async def counts_socket(websocket: WebSocket, user: WebSocketUser, db: WebSocketFirestore,
                        backend: WebSocketCounts):
    await websocket.accept()
    session = CountSession(websocket, CountReconciler(backend), db, user)
    sender = asyncio.create_task(session.pump())
    logger.info("Count session opened for user %s", user.user_id)

    try:
        while True:
            await session.handle(await websocket.receive_text())
    except WebSocketDisconnect:
        logger.info("Count session closed for user %s", user.user_id)
    except Exception:
        logger.exception("Count session for user %s failed", user.user_id)
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
    finally:
        session.close()
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)


@router.get("/{post_id}")
async def get_counts(post_id: str, post_counter: PostCounter, current_user: CurrentUser) -> PostCounts:
    """Count the like and comment rows of a post"""
    try:
        return await post_counter.get_counts(post_id)
    except ReconcilerError as e:
        raise to_http_exception(e)


@router.post("/{post_id}/refresh")
async def refresh_counts(post_id: str, post_counter: PostCounter, current_user: CurrentUser) -> PostCounts:
    """Recount a post and store the result on the post document"""
    try:
        return await post_counter.update_post_counts(post_id)
    except ReconcilerError as e:
        raise to_http_exception(e)


@router.get("/{post_id}/validate")
async def validate_counts(post_id: str, post_counter: PostCounter, current_user: CurrentUser) -> CountValidation:
    """Compare stored counters with the actual row counts"""
    try:
        return await post_counter.validate_post_counts(post_id)
    except ReconcilerError as e:
        raise to_http_exception(e)


@router.post("/refresh")
async def batch_refresh_counts(request: BatchRefreshRequest, post_counter: PostCounter,
                               current_user: CurrentUser) -> Dict[str, Any]:
    """Recount many posts; posts that fail are left out of the results"""
    results = await post_counter.batch_update_post_counts(request.post_ids)
    return {
        "updated": len(results),
        "results": {post_id: counts.model_dump() for post_id, counts in results.items()},
    }
