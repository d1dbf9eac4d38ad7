import asyncio
from typing import Callable, Optional, Protocol

from models.counts import ChangeEvent, PostCounts
from services.firestore import COMMENT_COUNT_FIELD, LIKE_COUNT_FIELD, FirestoreDB

Unsubscribe = Callable[[], None]


class CountBackend(Protocol):
    """Queries and change feed the count reconciler depends on"""

    async def count_likes(self, post_id: str) -> int: ...

    async def count_comments(self, post_id: str) -> int: ...

    async def get_stored_counts(self, post_id: str) -> Optional[PostCounts]: ...

    async def write_post_counts(self, post_id: str, counts: PostCounts) -> None: ...

    async def watch(self, post_id: str, on_event: Callable[[ChangeEvent], None]) -> Unsubscribe: ...


class FirestoreCountBackend:
    """
    CountBackend on top of the blocking Firestore client.

    SDK calls run in worker threads and change events are handed back to the
    event loop that opened the watch.
    """

    def __init__(self, db: FirestoreDB):
        self.db = db

    async def count_likes(self, post_id: str) -> int:
        return await asyncio.to_thread(self.db.count_likes, post_id)

    async def count_comments(self, post_id: str) -> int:
        return await asyncio.to_thread(self.db.count_comments, post_id)

    async def get_stored_counts(self, post_id: str) -> Optional[PostCounts]:
        stored = await asyncio.to_thread(self.db.get_stored_counts, post_id)
        if stored is None:
            return None
        return PostCounts(like_count=stored[LIKE_COUNT_FIELD], comment_count=stored[COMMENT_COUNT_FIELD])

    async def write_post_counts(self, post_id: str, counts: PostCounts) -> None:
        await asyncio.to_thread(self.db.write_post_counts, post_id, counts.like_count, counts.comment_count)

    async def watch(self, post_id: str, on_event: Callable[[ChangeEvent], None]) -> Unsubscribe:
        loop = asyncio.get_running_loop()

        def dispatch(event: ChangeEvent):
            if not loop.is_closed():
                loop.call_soon_threadsafe(on_event, event)

        return await asyncio.to_thread(self.db.watch_post_interactions, post_id, dispatch)
