import asyncio
import logging
from typing import Dict, List

from config import COUNT_BATCH_DELAY_SECONDS, COUNT_BATCH_SIZE
from models.counts import CountValidation, PostCounts
from services.count_backend import CountBackend
from services.count_reconciler import CountReconciler
from services.errors import PostNotFoundError, ReconcilerError

logger = logging.getLogger(__name__)


class PostCountService:
    """Recomputes the counters cached on post documents from the like and comment rows"""

    def __init__(self, backend: CountBackend, reconciler: CountReconciler,
                 batch_size: int = COUNT_BATCH_SIZE, batch_delay: float = COUNT_BATCH_DELAY_SECONDS):
        self.backend = backend
        self.reconciler = reconciler
        self.batch_size = batch_size
        self.batch_delay = batch_delay

    async def get_counts(self, post_id: str) -> PostCounts:
        return await self.reconciler.fetch_counts(post_id)

    async def update_post_counts(self, post_id: str) -> PostCounts:
        """
        Count the rows for a post and write the result back onto the post document

        Args:
            post_id: The post to repair

        Returns:
            The counts that were written

        Raises:
            CountFetchError: counting failed, nothing was written
            ReconcilerError: the write failed
        """
        counts = await self.reconciler.fetch_counts(post_id)
        try:
            await self.backend.write_post_counts(post_id, counts)
        except Exception as exc:
            raise ReconcilerError.from_exception(exc, post_id) from exc
        logger.debug("Stored counts for post %s: %s", post_id, counts)
        return counts

    async def batch_update_post_counts(self, post_ids: List[str]) -> Dict[str, PostCounts]:
        """
        Repair many posts, a chunk at a time, pausing between chunks.
        Posts that fail are logged and left out of the result.
        """
        results: Dict[str, PostCounts] = {}

        for i in range(0, len(post_ids), self.batch_size):
            chunk = post_ids[i:i + self.batch_size]
            outcomes = await asyncio.gather(
                *(self.update_post_counts(post_id) for post_id in chunk),
                return_exceptions=True,
            )

            for post_id, outcome in zip(chunk, outcomes):
                if isinstance(outcome, ReconcilerError):
                    logger.warning("Skipping post %s in batch update: %s", post_id, outcome)
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    results[post_id] = outcome

            if i + self.batch_size < len(post_ids):
                await asyncio.sleep(self.batch_delay)

        logger.info("Batch updated counts for %s of %s posts", len(results), len(post_ids))
        return results

    async def validate_post_counts(self, post_id: str) -> CountValidation:
        """Compare the counters stored on a post with the actual row counts"""
        try:
            stored = await self.backend.get_stored_counts(post_id)
        except Exception as exc:
            raise ReconcilerError.from_exception(exc, post_id) from exc
        if stored is None:
            raise PostNotFoundError(f"Post {post_id} not found", post_id)

        actual = await self.reconciler.fetch_counts(post_id)
        difference = PostCounts(
            like_count=abs(stored.like_count - actual.like_count),
            comment_count=abs(stored.comment_count - actual.comment_count),
        )

        return CountValidation(
            post_id=post_id,
            is_valid=difference.like_count == 0 and difference.comment_count == 0,
            stored=stored,
            actual=actual,
            difference=difference,
        )
