import asyncio
import itertools
import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Set, TypeVar

from config import COUNT_FETCH_TIMEOUT_SECONDS
from models.counts import ChangeEvent, PostCounts
from services.count_backend import CountBackend, Unsubscribe
from services.errors import CountFetchError, OptimisticWriteError, ReconcilerError, SubscriptionError

logger = logging.getLogger(__name__)

T = TypeVar("T")

CountsCallback = Callable[[PostCounts], None]
ErrorCallback = Callable[[ReconcilerError], None]


class TrackerState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    OPTIMISTIC = "optimistic"


class OptimisticUpdate:
    """
    A tentative delta applied on top of a post's confirmed counts.

    Settles exactly once: confirm() folds the delta into the confirmed value,
    revert() drops it. Later calls are no-ops.

    base_seq is the last fetch issued when the delta was applied. A fetch issued
    after it may already count the write, so confirm() then drops the delta
    instead of adding it a second time.
    """

    def __init__(self, tracker: "PostCountTracker", update_id: int, like_delta: int, comment_delta: int,
                 base_seq: int = 0):
        self._tracker = tracker
        self.id = update_id
        self.like_delta = like_delta
        self.comment_delta = comment_delta
        self.base_seq = base_seq
        self.settled = False

    def confirm(self) -> None:
        self._tracker._settle(self, keep=True)

    def revert(self) -> None:
        self._tracker._settle(self, keep=False)


class Subscription:
    """Handle returned by subscribe_to_changes; unsubscribe() stops further callbacks"""

    def __init__(self, tracker: "PostCountTracker", listener: "_Listener"):
        self._tracker = tracker
        self._listener = listener

    @property
    def active(self) -> bool:
        return self._listener in self._tracker._listeners

    def unsubscribe(self) -> None:
        self._tracker._remove_listener(self._listener)


class _Listener:
    def __init__(self, on_change: CountsCallback, on_error: Optional[ErrorCallback]):
        self.on_change = on_change
        self.on_error = on_error


class PostCountTracker:
    """
    Displayed counts for one post.

    Displayed counts are the confirmed counts plus every pending optimistic delta.
    Each fetch takes a sequence number and only a response newer than the last
    applied one may replace the confirmed counts. Once the tracker is closed every
    late response is dropped.
    """

    def __init__(self, reconciler: "CountReconciler", post_id: str, initial: Optional[PostCounts] = None):
        self._reconciler = reconciler
        self.post_id = post_id
        self.confirmed = initial or PostCounts()
        self.closed = False

        self._pending: Dict[int, OptimisticUpdate] = {}
        self._update_ids = itertools.count(1)
        self._issued_seq = 0
        self._applied_seq = 0
        self._in_flight = 0

        self._listeners: List[_Listener] = []
        self._unwatch: Optional[Unsubscribe] = None
        self._watch_lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    @property
    def displayed(self) -> PostCounts:
        like_delta = sum(update.like_delta for update in self._pending.values())
        comment_delta = sum(update.comment_delta for update in self._pending.values())
        return self.confirmed.shifted(like_delta, comment_delta)

    @property
    def state(self) -> TrackerState:
        if self._pending:
            return TrackerState.OPTIMISTIC
        if self._in_flight:
            return TrackerState.FETCHING
        return TrackerState.IDLE

    async def sync(self) -> PostCounts:
        """Re-fetch authoritative counts; on failure the displayed value is kept"""
        if self.closed:
            return self.displayed

        self._issued_seq += 1
        seq = self._issued_seq
        self._in_flight += 1
        try:
            counts = await self._reconciler.fetch_counts(self.post_id)
        except CountFetchError as e:
            if not self.closed:
                logger.warning("Keeping last known counts for post %s: %s", self.post_id, e)
                self._notify_error(e)
            return self.displayed
        finally:
            self._in_flight -= 1

        if self.closed:
            logger.debug("Discarding counts for released post %s", self.post_id)
            return self.displayed
        if seq <= self._applied_seq:
            logger.debug("Discarding stale counts for post %s (seq %s <= %s)", self.post_id, seq, self._applied_seq)
            return self.displayed

        self._applied_seq = seq
        self.confirmed = counts
        self._notify()
        return self.displayed

    def apply_optimistic(self, like_delta: int = 0, comment_delta: int = 0) -> OptimisticUpdate:
        update = OptimisticUpdate(self, next(self._update_ids), like_delta, comment_delta, self._issued_seq)
        if not self.closed:
            self._pending[update.id] = update
            self._notify()
        return update

    def _settle(self, update: OptimisticUpdate, keep: bool) -> None:
        if update.settled:
            return
        update.settled = True
        if self._pending.pop(update.id, None) is None:
            return
        if keep and self._applied_seq <= update.base_seq:
            self.confirmed = self.confirmed.shifted(update.like_delta, update.comment_delta)
        else:
            # reverted, or a newer fetch already counted the write
            self._notify()

    async def perform(self, like_delta: int, comment_delta: int, write: Callable[[], Awaitable[T]]) -> T:
        """
        Show the delta immediately, run the backend write, then reconcile.

        Raises:
            OptimisticWriteError: the write failed; the delta has been reverted
        """
        update = self.apply_optimistic(like_delta, comment_delta)
        try:
            result = await write()
        except Exception as exc:
            update.revert()
            error = OptimisticWriteError.from_exception(exc, self.post_id)
            logger.warning("Reverted optimistic update on post %s: %s", self.post_id, exc)
            self._notify_error(error)
            raise error from exc

        update.confirm()
        await self.sync()
        return result

    async def subscribe(self, on_change: CountsCallback, on_error: Optional[ErrorCallback] = None) -> Subscription:
        listener = _Listener(on_change, on_error)
        self._listeners.append(listener)

        async with self._watch_lock:
            if self._unwatch is None and not self.closed:
                try:
                    self._unwatch = await self._reconciler.backend.watch(self.post_id, self._on_backend_event)
                except Exception as exc:
                    self._listeners.remove(listener)
                    error = SubscriptionError.from_exception(exc, self.post_id)
                    logger.warning("Could not watch post %s: %s", self.post_id, exc)
                    raise error from exc

                # released while the watch was being opened
                if self.closed:
                    self._close_watch()
                else:
                    logger.info("Watching counts for post %s", self.post_id)

        return Subscription(self, listener)

    def _on_backend_event(self, event: ChangeEvent) -> None:
        if self.closed:
            return
        logger.debug("Change on %s for post %s (%s)", event.collection, self.post_id, event.kind.value)
        task = asyncio.ensure_future(self.sync())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _remove_listener(self, listener: _Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)
        if not self._listeners:
            self._close_watch()

    def _close_watch(self) -> None:
        if self._unwatch is not None:
            unwatch, self._unwatch = self._unwatch, None
            unwatch()
            logger.info("Stopped watching counts for post %s", self.post_id)

    def _notify(self) -> None:
        counts = self.displayed
        for listener in list(self._listeners):
            listener.on_change(counts)

    def _notify_error(self, error: ReconcilerError) -> None:
        for listener in list(self._listeners):
            if listener.on_error is not None:
                listener.on_error(error)

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def close(self) -> None:
        self.closed = True
        self._listeners.clear()
        self._pending.clear()
        self._close_watch()


class CountReconciler:
    """
    Keeps like/comment counts of the posts a client is displaying consistent with
    the backend. One instance per client session; each post gets its own tracker.
    """

    def __init__(self, backend: CountBackend, timeout: float = COUNT_FETCH_TIMEOUT_SECONDS):
        self.backend = backend
        self.timeout = timeout
        self._trackers: Dict[str, PostCountTracker] = {}

    @property
    def tracked_posts(self) -> List[str]:
        return list(self._trackers)

    def track(self, post_id: str, initial: Optional[PostCounts] = None) -> PostCountTracker:
        tracker = self._trackers.get(post_id)
        if tracker is None:
            tracker = PostCountTracker(self, post_id, initial)
            self._trackers[post_id] = tracker
        return tracker

    def displayed(self, post_id: str) -> PostCounts:
        return self.track(post_id).displayed

    def state(self, post_id: str) -> TrackerState:
        return self.track(post_id).state

    async def fetch_counts(self, post_id: str) -> PostCounts:
        """
        Query authoritative counts for a post.

        The like and comment counts come from two independent queries, so the pair
        is not a consistent snapshot.

        Raises:
            CountFetchError: a query failed or the timeout expired
        """
        try:
            like_count, comment_count = await asyncio.wait_for(
                asyncio.gather(
                    self.backend.count_likes(post_id),
                    self.backend.count_comments(post_id),
                ),
                timeout=self.timeout,
            )
        except Exception as exc:
            raise CountFetchError.from_exception(exc, post_id) from exc

        return PostCounts(like_count=like_count, comment_count=comment_count)

    async def sync_counts(self, post_id: str) -> PostCounts:
        return await self.track(post_id).sync()

    def apply_optimistic_delta(self, post_id: str, like_delta: int = 0, comment_delta: int = 0) -> OptimisticUpdate:
        return self.track(post_id).apply_optimistic(like_delta, comment_delta)

    async def perform_optimistic(self, post_id: str, like_delta: int, comment_delta: int,
                                 write: Callable[[], Awaitable[T]]) -> T:
        return await self.track(post_id).perform(like_delta, comment_delta, write)

    async def subscribe_to_changes(self, post_id: str, on_change: CountsCallback,
                                   on_error: Optional[ErrorCallback] = None) -> Subscription:
        return await self.track(post_id).subscribe(on_change, on_error)

    async def wait_idle(self) -> None:
        """Wait for every sync started by a change event to finish"""
        await asyncio.gather(*(tracker.wait_idle() for tracker in list(self._trackers.values())))

    def release(self, post_id: str) -> None:
        tracker = self._trackers.pop(post_id, None)
        if tracker is not None:
            tracker.close()

    def close(self) -> None:
        for post_id in list(self._trackers):
            self.release(post_id)
