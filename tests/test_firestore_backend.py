import asyncio
import threading
from types import SimpleNamespace

import pytest

from models.counts import ChangeEvent, ChangeKind
from services.count_backend import FirestoreCountBackend
from services.firestore import FirestoreDB


class StubWatch:
    def __init__(self):
        self.closed = False

    def unsubscribe(self):
        self.closed = True


class StubQuery:
    """Collection and query at once; every where() narrows the same object"""

    def __init__(self, total: int = 0):
        self.filters = []
        self.listeners = []
        self.watches = []
        self.total = total

    def where(self, filter):
        self.filters.append(filter)
        return self

    def count(self, alias):
        return SimpleNamespace(get=lambda: [[SimpleNamespace(alias=alias, value=self.total)]])

    def on_snapshot(self, callback):
        watch = StubWatch()
        self.listeners.append(callback)
        self.watches.append(watch)
        return watch

    def fire(self, *kinds):
        changes = [SimpleNamespace(type=SimpleNamespace(name=kind)) for kind in kinds]
        for callback in self.listeners:
            callback([], changes, None)


class StubClient:
    def __init__(self):
        self.collections = {}

    def collection(self, name):
        return self.collections.setdefault(name, StubQuery())


@pytest.fixture
def firestore_client(monkeypatch):
    stub = StubClient()
    monkeypatch.setattr("services.firestore.fs.client", lambda app: stub)
    return stub


@pytest.fixture
def db(firestore_client):
    return FirestoreDB(app=None)


def test_initial_snapshot_is_skipped(firestore_client, db):
    events = []
    db.watch_post_interactions("p1", events.append)
    likes, comments = firestore_client.collections["likes"], firestore_client.collections["comments"]

    likes.fire("ADDED", "ADDED")
    comments.fire("ADDED")
    assert events == []

    likes.fire("ADDED", "REMOVED")
    comments.fire("MODIFIED")

    assert events == [
        ChangeEvent(post_id="p1", collection="likes", kind=ChangeKind.ADDED),
        ChangeEvent(post_id="p1", collection="likes", kind=ChangeKind.REMOVED),
        ChangeEvent(post_id="p1", collection="comments", kind=ChangeKind.MODIFIED),
    ]


def test_unsubscribe_closes_both_listeners(firestore_client, db):
    unsubscribe = db.watch_post_interactions("p1", lambda event: None)

    unsubscribe()

    assert firestore_client.collections["likes"].watches[0].closed
    assert firestore_client.collections["comments"].watches[0].closed


@pytest.mark.asyncio
async def test_counts_run_aggregation_queries(firestore_client, db):
    firestore_client.collection("likes").total = 4
    firestore_client.collection("comments").total = 2
    backend = FirestoreCountBackend(db)

    assert await backend.count_likes("p1") == 4
    assert await backend.count_comments("p1") == 2
    # post_id and is_active
    assert len(firestore_client.collections["comments"].filters) == 2


@pytest.mark.asyncio
async def test_events_from_listener_thread_reach_the_event_loop(firestore_client, db):
    backend = FirestoreCountBackend(db)
    received = []
    loop_thread = threading.get_ident()

    unsubscribe = await backend.watch("p1", lambda event: received.append((event, threading.get_ident())))
    likes = firestore_client.collections["likes"]

    def deliver():
        likes.fire()
        likes.fire("ADDED")

    listener_thread = threading.Thread(target=deliver)
    listener_thread.start()
    listener_thread.join()
    await asyncio.sleep(0)

    assert received == [(ChangeEvent(post_id="p1", collection="likes", kind=ChangeKind.ADDED), loop_thread)]

    unsubscribe()
    assert likes.watches[0].closed
