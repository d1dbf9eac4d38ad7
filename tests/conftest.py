import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from dependencies import get_current_user, get_websocket_user
from fakes import FakeCountBackend, FakeFirestore
from models.user import User
from routes.admin import router as admin_router
from routes.counts import router as counts_router
from routes.follows import router as follows_router
from routes.notifications import router as notifications_router
from routes.posts import router as posts_router
from services.count_reconciler import CountReconciler
from services.post_counts import PostCountService
from services.s3 import S3Service


class StubS3Client:
    def __init__(self):
        self.objects = {}

    def put_object(self, Bucket, Key, Body, ContentType, Metadata):
        self.objects[Key] = {"body": Body, "content_type": ContentType, "metadata": Metadata}

    def generate_presigned_url(self, operation, Params, ExpiresIn):
        return f"https://{Params['Bucket']}.example.com/{Params['Key']}?expires={ExpiresIn}"


@pytest.fixture
def store():
    store = FakeFirestore()
    store.add_post("p1", author_uid="bob")
    return store


@pytest.fixture
def backend(store):
    return FakeCountBackend(store)


@pytest.fixture
def reconciler(backend):
    reconciler = CountReconciler(backend, timeout=1.0)
    yield reconciler
    reconciler.close()


@pytest.fixture
def s3_client():
    return StubS3Client()


@pytest.fixture
def current_user():
    return User(user_id="alice", email="alice@example.com")


@pytest.fixture
def app(store, backend, s3_client, current_user):
    app = FastAPI()
    app.include_router(posts_router, prefix="/posts")
    app.include_router(counts_router, prefix="/counts")
    app.include_router(follows_router, prefix="/users")
    app.include_router(notifications_router, prefix="/notifications")
    app.include_router(admin_router, prefix="/admin")

    app.state.firestore = store
    app.state.count_backend = backend
    app.state.s3_service = S3Service("post-images", s3_client)
    app.state.post_count_service = PostCountService(backend, CountReconciler(backend, timeout=1.0), batch_delay=0)

    app.dependency_overrides[get_current_user] = lambda: current_user
    app.dependency_overrides[get_websocket_user] = lambda: current_user
    return app


@pytest.fixture
def client(app):
    return TestClient(app)
