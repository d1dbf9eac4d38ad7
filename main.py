import logging
from contextlib import asynccontextmanager

import boto3
import firebase_admin
from botocore.config import Config
from fastapi import FastAPI
from firebase_admin import credentials
from starlette.middleware.cors import CORSMiddleware

from config import (
    AWS_REGION,
    CORS_ORIGINS,
    FIREBASE_CREDENTIALS_PATH,
    LOG_LEVEL,
    S3_BUCKET_NAME,
)
from routes.admin import router as admin_router
from routes.counts import router as counts_router
from routes.follows import router as follows_router
from routes.notifications import router as notifications_router
from routes.posts import router as posts_router
from services.count_backend import FirestoreCountBackend
from services.count_reconciler import CountReconciler
from services.firestore import FirestoreDB
from services.post_counts import PostCountService
from services.s3 import S3Service

logging.basicConfig(level=LOG_LEVEL,
                    format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# S3 client (credentials come from the standard AWS environment variables)
s3_client = boto3.client(
    's3',
    region_name=AWS_REGION,
    config=Config(signature_version="s3v4")
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Initialize Firebase Admin SDK
    cred = credentials.Certificate(FIREBASE_CREDENTIALS_PATH)
    firebase_app = firebase_admin.initialize_app(cred)

    # Initialize dependencies
    firestore = FirestoreDB(firebase_app)
    count_backend = FirestoreCountBackend(firestore)

    app.state.firestore = firestore
    app.state.s3_service = S3Service(S3_BUCKET_NAME, s3_client)
    app.state.count_backend = count_backend
    app.state.post_count_service = PostCountService(count_backend, CountReconciler(count_backend))
    logger.info("Services initialized")

    yield

    firebase_admin.delete_app(firebase_app)


app = FastAPI(lifespan=lifespan)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["set-cookie"]
)

# Include routers
app.include_router(posts_router, prefix="/posts", tags=["posts"])
app.include_router(counts_router, prefix="/counts", tags=["counts"])
app.include_router(follows_router, prefix="/users", tags=["follows"])
app.include_router(notifications_router, prefix="/notifications", tags=["notifications"])
app.include_router(admin_router, prefix="/admin", tags=["admin"])
