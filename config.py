import os

from dotenv import load_dotenv

load_dotenv()

# Firebase
FIREBASE_CREDENTIALS_PATH = os.getenv("FIREBASE_CREDENTIALS_PATH", "./firebase.json")

# S3 post images
S3_BUCKET_NAME = os.environ.get("S3_BUCKET_NAME")
AWS_REGION = os.environ.get("AWS_REGION", "us-east-2")
MAX_IMAGE_SIZE_MB = int(os.getenv("MAX_IMAGE_SIZE_MB", "5"))

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

# Count reconciliation
COUNT_FETCH_TIMEOUT_SECONDS = float(os.getenv("COUNT_FETCH_TIMEOUT_SECONDS", "5"))
COUNT_BATCH_SIZE = int(os.getenv("COUNT_BATCH_SIZE", "10"))
COUNT_BATCH_DELAY_SECONDS = float(os.getenv("COUNT_BATCH_DELAY_SECONDS", "0.1"))

# Validation limits
POST_MAX_LENGTH = 280
COMMENT_MAX_LENGTH = 200

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
