import logging
import uuid
from datetime import datetime

import boto3
from botocore.exceptions import ClientError
from fastapi import UploadFile, HTTPException

from config import MAX_IMAGE_SIZE_MB

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}


class S3Service:
    def __init__(self, bucket_name: str, client: boto3.client):
        self.bucket_name = bucket_name
        self.s3 = client

    async def upload_post_image(self, file: UploadFile, user_id: str, post_id: str,
                                max_size_mb: int = MAX_IMAGE_SIZE_MB) -> str:
        """
        Upload a post image to S3 with user ownership metadata

        Args:
            file: The image to upload
            user_id: The ID of the user uploading the image
            post_id: The post the image belongs to
            max_size_mb: Maximum file size in MB

        Returns:
            The unique S3 key for the uploaded image

        Raises:
            HTTPException: If the upload fails or the image is rejected
        """
        extension = IMAGE_EXTENSIONS.get(file.content_type)
        if extension is None:
            raise HTTPException(status_code=400, detail=f"Unsupported image type: {file.content_type}")

        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        key = f"posts/{user_id}/{post_id}/{timestamp}-{uuid.uuid4()}.{extension}"

        file_content = await file.read()
        if len(file_content) > max_size_mb * 1024 * 1024:
            raise HTTPException(
                status_code=400,
                detail=f"File size exceeds {max_size_mb}MB limit"
            )

        try:
            self.s3.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=file_content,
                ContentType=file.content_type,
                Metadata={
                    'user_id': user_id,
                    'post_id': post_id,
                }
            )
        except ClientError as e:
            logger.error("S3 upload error for post %s: %s", post_id, e)
            raise HTTPException(status_code=500, detail="Failed to upload image")

        return key

    def get_presigned_url(self, key: str, expiration_seconds: int = 3600) -> str:
        """Generate a presigned URL for reading an image"""
        try:
            return self.s3.generate_presigned_url(
                'get_object',
                Params={
                    'Bucket': self.bucket_name,
                    'Key': key
                },
                ExpiresIn=expiration_seconds
            )
        except ClientError as e:
            logger.error("S3 presign error for %s: %s", key, e)
            raise HTTPException(status_code=404, detail="File not found or access denied")
