from enum import Enum
from typing import List, Optional

import bleach
from pydantic import BaseModel, Field, field_validator

from config import COMMENT_MAX_LENGTH, POST_MAX_LENGTH


def sanitize_text(value):
    """Clean user text before it is validated and stored"""
    if isinstance(value, str):
        return bleach.clean(value, strip=True)
    return value


class PostCategory(str, Enum):
    GENERAL = "general"
    ANNOUNCEMENT = "announcement"
    QUESTION = "question"


class Comment(BaseModel):
    id: Optional[str] = None
    post_id: str
    author: str
    author_uid: str
    text: str
    is_active: bool = True
    created_at: str


class Post(BaseModel):
    id: Optional[str] = None
    author: str
    author_uid: Optional[str] = None
    content: str
    image_key: Optional[str] = None
    category: PostCategory = PostCategory.GENERAL
    is_active: bool = True
    like_count: int = 0
    comment_count: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    userHasLiked: bool = False
    comments: List[Comment] = []


class PostCreate(BaseModel):
    author: str
    content: str = Field(..., min_length=1, max_length=POST_MAX_LENGTH)
    category: PostCategory = PostCategory.GENERAL

    @field_validator("content", mode="before")
    @classmethod
    def clean_content(cls, value):
        # length limits apply to the stored (escaped) text
        return sanitize_text(value)


class CommentRequest(BaseModel):
    author: str
    text: str = Field(..., min_length=1, max_length=COMMENT_MAX_LENGTH)

    @field_validator("text", mode="before")
    @classmethod
    def clean_text(cls, value):
        return sanitize_text(value)
