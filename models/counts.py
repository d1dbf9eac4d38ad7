from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class PostCounts(BaseModel):
    like_count: int = 0
    comment_count: int = 0

    def shifted(self, like_delta: int, comment_delta: int) -> "PostCounts":
        """Return a copy moved by the given deltas, never below zero"""
        return PostCounts(
            like_count=max(0, self.like_count + like_delta),
            comment_count=max(0, self.comment_count + comment_delta),
        )


class CountValidation(BaseModel):
    post_id: str
    is_valid: bool
    stored: PostCounts
    actual: PostCounts
    difference: PostCounts


class ChangeKind(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


class ChangeEvent(BaseModel):
    """A row-level change on likes or comments for one post"""
    post_id: str
    collection: str
    kind: ChangeKind


class BatchRefreshRequest(BaseModel):
    post_ids: List[str] = Field(..., min_length=1)


class CountsMessage(BaseModel):
    type: str = "counts"
    post_id: str
    like_count: int
    comment_count: int
    state: str


class ErrorMessage(BaseModel):
    type: str = "error"
    post_id: Optional[str] = None
    error_type: str
    message: str


class SocketAction(BaseModel):
    action: Literal["watch", "unwatch", "like", "unlike"]
    post_id: str = Field(..., min_length=1)
