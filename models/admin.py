from typing import Optional

from pydantic import BaseModel


class PlatformStats(BaseModel):
    total_users: int
    new_users_today: int
    total_posts: int
    total_likes: int
    total_comments: int


class UserProfile(BaseModel):
    id: str
    username: str = "Unknown"
    email: Optional[str] = None
    role: str = "user"
    is_active: bool = True
    created_at: Optional[str] = None
