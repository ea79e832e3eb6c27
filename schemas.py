"""
Data Schemas for the School Community Forum

Each Pydantic model is one entity kept by the store. Every collection is
serialized as a single JSON blob under its own key in the key-value substrate
(see database.py). Relations between entities are by id only; the author_*
fields on posts and comments are snapshots taken at write time.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

Role = Literal["owner", "admin", "user", "banned"]
Visibility = Literal["school", "grade", "class"]
Gender = Literal["male", "female", "other"]

MODERATOR_ROLES = ("owner", "admin")
VISIBILITIES = ("school", "grade", "class")


class UserProfile(BaseModel):
    bio: Optional[str] = Field(None, description="Short self introduction")
    hobbies: List[str] = Field(default_factory=list)
    phone: Optional[str] = None
    wechat: Optional[str] = None
    email: Optional[str] = None
    qq: Optional[str] = None
    birthday: Optional[str] = Field(None, description="YYYY-MM-DD")
    gender: Optional[Gender] = None
    location: Optional[str] = None


class BanInfo(BaseModel):
    is_banned: bool = True
    banned_at: Optional[datetime] = None
    banned_until: Optional[datetime] = Field(None, description="None means the ban never expires")
    ban_reason: Optional[str] = None
    banned_by: Optional[str] = Field(None, description="User ID of the moderator")


# Forum member placed by enrollment year and class
class User(BaseModel):
    id: str
    username: str = Field(..., description="Login name, unique")
    nickname: str = Field(..., description="Display name")
    enrollment_year: int
    class_number: int
    avatar: Optional[str] = Field(None, description="Avatar URL or data URI")
    password: str = Field(..., description="Stored as entered")
    role: Role = "user"
    post_count: int = 0
    like_count: int = 0
    created_at: datetime
    profile: Optional[UserProfile] = None
    ban_info: Optional[BanInfo] = None


class Post(BaseModel):
    id: str
    author_id: str
    author_name: str
    author_avatar: Optional[str] = None
    author_year: int
    author_class: int
    title: str
    content: str
    images: List[str] = Field(default_factory=list, description="Encoded image payloads in display order")
    tag: str
    visibility: Visibility = "school"
    created_at: datetime
    likes: int = 0
    comments: int = Field(0, description="Number of non-deleted comments")
    views: int = 0
    liked_by: List[str] = Field(default_factory=list, description="User IDs, no duplicates")
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None
    delete_reason: Optional[str] = None


class Comment(BaseModel):
    id: str
    post_id: str
    author_id: str
    author_name: str
    author_avatar: Optional[str] = None
    content: str
    parent_id: Optional[str] = Field(None, description="Reserved for threaded replies")
    created_at: datetime
    likes: int = 0
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None


class Announcement(BaseModel):
    id: str
    title: str
    content: str
    created_at: datetime
    created_by: str = Field(..., description="User ID of the author")
    created_by_name: str
    is_active: bool = True


class SystemSettings(BaseModel):
    enrollment_years: List[int] = Field(default_factory=lambda: [2023, 2024, 2025])
    class_numbers: List[int] = Field(default_factory=lambda: list(range(1, 26)))
    allow_registration: bool = True
    owner_username: str = "ZJCjonathan25"
