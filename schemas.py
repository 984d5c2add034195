"""
Database Schemas for the channel backend

Each document model maps to a MongoDB collection. References to other
documents are stored as ObjectId so the read pipelines can $lookup on them.

Collections:
- User -> users
- Post -> posts
- Video -> videos
- Subscription -> subscriptions

Comments (postcomments / videocomments), likes (postlikes / videolikes) and
bookmarks are keyed by their target field and are built in engagement.py.

The *Request models are the JSON bodies accepted by the API.
"""

from pydantic import BaseModel, ConfigDict, Field, EmailStr
from typing import Optional, List
from bson import ObjectId


class MediaReference(BaseModel):
    url: str
    public_id: str
    resource_type: str = "image"
    format: Optional[str] = None
    bytes: Optional[int] = None
    duration: Optional[float] = None


class Document(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)


class User(Document):
    fullName: str = Field(..., min_length=1)
    username: str = Field(..., min_length=3, max_length=30)
    email: EmailStr
    password: str = Field(..., description="Bcrypt hash")
    about: Optional[str] = None
    avatar: Optional[MediaReference] = None
    coverImage: Optional[MediaReference] = None


class Post(Document):
    owner: ObjectId
    content: str = Field(..., min_length=1)
    title: Optional[str] = None
    image: Optional[MediaReference] = None
    media: List[MediaReference] = Field(default_factory=list)


class Video(Document):
    owner: ObjectId
    title: str = Field(..., min_length=1)
    description: str
    duration: float = Field(..., ge=0, description="Length in seconds")
    video: MediaReference
    thumbnail: MediaReference


class Subscription(Document):
    subscriber: ObjectId
    channel: ObjectId = Field(..., description="The user id of the channel being subscribed to")


# -------------------- Request bodies --------------------
class RegisterRequest(BaseModel):
    fullName: str = Field(..., min_length=1)
    username: str = Field(..., min_length=3, max_length=30)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    username_or_email: str
    password: str


class CommentRequest(BaseModel):
    user: str
    comment: str = Field(..., min_length=1, max_length=2000)


class CommentUpdateRequest(BaseModel):
    updatedComment: str = Field(..., min_length=1, max_length=2000)


class LikeRequest(BaseModel):
    user: str
    like: bool = Field(True, description="true for like; false for an explicit unlike")


class BookmarkRequest(BaseModel):
    user: str


class SubscribeRequest(BaseModel):
    subscriber: str
