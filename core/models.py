"""
Core data models for the TubeStream API.

SQLModel table models for every persisted entity, plus the request and
response shapes built on the same field definitions (the `Base` / table /
`Create` / `Update` / `Read` split).

Identifiers are uuid4 strings generated here, never by the database, so the
in-memory and relational repositories mint ids the same way. Timestamps are
timezone-aware UTC everywhere: `UTCDateTime` refuses naive values on write
and attaches UTC on read, since SQLite stores no offset.

`Update` models are partial: an omitted field is left alone, but an explicit
``null`` for a column that cannot be empty is a validation error.

Derived values (`SpaceWithChannels.channels`, `SpaceWithChannels.video_count`,
`VideoWithChannel.channel`) are response-only and never stored.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, field_validator
from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, SQLModel


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert to aware UTC; a naive value is taken to already be UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def reject_null(value):
    if value is None:
        raise ValueError("may not be null")
    return value


class UTCDateTime(TypeDecorator):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("Datetime values must have timezone information")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        return as_utc(value)


LikeType = Literal["like", "dislike"]
CommentSort = Literal["created_at", "likes"]


# Users


class UserBase(SQLModel):
    username: Optional[str] = Field(default=None, unique=True, index=True, max_length=255)
    email: Optional[str] = Field(default=None, unique=True, index=True, max_length=320)
    first_name: Optional[str] = Field(default=None, max_length=255)
    last_name: Optional[str] = Field(default=None, max_length=255)
    profile_image_url: Optional[str] = Field(default=None, max_length=2048)
    personal_mode: bool = False
    auth_provider: str = Field(default="email", max_length=32)
    oauth_id: Optional[str] = Field(default=None, max_length=255)
    is_verified: bool = False


class User(UserBase, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=new_id, primary_key=True)
    password: Optional[str] = None
    blocked_channels: List[str] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class UserCreate(UserBase):
    id: Optional[str] = None
    password: Optional[str] = None


class UserUpsert(SQLModel):
    """Identity-provider payload; only the fields that were set are merged"""

    id: str
    username: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    auth_provider: Optional[str] = None
    oauth_id: Optional[str] = None
    is_verified: Optional[bool] = None


class UserUpdate(SQLModel):
    username: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    personal_mode: Optional[bool] = None

    @field_validator("personal_mode")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


class UserRead(UserBase):
    id: str
    blocked_channels: List[str] = []
    created_at: datetime
    updated_at: datetime


# Channels


class ChannelBase(SQLModel):
    name: str = Field(min_length=1, max_length=255)
    username: str = Field(unique=True, index=True, min_length=1, max_length=255)
    avatar: Optional[str] = Field(default=None, max_length=2048)
    description: Optional[str] = None


class Channel(ChannelBase, table=True):
    __tablename__ = "channels"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", unique=True, index=True)
    verified: bool = False
    subscribers: int = 0
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class ChannelCreate(ChannelBase):
    user_id: str


class ChannelUpdate(SQLModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    username: Optional[str] = Field(default=None, min_length=1, max_length=255)
    avatar: Optional[str] = None
    description: Optional[str] = None

    @field_validator("name", "username")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


class ChannelRead(ChannelBase):
    id: str
    user_id: str
    verified: bool
    subscribers: int
    created_at: datetime


# Videos


class VideoBase(SQLModel):
    title: str = Field(min_length=1, max_length=500)
    thumbnail: str
    video_url: str
    storage_key: Optional[str] = None
    duration: str = Field(min_length=1, max_length=32)
    is_live: bool = False
    is_shorts: bool = False
    description: Optional[str] = None
    category: Optional[str] = Field(default=None, index=True, max_length=64)


class Video(VideoBase, table=True):
    __tablename__ = "videos"

    id: str = Field(default_factory=new_id, primary_key=True)
    channel_id: str = Field(foreign_key="channels.id", index=True)
    views: int = 0
    uploaded_at: datetime = Field(default_factory=utcnow, index=True, sa_type=UTCDateTime)


class VideoCreate(VideoBase):
    channel_id: str
    uploaded_at: Optional[datetime] = None

    @field_validator("uploaded_at")
    @classmethod
    def normalize_uploaded_at(cls, value):
        return as_utc(value)


class VideoUpdate(SQLModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    thumbnail: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    category: Optional[str] = None
    is_live: Optional[bool] = None

    @field_validator("title", "thumbnail", "is_live")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


class VideoRead(VideoBase):
    id: str
    channel_id: str
    views: int
    uploaded_at: datetime


class VideoWithChannel(VideoRead):
    channel: ChannelRead

    @classmethod
    def build(cls, video: Video, channel: Channel) -> "VideoWithChannel":
        return cls(
            **video.model_dump(), channel=ChannelRead.model_validate(channel)
        )


# Spaces


class SpaceBase(SQLModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    icon: Optional[str] = None
    color: str = "blue"


class Space(SpaceBase, table=True):
    __tablename__ = "spaces"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    channel_ids: List[str] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )


class SpaceCreate(SpaceBase):
    user_id: str
    channel_ids: List[str] = []


class SpaceUpdate(SQLModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    channel_ids: Optional[List[str]] = None

    @field_validator("name", "color", "channel_ids")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


class SpaceWithChannels(SpaceBase):
    id: str
    user_id: str
    channel_ids: List[str]
    channels: List[ChannelRead]
    video_count: int


# Subscriptions


class Subscription(SQLModel, table=True):
    __tablename__ = "subscriptions"
    __table_args__ = (UniqueConstraint("user_id", "channel_id"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    channel_id: str = Field(foreign_key="channels.id", index=True)


# Comments


class CommentBase(SQLModel):
    content: str = Field(min_length=1, max_length=10000)
    parent_id: Optional[str] = None


class Comment(CommentBase, table=True):
    __tablename__ = "comments"

    id: str = Field(default_factory=new_id, primary_key=True)
    video_id: str = Field(foreign_key="videos.id", index=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    parent_id: Optional[str] = Field(default=None, index=True)
    likes: int = 0
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class CommentCreate(CommentBase):
    video_id: str
    user_id: str
    created_at: Optional[datetime] = None

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, value):
        return as_utc(value)


class CommentUpdate(SQLModel):
    content: str = Field(min_length=1, max_length=10000)


class CommentRead(CommentBase):
    id: str
    video_id: str
    user_id: str
    likes: int
    created_at: datetime
    updated_at: datetime


class CommentThread(CommentRead):
    replies: List[CommentRead] = []


# Likes


class Like(SQLModel, table=True):
    __tablename__ = "likes"
    __table_args__ = (UniqueConstraint("user_id", "video_id"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    video_id: str = Field(foreign_key="videos.id", index=True)
    type: str = Field(max_length=16)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class LikeCounts(BaseModel):
    likes: int = 0
    dislikes: int = 0


# Watch history


class WatchHistory(SQLModel, table=True):
    __tablename__ = "watch_history"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    video_id: str = Field(foreign_key="videos.id", index=True)
    watched_at: datetime = Field(default_factory=utcnow, index=True, sa_type=UTCDateTime)
    watch_duration: int = 0


class WatchHistoryCreate(SQLModel):
    user_id: str
    video_id: str
    watch_duration: int = Field(default=0, ge=0)
    watched_at: Optional[datetime] = None

    @field_validator("watched_at")
    @classmethod
    def normalize_watched_at(cls, value):
        return as_utc(value)


# Playlists


class PlaylistBase(SQLModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    is_public: bool = False


class Playlist(PlaylistBase, table=True):
    __tablename__ = "playlists"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class PlaylistCreate(PlaylistBase):
    user_id: str


class PlaylistUpdate(SQLModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    is_public: Optional[bool] = None

    @field_validator("name", "is_public")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


class PlaylistVideo(SQLModel, table=True):
    __tablename__ = "playlist_videos"
    __table_args__ = (UniqueConstraint("playlist_id", "video_id"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    playlist_id: str = Field(foreign_key="playlists.id", index=True)
    video_id: str = Field(foreign_key="videos.id", index=True)
    position: int = 0
    added_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class PlaylistVideoCreate(SQLModel):
    playlist_id: str
    video_id: str
    position: Optional[int] = None


# Notifications


class Notification(SQLModel, table=True):
    __tablename__ = "notifications"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    type: str = Field(max_length=64)
    title: str
    content: Optional[str] = None
    video_id: Optional[str] = None
    channel_id: Optional[str] = None
    thumbnail: Optional[str] = None
    extra: Optional[Dict[str, Any]] = Field(
        default=None, sa_column=Column("metadata", JSON, nullable=True)
    )
    is_read: bool = False
    created_at: datetime = Field(default_factory=utcnow, index=True, sa_type=UTCDateTime)


class NotificationCreate(SQLModel):
    user_id: str
    type: str
    title: str
    content: Optional[str] = None
    video_id: Optional[str] = None
    channel_id: Optional[str] = None
    thumbnail: Optional[str] = None
    extra: Optional[Dict[str, Any]] = None


# Server-side sessions


class WebSession(SQLModel, table=True):
    __tablename__ = "web_sessions"

    sid: str = Field(primary_key=True, max_length=128)
    data: Dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON, nullable=False)
    )
    expire: datetime = Field(index=True, sa_type=UTCDateTime)
