"""
Content Repository contract.

`ContentRepository` is the single point of access to every persisted entity.
The HTTP layer and services depend on this interface only; the concrete
implementation (`MemoryRepository` or `SQLRepository`) is chosen once at
startup and injected through the application context.

Conventions shared by every implementation:
- Read-by-id returns ``None`` for an unknown id and never raises for absence.
- Collection reads always return a list, possibly empty, never ``None``.
- Writes that name a related entity validate it and raise
  `InvalidReferenceError` when it does not exist.
- Partial updates take the matching ``*Update`` model and apply only the
  fields that were explicitly set.
- Exceptions other than the typed ones above mean an infrastructure failure.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from core.models import (
    Channel,
    ChannelCreate,
    ChannelUpdate,
    Comment,
    CommentCreate,
    CommentUpdate,
    Like,
    LikeCounts,
    Notification,
    NotificationCreate,
    Playlist,
    PlaylistCreate,
    PlaylistUpdate,
    PlaylistVideo,
    PlaylistVideoCreate,
    Space,
    SpaceCreate,
    SpaceUpdate,
    SpaceWithChannels,
    Subscription,
    User,
    UserCreate,
    UserUpdate,
    UserUpsert,
    Video,
    VideoCreate,
    VideoUpdate,
    VideoWithChannel,
    WatchHistory,
    WatchHistoryCreate,
)

DEFAULT_PAGE_SIZE = 50

USER_DEFAULTS: Dict[str, Any] = {
    "personal_mode": False,
    "auth_provider": "email",
    "is_verified": False,
}

# Unique columns, as "table.column", with the message a duplicate is reported as
UNIQUE_FIELDS: Dict[str, Tuple[str, str]] = {
    "users.username": ("Username is already taken", "username"),
    "users.email": ("Email is already registered", "email"),
    "channels.username": ("Channel handle is already taken", "username"),
    "channels.user_id": ("User already has a channel", "user_id"),
}


def changed_fields(updates) -> Dict[str, Any]:
    """Fields the caller explicitly supplied on a partial-update model"""
    return updates.model_dump(exclude_unset=True)


def derive_is_shorts(duration: str) -> bool:
    """A video is a short when its duration is ``0:SS`` with fewer than 60 seconds"""
    parts = duration.strip().split(":")
    if len(parts) != 2:
        return False
    minutes, seconds = parts
    if not (minutes.isdigit() and seconds.isdigit()):
        return False
    return int(minutes) == 0 and int(seconds) < 60


class ContentRepository(ABC):
    """Abstract base class defining the content storage contract."""

    # Lifecycle

    async def initialize(self) -> None:
        """Prepare the backing store (create tables and the like)."""

    async def close(self) -> None:
        """Release connections held by the backing store."""

    @abstractmethod
    async def ping(self) -> bool:
        """Return True when the backing store answers."""

    # Users

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        ...

    @abstractmethod
    async def get_user_by_username(self, username: str) -> Optional[User]:
        ...

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[User]:
        ...

    @abstractmethod
    async def create_user(self, data: UserCreate) -> User:
        """Insert a user. Raises DuplicateEntryError on a taken username or email."""

    @abstractmethod
    async def update_user(self, user_id: str, updates: UserUpdate) -> Optional[User]:
        ...

    @abstractmethod
    async def upsert_user(self, data: UserUpsert) -> User:
        """Insert or merge a user keyed by id.

        Supplied fields win over stored ones, omitted fields keep their previous
        value and ``updated_at`` is refreshed. A new row gets the defaults for
        every field that was not supplied.
        """

    # Channels

    @abstractmethod
    async def get_channel(self, channel_id: str) -> Optional[Channel]:
        ...

    @abstractmethod
    async def get_channel_by_username(self, username: str) -> Optional[Channel]:
        ...

    @abstractmethod
    async def get_channel_by_user_id(self, user_id: str) -> Optional[Channel]:
        ...

    @abstractmethod
    async def get_all_channels(self) -> List[Channel]:
        ...

    @abstractmethod
    async def create_channel(self, data: ChannelCreate) -> Channel:
        """Insert a channel. ``verified`` and ``subscribers`` always start at their defaults."""

    @abstractmethod
    async def update_channel(
        self, channel_id: str, updates: ChannelUpdate
    ) -> Optional[Channel]:
        ...

    # Videos

    @abstractmethod
    async def get_video(self, video_id: str) -> Optional[Video]:
        ...

    @abstractmethod
    async def get_video_with_channel(self, video_id: str) -> Optional[VideoWithChannel]:
        ...

    @abstractmethod
    async def get_videos(
        self, limit: Optional[int] = None, category: Optional[str] = None
    ) -> List[VideoWithChannel]:
        """Newest first, joined with the owning channel.

        ``category`` is an exact match applied before ``limit``. Videos whose
        channel cannot be resolved are excluded.
        """

    @abstractmethod
    async def get_videos_by_channel(self, channel_id: str) -> List[VideoWithChannel]:
        ...

    @abstractmethod
    async def get_videos_by_channels(
        self, channel_ids: List[str]
    ) -> List[VideoWithChannel]:
        """Same contract as ``get_videos``; an empty id list yields an empty list."""

    @abstractmethod
    async def search_videos(self, query: str) -> List[VideoWithChannel]:
        """Case-insensitive substring match over title or description."""

    @abstractmethod
    async def create_video(self, data: VideoCreate) -> Video:
        ...

    @abstractmethod
    async def update_video(self, video_id: str, updates: VideoUpdate) -> Optional[Video]:
        ...

    @abstractmethod
    async def delete_video(self, video_id: str) -> bool:
        """Delete a video together with its comments, likes, history and playlist entries."""

    @abstractmethod
    async def increment_view_count(self, video_id: str) -> bool:
        """Atomically add one view. False when the video does not exist."""

    # Spaces

    @abstractmethod
    async def get_space(self, space_id: str) -> Optional[Space]:
        ...

    @abstractmethod
    async def get_spaces_by_user(self, user_id: str) -> List[SpaceWithChannels]:
        """Spaces with ``channels`` and ``video_count`` recomputed on every call."""

    @abstractmethod
    async def create_space(self, data: SpaceCreate) -> Space:
        ...

    @abstractmethod
    async def update_space(self, space_id: str, updates: SpaceUpdate) -> Optional[Space]:
        ...

    @abstractmethod
    async def delete_space(self, space_id: str) -> bool:
        ...

    # Subscriptions

    @abstractmethod
    async def get_subscriptions(self, user_id: str) -> List[Subscription]:
        ...

    @abstractmethod
    async def get_subscribers(self, channel_id: str) -> List[Subscription]:
        ...

    @abstractmethod
    async def is_subscribed(self, user_id: str, channel_id: str) -> bool:
        ...

    @abstractmethod
    async def subscribe(self, user_id: str, channel_id: str) -> Subscription:
        """Idempotent; the channel's subscriber count moves only on a real insert."""

    @abstractmethod
    async def unsubscribe(self, user_id: str, channel_id: str) -> bool:
        ...

    # Blocking

    @abstractmethod
    async def block_channel(self, user_id: str, channel_id: str) -> bool:
        """Idempotent add to the user's blocked list. False for an unknown user."""

    @abstractmethod
    async def unblock_channel(self, user_id: str, channel_id: str) -> bool:
        """Idempotent removal. False for an unknown user."""

    @abstractmethod
    async def get_blocked_channels(self, user_id: str) -> List[str]:
        ...

    # Comments

    @abstractmethod
    async def get_comment(self, comment_id: str) -> Optional[Comment]:
        ...

    @abstractmethod
    async def get_comments_by_video(
        self,
        video_id: str,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        sort_by: str = "created_at",
    ) -> List[Comment]:
        """Flat page of comments, newest first or (``sort_by="likes"``) most liked first."""

    @abstractmethod
    async def create_comment(self, data: CommentCreate) -> Comment:
        ...

    @abstractmethod
    async def update_comment(
        self, comment_id: str, updates: CommentUpdate
    ) -> Optional[Comment]:
        ...

    @abstractmethod
    async def delete_comment(self, comment_id: str) -> bool:
        """Delete a comment and its direct replies."""

    @abstractmethod
    async def like_comment(self, comment_id: str) -> Optional[Comment]:
        ...

    # Likes

    @abstractmethod
    async def toggle_like(self, user_id: str, video_id: str, type: str) -> Optional[Like]:
        """Insert, remove (same type again) or flip (other type) the user's reaction.

        Returns the resulting row, or None when the reaction was removed.
        """

    @abstractmethod
    async def get_like_counts(self, video_id: str) -> LikeCounts:
        ...

    @abstractmethod
    async def get_user_like(self, user_id: str, video_id: str) -> Optional[Like]:
        ...

    # Watch history

    @abstractmethod
    async def add_to_watch_history(self, data: WatchHistoryCreate) -> WatchHistory:
        ...

    @abstractmethod
    async def get_watch_history(
        self, user_id: str, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> List[WatchHistory]:
        ...

    @abstractmethod
    async def clear_watch_history(self, user_id: str) -> bool:
        ...

    # Playlists

    @abstractmethod
    async def get_playlist(self, playlist_id: str) -> Optional[Playlist]:
        ...

    @abstractmethod
    async def get_playlists_by_user(self, user_id: str) -> List[Playlist]:
        ...

    @abstractmethod
    async def create_playlist(self, data: PlaylistCreate) -> Playlist:
        ...

    @abstractmethod
    async def update_playlist(
        self, playlist_id: str, updates: PlaylistUpdate
    ) -> Optional[Playlist]:
        ...

    @abstractmethod
    async def delete_playlist(self, playlist_id: str) -> bool:
        """Delete a playlist and its membership rows."""

    @abstractmethod
    async def add_video_to_playlist(self, data: PlaylistVideoCreate) -> PlaylistVideo:
        """Idempotent per (playlist, video); appends when no position is given."""

    @abstractmethod
    async def remove_video_from_playlist(self, playlist_id: str, video_id: str) -> bool:
        ...

    @abstractmethod
    async def get_playlist_videos(self, playlist_id: str) -> List[PlaylistVideo]:
        ...

    # Notifications

    @abstractmethod
    async def get_notification(self, notification_id: str) -> Optional[Notification]:
        ...

    @abstractmethod
    async def get_notifications(
        self, user_id: str, limit: int = DEFAULT_PAGE_SIZE, unread_only: bool = False
    ) -> List[Notification]:
        ...

    @abstractmethod
    async def create_notification(self, data: NotificationCreate) -> Notification:
        ...

    @abstractmethod
    async def mark_notification_read(
        self, notification_id: str
    ) -> Optional[Notification]:
        ...

    @abstractmethod
    async def mark_all_notifications_read(self, user_id: str) -> int:
        ...

    @abstractmethod
    async def get_unread_notification_count(self, user_id: str) -> int:
        ...
