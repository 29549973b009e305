"""
In-memory Content Repository.

Dict-backed implementation of `ContentRepository` used by the test suite and
by ``STORAGE_BACKEND=memory`` demo deployments. No method awaits between its
read and its write, so every operation is atomic with respect to the event
loop without any locking.
"""

from typing import Dict, List, Optional

from core.exceptions import DuplicateEntryError, InvalidReferenceError
from core.logging_config import get_logger
from core.models import (
    Channel,
    ChannelCreate,
    ChannelRead,
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
    utcnow,
)

from .base import (
    DEFAULT_PAGE_SIZE,
    UNIQUE_FIELDS,
    USER_DEFAULTS,
    ContentRepository,
    changed_fields,
)

logger = get_logger("repository.memory")


class MemoryRepository(ContentRepository):
    """ContentRepository over plain dictionaries"""

    def __init__(self):
        self.users: Dict[str, User] = {}
        self.channels: Dict[str, Channel] = {}
        self.videos: Dict[str, Video] = {}
        self.spaces: Dict[str, Space] = {}
        self.subscriptions: Dict[str, Subscription] = {}
        self.comments: Dict[str, Comment] = {}
        self.likes: Dict[str, Like] = {}
        self.watch_history: Dict[str, WatchHistory] = {}
        self.playlists: Dict[str, Playlist] = {}
        self.playlist_videos: Dict[str, PlaylistVideo] = {}
        self.notifications: Dict[str, Notification] = {}

    async def ping(self) -> bool:
        return True

    # Helpers

    def _require(self, table: Dict, entity: str, entity_id: Optional[str]):
        if entity_id is None or entity_id not in table:
            raise InvalidReferenceError(entity, entity_id)

    def _check_user_unique(self, username, email, exclude_id=None):
        for user in self.users.values():
            if user.id == exclude_id:
                continue
            if username is not None and user.username == username:
                raise DuplicateEntryError(*UNIQUE_FIELDS["users.username"])
            if email is not None and user.email == email:
                raise DuplicateEntryError(*UNIQUE_FIELDS["users.email"])

    def _check_channel_handle(self, username, exclude_id=None):
        for channel in self.channels.values():
            if channel.id != exclude_id and channel.username == username:
                raise DuplicateEntryError(*UNIQUE_FIELDS["channels.username"])

    def _with_channel(self, videos) -> List[VideoWithChannel]:
        result = []
        for video in sorted(videos, key=lambda v: v.uploaded_at, reverse=True):
            channel = self.channels.get(video.channel_id)
            if channel is None:
                logger.warning(
                    f"Video {video.id} references missing channel {video.channel_id}"
                )
                continue
            result.append(VideoWithChannel.build(video, channel))
        return result

    # Users

    async def get_user(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)

    async def get_user_by_username(self, username: str) -> Optional[User]:
        return next((u for u in self.users.values() if u.username == username), None)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        return next((u for u in self.users.values() if u.email == email), None)

    async def create_user(self, data: UserCreate) -> User:
        self._check_user_unique(data.username, data.email)
        values = data.model_dump(exclude_none=True)
        user = User(**values)
        self.users[user.id] = user
        return user

    async def update_user(self, user_id: str, updates: UserUpdate) -> Optional[User]:
        user = self.users.get(user_id)
        if user is None:
            return None
        values = changed_fields(updates)
        self._check_user_unique(values.get("username"), values.get("email"), user_id)
        for key, value in values.items():
            setattr(user, key, value)
        user.updated_at = utcnow()
        return user

    async def upsert_user(self, data: UserUpsert) -> User:
        values = changed_fields(data)
        values.pop("id", None)
        user = self.users.get(data.id)
        if user is None:
            self._check_user_unique(values.get("username"), values.get("email"))
            user = User(id=data.id, **{**USER_DEFAULTS, **values})
            self.users[user.id] = user
            return user

        self._check_user_unique(values.get("username"), values.get("email"), data.id)
        for key, value in values.items():
            setattr(user, key, value)
        user.updated_at = utcnow()
        return user

    # Channels

    async def get_channel(self, channel_id: str) -> Optional[Channel]:
        return self.channels.get(channel_id)

    async def get_channel_by_username(self, username: str) -> Optional[Channel]:
        return next(
            (c for c in self.channels.values() if c.username == username), None
        )

    async def get_channel_by_user_id(self, user_id: str) -> Optional[Channel]:
        return next((c for c in self.channels.values() if c.user_id == user_id), None)

    async def get_all_channels(self) -> List[Channel]:
        return list(self.channels.values())

    async def create_channel(self, data: ChannelCreate) -> Channel:
        self._require(self.users, "user", data.user_id)
        if any(c.user_id == data.user_id for c in self.channels.values()):
            raise DuplicateEntryError(*UNIQUE_FIELDS["channels.user_id"])
        self._check_channel_handle(data.username)
        channel = Channel(**data.model_dump(), verified=False, subscribers=0)
        self.channels[channel.id] = channel
        return channel

    async def update_channel(
        self, channel_id: str, updates: ChannelUpdate
    ) -> Optional[Channel]:
        channel = self.channels.get(channel_id)
        if channel is None:
            return None
        values = changed_fields(updates)
        if "username" in values:
            self._check_channel_handle(values["username"], channel_id)
        for key, value in values.items():
            setattr(channel, key, value)
        return channel

    # Videos

    async def get_video(self, video_id: str) -> Optional[Video]:
        return self.videos.get(video_id)

    async def get_video_with_channel(self, video_id: str) -> Optional[VideoWithChannel]:
        video = self.videos.get(video_id)
        if video is None:
            return None
        channel = self.channels.get(video.channel_id)
        if channel is None:
            return None
        return VideoWithChannel.build(video, channel)

    async def get_videos(
        self, limit: Optional[int] = None, category: Optional[str] = None
    ) -> List[VideoWithChannel]:
        videos = [
            v for v in self.videos.values() if category is None or v.category == category
        ]
        result = self._with_channel(videos)
        return result[:limit] if limit is not None else result

    async def get_videos_by_channel(self, channel_id: str) -> List[VideoWithChannel]:
        return await self.get_videos_by_channels([channel_id])

    async def get_videos_by_channels(
        self, channel_ids: List[str]
    ) -> List[VideoWithChannel]:
        if not channel_ids:
            return []
        wanted = set(channel_ids)
        return self._with_channel(
            v for v in self.videos.values() if v.channel_id in wanted
        )

    async def search_videos(self, query: str) -> List[VideoWithChannel]:
        needle = query.lower()
        return self._with_channel(
            v
            for v in self.videos.values()
            if needle in v.title.lower() or needle in (v.description or "").lower()
        )

    async def create_video(self, data: VideoCreate) -> Video:
        self._require(self.channels, "channel", data.channel_id)
        video = Video(**data.model_dump(exclude_none=True), views=0)
        self.videos[video.id] = video
        return video

    async def update_video(self, video_id: str, updates: VideoUpdate) -> Optional[Video]:
        video = self.videos.get(video_id)
        if video is None:
            return None
        for key, value in changed_fields(updates).items():
            setattr(video, key, value)
        return video

    async def delete_video(self, video_id: str) -> bool:
        if self.videos.pop(video_id, None) is None:
            return False
        for table in (self.comments, self.likes, self.watch_history, self.playlist_videos):
            for row_id in [k for k, row in table.items() if row.video_id == video_id]:
                del table[row_id]
        for row_id in [
            k for k, n in self.notifications.items() if n.video_id == video_id
        ]:
            del self.notifications[row_id]
        return True

    async def increment_view_count(self, video_id: str) -> bool:
        video = self.videos.get(video_id)
        if video is None:
            return False
        video.views += 1
        return True

    # Spaces

    async def get_space(self, space_id: str) -> Optional[Space]:
        return self.spaces.get(space_id)

    async def get_spaces_by_user(self, user_id: str) -> List[SpaceWithChannels]:
        result = []
        for space in self.spaces.values():
            if space.user_id != user_id:
                continue
            channels = [
                self.channels[cid] for cid in space.channel_ids if cid in self.channels
            ]
            member_ids = {c.id for c in channels}
            video_count = sum(
                1 for v in self.videos.values() if v.channel_id in member_ids
            )
            result.append(
                SpaceWithChannels(
                    **space.model_dump(),
                    channels=[ChannelRead.model_validate(c) for c in channels],
                    video_count=video_count,
                )
            )
        return result

    async def create_space(self, data: SpaceCreate) -> Space:
        self._require(self.users, "user", data.user_id)
        space = Space(**data.model_dump())
        space.channel_ids = list(data.channel_ids)
        self.spaces[space.id] = space
        return space

    async def update_space(self, space_id: str, updates: SpaceUpdate) -> Optional[Space]:
        space = self.spaces.get(space_id)
        if space is None:
            return None
        for key, value in changed_fields(updates).items():
            setattr(space, key, list(value) if key == "channel_ids" else value)
        return space

    async def delete_space(self, space_id: str) -> bool:
        return self.spaces.pop(space_id, None) is not None

    # Subscriptions

    def _find_subscription(self, user_id: str, channel_id: str) -> Optional[Subscription]:
        return next(
            (
                s
                for s in self.subscriptions.values()
                if s.user_id == user_id and s.channel_id == channel_id
            ),
            None,
        )

    async def get_subscriptions(self, user_id: str) -> List[Subscription]:
        return [s for s in self.subscriptions.values() if s.user_id == user_id]

    async def get_subscribers(self, channel_id: str) -> List[Subscription]:
        return [s for s in self.subscriptions.values() if s.channel_id == channel_id]

    async def is_subscribed(self, user_id: str, channel_id: str) -> bool:
        return self._find_subscription(user_id, channel_id) is not None

    async def subscribe(self, user_id: str, channel_id: str) -> Subscription:
        self._require(self.users, "user", user_id)
        self._require(self.channels, "channel", channel_id)
        existing = self._find_subscription(user_id, channel_id)
        if existing is not None:
            return existing
        subscription = Subscription(user_id=user_id, channel_id=channel_id)
        self.subscriptions[subscription.id] = subscription
        self.channels[channel_id].subscribers += 1
        return subscription

    async def unsubscribe(self, user_id: str, channel_id: str) -> bool:
        existing = self._find_subscription(user_id, channel_id)
        if existing is None:
            return False
        del self.subscriptions[existing.id]
        channel = self.channels.get(channel_id)
        if channel is not None and channel.subscribers > 0:
            channel.subscribers -= 1
        return True

    # Blocking

    async def block_channel(self, user_id: str, channel_id: str) -> bool:
        user = self.users.get(user_id)
        if user is None:
            return False
        if channel_id not in user.blocked_channels:
            user.blocked_channels = [*user.blocked_channels, channel_id]
            user.updated_at = utcnow()
        return True

    async def unblock_channel(self, user_id: str, channel_id: str) -> bool:
        user = self.users.get(user_id)
        if user is None:
            return False
        if channel_id in user.blocked_channels:
            user.blocked_channels = [c for c in user.blocked_channels if c != channel_id]
            user.updated_at = utcnow()
        return True

    async def get_blocked_channels(self, user_id: str) -> List[str]:
        user = self.users.get(user_id)
        return list(user.blocked_channels) if user else []

    # Comments

    async def get_comment(self, comment_id: str) -> Optional[Comment]:
        return self.comments.get(comment_id)

    async def get_comments_by_video(
        self,
        video_id: str,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        sort_by: str = "created_at",
    ) -> List[Comment]:
        comments = [c for c in self.comments.values() if c.video_id == video_id]
        if sort_by == "likes":
            comments.sort(key=lambda c: (c.likes, c.created_at), reverse=True)
        else:
            comments.sort(key=lambda c: c.created_at, reverse=True)
        return comments[offset : offset + limit]

    async def create_comment(self, data: CommentCreate) -> Comment:
        self._require(self.videos, "video", data.video_id)
        self._require(self.users, "user", data.user_id)
        if data.parent_id is not None:
            parent = self.comments.get(data.parent_id)
            if parent is None or parent.video_id != data.video_id:
                raise InvalidReferenceError("comment", data.parent_id)
        comment = Comment(**data.model_dump(exclude_none=True), likes=0)
        self.comments[comment.id] = comment
        return comment

    async def update_comment(
        self, comment_id: str, updates: CommentUpdate
    ) -> Optional[Comment]:
        comment = self.comments.get(comment_id)
        if comment is None:
            return None
        comment.content = updates.content
        comment.updated_at = utcnow()
        return comment

    async def delete_comment(self, comment_id: str) -> bool:
        if self.comments.pop(comment_id, None) is None:
            return False
        for reply_id in [
            k for k, c in self.comments.items() if c.parent_id == comment_id
        ]:
            del self.comments[reply_id]
        return True

    async def like_comment(self, comment_id: str) -> Optional[Comment]:
        comment = self.comments.get(comment_id)
        if comment is None:
            return None
        comment.likes += 1
        return comment

    # Likes

    async def toggle_like(self, user_id: str, video_id: str, type: str) -> Optional[Like]:
        existing = self._find_like(user_id, video_id)
        if existing is None:
            self._require(self.users, "user", user_id)
            self._require(self.videos, "video", video_id)
            like = Like(user_id=user_id, video_id=video_id, type=type)
            self.likes[like.id] = like
            return like
        if existing.type == type:
            del self.likes[existing.id]
            return None
        existing.type = type
        return existing

    async def get_like_counts(self, video_id: str) -> LikeCounts:
        counts = LikeCounts()
        for like in self.likes.values():
            if like.video_id != video_id:
                continue
            if like.type == "like":
                counts.likes += 1
            elif like.type == "dislike":
                counts.dislikes += 1
        return counts

    async def get_user_like(self, user_id: str, video_id: str) -> Optional[Like]:
        return self._find_like(user_id, video_id)

    def _find_like(self, user_id: str, video_id: str) -> Optional[Like]:
        return next(
            (
                like
                for like in self.likes.values()
                if like.user_id == user_id and like.video_id == video_id
            ),
            None,
        )

    # Watch history

    async def add_to_watch_history(self, data: WatchHistoryCreate) -> WatchHistory:
        self._require(self.users, "user", data.user_id)
        self._require(self.videos, "video", data.video_id)
        entry = WatchHistory(**data.model_dump(exclude_none=True))
        self.watch_history[entry.id] = entry
        return entry

    async def get_watch_history(
        self, user_id: str, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> List[WatchHistory]:
        entries = sorted(
            (h for h in self.watch_history.values() if h.user_id == user_id),
            key=lambda h: h.watched_at,
            reverse=True,
        )
        return entries[offset : offset + limit]

    async def clear_watch_history(self, user_id: str) -> bool:
        doomed = [k for k, h in self.watch_history.items() if h.user_id == user_id]
        for key in doomed:
            del self.watch_history[key]
        return bool(doomed)

    # Playlists

    async def get_playlist(self, playlist_id: str) -> Optional[Playlist]:
        return self.playlists.get(playlist_id)

    async def get_playlists_by_user(self, user_id: str) -> List[Playlist]:
        return sorted(
            (p for p in self.playlists.values() if p.user_id == user_id),
            key=lambda p: p.created_at,
            reverse=True,
        )

    async def create_playlist(self, data: PlaylistCreate) -> Playlist:
        self._require(self.users, "user", data.user_id)
        playlist = Playlist(**data.model_dump())
        self.playlists[playlist.id] = playlist
        return playlist

    async def update_playlist(
        self, playlist_id: str, updates: PlaylistUpdate
    ) -> Optional[Playlist]:
        playlist = self.playlists.get(playlist_id)
        if playlist is None:
            return None
        for key, value in changed_fields(updates).items():
            setattr(playlist, key, value)
        playlist.updated_at = utcnow()
        return playlist

    async def delete_playlist(self, playlist_id: str) -> bool:
        if self.playlists.pop(playlist_id, None) is None:
            return False
        for key in [
            k for k, pv in self.playlist_videos.items() if pv.playlist_id == playlist_id
        ]:
            del self.playlist_videos[key]
        return True

    async def add_video_to_playlist(self, data: PlaylistVideoCreate) -> PlaylistVideo:
        self._require(self.playlists, "playlist", data.playlist_id)
        self._require(self.videos, "video", data.video_id)
        entries = [
            pv for pv in self.playlist_videos.values() if pv.playlist_id == data.playlist_id
        ]
        for entry in entries:
            if entry.video_id == data.video_id:
                return entry
        position = data.position
        if position is None:
            position = max((pv.position for pv in entries), default=-1) + 1
        entry = PlaylistVideo(
            playlist_id=data.playlist_id, video_id=data.video_id, position=position
        )
        self.playlist_videos[entry.id] = entry
        return entry

    async def remove_video_from_playlist(self, playlist_id: str, video_id: str) -> bool:
        for key, pv in self.playlist_videos.items():
            if pv.playlist_id == playlist_id and pv.video_id == video_id:
                del self.playlist_videos[key]
                return True
        return False

    async def get_playlist_videos(self, playlist_id: str) -> List[PlaylistVideo]:
        return sorted(
            (pv for pv in self.playlist_videos.values() if pv.playlist_id == playlist_id),
            key=lambda pv: (pv.position, pv.added_at),
        )

    # Notifications

    async def get_notification(self, notification_id: str) -> Optional[Notification]:
        return self.notifications.get(notification_id)

    async def get_notifications(
        self, user_id: str, limit: int = DEFAULT_PAGE_SIZE, unread_only: bool = False
    ) -> List[Notification]:
        items = sorted(
            (
                n
                for n in self.notifications.values()
                if n.user_id == user_id and not (unread_only and n.is_read)
            ),
            key=lambda n: n.created_at,
            reverse=True,
        )
        return items[:limit]

    async def create_notification(self, data: NotificationCreate) -> Notification:
        self._require(self.users, "user", data.user_id)
        notification = Notification(**data.model_dump())
        self.notifications[notification.id] = notification
        return notification

    async def mark_notification_read(
        self, notification_id: str
    ) -> Optional[Notification]:
        notification = self.notifications.get(notification_id)
        if notification is None:
            return None
        notification.is_read = True
        return notification

    async def mark_all_notifications_read(self, user_id: str) -> int:
        updated = 0
        for notification in self.notifications.values():
            if notification.user_id == user_id and not notification.is_read:
                notification.is_read = True
                updated += 1
        return updated

    async def get_unread_notification_count(self, user_id: str) -> int:
        return sum(
            1
            for n in self.notifications.values()
            if n.user_id == user_id and not n.is_read
        )
