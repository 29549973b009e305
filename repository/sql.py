"""
Relational Content Repository.

`SQLRepository` implements `ContentRepository` over the SQLModel tables using
SQLAlchemy's asyncio extension. SQLite (`aiosqlite`) serves development and
tests, PostgreSQL (`asyncpg`) production; both dialects support the
``INSERT ... ON CONFLICT`` and ``RETURNING`` forms used below.

Concurrency rules:
- View counts and comment likes are bumped with a single ``UPDATE col = col + 1``.
- The like toggle runs inside one transaction as three single-statement steps
  (conditional insert, conditional delete, conditional flip) against the
  UNIQUE(user_id, video_id) constraint, so racing toggles can neither create a
  second row nor lose a flip.
- Subscribing is an ``ON CONFLICT DO NOTHING`` insert; the channel's subscriber
  counter only moves when a row was really inserted or deleted.

SQLAlchemy failures are converted in `db_operation`, the only place this module
deals with driver errors: unique violations become `DuplicateEntryError` with
the column's message, foreign key failures `InvalidReferenceError`, other
constraint failures `ValidationError`, and everything else
`DatabaseConnectionError`. Collection queries always materialize a
list.
"""

import functools
from typing import List, Optional

from sqlalchemy import delete, func, or_, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlmodel import col, select

from core.database import build_session_factory, create_db_and_tables
from core.exceptions import (
    DatabaseConnectionError,
    DuplicateEntryError,
    InvalidReferenceError,
    TubeStreamError,
    ValidationError,
)
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
    new_id,
    utcnow,
)

from .base import (
    DEFAULT_PAGE_SIZE,
    UNIQUE_FIELDS,
    USER_DEFAULTS,
    ContentRepository,
    changed_fields,
)

logger = get_logger("repository.sql")


def constraint_error(e: IntegrityError) -> TubeStreamError:
    """The client-facing error for a constraint the database rejected"""
    detail = str(e.orig)
    lowered = detail.lower()
    if "unique" in lowered or "duplicate key" in lowered:
        for column, (message, field) in UNIQUE_FIELDS.items():
            index_name = "ix_" + column.replace(".", "_")
            if column in detail or index_name in detail:
                return DuplicateEntryError(message, field)
        return DuplicateEntryError("A record with the same unique value already exists")
    if "foreign key" in lowered:
        return InvalidReferenceError("record", "unknown")
    return ValidationError("record", None, "A required field is missing or invalid")


def db_operation(operation: str):
    """Translate SQLAlchemy failures raised by a repository method"""

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            try:
                return await func(self, *args, **kwargs)
            except IntegrityError as e:
                logger.warning(
                    f"Integrity violation in {operation}: {e.orig}",
                    extra={"operation": operation},
                )
                raise constraint_error(e) from e
            except SQLAlchemyError as e:
                logger.error(
                    f"Database operation {operation} failed: {e}",
                    extra={"operation": operation, "error_type": type(e).__name__},
                    exc_info=True,
                )
                raise DatabaseConnectionError(operation, type(e).__name__) from e

        return wrapper

    return decorator


class SQLRepository(ContentRepository):
    """ContentRepository over an async SQLAlchemy engine"""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_factory = build_session_factory(engine)

    async def initialize(self) -> None:
        await create_db_and_tables(self.engine)

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("Database engine disposed")

    async def ping(self) -> bool:
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database ping failed: {e}")
            return False

    # Helpers

    def _insert(self, model):
        if self.engine.dialect.name == "postgresql":
            return pg_insert(model)
        return sqlite_insert(model)

    async def _require(self, session, model, entity: str, entity_id: Optional[str]):
        if entity_id is None or await session.get(model, entity_id) is None:
            raise InvalidReferenceError(entity, entity_id)

    async def _videos_with_channel(self, statement) -> List[VideoWithChannel]:
        statement = statement.join(Channel, col(Channel.id) == col(Video.channel_id))
        statement = statement.order_by(col(Video.uploaded_at).desc())
        async with self.session_factory() as session:
            rows = (await session.execute(statement)).all()
        return [VideoWithChannel.build(video, channel) for video, channel in rows]

    async def _get(self, model, entity_id: str):
        async with self.session_factory() as session:
            return await session.get(model, entity_id)

    async def _first(self, statement):
        async with self.session_factory() as session:
            return (await session.execute(statement)).scalars().first()

    async def _all(self, statement) -> list:
        async with self.session_factory() as session:
            return list((await session.execute(statement)).scalars().all())

    async def _add(self, obj):
        async with self.session_factory.begin() as session:
            session.add(obj)
        return obj

    async def _patch(self, model, entity_id: str, values: dict, touch: bool = False):
        async with self.session_factory.begin() as session:
            obj = await session.get(model, entity_id)
            if obj is None:
                return None
            for key, value in values.items():
                setattr(obj, key, value)
            if touch:
                obj.updated_at = utcnow()
        return obj

    # Users

    @db_operation("get_user")
    async def get_user(self, user_id: str) -> Optional[User]:
        return await self._get(User, user_id)

    @db_operation("get_user_by_username")
    async def get_user_by_username(self, username: str) -> Optional[User]:
        return await self._first(select(User).where(User.username == username))

    @db_operation("get_user_by_email")
    async def get_user_by_email(self, email: str) -> Optional[User]:
        return await self._first(select(User).where(User.email == email))

    @db_operation("create_user")
    async def create_user(self, data: UserCreate) -> User:
        return await self._add(User(**data.model_dump(exclude_none=True)))

    @db_operation("update_user")
    async def update_user(self, user_id: str, updates: UserUpdate) -> Optional[User]:
        return await self._patch(User, user_id, changed_fields(updates), touch=True)

    @db_operation("upsert_user")
    async def upsert_user(self, data: UserUpsert) -> User:
        supplied = changed_fields(data)
        supplied.pop("id", None)
        now = utcnow()

        statement = self._insert(User).values(
            **{
                **USER_DEFAULTS,
                "blocked_channels": [],
                "created_at": now,
                **supplied,
                "id": data.id,
                "updated_at": now,
            }
        )
        merge = {key: statement.excluded[key] for key in supplied}
        merge["updated_at"] = now
        statement = statement.on_conflict_do_update(index_elements=["id"], set_=merge)

        async with self.session_factory.begin() as session:
            await session.execute(statement)
            result = await session.execute(
                select(User)
                .where(User.id == data.id)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one()

    # Channels

    @db_operation("get_channel")
    async def get_channel(self, channel_id: str) -> Optional[Channel]:
        return await self._get(Channel, channel_id)

    @db_operation("get_channel_by_username")
    async def get_channel_by_username(self, username: str) -> Optional[Channel]:
        return await self._first(select(Channel).where(Channel.username == username))

    @db_operation("get_channel_by_user_id")
    async def get_channel_by_user_id(self, user_id: str) -> Optional[Channel]:
        return await self._first(select(Channel).where(Channel.user_id == user_id))

    @db_operation("get_all_channels")
    async def get_all_channels(self) -> List[Channel]:
        return await self._all(select(Channel).order_by(col(Channel.created_at)))

    @db_operation("create_channel")
    async def create_channel(self, data: ChannelCreate) -> Channel:
        async with self.session_factory.begin() as session:
            await self._require(session, User, "user", data.user_id)
            channel = Channel(**data.model_dump(), verified=False, subscribers=0)
            session.add(channel)
        return channel

    @db_operation("update_channel")
    async def update_channel(
        self, channel_id: str, updates: ChannelUpdate
    ) -> Optional[Channel]:
        return await self._patch(Channel, channel_id, changed_fields(updates))

    # Videos

    @db_operation("get_video")
    async def get_video(self, video_id: str) -> Optional[Video]:
        return await self._get(Video, video_id)

    @db_operation("get_video_with_channel")
    async def get_video_with_channel(self, video_id: str) -> Optional[VideoWithChannel]:
        videos = await self._videos_with_channel(
            select(Video, Channel).where(Video.id == video_id)
        )
        return videos[0] if videos else None

    @db_operation("get_videos")
    async def get_videos(
        self, limit: Optional[int] = None, category: Optional[str] = None
    ) -> List[VideoWithChannel]:
        statement = select(Video, Channel)
        if category is not None:
            statement = statement.where(Video.category == category)
        if limit is not None:
            statement = statement.limit(limit)
        return await self._videos_with_channel(statement)

    @db_operation("get_videos_by_channel")
    async def get_videos_by_channel(self, channel_id: str) -> List[VideoWithChannel]:
        return await self._videos_with_channel(
            select(Video, Channel).where(Video.channel_id == channel_id)
        )

    @db_operation("get_videos_by_channels")
    async def get_videos_by_channels(
        self, channel_ids: List[str]
    ) -> List[VideoWithChannel]:
        if not channel_ids:
            return []
        return await self._videos_with_channel(
            select(Video, Channel).where(col(Video.channel_id).in_(channel_ids))
        )

    @db_operation("search_videos")
    async def search_videos(self, query: str) -> List[VideoWithChannel]:
        return await self._videos_with_channel(
            select(Video, Channel).where(
                or_(
                    col(Video.title).icontains(query, autoescape=True),
                    col(Video.description).icontains(query, autoescape=True),
                )
            )
        )

    @db_operation("create_video")
    async def create_video(self, data: VideoCreate) -> Video:
        async with self.session_factory.begin() as session:
            await self._require(session, Channel, "channel", data.channel_id)
            video = Video(**data.model_dump(exclude_none=True), views=0)
            session.add(video)
        return video

    @db_operation("update_video")
    async def update_video(self, video_id: str, updates: VideoUpdate) -> Optional[Video]:
        return await self._patch(Video, video_id, changed_fields(updates))

    @db_operation("delete_video")
    async def delete_video(self, video_id: str) -> bool:
        async with self.session_factory.begin() as session:
            if await session.get(Video, video_id) is None:
                return False
            for model in (Comment, Like, WatchHistory, PlaylistVideo, Notification):
                await session.execute(
                    delete(model)
                    .where(model.video_id == video_id)
                    .execution_options(synchronize_session=False)
                )
            await session.execute(
                delete(Video)
                .where(Video.id == video_id)
                .execution_options(synchronize_session=False)
            )
        return True

    @db_operation("increment_view_count")
    async def increment_view_count(self, video_id: str) -> bool:
        async with self.session_factory.begin() as session:
            result = await session.execute(
                update(Video)
                .where(Video.id == video_id)
                .values(views=Video.views + 1)
                .execution_options(synchronize_session=False)
            )
            affected = result.rowcount
        return affected > 0

    # Spaces

    @db_operation("get_space")
    async def get_space(self, space_id: str) -> Optional[Space]:
        return await self._get(Space, space_id)

    @db_operation("get_spaces_by_user")
    async def get_spaces_by_user(self, user_id: str) -> List[SpaceWithChannels]:
        async with self.session_factory() as session:
            spaces = (
                (await session.execute(select(Space).where(Space.user_id == user_id)))
                .scalars()
                .all()
            )
            wanted = {cid for space in spaces for cid in space.channel_ids}
            channels = {}
            counts = {}
            if wanted:
                rows = await session.execute(
                    select(Channel).where(col(Channel.id).in_(wanted))
                )
                channels = {channel.id: channel for channel in rows.scalars().all()}
            if channels:
                rows = await session.execute(
                    select(Video.channel_id, func.count())
                    .where(col(Video.channel_id).in_(list(channels)))
                    .group_by(Video.channel_id)
                )
                counts = {channel_id: count for channel_id, count in rows.all()}

        result = []
        for space in spaces:
            members = [
                channels[cid]
                for cid in dict.fromkeys(space.channel_ids)
                if cid in channels
            ]
            result.append(
                SpaceWithChannels(
                    **space.model_dump(),
                    channels=[ChannelRead.model_validate(c) for c in members],
                    video_count=sum(counts.get(c.id, 0) for c in members),
                )
            )
        return result

    @db_operation("create_space")
    async def create_space(self, data: SpaceCreate) -> Space:
        async with self.session_factory.begin() as session:
            await self._require(session, User, "user", data.user_id)
            space = Space(**data.model_dump())
            space.channel_ids = list(data.channel_ids)
            session.add(space)
        return space

    @db_operation("update_space")
    async def update_space(self, space_id: str, updates: SpaceUpdate) -> Optional[Space]:
        values = changed_fields(updates)
        if values.get("channel_ids") is not None:
            values["channel_ids"] = list(values["channel_ids"])
        return await self._patch(Space, space_id, values)

    @db_operation("delete_space")
    async def delete_space(self, space_id: str) -> bool:
        async with self.session_factory.begin() as session:
            result = await session.execute(
                delete(Space)
                .where(Space.id == space_id)
                .execution_options(synchronize_session=False)
            )
            affected = result.rowcount
        return affected > 0

    # Subscriptions

    @db_operation("get_subscriptions")
    async def get_subscriptions(self, user_id: str) -> List[Subscription]:
        return await self._all(
            select(Subscription).where(Subscription.user_id == user_id)
        )

    @db_operation("get_subscribers")
    async def get_subscribers(self, channel_id: str) -> List[Subscription]:
        return await self._all(
            select(Subscription).where(Subscription.channel_id == channel_id)
        )

    @db_operation("is_subscribed")
    async def is_subscribed(self, user_id: str, channel_id: str) -> bool:
        found = await self._first(
            select(Subscription).where(
                Subscription.user_id == user_id,
                Subscription.channel_id == channel_id,
            )
        )
        return found is not None

    @db_operation("subscribe")
    async def subscribe(self, user_id: str, channel_id: str) -> Subscription:
        async with self.session_factory.begin() as session:
            await self._require(session, User, "user", user_id)
            await self._require(session, Channel, "channel", channel_id)

            inserted = (
                await session.execute(
                    self._insert(Subscription)
                    .values(id=new_id(), user_id=user_id, channel_id=channel_id)
                    .on_conflict_do_nothing(index_elements=["user_id", "channel_id"])
                    .returning(Subscription.id)
                )
            ).scalar_one_or_none()

            if inserted is not None:
                await session.execute(
                    update(Channel)
                    .where(Channel.id == channel_id)
                    .values(subscribers=Channel.subscribers + 1)
                    .execution_options(synchronize_session=False)
                )

            result = await session.execute(
                select(Subscription).where(
                    Subscription.user_id == user_id,
                    Subscription.channel_id == channel_id,
                )
            )
            return result.scalar_one()

    @db_operation("unsubscribe")
    async def unsubscribe(self, user_id: str, channel_id: str) -> bool:
        async with self.session_factory.begin() as session:
            removed = (
                await session.execute(
                    delete(Subscription)
                    .where(
                        Subscription.user_id == user_id,
                        Subscription.channel_id == channel_id,
                    )
                    .returning(Subscription.id)
                    .execution_options(synchronize_session=False)
                )
            ).scalar_one_or_none()

            if removed is None:
                return False

            await session.execute(
                update(Channel)
                .where(Channel.id == channel_id, Channel.subscribers > 0)
                .values(subscribers=Channel.subscribers - 1)
                .execution_options(synchronize_session=False)
            )
        return True

    # Blocking

    async def _edit_blocked(self, user_id: str, channel_id: str, block: bool) -> bool:
        async with self.session_factory.begin() as session:
            user = await session.get(User, user_id, with_for_update=True)
            if user is None:
                return False
            current = list(user.blocked_channels or [])
            if block and channel_id not in current:
                user.blocked_channels = current + [channel_id]
                user.updated_at = utcnow()
            elif not block and channel_id in current:
                user.blocked_channels = [c for c in current if c != channel_id]
                user.updated_at = utcnow()
        return True

    @db_operation("block_channel")
    async def block_channel(self, user_id: str, channel_id: str) -> bool:
        return await self._edit_blocked(user_id, channel_id, block=True)

    @db_operation("unblock_channel")
    async def unblock_channel(self, user_id: str, channel_id: str) -> bool:
        return await self._edit_blocked(user_id, channel_id, block=False)

    @db_operation("get_blocked_channels")
    async def get_blocked_channels(self, user_id: str) -> List[str]:
        user = await self._get(User, user_id)
        return list(user.blocked_channels or []) if user else []

    # Comments

    @db_operation("get_comment")
    async def get_comment(self, comment_id: str) -> Optional[Comment]:
        return await self._get(Comment, comment_id)

    @db_operation("get_comments_by_video")
    async def get_comments_by_video(
        self,
        video_id: str,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        sort_by: str = "created_at",
    ) -> List[Comment]:
        statement = select(Comment).where(Comment.video_id == video_id)
        if sort_by == "likes":
            statement = statement.order_by(
                col(Comment.likes).desc(), col(Comment.created_at).desc()
            )
        else:
            statement = statement.order_by(col(Comment.created_at).desc())
        return await self._all(statement.offset(offset).limit(limit))

    @db_operation("create_comment")
    async def create_comment(self, data: CommentCreate) -> Comment:
        async with self.session_factory.begin() as session:
            await self._require(session, Video, "video", data.video_id)
            await self._require(session, User, "user", data.user_id)
            if data.parent_id is not None:
                parent = await session.get(Comment, data.parent_id)
                if parent is None or parent.video_id != data.video_id:
                    raise InvalidReferenceError("comment", data.parent_id)
            comment = Comment(**data.model_dump(exclude_none=True), likes=0)
            session.add(comment)
        return comment

    @db_operation("update_comment")
    async def update_comment(
        self, comment_id: str, updates: CommentUpdate
    ) -> Optional[Comment]:
        return await self._patch(
            Comment, comment_id, {"content": updates.content}, touch=True
        )

    @db_operation("delete_comment")
    async def delete_comment(self, comment_id: str) -> bool:
        async with self.session_factory.begin() as session:
            await session.execute(
                delete(Comment)
                .where(Comment.parent_id == comment_id)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(
                delete(Comment)
                .where(Comment.id == comment_id)
                .execution_options(synchronize_session=False)
            )
            affected = result.rowcount
        return affected > 0

    @db_operation("like_comment")
    async def like_comment(self, comment_id: str) -> Optional[Comment]:
        async with self.session_factory.begin() as session:
            result = await session.execute(
                update(Comment)
                .where(Comment.id == comment_id)
                .values(likes=Comment.likes + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return None
            return (
                await session.execute(
                    select(Comment)
                    .where(Comment.id == comment_id)
                    .execution_options(populate_existing=True)
                )
            ).scalar_one()

    # Likes

    @db_operation("toggle_like")
    async def toggle_like(self, user_id: str, video_id: str, type: str) -> Optional[Like]:
        same_pair = (Like.user_id == user_id, Like.video_id == video_id)

        async with self.session_factory.begin() as session:
            await self._require(session, User, "user", user_id)
            await self._require(session, Video, "video", video_id)

            inserted = (
                await session.execute(
                    self._insert(Like)
                    .values(
                        id=new_id(),
                        user_id=user_id,
                        video_id=video_id,
                        type=type,
                        created_at=utcnow(),
                    )
                    .on_conflict_do_nothing(index_elements=["user_id", "video_id"])
                    .returning(Like.id)
                )
            ).scalar_one_or_none()

            if inserted is None:
                removed = (
                    await session.execute(
                        delete(Like)
                        .where(*same_pair, Like.type == type)
                        .returning(Like.id)
                        .execution_options(synchronize_session=False)
                    )
                ).scalar_one_or_none()
                if removed is not None:
                    return None

                await session.execute(
                    update(Like)
                    .where(*same_pair, Like.type != type)
                    .values(type=type)
                    .execution_options(synchronize_session=False)
                )

            result = await session.execute(
                select(Like)
                .where(*same_pair)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()

    @db_operation("get_like_counts")
    async def get_like_counts(self, video_id: str) -> LikeCounts:
        async with self.session_factory() as session:
            rows = await session.execute(
                select(Like.type, func.count())
                .where(Like.video_id == video_id)
                .group_by(Like.type)
            )
            counts = {like_type: count for like_type, count in rows.all()}
        return LikeCounts(
            likes=counts.get("like", 0), dislikes=counts.get("dislike", 0)
        )

    @db_operation("get_user_like")
    async def get_user_like(self, user_id: str, video_id: str) -> Optional[Like]:
        return await self._first(
            select(Like).where(Like.user_id == user_id, Like.video_id == video_id)
        )

    # Watch history

    @db_operation("add_to_watch_history")
    async def add_to_watch_history(self, data: WatchHistoryCreate) -> WatchHistory:
        async with self.session_factory.begin() as session:
            await self._require(session, User, "user", data.user_id)
            await self._require(session, Video, "video", data.video_id)
            entry = WatchHistory(**data.model_dump(exclude_none=True))
            session.add(entry)
        return entry

    @db_operation("get_watch_history")
    async def get_watch_history(
        self, user_id: str, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> List[WatchHistory]:
        return await self._all(
            select(WatchHistory)
            .where(WatchHistory.user_id == user_id)
            .order_by(col(WatchHistory.watched_at).desc())
            .offset(offset)
            .limit(limit)
        )

    @db_operation("clear_watch_history")
    async def clear_watch_history(self, user_id: str) -> bool:
        async with self.session_factory.begin() as session:
            result = await session.execute(
                delete(WatchHistory)
                .where(WatchHistory.user_id == user_id)
                .execution_options(synchronize_session=False)
            )
            affected = result.rowcount
        return affected > 0

    # Playlists

    @db_operation("get_playlist")
    async def get_playlist(self, playlist_id: str) -> Optional[Playlist]:
        return await self._get(Playlist, playlist_id)

    @db_operation("get_playlists_by_user")
    async def get_playlists_by_user(self, user_id: str) -> List[Playlist]:
        return await self._all(
            select(Playlist)
            .where(Playlist.user_id == user_id)
            .order_by(col(Playlist.created_at).desc())
        )

    @db_operation("create_playlist")
    async def create_playlist(self, data: PlaylistCreate) -> Playlist:
        async with self.session_factory.begin() as session:
            await self._require(session, User, "user", data.user_id)
            playlist = Playlist(**data.model_dump())
            session.add(playlist)
        return playlist

    @db_operation("update_playlist")
    async def update_playlist(
        self, playlist_id: str, updates: PlaylistUpdate
    ) -> Optional[Playlist]:
        return await self._patch(
            Playlist, playlist_id, changed_fields(updates), touch=True
        )

    @db_operation("delete_playlist")
    async def delete_playlist(self, playlist_id: str) -> bool:
        async with self.session_factory.begin() as session:
            await session.execute(
                delete(PlaylistVideo)
                .where(PlaylistVideo.playlist_id == playlist_id)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(
                delete(Playlist)
                .where(Playlist.id == playlist_id)
                .execution_options(synchronize_session=False)
            )
            affected = result.rowcount
        return affected > 0

    @db_operation("add_video_to_playlist")
    async def add_video_to_playlist(self, data: PlaylistVideoCreate) -> PlaylistVideo:
        same_pair = (
            PlaylistVideo.playlist_id == data.playlist_id,
            PlaylistVideo.video_id == data.video_id,
        )
        async with self.session_factory.begin() as session:
            await self._require(session, Playlist, "playlist", data.playlist_id)
            await self._require(session, Video, "video", data.video_id)

            position = data.position
            if position is None:
                position = (
                    await session.execute(
                        select(func.coalesce(func.max(PlaylistVideo.position), -1)).where(
                            PlaylistVideo.playlist_id == data.playlist_id
                        )
                    )
                ).scalar_one() + 1

            await session.execute(
                self._insert(PlaylistVideo)
                .values(
                    id=new_id(),
                    playlist_id=data.playlist_id,
                    video_id=data.video_id,
                    position=position,
                    added_at=utcnow(),
                )
                .on_conflict_do_nothing(index_elements=["playlist_id", "video_id"])
            )
            result = await session.execute(select(PlaylistVideo).where(*same_pair))
            return result.scalar_one()

    @db_operation("remove_video_from_playlist")
    async def remove_video_from_playlist(self, playlist_id: str, video_id: str) -> bool:
        async with self.session_factory.begin() as session:
            result = await session.execute(
                delete(PlaylistVideo)
                .where(
                    PlaylistVideo.playlist_id == playlist_id,
                    PlaylistVideo.video_id == video_id,
                )
                .execution_options(synchronize_session=False)
            )
            affected = result.rowcount
        return affected > 0

    @db_operation("get_playlist_videos")
    async def get_playlist_videos(self, playlist_id: str) -> List[PlaylistVideo]:
        return await self._all(
            select(PlaylistVideo)
            .where(PlaylistVideo.playlist_id == playlist_id)
            .order_by(col(PlaylistVideo.position), col(PlaylistVideo.added_at))
        )

    # Notifications

    @db_operation("get_notification")
    async def get_notification(self, notification_id: str) -> Optional[Notification]:
        return await self._get(Notification, notification_id)

    @db_operation("get_notifications")
    async def get_notifications(
        self, user_id: str, limit: int = DEFAULT_PAGE_SIZE, unread_only: bool = False
    ) -> List[Notification]:
        statement = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            statement = statement.where(col(Notification.is_read).is_(False))
        return await self._all(
            statement.order_by(col(Notification.created_at).desc()).limit(limit)
        )

    @db_operation("create_notification")
    async def create_notification(self, data: NotificationCreate) -> Notification:
        async with self.session_factory.begin() as session:
            await self._require(session, User, "user", data.user_id)
            notification = Notification(**data.model_dump())
            session.add(notification)
        return notification

    @db_operation("mark_notification_read")
    async def mark_notification_read(
        self, notification_id: str
    ) -> Optional[Notification]:
        return await self._patch(Notification, notification_id, {"is_read": True})

    @db_operation("mark_all_notifications_read")
    async def mark_all_notifications_read(self, user_id: str) -> int:
        async with self.session_factory.begin() as session:
            result = await session.execute(
                update(Notification)
                .where(
                    Notification.user_id == user_id,
                    col(Notification.is_read).is_(False),
                )
                .values(is_read=True)
                .execution_options(synchronize_session=False)
            )
            affected = result.rowcount
        return affected

    @db_operation("get_unread_notification_count")
    async def get_unread_notification_count(self, user_id: str) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(Notification)
                .where(
                    Notification.user_id == user_id,
                    col(Notification.is_read).is_(False),
                )
            )
            return result.scalar_one()
