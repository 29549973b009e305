import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from core.exceptions import DuplicateEntryError, InvalidReferenceError
from core.models import (
    ChannelUpdate,
    CommentCreate,
    CommentUpdate,
    NotificationCreate,
    PlaylistCreate,
    PlaylistUpdate,
    PlaylistVideoCreate,
    SpaceCreate,
    SpaceUpdate,
    UserCreate,
    UserUpdate,
    UserUpsert,
    VideoUpdate,
    WatchHistoryCreate,
)
from repository.base import derive_is_shorts


@pytest.mark.unit
class TestDeriveIsShorts:
    """Test the shorts rule applied when a video is published."""

    @pytest.mark.parametrize("duration", ["0:30", "0:05", "0:59", " 0:10 "])
    def test_short_durations(self, duration):
        assert derive_is_shorts(duration) is True

    @pytest.mark.parametrize("duration", ["1:00", "0:60", "10:00", "1:02:03", "abc", "0:xx", ""])
    def test_regular_durations(self, duration):
        assert derive_is_shorts(duration) is False


class TestUsers:
    """User persistence on every backend."""

    @pytest.mark.asyncio
    async def test_create_user_applies_defaults(self, repository):
        """A new user gets an id, the email provider and an empty blocked list."""
        user = await repository.create_user(UserCreate(username="alice", email="a@example.com"))

        assert user.id
        assert user.auth_provider == "email"
        assert user.personal_mode is False
        assert user.blocked_channels == []
        assert (await repository.get_user(user.id)).username == "alice"
        assert (await repository.get_user_by_email("a@example.com")).id == user.id
        assert (await repository.get_user_by_username("alice")).id == user.id

    @pytest.mark.asyncio
    async def test_unknown_user_is_none(self, repository):
        assert await repository.get_user("missing") is None
        assert await repository.get_user_by_email("nobody@example.com") is None

    @pytest.mark.asyncio
    async def test_duplicate_username_rejected(self, repository, make_user):
        await make_user(repository, "alice")

        with pytest.raises(DuplicateEntryError):
            await repository.create_user(UserCreate(username="alice"))

    @pytest.mark.asyncio
    async def test_update_user_only_touches_supplied_fields(self, repository, make_user):
        user = await make_user(repository, "alice")

        updated = await repository.update_user(user.id, UserUpdate(personal_mode=True))

        assert updated.personal_mode is True
        assert updated.username == "alice"
        assert updated.email == "alice@example.com"

    @pytest.mark.asyncio
    async def test_update_missing_user_returns_none(self, repository):
        assert await repository.update_user("missing", UserUpdate(first_name="X")) is None

    @pytest.mark.asyncio
    async def test_upsert_user_inserts_then_merges(self, repository):
        """A second upsert keeps fields it does not mention."""
        created = await repository.upsert_user(
            UserUpsert(id="oidc-42", email="p@example.com", first_name="Pat", auth_provider="oidc")
        )
        assert created.id == "oidc-42"
        assert created.blocked_channels == []

        merged = await repository.upsert_user(UserUpsert(id="oidc-42", first_name="Patricia"))

        assert merged.first_name == "Patricia"
        assert merged.email == "p@example.com"
        assert merged.auth_provider == "oidc"

    @pytest.mark.asyncio
    async def test_blocking_is_idempotent(self, repository, make_user):
        user = await make_user(repository)

        assert await repository.block_channel(user.id, "ch-1") is True
        assert await repository.block_channel(user.id, "ch-1") is True
        assert await repository.get_blocked_channels(user.id) == ["ch-1"]

        assert await repository.unblock_channel(user.id, "ch-1") is True
        assert await repository.unblock_channel(user.id, "ch-1") is True
        assert await repository.get_blocked_channels(user.id) == []

    @pytest.mark.asyncio
    async def test_blocking_for_unknown_user(self, repository):
        assert await repository.block_channel("missing", "ch-1") is False
        assert await repository.get_blocked_channels("missing") == []


class TestChannels:
    """Channel persistence on every backend."""

    @pytest.mark.asyncio
    async def test_channel_defaults(self, repository, make_user, make_channel):
        user = await make_user(repository)
        channel = await make_channel(repository, user)

        assert channel.verified is False
        assert channel.subscribers == 0
        assert (await repository.get_channel_by_user_id(user.id)).id == channel.id
        assert (await repository.get_channel_by_username("gaminghub")).id == channel.id

    @pytest.mark.asyncio
    async def test_channel_for_unknown_user_rejected(self, repository, make_channel):
        ghost = UserCreate(username="ghost")
        ghost.id = "no-such-user"

        with pytest.raises(InvalidReferenceError):
            await make_channel(repository, ghost)

    @pytest.mark.asyncio
    async def test_duplicate_handle_rejected(self, repository, make_user, make_channel):
        await make_channel(repository, await make_user(repository, "alice"), "handle")

        with pytest.raises(DuplicateEntryError) as exc_info:
            await make_channel(repository, await make_user(repository, "bob"), "handle")

        assert exc_info.value.message == "Channel handle is already taken"

    @pytest.mark.asyncio
    async def test_one_channel_per_user(self, repository, make_user, make_channel):
        """The storage layer itself refuses a second channel for the same owner."""
        user = await make_user(repository)
        first = await make_channel(repository, user, "first")

        with pytest.raises(DuplicateEntryError) as exc_info:
            await make_channel(repository, user, "second")

        assert exc_info.value.message == "User already has a channel"
        assert exc_info.value.details == {"field": "user_id"}
        assert [c.id for c in await repository.get_all_channels()] == [first.id]
        assert await repository.get_channel_by_username("second") is None

    @pytest.mark.asyncio
    async def test_update_channel(self, repository, make_user, make_channel):
        channel = await make_channel(repository, await make_user(repository))

        updated = await repository.update_channel(
            channel.id, ChannelUpdate(description="Let's play")
        )

        assert updated.description == "Let's play"
        assert updated.name == "Gaming Hub"
        assert await repository.update_channel("missing", ChannelUpdate(name="x")) is None


class TestVideos:
    """Video queries and counters on every backend."""

    @pytest.mark.asyncio
    async def test_videos_newest_first_with_limit(
        self, repository, make_user, make_channel, make_video
    ):
        channel = await make_channel(repository, await make_user(repository))
        base = datetime(2024, 1, 1)
        for day, title in enumerate(["oldest", "middle", "newest"]):
            await make_video(repository, channel, title, uploaded_at=base + timedelta(days=day))

        videos = await repository.get_videos()
        assert [v.title for v in videos] == ["newest", "middle", "oldest"]
        assert videos[0].channel.id == channel.id

        limited = await repository.get_videos(limit=2)
        assert [v.title for v in limited] == ["newest", "middle"]

    @pytest.mark.asyncio
    async def test_timestamps_read_back_as_aware_utc(
        self, repository, make_user, make_channel, make_video
    ):
        channel = await make_channel(repository, await make_user(repository))
        local = datetime(2024, 3, 1, 12, 0, tzinfo=timezone(timedelta(hours=-5)))
        await make_video(repository, channel, "local", uploaded_at=local)
        await make_video(repository, channel, "now")

        videos = await repository.get_videos()

        assert [v.title for v in videos] == ["now", "local"]
        assert videos[1].uploaded_at == datetime(2024, 3, 1, 17, 0, tzinfo=timezone.utc)
        assert all(v.uploaded_at.utcoffset() == timedelta(0) for v in videos)
        assert channel.created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_category_filter_is_exact(self, repository, make_user, make_channel, make_video):
        channel = await make_channel(repository, await make_user(repository))
        await make_video(repository, channel, "Boss fight", category="gaming")
        await make_video(repository, channel, "Sourdough", category="cooking")

        videos = await repository.get_videos(category="gaming")

        assert [v.title for v in videos] == ["Boss fight"]
        assert await repository.get_videos(category="Gaming") == []

    @pytest.mark.asyncio
    async def test_search_matches_title_and_description(
        self, repository, make_user, make_channel, make_video
    ):
        channel = await make_channel(repository, await make_user(repository))
        await make_video(repository, channel, "Any% SPEEDRUN")
        await make_video(repository, channel, "Vlog", description="a speedrun attempt")
        await make_video(repository, channel, "Unrelated")

        titles = {v.title for v in await repository.search_videos("speedrun")}

        assert titles == {"Any% SPEEDRUN", "Vlog"}

    @pytest.mark.asyncio
    async def test_videos_by_channels(self, repository, make_user, make_channel, make_video):
        first = await make_channel(repository, await make_user(repository, "alice"), "one")
        second = await make_channel(repository, await make_user(repository, "bob"), "two")
        third = await make_channel(repository, await make_user(repository, "carol"), "three")
        await make_video(repository, first, "A")
        await make_video(repository, second, "B")
        await make_video(repository, third, "C")

        videos = await repository.get_videos_by_channels([first.id, second.id])

        assert {v.title for v in videos} == {"A", "B"}
        assert await repository.get_videos_by_channels([]) == []

    @pytest.mark.asyncio
    async def test_create_video_for_unknown_channel(self, repository, make_video):
        class Missing:
            id = "no-such-channel"

        with pytest.raises(InvalidReferenceError):
            await make_video(repository, Missing())

    @pytest.mark.asyncio
    async def test_update_video(self, repository, make_user, make_channel, make_video):
        video = await make_video(
            repository, await make_channel(repository, await make_user(repository))
        )

        updated = await repository.update_video(video.id, VideoUpdate(title="Renamed"))

        assert updated.title == "Renamed"
        assert updated.duration == "10:00"

    @pytest.mark.asyncio
    async def test_concurrent_view_increments_are_not_lost(
        self, repository, make_user, make_channel, make_video
    ):
        video = await make_video(
            repository, await make_channel(repository, await make_user(repository))
        )

        results = await asyncio.gather(
            *[repository.increment_view_count(video.id) for _ in range(10)]
        )

        assert all(results)
        assert (await repository.get_video(video.id)).views == 10

    @pytest.mark.asyncio
    async def test_increment_unknown_video(self, repository):
        assert await repository.increment_view_count("missing") is False

    @pytest.mark.asyncio
    async def test_delete_video_removes_dependents(
        self, repository, make_user, make_channel, make_video
    ):
        """Deleting a video takes its comments, reactions, history and playlist entries along."""
        user = await make_user(repository)
        video = await make_video(repository, await make_channel(repository, user))
        await repository.create_comment(
            CommentCreate(video_id=video.id, user_id=user.id, content="first")
        )
        await repository.toggle_like(user.id, video.id, "like")
        await repository.add_to_watch_history(
            WatchHistoryCreate(user_id=user.id, video_id=video.id, watch_duration=30)
        )
        playlist = await repository.create_playlist(PlaylistCreate(name="Later", user_id=user.id))
        await repository.add_video_to_playlist(
            PlaylistVideoCreate(playlist_id=playlist.id, video_id=video.id)
        )

        assert await repository.delete_video(video.id) is True

        assert await repository.get_video(video.id) is None
        assert await repository.get_comments_by_video(video.id) == []
        counts = await repository.get_like_counts(video.id)
        assert (counts.likes, counts.dislikes) == (0, 0)
        assert await repository.get_watch_history(user.id) == []
        assert await repository.get_playlist_videos(playlist.id) == []
        assert await repository.delete_video(video.id) is False


class TestSubscriptions:
    """Subscriptions keep the channel counter in step."""

    @pytest.mark.asyncio
    async def test_subscribe_is_idempotent(self, repository, make_user, make_channel):
        owner = await make_user(repository, "owner")
        fan = await make_user(repository, "fan")
        channel = await make_channel(repository, owner)

        first = await repository.subscribe(fan.id, channel.id)
        second = await repository.subscribe(fan.id, channel.id)

        assert first.id == second.id
        assert (await repository.get_channel(channel.id)).subscribers == 1
        assert await repository.is_subscribed(fan.id, channel.id) is True
        assert [s.channel_id for s in await repository.get_subscriptions(fan.id)] == [channel.id]
        assert [s.user_id for s in await repository.get_subscribers(channel.id)] == [fan.id]

    @pytest.mark.asyncio
    async def test_unsubscribe_decrements_once(self, repository, make_user, make_channel):
        fan = await make_user(repository, "fan")
        channel = await make_channel(repository, await make_user(repository, "owner"))
        await repository.subscribe(fan.id, channel.id)

        assert await repository.unsubscribe(fan.id, channel.id) is True
        assert await repository.unsubscribe(fan.id, channel.id) is False
        assert (await repository.get_channel(channel.id)).subscribers == 0
        assert await repository.is_subscribed(fan.id, channel.id) is False

    @pytest.mark.asyncio
    async def test_subscribe_to_unknown_channel(self, repository, make_user):
        fan = await make_user(repository, "fan")

        with pytest.raises(InvalidReferenceError):
            await repository.subscribe(fan.id, "no-such-channel")


class TestSpaces:
    """Spaces derive their channels and video count on read."""

    @pytest.mark.asyncio
    async def test_space_video_count_follows_membership(
        self, repository, make_user, make_channel, make_video
    ):
        viewer = await make_user(repository, "viewer")
        first = await make_channel(repository, await make_user(repository, "alice"), "one")
        second = await make_channel(repository, await make_user(repository, "bob"), "two")
        await make_video(repository, first, "A1")
        await make_video(repository, first, "A2")
        await make_video(repository, second, "B1")

        space = await repository.create_space(
            SpaceCreate(name="Games", user_id=viewer.id, channel_ids=[first.id, second.id, "gone"])
        )
        [listed] = await repository.get_spaces_by_user(viewer.id)
        assert listed.id == space.id
        assert listed.color == "blue"
        assert {c.id for c in listed.channels} == {first.id, second.id}
        assert listed.video_count == 3

        await repository.update_space(space.id, SpaceUpdate(channel_ids=[second.id]))
        [listed] = await repository.get_spaces_by_user(viewer.id)
        assert [c.id for c in listed.channels] == [second.id]
        assert listed.video_count == 1

    @pytest.mark.asyncio
    async def test_delete_space(self, repository, make_user):
        user = await make_user(repository)
        space = await repository.create_space(SpaceCreate(name="Music", user_id=user.id))

        assert await repository.delete_space(space.id) is True
        assert await repository.delete_space(space.id) is False
        assert await repository.get_spaces_by_user(user.id) == []


class TestComments:
    """Comment paging, replies and counters."""

    @pytest.mark.asyncio
    async def test_comments_sorted_and_paged(
        self, repository, make_user, make_channel, make_video
    ):
        user = await make_user(repository)
        video = await make_video(repository, await make_channel(repository, user))
        base = datetime(2024, 1, 1)
        created = []
        for minute in range(3):
            created.append(
                await repository.create_comment(
                    CommentCreate(
                        video_id=video.id,
                        user_id=user.id,
                        content=f"c{minute}",
                        created_at=base + timedelta(minutes=minute),
                    )
                )
            )
        await repository.like_comment(created[0].id)
        await repository.like_comment(created[0].id)

        newest = await repository.get_comments_by_video(video.id)
        assert [c.content for c in newest] == ["c2", "c1", "c0"]

        page = await repository.get_comments_by_video(video.id, limit=1, offset=1)
        assert [c.content for c in page] == ["c1"]

        by_likes = await repository.get_comments_by_video(video.id, sort_by="likes")
        assert by_likes[0].content == "c0"
        assert by_likes[0].likes == 2

    @pytest.mark.asyncio
    async def test_reply_must_belong_to_same_video(
        self, repository, make_user, make_channel, make_video
    ):
        user = await make_user(repository)
        channel = await make_channel(repository, user)
        first = await make_video(repository, channel, "first")
        second = await make_video(repository, channel, "second")
        parent = await repository.create_comment(
            CommentCreate(video_id=first.id, user_id=user.id, content="parent")
        )

        with pytest.raises(InvalidReferenceError):
            await repository.create_comment(
                CommentCreate(
                    video_id=second.id, user_id=user.id, content="reply", parent_id=parent.id
                )
            )

    @pytest.mark.asyncio
    async def test_update_and_delete_comment_with_replies(
        self, repository, make_user, make_channel, make_video
    ):
        user = await make_user(repository)
        video = await make_video(repository, await make_channel(repository, user))
        parent = await repository.create_comment(
            CommentCreate(video_id=video.id, user_id=user.id, content="parent")
        )
        await repository.create_comment(
            CommentCreate(video_id=video.id, user_id=user.id, content="reply", parent_id=parent.id)
        )

        edited = await repository.update_comment(parent.id, CommentUpdate(content="edited"))
        assert edited.content == "edited"

        assert await repository.delete_comment(parent.id) is True
        assert await repository.get_comments_by_video(video.id) == []
        assert await repository.like_comment(parent.id) is None


class TestLikes:
    """The reaction toggle."""

    @pytest.mark.asyncio
    async def test_toggle_law(self, repository, make_user, make_channel, make_video):
        """Same reaction twice removes it; the opposite one replaces it."""
        user = await make_user(repository)
        video = await make_video(repository, await make_channel(repository, user))

        like = await repository.toggle_like(user.id, video.id, "like")
        assert like.type == "like"
        assert (await repository.get_like_counts(video.id)).likes == 1

        assert await repository.toggle_like(user.id, video.id, "like") is None
        assert await repository.get_user_like(user.id, video.id) is None

        await repository.toggle_like(user.id, video.id, "like")
        flipped = await repository.toggle_like(user.id, video.id, "dislike")
        assert flipped.type == "dislike"

        counts = await repository.get_like_counts(video.id)
        assert (counts.likes, counts.dislikes) == (0, 1)
        assert (await repository.get_user_like(user.id, video.id)).type == "dislike"

    @pytest.mark.asyncio
    async def test_like_unknown_video(self, repository, make_user):
        user = await make_user(repository)

        with pytest.raises(InvalidReferenceError):
            await repository.toggle_like(user.id, "no-such-video", "like")


class TestWatchHistory:
    """Watch history paging and clearing."""

    @pytest.mark.asyncio
    async def test_history_newest_first(self, repository, make_user, make_channel, make_video):
        user = await make_user(repository)
        channel = await make_channel(repository, user)
        first = await make_video(repository, channel, "first")
        second = await make_video(repository, channel, "second")
        base = datetime(2024, 1, 1)
        await repository.add_to_watch_history(
            WatchHistoryCreate(user_id=user.id, video_id=first.id, watched_at=base)
        )
        await repository.add_to_watch_history(
            WatchHistoryCreate(
                user_id=user.id, video_id=second.id, watched_at=base + timedelta(hours=1)
            )
        )

        history = await repository.get_watch_history(user.id)
        assert [h.video_id for h in history] == [second.id, first.id]
        assert [h.video_id for h in await repository.get_watch_history(user.id, 1, 1)] == [
            first.id
        ]

        assert await repository.clear_watch_history(user.id) is True
        assert await repository.clear_watch_history(user.id) is False


class TestPlaylists:
    """Playlists and their entries."""

    @pytest.mark.asyncio
    async def test_entries_are_unique_and_positioned(
        self, repository, make_user, make_channel, make_video
    ):
        user = await make_user(repository)
        channel = await make_channel(repository, user)
        first = await make_video(repository, channel, "first")
        second = await make_video(repository, channel, "second")
        playlist = await repository.create_playlist(PlaylistCreate(name="Later", user_id=user.id))

        entry = await repository.add_video_to_playlist(
            PlaylistVideoCreate(playlist_id=playlist.id, video_id=first.id)
        )
        again = await repository.add_video_to_playlist(
            PlaylistVideoCreate(playlist_id=playlist.id, video_id=first.id)
        )
        tail = await repository.add_video_to_playlist(
            PlaylistVideoCreate(playlist_id=playlist.id, video_id=second.id)
        )

        assert again.id == entry.id
        assert (entry.position, tail.position) == (0, 1)
        assert [e.video_id for e in await repository.get_playlist_videos(playlist.id)] == [
            first.id,
            second.id,
        ]

        assert await repository.remove_video_from_playlist(playlist.id, first.id) is True
        assert await repository.remove_video_from_playlist(playlist.id, first.id) is False

    @pytest.mark.asyncio
    async def test_update_and_delete_playlist(self, repository, make_user):
        user = await make_user(repository)
        playlist = await repository.create_playlist(PlaylistCreate(name="Later", user_id=user.id))

        updated = await repository.update_playlist(playlist.id, PlaylistUpdate(is_public=True))
        assert updated.is_public is True
        assert updated.name == "Later"
        assert [p.id for p in await repository.get_playlists_by_user(user.id)] == [playlist.id]

        assert await repository.delete_playlist(playlist.id) is True
        assert await repository.get_playlist(playlist.id) is None


class TestNotifications:
    """Notification inbox operations."""

    @pytest.mark.asyncio
    async def test_read_flags_and_counts(self, repository, make_user):
        user = await make_user(repository)
        for index in range(3):
            await repository.create_notification(
                NotificationCreate(user_id=user.id, type="new_video", title=f"n{index}")
            )

        assert await repository.get_unread_notification_count(user.id) == 3
        first = (await repository.get_notifications(user.id))[0]

        marked = await repository.mark_notification_read(first.id)
        assert marked.is_read is True
        assert len(await repository.get_notifications(user.id, unread_only=True)) == 2

        assert await repository.mark_all_notifications_read(user.id) == 2
        assert await repository.get_unread_notification_count(user.id) == 0
        assert await repository.mark_notification_read("missing") is None

    @pytest.mark.asyncio
    async def test_notification_for_unknown_user(self, repository):
        with pytest.raises(InvalidReferenceError):
            await repository.create_notification(
                NotificationCreate(user_id="missing", type="new_video", title="x")
            )
