"""Tests for timeline composition and its page cache."""

import pytest

from chirp.models import Like
from chirp.services.notifications import NotificationService
from chirp.services.social_graph import SocialGraphService
from chirp.services.timeline import TimelineService
from chirp.services.tweets import TweetService


@pytest.fixture
def timeline(db_session, cache):
    return TimelineService(db_session, cache)


@pytest.fixture
def graph(db_session, cache, notifications):
    return SocialGraphService(db_session, cache, notifications)


@pytest.fixture
def tweets(db_session, cache, notifications: NotificationService):
    return TweetService(db_session, cache, notifications)


class TestComposition:

    @pytest.mark.asyncio
    async def test_own_and_followed_newest_first(self, timeline, graph, make_user, make_tweet):
        alice = await make_user("alice")
        bob = await make_user("bob")
        carol = await make_user("carol")
        await graph.follow(alice.user_id, bob.user_id)

        await make_tweet(alice, "alice old", age=30)
        await make_tweet(bob, "bob middle", age=20)
        await make_tweet(carol, "carol unrelated", age=10)
        await make_tweet(bob, "bob newest", age=5)

        page = await timeline.get_timeline(alice.user_id, page=1, limit=10)

        assert [t.content for t in page.tweets] == ["bob newest", "bob middle", "alice old"]
        assert page.meta.total == 3

    @pytest.mark.asyncio
    async def test_replies_excluded(self, timeline, make_user, make_tweet):
        alice = await make_user("alice")
        root = await make_tweet(alice, "root", age=10)
        await make_tweet(alice, "reply", age=5, parent_id=root.tweet_id)

        page = await timeline.get_timeline(alice.user_id)

        assert [t.content for t in page.tweets] == ["root"]

    @pytest.mark.asyncio
    async def test_pagination(self, timeline, make_user, make_tweet):
        alice = await make_user("alice")
        for i in range(5):
            await make_tweet(alice, f"tweet {i}", age=100 - i)

        page = await timeline.get_timeline(alice.user_id, page=2, limit=2)

        assert [t.content for t in page.tweets] == ["tweet 2", "tweet 1"]
        assert page.meta.total == 5
        assert page.meta.total_pages == 3

    @pytest.mark.asyncio
    async def test_viewer_state_is_hydrated(self, timeline, make_user, make_tweet, db_session):
        alice = await make_user("alice")
        tweet = await make_tweet(alice, "like me")
        db_session.add(Like(user_id=alice.user_id, tweet_id=tweet.tweet_id))
        await db_session.flush()

        page = await timeline.get_timeline(alice.user_id)

        assert page.tweets[0].is_liked is True
        assert page.tweets[0].like_count == 1
        assert page.tweets[0].author.username == "alice"


class TestCache:

    @pytest.mark.asyncio
    async def test_second_read_served_from_cache(self, timeline, cache, make_user, make_tweet):
        alice = await make_user("alice")
        await make_tweet(alice, "first")

        await timeline.get_timeline(alice.user_id)
        # Written directly to the store: a cached page does not see it
        await make_tweet(alice, "sneaky")
        page = await timeline.get_timeline(alice.user_id)

        assert [t.content for t in page.tweets] == ["first"]
        assert cache.hits == 1

    @pytest.mark.asyncio
    async def test_followed_author_tweet_invalidates(
        self, timeline, graph, tweets, make_user, make_tweet
    ):
        alice = await make_user("alice")
        bob = await make_user("bob")
        await graph.follow(alice.user_id, bob.user_id)
        await make_tweet(bob, "before", age=60)
        await timeline.get_timeline(alice.user_id)

        await tweets.create(bob.user_id, "after")
        page = await timeline.get_timeline(alice.user_id)

        assert [t.content for t in page.tweets] == ["after", "before"]

    @pytest.mark.asyncio
    async def test_unfollow_invalidates(self, timeline, graph, make_user, make_tweet):
        alice = await make_user("alice")
        bob = await make_user("bob")
        await graph.follow(alice.user_id, bob.user_id)
        await make_tweet(bob, "bob says hi")
        assert len((await timeline.get_timeline(alice.user_id)).tweets) == 1

        await graph.unfollow(alice.user_id, bob.user_id)

        assert (await timeline.get_timeline(alice.user_id)).tweets == []

    @pytest.mark.asyncio
    async def test_invalidate_followers(self, timeline, graph, cache, make_user):
        author = await make_user("author")
        fans = [await make_user(f"fan{i}") for i in range(2)]
        for fan in fans:
            await graph.follow(fan.user_id, author.user_id)
            await cache.set_timeline(fan.user_id, 1, 10, {"tweets": []})
            await cache.set_timeline(fan.user_id, 2, 10, {"tweets": []})

        removed = await timeline.invalidate_followers(author.user_id)

        assert removed == 4
        for fan in fans:
            assert await cache.get_timeline(fan.user_id, 1, 10) is None
