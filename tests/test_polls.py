"""Tests for poll creation, voting, results and end-of-poll announcements."""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from chirp.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from chirp.models import Notification, NotificationType, Poll, utcnow
from chirp.services import polls as polls_module
from chirp.services.polls import PollService


@pytest.fixture
def polls(db_session, cache, notifications):
    return PollService(db_session, cache, notifications)


@pytest.fixture
def open_poll(polls, make_user, make_tweet):
    async def _open_poll(options=("Red", "Green", "Blue")):
        owner = await make_user("owner")
        tweet = await make_tweet(owner, "Favourite colour?")
        results = await polls.create_poll(
            owner.user_id,
            tweet.tweet_id,
            "Favourite colour?",
            list(options),
            utcnow() + timedelta(days=1),
        )
        return owner, results

    return _open_poll


async def _expire(db_session, poll_id: str) -> None:
    poll = await db_session.get(Poll, poll_id)
    poll.expires_at = utcnow() - timedelta(seconds=1)
    await db_session.flush()


class TestCreatePoll:

    @pytest.mark.asyncio
    async def test_create_poll(self, open_poll):
        _, results = await open_poll()

        assert [r.text for r in results.results] == ["Red", "Green", "Blue"]
        assert results.total_votes == 0
        assert all(r.percentage == 0.0 for r in results.results)
        assert results.is_expired is False

    @pytest.mark.asyncio
    async def test_needs_two_options(self, polls, make_user, make_tweet):
        owner = await make_user("owner")
        tweet = await make_tweet(owner, "?")

        with pytest.raises(BadRequestError):
            await polls.create_poll(owner.user_id, tweet.tweet_id, "?", ["only", "  "])

    @pytest.mark.asyncio
    async def test_expiry_must_be_in_future(self, polls, make_user, make_tweet):
        owner = await make_user("owner")
        tweet = await make_tweet(owner, "?")

        with pytest.raises(BadRequestError):
            await polls.create_poll(
                owner.user_id, tweet.tweet_id, "?", ["a", "b"], utcnow() - timedelta(minutes=1)
            )

    @pytest.mark.asyncio
    async def test_only_tweet_owner(self, polls, make_user, make_tweet):
        owner = await make_user("owner")
        other = await make_user("other")
        tweet = await make_tweet(owner, "?")

        with pytest.raises(ForbiddenError):
            await polls.create_poll(other.user_id, tweet.tweet_id, "?", ["a", "b"])

    @pytest.mark.asyncio
    async def test_one_poll_per_tweet(self, polls, make_user, make_tweet):
        owner = await make_user("owner")
        tweet = await make_tweet(owner, "?")
        await polls.create_poll(owner.user_id, tweet.tweet_id, "?", ["a", "b"])

        with pytest.raises(ConflictError):
            await polls.create_poll(owner.user_id, tweet.tweet_id, "again?", ["c", "d"])


class TestVoting:

    @pytest.mark.asyncio
    async def test_vote_and_results(self, polls, open_poll, make_user):
        _, created = await open_poll()
        red, green, _ = [r.id for r in created.results]
        voters = [await make_user(f"voter{i}") for i in range(3)]

        await polls.vote(voters[0].user_id, created.id, red)
        await polls.vote(voters[1].user_id, created.id, red)
        await polls.vote(voters[2].user_id, created.id, green)

        results = await polls.get_results(created.id)
        assert results.total_votes == 3
        assert [r.votes for r in results.results] == [2, 1, 0]
        assert [r.percentage for r in results.results] == [66.67, 33.33, 0.0]

    @pytest.mark.asyncio
    async def test_second_vote_conflicts(self, polls, open_poll, make_user):
        _, created = await open_poll()
        red, green, _ = [r.id for r in created.results]
        voter = await make_user("voter")
        await polls.vote(voter.user_id, created.id, red)

        with pytest.raises(ConflictError):
            await polls.vote(voter.user_id, created.id, green)

        results = await polls.get_results(created.id)
        assert results.total_votes == 1

    @pytest.mark.asyncio
    async def test_vote_on_expired_poll(self, polls, open_poll, make_user, db_session):
        _, created = await open_poll()
        voter = await make_user("voter")
        await _expire(db_session, created.id)

        with pytest.raises(BadRequestError):
            await polls.vote(voter.user_id, created.id, created.results[0].id)

    @pytest.mark.asyncio
    async def test_vote_unknown_poll_and_option(self, polls, open_poll, make_user):
        _, created = await open_poll()
        voter = await make_user("voter")

        with pytest.raises(NotFoundError):
            await polls.vote(voter.user_id, "missing-poll", created.results[0].id)
        with pytest.raises(NotFoundError):
            await polls.vote(voter.user_id, created.id, "missing-option")

    @pytest.mark.asyncio
    async def test_vote_by_index(self, polls, open_poll, make_user):
        _, created = await open_poll()
        voter = await make_user("voter")

        results = await polls.vote_by_index(voter.user_id, created.id, 2)

        assert [r.votes for r in results.results] == [0, 0, 1]
        assert results.results[2].percentage == 100.0
        with pytest.raises(NotFoundError):
            await polls.vote_by_index(voter.user_id, created.id, 3)

    @pytest.mark.asyncio
    async def test_vote_race_conflicts(self, polls, open_poll, make_user, lose_insert_race):
        _, created = await open_poll()
        voter = await make_user("voter")
        lose_insert_race(polls_module)

        with pytest.raises(ConflictError):
            await polls.vote(voter.user_id, created.id, created.results[0].id)

        results = await polls.get_results(created.id)
        assert results.total_votes == 1

    @pytest.mark.asyncio
    async def test_vote_drops_cached_tweet_detail(self, polls, cache, make_user, make_tweet):
        owner = await make_user("owner")
        tweet = await make_tweet(owner, "Pick one")
        created = await polls.create_poll(owner.user_id, tweet.tweet_id, "?", ["a", "b"])
        await cache.set_tweet(tweet.tweet_id, {"id": tweet.tweet_id})
        voter = await make_user("voter")

        await polls.vote(voter.user_id, created.id, created.results[0].id)

        assert await cache.get_tweet(tweet.tweet_id) is None


class TestPollEnd:

    @pytest.mark.asyncio
    async def test_expired_poll_without_votes(self, polls, open_poll, db_session):
        _, created = await open_poll()
        await _expire(db_session, created.id)

        results = await polls.get_results(created.id)

        assert results.is_expired is True
        assert results.total_votes == 0
        assert [r.percentage for r in results.results] == [0.0, 0.0, 0.0]

    @pytest.mark.asyncio
    async def test_voters_notified_once_after_expiry(
        self, polls, open_poll, make_user, db_session
    ):
        owner, created = await open_poll()
        voters = [await make_user(f"voter{i}") for i in range(2)]
        for voter in voters:
            await polls.vote(voter.user_id, created.id, created.results[0].id)
        # The owner's own vote is never announced back to them
        await polls.vote(owner.user_id, created.id, created.results[1].id)
        await _expire(db_session, created.id)

        first = await polls.get_results(created.id)
        await polls.get_results(created.id)

        assert first.is_expired is True
        assert first.total_votes == 3
        result = await db_session.execute(
            select(Notification.receiver_id, Notification.sender_id).where(
                Notification.type == NotificationType.POLL_ENDED
            )
        )
        rows = result.all()
        assert sorted(r.receiver_id for r in rows) == sorted(v.user_id for v in voters)
        assert {r.sender_id for r in rows} == {owner.user_id}

    @pytest.mark.asyncio
    async def test_open_poll_does_not_announce(self, polls, open_poll, make_user, db_session):
        _, created = await open_poll()
        voter = await make_user("voter")
        await polls.vote(voter.user_id, created.id, created.results[0].id)

        await polls.get_results(created.id)

        total = await db_session.execute(select(func.count()).select_from(Notification))
        assert total.scalar_one() == 0
