"""HTTP surface: routing, auth, status codes and the error envelope."""

from datetime import datetime, timedelta, timezone

import pytest

from chirp.config import settings

from conftest import auth, connect


class TestErrorEnvelope:

    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.get("/users/me")

        assert response.status_code == 401
        body = response.json()
        assert body["statusCode"] == 401
        assert body["path"] == "/users/me"
        assert body["message"] == "Unauthorized"
        assert body["err"] == "Missing credentials"
        assert "timestamp" in body

    @pytest.mark.asyncio
    async def test_legacy_status_remap(self, client, create_users, monkeypatch):
        monkeypatch.setattr(settings, "legacy_error_status", True)
        alice_id, bob_id = await create_users("alice", "bob")
        created = await client.post("/tweets", json={"content": "mine"}, headers=auth(alice_id))

        unauthorized = await client.get("/users/me")
        forbidden = await client.delete(f"/tweets/{created.json()['id']}", headers=auth(bob_id))
        not_found = await client.get("/tweets/missing")

        assert unauthorized.status_code == 200
        assert unauthorized.json()["statusCode"] == 401
        assert forbidden.status_code == 200
        assert forbidden.json()["statusCode"] == 403
        assert not_found.status_code == 404

    @pytest.mark.asyncio
    async def test_not_found(self, client):
        response = await client.get("/tweets/missing")

        assert response.status_code == 404
        assert response.json()["err"] == "Tweet not found"

    @pytest.mark.asyncio
    async def test_validation_error(self, client):
        response = await client.post("/users", json={"username": "ab"})

        assert response.status_code == 422
        body = response.json()
        assert body["statusCode"] == 422
        assert isinstance(body["err"], list)

    @pytest.mark.asyncio
    async def test_conflict(self, client, create_users):
        alice_id, bob_id = await create_users("alice", "bob")
        expires = (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat()
        created = await client.post(
            "/tweets/with-poll",
            json={
                "content": "pick",
                "poll": {"question": "?", "options": ["a", "b"], "expiresAt": expires},
            },
            headers=auth(alice_id),
        )
        poll_id = created.json()["poll"]["id"]

        first = await client.post(
            f"/tweets/poll/{poll_id}/vote", json={"optionIndex": 0}, headers=auth(bob_id)
        )
        second = await client.post(
            f"/tweets/poll/{poll_id}/vote", json={"optionIndex": 1}, headers=auth(bob_id)
        )

        assert first.status_code == 200
        assert first.json()["results"][0]["votes"] == 1
        assert second.status_code == 409


class TestFlows:

    @pytest.mark.asyncio
    async def test_follow_tweet_timeline(self, client, create_users, gateway):
        alice_id, bob_id = await create_users("alice", "bob")
        websocket, _ = await connect(gateway, bob_id)

        followed = await client.post(f"/users/{bob_id}/follow", headers=auth(alice_id))
        again = await client.post(f"/users/{bob_id}/follow", headers=auth(alice_id))
        await client.post("/tweets", json={"content": "hello #world"}, headers=auth(bob_id))
        timeline = await client.get("/tweets/timeline", headers=auth(alice_id))

        assert followed.json()["created"] is True
        assert again.json()["created"] is False
        assert [n["type"] for n in websocket.events("notification")] == ["FOLLOW"]
        body = timeline.json()
        assert [t["content"] for t in body["tweets"]] == ["hello #world"]
        assert body["tweets"][0]["hashtags"] == ["world"]
        assert body["meta"]["total"] == 1

    @pytest.mark.asyncio
    async def test_like_then_notifications(self, client, create_users):
        alice_id, bob_id = await create_users("alice", "bob")
        tweet = (await client.post("/tweets", json={"content": "hi"}, headers=auth(alice_id))).json()

        liked = await client.post(f"/tweets/{tweet['id']}/like", headers=auth(bob_id))
        unliked = await client.post(f"/tweets/{tweet['id']}/like", headers=auth(bob_id))
        unread = await client.get("/notifications/unread-count", headers=auth(alice_id))
        listing = await client.get("/notifications", headers=auth(alice_id))
        read_all = await client.post("/notifications/read-all", headers=auth(alice_id))

        assert liked.json()["status"] == "liked"
        assert unliked.json()["status"] == "unliked"
        assert unread.json() == {"count": 1}
        assert listing.json()["notifications"][0]["type"] == "LIKE"
        assert read_all.json() == {"count": 1}

    @pytest.mark.asyncio
    async def test_unfollow_without_edge(self, client, create_users):
        alice_id, bob_id = await create_users("alice", "bob")

        response = await client.post(f"/users/{bob_id}/unfollow", headers=auth(alice_id))

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_messages_and_bookmarks(self, client, create_users):
        alice_id, bob_id = await create_users("alice", "bob")

        sent = await client.post(
            f"/messages/{bob_id}", json={"content": "hey"}, headers=auth(alice_id)
        )
        conversations = await client.get("/messages/conversations", headers=auth(bob_id))
        tweet = (
            await client.post("/tweets", json={"content": "keep"}, headers=auth(alice_id))
        ).json()
        saved = await client.post(f"/bookmarks/{tweet['id']}", headers=auth(bob_id))
        listing = await client.get("/bookmarks", headers=auth(bob_id))

        assert sent.status_code == 201
        assert conversations.json()[0]["unreadCount"] == 1
        assert saved.json()["success"] is True
        assert listing.json()["tweets"][0]["isBookmarked"] is True

    @pytest.mark.asyncio
    async def test_poll_vote_refreshes_anonymous_detail(self, client, create_users):
        alice_id, bob_id = await create_users("alice", "bob")
        created = await client.post(
            "/tweets/with-poll",
            json={"content": "pick", "poll": {"question": "?", "options": ["a", "b"]}},
            headers=auth(alice_id),
        )
        tweet = created.json()
        option_id = tweet["poll"]["results"][0]["id"]
        await client.get(f"/tweets/{tweet['id']}")

        voted = await client.post(
            f"/polls/{tweet['poll']['id']}/vote/{option_id}", headers=auth(bob_id)
        )
        detail = await client.get(f"/tweets/{tweet['id']}")

        assert voted.status_code == 201
        assert detail.json()["poll"]["totalVotes"] == 1
        assert detail.json()["poll"]["results"][0]["votes"] == 1

    @pytest.mark.asyncio
    async def test_search_and_health(self, client, create_users):
        await create_users("redis_fan")

        found = await client.get("/search", params={"q": "redis"})
        health = await client.get("/health")

        assert [u["username"] for u in found.json()["users"]] == ["redis_fan"]
        assert health.json()["status"] == "ok"
