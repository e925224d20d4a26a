#!/usr/bin/env python3
"""
Populate a running chirp API with demo users, follows, tweets, a poll and likes.

Creates:
  • 10 users
  • A follow graph (each user follows 4 others)
  • 5 tweets per user (50 total), hashtags extracted from content
  • A poll on the first user's first tweet
  • Some likes across tweets

Access tokens are minted locally with JWT_ACCESS_SECRET, which must match
the API's setting.

Usage:
  python scripts/seed_data.py --api-url http://localhost:8000

Prints a few curl and websocket commands for the first user at the end.
"""
import argparse
import json
import random
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from chirp.config import settings

BASE_USERS = [
    ("robin_red", "Robin Okafor"),
    ("wren_writes", "Wren Castillo"),
    ("finch_dev", "Mina Finch"),
    ("sparrow_ops", "Tomas Sparrow"),
    ("lark_labs", "Lena Lark"),
    ("jay_js", "Jay Patel"),
    ("starling_sql", "Ana Starling"),
    ("kestrel_k8s", "Omar Kestrel"),
    ("heron_http", "Hana Heron"),
    ("owl_oncall", "Noor Owl"),
]

SAMPLE_TWEETS = [
    "Just shipped a new feature to production 🚀 #shipping #devops",
    "TIL: Redis SCAN beats KEYS for pattern deletes on a live cluster. #redis",
    "Apache Kafka consumer groups are a masterclass in distributed coordination. #kafka",
    "Cache invalidation and naming things. Still the two hard problems. #programming",
    "Pull-on-read timelines with short TTLs are underrated. #architecture",
    "OpenTelemetry traces finally connected to Jaeger. So satisfying. #observability",
    "Prometheus metrics: the difference between knowing and guessing. #sre",
    "FastAPI + async SQLAlchemy is a joy to work with. #python",
    "Websockets for notifications: one tab or five, everyone gets the ping. #realtime",
    "Polls are the most engaging tweet format on our staging env. #product",
    "Unique constraints are the cheapest lock you will ever take. #databases",
    "Grafana dashboards are the first thing I build for any new service. #sre",
    "Just deployed with zero downtime using a rolling update. #kubernetes",
    "Writing tests with fakeredis feels like cheating. #python #testing",
    "Hashtags are just a many-to-many table with ambitions. #databases",
]


def mint_token(user_id: str) -> str:
    now = datetime.now(timezone.utc)
    return jwt.encode(
        {"sub": user_id, "iat": now, "exp": now + timedelta(hours=1)},
        settings.jwt_access_secret,
        algorithm=settings.jwt_algorithm,
    )


@dataclass
class ApiClient:
    base_url: str

    def request(
        self, method: str, path: str, data: Optional[dict] = None, user_id: Optional[str] = None
    ) -> dict:
        url = f"{self.base_url}{path}"
        headers = {"Content-Type": "application/json"}
        if user_id:
            headers["Authorization"] = f"Bearer {mint_token(user_id)}"
        body = json.dumps(data).encode() if data is not None else None
        req = urllib.request.Request(url, data=body, headers=headers, method=method)
        try:
            with urllib.request.urlopen(req, timeout=10) as resp:
                return json.loads(resp.read())
        except urllib.error.HTTPError as e:
            print(f"  HTTP {e.code} on {method} {path}: {e.read().decode()}")
            return {}

    def post(self, path: str, data: Optional[dict] = None, user_id: Optional[str] = None) -> dict:
        return self.request("POST", path, data, user_id)

    def get(self, path: str, user_id: Optional[str] = None) -> dict:
        return self.request("GET", path, user_id=user_id)


def wait_for_api(client: ApiClient, retries: int = 15) -> None:
    print(f"Waiting for API at {client.base_url} ...")
    for _ in range(retries):
        try:
            if client.get("/health").get("status") == "ok":
                print("  API is ready!\n")
                return
        except OSError:
            pass
        time.sleep(3)
    raise RuntimeError(f"API not reachable at {client.base_url} after {retries} retries")


def main(api_url: str) -> None:
    client = ApiClient(api_url)
    wait_for_api(client)

    # ── Create users ─────────────────────────────────────────────────────
    print("Creating users...")
    user_ids: list[str] = []
    for username, display_name in BASE_USERS:
        result = client.post(
            "/users",
            {"username": username, "email": f"{username}@example.com", "display_name": display_name},
        )
        uid = result.get("id", "")
        if uid:
            user_ids.append(uid)
            print(f"  ✓ {username} ({uid})")
        else:
            print(f"  ✗ Failed to create {username}")

    if not user_ids:
        print("No users created — aborting")
        return

    # ── Create follow graph ───────────────────────────────────────────────
    print("\nCreating follow relationships...")
    for follower_id in user_ids:
        followees = random.sample(
            [u for u in user_ids if u != follower_id], k=min(4, len(user_ids) - 1)
        )
        for followee_id in followees:
            client.post(f"/users/{followee_id}/follow", user_id=follower_id)
    print("  ✓ Follow graph created")

    # ── Create tweets ─────────────────────────────────────────────────────
    print("\nCreating tweets...")
    tweet_ids: list[str] = []
    random.shuffle(SAMPLE_TWEETS)
    idx = 0
    for user_id in user_ids:
        for _ in range(5):
            content = SAMPLE_TWEETS[idx % len(SAMPLE_TWEETS)]
            idx += 1
            result = client.post("/tweets", {"content": content}, user_id=user_id)
            tid = result.get("id", "")
            if tid:
                tweet_ids.append(tid)
    print(f"  ✓ {len(tweet_ids)} tweets created")

    # ── Create a poll ─────────────────────────────────────────────────────
    print("\nCreating a poll...")
    poll = client.post(
        "/tweets/with-poll",
        {
            "content": "Which cache eviction policy do you reach for first? #caching",
            "poll": {
                "question": "Favourite eviction policy?",
                "options": ["LRU", "LFU", "TTL only"],
                "expiresAt": (datetime.now(timezone.utc) + timedelta(days=1)).isoformat(),
            },
        },
        user_id=user_ids[0],
    )
    poll_id = (poll.get("poll") or {}).get("id", "")
    if poll_id:
        for voter_id in user_ids[1:]:
            client.post(
                f"/tweets/poll/{poll_id}/vote", {"optionIndex": random.randint(0, 2)}, voter_id
            )
        print(f"  ✓ Poll {poll_id} with {len(user_ids) - 1} votes")

    # ── Create some likes ─────────────────────────────────────────────────
    print("\nAdding likes...")
    likes = 0
    for tweet_id in tweet_ids:
        for user_id in random.sample(user_ids, k=random.randint(0, 5)):
            if client.post(f"/tweets/{tweet_id}/like", user_id=user_id):
                likes += 1
    print(f"  ✓ {likes} likes added")

    # ── Print summary ─────────────────────────────────────────────────────
    print("\n" + "=" * 60)
    print("Seed complete! Here are some commands to try:\n")
    u = user_ids[0]
    print(f"# Token for '{BASE_USERS[0][0]}':")
    print(f"  export TOKEN={mint_token(u)}\n")
    print("# Get their timeline:")
    print(f"  curl -s -H \"Authorization: Bearer $TOKEN\" '{api_url}/tweets/timeline'\n")
    print("# Post a tweet:")
    print(f"  curl -s -X POST '{api_url}/tweets' \\")
    print("    -H \"Authorization: Bearer $TOKEN\" -H 'Content-Type: application/json' \\")
    print("    -d '{\"content\": \"Hello world! #hello\"}'\n")
    print(f"# Listen for notifications: ws://{api_url.split('://', 1)[-1]}/ws/notifications?token=$TOKEN")
    print("# Check Jaeger traces: http://localhost:16686")
    print("# Check Prometheus: http://localhost:9090")
    print("=" * 60)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the Chirp API")
    parser.add_argument("--api-url", default="http://localhost:8000", help="API base URL")
    args = parser.parse_args()
    main(args.api_url)
