#!/usr/bin/env python3
"""
Seed script — fills the feed with golfers and played rounds.

Creates:
  • 10 golfer profiles
  • 3 rounds per golfer (30 total), some without GIR or a full 18
  • Likes across rounds, written the way the app does: ledger entry
    plus an overwrite of like_count

Run against a running API:
  python scripts/seed_data.py --api-url http://localhost:8000
"""
import argparse
import json
import random
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Optional


GOLFERS = [
    # (user_id, username, display name, handicap)
    ("seed-1", "golfpro_mike", "Mike Johnson", 2.5),
    ("seed-2", "sarah_golfs", "Sarah Williams", 8.2),
    ("seed-3", "scottish_links", "James MacLeod", 12.0),
    ("seed-4", "weekend_warrior", "Lisa Chen", 18.5),
    ("seed-5", "tiger_woods_fan", "David Rodriguez", 15.3),
    ("seed-6", "quick_nine", "Emma Thompson", 6.8),
    ("seed-7", "black_course_beast", "Robert Garcia", 22.1),
    ("seed-8", "pinehurst_player", "Amanda Foster", 11.7),
    ("seed-9", "straits_survivor", "Kevin O'Brien", None),
    ("seed-10", "oakmont_grinder", "Priya Patel", 4.1),
]

COURSES = [
    "Pebble Beach Golf Links",
    "Augusta National Golf Club",
    "St. Andrews Links",
    "Torrey Pines Golf Course",
    "TPC Sawgrass",
    "Riviera Country Club",
    "Bethpage Black",
    "Pinehurst No. 2",
    "Whistling Straits",
    "Oakmont Country Club",
]


@dataclass
class ApiClient:
    base_url: str

    def request(self, method: str, path: str, user_id: Optional[str] = None, data: Optional[dict] = None) -> dict:
        url = f"{self.base_url}{path}"
        headers = {"Content-Type": "application/json"}
        if user_id:
            headers["X-User-Id"] = user_id
        body = json.dumps(data).encode() if data is not None else None
        req = urllib.request.Request(url, data=body, headers=headers, method=method)
        try:
            with urllib.request.urlopen(req, timeout=10) as resp:
                raw = resp.read()
                return json.loads(raw) if raw else {}
        except urllib.error.HTTPError as e:
            print(f"  HTTP {e.code} on {method} {path}: {e.read().decode()}")
            return {}

    def get(self, path: str) -> dict:
        return self.request("GET", path)


def wait_for_api(client: ApiClient, retries: int = 15) -> None:
    print(f"Waiting for API at {client.base_url} ...")
    for _ in range(retries):
        try:
            if client.get("/health").get("status") == "ok":
                print("  API is ready!\n")
                return
        except urllib.error.URLError:
            pass
        time.sleep(3)
    raise RuntimeError(f"API not reachable at {client.base_url} after {retries} retries")


def random_round(handicap: Optional[float]) -> dict:
    holes = random.choice(["18", "18", "18", "9"])
    par = 72 if holes == "18" else 36
    strokes = par + round((handicap or 20.0) * (1 if holes == "18" else 0.5)) + random.randint(-3, 6)
    gir = "" if random.random() < 0.3 else str(random.randint(2, int(holes)))
    return {
        "title": random.choice(COURSES),
        "score": str(strokes),
        "holes": holes,
        "greens_in_regulation": gir,
    }


def main(api_url: str) -> None:
    client = ApiClient(api_url)
    wait_for_api(client)

    # ── Create golfers ───────────────────────────────────────────────────
    print("Creating golfer profiles...")
    user_ids: list[str] = []
    for user_id, username, display_name, handicap in GOLFERS:
        result = client.request(
            "POST", "/users/", user_id,
            {"username": username, "display_name": display_name, "handicap": handicap},
        )
        if result.get("user_id"):
            user_ids.append(user_id)
            print(f"  ✓ {username} (handicap {result.get('handicap_display')})")
        else:
            print(f"  ✗ Failed to create {username}")

    if not user_ids:
        print("No golfers created — aborting")
        return

    # ── Share rounds ─────────────────────────────────────────────────────
    print("\nSharing rounds...")
    posts: list[tuple[str, str]] = []
    handicaps = {g[0]: g[3] for g in GOLFERS}
    for user_id in user_ids:
        for _ in range(3):
            result = client.request("POST", "/posts/", user_id, random_round(handicaps[user_id]))
            if result.get("post_id"):
                posts.append((user_id, result["post_id"]))
    print(f"  ✓ {len(posts)} rounds shared")

    # ── Likes ────────────────────────────────────────────────────────────
    print("\nAdding likes...")
    likes = 0
    for author_id, post_id in posts:
        fans = random.sample([u for u in user_ids if u != author_id], k=random.randint(0, 4))
        for fan_id in fans:
            client.request("PUT", f"/posts/{author_id}/{post_id}/likes/{fan_id}", fan_id)
        if fans:
            client.request(
                "PUT", f"/posts/{author_id}/{post_id}/like-count", fans[-1], {"like_count": len(fans)}
            )
        likes += len(fans)
    print(f"  ✓ {likes} likes added")

    # ── Print summary ────────────────────────────────────────────────────
    print("\n" + "=" * 60)
    print("Seed complete! Here are some commands to try:\n")
    u = user_ids[0]
    print("# Global feed as the first golfer:")
    print(f"  curl -s -H 'X-User-Id: {u}' '{api_url}/feed/' | python3 -m json.tool\n")
    print("# Their rounds grouped by course:")
    print(f"  curl -s '{api_url}/feed/users/{u}?mode=by_course' | python3 -m json.tool\n")
    print("# Live feed (server-sent events):")
    print(f"  curl -N '{api_url}/feed/stream'")
    print("=" * 60)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the TeeFeed service")
    parser.add_argument("--api-url", default="http://localhost:8000", help="API base URL")
    args = parser.parse_args()
    main(args.api_url)
