"""Seed a demo account with folders and notes.

Signs up (or signs in) a demo user and creates a handful of folders and
notes through the HTTP API. Requires the API and PostgreSQL to be running.

Usage:
    python scripts/seed_data.py [--base-url http://localhost:8000]
"""

from __future__ import annotations

import argparse
import sys

import requests

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_EMAIL = "demo@notekeeper.local"
DEFAULT_PASSWORD = "demo-password"
TIMEOUT = 10

FOLDERS = ["Work", "Personal", "Reading"]

# Each entry: (folder name or None, title, content, tags, favorite)
NOTES: list[tuple[str | None, str, str, list[str], bool]] = [
    (
        "Work",
        "Sprint planning",
        "**Goals**\n- Ship folder support\n- Fix favorite rollback bug",
        ["planning", "team"],
        True,
    ),
    (
        "Work",
        "Retro notes",
        "What went well: faster reviews. What to improve: flaky tests.",
        ["team"],
        False,
    ),
    (
        "Personal",
        "Grocery list",
        "1. Eggs\n2. Milk\n3. Bread",
        ["shopping"],
        False,
    ),
    (
        "Reading",
        "Papers to read",
        "Attention Is All You Need; ReAct; Toolformer",
        ["papers", "ml"],
        True,
    ),
    (None, "Loose idea", "A note that belongs nowhere yet.", [], False),
]


def check_health(base_url: str) -> bool:
    """Verify the API is reachable and its database is connected."""
    try:
        resp = requests.get(f"{base_url}/health", timeout=TIMEOUT)
        return resp.json().get("database") == "connected"
    except requests.RequestException as e:
        print(f"  Health check failed: {e}")
        return False


def _auth(base_url: str, email: str, password: str) -> str:
    """Sign up, falling back to sign-in when the account exists."""
    creds = {"email": email, "password": password}
    resp = requests.post(f"{base_url}/auth/sign-up", json=creds, timeout=TIMEOUT)
    if resp.status_code == 409:
        resp = requests.post(f"{base_url}/auth/sign-in", json=creds, timeout=TIMEOUT)
    resp.raise_for_status()
    return resp.json()["access_token"]


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed Notekeeper with demo data")
    parser.add_argument("--base-url", default=DEFAULT_BASE_URL)
    parser.add_argument("--email", default=DEFAULT_EMAIL)
    parser.add_argument("--password", default=DEFAULT_PASSWORD)
    args = parser.parse_args()
    args.base_url = args.base_url.rstrip("/")

    if not check_health(args.base_url):
        print("  FAIL: API is not healthy. Is PostgreSQL running?")
        sys.exit(1)

    try:
        token = _auth(args.base_url, args.email, args.password)
    except requests.RequestException as e:
        print(f"  ERROR  could not authenticate: {e}")
        sys.exit(1)
    headers = {"Authorization": f"Bearer {token}"}

    folder_ids: dict[str, str] = {}
    for name in FOLDERS:
        resp = requests.post(
            f"{args.base_url}/folders", json={"name": name}, headers=headers, timeout=TIMEOUT
        )
        resp.raise_for_status()
        folder_ids[name] = resp.json()["id"]
        print(f"  OK     folder {name}")

    failures = 0
    for folder, title, content, tags, favorite in NOTES:
        target = f"folder:{folder_ids[folder]}" if folder else "all"
        requests.put(
            f"{args.base_url}/dashboard/filter",
            json={"filter": target},
            headers=headers,
            timeout=TIMEOUT,
        ).raise_for_status()
        resp = requests.post(
            f"{args.base_url}/notes",
            json={
                "title": title,
                "content": content,
                "tags": tags,
                "is_favorite": favorite,
            },
            headers=headers,
            timeout=TIMEOUT,
        )
        if resp.ok:
            print(f"  OK     note {title}")
        else:
            failures += 1
            print(f"  FAIL   note {title}: {resp.status_code} {resp.text}")

    dashboard = requests.get(
        f"{args.base_url}/dashboard", headers=headers, timeout=TIMEOUT
    ).json()
    print(
        f"\nSeeded {dashboard['total_count']} notes "
        f"({dashboard['favorites_count']} favorites, "
        f"{dashboard['unfiled_count']} unfiled) for {args.email}"
    )
    sys.exit(1 if failures else 0)


if __name__ == "__main__":
    main()
