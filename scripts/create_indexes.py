#!/usr/bin/env python3
"""
create_indexes.py — Create the MongoDB indexes the API relies on.

The API also does this at startup; run the script when deploying against
a fresh database, or after restoring one from a dump.

Usage (from the repository root):
    python scripts/create_indexes.py

    # Also print document counts and storage size per collection
    python scripts/create_indexes.py --stats

Requires MONGO_URI (and optionally MONGO_DB_NAME) in the environment or .env.
Safe to re-run: creating an existing index is a no-op.
"""

import argparse
import asyncio
import os
import sys
from pathlib import Path

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT))

from dotenv import load_dotenv
load_dotenv(ROOT / ".env")

import certifi
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from authentiscan.core.database import PAYMENTS, SCANS, USERS, ensure_indexes  # noqa: E402

MONGO_URI     = os.environ.get("MONGO_URI", "")
MONGO_DB_NAME = os.environ.get("MONGO_DB_NAME", "authentiscan")

if not MONGO_URI:
    print("ERROR: MONGO_URI not set. Check .env")
    sys.exit(1)


async def print_stats(db) -> None:
    print("\nCollection stats:")
    for name in (USERS, SCANS, PAYMENTS):
        try:
            stats = await db.command("collStats", name)
        except PyMongoError as exc:
            print(f"  {name}: unavailable ({exc})")
            continue
        size_mb = stats.get("size", 0) / (1024 * 1024)
        print(f"  {name}: {stats.get('count', 0)} documents, {size_mb:.2f} MB, "
              f"{stats.get('nindexes', 0)} indexes")


async def main(show_stats: bool) -> None:
    print("Connecting to MongoDB…")
    client = AsyncIOMotorClient(MONGO_URI, tlsCAFile=certifi.where())
    db = client[MONGO_DB_NAME]

    try:
        await client.admin.command("ping")
        print("Connected.")

        await ensure_indexes(db)
        for name in (USERS, SCANS, PAYMENTS):
            names = [idx["name"] async for idx in db[name].list_indexes()]
            print(f"  {name}: {', '.join(names)}")
        print("Indexes ensured.")

        if show_stats:
            await print_stats(db)
    finally:
        client.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create Authentiscan MongoDB indexes")
    parser.add_argument("--stats", action="store_true", help="print per-collection sizes")
    args = parser.parse_args()
    asyncio.run(main(args.stats))
