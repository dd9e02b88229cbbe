#!/usr/bin/env python3
"""Clear cache invalidation groups in the configured key-value store.

Usage:
    # Clear user caches only:
    python scripts/clear_caches.py users

    # Clear every group and log every session out:
    python scripts/clear_caches.py all --purge-sessions

Environment Variables:
    REDIS_HOST, REDIS_PORT, REDIS_USERNAME, REDIS_PASSWORD, REDIS_DB:
        key-value store connection (see hostelgate.config)
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from hostelgate.config import get_settings  # noqa: E402
from hostelgate.service.cache import CacheService  # noqa: E402
from hostelgate.service.invalidation import INVALIDATION_GROUPS  # noqa: E402
from hostelgate.storage.kv import KeyValueStore, RedisStore  # noqa: E402

SESSION_PATTERNS = ("sess:*", "sessions:user:*")


async def clear_caches(
    group: str,
    *,
    purge_sessions: bool = False,
    store: Optional[KeyValueStore] = None,
) -> dict:
    """Clear one group (or ``all``) and optionally every session.

    Returns:
        dict with the cleared groups, whether every pattern was cleared, and
        the number of session keys removed
    """
    owns_store = store is None
    if store is None:
        store = RedisStore.from_settings(get_settings())
    await store.connect()
    try:
        cache = CacheService(store)
        groups = list(INVALIDATION_GROUPS) if group == "all" else [group]
        complete = True
        for name in groups:
            complete = await cache.invalidate(name) and complete
        purged = 0
        if purge_sessions:
            for pattern in SESSION_PATTERNS:
                purged += await store.delete_pattern(pattern)
        return {"groups": groups, "complete": complete, "purged_session_keys": purged}
    finally:
        if owns_store:
            await store.close()


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Clear hostel gate cache groups",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "group",
        choices=sorted(INVALIDATION_GROUPS) + ["all"],
        help="Invalidation group to clear, or 'all'",
    )
    parser.add_argument(
        "--purge-sessions",
        action="store_true",
        help="Also delete every session and per-user session index",
    )
    args = parser.parse_args(argv)

    try:
        result = asyncio.run(clear_caches(args.group, purge_sessions=args.purge_sessions))
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(f"Cleared groups: {', '.join(result['groups'])}")
    if not result["complete"]:
        print("Warning: some patterns could not be cleared; see logs")
    if args.purge_sessions:
        print(f"Removed {result['purged_session_keys']} session keys")
        print("  - every user must log in again")


if __name__ == "__main__":
    main()
