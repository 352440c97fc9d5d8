#!/usr/bin/env python3
"""
Maintenance commands for the short-link store.

Usage:
    python -m app.maintenance purge-expired
    python -m app.maintenance lookup https://example.com/page
    python -m app.maintenance pregenerate --count 1000 --length 7
"""

import argparse
import asyncio
import sys

from app.codes import DEFAULT_CODE_LENGTH, generate_batch
from app.config import Settings, get_settings
from app.database import close_db, create_engine, create_session_factory, init_db
from app.models import ShortLink
from app.store import LinkStore


async def purge_expired(settings: Settings) -> int:
    """Delete every link whose expiry is in the past. Returns the row count."""
    engine = create_engine(settings)
    try:
        await init_db(engine)
        store = LinkStore(create_session_factory(engine), timeout=settings.STORE_TIMEOUT_SECONDS)
        return await store.delete_expired()
    finally:
        await close_db(engine)


async def lookup_target(settings: Settings, target_url: str) -> ShortLink | None:
    """Newest live short link pointing at ``target_url``, if any."""
    engine = create_engine(settings)
    try:
        await init_db(engine)
        store = LinkStore(create_session_factory(engine), timeout=settings.STORE_TIMEOUT_SECONDS)
        return await store.find_by_target(target_url)
    finally:
        await close_db(engine)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Short-link store maintenance")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("purge-expired", help="Delete expired short links")

    lookup = subparsers.add_parser("lookup", help="Find the live short link for a target URL")
    lookup.add_argument("url", help="Target URL to search for")

    pregenerate = subparsers.add_parser("pregenerate", help="Print a batch of distinct random codes")
    pregenerate.add_argument("--count", type=int, default=100, help="Number of codes (default 100)")
    pregenerate.add_argument(
        "--length", type=int, default=DEFAULT_CODE_LENGTH, help=f"Code length (default {DEFAULT_CODE_LENGTH})"
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "purge-expired":
        deleted = asyncio.run(purge_expired(get_settings()))
        print(f"Purged {deleted} expired short links")
        return 0

    if args.command == "lookup":
        settings = get_settings()
        link = asyncio.run(lookup_target(settings, args.url))
        if link is None:
            print(f"No live short link for {args.url}")
            return 1
        print(f"{settings.BASE_URL}/{link.code}")
        return 0

    for code in sorted(generate_batch(args.count, args.length)):
        print(code)
    return 0


if __name__ == "__main__":
    sys.exit(main())
