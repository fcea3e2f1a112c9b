#!/usr/bin/env python3
"""Boot the application and print listings matching a filter.

Starts every service through :class:`kejabase.KejabaseApp`, waits for the
readiness coordinator, loads state from the backend and prints the
filtered listings together with the per-service status.

Usage
-----
Set environment variables and run::

    export KEJABASE_PROJECT_ID="my-project"
    export KEJABASE_API_KEY="..."
    python scripts/browse_listings.py --type bnb --max-price 100 --amenity wifi

Without a project configured the in-memory backend is used, which is only
useful together with ``--status``.

Options::

    --location TEXT     Case-insensitive location substring
    --type TAG          house or bnb
    --min-price N       Lower price bound (inclusive)
    --max-price N       Upper price bound (inclusive)
    --amenity TAG       Required amenity (repeatable)
    --email / --password  Sign in before loading
    --favorites         Only print favorited listings
    --status            Print coordinator status and exit
    --json              Machine-readable output
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from kejabase import KejabaseApp, KejabaseConfig, KejabaseError, Listing, ListingFilters  # noqa: E402


def _format_listing(listing: Listing, favorite: bool) -> str:
    star = "*" if favorite else " "
    amenities = ", ".join(listing.amenities) or "-"
    return f"{star} [{listing.type:<5}] {listing.title or listing.id:<40} {listing.location:<20} {listing.price:>10.2f}  {amenities}"


async def main() -> int:
    parser = argparse.ArgumentParser(description="Browse marketplace listings.")
    parser.add_argument("--location", default="", help="Case-insensitive location substring")
    parser.add_argument("--type", default="", dest="listing_type", help="Listing type tag (house, bnb)")
    parser.add_argument("--min-price", type=float, default=0.0)
    parser.add_argument("--max-price", type=float, default=None)
    parser.add_argument("--amenity", action="append", default=[], help="Required amenity (repeatable)")
    parser.add_argument("--email", help="Sign in with this email before loading")
    parser.add_argument("--password", help="Password for --email")
    parser.add_argument("--favorites", action="store_true", help="Only print favorited listings")
    parser.add_argument("--status", action="store_true", help="Print coordinator status and exit")
    parser.add_argument("--json", action="store_true", dest="json_mode", help="Output machine-readable JSON")
    parser.add_argument("--timeout", type=float, default=15.0, help="Seconds to wait for services")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    config = KejabaseConfig.from_env()
    async with KejabaseApp(config) as app:
        try:
            await app.wait_until_ready(args.timeout)
        except KejabaseError as exc:
            print(f"Services not ready: {exc}", file=sys.stderr)

        status = app.coordinator.get_status()
        if args.status:
            print(json.dumps(status.model_dump(), indent=2))
            return 0 if status.all_ready else 1

        if args.email:
            if not args.password:
                parser.error("--password is required with --email")
            user, role = await app.auth.sign_in(args.email, args.password)
            print(f"Signed in as {user.email} ({role})", file=sys.stderr)

        if not await app.refresh():
            print(f"Failed to load listings: {app.store.get_state().error}", file=sys.stderr)
            return 1

        filters = ListingFilters(
            location=args.location,
            type=args.listing_type,
            price_range=(args.min_price, args.max_price),
            amenities=tuple(args.amenity),
        )
        app.store.update_state(filters=filters)
        listings = app.store.favorite_listings() if args.favorites else app.store.apply_filters()

        if args.json_mode:
            payload: list[dict[str, Any]] = [
                {**listing.model_dump(), "favorite": app.store.is_favorite(listing.id)} for listing in listings
            ]
            print(json.dumps(payload, indent=2, ensure_ascii=False))
        else:
            for listing in listings:
                print(_format_listing(listing, app.store.is_favorite(listing.id)))
            print(f"\n{len(listings)} of {len(app.store.get_state().listings)} listings", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
