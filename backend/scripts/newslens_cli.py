#!/usr/bin/env python3
"""
Operator CLI for NewsLens.

Usage:
    # Create tables
    python -m scripts.newslens_cli init-db

    # Load the seed vocabulary
    python -m scripts.newslens_cli seed

    # Load items from a JSON array
    python -m scripts.newslens_cli add-items items.json

    # Heuristic pass / enrichment pass
    python -m scripts.newslens_cli evaluate
    python -m scripts.newslens_cli enrich --limit 50

    # Canonicalize tags
    python -m scripts.newslens_cli resolve "ИИ" "machine learning"

    # Rank for a user
    python -m scripts.newslens_cli rank --user 42 --limit 10

    # Import a legacy profile
    python -m scripts.newslens_cli import-profile --user 42 --shape tag_list profile.json
"""

import argparse
import asyncio
import json
import sys
from contextlib import asynccontextmanager

# Add parent directory to path for imports
sys.path.insert(0, str(__file__).rsplit("/", 2)[0])

from pydantic import ValidationError

from newslens.config import get_settings
from newslens.core.logging_config import configure_logging
from newslens.core.profiles import LEGACY_PROFILE_ADAPTERS
from newslens.models.database import Database
from newslens.models.domain import Item
from newslens.services.container import build_services


@asynccontextmanager
async def open_services():
    """Database plus service graph for one command."""
    settings = get_settings()
    database = Database(settings.database_url)
    await database.create_tables()
    try:
        yield build_services(database, settings)
    finally:
        await database.dispose()


def _load_json(path: str):
    with open(path, encoding="utf-8") as f:
        return json.load(f)


async def cmd_init_db(args):
    """Create all tables."""
    async with open_services():
        print(f"Tables ready at {get_settings().database_url}")
    return 0


async def cmd_seed(args):
    """Load the seed vocabulary."""
    async with open_services() as services:
        added = await services.canonicalizer.seed_vocabulary()
        total = await services.store.count_canonicals()
    print(f"Seeded {added} canonical topics ({total} in vocabulary)")
    return 0


async def cmd_add_items(args):
    """Insert items from a JSON array; existing ids are ignored."""
    rows = _load_json(args.file)
    if not isinstance(rows, list):
        print("Expected a JSON array of items")
        return 1

    inserted = 0
    async with open_services() as services:
        for row in rows:
            try:
                item = Item.model_validate(row)
            except ValidationError as e:
                print(f"Skipping invalid item: {e.errors()[0]['msg']}")
                continue
            if await services.store.put_item(item):
                inserted += 1
    print(f"Inserted {inserted} of {len(rows)} items")
    return 0


async def cmd_evaluate(args):
    """Fill heuristic scores for items that lack them."""
    async with open_services() as services:
        scored = await services.evaluation.run(limit=args.limit)
    print(f"Scored {scored} items")
    return 0


async def cmd_enrich(args):
    """Queue unanalysed items and run one enrichment pass."""
    async with open_services() as services:
        enqueued = await services.enrichment.enqueue_missing(window_hours=args.window_hours)
        stats = await services.enrichment.run(limit=args.limit)

    print("\n" + "=" * 40)
    print("ENRICHMENT")
    print("=" * 40)
    print(f"  enqueued: {enqueued}")
    for key, value in stats.items():
        print(f"  {key}: {value}")
    return 0 if stats["failed"] == 0 else 1


async def cmd_resolve(args):
    """Canonicalize surface tags."""
    async with open_services() as services:
        for tag in args.tags:
            r = await services.canonicalizer.resolve(tag)
            print(f"{tag!r:30} -> {r.canonical!r} (family={r.family}, "
                  f"confidence={r.confidence:.2f}, method={r.method.value})")
    return 0


async def cmd_rank(args):
    """Print the ranked list for a user."""
    async with open_services() as services:
        ranked = await services.ranking.rank_for_user(
            args.user,
            window_hours=args.window_hours,
            limit=args.limit,
            require_analysis=args.require_analysis,
        )

    if not ranked:
        print("No items in window")
        return 0

    for n, c in enumerate(ranked, 1):
        published = c.item.published_at.strftime("%Y-%m-%d %H:%M")
        print(f"{n:>2}. [{c.final_score:.3f}] {c.item.title[:70]}")
        print(f"    {c.item.source} | {published} | bucket={c.bucket or '-'}")
        if args.verbose:
            print(
                f"    profile={c.profile_relevance:.2f} quality={c.quality_composite:.2f} "
                f"feedback={c.feedback_adjustment:+.2f} base={c.base_term:.3f}"
            )
    return 0


async def cmd_import_profile(args):
    """Store a legacy-shaped profile for a user."""
    payload = _load_json(args.file)
    async with open_services() as services:
        try:
            profile = await services.profiles.import_legacy_profile(args.user, args.shape, payload)
        except (ValueError, ValidationError) as e:
            print(f"Cannot import profile: {e}")
            return 1

    print(f"Imported {len(profile.topics)} topics for user {args.user}:")
    for topic in profile.topics:
        print(f"  {topic.tag} (family={topic.family}, weight={topic.weight:.2f})")
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="NewsLens - topic canonicalization and ranking CLI"
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("init-db", help="Create database tables")
    subparsers.add_parser("seed", help="Load the seed topic vocabulary")

    add_items_parser = subparsers.add_parser("add-items", help="Insert items from a JSON file")
    add_items_parser.add_argument("file", help="JSON array of items")

    evaluate_parser = subparsers.add_parser("evaluate", help="Heuristic scoring pass")
    evaluate_parser.add_argument("--limit", "-l", type=int, default=200)

    enrich_parser = subparsers.add_parser("enrich", help="Run one enrichment pass")
    enrich_parser.add_argument("--limit", "-l", type=int, default=None)
    enrich_parser.add_argument("--window-hours", type=int, default=None)

    resolve_parser = subparsers.add_parser("resolve", help="Canonicalize topic tags")
    resolve_parser.add_argument("tags", nargs="+")

    rank_parser = subparsers.add_parser("rank", help="Rank items for a user")
    rank_parser.add_argument("--user", "-u", required=True)
    rank_parser.add_argument("--limit", "-l", type=int, default=None)
    rank_parser.add_argument("--window-hours", type=int, default=None)
    rank_parser.add_argument("--require-analysis", action="store_true")
    rank_parser.add_argument("--verbose", "-v", action="store_true", help="Show score components")

    import_parser = subparsers.add_parser("import-profile", help="Import a legacy interest profile")
    import_parser.add_argument("--user", "-u", required=True)
    import_parser.add_argument("--shape", "-s", required=True, choices=sorted(LEGACY_PROFILE_ADAPTERS))
    import_parser.add_argument("file", help="JSON file with the profile payload")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    settings = get_settings()
    configure_logging(args.log_level or settings.log_level, "console")

    commands = {
        "init-db": cmd_init_db,
        "seed": cmd_seed,
        "add-items": cmd_add_items,
        "evaluate": cmd_evaluate,
        "enrich": cmd_enrich,
        "resolve": cmd_resolve,
        "rank": cmd_rank,
        "import-profile": cmd_import_profile,
    }
    return asyncio.run(commands[args.command](args))


if __name__ == "__main__":
    sys.exit(main())
