"""CLI entry point for the candidate sourcing pipeline."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import httpx
import yaml

from src.core.config import Settings
from src.core.db import SORT_KEYS, get_search, init_db
from src.core.errors import SourcingError
from src.core.schemas import ContactType, SearchCriteria
from src.enrichment.state_machine import reveal_contacts_batch
from src.pipeline.listing import DEFAULT_LIMIT, DEFAULT_SORT
from src.pipeline.orchestrator import Pipeline


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Candidate sourcing - find, deduplicate, score and enrich candidate profiles",
    )
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to settings YAML file (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- search ---
    search_parser = subparsers.add_parser("search", help="Create a search and source candidates")
    search_parser.add_argument("--query", required=True, help="Free-text hiring query")
    search_parser.add_argument(
        "--criteria",
        required=True,
        help="Path to a YAML or JSON file with the structured criteria",
    )
    search_parser.add_argument("--org", default="local", help="Organization id (default: local)")
    search_parser.add_argument("--name", default="", help="Display name for the search")

    # --- score ---
    score_parser = subparsers.add_parser("score", help="Score a search's unscored candidates")
    score_parser.add_argument("search_id")
    score_parser.add_argument(
        "--ids",
        nargs="+",
        help="Score only these search-candidate ids",
    )

    # --- continue ---
    continue_parser = subparsers.add_parser(
        "continue", help="Re-run a search's best strategies to get more candidates",
    )
    continue_parser.add_argument("search_id")

    # --- progress ---
    progress_parser = subparsers.add_parser("progress", help="Show scoring progress of a search")
    progress_parser.add_argument("search_id")

    # --- list ---
    list_parser = subparsers.add_parser("list", help="List a search's candidates")
    list_parser.add_argument("search_id")
    list_parser.add_argument("--sort", default=DEFAULT_SORT, choices=list(SORT_KEYS))
    list_parser.add_argument("--min-score", type=float)
    list_parser.add_argument("--max-score", type=float)
    list_parser.add_argument("--limit", type=int, default=DEFAULT_LIMIT)
    page_group = list_parser.add_mutually_exclusive_group()
    page_group.add_argument("--page", type=int, help="1-based page (offset pagination)")
    page_group.add_argument("--cursor", help="Cursor from a previous listing")

    # --- status ---
    status_parser = subparsers.add_parser("status", help="Update a linked candidate's status")
    status_parser.add_argument("search_candidate_id")
    status_parser.add_argument("status", help="new | reviewing | contacted | rejected | hired")
    status_parser.add_argument("--notes")

    # --- reveal ---
    reveal_parser = subparsers.add_parser("reveal", help="Reveal contact details for profiles")
    reveal_parser.add_argument("urls", nargs="+", help="LinkedIn profile URLs")
    reveal_parser.add_argument(
        "--type",
        dest="contact_type",
        default="email",
        choices=[t.value for t in ContactType],
        help="Contact type to reveal (default: email)",
    )

    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def load_criteria(path: str | Path) -> SearchCriteria:
    """Read criteria from YAML or JSON (JSON is valid YAML)."""
    path = Path(path)
    if not path.exists():
        msg = f"Criteria file not found: {path}"
        raise FileNotFoundError(msg)
    raw: Any = yaml.safe_load(path.read_text()) or {}
    if not isinstance(raw, dict):
        msg = f"Criteria file {path} must contain a mapping"
        raise ValueError(msg)
    return SearchCriteria.model_validate(raw)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


async def cmd_search(pipeline: Pipeline, args: argparse.Namespace) -> None:
    criteria = load_criteria(args.criteria)
    search = await pipeline.start_search(args.org, args.query, criteria, args.name)
    print(f"Search {search.id} started")
    await pipeline.trigger.wait()

    search = get_search(pipeline.conn, search.id) or search
    progress = pipeline.scoring.progress(search.id)
    print(f"\nSearch {search.id}: {search.status} ({search.progress}%)")
    print(f"  Candidates: {progress.total}, scored {progress.scored}, errors {progress.errors}")
    print(f"  Excellent (80+): {progress.excellent}, good (70+): {progress.good}, fair (50+): {progress.fair}")


async def cmd_score(pipeline: Pipeline, args: argparse.Namespace) -> None:
    result = await pipeline.scoring.score_batch(args.search_id, args.ids)
    print(f"Scored {result.scored}, errors {result.errors}")


async def cmd_continue(pipeline: Pipeline, args: argparse.Namespace) -> None:
    result = await pipeline.planner.continue_search(args.search_id)
    if not result.success:
        msg = f"continuation failed: {result.error}"
        raise SourcingError(msg)
    mode = "completed strategies (no scores yet)" if result.used_fallback else "best strategies by median score"
    print(f"Re-running {len(result.strategy_ids)} strategy runs from {mode}")
    for m in result.metrics:
        print(f"  {m.strategy_id}: median {m.median:.1f} over {m.count} scored")
    await pipeline.trigger.wait()
    progress = pipeline.scoring.progress(args.search_id)
    print(f"Search {args.search_id}: {progress.total} candidates, {progress.scored} scored")


async def cmd_reveal(pipeline: Pipeline, args: argparse.Namespace) -> None:
    results = await reveal_contacts_batch(
        pipeline.enrichment, args.urls, args.contact_type, pipeline.settings.enrichment,
    )
    _print_json([r.model_dump(mode="json") for r in results])


async def run(settings: Settings, args: argparse.Namespace) -> None:
    conn = init_db(settings.database.path)
    try:
        async with httpx.AsyncClient(timeout=settings.sources.timeout_s) as client:
            pipeline = Pipeline(settings, conn, client)
            if args.command == "search":
                await cmd_search(pipeline, args)
            elif args.command == "score":
                await cmd_score(pipeline, args)
            elif args.command == "continue":
                await cmd_continue(pipeline, args)
            elif args.command == "progress":
                _print_json(pipeline.scoring.progress(args.search_id).model_dump())
            elif args.command == "list":
                page = pipeline.listing.list_candidates(
                    args.search_id,
                    score_min=args.min_score,
                    score_max=args.max_score,
                    sort_by=args.sort,
                    limit=args.limit,
                    page=args.page,
                    cursor=args.cursor,
                    include_total=True,
                )
                _print_json(page.model_dump(mode="json"))
            elif args.command == "status":
                pipeline.listing.update_status(args.search_candidate_id, args.status, args.notes)
                print(f"Search candidate {args.search_candidate_id} → {args.status}")
            elif args.command == "reveal":
                await cmd_reveal(pipeline, args)
    finally:
        conn.close()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = Settings.from_yaml(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        asyncio.run(run(settings, args))
    except (FileNotFoundError, ValueError, SourcingError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
