#!/usr/bin/env python3
"""PMC curator command-line runner."""

import argparse
import asyncio
import json
import logging
import sys
import time
from pathlib import Path

# Ensure project root is on sys.path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from curator.core.config import load_config
from curator.core.service import CurationService

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("curator")


# ── Commands ─────────────────────────────────────────────────────────


async def run_command(args: argparse.Namespace) -> dict:
    config = load_config(args.config)
    service = CurationService.from_config(config, db_path=args.db)
    logger.info("Database: %s", service.store.db_path)

    try:
        if args.command in ("full", "incremental"):
            return await service.orchestrator.run(args.command, args.max_per_term)
        if args.command == "compare":
            return await service.compare_with_source(args.topic)
        if args.command == "sync-missing":
            return await service.sync_missing(args.body_ids, args.metadata_ids)
        if args.command == "categorize":
            return await service.batch.run(args.filter)
        if args.command == "refresh-abstracts":
            return await service.refresher.run()
        raise ValueError(f"Unknown command: {args.command}")
    finally:
        await service.aclose()


# ── CLI ──────────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sync and reconcile PMC publications")
    parser.add_argument(
        "--config",
        default=str(PROJECT_ROOT / "configs" / "sphygmocor.yaml"),
        help="Path to curator config YAML",
    )
    parser.add_argument("--db", default=None, help="SQLite database path (overrides config)")
    parser.add_argument(
        "--max-per-term", type=int, default=None, help="Max search results per term and window"
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("full", help="Full windowed sync from the floor year")
    sub.add_parser("incremental", help="Sync since the latest stored publication")

    compare = sub.add_parser("compare", help="Compare the store with a live PMC search")
    compare.add_argument("--topic", default=None, help="Topic to search (default from config)")

    missing = sub.add_parser("sync-missing", help="Import selected missing PMC IDs")
    missing.add_argument("--body-ids", nargs="*", default=[], help="IDs with body-text evidence")
    missing.add_argument(
        "--metadata-ids", nargs="*", default=[], help="IDs with metadata-only evidence"
    )

    categorize = sub.add_parser("categorize", help="Suggest research-area categories")
    categorize.add_argument(
        "--filter",
        default="uncategorized",
        choices=("all", "uncategorized", "pending", "approved"),
    )

    sub.add_parser("refresh-abstracts", help="Re-fetch missing abstracts")
    return parser


def main():
    args = build_parser().parse_args()
    t_start = time.time()

    result = asyncio.run(run_command(args))

    print(json.dumps(result, indent=2, default=str))
    logger.info("Done in %.1fs", time.time() - t_start)
    if result.get("status") == "error":
        sys.exit(1)


if __name__ == "__main__":
    main()
