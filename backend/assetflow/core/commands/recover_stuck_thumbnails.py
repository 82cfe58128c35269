#!/usr/bin/env python3
"""
Re-dispatch thumbnail generation for assets stuck in 'processing'.

An asset is stuck when its thumbnail claim is older than
THUMBNAIL_STUCK_TIMEOUT_SECONDS. The re-dispatched run regenerates and always
settles the asset to completed, failed or skipped.

Usage:
    # Dry run (see what would be recovered)
    python -m assetflow.core.commands.recover_stuck_thumbnails --dry-run

    # Recover up to 500 assets
    python -m assetflow.core.commands.recover_stuck_thumbnails --limit 500
"""

import argparse
import asyncio
import logging

from assetflow.core.tasks.recovery import recover_stuck_thumbnails

logger = logging.getLogger("assetflow.commands.recover_stuck_thumbnails")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Recover thumbnails stuck in processing")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List stuck assets without dispatching anything",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=100,
        help="Maximum number of assets to recover (default: 100)",
    )
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s"
    )

    result = asyncio.run(recover_stuck_thumbnails(limit=args.limit, dry_run=args.dry_run))

    if result["found"] == 0:
        logger.info("No stuck thumbnails found")
    elif args.dry_run:
        logger.info(f"{result['found']} stuck assets (dry run, nothing dispatched):")
        for asset_id in result["asset_ids"]:
            logger.info(f"  - {asset_id}")
    else:
        logger.info(f"Re-dispatched thumbnails for {result['dispatched']} of {result['found']} stuck assets")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
