"""
Script to replay failed billing webhooks.
Run by hand, e.g. once after an outage; replays are never scheduled.

Requires the postgres storage backend: in-memory storage lives inside the
API process, so a separate process has nothing to replay.

Usage:
    python scripts/reprocess_failed_webhooks.py [--max-retries N]
"""

import argparse
import asyncio
import os
import sys
from typing import Optional

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.api.dependencies import build_webhook_processor
from app.config.settings import Settings, get_settings
from app.infrastructure.db.database import close_db
from app.infrastructure.exceptions import ConfigurationError


async def main(max_retries: int, settings: Optional[Settings] = None):
    """Replay every failed webhook under the retry limit."""
    settings = settings or get_settings()
    if settings.storage_backend != "postgres":
        raise ConfigurationError(
            f"Replaying webhooks needs postgres storage, not '{settings.storage_backend}'",
            missing_keys=["STORAGE_BACKEND"],
        )
    print(f"Reprocessing failed webhooks (max_retries={max_retries})...")

    processor = build_webhook_processor(settings)
    try:
        result = await processor.reprocess_failed(max_retries=max_retries)
    finally:
        await close_db()

    if not result["total"]:
        print("No failed webhooks to retry.")
        return result

    print(f"\nRetried {result['total']} webhooks:")
    print(f"  Processed: {result['processed']}")
    print(f"  Still failing: {result['failed']}")
    for webhook_id in result["failed_ids"]:
        print(f"    FAILED: {webhook_id}")
    return result


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Replay failed billing webhooks")
    parser.add_argument(
        "--max-retries",
        type=int,
        default=get_settings().webhook_max_retries,
        help="Skip webhooks that already failed this many times",
    )
    args = parser.parse_args()
    try:
        asyncio.run(main(args.max_retries))
    except ConfigurationError as e:
        print(f"Error: {e.message}")
        sys.exit(1)
