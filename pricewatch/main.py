"""Command-line entry point for a tracking run."""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from pricewatch import metrics
from pricewatch.config import settings
from pricewatch.ingest.base import RendererUnavailableError
from pricewatch.logging_config import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pricewatch-track",
        description="Refresh prices of due catalog products",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=settings.default_limit,
        help=f"Maximum number of products to track (default: {settings.default_limit})",
    )
    parser.add_argument(
        "--merchant",
        default=None,
        help="Only track products of this merchant",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=settings.default_concurrency,
        help=f"Products tracked concurrently per batch (default: {settings.default_concurrency})",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        default=False,
        help="Ignore refresh cadence (also enabled by FORCE_MODE=true)",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing database tables before the run",
    )
    return parser


async def run(args: argparse.Namespace) -> int:
    # Imported here so --help works without a database driver configured
    from pricewatch.db.session import dispose_engine, init_models
    from pricewatch.worker.tasks import track_prices

    force = args.force or settings.force_mode
    logger.info(
        f"Starting tracking run (limit={args.limit}, merchant={args.merchant or 'all'}, "
        f"concurrency={args.concurrency}, force={force})"
    )

    try:
        if args.create_tables:
            await init_models()
        await track_prices(
            limit=args.limit,
            merchant=args.merchant,
            concurrency=args.concurrency,
            force=force,
        )
        metrics.record_run("completed")
        return 0
    except RendererUnavailableError as e:
        logger.critical(f"Browser could not be started: {e}")
        metrics.record_run("failed")
        return 1
    except Exception as e:
        logger.exception(f"Tracking run failed: {e}")
        metrics.record_run("failed")
        return 1
    finally:
        metrics.push_metrics()
        await dispose_engine()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.limit < 1 or args.concurrency < 1:
        print("--limit and --concurrency must be positive", file=sys.stderr)
        return 2

    setup_logging()
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
