"""CLI command for running the generation pipeline scheduler.

Usage:
    python -m mockforge.cli.run_worker [OPTIONS]

Examples:
    # Run the polling loop until interrupted
    python -m mockforge.cli.run_worker

    # Run a single tick and exit
    python -m mockforge.cli.run_worker --once

    # Verbose logging
    python -m mockforge.cli.run_worker -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace

import structlog

from mockforge.core import timezone  # noqa: F401
from mockforge.core.config import Settings, configure_logging
from mockforge.core.database import setup_db_session
from mockforge.services.dependency_resolver import DependencyResolver
from mockforge.services.generation.adapter import GenerationAdapter
from mockforge.services.generation.backends import build_registry
from mockforge.services.publisher import AssetPublisher
from mockforge.services.reconciler import Reconciler
from mockforge.services.storage.s3_client import S3BlobStore
from mockforge.uow import create_uow_factory
from mockforge.workers.pipeline_worker import PipelineScheduler

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Run the generation pipeline scheduler",
        epilog="Polls queued and running jobs every POLL_INTERVAL_SECONDS",
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single scheduling tick and exit",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


def build_scheduler(settings: Settings) -> PipelineScheduler:
    """Wire the scheduler with production collaborators."""
    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    blob_store = S3BlobStore(
        bucket=settings.aws_s3_bucket,
        region=settings.aws_region,
        public_base_url=settings.asset_public_base_url,
    )
    adapter = GenerationAdapter(build_registry(settings))
    publisher = AssetPublisher(blob_store, timeout=settings.http_timeout_seconds)

    return PipelineScheduler(
        uow_factory=uow_factory,
        adapter=adapter,
        resolver=DependencyResolver(),
        reconciler=Reconciler(adapter, publisher),
        settings=settings,
    )


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    scheduler = build_scheduler(settings)

    if args.once:
        summary = await scheduler.tick()
        logger.info("cli.tick.completed", **summary)
        return 1 if summary["errors"] else 0

    try:
        await scheduler.run()
    except asyncio.CancelledError:
        pass
    return 0


def main() -> None:
    """Synchronous entry point for CLI."""
    try:
        sys.exit(asyncio.run(async_main()))
    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        sys.exit(130)


if __name__ == "__main__":
    main()
