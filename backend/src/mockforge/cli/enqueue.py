"""CLI command for enqueuing a product's generation pipeline.

Creates the queued job rows the scheduler picks up: one ``image`` job and,
optionally, ``background_removal``, ``mockup`` (one per template) and
``upscale`` jobs. Dependent jobs wait in ``queued`` until their inputs exist.

Usage:
    python -m mockforge.cli.enqueue --product-name NAME --prompt PROMPT [OPTIONS]

Examples:
    # Source image only
    python -m mockforge.cli.enqueue --product-name "Neon Tiger" --prompt "neon tiger, vector art"

    # Full pipeline for an existing product
    python -m mockforge.cli.enqueue --product-id 3f0c... --prompt "..." \\
        --remove-background --mockup flat_lay --mockup lifestyle --upscale
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace
from uuid import UUID

import structlog

from mockforge.core import timezone  # noqa: F401
from mockforge.core.config import Settings, configure_logging
from mockforge.core.database import setup_db_session
from mockforge.models.job import GenerationJob, JobType
from mockforge.models.product import Product, slugify
from mockforge.services.generation.prompt_validator import validate_prompt
from mockforge.uow import create_uow_factory

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(description="Enqueue generation jobs for one product")

    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--product-id", type=UUID, help="Existing product to generate for")
    target.add_argument("--product-name", help="Create a new product with this name")

    parser.add_argument("--category", help="Category of a newly created product")
    parser.add_argument("--prompt", required=True, help="Design prompt for the image job")
    parser.add_argument(
        "--remove-background",
        action="store_true",
        help="Add a background_removal job",
    )
    parser.add_argument(
        "--mockup",
        action="append",
        default=[],
        metavar="TEMPLATE",
        help="Add a mockup job for TEMPLATE (flat_lay, lifestyle); repeatable",
    )
    parser.add_argument("--product-type", default="tshirt", help="Garment type for mockups")
    parser.add_argument("--shirt-color", default="black", help="Garment colour for mockups")
    parser.add_argument(
        "--print-placement", default="front-center", help="Print placement for mockups"
    )
    parser.add_argument("--upscale", action="store_true", help="Add an upscale job")

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


def build_jobs(product_id: UUID, args: Namespace) -> list[GenerationJob]:
    """Job rows for one generation cycle, in dependency order."""
    jobs = [GenerationJob(product_id=product_id, type=JobType.IMAGE, input={"prompt": args.prompt})]

    if args.remove_background:
        jobs.append(GenerationJob(product_id=product_id, type=JobType.BACKGROUND_REMOVAL, input={}))

    for template in args.mockup:
        jobs.append(
            GenerationJob(
                product_id=product_id,
                type=JobType.MOCKUP,
                input={
                    "template": template,
                    "product_type": args.product_type,
                    "shirt_color": args.shirt_color,
                    "print_placement": args.print_placement,
                },
            )
        )

    if args.upscale:
        jobs.append(GenerationJob(product_id=product_id, type=JobType.UPSCALE, input={}))

    return jobs


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

    try:
        validate_prompt(args.prompt)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    async with await uow_factory() as uow:
        if args.product_id:
            product = await uow.products.get_by_id(args.product_id)
            if product is None:
                print(f"Error: Product {args.product_id} not found", file=sys.stderr)
                return 1
        else:
            product = await uow.products.add(
                Product(
                    name=args.product_name,
                    slug=slugify(args.product_name) or None,
                    category=args.category,
                )
            )

        jobs = build_jobs(product.id, args)
        for job in jobs:
            await uow.jobs.add(job)

    logger.info(
        "cli.jobs.enqueued",
        product_id=str(product.id),
        jobs=[job.type.value for job in jobs],
    )
    for job in jobs:
        print(f"{job.type.value}\t{job.id}")
    return 0


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
