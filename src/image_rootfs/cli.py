"""Command line entry point: ``image-rootfs IMAGE``."""

import asyncio
import logging
import sys
from pathlib import Path

import click

from .core.types import STRATEGIES, CleanupRules, PullConfig, RetryPolicy
from .exceptions import RootfsError
from .pipeline import pull_rootfs

logger = logging.getLogger("image_rootfs")


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    if not verbose:
        logging.getLogger("aiohttp").setLevel(logging.WARNING)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("image", default="redis")
@click.option(
    "--output-dir",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Directory under which <image-name>/ is assembled.",
)
@click.option(
    "--strategy",
    type=click.Choice(STRATEGIES),
    default="layers",
    show_default=True,
    help="One tar per layer, or a single image tarball.",
)
@click.option("--max-concurrency", type=click.IntRange(min=1), default=4, show_default=True)
@click.option("--retries", type=click.IntRange(min=1), default=3, show_default=True)
@click.option("--retry-delay", type=click.FloatRange(min=0), default=2.0, show_default=True)
@click.option(
    "--canonical-name",
    default="config.json",
    show_default=True,
    help="Name given to the image config file after extraction.",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def main(
    image: str,
    output_dir: Path,
    strategy: str,
    max_concurrency: int,
    retries: int,
    retry_delay: float,
    canonical_name: str,
    verbose: bool,
) -> None:
    """Pull IMAGE from its registry and unpack it into a root filesystem tree."""
    setup_logging(verbose)
    config = PullConfig(
        retry=RetryPolicy(attempts=retries, delay=retry_delay),
        cleanup=CleanupRules(canonical_name=canonical_name),
        max_concurrency=max_concurrency,
        strategy=strategy,
    )

    try:
        result = asyncio.run(pull_rootfs(image, output_dir, config))
    except RootfsError as e:
        logger.error("%s", e)
        sys.exit(1)

    click.echo(str(result.target))


if __name__ == "__main__":
    main()
