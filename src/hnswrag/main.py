"""
Main entry point: parse flags, load settings, run the interactive shell.
"""

import argparse
import sys
from pathlib import Path

from pydantic import ValidationError

from . import __version__
from .cli import Shell
from .config.container import setup_container
from .config.settings import Settings
from .observability.logging import get_logger, setup_logging
from .observability.metrics import setup_metrics

logger = get_logger(__name__)

EXIT_CONFIG_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hnswrag",
        description="Build, persist and query an HNSW index for retrieval-augmented QA",
    )
    parser.add_argument("--bundle-path", type=Path, default=None, help="Index bundle directory")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Log level (default from settings)",
    )
    parser.add_argument("--version", action="version", version=f"hnswrag {__version__}")
    return parser


def load_settings(args: argparse.Namespace) -> Settings:
    """Settings from the environment with command-line overrides applied."""
    settings = Settings()
    if args.bundle_path is not None:
        settings = settings.model_copy(
            update={"store": settings.store.model_copy(update={"bundle_path": args.bundle_path})}
        )
    if args.log_level is not None:
        settings = settings.model_copy(
            update={
                "observability": settings.observability.model_copy(
                    update={"log_level": args.log_level}
                )
            }
        )
    return settings


def main(argv=None, input_fn=input) -> int:
    """Run the shell and return the process exit status."""
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args)
    except ValidationError as e:
        print(f"Configuration error:\n{e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    setup_logging(settings.observability.log_level)
    if settings.observability.enable_metrics:
        setup_metrics()

    logger.info(
        "hnswrag starting",
        version=__version__,
        bundle_path=str(settings.store.bundle_path),
        chunk_size=settings.chunking.chunk_size,
        overlap=settings.chunking.overlap,
    )

    container = setup_container(settings)
    shell = Shell(container.get("lifecycle"), input_fn=input_fn)
    return shell.run()


def cli_main():
    """CLI entry point."""
    try:
        sys.exit(main(sys.argv[1:]))
    except KeyboardInterrupt:
        print("\nhnswrag shutdown")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        print(f"Fatal error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    cli_main()
