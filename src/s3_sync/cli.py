# src/s3_sync/cli.py
"""Command-line interface for the s3-sync tool."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Iterable

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from s3_sync.config import AppConfig, Config
from s3_sync.exceptions import ConfigError, S3SyncError
from s3_sync.pipeline import SyncSummary
from s3_sync.policy import HeaderPolicyTable, parse_policy
from s3_sync.signals import GracefulShutdown

logger: logging.Logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    """Configure rich-based logging for the application."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    # Silence noisy loggers
    for logger_name in ["botocore", "aiobotocore", "s3transfer", "urllib3"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def build_policy_table(entries: Iterable[str]) -> HeaderPolicyTable:
    """
    Build a policy table from `CONTENT_TYPE=DIRECTIVES` command-line values.

    Args:
        entries (Iterable[str]): Values such as `text/html=max-age=300,public`
            or `default=no-cache`.

    Returns:
        HeaderPolicyTable: The populated table.
    """
    table: HeaderPolicyTable = HeaderPolicyTable()
    for entry in entries:
        content_type, sep, directives = entry.partition("=")
        if not sep or not content_type.strip():
            raise ConfigError(
                f"Invalid policy '{entry}'. Expected CONTENT_TYPE=DIRECTIVES."
            )
        table.register(content_type, parse_policy(directives))
    return table


def render_summary(summary: SyncSummary, console: Console) -> None:
    """Print the run counts and every failed file."""
    table: Table = Table(title="Dry run" if summary.dry_run else "Sync summary")
    table.add_column("Result")
    table.add_column("Files", justify="right")
    for name, count in summary.counts().items():
        table.add_row(name, str(count))
    console.print(table)

    if summary.failures:
        failures: Table = Table(title="Failed files", title_style="bold red")
        failures.add_column("Path")
        failures.add_column("Operation")
        failures.add_column("Cause")
        for failure in summary.failures:
            failures.add_row(failure.path, failure.operation.value, failure.cause)
        console.print(failures)


async def main_async(config: Config) -> SyncSummary:
    """
    Asynchronously execute the sync pipeline.

    Args:
        config (Config): The application configuration.

    Returns:
        SyncSummary: The outcome of the run.
    """
    # Lazily import to keep CLI start-up fast
    from s3_sync.pipeline import SyncPipeline

    shutdown: GracefulShutdown = GracefulShutdown()
    async with shutdown as shutdown_event:
        pipeline: SyncPipeline = SyncPipeline(config, shutdown_event)
        shutdown.watch(lambda: pipeline.phase)
        return await pipeline.run()


@click.command(context_settings=dict(help_option_names=["-h", "--help"]))
@click.option(
    "--build-dir",
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    default="build",
    help="Directory whose contents are mirrored into the bucket.",
    show_default=True,
)
@click.option("--force", is_flag=True, help="Upload every file, changed or not.")
@click.option(
    "--delete", is_flag=True, help="Delete remote objects missing locally."
)
@click.option(
    "--prefer-gzip",
    is_flag=True,
    help="Upload 'file.gz' in place of 'file' when both exist.",
)
@click.option(
    "--exclude",
    multiple=True,
    help="Glob pattern to leave out of the sync. Repeatable.",
)
@click.option(
    "--policy",
    "policies",
    multiple=True,
    metavar="CONTENT_TYPE=DIRECTIVES",
    help=(
        "Headers for a content type, e.g. 'text/css=max-age=3600,public'. "
        "Use 'default=...' for the fallback. Repeatable."
    ),
)
@click.option(
    "--acl", default="public-read", help="Canned ACL for uploads.", show_default=True
)
@click.option("--dry-run", is_flag=True, help="Show the plan without applying it.")
@click.option(
    "--no-verify", is_flag=True, help="Skip the ETag check after each upload."
)
@click.option(
    "--mtime-concurrency", type=click.IntRange(min=1), default=16, show_default=True
)
@click.option(
    "--checksum-concurrency", type=click.IntRange(min=1), default=8, show_default=True
)
@click.option(
    "--transfer-concurrency", type=click.IntRange(min=1), default=8, show_default=True
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Set the logging level.",
    show_default=True,
)
def cli(**kwargs: Any) -> None:
    """
    Mirror a local build directory into an S3-compatible bucket.

    New files are created, changed files are replaced, and with --delete,
    objects without a local counterpart are removed. Unchanged files are
    detected by modification time first and by MD5 checksum second.

    Credentials and bucket information must be set via S3SYNC_* environment
    variables or a .env file.
    """
    load_dotenv()
    setup_logging(kwargs["log_level"])

    try:
        app_config: AppConfig = AppConfig(
            build_dir=kwargs["build_dir"],
            force=kwargs["force"],
            delete=kwargs["delete"],
            prefer_gzip=kwargs["prefer_gzip"],
            exclude=tuple(kwargs["exclude"]),
            acl=kwargs["acl"],
            dry_run=kwargs["dry_run"],
            verify_uploads=not kwargs["no_verify"],
            mtime_concurrency=kwargs["mtime_concurrency"],
            checksum_concurrency=kwargs["checksum_concurrency"],
            transfer_concurrency=kwargs["transfer_concurrency"],
            policies=build_policy_table(kwargs["policies"]),
        )
        config: Config = Config(app=app_config)

        summary: SyncSummary = asyncio.run(main_async(config))
    except S3SyncError as e:
        logger.critical(f"A critical application error occurred: {e}")
        sys.exit(1)
    except Exception:
        logger.critical(
            "An unexpected error caused the application to fail:", exc_info=True
        )
        sys.exit(1)

    render_summary(summary, Console())
    if summary.failures:
        logger.error(f"{summary.failed} files failed to sync.")
        sys.exit(1)
    if summary.interrupted:
        logger.warning("Run was interrupted before completion.")
        sys.exit(130)
    logger.info("✅ Run completed successfully.")


if __name__ == "__main__":
    cli()
