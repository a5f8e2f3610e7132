# src/s3_sync/pipeline.py
"""Core orchestration logic for the s3-sync pipeline."""

import asyncio
import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
)

from s3_sync.config import Config
from s3_sync.engine import Reconciler, SyncPlan
from s3_sync.enumerator import (
    LocalFileRecord,
    apply_exclusions,
    exclude_remote,
    list_local,
    list_remote,
)
from s3_sync.executor import TransferExecutor, TransferFailure, TransferReport
from s3_sync.store import ObjectStore, RemoteObjectRecord, open_s3_store

logger: logging.Logger = logging.getLogger(__name__)


@dataclass
class SyncSummary:
    """
    The result of one sync run.

    Attributes:
        created (List[str]): Keys uploaded as new objects.
        updated (List[str]): Keys whose objects were replaced.
        deleted (List[str]): Orphaned keys removed from the bucket.
        skipped (List[str]): Keys found already current.
        failures (List[TransferFailure]): Per-file failures with their cause.
        interrupted (bool): True if a shutdown cut the run short.
        dry_run (bool): True if no mutation was attempted.
    """

    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failures: List[TransferFailure] = field(default_factory=list)
    interrupted: bool = False
    dry_run: bool = False

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def ok(self) -> bool:
        """True if every attempted mutation succeeded and the run finished."""
        return not self.failures and not self.interrupted

    def counts(self) -> Dict[str, int]:
        return {
            "created": len(self.created),
            "updated": len(self.updated),
            "deleted": len(self.deleted),
            "skipped": len(self.skipped),
            "failed": self.failed,
        }


class SyncPipeline:
    """
    Orchestrates the entire sync from start to finish.

    Attributes:
        phase (str): What the run is doing right now, reported when a
            shutdown signal arrives.
    """

    def __init__(
        self,
        config: Config,
        shutdown_event: asyncio.Event,
        store: Optional[ObjectStore] = None,
    ) -> None:
        """
        Initializes the pipeline with the given configuration.

        Args:
            config (Config): The application configuration.
            shutdown_event (asyncio.Event): Event to signal graceful shutdown.
            store (ObjectStore, optional): Store to sync against. When omitted
                an aiobotocore client is opened from `config.store`.
        """
        self._config: Config = config
        self._shutdown_event: asyncio.Event = shutdown_event
        self._store: Optional[ObjectStore] = store
        self.phase: str = "starting"

    async def run(self) -> SyncSummary:
        """
        Executes the full synchronization pipeline.

        Enumeration errors propagate and abort the run before anything is
        changed remotely. Per-file transfer errors are collected into the
        returned summary.

        Returns:
            SyncSummary: What was created, updated, deleted, skipped or failed.
        """
        app = self._config.app
        logger.info(
            f"Starting s3-sync of '{app.build_dir}' to "
            f"'s3://{self._config.store.bucket}/{self._config.store.prefix}'."
        )
        summary: SyncSummary = SyncSummary(dry_run=app.dry_run)

        self.phase = "enumerating local files"
        local: List[LocalFileRecord] = apply_exclusions(
            list_local(app.build_dir), app.exclude
        )
        logger.info(f"Gathered {len(local)} local files.")

        async with AsyncExitStack() as stack:
            store: ObjectStore = self._store or await stack.enter_async_context(
                open_s3_store(self._config)
            )

            self.phase = "listing remote objects"
            remote: List[RemoteObjectRecord] = exclude_remote(
                await list_remote(store), app.exclude
            )
            logger.info(f"Gathered {len(remote)} remote objects.")

            self.phase = "reconciling"
            plan: SyncPlan = await Reconciler(app, self._shutdown_event).reconcile(
                local, remote
            )
            summary.skipped = sorted(plan.skipped)
            if self._interrupted(summary):
                return summary

            logger.info(
                f"Plan: {len(plan.to_create)} to create, "
                f"{len(plan.to_update)} to update, "
                f"{len(plan.to_delete)} to delete, "
                f"{len(plan.skipped)} current."
            )
            if plan.is_empty:
                logger.info("No files to update.")
                return summary

            if app.dry_run:
                summary.created = sorted(plan.to_create)
                summary.updated = sorted(plan.to_update)
                summary.deleted = sorted(plan.to_delete)
                logger.info("Dry run: no changes were made.")
                return summary

            executor: TransferExecutor = TransferExecutor(
                store, app, self._shutdown_event
            )
            self.phase = "uploading"
            report: TransferReport = await self._run_transfers(
                executor, plan, {record.path: record for record in local}
            )
            if not self._interrupted(summary) and plan.to_delete:
                self.phase = "deleting"
                report.merge(await executor.apply_deletions(plan))

        summary.created = report.created
        summary.updated = report.updated
        summary.deleted = report.deleted
        summary.failures = report.failures
        self.phase = "finished"
        self._interrupted(summary)

        if summary.failures:
            logger.warning(f"s3-sync finished with {summary.failed} failed files.")
        elif not summary.interrupted:
            logger.info("s3-sync pipeline completed successfully")
        return summary

    def _interrupted(self, summary: SyncSummary) -> bool:
        if self._shutdown_event.is_set():
            if not summary.interrupted:
                logger.warning("Shutdown initiated, returning partial summary.")
            summary.interrupted = True
        return summary.interrupted

    async def _run_transfers(
        self,
        executor: TransferExecutor,
        plan: SyncPlan,
        local_index: Dict[str, LocalFileRecord],
    ) -> TransferReport:
        """
        Run creates and updates behind a transient progress bar.

        Args:
            executor (TransferExecutor): The executor bound to the store.
            plan (SyncPlan): The plan to apply.
            local_index (Dict[str, LocalFileRecord]): Local records by path.

        Returns:
            TransferReport: The transfer outcome.
        """
        total: int = len(plan.to_create) + len(plan.to_update)
        if total == 0:
            return TransferReport()

        progress: Progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeRemainingColumn(),
            transient=True,
        )
        with progress:
            task_id: TaskID = progress.add_task("Uploading...", total=total)
            return await executor.apply_transfers(
                plan, local_index, progress_bar=progress, progress_task_id=task_id
            )
