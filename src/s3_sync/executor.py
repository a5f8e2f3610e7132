# src/s3_sync/executor.py
"""
Applies a `SyncPlan` to the object store.

Uploads and deletions each run in a bounded worker pool. A failure is
recorded against the single file it concerns and never aborts the batch;
the orchestrator turns the collected failures into the run summary.
"""

import asyncio
import hashlib
import logging
import mimetypes
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Mapping, Optional, Tuple

from s3_sync.config import AppConfig
from s3_sync.engine import SyncPlan
from s3_sync.enumerator import LocalFileRecord
from s3_sync.exceptions import RemoteError, TransferError
from s3_sync.policy import HeaderPolicy, HeaderPolicyTable
from s3_sync.pool import bounded_map
from s3_sync.store import ObjectStore, RemoteObjectRecord

if TYPE_CHECKING:
    from rich.progress import Progress, TaskID

logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE: str = "application/octet-stream"

# Type of a compressed file served as-is, keyed by `mimetypes` encoding
COMPRESSED_CONTENT_TYPES: Dict[str, str] = {
    "gzip": "application/gzip",
    "bzip2": "application/x-bzip2",
    "xz": "application/x-xz",
    "compress": "application/x-compress",
    "br": "application/x-brotli",
}


def guess_content_type(path: str) -> str:
    """
    Infer a content type from the file extension.

    A compressed file such as `app.js.gz` or `site.tar.gz` is typed as the
    archive itself, not as its inner content, since it is stored and served
    without a `Content-Encoding`.

    Args:
        path (str): The logical relative path of the object.

    Returns:
        str: The guessed MIME type, or `application/octet-stream`.
    """
    content_type, encoding = mimetypes.guess_type(path, strict=False)
    if encoding is not None:
        return COMPRESSED_CONTENT_TYPES.get(encoding, DEFAULT_CONTENT_TYPE)
    return content_type or DEFAULT_CONTENT_TYPE


class Operation(Enum):
    """The kind of mutation applied to a remote object."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class TransferFailure:
    """
    A single failed mutation, with enough detail to retry it.

    Attributes:
        path (str): The relative key of the object.
        operation (Operation): What was attempted.
        cause (str): The error description.
    """

    path: str
    operation: Operation
    cause: str


@dataclass
class TransferReport:
    """The outcome of applying (part of) a plan."""

    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    failures: List[TransferFailure] = field(default_factory=list)

    def merge(self, other: "TransferReport") -> None:
        self.created.extend(other.created)
        self.updated.extend(other.updated)
        self.deleted.extend(other.deleted)
        self.failures.extend(other.failures)


_Outcome = Tuple[str, Operation, Optional[str]]


class TransferExecutor:
    """Uploads and deletes objects on behalf of a `SyncPlan`."""

    def __init__(
        self,
        store: ObjectStore,
        app_config: AppConfig,
        shutdown_event: Optional[asyncio.Event] = None,
    ) -> None:
        """
        Args:
            store (ObjectStore): The target object store.
            app_config (AppConfig): Provides ACL, header policies, integrity
                verification and the transfer concurrency limit.
            shutdown_event (asyncio.Event, optional): Stops pulling new work
                when set.
        """
        self._store: ObjectStore = store
        self._config: AppConfig = app_config
        self._policies: HeaderPolicyTable = app_config.policies
        self._shutdown_event: Optional[asyncio.Event] = shutdown_event

    def headers_for(self, key: str, source: str) -> Tuple[str, Dict[str, str]]:
        """
        Resolve the content type and extra headers of an upload.

        Only a folded `.gz` sibling is sent with `Content-Encoding: gzip`;
        a compressed file uploaded under its own key keeps its archive type.

        Args:
            key (str): The logical key; its extension decides the content type.
            source (str): The local file that provides the content.

        Returns:
            Tuple[str, Dict[str, str]]: The content type and header mapping.
        """
        content_type: str = guess_content_type(key)
        policy: HeaderPolicy = self._policies.resolve(content_type)
        headers: Dict[str, str] = policy.headers()
        if source != key and source.endswith(".gz"):
            headers.setdefault("Content-Encoding", "gzip")
        return content_type, headers

    async def _upload(self, key: str, source_path: Path, source: str) -> None:
        body: bytes = await asyncio.to_thread(source_path.read_bytes)
        content_type, headers = self.headers_for(key, source)
        await self._store.put_object(key, body, content_type, headers, self._config.acl)

        if self._config.verify_uploads:
            local_md5: str = hashlib.md5(body).hexdigest()
            remote: RemoteObjectRecord = await self._store.head_object(key)
            if remote.etag != local_md5:
                raise TransferError(
                    f"Integrity check failed for '{key}': ETag mismatch "
                    f"({local_md5} != {remote.etag})"
                )

    async def create(self, key: str, source_path: Path, source: str) -> None:
        """
        Upload a new object.

        Args:
            key (str): The relative key to create.
            source_path (Path): Absolute path of the content on disk.
            source (str): Relative path of the content (the key itself or
                its `.gz` sibling).
        """
        await self._upload(key, source_path, source)

    async def update(self, key: str, source_path: Path, source: str) -> None:
        """Replace an existing object in full. See `create`."""
        await self._upload(key, source_path, source)

    async def delete(self, key: str) -> None:
        """Remove a remote object."""
        await self._store.delete_object(key)

    async def apply_transfers(
        self,
        plan: SyncPlan,
        local_index: Mapping[str, LocalFileRecord],
        progress_bar: Optional["Progress"] = None,
        progress_task_id: Optional["TaskID"] = None,
    ) -> TransferReport:
        """
        Run every create and update of the plan.

        Args:
            plan (SyncPlan): The plan to apply.
            local_index (Mapping[str, LocalFileRecord]): Local records by path.
            progress_bar (Progress, optional): Rich progress to advance.
            progress_task_id (TaskID, optional): Task of `progress_bar`.

        Returns:
            TransferReport: Created, updated and failed keys.
        """
        jobs: List[Tuple[str, Operation]] = [
            (key, Operation.CREATE) for key in sorted(plan.to_create)
        ] + [(key, Operation.UPDATE) for key in sorted(plan.to_update)]

        async def run(job: Tuple[str, Operation]) -> _Outcome:
            key, operation = job
            source: str = plan.source_for(key)
            try:
                record: Optional[LocalFileRecord] = local_index.get(source)
                if record is None:
                    raise TransferError(f"No local file for '{source}'.")
                if operation is Operation.CREATE:
                    logger.info(f"Creating {key}")
                    await self.create(key, record.absolute_path, source)
                else:
                    logger.info(f"Updating {key}")
                    await self.update(key, record.absolute_path, source)
                return key, operation, None
            except (RemoteError, OSError) as e:
                logger.error(f"Failed to {operation.value} '{key}': {e}")
                return key, operation, str(e)
            except Exception as e:
                logger.exception(f"An unexpected error occurred transferring '{key}'")
                return key, operation, f"{type(e).__name__}: {e}"
            finally:
                if progress_bar is not None and progress_task_id is not None:
                    progress_bar.update(progress_task_id, advance=1)

        outcomes: List[_Outcome] = await bounded_map(
            jobs, run, self._config.transfer_concurrency, self._shutdown_event
        )
        return self._report(outcomes)

    async def apply_deletions(self, plan: SyncPlan) -> TransferReport:
        """
        Delete every orphan of the plan.

        Args:
            plan (SyncPlan): The plan to apply.

        Returns:
            TransferReport: Deleted and failed keys.
        """

        async def run(key: str) -> _Outcome:
            try:
                logger.info(f"Deleting {key}")
                await self.delete(key)
                return key, Operation.DELETE, None
            except RemoteError as e:
                logger.error(f"Failed to delete '{key}': {e}")
                return key, Operation.DELETE, str(e)
            except Exception as e:
                logger.exception(f"An unexpected error occurred deleting '{key}'")
                return key, Operation.DELETE, f"{type(e).__name__}: {e}"

        outcomes: List[_Outcome] = await bounded_map(
            sorted(plan.to_delete),
            run,
            self._config.transfer_concurrency,
            self._shutdown_event,
        )
        return self._report(outcomes)

    @staticmethod
    def _report(outcomes: List[_Outcome]) -> TransferReport:
        report: TransferReport = TransferReport()
        done: Dict[Operation, List[str]] = {
            Operation.CREATE: report.created,
            Operation.UPDATE: report.updated,
            Operation.DELETE: report.deleted,
        }
        for key, operation, error in outcomes:
            if error is None:
                done[operation].append(key)
            else:
                report.failures.append(TransferFailure(key, operation, error))
        for keys in done.values():
            keys.sort()
        report.failures.sort(key=lambda failure: failure.path)
        return report
