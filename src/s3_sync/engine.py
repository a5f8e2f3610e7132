# src/s3_sync/engine.py
"""
The reconciliation engine.

Given the local and remote snapshots of one run, the engine decides which
files have to be created, updated or deleted. It first partitions keys by set
membership, then discards files the remote already has in a same-age-or-newer
version (a cheap timestamp pre-filter), and finally compares MD5 checksums
against remote ETags for whatever is left. Both comparison phases run in a
bounded worker pool.
"""

import asyncio
import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import (
    AbstractSet,
    Dict,
    FrozenSet,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Tuple,
)

from s3_sync.config import AppConfig
from s3_sync.enumerator import LocalFileRecord
from s3_sync.pool import bounded_map
from s3_sync.store import RemoteObjectRecord

logger: logging.Logger = logging.getLogger(__name__)

GZIP_SUFFIX: str = ".gz"


def md5_file(path: Path, chunk_size: int = 1024 * 1024) -> str:
    """
    Compute the hex MD5 digest of a file, reading it in chunks.

    Args:
        path (Path): The file to hash.
        chunk_size (int): Read size in bytes.

    Returns:
        str: The hex digest, comparable with a single-part S3 ETag.
    """
    digest = hashlib.md5()
    with path.open("rb") as fh:
        while True:
            chunk: bytes = fh.read(chunk_size)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


def is_gzip_sibling(path: str, local_keys: AbstractSet[str]) -> bool:
    """
    True if `path` is the `.gz` variant of another local file.

    Args:
        path (str): The relative path to check.
        local_keys (AbstractSet[str]): All local relative paths.
    """
    return path.endswith(GZIP_SUFFIX) and path[: -len(GZIP_SUFFIX)] in local_keys


def resolve_transfer_source(
    path: str, local_keys: AbstractSet[str], prefer_gzip: bool
) -> str:
    """
    Decide which local file provides the content of `path`.

    With `prefer_gzip`, a `<path>.gz` sibling is what gets hashed and
    uploaded under the key `path`. Otherwise the file is its own source.

    Args:
        path (str): The logical relative path (the remote key).
        local_keys (AbstractSet[str]): All local relative paths.
        prefer_gzip (bool): Whether gzip siblings are preferred.

    Returns:
        str: The relative path of the file to read.
    """
    gzipped: str = f"{path}{GZIP_SUFFIX}"
    if prefer_gzip and gzipped in local_keys:
        return gzipped
    return path


@dataclass(frozen=True)
class SyncPlan:
    """
    The frozen outcome of one reconciliation.

    Attributes:
        to_create (FrozenSet[str]): Keys absent remotely that will be uploaded.
        to_update (FrozenSet[str]): Keys present remotely that will be replaced.
        to_delete (FrozenSet[str]): Remote orphans that will be removed.
        skipped (FrozenSet[str]): Keys evaluated and found current.
        sources (Mapping[str, str]): For every create/update key, the relative
            path of the local file providing its content.
    """

    to_create: FrozenSet[str] = frozenset()
    to_update: FrozenSet[str] = frozenset()
    to_delete: FrozenSet[str] = frozenset()
    skipped: FrozenSet[str] = frozenset()
    sources: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def is_empty(self) -> bool:
        """True if the plan requires no remote mutation at all."""
        return not (self.to_create or self.to_update or self.to_delete)

    def source_for(self, key: str) -> str:
        """Return the local source path for a create/update key."""
        return self.sources.get(key, key)


def _split(results: Sequence[Tuple[str, bool]]) -> Tuple[Set[str], Set[str]]:
    """Partition `(key, flag)` results into the flagged and unflagged keys."""
    flagged: Set[str] = {key for key, flag in results if flag}
    return flagged, {key for key, flag in results if not flag}


class Reconciler:
    """Computes a `SyncPlan` from local and remote snapshots."""

    def __init__(
        self,
        app_config: AppConfig,
        shutdown_event: Optional[asyncio.Event] = None,
    ) -> None:
        """
        Args:
            app_config (AppConfig): Provides `force`, `delete`, `prefer_gzip`
                and the per-phase concurrency limits.
            shutdown_event (asyncio.Event, optional): Stops the worker pools
                early when set.
        """
        self._config: AppConfig = app_config
        self._shutdown_event: Optional[asyncio.Event] = shutdown_event

    async def reconcile(
        self,
        local: Sequence[LocalFileRecord],
        remote: Sequence[RemoteObjectRecord],
    ) -> SyncPlan:
        """
        Partition the local and remote keys into create/update/delete/skip.

        Args:
            local (Sequence[LocalFileRecord]): Local records, exclusions applied.
            remote (Sequence[RemoteObjectRecord]): Remote snapshot, exclusions
                applied.

        Returns:
            SyncPlan: The frozen plan for this run.
        """
        local_index: Dict[str, LocalFileRecord] = {r.path: r for r in local}
        remote_index: Dict[str, RemoteObjectRecord] = {r.key: r for r in remote}
        local_keys: FrozenSet[str] = frozenset(local_index)
        remote_keys: FrozenSet[str] = frozenset(remote_index)
        prefer_gzip: bool = self._config.prefer_gzip

        candidates: Set[str] = set(local_keys)
        if prefer_gzip:
            siblings: Set[str] = {
                k for k in local_keys if is_gzip_sibling(k, local_keys)
            }
            if siblings:
                logger.debug(
                    f"Folding {len(siblings)} gzip siblings into their originals."
                )
            candidates -= siblings

        to_delete: FrozenSet[str] = (
            remote_keys - local_keys if self._config.delete else frozenset()
        )

        to_push: Set[str]
        skipped: Set[str] = set()
        if self._config.force:
            to_push = set(candidates)
        else:
            to_push = candidates - remote_keys
            to_evaluate: Set[str] = candidates - to_push
            logger.info(
                f"{len(to_push)} new files, {len(to_evaluate)} to evaluate, "
                f"{len(to_delete)} orphans."
            )

            # Keys a shutdown left unevaluated land in neither set
            fresh, current = await self._filter_by_mtime(
                to_evaluate, local_index, remote_index
            )
            skipped |= current

            changed, unchanged = await self._filter_by_checksum(
                fresh, local_index, remote_index, local_keys
            )
            skipped |= unchanged
            to_push |= changed

        sources: Dict[str, str] = {
            key: resolve_transfer_source(key, local_keys, prefer_gzip)
            for key in to_push
        }
        return SyncPlan(
            to_create=frozenset(to_push - remote_keys),
            to_update=frozenset(to_push & remote_keys),
            to_delete=to_delete,
            skipped=frozenset(skipped),
            sources=MappingProxyType(sources),
        )

    async def _filter_by_mtime(
        self,
        keys: AbstractSet[str],
        local_index: Mapping[str, LocalFileRecord],
        remote_index: Mapping[str, RemoteObjectRecord],
    ) -> Tuple[Set[str], Set[str]]:
        """
        Split keys by whether the local copy is strictly newer than the remote.

        A remote object with the same or a later timestamp is taken as
        current and never reaches the checksum phase, even if its content
        differs.

        Returns:
            Tuple[Set[str], Set[str]]: Keys that still need a checksum
                comparison, and keys found current. Keys not evaluated
                before a shutdown are in neither.
        """
        if not keys:
            return set(), set()
        logger.info(f"Comparing modification times of {len(keys)} files.")

        async def is_newer_locally(key: str) -> Tuple[str, bool]:
            remote_time = remote_index[key].last_modified
            local_time = local_index[key].mod_time
            if remote_time >= local_time:
                logger.debug(
                    f"'{key}' is current remotely ({remote_time} >= {local_time})."
                )
                return key, False
            return key, True

        results: List[Tuple[str, bool]] = await bounded_map(
            sorted(keys),
            is_newer_locally,
            self._config.mtime_concurrency,
            self._shutdown_event,
        )
        return _split(results)

    async def _filter_by_checksum(
        self,
        keys: AbstractSet[str],
        local_index: Mapping[str, LocalFileRecord],
        remote_index: Mapping[str, RemoteObjectRecord],
        local_keys: AbstractSet[str],
    ) -> Tuple[Set[str], Set[str]]:
        """
        Split keys by whether the local content differs from the remote ETag.

        Returns:
            Tuple[Set[str], Set[str]]: Keys that must be updated, and keys
                whose content matches.
        """
        if not keys:
            return set(), set()
        logger.info(f"Comparing checksums of {len(keys)} files.")
        prefer_gzip: bool = self._config.prefer_gzip

        async def differs(key: str) -> Tuple[str, bool]:
            source: str = resolve_transfer_source(key, local_keys, prefer_gzip)
            try:
                local_md5: str = await asyncio.to_thread(
                    md5_file, local_index[source].absolute_path
                )
            except OSError as e:
                # Let the transfer phase report the file as failed
                logger.warning(f"Could not checksum '{source}': {e}")
                return key, True
            remote_etag: str = remote_index[key].etag
            if local_md5 != remote_etag:
                logger.debug(f"'{key}' changed ({local_md5} != {remote_etag}).")
                return key, True
            return key, False

        results: List[Tuple[str, bool]] = await bounded_map(
            sorted(keys),
            differs,
            self._config.checksum_concurrency,
            self._shutdown_event,
        )
        return _split(results)
