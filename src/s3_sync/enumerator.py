# src/s3_sync/enumerator.py
"""
Enumeration of the local build directory and the remote bucket.

Both sides are reduced to records keyed by the same relative, forward-slash
separated path so they can be compared directly. Any failure here is fatal
for the run.
"""

import fnmatch
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Sequence

from s3_sync.exceptions import (
    LocalEnumerationError,
    RemoteError,
    RemoteListingError,
)
from s3_sync.store import ObjectStore, RemoteObjectRecord

logger: logging.Logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocalFileRecord:
    """
    A file found under the build directory.

    Attributes:
        path (str): Path relative to the build directory, `/` separated.
        absolute_path (Path): Location of the file on disk.
        mod_time (datetime): Modification time, timezone-aware UTC.
    """

    path: str
    absolute_path: Path
    mod_time: datetime


def _raise_walk_error(error: OSError) -> None:
    raise error


def list_local(root: Path) -> List[LocalFileRecord]:
    """
    Recursively list every file under `root`, dotfiles included.

    Args:
        root (Path): The build directory.

    Returns:
        List[LocalFileRecord]: One record per file, sorted by path.

    Raises:
        LocalEnumerationError: If `root` is missing, not a directory, or
            any part of it cannot be read.
    """
    root = Path(root)
    if not root.is_dir():
        raise LocalEnumerationError(f"Build directory '{root}' does not exist.")

    records: List[LocalFileRecord] = []
    try:
        for dirpath, _, filenames in os.walk(root, onerror=_raise_walk_error):
            for filename in filenames:
                file_path: Path = Path(dirpath) / filename
                if not file_path.is_file():
                    # Broken symlinks, sockets and the like
                    continue
                stat: os.stat_result = file_path.stat()
                records.append(
                    LocalFileRecord(
                        path=file_path.relative_to(root).as_posix(),
                        absolute_path=file_path,
                        mod_time=datetime.fromtimestamp(
                            stat.st_mtime, tz=timezone.utc
                        ),
                    )
                )
    except OSError as e:
        raise LocalEnumerationError(
            f"Cannot read build directory '{root}': {e}"
        ) from e

    records.sort(key=lambda record: record.path)
    logger.debug(f"Found {len(records)} local files under '{root}'.")
    return records


def _normalize_pattern(pattern: str) -> str:
    normalized: str = pattern.strip().replace("\\", "/")
    if normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized.lstrip("/")


def matches_pattern(path: str, pattern: str) -> bool:
    """
    Check a relative path against a single exclusion pattern.

    A pattern ending in `/` excludes everything under that directory. Other
    patterns are globs matched against the whole path or, component-wise,
    against its tail, so `*.map` and `.DS_Store` match at any depth.

    Args:
        path (str): The relative path.
        pattern (str): The exclusion pattern.

    Returns:
        bool: True if the path is excluded by the pattern.
    """
    norm: str = _normalize_pattern(pattern)
    if not norm:
        return False
    if norm.endswith("/"):
        return path.startswith(norm)
    return fnmatch.fnmatchcase(path, norm) or PurePosixPath(path).match(norm)


def is_excluded(path: str, patterns: Sequence[str]) -> bool:
    """True if `path` matches at least one of `patterns`."""
    return any(matches_pattern(path, pattern) for pattern in patterns)


def apply_exclusions(
    records: Iterable[LocalFileRecord], patterns: Sequence[str]
) -> List[LocalFileRecord]:
    """
    Drop every record whose path matches any of the patterns.

    Args:
        records (Iterable[LocalFileRecord]): The local records.
        patterns (Sequence[str]): Exclusion patterns.

    Returns:
        List[LocalFileRecord]: The records that survive.
    """
    if not patterns:
        return list(records)
    return [record for record in records if not is_excluded(record.path, patterns)]


def exclude_remote(
    records: Iterable[RemoteObjectRecord], patterns: Sequence[str]
) -> List[RemoteObjectRecord]:
    """Same as `apply_exclusions`, for remote records keyed by `key`."""
    if not patterns:
        return list(records)
    return [record for record in records if not is_excluded(record.key, patterns)]


async def list_remote(store: ObjectStore) -> List[RemoteObjectRecord]:
    """
    Take the one-per-run snapshot of the remote bucket.

    Args:
        store (ObjectStore): The object store client.

    Returns:
        List[RemoteObjectRecord]: Every object under the configured prefix.

    Raises:
        RemoteListingError: If the listing call fails.
    """
    try:
        records: List[RemoteObjectRecord] = await store.list_objects()
    except RemoteListingError:
        raise
    except RemoteError as e:
        raise RemoteListingError(str(e)) from e
    logger.debug(f"Found {len(records)} remote objects.")
    return records
