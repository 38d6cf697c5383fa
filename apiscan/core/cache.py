"""
Cache Manager
==============

Cold/Warm policy around the persisted record store.

- **Warm**: the cache file exists and no refresh was requested.  The file
  is decoded and returned; a file that fails to decode raises
  :class:`CorruptCache` rather than triggering a silent rebuild.
- **Cold**: no file, or a refresh was requested.  A refresh removes the
  stale file first.  One synchronization runs and its result is
  persisted with a write-to-temp-then-rename so readers never see a
  half-written file.

A store whose synchronization reported failures is returned for the
current run but not persisted.  A cache path of ``None`` means no usable
cache directory: the store is synchronized on every run.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from platformdirs import user_cache_dir

from shared.logger import QuarryLogger

from apiscan.core.errors import CacheWriteFailed, CorruptCache
from apiscan.core.models import RecordStore
from apiscan.core.store import deserialize, serialize

if TYPE_CHECKING:
    from apiscan.collectors.synchronizer import Synchronizer

APP_NAME = "apiscan"
DEFAULT_CACHE_FILE = "data.mpk"


def default_cache_path(file_name: str = DEFAULT_CACHE_FILE) -> Optional[Path]:
    """``<user cache dir>/apiscan/<file_name>``, or ``None`` if unavailable."""
    base = user_cache_dir(APP_NAME)
    if not base:
        return None
    return Path(base) / file_name


class CacheManager:
    """Load the record store from disk or rebuild it from the remote source.

    Usage::

        manager = CacheManager(synchronizer, default_cache_path())
        store = await manager.load()               # warm if possible
        store = await manager.load(refresh=True)   # always rebuild

    Args:
        synchronizer: Used for every cold load.
        cache_path:   Cache file location, or ``None`` to disable persistence.
        logger:       Logger; a new one is created if not provided.
    """

    def __init__(
        self,
        synchronizer: Synchronizer,
        cache_path: Optional[Path],
        logger: Optional[QuarryLogger] = None,
    ) -> None:
        self._synchronizer = synchronizer
        self._path = Path(cache_path) if cache_path is not None else None
        self._logger = logger or QuarryLogger("apiscan.cache")
        self._sync_count = 0

    @property
    def path(self) -> Optional[Path]:
        return self._path

    @property
    def sync_count(self) -> int:
        """Number of synchronizations this manager has run."""
        return self._sync_count

    # ------------------------------------------------------------------ #
    #  Public interface
    # ------------------------------------------------------------------ #

    async def load(self, refresh: bool = False) -> RecordStore:
        """Return the record store, synchronizing when the cache is cold.

        Args:
            refresh: Discard any existing cache file and rebuild.

        Raises:
            CorruptCache: If an existing cache file cannot be decoded.
            SourceUnreachable: If a cold load cannot reach the source.
        """
        with self._logger.operation("cache_load"):
            if self._path is None:
                self._logger.warning(
                    "No usable cache directory, data will not be cached"
                )
                return await self._synchronize()

            if refresh:
                self._remove_stale()
            elif self._path.is_file():
                self._logger.debug("Loading cache from %s", self._path)
                return self.read()

            store = await self._synchronize()
            if not self._synchronizer.report.complete:
                self._logger.warning(
                    "Synchronization was incomplete, cache not written"
                )
                return store

            try:
                self.persist(store)
            except CacheWriteFailed as exc:
                self._logger.warning("%s", exc)
            return store

    def read(self) -> RecordStore:
        """Decode the cache file.

        Raises:
            ValueError: If the manager has no cache path.
            CorruptCache: If the file cannot be read or decoded.
        """
        if self._path is None:
            raise ValueError("no cache path configured")
        try:
            data = self._path.read_bytes()
        except OSError as exc:
            raise CorruptCache(f"cache could not be read: {exc}", self._path) from exc
        return deserialize(data, self._path)

    def persist(self, store: RecordStore) -> None:
        """Atomically write *store* to the cache path.

        Raises:
            CacheWriteFailed: If the directory or file cannot be written.
        """
        if self._path is None:
            return
        data = serialize(store)
        directory = self._path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=".data-", suffix=".tmp", dir=directory
            )
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(data)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise CacheWriteFailed(self._path, str(exc)) from exc

        self._logger.info(
            "Cached %d records to %s", store.record_count(), self._path
        )

    # ------------------------------------------------------------------ #
    #  Internal helpers
    # ------------------------------------------------------------------ #

    async def _synchronize(self) -> RecordStore:
        self._sync_count += 1
        return await self._synchronizer.synchronize()

    def _remove_stale(self) -> None:
        if self._path is None:
            return
        try:
            self._path.unlink(missing_ok=True)
        except OSError as exc:
            # persist() replaces the file anyway
            self._logger.warning("Could not remove stale cache %s: %s", self._path, exc)
