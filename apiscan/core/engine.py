"""
ApiScan Engine
===============

Orchestrates one scan:

    1. Read the sample, enforce the size limit, hash it.
    2. Extract the imported function names (fails fast on non-PE input,
       before any network traffic).
    3. Load the record store through the cache manager, synchronizing
       from malapi.io when the cache is cold.
    4. Match the imports against every category and attach the requested
       details.

References:
    - Sikorski, M., & Honig, A. (2012). Practical Malware Analysis,
      ch. 1: Basic Static Techniques. No Starch Press.
"""

from __future__ import annotations

import hashlib
import time
from pathlib import Path
from typing import Optional

from shared.config import QuarryConfig
from shared.logger import QuarryLogger
from shared.network import QuarryHTTP

from apiscan.collectors.malapi import MalApiSource, RemoteSource
from apiscan.collectors.synchronizer import ProgressCallback, Synchronizer
from apiscan.core.cache import CacheManager, default_cache_path
from apiscan.core.errors import ApiScanError
from apiscan.core.matcher import enrich
from apiscan.core.models import (
    DetailSelection,
    FailurePolicy,
    RecordStore,
    ScanReport,
    SyncReport,
)
from apiscan.parsers.pe_imports import extract_imports


class ApiScanEngine:
    """Scan PE samples against the categorized API cache.

    Usage::

        engine = ApiScanEngine(config)
        report = await engine.scan("sample.exe", DetailSelection.all())

    Args:
        config:   Configuration; defaults are used if not provided.
        logger:   Logger; a new one is created if not provided.
        source:   Remote source override.  When ``None`` a
                  :class:`MalApiSource` is opened for each cold load.
        progress: Synchronization progress callback.
    """

    def __init__(
        self,
        config: QuarryConfig | None = None,
        logger: QuarryLogger | None = None,
        *,
        source: Optional[RemoteSource] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> None:
        self._config = config or QuarryConfig()
        self._logger = logger or QuarryLogger("apiscan.engine")
        self._source = source
        self._progress = progress
        self._last_sync_report: Optional[SyncReport] = None

    @property
    def cache_path(self) -> Optional[Path]:
        """Cache file location, or ``None`` when no cache directory is usable."""
        settings = self._config.apiscan
        if settings.cache_dir:
            return Path(settings.cache_dir).expanduser() / settings.cache_file
        return default_cache_path(settings.cache_file)

    @property
    def last_sync_report(self) -> Optional[SyncReport]:
        """Report of the synchronization run by the last load, if any."""
        return self._last_sync_report

    # ------------------------------------------------------------------ #
    #  Public interface
    # ------------------------------------------------------------------ #

    async def scan(
        self,
        file_path: str | Path,
        selection: DetailSelection | None = None,
        *,
        refresh: bool = False,
    ) -> ScanReport:
        """Match the imports of *file_path* against the cached categories.

        Raises:
            FileNotFoundError: If the sample does not exist.
            ApiScanError: If the sample is too large.
            UnsupportedFormat: If the sample is not a PE image.
            SourceUnreachable: If a cold cache cannot reach the source.
            CorruptCache: If the cache file cannot be decoded.
        """
        selection = selection or DetailSelection()
        started = time.perf_counter()
        path = Path(file_path)

        with self._logger.operation("scan"):
            size = path.stat().st_size
            max_size = self._config.apiscan.max_file_size
            if size > max_size:
                raise ApiScanError(
                    f"file too large: {size:,} bytes (max: {max_size:,} bytes)"
                )

            data = path.read_bytes()
            sha256 = hashlib.sha256(data).hexdigest()
            imports = extract_imports(data)
            self._logger.info("%s: %d imported names", path.name, len(imports))

            store = await self.load_store(refresh=refresh)
            results = enrich(imports, store, selection)

        return ScanReport(
            sample=str(path.resolve()),
            sha256=sha256,
            import_count=len(imports),
            results=results,
            selection=selection,
            duration_seconds=time.perf_counter() - started,
        )

    async def load_store(self, *, refresh: bool = False) -> RecordStore:
        """Load the record store, synchronizing when the cache is cold."""
        if self._source is not None:
            return await self._load_from(self._source, refresh)

        settings = self._config.apiscan
        async with QuarryHTTP(
            base_url=settings.source_url,
            timeout=settings.request_timeout,
            max_retries=settings.max_retries,
            backoff_base=settings.backoff_base,
            backoff_max=settings.backoff_max,
            user_agent=settings.user_agent,
        ) as http:
            return await self._load_from(MalApiSource(http), refresh)

    # ------------------------------------------------------------------ #
    #  Internal helpers
    # ------------------------------------------------------------------ #

    async def _load_from(self, source: RemoteSource, refresh: bool) -> RecordStore:
        settings = self._config.apiscan
        synchronizer = Synchronizer(
            source,
            max_concurrency=settings.max_concurrency,
            failure_policy=FailurePolicy(settings.failure_policy),
            progress=self._progress,
            logger=self._logger,
        )
        manager = CacheManager(synchronizer, self.cache_path, logger=self._logger)
        store = await manager.load(refresh=refresh)
        self._last_sync_report = synchronizer.report if manager.sync_count else None
        return store
