"""
Record Store Synchronizer
==========================

Builds a fresh :class:`~apiscan.core.models.RecordStore` from a
:class:`~apiscan.collectors.malapi.RemoteSource`.

Flow::

    fetch_index()                       (once, failure is fatal)
    for each category, in index order:
        spawn one task per member ──► async with semaphore:
                                          fetch_detail(name)
        collect results as they complete, insert into the category

A single :class:`asyncio.Semaphore` is shared by every category, so at
most ``max_concurrency`` detail requests are in flight at any moment over
the whole run.  Only the collecting coroutine touches the store, so no
lock is needed around inserts.

Per-member failures are handled according to :class:`FailurePolicy` and
recorded in :attr:`Synchronizer.report`.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

from shared.logger import QuarryLogger

from apiscan.collectors.malapi import RemoteSource
from apiscan.core.errors import DetailFetchFailed, IndexParseError
from apiscan.core.models import (
    ApiDetail,
    ApiRecord,
    Category,
    FailurePolicy,
    RecordStore,
    SyncFailure,
    SyncProgress,
    SyncReport,
)

ProgressCallback = Callable[[SyncProgress], None]


class Synchronizer:
    """Populate a record store from a remote source with bounded fan-out.

    Usage::

        sync = Synchronizer(source, max_concurrency=8)
        store = await sync.synchronize()
        if not sync.report.complete:
            ...

    Args:
        source:          Remote index and detail provider.
        max_concurrency: Upper bound on concurrent detail fetches.
        failure_policy:  Reaction to a member whose detail fetch fails.
        progress:        Called with a :class:`SyncProgress` after every
                         member completes.
        logger:          Logger; a new one is created if not provided.

    Raises:
        ValueError: If *max_concurrency* is less than 1.
    """

    def __init__(
        self,
        source: RemoteSource,
        *,
        max_concurrency: int = 4,
        failure_policy: FailurePolicy = FailurePolicy.ABORT_CATEGORY,
        progress: Optional[ProgressCallback] = None,
        logger: Optional[QuarryLogger] = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {max_concurrency}")
        self._source = source
        self._max_concurrency = max_concurrency
        self._policy = FailurePolicy(failure_policy)
        self._progress = progress
        self._logger = logger or QuarryLogger("apiscan.sync")
        self._report = SyncReport()

    @property
    def report(self) -> SyncReport:
        """Failures and skipped members of the most recent run."""
        return self._report

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    # ------------------------------------------------------------------ #
    #  Public interface
    # ------------------------------------------------------------------ #

    async def synchronize(self) -> RecordStore:
        """Fetch the index and every member's details.

        Returns:
            A new store whose categories follow the index order.

        Raises:
            SourceUnreachable: If the index cannot be fetched.
            IndexParseError: If headers and member columns are misaligned.
        """
        self._report = SyncReport()

        with self._logger.operation("synchronize"):
            index = await self._source.fetch_index()
            if len(index.headers) != len(index.members):
                raise IndexParseError(
                    f"index has {len(index.headers)} headers but "
                    f"{len(index.members)} member columns"
                )
            self._logger.info(
                "Synchronizing %d categories (%d members, concurrency %d)",
                len(index.headers), index.total_members(), self._max_concurrency,
            )

            semaphore = asyncio.Semaphore(self._max_concurrency)
            store = RecordStore()
            for header, members in zip(index.headers, index.members):
                category = await self._sync_category(header, members, semaphore)
                store.categories.append(category)

        if self._report.failures:
            self._logger.warning(
                "Synchronization finished with %d failed member(s)",
                len(self._report.failures),
            )
        return store

    # ------------------------------------------------------------------ #
    #  Internal helpers
    # ------------------------------------------------------------------ #

    async def _fetch(
        self, name: str, semaphore: asyncio.Semaphore
    ) -> tuple[str, Optional[ApiDetail]]:
        async with semaphore:
            detail = await self._source.fetch_detail(name)
        return name, detail

    async def _sync_category(
        self,
        header: str,
        members: list[str],
        semaphore: asyncio.Semaphore,
    ) -> Category:
        category = Category(header=header)
        names = list(dict.fromkeys(members))
        total = len(names)
        completed = 0

        tasks = [asyncio.create_task(self._fetch(name, semaphore)) for name in names]
        try:
            for next_done in asyncio.as_completed(tasks):
                try:
                    name, detail = await next_done
                except DetailFetchFailed as exc:
                    completed += 1
                    self._record_failure(header, exc)
                    aborting = self._policy is FailurePolicy.ABORT_CATEGORY
                    self._emit(header, exc.name, completed, total, failed=True, aborted=aborting)
                    if not aborting:
                        category.add(ApiRecord(name=exc.name))
                        continue
                    self._logger.warning(
                        "Abandoning %d remaining member(s) of %s",
                        total - completed, header,
                    )
                    break

                completed += 1
                if detail is None:
                    self._report.skipped.append(name)
                    self._logger.debug("%s is not available, skipped", name)
                else:
                    category.add(ApiRecord(name=name, **detail.model_dump()))
                self._emit(header, name, completed, total)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            # Reap cancelled and unobserved tasks
            await asyncio.gather(*tasks, return_exceptions=True)

        return category

    def _record_failure(self, header: str, exc: DetailFetchFailed) -> None:
        self._report.failures.append(
            SyncFailure(header=header, name=exc.name, reason=exc.reason or str(exc))
        )
        self._logger.warning(
            "Detail fetch failed in %s: %s", header, exc, header=header, name=exc.name
        )

    def _emit(
        self,
        header: str,
        name: str,
        completed: int,
        total: int,
        *,
        failed: bool = False,
        aborted: bool = False,
    ) -> None:
        if self._progress is None:
            return
        self._progress(
            SyncProgress(
                header=header,
                current=name,
                completed=completed,
                total=total,
                failed=failed,
                aborted=aborted,
            )
        )
