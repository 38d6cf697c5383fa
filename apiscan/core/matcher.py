"""
Import Matcher
===============

Intersects a sample's imported names with every cached category.

Matching is exact and case-sensitive: ``CreateFileA`` does not match
``CreateFile``.  Categories without a match still produce an (empty)
entry so results stay aligned with ``RecordStore.headers``.
"""

from __future__ import annotations

from typing import AbstractSet

from apiscan.core.models import (
    ApiRecord,
    DetailSelection,
    MatchResult,
    RecordStore,
)


def match_imports(
    import_names: AbstractSet[str],
    store: RecordStore,
) -> list[set[str]]:
    """Return the matched import names for each category, in order.

    Args:
        import_names: Names imported by the sample.
        store: Populated record store.

    Returns:
        One set per category; ``result[k]`` is the intersection of
        *import_names* with the names of ``store.categories[k]``.
    """
    return [names & import_names for names in store.get_name_sets()]


def enrich(
    import_names: AbstractSet[str],
    store: RecordStore,
    selection: DetailSelection | None = None,
) -> list[MatchResult]:
    """Match imports and attach the cached record for each matched name.

    Records are looked up only when *selection* asks for a detail field.
    A name that matched but has no record yields a record with every
    detail field empty.

    Args:
        import_names: Names imported by the sample.
        store: Populated record store.
        selection: Requested detail fields.

    Returns:
        One :class:`MatchResult` per category, aligned with the headers.
    """
    selection = selection or DetailSelection()
    results: list[MatchResult] = []

    for index, (header, matched) in enumerate(
        zip(store.headers, match_imports(import_names, store))
    ):
        records: list[ApiRecord] = []
        if selection.any:
            for name in sorted(matched):
                record = store.lookup(index, name)
                records.append(record if record is not None else ApiRecord(name=name))
        results.append(MatchResult(header=header, names=matched, records=records))

    return results
