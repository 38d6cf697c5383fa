"""
Record Store Persistence
=========================

MessagePack encoding of a :class:`~apiscan.core.models.RecordStore`.

Wire layout::

    {
      "categories": [
        {"header": "Injection",
         "records": [{"name": ..., "summary": ..., "library": ...,
                      "documentation_url": ...}, ...]},
        ...
      ]
    }

Records are written in name order so equal stores encode to equal bytes.
There is no version field: a layout change makes existing caches fail
validation, which surfaces as :class:`CorruptCache` instead of a misread.

References:
    - MessagePack specification. https://github.com/msgpack/msgpack
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import msgpack
from pydantic import ValidationError

from apiscan.core.errors import CorruptCache
from apiscan.core.models import ApiRecord, Category, RecordStore


def _store_to_payload(store: RecordStore) -> dict[str, Any]:
    return {
        "categories": [
            {
                "header": category.header,
                "records": [
                    record.model_dump() for record in category.sorted_records()
                ],
            }
            for category in store.categories
        ]
    }


def serialize(store: RecordStore) -> bytes:
    """Encode *store* as MessagePack bytes."""
    return msgpack.packb(_store_to_payload(store), use_bin_type=True)


def deserialize(data: bytes, path: Optional[Path] = None) -> RecordStore:
    """Decode MessagePack bytes produced by :func:`serialize`.

    Args:
        data: Raw cache file contents.
        path: Cache file the bytes came from, used in error messages.

    Returns:
        The decoded record store.

    Raises:
        CorruptCache: If the bytes are truncated, carry trailing data, are
            not MessagePack, or do not have the expected shape.
    """
    try:
        payload = msgpack.unpackb(data, raw=False)
    except (ValueError, TypeError, msgpack.UnpackException) as exc:
        raise CorruptCache(f"cache is not valid MessagePack: {exc}", path) from exc

    if not isinstance(payload, dict) or "categories" not in payload:
        raise CorruptCache("cache is missing the 'categories' field", path)

    try:
        categories = [
            Category.from_records(
                entry["header"],
                (ApiRecord.model_validate(raw) for raw in entry["records"]),
            )
            for entry in payload["categories"]
        ]
        return RecordStore(categories=categories)
    except (KeyError, TypeError, ValidationError) as exc:
        raise CorruptCache(f"cache has an unexpected shape: {exc}", path) from exc
