"""
ApiScan Data Models
====================

Pydantic-based models for the categorized API-reputation cache and the
results produced by matching a sample's imports against it.

A :class:`RecordStore` is an ordered list of :class:`Category` objects.
Category order mirrors the remote source's presentation order and must be
preserved end to end: matcher output and rendered tables are aligned with
``RecordStore.headers`` by position.

Inside a category, records are keyed by API name.  :class:`ApiRecord`
equality and hashing also use the name alone, so two records describing
the same API with different details are considered the same record and a
later insert replaces the earlier one.

References:
    - MalAPI.io -- Windows API to malware technique mapping.
      https://malapi.io/
    - Pydantic v2 Documentation. https://docs.pydantic.dev/latest/
"""

from __future__ import annotations

import enum
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class FailurePolicy(str, enum.Enum):
    """What the synchronizer does when one member's detail fetch fails."""
    ABORT_CATEGORY = "abort_category"
    SKIP_MEMBER = "skip_member"


class OutputFormat(str, enum.Enum):
    """Supported output formats."""
    TXT = "txt"
    JSON = "json"
    YAML = "yaml"
    TOML = "toml"
    CSV = "csv"


# ---------------------------------------------------------------------------
# Records and categories
# ---------------------------------------------------------------------------

class ApiRecord(BaseModel):
    """Cached reputation data for a single Windows API.

    Attributes:
        name: API name; the only field used for equality and hashing.
        summary: Short description of what the API does.
        library: DLL the API is exported from.
        documentation_url: Link to the API's documentation page.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    summary: Optional[str] = None
    library: Optional[str] = None
    documentation_url: Optional[str] = None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ApiRecord):
            return NotImplemented
        return self.name == other.name

    def __hash__(self) -> int:
        return hash(self.name)

    def same_details(self, other: ApiRecord) -> bool:
        """Full structural comparison, including the detail fields."""
        return self.model_dump() == other.model_dump()


class Category(BaseModel):
    """A named group of API records sharing a behavioural theme.

    Attributes:
        header: Display name, e.g. ``"Injection"``.
        records: Records keyed by API name.
    """
    header: str
    records: dict[str, ApiRecord] = Field(default_factory=dict)

    @classmethod
    def from_records(cls, header: str, records: Iterable[ApiRecord]) -> Category:
        category = cls(header=header)
        for record in records:
            category.add(record)
        return category

    def add(self, record: ApiRecord) -> None:
        """Insert *record*, replacing any record with the same name."""
        self.records[record.name] = record

    def get(self, name: str) -> Optional[ApiRecord]:
        return self.records.get(name)

    @property
    def names(self) -> set[str]:
        return set(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def sorted_records(self) -> list[ApiRecord]:
        return [self.records[name] for name in sorted(self.records)]


class RecordStore(BaseModel):
    """The full persisted unit: ordered categories and their records.

    ``headers`` is derived from the categories, so the number of headers
    and the number of record sets are always equal and aligned.

    Usage::

        store = RecordStore(categories=[Category(header="Injection")])
        store.categories[0].add(ApiRecord(name="VirtualAllocEx"))
        store.lookup(0, "VirtualAllocEx")
    """
    categories: list[Category] = Field(default_factory=list)

    @property
    def headers(self) -> list[str]:
        return [category.header for category in self.categories]

    def lookup(self, category_index: int, name: str) -> Optional[ApiRecord]:
        """Exact-name lookup inside one category.

        Args:
            category_index: Position of the category in :attr:`categories`.
            name: API name, compared case-sensitively.

        Returns:
            The stored record, or ``None`` if the category has no record
            with that name.

        Raises:
            IndexError: If *category_index* is out of range.
        """
        return self.categories[category_index].get(name)

    def get_name_sets(self) -> list[set[str]]:
        """Return one set of API names per category, in category order."""
        return [category.names for category in self.categories]

    def record_count(self) -> int:
        return sum(len(category) for category in self.categories)

    def is_set_equal(self, other: RecordStore) -> bool:
        """Compare headers in order and records per category, details included."""
        if self.headers != other.headers:
            return False
        for mine, theirs in zip(self.categories, other.categories):
            if mine.names != theirs.names:
                return False
            for name, record in mine.records.items():
                if not record.same_details(theirs.records[name]):
                    return False
        return True


# ---------------------------------------------------------------------------
# Remote source payloads
# ---------------------------------------------------------------------------

class CategoryIndex(BaseModel):
    """Category headers and their member API names, as listed remotely."""
    headers: list[str] = Field(default_factory=list)
    members: list[list[str]] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_alignment(self) -> CategoryIndex:
        if len(self.headers) != len(self.members):
            raise ValueError(
                f"index has {len(self.headers)} headers but "
                f"{len(self.members)} member columns"
            )
        return self

    def total_members(self) -> int:
        return sum(len(column) for column in self.members)


class ApiDetail(BaseModel):
    """Detail fields scraped from one API's page."""
    summary: Optional[str] = None
    library: Optional[str] = None
    documentation_url: Optional[str] = None


# ---------------------------------------------------------------------------
# Synchronization reporting
# ---------------------------------------------------------------------------

class SyncProgress(BaseModel):
    """Incremental progress for one category during synchronization."""
    header: str
    current: str = ""
    completed: int = 0
    total: int = 0
    failed: bool = False
    aborted: bool = False


class SyncFailure(BaseModel):
    """A member whose detail fetch failed during synchronization."""
    header: str
    name: str
    reason: str = ""


class SyncReport(BaseModel):
    """Outcome of a synchronization pass beyond the store itself.

    Attributes:
        failures: Members whose detail fetch failed.
        skipped: Members the remote marked as not available.
    """
    failures: list[SyncFailure] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failures


# ---------------------------------------------------------------------------
# Matching results
# ---------------------------------------------------------------------------

class DetailSelection(BaseModel):
    """Detail fields requested for matched imports."""
    summary: bool = False
    library: bool = False
    documentation: bool = False

    @classmethod
    def all(cls) -> DetailSelection:
        return cls(summary=True, library=True, documentation=True)

    @property
    def any(self) -> bool:
        return self.summary or self.library or self.documentation


class MatchResult(BaseModel):
    """Matched imports for one category.

    Attributes:
        header: Category display name.
        names: Import names present in both the sample and the category.
        records: One record per matched name, sorted by name.  Empty when
            no detail fields were requested.
    """
    header: str
    names: set[str] = Field(default_factory=set)
    records: list[ApiRecord] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.names


class ScanReport(BaseModel):
    """Complete result for one scanned sample.

    Attributes:
        sample: Resolved path of the scanned file.
        sha256: SHA-256 of the file contents.
        import_count: Number of distinct imported names.
        results: One entry per category, aligned with the store headers.
        selection: Detail fields that were requested.
        duration_seconds: Wall-clock time of the scan.
    """
    sample: str = ""
    sha256: str = ""
    import_count: int = 0
    results: list[MatchResult] = Field(default_factory=list)
    selection: DetailSelection = Field(default_factory=DetailSelection)
    duration_seconds: float = 0.0

    @property
    def headers(self) -> list[str]:
        return [result.header for result in self.results]

    @property
    def matched_results(self) -> list[MatchResult]:
        return [result for result in self.results if not result.is_empty]

    @property
    def suspect_count(self) -> int:
        return len(set().union(*(result.names for result in self.results)))
