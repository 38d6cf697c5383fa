"""Unit tests for apiscan.core.models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from apiscan.core.models import (
    ApiRecord,
    Category,
    CategoryIndex,
    DetailSelection,
    MatchResult,
    RecordStore,
    ScanReport,
    SyncFailure,
    SyncReport,
)

# ---------------------------------------------------------------------------
# ApiRecord
# ---------------------------------------------------------------------------


class TestApiRecord:
    def test_equality_uses_name_only(self) -> None:
        a = ApiRecord(name="VirtualAllocEx", summary="Allocates memory")
        b = ApiRecord(name="VirtualAllocEx", library="kernel32.dll")
        assert a == b
        assert hash(a) == hash(b)
        assert not a.same_details(b)

    def test_different_names_differ(self) -> None:
        assert ApiRecord(name="OpenProcess") != ApiRecord(name="openprocess")

    def test_frozen(self) -> None:
        record = ApiRecord(name="OpenProcess")
        with pytest.raises(ValidationError):
            record.summary = "changed"  # type: ignore[misc]

    def test_set_deduplicates_by_name(self) -> None:
        records = {ApiRecord(name="A", summary="one"), ApiRecord(name="A", summary="two")}
        assert len(records) == 1


# ---------------------------------------------------------------------------
# Category
# ---------------------------------------------------------------------------


class TestCategory:
    def test_add_replaces_same_name(self) -> None:
        category = Category(header="Injection")
        category.add(ApiRecord(name="VirtualAllocEx", summary="old"))
        category.add(ApiRecord(name="VirtualAllocEx", summary="new"))
        assert len(category) == 1
        assert category.get("VirtualAllocEx").summary == "new"

    def test_names_and_sorted_records(self) -> None:
        category = Category.from_records(
            "Injection", [ApiRecord(name="b"), ApiRecord(name="a")]
        )
        assert category.names == {"a", "b"}
        assert [r.name for r in category.sorted_records()] == ["a", "b"]

    def test_get_missing(self) -> None:
        assert Category(header="Empty").get("x") is None


# ---------------------------------------------------------------------------
# RecordStore
# ---------------------------------------------------------------------------


class TestRecordStore:
    def test_headers_follow_categories(self, sample_store: RecordStore) -> None:
        assert sample_store.headers == ["Enumeration", "Injection", "Anti-Debugging"]
        assert len(sample_store.get_name_sets()) == len(sample_store.headers)

    def test_lookup(self, sample_store: RecordStore) -> None:
        record = sample_store.lookup(1, "VirtualAllocEx")
        assert record is not None
        assert record.library == "kernel32.dll"
        assert sample_store.lookup(0, "VirtualAllocEx") is None
        assert sample_store.lookup(1, "virtualallocex") is None

    def test_lookup_out_of_range(self, sample_store: RecordStore) -> None:
        with pytest.raises(IndexError):
            sample_store.lookup(10, "VirtualAllocEx")

    def test_record_count(self, sample_store: RecordStore) -> None:
        assert sample_store.record_count() == 7

    def test_is_set_equal_ignores_insertion_order(self) -> None:
        a = RecordStore(categories=[Category.from_records("X", [ApiRecord(name="1"), ApiRecord(name="2")])])
        b = RecordStore(categories=[Category.from_records("X", [ApiRecord(name="2"), ApiRecord(name="1")])])
        assert a.is_set_equal(b)

    def test_is_set_equal_compares_details(self) -> None:
        a = RecordStore(categories=[Category.from_records("X", [ApiRecord(name="1", summary="s")])])
        b = RecordStore(categories=[Category.from_records("X", [ApiRecord(name="1")])])
        assert not a.is_set_equal(b)

    def test_is_set_equal_compares_header_order(self) -> None:
        a = RecordStore(categories=[Category(header="X"), Category(header="Y")])
        b = RecordStore(categories=[Category(header="Y"), Category(header="X")])
        assert not a.is_set_equal(b)


# ---------------------------------------------------------------------------
# Remote payloads and reports
# ---------------------------------------------------------------------------


class TestCategoryIndex:
    def test_misaligned_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CategoryIndex(headers=["A", "B"], members=[["x"]])

    def test_total_members(self) -> None:
        index = CategoryIndex(headers=["A", "B"], members=[["x", "y"], ["z"]])
        assert index.total_members() == 3


class TestReports:
    def test_sync_report_complete(self) -> None:
        report = SyncReport()
        assert report.complete
        report.failures.append(SyncFailure(header="A", name="x"))
        assert not report.complete

    def test_detail_selection(self) -> None:
        assert not DetailSelection().any
        assert DetailSelection(library=True).any
        everything = DetailSelection.all()
        assert everything.summary and everything.library and everything.documentation

    def test_scan_report_helpers(self) -> None:
        report = ScanReport(
            results=[
                MatchResult(header="A", names={"x", "y"}),
                MatchResult(header="B"),
                MatchResult(header="C", names={"y"}),
            ]
        )
        assert report.headers == ["A", "B", "C"]
        assert [r.header for r in report.matched_results] == ["A", "C"]
        assert report.suspect_count == 2
