"""Unit tests for apiscan.output."""

from __future__ import annotations

import io
import json
import tomllib
from pathlib import Path

import pytest
import yaml
from rich.progress import Task

from shared.console import QuarryConsole

from apiscan.core.errors import RenderError
from apiscan.core.matcher import enrich
from apiscan.core.models import ApiRecord, Category, DetailSelection, RecordStore, ScanReport, SyncProgress
from apiscan.output.console import ApiScanConsoleOutput, SyncProgressDisplay
from apiscan.output.report import ReportGenerator, detail_columns, report_mapping

STORE = RecordStore(
    categories=[
        Category.from_records("Enumeration", [ApiRecord(name="Process32First")]),
        Category.from_records(
            "Injection",
            [
                ApiRecord(name="WriteProcessMemory", summary="Writes memory", library="kernel32.dll",
                          documentation_url="https://docs.test/wpm"),
                ApiRecord(name="VirtualAllocEx", summary="Allocates memory", library="kernel32.dll",
                          documentation_url="https://docs.test/vae"),
            ],
        ),
        Category.from_records("Anti-Debugging", [ApiRecord(name="IsDebuggerPresent")]),
    ]
)
IMPORTS = {"VirtualAllocEx", "WriteProcessMemory", "IsDebuggerPresent", "printf"}


def make_report(selection: DetailSelection) -> ScanReport:
    return ScanReport(results=enrich(IMPORTS, STORE, selection), selection=selection, import_count=4)


# ---------------------------------------------------------------------------
# Mapping shape
# ---------------------------------------------------------------------------


class TestMapping:
    def test_names_only(self) -> None:
        assert report_mapping(make_report(DetailSelection())) == {
            "Injection": [{"name": "VirtualAllocEx"}, {"name": "WriteProcessMemory"}],
            "Anti-Debugging": [{"name": "IsDebuggerPresent"}],
        }

    def test_selected_fields_only(self) -> None:
        mapping = report_mapping(make_report(DetailSelection(library=True)))
        assert mapping["Injection"][0] == {"name": "VirtualAllocEx", "library": "kernel32.dll"}

    def test_missing_values_omitted(self) -> None:
        mapping = report_mapping(make_report(DetailSelection.all()))
        assert mapping["Anti-Debugging"] == [{"name": "IsDebuggerPresent"}]
        assert mapping["Injection"][1] == {
            "name": "WriteProcessMemory",
            "summary": "Writes memory",
            "library": "kernel32.dll",
            "documentation": "https://docs.test/wpm",
        }

    def test_category_order_preserved(self) -> None:
        assert list(report_mapping(make_report(DetailSelection()))) == ["Injection", "Anti-Debugging"]

    def test_detail_columns(self) -> None:
        assert detail_columns(DetailSelection()) == ["name"]
        assert detail_columns(DetailSelection.all()) == ["name", "summary", "library", "documentation"]


# ---------------------------------------------------------------------------
# Structured formats
# ---------------------------------------------------------------------------


class TestFormats:
    def test_json(self) -> None:
        data = json.loads(ReportGenerator().generate_json(make_report(DetailSelection(summary=True))))
        assert data["Injection"][0] == {"name": "VirtualAllocEx", "summary": "Allocates memory"}

    def test_yaml(self) -> None:
        data = yaml.safe_load(ReportGenerator().generate_yaml(make_report(DetailSelection())))
        assert data == report_mapping(make_report(DetailSelection()))

    def test_toml(self) -> None:
        data = tomllib.loads(ReportGenerator().generate_toml(make_report(DetailSelection.all())))
        assert data["Anti-Debugging"] == [{"name": "IsDebuggerPresent"}]
        assert data["Injection"][0]["documentation"] == "https://docs.test/vae"

    def test_empty_report(self) -> None:
        report = ScanReport(results=enrich({"printf"}, STORE), selection=DetailSelection())
        assert json.loads(ReportGenerator().generate_json(report)) == {}


class TestCsv:
    def test_stream(self) -> None:
        buffer = io.StringIO()
        ReportGenerator().write_csv(make_report(DetailSelection(library=True)), buffer)
        assert buffer.getvalue() == (
            "Injection:\n"
            "name,library\n"
            "VirtualAllocEx,kernel32.dll\n"
            "WriteProcessMemory,kernel32.dll\n"
            "\n"
            "Anti-Debugging:\n"
            "name,library\n"
            "IsDebuggerPresent,\n"
            "\n"
        )

    def test_directory(self, tmp_path: Path) -> None:
        written = ReportGenerator().generate_csv_files(make_report(DetailSelection()), tmp_path)
        assert [p.name for p in written] == ["Injection.csv", "Anti-Debugging.csv"]
        assert (tmp_path / "Injection.csv").read_text() == "name\nVirtualAllocEx\nWriteProcessMemory\n"

    def test_requires_directory(self, tmp_path: Path) -> None:
        target = tmp_path / "out.csv"
        with pytest.raises(RenderError):
            ReportGenerator().generate_csv_files(make_report(DetailSelection()), target)

    def test_does_not_overwrite(self, tmp_path: Path) -> None:
        (tmp_path / "Injection.csv").write_text("keep me")
        with pytest.raises(RenderError):
            ReportGenerator().generate_csv_files(make_report(DetailSelection()), tmp_path)
        assert (tmp_path / "Injection.csv").read_text() == "keep me"


# ---------------------------------------------------------------------------
# Rich tables
# ---------------------------------------------------------------------------


class TestConsoleOutput:
    def render(self, selection: DetailSelection, width: int = 80) -> str:
        buffer = io.StringIO()
        console = QuarryConsole(file=buffer, width=width)
        ApiScanConsoleOutput(console, width).render(make_report(selection))
        return buffer.getvalue()

    def test_headers_and_names(self) -> None:
        text = self.render(DetailSelection())
        assert "Injection:" in text
        assert "Anti-Debugging:" in text
        assert "Enumeration" not in text
        assert text.index("VirtualAllocEx") < text.index("WriteProcessMemory")

    def test_columns_follow_selection(self) -> None:
        text = self.render(DetailSelection(library=True))
        assert "library" in text
        assert "info" not in text
        assert "kernel32.dll" in text

    def test_raw_url_when_not_terminal(self) -> None:
        text = self.render(DetailSelection(documentation=True), width=120)
        assert "https://docs.test/vae" in text
        assert "[link]" not in text

    def test_width_bound(self) -> None:
        text = self.render(DetailSelection.all(), width=60)
        assert max(len(line) for line in text.splitlines()) <= 60

    def test_summary_line(self) -> None:
        buffer = io.StringIO()
        ApiScanConsoleOutput(QuarryConsole(file=buffer, width=120)).summary(make_report(DetailSelection()))
        assert "3 suspect import(s) in 2 categories" in buffer.getvalue()


# ---------------------------------------------------------------------------
# Sync progress
# ---------------------------------------------------------------------------


class TestSyncProgressDisplay:
    def tasks(self, *events: SyncProgress) -> dict[str, Task]:
        display = SyncProgressDisplay(QuarryConsole(file=io.StringIO(), width=100))
        with display:
            for event in events:
                display(event)
            return {task.description.split(":")[0]: task for task in display._progress.tasks}

    def test_completed_category_reads_done(self) -> None:
        tasks = self.tasks(
            SyncProgress(header="A", current="x", completed=1, total=2),
            SyncProgress(header="A", current="y", completed=2, total=2),
        )
        assert tasks["A"].description == "A: done"
        assert tasks["A"].finished

    def test_aborted_category_is_closed(self) -> None:
        tasks = self.tasks(
            SyncProgress(header="A", current="x", completed=1, total=5),
            SyncProgress(header="A", current="bad", completed=2, total=5, failed=True, aborted=True),
            SyncProgress(header="B", current="ok", completed=1, total=3),
        )
        assert tasks["A"].description == "A: aborted at bad"
        assert tasks["A"].finished
        assert not tasks["B"].finished
