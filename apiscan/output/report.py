"""
ApiScan Report Generator
=========================

Serialises a :class:`~apiscan.core.models.ScanReport` to JSON, YAML, TOML
and CSV.

All structured formats share one shape: a mapping from category header to
the matched imports of that category, in category order, with empty
categories left out::

    {
      "Injection": [
        {"name": "VirtualAllocEx", "summary": "...", "library": "kernel32.dll",
         "documentation": "https://..."},
        ...
      ],
      ...
    }

Only the detail fields that were requested appear, and a requested field
with no cached value is omitted from that entry (TOML has no null).

References:
    - RFC 8259 -- The JSON Data Interchange Format.
    - YAML 1.2 Specification. https://yaml.org/spec/1.2.2/
    - TOML v1.0.0 Specification. https://toml.io/en/v1.0.0
    - RFC 4180 -- Common Format for Comma-Separated Values.
"""

from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any, TextIO

import tomli_w
import yaml

from apiscan.core.errors import RenderError
from apiscan.core.models import DetailSelection, MatchResult, ScanReport


# ---------------------------------------------------------------------------
# Row building
# ---------------------------------------------------------------------------

def detail_columns(selection: DetailSelection) -> list[str]:
    """Column names for *selection*, ``name`` first."""
    columns = ["name"]
    if selection.summary:
        columns.append("summary")
    if selection.library:
        columns.append("library")
    if selection.documentation:
        columns.append("documentation")
    return columns


def result_rows(result: MatchResult, selection: DetailSelection) -> list[dict[str, Any]]:
    """One row per matched import, sorted by name.

    Values are ``None`` where a selected field has no cached value.
    """
    if not selection.any:
        return [{"name": name} for name in sorted(result.names)]

    rows: list[dict[str, Any]] = []
    for record in sorted(result.records, key=lambda r: r.name):
        row: dict[str, Any] = {"name": record.name}
        if selection.summary:
            row["summary"] = record.summary
        if selection.library:
            row["library"] = record.library
        if selection.documentation:
            row["documentation"] = record.documentation_url
        rows.append(row)
    return rows


def report_mapping(report: ScanReport) -> dict[str, list[dict[str, Any]]]:
    """Header → rows for every category with at least one match."""
    mapping: dict[str, list[dict[str, Any]]] = {}
    for result in report.matched_results:
        mapping[result.header] = [
            {key: value for key, value in row.items() if value is not None}
            for row in result_rows(result, report.selection)
        ]
    return mapping


# ---------------------------------------------------------------------------
# ReportGenerator
# ---------------------------------------------------------------------------

class ReportGenerator:
    """Render scan reports in the structured output formats.

    Usage::

        gen = ReportGenerator()
        text = gen.generate_json(report)
        gen.generate_csv_files(report, Path("out/"))
    """

    def generate_json(self, report: ScanReport) -> str:
        return json.dumps(report_mapping(report), indent=2, ensure_ascii=False) + "\n"

    def generate_yaml(self, report: ScanReport) -> str:
        return yaml.safe_dump(
            report_mapping(report),
            sort_keys=False,
            allow_unicode=True,
            default_flow_style=False,
        )

    def generate_toml(self, report: ScanReport) -> str:
        return tomli_w.dumps(report_mapping(report))

    def write_csv(self, report: ScanReport, stream: TextIO) -> None:
        """Write every matched category to *stream*.

        Each category is introduced by a ``<header>:`` line followed by its
        own column row, and separated from the next by a blank line.
        """
        columns = detail_columns(report.selection)
        for result in report.matched_results:
            stream.write(f"{result.header}:\n")
            self._write_rows(stream, columns, result_rows(result, report.selection))
            stream.write("\n")

    def generate_csv_files(self, report: ScanReport, directory: Path) -> list[Path]:
        """Write one ``<header>.csv`` per matched category into *directory*.

        Existing files are never overwritten.

        Returns:
            Paths of the files created, in category order.

        Raises:
            RenderError: If *directory* is not an existing directory or a
                target file already exists or cannot be created.
        """
        if not directory.is_dir():
            raise RenderError(f"csv output requires a directory: {directory}")

        columns = detail_columns(report.selection)
        written: list[Path] = []
        for result in report.matched_results:
            target = directory / f"{result.header}.csv"
            try:
                with open(target, "x", newline="", encoding="utf-8") as fh:
                    self._write_rows(fh, columns, result_rows(result, report.selection))
            except FileExistsError as exc:
                raise RenderError(f"refusing to overwrite {target}") from exc
            except OSError as exc:
                raise RenderError(f"could not write {target}: {exc}") from exc
            written.append(target)
        return written

    @staticmethod
    def _write_rows(stream: TextIO, columns: list[str], rows: list[dict[str, Any]]) -> None:
        writer = csv.DictWriter(stream, fieldnames=columns, lineterminator="\n")
        writer.writeheader()
        for row in rows:
            writer.writerow({key: ("" if value is None else value) for key, value in row.items()})
