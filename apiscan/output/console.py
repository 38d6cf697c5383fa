"""
ApiScan Console Output
=======================

Rich tables for matched imports and a live progress display for cache
synchronization.

Each matched category is printed as ``<header>:`` followed by a table of
its imports.  Columns share the configured table width equally and wrap
on word boundaries.  Documentation links render as a clickable ``[link]``
on terminals that support OSC 8 hyperlinks and as the raw URL otherwise.

References:
    - Rich library: https://github.com/Textualize/rich
    - Hyperlinks in terminal emulators (OSC 8).
      https://gist.github.com/egmontkob/eb114294efbcd5adb1944c9f3cb5feda
"""

from __future__ import annotations

from typing import Any, Optional

from rich.progress import Progress, TaskID
from rich.style import Style
from rich.table import Table
from rich.text import Text

from shared.console import QuarryConsole

from apiscan.core.models import MatchResult, ScanReport, SyncProgress
from apiscan.output.report import detail_columns, result_rows

_COLUMN_TITLES: dict[str, str] = {
    "name": "name",
    "summary": "info",
    "library": "library",
    "documentation": "documentation",
}


class ApiScanConsoleOutput:
    """Render scan results as Rich tables.

    Args:
        console: Destination console (stdout, or a file for ``--output``).
        width:   Maximum table width in characters.
    """

    def __init__(self, console: QuarryConsole, width: int = 80) -> None:
        self._con = console
        self._width = max(width, 20)

    def render(self, report: ScanReport) -> None:
        """Print one table per category with at least one match."""
        for result in report.matched_results:
            self._con.print(f"[quarry.section]{result.header}:[/quarry.section]")
            self._con.print(self.build_table(result, report))
            self._con.blank()

    def build_table(self, result: MatchResult, report: ScanReport) -> Table:
        columns = detail_columns(report.selection)
        # Borders take one cell per column plus one, padding two per column
        column_width = max((self._width - len(columns) - 1) // len(columns) - 2, 6)

        table = Table(
            border_style="bright_cyan",
            header_style="bold bright_magenta",
            show_lines=True,
            padding=(0, 1),
        )
        for column in columns:
            table.add_column(
                _COLUMN_TITLES[column],
                max_width=column_width,
                overflow="fold",
                style="quarry.highlight" if column == "name" else "",
            )

        for row in result_rows(result, report.selection):
            table.add_row(*(self._cell(column, row.get(column)) for column in columns))
        return table

    def _cell(self, column: str, value: Optional[str]) -> Any:
        if value is None:
            return ""
        if column == "documentation" and self._con.is_terminal:
            return Text("[link]", style=Style(link=value, color="bright_blue"))
        return Text(value)

    def summary(self, report: ScanReport) -> None:
        """One-line totals for the scanned sample."""
        matched = report.matched_results
        if not matched:
            self._con.success(f"No suspect imports among {report.import_count} imported names")
            return
        self._con.warning(
            f"{report.suspect_count} suspect import(s) in {len(matched)} "
            f"categor{'y' if len(matched) == 1 else 'ies'} "
            f"({report.import_count} imported names, {report.duration_seconds:.2f}s)"
        )


class SyncProgressDisplay:
    """Progress callback for :class:`~apiscan.collectors.synchronizer.Synchronizer`.

    One bar per category, created when the category reports its first
    completed member.  Use as a context manager so the bars are stopped
    even when synchronization fails.
    """

    def __init__(self, console: QuarryConsole) -> None:
        self._con = console
        self._progress: Optional[Progress] = None
        self._tasks: dict[str, TaskID] = {}

    def __enter__(self) -> SyncProgressDisplay:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def __call__(self, event: SyncProgress) -> None:
        task_id = self._tasks.get(event.header)
        if task_id is None:
            if self._progress is None:
                self._progress, task_id = self._con.progress_task(
                    event.header, total=event.total, transient=False
                )
            else:
                task_id = self._progress.add_task(event.header, total=event.total)
            self._tasks[event.header] = task_id

        assert self._progress is not None
        marker = " (failed)" if event.failed else ""
        self._progress.update(
            task_id,
            completed=event.completed,
            description=f"{event.header}: {event.current}{marker}",
        )
        if event.aborted:
            # Fill the bar so the abandoned category reads as finished
            self._progress.update(
                task_id,
                completed=event.total,
                description=f"{event.header}: aborted at {event.current}",
            )
        elif event.completed >= event.total:
            self._progress.update(task_id, description=f"{event.header}: done")

    def close(self) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress = None
