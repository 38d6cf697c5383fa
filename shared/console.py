"""
Quarry Console Interface
=========================

Rich-powered presentation layer used by the apiscan command line.

:class:`QuarryConsole` wraps :class:`rich.console.Console` and adds section
rules, severity-prefixed messages and a progress bar with consistent
styling.  Log records go to stderr through :mod:`shared.logger`; this
console writes results to stdout (or to a file handle for ``--output``).

References:
    - Rich library: https://github.com/Textualize/rich
"""

from __future__ import annotations

from typing import IO, Any, Optional

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.theme import Theme

_QUARRY_THEME = Theme(
    {
        "quarry.section": "bold bright_magenta",
        "quarry.success": "bold green",
        "quarry.warning": "bold yellow",
        "quarry.error": "bold red",
        "quarry.info": "bold bright_blue",
        "quarry.dim": "dim white",
        "quarry.highlight": "bold bright_white",
    }
)


class QuarryConsole:
    """Unified console for the Quarry tools.

    Usage::

        con = QuarryConsole()
        con.section("Injection")
        con.success("Cache rebuilt")

    Args:
        quiet:  Suppress all output.
        stderr: Write to stderr instead of stdout.
        file:   Write to this text handle instead of a terminal stream.
        width:  Fixed console width; ``None`` detects the terminal.
    """

    def __init__(
        self,
        *,
        quiet: bool = False,
        stderr: bool = False,
        file: Optional[IO[str]] = None,
        width: Optional[int] = None,
    ) -> None:
        self._console = Console(
            theme=_QUARRY_THEME,
            quiet=quiet,
            stderr=stderr,
            file=file,
            width=width,
            highlight=False,
        )

    @property
    def rich(self) -> Console:
        """The underlying Rich console."""
        return self._console

    @property
    def is_terminal(self) -> bool:
        return self._console.is_terminal

    # ------------------------------------------------------------------ #
    #  Sections and messages
    # ------------------------------------------------------------------ #

    def section(self, title: str) -> None:
        """Print a horizontal rule carrying *title*."""
        self._console.rule(f"  {title}  ", style="quarry.section", characters="─")

    def success(self, message: str) -> None:
        self._console.print(f"[quarry.success][✔] SUCCESS:[/quarry.success] {message}")

    def warning(self, message: str) -> None:
        self._console.print(f"[quarry.warning][⚠] WARNING:[/quarry.warning] {message}")

    def error(self, message: str) -> None:
        self._console.print(f"[quarry.error][✘] ERROR:[/quarry.error] {message}")

    def info(self, message: str) -> None:
        self._console.print(f"[quarry.info][ℹ] INFO:[/quarry.info] {message}")

    # ------------------------------------------------------------------ #
    #  Progress
    # ------------------------------------------------------------------ #

    def progress_task(
        self,
        description: str = "Processing...",
        total: float | None = None,
        *,
        transient: bool = True,
    ) -> tuple[Progress, TaskID]:
        """Start a progress bar and return ``(progress, task_id)``.

        The caller owns the lifecycle and must call ``progress.stop()``.
        """
        progress = Progress(
            SpinnerColumn("dots", style="bright_cyan"),
            TextColumn("[quarry.info]{task.description}"),
            BarColumn(bar_width=30, style="bright_cyan", complete_style="bright_green"),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=self._console,
            transient=transient,
        )
        task_id = progress.add_task(description, total=total)
        progress.start()
        return progress, task_id

    # ------------------------------------------------------------------ #
    #  Utility
    # ------------------------------------------------------------------ #

    def print(self, *args: Any, **kwargs: Any) -> None:
        """Proxy to :meth:`rich.console.Console.print`."""
        self._console.print(*args, **kwargs)

    def blank(self, count: int = 1) -> None:
        for _ in range(count):
            self._console.print()
