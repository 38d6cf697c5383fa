"""
ApiScan CLI -- Suspicious API Import Scanner
=============================================

Click-based command line for apiscan.

Usage::

    # Categories and matched names only
    apiscan sample.exe

    # Summary, library and documentation link for every match
    apiscan sample.exe -A

    # Rebuild the cache from malapi.io with 8 concurrent requests
    apiscan sample.exe --update --threads 8

    # JSON to a file
    apiscan sample.exe -il -f json -o report.json

    # One CSV per category into an existing directory
    apiscan sample.exe -A -f csv -o reports/

References:
    - Click documentation: https://click.palletsprojects.com/
"""

from __future__ import annotations

import asyncio
import io
import sys
import tomllib
from pathlib import Path
from typing import Optional

import click

from shared.config import QuarryConfig
from shared.console import QuarryConsole
from shared.logger import QuarryLogger

from apiscan import __version__
from apiscan.core.engine import ApiScanEngine
from apiscan.core.errors import ApiScanError, RenderError
from apiscan.core.models import DetailSelection, FailurePolicy, OutputFormat, ScanReport
from apiscan.output.console import ApiScanConsoleOutput, SyncProgressDisplay
from apiscan.output.report import ReportGenerator


def _describe(exc: BaseException) -> str:
    """Join an exception and its causes into one line."""
    parts = [str(exc) or type(exc).__name__]
    cause = exc.__cause__
    while cause is not None:
        text = str(cause)
        if text and text not in parts[-1]:
            parts.append(text)
        cause = cause.__cause__
    return ": ".join(parts)


def _emit(
    report: ScanReport,
    output_format: OutputFormat,
    output_path: Optional[Path],
    width: int,
) -> None:
    """Write *report* in *output_format* to *output_path* or stdout."""
    generator = ReportGenerator()

    if output_format is OutputFormat.TXT:
        if output_path is None:
            ApiScanConsoleOutput(QuarryConsole(), width).render(report)
            return
        try:
            with open(output_path, "w", encoding="utf-8") as fh:
                ApiScanConsoleOutput(QuarryConsole(file=fh, width=width), width).render(report)
        except OSError as exc:
            raise RenderError(f"could not write {output_path}: {exc}") from exc
        return

    if output_format is OutputFormat.CSV:
        if output_path is None:
            buffer = io.StringIO()
            generator.write_csv(report, buffer)
            click.echo(buffer.getvalue(), nl=False)
        else:
            generator.generate_csv_files(report, output_path)
        return

    if output_format is OutputFormat.JSON:
        text = generator.generate_json(report)
    elif output_format is OutputFormat.YAML:
        text = generator.generate_yaml(report)
    else:
        text = generator.generate_toml(report)

    if output_path is None:
        click.echo(text, nl=False)
        return
    try:
        output_path.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise RenderError(f"could not write {output_path}: {exc}") from exc


# ---------------------------------------------------------------------------
# Command
# ---------------------------------------------------------------------------

@click.command("apiscan")
@click.version_option(__version__, prog_name="apiscan")
@click.argument("sample", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--info", "-i", is_flag=True, help="Show a summary of each API's functionality.")
@click.option("--library", "-l", is_flag=True, help="Show the DLL each API is exported from.")
@click.option("--documentation", "-d", is_flag=True, help="Show a link to each API's documentation.")
@click.option("--all", "-A", "show_all", is_flag=True, help="Alias for -ild.")
@click.option(
    "--threads", "-t",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum concurrent requests to malapi.io (default: 4).",
)
@click.option(
    "--width", "-w",
    type=click.IntRange(min=20),
    default=None,
    help="Maximum width of tables (default: 80).",
)
@click.option(
    "--format", "-f",
    "output_format",
    type=click.Choice([fmt.value for fmt in OutputFormat], case_sensitive=False),
    default=None,
    help="Output format (default: txt).  csv with --output requires a directory.",
)
@click.option(
    "--output", "-o",
    "output_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Output path.",
)
@click.option("--update", "-u", is_flag=True, help="Discard the cache and rebuild it from malapi.io.")
@click.option(
    "--skip-failed",
    is_flag=True,
    help="Keep going inside a category when one API's page fails.",
)
@click.option(
    "--cache-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding the cache file.",
)
@click.option(
    "--config", "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Configuration file (TOML).",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging and tracebacks.")
def apiscan_cli(
    sample: Path,
    info: bool,
    library: bool,
    documentation: bool,
    show_all: bool,
    threads: Optional[int],
    width: Optional[int],
    output_format: Optional[str],
    output_path: Optional[Path],
    update: bool,
    skip_failed: bool,
    cache_dir: Optional[Path],
    config_path: Optional[Path],
    verbose: bool,
) -> None:
    """ApiScan -- static PE triage via suspicious API imports.

    SAMPLE is the PE executable to scan.  Its imported function names are
    matched against the malapi.io categories, which are cached locally
    after the first run.
    """
    status = QuarryConsole(stderr=True)

    try:
        config = QuarryConfig.load(config_path)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        status.error(f"Invalid configuration: {exc}")
        sys.exit(1)

    settings = config.apiscan
    if threads is not None:
        settings.max_concurrency = threads
    if cache_dir is not None:
        settings.cache_dir = str(cache_dir)
    if skip_failed:
        settings.failure_policy = FailurePolicy.SKIP_MEMBER.value
    table_width = width if width is not None else settings.table_width

    try:
        fmt = OutputFormat((output_format or settings.output_format).lower())
        FailurePolicy(settings.failure_policy)
    except ValueError as exc:
        status.error(f"Invalid configuration: {exc}")
        sys.exit(1)

    selection = (
        DetailSelection.all()
        if show_all
        else DetailSelection(summary=info, library=library, documentation=documentation)
    )

    global_settings = config.global_settings
    logger = QuarryLogger(
        "apiscan",
        log_level="DEBUG" if verbose or global_settings.debug else global_settings.log_level,
        log_file=global_settings.log_file or None,
        json_logs=global_settings.log_json,
    )

    try:
        with SyncProgressDisplay(status) as progress:
            engine = ApiScanEngine(config, logger, progress=progress)
            report = asyncio.run(engine.scan(sample, selection, refresh=update))
        _emit(report, fmt, output_path, table_width)
        ApiScanConsoleOutput(status, table_width).summary(report)
    except KeyboardInterrupt:
        status.warning("Interrupted by user.")
        sys.exit(130)
    except (ApiScanError, OSError) as exc:
        status.error(_describe(exc))
        if verbose:
            status.rich.print_exception()
        sys.exit(1)

    sync_report = engine.last_sync_report
    if sync_report is not None:
        if sync_report.skipped:
            status.info(f"{len(sync_report.skipped)} API(s) have no page on malapi.io and were skipped")
        if not sync_report.complete:
            failed = ", ".join(f.name for f in sync_report.failures[:5])
            more = len(sync_report.failures) - 5
            if more > 0:
                failed += f" and {more} more"
            status.warning(
                f"{len(sync_report.failures)} API page(s) failed ({failed}); "
                "results may be incomplete and were not cached, rerun to retry"
            )


def main() -> None:
    """Console-script entry point."""
    apiscan_cli()


if __name__ == "__main__":
    main()
