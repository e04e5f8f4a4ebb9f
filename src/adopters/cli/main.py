"""Typer app: scan, report and config commands."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from adopters.cli._shared import FORMAT_OPTION, ROOT_OPTION, get_config, get_root
from adopters.core.registry import AdopterRegistry, RegistryError
from adopters.core.report import write_report
from adopters.core.scan import AdopterScanner
from adopters.sources.gh import GhClient
from adopters.utils.output import error, info, output, setup_logging, success
from adopters.utils.paths import registry_path, report_path

app = typer.Typer(
    name="adopter-wall",
    help="Adopter wall: discover repositories that ship the marker file.",
    no_args_is_help=True,
)


@app.command()
def scan(
    root: Optional[Path] = ROOT_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    fmt: Optional[str] = FORMAT_OPTION,
) -> None:
    """Search GitHub and issue submissions, then rewrite the adopter registry."""
    setup_logging(verbose)
    site = get_root(root)
    config = get_config(site)

    gh = GhClient(
        retries=config.retries,
        base_delay_ms=config.base_delay_ms,
        timeout_ms=config.timeout_ms,
    )
    scanner = AdopterScanner(gh, AdopterRegistry(registry_path(site)), config)
    summary = scanner.run()

    if fmt == "json":
        output(summary.to_dict(), fmt="json")
    elif summary.status == "written":
        success(f"Wrote {summary.written} adopters ({summary.new} new)")
        if summary.actions:
            info(f"Processed {summary.actions} issue action(s)")
    else:
        info("No adopters found; registry left unchanged")


@app.command()
def report(
    root: Optional[Path] = ROOT_OPTION,
    fmt: Optional[str] = FORMAT_OPTION,
) -> None:
    """Write adoption.txt with yesterday's new adopters."""
    setup_logging()
    site = get_root(root)
    config = get_config(site)
    try:
        summary = write_report(
            AdopterRegistry(registry_path(site)),
            report_path(site),
            window_start=config.celebrate_window_start,
            window_end=config.celebrate_window_end,
        )
    except RegistryError as e:
        error(str(e))
        raise typer.Exit(1)

    if fmt == "json":
        output(summary.__dict__, fmt="json")
    else:
        success(
            f"Wrote {report_path(site).name}: {summary.total} total, "
            f"yesterday={summary.yesterday}, new={summary.new_count}"
        )


@app.command("config")
def show_config(
    root: Optional[Path] = ROOT_OPTION,
    fmt: Optional[str] = FORMAT_OPTION,
) -> None:
    """Show the effective scan configuration."""
    site = get_root(root)
    config = get_config(site)
    if fmt == "json":
        output(config, fmt="json")
    else:
        for key, value in config.model_dump().items():
            info(f"{key}: {value}")
        info(f"search_query: {config.search_query}")
