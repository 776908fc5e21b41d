# === NAVMAP v1 ===
# {
#   "module": "BuildCache.CachePull.cli",
#   "purpose": "Typer command line entry point for the cache pull step",
#   "sections": [
#     {"id": "app", "name": "Typer app", "anchor": "APP", "kind": "api"},
#     {"id": "run", "name": "run_pull", "anchor": "RUN", "kind": "helpers"},
#     {"id": "commands", "name": "pull / version", "anchor": "CMD", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Command line entry point for the cache pull step.

The CI runner invokes ``cache-pull`` without arguments and configures it
through environment variables.  Every setting can also be passed as an
option of the ``pull`` command, which takes precedence over the environment.

Exit codes:
    0: cache restored, nothing to restore, or cache not initialised yet.
    1: any fatal error, including a stack mismatch without fallback.
"""

from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape

from . import __version__
from .errors import CachePullError, ConfigurationError, StackMismatchError
from .logging_config import setup_logging
from .pipeline import CachePull, RunOutcome, RunStatus
from .settings import ExtractorKind, LogFormat, SourceKind, get_settings

__all__ = ["app", "run_pull"]

_console = Console()
_err_console = Console(stderr=True)

app = typer.Typer(
    name="cache-pull",
    help="Download, verify and restore a build cache archive",
    add_completion=False,
)


def run_pull(
    *,
    source: Optional[str] = None,
    debug: Optional[bool] = None,
    allow_fallback: Optional[bool] = None,
    extract_relative: Optional[bool] = None,
    stack_id: Optional[str] = None,
    extractor: Optional[ExtractorKind] = None,
    source_kind: Optional[SourceKind] = None,
    log_format: Optional[LogFormat] = None,
) -> RunOutcome:
    """Load settings, configure logging and run the pipeline.

    Errors are printed once and converted into ``typer.Exit(1)``.
    """

    try:
        settings = get_settings(
            cache_source=source,
            debug=debug,
            allow_fallback=allow_fallback,
            extract_relative=extract_relative,
            stack_id=stack_id,
            extractor=extractor,
            source_kind=source_kind,
            log_format=log_format,
        )
    except ConfigurationError as exc:
        _err_console.print(f"[red]Input error:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc

    setup_logging("DEBUG" if settings.debug else "INFO", log_format=settings.log_format.value)

    try:
        outcome = CachePull(settings).run()
    except StackMismatchError as exc:
        _err_console.print(f"[red]Stack mismatch:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc
    except CachePullError as exc:
        _err_console.print(f"[red]Cache pull failed:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc

    if outcome.status is RunStatus.RESTORED:
        _console.print(f"[green]{escape(outcome.message)}[/green]")
        if outcome.skipped_items:
            _console.print(
                f"[yellow]{outcome.skipped_items} cache item(s) could not be placed[/yellow]"
            )
    else:
        _console.print(escape(outcome.message))
    return outcome


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-V", help="Show version and exit"),
) -> None:
    """Restore a build cache.  Without a command, ``pull`` runs with environment settings."""

    if version:
        typer.echo(f"cache-pull {__version__}")
        raise typer.Exit(0)
    if ctx.invoked_subcommand is None:
        run_pull()


@app.command()
def pull(
    source: Optional[str] = typer.Option(
        None, "--source", "-s", help="Direct archive URL or cache API endpoint"
    ),
    debug: Optional[bool] = typer.Option(None, "--debug/--no-debug", help="Verbose logging"),
    allow_fallback: Optional[bool] = typer.Option(
        None,
        "--allow-fallback/--no-allow-fallback",
        help="Restore even if the cache was created on a different stack",
    ),
    extract_relative: Optional[bool] = typer.Option(
        None,
        "--extract-relative/--no-extract-relative",
        help="Extract absolute archive paths relative to the working directory",
    ),
    stack_id: Optional[str] = typer.Option(None, "--stack-id", help="Current stack id"),
    extractor: Optional[ExtractorKind] = typer.Option(
        None, "--extractor", case_sensitive=False, help="Extraction strategy"
    ),
    source_kind: Optional[SourceKind] = typer.Option(
        None, "--source-kind", case_sensitive=False, help="How to interpret --source"
    ),
    log_format: Optional[LogFormat] = typer.Option(
        None, "--log-format", case_sensitive=False, help="Log output format"
    ),
) -> None:
    """Download and restore the cache archive."""

    run_pull(
        source=source,
        debug=debug,
        allow_fallback=allow_fallback,
        extract_relative=extract_relative,
        stack_id=stack_id,
        extractor=extractor,
        source_kind=source_kind,
        log_format=log_format,
    )
