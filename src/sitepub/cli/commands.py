"""CLI command implementations"""

from pathlib import Path
from typing import Annotated, Optional

import typer

from sitepub.cache.store import BuildCache
from sitepub.config import Settings, load_config
from sitepub.core.errors import SitepubError
from sitepub.core.models import EXIT_FATAL, BuildReport
from sitepub.core.pipeline import BuildContext, plan_build, run_build
from sitepub.logging_ import setup_logging


def _fail(msg: str, cause: Exception = None, code: int = EXIT_FATAL) -> None:
    """Print a user-friendly error to stderr and exit."""
    typer.echo(f"Error: {msg}", err=True)
    if cause:
        typer.echo(f"  {cause}", err=True)
    raise typer.Exit(code)


def _settings(overrides: dict = None) -> Settings:
    """Load config with standard CLI error handling."""
    try:
        return load_config(overrides=overrides)
    except ValueError as e:
        _fail(str(e))


def _echo_report(report: BuildReport) -> None:
    for line in report.summary_lines():
        typer.echo(line)


def build_cmd(
    root: Annotated[str, typer.Argument(help="Content root directory")],
    out: Annotated[Optional[str], typer.Option("--out-dir", help="Directory to publish to")] = None,
    cache_dir: Annotated[Optional[str], typer.Option("--cache-dir", help="Persistent cache directory")] = None,
    concurrency: Annotated[Optional[int], typer.Option("--concurrency", "-j", help="Max parallel conversions")] = None,
    timeout: Annotated[Optional[float], typer.Option("--timeout", help="Per-document conversion timeout (s)")] = None,
    continue_on_error: Annotated[Optional[bool], typer.Option(
        "--continue-on-error/--fail-on-error", help="Exit 0 even if some documents fail")] = None,
    templates: Annotated[Optional[str], typer.Option("--templates-dir", help="Layout override directory")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
    ):
    """Convert, assemble and publish the site; prints a per-document summary."""
    setup_logging(verbose)
    settings = _settings(overrides={
        "output_dir": out, "cache_dir": cache_dir, "concurrency": concurrency,
        "conversion_timeout": timeout, "continue_on_error": continue_on_error,
        "templates_dir": templates,
    })
    context = BuildContext.from_settings(settings)
    try:
        result = run_build(Path(root), settings, context)
    except SitepubError as e:
        _echo_report(context.report)
        _fail("Build aborted", e)
    except KeyboardInterrupt:
        _echo_report(context.report)
        _fail("Build interrupted; published output left unchanged", code=130)
    except Exception as e:
        if not context.report.fatal:
            context.report.fatal = f"{type(e).__name__}: {e}"
        _echo_report(context.report)
        _fail("Publish failed" if isinstance(e, OSError) else "Build failed", e)

    _echo_report(result.report)
    typer.echo(f"Published {len(result.tree)} file(s) to {settings.output_dir}/")
    code = result.exit_code(settings.continue_on_error)
    if code:
        raise typer.Exit(code)


def graph_cmd(
    root: Annotated[str, typer.Argument(help="Content root directory")],
    ):
    """Print the build order (dependencies first) or the offending cycle."""
    settings = _settings()
    try:
        order = plan_build(Path(root), settings)
    except SitepubError as e:
        _fail("Invalid dependency graph", e)
    for node in order:
        typer.echo(node)


def cache_cmd(
    cache_dir: Annotated[Optional[str], typer.Option("--cache-dir", help="Persistent cache directory")] = None,
    clear: Annotated[bool, typer.Option("--clear", help="Remove every cached artifact")] = False,
    ):
    """Show cache statistics, or clear the cache."""
    settings = _settings(overrides={"cache_dir": cache_dir})
    cache = BuildCache.open(Path(settings.cache_dir), settings.cache_max_bytes)
    if clear:
        typer.echo(f"Removed {cache.clear()} cached artifact(s).")
        return
    stats = cache.stats()
    typer.echo(f"{stats['entries']} artifact(s), {stats['bytes']} bytes (cap {stats['max_bytes'] or 'unlimited'})")
