"""
CLI interface for notex.

Usage:
    notex run ./notes -o ./organized
    notex run ./notes --dry-run
    notex run ./notes -p 4 --reorganize --cross-ref
    notex init-config
"""

import os
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .config import (
    CONFIG_FILENAME,
    NotexConfig,
    load_or_default,
    save_config,
    with_overrides,
)
from .discovery import discover_notes
from .errors import FatalOracleError
from .logging_config import configure_quiet_mode, configure_run_log, enable_debug_mode
from .oracle import OracleClient
from .pipeline import Pipeline, RunSummary
from .types import OutputFormat

DEFAULT_OUTPUT = Path("./compressed")


# Configure quiet mode by default (suppress verbose library output)
# Set NOTEX_VERBOSE=1 to enable debug mode via environment
if os.environ.get("NOTEX_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


app = typer.Typer(
    name="notex",
    help="Reorganize, enhance and cross-link a tree of notes with an LLM.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


def _render_plan(summary: RunSummary) -> str:
    lines = ["Planned placements:"]
    for segment_id, paths in summary.plan.items():
        lines.append(f"  {segment_id} -> {', '.join(paths)}")
    return "\n".join(lines)


def _render_summary(summary: RunSummary, output: Path) -> str:
    """Human-readable end-of-run report."""
    lines = []
    if summary.cancelled:
        lines.append("Run cancelled; output is partial.")
    lines.append(f"Notes: {summary.notes}  Segments: {summary.segments}")
    lines.append(
        f"Categorized: {summary.categorized} ok, {summary.fell_back} fell back "
        f"({summary.categorize_failed} oracle failures)"
    )
    if summary.custom_categories:
        lines.append(f"New categories: {', '.join(summary.custom_categories)}")
    if not summary.dry_run:
        lines.append(
            f"Enhanced: {summary.enhanced} ok, {summary.enhance_failed} kept original text"
        )
        if summary.questions_wrapped:
            lines.append(f"Questions re-wrapped: {summary.questions_wrapped}")
    if summary.moves_applied or summary.moves_skipped:
        lines.append(
            f"Reorganization: {len(summary.moves_applied)} applied, "
            f"{len(summary.moves_skipped)} skipped"
        )
        for directive in summary.moves_applied:
            lines.append(f"  {directive}")
        for directive, reason in summary.moves_skipped:
            lines.append(f"  skipped {directive} ({reason})")
    if summary.category_suggestions:
        lines.append("Suggested categories:")
        for suggestion in summary.category_suggestions:
            lines.append(f"  {suggestion}")
    if summary.links_added:
        lines.append(f"Cross-references added: {summary.links_added}")
    if summary.failed_batches:
        lines.append(f"Listing requests that failed (files left unreviewed): {summary.failed_batches}")
    for path, error in summary.write_errors.items():
        lines.append(f"  write failed: {path}: {error}")

    verb = "Would write" if summary.dry_run else "Wrote"
    lines.append(f"{verb} {len(summary.files)} files under {output}")
    for path in summary.files:
        lines.append(f"  {path}")
    return "\n".join(lines)


def _load_config(config_file: Optional[Path], **overrides) -> NotexConfig:
    try:
        return with_overrides(load_or_default(config_file), **overrides)
    except (FileNotFoundError, ValueError) as e:
        typer.echo(f"Error: invalid configuration: {e}", err=True)
        raise typer.Exit(1)


@app.command("run")
def run_cmd(
    input_dir: Annotated[Path, typer.Argument(
        help="Directory containing notes to process",
    )],
    output: Annotated[Path, typer.Option(
        "--output", "-o",
        help="Output directory for organized notes",
    )] = DEFAULT_OUTPUT,
    model: Annotated[Optional[str], typer.Option(
        "--model", "-m",
        help="Model name",
    )] = None,
    base_url: Annotated[Optional[str], typer.Option(
        "--url", "-u",
        help="API base URL (llama-server, vLLM, LM Studio, ...)",
    )] = None,
    api_key: Annotated[Optional[str], typer.Option(
        "--api-key", "-k",
        help="API key",
    )] = None,
    provider: Annotated[Optional[str], typer.Option(
        "--provider",
        help="Chat provider: openai-compatible, openai, anthropic, ollama",
    )] = None,
    parallel: Annotated[Optional[int], typer.Option(
        "--parallel", "-p",
        help="Concurrent requests (match llama-server -np)",
    )] = None,
    fmt: Annotated[Optional[OutputFormat], typer.Option(
        "--format", "-f",
        help="Output format",
    )] = None,
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    dry_run: Annotated[bool, typer.Option(
        "--dry-run",
        help="Categorize and show the plan without writing files",
    )] = False,
    exclude: Annotated[Optional[list[str]], typer.Option(
        "--exclude", "-x",
        help="Glob pattern to skip (repeatable)",
    )] = None,
    retries: Annotated[Optional[int], typer.Option(
        "--retries",
        help="Retries per request after the first attempt",
    )] = None,
    do_reorganize: Annotated[bool, typer.Option(
        "--reorganize",
        help="Let the model restructure the output tree afterwards",
    )] = False,
    cross_ref: Annotated[bool, typer.Option(
        "--cross-ref",
        help="Add 'See also' links between related files",
    )] = False,
    config_file: Annotated[Optional[Path], typer.Option(
        "--config",
        help=f"Config file (default: ./{CONFIG_FILENAME} if present)",
    )] = None,
    log_file: Annotated[Optional[Path], typer.Option(
        "--log-file",
        help="Also write the run log to this file",
    )] = None,
):
    """Process a directory of notes into an organized tree."""
    config = _load_config(
        config_file,
        provider=provider,
        model=model,
        base_url=base_url,
        api_key=api_key,
        concurrency=parallel,
        max_retries=retries,
        format=fmt,
        dry_run=dry_run or None,
        reorganize=do_reorganize or None,
        cross_ref=cross_ref or None,
        exclude=tuple(exclude) if exclude else None,
    )
    run = config.run

    if log_file is not None:
        configure_run_log(log_file)

    try:
        notes = discover_notes(input_dir, run.exclude)
    except NotADirectoryError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    if not notes:
        typer.echo(f"No notes found in {input_dir}", err=True)
        return

    try:
        oracle = OracleClient.from_config(config.oracle)
    except (ValueError, RuntimeError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    try:
        oracle.preflight()
    except FatalOracleError as e:
        typer.echo(f"Error: oracle unavailable: {e}", err=True)
        raise typer.Exit(1)

    if run.dry_run:
        typer.echo("Dry run: no files will be written", err=True)

    pipeline = Pipeline.create(run, oracle, output, show_progress=True)
    try:
        summary = pipeline.run(notes)
    except KeyboardInterrupt:
        typer.echo("Interrupted; in-flight requests finished, remaining work skipped.", err=True)
        raise typer.Exit(130)
    finally:
        close = getattr(oracle.provider, "close", None)
        if close is not None:
            close()

    if run.dry_run:
        typer.echo(_render_plan(summary))
    typer.echo(_render_summary(summary, output))


@app.command("init-config")
def init_config(
    path: Annotated[Path, typer.Argument(
        help="Where to write the config file",
    )] = Path(CONFIG_FILENAME),
    force: Annotated[bool, typer.Option(
        "--force",
        help="Overwrite an existing file",
    )] = False,
):
    """Write a config file with the default settings."""
    if path.exists() and not force:
        typer.echo(f"Error: {path} already exists (use --force to overwrite)", err=True)
        raise typer.Exit(1)
    save_config(NotexConfig(), path)
    typer.echo(f"Wrote {path}")


# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="notex CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
