"""Command-line interface for pdfscribe."""

from __future__ import annotations

import asyncio
import os
import warnings
from pathlib import Path

# Suppress noisy messages before imports
os.environ.setdefault("PYMUPDF_SUGGEST_LAYOUT_ANALYZER", "0")
warnings.filterwarnings("ignore", category=UserWarning, module="pydantic")
# Suppress litellm async client cleanup warning (harmless, occurs at exit)
warnings.filterwarnings(
    "ignore",
    message="coroutine 'close_litellm_async_clients' was never awaited",
    category=RuntimeWarning,
)

import click
from dotenv import load_dotenv

# Load .env file from current directory and parent directories
load_dotenv()

from click import Context
from loguru import logger
from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from pdfscribe.config import ConfigManager, PdfscribeConfig
from pdfscribe.exceptions import ConfigError
from pdfscribe.logging_config import LoggingContext, print_version, setup_logging
from pdfscribe.pipeline import Pipeline, PipelineResult, write_outputs
from pdfscribe.types import ProgressEvent
from pdfscribe.utils.executor import shutdown_converter_executor

console = Console()
# Separate stderr console for status/progress (doesn't mix with stdout output)
stderr_console = Console(stderr=True)

STAGE_LABELS = {
    "extract": "Extracting pages",
    "dedup": "Deduplicating images",
    "analyze": "Analyzing images",
    "replace": "Assembling text",
}


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument(
    "input_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--output",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Output directory (default from config).",
)
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to configuration file.",
)
@click.option("--model", type=str, default=None, help="Vision model (LiteLLM name).")
@click.option(
    "--concurrency",
    type=click.IntRange(min=0, max=1000),
    default=None,
    help="Images analyzed per window, 0 for all at once.",
)
@click.option(
    "--refusal-retries",
    type=click.IntRange(min=0, max=5),
    default=None,
    help="Retries when the model refuses to describe an image.",
)
@click.option(
    "--temperature",
    type=click.FloatRange(min=0, max=1),
    default=None,
    help="Sampling temperature for the vision model.",
)
@click.option(
    "--max-tokens",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum tokens per image description.",
)
@click.option(
    "--scan-all-pages/--no-scan-all-pages",
    default=None,
    help="Render and analyze a full-page scan of every page.",
)
@click.option(
    "--analysis-type",
    type=click.Choice(["general", "page_description"], case_sensitive=False),
    default=None,
    help="Prompt used for images: general, or page description for all.",
)
@click.option(
    "--json/--no-json",
    "json_export",
    default=None,
    help="Also write <name>.json with the document and analysis results.",
)
@click.option(
    "--no-headings",
    is_flag=True,
    help="Omit page heading banners from the text output.",
)
@click.option(
    "--verbose",
    is_flag=True,
    help="Enable verbose output.",
)
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    help="Suppress progress and info messages, only show errors.",
)
@click.option(
    "--version",
    "-v",
    is_flag=True,
    callback=print_version,
    expose_value=False,
    is_eager=True,
    help="Show version and exit.",
)
@click.pass_context
def app(
    ctx: Context,
    input_path: Path,
    output: Path | None,
    config_path: Path | None,
    model: str | None,
    concurrency: int | None,
    refusal_retries: int | None,
    temperature: float | None,
    max_tokens: int | None,
    scan_all_pages: bool | None,
    analysis_type: str | None,
    json_export: bool | None,
    no_headings: bool,
    verbose: bool,
    quiet: bool,
) -> None:
    """pdfscribe - Convert PDFs to text, describing images with a vision model.

    \b
    Examples:
        pdfscribe report.pdf                        # Write ./output/report.txt
        pdfscribe report.pdf -o out/ --json         # Also write report.json
        pdfscribe scan.pdf --scan-all-pages         # Analyze every page as an image
        pdfscribe report.pdf --model gpt-4o --concurrency 10
    """
    config_manager = ConfigManager()
    try:
        config_manager.load(config_path=config_path)
        config_manager.merge_cli_args(
            **{
                "pipeline.model": model,
                "pipeline.max_concurrent_requests": concurrency,
                "pipeline.max_refusal_retries": refusal_retries,
                "pipeline.temperature": temperature,
                "pipeline.max_tokens": max_tokens,
                "pipeline.scan_all_pages": scan_all_pages,
                "pipeline.analysis_type": analysis_type.lower() if analysis_type else None,
                "pipeline.replacement.include_page_headings": False if no_headings else None,
                "output.json_export": json_export,
            }
        )
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        ctx.exit(1)
    cfg = config_manager.config

    console_handler_id, log_file_path = setup_logging(
        verbose=verbose,
        log_dir=cfg.log.dir,
        log_level=cfg.log.level,
        rotation=cfg.log.rotation,
        retention=cfg.log.retention,
        quiet=quiet,
    )
    if config_manager.config_path:
        logger.debug(f"[Config] Loaded from: {config_manager.config_path}")
    if log_file_path:
        logger.debug(f"[Log] Writing to {log_file_path}")

    output_dir = output or Path(cfg.output.dir).expanduser()
    logger.debug(f"Processing: {input_path.resolve()}")
    logger.debug(f"Output directory: {output_dir.resolve()}")

    async def run_with_cleanup() -> PipelineResult:
        """Run the pipeline with explicit resource cleanup on exit."""
        try:
            return await _run_with_progress(
                cfg, input_path, quiet, console_handler_id, verbose
            )
        finally:
            shutdown_converter_executor()
            # Close LiteLLM's aiohttp sessions to prevent "Unclosed connection" warning
            try:
                from litellm.llms.custom_httpx.async_client_cleanup import (
                    close_litellm_async_clients,
                )

                await close_litellm_async_clients()
            except Exception:
                pass  # Ignore cleanup errors

    result = asyncio.run(run_with_cleanup())

    if not result.success:
        stderr_console.print(f"[red]Error: {result.error}[/red]")
        ctx.exit(1)

    written = write_outputs(result, output_dir, json_export=cfg.output.json_export)
    if not quiet:
        _print_summary(result, written)


async def _run_with_progress(
    cfg: PdfscribeConfig,
    input_path: Path,
    quiet: bool,
    console_handler_id: int | None,
    verbose: bool,
) -> PipelineResult:
    if quiet:
        return await Pipeline(cfg).run(input_path)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=stderr_console,
    ) as progress:
        tasks: dict[str, TaskID] = {}

        def on_progress(event: ProgressEvent) -> None:
            if event.stage not in tasks:
                tasks[event.stage] = progress.add_task(
                    f"[cyan]{STAGE_LABELS.get(event.stage, event.stage)}",
                    total=event.total,
                )
            progress.update(tasks[event.stage], completed=event.current, total=event.total)

        # Console logs would tear the progress display
        with LoggingContext(console_handler_id, verbose).suspend_console():
            return await Pipeline(cfg, on_progress=on_progress).run(input_path)


def _print_summary(result: PipelineResult, written: list[Path]) -> None:
    document = result.extraction.document
    status = result.analysis.status if result.analysis else None
    console.print(
        f"[green]Done[/green] {document.total_pages} pages, "
        f"{len(document.images)} images "
        f"({document.original_image_count} before deduplication)"
    )
    if status and status.error_count:
        console.print(f"[yellow]{status.error_count} images failed analysis[/yellow]")
    if result.cost_usd:
        console.print(f"Cost: ${result.cost_usd:.4f}")
    for path in written:
        console.print(f"Written: {path}")


if __name__ == "__main__":
    app()
