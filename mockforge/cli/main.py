"""
Typer CLI for MockForge.

Commands:
    mockforge generate      - Generate mock tests from reference papers
    mockforge render        - Render an existing mock JSON file
    mockforge check-keys    - Validate the API key file without calling the API

Usage:
    mockforge --help
    mockforge generate --pyq papers/ --reference-mock mocks/ --prompt prompt.txt -o out/mock
    mockforge generate ... --number-of-mocks 5 --concurrency 3 --format pptx --format pdf
    mockforge render out/mock_debug.json -o out/mock --format pdf
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from mockforge.config import Settings, get_settings
from mockforge.credentials import CredentialPool, QuotaEstimator, SelectionPolicy, load_credentials
from mockforge.errors import ConfigurationError, MockForgeError
from mockforge.generation import (
    BatchRunner,
    BatchSummary,
    GeminiClient,
    GenerationOptions,
    GenerationOrchestrator,
    ResponseAssembler,
    RetryPolicy,
    build_work_units,
    get_schema,
)
from mockforge.generation.prompts import EXAM_TYPE_PROMPTS, detect_exam_type, get_system_prompt
from mockforge.generation.schema import DocumentSchema
from mockforge.render.base import Renderer
from mockforge.render.json_writer import JsonRenderer
from mockforge.render.pdf import PdfRenderer
from mockforge.render.slides import SlideDeckRenderer
from mockforge.sources import (
    build_request_contents,
    find_reference_files,
    load_reference_parts,
    output_base_for,
    read_prompt,
)

app = typer.Typer(
    help="MockForge: generate mock exams from reference papers with Gemini",
    no_args_is_help=True,
)

console = Console()

OUTPUT_FORMATS = ("pptx", "pdf", "json")


def configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """Send loguru output to stderr and, optionally, a rotating log file."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(log_file, level="DEBUG", rotation="10 MB", retention=5, encoding="utf-8")


def build_renderers(
    formats: list[str],
    schema: DocumentSchema,
    background: str | Path | None = None,
) -> list[Renderer]:
    """Instantiate one renderer per requested output format."""
    renderers: list[Renderer] = []
    for fmt in formats:
        if fmt == "pptx":
            try:
                renderers.append(SlideDeckRenderer(schema=schema, background=background))
            except FileNotFoundError as e:
                raise ConfigurationError(str(e)) from e
        elif fmt == "pdf":
            renderers.append(PdfRenderer(schema=schema))
        elif fmt == "json":
            renderers.append(JsonRenderer())
        else:
            raise ConfigurationError(
                f"Unknown output format '{fmt}' (expected one of: {', '.join(OUTPUT_FORMATS)})"
            )
    return renderers


def _resolve_schema(name: str) -> DocumentSchema:
    try:
        return get_schema(name)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e


def _resolve_policy(name: str) -> SelectionPolicy:
    try:
        return SelectionPolicy(name)
    except ValueError:
        choices = ", ".join(p.value for p in SelectionPolicy)
        raise ConfigurationError(f"Unknown key policy '{name}' (expected one of: {choices})") from None


def load_keys(settings: Settings, key_file: Path | None = None) -> list[str]:
    """Read the key file, falling back to GEMINI_API_KEY when it is set."""
    return load_credentials(
        key_file or settings.credential_file,
        fallback_key=settings.gemini_api_key if settings.has_inline_key() else None,
    )


def build_pool(settings: Settings, key_file: Path | None = None) -> CredentialPool:
    """Load keys and build the credential pool described by ``settings``."""
    keys = load_keys(settings, key_file)
    estimator = QuotaEstimator(
        tokens_per_window=settings.quota_tokens_per_window,
        window_seconds=settings.quota_window_seconds,
    )
    return CredentialPool(
        keys,
        policy=_resolve_policy(settings.selection_policy),
        failure_threshold=settings.failure_threshold,
        estimator=estimator,
    )


# =============================================================================
# Summary Output
# =============================================================================


def print_summary(summary: BatchSummary, pool: CredentialPool) -> None:
    table = Table(title=f"Generation Summary ({len(summary.succeeded)}/{len(summary.results)} succeeded)")
    table.add_column("Mock", justify="right", style="cyan")
    table.add_column("Status")
    table.add_column("Questions", justify="right")
    table.add_column("Key", justify="right")
    table.add_column("Requests", justify="right")
    table.add_column("Output / Error")

    for result in summary.results:
        key = str(result.credential_index + 1) if result.credential_index is not None else "-"
        if result.success:
            status = "[green]OK[/green]"
            detail = ", ".join(str(p) for p in result.output_paths) or "-"
        else:
            status = "[red]FAILED[/red]"
            detail = escape(result.error or "")
            if result.suggested_action:
                detail += f"\n[dim]{escape(result.suggested_action)}[/dim]"
        table.add_row(
            str(result.index),
            status,
            str(result.item_count) if result.success else "-",
            key,
            str(result.requests),
            detail,
        )
    console.print(table)

    stats = pool.stats()
    key_table = Table(title=f"API Keys ({stats.available}/{stats.total} available)")
    key_table.add_column("Key", style="cyan")
    key_table.add_column("Uses", justify="right")
    key_table.add_column("Failures", justify="right")
    key_table.add_column("Input Tokens", justify="right")
    key_table.add_column("Status")
    for credential in pool.credentials:
        usable = pool.is_usable(credential)
        key_table.add_row(
            f"{credential.label} ({credential.masked})",
            str(credential.usage_count),
            str(credential.failure_count),
            f"{credential.total_tokens:,}",
            "[green]active[/green]" if usable else "[red]excluded[/red]",
        )
    console.print(key_table)

    usage = summary.usage
    console.print(
        f"Tokens: {usage.prompt_tokens:,} input, {usage.output_tokens:,} output, "
        f"{usage.thinking_tokens:,} thinking ({usage.total:,} total) "
        f"in {summary.elapsed_seconds:.1f}s"
    )


# =============================================================================
# Commands
# =============================================================================


@app.command("generate")
def generate(
    pyq: Annotated[Path, typer.Option("--pyq", help="Directory of previous-year papers")],
    reference_mock: Annotated[
        Path, typer.Option("--reference-mock", help="Directory of reference mock tests")
    ],
    prompt: Annotated[Path, typer.Option("--prompt", "-p", help="File with generation instructions")],
    output: Annotated[Path, typer.Option("--output", "-o", help="Output path (extension optional)")] = Path("mock"),
    api_key_file: Annotated[
        Path | None, typer.Option("--api-key-file", "-k", help="File with one API key per line")
    ] = None,
    number_of_mocks: Annotated[
        int, typer.Option("--number-of-mocks", "-n", min=1, help="Number of mocks to generate")
    ] = 1,
    model: Annotated[str | None, typer.Option("--model", "-m", help="Gemini model")] = None,
    max_tokens: Annotated[int | None, typer.Option("--max-tokens", help="Max output tokens per response")] = None,
    temperature: Annotated[float | None, typer.Option("--temperature", help="Sampling temperature")] = None,
    thinking_budget: Annotated[
        int | None, typer.Option("--thinking-budget", help="-1 dynamic, 0 off, or a token budget")
    ] = None,
    target_items: Annotated[
        int | None, typer.Option("--target-items", help="Questions per mock")
    ] = None,
    schema: Annotated[
        str | None, typer.Option("--schema", help="JSON layout: exam or question_sets")
    ] = None,
    exam_type: Annotated[
        str | None, typer.Option("--exam-type", help=f"One of: {', '.join(EXAM_TYPE_PROMPTS)}")
    ] = None,
    concurrency: Annotated[
        int | None, typer.Option("--concurrency", "-c", help="Mocks generated in parallel")
    ] = None,
    rate_limit_delay: Annotated[
        float | None, typer.Option("--rate-limit-delay", help="Seconds between requests, spread across keys")
    ] = None,
    batch_pause: Annotated[
        float | None, typer.Option("--delay", help="Seconds between concurrent batches")
    ] = None,
    key_policy: Annotated[
        str | None, typer.Option("--key-policy", help="round_robin or least_failed")
    ] = None,
    quota_aware: Annotated[
        bool, typer.Option("--quota-aware", help="Pick keys by estimated token headroom")
    ] = False,
    max_continuations: Annotated[
        int | None, typer.Option("--max-continuations", help="Continuation / parse retry limit")
    ] = None,
    max_retries: Annotated[
        int | None, typer.Option("--max-retries", help="Transport retry limit")
    ] = None,
    formats: Annotated[
        list[str] | None, typer.Option("--format", "-f", help="pptx, pdf or json (repeatable)")
    ] = None,
    ppt_background: Annotated[
        Path | None, typer.Option("--ppt-background", help="Background image for every slide")
    ] = None,
    save_debug: Annotated[
        bool, typer.Option("--save-debug", help="Save raw responses and assembled JSON")
    ] = False,
    no_streaming: Annotated[
        bool, typer.Option("--no-streaming", help="Send single requests instead of streaming")
    ] = False,
) -> None:
    """
    Generate mock tests from reference papers.

    Examples:
        mockforge generate --pyq pyq/ --reference-mock mocks/ --prompt cat.txt -o out/cat
        mockforge generate ... -n 10 -c 3 -f pptx -f pdf --thinking-budget -1
    """
    overrides = {
        "gemini_model": model,
        "max_output_tokens": max_tokens,
        "temperature": temperature,
        "thinking_budget": thinking_budget,
        "target_items": target_items,
        "document_schema": schema,
        "concurrency": concurrency,
        "request_pacing_seconds": rate_limit_delay,
        "batch_pause_seconds": batch_pause,
        "selection_policy": key_policy,
        "quota_aware": quota_aware or None,
        "max_continuation_attempts": max_continuations,
        "max_transport_retries": max_retries,
        "output_formats": formats,
        "ppt_background": str(ppt_background) if ppt_background else None,
        "streaming": False if no_streaming else None,
        "save_debug": save_debug or None,
    }
    settings = get_settings().model_copy(
        update={k: v for k, v in overrides.items() if v is not None}
    )

    try:
        pool = build_pool(settings, api_key_file)
        doc_schema = _resolve_schema(settings.document_schema)
        renderers = build_renderers(settings.output_formats, doc_schema, settings.ppt_background)
        options = GenerationOptions(
            model=settings.gemini_model,
            max_output_tokens=settings.max_output_tokens,
            temperature=settings.temperature,
            thinking_budget=settings.thinking_budget,
            stream=settings.streaming,
            timeout_seconds=settings.request_timeout_seconds,
        )

        user_prompt = read_prompt(prompt)
        resolved_type = exam_type or detect_exam_type(user_prompt)
        pyq_parts = load_reference_parts(find_reference_files(pyq), settings.max_file_bytes)
        reference_parts = load_reference_parts(
            find_reference_files(reference_mock), settings.max_file_bytes
        )
        contents = build_request_contents(
            get_system_prompt(resolved_type, doc_schema, settings.target_items),
            pyq_parts,
            reference_parts,
            user_prompt,
        )
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    console.print("\n[bold cyan]MockForge[/bold cyan]")
    console.print(f"  Model: {options.model}")
    console.print(f"  Exam type: {resolved_type} ({doc_schema.name} layout)")
    console.print(f"  References: {len(pyq_parts)} PYQ, {len(reference_parts)} mock")
    console.print(f"  Keys: {len(pool)} ({pool.policy.value})")
    console.print(f"  Mocks: {number_of_mocks} x {settings.target_items} questions")
    console.print(f"  Output: {output_base_for(output, 1, number_of_mocks)} ({', '.join(settings.output_formats)})\n")

    orchestrator = GenerationOrchestrator(
        pool=pool,
        client=GeminiClient(),
        assembler=ResponseAssembler(doc_schema, collapse_whitespace=settings.collapse_whitespace),
        options=options,
        renderers=renderers,
        policy=RetryPolicy.from_settings(settings),
        target_items=settings.target_items,
        quota_aware=settings.quota_aware,
        save_debug=settings.save_debug,
    )
    runner = BatchRunner(
        orchestrator,
        pool,
        concurrency=settings.concurrency,
        batch_pause=settings.batch_pause_seconds,
    )
    units = build_work_units(number_of_mocks, output, contents)
    summary = asyncio.run(runner.run(units))

    print_summary(summary, pool)
    if summary.all_failed:
        console.print("[red]No mocks were generated.[/red]")
        raise typer.Exit(1)


@app.command("render")
def render(
    source: Annotated[Path, typer.Argument(help="Mock JSON file")],
    output: Annotated[Path | None, typer.Option("--output", "-o", help="Output path (extension optional)")] = None,
    formats: Annotated[
        list[str] | None, typer.Option("--format", "-f", help="pptx, pdf or json (repeatable)")
    ] = None,
    schema: Annotated[str, typer.Option("--schema", help="JSON layout: exam or question_sets")] = "exam",
    ppt_background: Annotated[
        Path | None, typer.Option("--ppt-background", help="Background image for every slide")
    ] = None,
) -> None:
    """
    Render a previously generated mock JSON file.

    Examples:
        mockforge render out/cat_debug.json -o out/cat -f pptx
    """
    try:
        doc_schema = _resolve_schema(schema)
        renderers = build_renderers(formats or ["pptx"], doc_schema, ppt_background)
        try:
            document = json.loads(source.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read mock JSON {source}: {e}") from e
        assembler = ResponseAssembler(doc_schema)
        assembler.validate_shape(document)
    except MockForgeError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    base = output_base_for(output or source, 1, 1)
    for renderer in renderers:
        path = Path(f"{base}{renderer.suffix}")
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            renderer.render(document, path)
        except Exception as e:
            console.print(f"[red]Failed to write {path}:[/red] {escape(str(e))}")
            raise typer.Exit(1)
        console.print(f"[green]+[/green] {path} ({assembler.count_items(document)} questions)")


@app.command("check-keys")
def check_keys(
    api_key_file: Annotated[
        Path | None, typer.Option("--api-key-file", "-k", help="File with one API key per line")
    ] = None,
) -> None:
    """Validate the API key file without calling the API."""
    settings = get_settings()
    try:
        keys = load_keys(settings, api_key_file)
        pool = CredentialPool(keys)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    table = Table(title=f"{len(pool)} API key(s)")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for credential in pool.credentials:
        table.add_row(credential.label, credential.masked)
    console.print(table)


# =============================================================================
# Entry Point
# =============================================================================


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
    log_file: Annotated[str | None, typer.Option("--log-file", help="Also log to this file")] = None,
) -> None:
    """MockForge: generate mock exams from reference papers with Gemini."""
    settings = get_settings()
    configure_logging("DEBUG" if verbose else settings.log_level, log_file or settings.log_file)


def run() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()
