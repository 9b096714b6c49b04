"""
CLI interface for the generation gateway.

Provides command-line access to generation and usage statistics.
"""

import mimetypes
import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from genai_gateway.config.loader import GatewayConfig, load_gateway_config
from genai_gateway.core.accounting import UsageAccountant
from genai_gateway.core.errors import AdmissionRejected, ValidationError
from genai_gateway.core.gateway import TEXT_VARIANTS, Gateway, build_gateway
from genai_gateway.core.responses import GenerationResponse
from genai_gateway.core.tasks import (
    GenerationRequest,
    ImageAnalysisRequest,
    ImageGenerationRequest,
    resolve_actor,
)
from genai_gateway.logging_config import configure_logging
from genai_gateway.storage.models import UsageAggregate
from genai_gateway.storage.repository import (
    UsageRepository,
    fetch_generation_records,
    initialize_schema,
)

app = typer.Typer()
stats_app = typer.Typer(help="Usage statistics")
app.add_typer(stats_app, name="stats")
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

_state = {"config_path": None}


def _load_config() -> GatewayConfig:
    path = _state["config_path"]
    config = load_gateway_config(path) if path else GatewayConfig.default()
    configure_logging(config.logging.level, config.logging.json)
    return config


def _accountant(config: GatewayConfig) -> UsageAccountant:
    return UsageAccountant(UsageRepository(config.storage.db_path))


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML configuration file"
    )
):
    """Generation gateway CLI."""
    _state["config_path"] = config
    if ctx.invoked_subcommand is None:
        console.print("Generation gateway - Use --help to see available commands")


@app.command()
def init():
    """Initialize the gateway database."""
    try:
        config = _load_config()
        initialize_schema(config.storage.db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def generate(
    prompt: str = typer.Argument(..., help="Prompt text"),
    variant: str = typer.Option(
        "direct",
        "--variant",
        "-v",
        help=f"One of: {', '.join(TEXT_VARIANTS)}"
    ),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model override"),
    max_tokens: Optional[int] = typer.Option(None, "--max-tokens", help="Maximum tokens to generate"),
    temperature: Optional[float] = typer.Option(None, "--temperature", "-t", help="Sampling temperature"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Actor id for limits and accounting")
):
    """Generate text with one of the text variants."""
    _run(lambda gateway: gateway.generate(
        GenerationRequest(
            prompt=prompt,
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            actor_id=user
        ),
        variant=variant
    ))


@app.command("analyze-image")
def analyze_image(
    image: str = typer.Argument(..., help="Image URL or path to a local image file"),
    prompt: Optional[str] = typer.Option(None, "--prompt", "-p", help="Question about the image"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Vision model override"),
    max_tokens: Optional[int] = typer.Option(None, "--max-tokens", help="Maximum tokens to generate"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Actor id for limits and accounting")
):
    """Describe an image with a vision model."""
    def build_request() -> ImageAnalysisRequest:
        options = dict(prompt=prompt, model=model, max_tokens=max_tokens, actor_id=user)
        path = Path(image)
        if path.is_file():
            content_type, _ = mimetypes.guess_type(path.name)
            return ImageAnalysisRequest.from_bytes(path.read_bytes(), content_type or "", **options)
        return ImageAnalysisRequest(image_data=image, image_type="url", **options)

    _run(lambda gateway: gateway.analyze_image(build_request()))


@app.command()
def image(
    prompt: str = typer.Argument(..., help="Description of the image"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Image model override"),
    n: Optional[int] = typer.Option(None, "--n", help="Number of images"),
    size: Optional[str] = typer.Option(None, "--size", help="e.g. 1024x1024"),
    quality: Optional[str] = typer.Option(None, "--quality", help="standard or hd"),
    style: Optional[str] = typer.Option(None, "--style", help="vivid or natural"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Actor id for limits and accounting")
):
    """Generate images from a prompt."""
    _run(lambda gateway: gateway.generate_image(ImageGenerationRequest(
        prompt=prompt,
        model=model,
        n=n,
        size=size,
        quality=quality,
        style=style,
        actor_id=user
    )))


@app.command()
def history(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Actor id"),
    limit: int = typer.Option(20, "--limit", "-l", help="Maximum records to show")
):
    """Show recent generation records for an actor."""
    try:
        config = _load_config()
        records = fetch_generation_records(
            actor_id=resolve_actor(user),
            limit=limit,
            db_path=config.storage.db_path
        )
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title=f"Generations for {resolve_actor(user)}")
    table.add_column("ID", justify="right")
    table.add_column("Created")
    table.add_column("Model")
    table.add_column("Status")
    table.add_column("Tokens", justify="right")
    table.add_column("Time (ms)", justify="right")
    for record in records:
        table.add_row(
            str(record.id),
            record.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            record.model,
            record.status.value,
            str(record.tokens_used),
            str(record.processing_time_ms if record.processing_time_ms is not None else "-")
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@stats_app.command("user")
def stats_user(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Actor id")
):
    """Daily usage for one actor, newest first."""
    actor = resolve_actor(user)
    _show_usage(f"Usage for {actor}", lambda accountant: accountant.history(actor))


@stats_app.command("recent")
def stats_recent(
    days: int = typer.Option(7, "--days", "-d", help="Number of days to look back")
):
    """Daily usage for every actor over the last N days."""
    _show_usage(f"Usage over the last {days} days", lambda accountant: accountant.recent(days))


@stats_app.command("summary")
def stats_summary(
    days: int = typer.Option(7, "--days", "-d", help="Number of days to summarize")
):
    """Total requests and tokens with the busiest actors."""
    try:
        summary = _accountant(_load_config()).summary(days)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"\n[bold]Usage Summary[/bold] ({summary['period']})")
    console.print("-" * 40)
    console.print(f"Total requests: {summary['totalRequests']:,}")
    console.print(f"Total tokens: {summary['totalTokens']:,}")
    _print_top_actors(summary["topUsers"][:10])
    sys.exit(EXIT_CODE_PASS)


@stats_app.command("top")
def stats_top(
    days: int = typer.Option(30, "--days", "-d", help="Number of days to analyze"),
    limit: int = typer.Option(10, "--limit", "-l", help="Number of actors to show")
):
    """Actors with the most requests."""
    try:
        top = _accountant(_load_config()).top_actors(days, limit)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    _print_top_actors(top)
    sys.exit(EXIT_CODE_PASS)


def _run(call) -> None:
    """Build a gateway, run one call and print the outcome."""
    try:
        gateway: Gateway = build_gateway(_load_config())
        response = call(gateway)
    except AdmissionRejected as e:
        payload = e.to_payload()
        console.print(f"[red]{payload['error']}:[/] {payload['message']}")
        if payload["resetTime"]:
            console.print(f"Resets at: {payload['resetTime']}")
        sys.exit(EXIT_CODE_FAIL)
    except (ValidationError, ValueError) as e:
        console.print(f"[red]Invalid request:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    _display_response(response)
    sys.exit(EXIT_CODE_PASS if response.ok else EXIT_CODE_FAIL)


def _display_response(response: GenerationResponse) -> None:
    """Display a generation response."""
    if not response.ok:
        console.print(f"[red]Error:[/] {response.error}")
        return

    console.print(response.output)
    for url in response.image_urls:
        console.print(f"  {url}")
    if response.revised_prompt:
        console.print(f"[dim]Revised prompt:[/] {response.revised_prompt}")

    details = [f"model={response.model}"]
    if response.tokens_used is not None:
        details.append(f"tokens={response.tokens_used}")
    if response.remaining is not None:
        details.append(f"remaining={response.remaining}")
    console.print(f"[dim]{' '.join(details)}[/]")


def _show_usage(title: str, fetch) -> None:
    try:
        rows: List[UsageAggregate] = fetch(_accountant(_load_config()))
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not rows:
        console.print("\n[bold yellow]No usage data found[/]\n")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title=title)
    table.add_column("Day")
    table.add_column("Actor")
    table.add_column("Requests", justify="right")
    table.add_column("OK", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Avg (ms)", justify="right")
    for row in rows:
        table.add_row(
            row.day.isoformat(),
            row.actor_id,
            str(row.requests_count),
            str(row.successful_requests),
            str(row.failed_requests),
            f"{row.tokens_used:,}",
            f"{row.avg_processing_time_ms:,.1f}"
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


def _print_top_actors(top) -> None:
    if not top:
        console.print("\n[dim]No usage data found.[/]")
        return
    console.print("\n[bold]Top users[/bold]")
    for rank, (actor, requests) in enumerate(top, start=1):
        console.print(f"{rank}. {actor}: {requests:,} requests")


if __name__ == "__main__":
    app()
