"""CLI interface for the car advisor."""

import asyncio
from enum import Enum
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from car_advisor.catalog import CatalogError, load_catalog
from car_advisor.llm import OllamaClient
from car_advisor.models import Answers, TokenKind
from car_advisor.prompts import SpecSheetError, load_spec_sheet
from car_advisor.scoring import NO_MATCH_MESSAGE, recommend
from car_advisor.settings import settings
from car_advisor.streaming import StreamingAnswerService

app = typer.Typer(
    name="car-advisor",
    help="Volvo car recommender: questionnaire scoring and spec Q&A",
    add_completion=False,
)
console = Console()


class DeliveryMode(str, Enum):
    WEB = "web"
    CHAT = "chat"


def run_async(coro):
    """Run async function in sync context."""
    return asyncio.run(coro)


def _load_catalog_or_exit(path: Optional[Path]):
    try:
        return load_catalog(path or (Path(settings.catalog.path) if settings.catalog.path else None))
    except CatalogError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(1)


@app.command()
def catalog(
    path: Optional[Path] = typer.Option(None, "--path", "-p", help="Catalog YAML file"),
):
    """Show the product catalog."""
    products = _load_catalog_or_exit(path)

    table = Table(title="Volvo Catalog")
    table.add_column("Product", style="cyan")
    table.add_column("Style")
    table.add_column("Daily distance", justify="right")
    table.add_column("Usage", justify="right")
    table.add_column("Features", justify="right")

    def fmt(weights):
        return " ".join(f"{w:g}" for w in weights)

    for product_id, profile in products.items():
        table.add_row(
            product_id,
            profile.style.value,
            fmt(profile.daily_distance_weights),
            fmt(profile.usage_weights),
            fmt(profile.feature_weights),
        )
    console.print(table)


@app.command("recommend")
def recommend_command(
    distance: int = typer.Option(..., "--distance", "-d", min=0, max=2, help="Daily distance (0-2)"),
    usage: int = typer.Option(..., "--usage", "-u", min=0, max=2, help="Primary usage (0-2)"),
    style: int = typer.Option(..., "--style", "-s", min=0, max=3, help="Style (0 Sedan, 1 SUV, 2 Wagon, 3 any)"),
    feature: Optional[List[int]] = typer.Option(None, "--feature", "-f", help="Feature (0-5), repeatable"),
    mode: DeliveryMode = typer.Option(DeliveryMode.WEB, "--mode", "-m", help="Emphasis of the delivery mode"),
    top: int = typer.Option(0, "--top", "-t", min=0, help="Rows to show (0 = scoring.top_n)"),
    path: Optional[Path] = typer.Option(None, "--path", "-p", help="Catalog YAML file"),
):
    """Score answers against the catalog and print the ranking."""
    products = _load_catalog_or_exit(path)
    try:
        answers = Answers(
            daily_distance=distance,
            usage=usage,
            features=frozenset(feature or []),
            style_preference=style,
        )
    except ValueError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(1)
    emphasis = settings.scoring.emphasis.get(mode.value)
    result = recommend(answers, products, emphasis=emphasis)

    if not result.is_match:
        console.print(f"[yellow]{NO_MATCH_MESSAGE}[/yellow]")
        raise typer.Exit(1)

    table = Table(title=f"Recommendation ({mode.value}, k1={emphasis:g})")
    table.add_column("#", justify="right")
    table.add_column("Product", style="cyan")
    table.add_column("Style")
    table.add_column("Score", justify="right")
    for rank, item in enumerate(result.top(top or settings.scoring.top_n), start=1):
        table.add_row(str(rank), item.product_id, item.style.value, f"{item.score:g}")
    console.print(table)
    console.print(f"\n[green]Best match: {result.best.product_id}[/green]")


@app.command()
def ask(
    product: str = typer.Argument(..., help="Volvo model, e.g. EX90"),
    question: str = typer.Argument(..., help="Question about the model"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Ollama model name"),
    specs: Optional[Path] = typer.Option(None, "--specs", help="Spec sheet text file"),
):
    """Stream an answer about one product to the terminal."""
    products = _load_catalog_or_exit(None)
    product_id = products.find(product)
    if product_id is None:
        console.print(f"[red]Error: unknown Volvo model '{product}'[/red]")
        raise typer.Exit(1)

    try:
        spec_sheet = load_spec_sheet(specs)
    except SpecSheetError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(1)

    service = StreamingAnswerService(
        OllamaClient(model=model),
        inactivity_timeout=settings.llm.inactivity_timeout,
    )

    async def do_ask() -> Optional[str]:
        async for token in service.ask(product_id, question, spec_sheet):
            if token.kind is TokenKind.TEXT:
                console.print(token.value, end="", markup=False, highlight=False)
            elif token.kind is TokenKind.ERROR:
                return token.value
        return None

    error = run_async(do_ask())
    console.print()
    if error:
        console.print(f"[red]Error: {error}[/red]")
        raise typer.Exit(1)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", help="Bind port"),
):
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run("car_advisor.api:app", host=host, port=port)


if __name__ == "__main__":
    app()
