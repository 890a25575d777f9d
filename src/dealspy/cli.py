"""Entry-point for the price discovery CLI."""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Awaitable, Callable
from decimal import Decimal, InvalidOperation
from typing import TypeVar

import typer
from rich.console import Console
from rich.table import Table

from dealspy.bootstrap import Pipeline, build_pipeline
from dealspy.core.config import get_settings
from dealspy.core.db import create_engine, create_schema
from dealspy.core.errors import DealSpyError
from dealspy.core.logging import setup_logging
from dealspy.price_discovery.orchestrator import BatchReport, UpdateOutcome, UpdateStatus

app = typer.Typer(help="Track product prices and alert watchers on price drops.")
console = Console()

T = TypeVar("T")

STATUS_STYLES = {
    UpdateStatus.UPDATED: "green",
    UpdateStatus.DROPPED: "bold magenta",
    UpdateStatus.UNCHANGED: "yellow",
    UpdateStatus.FAILED: "red",
}


def _run_with_pipeline(action: Callable[[Pipeline], Awaitable[T]]) -> T:
    """Build the pipeline, run one action, flush notifications and clean up."""
    settings = get_settings()
    setup_logging(settings.log_level, service_name=settings.app_name.lower())

    async def runner() -> T:
        pipeline = build_pipeline(settings)
        try:
            result = await action(pipeline)
            if pipeline.notifier is not None:
                await pipeline.notifier.wait_idle()
            return result
        finally:
            await pipeline.aclose()

    try:
        return asyncio.run(runner())
    except (DealSpyError, ValueError) as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc


def _format_price(price: Decimal | None) -> str:
    return "-" if price is None else f"{get_settings().currency_symbol}{price:,}"


def _render_outcomes(outcomes: list[UpdateOutcome]) -> None:
    table = Table(title="Price updates")
    table.add_column("ID", justify="right")
    table.add_column("Product")
    table.add_column("Status")
    table.add_column("Previous", justify="right")
    table.add_column("Price", justify="right")

    for outcome in outcomes:
        style = STATUS_STYLES.get(outcome.status, "white")
        table.add_row(
            "-" if outcome.product_id is None else str(outcome.product_id),
            outcome.product_name,
            f"[{style}]{outcome.status.value}[/{style}]",
            _format_price(outcome.previous_price),
            _format_price(outcome.price),
        )
    console.print(table)


def _render_report(report: BatchReport) -> None:
    _render_outcomes(report.outcomes)
    summary = report.summary()
    console.print(
        f"Processed {summary['processed']}/{summary['total']} products: "
        f"{summary['updated']} updated, {summary['dropped']} dropped, "
        f"{summary['unchanged']} unchanged, {summary['failed']} failed"
    )
    if report.cancelled:
        console.print("[bold yellow]Batch was stopped before completion.[/bold yellow]")


@app.command("init-db")
def init_db() -> None:
    """Create the product, user and watchlist tables."""

    settings = get_settings()
    setup_logging(settings.log_level, service_name=settings.app_name.lower())

    async def runner() -> None:
        engine = create_engine(settings.database_url)
        try:
            await create_schema(engine)
        finally:
            await engine.dispose()

    asyncio.run(runner())
    console.print("[bold green]Database schema is ready.[/bold green]")


@app.command("update-all")
def update_all() -> None:
    """Update the price of every product in the catalog."""

    console.print("[bold green]Updating all products...[/bold green]")
    report = _run_with_pipeline(lambda pipeline: pipeline.orchestrator.update_all())
    _render_report(report)


@app.command("update-one")
def update_one(product_id: int = typer.Argument(..., help="Product id.")) -> None:
    """Update the price of one product by id."""

    outcome = _run_with_pipeline(lambda pipeline: pipeline.orchestrator.update_one(product_id))
    _render_outcomes([outcome])


@app.command("update-name")
def update_name(name: str = typer.Argument(..., help="Product name.")) -> None:
    """Update a product by name, adding it to the catalog if needed."""

    outcome = _run_with_pipeline(lambda pipeline: pipeline.orchestrator.update_by_name(name))
    _render_outcomes([outcome])


@app.command("set-price")
def set_price(
    product_id: int = typer.Argument(..., help="Product id."),
    price: str = typer.Argument(..., help="New price, e.g. 1299.00"),
) -> None:
    """Record a price by hand; watchers are alerted if it is a drop."""

    try:
        amount = Decimal(price)
    except InvalidOperation as exc:
        console.print(f"[bold red]Error:[/bold red] Invalid price: {price}")
        raise typer.Exit(code=1) from exc

    outcome = _run_with_pipeline(
        lambda pipeline: pipeline.orchestrator.apply_manual_price(product_id, amount)
    )
    _render_outcomes([outcome])


@app.command("notify-test")
def notify_test(product_id: int = typer.Argument(..., help="Product id.")) -> None:
    """Send a price-drop alert for a product's current price to its watchers."""

    scheduled = _run_with_pipeline(
        lambda pipeline: pipeline.orchestrator.send_test_notification(product_id)
    )
    if scheduled:
        console.print("[bold green]Notifications sent.[/bold green]")
    else:
        console.print("[bold yellow]No notifications were scheduled.[/bold yellow]")


async def _serve(pipeline: Pipeline) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await pipeline.scheduler.start()
    try:
        await stop.wait()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await pipeline.scheduler.stop()


@app.command()
def run() -> None:
    """Run scheduled catalog updates until interrupted."""

    console.print("[bold green]Starting price update scheduler...[/bold green]")
    _run_with_pipeline(_serve)
    console.print("[bold yellow]Scheduler stopped.[/bold yellow]")


if __name__ == "__main__":  # pragma: no cover
    app()
