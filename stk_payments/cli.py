"""CLI for STK Payments.

Runs the API server and drives payments through the polling controller.
"""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from stk_payments import __version__
from stk_payments.client import (
    FlowState,
    PaymentApiClient,
    PaymentClientError,
    PaymentFlowController,
    PaymentOutcome,
    PollingPolicy,
)
from stk_payments.config import get_settings
from stk_payments.monitoring.logging import setup_logging

app = typer.Typer(
    name="stk-payments",
    help="STK Payments - M-Pesa STK push payments through PesaFlux",
    add_completion=False,
)

console = Console()


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
) -> None:
    """Run the payments API."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "stk_payments.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


def _print_outcome(outcome: PaymentOutcome) -> None:
    table = Table(show_header=False, box=None)
    table.add_row("State", outcome.state.value)
    table.add_row("Request ID", outcome.transaction_request_id or "-")
    table.add_row("Status", outcome.status or "-")
    table.add_row("Attempts", str(outcome.attempts))
    if outcome.receipt_number:
        table.add_row("Receipt", outcome.receipt_number)
    if outcome.message:
        table.add_row("Message", outcome.message)

    style = "green" if outcome.succeeded else "red"
    console.print(Panel(table, title="Payment", border_style=style))


async def _run_payment(
    phone: str, amount: int, email: Optional[str], api_url: str
) -> PaymentOutcome:
    settings = get_settings()
    api = PaymentApiClient(api_url)

    def show_transition(old: FlowState, new: FlowState) -> None:
        console.print(f"[dim]{old.value}[/dim] -> [bold]{new.value}[/bold]")

    controller = PaymentFlowController(
        api,
        policy=PollingPolicy.from_settings(settings),
        reference_prefix=settings.payment_reference_prefix,
        on_transition=show_transition,
    )
    handle = controller.start(phone, amount, email)
    try:
        return await handle.wait()
    finally:
        handle.cancel()
        await api.close()


@app.command()
def pay(
    phone: str = typer.Argument(..., help="Payer phone number (07.., +2547.., 2547..)"),
    amount: int = typer.Argument(..., help="Amount in KES"),
    email: Optional[str] = typer.Option(None, "--email", "-e", help="Payer email"),
    api_url: Optional[str] = typer.Option(None, "--api-url", help="Payments API base URL"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
) -> None:
    """Send an STK push and wait for the payer to complete it."""
    setup_logging("DEBUG" if verbose else "WARNING")
    base_url = api_url or get_settings().api_base_url

    console.print(f"[blue]Requesting STK push to[/blue] {phone} for KES {amount}")
    outcome = asyncio.run(_run_payment(phone, amount, email, base_url))
    _print_outcome(outcome)

    if not outcome.succeeded:
        raise typer.Exit(1)


async def _check(transaction_request_id: str, direct: bool, api_url: str) -> dict:
    api = PaymentApiClient(api_url)
    try:
        if direct:
            return await api.provider_status(transaction_request_id)
        payment = await api.cached_status(transaction_request_id)
        return {"payment": payment}
    finally:
        await api.close()


@app.command()
def check(
    transaction_request_id: str = typer.Argument(..., help="PesaFlux transaction request id"),
    direct: bool = typer.Option(
        False, "--direct", "-d", help="Query PesaFlux instead of the stored status"
    ),
    api_url: Optional[str] = typer.Option(None, "--api-url", help="Payments API base URL"),
) -> None:
    """Look up the status of a transaction once."""
    setup_logging("WARNING")
    base_url = api_url or get_settings().api_base_url

    try:
        result = asyncio.run(_check(transaction_request_id, direct, base_url))
    except PaymentClientError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if direct:
        console.print(f"Provider status: [bold]{result.get('status')}[/bold]")
        console.print(result.get("details"))
        return

    payment = result["payment"]
    if payment is None:
        console.print(f"[yellow]No transaction recorded for[/yellow] {transaction_request_id}")
        raise typer.Exit(1)

    table = Table(title=transaction_request_id)
    table.add_column("Field")
    table.add_column("Value")
    for key, value in payment.items():
        table.add_row(key, "-" if value is None else str(value))
    console.print(table)


@app.callback(invoke_without_command=True)
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
    ),
) -> None:
    """STK Payments - M-Pesa STK push payments through PesaFlux."""
    if version:
        console.print(f"STK Payments v{__version__}")
        raise typer.Exit()


if __name__ == "__main__":
    app()
