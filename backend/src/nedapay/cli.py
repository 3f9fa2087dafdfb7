"""Command-line interface for nedapay."""

import sys
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from nedapay.exceptions import NedapayError
from nedapay.logging_config import configure_logging, get_logger
from nedapay.referral.codes import generate_code, is_valid_code, normalize_code, parse_code
from nedapay.referral.counters import InMemoryCounterStore, SqlCounterStore, seed_counters
from nedapay.referral.service import invite_link, referral_service
from nedapay.storage.db import db
from nedapay.webhooks.handlers import cleanup_old_events
from nedapay.webhooks.signature import compute_signature, verify_signature

# Configure logging
configure_logging()
logger = get_logger(__name__)

# Create Typer app
app = typer.Typer(
    name="nedapay",
    help="nedapay - referral codes and webhook signature tools",
    no_args_is_help=True,
)

# Rich console for pretty output
console = Console()


def _read_body(path: Path) -> bytes:
    """Read a payload byte-for-byte; ``-`` reads stdin."""
    if str(path) == "-":
        return sys.stdin.buffer.read()
    return path.read_bytes()


@app.command("init")
def init_database() -> None:
    """Initialize the database, create tables and seed shard counters."""
    console.print("[bold blue]Initializing database...[/bold blue]")
    db.create_tables()
    created = seed_counters(db)
    console.print(f"[bold green]✓[/bold green] Database initialized ({created} counters seeded)")


@app.command("generate-code")
def generate_codes(
    count: Annotated[int, typer.Option("--count", "-n", help="Number of codes to generate", min=1)] = 1,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Use a throwaway in-memory counter")] = False,
) -> None:
    """Generate referral codes from the shard counters."""
    store = InMemoryCounterStore() if dry_run else SqlCounterStore(db)

    try:
        for _ in range(count):
            console.print(generate_code(store))
    except NedapayError as e:
        console.print(f"[bold red]✗[/bold red] Generation failed: {e}")
        raise typer.Exit(1)


@app.command("assign-code")
def assign_code(
    user_id: Annotated[str, typer.Argument(help="User to issue a code for")],
    display_name: Annotated[str | None, typer.Option("--name", help="Display name for new profiles")] = None,
) -> None:
    """Create an influencer profile and referral code for a user."""
    try:
        profile = referral_service.assign_code(user_id, display_name=display_name)
    except NedapayError as e:
        console.print(f"[bold red]✗[/bold red] Could not assign code: {e}")
        raise typer.Exit(1)

    console.print(f"[bold green]✓[/bold green] {profile.custom_code}  {invite_link(profile.custom_code)}")


@app.command("check-code")
def check_code(
    code: Annotated[str, typer.Argument(help="Referral code to check")],
) -> None:
    """Check a referral code's checksum and decode it."""
    code = normalize_code(code)

    if not is_valid_code(code):
        console.print(f"[red]{code or '<empty>'} is not a valid referral code[/red]")
        raise typer.Exit(1)

    shard, counter = parse_code(code)

    table = Table(title=code)
    table.add_column("Shard", style="cyan")
    table.add_column("Counter", justify="right")
    table.add_column("Checksum", style="green")
    table.add_row(shard, str(counter), code[-1])
    console.print(table)


@app.command("sign")
def sign_payload(
    body: Annotated[Path, typer.Argument(help="File with the raw body, or - for stdin")],
    secret: Annotated[str, typer.Option("--secret", "-s", envvar="WEBHOOK_SECRET", help="Shared secret")],
) -> None:
    """Print the hex HMAC-SHA256 signature of a webhook body."""
    console.print(compute_signature(_read_body(body), secret))


@app.command("verify")
def verify_payload(
    body: Annotated[Path, typer.Argument(help="File with the raw body, or - for stdin")],
    signature: Annotated[str, typer.Argument(help="Signature header value")],
    secret: Annotated[str, typer.Option("--secret", "-s", envvar="WEBHOOK_SECRET", help="Shared secret")],
) -> None:
    """Verify a webhook body against a signature."""
    if verify_signature(_read_body(body), signature, secret):
        console.print("[bold green]✓[/bold green] Signature valid")
        return

    console.print("[bold red]✗[/bold red] Signature invalid")
    raise typer.Exit(1)


@app.command("cleanup-webhooks")
def cleanup_webhooks(
    days: Annotated[int, typer.Option("--days", "-d", help="Keep events newer than this")] = 30,
) -> None:
    """Delete old webhook idempotency records."""
    deleted = cleanup_old_events(db, days=days)
    console.print(f"[bold green]✓[/bold green] Removed {deleted} webhook events older than {days} days")


if __name__ == "__main__":
    app()
