"""
PopChain CLI.

Usage:
    popchain [OPTIONS] COMMAND [ARGS]...
"""
from __future__ import annotations

import asyncio
import json

import click
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.table import Table

from .config import PopchainSettings, load_settings
from .error_decoder import decode_error
from .exceptions import PopchainException
from .hashing import hash_email
from .logging_utils import mask_address, setup_logging
from .service import PopchainService
from .whitelist import WhitelistProgress

console = Console()


def _settings(ctx: click.Context) -> PopchainSettings:
    if "settings" not in ctx.obj:
        ctx.obj["settings"] = load_settings(ctx.obj.get("env_file"))
        settings = ctx.obj["settings"]
        setup_logging("DEBUG" if ctx.obj.get("verbose") else settings.log_level, settings.log_json)
    return ctx.obj["settings"]


@click.group()
@click.version_option(package_name="popchain-core", message="%(prog)s %(version)s")
@click.option("--env-file", type=click.Path(dir_okay=False), help="Settings file (default: .env)")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx, env_file: str | None, verbose: bool):
    """PopChain CLI - operate the PopChain orchestration layer."""
    ctx.ensure_object(dict)
    ctx.obj["env_file"] = env_file
    ctx.obj["verbose"] = verbose


@cli.command()
@click.pass_context
def status(ctx):
    """Show current configuration."""
    settings = _settings(ctx)

    console.print("\n[bold blue]PopChain Status[/bold blue]\n")
    console.print(f"Environment: [cyan]{settings.environment}[/cyan]")
    console.print(f"Network: [cyan]{settings.ledger.network}[/cyan] ({settings.ledger.rpc_url})")
    console.print(f"Package: [cyan]{settings.contracts.package_id}[/cyan]")
    console.print(f"Treasury: [cyan]{settings.contracts.treasury_id}[/cyan]")

    if settings.sponsor.private_key.get_secret_value():
        console.print("Sponsor key: [green]configured[/green]")
    else:
        console.print("Sponsor key: [yellow]Not configured[/yellow]")

    store = settings.store.url or "[yellow]in-memory[/yellow]"
    console.print(f"Store: {store}")
    console.print()


@cli.command()
@click.pass_context
def sponsor(ctx):
    """Check the sponsor wallet and its balance."""
    settings = _settings(ctx)

    async def _run():
        service = PopchainService.from_settings(settings)
        try:
            return await service.sponsor_status(), service.sponsor
        finally:
            await service.close()

    try:
        (loaded, funding), manager = asyncio.run(_run())
    except PopchainException as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise SystemExit(1)

    table = Table(title="Sponsor Wallet")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Status", loaded.status.value)
    table.add_row("Address", loaded.address or "-")
    table.add_row("Balance", f"{funding.balance_sui:.4f} SUI")
    table.add_row("Sufficient", "[green]yes[/green]" if funding.sufficient else "[red]no[/red]")
    console.print(table)

    if not funding.sufficient:
        console.print(f"[yellow]{manager.funding_message(funding)}[/yellow]")
        raise SystemExit(1)


@cli.command("hash-email")
@click.argument("email")
def hash_email_cmd(email: str):
    """Print the SHA3-256 hex digest stored for EMAIL."""
    click.echo(hash_email(email.strip()))


@cli.command("decode-error")
@click.argument("signal")
def decode_error_cmd(signal: str):
    """Decode a failure message or JSON error object."""
    try:
        parsed = json.loads(signal)
    except ValueError:
        parsed = signal
    decoded = decode_error(parsed)

    console.print(f"Category: [bold]{decoded.category.value}[/bold]")
    if decoded.abort_code is not None:
        console.print(f"Abort code: {decoded.abort_code}")
    console.print(f"Message: {decoded.display_message}")


@cli.command()
@click.argument("event_id")
@click.argument("file", type=click.File("r"))
@click.pass_context
def whitelist(ctx, event_id: str, file):
    """Whitelist every email in FILE for EVENT_ID using the sponsor wallet."""
    settings = _settings(ctx)
    lines = file.read().splitlines()
    failures: list[WhitelistProgress] = []

    async def _run():
        service = PopchainService.from_settings(settings)
        try:
            signer = service.sponsor.signer
            if signer is None:
                raise click.ClickException("Sponsor wallet not configured. Set POPCHAIN_SPONSOR__PRIVATE_KEY.")
            console.print(f"Signing as [cyan]{mask_address(signer.address)}[/cyan]")

            with Progress(
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                console=console,
            ) as progress:
                task = progress.add_task("Whitelisting", total=None)

                def on_progress(update: WhitelistProgress) -> None:
                    progress.update(task, total=update.tally.total, completed=update.tally.processed)
                    if not update.result.success:
                        failures.append(update)

                return await service.whitelist_bulk(event_id, lines, signer, on_progress)
        finally:
            await service.close()

    try:
        tally = asyncio.run(_run())
    except PopchainException as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise SystemExit(1)

    if failures:
        table = Table(title="Failed")
        table.add_column("Line", justify="right")
        table.add_column("Email", style="cyan")
        table.add_column("Reason", style="red")
        for update in failures:
            reason = update.result.error.display_message if update.result.error else "unknown"
            table.add_row(str(update.result.position + 1), update.result.candidate, reason)
        console.print(table)

    console.print(
        f"\n[bold]{tally.succeeded}[/bold] whitelisted, "
        f"[bold]{tally.failed}[/bold] failed of {tally.total}\n"
    )
    if tally.failed:
        raise SystemExit(1)


def main():
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
