"""CLI entry point for walsync.

Provides commands:
  - sync: Upload a file or the files of a directory to Walrus (resumable)
  - pending: Show uploads that a ``sync --resume`` would pick up
  - config: Manage the Sui signing key stored in the system keyring
    (set-key, address, remove-key)
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Annotated

import keyring
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from walsync.config import KEY_NAME, SERVICE_NAME, load_signer, load_sync_config
from walsync.models import SyncConfig
from walsync.scanner import FileScanner
from walsync.upload.exceptions import ConfigurationError
from walsync.upload.options import UploadOptions, validate_options
from walsync.upload.orchestrator import list_resumable_paths, pending_records
from walsync.upload.state import AsyncUploadStateStore

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="walsync - Rsync-like tool for the Walrus decentralized store",
    rich_markup_mode="rich",
)
console = Console()

config_app = typer.Typer(help="Manage configuration (Sui signing key)")
app.add_typer(config_app, name="config")

_USAGE_EXAMPLES = (
    "\nUsage examples:\n"
    "  walsync sync my-folder --epochs 5 --dry-run\n"
    "  walsync sync document.pdf --epochs 5\n"
    "  walsync sync --resume --epochs 5"
)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _load_config(
    config_path: Path | None,
    network: str | None = None,
    state_db: Path | None = None,
) -> SyncConfig:
    try:
        return load_sync_config(
            config_path,
            network=network,
            state_db=str(state_db) if state_db is not None else None,
        )
    except ConfigurationError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)


async def _resumable_paths(state_db: str) -> list[str]:
    async with AsyncUploadStateStore(state_db) as store:
        return await list_resumable_paths(store)


@app.command()
def sync(
    src: Annotated[
        Path | None,
        typer.Argument(help="File or directory to sync (top-level files only)"),
    ] = None,
    epochs: Annotated[
        int | None,
        typer.Option("--epochs", "-e", help="The number of epochs to store the blob(s) for"),
    ] = None,
    deletable: Annotated[
        bool,
        typer.Option("--deletable", help="Mark the blob(s) as deletable"),
    ] = False,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Show files that would be synced without uploading them"),
    ] = False,
    resume: Annotated[
        bool,
        typer.Option("--resume", help="Also resume interrupted and failed uploads"),
    ] = False,
    network: Annotated[
        str | None,
        typer.Option("--network", "-n", help="Walrus network: mainnet or testnet"),
    ] = None,
    state_db: Annotated[
        Path | None,
        typer.Option("--state-db", help="Path to the upload state database"),
    ] = None,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to sync_config.json"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging"),
    ] = False,
) -> None:
    """Upload files to Walrus, resuming where a previous run stopped.

    The Sui private key is read from the system keyring (service: walsync-sui),
    falling back to the SUI_PRIVATE_KEY environment variable.
    """
    _setup_logging(verbose)
    config = _load_config(config_path, network, state_db)

    try:
        options = validate_options(UploadOptions(epochs=epochs, deletable=deletable))
    except ConfigurationError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    scanner = FileScanner()
    paths: list[str] = []
    if src is not None:
        if not scanner.path_exists(src):
            console.print("[red]Error:[/red] Please specify a source file or directory")
            console.print(_USAGE_EXAMPLES)
            raise typer.Exit(code=1)
        if scanner.is_directory(src):
            console.print(f"Syncing files from directory: {src}")
        else:
            console.print(f"Syncing file: {src}")
        paths.extend(str(p) for p in scanner.collect(src))

    if resume:
        resumable = asyncio.run(_resumable_paths(config.state_db))
        console.print(f"Resuming {len(resumable)} interrupted upload(s)")
        paths.extend(p for p in resumable if p not in paths)
    elif src is None:
        console.print("[red]Error:[/red] Please specify a source file or directory")
        console.print(_USAGE_EXAMPLES)
        raise typer.Exit(code=1)

    if not paths:
        console.print("[green]Nothing to sync.[/green]")
        return

    if dry_run:
        console.print(
            "Dry-run operation; the following file(s) will not be uploaded to Walrus"
        )
        for fp in paths:
            console.print(f"\t{fp}", soft_wrap=True)
        return

    try:
        signer = load_signer()
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    console.print(f"> Uploading using wallet address: {signer.address}", soft_wrap=True)
    console.print(
        Panel(
            f"Storing [bold]{len(paths)}[/bold] file(s) on Walrus [bold]{config.network}[/bold]\n"
            f"Epochs: {options.epochs} | Deletable: {options.deletable}",
            title="Storing in Walrus",
        )
    )

    # Import upload modules here to keep CLI startup fast for pending/config
    from walsync.upload.client import WalrusBridgeClient
    from walsync.upload.orchestrator import UploadCoordinator
    from walsync.upload.progress import UploadProgressTracker

    async def _run_upload() -> dict[str, int]:
        async with WalrusBridgeClient(
            config.bridge_url,
            config.aggregator_url,
            signer,
            timeout=config.request_timeout_seconds,
            max_retries=config.max_retries,
        ) as client, AsyncUploadStateStore(config.state_db) as store:
            with UploadProgressTracker(total_files=len(paths)) as progress:
                coordinator = UploadCoordinator(
                    client,
                    store,
                    signer.address,
                    max_resets=config.max_resets,
                    progress=progress,
                )
                return await coordinator.upload_many(paths, options)

    result = asyncio.run(_run_upload())

    summary_table = Table(title="Sync Summary")
    summary_table.add_column("Metric", style="bold")
    summary_table.add_column("Count", justify="right")

    summary_table.add_row("Total files", str(result["total"]))
    summary_table.add_row("Succeeded", f"[green]{result['succeeded']}[/green]")
    summary_table.add_row("Skipped", f"[yellow]{result['skipped']}[/yellow]")
    summary_table.add_row("Failed", f"[red]{result['failed']}[/red]")

    console.print(Panel(summary_table, title="Sync Complete"))
    if result["failed"]:
        console.print(
            "[dim]Failed uploads keep their state; rerun with "
            "[bold]walsync sync --resume --epochs N[/bold] to retry.[/dim]"
        )


@app.command()
def pending(
    state_db: Annotated[
        Path | None,
        typer.Option("--state-db", help="Path to the upload state database"),
    ] = None,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to sync_config.json"),
    ] = None,
) -> None:
    """Show uploads that [bold]sync --resume[/bold] would continue."""
    config = _load_config(config_path, state_db=state_db)

    async def _load() -> list:
        async with AsyncUploadStateStore(config.state_db) as store:
            return await pending_records(store)

    records = asyncio.run(_load())
    if not records:
        console.print("[green]No interrupted uploads.[/green]")
        return

    table = Table(title=f"Resumable Uploads ({len(records)})")
    table.add_column("Stage", style="cyan")
    table.add_column("File", no_wrap=True)
    table.add_column("Blob ID", style="dim")
    table.add_column("Updated")
    table.add_column("Last error", style="red")

    for record in records:
        table.add_row(
            record.stage.value,
            record.source_path,
            record.fingerprint,
            record.updated_at.strftime("%Y-%m-%d %H:%M:%S"),
            record.last_error or "",
        )

    console.print(table)


@config_app.command("set-key")
def set_key(
    key: Annotated[
        str,
        typer.Argument(help="Base64 (or hex) Ed25519 private key to store in system keyring"),
    ],
) -> None:
    """Store the Sui private key in the system keyring (service: walsync-sui)."""
    from walsync.upload.signer import SuiSigner

    if not key or key.strip() == "":
        console.print("[red]Error:[/red] Private key cannot be empty")
        raise typer.Exit(code=1)

    try:
        signer = SuiSigner.from_secret(key)
    except ConfigurationError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    try:
        keyring.set_password(SERVICE_NAME, KEY_NAME, key.strip())
    except Exception as e:
        console.print(f"[red]Error:[/red] Failed to store private key: {e}")
        raise typer.Exit(code=1)

    console.print(
        f"[green]✓[/green] Key for {signer.address} stored in system keyring "
        f"(service: {SERVICE_NAME})"
    )


@config_app.command("address")
def show_address() -> None:
    """Show the Sui address derived from the configured private key."""
    try:
        signer = load_signer()
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]Address:[/green] {signer.address}")


@config_app.command("remove-key")
def remove_key() -> None:
    """Delete the stored Sui private key from the system keyring."""
    try:
        existing = keyring.get_password(SERVICE_NAME, KEY_NAME)
        if not existing:
            console.print(
                "[yellow]Warning:[/yellow] No private key found in keyring.\n"
                "Nothing to remove."
            )
            return

        keyring.delete_password(SERVICE_NAME, KEY_NAME)
        console.print(
            f"[green]✓[/green] Private key removed from system keyring (service: {SERVICE_NAME})"
        )
    except Exception as e:
        console.print(f"[red]Error:[/red] Failed to remove private key: {e}")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
