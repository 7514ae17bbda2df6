"""
tyvt command-line interface.

Usage:
    tyvt scan example.com example.org --key KEY1 --key KEY2
    tyvt scan --config scan.yaml --query mypkg.vt:query_domain --output results.json
"""

import asyncio
import sys
from pathlib import Path
from typing import List, Optional

import click
import structlog
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .collaborators import load_query
from .core import (
    BatchOrchestrator,
    BatchOutcome,
    ConfigError,
    CredentialRotator,
    Governor,
    ScanCancelledError,
    ThresholdExceededError,
    install_signal_handlers,
)
from .core.orchestrator import QueryFunc
from .logging_setup import configure_logging
from .output import write_outcome
from .settings import ScanSettings, load_settings
from .validation import HEX64_KEY_PATTERN, validate_credentials, validate_domains


console = Console()
logger = structlog.get_logger(__name__)

KEY_PATTERNS = {"hex64": HEX64_KEY_PATTERN}


@click.group()
@click.version_option(version=__version__, prog_name="tyvt")
def cli():
    """
    tyvt - Rate-limited, key-rotating batch scanner

    Queries a remote scanning service for every domain, pacing requests and
    rotating API keys within their daily and monthly quotas.
    """
    pass


def _warn_invalid(kind: str, errors: List[str]):
    if not errors:
        return
    console.print(f"[yellow]Warning: found {len(errors)} invalid {kind}:[/yellow]")
    for error in errors:
        console.print(f"   - {error}")


@cli.command()
@click.argument('items', nargs=-1)
@click.option('--key', 'keys', multiple=True, help='API key (repeat to rotate between several keys)')
@click.option('--key-pattern', type=click.Choice(sorted(KEY_PATTERNS), case_sensitive=False),
              help='Required API key format: "hex64" for 64-char hex keys'
                   ' (default: any token, or credential_pattern from --config)')
@click.option('--query', 'query_path', default='tyvt.collaborators:echo_query', show_default=True,
              help='Query collaborator as package.module:function')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False, path_type=Path),
              help='YAML settings file')
@click.option('--pacing-interval', type=float, help='Minimum seconds between any two requests (default: 15)')
@click.option('--rotation-interval', type=float, help='Seconds between automatic key rotations (default: 15)')
@click.option('--workers', type=int, help='Concurrent workers sharing one governor (default: 1)')
@click.option('--no-validate', is_flag=True, default=False, help='Skip domain format validation')
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
              help='Log level (default: INFO)')
@click.option('--output', type=click.Path(dir_okay=False),
              help='Save results to JSON file (written even when every item failed;'
                   ' not written when the scan is interrupted)')
def scan(
    items: tuple,
    keys: tuple,
    key_pattern: Optional[str],
    query_path: str,
    config_path: Optional[Path],
    pacing_interval: Optional[float],
    rotation_interval: Optional[float],
    workers: Optional[int],
    no_validate: bool,
    log_level: Optional[str],
    output: Optional[str],
):
    """
    Scan ITEMS (domains) with governed, key-rotated requests.

    Items and keys given on the command line replace those from --config.
    Exits with status 1 when more than half of the items fail, when the scan
    is interrupted, or on configuration errors.
    """
    try:
        settings = load_settings(
            config_path,
            pacing_interval=pacing_interval,
            rotation_interval=rotation_interval,
            max_workers=workers,
            log_level=log_level,
            validate_items=False if no_validate else None,
            credential_pattern=KEY_PATTERNS[key_pattern.lower()] if key_pattern else None,
        )
        query = load_query(query_path)
    except ConfigError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        sys.exit(1)

    configure_logging(settings.log_level)

    credentials, key_errors = validate_credentials(list(keys) or settings.credentials, settings.credential_pattern)
    _warn_invalid("API key(s)", key_errors)
    if not credentials:
        console.print("[bold red]Configuration error:[/bold red] no valid API keys")
        sys.exit(1)

    targets = list(items) or settings.items
    if settings.validate_items:
        targets, item_errors = validate_domains(targets)
        _warn_invalid("domain(s)", item_errors)
    if not targets:
        console.print("[bold red]Configuration error:[/bold red] no valid domains to scan")
        sys.exit(1)

    console.print("\n" + "=" * 80)
    console.print(f"tyvt {__version__} - Governed Batch Scanner")
    console.print("=" * 80 + "\n")
    console.print(f"[green]Domains:[/green] {len(targets)}")
    console.print(f"[green]API Keys:[/green] {len(credentials)}")
    console.print(f"[green]Pacing Interval:[/green] {settings.pacing_interval:.2f}s")
    console.print(f"[green]Rotation Interval:[/green] {settings.rotation_interval:.2f}s")
    console.print(f"[green]Workers:[/green] {settings.max_workers}")
    console.print(f"[green]Query:[/green] {query_path}")
    console.print()

    exit_code = asyncio.run(run_scan(settings, credentials, targets, query, output))
    sys.exit(exit_code)


async def run_scan(
    settings: ScanSettings,
    credentials: List[str],
    items: List[str],
    query: QueryFunc,
    output: Optional[str] = None,
) -> int:
    """
    Run one governed batch and report it.

    Returns:
        Process exit code
    """
    cancel_event = asyncio.Event()
    remove_handlers = install_signal_handlers(cancel_event)

    governor = Governor(settings.governor_config())
    rotator = CredentialRotator(credentials, rotation_interval=settings.rotation_interval)
    orchestrator = BatchOrchestrator(governor, rotator, query, max_workers=settings.max_workers)

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("[cyan]Scanning...", total=len(items))

            def on_event(event, data):
                if event == "item_completed":
                    progress.update(task, completed=data["processed"], description=f"[cyan]{data['item']}")

            orchestrator.subscribe(on_event)

            async with rotator:
                outcome = await orchestrator.run(items, cancel_event)

    except ScanCancelledError:
        console.print("\n[yellow]Scan interrupted; partial results discarded[/yellow]")
        return 1

    except ThresholdExceededError as e:
        _report(e.outcome, output)
        console.print(f"\n[bold red]Scanner failed:[/bold red] {e}")
        return 1

    finally:
        remove_handlers()

    _report(outcome, output)
    console.print("\n[bold green]Scan complete![/bold green]\n")
    return 0


def _report(outcome: BatchOutcome, output: Optional[str]):
    table = Table(title=f"Batch {outcome.batch_id}")
    table.add_column("Domains", style="cyan")
    table.add_column("Successful", style="green")
    table.add_column("Errors", style="red")
    table.add_column("Verdict", style="yellow")
    table.add_row(
        str(outcome.total),
        str(outcome.total - outcome.failure_count),
        str(outcome.failure_count),
        outcome.verdict.value,
    )
    console.print(table)

    if outcome.failures:
        errors = Table(title="Failed Domains")
        errors.add_column("Domain", style="cyan", no_wrap=True)
        errors.add_column("Error", style="red")
        for result in outcome.failures:
            errors.add_row(result.item, str(result.error))
        console.print(errors)

    if not output:
        return

    try:
        path = write_outcome(outcome, output)
    except OSError as e:
        logger.warning("results_write_failed", path=output, error=str(e))
        console.print(f"\n[yellow]Warning: failed to write results to {output}: {e}[/yellow]")
        return

    console.print(f"\n[green]Results saved to:[/green] {path}")


@cli.command()
def version():
    """Show version information and components"""
    console.print(f"\n[bold cyan]tyvt v{__version__}[/bold cyan]")
    console.print("[cyan]Governed, key-rotating batch scanner[/cyan]\n")

    table = Table(title="Components")
    table.add_column("Component", style="cyan", no_wrap=True)
    table.add_column("Notes", style="yellow")

    table.add_row("Governor", "Global pacing, 500/day and 15,500/month per key")
    table.add_row("Credential Rotator", "Wall-clock round-robin key rotation")
    table.add_row("Batch Orchestrator", "Ordered batches, >50% failure threshold")
    table.add_row("Worker Pool", "Optional, all workers share one governor")

    console.print(table)
    console.print()


if __name__ == '__main__':
    cli()
