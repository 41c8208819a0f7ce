"""
Command-line interface for the release kit.

Builds album sites locally and deploys them to Cloudflare Pages, with audio
on R2, using the Click framework.
"""

import functools
import logging
import sys
from pathlib import Path
from typing import Callable, Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.prompt import Confirm, Prompt
from rich.table import Table

from album_core.constants import (
    BUCKET_SUFFIX, DEFAULT_LOG_LEVEL, DEFAULT_UPLOAD_CONCURRENCY, MAX_UPLOAD_CONCURRENCY,
)
from album_core.errors import ReleaseKitError, TeardownError, ValidationError
from album_core.manifest import check_album_dir, load_album
from album_core.models import DeploymentOutcome, RemoteCredentials
from .credentials import (
    FileCredentialsStore, validate_access_key_id, validate_account_id, validate_api_token,
    validate_credentials, validate_domain, validate_secret_access_key,
)
from .orchestrator import DeploymentOrchestrator, TeardownReport
from .site_builder import build_static_site

console = Console()

MASK_LENGTH = 10


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, DEFAULT_LOG_LEVEL.upper(), logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=False, markup=False, show_path=False)],
        force=True,
    )
    # boto and urllib3 are chatty at DEBUG
    for name in ("botocore", "boto3", "urllib3", "s3transfer"):
        logging.getLogger(name).setLevel(max(level, logging.INFO))


def handle_errors(fn: Callable) -> Callable:
    """Print ReleaseKitError as one red line and exit 1."""
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except ReleaseKitError as e:
            console.print(f"\n[red]❌ {escape(str(e))}[/red]")
            sys.exit(1)
    return wrapper


def _credentials_store() -> FileCredentialsStore:
    return FileCredentialsStore()


def _make_orchestrator(store, concurrency: int = DEFAULT_UPLOAD_CONCURRENCY,
                       on_step: Optional[Callable[[str], None]] = None) -> DeploymentOrchestrator:
    return DeploymentOrchestrator(store, concurrency=concurrency, on_step=on_step)


def mask(secret: Optional[str]) -> str:
    if not secret:
        return ""
    return f"{secret[:MASK_LENGTH]}..."


@click.group()
@click.version_option(version="0.1.0")
@click.option('--verbose', '-v', is_flag=True, help='Show debug logging')
def cli(verbose):
    """
    🎵 Release Kit

    Build album sites and deploy them to Cloudflare Pages
    (audio served from Cloudflare R2)
    """
    setup_logging(verbose)


@cli.command()
@click.argument('path', type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option('--output', '-o', default='dist', type=click.Path(file_okay=False, path_type=Path),
              help='Directory to write the site into')
@click.option('--audio-url', default=None, help='External origin serving audio/<file> (default: bundle audio)')
@handle_errors
def build(path, output, audio_url):
    """
    Build the static album site locally.
    """
    album = load_album(path)
    count = build_static_site(path, output, audio_url, album=album)
    console.print(f"\n[green]✓[/green] Built [bold]{album.title}[/bold] into [cyan]{output}[/cyan]")
    console.print(f"Tracks: [bold]{count}[/bold] of {len(album.tracks)}")
    if count < len(album.tracks):
        console.print("[yellow]Some audio files are missing; see warnings above.[/yellow]")


@cli.command()
@click.argument('path', default='.', type=click.Path(exists=True, file_okay=False, path_type=Path))
@handle_errors
def validate(path):
    """
    Check that an album directory is ready to deploy.
    """
    console.print(f"\n🔍 Validating album at: [cyan]{escape(str(path))}[/cyan]\n")
    album = load_album(path)
    target = DeploymentOrchestrator.plan(album)
    console.print(f"[green]✓[/green] {escape(album.title)} by {escape(album.artist_name)}")
    console.print(f"  Tracks: {len(album.tracks)}  Project: [cyan]{target.name}[/cyan]")

    check = check_album_dir(path, album)
    if check.warnings:
        console.print(f"\n[yellow]⚠ Warnings ({len(check.warnings)}):[/yellow]")
        for warning in check.warnings:
            console.print(f"  [yellow]•[/yellow] {escape(warning)}")
    if check.errors:
        console.print(f"\n[red]Errors ({len(check.errors)}):[/red]")
        for error in check.errors:
            console.print(f"  [red]•[/red] {escape(error)}")
        raise ValidationError(f"Validation failed with {len(check.errors)} error(s)")

    console.print("\n[green]✅ Album is ready for deployment[/green]")


@cli.group()
def deploy():
    """
    Deploy albums to Cloudflare.
    """
    pass


def _ask_field(label: str, validator: Callable[[str], str], current: Optional[str] = None,
               secret: bool = False, optional: bool = False) -> Optional[str]:
    """
    Prompt until the value passes validation.

    The current value is offered as the default (masked for secrets). Typing
    'none' clears an optional value.
    """
    shown = mask(current) if secret else current
    while True:
        if optional:
            answer = Prompt.ask(f"{label} [dim](optional, 'none' to clear)[/dim]",
                                default=shown or "", show_default=bool(shown), console=console)
        else:
            answer = Prompt.ask(label, default=shown if shown else ..., console=console)
        answer = (answer or "").strip()

        if current and answer == shown:
            return current
        if optional and (not answer or answer.lower() == "none"):
            return None
        try:
            return validator(answer)
        except ReleaseKitError as e:
            console.print(f"[red]{escape(str(e))}[/red]")


@deploy.command()
@handle_errors
def configure():
    """
    Set up Cloudflare credentials on this machine.

    Stores the API token, account ID, optional base domain and optional R2
    access keys in ~/.release-kit/config.toml (readable only by you).
    """
    store = _credentials_store()
    current = store.load() if store.exists() else None

    console.print("\n")
    console.print(Panel.fit(
        "[bold cyan]☁️  Cloudflare Setup[/bold cyan]\n\n"
        "1. Create an API token at: https://dash.cloudflare.com/profile/api-tokens\n"
        "   with Pages (Edit), R2 (Edit) and Zone DNS (Edit) permissions\n"
        "2. Copy your Account ID from the dashboard sidebar\n"
        "3. Optional: create R2 access keys under R2 > Manage API tokens\n\n"
        "[yellow]Without R2 keys, audio is bundled with Pages (25 MB per file limit).[/yellow]",
        border_style="blue"
    ))
    console.print("\n")

    api_token = _ask_field("API Token", validate_api_token, current.api_token if current else None, secret=True)
    account_id = _ask_field("Account ID", validate_account_id, current.account_id if current else None)
    base_domain = _ask_field("Base domain (e.g. example.com)", validate_domain,
                             current.base_domain if current else None, optional=True)
    access_key_id = _ask_field("R2 Access Key ID", validate_access_key_id,
                               current.r2_access_key_id if current else None, secret=True, optional=True)
    secret_access_key = None
    if access_key_id:
        secret_access_key = _ask_field("R2 Secret Access Key", validate_secret_access_key,
                                       current.r2_secret_access_key if current else None, secret=True)

    credentials = validate_credentials(RemoteCredentials(
        api_token=api_token,
        account_id=account_id,
        base_domain=base_domain,
        r2_access_key_id=access_key_id,
        r2_secret_access_key=secret_access_key,
    ))
    config_file = store.save(credentials)

    console.print("\n")
    console.print(Panel.fit(
        "[bold green]✅ Configuration saved[/bold green]\n\n"
        f"Account: {credentials.account_id}\n"
        f"Base domain: {credentials.base_domain or '-'}\n"
        f"R2 storage: {'configured' if credentials.has_object_storage else 'not configured'}\n"
        f"Config: {config_file}\n\n"
        "[cyan]Next steps:[/cyan]\n"
        "• Deploy an album: [yellow]release-kit deploy publish /path/to/album[/yellow]",
        border_style="green"
    ))


def _plan_table(album, credentials: RemoteCredentials) -> Table:
    target = album.target
    table = Table(show_header=False, box=None)
    table.add_column("Field", style="bold")
    table.add_column("Value", style="cyan")
    table.add_row("Album", album.title)
    table.add_row("Artist", album.artist_name)
    table.add_row("Tracks", str(len(album.tracks)))
    table.add_row("Pages project", target.name)
    if credentials.has_object_storage:
        table.add_row("Audio bucket", target.bucket_name)
    else:
        table.add_row("Audio", "bundled with Pages (no R2 keys)")
    table.add_row("URL", target.default_url)
    if album.subdomain and credentials.base_domain:
        table.add_row("Custom domain", f"https://{album.subdomain}.{credentials.base_domain}")
    return table


def _print_outcome(outcome: DeploymentOutcome) -> None:
    lines = ["[bold green]✅ Deployment Complete![/bold green]\n"]
    lines.append(f"Live at: [cyan]{outcome.live_url}[/cyan]")
    if outcome.custom_domain_url:
        lines.append(f"Custom domain: [cyan]{outcome.custom_domain_url}[/cyan]")
    if outcome.audio_base_url:
        lines.append(f"Audio: [cyan]{outcome.audio_base_url}[/cyan] ({outcome.uploaded_tracks} tracks)")
    if outcome.project_created:
        lines.append("Project created on Cloudflare Pages")
    console.print("\n")
    console.print(Panel.fit("\n".join(lines), border_style="green"))

    if outcome.warnings:
        console.print("\n[yellow]⚠ Completed with warnings:[/yellow]")
        for warning in outcome.warnings:
            console.print(f"  [yellow]•[/yellow] {escape(str(warning))}")
            if warning.hint:
                console.print(f"    [dim]{escape(warning.hint)}[/dim]")
    if outcome.custom_domain_url:
        console.print("\n[dim]DNS changes can take a few minutes to propagate.[/dim]")


@deploy.command()
@click.argument('path', type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option('--force', is_flag=True, help='Skip the confirmation prompt')
@click.option('--concurrency', default=DEFAULT_UPLOAD_CONCURRENCY,
              type=click.IntRange(1, MAX_UPLOAD_CONCURRENCY),
              help='Number of parallel audio uploads')
@handle_errors
def publish(path, force, concurrency):
    """
    Deploy an album directory to Cloudflare Pages.

    Uploads audio to R2 (when configured), builds the site and publishes it.
    Re-running updates the existing deployment.
    """
    album = load_album(path)
    DeploymentOrchestrator.plan(album)

    store = _credentials_store()
    orchestrator = _make_orchestrator(store, concurrency)
    credentials = orchestrator.credentials

    console.print(f"\n[bold green]Deploying[/bold green] [bold]{album.title}[/bold]\n")
    console.print(_plan_table(album, credentials))
    console.print("")

    if not force and not Confirm.ask("Deploy?", default=False, console=console):
        console.print("[yellow]Deployment cancelled[/yellow]")
        return

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        console=console
    ) as progress:
        orchestrator.on_step = lambda message: progress.console.print(f"[dim]→[/dim] {message}")
        outcome = orchestrator.publish(path, album=album, progress=progress)

    _print_outcome(outcome)


@deploy.command()
@click.argument('path', default='.', type=click.Path(exists=True, file_okay=False, path_type=Path))
@handle_errors
def status(path):
    """
    Show the deployment status of an album.
    """
    album = load_album(path)
    orchestrator = _make_orchestrator(_credentials_store())
    info = orchestrator.status(album)

    table = Table(show_header=False, box=None)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Album", album.title)
    table.add_row("Project", info.target.name)
    if info.deployed:
        table.add_row("Status", "[green]Deployed[/green]")
        table.add_row("URL", f"[cyan]{info.url}[/cyan]")
        if info.project.created_on:
            table.add_row("Created", info.project.created_on)
        for domain in info.custom_domains:
            table.add_row("Domain", f"[cyan]https://{domain}[/cyan]")
    else:
        table.add_row("Status", "[yellow]Not deployed[/yellow]")
    table.add_row("Audio bucket", info.target.bucket_name if info.bucket else "[dim]none[/dim]")

    console.print("\n")
    console.print(table)
    if not info.deployed:
        console.print(f"\nDeploy with: [yellow]release-kit deploy publish {path}[/yellow]")


def _print_teardown(report: TeardownReport) -> None:
    if report.project_deleted:
        console.print(f"[green]✓[/green] Deleted Pages project [cyan]{report.project_name}[/cyan]")
    if report.objects_deleted or report.uploads_aborted:
        console.print(f"[green]✓[/green] Removed {report.objects_deleted} objects "
                      f"({report.uploads_aborted} incomplete uploads aborted)")
    if report.bucket_deleted:
        console.print(f"[green]✓[/green] Deleted R2 bucket [cyan]{report.bucket_name}[/cyan]")


@deploy.command()
@click.argument('path', type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option('--force', is_flag=True, help='Skip the confirmation prompt')
@handle_errors
def teardown(path, force):
    """
    Delete an album's Pages project and R2 bucket.

    This cannot be undone. DNS records are left in place.
    """
    album = load_album(path)
    target = DeploymentOrchestrator.plan(album)
    orchestrator = _make_orchestrator(_credentials_store())

    console.print(Panel.fit(
        "[bold red]⚠️  This will permanently delete:[/bold red]\n\n"
        f"• Pages project: {target.name}\n"
        f"• R2 bucket: {target.name}{BUCKET_SUFFIX} (and all audio in it)",
        border_style="red"
    ))

    def confirm(name: str) -> str:
        return Prompt.ask(f"Type [bold]{name}[/bold] to confirm", default="",
                          show_default=False, console=console)

    try:
        report = orchestrator.teardown(album, confirm=confirm, force=force)
    except TeardownError as e:
        if e.report:
            _print_teardown(e.report)
        raise

    if report.cancelled:
        console.print("[yellow]Teardown cancelled[/yellow]")
        return
    if report.nothing_to_delete:
        console.print(f"[yellow]Nothing to delete for {target.name}[/yellow]")
        return
    _print_teardown(report)
    console.print("\n[green]✅ Teardown complete[/green]")


if __name__ == '__main__':
    cli()
