"""CLI entry point for the GitHub image uploader.

Provides commands:
  - upload: Upload images to the configured repository, print markdown links
  - test-connection: Validate token and repository coordinates
  - status: Show settings, cache size and token presence
  - cache: Inspect or clear the deduplication cache
  - config: Manage settings and the GitHub token
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Annotated, NoReturn

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ghimg.config import (
    SETTING_KEYS,
    coerce_setting,
    default_data_path,
    delete_github_token,
    get_github_token,
    load_cache_snapshot,
    load_settings,
    save_cache_snapshot,
    save_settings,
    set_github_token,
)
from ghimg.exceptions import ConfigurationError, RateLimitExceededError, UploadError
from ghimg.models import AppState, RateLimitState, UploaderSettings, UploadResult

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="Upload images to a GitHub repository and get markdown links back",
    rich_markup_mode="rich",
)
console = Console()

# Config command group
config_app = typer.Typer(help="Manage settings and the GitHub token")
app.add_typer(config_app, name="config")

# Cache command group
cache_app = typer.Typer(help="Inspect or clear the deduplication cache")
app.add_typer(cache_app, name="cache")


@app.callback()
def app_callback(
    ctx: typer.Context,
    data_path: Annotated[
        Path | None,
        typer.Option("--data", help="Settings and cache data file (default: ~/.ghimg/data.json)"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log progress to stderr"),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Write debug logs to ~/.ghimg/debug.log"),
    ] = False,
) -> None:
    """Resolve the data file and configure logging."""
    package_logger = logging.getLogger("ghimg")
    if verbose and not _has_handler(package_logger, logging.StreamHandler, exact=True):
        handler = logging.StreamHandler()
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        package_logger.addHandler(handler)
        package_logger.setLevel(logging.INFO)
    if debug and not _has_handler(package_logger, logging.FileHandler):
        debug_dir = Path.home() / ".ghimg"
        debug_dir.mkdir(exist_ok=True)
        fh = logging.FileHandler(debug_dir / "debug.log")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        package_logger.addHandler(fh)
        package_logger.setLevel(logging.DEBUG)

    ctx.obj = AppState(data_path=data_path or default_data_path())


def _has_handler(
    target: logging.Logger, handler_type: type[logging.Handler], exact: bool = False
) -> bool:
    """True if *target* already has a handler of *handler_type* attached."""
    for handler in target.handlers:
        if (type(handler) is handler_type) if exact else isinstance(handler, handler_type):
            return True
    return False


def get_state(ctx: typer.Context) -> AppState:
    """Type-safe accessor for AppState from Typer context."""
    if ctx.obj is None:
        ctx.obj = AppState(data_path=default_data_path())
    return ctx.obj


def _fail(message: str) -> NoReturn:
    console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(code=1)


def _load_settings(data_path: Path, with_token: bool = False) -> UploaderSettings:
    try:
        settings = load_settings(data_path, with_token=with_token)
        if with_token:
            settings.require_configured()
        return settings
    except ConfigurationError as e:
        _fail(e.message)


def _mask(secret: str) -> str:
    if len(secret) > 8:
        return secret[:8] + "*" * (len(secret) - 8)
    return secret[:2] + "*" * max(1, len(secret) - 2)


def _print_rate_limit(state: RateLimitState | None) -> None:
    if state is None:
        return
    console.print(
        f"[dim]API quota:[/dim] {state.remaining}/{state.limit} remaining, "
        f"resets at {state.reset_at.strftime('%X')}"
    )


# ---------------------------------------------------------------------------
# upload
# ---------------------------------------------------------------------------


@app.command()
def upload(
    ctx: typer.Context,
    files: Annotated[
        list[Path],
        typer.Argument(help="Image files to upload", exists=True, dir_okay=False, readable=True),
    ],
    name: Annotated[
        str | None,
        typer.Option("--name", "-n", help="Original filename hint (single file only)"),
    ] = None,
    concurrency: Annotated[
        int,
        typer.Option("--concurrency", "-c", min=1, max=10, help="Max concurrent uploads"),
    ] = 3,
) -> None:
    """Upload images and print the markdown to insert for each.

    Identical images already uploaded are served from the cache without a
    new commit. The GitHub token is read from the system keyring
    (service: ghimg-github) or the GITHUB_TOKEN environment variable.
    """
    from ghimg.upload.cache import DeduplicationCache
    from ghimg.upload.client import GitHubContentsClient
    from ghimg.upload.handler import ImageUploadHandler, is_image_mime, markdown_image_link
    from ghimg.upload.orchestrator import UploadPipeline
    from ghimg.upload.progress import UploadProgressTracker
    from ghimg.upload.rate_limiter import RateLimitEvent, RateLimitTracker
    from ghimg.upload.storage import PublicRepositoryStorage

    state = get_state(ctx)
    if name and len(files) > 1:
        _fail("--name can only be used with a single file")

    settings = _load_settings(state.data_path, with_token=True)

    images: list[tuple[Path, str]] = []
    for path in files:
        mime_type = mimetypes.guess_type(path.name)[0]
        if not is_image_mime(mime_type):
            console.print(f"[yellow]Skipping[/yellow] {path} (not an image)")
            continue
        images.append((path, mime_type or ""))
    if not images:
        console.print("[yellow]No images to upload.[/yellow]")
        return

    cache = DeduplicationCache()
    load_cache_snapshot(cache, state.data_path)

    def _on_rate_limit(event: RateLimitEvent) -> None:
        style = "red" if event.kind == "blocked" else "yellow"
        console.print(f"[{style}]{event.message}[/{style}]")

    tracker = RateLimitTracker(settings.rate_limit_warning_threshold, listener=_on_rate_limit)
    progress = UploadProgressTracker(total_files=len(images), console=console)

    async def _run_uploads() -> list[tuple[Path, UploadResult | UploadError]]:
        async with GitHubContentsClient(tracker) as client:
            pipeline = UploadPipeline(settings, cache, client, tracker)
            handler = ImageUploadHandler(
                PublicRepositoryStorage(pipeline),
                on_persist=lambda: save_cache_snapshot(cache, state.data_path),
            )
            semaphore = asyncio.Semaphore(concurrency)

            async def _one(path: Path, mime_type: str) -> tuple[Path, UploadResult | UploadError]:
                async with semaphore:
                    try:
                        data = path.read_bytes()
                    except OSError as exc:
                        progress.image_failed(str(path), str(exc))
                        return path, UploadError(f"Could not read {path}: {exc}")
                    try:
                        result = await handler.upload_bytes(data, name or path.name, mime_type)
                    except RateLimitExceededError as exc:
                        progress.image_rate_limited(str(path))
                        return path, exc
                    except UploadError as exc:
                        progress.image_failed(str(path), exc.message)
                        return path, exc
                if result.deduplicated:
                    progress.image_reused(str(path))
                else:
                    progress.image_uploaded(str(path))
                return path, result

            return await asyncio.gather(*(_one(p, m) for p, m in images))

    with progress:
        outcomes = asyncio.run(_run_uploads())

    table = Table(title="Upload Results")
    table.add_column("File", style="cyan", no_wrap=True)
    table.add_column("Repository Path")
    table.add_column("Markdown", overflow="fold")
    table.add_column("Cached", justify="center")

    failures = 0
    for path, outcome in outcomes:
        if isinstance(outcome, UploadError):
            failures += 1
            table.add_row(str(path), "", f"[red]{outcome.message}[/red]", "")
        else:
            table.add_row(
                str(path),
                outcome.path,
                markdown_image_link(outcome.url or ""),
                "yes" if outcome.deduplicated else "",
            )

    console.print(table)
    stats = progress.stats
    console.print(
        f"[green]{stats['uploaded']} uploaded[/green], "
        f"[cyan]{stats['reused']} reused[/cyan], "
        f"[red]{stats['failed'] + stats['rate_limited']} failed[/red]"
    )
    _print_rate_limit(tracker.state)

    if failures:
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# test-connection / status
# ---------------------------------------------------------------------------


@app.command("test-connection")
def test_connection(ctx: typer.Context) -> None:
    """Check that the token can reach the configured repository."""
    from ghimg.upload.client import GitHubContentsClient
    from ghimg.upload.rate_limiter import RateLimitTracker

    settings = _load_settings(get_state(ctx).data_path, with_token=True)
    tracker = RateLimitTracker(settings.rate_limit_warning_threshold)

    async def _probe() -> bool:
        async with GitHubContentsClient(tracker) as client:
            return await client.probe_connectivity(
                settings.repo_owner, settings.repo_name, settings.github_token
            )

    try:
        asyncio.run(_probe())
    except UploadError as e:
        _print_rate_limit(tracker.state)
        _fail(f"Failed to connect to GitHub: {e.message}")

    console.print(
        f"[green]✓[/green] GitHub connection successful "
        f"({settings.repo_owner}/{settings.repo_name})"
    )
    _print_rate_limit(tracker.state)


@app.command()
def status(ctx: typer.Context) -> None:
    """Show the current settings and cache size."""
    from ghimg.upload.cache import DeduplicationCache

    data_path = get_state(ctx).data_path
    settings = _load_settings(data_path)
    cache = DeduplicationCache()
    load_cache_snapshot(cache, data_path)
    try:
        token = get_github_token()
    except ConfigurationError:
        token = ""

    table = Table(show_header=False)
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    table.add_row("Repository", f"{settings.repo_owner or '-'}/{settings.repo_name or '-'}")
    table.add_row("Branch", settings.branch)
    table.add_row("Path template", settings.upload_path)
    table.add_row("Filename strategy", settings.filename_strategy.value)
    table.add_row("Rate limit warning", str(settings.rate_limit_warning_threshold))
    table.add_row("Duplicate detection", "on" if settings.enable_duplicate_detection else "off")
    table.add_row("Token", _mask(token) if token else "[yellow]not set[/yellow]")
    table.add_row("Cached images", f"{cache.size()} / {cache.max_size}")

    console.print(Panel(table, title="ghimg status", subtitle=str(data_path)))


# ---------------------------------------------------------------------------
# cache
# ---------------------------------------------------------------------------


@cache_app.command("list")
def cache_list(
    ctx: typer.Context,
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", help="Show only the newest N entries (0 = all)"),
    ] = 20,
) -> None:
    """List cached uploads, newest first."""
    from ghimg.upload.cache import DeduplicationCache

    cache = DeduplicationCache()
    try:
        load_cache_snapshot(cache, get_state(ctx).data_path)
    except ConfigurationError as e:
        _fail(e.message)

    entries = list(cache.export_snapshot().values())[::-1]
    if not entries:
        console.print("[dim]Cache is empty.[/dim]")
        return
    if limit > 0:
        entries = entries[:limit]

    table = Table(title=f"Cached Images ({cache.size()} total)")
    table.add_column("Digest", style="dim", no_wrap=True)
    table.add_column("Path", style="cyan")
    table.add_column("URL", overflow="fold")
    for entry in entries:
        table.add_row(str(entry["hash"])[:12], str(entry["path"]), str(entry["url"]))
    console.print(table)


@cache_app.command("clear")
def cache_clear(
    ctx: typer.Context,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt"),
    ] = False,
) -> None:
    """Forget every cached upload (files in the repository are untouched)."""
    from ghimg.upload.cache import DeduplicationCache

    data_path = get_state(ctx).data_path
    cache = DeduplicationCache()
    try:
        count = load_cache_snapshot(cache, data_path)
    except ConfigurationError as e:
        _fail(e.message)

    if count and not yes and not typer.confirm(f"Clear {count} cached image(s)?"):
        console.print("[yellow]Cancelled.[/yellow]")
        return

    cache.clear()
    save_cache_snapshot(cache, data_path)
    console.print(f"[green]Cleared {count} cached image(s).[/green]")


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show(ctx: typer.Context) -> None:
    """Print the stored settings."""
    settings = _load_settings(get_state(ctx).data_path)
    for cli_name, field_name in SETTING_KEYS.items():
        value = getattr(settings, field_name)
        value = getattr(value, "value", value)
        console.print(f"[bold]{cli_name}[/bold] = {value}")


@config_app.command("set")
def config_set(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help=f"One of: {', '.join(SETTING_KEYS)}")],
    value: Annotated[str, typer.Argument(help="New value")],
) -> None:
    """Change one setting."""
    from dataclasses import replace

    data_path = get_state(ctx).data_path
    settings = _load_settings(data_path)
    try:
        field_name, coerced = coerce_setting(key, value)
        settings = replace(settings, **{field_name: coerced})
    except ConfigurationError as e:
        _fail(e.message)

    save_settings(settings, data_path)
    console.print(f"[green]✓[/green] {key} updated")


@config_app.command("set-token")
def set_token(
    token: Annotated[str, typer.Argument(help="GitHub token to store in the system keyring")],
) -> None:
    """Store the GitHub token in the system keyring (service: ghimg-github)."""
    try:
        set_github_token(token)
    except ConfigurationError as e:
        _fail(e.message)
    console.print("[green]✓[/green] Token stored in system keyring (service: ghimg-github)")


@config_app.command("get-token")
def get_token() -> None:
    """Show the stored GitHub token (masked)."""
    try:
        token = get_github_token()
    except ConfigurationError as e:
        console.print(f"[yellow]{e.message}[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"[green]Token:[/green] {_mask(token)}")


@config_app.command("remove-token")
def remove_token() -> None:
    """Delete the stored GitHub token from the system keyring."""
    if not delete_github_token():
        console.print("[yellow]Warning:[/yellow] No token found in keyring. Nothing to remove.")
        return
    console.print("[green]✓[/green] Token removed from system keyring")
