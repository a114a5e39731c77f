"""Command-line interface for the social publisher."""

import asyncio
import logging
from datetime import datetime
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from social_publisher.api_client import PlatformAPIClient
from social_publisher.config import PublisherSettings, oauth_clients_from_env
from social_publisher.credentials import JsonFileCredentialStore
from social_publisher.models import (
    MediaKind,
    MediaRef,
    PlatformId,
    Post,
    PublishResult,
    as_utc,
    guess_mime_type,
)
from social_publisher.orchestrator import PublishOrchestrator

app = typer.Typer(
    name="social-publisher",
    help="Publish one post to several social platforms at once",
    add_completion=False,
)
console = Console()

CREDENTIALS_OPTION = typer.Option(
    Path("credentials.json"),
    "--credentials",
    "-c",
    envvar="SOCIAL_PUBLISHER_CREDENTIALS",
    help="JSON file with stored platform credentials",
)
USER_OPTION = typer.Option(
    "default", "--user", "-u", envvar="SOCIAL_PUBLISHER_USER", help="User whose credentials to use"
)


def setup_logging(verbose: bool) -> None:
    """Configure logging with Rich handler.

    Args:
        verbose: Enable verbose (DEBUG) logging
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )
    # httpx logs full request URLs, which carry access tokens
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_media(locations: list[str]) -> tuple[MediaRef, ...]:
    """Turn command-line media arguments into media references."""
    media = []
    for location in locations:
        mime_type = guess_mime_type(location) or ""
        kind = MediaKind.VIDEO if mime_type.startswith("video/") else MediaKind.IMAGE
        media.append(MediaRef(location=location, kind=kind))
    return tuple(media)


def parse_when(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    try:
        when = datetime.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"Not an ISO-8601 timestamp: {value}")
    return as_utc(when)


def print_summary(results: list[PublishResult]) -> int:
    """Print the per-platform outcome and return the exit code."""
    successful = sum(1 for r in results if r.success)
    failed = len(results) - successful

    console.print("\n[bold]Publish Summary:[/bold]")
    console.print(f"  Total platforms: {len(results)}")
    console.print(f"  [green]Successful: {successful}[/green]")
    console.print(f"  [red]Failed: {failed}[/red]")

    for result in results:
        if result.success and result.deferred:
            console.print(
                f"  - {result.platform.value}: deferred until "
                f"{result.scheduled_for.isoformat()}"
            )
        elif result.success:
            console.print(f"  - {result.platform.value}: {result.external_id}")

    if failed > 0:
        console.print("\n[bold red]Failed platforms:[/bold red]")
        for result in results:
            if not result.success:
                console.print(
                    f"  - {result.platform.value} ({result.error_code.value}): "
                    f"{result.error_message}"
                )
        return 1
    return 0


def _require_credentials(path: Path) -> None:
    if not path.exists():
        console.print(f"[red]Error: credentials file not found: {path}[/red]")
        raise typer.Exit(1)


async def async_publish(
    post: Post,
    user_id: str,
    credentials_path: Path,
    when: datetime | None = None,
) -> int:
    """Async publish/schedule implementation.

    Returns:
        Exit code (0 when every platform succeeded, 1 otherwise)
    """
    logger = logging.getLogger(__name__)
    store = JsonFileCredentialStore(credentials_path)
    settings = PublisherSettings()

    async with PlatformAPIClient(settings.default_timeout) as api:
        orchestrator = PublishOrchestrator.create(
            api, store, clients=oauth_clients_from_env(), settings=settings
        )
        if when is None:
            results = await orchestrator.publish(post, user_id=user_id)
        else:
            results = await orchestrator.schedule(post, None, when, user_id=user_id)
        exit_code = print_summary(results)

        pending = orchestrator.deferred.pending
        if pending:
            logger.info(f"Waiting for {len(pending)} deferred publish job(s)")
            deferred_results = await orchestrator.deferred.drain()
            exit_code = max(exit_code, print_summary(deferred_results))
    return exit_code


@app.command()
def publish(
    caption: str = typer.Argument(..., help="Post caption"),
    platforms: list[PlatformId] = typer.Option(
        ..., "--platform", "-p", help="Target platform (repeatable)"
    ),
    media: list[str] = typer.Option(
        [], "--media", "-m", help="Media file path or URL (repeatable)"
    ),
    title: str = typer.Option(None, "--title", help="Title for platforms that use one"),
    user_id: str = USER_OPTION,
    credentials: Path = CREDENTIALS_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Publish a post to every given platform now."""
    setup_logging(verbose)
    _require_credentials(credentials)
    post = Post(caption=caption, media=build_media(media), platforms=tuple(platforms), title=title)
    raise typer.Exit(asyncio.run(async_publish(post, user_id, credentials)))


@app.command()
def schedule(
    caption: str = typer.Argument(..., help="Post caption"),
    at: str = typer.Option(..., "--at", help="Publish time (ISO-8601, UTC if no offset)"),
    platforms: list[PlatformId] = typer.Option(
        ..., "--platform", "-p", help="Target platform (repeatable)"
    ),
    media: list[str] = typer.Option(
        [], "--media", "-m", help="Media file path or URL (repeatable)"
    ),
    title: str = typer.Option(None, "--title", help="Title for platforms that use one"),
    user_id: str = USER_OPTION,
    credentials: Path = CREDENTIALS_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Schedule a post; platforms without native scheduling are held locally."""
    setup_logging(verbose)
    when = parse_when(at)
    _require_credentials(credentials)
    post = Post(
        caption=caption,
        media=build_media(media),
        platforms=tuple(platforms),
        title=title,
        scheduled_at=when,
    )
    raise typer.Exit(asyncio.run(async_publish(post, user_id, credentials, when)))


async def _fetch(platform: PlatformId, user_id: str, credentials_path: Path, external_id: str | None):
    settings = PublisherSettings()
    async with PlatformAPIClient(settings.default_timeout) as api:
        orchestrator = PublishOrchestrator.create(
            api,
            JsonFileCredentialStore(credentials_path),
            clients=oauth_clients_from_env(),
            settings=settings,
        )
        if external_id is None:
            return await orchestrator.fetch_profile(user_id, platform)
        return await orchestrator.fetch_analytics(user_id, platform, external_id)


@app.command()
def analytics(
    platform: PlatformId = typer.Argument(..., help="Platform of the post"),
    external_id: str = typer.Argument(..., help="Platform-assigned post/video id"),
    user_id: str = USER_OPTION,
    credentials: Path = CREDENTIALS_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Show engagement counters for a published post."""
    setup_logging(verbose)
    _require_credentials(credentials)
    result = asyncio.run(_fetch(platform, user_id, credentials, external_id))
    if not result.success:
        console.print(f"[red]Error ({result.error.value}): {result.message}[/red]")
        raise typer.Exit(1)

    metrics = result.value
    table = Table(title=f"{platform.value} {metrics.external_id}")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    for name in ("views", "likes", "comments", "shares", "reach", "saves"):
        table.add_row(name, str(getattr(metrics, name)))
    console.print(table)


@app.command()
def profile(
    platform: PlatformId = typer.Argument(..., help="Platform to query"),
    user_id: str = USER_OPTION,
    credentials: Path = CREDENTIALS_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Show the connected account's profile."""
    setup_logging(verbose)
    _require_credentials(credentials)
    result = asyncio.run(_fetch(platform, user_id, credentials, None))
    if not result.success:
        console.print(f"[red]Error ({result.error.value}): {result.message}[/red]")
        raise typer.Exit(1)

    info = result.value
    console.print(f"[bold]{info.display_name}[/bold] ({info.account_id})")
    console.print(f"  Followers: {info.followers}")
    console.print(f"  Following: {info.following}")
    console.print(f"  Posts: {info.post_count}")
    if info.total_views:
        console.print(f"  Views: {info.total_views}")
    if info.total_likes:
        console.print(f"  Likes: {info.total_likes}")


if __name__ == "__main__":
    app()
