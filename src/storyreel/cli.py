"""Command-line interface using Typer."""

from collections.abc import Awaitable, Callable
from typing import Optional, TypeVar

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from storyreel import __version__
from storyreel.domain.enums import ExportDestination, StoryStyle, VideoTaskState
from storyreel.domain.models import Story
from storyreel.logging import setup_logging
from storyreel.services.repository import StoryRepository

# Setup logging
setup_logging()

T = TypeVar("T")

app = typer.Typer(
    name="storyreel",
    help="storyreel - turn a synopsis into a storyboard and a short video",
    add_completion=False,
)

console = Console()

_VIDEO_STATE_STYLES = {
    VideoTaskState.IDLE: "dim",
    VideoTaskState.GENERATING: "yellow",
    VideoTaskState.READY: "green",
    VideoTaskState.ERROR: "red",
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"storyreel v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """storyreel - storyboard, shot video and export orchestration."""
    pass


def _with_repository(operation: Callable[[StoryRepository], Awaitable[T]]) -> T:
    """Run an async operation against a freshly wired repository."""
    from storyreel.db.session import init_db
    from storyreel.services.repository import create_story_repository
    from storyreel.utils.async_utils import run_async

    init_db()
    repository = create_story_repository()

    async def runner() -> T:
        try:
            return await operation(repository)
        finally:
            await repository.close()

    return run_async(runner())


def _state(state: VideoTaskState) -> str:
    return f"[{_VIDEO_STATE_STYLES[state]}]{state.value}[/{_VIDEO_STATE_STYLES[state]}]"


def _print_story(story: Story) -> None:
    console.print(Panel.fit(
        f"[bold]{story.title}[/bold]\n\n"
        f"[cyan]ID:[/cyan] {story.id}\n"
        f"[cyan]Style:[/cyan] {story.style.value}\n"
        f"[cyan]Synopsis:[/cyan] {story.synopsis}\n"
        f"[cyan]Video:[/cyan] {_state(story.video_state)}\n"
        f"[cyan]Preview:[/cyan] {story.preview_url or 'N/A'}\n"
        f"[cyan]Created:[/cyan] {story.created_at.strftime('%Y-%m-%d %H:%M')}",
        title="Story Details",
        border_style="blue",
    ))

    table = Table(title="Shots")
    table.add_column("#", style="dim")
    table.add_column("ID", style="dim")
    table.add_column("Title", style="cyan")
    table.add_column("Transition")
    table.add_column("Image")
    table.add_column("Video")

    for shot in story.shots:
        table.add_row(
            str(shot.position + 1),
            shot.id[:8],
            shot.title,
            shot.transition.value,
            shot.status.value,
            _state(shot.video_status),
        )
    console.print(table)


# =============================================================================
# STORY COMMANDS
# =============================================================================


@app.command()
def create(
    synopsis: str = typer.Argument(..., help="Story synopsis"),
    style: StoryStyle = typer.Option(StoryStyle.CINEMATIC, "--style", "-s", help="Visual style"),
) -> None:
    """Generate a storyboard from a synopsis and save it as a story."""
    console.print("[bold blue]Generating storyboard...[/bold blue]")

    result = _with_repository(lambda repo: repo.create_story(synopsis, style))
    if not result.ok:
        console.print(f"[bold red]✗ Storyboard failed: {result.error}[/bold red]")
        raise typer.Exit(code=1)

    console.print("[bold green]✓ Story created[/bold green]")
    _print_story(result.value)


@app.command()
def stories() -> None:
    """List all stories."""
    items = _with_repository(lambda repo: repo.list_stories())

    if not items:
        console.print("[dim]No stories found. Create one with 'storyreel create'[/dim]")
        return

    table = Table(title="Stories")
    table.add_column("ID", style="dim")
    table.add_column("Title", style="cyan")
    table.add_column("Style")
    table.add_column("Shots", justify="right")
    table.add_column("Video")
    table.add_column("Created")

    for story in items:
        table.add_row(
            str(story.id),
            story.title,
            story.style.value,
            str(len(story.shots)),
            _state(story.video_state),
            story.created_at.strftime("%Y-%m-%d"),
        )

    console.print(table)


@app.command()
def show(
    story_id: int = typer.Argument(..., help="Story ID"),
) -> None:
    """Show a story and its shots."""
    story = _with_repository(lambda repo: repo.get_story(story_id))
    if story is None:
        console.print(f"[bold red]Story not found: {story_id}[/bold red]")
        raise typer.Exit(code=1)
    _print_story(story)


@app.command()
def videos(
    story_id: int = typer.Argument(..., help="Story ID"),
    shot: Optional[str] = typer.Option(None, "--shot", help="Only generate this shot"),
) -> None:
    """Generate shot videos for a story (all shots unless --shot is given)."""
    if shot:
        console.print(f"[bold blue]Generating video for shot {shot}...[/bold blue]")
        result = _with_repository(lambda repo: repo.request_video_for_shot(story_id, shot))
        if not result.ok:
            console.print(f"[bold red]✗ {result.error}[/bold red]")
            raise typer.Exit(code=1)
        console.print(f"[bold green]✓ Video ready:[/bold green] {result.value.video_url}")
        return

    console.print("[bold blue]Generating videos for all shots...[/bold blue]")
    result = _with_repository(lambda repo: repo.request_videos_for_all_shots(story_id))
    if not result.ok:
        console.print(f"[bold red]✗ {result.error}[/bold red]")
        raise typer.Exit(code=1)

    table = Table(title="Shot Videos")
    table.add_column("Shot", style="dim")
    table.add_column("Status")
    table.add_column("Details")

    for shot_id, outcome in result.value.items():
        if outcome.ok:
            table.add_row(shot_id[:8], "✓", outcome.value.video_url or "")
        else:
            table.add_row(shot_id[:8], "✗", (outcome.error or "")[:80])
    console.print(table)

    if not all(outcome.ok for outcome in result.value.values()):
        raise typer.Exit(code=1)


@app.command()
def export(
    story_id: int = typer.Argument(..., help="Story ID"),
    destination: ExportDestination = typer.Option(
        ExportDestination.LIBRARY, "--destination", "-d", help="Shared storage destination"
    ),
) -> None:
    """Assemble a story's clips and narration into one video file."""
    console.print("[bold blue]Assembling video...[/bold blue]")
    result = _with_repository(lambda repo: repo.export_story(story_id, destination))
    if not result.ok:
        console.print(f"[bold red]✗ Export failed: {result.error}[/bold red]")
        raise typer.Exit(code=1)

    exported = result.value
    console.print(f"[bold green]✓ Exported {exported.display_name}[/bold green]")
    console.print(f"[dim]{exported.path}[/dim]")


# =============================================================================
# TASKS & ASSETS
# =============================================================================


@app.command()
def tasks(
    story_id: Optional[int] = typer.Option(None, "--story", help="Only tasks for this story"),
) -> None:
    """List remote job records."""
    if story_id is not None:
        items = _with_repository(lambda repo: repo.registry.list_for_story(story_id))
    else:
        items = _with_repository(lambda repo: repo.list_tasks())

    if not items:
        console.print("[dim]No tasks recorded[/dim]")
        return

    table = Table(title="Tasks")
    table.add_column("ID", style="dim")
    table.add_column("Kind", style="cyan")
    table.add_column("Status")
    table.add_column("Title")
    table.add_column("Message")
    table.add_column("Updated")

    for task in items:
        table.add_row(
            task.id,
            task.kind.value,
            task.status.value,
            task.title or "-",
            (task.message or "-")[:60],
            task.updated_at.strftime("%Y-%m-%d %H:%M:%S"),
        )

    console.print(table)


@app.command()
def assets(
    query: Optional[str] = typer.Option(None, "--query", "-q", help="Filter by title"),
    delete: Optional[int] = typer.Option(None, "--delete", help="Delete the asset with this ID"),
) -> None:
    """List finished video assets, or delete one."""
    if delete is not None:
        _with_repository(lambda repo: repo.delete_asset(delete))
        console.print(f"[green]Deleted asset {delete}[/green]")
        return

    items = _with_repository(lambda repo: repo.list_assets(query))
    if not items:
        console.print("[dim]No assets found[/dim]")
        return

    table = Table(title="Assets")
    table.add_column("ID", style="dim")
    table.add_column("Title", style="cyan")
    table.add_column("Style")
    table.add_column("Preview")
    table.add_column("Created")

    for asset in items:
        table.add_row(
            str(asset.id),
            asset.title,
            asset.style.value,
            asset.preview_uri or "-",
            asset.created_at.strftime("%Y-%m-%d"),
        )

    console.print(table)


@app.command()
def serve() -> None:
    """Start the API server."""
    import uvicorn

    from storyreel.config import settings

    console.print(f"[bold blue]Starting API on {settings.api_host}:{settings.api_port}[/bold blue]")
    uvicorn.run(
        "storyreel.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
    )


if __name__ == "__main__":
    app()
