"""CLI commands for taleweaver using Typer and Rich.

Implements three CLI commands:
- serve: Run the HTTP API server
- config: Show the effective configuration and missing credentials
- demo: Run every job of one session end to end against a chosen provider
"""

import asyncio
import base64
import logging
import uuid
from pathlib import Path
from typing import Optional

import typer
import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from taleweaver.config import ProviderConfig, settings
from taleweaver.engine import Engine
from taleweaver.orchestrator.state import TaskStatus, is_terminal
from taleweaver.providers.registry import PROVIDER_NAMES
from taleweaver.schemas.task import Task

app = typer.Typer(name="taleweaver", help="Orchestration service for story, image and video generation jobs")
console = Console()

_SECRET_KEYS = ("api_key", "access_key")

# 1x1 PNG and a short silent WAV stand in for real uploads
_PLACEHOLDER_IMAGE = (
    "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8z8BQDwAEhQGAhKmMIQAAAABJRU5ErkJggg=="
)
_PLACEHOLDER_AUDIO = "UklGRiQAAABXQVZFZm10IBAAAAABAAEAQB8AAIA+AAACABAAZGF0YQAAAAA="


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default from config)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port (default from config)"),
    log_level: str = typer.Option("info", "--log-level", help="Log level for the server"),
):
    """Run the HTTP API server."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    missing = settings.missing_credentials()
    if missing:
        console.print(f"[yellow]Missing credentials:[/yellow] {', '.join(missing)}")
    uvicorn.run(
        "taleweaver.api.app:app",
        host=host or settings.server.host,
        port=port or settings.server.port,
        log_level=log_level.lower(),
    )


@app.command()
def config():
    """Show the effective configuration with secrets masked."""
    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Key", style="dim")
    table.add_column("Value")

    for section, values in settings.model_dump().items():
        for key, value in values.items():
            if key in _SECRET_KEYS:
                value = "[green]set[/green]" if value else "[red]missing[/red]"
            table.add_row(f"{section}.{key}", str(value))
    console.print(table)

    missing = settings.missing_credentials()
    if missing:
        console.print(f"[yellow]Missing credentials:[/yellow] {', '.join(missing)}")
        raise typer.Exit(code=1)
    console.print("[green]✓[/green] Configuration complete")


@app.command()
def demo(
    session_id: Optional[str] = typer.Option(None, "--session", "-s", help="Session id (random if omitted)"),
    provider: str = typer.Option("mock", "--provider", help="Provider variant: mock or ark"),
    image: Optional[Path] = typer.Option(None, "--image", "-i", help="Hero photo for the avatar step"),
    clip_duration: int = typer.Option(5, "--clip-duration", "-d", help="Clip duration in seconds"),
):
    """Run avatar, dialog, story, split, images and clips for one session.

    The mock provider (default) needs no credentials or network access.
    """
    if provider not in PROVIDER_NAMES:
        console.print(f"[red]Error:[/red] Unknown provider '{provider}' (choose from {', '.join(PROVIDER_NAMES)})")
        raise typer.Exit(code=1)
    image_base64 = _PLACEHOLDER_IMAGE
    if image is not None:
        if not image.exists():
            console.print(f"[red]Error:[/red] Image not found: {image}")
            raise typer.Exit(code=1)
        mime = "image/png" if image.suffix.lower() == ".png" else "image/jpeg"
        image_base64 = f"data:{mime};base64,{base64.b64encode(image.read_bytes()).decode('ascii')}"

    sid = session_id or f"demo-{uuid.uuid4().hex[:8]}"
    console.print(f"[green]Session:[/green] {sid}  [green]Provider:[/green] {provider}")
    console.print()
    try:
        asyncio.run(_demo_async(sid, provider, image_base64, clip_duration))
    except KeyboardInterrupt:
        console.print("[yellow]Demo interrupted[/yellow]")
        raise typer.Exit(code=130)


async def _demo_async(session_id: str, provider: str, image_base64: str, clip_duration: int) -> None:
    """Async implementation of demo command."""
    update = {"provider": ProviderConfig(name=provider)}
    if provider == "mock":
        update["pipeline"] = settings.pipeline.model_copy(update={"video_poll_interval": 0.05})
    engine = Engine(settings.model_copy(update=update))
    steps = [
        ("avatar", lambda: engine.start_avatar(session_id, image_base64, "watercolor")),
        ("voice dialog", lambda: engine.start_voice_dialog(session_id, _PLACEHOLDER_AUDIO, "audio/wav")),
        ("story", lambda: engine.start_story(session_id, "short", "en")),
        ("split", lambda: engine.start_split(session_id, 3)),
        ("scene images", lambda: engine.start_scene_images(session_id)),
        ("video clips", lambda: engine.start_video(session_id, clip_duration)),
    ]

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Step")
    table.add_column("Status")
    table.add_column("Stage")
    table.add_column("Result")

    try:
        for label, start in steps:
            task = start()
            with console.status(f"{label}: PENDING") as status:
                while not is_terminal(task.status):
                    await asyncio.sleep(0.1)
                    task = engine.tasks.get(task.id)
                    status.update(f"{label}: {task.stage or task.status.value} ({task.progress}%)")
            table.add_row(label, _status_display(task), task.stage, str(task.result or task.error or ""))
            if task.status == TaskStatus.FAILED:
                break
    finally:
        await engine.aclose()

    console.print(table)
    session = engine.sessions.get(session_id)
    if session is not None:
        story = session.artifact("story")
        clips = session.artifact("video_clips").get("items") or []
        console.print(
            Panel(
                f"[bold]Stage:[/bold] {session.stage}\n"
                f"[bold]Story:[/bold] {story.get('title', 'N/A')}\n"
                f"[bold]Clips:[/bold] {', '.join(c.get('video_url') or c.get('status', '') for c in clips) or 'N/A'}\n"
                f"[bold]Artifacts:[/bold] {', '.join(sorted(session.artifacts))}",
                title=f"Session {session_id}",
            )
        )


def _status_display(task: Task) -> str:
    if task.status == TaskStatus.FAILED:
        return f"[red]{task.status.value}[/red]"
    if task.status in (TaskStatus.DONE, TaskStatus.SUCCEEDED):
        return f"[green]{task.status.value}[/green]"
    return task.status.value
