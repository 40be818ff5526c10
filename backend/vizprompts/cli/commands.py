"""CLI commands for vizprompts using Typer and Rich.

Implements the CLI commands:
- analyze: Turn a video or image into a master prompt and scene views
- refine: Rewrite a prompt under an instruction
- templates: List the built-in prompt templates
- history: List recent successful runs
"""

import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from vizprompts import validate_dependencies
from vizprompts.config import settings
from vizprompts.db import async_session, init_database, shutdown
from vizprompts.errors import NormalizationError, VizPromptsError
from vizprompts.orchestrator.pipeline import PromptPipeline
from vizprompts.orchestrator.progress import ProgressChannel
from vizprompts.pipeline.refinement import build_refine_instruction
from vizprompts.pipeline.templates import list_templates
from vizprompts.services.history import SqlHistorySink
from vizprompts.services.inference import get_gateway
from vizprompts.services.projector import ProjectedViews

app = typer.Typer(name="vizprompts", help="Turn videos and images into text-to-video prompts")
console = Console()

# View name -> (export key, output filename, syntax lexer)
_VIEWS = {
    "master": ("masterPrompt", "master_prompt.txt", None),
    "structured": ("structured", "structured.json", "json"),
    "detailed": ("detailed", "detailed.json", "json"),
    "super": ("superStructured", "super_structured.json", "json"),
}


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Configure logging for every command."""
    level = "DEBUG" if verbose else settings.logging.level.upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


@app.command()
def analyze(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="Video or image file"),
    frames: int = typer.Option(
        settings.pipeline.target_frame_count, "--frames", "-f", min=1, max=60, help="Number of frames to sample"
    ),
    master_prompt: Optional[str] = typer.Option(None, "--master-prompt", "-m", help="Director persona instruction"),
    view: list[str] = typer.Option(
        ["master", "super"], "--view", help="Views to print: master, structured, detailed, super"
    ),
    out: Optional[Path] = typer.Option(None, "--out", "-o", file_okay=False, help="Directory to write all views to"),
):
    """Analyze a video or image and print the generated prompt views."""
    unknown = [name for name in view if name not in _VIEWS]
    if unknown:
        console.print(f"[red]Error:[/red] Unknown view(s): {', '.join(unknown)}")
        console.print(f"Allowed: {', '.join(_VIEWS)}")
        raise typer.Exit(code=1)

    # Fail-fast dependency validation
    try:
        validate_dependencies()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)

    asyncio.run(_analyze_async(file, frames, master_prompt, view, out))


async def _analyze_async(
    file: Path, frames: int, master_prompt: Optional[str], view: list[str], out: Optional[Path],
):
    """Async implementation of analyze command."""
    await init_database()
    gateway = get_gateway(settings.inference)
    pipeline = PromptPipeline(gateway, settings, history=SqlHistorySink(async_session))
    progress = ProgressChannel()

    try:
        mime_type, _ = mimetypes.guess_type(file.name)
        asset = pipeline.validate(file.read_bytes(), mime_type, filename=file.name)

        with console.status("[bold green]Starting analysis...") as status:
            async def follow_progress():
                async for event in progress:
                    status.update(f"[bold green]{event.message} ({event.percent}%)")

            follower = asyncio.create_task(follow_progress())
            try:
                outcome = await pipeline.analyze(
                    asset, master_prompt=master_prompt, target_count=frames, progress=progress
                )
            finally:
                progress.close()
                await follower

    except NormalizationError as e:
        console.print(f"[red]✗ Analysis failed:[/red] {e.message}")
        if e.raw:
            console.print(Panel(e.raw, title="Raw model output", border_style="red"))
        raise typer.Exit(code=1)
    except VizPromptsError as e:
        console.print(f"[red]✗ Analysis failed:[/red] {e.message}")
        raise typer.Exit(code=1)
    finally:
        await gateway.aclose()
        await shutdown()

    console.print(
        f"[green]✓[/green] {len(outcome.frames)} frame(s) analyzed, "
        f"{len(outcome.result.scenes)} scene(s) found"
    )
    _print_views(outcome.views, view)

    if out is not None:
        written = write_views(outcome.views, out)
        console.print(f"[green]Wrote:[/green] {', '.join(str(p) for p in written)}")


def _print_views(views: ProjectedViews, names: list[str]) -> None:
    exported = views.export()
    for name in names:
        key, _, lexer = _VIEWS[name]
        body = Syntax(exported[key], lexer, word_wrap=True) if lexer else exported[key]
        console.print(Panel(body, title=key))


def write_views(views: ProjectedViews, directory: Path) -> list[Path]:
    """Write every view to its own file in directory."""
    directory.mkdir(parents=True, exist_ok=True)
    exported = views.export()
    written = []
    for key, filename, _ in _VIEWS.values():
        path = directory / filename
        path.write_text(exported[key] + "\n", encoding="utf-8")
        written.append(path)
    return written


@app.command()
def refine(
    prompt: str = typer.Argument(..., help="Prompt text to refine"),
    mode: str = typer.Option("refine", "--mode", help="refine or detail"),
    tone: Optional[str] = typer.Option(None, "--tone"),
    style: Optional[str] = typer.Option(None, "--style"),
    camera: Optional[str] = typer.Option(None, "--camera"),
    lighting: Optional[str] = typer.Option(None, "--lighting"),
    instruction: Optional[str] = typer.Option(None, "--instruction", "-i", help="Free-form instruction"),
    negative: Optional[str] = typer.Option(None, "--negative", "-n", help="Elements the result must not include"),
    master_prompt: Optional[str] = typer.Option(None, "--master-prompt", "-m"),
):
    """Rewrite a prompt with the selected adjustments."""
    if mode not in ("refine", "detail"):
        console.print(f"[red]Error:[/red] Invalid mode: {mode}")
        raise typer.Exit(code=1)

    text = build_refine_instruction(mode, tone, style, camera, lighting, instruction)
    asyncio.run(_refine_async(prompt, text, negative, master_prompt))


async def _refine_async(prompt: str, instruction: str, negative: Optional[str], master_prompt: Optional[str]):
    """Async implementation of refine command."""
    gateway = get_gateway(settings.inference)
    pipeline = PromptPipeline(gateway, settings)
    try:
        with console.status("[bold green]Refining prompt..."):
            refined = await pipeline.refine(
                prompt, instruction, negative_prompt=negative, master_prompt=master_prompt
            )
    except VizPromptsError as e:
        console.print(f"[red]✗ Refine failed:[/red] {e.message}")
        raise typer.Exit(code=1)
    finally:
        await gateway.aclose()

    console.print(Panel(refined, title="Refined prompt"))


@app.command()
def templates():
    """List the built-in prompt templates."""
    table = Table(show_header=True, header_style="bold blue")
    table.add_column("ID", style="dim")
    table.add_column("Title")
    table.add_column("Category")
    table.add_column("Prompt")

    for template in list_templates():
        prompt_display = template.prompt if len(template.prompt) <= 60 else template.prompt[:57] + "..."
        table.add_row(template.id, template.title, template.category, prompt_display)

    console.print(table)


@app.command()
def history(
    limit: int = typer.Option(20, "--limit", "-l", min=1, max=200),
):
    """List recent successful runs."""
    asyncio.run(_history_async(limit))


async def _history_async(limit: int):
    """Async implementation of history command."""
    await init_database()
    try:
        items = await SqlHistorySink(async_session).recent(limit)
    finally:
        await shutdown()

    if not items:
        console.print("[yellow]No history found[/yellow]")
        return

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("ID", style="dim")
    table.add_column("Prompt")
    table.add_column("Scenes", justify="right")
    table.add_column("Created")

    for item in items:
        id_display = item.id[:8] + "..."
        prompt_display = item.prompt if len(item.prompt) <= 50 else item.prompt[:47] + "..."
        created_display = item.timestamp.strftime("%Y-%m-%d %H:%M")
        table.add_row(id_display, prompt_display, str(len(item.scenes)), created_display)

    console.print(table)


if __name__ == "__main__":
    app()
