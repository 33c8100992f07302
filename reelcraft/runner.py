"""CLI for the narrated short-video pipeline.

Usage:
    reelcraft run --script script.txt --config config.yaml
    reelcraft run --topic "deep sea creatures" --output-dir out/
    reelcraft -v run --script dialogue.txt --cues cues.yaml
"""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import AsyncExitStack
from pathlib import Path

import click
import yaml
from rich.console import Console
from rich.table import Table

from reelcraft.background import BackgroundProvider, LocalBackgroundProvider, RemoteBackgroundProvider
from reelcraft.config import AppConfig, load_config
from reelcraft.coordinator import JobCoordinator, new_job
from reelcraft.errors import InvalidInputError, MediaValidationError, MuxError, UpstreamError
from reelcraft.llm import LLMClient, cues_from_data
from reelcraft.models import Job, JobStatus, VisualCue
from reelcraft.search import GoogleImageSearch, TenorGifSearch
from reelcraft.tts import ElevenLabsClient, SpeechProvider, StubSpeechProvider

console = Console()

_DEFAULT_CONFIG = "config.yaml"

EXIT_OK = 0
EXIT_INPUT = 1
EXIT_UPSTREAM = 2
EXIT_CANCELLED = 3


def _setup_logging(verbose: bool) -> None:
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # Quiet down httpx unless debugging
    if not verbose:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


def load_cues(path: str) -> list[VisualCue]:
    """Read visual cues from a YAML or JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise InvalidInputError(f"Malformed cue file {path}: {exc}") from exc
    cues = cues_from_data(data)
    if cues is None:
        raise InvalidInputError(f"Cue file {path} holds no list of cues")
    return cues


def exit_code_for(job: Job) -> int:
    if job.status in (JobStatus.COMPLETED, JobStatus.UPLOADED):
        return EXIT_OK
    if job.error_kind == "invalid_input":
        return EXIT_INPUT
    if job.error_kind == "cancelled":
        return EXIT_CANCELLED
    return EXIT_UPSTREAM


def _build_speech(config: AppConfig) -> SpeechProvider:
    provider = (config.tts.provider or "").lower()
    if provider not in ("", "stub", "elevenlabs"):
        raise InvalidInputError(f"Unknown tts.provider: {config.tts.provider!r}")
    if provider == "elevenlabs" or (not provider and config.elevenlabs.api_keys):
        return ElevenLabsClient(config.elevenlabs, add_pauses=config.tts.add_pauses)
    return StubSpeechProvider(config.tts.words_per_minute)


def _build_background(config: AppConfig) -> BackgroundProvider | None:
    video = config.video
    if video.background_dir:
        return LocalBackgroundProvider(config.resolve(video.background_dir))
    if video.background_urls:
        return RemoteBackgroundProvider(video.background_urls, config.resolve(video.cache_dir))
    return None


async def _run_job(
    config: AppConfig,
    script: str,
    topic: str,
    output_root: Path,
    cues: list[VisualCue] | None,
) -> Job:
    async with AsyncExitStack() as stack:
        speech = _build_speech(config)
        if isinstance(speech, ElevenLabsClient):
            await stack.enter_async_context(speech)

        llm = None
        if config.llm.api_key:
            llm = await stack.enter_async_context(LLMClient(config.llm))

        image_search = None
        if config.google_search.api_key and config.google_search.engine_id:
            image_search = await stack.enter_async_context(GoogleImageSearch(config.google_search))
        gif_search = None
        if config.tenor.api_key:
            gif_search = await stack.enter_async_context(TenorGifSearch(config.tenor))

        background = _build_background(config)
        if isinstance(background, RemoteBackgroundProvider):
            await stack.enter_async_context(background)

        coordinator = JobCoordinator(
            config,
            speech,
            llm=llm,
            image_search=image_search,
            gif_search=gif_search,
            background=background,
        )
        job = new_job(output_root, script=script, topic=topic)
        console.print(f"[bold]Job {job.id}[/bold] -> {job.output_dir}")
        return await coordinator.run(job, cues)


def _print_summary(job: Job) -> None:
    table = Table(title=f"Job {job.id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    status_style = {
        JobStatus.COMPLETED: "green",
        JobStatus.UPLOADED: "green",
        JobStatus.FAILED: "red",
    }.get(job.status, "yellow")
    table.add_row("Status", f"[{status_style}]{job.status.value}[/{status_style}]")
    table.add_row("Stage", job.stage.value)
    if job.title:
        table.add_row("Title", job.title)
    table.add_row("Duration", f"{job.duration:.2f}s")
    table.add_row("Overlays", str(len(job.overlays)))
    if job.audio_path:
        table.add_row("Audio", str(job.audio_path))
    if job.video_path:
        table.add_row("Video", str(job.video_path))
    if job.error:
        table.add_row("Error", f"[red]{job.error_kind}: {job.error}[/red]")
    console.print(table)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Narrated vertical short-video pipeline."""
    ctx.ensure_object(dict)
    _setup_logging(verbose)


@cli.command("run")
@click.option("--script", "-s", "script_path", default=None, help="Path to the script text file")
@click.option("--topic", "-t", default="", help="Draft the script about this topic with the LLM")
@click.option("--config", "-c", "config_path", default=_DEFAULT_CONFIG, help="Path to config.yaml")
@click.option("--output-dir", "-o", default=None, help="Output root (default: video.output_dir)")
@click.option("--cues", "cues_path", default=None, help="YAML/JSON file with visual cues")
def cmd_run(
    script_path: str | None,
    topic: str,
    config_path: str,
    output_dir: str | None,
    cues_path: str | None,
) -> None:
    """Build one video from a script (or a topic)."""
    try:
        config = load_config(config_path)
        script = ""
        if script_path:
            script = Path(script_path).read_text(encoding="utf-8")
        if not script.strip() and not topic.strip():
            raise InvalidInputError("Provide a non-empty --script or a --topic")
        cues = load_cues(cues_path) if cues_path else None
        output_root = Path(output_dir) if output_dir else config.resolve(config.video.output_dir)

        job = asyncio.run(_run_job(config, script, topic, output_root, cues))
    except (FileNotFoundError, InvalidInputError) as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(EXIT_INPUT)
    except (UpstreamError, MuxError, MediaValidationError) as exc:
        console.print(f"[red]Upstream error: {exc}[/red]")
        sys.exit(EXIT_UPSTREAM)
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(EXIT_CANCELLED)

    _print_summary(job)
    sys.exit(exit_code_for(job))


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
