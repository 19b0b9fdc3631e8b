import asyncio
import typer
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from mbe.config.loader import load_config
from mbe.config.models import AppConfig
from mbe.domain.estimate import estimate_output, format_file_size
from mbe.domain.events import LogAppended, ProcessingFinished
from mbe.domain.models import FileStatus, Pipeline, SourceMetadata
from mbe.infrastructure.backend import EventChannel
from mbe.infrastructure.event_bus import EventBus
from mbe.infrastructure.logging import setup_logging
from mbe.pipeline.demo_backend import DemoPlan, SimulatedBackend
from mbe.pipeline.orchestrator import JobOrchestrator

app = typer.Typer(help="MBE (Media Batch Editor) - conversion planning and orchestration")
console = Console()

_STATUS_STYLES = {
    FileStatus.COMPLETED: "green",
    FileStatus.ERROR: "red",
    FileStatus.CONVERTING: "cyan",
    FileStatus.QUEUED: "yellow",
}


def _load(config_path: Optional[Path]) -> AppConfig:
    if config_path is None:
        return AppConfig()
    try:
        return load_config(config_path)
    except FileNotFoundError as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


@app.command()
def estimate(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    resolution: Optional[str] = typer.Option(None, "--resolution", help="Source resolution, e.g. 1920x1080"),
    bitrate: Optional[str] = typer.Option(None, "--bitrate", help="Source bitrate (bps or kbps)"),
    duration: Optional[str] = typer.Option(None, "--duration", help="Source duration (HH:MM:SS.cc or seconds)"),
    crf: Optional[int] = typer.Option(None, "--crf", help="Override CRF (0-51)"),
    container: Optional[str] = typer.Option(None, "--container", help="Override output container"),
):
    """Predict output bitrate and size for the configured conversion."""
    config = _load(config_path)
    conversion = config.conversion
    overrides = {}
    if crf is not None:
        overrides["crf"] = crf
    if container is not None:
        overrides["container"] = container
    if overrides:
        conversion = type(conversion).model_validate({**conversion.model_dump(), **overrides})

    metadata = SourceMetadata(resolution=resolution, bitrate=bitrate, duration=duration)
    result = estimate_output(conversion, metadata)

    table = Table(title="Output estimate", show_header=False)
    table.add_row("Video", f"{result.video_kbps} kbps")
    table.add_row("Audio", f"{result.audio_kbps} kbps")
    table.add_row("Total", f"{result.total_kbps} kbps")
    table.add_row("Size", format_file_size(result.size_mb))
    console.print(table)


async def _run_demo(orchestrator: JobOrchestrator, backend: SimulatedBackend, channel: EventChannel):
    consumer = asyncio.create_task(orchestrator.run(channel))
    await orchestrator.start_conversion()
    await backend.drain(close=True)
    await consumer


@app.command()
def demo(
    paths: List[str] = typer.Argument(..., help="Media files to push through the simulated backend"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    spatial: bool = typer.Option(False, "--spatial", help="Run the spatial pipeline instead of conversion"),
    fail: List[str] = typer.Option([], "--fail", help="File name that fails halfway (repeatable)"),
    reject: List[str] = typer.Option([], "--reject", help="File name the backend refuses (repeatable)"),
    steps: int = typer.Option(5, "--steps", min=1, help="Progress events per file"),
    delay: float = typer.Option(0.05, "--delay", min=0.0, help="Seconds between progress events"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Run files through the orchestrator against a simulated backend."""
    config = _load(config_path)
    if debug:
        config.general.debug = True
    if spatial:
        config.general.pipeline = Pipeline.SPATIAL

    logger = setup_logging(config.general.output_dir, debug=config.general.debug, log_path=config.general.log_path)
    logger.info(f"MBE demo started: files={len(paths)}, pipeline={config.general.pipeline.value}")

    event_bus = EventBus()
    channel = EventChannel()
    backend = SimulatedBackend(
        channel,
        DemoPlan(steps=steps, step_delay_s=delay, reject=set(reject), fail_at={name: 50.0 for name in fail}),
    )
    orchestrator = JobOrchestrator(
        backend=backend,
        event_bus=event_bus,
        pipeline=config.general.pipeline,
        conversion_config=config.conversion,
        spatial_config=config.spatial,
    )

    @event_bus.subscribe(LogAppended)
    def on_log(event: LogAppended):
        item = orchestrator.get_item(event.item_id)
        name = item.name if item else event.item_id
        console.print(f"[dim]{escape(name)}:[/dim] {escape(event.line)}")

    @event_bus.subscribe(ProcessingFinished)
    def on_finished(event: ProcessingFinished):
        console.print(f"[bold]Finished:[/bold] {event.completed} completed, {event.failed} failed")

    orchestrator.add_items(paths, selected=True)
    try:
        asyncio.run(_run_demo(orchestrator, backend, channel))
    except KeyboardInterrupt:
        typer.secho("\n✓ Stopped by user (Ctrl+C)", fg=typer.colors.YELLOW)
        raise typer.Exit(code=130)

    table = Table(title="Results")
    table.add_column("File")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Error")
    for item in orchestrator.items:
        style = _STATUS_STYLES.get(item.status, "white")
        table.add_row(item.name, f"[{style}]{item.status.value}[/{style}]", f"{item.progress:.0f}%", item.error or "")
    console.print(table)

    if any(item.status == FileStatus.ERROR for item in orchestrator.items):
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
