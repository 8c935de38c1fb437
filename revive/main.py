import typer
import traceback
from pathlib import Path
from typing import Dict, List, Optional
from pydantic import ValidationError
from revive.api import UpscalerService
from revive.config.loader import load_config
from revive.config.models import AppConfig
from revive.domain.errors import BatchError, PipelineError
from revive.domain.models import JobMode, JobRequest, UpscaleModel
from revive.infrastructure.logging import setup_logging
from revive.ui.state import UIState
from revive.ui.manager import UIManager
from revive.ui.dashboard import Dashboard
from revive.ui.keyboard import KeyboardListener

app = typer.Typer(help="revive - batch video upscaling and rescaling")

DEFAULT_CONFIG = Path("conf/revive.yaml")

def _prepare(
    config_path: Optional[Path],
    jobs: Optional[int] = None,
    auto_shutdown: Optional[bool] = None,
    debug: bool = False,
) -> AppConfig:
    config = load_config(config_path)
    # Apply CLI overrides
    if jobs: config.general.max_parallel_jobs = jobs
    if auto_shutdown is not None: config.general.auto_shutdown = auto_shutdown
    if debug: config.general.debug = True

    logger = setup_logging(Path(config.general.output_dir), debug=config.general.debug)
    logger.info(f"revive started: config={config_path}, output={config.general.output_dir}")
    logger.info(
        f"Config: jobs={config.general.max_parallel_jobs}, batch={config.general.frame_batch_size}, "
        f"auto_shutdown={config.general.auto_shutdown}, debug={config.general.debug}"
    )
    return config

def _check_inputs(files: List[Path]):
    for path in files:
        if not path.is_file():
            typer.secho(f"Error: File {path} does not exist.", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

def _build_requests(files: List[Path], **fields) -> List[JobRequest]:
    try:
        return [JobRequest(file_name=path.name, source_path=path, **fields) for path in files]
    except ValidationError as e:
        messages = "; ".join(err["msg"] for err in e.errors())
        typer.secho(f"Error: {messages}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

def exit_code_for(statuses: Dict[str, str]) -> int:
    values = list(statuses.values())
    if any(v == "Canceled" for v in values):
        return 130
    if any(v != "Completed" for v in values):
        return 1
    return 0

def _run_batch(config: AppConfig, requests: List[JobRequest]) -> int:
    service = UpscalerService(config)
    swept = service.startup()
    if swept:
        typer.echo(f"Removed {swept} leftovers of a previous run")

    ui_state = UIState()
    ui_state.auto_shutdown = config.general.auto_shutdown
    UIManager(service.event_bus, ui_state)
    keyboard = KeyboardListener(service.event_bus, lambda: service.coordinator.auto_shutdown)
    dashboard = Dashboard(ui_state)

    keyboard.start()
    try:
        with dashboard:
            statuses = service.process_requests(requests)
    except KeyboardInterrupt:
        service.cancel_processing()
        raise
    finally:
        keyboard.stop()

    for name, status in statuses.items():
        color = typer.colors.GREEN if status == "Completed" else typer.colors.RED
        typer.secho(f"{name}: {status}", fg=color)
    return exit_code_for(statuses)

def _guarded(fn):
    try:
        return fn()
    except typer.Exit:
        raise
    except KeyboardInterrupt:
        typer.echo("\nInterrupted by user")
        raise typer.Exit(code=130)
    except (BatchError, PipelineError, ValueError) as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    except Exception as e:
        with open("error.log", "a") as f:
            traceback.print_exc(file=f)
        typer.secho(f"Fatal Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

@app.command()
def upscale(
    files: List[Path] = typer.Argument(..., help="Video files to upscale"),
    model: UpscaleModel = typer.Option(UpscaleModel.REALESRGAN_X4PLUS, "--model", "-m", help="Upscaling model"),
    scale: int = typer.Option(4, "--scale", "-s", help="Upscale factor supported by the model"),
    config_path: Optional[Path] = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
    jobs: Optional[int] = typer.Option(None, "--jobs", "-j", help="Override number of parallel files"),
    auto_shutdown: Optional[bool] = typer.Option(None, "--auto-shutdown/--no-auto-shutdown", help="Power off the host after a successful batch"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Upscale videos frame by frame with Real-ESRGAN."""
    _check_inputs(files)
    requests = _build_requests(files, mode=JobMode.UPSCALE, model=model, scale=scale)

    def run():
        config = _prepare(config_path, jobs, auto_shutdown, debug)
        return _run_batch(config, requests)

    code = _guarded(run)
    raise typer.Exit(code=code)

@app.command()
def rescale(
    files: List[Path] = typer.Argument(..., help="Video files to rescale"),
    height: Optional[int] = typer.Option(None, "--height", help="Target height in pixels; width keeps the aspect ratio"),
    fps: Optional[float] = typer.Option(None, "--fps", help="Target frame rate"),
    config_path: Optional[Path] = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
    jobs: Optional[int] = typer.Option(None, "--jobs", "-j", help="Override number of parallel files"),
    auto_shutdown: Optional[bool] = typer.Option(None, "--auto-shutdown/--no-auto-shutdown", help="Power off the host after a successful batch"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Re-encode videos to a new height and/or frame rate without upscaling."""
    _check_inputs(files)
    requests = _build_requests(files, mode=JobMode.RESCALE, target_height=height, frame_rate=fps)

    def run():
        config = _prepare(config_path, jobs, auto_shutdown, debug)
        return _run_batch(config, requests)

    code = _guarded(run)
    raise typer.Exit(code=code)

@app.command()
def probe(
    file: Path = typer.Argument(..., help="Video file to inspect"),
    config_path: Optional[Path] = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
):
    """Print the metadata the pipeline would see for a file."""
    _check_inputs([file])

    def run():
        config = load_config(config_path)
        service = UpscalerService(config)
        meta = service.ffprobe.probe(file)
        for key, value in meta.model_dump().items():
            typer.echo(f"{key}: {value}")

    _guarded(run)

@app.command("open-output")
def open_output(
    config_path: Optional[Path] = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
):
    """Open the output folder in the host file browser."""
    _guarded(lambda: UpscalerService(load_config(config_path)).open_output_folder())

if __name__ == "__main__":
    app()
