"""Boundary used by desktop/GUI clients.

Payloads mirror what the client sends over its bridge: upload entries are
``{FileCode, FileBase64, FileName, Model, Scale}`` and every log line or
progress marker is delivered to subscribers of the ``stderr_log`` channel.
"""
import base64
import binascii
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence
from pydantic import ValidationError
from revive.config.models import AppConfig
from revive.domain.errors import BatchError, InputError
from revive.domain.events import LogEmitted, ProgressUpdated
from revive.domain.models import JobRequest, JobResult, JobStatus, UpscaleModel
from revive.infrastructure import host
from revive.infrastructure.event_bus import EventBus
from revive.infrastructure.ffmpeg import FFmpegAdapter
from revive.infrastructure.ffprobe import FFprobeAdapter
from revive.infrastructure.housekeeping import HousekeepingService
from revive.infrastructure.progress import ProgressMultiplexer
from revive.infrastructure.realesrgan import RealESRGANAdapter
from revive.infrastructure.workspace import WorkspaceManager
from revive.pipeline.orchestrator import BatchCoordinator

LOG_CHANNEL = "stderr_log"

def decode_upload(text: str, file_name: str = "upload") -> bytes:
    """Decodes base64 text, tolerating a 'data:...;base64,' prefix."""
    if not text:
        raise InputError(f"{file_name}: no content")
    if text.startswith("data:") and "," in text:
        text = text.split(",", 1)[1]
    try:
        content = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InputError(f"{file_name}: content is not valid base64") from e
    if not content:
        raise InputError(f"{file_name}: no content")
    return content

def build_request(entry: Dict[str, Any], index: int = 0) -> JobRequest:
    name = entry.get("FileName") or f"file-{index}"
    content = decode_upload(entry.get("FileBase64", ""), name)
    data = {
        "file_name": name,
        "content": content,
        "model": entry.get("Model") or UpscaleModel.REALESRGAN_X4PLUS.value,
        "scale": entry.get("Scale") or 4,
    }
    if entry.get("FileCode"):
        data["file_code"] = str(entry["FileCode"])
    try:
        return JobRequest(**data)
    except ValidationError as e:
        messages = "; ".join(err["msg"] for err in e.errors())
        raise InputError(f"{name}: {messages}") from e

class UpscalerService:
    """Wires the tool adapters and the batch coordinator behind the client contract."""

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        event_bus: Optional[EventBus] = None,
        coordinator: Optional[BatchCoordinator] = None,
    ):
        self.config = config or AppConfig()
        self.event_bus = event_bus or EventBus()
        self.logger = logging.getLogger(__name__)

        tools = self.config.tools
        grace = self.config.general.kill_grace_seconds
        self.workspace_manager = WorkspaceManager(self.config.general.workspace_root)
        self.ffprobe = FFprobeAdapter(tools.ffprobe, timeout=tools.probe_timeout_seconds, grace_seconds=grace)
        self.coordinator = coordinator or BatchCoordinator(
            config=self.config,
            event_bus=self.event_bus,
            workspace_manager=self.workspace_manager,
            ffprobe_adapter=self.ffprobe,
            ffmpeg_adapter=FFmpegAdapter(tools.ffmpeg, self.config.encoding, grace_seconds=grace),
            upscaler=RealESRGANAdapter(tools, grace_seconds=grace),
            multiplexer=ProgressMultiplexer(self.event_bus),
            shutdown_action=self.shutdown_computer,
        )
        self.housekeeping = HousekeepingService(self.coordinator.workspace_manager)

    @property
    def output_dir(self) -> Path:
        return Path(self.config.general.output_dir)

    def startup(self) -> int:
        """Sweeps workspaces and partial outputs left by a crashed run."""
        return self.housekeeping.cleanup(self.output_dir)

    def subscribe(self, callback: Callable[[str], None]) -> Callable[[], None]:
        """Attaches a listener to the log channel; returns a function that detaches it."""

        def on_progress(event: ProgressUpdated):
            callback(event.raw)

        def on_log(event: LogEmitted):
            callback(event.text)

        self.event_bus.subscribe(ProgressUpdated, on_progress)
        self.event_bus.subscribe(LogEmitted, on_log)

        def unsubscribe():
            self.event_bus.unsubscribe(ProgressUpdated, on_progress)
            self.event_bus.unsubscribe(LogEmitted, on_log)

        return unsubscribe

    def process_requests(self, requests: Sequence[JobRequest]) -> Dict[str, str]:
        return self.coordinator.submit(requests)

    def process_videos_from_upload(self, files: List[Dict[str, Any]]) -> Dict[str, str]:
        """Runs a batch of uploaded files; blocks until every file is terminal."""
        names = [entry.get("FileName") or f"file-{i}" for i, entry in enumerate(files)]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise BatchError(f"Duplicate file names in batch: {', '.join(duplicates)}")

        requests: List[JobRequest] = []
        rejected: Dict[str, str] = {}
        for index, entry in enumerate(files):
            try:
                requests.append(build_request(entry, index))
            except InputError as e:
                self.logger.error(f"Rejected upload: {e}")
                rejected[names[index]] = JobResult(
                    file_name=names[index],
                    file_code=str(entry.get("FileCode") or ""),
                    status=JobStatus.FAILED,
                    reason=e.reason,
                ).status_text

        statuses = self.coordinator.submit(requests) if requests else {}
        return {name: statuses.get(name) or rejected[name] for name in names}

    def get_statuses(self) -> Dict[str, str]:
        return self.coordinator.statuses()

    def cancel_processing(self):
        self.coordinator.cancel()

    def get_video_info(self, file_base64: str) -> Dict[str, Any]:
        meta = self.ffprobe.probe_bytes(decode_upload(file_base64))
        return {
            "width": meta.width,
            "height": meta.height,
            "bitrate": meta.bitrate_kbps,
            "codec": meta.codec,
            "format": meta.container_format,
            "frameRate": meta.frame_rate,
            "duration": meta.duration_seconds,
            "totalFrames": meta.total_frames,
        }

    def open_output_folder(self):
        host.open_output_location(self.output_dir)

    def shutdown_computer(self):
        host.shutdown_host()
