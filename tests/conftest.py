import threading
import pytest
from pathlib import Path
from revive.config.models import AppConfig, GeneralConfig
from revive.domain.errors import ExternalToolError, ProbeError
from revive.domain.models import JobRequest, VideoMetadata
from revive.infrastructure.event_bus import EventBus
from revive.infrastructure.workspace import WorkspaceManager
from revive.pipeline.orchestrator import BatchCoordinator

CORRUPT = b"corrupt"

class FakeProber:
    """Stands in for ffprobe: any input starting with b'corrupt' is unreadable."""

    def __init__(self, frames: int = 4, has_audio: bool = True, width: int = 64, height: int = 48):
        self.frames = frames
        self.has_audio = has_audio
        self.width = width
        self.height = height

    def probe(self, path: Path, cancel_token=None, on_line=None) -> VideoMetadata:
        if Path(path).read_bytes().startswith(CORRUPT):
            raise ProbeError(f"ffprobe could not read {path.name}")
        return VideoMetadata(
            width=self.width, height=self.height, bitrate_kbps=800.0, codec="h264", container_format="mov,mp4",
            frame_rate=25.0, duration_seconds=self.frames / 25.0, total_frames=self.frames,
            has_audio=self.has_audio,
        )

class FakeFFmpeg:
    def __init__(self):
        self.calls = []

    def extract_frames(self, source, frames_dir, metadata, cancel_token, on_line=None, on_progress=None, divisor=1):
        self.calls.append(("extract", divisor))
        for i in range(1, metadata.total_frames + 1):
            (frames_dir / f"frame_{i:08d}.png").write_bytes(b"png")
            if on_progress:
                on_progress(i / metadata.total_frames)
        if on_line:
            on_line(f"frame={metadata.total_frames} fps=0.0")
        return metadata.total_frames

    def encode_frames(self, frames_dir, output_path, frame_rate, total_frames, cancel_token,
                      on_line=None, on_progress=None, size=None, bitrate_kbps=None, output_frame_rate=None):
        self.calls.append(("encode", frame_rate, size, bitrate_kbps, output_frame_rate))
        cancel_token.raise_if_cancelled("reassembling")
        count = len(list(Path(frames_dir).glob("frame_*.png")))
        output_path.write_bytes(b"video:" + str(count).encode())
        if on_progress:
            on_progress(1.0)

    def merge_audio(self, video_path, audio_source, output_path, cancel_token, on_line=None):
        self.calls.append(("merge",))
        output_path.write_bytes(video_path.read_bytes() + b"+audio")

class FakeUpscaler:
    """Copies frames; optional hooks let tests block inside or fail the upscaling stage."""

    def __init__(self, block_until_cancel: bool = False, fail: bool = False):
        self.block_until_cancel = block_until_cancel
        self.fail = fail
        self.entered = threading.Event()
        self.lock = threading.Lock()
        self.active = 0
        self.max_active = 0
        self.calls = []

    def upscale_dir(self, input_dir, output_dir, model, scale, frame_count, cancel_token,
                    on_line=None, on_progress=None):
        with self.lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.calls.append((input_dir.name, model, scale, frame_count))
        try:
            self.entered.set()
            if self.block_until_cancel:
                cancel_token.wait(10)
                cancel_token.raise_if_cancelled("upscaling")
            if self.fail:
                raise ExternalToolError("upscaling", 1, ["vkCreateInstance failed"])
            cancel_token.wait(0.02)
            for frame in sorted(input_dir.glob("frame_*.png")):
                (output_dir / frame.name).write_bytes(b"big" + frame.read_bytes())
            if on_line:
                on_line("100.00%")
            if on_progress:
                on_progress(1.0)
        finally:
            with self.lock:
                self.active -= 1

@pytest.fixture
def config(tmp_path):
    return AppConfig(general=GeneralConfig(
        output_dir=tmp_path / "output_videos",
        workspace_root=tmp_path / "work",
        max_parallel_jobs=2,
        frame_batch_size=2,
        kill_grace_seconds=0.5,
    ))

@pytest.fixture
def bus():
    return EventBus()

@pytest.fixture
def workspace_manager(config):
    return WorkspaceManager(config.general.workspace_root)

@pytest.fixture
def fake_ffmpeg():
    return FakeFFmpeg()

@pytest.fixture
def fake_upscaler():
    return FakeUpscaler()

@pytest.fixture
def make_coordinator(config, bus, workspace_manager, fake_ffmpeg):
    def factory(upscaler=None, prober=None, shutdown_action=None):
        return BatchCoordinator(
            config=config,
            event_bus=bus,
            workspace_manager=workspace_manager,
            ffprobe_adapter=prober or FakeProber(),
            ffmpeg_adapter=fake_ffmpeg,
            upscaler=upscaler or FakeUpscaler(),
            shutdown_action=shutdown_action,
        )
    return factory

@pytest.fixture
def make_request():
    def factory(name="clip.mp4", content=b"\x00\x00\x00\x18ftypmp42", **fields):
        return JobRequest(file_name=name, content=content, **fields)
    return factory

@pytest.fixture
def prober_class():
    return FakeProber

@pytest.fixture
def upscaler_class():
    return FakeUpscaler
