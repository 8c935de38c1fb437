import logging
import re
from pathlib import Path
from typing import Callable, List, Optional
from revive.config.models import ToolsConfig
from revive.domain.models import UpscaleModel
from revive.infrastructure.runner import OutputCallback, ToolRunner
from revive.pipeline.cancellation import CancelToken

# realesrgan-ncnn-vulkan reports '12.50%' per image, ending each one at '100.00%'
PERCENT_REGEX = re.compile(r"^\s*(\d{1,3}(?:\.\d+)?)%\s*$")

def parse_percent(line: str) -> Optional[float]:
    match = PERCENT_REGEX.match(line)
    return float(match.group(1)) if match else None

class FrameProgress:
    """Turns the per-image percentage stream into a fraction of a whole directory."""

    def __init__(self, total_frames: int):
        self.total_frames = max(1, total_frames)
        self.frames_done = 0
        self._current = 0.0

    def feed(self, line: str) -> Optional[float]:
        pct = parse_percent(line)
        if pct is None:
            return None
        if pct >= 100.0:
            self.frames_done = min(self.total_frames, self.frames_done + 1)
            self._current = 0.0
        else:
            self._current = pct / 100.0
        return min(1.0, (self.frames_done + self._current) / self.total_frames)

class RealESRGANAdapter:
    """Wrapper around realesrgan-ncnn-vulkan in directory mode."""

    def __init__(self, config: Optional[ToolsConfig] = None, grace_seconds: float = 5.0):
        self.config = config or ToolsConfig()
        self.grace_seconds = grace_seconds
        self.logger = logging.getLogger(__name__)

    def build_command(self, input_dir: Path, output_dir: Path, model: UpscaleModel, scale: int) -> List[str]:
        cmd = [
            self.config.realesrgan,
            "-i", str(input_dir),
            "-o", str(output_dir),
            "-n", model.value,
            "-s", str(scale),
            "-f", "png",
            "-t", str(self.config.tile_size),
            "-j", self.config.threads,
        ]
        if self.config.gpu_id is not None:
            cmd.extend(["-g", str(self.config.gpu_id)])
        return cmd

    def upscale_dir(
        self,
        input_dir: Path,
        output_dir: Path,
        model: UpscaleModel,
        scale: int,
        frame_count: int,
        cancel_token: CancelToken,
        on_line: Optional[OutputCallback] = None,
        on_progress: Optional[Callable[[float], None]] = None,
    ):
        """Upscales every frame in input_dir into output_dir under the same file names."""
        if not model.supports(scale):
            raise ValueError(f"Model {model.value} does not support scale {scale}")

        tracker = FrameProgress(frame_count)

        def handle(line: str):
            if on_line is not None:
                on_line(line)
            fraction = tracker.feed(line)
            if fraction is not None and on_progress is not None:
                on_progress(fraction)

        cmd = self.build_command(input_dir, output_dir, model, scale)
        ToolRunner("upscaling", cancel_token, grace_seconds=self.grace_seconds).run(cmd, on_output_line=handle)
        self.logger.debug(f"Upscaled {frame_count} frames from {input_dir.name} ({model.value} x{scale})")
