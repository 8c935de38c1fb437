import logging
import re
from pathlib import Path
from typing import Callable, List, Optional, Tuple
from revive.config.models import EncodingConfig
from revive.domain.models import VideoMetadata
from revive.infrastructure.runner import OutputCallback, ToolRunner
from revive.pipeline.cancellation import CancelToken

FRAME_PATTERN = "frame_%08d.png"
FRAME_GLOB = "frame_*.png"

ProgressCallback = Callable[[float], None]

# 'frame=  123 fps= 30 ...' from -stats
FRAME_REGEX = re.compile(r"frame=\s*(\d+)")

def parse_frame_count(line: str) -> Optional[int]:
    match = FRAME_REGEX.search(line)
    return int(match.group(1)) if match else None

def prescale_factor(metadata: VideoMetadata, scale: int) -> int:
    """Divisor applied to frames before upscaling so the output stays near scale/divisor of the source.

    Sources under 360px in either dimension are never reduced; otherwise the
    multiplier is halved until it is at most 2.
    """
    if metadata.width < 360 or metadata.height < 360:
        return 1
    factor = scale
    while factor > 2:
        factor //= 2
    return factor

def even_size(metadata: VideoMetadata, target_height: int) -> Tuple[int, int]:
    """Width/height for a target height, keeping aspect ratio and even dimensions."""
    height = max(2, target_height - target_height % 2)
    width = int(round(metadata.width * height / metadata.height / 2.0)) * 2
    return max(2, width), height

class FFmpegAdapter:
    """Wrapper around ffmpeg for frame extraction, re-encoding and audio muxing."""

    def __init__(self, binary: str = "ffmpeg", encoding: Optional[EncodingConfig] = None, grace_seconds: float = 5.0):
        self.binary = binary
        self.encoding = encoding or EncodingConfig()
        self.grace_seconds = grace_seconds
        self.logger = logging.getLogger(__name__)

    def _base(self) -> List[str]:
        return [self.binary, "-hide_banner", "-nostdin", "-y"]

    def _tail(self) -> List[str]:
        return ["-loglevel", "error", "-stats"]

    def build_extract_command(self, source: Path, frames_dir: Path, divisor: int = 1) -> List[str]:
        cmd = self._base() + ["-i", str(source)]
        if divisor > 1:
            cmd.extend(["-vf", f"scale=trunc(iw/{divisor}/2)*2:trunc(ih/{divisor}/2)*2"])
        cmd.extend(["-fps_mode", "passthrough"])
        cmd.extend(self._tail())
        cmd.append(str(frames_dir / FRAME_PATTERN))
        return cmd

    def build_encode_command(
        self,
        frames_dir: Path,
        output_path: Path,
        frame_rate: float,
        size: Optional[Tuple[int, int]] = None,
        bitrate_kbps: Optional[float] = None,
        output_frame_rate: Optional[float] = None,
    ) -> List[str]:
        """``frame_rate`` is the rate the frames were extracted at; a different
        ``output_frame_rate`` drops or repeats frames so the duration is kept."""
        enc = self.encoding
        cmd = self._base() + [
            "-framerate", f"{frame_rate:g}",
            "-i", str(frames_dir / FRAME_PATTERN),
        ]
        filters = []
        if size:
            filters.append(f"scale={size[0]}:{size[1]}")
        if output_frame_rate:
            filters.append(f"fps={output_frame_rate:g}")
        if filters:
            cmd.extend(["-vf", ",".join(filters)])
        cmd.extend(["-c:v", enc.codec])
        if bitrate_kbps and bitrate_kbps > 0:
            cmd.extend(["-b:v", f"{int(round(bitrate_kbps))}k"])
        else:
            cmd.extend(["-crf", str(enc.crf)])
        cmd.extend(["-preset", enc.preset, "-pix_fmt", enc.pix_fmt])
        cmd.extend(self._tail())
        cmd.append(str(output_path))
        return cmd

    def build_merge_audio_command(self, video_path: Path, audio_source: Path, output_path: Path) -> List[str]:
        return self._base() + [
            "-i", str(video_path),
            "-i", str(audio_source),
            "-map", "0:v:0",
            "-map", "1:a?",
            "-c:v", "copy",
            "-c:a", self.encoding.audio_codec,
            "-shortest",
        ] + self._tail() + [str(output_path)]

    def _run(
        self,
        stage: str,
        cmd: List[str],
        cancel_token: CancelToken,
        on_line: Optional[OutputCallback],
        on_progress: Optional[ProgressCallback],
        total_frames: int,
    ):
        def handle(line: str):
            if on_line is not None:
                on_line(line)
            if on_progress is not None and total_frames > 0:
                frame = parse_frame_count(line)
                if frame is not None:
                    on_progress(min(1.0, frame / total_frames))

        ToolRunner(stage, cancel_token, grace_seconds=self.grace_seconds).run(cmd, on_output_line=handle)

    def extract_frames(
        self,
        source: Path,
        frames_dir: Path,
        metadata: VideoMetadata,
        cancel_token: CancelToken,
        on_line: Optional[OutputCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
        divisor: int = 1,
    ) -> int:
        """Decomposes the source into numbered PNG frames; returns how many were written."""
        cmd = self.build_extract_command(source, frames_dir, divisor)
        self._run("extracting", cmd, cancel_token, on_line, on_progress, metadata.total_frames)
        count = len(list(frames_dir.glob(FRAME_GLOB)))
        self.logger.info(f"Extracted {count} frames from {source.name}")
        return count

    def encode_frames(
        self,
        frames_dir: Path,
        output_path: Path,
        frame_rate: float,
        total_frames: int,
        cancel_token: CancelToken,
        on_line: Optional[OutputCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
        size: Optional[Tuple[int, int]] = None,
        bitrate_kbps: Optional[float] = None,
        output_frame_rate: Optional[float] = None,
    ):
        cmd = self.build_encode_command(frames_dir, output_path, frame_rate, size, bitrate_kbps, output_frame_rate)
        if output_frame_rate and frame_rate > 0:
            # ffmpeg counts output frames
            total_frames = max(1, int(round(total_frames * output_frame_rate / frame_rate)))
        self._run("reassembling", cmd, cancel_token, on_line, on_progress, total_frames)

    def merge_audio(
        self,
        video_path: Path,
        audio_source: Path,
        output_path: Path,
        cancel_token: CancelToken,
        on_line: Optional[OutputCallback] = None,
    ):
        cmd = self.build_merge_audio_command(video_path, audio_source, output_path)
        self._run("merging_audio", cmd, cancel_token, on_line, None, 0)
