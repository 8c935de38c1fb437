import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional
from revive.domain.errors import ExternalToolError, ProbeError, ToolTimeoutError
from revive.domain.models import VideoMetadata
from revive.infrastructure.runner import OutputCallback, ToolRunner
from revive.pipeline.cancellation import CancelToken

def parse_frame_rate(value: Optional[str]) -> float:
    """Parses '30000/1001' or '25' into frames per second; 0.0 when unknown."""
    if not value:
        return 0.0
    try:
        if "/" in value:
            num, den = map(float, value.split("/"))
            if den == 0:
                return 0.0
            fps = num / den
        else:
            fps = float(value)
    except ValueError:
        return 0.0
    if fps <= 0 or fps > 1000:
        return 0.0
    return round(fps, 3)

def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0

def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0

class FFprobeAdapter:
    """Wrapper around ffprobe to extract the properties a job is planned from."""

    def __init__(self, binary: str = "ffprobe", timeout: float = 60.0, grace_seconds: float = 5.0):
        self.binary = binary
        self.timeout = timeout
        self.grace_seconds = grace_seconds

    def _build_command(self, file_path: Path):
        return [
            self.binary,
            "-v", "error",
            "-print_format", "json",
            "-show_streams",
            "-show_format",
            str(file_path),
        ]

    def get_stream_info(
        self,
        file_path: Path,
        cancel_token: Optional[CancelToken] = None,
        on_line: Optional[OutputCallback] = None,
    ) -> Dict[str, Any]:
        """Executes ffprobe and returns the parsed JSON document.

        Error lines from ffprobe go to ``on_line``; a cancel stops the process.
        """
        runner = ToolRunner(
            "probing",
            cancel_token or CancelToken(),
            grace_seconds=self.grace_seconds,
            timeout=self.timeout,
        )
        try:
            runner.run(self._build_command(file_path), on_output_line=on_line, capture_stdout=True)
        except ToolTimeoutError as e:
            raise ProbeError(f"ffprobe timed out after {self.timeout:g}s for {file_path.name}") from e
        except ExternalToolError as e:
            if e.exit_code == 127:
                raise ProbeError(f"ffprobe not found: {self.binary}") from e
            detail = " ".join(e.last_lines)
            raise ProbeError(f"ffprobe failed for {file_path.name}: {detail}") from e

        try:
            return json.loads(runner.stdout)
        except json.JSONDecodeError as e:
            raise ProbeError(f"ffprobe returned invalid JSON for {file_path.name}") from e

    def parse_metadata(self, data: Dict[str, Any], name: str = "input") -> VideoMetadata:
        streams = data.get("streams", [])
        video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
        if not video_stream:
            raise ProbeError(f"No video stream found in {name}")

        width = _to_int(video_stream.get("width"))
        height = _to_int(video_stream.get("height"))
        if width <= 0 or height <= 0:
            raise ProbeError(f"Invalid frame size {width}x{height} in {name}")

        fmt = data.get("format", {})
        # avg_frame_rate is the real rate; r_frame_rate is often the timebase
        fps = parse_frame_rate(video_stream.get("avg_frame_rate")) or parse_frame_rate(video_stream.get("r_frame_rate"))
        duration = _to_float(video_stream.get("duration")) or _to_float(fmt.get("duration"))
        bit_rate = _to_float(video_stream.get("bit_rate")) or _to_float(fmt.get("bit_rate"))

        total_frames = _to_int(video_stream.get("nb_frames"))
        if total_frames <= 0 and fps > 0 and duration > 0:
            total_frames = int(round(duration * fps))

        return VideoMetadata(
            width=width,
            height=height,
            bitrate_kbps=round(bit_rate / 1000, 3),
            codec=video_stream.get("codec_name", "unknown"),
            container_format=fmt.get("format_name", "unknown"),
            frame_rate=fps,
            duration_seconds=round(duration, 3),
            total_frames=total_frames,
            has_audio=any(s.get("codec_type") == "audio" for s in streams),
        )

    def probe(
        self,
        file_path: Path,
        cancel_token: Optional[CancelToken] = None,
        on_line: Optional[OutputCallback] = None,
    ) -> VideoMetadata:
        if not file_path.exists():
            raise ProbeError(f"File not found: {file_path}")
        data = self.get_stream_info(file_path, cancel_token, on_line)
        return self.parse_metadata(data, name=file_path.name)

    def probe_bytes(self, content: bytes, temp_dir: Optional[Path] = None) -> VideoMetadata:
        """Stages the bytes in a temporary file, probes it, removes the file."""
        if not content:
            raise ProbeError("Empty input")
        fd, tmp_name = tempfile.mkstemp(prefix="revive-probe-", suffix=".bin", dir=temp_dir)
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
            return self.probe(tmp_path)
        finally:
            tmp_path.unlink(missing_ok=True)
