import math
import uuid
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator

class UpscaleModel(str, Enum):
    REALESRGAN_X4PLUS = "realesrgan-x4plus"
    REALESRNET_X4PLUS = "realesrnet-x4plus"
    REALESRGAN_X4PLUS_ANIME = "realesrgan-x4plus-anime"
    REALESR_ANIMEVIDEOV3 = "realesr-animevideov3"

    @property
    def scales(self) -> FrozenSet[int]:
        return MODEL_SCALES[self]

    @property
    def default_scale(self) -> int:
        return max(self.scales)

    def supports(self, scale: int) -> bool:
        return scale in self.scales

MODEL_SCALES: Dict[UpscaleModel, FrozenSet[int]] = {
    UpscaleModel.REALESRGAN_X4PLUS: frozenset({4}),
    UpscaleModel.REALESRNET_X4PLUS: frozenset({4}),
    UpscaleModel.REALESRGAN_X4PLUS_ANIME: frozenset({4}),
    UpscaleModel.REALESR_ANIMEVIDEOV3: frozenset({2, 3, 4}),
}

class JobMode(str, Enum):
    UPSCALE = "upscale"
    RESCALE = "rescale"

class JobStage(str, Enum):
    QUEUED = "queued"
    PROBING = "probing"
    EXTRACTING = "extracting"
    UPSCALING = "upscaling"
    REASSEMBLING = "reassembling"
    MERGING_AUDIO = "merging_audio"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStage.COMPLETED, JobStage.FAILED, JobStage.CANCELED)

# Share of the overall job percentage contributed by each stage.
STAGE_WEIGHTS: Dict[JobStage, int] = {
    JobStage.PROBING: 0,
    JobStage.EXTRACTING: 10,
    JobStage.UPSCALING: 70,
    JobStage.REASSEMBLING: 15,
    JobStage.MERGING_AUDIO: 5,
    JobStage.FINALIZING: 0,
}

WORK_STAGES = tuple(STAGE_WEIGHTS)

class JobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"

class VideoMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int
    height: int
    bitrate_kbps: float = 0.0
    codec: str = "unknown"
    container_format: str = "unknown"
    frame_rate: float = 0.0
    duration_seconds: float = 0.0
    total_frames: int = 0
    has_audio: bool = False

    @property
    def pixels(self) -> int:
        return self.width * self.height

    def bitrate_scale_factor(self, width: int, height: int) -> float:
        """sqrt(new pixels / original pixels); 1.0 when the source size is unknown."""
        if self.pixels <= 0:
            return 1.0
        return math.sqrt((width * height) / self.pixels)

    def scaled_bitrate_kbps(self, width: int, height: int) -> float:
        return self.bitrate_kbps * self.bitrate_scale_factor(width, height)

def new_file_code() -> str:
    return uuid.uuid4().hex[:12]

class JobRequest(BaseModel):
    """One submitted (file, model, scale) tuple.

    Model/scale pairs are checked here so an unsupported combination is
    rejected at submission instead of inside the upscaler.
    """

    file_name: str = Field(min_length=1)
    file_code: str = Field(default_factory=new_file_code)
    content: Optional[bytes] = None
    source_path: Optional[Path] = None
    mode: JobMode = JobMode.UPSCALE
    model: UpscaleModel = UpscaleModel.REALESRGAN_X4PLUS
    scale: int = Field(default=4, ge=1)
    target_height: Optional[int] = Field(default=None, gt=0)
    frame_rate: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def check_request(self) -> "JobRequest":
        if self.content is None and self.source_path is None:
            raise ValueError(f"{self.file_name}: either content or source_path is required")
        if self.mode == JobMode.UPSCALE and not self.model.supports(self.scale):
            allowed = ", ".join(str(s) for s in sorted(self.model.scales))
            raise ValueError(
                f"Model {self.model.value} does not support scale {self.scale} (allowed: {allowed})"
            )
        if self.mode == JobMode.RESCALE and self.target_height is None and self.frame_rate is None:
            raise ValueError(f"{self.file_name}: rescale needs a target height or frame rate")
        return self

class Workspace(BaseModel):
    job_id: str
    root: Path

    @property
    def input_path(self) -> Path:
        return self.root / "input.bin"

    @property
    def frames_dir(self) -> Path:
        return self.root / "frames"

    @property
    def upscaled_dir(self) -> Path:
        return self.root / "upscaled"

    @property
    def reassembled_path(self) -> Path:
        return self.root / "reassembled.mp4"

    @property
    def merged_path(self) -> Path:
        return self.root / "merged.mp4"

class UpscaleJob(BaseModel):
    request: JobRequest
    stage: JobStage = JobStage.QUEUED
    status: JobStatus = JobStatus.PENDING
    progress_percent: float = 0.0
    metadata: Optional[VideoMetadata] = None
    output_path: Optional[Path] = None
    error_message: Optional[str] = None
    duration_seconds: Optional[float] = None

    @property
    def file_name(self) -> str:
        return self.request.file_name

    @property
    def file_code(self) -> str:
        return self.request.file_code

class JobResult(BaseModel):
    file_name: str
    file_code: str
    status: JobStatus
    reason: Optional[str] = None
    output_path: Optional[Path] = None

    @property
    def status_text(self) -> str:
        if self.status == JobStatus.COMPLETED:
            return "Completed"
        if self.status == JobStatus.CANCELED:
            return "Canceled"
        if self.status == JobStatus.FAILED:
            return f"Failed: {self.reason or 'UnexpectedError'}"
        return "Processing..."
