import re
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field, field_validator

class GeneralConfig(BaseModel):
    output_dir: Path = Path("output_videos")
    workspace_root: Optional[Path] = None
    max_parallel_jobs: int = Field(default=2, gt=0)
    frame_batch_size: int = Field(default=150, gt=0)
    kill_grace_seconds: float = Field(default=5.0, ge=0.0)
    output_suffix: str = "upscaled"
    rescale_suffix: str = "rescaled"
    prescale_input: bool = False
    auto_shutdown: bool = False
    debug: bool = False

    @field_validator('output_suffix', 'rescale_suffix')
    @classmethod
    def validate_suffix(cls, v: str) -> str:
        if not re.fullmatch(r"[A-Za-z0-9_-]+", v):
            raise ValueError(f"Invalid output suffix {v!r}. Use letters, digits, '-' or '_'.")
        return v

class ToolsConfig(BaseModel):
    ffmpeg: str = "ffmpeg"
    ffprobe: str = "ffprobe"
    realesrgan: str = "realesrgan-ncnn-vulkan"
    tile_size: int = Field(default=0, ge=0)
    gpu_id: Optional[int] = Field(default=None, ge=0)
    threads: str = "2:2:2"
    probe_timeout_seconds: float = Field(default=60.0, gt=0)

    @field_validator('threads')
    @classmethod
    def validate_threads(cls, v: str) -> str:
        if not re.fullmatch(r"\d+:\d+(,\d+)*:\d+", v):
            raise ValueError(f"Invalid thread spec {v!r}. Expected load:proc:save, e.g. 2:2:2.")
        return v

class EncodingConfig(BaseModel):
    codec: str = "libx264"
    crf: int = Field(default=18, ge=0, le=51)
    preset: str = "medium"
    pix_fmt: str = "yuv420p"
    audio_codec: str = "aac"

class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    encoding: EncodingConfig = Field(default_factory=EncodingConfig)
