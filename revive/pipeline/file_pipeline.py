"""Per-file state machine.

Queued → Probing → Extracting → Upscaling → Reassembling → MergingAudio →
Finalizing → Completed | Failed | Canceled

Every transition is a cancellation checkpoint. Any error or cancellation
jumps straight to workspace cleanup; later stages never run.
"""
import logging
import os
import shutil
import threading
import time
from pathlib import Path
from typing import List, Optional, Tuple
from revive.config.models import AppConfig
from revive.domain.errors import CancellationError, InputError, PipelineError, WorkspaceError
from revive.domain.events import JobCanceled, JobCompleted, JobFailed, JobStageChanged, JobStarted
from revive.domain.models import (
    JobMode, JobRequest, JobResult, JobStage, JobStatus, STAGE_WEIGHTS, UpscaleJob, WORK_STAGES, Workspace,
)
from revive.infrastructure.event_bus import EventBus
from revive.infrastructure.ffmpeg import FFmpegAdapter, FRAME_GLOB, even_size, prescale_factor
from revive.infrastructure.ffprobe import FFprobeAdapter
from revive.infrastructure.progress import ProgressMultiplexer
from revive.infrastructure.realesrgan import RealESRGANAdapter
from revive.infrastructure.workspace import WorkspaceManager
from revive.pipeline.cancellation import CancelToken, ResourceToken

DEFAULT_FRAME_RATE = 30.0

class JobProgress:
    """Maps per-stage fractions onto one overall percentage that never goes down."""

    def __init__(self, job: UpscaleJob, multiplexer: ProgressMultiplexer):
        self.job = job
        self.multiplexer = multiplexer
        self._stage: Optional[JobStage] = None
        self._base = 0
        self._reported = -1
        self._lock = threading.Lock()

    def enter(self, stage: JobStage):
        with self._lock:
            self._stage = stage
            self._base = sum(STAGE_WEIGHTS[s] for s in WORK_STAGES[:WORK_STAGES.index(stage)])
        self._emit(self._base)

    def update(self, fraction: float):
        if self._stage is None:
            return
        fraction = min(1.0, max(0.0, fraction))
        self._emit(self._base + STAGE_WEIGHTS[self._stage] * fraction)

    def finish_stage(self):
        self.update(1.0)

    def complete(self):
        self._emit(100)

    def _emit(self, value: float):
        percent = min(100, int(value))
        with self._lock:
            if percent <= self._reported:
                return
            self._reported = percent
            self.job.progress_percent = float(percent)
            self.multiplexer.publish_progress(self.job.file_name, percent)

def output_name(file_name: str, suffix: str, index: int = 0) -> str:
    stem = Path(file_name).stem or "video"
    if index:
        return f"{stem}_{suffix}_{index}.mp4"
    return f"{stem}_{suffix}.mp4"

def partition_frames(frames_dir: Path, batch_size: int) -> List[Tuple[Path, int]]:
    """Moves the flat frame sequence into batch_NNNNN subdirectories, keeping file names."""
    frames = sorted(frames_dir.glob(FRAME_GLOB))
    batches = []
    for index, start in enumerate(range(0, len(frames), batch_size)):
        batch_dir = frames_dir / f"batch_{index:05d}"
        batch_dir.mkdir()
        chunk = frames[start:start + batch_size]
        for frame in chunk:
            os.replace(frame, batch_dir / frame.name)
        batches.append((batch_dir, len(chunk)))
    return batches

class FilePipeline:
    """Drives one input file from Queued to a terminal state."""

    def __init__(
        self,
        request: JobRequest,
        config: AppConfig,
        workspace_manager: WorkspaceManager,
        ffprobe_adapter: FFprobeAdapter,
        ffmpeg_adapter: FFmpegAdapter,
        upscaler: RealESRGANAdapter,
        multiplexer: ProgressMultiplexer,
        event_bus: EventBus,
        cancel_token: CancelToken,
        upscale_token: ResourceToken,
    ):
        self.job = UpscaleJob(request=request)
        self.config = config
        self.workspace_manager = workspace_manager
        self.ffprobe_adapter = ffprobe_adapter
        self.ffmpeg_adapter = ffmpeg_adapter
        self.upscaler = upscaler
        self.multiplexer = multiplexer
        self.event_bus = event_bus
        self.cancel_token = cancel_token
        self.upscale_token = upscale_token
        self.progress = JobProgress(self.job, multiplexer)
        self.logger = logging.getLogger(__name__)

    # -- state machine ---------------------------------------------------

    def _enter(self, stage: JobStage):
        self.cancel_token.raise_if_cancelled(stage.value)
        self.job.stage = stage
        self.logger.info(f"STAGE: {self.job.file_name} -> {stage.value}")
        self.event_bus.publish(JobStageChanged(job=self.job, stage=stage))
        self.progress.enter(stage)

    def _leave(self):
        self.progress.finish_stage()
        self.cancel_token.raise_if_cancelled(self.job.stage.value)

    def run(self) -> JobResult:
        job = self.job
        start_time = time.monotonic()
        job.status = JobStatus.PROCESSING
        self.event_bus.publish(JobStarted(job=job))

        try:
            self.cancel_token.raise_if_cancelled(JobStage.QUEUED.value)
            with self.workspace_manager.workspace(job.file_code) as ws:
                self._process(ws)
        except CancellationError as e:
            job.stage = JobStage.CANCELED
            job.status = JobStatus.CANCELED
            job.output_path = None
            self.logger.info(f"PROCESS_END: {job.file_name} status=canceled ({e})")
            self.event_bus.publish(JobCanceled(job=job))
        except PipelineError as e:
            self._fail(e.reason, str(e))
        except Exception as e:
            self.logger.exception(f"Exception processing {job.file_name}: {e}")
            self._fail("UnexpectedError", f"Exception: {e}")
        else:
            job.stage = JobStage.COMPLETED
            job.status = JobStatus.COMPLETED
            self.progress.complete()
            self.event_bus.publish(JobCompleted(job=job))
        finally:
            job.duration_seconds = time.monotonic() - start_time

        if job.status == JobStatus.COMPLETED:
            self.logger.info(
                f"PROCESS_END: {job.file_name} status=completed output={job.output_path} "
                f"elapsed={job.duration_seconds:.2f}s"
            )

        return JobResult(
            file_name=job.file_name,
            file_code=job.file_code,
            status=job.status,
            reason=job.error_message if job.status == JobStatus.FAILED else None,
            output_path=job.output_path,
        )

    def _fail(self, reason: str, detail: str):
        job = self.job
        self.logger.error(f"PROCESS_END: {job.file_name} status=failed stage={job.stage.value} reason={detail}")
        job.stage = JobStage.FAILED
        job.status = JobStatus.FAILED
        job.error_message = reason
        job.output_path = None
        self.event_bus.publish(JobFailed(job=job, error_message=reason))

    def _process(self, ws: Workspace):
        job = self.job
        request = job.request

        self._enter(JobStage.PROBING)
        source = self._stage_input(ws)
        job.metadata = self.ffprobe_adapter.probe(source, self.cancel_token, on_line=self.multiplexer.publish_line)
        meta = job.metadata
        self.logger.info(
            f"PROBE: {job.file_name} {meta.width}x{meta.height} {meta.codec} "
            f"{meta.frame_rate}fps frames={meta.total_frames} audio={meta.has_audio}"
        )
        self._leave()

        self._enter(JobStage.EXTRACTING)
        divisor = 1
        if request.mode == JobMode.UPSCALE and self.config.general.prescale_input:
            divisor = prescale_factor(meta, request.scale)
        frame_count = self.ffmpeg_adapter.extract_frames(
            source, ws.frames_dir, meta, self.cancel_token,
            on_line=self.multiplexer.publish_line,
            on_progress=self.progress.update,
            divisor=divisor,
        )
        if frame_count <= 0:
            raise InputError(f"No frames could be extracted from {job.file_name}")
        self._leave()

        self._enter(JobStage.UPSCALING)
        if request.mode == JobMode.UPSCALE:
            self._upscale(ws, frame_count)
            frames_source = ws.upscaled_dir
        else:
            frames_source = ws.frames_dir
        self._leave()

        self._enter(JobStage.REASSEMBLING)
        # Frames were extracted at the source rate; a requested rate is applied on output
        frame_rate = meta.frame_rate or DEFAULT_FRAME_RATE
        output_rate = request.frame_rate if request.frame_rate and request.frame_rate != frame_rate else None
        size, bitrate = self._rescale_target()
        self.ffmpeg_adapter.encode_frames(
            frames_source, ws.reassembled_path, frame_rate, frame_count, self.cancel_token,
            on_line=self.multiplexer.publish_line,
            on_progress=self.progress.update,
            size=size,
            bitrate_kbps=bitrate,
            output_frame_rate=output_rate,
        )
        self._leave()

        self._enter(JobStage.MERGING_AUDIO)
        artifact = ws.reassembled_path
        if meta.has_audio:
            self.ffmpeg_adapter.merge_audio(
                ws.reassembled_path, source, ws.merged_path, self.cancel_token,
                on_line=self.multiplexer.publish_line,
            )
            artifact = ws.merged_path
        else:
            self.logger.info(f"No audio track in {job.file_name}, skipping merge")
        self._leave()

        self._enter(JobStage.FINALIZING)
        job.output_path = self._finalize(artifact)

    # -- stages ----------------------------------------------------------

    def _stage_input(self, ws: Workspace) -> Path:
        request = self.job.request
        if request.content is not None:
            if not request.content:
                raise InputError(f"{request.file_name} is empty")
            try:
                ws.input_path.write_bytes(request.content)
            except OSError as e:
                raise WorkspaceError(f"Cannot stage {request.file_name}: {e}") from e
            return ws.input_path

        path = Path(request.source_path)
        if not path.is_file():
            raise InputError(f"File not found: {path}")
        if path.stat().st_size == 0:
            raise InputError(f"{request.file_name} is empty")
        return path

    def _upscale(self, ws: Workspace, frame_count: int):
        request = self.job.request
        batches = partition_frames(ws.frames_dir, self.config.general.frame_batch_size)

        self.logger.info(f"Waiting for {self.upscale_token.name} token: {self.job.file_name}")
        with self.upscale_token.hold(self.job.file_code, self.cancel_token):
            self.logger.info(
                f"Upscaling {self.job.file_name}: {frame_count} frames in {len(batches)} batches "
                f"({request.model.value} x{request.scale})"
            )
            done = 0
            for index, (batch_dir, count) in enumerate(batches, start=1):
                self.cancel_token.raise_if_cancelled(JobStage.UPSCALING.value)
                batch_start = time.monotonic()

                def on_progress(fraction: float, done=done, count=count):
                    self.progress.update((done + fraction * count) / frame_count)

                self.upscaler.upscale_dir(
                    batch_dir, ws.upscaled_dir, request.model, request.scale, count, self.cancel_token,
                    on_line=self.multiplexer.publish_line,
                    on_progress=on_progress,
                )
                # Frames are no longer needed once upscaled
                shutil.rmtree(batch_dir, ignore_errors=True)
                done += count
                self.progress.update(done / frame_count)
                self.logger.info(
                    f"Batch {index}/{len(batches)} of {self.job.file_name} done in "
                    f"{time.monotonic() - batch_start:.2f}s"
                )

    def _rescale_target(self) -> Tuple[Optional[Tuple[int, int]], Optional[float]]:
        request = self.job.request
        meta = self.job.metadata
        if request.mode != JobMode.RESCALE:
            return None, None
        size = even_size(meta, request.target_height) if request.target_height else None
        width, height = size or (meta.width, meta.height)
        bitrate = meta.scaled_bitrate_kbps(width, height) if meta.bitrate_kbps > 0 else None
        if bitrate:
            self.logger.info(
                f"Rescale {self.job.file_name}: {meta.width}x{meta.height} -> {width}x{height} "
                f"bitrate {meta.bitrate_kbps:.0f}k -> {bitrate:.0f}k"
            )
        return size, bitrate

    def _finalize(self, artifact: Path) -> Path:
        """Moves the artifact into the output folder under a name no other job holds."""
        general = self.config.general
        suffix = general.rescale_suffix if self.job.request.mode == JobMode.RESCALE else general.output_suffix
        output_dir = Path(general.output_dir)
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WorkspaceError(f"Cannot create output folder {output_dir}: {e}") from e

        index = 0
        while True:
            target = output_dir / output_name(self.job.file_name, suffix, index)
            try:
                # Exclusive create reserves the name against concurrent jobs
                with open(target, "xb"):
                    pass
                break
            except FileExistsError:
                index += 1
            except OSError as e:
                raise WorkspaceError(f"Cannot reserve {target}: {e}") from e

        part = target.with_name(f".{target.name}.part")
        try:
            shutil.move(str(artifact), str(part))
            os.replace(part, target)
        except OSError as e:
            part.unlink(missing_ok=True)
            target.unlink(missing_ok=True)
            raise WorkspaceError(f"Cannot move result to {target}: {e}") from e

        self.logger.info(f"Saved {self.job.file_name} -> {target}")
        return target
