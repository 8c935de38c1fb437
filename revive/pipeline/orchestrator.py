"""Batch coordinator for the upscale/rescale pipeline.

Runs one FilePipeline per submitted file on a thread pool, serializes the
upscaling stage through a single-slot token, and returns one status per
submitted file. Cancellation is batch-wide: one CancelToken per batch is
handed to every pipeline and, through them, to every running tool.
"""
import concurrent.futures
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Sequence
from revive.config.models import AppConfig
from revive.domain.errors import BatchError, WorkspaceError
from revive.domain.events import AutoShutdownToggled, BatchFinished, BatchStarted, CancelRequested
from revive.domain.models import JobRequest, JobResult, JobStatus
from revive.infrastructure.event_bus import EventBus
from revive.infrastructure.ffmpeg import FFmpegAdapter
from revive.infrastructure.ffprobe import FFprobeAdapter
from revive.infrastructure.progress import ProgressMultiplexer
from revive.infrastructure.realesrgan import RealESRGANAdapter
from revive.infrastructure.workspace import WorkspaceManager
from revive.pipeline.cancellation import CancelToken, ResourceToken
from revive.pipeline.file_pipeline import FilePipeline

PROCESSING_TEXT = "Processing..."

class BatchCoordinator:
    """Owns the active pipelines of one submitted batch at a time.

    Args:
        config: AppConfig with general, tools and encoding settings.
        event_bus: EventBus for lifecycle events and the outbound log stream.
        workspace_manager: Allocates per-job temporary trees.
        ffprobe_adapter / ffmpeg_adapter / upscaler: External tool adapters.
        shutdown_action: Called once after a batch that ended uncanceled
            with auto shutdown requested.
    """

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        workspace_manager: WorkspaceManager,
        ffprobe_adapter: FFprobeAdapter,
        ffmpeg_adapter: FFmpegAdapter,
        upscaler: RealESRGANAdapter,
        multiplexer: Optional[ProgressMultiplexer] = None,
        shutdown_action: Optional[Callable[[], None]] = None,
    ):
        self.config = config
        self.event_bus = event_bus
        self.workspace_manager = workspace_manager
        self.ffprobe_adapter = ffprobe_adapter
        self.ffmpeg_adapter = ffmpeg_adapter
        self.upscaler = upscaler
        self.multiplexer = multiplexer or ProgressMultiplexer(event_bus)
        self.shutdown_action = shutdown_action
        self.logger = logging.getLogger(__name__)

        self.upscale_token = ResourceToken("upscaling")
        self._lock = threading.Lock()
        self._cancel_token: Optional[CancelToken] = None
        self._statuses: Dict[str, str] = {}
        self._results: Dict[str, JobResult] = {}
        self._auto_shutdown = config.general.auto_shutdown
        self._shutdown_fired = False

        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.event_bus.subscribe(CancelRequested, self._on_cancel_request)
        self.event_bus.subscribe(AutoShutdownToggled, self._on_auto_shutdown_toggled)

    def _on_cancel_request(self, event: CancelRequested):
        self.cancel()

    def _on_auto_shutdown_toggled(self, event: AutoShutdownToggled):
        self.set_auto_shutdown(event.enabled)

    # -- public API --------------------------------------------------------

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._cancel_token is not None

    @property
    def auto_shutdown(self) -> bool:
        with self._lock:
            return self._auto_shutdown

    def set_auto_shutdown(self, enabled: bool):
        with self._lock:
            self._auto_shutdown = enabled
        self.logger.info(f"Auto shutdown {'enabled' if enabled else 'disabled'}")

    def cancel(self):
        """Fire-and-forget, idempotent; a no-op when no batch is running."""
        with self._lock:
            token = self._cancel_token
        if token is None:
            return
        if not token.is_cancelled:
            self.logger.info("Batch cancel requested")
        token.cancel()
        self.upscale_token.wake_all()

    def statuses(self) -> Dict[str, str]:
        """Live view: terminal jobs show their final status, the rest 'Processing...'."""
        with self._lock:
            return dict(self._statuses)

    def results(self) -> List[JobResult]:
        with self._lock:
            return list(self._results.values())

    def submit(self, requests: Sequence[JobRequest]) -> Dict[str, str]:
        """Runs the batch to completion and returns {file name: status text}."""
        names = [r.file_name for r in requests]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise BatchError(f"Duplicate file names in batch: {', '.join(duplicates)}")

        try:
            self.workspace_manager.ensure_root()
        except WorkspaceError as e:
            raise BatchError(str(e)) from e

        token = CancelToken()
        with self._lock:
            if self._cancel_token is not None:
                raise BatchError("A batch is already running")
            self._cancel_token = token
            self._statuses = {name: PROCESSING_TEXT for name in names}
            self._results = {}
            self._shutdown_fired = False

        start_time = time.monotonic()
        self.logger.info(f"Batch started: {len(requests)} files, parallel={self.config.general.max_parallel_jobs}")
        self.event_bus.publish(BatchStarted(total_files=len(requests)))

        try:
            self._run_pipelines(requests, token)
        finally:
            released = self.workspace_manager.release_all()
            if released:
                self.logger.warning(f"Released {released} leftover workspaces after batch")
            with self._lock:
                self._cancel_token = None

        with self._lock:
            canceled = token.is_cancelled
            for request in requests:
                if request.file_name not in self._results:
                    self._results[request.file_name] = JobResult(
                        file_name=request.file_name,
                        file_code=request.file_code,
                        status=JobStatus.FAILED,
                        reason="UnexpectedError",
                    )
            # Jobs that never reached Completed count as canceled once the batch is
            if canceled:
                for name, result in self._results.items():
                    if result.status != JobStatus.COMPLETED:
                        self._results[name] = result.model_copy(update={"status": JobStatus.CANCELED, "reason": None})
            self._statuses = {name: self._results[name].status_text for name in names}
            statuses = dict(self._statuses)
            # Snapshot taken when the batch reaches its terminal state
            fire_shutdown = self._auto_shutdown and not canceled and not self._shutdown_fired
            if fire_shutdown:
                self._shutdown_fired = True

        elapsed = time.monotonic() - start_time
        self.logger.info(
            f"Batch finished in {elapsed:.2f}s: "
            + ", ".join(f"{name}={status}" for name, status in statuses.items())
        )
        self.event_bus.publish(BatchFinished(statuses=statuses, canceled=canceled, elapsed_seconds=elapsed))

        if fire_shutdown:
            self._run_shutdown()
        return statuses

    # -- internals ---------------------------------------------------------

    def _create_pipeline(self, request: JobRequest, token: CancelToken) -> FilePipeline:
        return FilePipeline(
            request=request,
            config=self.config,
            workspace_manager=self.workspace_manager,
            ffprobe_adapter=self.ffprobe_adapter,
            ffmpeg_adapter=self.ffmpeg_adapter,
            upscaler=self.upscaler,
            multiplexer=self.multiplexer,
            event_bus=self.event_bus,
            cancel_token=token,
            upscale_token=self.upscale_token,
        )

    def _record(self, result: JobResult):
        with self._lock:
            self._results[result.file_name] = result
            self._statuses[result.file_name] = result.status_text

    def _run_pipelines(self, requests: Sequence[JobRequest], token: CancelToken):
        workers = self.config.general.max_parallel_jobs
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pipeline") as executor:
            in_flight = {}
            for request in requests:
                pipeline = self._create_pipeline(request, token)
                in_flight[executor.submit(pipeline.run)] = request

            try:
                self._collect(in_flight)
            except KeyboardInterrupt:
                # Executor shutdown waits for workers; make them stop first
                self.logger.warning("Interrupted, canceling batch")
                token.cancel()
                self.upscale_token.wake_all()
                raise

    def _collect(self, in_flight: Dict[concurrent.futures.Future, JobRequest]):
        while in_flight:
            done, _ = concurrent.futures.wait(
                set(in_flight),
                timeout=1.0,
                return_when=concurrent.futures.FIRST_COMPLETED,
            )
            for future in done:
                request = in_flight.pop(future)
                try:
                    result = future.result()
                except Exception as e:
                    # FilePipeline.run converts its own errors; this is a bug guard
                    self.logger.error(f"Pipeline for {request.file_name} crashed: {e}")
                    result = JobResult(
                        file_name=request.file_name,
                        file_code=request.file_code,
                        status=JobStatus.FAILED,
                        reason="UnexpectedError",
                    )
                self._record(result)

    def _run_shutdown(self):
        if self.shutdown_action is None:
            return
        self.logger.warning("Batch finished with auto shutdown enabled, shutting down host")
        try:
            self.shutdown_action()
        except Exception as e:
            self.logger.error(f"Auto shutdown failed: {e}")
