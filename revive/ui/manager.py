from revive.infrastructure.event_bus import EventBus
from revive.ui.state import UIState
from revive.domain.events import (
    BatchStarted, BatchFinished,
    JobStarted, JobStageChanged, JobCompleted, JobFailed, JobCanceled,
    ProgressUpdated, LogEmitted, CancelRequested, AutoShutdownToggled
)

class UIManager:
    """Subscribes to EventBus and updates UIState."""

    def __init__(self, bus: EventBus, state: UIState):
        self.bus = bus
        self.state = state
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(BatchStarted, self.on_batch_started)
        self.bus.subscribe(BatchFinished, self.on_batch_finished)
        self.bus.subscribe(JobStarted, self.on_job_started)
        self.bus.subscribe(JobStageChanged, self.on_stage_changed)
        self.bus.subscribe(JobCompleted, self.on_job_finished)
        self.bus.subscribe(JobFailed, self.on_job_finished)
        self.bus.subscribe(JobCanceled, self.on_job_finished)
        self.bus.subscribe(ProgressUpdated, self.on_progress)
        self.bus.subscribe(LogEmitted, self.on_log)
        self.bus.subscribe(CancelRequested, self.on_cancel_request)
        self.bus.subscribe(AutoShutdownToggled, self.on_auto_shutdown_toggled)

    def on_batch_started(self, event: BatchStarted):
        self.state.start_batch(event.total_files)

    def on_batch_finished(self, event: BatchFinished):
        with self.state._lock:
            self.state.final_statuses = dict(event.statuses)
            self.state.finished = True

    def on_job_started(self, event: JobStarted):
        self.state.add_active_job(event.job)

    def on_stage_changed(self, event: JobStageChanged):
        self.state.set_stage(event.job.file_name, event.stage)

    def on_job_finished(self, event):
        self.state.finish_job(event.job)

    def on_progress(self, event: ProgressUpdated):
        self.state.set_progress(event.file_name, event.percent)

    def on_log(self, event: LogEmitted):
        self.state.add_log(event.text)

    def on_cancel_request(self, event: CancelRequested):
        with self.state._lock:
            self.state.cancel_requested = True

    def on_auto_shutdown_toggled(self, event: AutoShutdownToggled):
        with self.state._lock:
            self.state.auto_shutdown = event.enabled
