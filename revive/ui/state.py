import threading
import time
from collections import deque
from typing import Dict, List, Optional
from revive.domain.models import JobStage, JobStatus, UpscaleJob

class UIState:
    """Thread-safe state manager for the live dashboard."""

    def __init__(self):
        self._lock = threading.RLock()

        # Counters
        self.completed_count = 0
        self.failed_count = 0
        self.canceled_count = 0
        self.total_files = 0

        # Job tracking, keyed by file name
        self.active_jobs: List[UpscaleJob] = []
        self.progress: Dict[str, int] = {}
        self.stages: Dict[str, JobStage] = {}
        self.job_start_times: Dict[str, float] = {}
        self.recent_jobs = deque(maxlen=5)
        self.recent_logs = deque(maxlen=8)

        # Global status
        self.batch_start_time: Optional[float] = None
        self.finished = False
        self.cancel_requested = False
        self.auto_shutdown = False
        self.final_statuses: Dict[str, str] = {}

    @property
    def done_count(self) -> int:
        with self._lock:
            return self.completed_count + self.failed_count + self.canceled_count

    def elapsed_seconds(self) -> float:
        with self._lock:
            if self.batch_start_time is None:
                return 0.0
            return time.monotonic() - self.batch_start_time

    def start_batch(self, total_files: int):
        with self._lock:
            self.total_files = total_files
            self.batch_start_time = time.monotonic()
            self.finished = False
            self.cancel_requested = False
            self.completed_count = self.failed_count = self.canceled_count = 0
            self.final_statuses = {}

    def add_active_job(self, job: UpscaleJob):
        with self._lock:
            if all(j.file_name != job.file_name for j in self.active_jobs):
                self.active_jobs.append(job)
            self.progress.setdefault(job.file_name, 0)
            self.job_start_times.setdefault(job.file_name, time.monotonic())

    def remove_active_job(self, job: UpscaleJob):
        with self._lock:
            self.active_jobs = [j for j in self.active_jobs if j.file_name != job.file_name]
            self.stages.pop(job.file_name, None)

    def set_stage(self, file_name: str, stage: JobStage):
        with self._lock:
            self.stages[file_name] = stage

    def set_progress(self, file_name: str, percent: int):
        with self._lock:
            # Markers only move forward for a job
            self.progress[file_name] = max(self.progress.get(file_name, 0), percent)

    def add_log(self, text: str):
        with self._lock:
            self.recent_logs.appendleft(text)

    def finish_job(self, job: UpscaleJob):
        with self._lock:
            if job.status == JobStatus.COMPLETED:
                self.completed_count += 1
            elif job.status == JobStatus.CANCELED:
                self.canceled_count += 1
            else:
                self.failed_count += 1
            self.recent_jobs.appendleft(job)
            self.remove_active_job(job)
